"""
🛡️ ErrorHandler - classification, bounded recovery and circuit breakers

Every failure on the leaderboard and picks paths goes through handle_error:

1. Logged and recorded on the subsystem's circuit breaker
2. Recovery by error kind (at most 3 attempts per context + message):
   - NETWORK: exponential backoff, connectivity check, wait for the store to
     come back (30 s ceiling), then retry the operation once
   - PERMISSION: refresh the credential and retry; no identity -> public mode
   - DATA: well-formed empty data for the context
   - RESOURCE: clear caches, collect garbage, switch to legacy mode
   - UNKNOWN: no recovery
3. Fallback operation, if one was given
4. Safe default: empty data the UI can always render
"""

import asyncio
import gc
import logging
import random
import time
from collections import deque
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from confidence_pool.core.errors import ErrorKind, classify

logger = logging.getLogger(__name__)

MAX_RECOVERY_ATTEMPTS = 3
BASE_BACKOFF_SECONDS = 1.0
MAX_BACKOFF_SECONDS = 10.0
ONLINE_WAIT_SECONDS = 30.0
ONLINE_POLL_SECONDS = 2.0
RECENT_ERROR_WINDOW = timedelta(minutes=5)
DEGRADED_ERROR_COUNT = 10
KEPT_ERROR_LOG = 100
MAX_ERROR_LOG = 1000
MAX_TRACKED_RECOVERIES = 500

UNIFIED = "unified"
LEGACY = "legacy"

LEADERBOARD_CONTEXT = "leaderboard"
PICKS_CONTEXT = "picks"


class CircuitBreaker:
    """
    Opens after `threshold` failures; closes again once `cooldown_seconds`
    pass without a new failure. Any success resets it.
    """

    def __init__(self, name: str, threshold: int, cooldown_seconds: float, timer: Callable[[], float] = time.monotonic):
        self.name = name
        self.threshold = threshold
        self.cooldown_seconds = cooldown_seconds
        self._timer = timer
        self.failures = 0
        self.last_failure: Optional[float] = None

    def record_failure(self) -> None:
        self.failures += 1
        self.last_failure = self._timer()
        if self.failures == self.threshold:
            logger.warning(f"⚠️ Circuit breaker OPEN for {self.name} system")

    def record_success(self) -> None:
        self.failures = 0
        self.last_failure = None

    def is_open(self) -> bool:
        if self.failures < self.threshold:
            return False
        if self.last_failure is not None and self._timer() - self.last_failure > self.cooldown_seconds:
            self.record_success()
            logger.info(f"✅ Circuit breaker CLOSED for {self.name} system")
            return False
        return True

    def status(self) -> dict:
        return {
            "open": self.is_open(),
            "failures": self.failures,
            "threshold": self.threshold,
            "cooldown_seconds": self.cooldown_seconds,
        }


class CredentialProvider(ABC):
    """The caller's identity, as far as store permissions are concerned"""

    @abstractmethod
    def current_identity(self) -> Optional[str]:
        ...

    @abstractmethod
    async def refresh(self) -> None:
        ...


class AnonymousCredentials(CredentialProvider):
    """No signed-in identity: permission failures degrade to public mode"""

    def current_identity(self) -> Optional[str]:
        return None

    async def refresh(self) -> None:
        return None


class RecoveryOutcome:
    def __init__(self, success: bool, recovery_type: Optional[str] = None, reason: Optional[str] = None, data: Any = None):
        self.success = success
        self.recovery_type = recovery_type
        self.reason = reason
        self.data = data

    @classmethod
    def failed(cls, reason: str) -> "RecoveryOutcome":
        return cls(success=False, reason=reason)


def empty_data_for(context: str) -> Any:
    if context == LEADERBOARD_CONTEXT:
        return []
    if context == PICKS_CONTEXT:
        return {}
    return None


def backoff_delay(attempt: int) -> float:
    """1s, 2s, 4s ... capped at 10s, plus up to 10% jitter"""
    delay = min(BASE_BACKOFF_SECONDS * (2 ** (attempt - 1)), MAX_BACKOFF_SECONDS)
    return delay + random.uniform(0, delay * 0.1)


class ErrorHandler:
    def __init__(
        self,
        connectivity_check: Optional[Callable[[], Awaitable[bool]]] = None,
        credentials: Optional[CredentialProvider] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        timer: Callable[[], float] = time.monotonic,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.connectivity_check = connectivity_check
        self.credentials = credentials or AnonymousCredentials()
        self.sleep = sleep
        self.clock = clock
        self.breakers = {
            UNIFIED: CircuitBreaker(UNIFIED, threshold=5, cooldown_seconds=5 * 60, timer=timer),
            LEGACY: CircuitBreaker(LEGACY, threshold=10, cooldown_seconds=10 * 60, timer=timer),
        }
        self.error_log: deque[dict] = deque(maxlen=MAX_ERROR_LOG)
        self.total_errors = 0
        self.recovery_attempts: dict[tuple[str, str], int] = {}
        self.recovery_stats = {"attempts": 0, "successful": 0, "failed": 0}
        self._resource_hooks: list[Callable[[], Any]] = []

        logger.info("🛡️ ErrorHandler initialized")

    def register_resource_hook(self, hook: Callable[[], Any]) -> None:
        """Called on resource exhaustion (cache clears, switching to legacy mode)"""
        self._resource_hooks.append(hook)

    # ============================================
    # 📌 CIRCUIT BREAKERS
    # ============================================

    def is_circuit_open(self, subsystem: str) -> bool:
        return self.breakers[subsystem].is_open()

    def record_success(self, subsystem: str) -> None:
        self.breakers[subsystem].record_success()

    def record_failure(self, subsystem: str) -> None:
        self.breakers[subsystem].record_failure()

    # ============================================
    # 📌 HANDLING
    # ============================================

    async def handle_error(
        self,
        error: BaseException,
        context: str,
        subsystem: str = UNIFIED,
        retry: Optional[Callable[[], Awaitable[Any]]] = None,
        fallback: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> dict:
        kind = classify(error)
        self.error_log.append({
            "timestamp": self.clock(),
            "context": context,
            "subsystem": subsystem,
            "kind": kind.value,
            "type": type(error).__name__,
            "message": str(error),
        })
        self.total_errors += 1
        logger.error(f"🚨 {subsystem}/{context} {kind.value} error: {error}")
        self.record_failure(subsystem)

        outcome = await self.attempt_recovery(error, kind, context, retry)
        if outcome.success:
            logger.info(f"✅ Recovery successful for {subsystem}/{context} ({outcome.recovery_type})")
            return {"success": True, "data": outcome.data, "recovery_type": outcome.recovery_type}

        if fallback is not None:
            logger.info(f"🔄 Executing fallback for {subsystem}/{context}")
            try:
                data = await fallback()
                return {"success": True, "data": data, "used_fallback": True}
            except Exception as fallback_error:
                logger.error(f"❌ Fallback also failed for {subsystem}/{context}: {fallback_error}")
                self.error_log[-1]["fallback_error"] = str(fallback_error)

        return self.safe_default(context)

    async def attempt_recovery(
        self,
        error: BaseException,
        kind: ErrorKind,
        context: str,
        retry: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> RecoveryOutcome:
        key = (context, str(error))
        attempts = self.recovery_attempts.get(key, 0)
        if attempts >= MAX_RECOVERY_ATTEMPTS:
            logger.warning(f"🛑 Max recovery attempts reached for {context}: {error}")
            return RecoveryOutcome.failed("max_attempts_reached")

        attempts += 1
        if key not in self.recovery_attempts and len(self.recovery_attempts) >= MAX_TRACKED_RECOVERIES:
            # Forget the oldest message
            self.recovery_attempts.pop(next(iter(self.recovery_attempts)))
        self.recovery_attempts[key] = attempts
        self.recovery_stats["attempts"] += 1

        if kind == ErrorKind.NETWORK:
            outcome = await self.recover_from_network_error(attempts, retry)
        elif kind == ErrorKind.PERMISSION:
            outcome = await self.recover_from_permission_error(context, retry)
        elif kind == ErrorKind.DATA:
            outcome = self.recover_from_data_error(context)
        elif kind == ErrorKind.RESOURCE:
            outcome = self.recover_from_resource_error(context)
        else:
            outcome = RecoveryOutcome.failed("unknown_error_type")

        self.recovery_stats["successful" if outcome.success else "failed"] += 1
        return outcome

    async def _retry_once(self, retry: Optional[Callable[[], Awaitable[Any]]], recovery_type: str) -> RecoveryOutcome:
        if retry is None:
            return RecoveryOutcome(success=True, recovery_type=recovery_type)
        try:
            return RecoveryOutcome(success=True, recovery_type=recovery_type, data=await retry())
        except Exception as e:
            logger.warning(f"⚠️ Retry after {recovery_type} failed: {e}")
            return RecoveryOutcome.failed(f"retry_failed: {e}")

    async def recover_from_network_error(
        self,
        attempt: int,
        retry: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> RecoveryOutcome:
        logger.info("🔄 Attempting network error recovery...")
        await self.sleep(backoff_delay(attempt))

        if self.connectivity_check is not None and not await self.connectivity_check():
            logger.warning("📡 Store unreachable, waiting for connection...")
            if not await self.wait_for_online():
                return RecoveryOutcome.failed("network_timeout")

        return await self._retry_once(retry, "network_reconnect")

    async def wait_for_online(self, timeout: float = ONLINE_WAIT_SECONDS) -> bool:
        """Polls the connectivity check until it answers or the timeout runs out"""
        if self.connectivity_check is None:
            return True
        waited = 0.0
        while waited < timeout:
            step = min(ONLINE_POLL_SECONDS, timeout - waited)
            await self.sleep(step)
            waited += step
            if await self.connectivity_check():
                logger.info("📡 Store connection restored")
                return True
        return False

    async def recover_from_permission_error(
        self,
        context: str,
        retry: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> RecoveryOutcome:
        logger.info("🔄 Attempting permission error recovery...")
        if self.credentials.current_identity() is None:
            logger.info("🔄 No authenticated identity, switching to public mode")
            return RecoveryOutcome(success=True, recovery_type="public_mode", data=empty_data_for(context))

        try:
            await self.credentials.refresh()
        except Exception as e:
            logger.warning(f"⚠️ Credential refresh failed: {e}")
            return RecoveryOutcome.failed("permission_denied")
        logger.info("✅ Credential refreshed")
        return await self._retry_once(retry, "credential_refresh")

    def recover_from_data_error(self, context: str) -> RecoveryOutcome:
        logger.info("🔄 Attempting data error recovery...")
        if context == LEADERBOARD_CONTEXT:
            return RecoveryOutcome(success=True, recovery_type="clean_data", data=[])
        if context == PICKS_CONTEXT:
            return RecoveryOutcome(success=True, recovery_type="clean_picks", data={})
        return RecoveryOutcome.failed("data_unrecoverable")

    def recover_from_resource_error(self, context: str) -> RecoveryOutcome:
        logger.info("🔄 Attempting resource error recovery...")
        for hook in self._resource_hooks:
            hook()
        collected = gc.collect()
        logger.info(f"♻️ Garbage collection freed {collected} objects")
        return RecoveryOutcome(success=True, recovery_type="resource_fallback", data=empty_data_for(context))

    def safe_default(self, context: str) -> dict:
        if context == LEADERBOARD_CONTEXT:
            return {
                "success": True,
                "data": [],
                "fallback": "safe_default",
                "message": "Leaderboard temporarily unavailable",
            }
        if context == PICKS_CONTEXT:
            return {
                "success": True,
                "data": {},
                "fallback": "safe_default",
                "message": "Picks temporarily unavailable",
            }
        return {"success": False, "fallback": "safe_default", "message": "Service temporarily unavailable"}

    # ============================================
    # 📌 REPORTING
    # ============================================

    def _recent_errors(self) -> int:
        cutoff = self.clock() - RECENT_ERROR_WINDOW
        return sum(1 for entry in self.error_log if entry["timestamp"] >= cutoff)

    def health_check(self) -> dict:
        recent = self._recent_errors()
        return {
            "status": "degraded" if recent > DEGRADED_ERROR_COUNT else "healthy",
            "recent_errors": recent,
            "total_errors": self.total_errors,
            "circuit_breakers": {name: breaker.status() for name, breaker in self.breakers.items()},
            "recovery_attempts": len(self.recovery_attempts),
        }

    def error_report(self) -> dict:
        by_kind = {kind.value: 0 for kind in ErrorKind}
        for entry in self.error_log:
            by_kind[entry["kind"]] += 1
        return {
            "total_errors": self.total_errors,
            "recent_errors": list(self.error_log)[-10:],
            "errors_by_kind": by_kind,
            "circuit_breakers": {name: breaker.status() for name, breaker in self.breakers.items()},
            "recovery_stats": dict(self.recovery_stats),
        }

    def clear_error_log(self) -> None:
        self.error_log = deque(list(self.error_log)[-KEPT_ERROR_LOG:], maxlen=MAX_ERROR_LOG)
        self.recovery_attempts.clear()
        logger.info("🗑️ Error log cleaned")
