"""
📊 PerformanceMonitor - read counts, load times, cost and alerts

Observes the leaderboard paths and reports on them. It never changes what
the callers do: tracking a request cannot fail it.

Targets:
- average load time <= 200 ms
- <= 2 store reads per request
- error rate <= 5%
"""

import logging
import time
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)

SLOW_QUERY_MS = 500
TARGET_LOAD_TIME_MS = 200
ERROR_RATE_THRESHOLD = 0.05
TARGET_READS_PER_REQUEST = 2
COST_PER_READ = 0.00036  # USD per document read

MAX_ALERTS = 100
MAX_SLOW_QUERIES = 50
MAX_EVENTS = 1000
MAX_LOAD_TIMES = 1000
ACTIVE_ALERT_SECONDS = 5 * 60
RECENT_ALERT_SECONDS = 15 * 60

ALERT_LEVELS = ("info", "warning", "error", "critical")

LOG_METHOD = {
    "info": logger.info,
    "warning": logger.warning,
    "error": logger.error,
    "critical": logger.critical,
}


def _empty_metrics(session_start: float) -> dict:
    return {
        "store_reads": 0,
        "store_cache_hits": 0,
        "local_cache_hits": 0,
        "total_requests": 0,
        "load_times": deque(maxlen=MAX_LOAD_TIMES),
        "slow_queries": [],
        "estimated_cost": 0.0,
        "cost_saved": 0.0,
        "errors": 0,
        "fallbacks": 0,
        "recoveries": 0,
        "session_start": session_start,
        "last_reset": session_start,
    }


class PerformanceMonitor:
    def __init__(self, timer: Callable[[], float] = time.time):
        self._timer = timer
        self.metrics = _empty_metrics(timer())
        self.alerts: list[dict] = []
        self.events: list[dict] = []
        self.is_monitoring = True
        self._notifiers: list[Callable[[dict], None]] = []

        logger.info("📊 PerformanceMonitor initialized")

    def add_notifier(self, notifier: Callable[[dict], None]) -> None:
        """Receives every critical alert (the user-facing surface)"""
        self._notifiers.append(notifier)

    # ============================================
    # 📌 TRACKING
    # ============================================

    def track_read(self, operation: str, load_time_ms: float = 0, from_cache: bool = False, reads: int = 1) -> None:
        """One request served from the store (`reads` documents) or the store's cache"""
        if not self.is_monitoring:
            return

        self.metrics["total_requests"] += 1
        if from_cache:
            self.metrics["store_cache_hits"] += 1
        else:
            self.metrics["store_reads"] += reads
            self.metrics["estimated_cost"] += reads * COST_PER_READ

        if load_time_ms > 0:
            self.metrics["load_times"].append(load_time_ms)
            if load_time_ms > SLOW_QUERY_MS:
                self._track_slow_query(operation, load_time_ms)
            average = self._average_load_time()
            if average > TARGET_LOAD_TIME_MS:
                self.create_alert(
                    "warning",
                    f"Average load time {average:.0f}ms exceeds target {TARGET_LOAD_TIME_MS}ms",
                    {"operation": operation, "load_time_ms": load_time_ms, "target": TARGET_LOAD_TIME_MS},
                )

        if self.metrics["store_reads"] > TARGET_READS_PER_REQUEST * self.metrics["total_requests"]:
            self.create_alert(
                "warning",
                f"Read count {self.metrics['store_reads']} exceeds target",
                {
                    "reads": self.metrics["store_reads"],
                    "requests": self.metrics["total_requests"],
                    "target": TARGET_READS_PER_REQUEST,
                },
            )

        self._log_event("read", {
            "operation": operation,
            "load_time_ms": load_time_ms,
            "from_cache": from_cache,
            "total_reads": self.metrics["store_reads"],
        })

    def track_cache_hit(self, operation: str, load_time_ms: float = 0) -> None:
        if not self.is_monitoring:
            return

        self.metrics["total_requests"] += 1
        self.metrics["local_cache_hits"] += 1
        if load_time_ms > 0:
            self.metrics["load_times"].append(load_time_ms)
        self.metrics["cost_saved"] += COST_PER_READ

        self._log_event("cache_hit", {
            "operation": operation,
            "load_time_ms": load_time_ms,
            "total_cache_hits": self.metrics["local_cache_hits"],
        })

    def track_error(
        self,
        error: BaseException,
        operation: str,
        recovered: bool = False,
        failed_request: bool = True,
    ) -> None:
        """
        A request that ended in an error. Every failed request is counted as
        a request too, so the error rate stays a share of all requests.

        failed_request=False records an error another path absorbed (the
        request is counted when that path answers it).
        """
        if not self.is_monitoring:
            return

        if failed_request:
            self.metrics["total_requests"] += 1
            self.metrics["errors"] += 1
            if recovered:
                self.metrics["recoveries"] += 1
        else:
            self.metrics["fallbacks"] += 1

        self.create_alert(
            "error",
            f"Error in {operation}: {error}",
            {"error": str(error), "operation": operation, "recovered": recovered},
        )
        self._log_event("error", {"operation": operation, "error": str(error), "recovered": recovered})

        if not failed_request:
            return

        error_rate = self.metrics["errors"] / self.metrics["total_requests"]
        if error_rate > ERROR_RATE_THRESHOLD:
            self.create_alert(
                "critical",
                f"Error rate {error_rate * 100:.1f}% exceeds threshold",
                {
                    "error_rate": error_rate,
                    "threshold": ERROR_RATE_THRESHOLD,
                    "total_errors": self.metrics["errors"],
                    "total_requests": self.metrics["total_requests"],
                },
            )

    def _track_slow_query(self, operation: str, load_time_ms: float) -> None:
        slow = self.metrics["slow_queries"]
        slow.append({"operation": operation, "load_time_ms": load_time_ms, "timestamp": self._timer()})
        if len(slow) > MAX_SLOW_QUERIES:
            slow.pop(0)
        logger.warning(f"🐌 Slow query detected: {operation} took {load_time_ms:.0f}ms")

    def create_alert(self, level: str, message: str, details: Optional[dict] = None) -> dict:
        if level not in ALERT_LEVELS:
            raise ValueError(f"Unknown alert level: {level}")

        alert = {
            "id": uuid.uuid4().hex[:12],
            "level": level,
            "message": message,
            "details": details or {},
            "timestamp": self._timer(),
        }
        self.alerts.append(alert)
        if len(self.alerts) > MAX_ALERTS:
            self.alerts.pop(0)

        LOG_METHOD[level](f"🚨 Performance alert [{level.upper()}]: {message}")

        if level == "critical":
            for notify in self._notifiers:
                try:
                    notify(alert)
                except Exception as e:
                    # Notifier failures are logged, never raised
                    logger.error(f"❌ Alert notifier failed: {e}")
        return alert

    def _log_event(self, event_type: str, data: dict) -> None:
        self.events.append({"type": event_type, "data": data, "timestamp": self._timer()})
        if len(self.events) > MAX_EVENTS:
            self.events.pop(0)

    # ============================================
    # 📌 REPORTING
    # ============================================

    def _average_load_time(self) -> float:
        load_times = self.metrics["load_times"]
        return sum(load_times) / len(load_times) if load_times else 0.0

    def get_metrics(self) -> dict:
        now = self._timer()
        m = self.metrics
        requests = m["total_requests"]
        return {
            "store_reads": m["store_reads"],
            "local_cache_hits": m["local_cache_hits"],
            "store_cache_hits": m["store_cache_hits"],
            "total_requests": requests,
            "average_load_time_ms": round(self._average_load_time(), 2),
            "slow_queries": len(m["slow_queries"]),
            "reads_per_request": round(m["store_reads"] / requests, 2) if requests else 0.0,
            "cache_hit_rate": (
                round((m["local_cache_hits"] + m["store_cache_hits"]) / requests * 100, 1) if requests else 0.0
            ),
            "estimated_cost": round(m["estimated_cost"], 6),
            "cost_saved": round(m["cost_saved"], 6),
            "error_rate": round(m["errors"] / requests * 100, 1) if requests else 0.0,
            "recovery_rate": round(m["recoveries"] / m["errors"] * 100, 1) if m["errors"] else 0.0,
            "fallbacks": m["fallbacks"],
            "session_duration_seconds": int(now - m["session_start"]),
            "active_alerts": sum(1 for a in self.alerts if now - a["timestamp"] < ACTIVE_ALERT_SECONDS),
        }

    def performance_comparison(self, metrics: Optional[dict] = None) -> dict:
        metrics = metrics or self.get_metrics()
        error_target = ERROR_RATE_THRESHOLD * 100
        return {
            "load_time": {
                "target": TARGET_LOAD_TIME_MS,
                "actual": metrics["average_load_time_ms"],
                "status": "good" if metrics["average_load_time_ms"] <= TARGET_LOAD_TIME_MS else "poor",
            },
            "reads_per_request": {
                "target": TARGET_READS_PER_REQUEST,
                "actual": metrics["reads_per_request"],
                "status": "good" if metrics["reads_per_request"] <= TARGET_READS_PER_REQUEST else "poor",
            },
            "error_rate": {
                "target": error_target,
                "actual": metrics["error_rate"],
                "status": "good" if metrics["error_rate"] <= error_target else "poor",
            },
        }

    def generate_report(self) -> dict:
        metrics = self.get_metrics()
        comparison = self.performance_comparison(metrics)
        now = self._timer()
        total_cost = metrics["estimated_cost"] + metrics["cost_saved"]

        return {
            "summary": {
                "status": overall_status(comparison),
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "session_duration_seconds": metrics["session_duration_seconds"],
            },
            "performance": metrics,
            "targets": comparison,
            "alerts": {
                "total": len(self.alerts),
                "active": metrics["active_alerts"],
                "recent": [a for a in self.alerts if now - a["timestamp"] < RECENT_ALERT_SECONDS],
            },
            "optimization": {
                "cost_savings": {
                    "total": metrics["cost_saved"],
                    "percentage": round(metrics["cost_saved"] / total_cost * 100, 1) if total_cost else 0.0,
                },
                "efficiency": {
                    "cache_effectiveness": metrics["cache_hit_rate"],
                    "read_optimization": round(
                        TARGET_READS_PER_REQUEST / max(metrics["reads_per_request"], 0.1), 2
                    ),
                },
            },
            "recommendations": recommendations(metrics, comparison),
        }

    def reset_metrics(self) -> None:
        session_start = self.metrics["session_start"]
        self.metrics = _empty_metrics(session_start)
        self.metrics["last_reset"] = self._timer()
        logger.info("📊 Performance metrics reset")

    def start_monitoring(self) -> None:
        self.is_monitoring = True
        logger.info("📊 Performance monitoring started")

    def stop_monitoring(self) -> None:
        self.is_monitoring = False
        logger.info("📊 Performance monitoring stopped")


def recommendations(metrics: dict, comparison: dict) -> list[dict]:
    found = []
    if comparison["load_time"]["status"] == "poor":
        found.append({
            "type": "performance",
            "priority": "high",
            "message": f"Average load time {metrics['average_load_time_ms']}ms exceeds target {TARGET_LOAD_TIME_MS}ms",
            "action": "Enable more aggressive caching or optimize query patterns",
        })
    if comparison["reads_per_request"]["status"] == "poor":
        found.append({
            "type": "efficiency",
            "priority": "high",
            "message": (
                f"Average {metrics['reads_per_request']} reads per request exceeds target {TARGET_READS_PER_REQUEST}"
            ),
            "action": "Check for weeks still being migrated or refreshed on every request",
        })
    if metrics["cache_hit_rate"] < 80:
        found.append({
            "type": "caching",
            "priority": "medium",
            "message": f"Cache hit rate {metrics['cache_hit_rate']}% could be improved",
            "action": "Increase cache duration or pre-warm frequently accessed data",
        })
    if comparison["error_rate"]["status"] == "poor":
        found.append({
            "type": "reliability",
            "priority": "critical",
            "message": f"Error rate {metrics['error_rate']}% is too high",
            "action": "Investigate error patterns and improve fallback mechanisms",
        })
    return found


def overall_status(comparison: dict) -> str:
    statuses = [c["status"] for c in comparison.values()]
    good = statuses.count("good")
    if good == len(statuses):
        return "excellent"
    if good >= len(statuses) / 2:
        return "good"
    return "needs_attention"
