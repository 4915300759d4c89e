"""
📄 DocumentStore - path-addressed documents on top of MongoDB

The confidence core addresses documents by hierarchical logical paths
(pools/{pool}/confidence/{season}/weeks/{week}). Each path maps to one
document in the `documents` collection, keyed by `_id = path`.

Driver exceptions are translated here into the typed errors of
confidence_pool.core.errors.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Awaitable, Callable, Optional, TypeVar

from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase
from pymongo.errors import (
    ConnectionFailure,
    DocumentTooLarge,
    ExecutionTimeout,
    OperationFailure,
    PyMongoError,
)

from confidence_pool.core.errors import (
    StoreError,
    StorePermissionError,
    StoreResourceError,
    StoreUnavailableError,
    TransactionFailedError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Server error codes
UNAUTHORIZED_CODES = {13, 18, 8000}  # Unauthorized, AuthenticationFailed, Atlas auth
EXCEEDED_MEMORY_LIMIT = 146


class Transaction(ABC):
    """Reads and writes that commit or abort together"""

    @abstractmethod
    async def get(self, path: str) -> Optional[dict]:
        ...

    @abstractmethod
    def set(self, path: str, data: dict) -> None:
        ...


class DocumentStore(ABC):
    """Minimal transactional document store used by the confidence core"""

    @abstractmethod
    async def get(self, path: str) -> Optional[dict]:
        """Returns the document at path, or None when it does not exist"""

    @abstractmethod
    async def set(self, path: str, data: dict) -> None:
        """Creates or replaces the document at path"""

    @abstractmethod
    async def delete(self, path: str) -> bool:
        ...

    @abstractmethod
    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        """
        Runs fn inside a transaction.

        Reads done through the transaction see a consistent snapshot and the
        queued writes are committed only if fn returns without raising.
        """

    @abstractmethod
    async def ping(self) -> bool:
        """Connectivity check used by network recovery"""


@contextmanager
def translate_errors(operation: str, path: str = ""):
    """Re-raise pymongo exceptions as typed store errors"""
    try:
        yield
    except StoreError:
        raise
    except ConnectionFailure as e:
        # AutoReconnect, NetworkTimeout and ServerSelectionTimeoutError land here
        raise StoreUnavailableError(f"{operation} {path}: store unavailable ({e})") from e
    except ExecutionTimeout as e:
        raise StoreUnavailableError(f"{operation} {path}: timed out ({e})") from e
    except DocumentTooLarge as e:
        raise StoreResourceError(f"{operation} {path}: document too large ({e})") from e
    except OperationFailure as e:
        if e.code in UNAUTHORIZED_CODES:
            raise StorePermissionError(f"{operation} {path}: permission denied ({e})") from e
        if e.code == EXCEEDED_MEMORY_LIMIT:
            raise StoreResourceError(f"{operation} {path}: memory limit exceeded ({e})") from e
        raise StoreError(f"{operation} {path}: {e}") from e
    except PyMongoError as e:
        raise StoreError(f"{operation} {path}: {e}") from e


def _strip_id(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    doc = dict(doc)
    doc.pop("_id", None)
    return doc


class MongoTransaction(Transaction):
    def __init__(self, collection, session: AsyncIOMotorClientSession):
        self.collection = collection
        self.session = session
        self._writes: list[tuple[str, dict]] = []

    async def get(self, path: str) -> Optional[dict]:
        with translate_errors("transaction get", path):
            doc = await self.collection.find_one({"_id": path}, session=self.session)
        return _strip_id(doc)

    def set(self, path: str, data: dict) -> None:
        self._writes.append((path, data))

    async def commit_writes(self) -> int:
        for path, data in self._writes:
            with translate_errors("transaction set", path):
                await self.collection.replace_one(
                    {"_id": path},
                    {**data, "_id": path},
                    upsert=True,
                    session=self.session,
                )
        return len(self._writes)


class MongoDocumentStore(DocumentStore):
    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "documents"):
        self.db = db
        self.collection = db[collection_name]

    async def get(self, path: str) -> Optional[dict]:
        with translate_errors("get", path):
            doc = await self.collection.find_one({"_id": path})
        return _strip_id(doc)

    async def set(self, path: str, data: dict) -> None:
        with translate_errors("set", path):
            await self.collection.replace_one({"_id": path}, {**data, "_id": path}, upsert=True)

    async def delete(self, path: str) -> bool:
        with translate_errors("delete", path):
            result = await self.collection.delete_one({"_id": path})
        return result.deleted_count > 0

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        async def body(session: AsyncIOMotorClientSession) -> T:
            txn = MongoTransaction(self.collection, session)
            result = await fn(txn)
            await txn.commit_writes()
            return result

        try:
            with translate_errors("transaction"):
                async with await self.db.client.start_session() as session:
                    # with_transaction retries the body on transient conflicts,
                    # re-reading inside the transaction each time
                    return await session.with_transaction(body)
        except StoreError as e:
            if isinstance(e, (StoreUnavailableError, StorePermissionError)):
                raise
            raise TransactionFailedError(str(e)) from e

    async def ping(self) -> bool:
        try:
            await self.db.command("ping")
            return True
        except PyMongoError as e:
            logger.warning(f"⚠️ Store ping failed: {e}")
            return False

