"""
Per-document serialization of read-modify-write cycles.

Two layers keep concurrent mutations of one document from losing updates:

- an in-process ``asyncio.Lock`` per document id, held across the whole
  read, mutate and commit; and
- the ``version`` column on ``Document`` (SQLAlchemy ``version_id_col``),
  which catches writers in other processes as ``StaleDataError``.

A stale write rolls back and the operation is replayed from the read, so
every check runs against fresh state. After ``store_max_retries`` attempts
the caller gets ``StoreConflict``.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from signdoc.common.errors import StoreConflict
from signdoc.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DocumentLocks:
    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, document_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(document_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[document_id] = lock
        # Removal goes by holder count: a released lock may still have a
        # waiter that has not woken up.
        self._holders[document_id] = self._holders.get(document_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[document_id] -= 1
            if self._holders[document_id] == 0:
                del self._holders[document_id]
                del self._locks[document_id]


document_locks = DocumentLocks()


async def run_locked(
    sessions: async_sessionmaker[AsyncSession],
    document_id: str,
    operation: Callable[[AsyncSession], Awaitable[T]],
    max_attempts: Optional[int] = None,
) -> T:
    """Run ``operation`` in its own transaction while holding the document's lock.

    ``operation`` must load the document itself, since it is replayed from
    scratch after a stale write.
    """
    attempts = max_attempts or settings.store_max_retries
    async with document_locks.hold(document_id):
        for attempt in range(1, attempts + 1):
            async with sessions() as db:
                try:
                    result = await operation(db)
                    await db.commit()
                    return result
                except StaleDataError:
                    await db.rollback()
                    logger.warning(
                        "Stale write on document %s (attempt %d/%d)", document_id, attempt, attempts
                    )
    raise StoreConflict(document_id, attempts)
