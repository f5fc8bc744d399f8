import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signdoc.auth.schemas import Caller
from signdoc.common.base_models import ensure_utc, utcnow
from signdoc.common.errors import NotFound
from signdoc.documents.locks import run_locked
from signdoc.documents.models import Document, DocumentEvent

logger = logging.getLogger(__name__)


@dataclass
class ViewResult:
    viewed_at: Optional[datetime]
    tracked: bool


async def record_view_if_eligible(
    sessions: async_sessionmaker[AsyncSession],
    document_id: str,
    caller: Caller,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> ViewResult:
    """Record the first time a counterparty opens the document.

    Staff (any authenticated caller) never count as a view, and once
    ``viewed_at`` is set it is never moved.
    """

    async def operation(db: AsyncSession) -> ViewResult:
        result = await db.execute(select(Document).where(Document.id == document_id))
        document = result.scalar_one_or_none()
        if document is None:
            raise NotFound(document_id)

        if caller.is_authenticated or document.viewed_at is not None:
            return ViewResult(viewed_at=ensure_utc(document.viewed_at), tracked=False)

        now = utcnow()
        document.viewed_at = now
        db.add(
            DocumentEvent(
                document_id=document_id,
                action="viewed",
                actor=caller.label,
                ip_address=ip_address,
                user_agent=user_agent,
                timestamp=now,
            )
        )
        await db.flush()
        return ViewResult(viewed_at=now, tracked=True)

    view = await run_locked(sessions, document_id, operation)
    if view.tracked:
        logger.info("Document %s opened for the first time", document_id)
    return view
