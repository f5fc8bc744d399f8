import logging
import secrets
import string
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signdoc.auth.schemas import Caller
from signdoc.common.base_models import utcnow
from signdoc.common.errors import Forbidden, KindMismatch, NotFound
from signdoc.common.pagination import PaginationParams
from signdoc.config import settings
from signdoc.documents.locks import run_locked
from signdoc.documents.models import Document, DocumentEvent, DocumentKind, DocumentStatus, ReceiptRole, Signer
from signdoc.documents.permissions import can_mutate, check_can_delete, check_can_edit, check_can_sign, resolve_signer
from signdoc.documents.schemas import DocumentCreate, DocumentEdit, SignerTarget
from signdoc.documents.status import derive_status, set_payload
from signdoc.signatures.service import to_storage, validate_signature

logger = logging.getLogger(__name__)

DOCUMENT_ID_ALPHABET = string.digits + string.ascii_uppercase


@dataclass
class SignatureOutcome:
    document: Document
    # True only for the call that moved the document into ``signed``.
    completed: bool


def generate_document_id() -> str:
    suffix = "".join(secrets.choice(DOCUMENT_ID_ALPHABET) for _ in range(settings.document_id_length))
    return f"{settings.document_id_prefix}{suffix}"


def _record_event(
    db: AsyncSession,
    document_id: str,
    action: str,
    actor: str,
    signer_slot: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    details: Optional[str] = None,
) -> None:
    db.add(
        DocumentEvent(
            document_id=document_id,
            action=action,
            actor=actor,
            signer_slot=signer_slot,
            ip_address=ip_address,
            user_agent=user_agent,
            details=details,
            timestamp=utcnow(),
        )
    )


async def _load(db: AsyncSession, document_id: str) -> Document:
    result = await db.execute(select(Document).where(Document.id == document_id))
    document = result.scalar_one_or_none()
    if document is None:
        raise NotFound(document_id)
    return document


def _slot_ids(data: DocumentCreate) -> list[str]:
    taken = {s.id for s in data.signers if s.id is not None}
    slot_ids = []
    for signer_data in data.signers:
        if signer_data.id is not None:
            slot_ids.append(signer_data.id)
            continue
        slot_id = f"signer-{secrets.token_hex(4)}"
        while slot_id in taken:
            slot_id = f"signer-{secrets.token_hex(4)}"
        taken.add(slot_id)
        slot_ids.append(slot_id)
    return slot_ids


# ── Create / read ──────────────────────────────────────────────────────────────


async def create_document(
    db: AsyncSession,
    data: DocumentCreate,
    owner_user_id: Optional[str] = None,
    actor: str = "anonymous",
) -> Document:
    document = Document(id=generate_document_id(), owner_user_id=owner_user_id, status=DocumentStatus.pending)
    set_payload(document, data.payload)
    now = utcnow()

    if data.kind == DocumentKind.contract:
        document.signers = [
            Signer(
                slot_id=slot_id,
                order=index,
                role=signer_data.role,
                name=signer_data.name,
                job_title=signer_data.job_title,
                organization=signer_data.organization,
                id_number=signer_data.id_number,
                phone=signer_data.phone,
                email=signer_data.email,
                address=signer_data.address,
                signed=False,
            )
            for index, (slot_id, signer_data) in enumerate(zip(_slot_ids(data), data.signers), start=1)
        ]
    else:
        # The issuer may sign a role while authoring; it goes through the
        # same parser as any other signature.
        if data.signature_sender is not None:
            document.signature_sender = to_storage(validate_signature(data.signature_sender))
            document.sender_signed_at = now
        if data.signature_receiver is not None:
            document.signature_receiver = to_storage(validate_signature(data.signature_receiver))
            document.receiver_signed_at = now

    document.status = derive_status(document)
    if document.status == DocumentStatus.signed:
        document.signed_at = now

    db.add(document)
    await db.flush()
    _record_event(db, document.id, "created", actor, details=f"kind={document.kind.value}")
    await db.flush()
    await db.refresh(document)
    logger.info("Created %s document %s (status=%s)", document.kind.value, document.id, document.status.value)
    return document


async def get_document(db: AsyncSession, document_id: str) -> Document:
    return await _load(db, document_id)


async def list_documents(db: AsyncSession, caller: Caller, params: PaginationParams) -> tuple[list[Document], int]:
    if not caller.is_authenticated:
        return [], 0

    query = select(Document)
    if not caller.is_admin:
        query = query.where(Document.owner_user_id == caller.user_id)

    count_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = count_result.scalar_one()

    query = query.order_by(Document.created_at.desc(), Document.id).offset(params.offset).limit(params.page_size)
    result = await db.execute(query)
    return list(result.scalars().all()), total


async def get_events(db: AsyncSession, document_id: str, caller: Caller) -> list[DocumentEvent]:
    document = await _load(db, document_id)
    if not can_mutate(caller, document):
        raise Forbidden(f"Not allowed to read the history of document '{document_id}'")
    result = await db.execute(
        select(DocumentEvent)
        .where(DocumentEvent.document_id == document_id)
        .order_by(DocumentEvent.timestamp, DocumentEvent.id)
    )
    return list(result.scalars().all())


# ── Transitions ────────────────────────────────────────────────────────────────


async def apply_edit(
    sessions: async_sessionmaker[AsyncSession],
    document_id: str,
    caller: Caller,
    patch: DocumentEdit,
) -> Document:
    async def operation(db: AsyncSession) -> Document:
        document = await _load(db, document_id)
        check_can_edit(caller, document)

        requested = DocumentKind(patch.payload.kind)
        if (document.kind == DocumentKind.contract) != (requested == DocumentKind.contract):
            raise KindMismatch(document_id, document.kind.value, requested.value)

        previous_kind = document.kind
        set_payload(document, patch.payload)
        document.updated_at = utcnow()
        details = None if previous_kind == requested else f"kind {previous_kind.value} -> {requested.value}"
        _record_event(db, document_id, "edited", caller.label, details=details)
        await db.flush()
        await db.refresh(document)
        return document

    document = await run_locked(sessions, document_id, operation)
    logger.info("Document %s edited by %s", document_id, caller.label)
    return document


async def apply_delete(sessions: async_sessionmaker[AsyncSession], document_id: str, caller: Caller) -> None:
    async def operation(db: AsyncSession) -> None:
        document = await _load(db, document_id)
        check_can_delete(caller, document)
        await db.execute(delete(DocumentEvent).where(DocumentEvent.document_id == document_id))
        await db.delete(document)
        await db.flush()

    await run_locked(sessions, document_id, operation)
    logger.info("Document %s deleted by %s", document_id, caller.label)


async def apply_signature(
    sessions: async_sessionmaker[AsyncSession],
    document_id: str,
    target: SignerTarget,
    raw_signature: Any,
    caller: Optional[Caller] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> SignatureOutcome:
    """Sign one slot (contract) or role (receipt kinds) of a document.

    The whole read, check and write runs under the document's lock, so a
    second attempt at the same slot always sees the first one and fails
    with ``AlreadySigned``.
    """
    caller = caller or Caller.anonymous()

    async def operation(db: AsyncSession) -> SignatureOutcome:
        document = await _load(db, document_id)
        signature = validate_signature(raw_signature)
        check_can_sign(caller, document, target)

        previous = derive_status(document)
        now = utcnow()
        stored = to_storage(signature)

        if document.kind == DocumentKind.contract:
            signer = resolve_signer(document, target)
            signer.signed = True
            signer.signature_data = stored
            signer.signed_at = now
            signer.signed_ip = ip_address
            signer.signed_user_agent = user_agent
        elif target.role == ReceiptRole.sender:
            document.signature_sender = stored
            document.sender_signed_at = now
        else:
            document.signature_receiver = stored
            document.receiver_signed_at = now

        document.status = derive_status(document)
        completed = document.status == DocumentStatus.signed and previous != DocumentStatus.signed
        if completed:
            document.signed_at = now
        # Touch the row so the version check covers signer-only changes too.
        document.updated_at = now

        _record_event(
            db,
            document_id,
            "signed",
            caller.label,
            signer_slot=target.label,
            ip_address=ip_address,
            user_agent=user_agent,
            details=f"type={signature.type}",
        )
        if completed:
            _record_event(db, document_id, "completed", caller.label)
        await db.flush()
        await db.refresh(document)
        return SignatureOutcome(document=document, completed=completed)

    outcome = await run_locked(sessions, document_id, operation)
    logger.info(
        "Document %s signed by %s (status=%s)", document_id, target.label, outcome.document.status.value
    )
    if outcome.completed:
        logger.info("Document %s is fully signed", document_id)
    return outcome
