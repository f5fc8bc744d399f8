import logging
from typing import Annotated, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signdoc.auth.schemas import Caller
from signdoc.common.errors import NotFound
from signdoc.common.pagination import Page, PaginationParams
from signdoc.config import settings
from signdoc.database import get_db, get_sessionmaker
from signdoc.dependencies import get_caller, require_authenticated
from signdoc.documents.models import DocumentKind, ReceiptRole
from signdoc.documents.permissions import resolve_signer
from signdoc.documents.schemas import (
    DocumentCreate,
    DocumentCreatedResponse,
    DocumentEdit,
    DocumentEventResponse,
    DocumentResponse,
    SignerTarget,
    SignRequest,
    SignResponse,
    ViewResponse,
)
from signdoc.documents.service import (
    apply_delete,
    apply_edit,
    apply_signature,
    create_document,
    get_document,
    get_events,
    list_documents,
)
from signdoc.documents.tracking import record_view_if_eligible
from signdoc.signatures.schemas import SignaturePreview
from signdoc.signatures.service import render_preview, validate_signature

logger = logging.getLogger(__name__)

router = APIRouter()


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def signing_url(document_id: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/?id={document_id}"


@router.post("", response_model=DocumentCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create(
    data: DocumentCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    caller: Annotated[Caller, Depends(require_authenticated)],
):
    # Admin-created documents are not owned by anyone in particular.
    owner_user_id = None if caller.is_admin else caller.user_id
    document = await create_document(db, data, owner_user_id=owner_user_id, actor=caller.label)
    return DocumentCreatedResponse(document=DocumentResponse.model_validate(document), url=signing_url(document.id))


@router.get("", response_model=Page[DocumentResponse])
async def list_all(
    db: Annotated[AsyncSession, Depends(get_db)],
    caller: Annotated[Caller, Depends(get_caller)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=25, ge=1, le=100),
):
    params = PaginationParams(page=page, page_size=page_size)
    documents, total = await list_documents(db, caller, params)
    items = [DocumentResponse.model_validate(d) for d in documents]
    return Page[DocumentResponse].build(items=items, total=total, params=params)


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_detail(
    document_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await get_document(db, document_id)


@router.put("/{document_id}", response_model=DocumentResponse)
async def edit(
    document_id: str,
    patch: DocumentEdit,
    sessions: Annotated[async_sessionmaker[AsyncSession], Depends(get_sessionmaker)],
    caller: Annotated[Caller, Depends(get_caller)],
):
    return await apply_edit(sessions, document_id, caller, patch)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove(
    document_id: str,
    sessions: Annotated[async_sessionmaker[AsyncSession], Depends(get_sessionmaker)],
    caller: Annotated[Caller, Depends(get_caller)],
):
    await apply_delete(sessions, document_id, caller)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{document_id}/sign", response_model=SignResponse)
async def sign(
    document_id: str,
    data: SignRequest,
    request: Request,
    sessions: Annotated[async_sessionmaker[AsyncSession], Depends(get_sessionmaker)],
    caller: Annotated[Caller, Depends(get_caller)],
):
    target = SignerTarget(signer_id=data.signer_id, role=data.role)
    outcome = await apply_signature(
        sessions,
        document_id,
        target,
        data.signature,
        caller=caller,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    if outcome.completed:
        # Delivery belongs to the notification service; it keys off this flag.
        logger.info("Document %s completed; notification may be sent", document_id)
    return SignResponse(document=DocumentResponse.model_validate(outcome.document), completed=outcome.completed)


@router.post("/{document_id}/views", response_model=ViewResponse)
async def record_view(
    document_id: str,
    request: Request,
    sessions: Annotated[async_sessionmaker[AsyncSession], Depends(get_sessionmaker)],
    caller: Annotated[Caller, Depends(get_caller)],
):
    view = await record_view_if_eligible(
        sessions,
        document_id,
        caller,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return ViewResponse(viewed_at=view.viewed_at, tracked=view.tracked)


@router.get("/{document_id}/events", response_model=list[DocumentEventResponse])
async def list_events(
    document_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    caller: Annotated[Caller, Depends(get_caller)],
):
    return await get_events(db, document_id, caller)


@router.get("/{document_id}/signatures/preview", response_model=SignaturePreview)
async def preview_signature(
    document_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    signer_id: Optional[str] = None,
    role: Optional[ReceiptRole] = None,
    width: Optional[int] = Query(default=None, ge=50, le=2000),
    height: Optional[int] = Query(default=None, ge=20, le=1000),
    format: Literal["json", "svg"] = "json",
):
    try:
        target = SignerTarget(signer_id=signer_id, role=role)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False))

    document = await get_document(db, document_id)
    if document.kind != DocumentKind.contract and target.role is not None:
        stored = document.role_signature(target.role)
    else:
        stored = resolve_signer(document, target).signature_data

    if stored is None:
        raise NotFound(document_id, f"'{target.label}' has not signed document '{document_id}'")

    preview = render_preview(validate_signature(stored), width=width, height=height)
    if format == "svg":
        return Response(content=preview.to_svg(), media_type="image/svg+xml")
    return preview
