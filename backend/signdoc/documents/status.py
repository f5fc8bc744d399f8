from typing import Union

from signdoc.documents.models import Document, DocumentKind, DocumentStatus, ReceiptRole
from signdoc.documents.schemas import ContractPayload, LegacyReceiptPayload, ReceiptPayload
from signdoc.signatures.service import is_valid_signature


def derive_status(document: Document) -> DocumentStatus:
    """Recompute status from signer state; the stored value is never trusted.

    Receipt kinds have no partial state: both roles signed, or pending.
    """
    if document.kind == DocumentKind.contract:
        signers = list(document.signers)
        signed = sum(1 for signer in signers if signer.signed)
        if signers and signed == len(signers):
            return DocumentStatus.signed
        if signed:
            return DocumentStatus.partially_signed
        return DocumentStatus.pending

    if all(is_valid_signature(document.role_signature(role)) for role in ReceiptRole):
        return DocumentStatus.signed
    return DocumentStatus.pending


def is_fully_signed(document: Document) -> bool:
    return derive_status(document) == DocumentStatus.signed


def set_payload(document: Document, payload: Union[LegacyReceiptPayload, ReceiptPayload, ContractPayload]) -> None:
    # kind and payload are always replaced together.
    document.kind = DocumentKind(payload.kind)
    document.payload = payload.model_dump(mode="json")
