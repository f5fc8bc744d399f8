"""
Who may do what to a document.

Edit and delete belong to the owner or an admin, and only while the document
is not fully signed. Signing is open to anyone holding the document link:
possession of the id is the credential, so ``check_can_sign`` only looks at
the targeted slot.
"""

from signdoc.auth.schemas import Caller
from signdoc.common.errors import AlreadySigned, Forbidden, FullySigned, SignerNotFound
from signdoc.documents.models import Document, DocumentKind, Signer
from signdoc.documents.schemas import SignerTarget
from signdoc.documents.status import is_fully_signed
from signdoc.signatures.service import is_valid_signature


def can_mutate(caller: Caller, document: Document) -> bool:
    if caller.is_admin:
        return True
    if caller.is_authenticated and caller.user_id is not None:
        return document.owner_user_id == caller.user_id
    return False


def _check_mutation(caller: Caller, document: Document, action: str) -> None:
    # Ownership is checked before the signed state.
    if not can_mutate(caller, document):
        raise Forbidden(f"Not allowed to {action} document '{document.id}'")
    if is_fully_signed(document):
        raise FullySigned(document.id, action)


def check_can_edit(caller: Caller, document: Document) -> None:
    _check_mutation(caller, document, "edit")


def check_can_delete(caller: Caller, document: Document) -> None:
    _check_mutation(caller, document, "delete")


def resolve_signer(document: Document, target: SignerTarget) -> Signer:
    if document.kind != DocumentKind.contract or target.signer_id is None:
        raise SignerNotFound(document.id, target.label)
    signer = document.signer_by_slot(target.signer_id)
    if signer is None:
        raise SignerNotFound(document.id, target.label)
    return signer


def check_can_sign(caller: Caller, document: Document, target: SignerTarget) -> None:
    """Raise unless ``target`` names an unsigned slot on ``document``.

    ``caller`` is accepted for symmetry with the other checks; any caller,
    anonymous included, may sign an open slot.
    """
    if document.kind == DocumentKind.contract:
        if resolve_signer(document, target).signed:
            raise AlreadySigned(document.id, target.label)
        return

    if target.role is None:
        raise SignerNotFound(document.id, target.label)
    if is_valid_signature(document.role_signature(target.role)):
        raise AlreadySigned(document.id, target.label)
