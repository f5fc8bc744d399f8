"""
Domain errors for the signing lifecycle.

Every rejected transition raises one of these instead of a bare ValueError,
so the HTTP layer can turn it into a stable machine-readable ``code``.
Business-rule rejections (FULLY_SIGNED, ALREADY_SIGNED) are kept apart from
NOT_FOUND / FORBIDDEN so a client can render "already handled" rather than
"access denied".
"""

import enum
import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class InvalidSignatureReason(str, enum.Enum):
    empty_strokes = "EMPTY_STROKES"
    empty_text = "EMPTY_TEXT"
    unrecognized_format = "UNRECOGNIZED_FORMAT"


class SigningError(Exception):
    code: str = "SIGNING_ERROR"
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class NotFound(SigningError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, document_id: str, message: Optional[str] = None):
        self.document_id = document_id
        super().__init__(message or f"Document '{document_id}' not found")


class SignerNotFound(NotFound):
    def __init__(self, document_id: str, target: str):
        self.target = target
        super().__init__(document_id, f"Signer '{target}' not found on document '{document_id}'")


class Forbidden(SigningError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class FullySigned(SigningError):
    code = "FULLY_SIGNED"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, document_id: str, action: str):
        self.document_id = document_id
        self.action = action
        super().__init__(f"Cannot {action} document '{document_id}': it is fully signed")


class AlreadySigned(SigningError):
    code = "ALREADY_SIGNED"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, document_id: str, target: str):
        self.document_id = document_id
        self.target = target
        super().__init__(f"'{target}' has already signed document '{document_id}'")


class InvalidSignature(SigningError):
    code = "INVALID_SIGNATURE"
    status_code = 422

    def __init__(self, reason: InvalidSignatureReason, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or f"Invalid signature: {reason.value}")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "reason": self.reason.value}


class KindMismatch(SigningError):
    code = "KIND_MISMATCH"
    status_code = 422

    def __init__(self, document_id: str, current: str, requested: str):
        self.document_id = document_id
        super().__init__(f"Document '{document_id}' is a {current}; it cannot become a {requested}")


class StoreConflict(SigningError):
    """Optimistic-concurrency retries ran out. Safe to retry the whole call."""

    code = "STORE_CONFLICT"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, document_id: str, attempts: int):
        self.document_id = document_id
        self.attempts = attempts
        super().__init__(f"Document '{document_id}' changed concurrently; gave up after {attempts} attempt(s)")


async def signing_error_handler(request: Request, exc: SigningError) -> JSONResponse:
    logger.warning("%s %s rejected: %s (%s)", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SigningError, signing_error_handler)
