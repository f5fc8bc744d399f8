import uuid
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, model_validator

from signdoc.common.base_models import ensure_utc
from signdoc.documents.models import DocumentKind, DocumentStatus, ReceiptRole
from signdoc.signatures.schemas import Signature

UTCDateTime = Annotated[datetime, AfterValidator(ensure_utc)]

# ── Payload variants ───────────────────────────────────────────────────────────
# A document carries exactly one of these; ``kind`` selects which.


class LegacyReceiptPayload(BaseModel):
    kind: Literal["legacy-receipt"] = "legacy-receipt"
    recipient_name: str = ""
    sender_name: str = ""
    recipient_unit: str = ""
    sender_unit: str = ""
    reason: str = ""
    amount: int = Field(default=0, ge=0)
    amount_in_words: str = ""
    date: str = ""
    place: str = ""


class DynamicField(BaseModel):
    id: str = Field(min_length=1, max_length=100)
    label: str = Field(max_length=255)
    value: str = ""
    type: Literal["text", "textarea", "money"] = "text"


class ReceiptPayload(BaseModel):
    kind: Literal["receipt"] = "receipt"
    title: str = Field(min_length=1, max_length=500)
    fields: list[DynamicField] = []
    date: str = ""
    place: str = ""


class ContractMetadata(BaseModel):
    contract_number: Optional[str] = None
    created_date: str = ""
    effective_date: Optional[str] = None
    expiry_date: Optional[str] = None
    location: str = ""

    model_config = ConfigDict(extra="allow")


class ContractPayload(BaseModel):
    kind: Literal["contract"] = "contract"
    title: str = Field(min_length=1, max_length=500)
    content: str = ""
    template_id: Optional[str] = None
    metadata: ContractMetadata = Field(default_factory=ContractMetadata)


DocumentPayload = Annotated[
    Union[LegacyReceiptPayload, ReceiptPayload, ContractPayload],
    Field(discriminator="kind"),
]


# ── Create / edit / sign schemas ───────────────────────────────────────────────


class SignerCreate(BaseModel):
    id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    role: str = Field(min_length=1, max_length=100)
    name: str = Field(default="", max_length=255)
    job_title: Optional[str] = Field(default=None, max_length=255)
    organization: Optional[str] = Field(default=None, max_length=255)
    id_number: Optional[str] = Field(default=None, max_length=64)
    phone: Optional[str] = Field(default=None, max_length=64)
    email: Optional[str] = Field(default=None, max_length=255)
    address: Optional[str] = None


class DocumentCreate(BaseModel):
    payload: DocumentPayload
    signers: list[SignerCreate] = []
    # Receipt kinds only: the issuer may sign a role while authoring.
    signature_sender: Optional[Any] = None
    signature_receiver: Optional[Any] = None

    @property
    def kind(self) -> DocumentKind:
        return DocumentKind(self.payload.kind)

    @model_validator(mode="after")
    def check_kind_specific_fields(self) -> "DocumentCreate":
        if self.kind == DocumentKind.contract:
            if not self.signers:
                raise ValueError("A contract needs at least one signer")
            if self.signature_sender is not None or self.signature_receiver is not None:
                raise ValueError("Contracts are signed per signer slot, not per sender/receiver role")
            slot_ids = [s.id for s in self.signers if s.id is not None]
            if len(slot_ids) != len(set(slot_ids)):
                raise ValueError("Signer ids must be unique within a document")
        elif self.signers:
            raise ValueError("Only contracts carry a signer list")
        return self


class DocumentEdit(BaseModel):
    payload: DocumentPayload


class SignerTarget(BaseModel):
    """Which slot to sign: ``signer_id`` for contracts, ``role`` for receipts."""

    signer_id: Optional[str] = None
    role: Optional[ReceiptRole] = None

    @model_validator(mode="after")
    def exactly_one(self) -> "SignerTarget":
        if (self.signer_id is None) == (self.role is None):
            raise ValueError("Provide exactly one of signer_id or role")
        return self

    @property
    def label(self) -> str:
        return self.signer_id if self.signer_id is not None else self.role.value


class SignRequest(SignerTarget):
    # Checked by validate_signature, which reports INVALID_SIGNATURE reasons.
    signature: Any = None


# ── Response schemas ───────────────────────────────────────────────────────────


class SignerResponse(BaseModel):
    id: str = Field(validation_alias=AliasChoices("slot_id", "id"))
    order: int
    role: str
    name: str
    job_title: Optional[str]
    organization: Optional[str]
    id_number: Optional[str]
    phone: Optional[str]
    email: Optional[str]
    address: Optional[str]
    signed: bool
    signature_data: Optional[Signature]
    signed_at: Optional[UTCDateTime]

    model_config = {"from_attributes": True}


class DocumentResponse(BaseModel):
    id: str
    owner_user_id: Optional[str]
    kind: DocumentKind
    payload: DocumentPayload
    status: DocumentStatus
    signers: list[SignerResponse] = []
    signature_sender: Optional[Signature]
    sender_signed_at: Optional[UTCDateTime]
    signature_receiver: Optional[Signature]
    receiver_signed_at: Optional[UTCDateTime]
    viewed_at: Optional[UTCDateTime]
    signed_at: Optional[UTCDateTime]
    created_at: UTCDateTime
    updated_at: UTCDateTime

    model_config = {"from_attributes": True}


class DocumentCreatedResponse(BaseModel):
    document: DocumentResponse
    url: str


class SignResponse(BaseModel):
    document: DocumentResponse
    completed: bool


class ViewResponse(BaseModel):
    viewed_at: Optional[UTCDateTime]
    tracked: bool


class DocumentEventResponse(BaseModel):
    id: uuid.UUID
    document_id: str
    signer_slot: Optional[str]
    action: str
    actor: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    details: Optional[str]
    timestamp: UTCDateTime

    model_config = {"from_attributes": True}
