import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from signdoc.common.base_models import TimestampMixin, UUIDBase
from signdoc.database import Base


class DocumentKind(str, enum.Enum):
    legacy_receipt = "legacy-receipt"
    receipt = "receipt"
    contract = "contract"


class DocumentStatus(str, enum.Enum):
    pending = "pending"
    partially_signed = "partially_signed"
    signed = "signed"


class ReceiptRole(str, enum.Enum):
    sender = "sender"
    receiver = "receiver"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Document(Base, TimestampMixin):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    kind: Mapped[DocumentKind] = mapped_column(
        Enum(DocumentKind, name="documentkind", values_callable=_enum_values), nullable=False
    )
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus, name="documentstatus", values_callable=_enum_values),
        default=DocumentStatus.pending,
        nullable=False,
        index=True,
    )

    # Sender / receiver roles of the receipt kinds
    signature_sender: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    sender_signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    signature_receiver: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    receiver_signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    signers = relationship(
        "Signer",
        back_populates="document",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="Signer.order",
    )

    __mapper_args__ = {"version_id_col": version}

    def role_signature(self, role: ReceiptRole) -> Optional[dict]:
        return self.signature_sender if role == ReceiptRole.sender else self.signature_receiver

    def signer_by_slot(self, slot_id: str) -> Optional["Signer"]:
        for signer in self.signers:
            if signer.slot_id == slot_id:
                return signer
        return None


class Signer(UUIDBase):
    __tablename__ = "document_signers"
    __table_args__ = (UniqueConstraint("document_id", "slot_id", name="uq_document_signers_slot"),)

    document_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    slot_id: Mapped[str] = mapped_column(String(64), nullable=False)
    order: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    role: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    job_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    organization: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    id_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    signed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    signature_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    signed_ip: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    signed_user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    document = relationship("Document", back_populates="signers")


class DocumentEvent(UUIDBase):
    __tablename__ = "document_events"

    document_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    signer_slot: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor: Mapped[str] = mapped_column(String(100), nullable=False, default="anonymous")
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

