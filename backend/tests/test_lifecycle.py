"""
Tests for the signing lifecycle service.

Covers create, sign, edit and delete transitions, concurrent signing on one
document, the optimistic-concurrency retry, listing and the event trail.
"""

import asyncio

import pytest
from sqlalchemy import text

from signdoc.common.base_models import ensure_utc, utcnow
from signdoc.common.errors import (
    AlreadySigned,
    Forbidden,
    FullySigned,
    InvalidSignature,
    InvalidSignatureReason,
    KindMismatch,
    NotFound,
    SignerNotFound,
    StoreConflict,
)
from signdoc.common.pagination import PaginationParams
from signdoc.config import settings
from signdoc.documents import service
from signdoc.documents.locks import document_locks, run_locked
from signdoc.documents.models import DocumentKind, DocumentStatus, ReceiptRole
from signdoc.documents.schemas import DocumentCreate, DocumentEdit, SignerTarget
from signdoc.documents.service import (
    SignatureOutcome,
    apply_delete,
    apply_edit,
    apply_signature,
    generate_document_id,
    get_document,
    get_events,
    list_documents,
)
from tests.conftest import (
    ContractFactory,
    LegacyReceiptFactory,
    ReceiptFactory,
    SignerFactory,
    drawn,
    insert_document,
    typed,
)


async def _reload(sessions, document_id):
    async with sessions() as db:
        return await get_document(db, document_id)


def _slot(document, slot_id):
    return document.signer_by_slot(slot_id)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

class TestCreateDocument:
    async def test_contract_starts_pending(self, sessions, contract):
        assert contract.id.startswith("3DO-")
        assert contract.kind == DocumentKind.contract
        assert contract.status == DocumentStatus.pending
        assert contract.owner_user_id == "u1"
        assert [s.slot_id for s in contract.signers] == ["s1", "s2"]
        assert [s.order for s in contract.signers] == [1, 2]
        assert not any(s.signed for s in contract.signers)
        assert contract.signed_at is None
        assert contract.viewed_at is None

    async def test_slot_ids_are_generated_when_missing(self, sessions):
        data = ContractFactory(signers=[{"role": "Party A"}, {"role": "Party B"}])
        document = await insert_document(sessions, data)
        slot_ids = [s.slot_id for s in document.signers]
        assert all(slot_id.startswith("signer-") for slot_id in slot_ids)
        assert len(set(slot_ids)) == 2

    async def test_receipt_with_issuer_signature(self, sessions):
        data = ReceiptFactory(signature_receiver=typed("Issuer"))
        document = await insert_document(sessions, data)
        assert document.status == DocumentStatus.pending
        assert document.signature_receiver["text"] == "Issuer"
        assert document.receiver_signed_at is not None
        assert document.signature_sender is None

    async def test_receipt_signed_at_creation(self, sessions):
        data = LegacyReceiptFactory(signature_sender=[[{"x": 1, "y": 1, "time": 0}]], signature_receiver=typed())
        document = await insert_document(sessions, data)
        assert document.status == DocumentStatus.signed
        assert document.signed_at is not None
        # The untagged array is stored in canonical form.
        assert document.signature_sender["type"] == "drawn"

    async def test_invalid_issuer_signature_is_rejected(self, sessions):
        with pytest.raises(InvalidSignature):
            await insert_document(sessions, ReceiptFactory(signature_sender=typed("   ")))

    def test_contract_requires_signers(self):
        with pytest.raises(ValueError):
            DocumentCreate.model_validate(ContractFactory(signers=[]))

    def test_contract_signer_ids_are_unique(self):
        with pytest.raises(ValueError):
            DocumentCreate.model_validate(
                ContractFactory(signers=[{"id": "s1", "role": "A"}, {"id": "s1", "role": "B"}])
            )

    def test_receipts_carry_no_signer_list(self):
        with pytest.raises(ValueError):
            DocumentCreate.model_validate(ReceiptFactory(signers=[{"id": "s1", "role": "A"}]))

    def test_generated_id_format(self):
        document_id = generate_document_id()
        assert document_id.startswith(settings.document_id_prefix)
        suffix = document_id[len(settings.document_id_prefix):]
        assert len(suffix) == settings.document_id_length
        assert suffix.isalnum() and suffix.upper() == suffix


# ---------------------------------------------------------------------------
# Sign
# ---------------------------------------------------------------------------

class TestApplySignature:
    async def test_end_to_end_contract(self, sessions, contract, owner):
        outcome = await apply_signature(sessions, contract.id, SignerTarget(signer_id="s1"), typed("An"))
        assert isinstance(outcome, SignatureOutcome)
        assert outcome.document.status == DocumentStatus.partially_signed
        assert outcome.completed is False
        assert outcome.document.signed_at is None
        s1 = _slot(outcome.document, "s1")
        assert s1.signed is True
        assert s1.signature_data == {"type": "typed", "text": "An", "font_family": None, "color": None}
        assert s1.signed_at is not None

        outcome = await apply_signature(
            sessions, contract.id, SignerTarget(signer_id="s2"), drawn([(0, 0, 0), (5, 5, 1)])
        )
        assert outcome.document.status == DocumentStatus.signed
        assert outcome.completed is True
        assert outcome.document.signed_at is not None
        assert _slot(outcome.document, "s2").signature_data["type"] == "drawn"

        with pytest.raises(FullySigned):
            await apply_delete(sessions, contract.id, owner)
        assert (await _reload(sessions, contract.id)).status == DocumentStatus.signed

    async def test_repeat_signature_is_rejected(self, sessions, contract):
        target = SignerTarget(signer_id="s1")
        await apply_signature(sessions, contract.id, target, typed("An"))
        with pytest.raises(AlreadySigned) as exc_info:
            await apply_signature(sessions, contract.id, target, typed("Someone else"))
        assert exc_info.value.code == "ALREADY_SIGNED"
        reloaded = await _reload(sessions, contract.id)
        assert _slot(reloaded, "s1").signature_data["text"] == "An"

    async def test_invalid_signature_changes_nothing(self, sessions, contract):
        with pytest.raises(InvalidSignature) as exc_info:
            await apply_signature(sessions, contract.id, SignerTarget(signer_id="s1"), {"type": "drawn", "strokes": []})
        assert exc_info.value.reason == InvalidSignatureReason.empty_strokes
        reloaded = await _reload(sessions, contract.id)
        assert reloaded.version == contract.version
        assert not _slot(reloaded, "s1").signed

    async def test_unknown_document(self, sessions):
        with pytest.raises(NotFound):
            await apply_signature(sessions, "3DO-MISSING", SignerTarget(signer_id="s1"), typed())

    async def test_unknown_slot(self, sessions, contract):
        with pytest.raises(SignerNotFound):
            await apply_signature(sessions, contract.id, SignerTarget(signer_id="s9"), typed())

    async def test_signer_audit_fields(self, sessions, contract):
        outcome = await apply_signature(
            sessions,
            contract.id,
            SignerTarget(signer_id="s2"),
            typed("Binh"),
            ip_address="203.0.113.7",
            user_agent="pytest",
        )
        s2 = _slot(outcome.document, "s2")
        assert s2.signed_ip == "203.0.113.7"
        assert s2.signed_user_agent == "pytest"

    async def test_receipt_roles(self, sessions, receipt):
        outcome = await apply_signature(sessions, receipt.id, SignerTarget(role=ReceiptRole.sender), typed("Sender"))
        assert outcome.document.status == DocumentStatus.pending
        assert outcome.document.sender_signed_at is not None
        assert outcome.completed is False

        outcome = await apply_signature(
            sessions, receipt.id, SignerTarget(role=ReceiptRole.receiver), {"type": "type", "typedText": "Receiver"}
        )
        assert outcome.document.status == DocumentStatus.signed
        assert outcome.completed is True
        assert outcome.document.signature_receiver["text"] == "Receiver"

        with pytest.raises(AlreadySigned):
            await apply_signature(sessions, receipt.id, SignerTarget(role=ReceiptRole.sender), typed("Again"))

    async def test_role_target_on_contract(self, sessions, contract):
        with pytest.raises(SignerNotFound):
            await apply_signature(sessions, contract.id, SignerTarget(role=ReceiptRole.sender), typed())


class TestNoResurrection:
    """Once signed, nothing changes the stored document."""

    async def test_signed_document_is_frozen(self, sessions, contract, owner, admin):
        await apply_signature(sessions, contract.id, SignerTarget(signer_id="s1"), typed("An"))
        await apply_signature(sessions, contract.id, SignerTarget(signer_id="s2"), typed("Binh"))
        before = await _reload(sessions, contract.id)

        patch = DocumentEdit.model_validate({"payload": {"kind": "contract", "title": "Changed"}})
        for caller in (owner, admin):
            with pytest.raises(FullySigned):
                await apply_edit(sessions, contract.id, caller, patch)
        for slot_id in ("s1", "s2"):
            with pytest.raises(AlreadySigned):
                await apply_signature(sessions, contract.id, SignerTarget(signer_id=slot_id), typed("Late"))

        after = await _reload(sessions, contract.id)
        assert after.version == before.version
        assert after.payload == before.payload
        assert ensure_utc(after.signed_at) == ensure_utc(before.signed_at)
        assert ensure_utc(after.updated_at) == ensure_utc(before.updated_at)
        assert [s.signature_data for s in after.signers] == [s.signature_data for s in before.signers]


class TestConcurrentSigning:
    async def test_distinct_slots_converge(self, sessions):
        data = ContractFactory(signers=[SignerFactory(id=slot_id) for slot_id in ("A", "B", "C")])
        document = await insert_document(sessions, data)

        outcomes = await asyncio.gather(
            *(
                apply_signature(sessions, document.id, SignerTarget(signer_id=slot_id), typed(f"Signer {slot_id}"))
                for slot_id in ("A", "B", "C")
            )
        )

        final = await _reload(sessions, document.id)
        assert all(s.signed for s in final.signers)
        assert {s.signature_data["text"] for s in final.signers} == {"Signer A", "Signer B", "Signer C"}
        assert final.status == DocumentStatus.signed
        assert final.signed_at is not None
        assert sum(outcome.completed for outcome in outcomes) == 1

    async def test_same_slot_is_exclusive(self, sessions, contract):
        target = SignerTarget(signer_id="s1")
        results = await asyncio.gather(
            apply_signature(sessions, contract.id, target, typed("First")),
            apply_signature(sessions, contract.id, target, drawn()),
            return_exceptions=True,
        )

        successes = [r for r in results if isinstance(r, SignatureOutcome)]
        rejections = [r for r in results if isinstance(r, AlreadySigned)]
        assert len(successes) == 1
        assert len(rejections) == 1

        final = await _reload(sessions, contract.id)
        assert _slot(final, "s1").signature_data == _slot(successes[0].document, "s1").signature_data
        assert final.status == DocumentStatus.partially_signed

    async def test_locks_are_released(self, sessions, contract):
        await asyncio.gather(
            apply_signature(sessions, contract.id, SignerTarget(signer_id="s1"), typed()),
            apply_signature(sessions, contract.id, SignerTarget(signer_id="s2"), typed()),
        )
        assert len(document_locks) == 0


class TestOptimisticRetry:
    """A writer in another process shows up as a version mismatch."""

    @staticmethod
    async def _bump_version(db, document_id):
        await db.execute(text("UPDATE documents SET version = version + 1 WHERE id = :id"), {"id": document_id})

    async def test_stale_write_is_replayed(self, sessions, contract):
        attempts = []

        async def operation(db):
            attempts.append(1)
            document = await get_document(db, contract.id)
            if len(attempts) == 1:
                await self._bump_version(db, contract.id)
            document.updated_at = utcnow()
            await db.flush()
            return document.version

        version = await run_locked(sessions, contract.id, operation)
        assert len(attempts) == 2
        assert version == contract.version + 1

    async def test_signature_survives_a_stale_read(self, sessions, contract, admin, monkeypatch):
        original_load = service._load
        calls = []

        async def load_then_race(db, document_id):
            calls.append(document_id)
            document = await original_load(db, document_id)
            if len(calls) == 1:
                await self._bump_version(db, document_id)
            return document

        monkeypatch.setattr(service, "_load", load_then_race)
        outcome = await apply_signature(sessions, contract.id, SignerTarget(signer_id="s1"), typed("An"))
        assert len(calls) == 2
        assert _slot(outcome.document, "s1").signed

        async with sessions() as db:
            events = await get_events(db, contract.id, admin)
        assert [e.action for e in events].count("signed") == 1

    async def test_conflict_after_retries(self, sessions, contract, monkeypatch):
        original_load = service._load

        async def always_raced(db, document_id):
            document = await original_load(db, document_id)
            await self._bump_version(db, document_id)
            return document

        monkeypatch.setattr(service, "_load", always_raced)
        with pytest.raises(StoreConflict) as exc_info:
            await apply_signature(sessions, contract.id, SignerTarget(signer_id="s1"), typed("An"))
        assert exc_info.value.attempts == settings.store_max_retries
        assert exc_info.value.code == "STORE_CONFLICT"

        monkeypatch.setattr(service, "_load", original_load)
        reloaded = await _reload(sessions, contract.id)
        assert not _slot(reloaded, "s1").signed
        assert reloaded.version == contract.version


# ---------------------------------------------------------------------------
# Edit / delete
# ---------------------------------------------------------------------------

class TestApplyEdit:
    async def test_other_user_is_forbidden_admin_succeeds(self, sessions, contract, stranger, admin):
        patch = DocumentEdit.model_validate({"payload": {"kind": "contract", "title": "Amended Agreement"}})
        with pytest.raises(Forbidden):
            await apply_edit(sessions, contract.id, stranger, patch)

        edited = await apply_edit(sessions, contract.id, admin, patch)
        assert edited.payload["title"] == "Amended Agreement"
        assert edited.version == contract.version + 1

    async def test_edit_keeps_signatures(self, sessions, contract, owner):
        await apply_signature(sessions, contract.id, SignerTarget(signer_id="s1"), typed("An"))
        patch = DocumentEdit.model_validate({"payload": {"kind": "contract", "title": "v2", "content": "New terms"}})
        edited = await apply_edit(sessions, contract.id, owner, patch)
        assert edited.status == DocumentStatus.partially_signed
        assert _slot(edited, "s1").signed
        assert [s.slot_id for s in edited.signers] == ["s1", "s2"]

    async def test_anonymous_is_forbidden(self, sessions, receipt, anonymous):
        patch = DocumentEdit.model_validate({"payload": ReceiptFactory()["payload"]})
        with pytest.raises(Forbidden):
            await apply_edit(sessions, receipt.id, anonymous, patch)

    async def test_receipt_can_become_legacy_receipt(self, sessions, receipt, owner):
        patch = DocumentEdit.model_validate({"payload": LegacyReceiptFactory()["payload"]})
        edited = await apply_edit(sessions, receipt.id, owner, patch)
        assert edited.kind == DocumentKind.legacy_receipt
        assert edited.payload["kind"] == "legacy-receipt"
        assert "title" not in edited.payload

    async def test_contract_cannot_become_receipt(self, sessions, contract, owner):
        patch = DocumentEdit.model_validate({"payload": ReceiptFactory()["payload"]})
        with pytest.raises(KindMismatch):
            await apply_edit(sessions, contract.id, owner, patch)

    async def test_receipt_cannot_become_contract(self, sessions, receipt, owner):
        patch = DocumentEdit.model_validate({"payload": {"kind": "contract", "title": "Contract"}})
        with pytest.raises(KindMismatch):
            await apply_edit(sessions, receipt.id, owner, patch)

    async def test_missing_document(self, sessions, admin):
        patch = DocumentEdit.model_validate({"payload": {"kind": "contract", "title": "x"}})
        with pytest.raises(NotFound):
            await apply_edit(sessions, "3DO-MISSING", admin, patch)


class TestApplyDelete:
    async def test_owner_deletes_open_document(self, sessions, contract, owner):
        await apply_signature(sessions, contract.id, SignerTarget(signer_id="s1"), typed())
        await apply_delete(sessions, contract.id, owner)
        with pytest.raises(NotFound):
            await _reload(sessions, contract.id)

        async with sessions() as db:
            remaining = await db.execute(text("SELECT COUNT(*) FROM document_events"))
            assert remaining.scalar_one() == 0
            signers = await db.execute(text("SELECT COUNT(*) FROM document_signers"))
            assert signers.scalar_one() == 0

    async def test_stranger_cannot_delete(self, sessions, contract, stranger):
        with pytest.raises(Forbidden):
            await apply_delete(sessions, contract.id, stranger)
        assert await _reload(sessions, contract.id)

    async def test_missing_document(self, sessions, admin):
        with pytest.raises(NotFound):
            await apply_delete(sessions, "3DO-MISSING", admin)


# ---------------------------------------------------------------------------
# Listing and events
# ---------------------------------------------------------------------------

class TestListDocuments:
    async def test_visibility(self, sessions, admin, owner, stranger, anonymous):
        await insert_document(sessions, ContractFactory(), owner_user_id="u1")
        await insert_document(sessions, ReceiptFactory(), owner_user_id="u1")
        await insert_document(sessions, ReceiptFactory())

        async with sessions() as db:
            everything, total = await list_documents(db, admin, PaginationParams())
            assert total == 3
            assert len(everything) == 3

            owned, total = await list_documents(db, owner, PaginationParams())
            assert total == 2
            assert {d.owner_user_id for d in owned} == {"u1"}

            assert await list_documents(db, stranger, PaginationParams()) == ([], 0)
            assert await list_documents(db, anonymous, PaginationParams()) == ([], 0)

    async def test_pagination(self, sessions, admin):
        for _ in range(3):
            await insert_document(sessions, ReceiptFactory())
        async with sessions() as db:
            page, total = await list_documents(db, admin, PaginationParams(page=2, page_size=2))
        assert total == 3
        assert len(page) == 1


class TestEvents:
    async def test_trail(self, sessions, contract, owner):
        await apply_signature(sessions, contract.id, SignerTarget(signer_id="s1"), typed(), ip_address="10.0.0.1")
        await apply_signature(sessions, contract.id, SignerTarget(signer_id="s2"), typed())
        async with sessions() as db:
            events = await get_events(db, contract.id, owner)
        actions = [e.action for e in events]
        assert actions[0] == "created"
        assert actions.count("signed") == 2
        assert "completed" in actions
        first_sign = next(e for e in events if e.action == "signed")
        assert first_sign.signer_slot == "s1"
        assert first_sign.ip_address == "10.0.0.1"
        assert first_sign.actor == "anonymous"

    async def test_trail_requires_mutation_rights(self, sessions, contract, stranger):
        async with sessions() as db:
            with pytest.raises(Forbidden):
                await get_events(db, contract.id, stranger)
