"""NCRService: creation, patching and attachments."""

from datetime import datetime, timezone

import pytest

from quality_kernel.domain.ncr import (
    DispositionDecision,
    NCRDraft,
    NCRPatch,
    NCRSeverity,
    NCRStatus,
)
from quality_kernel.exceptions import (
    AttachmentNotFoundError,
    CAPAGenerationError,
    DispositionClosedError,
    InvalidFieldValueError,
    InvalidNCRTransitionError,
    NCRNotFoundError,
    ObjectStorageError,
)
from quality_kernel.services import (
    CAPAGenerator,
    CAPAService,
    InMemoryObjectStorage,
    NCRService,
    WorkflowSettings,
)

TEST_ACTOR = "qa.tester"


class FailingCAPAGenerator(CAPAGenerator):

    def maybe_generate(self, ncr, actor="system"):
        raise CAPAGenerationError(ncr.id, "capa store unavailable")


class FailingStorage(InMemoryObjectStorage):

    def put(self, key, data, content_type):
        raise ObjectStorageError(key, "bucket unreachable")


class TestCreate:

    def test_number_from_area_and_clock(self, create_ncr):
        ncr = create_ncr(area="Receiving")
        assert ncr.number == "RCV-20250206-1405"
        assert ncr.status == NCRStatus.OPEN
        assert ncr.version == 1

    def test_unknown_area_uses_default_code(self, create_ncr):
        assert create_ncr(area="Canteen").number.startswith("GEN-")

    def test_number_follows_the_clock(self, create_ncr, clock):
        clock.set_time(datetime(2025, 12, 31, 23, 59, tzinfo=timezone.utc))
        assert create_ncr(area="shipping").number == "SHP-20251231-2359"

    def test_created_history_entry(self, create_ncr):
        ncr = create_ncr()
        assert [h.action for h in ncr.history] == ["created"]
        assert ncr.history[0].user == TEST_ACTOR

    def test_reported_by_defaults_to_actor(self, ncr_service):
        ncr = ncr_service.create(NCRDraft(title="Missing label"), actor="line.lead")
        assert ncr.reported_by == "line.lead"

    def test_created_notification(self, create_ncr, notifier):
        ncr = create_ncr()
        assert notifier.events() == ["ncr.created"]
        assert notifier.sent[0].payload["ncr_id"] == ncr.id

    def test_major_ncr_gets_no_capa(self, create_ncr, capa_service):
        ncr = create_ncr(severity=NCRSeverity.MAJOR)
        assert ncr.linked_capa_id is None
        assert capa_service.list() == []

    def test_critical_ncr_gets_capa(self, create_ncr, notifier):
        ncr = create_ncr(severity=NCRSeverity.CRITICAL)
        assert ncr.linked_capa_id is not None
        assert notifier.events() == ["capa.generated", "ncr.created"]

    def test_capa_failure_does_not_fail_creation(
        self, session, clock, settings, notifier, captured_logs,
    ):
        service = NCRService(
            session, clock, settings, notifier,
            capa_generator=FailingCAPAGenerator(session, clock, settings),
        )
        ncr = service.create(
            NCRDraft(title="Cracked casting", severity=NCRSeverity.CRITICAL),
            actor=TEST_ACTOR,
        )
        assert service.get(ncr.id).linked_capa_id is None
        assert CAPAService(session, clock, settings).list() == []
        failures = [r for r in captured_logs() if r["message"] == "capa_generation_failed"]
        assert failures and failures[0]["ncr_id"] == ncr.id


class TestReads:

    def test_get_unknown(self, ncr_service):
        with pytest.raises(NCRNotFoundError):
            ncr_service.get("nope")

    def test_list_newest_first_and_filter(self, create_ncr, ncr_service, clock):
        first = create_ncr(title="first")
        clock.advance(60)
        second = create_ncr(title="second")
        ncr_service.update(second.id, NCRPatch(status=NCRStatus.IN_REVIEW), TEST_ACTOR)

        assert [n.id for n in ncr_service.list()] == [second.id, first.id]
        assert [n.id for n in ncr_service.list("open")] == [first.id]

    def test_list_rejects_unknown_status(self, ncr_service):
        with pytest.raises(InvalidFieldValueError):
            ncr_service.list("archived")


class TestUpdate:

    def test_only_patched_fields_change(self, create_ncr, ncr_service):
        ncr = create_ncr()
        updated = ncr_service.update(
            ncr.id, NCRPatch(title="Bore oversize", quantity_affected=3), TEST_ACTOR,
        )
        assert updated.title == "Bore oversize"
        assert updated.quantity_affected == 3
        assert updated.description == ncr.description
        assert updated.number == ncr.number
        assert updated.created_at == ncr.created_at
        assert updated.version == ncr.version + 1
        assert updated.history[-1].description == "Updated fields: title, quantity_affected"

    def test_empty_patch_is_a_no_op(self, create_ncr, ncr_service):
        ncr = create_ncr()
        assert ncr_service.update(ncr.id, NCRPatch(), TEST_ACTOR) == ncr

    def test_unknown_ncr(self, ncr_service):
        with pytest.raises(NCRNotFoundError):
            ncr_service.update("nope", NCRPatch(title="x"), TEST_ACTOR)

    def test_patch_to_closed_rejected(self, create_ncr, ncr_service):
        ncr = create_ncr()
        with pytest.raises(InvalidNCRTransitionError) as exc_info:
            ncr_service.update(ncr.id, NCRPatch(status=NCRStatus.CLOSED), TEST_ACTOR)
        assert exc_info.value.to_state == "closed"
        assert ncr_service.get(ncr.id).status == NCRStatus.OPEN

    def test_entering_review_stamps_mrb_backlink(self, create_ncr, ncr_service):
        ncr = create_ncr()
        updated = ncr_service.update(
            ncr.id, NCRPatch(status=NCRStatus.PENDING_DISPOSITION), TEST_ACTOR,
        )
        assert updated.mrb_id == f"mrb-{ncr.id}"
        assert updated.mrb_number == f"MRB-{ncr.number}"

        reopened = ncr_service.update(ncr.id, NCRPatch(status=NCRStatus.OPEN), TEST_ACTOR)
        assert reopened.mrb_id is None
        assert reopened.mrb_number is None

    def test_disposition_patch_keeps_approvals(self, escalated_ncr, ncr_service, approval_service):
        approval_service.approve(escalated_ncr.id, "mrb.engineer", role="Engineering")
        updated = ncr_service.update(
            escalated_ncr.id,
            NCRPatch(disposition_decision=DispositionDecision.REWORK),
            TEST_ACTOR,
        )
        assert updated.disposition.decision == DispositionDecision.REWORK
        assert [a.approver for a in updated.disposition.approvals] == ["mrb.engineer"]

    def test_closed_ncr_rejects_disposition_and_status_patches(
        self, escalated_ncr, ncr_service, approval_service,
    ):
        approval_service.approve(escalated_ncr.id, "mrb.engineer")
        approval_service.approve(escalated_ncr.id, "mrb.quality")

        with pytest.raises(DispositionClosedError):
            ncr_service.update(
                escalated_ncr.id,
                NCRPatch(disposition_decision=DispositionDecision.SCRAP),
                TEST_ACTOR,
            )
        with pytest.raises(InvalidNCRTransitionError):
            ncr_service.update(escalated_ncr.id, NCRPatch(status=NCRStatus.OPEN), TEST_ACTOR)
        assert ncr_service.get(escalated_ncr.id).status == NCRStatus.CLOSED


class TestAttachments:

    def test_add_stores_blob_and_metadata(self, create_ncr, ncr_service, storage):
        ncr = create_ncr()
        attachment = ncr_service.add_attachment(
            ncr.id, "bore.jpg", "image/jpeg", b"\xff\xd8jpeg", TEST_ACTOR,
        )
        assert attachment.size == 6
        assert attachment.url.startswith("memory://attachments/")
        assert len(storage.blobs) == 1
        stored = ncr_service.get(ncr.id)
        assert [a.id for a in stored.attachments] == [attachment.id]
        assert stored.history[-1].action == "attachment_added"

    def test_oversize_rejected_before_upload(self, session, clock, create_ncr, storage):
        ncr = create_ncr()
        service = NCRService(
            session, clock, WorkflowSettings(attachment_max_bytes=4), storage=storage,
        )
        with pytest.raises(InvalidFieldValueError):
            service.add_attachment(ncr.id, "big.bin", "", b"12345", TEST_ACTOR)
        assert storage.blobs == {}

    def test_storage_failure_leaves_ncr_untouched(self, session, clock, settings, create_ncr):
        ncr = create_ncr()
        service = NCRService(session, clock, settings, storage=FailingStorage())
        with pytest.raises(ObjectStorageError):
            service.add_attachment(ncr.id, "a.txt", "text/plain", b"x", TEST_ACTOR)
        assert service.get(ncr.id).attachments == ()

    def test_unknown_ncr(self, ncr_service, storage):
        with pytest.raises(NCRNotFoundError):
            ncr_service.add_attachment("nope", "a.txt", "text/plain", b"x", TEST_ACTOR)
        assert storage.blobs == {}

    def test_remove_deletes_blob_then_metadata(self, create_ncr, ncr_service, storage):
        ncr = create_ncr()
        attachment = ncr_service.add_attachment(ncr.id, "a.txt", "text/plain", b"x", TEST_ACTOR)
        updated = ncr_service.remove_attachment(ncr.id, attachment.id, TEST_ACTOR)
        assert updated.attachments == ()
        assert storage.blobs == {}
        assert updated.history[-1].action == "attachment_removed"

    def test_remove_unknown_attachment(self, create_ncr, ncr_service):
        ncr = create_ncr()
        with pytest.raises(AttachmentNotFoundError):
            ncr_service.remove_attachment(ncr.id, "missing", TEST_ACTOR)
