"""
NCRService -- the NCR lifecycle manager.

Responsibility:
    Create, patch, read and list Non-Conformance Reports, and manage their
    attachments.  Creation of a critical NCR triggers CAPA generation.

Architecture position:
    Kernel > Services -- imperative shell over ``domain.ncr``.

Invariants enforced:
    - NCR numbers are ``<DeptCode>-<YYYYMMDD>-<HHMM>`` from the injected
      clock.
    - ``update`` changes only the fields named by ``NCRPatch``; id, number,
      created_at and the approval trail are never touched by it.
    - ``closed`` is reachable only through disposition approval quorum.
    - A failed CAPA generation never fails NCR creation: the NCR is
      committed first and generation runs in its own transaction.

Failure modes:
    - NCRNotFoundError / AttachmentNotFoundError for unknown ids.
    - ValidationError subclasses for bad input.
    - InvalidNCRTransitionError for status changes outside the patchable set.
    - ObjectStorageError when attachment blob storage fails.
    - ConcurrencyConflictError when concurrent writers keep winning.
"""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from quality_kernel.db.base import new_id
from quality_kernel.db.repository import RecordStore
from quality_kernel.domain.clock import Clock
from quality_kernel.domain.mrb import PROJECTED_NCR_STATUSES, default_mrb_number, virtual_mrb_id
from quality_kernel.domain.ncr import (
    NCR,
    NCR_WORKFLOW,
    PATCHABLE_NCR_STATUSES,
    Attachment,
    Disposition,
    HistoryEntry,
    HistoryType,
    NCRDraft,
    NCRPatch,
    NCRSeverity,
    NCRStatus,
    coerce_enum,
    format_ncr_number,
)
from quality_kernel.exceptions import (
    AttachmentNotFoundError,
    DispositionClosedError,
    InvalidFieldValueError,
    InvalidNCRTransitionError,
    MissingFieldError,
    NCRNotFoundError,
    ObjectStorageError,
    QualityKernelError,
)
from quality_kernel.logging_config import LogContext, get_logger
from quality_kernel.models.ncr import (
    NCRModel,
    attachment_to_json,
    attachments_from_json,
    disposition_from_json,
    disposition_to_json,
    history_to_json,
)
from quality_kernel.services.base import BaseService
from quality_kernel.services.capa_generator import CAPAGenerator
from quality_kernel.services.collaborators import (
    InMemoryObjectStorage,
    Notifier,
    ObjectStorage,
    notify_best_effort,
)
from quality_kernel.services.settings import WorkflowSettings

_SCALAR_PATCH_FIELDS = (
    "title",
    "description",
    "area",
    "reported_by",
    "part_number",
    "lot_number",
    "quantity_affected",
)

_ENUM_PATCH_FIELDS = ("type", "severity")


def attachment_key(ncr_id: str, attachment_id: str, filename: str) -> str:
    """Object storage key of an NCR attachment blob."""
    return f"ncr/{ncr_id}/{attachment_id}/{filename}"


class NCRService(BaseService):
    """NCR lifecycle operations."""

    logger = get_logger("services.ncr_service")

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        settings: WorkflowSettings | None = None,
        notifier: Notifier | None = None,
        storage: ObjectStorage | None = None,
        capa_generator: CAPAGenerator | None = None,
    ):
        super().__init__(session, clock, settings, notifier)
        self.storage = storage or InMemoryObjectStorage()
        self.capa_generator = capa_generator or CAPAGenerator(
            session, self.clock, self.settings,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load(self, ncr_id: str) -> NCRModel:
        ncr = RecordStore(self.session, NCRModel).read(ncr_id)
        if ncr is None:
            raise NCRNotFoundError(ncr_id)
        return ncr

    def get(self, ncr_id: str) -> NCR:
        return self._load(ncr_id).to_dto()

    def list(self, status: NCRStatus | str | None = None) -> list[NCR]:
        """All NCRs, newest first, optionally filtered by status."""
        criteria = []
        if status is not None:
            criteria.append(
                NCRModel.status == coerce_enum(NCRStatus, "NCR", "status", status).value
            )
        store = RecordStore(self.session, NCRModel)
        return [
            n.to_dto()
            for n in store.query(*criteria, order_by=NCRModel.created_at.desc())
        ]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, draft: NCRDraft, actor: str) -> NCR:
        """Persist a new NCR; critical NCRs also get a CAPA."""

        def unit() -> NCRModel:
            now = self.clock.now()
            number = format_ncr_number(
                draft.area,
                now,
                self.settings.department_codes,
                self.settings.default_department_code,
            )
            disposition = Disposition(
                decision=draft.disposition_decision,
                justification=draft.disposition_justification,
                conditions=draft.disposition_conditions,
            )
            created = HistoryEntry(
                type=HistoryType.CREATED.value,
                action="created",
                description=f"NCR {number} created",
                user=actor,
                timestamp=now,
            )
            return RecordStore(self.session, NCRModel).create(NCRModel(
                id=new_id(),
                number=number,
                title=draft.title.strip(),
                description=draft.description,
                type=draft.type.value,
                severity=draft.severity.value,
                status=NCRStatus.OPEN.value,
                area=draft.area,
                reported_by=draft.reported_by or actor,
                part_number=draft.part_number,
                lot_number=draft.lot_number,
                quantity_affected=draft.quantity_affected,
                disposition=disposition_to_json(disposition),
                attachments=[],
                history=[history_to_json(created)],
                created_at=now,
                updated_at=now,
                created_by=actor,
            ))

        ncr = self._run_in_transaction(unit)
        self.logger.info(
            "ncr_created",
            extra={
                "ncr_id": ncr.id,
                "ncr_number": ncr.number,
                "severity": ncr.severity,
                "actor": actor,
            },
        )

        if ncr.severity == NCRSeverity.CRITICAL.value:
            with LogContext.bind(ncr_id=ncr.id, actor_id=actor):
                self._generate_capa(ncr, actor)

        result = self._load(ncr.id).to_dto()
        notify_best_effort(
            self.notifier,
            "ncr.created",
            {"ncr_id": result.id, "number": result.number, "severity": result.severity.value},
            self.logger,
        )
        return result

    def _generate_capa(self, ncr: NCRModel, actor: str) -> None:
        try:
            capa = self.capa_generator.maybe_generate(ncr, actor)
            self.session.commit()
        except (QualityKernelError, SQLAlchemyError) as exc:
            self.session.rollback()
            self.logger.error(
                "capa_generation_failed",
                extra={"ncr_id": ncr.id, "reason": str(exc)},
            )
            return
        if capa is not None:
            notify_best_effort(
                self.notifier,
                "capa.generated",
                {"capa_id": capa.id, "number": capa.number, "ncr_id": ncr.id},
                self.logger,
            )

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(self, ncr_id: str, patch: NCRPatch, actor: str) -> NCR:
        """Apply ``patch`` to an NCR.

        Only fields set on the patch change.  Status may move among
        ``open``, ``pending_disposition`` and ``in_review``; entering a
        projected status stamps the virtual MRB backlink.
        """
        changed = patch.changed_fields()

        def unit() -> NCR:
            ncr = self._load(ncr_id)
            if not changed:
                return ncr.to_dto()

            now = self.clock.now()
            current = NCRStatus(ncr.status)

            if patch.status is not None and patch.status != current:
                self._check_status_change(ncr, current, patch.status)
                ncr.status = patch.status.value
                self._sync_mrb_backlink(ncr, actor, now)

            for name in _SCALAR_PATCH_FIELDS:
                value = getattr(patch, name)
                if value is not None:
                    setattr(ncr, name, value)
            for name in _ENUM_PATCH_FIELDS:
                value = getattr(patch, name)
                if value is not None:
                    setattr(ncr, name, value.value)
            if patch.title is not None:
                ncr.title = patch.title.strip()

            if any(
                getattr(patch, name) is not None
                for name in ("disposition_decision", "disposition_justification", "disposition_conditions")
            ):
                self._apply_disposition_patch(ncr, current, patch)

            if patch.attachments is not None:
                ncr.attachments = [attachment_to_json(a) for a in patch.attachments]

            ncr.updated_at = now
            ncr.updated_by = actor
            ncr.append_history(HistoryEntry(
                type=HistoryType.UPDATE.value,
                action="updated",
                description=f"Updated fields: {', '.join(changed)}",
                user=actor,
                timestamp=now,
            ))
            RecordStore(self.session, NCRModel).upsert(ncr)
            return ncr.to_dto()

        result = self._run_versioned(unit, "NCR", ncr_id)
        if changed:
            self.logger.info(
                "ncr_updated",
                extra={"ncr_id": ncr_id, "fields": changed, "actor": actor},
            )
        return result

    @staticmethod
    def _check_status_change(ncr: NCRModel, current: NCRStatus, target: NCRStatus) -> None:
        if (
            current == NCRStatus.CLOSED
            or target not in PATCHABLE_NCR_STATUSES
            or NCR_WORKFLOW.find(current.value, target.value) is None
        ):
            raise InvalidNCRTransitionError(ncr.id, current.value, target.value)

    @staticmethod
    def _apply_disposition_patch(ncr: NCRModel, current: NCRStatus, patch: NCRPatch) -> None:
        if current == NCRStatus.CLOSED:
            raise DispositionClosedError(ncr.id)
        disposition = disposition_from_json(ncr.disposition)
        ncr.disposition = disposition_to_json(Disposition(
            decision=patch.disposition_decision or disposition.decision,
            justification=(
                patch.disposition_justification
                if patch.disposition_justification is not None
                else disposition.justification
            ),
            conditions=(
                patch.disposition_conditions
                if patch.disposition_conditions is not None
                else disposition.conditions
            ),
            approvals=disposition.approvals,
            approval_date=disposition.approval_date,
        ))

    def _sync_mrb_backlink(self, ncr: NCRModel, actor: str, now) -> None:
        status = NCRStatus(ncr.status)
        virtual_id = virtual_mrb_id(ncr.id)
        if status in PROJECTED_NCR_STATUSES and ncr.mrb_id is None:
            ncr.mrb_id = virtual_id
            ncr.mrb_number = default_mrb_number(ncr.to_dto())
            ncr.append_history(HistoryEntry(
                type=HistoryType.MRB.value,
                action="escalated",
                description=f"Escalated to MRB {ncr.mrb_number}",
                user=actor,
                timestamp=now,
            ))
        elif status == NCRStatus.OPEN and ncr.mrb_id == virtual_id:
            ncr.append_history(HistoryEntry(
                type=HistoryType.MRB.value,
                action="unescalated",
                description=f"Removed from MRB {ncr.mrb_number}",
                user=actor,
                timestamp=now,
            ))
            ncr.mrb_id = None
            ncr.mrb_number = None

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    def add_attachment(
        self,
        ncr_id: str,
        filename: str,
        content_type: str,
        data: bytes,
        uploaded_by: str,
    ) -> Attachment:
        """Upload a blob and record its metadata on the NCR."""
        if not filename or not filename.strip():
            raise MissingFieldError("Attachment", "name")
        limit = self.settings.attachment_max_bytes
        if len(data) > limit:
            raise InvalidFieldValueError(
                "Attachment", "size", len(data), f"exceeds the {limit} byte limit",
            )
        self._load(ncr_id)
        self.session.rollback()

        attachment_id = new_id()
        key = attachment_key(ncr_id, attachment_id, filename)
        url = self.storage.put(key, data, content_type)
        now = self.clock.now()
        attachment = Attachment(
            id=attachment_id,
            name=filename,
            content_type=content_type or "application/octet-stream",
            size=len(data),
            url=url,
            uploaded_by=uploaded_by,
            uploaded_at=now,
        )

        def unit() -> Attachment:
            ncr = self._load(ncr_id)
            ncr.attachments = [*(ncr.attachments or []), attachment_to_json(attachment)]
            ncr.updated_at = now
            ncr.updated_by = uploaded_by
            ncr.append_history(HistoryEntry(
                type=HistoryType.ATTACHMENT.value,
                action="attachment_added",
                description=f"Attached {filename}",
                user=uploaded_by,
                timestamp=now,
            ))
            RecordStore(self.session, NCRModel).upsert(ncr)
            return attachment

        try:
            result = self._run_versioned(unit, "NCR", ncr_id)
        except QualityKernelError:
            self._discard_blob(key)
            raise

        self.logger.info(
            "ncr_attachment_added",
            extra={
                "ncr_id": ncr_id,
                "attachment_id": attachment_id,
                "size": len(data),
                "actor": uploaded_by,
            },
        )
        return result

    def remove_attachment(self, ncr_id: str, attachment_id: str, actor: str) -> NCR:
        """Delete an attachment blob, then drop its metadata."""
        ncr = self._load(ncr_id)
        attachment = self._find_attachment(ncr, attachment_id)
        self.session.rollback()
        self.storage.delete(attachment_key(ncr_id, attachment_id, attachment.name))

        def unit() -> NCR:
            ncr = self._load(ncr_id)
            self._find_attachment(ncr, attachment_id)
            ncr.attachments = [a for a in ncr.attachments if a["id"] != attachment_id]
            now = self.clock.now()
            ncr.updated_at = now
            ncr.updated_by = actor
            ncr.append_history(HistoryEntry(
                type=HistoryType.ATTACHMENT.value,
                action="attachment_removed",
                description=f"Removed {attachment.name}",
                user=actor,
                timestamp=now,
            ))
            RecordStore(self.session, NCRModel).upsert(ncr)
            return ncr.to_dto()

        result = self._run_versioned(unit, "NCR", ncr_id)
        self.logger.info(
            "ncr_attachment_removed",
            extra={"ncr_id": ncr_id, "attachment_id": attachment_id, "actor": actor},
        )
        return result

    @staticmethod
    def _find_attachment(ncr: NCRModel, attachment_id: str) -> Attachment:
        for attachment in attachments_from_json(ncr.attachments):
            if attachment.id == attachment_id:
                return attachment
        raise AttachmentNotFoundError(ncr.id, attachment_id)

    def _discard_blob(self, key: str) -> None:
        try:
            self.storage.delete(key)
        except ObjectStorageError as exc:
            self.logger.warning(
                "attachment_blob_orphaned",
                extra={"key": key, "reason": exc.reason},
            )
