"""
DispositionApprovalService -- quorum approval of an NCR disposition.

Responsibility:
    Record approvals on an NCR's disposition.  When the number of distinct
    approvers reaches the configured quorum, close the disposition: the NCR
    becomes ``closed``, ``approval_date`` is stamped, and any native MRB for
    the NCR becomes ``closed`` in the same transaction.  Virtual MRBs follow
    the NCR status and need no write.

Architecture position:
    Kernel > Services.  Uses MRBProjector to resolve MRB ids and to find
    native MRBs for an NCR.

Invariants enforced:
    - No lost updates.  The approve step is a read-modify-write on the NCR
      row guarded by its ``version``.  Two approvers racing on the same NCR
      both land: the loser's write fails the version check, is rolled back
      and re-run on top of the winner's approval.
    - Quorum counts distinct approvers.  A repeat approver is rejected.
    - Exactly one closure.  After the quorum write commits the NCR is
      ``closed`` and every later approve raises DispositionClosedError.
    - Closure of the NCR and of its native MRB commit together or not at all.

Failure modes:
    - NCRNotFoundError / MRBNotFoundError for unknown ids.
    - DispositionClosedError when the disposition is already closed.
    - DuplicateApprovalError when the approver already approved.
    - ValidationError for a blank approver, or an MRB with no NCR behind it.
    - ConcurrencyConflictError after ``max_write_attempts`` lost races.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from quality_kernel.db.repository import RecordStore
from quality_kernel.domain.mrb import MRBSourceType, MRBStatus
from quality_kernel.domain.ncr import (
    NCR,
    Approval,
    HistoryEntry,
    HistoryType,
    NCRStatus,
)
from quality_kernel.exceptions import (
    DispositionClosedError,
    DuplicateApprovalError,
    MissingFieldError,
    NCRNotFoundError,
    ValidationError,
)
from quality_kernel.logging_config import LogContext, get_logger
from quality_kernel.models.mrb import MRBModel
from quality_kernel.models.ncr import NCRModel, disposition_from_json, disposition_to_json
from quality_kernel.services.base import BaseService
from quality_kernel.services.collaborators import notify_best_effort
from quality_kernel.services.mrb_projector import MRBProjector


class DispositionApprovalService(BaseService):
    """Approval aggregation and disposition closure."""

    logger = get_logger("services.disposition_approval")

    @property
    def projector(self) -> MRBProjector:
        return MRBProjector(self.session, self.clock, self.settings)

    def approve(
        self,
        ncr_id: str,
        approver: str,
        role: str = "",
        comment: str = "",
        approved_at: datetime | None = None,
    ) -> NCR:
        """Add ``approver``'s approval; close the disposition on quorum."""
        if not approver or not approver.strip():
            raise MissingFieldError("Approval", "approver")
        approver = approver.strip()
        with LogContext.bind(ncr_id=ncr_id, actor_id=approver):
            return self._record_approval(ncr_id, approver, role, comment, approved_at)

    def _record_approval(
        self,
        ncr_id: str,
        approver: str,
        role: str,
        comment: str,
        approved_at: datetime | None,
    ) -> NCR:
        def unit() -> tuple[NCR, list[str]]:
            return self._approve_once(ncr_id, approver, role, comment, approved_at)

        ncr, closed_mrbs = self._run_versioned(unit, "NCR", ncr_id)

        approvals = len(ncr.disposition.approvals)
        self.logger.info(
            "disposition_approval_recorded",
            extra={
                "ncr_id": ncr_id,
                "approver": approver,
                "approvals": approvals,
                "quorum": self.settings.approval_quorum,
            },
        )
        if ncr.status == NCRStatus.CLOSED:
            self.logger.info(
                "disposition_closed",
                extra={
                    "ncr_id": ncr_id,
                    "ncr_number": ncr.number,
                    "approvers": sorted(ncr.disposition.approvers),
                    "native_mrb_ids": closed_mrbs,
                },
            )
            notify_best_effort(
                self.notifier,
                "disposition.closed",
                {
                    "ncr_id": ncr.id,
                    "number": ncr.number,
                    "decision": ncr.disposition.decision.value,
                    "mrb_ids": closed_mrbs,
                },
                self.logger,
            )
        return ncr

    def _approve_once(
        self,
        ncr_id: str,
        approver: str,
        role: str,
        comment: str,
        approved_at: datetime | None,
    ) -> tuple[NCR, list[str]]:
        ncr = RecordStore(self.session, NCRModel).read(ncr_id)
        if ncr is None:
            raise NCRNotFoundError(ncr_id)
        if ncr.status == NCRStatus.CLOSED.value:
            raise DispositionClosedError(ncr_id)

        disposition = disposition_from_json(ncr.disposition)
        if approver in disposition.approvers:
            raise DuplicateApprovalError(ncr_id, approver)

        now = self.clock.now()
        approvals = (
            *disposition.approvals,
            Approval(
                approver=approver,
                role=role,
                date=approved_at or now,
                comment=comment,
            ),
        )
        reached_quorum = len({a.approver for a in approvals}) >= self.settings.approval_quorum
        disposition = replace(
            disposition,
            approvals=approvals,
            approval_date=now if reached_quorum else disposition.approval_date,
        )

        ncr.disposition = disposition_to_json(disposition)
        ncr.updated_at = now
        ncr.updated_by = approver
        ncr.append_history(HistoryEntry(
            type=HistoryType.DISPOSITION.value,
            action="disposition_approval",
            description=f"Disposition approved by {approver}" + (f" ({role})" if role else ""),
            user=approver,
            timestamp=now,
        ))

        closed_mrbs: list[str] = []
        if reached_quorum:
            ncr.status = NCRStatus.CLOSED.value
            ncr.append_history(HistoryEntry(
                type=HistoryType.DISPOSITION.value,
                action="disposition_closed",
                description=(
                    f"Disposition {disposition.decision.value} closed with "
                    f"{len(approvals)} approval(s)"
                ),
                user=approver,
                timestamp=now,
            ))
            closed_mrbs = self._close_native_mrbs(ncr_id, approver, now)

        RecordStore(self.session, NCRModel).upsert(ncr)
        return ncr.to_dto(), closed_mrbs

    def _close_native_mrbs(self, ncr_id: str, actor: str, now: datetime) -> list[str]:
        store = RecordStore(self.session, MRBModel)
        closed = []
        for mrb in self.projector.find_native_for_ncr(ncr_id):
            if mrb.status == MRBStatus.CLOSED.value:
                continue
            mrb.status = MRBStatus.CLOSED.value
            mrb.updated_at = now
            mrb.updated_by = actor
            mrb.append_history(HistoryEntry(
                type=HistoryType.DISPOSITION.value,
                action="disposition_closed",
                description="Closed by disposition approval of the linked NCR",
                user=actor,
                timestamp=now,
            ))
            store.upsert(mrb)
            closed.append(mrb.id)
        return closed

    def approve_mrb(
        self,
        mrb_id: str,
        approver: str,
        role: str = "",
        comment: str = "",
        approved_at: datetime | None = None,
    ) -> NCR:
        """Approve the disposition behind an MRB id (virtual or native)."""
        with LogContext.bind(mrb_id=mrb_id):
            ref = self.projector.resolve(mrb_id)
            if ref.is_virtual:
                ncr_id = ref.ncr_id
                # 404 on a virtual id whose NCR is gone or not under review
                self.projector.get(mrb_id)
            else:
                mrb = self.projector.get(mrb_id)
                if mrb.source_type != MRBSourceType.NCR or not mrb.source_id:
                    linked = [item.ncr_id for item in mrb.linked_ncrs]
                    if len(linked) != 1:
                        raise ValidationError(
                            f"MRB {mrb_id} is not backed by a single NCR; "
                            "approve the NCR disposition directly"
                        )
                    ncr_id = linked[0]
                else:
                    ncr_id = mrb.source_id
            self.session.rollback()
            return self.approve(ncr_id, approver, role, comment, approved_at)
