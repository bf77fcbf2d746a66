"""
MRBProjector -- native and virtual Material Review Board records.

Responsibility:
    Present one MRB listing made of persisted (native) MRB rows and MRBs
    computed on read from NCRs in a projected status (virtual).  Resolve MRB
    ids, escalate and un-escalate NCRs, create and soft-delete native MRBs.

Architecture position:
    Kernel > Services.  Read paths are pure projections over the store;
    DispositionApprovalService calls ``find_native_for_ncr`` on closure.

Invariants enforced:
    - A virtual MRB is never persisted.  Its status is always the status of
      its NCR, so a closed NCR yields a closed virtual MRB with no extra
      write.
    - MRB ids are resolved once at the boundary by ``resolve``; the variant
      decides every branch afterwards.
    - Deleting a virtual MRB un-escalates its NCR; deleting a native MRB
      soft-deletes it and un-escalates every NCR it references.

Failure modes:
    - MRBNotFoundError for unknown ids, deleted native MRBs, and virtual ids
      whose NCR is missing or not in a projected status.
    - NCRNotFoundError when escalating or linking an unknown NCR.
    - InvalidNCRTransitionError when escalating a closed NCR, or creating a
      native MRB that references one.
    - ConcurrencyConflictError when concurrent writers keep winning.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import false
from sqlalchemy.orm.attributes import flag_modified

from quality_kernel.db.base import new_id
from quality_kernel.db.repository import RecordStore
from quality_kernel.domain.mrb import (
    MRB,
    PROJECTED_NCR_STATUSES,
    MRBDraft,
    MRBReference,
    MRBSourceType,
    default_mrb_number,
    project_ncr,
    resolve_mrb_id,
    virtual_mrb_id,
)
from quality_kernel.domain.ncr import (
    Disposition,
    HistoryEntry,
    HistoryType,
    NCRStatus,
)
from quality_kernel.exceptions import (
    InvalidNCRTransitionError,
    MRBNotFoundError,
    NCRNotFoundError,
)
from quality_kernel.logging_config import get_logger
from quality_kernel.models.mrb import MRBModel, linked_ncrs_to_json
from quality_kernel.models.ncr import NCRModel, disposition_to_json, history_to_json
from quality_kernel.services.base import BaseService


class MRBProjector(BaseService):
    """Unified access to native and virtual MRBs."""

    logger = get_logger("services.mrb_projector")

    # ------------------------------------------------------------------
    # Resolution and reads
    # ------------------------------------------------------------------

    @staticmethod
    def resolve(mrb_id: str) -> MRBReference:
        return resolve_mrb_id(mrb_id)

    def list_all(self) -> list[MRB]:
        """Native (non-deleted) MRBs followed by every virtual MRB."""
        natives = RecordStore(self.session, MRBModel).query(
            MRBModel.is_deleted == false(),
            order_by=MRBModel.created_at.desc(),
        )
        projected = RecordStore(self.session, NCRModel).query(
            NCRModel.status.in_([s.value for s in PROJECTED_NCR_STATUSES]),
            order_by=NCRModel.created_at.desc(),
        )
        return [m.to_dto() for m in natives] + [
            project_ncr(n.to_dto()) for n in projected
        ]

    def get(self, mrb_id: str) -> MRB:
        ref = self.resolve(mrb_id)
        if ref.is_virtual:
            ncr = RecordStore(self.session, NCRModel).read(ref.ncr_id)
            if ncr is None or NCRStatus(ncr.status) not in PROJECTED_NCR_STATUSES:
                raise MRBNotFoundError(mrb_id)
            return project_ncr(ncr.to_dto())
        return self._load_native(mrb_id).to_dto()

    def _load_native(self, mrb_id: str) -> MRBModel:
        mrb = RecordStore(self.session, MRBModel).read(mrb_id)
        if mrb is None or mrb.is_deleted:
            raise MRBNotFoundError(mrb_id)
        return mrb

    def find_native_for_ncr(self, ncr_id: str) -> list[MRBModel]:
        """Live native MRBs whose source or linked list names ``ncr_id``."""
        natives = RecordStore(self.session, MRBModel).query(
            MRBModel.is_deleted == false(),
        )
        return [
            m for m in natives
            if m.source_id == ncr_id or ncr_id in m.linked_ncr_ids()
        ]

    # ------------------------------------------------------------------
    # Escalation
    # ------------------------------------------------------------------

    def escalate(self, ncr_id: str, actor: str) -> MRB:
        """Move an open NCR into MRB review and return its virtual MRB.

        An NCR that is already pending disposition or in review is returned
        as-is.
        """

        def unit() -> MRB:
            ncr = RecordStore(self.session, NCRModel).read(ncr_id)
            if ncr is None:
                raise NCRNotFoundError(ncr_id)
            status = NCRStatus(ncr.status)
            if status == NCRStatus.CLOSED:
                raise InvalidNCRTransitionError(
                    ncr_id, status.value, NCRStatus.PENDING_DISPOSITION.value,
                )
            if status in PROJECTED_NCR_STATUSES and ncr.mrb_id is not None:
                return project_ncr(ncr.to_dto())

            now = self.clock.now()
            if status == NCRStatus.OPEN:
                ncr.status = NCRStatus.PENDING_DISPOSITION.value
            ncr.mrb_id = virtual_mrb_id(ncr.id)
            ncr.mrb_number = default_mrb_number(ncr.to_dto())
            ncr.updated_at = now
            ncr.updated_by = actor
            ncr.append_history(HistoryEntry(
                type=HistoryType.MRB.value,
                action="escalated",
                description=f"Escalated to MRB {ncr.mrb_number}",
                user=actor,
                timestamp=now,
            ))
            RecordStore(self.session, NCRModel).upsert(ncr)
            return project_ncr(ncr.to_dto())

        result = self._run_versioned(unit, "NCR", ncr_id)
        self.logger.info(
            "ncr_escalated",
            extra={"ncr_id": ncr_id, "mrb_id": result.id, "actor": actor},
        )
        return result

    def _unescalate(self, ncr: NCRModel, actor: str, now: datetime, reason: str) -> None:
        ncr.status = NCRStatus.OPEN.value
        ncr.append_history(HistoryEntry(
            type=HistoryType.MRB.value,
            action="unescalated",
            description=reason,
            user=actor,
            timestamp=now,
        ))
        ncr.mrb_id = None
        ncr.mrb_number = None
        ncr.updated_at = now
        ncr.updated_by = actor
        RecordStore(self.session, NCRModel).upsert(ncr)

    # ------------------------------------------------------------------
    # Native MRBs
    # ------------------------------------------------------------------

    def _next_native_number(self, at: datetime) -> str:
        """``MRB-<YYYY>-<NNNN>``, sequential within the year."""
        prefix = f"MRB-{at:%Y}-"
        numbers = RecordStore(self.session, MRBModel).query(
            MRBModel.number.like(f"{prefix}%"),
        )
        highest = 0
        for mrb in numbers:
            suffix = mrb.number[len(prefix):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return f"{prefix}{highest + 1:04d}"

    def create_native(self, draft: MRBDraft, actor: str) -> MRB:
        """Persist a native MRB.

        Every referenced NCR (the NCR source and each linked NCR) must exist
        and must not be closed.  Each referenced NCR row is re-versioned in
        the same transaction, so a disposition closing concurrently either
        sees the new MRB and closes it, or makes this write retry and fail.
        """
        referenced = [linked.ncr_id for linked in draft.linked_ncrs]
        if draft.source_type == MRBSourceType.NCR and draft.source_id:
            referenced.insert(0, draft.source_id)
        referenced = list(dict.fromkeys(referenced))

        def unit() -> MRB:
            ncrs = RecordStore(self.session, NCRModel)
            for ncr_id in referenced:
                ncr = ncrs.read(ncr_id)
                if ncr is None:
                    raise NCRNotFoundError(ncr_id)
                if NCRStatus(ncr.status) == NCRStatus.CLOSED:
                    raise InvalidNCRTransitionError(
                        ncr_id, ncr.status, NCRStatus.PENDING_DISPOSITION.value,
                    )
                flag_modified(ncr, "status")

            now = self.clock.now()
            created = HistoryEntry(
                type=HistoryType.CREATED.value,
                action="created",
                description="MRB created",
                user=actor,
                timestamp=now,
            )
            mrb = RecordStore(self.session, MRBModel).create(MRBModel(
                id=new_id(),
                number=self._next_native_number(now),
                title=draft.title.strip(),
                description=draft.description,
                status=draft.status.value,
                severity=draft.severity.value,
                source_type=draft.source_type.value if draft.source_type else None,
                source_id=draft.source_id,
                part_number=draft.part_number,
                lot_number=draft.lot_number,
                quantity=draft.quantity,
                location=draft.location,
                linked_ncrs=linked_ncrs_to_json(draft.linked_ncrs),
                disposition=disposition_to_json(Disposition(
                    decision=draft.disposition_decision,
                    justification=draft.disposition_justification,
                )),
                history=[history_to_json(created)],
                is_deleted=False,
                created_at=now,
                updated_at=now,
                created_by=actor,
            ))
            return mrb.to_dto()

        if referenced:
            result = self._run_versioned(unit, "NCR", ",".join(referenced))
        else:
            result = self._run_in_transaction(unit)
        self.logger.info(
            "mrb_created",
            extra={"mrb_id": result.id, "mrb_number": result.number, "actor": actor},
        )
        return result

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, mrb_id: str, actor: str) -> None:
        """Remove an MRB from the board and un-escalate its NCRs."""
        ref = self.resolve(mrb_id)
        if ref.is_virtual:
            self._run_versioned(
                lambda: self._delete_virtual(ref, actor), "NCR", ref.ncr_id,
            )
        else:
            self._run_versioned(
                lambda: self._delete_native(ref, actor), "MRB", mrb_id,
            )
        self.logger.info(
            "mrb_deleted",
            extra={"mrb_id": mrb_id, "is_virtual": ref.is_virtual, "actor": actor},
        )

    def _delete_virtual(self, ref: MRBReference, actor: str) -> None:
        ncr = RecordStore(self.session, NCRModel).read(ref.ncr_id)
        if ncr is None or NCRStatus(ncr.status) not in PROJECTED_NCR_STATUSES:
            raise MRBNotFoundError(ref.mrb_id)
        self._unescalate(
            ncr, actor, self.clock.now(),
            f"Removed from MRB {ncr.mrb_number or default_mrb_number(ncr.to_dto())}",
        )

    def _delete_native(self, ref: MRBReference, actor: str) -> None:
        mrb = self._load_native(ref.mrb_id)
        now = self.clock.now()
        mrb.is_deleted = True
        mrb.updated_at = now
        mrb.updated_by = actor
        mrb.append_history(HistoryEntry(
            type=HistoryType.MRB.value,
            action="deleted",
            description=f"MRB {mrb.number} deleted",
            user=actor,
            timestamp=now,
        ))
        RecordStore(self.session, MRBModel).upsert(mrb)

        ncr_ids = list(mrb.linked_ncr_ids())
        if mrb.source_type == MRBSourceType.NCR.value and mrb.source_id:
            ncr_ids.append(mrb.source_id)
        ncrs = RecordStore(self.session, NCRModel)
        for ncr_id in dict.fromkeys(ncr_ids):
            ncr = ncrs.read(ncr_id)
            if ncr is None:
                continue
            self._unescalate(ncr, actor, now, f"Removed from MRB {mrb.number}")
