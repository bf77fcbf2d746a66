"""
CAPAService -- CAPA records and the CAPA status state machine.

Responsibility:
    Create, read and list CAPAs; move a CAPA through its status graph;
    append corrective/preventive actions.

Architecture position:
    Kernel > Services -- imperative shell over ``domain.capa``.

Invariants enforced:
    - Every status write is checked against ``CAPA_TRANSITIONS``.  There is
      no way to skip a state or leave ``closed``/``cancelled``.
    - Every successful transition appends a ``status_change`` action with
      the actor and comment.
    - New CAPAs start as ``draft`` or ``open``; nothing else.

Failure modes:
    - CAPANotFoundError for unknown ids.
    - InvalidCAPATransitionError for an edge that is not in the table,
      including status strings that are not CAPA statuses at all.
    - ValidationError for bad create/action input.
    - ConcurrencyConflictError when concurrent writers keep winning.
"""

from __future__ import annotations

from quality_kernel.db.base import new_id
from quality_kernel.db.repository import RecordStore
from quality_kernel.domain.capa import (
    CAPA,
    CAPAAction,
    CAPAActionType,
    CAPADraft,
    CAPAStatus,
    is_allowed_transition,
)
from quality_kernel.domain.ncr import coerce_enum
from quality_kernel.exceptions import (
    CAPANotFoundError,
    InvalidCAPATransitionError,
    InvalidFieldValueError,
    MissingFieldError,
)
from quality_kernel.logging_config import get_logger
from quality_kernel.models.capa import CAPAModel
from quality_kernel.services.base import BaseService
from quality_kernel.services.capa_generator import format_capa_number

_CREATABLE_STATUSES = frozenset({CAPAStatus.DRAFT, CAPAStatus.OPEN})


class CAPAService(BaseService):
    """CAPA lifecycle operations."""

    logger = get_logger("services.capa_service")

    def _load(self, capa_id: str) -> CAPAModel:
        capa = RecordStore(self.session, CAPAModel).read(capa_id)
        if capa is None:
            raise CAPANotFoundError(capa_id)
        return capa

    def get(self, capa_id: str) -> CAPA:
        return self._load(capa_id).to_dto()

    def list(self, status: CAPAStatus | str | None = None) -> list[CAPA]:
        """All CAPAs, newest first, optionally filtered by status."""
        store = RecordStore(self.session, CAPAModel)
        criteria = []
        if status is not None:
            criteria.append(
                CAPAModel.status == coerce_enum(CAPAStatus, "CAPA", "status", status).value
            )
        return [
            c.to_dto()
            for c in store.query(*criteria, order_by=CAPAModel.created_at.desc())
        ]

    def create(self, draft: CAPADraft, actor: str) -> CAPA:
        if draft.status not in _CREATABLE_STATUSES:
            raise InvalidFieldValueError(
                "CAPA", "status", draft.status.value, "new CAPAs start as draft or open",
            )

        def unit() -> CAPA:
            now = self.clock.now()
            capa = RecordStore(self.session, CAPAModel).create(CAPAModel(
                id=new_id(),
                number=format_capa_number(now),
                title=draft.title.strip(),
                description=draft.description,
                status=draft.status.value,
                priority=draft.priority.value,
                type=draft.type.value,
                category=draft.category,
                area=draft.area,
                root_cause=draft.root_cause,
                verification_method=draft.verification_method,
                scheduled_review_date=draft.scheduled_review_date,
                source_ncr_id=draft.source_ncr_id,
                source_ncr_number=draft.source_ncr_number,
                actions=[],
                created_at=now,
                updated_at=now,
                created_by=actor,
            ))
            return capa.to_dto()

        result = self._run_in_transaction(unit)
        self.logger.info(
            "capa_created",
            extra={"capa_id": result.id, "capa_number": result.number, "actor": actor},
        )
        return result

    def transition(
        self,
        capa_id: str,
        new_status: CAPAStatus | str,
        actor: str,
        comment: str = "",
    ) -> CAPA:
        """Move a CAPA along one edge of the status graph."""

        def unit() -> CAPA:
            capa = self._load(capa_id)
            current = CAPAStatus(capa.status)
            try:
                target = CAPAStatus(new_status)
            except ValueError:
                raise InvalidCAPATransitionError(
                    capa_id, current.value, str(new_status),
                ) from None
            if not is_allowed_transition(current, target):
                raise InvalidCAPATransitionError(capa_id, current.value, target.value)

            now = self.clock.now()
            capa.status = target.value
            capa.updated_at = now
            capa.updated_by = actor
            capa.append_action(CAPAAction(
                id=new_id(),
                type=CAPAActionType.STATUS_CHANGE,
                description=f"{current.value} -> {target.value}",
                actor=actor,
                created_at=now,
                comment=comment,
                status="completed",
            ))
            RecordStore(self.session, CAPAModel).upsert(capa)
            return capa.to_dto()

        try:
            result = self._run_versioned(unit, "CAPA", capa_id)
        except InvalidCAPATransitionError as exc:
            self.logger.warning(
                "capa_transition_rejected",
                extra={
                    "capa_id": capa_id,
                    "from_state": exc.from_state,
                    "to_state": exc.to_state,
                    "actor": actor,
                },
            )
            raise

        self.logger.info(
            "capa_status_changed",
            extra={
                "capa_id": capa_id,
                "to_state": result.status.value,
                "actor": actor,
            },
        )
        return result

    def add_action(
        self,
        capa_id: str,
        action_type: CAPAActionType | str,
        description: str,
        actor: str,
        comment: str = "",
    ) -> CAPA:
        """Append a corrective or preventive action to a CAPA."""
        try:
            kind = CAPAActionType(action_type)
        except ValueError:
            kind = None
        if kind not in (CAPAActionType.CORRECTIVE, CAPAActionType.PREVENTIVE):
            raise InvalidFieldValueError(
                "CAPA", "action.type", action_type, "expected corrective or preventive",
            )
        if not description or not description.strip():
            raise MissingFieldError("CAPA", "action.description")

        def unit() -> CAPA:
            capa = self._load(capa_id)
            now = self.clock.now()
            capa.updated_at = now
            capa.updated_by = actor
            capa.append_action(CAPAAction(
                id=new_id(),
                type=kind,
                description=description.strip(),
                actor=actor,
                created_at=now,
                comment=comment,
            ))
            RecordStore(self.session, CAPAModel).upsert(capa)
            return capa.to_dto()

        result = self._run_versioned(unit, "CAPA", capa_id)
        self.logger.info(
            "capa_action_added",
            extra={"capa_id": capa_id, "action_type": kind.value, "actor": actor},
        )
        return result
