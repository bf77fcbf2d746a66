"""
CAPAGenerator -- automatic corrective action for critical NCRs.

Responsibility:
    Given a critical NCR, make sure exactly one CAPA exists for it and that
    the NCR's ``linked_capa_id`` points at that CAPA.

Architecture position:
    Kernel > Services.  Called by NCRService after an NCR is committed.

Invariants enforced:
    - Idempotent: a CAPA is reused when ``ncr.linked_capa_id`` resolves or
      when one already carries ``source_ncr_id == ncr.id``.
    - Generated CAPAs are ``open``, ``high`` priority, ``corrective``, with
      the root-cause placeholder and a review date ``capa_review_days`` out.
    - Flush only.  The caller owns the transaction.

Failure modes:
    - CAPAGenerationError wraps any database failure.  The caller rolls
      back, logs and carries on; the NCR itself is already committed.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from quality_kernel.db.base import new_id
from quality_kernel.db.repository import RecordStore
from quality_kernel.domain.capa import (
    CAPA,
    CAPAPriority,
    CAPAStatus,
    CAPAType,
    ROOT_CAUSE_PLACEHOLDER,
)
from quality_kernel.domain.ncr import HistoryEntry, HistoryType, NCRSeverity
from quality_kernel.exceptions import CAPAGenerationError
from quality_kernel.logging_config import get_logger
from quality_kernel.models.capa import CAPAModel
from quality_kernel.models.ncr import NCRModel
from quality_kernel.services.base import BaseService


def format_capa_number(at: datetime) -> str:
    """``CAPA-<YYYYMMDD>-<6 hex>``."""
    return f"CAPA-{at:%Y%m%d}-{uuid4().hex[:6].upper()}"


class CAPAGenerator(BaseService):
    """Creates (or finds) the CAPA that a critical NCR escalates into."""

    logger = get_logger("services.capa_generator")

    def maybe_generate(self, ncr: NCRModel, actor: str = "system") -> CAPA | None:
        """Return the NCR's CAPA, generating it when needed.

        Returns None for NCRs that are not critical.
        """
        if ncr.severity != NCRSeverity.CRITICAL.value:
            return None

        try:
            return self._link_or_create(ncr, actor)
        except SQLAlchemyError as exc:
            raise CAPAGenerationError(ncr.id, str(exc)) from exc

    def _link_or_create(self, ncr: NCRModel, actor: str) -> CAPA:
        capas = RecordStore(self.session, CAPAModel)

        if ncr.linked_capa_id:
            linked = capas.read(ncr.linked_capa_id)
            if linked is not None:
                return linked.to_dto()

        existing = capas.query(
            CAPAModel.source_ncr_id == ncr.id,
            order_by=CAPAModel.created_at,
        )
        if existing:
            capa = existing[0]
            self._link(ncr, capa, actor, "capa_linked")
            return capa.to_dto()

        now = self.clock.now()
        capa = capas.create(CAPAModel(
            id=new_id(),
            number=format_capa_number(now),
            title=f"CAPA for {ncr.number}: {ncr.title}",
            description=(
                f"Corrective action for critical non-conformance {ncr.number}. "
                f"{ncr.description}".strip()
            ),
            status=CAPAStatus.OPEN.value,
            priority=CAPAPriority.HIGH.value,
            type=CAPAType.CORRECTIVE.value,
            category=ncr.type,
            area=ncr.area or None,
            root_cause=ROOT_CAUSE_PLACEHOLDER,
            scheduled_review_date=now + timedelta(days=self.settings.capa_review_days),
            source_ncr_id=ncr.id,
            source_ncr_number=ncr.number,
            actions=[],
            created_at=now,
            updated_at=now,
            created_by=actor,
        ))
        self._link(ncr, capa, actor, "capa_generated")

        self.logger.info(
            "capa_generated",
            extra={
                "ncr_id": ncr.id,
                "ncr_number": ncr.number,
                "capa_id": capa.id,
                "capa_number": capa.number,
            },
        )
        return capa.to_dto()

    def _link(self, ncr: NCRModel, capa: CAPAModel, actor: str, action: str) -> None:
        now = self.clock.now()
        ncr.linked_capa_id = capa.id
        ncr.updated_at = now
        ncr.updated_by = actor
        ncr.append_history(HistoryEntry(
            type=HistoryType.CAPA.value,
            action=action,
            description=f"CAPA {capa.number} linked to critical NCR",
            user=actor,
            timestamp=now,
        ))
        RecordStore(self.session, NCRModel).upsert(ncr)
