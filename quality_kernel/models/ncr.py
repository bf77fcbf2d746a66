"""
Module: quality_kernel.models.ncr
Responsibility: ORM persistence for Non-Conformance Reports.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - ``version`` is the optimistic-concurrency token.  Every UPDATE is
      conditional on the version the row was read at.
    - Disposition, attachments and history are JSON documents.  They are
      replaced wholesale on change, never mutated in place, so that the
      ORM sees every write.

Failure modes:
    - StaleDataError on flush when another writer bumped ``version``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from quality_kernel.db.base import TrackedBase
from quality_kernel.domain.ncr import (
    NCR,
    Approval,
    Attachment,
    Disposition,
    DispositionDecision,
    HistoryEntry,
    NCRSeverity,
    NCRStatus,
    NCRType,
)


# =========================================================================
# JSON document codecs
# =========================================================================


def dump_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def load_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def approval_to_json(approval: Approval) -> dict[str, Any]:
    return {
        "approver": approval.approver,
        "role": approval.role,
        "date": dump_datetime(approval.date),
        "comment": approval.comment,
    }


def disposition_to_json(disposition: Disposition) -> dict[str, Any]:
    return {
        "decision": disposition.decision.value,
        "justification": disposition.justification,
        "conditions": disposition.conditions,
        "approvals": [approval_to_json(a) for a in disposition.approvals],
        "approval_date": dump_datetime(disposition.approval_date),
    }


def disposition_from_json(data: dict[str, Any] | None) -> Disposition:
    data = data or {}
    return Disposition(
        decision=DispositionDecision(data.get("decision") or DispositionDecision.USE_AS_IS.value),
        justification=data.get("justification") or "",
        conditions=data.get("conditions") or "",
        approvals=tuple(
            Approval(
                approver=a["approver"],
                role=a.get("role") or "",
                date=load_datetime(a["date"]),
                comment=a.get("comment") or "",
            )
            for a in data.get("approvals") or ()
        ),
        approval_date=load_datetime(data.get("approval_date")),
    )


def history_to_json(entry: HistoryEntry) -> dict[str, Any]:
    return {
        "type": entry.type,
        "action": entry.action,
        "description": entry.description,
        "user": entry.user,
        "timestamp": dump_datetime(entry.timestamp),
    }


def history_from_json(items: list[dict[str, Any]] | None) -> tuple[HistoryEntry, ...]:
    return tuple(
        HistoryEntry(
            type=h["type"],
            action=h["action"],
            description=h.get("description") or "",
            user=h.get("user") or "",
            timestamp=load_datetime(h["timestamp"]),
        )
        for h in items or ()
    )


def attachment_to_json(attachment: Attachment) -> dict[str, Any]:
    return {
        "id": attachment.id,
        "name": attachment.name,
        "content_type": attachment.content_type,
        "size": attachment.size,
        "url": attachment.url,
        "uploaded_by": attachment.uploaded_by,
        "uploaded_at": dump_datetime(attachment.uploaded_at),
    }


def attachments_from_json(items: list[dict[str, Any]] | None) -> tuple[Attachment, ...]:
    return tuple(
        Attachment(
            id=a["id"],
            name=a["name"],
            content_type=a.get("content_type") or "application/octet-stream",
            size=a.get("size") or 0,
            url=a["url"],
            uploaded_by=a.get("uploaded_by") or "",
            uploaded_at=load_datetime(a["uploaded_at"]),
        )
        for a in items or ()
    )


# =========================================================================
# Model
# =========================================================================


class NCRModel(TrackedBase):
    """Persistent NCR row."""

    __tablename__ = "ncrs"

    __table_args__ = (
        CheckConstraint(
            "status IN ('open', 'pending_disposition', 'in_review', 'closed')",
            name="ck_ncrs_valid_status",
        ),
        CheckConstraint(
            "severity IN ('minor', 'major', 'critical')",
            name="ck_ncrs_valid_severity",
        ),
        Index("ix_ncrs_status_created", "status", "created_at"),
    )

    number: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="open")
    area: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    reported_by: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    part_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity_affected: Mapped[int | None] = mapped_column(Integer, nullable=True)
    disposition: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    attachments: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    linked_capa_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    mrb_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    mrb_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<NCR {self.number} status={self.status} v{self.version}>"

    def append_history(self, entry: HistoryEntry) -> None:
        self.history = [*(self.history or []), history_to_json(entry)]

    def to_dto(self) -> NCR:
        """Convert ORM model to frozen domain DTO."""
        return NCR(
            id=self.id,
            number=self.number,
            title=self.title,
            description=self.description,
            type=NCRType(self.type),
            severity=NCRSeverity(self.severity),
            status=NCRStatus(self.status),
            area=self.area,
            reported_by=self.reported_by,
            disposition=disposition_from_json(self.disposition),
            part_number=self.part_number,
            lot_number=self.lot_number,
            quantity_affected=self.quantity_affected,
            linked_capa_id=self.linked_capa_id,
            mrb_id=self.mrb_id,
            mrb_number=self.mrb_number,
            attachments=attachments_from_json(self.attachments),
            history=history_from_json(self.history),
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )
