"""
Module: quality_kernel.models.capa
Responsibility: ORM persistence for CAPA records and their action list.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - ``status`` is limited to the CAPA state set by a check constraint; the
      transition graph itself is enforced by CAPAService.
    - ``actions`` is append-only and replaced wholesale on change.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, CheckConstraint, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from quality_kernel.db.base import TrackedBase
from quality_kernel.domain.capa import (
    CAPA,
    CAPAAction,
    CAPAActionType,
    CAPAPriority,
    CAPAStatus,
    CAPAType,
)
from quality_kernel.models.ncr import dump_datetime, load_datetime


def action_to_json(action: CAPAAction) -> dict[str, Any]:
    return {
        "id": action.id,
        "type": action.type.value,
        "description": action.description,
        "status": action.status,
        "actor": action.actor,
        "comment": action.comment,
        "created_at": dump_datetime(action.created_at),
    }


class CAPAModel(TrackedBase):
    """Persistent CAPA row."""

    __tablename__ = "capas"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'open', 'in_progress', 'pending_review', "
            "'under_investigation', 'implementing', 'pending_verification', "
            "'completed', 'verified', 'closed', 'cancelled')",
            name="ck_capas_valid_status",
        ),
    )

    number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="corrective")
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    area: Mapped[str | None] = mapped_column(String(100), nullable=True)
    root_cause: Mapped[str | None] = mapped_column(Text, nullable=True)
    verification_method: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_review_date: Mapped[datetime | None] = mapped_column(nullable=True)
    source_ncr_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    source_ncr_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    actions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<CAPA {self.number} status={self.status} v{self.version}>"

    def append_action(self, action: CAPAAction) -> None:
        self.actions = [*(self.actions or []), action_to_json(action)]

    def to_dto(self) -> CAPA:
        """Convert ORM model to frozen domain DTO."""
        return CAPA(
            id=self.id,
            number=self.number,
            title=self.title,
            description=self.description,
            status=CAPAStatus(self.status),
            priority=CAPAPriority(self.priority),
            type=CAPAType(self.type),
            category=self.category,
            area=self.area,
            root_cause=self.root_cause,
            verification_method=self.verification_method,
            scheduled_review_date=self.scheduled_review_date,
            source_ncr_id=self.source_ncr_id,
            source_ncr_number=self.source_ncr_number,
            actions=tuple(
                CAPAAction(
                    id=a["id"],
                    type=CAPAActionType(a["type"]),
                    description=a.get("description") or "",
                    actor=a.get("actor") or "",
                    created_at=load_datetime(a["created_at"]),
                    comment=a.get("comment") or "",
                    status=a.get("status") or "open",
                )
                for a in self.actions or ()
            ),
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )
