"""
Module: quality_kernel.models.mrb
Responsibility: ORM persistence for natively created MRB records.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Virtual MRBs are never stored; see ``quality_kernel.domain.mrb.project_ncr``.
Native rows are soft-deleted (``is_deleted``) so their history survives.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Boolean, CheckConstraint, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from quality_kernel.db.base import TrackedBase
from quality_kernel.domain.mrb import MRB, LinkedNCR, MRBSourceType
from quality_kernel.domain.ncr import HistoryEntry, NCRSeverity
from quality_kernel.models.ncr import (
    disposition_from_json,
    history_from_json,
    history_to_json,
)


def linked_ncrs_to_json(linked: tuple[LinkedNCR, ...]) -> list[dict[str, Any]]:
    return [
        {"ncr_id": item.ncr_id, "disposition_notes": item.disposition_notes}
        for item in linked
    ]


class MRBModel(TrackedBase):
    """Persistent native MRB row."""

    __tablename__ = "mrbs"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending_review', 'in_review', 'pending_disposition', "
            "'disposition_pending', 'approved', 'rejected', 'closed')",
            name="ck_mrbs_valid_status",
        ),
    )

    number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending_review")
    severity: Mapped[str | None] = mapped_column(String(16), nullable=True)
    source_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    source_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    part_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    linked_ncrs: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    disposition: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<MRB {self.number} status={self.status} v{self.version}>"

    def linked_ncr_ids(self) -> list[str]:
        return [item["ncr_id"] for item in self.linked_ncrs or ()]

    def append_history(self, entry: HistoryEntry) -> None:
        self.history = [*(self.history or []), history_to_json(entry)]

    def to_dto(self) -> MRB:
        """Convert ORM model to frozen domain DTO."""
        return MRB(
            id=self.id,
            number=self.number,
            title=self.title,
            description=self.description,
            status=self.status,
            is_virtual=False,
            disposition=disposition_from_json(self.disposition),
            severity=NCRSeverity(self.severity) if self.severity else None,
            source_type=MRBSourceType(self.source_type) if self.source_type else None,
            source_id=self.source_id,
            part_number=self.part_number,
            lot_number=self.lot_number,
            quantity=self.quantity,
            location=self.location,
            linked_ncrs=tuple(
                LinkedNCR(
                    ncr_id=item["ncr_id"],
                    disposition_notes=item.get("disposition_notes") or "",
                )
                for item in self.linked_ncrs or ()
            ),
            history=history_from_json(self.history),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
