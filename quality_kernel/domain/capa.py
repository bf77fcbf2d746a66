"""
CAPA domain types (``quality_kernel.domain.capa``).

Responsibility
--------------
Corrective/Preventive Action records and the CAPA status state machine.

Invariants enforced
-------------------
* ``CAPA_TRANSITIONS`` defines the only valid status transitions.  No state
  may be skipped.  ``closed`` and ``cancelled`` are terminal.
* Every status change is recorded as a ``status_change`` action.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Self

from quality_kernel.domain.ncr import coerce_enum
from quality_kernel.domain.workflow import Transition, Workflow
from quality_kernel.exceptions import (
    InvalidFieldValueError,
    MissingFieldError,
    UnknownFieldError,
)


class CAPAStatus(str, Enum):
    """CAPA lifecycle states."""

    DRAFT = "draft"
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PENDING_REVIEW = "pending_review"
    UNDER_INVESTIGATION = "under_investigation"
    IMPLEMENTING = "implementing"
    PENDING_VERIFICATION = "pending_verification"
    COMPLETED = "completed"
    VERIFIED = "verified"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class CAPAPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CAPAType(str, Enum):
    CORRECTIVE = "corrective"
    PREVENTIVE = "preventive"
    IMPROVEMENT = "improvement"


class CAPAActionType(str, Enum):
    CORRECTIVE = "corrective"
    PREVENTIVE = "preventive"
    STATUS_CHANGE = "status_change"


ROOT_CAUSE_PLACEHOLDER = "Pending root cause analysis"


# =========================================================================
# Status state machine
# =========================================================================

CAPA_WORKFLOW = Workflow(
    name="capa",
    description="Corrective/preventive action lifecycle",
    initial_state=CAPAStatus.DRAFT.value,
    states=tuple(s.value for s in CAPAStatus),
    transitions=(
        Transition("draft", "open", action="submit"),
        Transition("open", "in_progress", action="start"),
        Transition("open", "cancelled", action="cancel"),
        Transition("in_progress", "pending_review", action="request_review"),
        Transition("in_progress", "under_investigation", action="investigate"),
        Transition("under_investigation", "implementing", action="implement"),
        Transition("pending_review", "implementing", action="implement"),
        Transition("pending_review", "cancelled", action="cancel"),
        Transition("implementing", "pending_verification", action="request_verification"),
        Transition("pending_verification", "completed", action="complete"),
        Transition("completed", "verified", action="verify"),
        Transition("verified", "closed", action="close"),
    ),
    terminal_states=(CAPAStatus.CLOSED.value, CAPAStatus.CANCELLED.value),
)

CAPA_TRANSITIONS: dict[CAPAStatus, frozenset[CAPAStatus]] = {
    status: frozenset(CAPAStatus(s) for s in CAPA_WORKFLOW.targets_from(status.value))
    for status in CAPAStatus
}

TERMINAL_CAPA_STATUSES: frozenset[CAPAStatus] = frozenset(
    CAPAStatus(s) for s in CAPA_WORKFLOW.terminal_states
)


def is_allowed_transition(current: CAPAStatus, new: CAPAStatus) -> bool:
    return new in CAPA_TRANSITIONS.get(current, frozenset())


# =========================================================================
# Records
# =========================================================================


@dataclass(frozen=True)
class CAPAAction:
    """One entry of a CAPA's ordered action list."""

    id: str
    type: CAPAActionType
    description: str
    actor: str
    created_at: datetime
    comment: str = ""
    status: str = "open"


@dataclass(frozen=True)
class CAPA:
    id: str
    number: str
    title: str
    description: str
    status: CAPAStatus
    priority: CAPAPriority
    type: CAPAType
    category: str | None = None
    area: str | None = None
    root_cause: str | None = None
    verification_method: str | None = None
    scheduled_review_date: datetime | None = None
    source_ncr_id: str | None = None
    source_ncr_number: str | None = None
    actions: tuple[CAPAAction, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 1


@dataclass(frozen=True)
class CAPADraft:
    """Caller input for direct CAPA creation."""

    title: str
    description: str = ""
    status: CAPAStatus = CAPAStatus.DRAFT
    priority: CAPAPriority = CAPAPriority.MEDIUM
    type: CAPAType = CAPAType.CORRECTIVE
    category: str | None = None
    area: str | None = None
    root_cause: str | None = None
    verification_method: str | None = None
    scheduled_review_date: datetime | None = None
    source_ncr_id: str | None = None
    source_ncr_number: str | None = None

    def __post_init__(self) -> None:
        if not self.title or not self.title.strip():
            raise MissingFieldError("CAPA", "title")

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> Self:
        allowed = {
            "title", "description", "status", "priority", "type", "category",
            "area", "root_cause", "verification_method",
            "scheduled_review_date", "source_ncr_id", "source_ncr_number",
        }
        unknown = set(data) - allowed
        if unknown:
            raise UnknownFieldError("CAPA", list(unknown))
        if not data.get("title"):
            raise MissingFieldError("CAPA", "title")

        review_date = data.get("scheduled_review_date")
        if isinstance(review_date, str):
            try:
                review_date = datetime.fromisoformat(review_date)
            except ValueError:
                raise InvalidFieldValueError(
                    "CAPA", "scheduled_review_date", review_date, "expected an ISO-8601 timestamp",
                )

        return cls(
            title=str(data["title"]),
            description=str(data.get("description") or ""),
            status=coerce_enum(CAPAStatus, "CAPA", "status", data.get("status", CAPAStatus.DRAFT)),
            priority=coerce_enum(
                CAPAPriority, "CAPA", "priority", data.get("priority", CAPAPriority.MEDIUM),
            ),
            type=coerce_enum(CAPAType, "CAPA", "type", data.get("type", CAPAType.CORRECTIVE)),
            category=data.get("category"),
            area=data.get("area"),
            root_cause=data.get("root_cause"),
            verification_method=data.get("verification_method"),
            scheduled_review_date=review_date,
            source_ncr_id=data.get("source_ncr_id"),
            source_ncr_number=data.get("source_ncr_number"),
        )
