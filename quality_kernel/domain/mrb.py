"""
MRB domain types (``quality_kernel.domain.mrb``).

Responsibility
--------------
Material Review Board records come in two variants:

* **Native** -- persisted with their own identity and state.
* **Virtual** -- computed on every read from an NCR whose status is
  pending disposition, in review or closed.  The virtual id is
  ``mrb-<ncrId>`` and its status is always the NCR's status.

``resolve_mrb_id`` turns an MRB id into an ``MRBReference`` exactly once
at the boundary; nothing downstream inspects id prefixes.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects and pure functions.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Self

from quality_kernel.domain.ncr import (
    NCR,
    Disposition,
    DispositionDecision,
    HistoryEntry,
    NCRSeverity,
    NCRStatus,
    coerce_enum,
    coerce_count,
)
from quality_kernel.exceptions import (
    InvalidFieldValueError,
    MissingFieldError,
    UnknownFieldError,
)

VIRTUAL_MRB_PREFIX = "mrb-"

# NCR statuses that project into a virtual MRB.
PROJECTED_NCR_STATUSES: frozenset[NCRStatus] = frozenset({
    NCRStatus.PENDING_DISPOSITION,
    NCRStatus.IN_REVIEW,
    NCRStatus.CLOSED,
})


class MRBStatus(str, Enum):
    """Native MRB lifecycle states."""

    PENDING_REVIEW = "pending_review"
    IN_REVIEW = "in_review"
    PENDING_DISPOSITION = "pending_disposition"
    DISPOSITION_PENDING = "disposition_pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CLOSED = "closed"


class MRBSourceType(str, Enum):
    NCR = "NCR"
    CAPA = "CAPA"
    SCAR = "SCAR"


@dataclass(frozen=True)
class LinkedNCR:
    ncr_id: str
    disposition_notes: str = ""


@dataclass(frozen=True)
class MRBReference:
    """An MRB id resolved to its variant.

    ``ncr_id`` is the backing NCR for virtual references and ``None`` for
    native ones.
    """

    mrb_id: str
    ncr_id: str | None
    is_virtual: bool


def virtual_mrb_id(ncr_id: str) -> str:
    return f"{VIRTUAL_MRB_PREFIX}{ncr_id}"


def resolve_mrb_id(mrb_id: str) -> MRBReference:
    """Resolve an MRB id: ``mrb-<x>`` is virtual over NCR ``x``."""
    if mrb_id.startswith(VIRTUAL_MRB_PREFIX):
        return MRBReference(
            mrb_id=mrb_id,
            ncr_id=mrb_id[len(VIRTUAL_MRB_PREFIX):],
            is_virtual=True,
        )
    return MRBReference(mrb_id=mrb_id, ncr_id=None, is_virtual=False)


def default_mrb_number(ncr: NCR) -> str:
    return f"MRB-{ncr.number}"


@dataclass(frozen=True)
class MRB:
    """An MRB record as presented to readers (native or virtual)."""

    id: str
    number: str
    title: str
    description: str
    status: str
    is_virtual: bool
    disposition: Disposition
    severity: NCRSeverity | None = None
    source_type: MRBSourceType | None = None
    source_id: str | None = None
    part_number: str | None = None
    lot_number: str | None = None
    quantity: int | None = None
    location: str | None = None
    linked_ncrs: tuple[LinkedNCR, ...] = ()
    history: tuple[HistoryEntry, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None


def project_ncr(ncr: NCR) -> MRB:
    """Compute the virtual MRB for an NCR.

    Preconditions: ``ncr.status`` is one of ``PROJECTED_NCR_STATUSES``.
    """
    return MRB(
        id=virtual_mrb_id(ncr.id),
        number=ncr.mrb_number or default_mrb_number(ncr),
        title=ncr.title,
        description=ncr.description,
        status=ncr.status.value,
        is_virtual=True,
        disposition=ncr.disposition,
        severity=ncr.severity,
        source_type=MRBSourceType.NCR,
        source_id=ncr.id,
        part_number=ncr.part_number,
        lot_number=ncr.lot_number,
        quantity=ncr.quantity_affected,
        location=ncr.area or None,
        history=ncr.history,
        created_at=ncr.created_at,
        updated_at=ncr.updated_at,
    )


@dataclass(frozen=True)
class MRBDraft:
    """Caller input for a natively created MRB."""

    title: str
    description: str = ""
    severity: NCRSeverity = NCRSeverity.MINOR
    status: MRBStatus = MRBStatus.PENDING_REVIEW
    source_type: MRBSourceType | None = None
    source_id: str | None = None
    part_number: str | None = None
    lot_number: str | None = None
    quantity: int | None = None
    location: str | None = None
    linked_ncrs: tuple[LinkedNCR, ...] = ()
    disposition_decision: DispositionDecision = DispositionDecision.USE_AS_IS
    disposition_justification: str = ""

    def __post_init__(self) -> None:
        if not self.title or not self.title.strip():
            raise MissingFieldError("MRB", "title")

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> Self:
        data = dict(data)
        disposition = data.pop("disposition", None) or {}
        unknown_disposition = set(disposition) - {"decision", "justification"}
        if unknown_disposition:
            raise UnknownFieldError(
                "MRB", [f"disposition.{k}" for k in unknown_disposition],
            )
        allowed = {
            "title", "description", "severity", "status", "source_type",
            "source_id", "part_number", "lot_number", "quantity", "location",
            "linked_ncrs",
        }
        unknown = set(data) - allowed
        if unknown:
            raise UnknownFieldError("MRB", list(unknown))
        if not data.get("title"):
            raise MissingFieldError("MRB", "title")

        source_type = data.get("source_type")
        return cls(
            title=str(data["title"]),
            description=str(data.get("description") or ""),
            severity=coerce_enum(
                NCRSeverity, "MRB", "severity", data.get("severity", NCRSeverity.MINOR),
            ),
            status=coerce_enum(
                MRBStatus, "MRB", "status", data.get("status", MRBStatus.PENDING_REVIEW),
            ),
            source_type=(
                coerce_enum(MRBSourceType, "MRB", "source_type", source_type)
                if source_type is not None else None
            ),
            source_id=data.get("source_id"),
            part_number=data.get("part_number"),
            lot_number=data.get("lot_number"),
            quantity=coerce_count("MRB", "quantity", data.get("quantity")),
            location=data.get("location"),
            linked_ncrs=_linked_ncrs_from_payload(data.get("linked_ncrs") or ()),
            disposition_decision=coerce_enum(
                DispositionDecision,
                "MRB",
                "disposition.decision",
                disposition.get("decision", DispositionDecision.USE_AS_IS),
            ),
            disposition_justification=str(disposition.get("justification") or ""),
        )


def _linked_ncrs_from_payload(items: Sequence[Any]) -> tuple[LinkedNCR, ...]:
    linked = []
    for item in items:
        if isinstance(item, LinkedNCR):
            linked.append(item)
            continue
        if not isinstance(item, Mapping) or not item.get("ncr_id"):
            raise InvalidFieldValueError("MRB", "linked_ncrs", item, "expected {ncr_id, disposition_notes}")
        linked.append(LinkedNCR(
            ncr_id=str(item["ncr_id"]),
            disposition_notes=str(item.get("disposition_notes") or ""),
        ))
    return tuple(linked)
