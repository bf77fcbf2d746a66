"""
NCR domain types (``quality_kernel.domain.ncr``).

Responsibility
--------------
The nouns of a Non-Conformance Report: its status and severity enums, the
disposition and its approval trail, attachment metadata, history entries,
the creation draft and the explicit patch type that lists exactly which
fields a caller may change.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* NCR numbers follow ``<DeptCode>-<YYYYMMDD>-<HHMM>``.
* Unknown areas map to the default department code.
* ``NCRPatch.from_payload`` rejects every key that is not a mutable field.
* Approvals are never part of a patch; they are appended only by the
  disposition approval service.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any, Self

from quality_kernel.domain.workflow import Transition, Workflow
from quality_kernel.exceptions import (
    InvalidFieldValueError,
    MissingFieldError,
    UnknownFieldError,
)


class NCRStatus(str, Enum):
    """NCR lifecycle states."""

    OPEN = "open"
    PENDING_DISPOSITION = "pending_disposition"
    IN_REVIEW = "in_review"
    CLOSED = "closed"


class NCRSeverity(str, Enum):
    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"


class NCRType(str, Enum):
    PRODUCT = "product"
    PROCESS = "process"
    MATERIAL = "material"
    DOCUMENTATION = "documentation"


class DispositionDecision(str, Enum):
    """What happens to the nonconforming material."""

    USE_AS_IS = "use_as_is"
    REWORK = "rework"
    SCRAP = "scrap"
    RETURN_TO_SUPPLIER = "return_to_supplier"


class HistoryType(str, Enum):
    CREATED = "Created"
    UPDATE = "Update"
    DISPOSITION = "Disposition"
    ATTACHMENT = "Attachment"
    MRB = "MRB"
    CAPA = "CAPA"


# Statuses a caller may set through a patch.  ``closed`` is reached only
# through disposition approval quorum.
PATCHABLE_NCR_STATUSES: frozenset[NCRStatus] = frozenset({
    NCRStatus.OPEN,
    NCRStatus.PENDING_DISPOSITION,
    NCRStatus.IN_REVIEW,
})

NCR_WORKFLOW = Workflow(
    name="ncr",
    description="Non-conformance report lifecycle",
    initial_state=NCRStatus.OPEN.value,
    states=tuple(s.value for s in NCRStatus),
    transitions=(
        Transition("open", "pending_disposition", action="escalate"),
        Transition("open", "in_review", action="review"),
        Transition("pending_disposition", "in_review", action="review"),
        Transition("pending_disposition", "open", action="unescalate"),
        Transition("in_review", "pending_disposition", action="return"),
        Transition("in_review", "open", action="unescalate"),
        Transition("open", "closed", action="approve_disposition"),
        Transition("pending_disposition", "closed", action="approve_disposition"),
        Transition("in_review", "closed", action="approve_disposition"),
        Transition("closed", "open", action="unescalate"),
    ),
)


# =========================================================================
# Numbering
# =========================================================================

DEFAULT_DEPARTMENT_CODE = "GEN"

DEFAULT_DEPARTMENT_CODES: Mapping[str, str] = {
    "receiving": "RCV",
    "production": "PRD",
    "assembly": "ASM",
    "machining": "MCH",
    "fabrication": "FAB",
    "welding": "WLD",
    "painting": "PNT",
    "quality": "QA",
    "warehouse": "WHS",
    "shipping": "SHP",
    "engineering": "ENG",
    "maintenance": "MNT",
}


def department_code(
    area: str | None,
    codes: Mapping[str, str] = DEFAULT_DEPARTMENT_CODES,
    default: str = DEFAULT_DEPARTMENT_CODE,
) -> str:
    """Map an area name to its department code (case-insensitive)."""
    if not area:
        return default
    return codes.get(area.strip().lower(), default)


def format_ncr_number(
    area: str | None,
    at: datetime,
    codes: Mapping[str, str] = DEFAULT_DEPARTMENT_CODES,
    default: str = DEFAULT_DEPARTMENT_CODE,
) -> str:
    """Build ``<DeptCode>-<YYYYMMDD>-<HHMM>`` for an NCR created at ``at``."""
    return f"{department_code(area, codes, default)}-{at:%Y%m%d}-{at:%H%M}"


# =========================================================================
# Value objects
# =========================================================================


@dataclass(frozen=True)
class Approval:
    """One approver's sign-off on a disposition."""

    approver: str
    role: str
    date: datetime
    comment: str = ""


@dataclass(frozen=True)
class Disposition:
    """Disposition decision and its ordered approval trail."""

    decision: DispositionDecision = DispositionDecision.USE_AS_IS
    justification: str = ""
    conditions: str = ""
    approvals: tuple[Approval, ...] = ()
    approval_date: datetime | None = None

    @property
    def approvers(self) -> frozenset[str]:
        """Distinct approver identities recorded so far."""
        return frozenset(a.approver for a in self.approvals)


@dataclass(frozen=True)
class Attachment:
    """Metadata for a blob held in object storage."""

    id: str
    name: str
    content_type: str
    size: int
    url: str
    uploaded_by: str
    uploaded_at: datetime


@dataclass(frozen=True)
class HistoryEntry:
    """Append-only audit entry on an NCR or native MRB."""

    type: str
    action: str
    description: str
    user: str
    timestamp: datetime


@dataclass(frozen=True)
class NCR:
    """A Non-Conformance Report as read from the store."""

    id: str
    number: str
    title: str
    description: str
    type: NCRType
    severity: NCRSeverity
    status: NCRStatus
    area: str
    reported_by: str
    disposition: Disposition
    part_number: str | None = None
    lot_number: str | None = None
    quantity_affected: int | None = None
    linked_capa_id: str | None = None
    mrb_id: str | None = None
    mrb_number: str | None = None
    attachments: tuple[Attachment, ...] = ()
    history: tuple[HistoryEntry, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 1


# =========================================================================
# Inputs
# =========================================================================


def coerce_enum(enum_type: type[Enum], entity: str, name: str, value: Any) -> Any:
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_type)
        raise InvalidFieldValueError(entity, name, value, f"expected one of {allowed}")


def coerce_count(entity: str, name: str, value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidFieldValueError(entity, name, value, "expected an integer")
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise InvalidFieldValueError(entity, name, value, "expected an integer")
    if result < 0:
        raise InvalidFieldValueError(entity, name, value, "must not be negative")
    return result


@dataclass(frozen=True)
class NCRDraft:
    """Caller input for NCR creation."""

    title: str
    description: str = ""
    type: NCRType = NCRType.PRODUCT
    severity: NCRSeverity = NCRSeverity.MINOR
    area: str = ""
    reported_by: str = ""
    part_number: str | None = None
    lot_number: str | None = None
    quantity_affected: int | None = None
    disposition_decision: DispositionDecision = DispositionDecision.USE_AS_IS
    disposition_justification: str = ""
    disposition_conditions: str = ""

    def __post_init__(self) -> None:
        if not self.title or not self.title.strip():
            raise MissingFieldError("NCR", "title")

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> Self:
        """Build a draft from a snake_case payload, rejecting unknown keys."""
        data = dict(data)
        disposition = data.pop("disposition", None) or {}
        if not isinstance(disposition, Mapping):
            raise InvalidFieldValueError("NCR", "disposition", disposition, "expected an object")
        unknown_disposition = set(disposition) - {"decision", "justification", "conditions"}
        if unknown_disposition:
            raise UnknownFieldError(
                "NCR", [f"disposition.{k}" for k in unknown_disposition],
            )

        allowed = {f.name for f in fields(cls)} - {
            "disposition_decision",
            "disposition_justification",
            "disposition_conditions",
        }
        unknown = set(data) - allowed
        if unknown:
            raise UnknownFieldError("NCR", list(unknown))
        if not data.get("title"):
            raise MissingFieldError("NCR", "title")

        return cls(
            title=str(data["title"]),
            description=str(data.get("description") or ""),
            type=coerce_enum(NCRType, "NCR", "type", data.get("type", NCRType.PRODUCT)),
            severity=coerce_enum(
                NCRSeverity, "NCR", "severity", data.get("severity", NCRSeverity.MINOR),
            ),
            area=str(data.get("area") or ""),
            reported_by=str(data.get("reported_by") or ""),
            part_number=data.get("part_number"),
            lot_number=data.get("lot_number"),
            quantity_affected=coerce_count("NCR", "quantity_affected", data.get("quantity_affected")),
            disposition_decision=coerce_enum(
                DispositionDecision,
                "NCR",
                "disposition.decision",
                disposition.get("decision", DispositionDecision.USE_AS_IS),
            ),
            disposition_justification=str(disposition.get("justification") or ""),
            disposition_conditions=str(disposition.get("conditions") or ""),
        )


@dataclass(frozen=True)
class NCRPatch:
    """The mutable fields of an NCR.  ``None`` means "leave unchanged"."""

    title: str | None = None
    description: str | None = None
    type: NCRType | None = None
    severity: NCRSeverity | None = None
    area: str | None = None
    reported_by: str | None = None
    part_number: str | None = None
    lot_number: str | None = None
    quantity_affected: int | None = None
    status: NCRStatus | None = None
    disposition_decision: DispositionDecision | None = None
    disposition_justification: str | None = None
    disposition_conditions: str | None = None
    attachments: tuple[Attachment, ...] | None = None

    def changed_fields(self) -> list[str]:
        """Names of the fields this patch sets, in declaration order."""
        return [f.name for f in fields(self) if getattr(self, f.name) is not None]

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> Self:
        """Build a patch from a snake_case payload, rejecting unknown keys.

        ``disposition`` may be given as a nested object holding
        ``decision``, ``justification`` and ``conditions`` only.
        """
        data = dict(data)
        kwargs: dict[str, Any] = {}

        disposition = data.pop("disposition", None)
        if disposition is not None:
            if not isinstance(disposition, Mapping):
                raise InvalidFieldValueError(
                    "NCR", "disposition", disposition, "expected an object",
                )
            unknown_disposition = set(disposition) - {"decision", "justification", "conditions"}
            if unknown_disposition:
                raise UnknownFieldError(
                    "NCR", [f"disposition.{k}" for k in unknown_disposition],
                )
            if "decision" in disposition:
                if not disposition["decision"]:
                    raise MissingFieldError("NCR", "disposition.decision")
                kwargs["disposition_decision"] = coerce_enum(
                    DispositionDecision, "NCR", "disposition.decision", disposition["decision"],
                )
            if "justification" in disposition:
                kwargs["disposition_justification"] = str(disposition["justification"] or "")
            if "conditions" in disposition:
                kwargs["disposition_conditions"] = str(disposition["conditions"] or "")

        allowed = {f.name for f in fields(cls)}
        unknown = set(data) - allowed
        if unknown:
            raise UnknownFieldError("NCR", list(unknown))

        for name in ("title", "description", "area", "reported_by", "part_number", "lot_number"):
            if name in data and data[name] is not None:
                kwargs[name] = str(data[name])
        if kwargs.get("title") is not None and not kwargs["title"].strip():
            raise MissingFieldError("NCR", "title")
        if data.get("type") is not None:
            kwargs["type"] = coerce_enum(NCRType, "NCR", "type", data["type"])
        if data.get("severity") is not None:
            kwargs["severity"] = coerce_enum(NCRSeverity, "NCR", "severity", data["severity"])
        if data.get("status") is not None:
            kwargs["status"] = coerce_enum(NCRStatus, "NCR", "status", data["status"])
        if data.get("quantity_affected") is not None:
            kwargs["quantity_affected"] = coerce_count(
                "NCR", "quantity_affected", data["quantity_affected"],
            )
        if data.get("disposition_decision") is not None:
            kwargs["disposition_decision"] = coerce_enum(
                DispositionDecision, "NCR", "disposition_decision", data["disposition_decision"],
            )
        for name in ("disposition_justification", "disposition_conditions"):
            if data.get(name) is not None:
                kwargs[name] = str(data[name])
        if data.get("attachments") is not None:
            kwargs["attachments"] = tuple(
                _attachment_from_payload(a) for a in data["attachments"]
            )

        return cls(**kwargs)


def _attachment_from_payload(data: Any) -> Attachment:
    if isinstance(data, Attachment):
        return data
    if not isinstance(data, Mapping):
        raise InvalidFieldValueError("NCR", "attachments", data, "expected an object")
    missing = [k for k in ("id", "name", "url") if not data.get(k)]
    if missing:
        raise MissingFieldError("Attachment", missing[0])
    uploaded_at = data.get("uploaded_at")
    if isinstance(uploaded_at, str):
        try:
            uploaded_at = datetime.fromisoformat(uploaded_at)
        except ValueError:
            raise InvalidFieldValueError("Attachment", "uploaded_at", uploaded_at)
    if not isinstance(uploaded_at, datetime):
        raise MissingFieldError("Attachment", "uploaded_at")
    return Attachment(
        id=str(data["id"]),
        name=str(data["name"]),
        content_type=str(data.get("content_type") or "application/octet-stream"),
        size=coerce_count("Attachment", "size", data.get("size")) or 0,
        url=str(data["url"]),
        uploaded_by=str(data.get("uploaded_by") or ""),
        uploaded_at=uploaded_at,
    )


__all__ = [
    "Approval",
    "Attachment",
    "DEFAULT_DEPARTMENT_CODE",
    "DEFAULT_DEPARTMENT_CODES",
    "Disposition",
    "DispositionDecision",
    "HistoryEntry",
    "HistoryType",
    "NCR",
    "NCRDraft",
    "NCRPatch",
    "NCRSeverity",
    "NCRStatus",
    "NCRType",
    "NCR_WORKFLOW",
    "PATCHABLE_NCR_STATUSES",
    "department_code",
    "format_ncr_number",
]
