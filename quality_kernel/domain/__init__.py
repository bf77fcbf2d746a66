"""
Pure domain layer.

Value objects, enums and pure functions for NCRs, MRBs and CAPAs, with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable.
"""

from quality_kernel.domain.capa import (
    CAPA,
    CAPA_TRANSITIONS,
    CAPA_WORKFLOW,
    CAPAAction,
    CAPAActionType,
    CAPADraft,
    CAPAPriority,
    CAPAStatus,
    CAPAType,
    TERMINAL_CAPA_STATUSES,
    is_allowed_transition,
)
from quality_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from quality_kernel.domain.mrb import (
    MRB,
    LinkedNCR,
    MRBDraft,
    MRBReference,
    MRBSourceType,
    MRBStatus,
    project_ncr,
    resolve_mrb_id,
    virtual_mrb_id,
)
from quality_kernel.domain.ncr import (
    NCR,
    Approval,
    Attachment,
    Disposition,
    DispositionDecision,
    HistoryEntry,
    HistoryType,
    NCRDraft,
    NCRPatch,
    NCRSeverity,
    NCRStatus,
    NCRType,
    format_ncr_number,
)

__all__ = [
    # NCR
    "Approval",
    "Attachment",
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
    "format_ncr_number",
    # MRB
    "LinkedNCR",
    "MRB",
    "MRBDraft",
    "MRBReference",
    "MRBSourceType",
    "MRBStatus",
    "project_ncr",
    "resolve_mrb_id",
    "virtual_mrb_id",
    # CAPA
    "CAPA",
    "CAPAAction",
    "CAPAActionType",
    "CAPADraft",
    "CAPAPriority",
    "CAPAStatus",
    "CAPAType",
    "CAPA_TRANSITIONS",
    "CAPA_WORKFLOW",
    "TERMINAL_CAPA_STATUSES",
    "is_allowed_transition",
    # Clock
    "Clock",
    "SystemClock",
    "DeterministicClock",
]
