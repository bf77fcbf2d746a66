"""Kernel-side workflow settings, produced from configuration by a bridge."""

from collections.abc import Mapping
from dataclasses import dataclass, field

from quality_kernel.domain.ncr import DEFAULT_DEPARTMENT_CODE, DEFAULT_DEPARTMENT_CODES


@dataclass(frozen=True)
class WorkflowSettings:
    """Tunables consumed by the quality services.

    approval_quorum: distinct approvals that close a disposition.
    max_write_attempts: read-modify-write attempts before a conflict is
        reported to the caller.
    capa_review_days: offset of an auto-generated CAPA's review date.
    """

    approval_quorum: int = 2
    max_write_attempts: int = 3
    capa_review_days: int = 7
    attachment_max_bytes: int = 5 * 1024 * 1024
    department_codes: Mapping[str, str] = field(
        default_factory=lambda: dict(DEFAULT_DEPARTMENT_CODES)
    )
    default_department_code: str = DEFAULT_DEPARTMENT_CODE
