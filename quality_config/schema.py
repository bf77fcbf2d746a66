"""
QualityConfig schema.

The typed runtime configuration of the quality workflow.  YAML documents and
``QUALITY_*`` environment variables are parsed into this frozen dataclass by
the loader; nothing else in the system reads configuration sources directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from quality_kernel.domain.ncr import DEFAULT_DEPARTMENT_CODE, DEFAULT_DEPARTMENT_CODES


@dataclass(frozen=True)
class QualityConfig:
    """Runtime configuration for services and the HTTP application."""

    database_url: str = "sqlite:///quality.db"
    approval_quorum: int = 2
    max_write_attempts: int = 3
    capa_review_days: int = 7
    attachment_max_bytes: int = 5 * 1024 * 1024
    default_department_code: str = DEFAULT_DEPARTMENT_CODE
    department_codes: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_DEPARTMENT_CODES))
    )
    log_level: str = "INFO"
    sql_echo: bool = False
