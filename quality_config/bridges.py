"""
Config -> Kernel Bridges.

The kernel never imports ``quality_config``; these functions translate a
``QualityConfig`` into the kernel's own settings type.

Usage:
    from quality_config import load_config
    from quality_config.bridges import build_workflow_settings

    settings = build_workflow_settings(load_config())
"""

from __future__ import annotations

from quality_config.schema import QualityConfig
from quality_kernel.services.settings import WorkflowSettings


def build_workflow_settings(config: QualityConfig) -> WorkflowSettings:
    return WorkflowSettings(
        approval_quorum=config.approval_quorum,
        max_write_attempts=config.max_write_attempts,
        capa_review_days=config.capa_review_days,
        attachment_max_bytes=config.attachment_max_bytes,
        department_codes=dict(config.department_codes),
        default_department_code=config.default_department_code,
    )
