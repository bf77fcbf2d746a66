"""
quality_config -- typed configuration for the quality workflow.

Responsibility:
    The only place that reads configuration files or ``QUALITY_*``
    environment variables.  Callers receive a frozen ``QualityConfig``;
    ``bridges.build_workflow_settings`` converts it for kernel services.

Architecture position:
    Sits above ``quality_kernel`` and below ``quality_api``.  The kernel
    MUST NEVER import from ``quality_config``.
"""

from quality_config.loader import load_config
from quality_config.schema import QualityConfig

__all__ = ["QualityConfig", "load_config"]
