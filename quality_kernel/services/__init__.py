"""
Kernel services: the imperative shell around the quality domain.

Each service takes a SQLAlchemy session plus injected clock, settings and
collaborators.  Public mutating methods own their transaction.
"""

from quality_kernel.services.capa_generator import CAPAGenerator
from quality_kernel.services.capa_service import CAPAService
from quality_kernel.services.collaborators import (
    InMemoryObjectStorage,
    Notifier,
    NullNotifier,
    ObjectStorage,
    RecordingNotifier,
)
from quality_kernel.services.disposition_approval_service import DispositionApprovalService
from quality_kernel.services.mrb_projector import MRBProjector
from quality_kernel.services.ncr_service import NCRService
from quality_kernel.services.settings import WorkflowSettings

__all__ = [
    "CAPAGenerator",
    "CAPAService",
    "DispositionApprovalService",
    "InMemoryObjectStorage",
    "MRBProjector",
    "NCRService",
    "Notifier",
    "NullNotifier",
    "ObjectStorage",
    "RecordingNotifier",
    "WorkflowSettings",
]
