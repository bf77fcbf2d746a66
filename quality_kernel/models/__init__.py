"""ORM models.  Importing this package registers every table on Base.metadata."""

from quality_kernel.models.capa import CAPAModel
from quality_kernel.models.mrb import MRBModel
from quality_kernel.models.ncr import NCRModel

__all__ = ["CAPAModel", "MRBModel", "NCRModel"]
