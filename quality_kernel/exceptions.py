"""
Typed Exception Hierarchy for the Quality Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (HTTP handlers, batch jobs, tests) must react to failures by type,
never by parsing message strings.  Every exception here carries:
  1. a ``code`` class attribute (machine-readable, API-safe)
  2. a ``kind`` class attribute (one of the five workflow error kinds)
  3. its context as structured attributes

Example - RIGHT way:
    try:
        approvals.approve(ncr_id, approver="j.doe", role="QA")
    except ConcurrencyConflictError as e:
        return {"error": e.code, "ncr_id": e.entity_id}, 409

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    QualityKernelError (base)
    |
    +-- RecordNotFoundError                 kind=NotFound
    |   +-- NCRNotFoundError
    |   +-- MRBNotFoundError
    |   +-- CAPANotFoundError
    |   +-- AttachmentNotFoundError
    |
    +-- ValidationError                     kind=ValidationError
    |   +-- MissingFieldError
    |   +-- InvalidFieldValueError
    |   +-- UnknownFieldError
    |   +-- DuplicateApprovalError
    |   +-- DispositionClosedError
    |
    +-- InvalidTransitionError              kind=InvalidTransition
    |   +-- InvalidCAPATransitionError
    |   +-- InvalidNCRTransitionError
    |
    +-- ConcurrencyError                    kind=ConcurrencyConflict
    |   +-- ConcurrencyConflictError
    |
    +-- DownstreamFailureError              kind=DownstreamFailure
        +-- CAPAGenerationError
        +-- NotificationError
        +-- ObjectStorageError

===============================================================================
HANDLING POLICY
===============================================================================

* DownstreamFailureError raised by CAPA auto-generation or notification
  delivery is logged and swallowed by the service that triggered it.
* Everything else propagates to the caller unchanged.
"""


class QualityKernelError(Exception):
    """
    Base exception for all quality kernel errors.

    All subclasses must define ``code``; category bases define ``kind``.
    """

    code: str = "QUALITY_KERNEL_ERROR"
    kind: str = "Error"


# Not-found errors


class RecordNotFoundError(QualityKernelError):
    """Base exception for unknown record ids."""

    code: str = "RECORD_NOT_FOUND"
    kind: str = "NotFound"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class NCRNotFoundError(RecordNotFoundError):
    """NCR with given id was not found."""

    code: str = "NCR_NOT_FOUND"

    def __init__(self, ncr_id: str):
        super().__init__("NCR", ncr_id)


class MRBNotFoundError(RecordNotFoundError):
    """MRB (native or virtual) with given id was not found."""

    code: str = "MRB_NOT_FOUND"

    def __init__(self, mrb_id: str):
        super().__init__("MRB", mrb_id)


class CAPANotFoundError(RecordNotFoundError):
    """CAPA with given id was not found."""

    code: str = "CAPA_NOT_FOUND"

    def __init__(self, capa_id: str):
        super().__init__("CAPA", capa_id)


class AttachmentNotFoundError(RecordNotFoundError):
    """Attachment id is not present on the NCR."""

    code: str = "ATTACHMENT_NOT_FOUND"

    def __init__(self, ncr_id: str, attachment_id: str):
        self.ncr_id = ncr_id
        super().__init__("Attachment", attachment_id)


# Validation errors


class ValidationError(QualityKernelError):
    """Input was rejected before any state changed."""

    code: str = "VALIDATION_ERROR"
    kind: str = "ValidationError"

    def __init__(self, message: str):
        super().__init__(message)


class MissingFieldError(ValidationError):
    """A required field was absent or blank."""

    code: str = "MISSING_FIELD"

    def __init__(self, entity_type: str, field_name: str):
        self.entity_type = entity_type
        self.field_name = field_name
        super().__init__(f"{entity_type}.{field_name} is required")


class InvalidFieldValueError(ValidationError):
    """A field value is outside its allowed set or range."""

    code: str = "INVALID_FIELD_VALUE"

    def __init__(self, entity_type: str, field_name: str, value: object, reason: str = ""):
        self.entity_type = entity_type
        self.field_name = field_name
        self.value = value
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Invalid value {value!r} for {entity_type}.{field_name}{detail}"
        )


class UnknownFieldError(ValidationError):
    """A patch payload named fields that are not mutable."""

    code: str = "UNKNOWN_FIELD"

    def __init__(self, entity_type: str, field_names: list[str]):
        self.entity_type = entity_type
        self.field_names = sorted(field_names)
        super().__init__(
            f"Unknown or immutable {entity_type} field(s): {', '.join(self.field_names)}"
        )


class DuplicateApprovalError(ValidationError):
    """The same approver already approved this disposition."""

    code: str = "DUPLICATE_APPROVAL"

    def __init__(self, ncr_id: str, approver: str):
        self.ncr_id = ncr_id
        self.approver = approver
        super().__init__(
            f"Approver {approver!r} has already approved the disposition of NCR {ncr_id}"
        )


class DispositionClosedError(ValidationError):
    """Disposition is closed and accepts no further approvals."""

    code: str = "DISPOSITION_CLOSED"

    def __init__(self, ncr_id: str):
        self.ncr_id = ncr_id
        super().__init__(f"Disposition of NCR {ncr_id} is already closed")


# Transition errors


class InvalidTransitionError(QualityKernelError):
    """Base exception for state machine violations."""

    code: str = "INVALID_TRANSITION"
    kind: str = "InvalidTransition"

    def __init__(self, entity_type: str, entity_id: str, from_state: str, to_state: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid {entity_type} transition for {entity_id}: "
            f"{from_state} -> {to_state}"
        )


class InvalidCAPATransitionError(InvalidTransitionError):
    """Requested CAPA status is not reachable from the current status."""

    code: str = "INVALID_CAPA_TRANSITION"

    def __init__(self, capa_id: str, from_state: str, to_state: str):
        super().__init__("CAPA", capa_id, from_state, to_state)


class InvalidNCRTransitionError(InvalidTransitionError):
    """Requested NCR status change is not allowed through this operation."""

    code: str = "INVALID_NCR_TRANSITION"

    def __init__(self, ncr_id: str, from_state: str, to_state: str):
        super().__init__("NCR", ncr_id, from_state, to_state)


# Concurrency errors


class ConcurrencyError(QualityKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    kind: str = "ConcurrencyConflict"


class ConcurrencyConflictError(ConcurrencyError):
    """Conditional write kept losing to concurrent writers."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, attempts: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.attempts = attempts
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            f"gave up after {attempts} attempt(s)"
        )


# Downstream errors


class DownstreamFailureError(QualityKernelError):
    """A collaborator (store, object storage, notifier) failed."""

    code: str = "DOWNSTREAM_FAILURE"
    kind: str = "DownstreamFailure"

    def __init__(self, service: str, reason: str):
        self.service = service
        self.reason = reason
        super().__init__(f"{service} failed: {reason}")


class CAPAGenerationError(DownstreamFailureError):
    """Automatic CAPA creation for a critical NCR failed."""

    code: str = "CAPA_GENERATION_FAILED"

    def __init__(self, ncr_id: str, reason: str):
        self.ncr_id = ncr_id
        super().__init__("capa_generator", reason)


class NotificationError(DownstreamFailureError):
    """Notification delivery failed."""

    code: str = "NOTIFICATION_FAILED"

    def __init__(self, event: str, reason: str):
        self.event = event
        super().__init__("notifier", reason)


class ObjectStorageError(DownstreamFailureError):
    """Attachment blob upload or delete failed."""

    code: str = "OBJECT_STORAGE_FAILED"

    def __init__(self, key: str, reason: str):
        self.key = key
        super().__init__("object_storage", reason)
