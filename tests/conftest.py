"""
Pytest fixtures for the quality kernel test suite.

Provides:
- In-memory SQLite sessions (StaticPool, one shared connection)
- A file-backed SQLite session factory for multi-session concurrency tests
- Deterministic clock, recording notifier, in-memory object storage
- Service factories wired to the shared fixtures
- Captured structured logs
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO

import pytest
from sqlalchemy.orm import Session

from quality_kernel.db.engine import (
    create_session_factory,
    create_tables,
    drop_tables,
    make_engine,
)
from quality_kernel.domain.clock import DeterministicClock
from quality_kernel.domain.ncr import NCRDraft, NCRSeverity
from quality_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from quality_kernel.services import (
    CAPAService,
    DispositionApprovalService,
    InMemoryObjectStorage,
    MRBProjector,
    NCRService,
    RecordingNotifier,
    WorkflowSettings,
)

TEST_ACTOR = "qa.tester"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture quality_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ncr_service):
            ncr_service.create(...)
            logs = captured_logs()
            assert any(r["message"] == "ncr_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("quality_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = make_engine("sqlite://")
    create_tables(engine)
    yield engine
    drop_tables(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def session(session_factory) -> Session:
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed database so that separate sessions use separate connections."""
    engine = make_engine(
        f"sqlite:///{tmp_path / 'quality.db'}",
        connect_args={"timeout": 30},
    )
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_session_factory(file_engine):
    return create_session_factory(file_engine)


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(datetime(2025, 2, 6, 14, 5, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings() -> WorkflowSettings:
    return WorkflowSettings()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def storage() -> InMemoryObjectStorage:
    return InMemoryObjectStorage()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def ncr_service(session, clock, settings, notifier, storage) -> NCRService:
    return NCRService(session, clock, settings, notifier, storage)


@pytest.fixture
def mrb_projector(session, clock, settings) -> MRBProjector:
    return MRBProjector(session, clock, settings)


@pytest.fixture
def capa_service(session, clock, settings) -> CAPAService:
    return CAPAService(session, clock, settings)


@pytest.fixture
def approval_service(session, clock, settings, notifier) -> DispositionApprovalService:
    return DispositionApprovalService(session, clock, settings, notifier)


@pytest.fixture
def create_ncr(ncr_service):
    """Factory: create an NCR with sensible defaults."""

    def _create(**overrides):
        fields = {
            "title": "Bore diameter out of tolerance",
            "description": "Measured 12.08 mm against 12.00 +/- 0.05",
            "area": "Machining",
            "severity": NCRSeverity.MAJOR,
            "reported_by": TEST_ACTOR,
            "part_number": "PN-1001",
            "lot_number": "LOT-42",
            "quantity_affected": 12,
        }
        fields.update(overrides)
        return ncr_service.create(NCRDraft(**fields), actor=TEST_ACTOR)

    return _create


@pytest.fixture
def escalated_ncr(create_ncr, mrb_projector):
    """An NCR escalated into MRB review (status pending_disposition)."""
    ncr = create_ncr()
    mrb_projector.escalate(ncr.id, actor=TEST_ACTOR)
    return ncr
