"""
Per-application service wiring.

The app factory stores one ``QualityContext`` on ``app.extensions``.  Each
request opens one session from its factory (closed on teardown) and builds
services around it.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app, g
from sqlalchemy.orm import Session, sessionmaker

from quality_kernel.domain.clock import Clock
from quality_kernel.services import (
    CAPAService,
    DispositionApprovalService,
    MRBProjector,
    NCRService,
)
from quality_kernel.services.collaborators import Notifier, ObjectStorage
from quality_kernel.services.settings import WorkflowSettings

EXTENSION_KEY = "quality"


@dataclass(frozen=True)
class QualityContext:
    session_factory: sessionmaker[Session]
    clock: Clock
    settings: WorkflowSettings
    notifier: Notifier
    storage: ObjectStorage


def quality_context() -> QualityContext:
    return current_app.extensions[EXTENSION_KEY]


def db_session() -> Session:
    """The request's session, opened on first use."""
    if "db_session" not in g:
        g.db_session = quality_context().session_factory()
    return g.db_session


def close_db_session(exc: BaseException | None = None) -> None:
    session = g.pop("db_session", None)
    if session is not None:
        session.close()


def ncr_service() -> NCRService:
    ctx = quality_context()
    return NCRService(
        db_session(), ctx.clock, ctx.settings, ctx.notifier, ctx.storage,
    )


def mrb_projector() -> MRBProjector:
    ctx = quality_context()
    return MRBProjector(db_session(), ctx.clock, ctx.settings, ctx.notifier)


def capa_service() -> CAPAService:
    ctx = quality_context()
    return CAPAService(db_session(), ctx.clock, ctx.settings, ctx.notifier)


def approval_service() -> DispositionApprovalService:
    ctx = quality_context()
    return DispositionApprovalService(db_session(), ctx.clock, ctx.settings, ctx.notifier)


def request_actor(payload: dict | None = None) -> str:
    """Acting user: ``actor`` in the body, else the ``X-User`` header."""
    from flask import request

    if payload and payload.get("actor"):
        return str(payload["actor"])
    return request.headers.get("X-User", "anonymous")
