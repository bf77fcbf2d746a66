"""
quality_api -- Flask application for the quality workflow.

Usage:
    from quality_api import create_app

    app = create_app()            # config from defaults + QUALITY_* env
    app.run()
"""

from __future__ import annotations

import logging
import uuid

from flask import Flask, g, request

from quality_api.context import EXTENSION_KEY, QualityContext, close_db_session
from quality_api.errors import register_error_handlers
from quality_config import QualityConfig, load_config
from quality_config.bridges import build_workflow_settings
from quality_kernel.db.engine import create_session_factory, create_tables, make_engine
from quality_kernel.domain.clock import Clock, SystemClock
from quality_kernel.logging_config import LogContext, configure_logging, get_logger
from quality_kernel.services.collaborators import (
    InMemoryObjectStorage,
    Notifier,
    NullNotifier,
    ObjectStorage,
)

logger = get_logger("api")


def create_app(
    config: QualityConfig | None = None,
    *,
    session_factory=None,
    clock: Clock | None = None,
    notifier: Notifier | None = None,
    storage: ObjectStorage | None = None,
) -> Flask:
    """Application factory.

    ``session_factory`` defaults to one built from ``config.database_url``
    (tables are created on startup).  Tests inject their own factory, clock
    and collaborators.
    """
    config = config or load_config()
    configure_logging(level=getattr(logging, config.log_level, logging.INFO))

    if session_factory is None:
        engine = make_engine(config.database_url, echo=config.sql_echo)
        create_tables(engine)
        session_factory = create_session_factory(engine)

    app = Flask(__name__)
    app.extensions[EXTENSION_KEY] = QualityContext(
        session_factory=session_factory,
        clock=clock or SystemClock(),
        settings=build_workflow_settings(config),
        notifier=notifier or NullNotifier(),
        storage=storage or InMemoryObjectStorage(),
    )
    app.config["MAX_CONTENT_LENGTH"] = config.attachment_max_bytes + 64 * 1024

    @app.before_request
    def bind_correlation_id():
        correlation_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        g.correlation_id = correlation_id
        LogContext.set(correlation_id=correlation_id)

    @app.after_request
    def echo_correlation_id(response):
        correlation_id = g.get("correlation_id")
        if correlation_id:
            response.headers["X-Request-ID"] = correlation_id
        return response

    @app.teardown_request
    def teardown(exc):
        close_db_session(exc)
        LogContext.clear()

    register_error_handlers(app)

    from quality_api.routes.capas import capas_bp
    from quality_api.routes.mrb import mrb_bp
    from quality_api.routes.ncrs import ncrs_bp

    app.register_blueprint(ncrs_bp)
    app.register_blueprint(mrb_bp)
    app.register_blueprint(capas_bp)

    logger.info("app_created", extra={"quorum": config.approval_quorum})
    return app


__all__ = ["create_app"]
