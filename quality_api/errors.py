"""
Error envelope for the HTTP surface.

Every failure is returned as ``{"error": {"kind", "code", "message"}}``.
Kernel exceptions map to status codes by ``kind``.
"""

from __future__ import annotations

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from quality_kernel.exceptions import QualityKernelError
from quality_kernel.logging_config import get_logger

logger = get_logger("api.errors")

STATUS_BY_KIND: dict[str, int] = {
    "NotFound": 404,
    "ValidationError": 400,
    "InvalidTransition": 400,
    "ConcurrencyConflict": 409,
    "DownstreamFailure": 502,
}


def error_body(kind: str, code: str, message: str) -> dict:
    return {"error": {"kind": kind, "code": code, "message": message}}


def register_error_handlers(app: Flask) -> None:

    @app.errorhandler(QualityKernelError)
    def handle_kernel_error(exc: QualityKernelError):
        status = STATUS_BY_KIND.get(exc.kind, 500)
        if status >= 500:
            logger.error("request_failed", exc_info=exc, extra={"status": status})
        else:
            logger.info(
                "request_rejected",
                extra={"status": status, "error_code": exc.code, "reason": str(exc)},
            )
        return jsonify(error_body(exc.kind, exc.code, str(exc))), status

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        status = exc.code or 500
        kind = "NotFound" if status == 404 else "ValidationError" if status < 500 else "Internal"
        code = (exc.name or "error").upper().replace(" ", "_")
        return jsonify(error_body(kind, code, exc.description or exc.name)), status

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        logger.error("request_failed_unexpectedly", exc_info=exc)
        return jsonify(error_body("Internal", "INTERNAL_ERROR", "Internal server error")), 500
