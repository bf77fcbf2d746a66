"""
NCR API - non-conformance reports and their attachments.
"""

from flask import Blueprint, jsonify, request

from quality_api.context import mrb_projector, ncr_service, request_actor
from quality_api.routes import json_body
from quality_api.serializers import to_json
from quality_kernel.domain.ncr import NCRDraft, NCRPatch
from quality_kernel.exceptions import MissingFieldError

ncrs_bp = Blueprint("ncrs", __name__, url_prefix="/ncrs")


@ncrs_bp.route("", methods=["GET"])
def list_ncrs():
    """List NCRs, newest first.  ``?status=`` filters."""
    ncrs = ncr_service().list(status=request.args.get("status") or None)
    return jsonify(to_json(ncrs))


@ncrs_bp.route("/<ncr_id>", methods=["GET"])
def get_ncr(ncr_id):
    return jsonify(to_json(ncr_service().get(ncr_id)))


@ncrs_bp.route("", methods=["POST"])
def create_ncr():
    """
    Create an NCR.

    Request body:
    {
        "title": "Bore out of tolerance",
        "area": "Machining",
        "severity": "critical",
        "type": "product",
        "partNumber": "PN-1001",
        "disposition": {"decision": "rework", "justification": "..."}
    }
    """
    data = json_body()
    actor = request_actor(data)
    data.pop("actor", None)
    ncr = ncr_service().create(NCRDraft.from_payload(data), actor=actor)
    return jsonify(to_json(ncr)), 201


@ncrs_bp.route("/<ncr_id>", methods=["PUT", "PATCH"])
def update_ncr(ncr_id):
    """Patch the mutable fields of an NCR; unknown fields are rejected."""
    data = json_body()
    actor = request_actor(data)
    data.pop("actor", None)
    ncr = ncr_service().update(ncr_id, NCRPatch.from_payload(data), actor=actor)
    return jsonify(to_json(ncr))


@ncrs_bp.route("/<ncr_id>/escalate", methods=["POST"])
def escalate_ncr(ncr_id):
    """Move an NCR into MRB review; returns the virtual MRB."""
    mrb = mrb_projector().escalate(ncr_id, actor=request_actor(json_body()))
    return jsonify(to_json(mrb))


@ncrs_bp.route("/<ncr_id>/attachments", methods=["POST"])
def upload_attachment(ncr_id):
    """Multipart upload; the blob goes in the ``file`` part."""
    upload = request.files.get("file")
    if upload is None:
        raise MissingFieldError("Attachment", "file")
    attachment = ncr_service().add_attachment(
        ncr_id,
        filename=upload.filename or "",
        content_type=upload.mimetype or "application/octet-stream",
        data=upload.read(),
        uploaded_by=request.form.get("uploadedBy") or request_actor(),
    )
    return jsonify(to_json(attachment)), 201


@ncrs_bp.route("/<ncr_id>/attachments/<attachment_id>", methods=["DELETE"])
def delete_attachment(ncr_id, attachment_id):
    ncr = ncr_service().remove_attachment(ncr_id, attachment_id, actor=request_actor())
    return jsonify(to_json(ncr))
