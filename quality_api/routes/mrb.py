"""
MRB API - the unified board of native and virtual MRB records.
"""

from datetime import datetime

from flask import Blueprint, jsonify

from quality_api.context import approval_service, mrb_projector, request_actor
from quality_api.routes import json_body
from quality_api.serializers import to_json
from quality_kernel.domain.mrb import MRBDraft
from quality_kernel.exceptions import InvalidFieldValueError, MissingFieldError

mrb_bp = Blueprint("mrb", __name__, url_prefix="/mrb")


@mrb_bp.route("", methods=["GET"])
def list_mrbs():
    """Native MRBs first, then the virtual MRBs of escalated NCRs."""
    return jsonify(to_json(mrb_projector().list_all()))


@mrb_bp.route("/<mrb_id>", methods=["GET"])
def get_mrb(mrb_id):
    return jsonify(to_json(mrb_projector().get(mrb_id)))


@mrb_bp.route("", methods=["POST"])
def create_mrb():
    """Create a native MRB."""
    data = json_body()
    actor = request_actor(data)
    data.pop("actor", None)
    mrb = mrb_projector().create_native(MRBDraft.from_payload(data), actor=actor)
    return jsonify(to_json(mrb)), 201


@mrb_bp.route("/<mrb_id>", methods=["DELETE"])
def delete_mrb(mrb_id):
    mrb_projector().delete(mrb_id, actor=request_actor())
    return jsonify({"deleted": mrb_id})


@mrb_bp.route("/<mrb_id>/disposition/approve", methods=["POST"])
def approve_disposition(mrb_id):
    """
    Approve the disposition behind an MRB.

    Request body:
    {
        "approvedBy": "j.doe",
        "role": "Quality Engineer",
        "comment": "Rework per MRB instructions",
        "approvedAt": "2025-02-06T14:05:00+00:00"
    }
    """
    data = json_body()
    approver = data.get("approved_by")
    if not approver:
        raise MissingFieldError("Approval", "approvedBy")
    approved_at = data.get("approved_at")
    if approved_at is not None:
        try:
            approved_at = datetime.fromisoformat(str(approved_at))
        except ValueError:
            raise InvalidFieldValueError(
                "Approval", "approvedAt", approved_at, "expected an ISO-8601 timestamp",
            ) from None
    ncr = approval_service().approve_mrb(
        mrb_id,
        approver=str(approver),
        role=str(data.get("role") or ""),
        comment=str(data.get("comment") or ""),
        approved_at=approved_at,
    )
    return jsonify(to_json(ncr))
