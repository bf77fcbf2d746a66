"""
CAPA API - corrective/preventive actions and their status machine.
"""

from flask import Blueprint, jsonify, request

from quality_api.context import capa_service, request_actor
from quality_api.routes import json_body
from quality_api.serializers import to_json
from quality_kernel.domain.capa import CAPADraft
from quality_kernel.exceptions import MissingFieldError

capas_bp = Blueprint("capas", __name__, url_prefix="/capas")


@capas_bp.route("", methods=["GET"])
def list_capas():
    capas = capa_service().list(status=request.args.get("status") or None)
    return jsonify(to_json(capas))


@capas_bp.route("/<capa_id>", methods=["GET"])
def get_capa(capa_id):
    return jsonify(to_json(capa_service().get(capa_id)))


@capas_bp.route("", methods=["POST"])
def create_capa():
    data = json_body()
    actor = request_actor(data)
    data.pop("actor", None)
    capa = capa_service().create(CAPADraft.from_payload(data), actor=actor)
    return jsonify(to_json(capa)), 201


@capas_bp.route("/<capa_id>/status", methods=["PUT"])
def change_status(capa_id):
    """
    Move a CAPA to a new status.

    Request body:
    {"status": "in_progress", "comment": "Team assigned", "actor": "j.doe"}
    """
    data = json_body()
    status = data.get("status")
    if not status:
        raise MissingFieldError("CAPA", "status")
    capa = capa_service().transition(
        capa_id,
        status,
        actor=request_actor(data),
        comment=str(data.get("comment") or ""),
    )
    return jsonify(to_json(capa))


@capas_bp.route("/<capa_id>/actions", methods=["POST"])
def add_action(capa_id):
    """Append a corrective or preventive action: ``{type, description}``."""
    data = json_body()
    capa = capa_service().add_action(
        capa_id,
        data.get("type") or "",
        str(data.get("description") or ""),
        actor=request_actor(data),
        comment=str(data.get("comment") or ""),
    )
    return jsonify(to_json(capa)), 201
