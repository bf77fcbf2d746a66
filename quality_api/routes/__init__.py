"""JSON blueprints for NCRs, MRBs and CAPAs."""

from flask import request

from quality_api.serializers import from_json
from quality_kernel.exceptions import ValidationError


def json_body() -> dict:
    """Decoded, snake_cased request body; ``{}`` when empty."""
    data = request.get_json(silent=True)
    if data is None:
        if request.data:
            raise ValidationError("Request body is not valid JSON")
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return from_json(data)
