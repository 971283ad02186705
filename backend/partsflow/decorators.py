# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .errors import ValidationError


ACTOR_HEADER = "X-User-Id"


def with_actor(f):
    """
    Attach the calling user to the request for attribution.

    Authentication happens upstream of this service; the gateway forwards
    the authenticated user in the X-User-Id header. Sets g.actor (None when
    the header is absent) so services can stamp created_by / approved_by.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = (request.headers.get(ACTOR_HEADER) or "").strip() or None
        if actor and len(actor) > 64:
            return jsonify({"error": f"{ACTOR_HEADER} exceeds max length 64"}), 400
        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function


def json_body() -> dict:
    """Request JSON as a dict ({} for an empty body)."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data
