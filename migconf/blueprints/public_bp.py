"""
Public Conference Blueprint — client side, reached through the access link.

Endpoints (token-scoped, no admin auth):
    GET  /api/v1/public/conferences/<token>
    PUT  /api/v1/public/conferences/<token>/expected-inputs
    POST /api/v1/public/conferences/<token>/items/<key>/execute
    POST /api/v1/public/conferences/<token>/items/<key>/respond

Unknown and expired tokens answer with the same 404 body, so a caller can
not tell whether a token ever existed.
"""

import logging

from flask import Blueprint, jsonify, request

import migconf.services.conference_service as svc
from migconf.core.exceptions import LinkExpiredError, LinkNotFoundError
from migconf.services import access_link
from migconf.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

public_bp = Blueprint("public_bp", __name__, url_prefix="/api/v1/public/conferences")

register_error_handlers(public_bp, logger)

LINK_UNAVAILABLE_MESSAGE = "This conference link is invalid or has expired"


@public_bp.errorhandler(LinkNotFoundError)
@public_bp.errorhandler(LinkExpiredError)
def _handle_link_unavailable(error):
    logger.info("Public link rejected: %s", type(error).__name__,
                extra={"conference_id": getattr(error, "conference_id", None)})
    return api_error(E.LINK_UNAVAILABLE, LINK_UNAVAILABLE_MESSAGE)


def _public_view(conference):
    result = conference.to_dict(include_children=True)
    result.pop("email_history", None)
    result.pop("created_by", None)
    result["missing_inputs"] = svc.missing_required_inputs(conference)
    return result


def _responder(conference, data):
    return (data.get("responded_by") or "").strip() or conference.client_name


@public_bp.route("/<token>", methods=["GET"])
def get_conference(token):
    return jsonify(_public_view(access_link.resolve(token)))


@public_bp.route("/<token>/expected-inputs", methods=["PUT"])
def update_expected_inputs(token):
    conference = access_link.resolve(token)
    data = request.get_json(silent=True) or {}
    values = data.get("values", data)
    svc.update_expected_inputs(conference, values, actor=conference.client_email)
    return jsonify(_public_view(conference))


@public_bp.route("/<token>/items/<item_key>/execute", methods=["POST"])
def execute_item(token, item_key):
    conference = access_link.resolve(token)
    item = svc.execute_item(conference, item_key, actor=conference.client_email)
    return jsonify({"item": item.to_dict(), "conference": conference.to_dict()})


@public_bp.route("/<token>/items/<item_key>/respond", methods=["POST"])
def respond_item(token, item_key):
    conference = access_link.resolve(token)
    data = request.get_json(silent=True) or {}
    if not data.get("response"):
        return api_error(E.VALIDATION_REQUIRED, "response is required")
    item = svc.respond_item(conference, item_key, data["response"],
                            observation=data.get("observation"),
                            responded_by=_responder(conference, data))
    return jsonify({"item": item.to_dict(), "conference": conference.to_dict()})
