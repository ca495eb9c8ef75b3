"""
Conference Blueprint — admin side.

Endpoints:
    Conference:       GET/POST /conferences, GET/DELETE /conferences/<id>
                      GET  /conferences/stats
    Expected inputs:  PUT  /conferences/<id>/expected-inputs
    Items:            POST /conferences/<id>/items/<key>/execute
                      POST /conferences/<id>/execute-all
                      POST /conferences/<id>/items/<key>/respond
                      POST /conferences/<id>/items/<key>/clear-response
    Link:             POST /conferences/<id>/link/regenerate
    Emails:           POST /conferences/<id>/emails/send   {"kind": "conference_link" | "reminder"}
                      GET  /conferences/<id>/emails
    Audit:            GET  /conferences/<id>/audit

Service layer owns all business logic and commits.
"""

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy import select

import migconf.services.conference_service as svc
from migconf.blueprints import paginate_query
from migconf.models import db
from migconf.models.audit import AuditLog
from migconf.services import access_link
from migconf.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

conference_bp = Blueprint("conference_bp", __name__, url_prefix="/api/v1/conferences")

register_error_handlers(conference_bp, logger)


def _actor(data=None):
    return (data or {}).get("actor") or request.headers.get("X-Actor") or "system"


def _detail(conference):
    result = conference.to_dict(include_children=True)
    result["link_token"] = conference.link_token
    result["public_url"] = access_link.public_url(conference)
    result["link_expired"] = access_link.is_expired(conference)
    result["missing_inputs"] = svc.missing_required_inputs(conference)
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Conference CRUD
# ═════════════════════════════════════════════════════════════════════════════


@conference_bp.route("", methods=["GET"])
def list_conferences():
    """List conferences, newest first. Filters: ?status=, ?search=, ?limit=, ?offset="""
    stmt = svc.list_conferences(status=request.args.get("status"), search=request.args.get("search"))
    items, total = paginate_query(stmt)
    return jsonify({"items": [c.to_dict() for c in items], "total": total})


@conference_bp.route("/stats", methods=["GET"])
def conference_stats():
    return jsonify(svc.stats())


@conference_bp.route("", methods=["POST"])
def create_conference():
    data = request.get_json(silent=True) or {}
    conference = svc.create_conference(data, created_by=_actor(data))
    return jsonify(_detail(conference)), 201


@conference_bp.route("/<int:conference_id>", methods=["GET"])
def get_conference(conference_id):
    return jsonify(_detail(svc.get_conference(conference_id)))


@conference_bp.route("/<int:conference_id>", methods=["DELETE"])
def delete_conference(conference_id):
    svc.delete_conference(svc.get_conference(conference_id), actor=_actor())
    return jsonify({"deleted": True, "id": conference_id})


@conference_bp.route("/<int:conference_id>/expected-inputs", methods=["PUT"])
def update_expected_inputs(conference_id):
    data = request.get_json(silent=True) or {}
    values = data.get("values", data)
    conference = svc.update_expected_inputs(svc.get_conference(conference_id), values, actor=_actor())
    return jsonify(_detail(conference))


# ═════════════════════════════════════════════════════════════════════════════
# Item operations
# ═════════════════════════════════════════════════════════════════════════════


@conference_bp.route("/<int:conference_id>/items/<item_key>/execute", methods=["POST"])
def execute_item(conference_id, item_key):
    conference = svc.get_conference(conference_id)
    item = svc.execute_item(conference, item_key, actor=_actor())
    return jsonify({"item": item.to_dict(), "conference": conference.to_dict()})


@conference_bp.route("/<int:conference_id>/execute-all", methods=["POST"])
def execute_all(conference_id):
    data = request.get_json(silent=True) or {}
    conference = svc.get_conference(conference_id)
    items = svc.execute_all(conference, actor=_actor(data), only_pending=bool(data.get("only_pending")))
    return jsonify({"executed": len(items), "conference": _detail(conference)})


@conference_bp.route("/<int:conference_id>/items/<item_key>/respond", methods=["POST"])
def respond_item(conference_id, item_key):
    data = request.get_json(silent=True) or {}
    if not data.get("response"):
        return api_error(E.VALIDATION_REQUIRED, "response is required")
    conference = svc.get_conference(conference_id)
    item = svc.respond_item(conference, item_key, data["response"],
                            observation=data.get("observation"), responded_by=_actor(data))
    return jsonify({"item": item.to_dict(), "conference": conference.to_dict()})


@conference_bp.route("/<int:conference_id>/items/<item_key>/clear-response", methods=["POST"])
def clear_item_response(conference_id, item_key):
    conference = svc.get_conference(conference_id)
    item = svc.clear_item_response(conference, item_key, actor=_actor())
    return jsonify({"item": item.to_dict(), "conference": conference.to_dict()})


# ═════════════════════════════════════════════════════════════════════════════
# Link & emails
# ═════════════════════════════════════════════════════════════════════════════


@conference_bp.route("/<int:conference_id>/link/regenerate", methods=["POST"])
def regenerate_link(conference_id):
    data = request.get_json(silent=True) or {}
    conference = svc.get_conference(conference_id)
    email = svc.regenerate_link(conference, ttl_days=data.get("ttl_days"),
                                send_email=bool(data.get("send_email")), actor=_actor(data))
    result = {"conference": _detail(conference)}
    if email is not None:
        result["email"] = email.to_dict()
    return jsonify(result)


@conference_bp.route("/<int:conference_id>/emails/send", methods=["POST"])
def send_email(conference_id):
    data = request.get_json(silent=True) or {}
    kind = data.get("kind", "conference_link")
    sender = svc.SENDERS.get(kind)
    if sender is None:
        return api_error(E.VALIDATION_INVALID, f"Unknown email kind '{kind}'",
                         details={"kind": f"must be one of {sorted(svc.SENDERS)}"})
    result = sender(svc.get_conference(conference_id))
    return jsonify(result.to_dict()), 200 if result.success or not result.attempted else 502


@conference_bp.route("/<int:conference_id>/emails", methods=["GET"])
def email_history(conference_id):
    conference = svc.get_conference(conference_id)
    entries = [e.to_dict() for e in reversed(conference.email_history)]
    return jsonify({"items": entries, "total": len(entries)})


@conference_bp.route("/<int:conference_id>/audit", methods=["GET"])
def conference_audit(conference_id):
    svc.get_conference(conference_id)
    rows = db.session.execute(
        select(AuditLog)
        .where(AuditLog.conference_id == conference_id)
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
    ).scalars().all()
    return jsonify({"items": [r.to_dict() for r in rows], "total": len(rows)})
