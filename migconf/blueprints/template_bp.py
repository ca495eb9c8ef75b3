"""
Checklist Template Blueprint.

Endpoints:
    GET    /api/v1/templates                    — list (optional ?search=)
    POST   /api/v1/templates                    — create
    GET    /api/v1/templates/<id>               — detail with sections, items, inputs
    PUT    /api/v1/templates/<id>               — update (structure frozen once referenced)
    DELETE /api/v1/templates/<id>               — delete (blocked when referenced)
    POST   /api/v1/templates/<id>/duplicate     — copy as "<name> (Copy)"
    POST   /api/v1/templates/import             — create from exported JSON
    GET    /api/v1/templates/<id>/export        — portable JSON

Service layer owns all business logic and commits.
"""

import logging

from flask import Blueprint, jsonify, request

import migconf.services.template_service as ts
from migconf.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

template_bp = Blueprint("template_bp", __name__, url_prefix="/api/v1/templates")

register_error_handlers(template_bp, logger)


def _actor(data=None):
    return (data or {}).get("actor") or request.headers.get("X-Actor") or "system"


def _detail(template):
    result = template.to_dict(include_children=True)
    result["conference_count"] = ts.reference_count(template.id)
    return result


@template_bp.route("", methods=["GET"])
def list_templates():
    templates = ts.list_templates(search=request.args.get("search"))
    return jsonify({"items": [t.to_dict() for t in templates], "total": len(templates)})


@template_bp.route("", methods=["POST"])
def create_template():
    data = request.get_json(silent=True) or {}
    template = ts.create_template(data, created_by=_actor(data))
    return jsonify(_detail(template)), 201


@template_bp.route("/<int:template_id>", methods=["GET"])
def get_template(template_id):
    return jsonify(_detail(ts.get_template(template_id)))


@template_bp.route("/<int:template_id>", methods=["PUT"])
def update_template(template_id):
    data = request.get_json(silent=True) or {}
    template = ts.get_template(template_id)
    actor = _actor(data)
    data.pop("actor", None)
    template = ts.update_template(template, data, actor=actor)
    return jsonify(_detail(template))


@template_bp.route("/<int:template_id>", methods=["DELETE"])
def delete_template(template_id):
    template = ts.get_template(template_id)
    ts.delete_template(template, actor=_actor())
    return jsonify({"deleted": True, "id": template_id})


@template_bp.route("/<int:template_id>/duplicate", methods=["POST"])
def duplicate_template(template_id):
    data = request.get_json(silent=True) or {}
    copy = ts.duplicate_template(ts.get_template(template_id), created_by=_actor(data))
    return jsonify(_detail(copy)), 201


@template_bp.route("/import", methods=["POST"])
def import_template():
    """Accepts the exported JSON object, or ``{"json": "<string>"}``."""
    data = request.get_json(silent=True)
    if data is None:
        data = request.get_data(as_text=True)
    elif isinstance(data, dict) and isinstance(data.get("json"), str):
        data = data["json"]
    template = ts.import_template(data, created_by=_actor())
    return jsonify(_detail(template)), 201


@template_bp.route("/<int:template_id>/export", methods=["GET"])
def export_template(template_id):
    return jsonify(ts.export_template(ts.get_template(template_id)))
