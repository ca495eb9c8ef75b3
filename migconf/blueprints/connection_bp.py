"""
Target-Database Connection Blueprint.

Endpoints:
    GET    /api/v1/connections              — list
    POST   /api/v1/connections              — create (password encrypted at rest)
    GET    /api/v1/connections/<id>         — detail (never returns the password)
    PUT    /api/v1/connections/<id>         — update
    DELETE /api/v1/connections/<id>         — delete (blocked when referenced)
    POST   /api/v1/connections/<id>/test    — run SELECT 1, record status
"""

import logging

from flask import Blueprint, jsonify, request

import migconf.services.connection_service as cs
from migconf.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

connection_bp = Blueprint("connection_bp", __name__, url_prefix="/api/v1/connections")

register_error_handlers(connection_bp, logger)


def _actor():
    return request.headers.get("X-Actor") or "system"


@connection_bp.route("", methods=["GET"])
def list_connections():
    conns = cs.list_connections()
    return jsonify({"items": [c.to_dict() for c in conns], "total": len(conns)})


@connection_bp.route("", methods=["POST"])
def create_connection():
    data = request.get_json(silent=True) or {}
    conn = cs.create_connection(data, actor=_actor())
    return jsonify(conn.to_dict()), 201


@connection_bp.route("/<int:connection_id>", methods=["GET"])
def get_connection(connection_id):
    return jsonify(cs.get_connection(connection_id).to_dict())


@connection_bp.route("/<int:connection_id>", methods=["PUT"])
def update_connection(connection_id):
    data = request.get_json(silent=True) or {}
    conn = cs.update_connection(cs.get_connection(connection_id), data, actor=_actor())
    return jsonify(conn.to_dict())


@connection_bp.route("/<int:connection_id>", methods=["DELETE"])
def delete_connection(connection_id):
    cs.delete_connection(cs.get_connection(connection_id), actor=_actor())
    return jsonify({"deleted": True, "id": connection_id})


@connection_bp.route("/<int:connection_id>/test", methods=["POST"])
def test_connection(connection_id):
    result = cs.test_connection(cs.get_connection(connection_id))
    return jsonify(result), 200
