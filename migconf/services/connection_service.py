"""Target-database connection service layer.

Rules:
  - db.session.commit() happens only in this file.
  - Passwords are Fernet-encrypted via migconf.utils.crypto; plaintext never
    appears in logs or return values.
  - Any change to a connection disposes the cached engine for it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select

from migconf.core.exceptions import ConflictError, NotFoundError, ValidationError
from migconf.models import db
from migconf.models.audit import write_audit
from migconf.models.conference import Conference
from migconf.models.connection import CONNECTION_STATUSES, DRIVERS, DbConnection
from migconf.services.query_runner import get_query_runner

logger = logging.getLogger(__name__)

_EDITABLE = ("name", "dialect", "host", "port", "database", "username", "status")


def get_connection(connection_id: int) -> DbConnection:
    conn = db.session.get(DbConnection, connection_id)
    if not conn:
        raise NotFoundError(resource="DbConnection", resource_id=connection_id)
    return conn


def list_connections() -> list[DbConnection]:
    return db.session.execute(select(DbConnection).order_by(DbConnection.name)).scalars().all()


def _apply(conn: DbConnection, data: dict) -> dict:
    errors = {}
    changed = {}
    for field in _EDITABLE:
        if field not in data:
            continue
        value = data[field]
        if isinstance(value, str):
            value = value.strip()
        if field == "port" and value not in (None, ""):
            try:
                value = int(value)
            except (TypeError, ValueError):
                errors["port"] = "must be an integer"
                continue
        if field == "port" and value == "":
            value = None
        if getattr(conn, field) != value:
            changed[field] = value
            setattr(conn, field, value)

    if "password" in data:
        conn.set_password(data.get("password") or None)
        changed["password"] = "***"

    if not conn.name:
        errors["name"] = "required"
    if not conn.database:
        errors["database"] = "required"
    if conn.dialect not in DRIVERS:
        errors["dialect"] = f"must be one of {sorted(DRIVERS)}"
    if conn.status not in CONNECTION_STATUSES:
        errors["status"] = f"must be one of {sorted(CONNECTION_STATUSES)}"
    if errors:
        raise ValidationError("Invalid connection", details=errors)
    return changed


def create_connection(data: dict, *, actor: str = "system") -> DbConnection:
    conn = DbConnection(dialect="postgresql", status="inactive", host="", username="")
    _apply(conn, data)
    db.session.add(conn)
    db.session.flush()
    write_audit(entity_type="connection", entity_id=conn.id, action="connection.create", actor=actor,
                diff={"name": conn.name, "dialect": conn.dialect})
    db.session.commit()
    logger.info("Connection id=%s '%s' (%s) created", conn.id, conn.name, conn.dialect)
    return conn


def update_connection(conn: DbConnection, data: dict, *, actor: str = "system") -> DbConnection:
    changed = _apply(conn, data)
    write_audit(entity_type="connection", entity_id=conn.id, action="connection.update", actor=actor,
                diff={"fields": sorted(changed)})
    db.session.commit()
    get_query_runner().dispose(conn.id)
    return conn


def delete_connection(conn: DbConnection, *, actor: str = "system") -> None:
    refs = db.session.execute(
        select(func.count(Conference.id)).where(Conference.connection_id == conn.id)
    ).scalar() or 0
    if refs:
        raise ConflictError(
            f"Connection is used by {refs} conference(s) and cannot be deleted",
            details={"conferences": refs},
        )
    connection_id = conn.id
    write_audit(entity_type="connection", entity_id=connection_id, action="connection.delete", actor=actor,
                diff={"name": conn.name})
    db.session.delete(conn)
    db.session.commit()
    get_query_runner().dispose(connection_id)
    logger.info("Connection id=%s deleted by %s", connection_id, actor)


def test_connection(conn: DbConnection) -> dict:
    """Run ``SELECT 1`` against the target and record the outcome.

    Sets status='active' on success, 'error' on failure.

    Returns:
        {"ok": bool, "status": str, "message": str}
    """
    ok, error = get_query_runner().test_connection(conn)
    conn.last_tested_at = datetime.now(timezone.utc)
    if ok:
        conn.status = "active"
        conn.last_error = None
        message = "Connection verified successfully."
        logger.info("Connection test succeeded id=%s", conn.id)
    else:
        conn.status = "error"
        conn.last_error = (error or "Connection failed")[:500]
        message = conn.last_error
        logger.warning("Connection test failed id=%s error=%s", conn.id, conn.last_error)
    db.session.commit()
    return {"ok": ok, "status": conn.status, "message": message}
