"""
Migration Conference Platform
Blueprint registry.
"""

from flask import request
from sqlalchemy import func, select

from migconf.models import db


def paginate_query(stmt, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy ``select()``.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = db.session.scalar(select(func.count()).select_from(stmt.order_by(None).subquery()))
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = db.session.scalars(stmt.limit(limit).offset(offset)).all()
    return items, total
