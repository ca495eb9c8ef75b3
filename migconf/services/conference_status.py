"""
Conference Status Aggregator.

    pending      every item is pending (or there are no items)
    completed    every item resolved, none resolved as divergent
    divergent    every item resolved, at least one resolved as divergent
    in_progress  anything else

An item is *resolved* when it carries a human decision or was auto-resolved
(``auto_ok``). A resolved item counts as divergent when its effective status
is ``divergent`` or ``fail``; since only a human decision or ``auto_ok`` can
resolve an item, in practice that is a ``divergent`` decision.
"""

from datetime import datetime, timezone

DIVERGENT_STATUSES = {"divergent", "fail"}


def _is_resolved(item) -> bool:
    return bool(item.user_response) or item.status == "auto_ok"


def aggregate_status(items) -> str:
    """Derive the conference status from its items. Pure and idempotent."""
    items = list(items)
    if all(item.status == "pending" for item in items):
        return "pending"
    if not all(_is_resolved(item) for item in items):
        return "in_progress"
    if any(item.status in DIVERGENT_STATUSES for item in items):
        return "divergent"
    return "completed"


def is_terminal(status: str) -> bool:
    return status in {"completed", "divergent"}


def apply_aggregate(conference, *, actor=None, now=None):
    """Recompute and store ``conference.status``; return (old, new).

    ``completed_at`` is stamped when the conference reaches a terminal
    status and cleared when it drops back.
    """
    old = conference.status
    new = aggregate_status(conference.items)
    conference.status = new
    if is_terminal(new):
        if not is_terminal(old) or conference.completed_at is None:
            conference.completed_at = now or datetime.now(timezone.utc)
            conference.completed_by = actor
    else:
        conference.completed_at = None
        conference.completed_by = None
    return old, new
