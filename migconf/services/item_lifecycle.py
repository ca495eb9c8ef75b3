"""
Conference Item Lifecycle Service.

Manages checklist item status transitions:

    pending ──execute──▶ {auto_ok, divergent, warn, fail} ──respond──▶ {correct, divergent}

Execution outcomes:
    validation pass + auto_resolve     → auto_ok
    validation pass, no auto_resolve   → warn      (needs human confirmation)
    validation fail                    → divergent
    validation inconclusive            → warn
    QueryExecutionError                → fail      (error recorded, no retry)

Precedence rule: ``status = user_response or auto_status or "pending"``.
Re-execution refreshes ``auto_status`` but never touches ``user_response``;
``clear_response`` is the only way to drop a human decision.

Concurrency: executions of the same item are serialised with a per-item lock,
and every execution start / decision bumps ``execution_generation``. A query
result is applied only if the generation it started with is still current.

Usage:
    from migconf.services.item_lifecycle import execute_item, respond_item

    item = execute_item(conference, "12_LJ01")
    item = respond_item(conference, "12_LJ01", "correct", observation="ok", responded_by="ana")
"""

import logging
import threading
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from migconf.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    QueryExecutionError,
    ValidationError,
)
from migconf.models import db
from migconf.models.audit import write_audit
from migconf.models.conference import (
    USER_RESPONSES,
    build_binding_key,
    validate_response_transition,
)
from migconf.services.conference_status import apply_aggregate
from migconf.services.query_runner import get_query_runner, placeholders
from migconf.services.validation_rules import FAIL, INCONCLUSIVE, PASS, validate

logger = logging.getLogger(__name__)


# ── Per-item locks ───────────────────────────────────────────────────────────

_locks: dict[tuple[int, str], threading.Lock] = {}
_locks_guard = threading.Lock()


def _item_lock(conference_id: int, item_key: str) -> threading.Lock:
    with _locks_guard:
        return _locks.setdefault((conference_id, item_key), threading.Lock())


def forget_locks(conference_id: int) -> None:
    """Drop the lock entries of a deleted conference."""
    with _locks_guard:
        for key in [k for k in _locks if k[0] == conference_id]:
            del _locks[key]


# ── Classification ───────────────────────────────────────────────────────────


def classify(outcome: str, auto_resolve: bool) -> str:
    """Map a validation outcome to the automatic item status."""
    if outcome == PASS:
        return "auto_ok" if auto_resolve else "warn"
    if outcome == FAIL:
        return "divergent"
    if outcome == INCONCLUSIVE:
        return "warn"
    raise ValueError(f"Unknown validation outcome: {outcome}")


def effective_status(item) -> str:
    return item.user_response or item.auto_status or "pending"


# ── Parameter binding ────────────────────────────────────────────────────────


def _coerce_input(value, input_type):
    if input_type in ("number", "currency") and isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return value
    return value


def _lookup_input(conference, input_decl, store):
    values = conference.expected_input_values or {}
    if input_decl.get("scope") == "per_store" and store is not None:
        return values.get(build_binding_key(input_decl["key"], store.store_id))
    return values.get(input_decl["key"])


def _is_missing(value):
    return value is None or (isinstance(value, str) and not value.strip())


def build_params(conference, item):
    """Return (params, expected_value) for the item's query and rule.

    ``params`` holds ``store_id``, ``start_date``/``end_date`` and every
    supplied expected input; absent inputs are simply left out.
    """
    store = item.store
    params = {}
    if store is not None:
        params["store_id"] = store.store_id
    if conference.period_start:
        params["start_date"] = conference.period_start.isoformat()
    if conference.period_end:
        params["end_date"] = conference.period_end.isoformat()

    inputs = {decl["key"]: decl for decl in conference.snapshot_inputs()}
    for key, decl in inputs.items():
        value = _lookup_input(conference, decl, store)
        if not _is_missing(value):
            params[key] = _coerce_input(value, decl.get("type"))

    expected_value = None
    tpl_item = conference.snapshot_item(item.template_item_id)
    binding = (tpl_item or {}).get("expected_input_binding")
    if binding and binding in inputs:
        expected_value = _lookup_input(conference, inputs[binding], store)
    return params, expected_value


# ── Transitions ──────────────────────────────────────────────────────────────


def _get_item(conference, item_key):
    item = conference.get_item(item_key)
    if item is None:
        raise NotFoundError(resource="ConferenceItem", resource_id=item_key)
    return item


def _apply_outcome(item, *, auto_status, reason=None, error=None, query_result=None):
    item.auto_status = auto_status
    item.validation_reason = (reason or "")[:500] or None
    item.error = error
    item.query_result = query_result
    item.executed_at = datetime.now(timezone.utc)
    item.status = effective_status(item)


def execute_item(conference, item_key, *, runner=None, actor="system"):
    """
    Run the item's query, validate the result and store the classification.

    Returns the item. A result whose generation was superseded while the
    query ran is dropped and the item is returned as currently stored.
    """
    runner = runner or get_query_runner()
    item = _get_item(conference, item_key)

    with _item_lock(conference.id, item_key):
        item.execution_generation = (item.execution_generation or 0) + 1
        generation = item.execution_generation
        db.session.commit()

        tpl_item = conference.snapshot_item(item.template_item_id) or {}
        sql = tpl_item.get("query", "")
        rule = tpl_item.get("validation_rule") or {}
        params, expected_value = build_params(conference, item)

        inputs = {decl["key"] for decl in conference.snapshot_inputs()}
        missing = [p for p in placeholders(sql) if p in inputs and p not in params]

        outcome = {}
        if missing:
            outcome = {
                "auto_status": "warn",
                "reason": f"expected value not provided: {', '.join(missing)}",
            }
        else:
            try:
                result = runner.execute(conference.connection, sql, params)
            except QueryExecutionError as exc:
                logger.warning("Item %s/%s execution failed: %s", conference.id, item_key, exc,
                               extra={"conference_id": conference.id, "item_key": item_key})
                outcome = {"auto_status": "fail", "error": str(exc)[:2000], "reason": "query execution failed"}
            else:
                verdict = validate(rule, result.rows, expected_value)
                outcome = {
                    "auto_status": classify(verdict.outcome, bool(tpl_item.get("auto_resolve"))),
                    "reason": verdict.reason,
                    "query_result": result.to_dict(),
                }

        db.session.refresh(item)
        if item.execution_generation != generation:
            logger.info(
                "Dropping stale result for item %s/%s (generation %s, current %s)",
                conference.id, item_key, generation, item.execution_generation,
                extra={"conference_id": conference.id, "item_key": item_key},
            )
            return item

        _apply_outcome(item, **outcome)
        old, new = apply_aggregate(conference, actor=actor)
        db.session.commit()

    logger.info("Item %s/%s executed → %s (conference %s → %s)",
                conference.id, item_key, item.status, old, new,
                extra={"conference_id": conference.id, "item_key": item_key})
    return item


def respond_item(conference, item_key, response, *, observation=None, responded_by=None):
    """Record a human decision (``correct`` | ``divergent``) on an executed item."""
    if response not in USER_RESPONSES:
        raise ValidationError(
            f"Invalid response '{response}'",
            details={"response": f"must be one of {sorted(USER_RESPONSES)}"},
        )
    item = _get_item(conference, item_key)
    if not validate_response_transition(item, response):
        reason = "item already has a response" if item.user_response else f"item is {item.status}"
        raise InvalidTransitionError(item.status, response, reason)

    old_item_status = item.status
    item.user_response = response
    item.observation = observation
    item.responded_by = responded_by
    item.responded_at = datetime.now(timezone.utc)
    item.execution_generation = (item.execution_generation or 0) + 1
    item.status = effective_status(item)

    old, new = apply_aggregate(conference, actor=responded_by)
    write_audit(
        entity_type="conference_item",
        entity_id=f"{conference.id}:{item_key}",
        action="item.respond",
        actor=responded_by or "system",
        conference_id=conference.id,
        diff={"status": {"old": old_item_status, "new": item.status},
              "observation": observation},
    )
    db.session.commit()
    logger.info("Item %s/%s marked %s by %s (conference %s → %s)",
                conference.id, item_key, response, responded_by, old, new)
    return item


def clear_response(conference, item_key, *, actor=None):
    """Drop a human decision so the automatic classification applies again."""
    item = _get_item(conference, item_key)
    if not item.user_response:
        raise InvalidTransitionError(item.status, item.auto_status or "pending", "item has no response to clear")

    old_response = item.user_response
    item.user_response = None
    item.observation = None
    item.responded_at = None
    item.responded_by = None
    item.execution_generation = (item.execution_generation or 0) + 1
    item.status = effective_status(item)

    apply_aggregate(conference, actor=actor)
    write_audit(
        entity_type="conference_item",
        entity_id=f"{conference.id}:{item_key}",
        action="item.clear_response",
        actor=actor or "system",
        conference_id=conference.id,
        diff={"user_response": {"old": old_response, "new": None}},
    )
    db.session.commit()
    return item
