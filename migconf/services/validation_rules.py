"""
Validation Rule Engine.

Decides whether a query result satisfies an item's validation rule:

    validate(rule, rows, expected_value=None) -> ValidationResult(outcome, reason)

Outcomes are ``pass``, ``fail`` or ``inconclusive``. The engine never raises:
a malformed or unreadable result is a ``fail``; a comparison that cannot be
made (expected value not supplied yet) is ``inconclusive``.

Rows may be mappings (column → value) or plain sequences.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from collections.abc import Mapping

PASS = "pass"
FAIL = "fail"
INCONCLUSIVE = "inconclusive"

EPSILON = Decimal("1e-9")


@dataclass(frozen=True)
class ValidationResult:
    outcome: str
    reason: str = ""


def _to_number(value):
    """Coerce ints, floats, Decimals and numeric strings; None otherwise."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            return None
        return number if number.is_finite() else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = Decimal(text)
        except InvalidOperation:
            return None
        return number if number.is_finite() else None
    return None


def _row_values(row):
    if isinstance(row, Mapping):
        return list(row.values())
    if isinstance(row, (list, tuple)):
        return list(row)
    raise TypeError(f"unreadable row: {type(row).__name__}")


def _single_number(rows):
    """Return (number, None) or (None, failure reason)."""
    if len(rows) != 1:
        return None, f"expected exactly one row, got {len(rows)}"
    values = _row_values(rows[0])
    if len(values) != 1:
        return None, f"expected exactly one column, got {len(values)}"
    number = _to_number(values[0])
    if number is None:
        return None, f"value {values[0]!r} is not numeric"
    return number, None


def _resolve_expected(expected_value):
    """Return (number, None) or (None, inconclusive reason)."""
    if expected_value is None or (isinstance(expected_value, str) and not expected_value.strip()):
        return None, "expected value not provided"
    number = _to_number(expected_value)
    if number is None:
        return None, f"expected value {expected_value!r} is not numeric"
    return number, None


# ── Rule implementations ─────────────────────────────────────────────────────


def _single_number_required(rule, rows, expected_value):
    number, reason = _single_number(rows)
    if reason:
        return ValidationResult(FAIL, reason)
    return ValidationResult(PASS, f"value {number}")


def _must_return_rows(rule, rows, expected_value):
    if rows:
        return ValidationResult(PASS, f"{len(rows)} row(s) returned")
    return ValidationResult(FAIL, "no rows returned")


def _must_return_no_rows(rule, rows, expected_value):
    if not rows:
        return ValidationResult(PASS, "no rows returned")
    return ValidationResult(FAIL, f"{len(rows)} row(s) returned")


def _number_equals_expected(rule, rows, expected_value):
    number, reason = _single_number(rows)
    if reason:
        return ValidationResult(FAIL, reason)
    expected, reason = _resolve_expected(expected_value)
    if reason:
        return ValidationResult(INCONCLUSIVE, reason)
    if number == expected:
        return ValidationResult(PASS, f"{number} equals expected {expected}")
    return ValidationResult(FAIL, f"{number} differs from expected {expected}")


def _number_matches_expected_with_tolerance(rule, rows, expected_value):
    tolerance = _to_number(rule.get("tolerance"))
    if tolerance is None or not (0 < tolerance <= 1):
        return ValidationResult(INCONCLUSIVE, f"invalid tolerance {rule.get('tolerance')!r}")
    number, reason = _single_number(rows)
    if reason:
        return ValidationResult(FAIL, reason)
    expected, reason = _resolve_expected(expected_value)
    if reason:
        return ValidationResult(INCONCLUSIVE, reason)

    diff = abs(number - expected)
    if expected == 0:
        ok = diff <= EPSILON
        detail = f"|{number} - 0| = {diff}"
    else:
        deviation = diff / max(abs(expected), EPSILON)
        ok = deviation <= tolerance
        detail = f"deviation {deviation:.6f} vs tolerance {tolerance}"
    if ok:
        return ValidationResult(PASS, detail)
    return ValidationResult(FAIL, detail)


_RULES = {
    "single_number_required": _single_number_required,
    "must_return_rows": _must_return_rows,
    "must_return_no_rows": _must_return_no_rows,
    "number_equals_expected": _number_equals_expected,
    "number_matches_expected_with_tolerance": _number_matches_expected_with_tolerance,
}


def validate(rule, rows, expected_value=None) -> ValidationResult:
    """Run ``rows`` through ``rule``; never raises."""
    rule = rule or {}
    handler = _RULES.get(rule.get("type"))
    if handler is None:
        return ValidationResult(FAIL, f"unknown rule type {rule.get('type')!r}")
    if rows is None or isinstance(rows, (str, bytes, Mapping)):
        return ValidationResult(FAIL, "malformed query result")
    try:
        rows = list(rows)
        return handler(rule, rows, expected_value)
    except (TypeError, ValueError, ArithmeticError) as exc:
        return ValidationResult(FAIL, f"malformed query result: {exc}")
