"""
Migration Conference Platform
Tests — Validation rule engine.
"""

from decimal import Decimal

import pytest

from migconf.services.validation_rules import FAIL, INCONCLUSIVE, PASS, validate


TOLERANCE_RULE = {"type": "number_matches_expected_with_tolerance", "tolerance": 0.01}


class TestSingleNumberRequired:
    rule = {"type": "single_number_required"}

    @pytest.mark.parametrize("value", [42, 3.5, Decimal("100.25"), "17", 0])
    def test_single_numeric_cell_passes(self, value):
        assert validate(self.rule, [(value,)]).outcome == PASS

    def test_mapping_rows(self):
        assert validate(self.rule, [{"total": 5}]).outcome == PASS

    @pytest.mark.parametrize("rows", [
        [],
        [(1,), (2,)],
        [(1, 2)],
        [("abc",)],
        [(None,)],
        [(True,)],
    ])
    def test_anything_else_fails(self, rows):
        result = validate(self.rule, rows)
        assert result.outcome == FAIL
        assert result.reason


class TestRowCountRules:
    def test_must_return_rows(self):
        assert validate({"type": "must_return_rows"}, [(1,)]).outcome == PASS
        assert validate({"type": "must_return_rows"}, []).outcome == FAIL

    def test_must_return_no_rows(self):
        assert validate({"type": "must_return_no_rows"}, []).outcome == PASS
        result = validate({"type": "must_return_no_rows"}, [(1,), (2,)])
        assert result.outcome == FAIL
        assert "2 row(s)" in result.reason


class TestNumberEqualsExpected:
    rule = {"type": "number_equals_expected"}

    def test_equal(self):
        assert validate(self.rule, [(Decimal("10.00"),)], "10").outcome == PASS

    def test_different(self):
        assert validate(self.rule, [(11,)], 10).outcome == FAIL

    def test_missing_expected_is_inconclusive(self):
        assert validate(self.rule, [(11,)], None).outcome == INCONCLUSIVE
        assert validate(self.rule, [(11,)], "  ").outcome == INCONCLUSIVE

    def test_non_numeric_expected_is_inconclusive(self):
        assert validate(self.rule, [(11,)], "eleven").outcome == INCONCLUSIVE

    def test_bad_result_fails_before_expected_is_checked(self):
        assert validate(self.rule, [], None).outcome == FAIL


class TestTolerance:
    def test_within_tolerance_passes(self):
        assert validate(TOLERANCE_RULE, [(Decimal("100.5"),)], 100).outcome == PASS

    def test_outside_tolerance_fails(self):
        assert validate(TOLERANCE_RULE, [(Decimal("102"),)], 100).outcome == FAIL

    def test_boundary_is_inclusive(self):
        assert validate(TOLERANCE_RULE, [(Decimal("101"),)], 100).outcome == PASS

    def test_negative_expected(self):
        assert validate(TOLERANCE_RULE, [(-100.5,)], -100).outcome == PASS

    def test_zero_expected_uses_epsilon(self):
        assert validate(TOLERANCE_RULE, [(0,)], 0).outcome == PASS
        assert validate(TOLERANCE_RULE, [(Decimal("0.001"),)], 0).outcome == FAIL

    @pytest.mark.parametrize("tolerance", [0, -0.1, 1.5, None, "abc"])
    def test_invalid_tolerance_is_inconclusive(self, tolerance):
        rule = {"type": "number_matches_expected_with_tolerance", "tolerance": tolerance}
        assert validate(rule, [(100,)], 100).outcome == INCONCLUSIVE

    def test_missing_expected_is_inconclusive(self):
        assert validate(TOLERANCE_RULE, [(100,)]).outcome == INCONCLUSIVE


class TestMalformedInput:
    def test_unknown_rule_fails(self):
        assert validate({"type": "whatever"}, [(1,)]).outcome == FAIL

    def test_missing_rule_fails(self):
        assert validate(None, [(1,)]).outcome == FAIL

    @pytest.mark.parametrize("rows", [None, "1", {"a": 1}])
    def test_unreadable_rows_fail(self, rows):
        assert validate({"type": "must_return_rows"}, rows).outcome == FAIL

    def test_unreadable_row_fails_without_raising(self):
        assert validate({"type": "single_number_required"}, [object()]).outcome == FAIL
