"""
Migration Conference Platform
Tests — Item expansion (template snapshot × stores → checklist items).
"""

from types import SimpleNamespace

import pytest

from migconf.core.exceptions import InvalidTemplateError
from migconf.services.expansion import expand


def _item(item_id, order, scope="global", rule=None, binding=None):
    return {
        "id": item_id,
        "key": f"item_{item_id}",
        "order": order,
        "scope": scope,
        "validation_rule": rule or {"type": "single_number_required"},
        "expected_input_binding": binding,
    }


def _snapshot():
    return {
        "sections": [
            {"order": 2, "items": [_item(30, 2, "per_store"), _item(20, 1)]},
            {"order": 1, "items": [_item(10, 1, "per_store")]},
        ],
    }


STORES = [{"store_id": "LJ01"}, {"store_id": "LJ02"}, {"store_id": "LJ03"}]


class TestExpand:
    def test_item_count_is_globals_plus_per_store_times_stores(self):
        specs = expand(_snapshot(), STORES)
        # 1 global + 2 per-store items × 3 stores
        assert len(specs) == 1 + 2 * 3

    def test_keys_are_unique_and_deterministic(self):
        specs = expand(_snapshot(), STORES)
        keys = [s["item_key"] for s in specs]
        assert len(keys) == len(set(keys))
        assert keys == [s["item_key"] for s in expand(_snapshot(), STORES)]

    def test_key_format(self):
        keys = [s["item_key"] for s in expand(_snapshot(), STORES)]
        assert "20" in keys
        assert "10_LJ01" in keys
        assert "30_LJ03" in keys

    def test_order_follows_section_then_item_order(self):
        keys = [s["item_key"] for s in expand(_snapshot(), STORES[:1])]
        assert keys == ["10_LJ01", "20", "30_LJ01"]

    def test_all_specs_start_pending(self):
        assert {s["status"] for s in expand(_snapshot(), STORES)} == {"pending"}

    def test_no_stores_drops_per_store_items(self):
        specs = expand(_snapshot(), [])
        assert [s["item_key"] for s in specs] == ["20"]
        assert specs[0]["store_code"] is None

    def test_accepts_store_objects(self):
        stores = [SimpleNamespace(store_id="A1"), SimpleNamespace(store_id="B2")]
        specs = expand(_snapshot(), stores)
        assert {s["store_code"] for s in specs if s["store_code"]} == {"A1", "B2"}

    def test_empty_template(self):
        assert expand({"sections": []}, STORES) == []

    def test_expected_value_rule_without_binding_raises(self):
        snapshot = {"sections": [{"order": 1, "items": [
            _item(1, 1, rule={"type": "number_equals_expected"}),
        ]}]}
        with pytest.raises(InvalidTemplateError):
            expand(snapshot, STORES)

    def test_expected_value_rule_with_binding_expands(self):
        snapshot = {"sections": [{"order": 1, "items": [
            _item(1, 1, "per_store", rule={"type": "number_equals_expected"}, binding="total"),
        ]}]}
        assert len(expand(snapshot, STORES)) == 3
