"""
Item Expansion — template snapshot + stores → checklist item specs.

Pure and deterministic: the same snapshot and store list always yield the
same specs in the same order. Sections are walked by ascending ``order``,
items inside a section by ascending ``order``.

    global item     → one spec,  item_key "<templateItemId>"
    per_store item  → one spec per store, item_key "<templateItemId>_<store.store_id>"

Usage:
    from migconf.services.expansion import expand

    specs = expand(template.to_dict(include_children=True), conference.stores)
"""

from migconf.core.exceptions import InvalidTemplateError
from migconf.models.conference import build_item_key
from migconf.models.template import rule_needs_expected_value


def _store_code(store):
    if isinstance(store, dict):
        return store["store_id"]
    return store.store_id


def expand(template: dict, stores) -> list[dict]:
    """Return one item spec per (template item × applicable store).

    Raises:
        InvalidTemplateError: an item's rule compares against an expected
            value but no ``expected_input_binding`` is declared.
    """
    stores = list(stores or [])
    specs = []
    sections = sorted(template.get("sections", []), key=lambda s: s["order"])
    for section in sections:
        for item in sorted(section.get("items", []), key=lambda i: i["order"]):
            rule = item.get("validation_rule") or {}
            if rule_needs_expected_value(rule) and not item.get("expected_input_binding"):
                raise InvalidTemplateError(
                    f"Item '{item.get('key')}' uses rule '{rule.get('type')}' without an expected input binding",
                    details={"item": item.get("key"), "rule": rule.get("type")},
                )

            if item.get("scope") == "per_store":
                targets = [_store_code(s) for s in stores]
            else:
                targets = [None]

            for store_code in targets:
                specs.append({
                    "item_key": build_item_key(item["id"], store_code),
                    "template_item_id": item["id"],
                    "store_code": store_code,
                    "status": "pending",
                })
    return specs
