"""
Checklist Template — Service Layer.

Business logic for:
    - Payload normalisation: snake_case or camelCase keys, import defaults
    - Structural validation: semver, unique orders/keys, rules, bindings, read-only SQL
    - CRUD:                  create / update / delete, freezing referenced templates
    - Duplicate:             "<name> (Copy)"
    - Import / export:       portable JSON without database ids

A template referenced by at least one conference is frozen: only ``name``
and ``description`` may change, and it cannot be deleted.
"""

import json
import logging
import re
from collections.abc import Mapping

from sqlalchemy import func, select

from migconf.core.exceptions import ConflictError, InvalidTemplateError, NotFoundError, ValidationError
from migconf.models import db
from migconf.models.audit import write_audit
from migconf.models.conference import Conference
from migconf.models.template import (
    DEFAULT_RULE,
    EXPECTED_INPUT_TYPES,
    SCOPES,
    VALIDATION_RULE_TYPES,
    ChecklistTemplate,
    ExpectedInput,
    TemplateItem,
    TemplateSection,
    rule_needs_expected_value,
)
from migconf.services.query_runner import placeholders, read_only_violation

logger = logging.getLogger(__name__)

SEMVER_RE = re.compile(r"^\d+\.\d+\.\d+$")
INPUT_KEY_RE = re.compile(r"^[A-Za-z_]\w*$")

# Placeholders every conference can bind regardless of expected inputs
PERIOD_PLACEHOLDERS = {"start_date", "end_date"}

COSMETIC_FIELDS = ("name", "description")


# ── Normalisation ────────────────────────────────────────────────────────────


def _pick(data, snake, camel=None, default=None):
    if snake in data and data[snake] is not None:
        return data[snake]
    if camel and camel in data and data[camel] is not None:
        return data[camel]
    return default


def _order(data, fallback):
    value = data.get("order")
    return fallback if value is None else value


def normalize_payload(data, *, import_defaults=False):
    """Return a canonical snake_case template dict.

    ``import_defaults`` applies the JSON-import defaults (``auto_resolve``
    true, generated keys and orders) used for files authored elsewhere.
    """
    if not isinstance(data, dict):
        raise InvalidTemplateError("Template payload must be an object")

    expected_inputs = []
    for ei in _pick(data, "expected_inputs", "expectedInputs", []) or []:
        if not isinstance(ei, dict):
            raise InvalidTemplateError("expected_inputs entries must be objects")
        expected_inputs.append({
            "key": (ei.get("key") or "").strip(),
            "label": ei.get("label") or "",
            "type": ei.get("type") or "number",
            "scope": ei.get("scope") or "global",
            "required": bool(ei.get("required", True)),
            "hint": ei.get("hint"),
        })

    sections = []
    for s_idx, s in enumerate(_pick(data, "sections", default=[]) or []):
        if not isinstance(s, dict):
            raise InvalidTemplateError("sections entries must be objects")
        items = []
        for i_idx, i in enumerate(s.get("items") or []):
            if not isinstance(i, dict):
                raise InvalidTemplateError("items entries must be objects")
            rule = _pick(i, "validation_rule", "validationRule", DEFAULT_RULE)
            if not isinstance(rule, Mapping):
                raise InvalidTemplateError(
                    "Template structure is invalid",
                    details={f"sections[{s_idx}].items[{i_idx}].validation_rule": "must be an object"},
                )
            items.append({
                "key": i.get("key") or f"item_{i_idx}",
                "title": i.get("title") or "",
                "description": i.get("description") or "",
                "order": _order(i, i_idx + 1),
                "query": i.get("query") or "",
                "scope": i.get("scope") or "global",
                "validation_rule": dict(rule),
                "expected_input_binding": _pick(i, "expected_input_binding", "expectedInputBinding") or None,
                "auto_resolve": bool(_pick(i, "auto_resolve", "autoResolve", import_defaults)),
            })
        sections.append({
            "key": s.get("key") or f"section_{s_idx}",
            "title": s.get("title") or "",
            "order": _order(s, s_idx + 1),
            "items": items,
        })

    return {
        "name": (data.get("name") or "").strip(),
        "description": data.get("description") or "",
        "version": data.get("version") or "1.0.0",
        "expected_inputs": expected_inputs,
        "sections": sections,
    }


# ── Structural validation ────────────────────────────────────────────────────


def validate_structure(payload):
    """Raise InvalidTemplateError listing every structural defect."""
    errors = {}

    if not payload["name"]:
        errors["name"] = "required"
    if not SEMVER_RE.match(str(payload["version"])):
        errors["version"] = "must be a semantic version X.Y.Z"

    inputs = {}
    for idx, ei in enumerate(payload["expected_inputs"]):
        path = f"expected_inputs[{idx}]"
        if not INPUT_KEY_RE.match(ei["key"]):
            errors[f"{path}.key"] = "must be an identifier (letters, digits, underscore)"
        elif ei["key"] in inputs:
            errors[f"{path}.key"] = f"duplicate key '{ei['key']}'"
        elif ei["key"] in PERIOD_PLACEHOLDERS or ei["key"] == "store_id":
            errors[f"{path}.key"] = f"'{ei['key']}' is reserved"
        else:
            inputs[ei["key"]] = ei
        if ei["type"] not in EXPECTED_INPUT_TYPES:
            errors[f"{path}.type"] = f"must be one of {sorted(EXPECTED_INPUT_TYPES)}"
        if ei["scope"] not in SCOPES:
            errors[f"{path}.scope"] = f"must be one of {sorted(SCOPES)}"

    orders = set()
    for s_idx, section in enumerate(payload["sections"]):
        s_path = f"sections[{s_idx}]"
        if not section["title"]:
            errors[f"{s_path}.title"] = "required"
        if not isinstance(section["order"], int) or isinstance(section["order"], bool):
            errors[f"{s_path}.order"] = "must be an integer"
        elif section["order"] in orders:
            errors[f"{s_path}.order"] = f"duplicate section order {section['order']}"
        else:
            orders.add(section["order"])

        for i_idx, item in enumerate(section["items"]):
            errors.update(_validate_item(item, f"{s_path}.items[{i_idx}]", inputs))

    if errors:
        raise InvalidTemplateError("Template structure is invalid", details=errors)


def _validate_item(item, path, inputs):
    errors = {}
    if not item["title"]:
        errors[f"{path}.title"] = "required"
    if item["scope"] not in SCOPES:
        errors[f"{path}.scope"] = f"must be one of {sorted(SCOPES)}"

    violation = read_only_violation(item["query"])
    if violation:
        errors[f"{path}.query"] = violation
    else:
        for name in placeholders(item["query"]):
            if name == "store_id":
                if item["scope"] != "per_store":
                    errors[f"{path}.query"] = ":store_id is only available to per_store items"
            elif name not in PERIOD_PLACEHOLDERS and name not in inputs:
                errors[f"{path}.query"] = f"unknown placeholder :{name}"

    rule = item["validation_rule"]
    rule_type = rule.get("type")
    if rule_type not in VALIDATION_RULE_TYPES:
        errors[f"{path}.validation_rule"] = f"unknown rule type {rule_type!r}"
    elif rule_type == "number_matches_expected_with_tolerance":
        tolerance = rule.get("tolerance")
        if isinstance(tolerance, bool) or not isinstance(tolerance, (int, float)) or not 0 < tolerance <= 1:
            errors[f"{path}.validation_rule.tolerance"] = "must be a number in (0, 1]"

    binding = item["expected_input_binding"]
    if rule_needs_expected_value(rule) and not binding:
        errors[f"{path}.expected_input_binding"] = f"required by rule '{rule_type}'"
    if binding:
        if binding not in inputs:
            errors[f"{path}.expected_input_binding"] = f"no expected input with key '{binding}'"
        elif item["scope"] == "global" and inputs[binding]["scope"] == "per_store":
            errors[f"{path}.expected_input_binding"] = "a global item cannot bind a per_store input"
    return errors


# ── Persistence helpers ──────────────────────────────────────────────────────


def _build_children(template, payload):
    for ei in payload["expected_inputs"]:
        template.expected_inputs.append(ExpectedInput(**ei))
    for section in payload["sections"]:
        sec = TemplateSection(key=section["key"], title=section["title"], order=section["order"])
        for item in section["items"]:
            sec.items.append(TemplateItem(**item))
        template.sections.append(sec)


def get_template(template_id):
    template = db.session.get(ChecklistTemplate, template_id)
    if not template:
        raise NotFoundError(resource="ChecklistTemplate", resource_id=template_id)
    return template


def list_templates(search=None):
    stmt = select(ChecklistTemplate).order_by(ChecklistTemplate.name)
    if search:
        like = f"%{search}%"
        stmt = stmt.where(ChecklistTemplate.name.ilike(like) | ChecklistTemplate.description.ilike(like))
    return db.session.execute(stmt).scalars().all()


def reference_count(template_id) -> int:
    return db.session.execute(
        select(func.count(Conference.id)).where(Conference.template_id == template_id)
    ).scalar() or 0


# ── CRUD ─────────────────────────────────────────────────────────────────────


def create_template(data, *, created_by="system", import_defaults=False, action="template.create"):
    payload = normalize_payload(data, import_defaults=import_defaults)
    validate_structure(payload)

    template = ChecklistTemplate(
        name=payload["name"],
        description=payload["description"],
        version=payload["version"],
        created_by=created_by,
    )
    _build_children(template, payload)
    db.session.add(template)
    db.session.flush()
    write_audit(entity_type="template", entity_id=template.id, action=action, actor=created_by,
                diff={"name": template.name, "version": template.version})
    db.session.commit()
    logger.info("Template id=%s '%s' v%s created by %s", template.id, template.name, template.version, created_by)
    return template


def update_template(template, data, *, actor="system"):
    """
    Update a template.

    Referenced templates accept cosmetic changes only; any structural field in
    ``data`` that differs from the stored structure raises ConflictError.
    """
    if not isinstance(data, dict):
        raise ValidationError("Template payload must be an object")

    structural_keys = {"version", "sections", "expected_inputs", "expectedInputs"}
    refs = reference_count(template.id)
    current = export_template(template)

    source = dict(current)
    if "expectedInputs" in data:
        source.pop("expected_inputs")
    source.update(data)
    payload = normalize_payload(source)

    if refs and structural_keys & data.keys():
        stored = normalize_payload(current)
        if any(payload[k] != stored[k] for k in ("version", "sections", "expected_inputs")):
            raise ConflictError(
                f"Template is used by {refs} conference(s); only name and description can change",
                details={"conferences": refs},
            )

    validate_structure(payload)

    diff = {}
    for field in COSMETIC_FIELDS + ("version",):
        if getattr(template, field) != payload[field]:
            diff[field] = {"old": getattr(template, field), "new": payload[field]}
            setattr(template, field, payload[field])

    if not refs and structural_keys & data.keys():
        template.sections.clear()
        template.expected_inputs.clear()
        db.session.flush()
        _build_children(template, payload)
        diff["structure"] = "replaced"

    write_audit(entity_type="template", entity_id=template.id, action="template.update", actor=actor, diff=diff)
    db.session.commit()
    return template


def delete_template(template, *, actor="system"):
    refs = reference_count(template.id)
    if refs:
        raise ConflictError(
            f"Template is used by {refs} conference(s) and cannot be deleted",
            details={"conferences": refs},
        )
    write_audit(entity_type="template", entity_id=template.id, action="template.delete", actor=actor,
                diff={"name": template.name})
    db.session.delete(template)
    db.session.commit()
    logger.info("Template id=%s deleted by %s", template.id, actor)


def duplicate_template(template, *, created_by="system"):
    data = export_template(template)
    data["name"] = f"{template.name} (Copy)"
    return create_template(data, created_by=created_by)


# ── Import / export ──────────────────────────────────────────────────────────


def import_template(source, *, created_by="system"):
    """Create a template from a JSON string or an already-parsed dict."""
    if isinstance(source, (str, bytes)):
        try:
            source = json.loads(source)
        except ValueError:
            raise InvalidTemplateError("Invalid JSON: could not parse template") from None
    if not isinstance(source, dict) or not source.get("name") or "sections" not in source:
        raise InvalidTemplateError(
            "Invalid template JSON: missing required fields (name, sections)",
            details={"required": ["name", "sections"]},
        )
    return create_template(source, created_by=created_by, import_defaults=True, action="template.import")


def export_template(template) -> dict:
    """Portable representation, without database ids or timestamps."""
    return {
        "name": template.name,
        "description": template.description or "",
        "version": template.version,
        "expected_inputs": [ei.to_dict() for ei in template.expected_inputs],
        "sections": [
            {
                "key": s.key,
                "title": s.title,
                "order": s.order,
                "items": [
                    {k: v for k, v in i.to_dict().items() if k != "id"}
                    for i in s.items
                ],
            }
            for s in template.sections
        ],
    }
