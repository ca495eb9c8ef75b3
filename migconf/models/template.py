"""
Migration Conference Platform
Checklist template models.

Models:
    - ChecklistTemplate:  reusable checklist definition (versioned "X.Y.Z")
    - TemplateSection:    ordered group of items (order unique per template)
    - TemplateItem:       one SQL check + validation rule + scope
    - ExpectedInput:      value the client supplies before/while a conference runs

Architecture:
    ChecklistTemplate ──1:N──▶ TemplateSection ──1:N──▶ TemplateItem
    ChecklistTemplate ──1:N──▶ ExpectedInput
    TemplateItem.expected_input_binding ──▶ ExpectedInput.key (same template)

Templates are immutable once a conference references them, except for
cosmetic metadata (name / description). Conferences keep their own snapshot
(see ``ChecklistTemplate.to_dict(include_children=True)``).
"""

from datetime import datetime, timezone

from migconf.models import db


# ── Constants ────────────────────────────────────────────────────────────────

SCOPES = {"global", "per_store"}

EXPECTED_INPUT_TYPES = {"number", "currency", "text"}

VALIDATION_RULE_TYPES = {
    "single_number_required",
    "must_return_rows",
    "must_return_no_rows",
    "number_equals_expected",
    "number_matches_expected_with_tolerance",
}

# Rules that compare the query result against a caller-supplied value
EXPECTED_VALUE_RULES = {
    "number_equals_expected",
    "number_matches_expected_with_tolerance",
}

DEFAULT_RULE = {"type": "single_number_required"}


def rule_needs_expected_value(rule):
    """Return True if the rule compares against an expected input."""
    return (rule or {}).get("type") in EXPECTED_VALUE_RULES


# ═════════════════════════════════════════════════════════════════════════════
# 1. ChecklistTemplate
# ═════════════════════════════════════════════════════════════════════════════


class ChecklistTemplate(db.Model):
    """Reusable checklist definition authored by an administrator."""

    __tablename__ = "checklist_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    version = db.Column(db.String(20), nullable=False, default="1.0.0",
                        comment="Semantic version X.Y.Z")
    created_by = db.Column(db.String(150), default="system")

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Relationships ────────────────────────────────────────────────────
    sections = db.relationship(
        "TemplateSection", backref="template", lazy="selectin",
        cascade="all, delete-orphan", order_by="TemplateSection.order",
    )
    expected_inputs = db.relationship(
        "ExpectedInput", backref="template", lazy="selectin",
        cascade="all, delete-orphan", order_by="ExpectedInput.id",
    )

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "section_count": len(self.sections),
            "item_count": sum(len(s.items) for s in self.sections),
        }
        if include_children:
            result["expected_inputs"] = [ei.to_dict() for ei in self.expected_inputs]
            result["sections"] = [s.to_dict() for s in self.sections]
        return result

    def __repr__(self):
        return f"<ChecklistTemplate {self.id}: {self.name} v{self.version}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. TemplateSection
# ═════════════════════════════════════════════════════════════════════════════


class TemplateSection(db.Model):
    """Ordered group of checklist items within a template."""

    __tablename__ = "template_sections"
    __table_args__ = (
        db.UniqueConstraint("template_id", "order", name="uq_template_section_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("checklist_templates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    key = db.Column(db.String(100), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    order = db.Column(db.Integer, nullable=False, default=1,
                      comment="Display/evaluation order, unique per template")

    items = db.relationship(
        "TemplateItem", backref="section", lazy="selectin",
        cascade="all, delete-orphan", order_by="TemplateItem.order",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "title": self.title,
            "order": self.order,
            "items": [i.to_dict() for i in self.items],
        }

    def __repr__(self):
        return f"<TemplateSection {self.id}: {self.key} #{self.order}>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. TemplateItem
# ═════════════════════════════════════════════════════════════════════════════


class TemplateItem(db.Model):
    """
    A single checklist check: one read-only SELECT plus the rule its result
    must satisfy. ``scope`` decides whether it runs once or once per store.
    """

    __tablename__ = "template_items"

    id = db.Column(db.Integer, primary_key=True)
    section_id = db.Column(
        db.Integer, db.ForeignKey("template_sections.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    key = db.Column(db.String(100), nullable=False)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    order = db.Column(db.Integer, nullable=False, default=1)
    query = db.Column(db.Text, nullable=False)
    scope = db.Column(db.String(20), nullable=False, default="global",
                      comment="global | per_store")
    validation_rule = db.Column(db.JSON, nullable=False, default=lambda: dict(DEFAULT_RULE),
                                comment='{"type": ..., "tolerance": 0.01}')
    expected_input_binding = db.Column(db.String(100), nullable=True,
                                       comment="ExpectedInput.key in the same template")
    auto_resolve = db.Column(db.Boolean, nullable=False, default=False)

    __table_args__ = (
        db.CheckConstraint("scope IN ('global','per_store')", name="ck_template_item_scope"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "title": self.title,
            "description": self.description,
            "order": self.order,
            "query": self.query,
            "scope": self.scope,
            "validation_rule": dict(self.validation_rule or {}),
            "expected_input_binding": self.expected_input_binding,
            "auto_resolve": bool(self.auto_resolve),
        }

    def __repr__(self):
        return f"<TemplateItem {self.id}: {self.key} [{self.scope}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 4. ExpectedInput
# ═════════════════════════════════════════════════════════════════════════════


class ExpectedInput(db.Model):
    """Declared value the client must supply (e.g. total sales, cash balance)."""

    __tablename__ = "expected_inputs"
    __table_args__ = (
        db.UniqueConstraint("template_id", "key", name="uq_expected_input_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("checklist_templates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    key = db.Column(db.String(100), nullable=False)
    label = db.Column(db.String(200), default="")
    type = db.Column(db.String(20), nullable=False, default="number",
                     comment="number | currency | text")
    scope = db.Column(db.String(20), nullable=False, default="global",
                      comment="global | per_store")
    required = db.Column(db.Boolean, nullable=False, default=True)
    hint = db.Column(db.String(300), nullable=True)

    def to_dict(self):
        return {
            "key": self.key,
            "label": self.label,
            "type": self.type,
            "scope": self.scope,
            "required": bool(self.required),
            "hint": self.hint,
        }

    def __repr__(self):
        return f"<ExpectedInput {self.key} [{self.scope}/{self.type}]>"
