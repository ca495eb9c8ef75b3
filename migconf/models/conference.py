"""
Migration Conference Platform
Conference domain models.

Models:
    - Conference:         one checklist run for a client, a set of stores and a DB connection
    - Store:              store attached to a conference (immutable once attached)
    - ConferenceItem:     expanded checklist item (template item × applicable store)
    - EmailHistoryEntry:  append-only log of emails sent for a conference

Architecture:
    ChecklistTemplate ──snapshot──▶ Conference ──1:N──▶ ConferenceItem
    Conference ──1:N──▶ Store
    Conference ──1:N──▶ EmailHistoryEntry
    Conference ──N:1──▶ DbConnection

Lifecycle states:
    Conference:      pending → in_progress → completed | divergent   (derived, never set directly)
    ConferenceItem:  pending → {auto_ok, divergent, warn, fail} → {correct, divergent}
"""

from datetime import datetime, timezone

from migconf.models import db


# ── Constants ────────────────────────────────────────────────────────────────

CONFERENCE_STATUSES = {"pending", "in_progress", "completed", "divergent"}

ITEM_STATUSES = {"pending", "auto_ok", "divergent", "warn", "fail", "correct"}

# Automatic classifications produced by query execution
AUTO_STATUSES = {"auto_ok", "divergent", "warn", "fail"}

USER_RESPONSES = {"correct", "divergent"}

EMAIL_TYPES = {"conference_link", "reminder", "completion"}
EMAIL_STATUSES = {"sent", "failed", "pending"}

# Human decisions are accepted from any executed state that carries no prior
# decision; a prior decision must be cleared explicitly first.
RESPONSE_TRANSITIONS = {
    "pending":   [],
    "auto_ok":   ["correct", "divergent"],
    "warn":      ["correct", "divergent"],
    "fail":      ["correct", "divergent"],
    "divergent": ["correct", "divergent"],
    "correct":   [],
}


def validate_response_transition(item, response):
    """Return True if a human decision may be recorded on the item."""
    if item.user_response:
        return False
    return response in RESPONSE_TRANSITIONS.get(item.status, [])


def build_item_key(template_item_id, store_id=None):
    """Deterministic item key: ``<templateItemId>`` or ``<templateItemId>_<storeId>``."""
    if store_id is None:
        return str(template_item_id)
    return f"{template_item_id}_{store_id}"


def build_binding_key(binding, store_id=None):
    """Key into Conference.expected_input_values for a (possibly per-store) binding."""
    if store_id is None:
        return binding
    return f"{binding}_{store_id}"


# ═════════════════════════════════════════════════════════════════════════════
# 1. Conference
# ═════════════════════════════════════════════════════════════════════════════


class Conference(db.Model):
    """
    One instantiated migration-checklist run.

    ``status`` is always the aggregate of the item statuses. It is written
    only by ``conference_status.apply_aggregate``.
    """

    __tablename__ = "conferences"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    client_name = db.Column(db.String(200), nullable=False)
    client_email = db.Column(db.String(255), nullable=False)

    template_id = db.Column(
        db.Integer, db.ForeignKey("checklist_templates.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    template_version = db.Column(db.String(20), nullable=False)
    template_snapshot = db.Column(db.JSON, nullable=False,
                                  comment="Template as it was at instantiation time")
    connection_id = db.Column(
        db.Integer, db.ForeignKey("db_connections.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )

    status = db.Column(db.String(20), nullable=False, default="pending",
                       comment="pending | in_progress | completed | divergent")
    expected_input_values = db.Column(db.JSON, nullable=False, default=dict,
                                      comment="binding key (or binding_<Store.store_id>) → value")

    # Date-range placeholders (:start_date / :end_date)
    period_start = db.Column(db.Date, nullable=True)
    period_end = db.Column(db.Date, nullable=True)

    # Access link
    link_token = db.Column(db.String(128), unique=True, nullable=False, index=True)
    link_expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    created_by = db.Column(db.String(150), default="system")
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.String(150), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending','in_progress','completed','divergent')",
            name="ck_conference_status",
        ),
    )

    # ── Relationships ────────────────────────────────────────────────────
    stores = db.relationship(
        "Store", backref="conference", lazy="selectin",
        cascade="all, delete-orphan", order_by="Store.id",
    )
    items = db.relationship(
        "ConferenceItem", backref="conference", lazy="selectin",
        cascade="all, delete-orphan", order_by="ConferenceItem.id",
    )
    email_history = db.relationship(
        "EmailHistoryEntry", backref="conference", lazy="selectin",
        cascade="all, delete-orphan", order_by="EmailHistoryEntry.id",
    )
    template = db.relationship("ChecklistTemplate")
    connection = db.relationship("DbConnection")

    # ── Snapshot helpers ─────────────────────────────────────────────────

    def snapshot_items(self):
        """Yield template item dicts from the snapshot, in section order."""
        sections = sorted(self.template_snapshot.get("sections", []), key=lambda s: s["order"])
        for section in sections:
            yield from sorted(section.get("items", []), key=lambda i: i["order"])

    def snapshot_item(self, template_item_id):
        for item in self.snapshot_items():
            if item["id"] == template_item_id:
                return item
        return None

    def snapshot_inputs(self):
        return list(self.template_snapshot.get("expected_inputs", []))

    def get_item(self, item_key):
        return next((i for i in self.items if i.item_key == item_key), None)

    def progress(self):
        total = len(self.items)
        responded = sum(1 for i in self.items if i.user_response)
        return {
            "total": total,
            "pending": sum(1 for i in self.items if i.status == "pending"),
            "responded": responded,
            "correct": sum(1 for i in self.items if i.user_response == "correct"),
            "divergent": sum(1 for i in self.items if i.user_response == "divergent"),
            "auto_ok": sum(1 for i in self.items if i.status == "auto_ok"),
            "percentage": round(responded / total * 100) if total else 0,
        }

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "name": self.name,
            "client_name": self.client_name,
            "client_email": self.client_email,
            "template_id": self.template_id,
            "template_version": self.template_version,
            "connection_id": self.connection_id,
            "status": self.status,
            "expected_input_values": dict(self.expected_input_values or {}),
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "link_expires_at": self.link_expires_at.isoformat() if self.link_expires_at else None,
            "created_by": self.created_by,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completed_by": self.completed_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "stores": [s.to_dict() for s in self.stores],
            "progress": self.progress(),
        }
        if include_children:
            result["items"] = [i.to_dict() for i in self.items]
            result["email_history"] = [e.to_dict() for e in self.email_history]
            result["template"] = self.template_snapshot
        return result

    def __repr__(self):
        return f"<Conference {self.id}: {self.name} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Store
# ═════════════════════════════════════════════════════════════════════════════


class Store(db.Model):
    """Store attached to a conference. ``store_id`` is the external business key."""

    __tablename__ = "conference_stores"
    __table_args__ = (
        db.UniqueConstraint("conference_id", "store_id", name="uq_conference_store"),
    )

    id = db.Column(db.Integer, primary_key=True)
    conference_id = db.Column(
        db.Integer, db.ForeignKey("conferences.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    store_id = db.Column(db.String(50), nullable=False, comment="External store code")
    name = db.Column(db.String(200), nullable=False)

    def to_dict(self):
        return {"id": self.id, "store_id": self.store_id, "name": self.name}

    def __repr__(self):
        return f"<Store {self.id}: {self.store_id} {self.name}>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. ConferenceItem
# ═════════════════════════════════════════════════════════════════════════════


class ConferenceItem(db.Model):
    """
    Expanded checklist item.

    Three fields keep the human-over-automatic precedence explicit:
        auto_status    last classification produced by query execution
        user_response  human decision (correct | divergent), wins when set
        status         effective status = user_response or auto_status or pending
    """

    __tablename__ = "conference_items"
    __table_args__ = (
        db.UniqueConstraint("conference_id", "item_key", name="uq_conference_item_key"),
        db.CheckConstraint(
            "status IN ('pending','auto_ok','divergent','warn','fail','correct')",
            name="ck_conference_item_status",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    conference_id = db.Column(
        db.Integer, db.ForeignKey("conferences.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    item_key = db.Column(db.String(120), nullable=False,
                         comment="<templateItemId> or <templateItemId>_<Store.store_id>")
    template_item_id = db.Column(db.Integer, nullable=False,
                                 comment="TemplateItem id inside the conference snapshot")
    conference_store_id = db.Column(
        db.Integer, db.ForeignKey("conference_stores.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )

    status = db.Column(db.String(20), nullable=False, default="pending")
    auto_status = db.Column(db.String(20), nullable=True)
    query_result = db.Column(db.JSON, nullable=True)
    validation_reason = db.Column(db.String(500), nullable=True)
    error = db.Column(db.Text, nullable=True)
    executed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user_response = db.Column(db.String(20), nullable=True, comment="correct | divergent")
    observation = db.Column(db.Text, nullable=True)
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    responded_by = db.Column(db.String(150), nullable=True)

    execution_generation = db.Column(
        db.Integer, nullable=False, default=0,
        comment="Bumped on every execution start / decision; stale results are dropped",
    )

    store = db.relationship("Store")

    def to_dict(self):
        return {
            "id": self.item_key,
            "template_item_id": self.template_item_id,
            "store_id": self.store.store_id if self.store else None,
            "status": self.status,
            "auto_status": self.auto_status,
            "query_result": self.query_result,
            "validation_reason": self.validation_reason,
            "error": self.error,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "user_response": self.user_response,
            "observation": self.observation,
            "responded_at": self.responded_at.isoformat() if self.responded_at else None,
            "responded_by": self.responded_by,
        }

    def __repr__(self):
        return f"<ConferenceItem {self.item_key} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 4. EmailHistoryEntry
# ═════════════════════════════════════════════════════════════════════════════


class EmailHistoryEntry(db.Model):
    """Append-only record of an email attempt for a conference."""

    __tablename__ = "email_history"

    id = db.Column(db.Integer, primary_key=True)
    conference_id = db.Column(
        db.Integer, db.ForeignKey("conferences.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    type = db.Column(db.String(30), nullable=False, comment="conference_link | reminder | completion")
    to = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.String(500), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="pending", comment="sent | failed | pending")
    error = db.Column(db.Text, nullable=True)
    message_id = db.Column(db.String(255), nullable=True)
    sent_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "conference_id": self.conference_id,
            "type": self.type,
            "to": self.to,
            "subject": self.subject,
            "status": self.status,
            "error": self.error,
            "message_id": self.message_id,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }

    def __repr__(self):
        return f"<EmailHistoryEntry {self.id}: {self.type} → {self.to} [{self.status}]>"
