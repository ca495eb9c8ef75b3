"""initial_conference_schema

Create the conference platform schema: templates, connections,
conferences with stores/items/email history, notifications with dedup
keys, reminder settings, scheduled jobs and the audit trail.

Revision ID: a1c0f3e9d201
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1c0f3e9d201"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    # ── Templates ─────────────────────────────────────────────────────────
    if "checklist_templates" not in existing_tables:
        op.create_table(
            "checklist_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("version", sa.String(length=20), nullable=False),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.PrimaryKeyConstraint("id"),
        )

    if "template_sections" not in existing_tables:
        op.create_table(
            "template_sections",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("key", sa.String(length=100), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("order", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["template_id"], ["checklist_templates.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("template_id", "order", name="uq_template_section_order"),
        )
        op.create_index("ix_template_sections_template_id", "template_sections", ["template_id"])

    if "template_items" not in existing_tables:
        op.create_table(
            "template_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("section_id", sa.Integer(), nullable=False),
            sa.Column("key", sa.String(length=100), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("order", sa.Integer(), nullable=False),
            sa.Column("query", sa.Text(), nullable=False),
            sa.Column("scope", sa.String(length=20), nullable=False, server_default="global"),
            sa.Column("validation_rule", sa.JSON(), nullable=False),
            sa.Column("expected_input_binding", sa.String(length=100), nullable=True),
            sa.Column("auto_resolve", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.CheckConstraint("scope IN ('global','per_store')", name="ck_template_item_scope"),
            sa.ForeignKeyConstraint(["section_id"], ["template_sections.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_template_items_section_id", "template_items", ["section_id"])

    if "expected_inputs" not in existing_tables:
        op.create_table(
            "expected_inputs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("key", sa.String(length=100), nullable=False),
            sa.Column("label", sa.String(length=200), nullable=True),
            sa.Column("type", sa.String(length=20), nullable=False, server_default="number"),
            sa.Column("scope", sa.String(length=20), nullable=False, server_default="global"),
            sa.Column("required", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("hint", sa.String(length=300), nullable=True),
            sa.ForeignKeyConstraint(["template_id"], ["checklist_templates.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("template_id", "key", name="uq_expected_input_key"),
        )
        op.create_index("ix_expected_inputs_template_id", "expected_inputs", ["template_id"])

    # ── Target connections ────────────────────────────────────────────────
    if "db_connections" not in existing_tables:
        op.create_table(
            "db_connections",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("dialect", sa.String(length=20), nullable=False, server_default="postgresql"),
            sa.Column("host", sa.String(length=255), nullable=True),
            sa.Column("port", sa.Integer(), nullable=True),
            sa.Column("database", sa.String(length=255), nullable=False),
            sa.Column("username", sa.String(length=150), nullable=True),
            sa.Column("encrypted_password", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="inactive"),
            _ts("last_tested_at"),
            sa.Column("last_error", sa.Text(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.CheckConstraint("status IN ('active','inactive','error')", name="ck_db_connection_status"),
            sa.PrimaryKeyConstraint("id"),
        )

    # ── Conferences ───────────────────────────────────────────────────────
    if "conferences" not in existing_tables:
        op.create_table(
            "conferences",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("client_name", sa.String(length=200), nullable=False),
            sa.Column("client_email", sa.String(length=255), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("template_version", sa.String(length=20), nullable=False),
            sa.Column("template_snapshot", sa.JSON(), nullable=False),
            sa.Column("connection_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("expected_input_values", sa.JSON(), nullable=False),
            sa.Column("period_start", sa.Date(), nullable=True),
            sa.Column("period_end", sa.Date(), nullable=True),
            sa.Column("link_token", sa.String(length=128), nullable=False),
            _ts("link_expires_at", nullable=False),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            _ts("completed_at"),
            sa.Column("completed_by", sa.String(length=150), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.CheckConstraint(
                "status IN ('pending','in_progress','completed','divergent')",
                name="ck_conference_status",
            ),
            sa.ForeignKeyConstraint(["template_id"], ["checklist_templates.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["connection_id"], ["db_connections.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_conferences_template_id", "conferences", ["template_id"])
        op.create_index("ix_conferences_connection_id", "conferences", ["connection_id"])
        op.create_index("ix_conferences_link_token", "conferences", ["link_token"], unique=True)

    if "conference_stores" not in existing_tables:
        op.create_table(
            "conference_stores",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("conference_id", sa.Integer(), nullable=False),
            sa.Column("store_id", sa.String(length=50), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.ForeignKeyConstraint(["conference_id"], ["conferences.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("conference_id", "store_id", name="uq_conference_store"),
        )
        op.create_index("ix_conference_stores_conference_id", "conference_stores", ["conference_id"])

    if "conference_items" not in existing_tables:
        op.create_table(
            "conference_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("conference_id", sa.Integer(), nullable=False),
            sa.Column("item_key", sa.String(length=120), nullable=False),
            sa.Column("template_item_id", sa.Integer(), nullable=False),
            sa.Column("conference_store_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("auto_status", sa.String(length=20), nullable=True),
            sa.Column("query_result", sa.JSON(), nullable=True),
            sa.Column("validation_reason", sa.String(length=500), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            _ts("executed_at"),
            sa.Column("user_response", sa.String(length=20), nullable=True),
            sa.Column("observation", sa.Text(), nullable=True),
            _ts("responded_at"),
            sa.Column("responded_by", sa.String(length=150), nullable=True),
            sa.Column("execution_generation", sa.Integer(), nullable=False, server_default="0"),
            sa.CheckConstraint(
                "status IN ('pending','auto_ok','divergent','warn','fail','correct')",
                name="ck_conference_item_status",
            ),
            sa.ForeignKeyConstraint(["conference_id"], ["conferences.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["conference_store_id"], ["conference_stores.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("conference_id", "item_key", name="uq_conference_item_key"),
        )
        op.create_index("ix_conference_items_conference_id", "conference_items", ["conference_id"])
        op.create_index("ix_conference_items_conference_store_id", "conference_items", ["conference_store_id"])

    if "email_history" not in existing_tables:
        op.create_table(
            "email_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("conference_id", sa.Integer(), nullable=False),
            sa.Column("type", sa.String(length=30), nullable=False),
            sa.Column("to", sa.String(length=255), nullable=False),
            sa.Column("subject", sa.String(length=500), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("message_id", sa.String(length=255), nullable=True),
            _ts("sent_at", nullable=False),
            sa.ForeignKeyConstraint(["conference_id"], ["conferences.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_email_history_conference_id", "email_history", ["conference_id"])

    # ── Notifications ─────────────────────────────────────────────────────
    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("conference_id", sa.Integer(), nullable=True),
            sa.Column("recipient", sa.String(length=150), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("dedup_key", sa.String(length=200), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            _ts("read_at"),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["conference_id"], ["conferences.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_conference_id", "notifications", ["conference_id"])
        op.create_index("ix_notifications_recipient", "notifications", ["recipient"])
        op.create_index("ix_notifications_dedup_key", "notifications", ["dedup_key"])

    if "notification_dedup_keys" not in existing_tables:
        op.create_table(
            "notification_dedup_keys",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("key", sa.String(length=200), nullable=False),
            sa.Column("conference_id", sa.Integer(), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["conference_id"], ["conferences.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("key"),
        )
        op.create_index("ix_notification_dedup_keys_conference_id", "notification_dedup_keys", ["conference_id"])

    # ── Scheduling ────────────────────────────────────────────────────────
    if "reminder_settings" not in existing_tables:
        op.create_table(
            "reminder_settings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("days_threshold", sa.Integer(), nullable=False, server_default="3"),
            sa.Column("auto_send", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("updated_at"),
            sa.PrimaryKeyConstraint("id"),
        )

    if "scheduled_jobs" not in existing_tables:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("schedule_type", sa.String(length=30), nullable=True),
            sa.Column("schedule_config", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            _ts("last_run_at"),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )

    # ── Audit ─────────────────────────────────────────────────────────────
    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("conference_id", sa.Integer(), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=60), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False),
            sa.Column("diff_json", sa.Text(), nullable=True),
            _ts("timestamp", nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_logs_conference_id", "audit_logs", ["conference_id"])
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    for table in (
        "audit_logs",
        "scheduled_jobs",
        "reminder_settings",
        "notification_dedup_keys",
        "notifications",
        "email_history",
        "conference_items",
        "conference_stores",
        "conferences",
        "db_connections",
        "expected_inputs",
        "template_items",
        "template_sections",
        "checklist_templates",
    ):
        op.drop_table(table)
