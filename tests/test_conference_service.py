"""
Migration Conference Platform
Tests — Conference service (instantiation, inputs, end-to-end close-out).
"""

import pytest
from sqlalchemy import select

import migconf.services.conference_service as svc
from migconf.core.exceptions import NotFoundError, ValidationError
from migconf.models import db
from migconf.models.audit import AuditLog
from migconf.models.conference import Conference, ConferenceItem
from migconf.models.notification import Notification, NotificationDedupKey
from migconf.services import notification_engine
from migconf.services.template_service import create_template


def _payload(template, connection, **extra):
    data = {
        "name": "Acme go-live",
        "client_name": "Acme",
        "client_email": "client@acme.com",
        "template_id": template.id,
        "connection_id": connection.id,
        "stores": [{"store_id": "LJ01", "name": "Centro"}, {"store_id": "LJ02", "name": "Norte"}],
    }
    data.update(extra)
    return data


# ═══════════════════════════════════════════════════════════════════════════
#  Instantiation
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateConference:
    def test_expands_items_and_issues_link(self, conference):
        assert len(conference.items) == 3
        assert conference.status == "pending"
        assert {i.status for i in conference.items} == {"pending"}
        assert len(conference.link_token) >= 40
        assert conference.link_expires_at is not None
        assert conference.template_version == "1.0.0"
        assert conference.template_snapshot["name"] == "Store close-out"

    def test_item_keys(self, conference, keys):
        global_key, per_store = keys
        template_ids = {i.template_item_id for i in conference.items}
        assert global_key.isdigit()
        assert set(per_store) == {"LJ01", "LJ02"}
        assert all(k.endswith(f"_{code}") for code, k in per_store.items())
        assert len(template_ids) == 2

    def test_audited(self, conference):
        row = db.session.execute(
            select(AuditLog).where(AuditLog.action == "conference.create")
        ).scalar_one()
        assert row.conference_id == conference.id
        assert row.diff["items"] == 3

    def test_send_email_records_history(self, template, connection):
        conf = svc.create_conference(_payload(template, connection, send_email=True))
        assert len(conf.email_history) == 1
        entry = conf.email_history[0]
        assert entry.type == "conference_link"
        assert entry.status == "sent"
        assert entry.to == "client@acme.com"

    @pytest.mark.parametrize("field", ["name", "client_name", "client_email", "template_id", "connection_id"])
    def test_required_fields(self, template, connection, field):
        data = _payload(template, connection)
        data[field] = None
        with pytest.raises(ValidationError) as exc:
            svc.create_conference(data)
        assert field in exc.value.details

    def test_invalid_email(self, template, connection):
        with pytest.raises(ValidationError) as exc:
            svc.create_conference(_payload(template, connection, client_email="not-an-email"))
        assert "client_email" in exc.value.details

    def test_duplicate_store_codes(self, template, connection):
        stores = [{"store_id": "LJ01", "name": "A"}, {"store_id": "LJ01", "name": "B"}]
        with pytest.raises(ValidationError):
            svc.create_conference(_payload(template, connection, stores=stores))

    def test_per_store_template_needs_stores(self, template, connection):
        with pytest.raises(ValidationError) as exc:
            svc.create_conference(_payload(template, connection, stores=[]))
        assert "stores" in exc.value.details

    def test_period_order(self, template, connection):
        with pytest.raises(ValidationError):
            svc.create_conference(_payload(template, connection,
                                           period_start="2024-02-01", period_end="2024-01-01"))

    def test_unknown_template_and_connection(self, template, connection):
        with pytest.raises(NotFoundError):
            svc.create_conference(_payload(template, connection, template_id=9999))
        with pytest.raises(NotFoundError):
            svc.create_conference(_payload(template, connection, connection_id=9999))

    def test_snapshot_is_independent_of_later_template_edits(self, conference, template):
        template.name = "Renamed"
        db.session.commit()
        assert conference.template_snapshot["name"] == "Store close-out"


# ═══════════════════════════════════════════════════════════════════════════
#  Expected inputs
# ═══════════════════════════════════════════════════════════════════════════

class TestExpectedInputs:
    @pytest.fixture()
    def reconciliation(self, connection, reconciliation_payload):
        template = create_template(reconciliation_payload)
        return svc.create_conference(_payload(template, connection))

    def test_missing_required_inputs(self, reconciliation):
        assert svc.missing_required_inputs(reconciliation) == ["sales_total_LJ01", "sales_total_LJ02"]

    def test_update_merges_values(self, reconciliation):
        svc.update_expected_inputs(reconciliation, {"sales_total_LJ01": "100.50"})
        svc.update_expected_inputs(reconciliation, {"sales_total_LJ02": 250})
        assert reconciliation.expected_input_values == {"sales_total_LJ01": "100.50", "sales_total_LJ02": 250}
        assert svc.missing_required_inputs(reconciliation) == []

    def test_blank_value_removes_key(self, reconciliation):
        svc.update_expected_inputs(reconciliation, {"sales_total_LJ01": "100"})
        svc.update_expected_inputs(reconciliation, {"sales_total_LJ01": ""})
        assert "sales_total_LJ01" not in reconciliation.expected_input_values

    def test_unknown_key_rejected(self, reconciliation):
        with pytest.raises(ValidationError) as exc:
            svc.update_expected_inputs(reconciliation, {"sales_total_LJ99": "1"})
        assert "sales_total_LJ99" in exc.value.details

    def test_non_numeric_rejected(self, reconciliation):
        with pytest.raises(ValidationError):
            svc.update_expected_inputs(reconciliation, {"sales_total_LJ01": "lots"})

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-Infinity", "sNaN", float("nan"), float("inf")])
    def test_non_finite_rejected(self, reconciliation, value):
        with pytest.raises(ValidationError) as exc:
            svc.update_expected_inputs(reconciliation, {"sales_total_LJ01": value})
        assert exc.value.details == {"sales_total_LJ01": "must be numeric"}
        assert "sales_total_LJ01" not in (reconciliation.expected_input_values or {})
        assert "sales_total_LJ01" in svc.missing_required_inputs(reconciliation)


# ═══════════════════════════════════════════════════════════════════════════
#  End-to-end close-out
# ═══════════════════════════════════════════════════════════════════════════

class TestCloseOut:
    def test_two_store_close_out(self, conference, keys):
        global_key, per_store = keys
        assert len(conference.items) == 3
        assert conference.status == "pending"

        item = svc.execute_item(conference, global_key)
        assert item.status == "warn"
        assert conference.status == "in_progress"

        assert svc.execute_item(conference, per_store["LJ01"]).status == "auto_ok"
        assert svc.execute_item(conference, per_store["LJ02"]).status == "auto_ok"
        assert conference.status == "in_progress"

        svc.respond_item(conference, global_key, "correct", responded_by="Acme")
        assert conference.status == "completed"
        assert conference.completed_at is not None
        assert conference.completed_by == "Acme"

        completion = [e for e in conference.email_history if e.type == "completion"]
        assert len(completion) == 1
        assert completion[0].status == "sent"

    def test_divergent_decision(self, conference, keys):
        global_key, _ = keys
        svc.execute_all(conference)
        svc.respond_item(conference, global_key, "divergent", observation="missing 3 customers")
        assert conference.status == "divergent"
        assert conference.progress()["divergent"] == 1

    def test_clearing_reopens_conference(self, conference, keys):
        global_key, _ = keys
        svc.execute_all(conference)
        svc.respond_item(conference, global_key, "correct")
        assert conference.status == "completed"
        svc.clear_item_response(conference, global_key)
        assert conference.status == "in_progress"
        assert conference.completed_at is None

    def test_status_changes_are_audited(self, conference, keys):
        global_key, _ = keys
        svc.execute_item(conference, global_key)
        actions = db.session.execute(
            select(AuditLog.action).where(AuditLog.conference_id == conference.id)
        ).scalars().all()
        assert "conference.status_change" in actions


# ═══════════════════════════════════════════════════════════════════════════
#  Listing, stats, delete, links
# ═══════════════════════════════════════════════════════════════════════════

class TestQueriesAndDelete:
    def test_list_filters(self, conference):
        rows = db.session.execute(svc.list_conferences(status="pending")).scalars().all()
        assert [c.id for c in rows] == [conference.id]
        assert db.session.execute(svc.list_conferences(status="completed")).scalars().all() == []
        rows = db.session.execute(svc.list_conferences(search="acme")).scalars().all()
        assert len(rows) == 1

    def test_stats(self, conference):
        data = svc.stats()
        assert data["total"] == 1
        assert data["by_status"]["pending"] == 1
        assert data["by_status"]["completed"] == 0

    def test_delete_keeps_notifications(self, conference):
        notification_engine.claim(notification_engine.expired_key(conference.id), conference.id)
        db.session.add(Notification(title="Link expired", conference_id=conference.id))
        db.session.commit()
        conference_id = conference.id

        svc.delete_conference(conference, actor="admin")

        assert db.session.get(Conference, conference_id) is None
        assert db.session.execute(
            select(ConferenceItem).where(ConferenceItem.conference_id == conference_id)
        ).first() is None
        assert db.session.execute(select(NotificationDedupKey)).first() is None
        notif = db.session.execute(select(Notification)).scalar_one()
        assert notif.conference_id is None

    def test_regenerate_link(self, conference):
        old_token = conference.link_token
        email = svc.regenerate_link(conference, ttl_days=3, send_email=True)
        assert conference.link_token != old_token
        assert email.success is True
        assert conference.email_history[-1].type == "conference_link"

    def test_senders(self, conference):
        result = svc.SENDERS["reminder"](conference)
        assert result.success
        assert conference.email_history[-1].type == "reminder"
