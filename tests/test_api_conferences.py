"""
Migration Conference Platform
Tests — Conference API (admin side) and public access-link API.

Covers:
    1. Conference create / list / stats / delete
    2. Item execute / respond / clear over HTTP
    3. Link regeneration and emails
    4. Public endpoints and the uniform unavailable-link response
"""

from datetime import datetime, timedelta, timezone

import pytest

from migconf.models import db


@pytest.fixture()
def created(client, template, connection):
    """Conference created through the API."""
    res = client.post("/api/v1/conferences", json={
        "name": "Acme go-live",
        "client_name": "Acme",
        "client_email": "client@acme.com",
        "template_id": template.id,
        "connection_id": connection.id,
        "stores": [{"store_id": "LJ01", "name": "Centro"}, {"store_id": "LJ02", "name": "Norte"}],
        "actor": "admin",
    })
    assert res.status_code == 201
    return res.get_json()


def _global_key(conference_json):
    return next(i["id"] for i in conference_json["items"] if i["store_id"] is None)


def _store_keys(conference_json):
    return [i["id"] for i in conference_json["items"] if i["store_id"] is not None]


# ═══════════════════════════════════════════════════════════════════════════
#  1. Conference CRUD
# ═══════════════════════════════════════════════════════════════════════════

class TestConferenceCRUD:
    def test_create(self, created):
        assert created["status"] == "pending"
        assert len(created["items"]) == 3
        assert created["created_by"] == "admin"
        assert created["public_url"].endswith(created["link_token"])
        assert created["link_expired"] is False
        assert created["progress"]["total"] == 3

    def test_create_validation(self, client, template, connection):
        res = client.post("/api/v1/conferences", json={"template_id": template.id})
        assert res.status_code == 422
        details = res.get_json()["details"]
        assert "name" in details
        assert "client_email" in details

    def test_list_and_filter(self, client, created):
        res = client.get("/api/v1/conferences?status=pending")
        data = res.get_json()
        assert data["total"] == 1
        assert data["items"][0]["id"] == created["id"]
        assert "items" not in data["items"][0]
        assert client.get("/api/v1/conferences?status=completed").get_json()["total"] == 0

    def test_stats(self, client, created):
        data = client.get("/api/v1/conferences/stats").get_json()
        assert data["total"] == 1
        assert data["by_status"]["pending"] == 1

    def test_get_and_delete(self, client, created):
        url = f"/api/v1/conferences/{created['id']}"
        assert client.get(url).status_code == 200
        assert client.delete(url).status_code == 200
        res = client.get(url)
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_audit_trail(self, client, created):
        items = client.get(f"/api/v1/conferences/{created['id']}/audit").get_json()["items"]
        assert [a["action"] for a in items] == ["conference.create"]
        assert items[0]["actor"] == "admin"


# ═══════════════════════════════════════════════════════════════════════════
#  2. Items
# ═══════════════════════════════════════════════════════════════════════════

class TestItemsAPI:
    def test_execute_respond_complete(self, client, created):
        base = f"/api/v1/conferences/{created['id']}"
        global_key = _global_key(created)

        res = client.post(f"{base}/items/{global_key}/execute")
        assert res.status_code == 200
        body = res.get_json()
        assert body["item"]["status"] == "warn"
        assert body["conference"]["status"] == "in_progress"

        res = client.post(f"{base}/execute-all", json={"only_pending": True})
        assert res.get_json()["executed"] == 2

        res = client.post(f"{base}/items/{global_key}/respond",
                          json={"response": "correct", "observation": "ok", "actor": "ana"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["item"]["responded_by"] == "ana"
        assert body["conference"]["status"] == "completed"

        emails = client.get(f"{base}/emails").get_json()["items"]
        assert emails[0]["type"] == "completion"

    def test_respond_requires_response(self, client, created):
        res = client.post(f"/api/v1/conferences/{created['id']}/items/{_global_key(created)}/respond", json={})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_respond_before_execution_conflicts(self, client, created):
        res = client.post(f"/api/v1/conferences/{created['id']}/items/{_global_key(created)}/respond",
                          json={"response": "correct"})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_clear_response(self, client, created):
        base = f"/api/v1/conferences/{created['id']}/items/{_global_key(created)}"
        client.post(f"{base}/execute")
        client.post(f"{base}/respond", json={"response": "divergent"})
        res = client.post(f"{base}/clear-response")
        assert res.status_code == 200
        assert res.get_json()["item"]["status"] == "warn"

    def test_unknown_item(self, client, created):
        res = client.post(f"/api/v1/conferences/{created['id']}/items/nope/execute")
        assert res.status_code == 404

    def test_expected_inputs(self, client, connection, reconciliation_payload):
        template = client.post("/api/v1/templates", json=reconciliation_payload).get_json()
        conf = client.post("/api/v1/conferences", json={
            "name": "Reconciliation", "client_name": "Acme", "client_email": "client@acme.com",
            "template_id": template["id"], "connection_id": connection.id,
            "stores": [{"store_id": "LJ01"}],
        }).get_json()
        assert conf["missing_inputs"] == ["sales_total_LJ01"]

        res = client.put(f"/api/v1/conferences/{conf['id']}/expected-inputs",
                         json={"values": {"sales_total_LJ01": "100"}})
        assert res.status_code == 200
        assert res.get_json()["missing_inputs"] == []

        res = client.put(f"/api/v1/conferences/{conf['id']}/expected-inputs",
                         json={"values": {"bogus": "1"}})
        assert res.status_code == 422


# ═══════════════════════════════════════════════════════════════════════════
#  3. Links & emails
# ═══════════════════════════════════════════════════════════════════════════

class TestLinksAndEmails:
    def test_regenerate(self, client, created):
        res = client.post(f"/api/v1/conferences/{created['id']}/link/regenerate",
                          json={"ttl_days": 2, "send_email": True})
        assert res.status_code == 200
        body = res.get_json()
        assert body["conference"]["link_token"] != created["link_token"]
        assert body["email"]["success"] is True

        assert client.get(f"/api/v1/public/conferences/{created['link_token']}").status_code == 404
        assert client.get(f"/api/v1/public/conferences/{body['conference']['link_token']}").status_code == 200

    def test_regenerate_rejects_bad_ttl(self, client, created):
        res = client.post(f"/api/v1/conferences/{created['id']}/link/regenerate", json={"ttl_days": 0})
        assert res.status_code == 422

    def test_send_email(self, client, created):
        res = client.post(f"/api/v1/conferences/{created['id']}/emails/send", json={"kind": "reminder"})
        assert res.status_code == 200
        assert res.get_json()["success"] is True
        history = client.get(f"/api/v1/conferences/{created['id']}/emails").get_json()
        assert history["total"] == 1
        assert history["items"][0]["type"] == "reminder"

    def test_unknown_email_kind(self, client, created):
        res = client.post(f"/api/v1/conferences/{created['id']}/emails/send", json={"kind": "spam"})
        assert res.status_code == 422


# ═══════════════════════════════════════════════════════════════════════════
#  4. Public access
# ═══════════════════════════════════════════════════════════════════════════

class TestPublicAPI:
    def test_view(self, client, created):
        res = client.get(f"/api/v1/public/conferences/{created['link_token']}")
        assert res.status_code == 200
        data = res.get_json()
        assert data["id"] == created["id"]
        assert len(data["items"]) == 3
        assert "email_history" not in data
        assert "link_token" not in data
        assert "created_by" not in data

    def test_unknown_and_expired_look_the_same(self, client, created):
        from migconf.models.conference import Conference

        unknown = client.get("/api/v1/public/conferences/not-a-token")

        conf = db.session.get(Conference, created["id"])
        conf.link_expires_at = datetime.now(timezone.utc) - timedelta(hours=1)
        db.session.commit()
        expired = client.get(f"/api/v1/public/conferences/{created['link_token']}")

        assert unknown.status_code == expired.status_code == 404
        assert unknown.get_json() == expired.get_json()
        assert unknown.get_json()["code"] == "ERR_LINK_UNAVAILABLE"

    def test_client_executes_and_answers(self, client, created):
        base = f"/api/v1/public/conferences/{created['link_token']}"
        global_key = _global_key(created)

        res = client.post(f"{base}/items/{global_key}/execute")
        assert res.status_code == 200
        assert res.get_json()["item"]["status"] == "warn"

        for key in _store_keys(created):
            client.post(f"{base}/items/{key}/execute")

        res = client.post(f"{base}/items/{global_key}/respond", json={"response": "correct"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["item"]["responded_by"] == "Acme"
        assert body["conference"]["status"] == "completed"

    def test_expired_link_cannot_respond(self, client, created):
        from migconf.models.conference import Conference

        conf = db.session.get(Conference, created["id"])
        conf.link_expires_at = datetime.now(timezone.utc) - timedelta(hours=1)
        db.session.commit()
        res = client.post(f"/api/v1/public/conferences/{created['link_token']}/items/"
                          f"{_global_key(created)}/respond", json={"response": "correct"})
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_LINK_UNAVAILABLE"

    def test_client_supplies_inputs(self, client, created):
        res = client.put(f"/api/v1/public/conferences/{created['link_token']}/expected-inputs",
                         json={"values": {}})
        assert res.status_code == 200
        assert res.get_json()["missing_inputs"] == []
