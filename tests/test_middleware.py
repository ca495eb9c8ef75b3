"""
Migration Conference Platform
Tests — Request timing, structured logging and app-level error handlers.
"""

import json
import logging

from flask import g

from migconf.middleware.logging_config import JSONFormatter, ReadableFormatter, RequestContextFilter


class TestRequestTiming:
    def test_headers(self, client):
        res = client.get("/api/v1/health")
        assert float(res.headers["X-Request-Duration-Ms"]) >= 0
        assert res.headers["X-Request-ID"]

    def test_request_id_is_propagated(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"


class TestFormatters:
    def _record(self, **extra):
        record = logging.LogRecord("migconf.test", logging.INFO, __file__, 10, "Item %s executed", ("7_LJ01",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter_includes_extras(self):
        line = JSONFormatter().format(self._record(conference_id=7, item_key="7_LJ01", ignored="x"))
        data = json.loads(line)
        assert data["message"] == "Item 7_LJ01 executed"
        assert data["level"] == "INFO"
        assert data["conference_id"] == 7
        assert data["item_key"] == "7_LJ01"
        assert "ignored" not in data

    def test_readable_formatter(self):
        line = ReadableFormatter().format(self._record(duration_ms=12.4))
        assert "Item 7_LJ01 executed" in line
        assert "[12ms]" in line

    def test_readable_formatter_tags_domain_fields(self):
        line = ReadableFormatter().format(self._record(conference_id=7, item_key="7_LJ01"))
        assert "(conference_id=7 item_key=7_LJ01)" in line

    def test_request_id_is_stamped_inside_a_request(self, app):
        record = self._record()
        with app.test_request_context("/api/v1/health"):
            g.request_id = "req-42"
            RequestContextFilter().filter(record)
        assert json.loads(JSONFormatter().format(record))["request_id"] == "req-42"

    def test_request_id_untouched_outside_a_request(self):
        record = self._record()
        assert RequestContextFilter().filter(record) is True
        assert "request_id" not in json.loads(JSONFormatter().format(record))


class TestDomainContext:
    def test_item_execution_logs_item_key(self, caplog, conference, keys):
        from migconf.services.item_lifecycle import execute_item

        global_key, _ = keys
        with caplog.at_level(logging.INFO, logger="migconf.services.item_lifecycle"):
            execute_item(conference, global_key)
        record = next(r for r in caplog.records if "executed" in r.getMessage())
        assert record.item_key == global_key
        assert record.conference_id == conference.id

    def test_job_run_logs_job_name(self, caplog, app):
        from migconf.services.scheduler_service import SchedulerService

        with caplog.at_level(logging.INFO, logger="migconf.services.scheduler_service"):
            SchedulerService.run_job("reminder_dispatch")
        record = next(r for r in caplog.records if getattr(r, "job_name", None))
        assert record.job_name == "reminder_dispatch"
        assert record.duration_ms >= 0


class TestAppErrors:
    def test_unknown_route(self, client):
        res = client.get("/api/v1/does-not-exist")
        assert res.status_code == 404
        assert res.get_json()["error"] == "Not found"

    def test_wrong_method(self, client):
        res = client.patch("/api/v1/health", json={})
        assert res.status_code == 405
