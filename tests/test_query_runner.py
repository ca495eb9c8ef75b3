"""
Migration Conference Platform
Tests — Query runner (read-only guard, placeholder binding, execution).
"""

from datetime import date
from decimal import Decimal

import pytest

from migconf.core.exceptions import QueryExecutionError
from migconf.models import db
from migconf.models.connection import DbConnection
from migconf.services.query_runner import QueryResult, QueryRunner, placeholders, read_only_violation


# ═══════════════════════════════════════════════════════════════════════════
#  Static analysis
# ═══════════════════════════════════════════════════════════════════════════

class TestPlaceholders:
    def test_in_order_of_appearance_without_duplicates(self):
        sql = "SELECT 1 FROM t WHERE a = :store_id AND b >= :start_date AND c = :store_id"
        assert placeholders(sql) == ["store_id", "start_date"]

    def test_casts_are_not_placeholders(self):
        assert placeholders("SELECT x::date FROM t WHERE d <= :end_date") == ["end_date"]

    def test_string_literals_are_ignored(self):
        assert placeholders("SELECT ':not_me' AS label WHERE a = :me") == ["me"]

    def test_empty(self):
        assert placeholders("") == []
        assert placeholders(None) == []


class TestReadOnlyGuard:
    @pytest.mark.parametrize("sql", [
        "SELECT 1",
        "select count(*) from customers;",
        "WITH x AS (SELECT 1 AS n) SELECT n FROM x",
        "SELECT 'update' AS word",
        "-- delete me\nSELECT 1",
        "SELECT updated_at FROM t",
    ])
    def test_accepts_single_select(self, sql):
        assert read_only_violation(sql) is None

    @pytest.mark.parametrize("sql, fragment", [
        ("", "empty"),
        ("   ", "empty"),
        ("DELETE FROM customers", "SELECT or WITH"),
        ("SELECT 1; DROP TABLE customers", "single statement"),
        ("SELECT * INTO backup FROM customers", "INTO"),
        ("WITH x AS (DELETE FROM t RETURNING *) SELECT * FROM x", "DELETE"),
    ])
    def test_rejects(self, sql, fragment):
        assert fragment in read_only_violation(sql)


# ═══════════════════════════════════════════════════════════════════════════
#  Execution against a SQLite target
# ═══════════════════════════════════════════════════════════════════════════

class TestExecute:
    def test_returns_columns_and_rows(self, connection):
        result = QueryRunner().execute(connection, "SELECT id, name FROM customers ORDER BY id")
        assert result.columns == ["id", "name"]
        assert result.rows == [(1, "Ana"), (2, "Bruno")]
        assert result.truncated is False

    def test_binds_only_used_placeholders(self, connection):
        result = QueryRunner().execute(
            connection,
            "SELECT SUM(amount) FROM sales WHERE store_id = :store_id AND sold_on >= :start_date",
            {"store_id": "LJ01", "start_date": "2024-01-15", "sales_total": "100"},
        )
        assert result.rows == [(40.0,)]

    def test_missing_placeholder_raises(self, connection):
        with pytest.raises(QueryExecutionError, match=":store_id"):
            QueryRunner().execute(connection, "SELECT * FROM sales WHERE store_id = :store_id", {})

    def test_write_statement_is_refused(self, connection):
        with pytest.raises(QueryExecutionError, match="Refused"):
            QueryRunner().execute(connection, "DELETE FROM sales")

    def test_sql_error_raises(self, connection):
        with pytest.raises(QueryExecutionError, match="no such table"):
            QueryRunner().execute(connection, "SELECT * FROM missing_table")

    def test_rows_capped(self, app, connection, monkeypatch):
        monkeypatch.setitem(app.config, "QUERY_MAX_ROWS", 2)
        result = QueryRunner().execute(connection, "SELECT id FROM sales ORDER BY id")
        assert len(result.rows) == 2
        assert result.truncated is True

    def test_engine_rebuilt_when_connection_changes(self, connection):
        runner = QueryRunner()
        runner.execute(connection, "SELECT 1")
        first = runner._engines[connection.id][1]
        connection.name = "Renamed"
        db.session.commit()
        runner.execute(connection, "SELECT 1")
        assert runner._engines[connection.id][1] is not first
        runner.dispose(connection.id)
        assert connection.id not in runner._engines


class TestTestConnection:
    def test_ok(self, connection):
        assert QueryRunner().test_connection(connection) == (True, None)

    def test_unreachable(self, tmp_path):
        conn = DbConnection(name="Broken", dialect="sqlite",
                            database=str(tmp_path / "missing" / "nowhere.db"))
        db.session.add(conn)
        db.session.commit()
        ok, message = QueryRunner().test_connection(conn)
        assert ok is False
        assert message


class TestQueryResult:
    def test_to_dict_is_json_friendly(self):
        result = QueryResult(columns=["total", "day", "raw"],
                             rows=[(Decimal("10.50"), date(2024, 1, 2), b"\x01")])
        data = result.to_dict()
        assert data["rows"] == [["10.50", "2024-01-02", "01"]]
        assert data["row_count"] == 1
