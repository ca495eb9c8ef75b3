"""
Query execution adapter — runs checklist SQL against a client's database.

    QueryRunner.execute(connection, sql, params) -> QueryResult(columns, rows)

Every call:
  1. re-checks the read-only guard (single SELECT / WITH statement)
  2. binds only the placeholders that actually appear in the SQL
  3. runs inside a transaction that is always rolled back
  4. caps the fetched rows at QUERY_MAX_ROWS

Any driver or connection problem surfaces as ``QueryExecutionError``; the
caller (item lifecycle) turns that into an item ``fail``.

Engines are cached per DbConnection and rebuilt when the connection row
changes (``updated_at``).
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal

from cryptography.fernet import InvalidToken
from flask import current_app
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from migconf.core.exceptions import QueryExecutionError

logger = logging.getLogger(__name__)

# Same placeholder grammar SQLAlchemy's text() uses; ``::type`` casts are skipped
_PLACEHOLDER_RE = re.compile(r"(?<![:\w\\]):(\w+)(?!:)")

_FORBIDDEN_KEYWORDS = (
    "insert", "update", "delete", "merge", "upsert",
    "drop", "create", "alter", "truncate", "rename",
    "grant", "revoke", "exec", "execute", "call",
    "attach", "detach", "pragma", "vacuum", "copy", "into",
    "lock", "set",
)
_FORBIDDEN_RE = re.compile(r"\b(" + "|".join(_FORBIDDEN_KEYWORDS) + r")\b", re.IGNORECASE)
_STRING_LITERAL_RE = re.compile(r"'(?:[^']|'')*'")
_COMMENT_RE = re.compile(r"--[^\n]*|/\*.*?\*/", re.DOTALL)


def placeholders(sql: str) -> list[str]:
    """Return the distinct ``:name`` placeholders in order of appearance."""
    seen = []
    for name in _PLACEHOLDER_RE.findall(_STRING_LITERAL_RE.sub("''", sql or "")):
        if name not in seen:
            seen.append(name)
    return seen


def read_only_violation(sql: str) -> str | None:
    """Return why ``sql`` is not a single read-only statement, or None."""
    if not sql or not sql.strip():
        return "query is empty"
    stripped = _COMMENT_RE.sub(" ", sql)
    stripped = _STRING_LITERAL_RE.sub("''", stripped).strip().rstrip(";").strip()
    if ";" in stripped:
        return "only a single statement is allowed"
    head = stripped.split(None, 1)[0].lower() if stripped else ""
    if head not in ("select", "with"):
        return "query must start with SELECT or WITH"
    match = _FORBIDDEN_RE.search(stripped)
    if match:
        return f"keyword '{match.group(1).upper()}' is not allowed in a read-only query"
    return None


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


@dataclass
class QueryResult:
    columns: list[str]
    rows: list[tuple]
    truncated: bool = False
    duration_ms: int = 0
    executed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "columns": list(self.columns),
            "rows": [[_jsonable(v) for v in row] for row in self.rows],
            "row_count": len(self.rows),
            "truncated": self.truncated,
            "duration_ms": self.duration_ms,
        }


class QueryRunner:
    """Executes read-only checklist queries through cached SQLAlchemy engines."""

    def __init__(self):
        self._engines = {}
        self._lock = threading.Lock()

    # ── Engines ──────────────────────────────────────────────────────────

    def _engine_for(self, connection):
        stamp = connection.updated_at
        with self._lock:
            cached = self._engines.get(connection.id)
            if cached and cached[0] == stamp:
                return cached[1]
            if cached:
                cached[1].dispose()
            engine = create_engine(
                connection.sqlalchemy_url(),
                pool_pre_ping=True,
                connect_args=self._connect_args(connection),
            )
            self._engines[connection.id] = (stamp, engine)
            return engine

    @staticmethod
    def _connect_args(connection):
        timeout = current_app.config.get("QUERY_TIMEOUT_SECONDS", 30)
        if connection.dialect == "postgresql":
            return {"connect_timeout": timeout, "options": f"-c statement_timeout={timeout * 1000}"}
        if connection.dialect == "mysql":
            return {"connect_timeout": timeout, "read_timeout": timeout}
        if connection.dialect == "sqlite":
            return {"timeout": timeout}
        return {}

    def dispose(self, connection_id):
        with self._lock:
            cached = self._engines.pop(connection_id, None)
        if cached:
            cached[1].dispose()

    # ── Execution ────────────────────────────────────────────────────────

    def execute(self, connection, sql, params=None) -> QueryResult:
        """Run ``sql`` with bound ``params``; raises QueryExecutionError."""
        violation = read_only_violation(sql)
        if violation:
            raise QueryExecutionError(f"Refused to run query: {violation}")

        params = params or {}
        bound = {}
        for name in placeholders(sql):
            if name not in params:
                raise QueryExecutionError(f"No value for placeholder :{name}")
            bound[name] = params[name]

        max_rows = current_app.config.get("QUERY_MAX_ROWS", 500)
        start = time.monotonic()
        try:
            engine = self._engine_for(connection)
            with engine.connect() as conn:
                trans = conn.begin()
                try:
                    result = conn.execute(text(sql), bound)
                    columns = list(result.keys())
                    fetched = result.fetchmany(max_rows + 1)
                finally:
                    trans.rollback()
        except SQLAlchemyError as exc:
            logger.warning("Query failed on connection id=%s: %s", connection.id, exc)
            raise QueryExecutionError(str(getattr(exc, "orig", None) or exc)) from exc
        except (ImportError, RuntimeError, InvalidToken) as exc:
            logger.warning("Cannot open connection id=%s: %s", connection.id, exc)
            raise QueryExecutionError(f"Cannot open connection: {exc}") from exc

        rows = [tuple(r) for r in fetched[:max_rows]]
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.debug("Query on connection id=%s returned %d row(s) in %dms",
                     connection.id, len(rows), duration_ms)
        return QueryResult(columns=columns, rows=rows,
                           truncated=len(fetched) > max_rows, duration_ms=duration_ms)

    def test_connection(self, connection) -> tuple[bool, str | None]:
        """Run ``SELECT 1``; return (ok, error message)."""
        try:
            self.execute(connection, "SELECT 1")
        except QueryExecutionError as exc:
            return False, str(exc)
        return True, None


_runner = QueryRunner()


def get_query_runner() -> QueryRunner:
    return _runner
