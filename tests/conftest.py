"""
Shared pytest fixtures for the Migration Conference Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - target_db: SQLite file standing in for a client's migrated database
    - connection: DbConnection pointing at target_db
    - template / conference: the two-store close-out checklist
"""

import copy
import os
import sqlite3

import pytest
from cryptography.fernet import Fernet

os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())

from migconf import create_app  # noqa: E402
from migconf.models import db as _db  # noqa: E402
from migconf.services.query_runner import get_query_runner  # noqa: E402


STORES = [
    {"store_id": "LJ01", "name": "Loja Centro"},
    {"store_id": "LJ02", "name": "Loja Norte"},
]

# One global existence check plus one per-store number check
CLOSE_OUT_TEMPLATE = {
    "name": "Store close-out",
    "description": "Customers and sales after migration",
    "version": "1.0.0",
    "sections": [
        {
            "key": "customers",
            "title": "Customers",
            "order": 1,
            "items": [
                {
                    "key": "customers_loaded",
                    "title": "Customers were loaded",
                    "order": 1,
                    "query": "SELECT id FROM customers",
                    "scope": "global",
                    "validation_rule": {"type": "must_return_rows"},
                },
            ],
        },
        {
            "key": "sales",
            "title": "Sales",
            "order": 2,
            "items": [
                {
                    "key": "store_sales",
                    "title": "Store sales total",
                    "order": 1,
                    "query": "SELECT SUM(amount) FROM sales WHERE store_id = :store_id",
                    "scope": "per_store",
                    "validation_rule": {"type": "single_number_required"},
                    "auto_resolve": True,
                },
            ],
        },
    ],
}

# Per-store totals compared against figures the client types in
RECONCILIATION_TEMPLATE = {
    "name": "Sales reconciliation",
    "version": "2.1.0",
    "expected_inputs": [
        {"key": "sales_total", "label": "Sales total", "type": "currency", "scope": "per_store"},
    ],
    "sections": [
        {
            "key": "sales",
            "title": "Sales",
            "order": 1,
            "items": [
                {
                    "key": "sales_vs_expected",
                    "title": "Sales match the legacy report",
                    "order": 1,
                    "query": "SELECT SUM(amount) FROM sales WHERE store_id = :store_id",
                    "scope": "per_store",
                    "validation_rule": {
                        "type": "number_matches_expected_with_tolerance",
                        "tolerance": 0.01,
                    },
                    "expected_input_binding": "sales_total",
                    "auto_resolve": True,
                },
            ],
        },
    ],
}


def template_payload(base=None, **overrides):
    """Deep copy of a template payload with top-level overrides."""
    payload = copy.deepcopy(base or CLOSE_OUT_TEMPLATE)
    payload.update(overrides)
    return payload


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture(autouse=True)
def _dispose_target_engines():
    """Connection ids are reused after tables are recreated; drop cached engines."""
    yield
    runner = get_query_runner()
    for connection_id in list(runner._engines):
        runner.dispose(connection_id)


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Target database ──────────────────────────────────────────────────────


@pytest.fixture()
def target_db(tmp_path):
    """SQLite file with migrated customers and sales for two stores."""
    path = tmp_path / "target.db"
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT);
        CREATE TABLE orphan_orders (id INTEGER PRIMARY KEY);
        CREATE TABLE sales (id INTEGER PRIMARY KEY, store_id TEXT, amount REAL, sold_on TEXT);
        INSERT INTO customers (name) VALUES ('Ana'), ('Bruno');
        INSERT INTO sales (store_id, amount, sold_on) VALUES
            ('LJ01', 60.5, '2024-01-10'),
            ('LJ01', 40.0, '2024-01-20'),
            ('LJ02', 250.0, '2024-01-15');
        """
    )
    conn.commit()
    conn.close()
    return str(path)


@pytest.fixture()
def connection(target_db):
    """DbConnection pointing at the target SQLite file."""
    from migconf.models.connection import DbConnection

    conn = DbConnection(name="Client ERP", dialect="sqlite", database=target_db, status="active")
    _db.session.add(conn)
    _db.session.commit()
    return conn


# ── Template & conference fixtures ───────────────────────────────────────


@pytest.fixture()
def template():
    from migconf.services.template_service import create_template

    return create_template(template_payload(), created_by="admin")


@pytest.fixture()
def conference(template, connection):
    """Close-out conference over two stores, not yet executed."""
    from migconf.services.conference_service import create_conference

    return create_conference({
        "name": "Acme go-live",
        "client_name": "Acme",
        "client_email": "client@acme.com",
        "template_id": template.id,
        "connection_id": connection.id,
        "stores": copy.deepcopy(STORES),
    }, created_by="admin")


def item_keys(conference):
    """Return (global key, {store code: per-store key})."""
    global_key = next(i.item_key for i in conference.items if i.store is None)
    per_store = {i.store.store_id: i.item_key for i in conference.items if i.store is not None}
    return global_key, per_store


@pytest.fixture()
def make_payload():
    """Factory for template payloads: make_payload(base=None, **overrides)."""
    return template_payload


@pytest.fixture()
def reconciliation_payload():
    return template_payload(RECONCILIATION_TEMPLATE)


@pytest.fixture()
def keys(conference):
    """(global item key, {store code: per-store item key}) of ``conference``."""
    return item_keys(conference)
