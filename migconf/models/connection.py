"""
Migration Conference Platform
Target-database connection model.

Models:
    - DbConnection: read-only credentials for a client's migrated database

The password is stored Fernet-encrypted (see ``migconf.utils.crypto``) and is
never serialised back to API clients.
"""

from datetime import datetime, timezone

from sqlalchemy.engine import URL

from migconf.models import db
from migconf.utils.crypto import decrypt_secret, encrypt_secret


# ── Constants ────────────────────────────────────────────────────────────────

CONNECTION_STATUSES = {"active", "inactive", "error"}

# Dialect name → SQLAlchemy drivername
DRIVERS = {
    "postgresql": "postgresql+psycopg2",
    "mysql": "mysql+pymysql",
    "mssql": "mssql+pyodbc",
    "sqlite": "sqlite",
}

DEFAULT_PORTS = {
    "postgresql": 5432,
    "mysql": 3306,
    "mssql": 1433,
}


class DbConnection(db.Model):
    """Connection descriptor a conference runs its checklist queries against."""

    __tablename__ = "db_connections"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    dialect = db.Column(db.String(20), nullable=False, default="postgresql",
                        comment="postgresql | mysql | mssql | sqlite")
    host = db.Column(db.String(255), default="")
    port = db.Column(db.Integer, nullable=True)
    database = db.Column(db.String(255), nullable=False,
                         comment="Database name (or file path for sqlite)")
    username = db.Column(db.String(150), default="")
    encrypted_password = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="inactive",
                       comment="active | inactive | error")
    last_tested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint("status IN ('active','inactive','error')", name="ck_db_connection_status"),
    )

    def set_password(self, plaintext):
        self.encrypted_password = encrypt_secret(plaintext) if plaintext else None

    def get_password(self):
        if not self.encrypted_password:
            return None
        return decrypt_secret(self.encrypted_password)

    def sqlalchemy_url(self) -> URL:
        """Build the engine URL; credentials never pass through string formatting."""
        if self.dialect == "sqlite":
            return URL.create("sqlite", database=self.database)
        return URL.create(
            DRIVERS.get(self.dialect, self.dialect),
            username=self.username or None,
            password=self.get_password(),
            host=self.host or None,
            port=self.port or DEFAULT_PORTS.get(self.dialect),
            database=self.database,
        )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "dialect": self.dialect,
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "username": self.username,
            "has_password": bool(self.encrypted_password),
            "status": self.status,
            "last_tested_at": self.last_tested_at.isoformat() if self.last_tested_at else None,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<DbConnection {self.id}: {self.name} [{self.status}]>"
