"""
Migration Conference Platform
Tests — Access link lifecycle.
"""

from datetime import datetime, timedelta, timezone

import pytest

from migconf.core.exceptions import LinkExpiredError, LinkNotFoundError, ValidationError
from migconf.models import db
from migconf.services import access_link


class TestGenerate:
    def test_token_and_default_expiry(self, app):
        now = datetime(2024, 5, 1, tzinfo=timezone.utc)
        token, expires_at = access_link.generate(now=now)
        assert len(token) >= 40
        assert expires_at == now + timedelta(days=app.config["LINK_TTL_DAYS"])

    def test_tokens_are_unique(self):
        tokens = {access_link.generate()[0] for _ in range(50)}
        assert len(tokens) == 50

    @pytest.mark.parametrize("ttl", [0, -1, "soon"])
    def test_invalid_ttl(self, ttl):
        with pytest.raises(ValidationError):
            access_link.generate(ttl)

    def test_public_url(self, app, conference):
        url = access_link.public_url(conference)
        assert url.startswith(app.config["PUBLIC_BASE_URL"].rstrip("/"))
        assert url.endswith(f"/conference/{conference.link_token}")


class TestResolve:
    def test_valid_token(self, conference):
        assert access_link.resolve(conference.link_token) is conference

    @pytest.mark.parametrize("token", ["", None, "does-not-exist"])
    def test_unknown_token(self, token):
        with pytest.raises(LinkNotFoundError):
            access_link.resolve(token)

    def test_expired_token(self, conference):
        conference.link_expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        db.session.commit()
        with pytest.raises(LinkExpiredError):
            access_link.resolve(conference.link_token)

    def test_expiry_is_evaluated_at_given_time(self, conference):
        later = datetime.now(timezone.utc) + timedelta(days=30)
        assert access_link.is_expired(conference, now=later)
        with pytest.raises(LinkExpiredError):
            access_link.resolve(conference.link_token, now=later)


class TestRegenerate:
    def test_old_token_stops_resolving(self, conference):
        old_token = conference.link_token
        new_token, expires_at = access_link.regenerate(conference, 2, actor="admin")

        with pytest.raises(LinkNotFoundError):
            access_link.resolve(old_token)
        assert access_link.resolve(new_token) is conference
        assert new_token != old_token
        assert expires_at > datetime.now(timezone.utc) + timedelta(days=1)

    def test_regenerate_revives_expired_conference(self, conference):
        conference.link_expires_at = datetime.now(timezone.utc) - timedelta(days=1)
        db.session.commit()
        token, _ = access_link.regenerate(conference)
        assert access_link.resolve(token) is conference
