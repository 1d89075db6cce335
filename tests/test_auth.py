"""
Unit tests for muletracker/auth.py and muletracker/config.py.

The token endpoint is mocked; the session store is a JSON file under tmp_path.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from muletracker.auth import (
    TOKEN_ADMIN,
    TOKEN_CONNECTED,
    Session,
    load_session,
    login,
    save_session,
)
from muletracker.config import (
    load_config,
    running_statuses,
    save_config,
    server_host,
    update_config,
)
from muletracker.errors import AuthenticationError, ConfigError, SessionError


# ── Helpers ────────────────────────────────────────────────────────────────────


def _make_session(**overrides) -> Session:
    values = dict(
        client_id="cid",
        client_secret="secret",
        access_token="tok-connected",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        control_plane="eu",
        influxdb_id=88,
        org_id="org-1",
        env_id="env-1",
    )
    values.update(overrides)
    return Session(**values)


def _mock_response(status_code=200, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    if isinstance(payload, Exception):
        resp.json.side_effect = payload
    else:
        resp.json.return_value = payload
    return resp


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "muletracker.json"


# ── Session ────────────────────────────────────────────────────────────────────


class TestSession:
    def test_connected_token_by_default(self):
        assert _make_session().current_token() == "tok-connected"

    def test_admin_token_when_selected(self):
        session = _make_session()
        session.use_admin_token("tok-admin")
        assert session.active_token_type == TOKEN_ADMIN
        assert session.current_token() == "tok-admin"

    def test_admin_type_without_token_falls_back(self):
        session = _make_session(active_token_type=TOKEN_ADMIN, admin_access_token="")
        assert session.current_token() == "tok-connected"

    def test_is_expired(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        session = _make_session(expires_at=now)
        assert session.is_expired(now)
        assert not session.is_expired(now - timedelta(seconds=1))

    def test_host_follows_control_plane(self):
        assert _make_session(control_plane="us").host == "https://anypoint.mulesoft.com"
        assert _make_session(control_plane="eu").host == "https://eu1.anypoint.mulesoft.com"

    def test_current_scope(self):
        assert _make_session().current_scope() == ("org-1", "env-1")


# ── login ──────────────────────────────────────────────────────────────────────


class TestLogin:
    @patch("muletracker.auth.requests.post")
    def test_success(self, mock_post):
        mock_post.return_value = _mock_response(payload={"access_token": "abc", "expires_in": 1800})
        before = datetime.now(timezone.utc)

        session = login("US", "cid", "secret")

        assert session.access_token == "abc"
        assert session.control_plane == "us"
        assert session.active_token_type == TOKEN_CONNECTED
        assert before + timedelta(seconds=1790) <= session.expires_at <= before + timedelta(seconds=1810)
        url = mock_post.call_args.args[0]
        assert url == "https://anypoint.mulesoft.com/accounts/api/v2/oauth2/token"
        body = mock_post.call_args.kwargs["json"]
        assert body == {"grant_type": "client_credentials", "client_id": "cid", "client_secret": "secret"}

    @patch("muletracker.auth.requests.post")
    def test_default_expiry_one_hour(self, mock_post):
        mock_post.return_value = _mock_response(payload={"access_token": "abc"})
        session = login("eu", "cid", "secret")
        remaining = session.expires_at - datetime.now(timezone.utc)
        assert timedelta(minutes=59) < remaining <= timedelta(hours=1)

    @patch("muletracker.auth.requests.post")
    def test_rejected_credentials(self, mock_post):
        mock_post.return_value = _mock_response(status_code=401, text="invalid_client")
        with pytest.raises(AuthenticationError, match="401"):
            login("eu", "cid", "wrong")

    @patch("muletracker.auth.requests.post")
    def test_transport_error(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("unreachable")
        with pytest.raises(AuthenticationError):
            login("eu", "cid", "secret")

    @patch("muletracker.auth.requests.post")
    def test_unexpected_body(self, mock_post):
        mock_post.return_value = _mock_response(payload={"token": "abc"})
        with pytest.raises(AuthenticationError):
            login("eu", "cid", "secret")

    def test_invalid_control_plane(self):
        with pytest.raises(ConfigError):
            login("mars", "cid", "secret")


# ── load_session / save_session ────────────────────────────────────────────────


class TestSessionStore:
    def test_round_trip(self, config_path):
        stored = _make_session()
        save_session(stored, config_path)
        loaded = load_session(config_path)
        assert loaded == stored

    def test_save_keeps_unrelated_keys(self, config_path):
        save_config({"running_statuses": {"cloudhub": ["STARTED"]}}, config_path)
        save_session(_make_session(), config_path)
        stored = json.loads(config_path.read_text(encoding="utf-8"))
        assert stored["running_statuses"] == {"cloudhub": ["STARTED"]}
        assert stored["org"] == "org-1"

    def test_missing_config_is_incomplete(self, config_path):
        with pytest.raises(SessionError, match="connect"):
            load_session(config_path)

    def test_missing_influxdb_id_is_incomplete(self, config_path):
        save_session(_make_session(influxdb_id=0), config_path)
        with pytest.raises(SessionError, match="incomplete"):
            load_session(config_path)

    def test_expired_token(self, config_path):
        save_session(_make_session(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1)), config_path)
        with pytest.raises(SessionError, match="expired"):
            load_session(config_path)

    def test_admin_token_skips_expiry_check(self, config_path):
        save_session(_make_session(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1)), config_path)
        session = load_session(config_path, admin_token="tok-admin")
        assert session.current_token() == "tok-admin"

    def test_invalid_expiry(self, config_path):
        save_session(_make_session(), config_path)
        update_config(config_path, expires_at="soon")
        with pytest.raises(SessionError):
            load_session(config_path)

    def test_naive_expiry_treated_as_utc(self, config_path):
        save_session(_make_session(), config_path)
        naive = (datetime.now(timezone.utc) + timedelta(hours=1)).replace(tzinfo=None)
        update_config(config_path, expires_at=naive.isoformat())
        assert load_session(config_path).expires_at.tzinfo is not None

    def test_non_numeric_influxdb_id(self, config_path):
        save_session(_make_session(), config_path)
        update_config(config_path, influxdb_id="abc")
        with pytest.raises(SessionError, match="InfluxDB datasource id"):
            load_session(config_path)


# ── config ─────────────────────────────────────────────────────────────────────


class TestConfig:
    def test_server_host(self):
        assert server_host("gov") == "https://gov.anypoint.mulesoft.com"
        assert server_host("EU") == "https://eu1.anypoint.mulesoft.com"

    def test_server_host_invalid(self):
        with pytest.raises(ConfigError, match="us, eu, gov"):
            server_host("apac")

    def test_missing_file_is_empty(self, config_path):
        assert load_config(config_path) == {}

    def test_invalid_json(self, config_path):
        config_path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config(config_path)

    def test_non_object(self, config_path):
        config_path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config(config_path)

    def test_update_merges(self, config_path):
        update_config(config_path, org="o")
        update_config(config_path, env="e")
        assert load_config(config_path) == {"org": "o", "env": "e"}

    def test_save_creates_parent(self, tmp_path):
        path = save_config({"a": 1}, tmp_path / "deep" / "cfg.json")
        assert path.exists()

    def test_running_statuses_defaults(self):
        assert running_statuses({}) == {"cloudhub": ["STARTED"], "runtime-fabric": ["RUNNING"]}

    def test_running_statuses_overrides(self):
        statuses = running_statuses({"running_statuses": {"runtime-fabric": ["running", "applied"], "cloudhub": "deploying"}})
        assert statuses["runtime-fabric"] == ["RUNNING", "APPLIED"]
        assert statuses["cloudhub"] == ["DEPLOYING"]

    def test_running_statuses_invalid(self):
        with pytest.raises(ConfigError):
            running_statuses({"running_statuses": ["STARTED"]})
