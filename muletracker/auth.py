"""
Connected app authentication for MuleTracker.

Logs in with the OAuth client-credentials grant against the Anypoint
accounts API and holds the result in a Session. The session is persisted to
the config file so later commands can reuse the token until it expires.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import requests

from .config import DEFAULT_CONTROL_PLANE, load_config, save_config, server_host
from .errors import AuthenticationError, SessionError

logger = logging.getLogger(__name__)

TOKEN_PATH = "/accounts/api/v2/oauth2/token"
REQUEST_TIMEOUT = 30

TOKEN_CONNECTED = "connected"
TOKEN_ADMIN = "admin"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    """An authenticated connection to one Anypoint control plane."""

    client_id: str
    client_secret: str
    access_token: str
    expires_at: datetime
    control_plane: str = DEFAULT_CONTROL_PLANE
    influxdb_id: int = 0
    org_id: str = ""
    env_id: str = ""
    admin_access_token: str = ""
    active_token_type: str = TOKEN_CONNECTED

    @property
    def host(self) -> str:
        return server_host(self.control_plane)

    def current_token(self) -> str:
        """Admin token when one was supplied for this run, the connected app token otherwise."""
        if self.active_token_type == TOKEN_ADMIN and self.admin_access_token:
            return self.admin_access_token
        return self.access_token

    def current_scope(self) -> tuple[str, str]:
        return self.org_id, self.env_id

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or _utcnow()) >= self.expires_at

    def use_admin_token(self, token: str) -> None:
        self.admin_access_token = token
        self.active_token_type = TOKEN_ADMIN

    def to_config(self) -> dict:
        return {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "control_plane": self.control_plane,
            "access_token": self.access_token,
            "admin_access_token": self.admin_access_token,
            "active_token_type": self.active_token_type,
            "expires_at": self.expires_at.isoformat(),
            "influxdb_id": self.influxdb_id,
            "org": self.org_id,
            "env": self.env_id,
        }


def login(control_plane: str, client_id: str, client_secret: str) -> Session:
    """
    Authenticate a connected app and return a fresh Session.

    Raises AuthenticationError if the token endpoint rejects the credentials
    or cannot be reached.
    """
    url = f"{server_host(control_plane)}{TOKEN_PATH}"
    payload = {
        "grant_type": "client_credentials",
        "client_id": client_id,
        "client_secret": client_secret,
    }
    logger.debug("Requesting access token from %s", url)
    try:
        resp = requests.post(url, json=payload, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        raise AuthenticationError(f"Error authenticating: {exc}") from exc

    if resp.status_code != 200:
        raise AuthenticationError(f"Error authenticating ({resp.status_code}): {resp.text}")

    try:
        data = resp.json()
        token = data["access_token"]
        expires_in = int(data.get("expires_in", 3600))
    except (ValueError, KeyError, TypeError) as exc:
        raise AuthenticationError("Error authenticating: unexpected token response") from exc

    return Session(
        client_id=client_id,
        client_secret=client_secret,
        access_token=token,
        expires_at=_utcnow() + timedelta(seconds=expires_in),
        control_plane=control_plane.lower(),
    )


def _parse_expiry(value: str) -> datetime:
    try:
        expires_at = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError) as exc:
        raise SessionError(f"Invalid expiration time in configuration: {value!r}") from exc
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at


def load_session(config_path: Path | None = None, admin_token: str | None = None) -> Session:
    """
    Recreate the persisted session.

    Raises SessionError when no connect has been run, the stored values are
    incomplete, or the token has expired. When an admin token is supplied it
    becomes the active token and the connected app expiry is not checked.
    """
    config = load_config(config_path)
    required = ("client_id", "client_secret", "access_token", "expires_at", "influxdb_id")
    if any(not config.get(key) for key in required):
        raise SessionError("Client configuration incomplete. Please run the 'connect' command first.")

    try:
        influxdb_id = int(config["influxdb_id"])
    except (TypeError, ValueError) as exc:
        raise SessionError(
            f"Invalid InfluxDB datasource id in configuration: {config['influxdb_id']!r}. "
            "Please run the 'connect' command."
        ) from exc

    session = Session(
        client_id=config["client_id"],
        client_secret=config["client_secret"],
        access_token=config["access_token"],
        expires_at=_parse_expiry(config["expires_at"]),
        control_plane=config.get("control_plane", DEFAULT_CONTROL_PLANE),
        influxdb_id=influxdb_id,
        org_id=config.get("org", ""),
        env_id=config.get("env", ""),
        admin_access_token=config.get("admin_access_token", ""),
        active_token_type=config.get("active_token_type", TOKEN_CONNECTED),
    )

    if admin_token:
        session.use_admin_token(admin_token)
    elif session.is_expired():
        raise SessionError("Access token expired. Please run the 'connect' command.")
    return session


def save_session(session: Session, config_path: Path | None = None) -> Path:
    """Persist the session, keeping any unrelated keys already in the config file."""
    config = load_config(config_path)
    config.update(session.to_config())
    return save_config(config, config_path)
