"""
Anypoint Platform REST client.

All methods are read-only GET requests against the control plane selected at
connect time. Failures (transport errors, non-200 responses, bodies that are
not the expected JSON shape) raise ApiError. Requests are not retried.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from .apps import AppPredicate, ApplicationHandle, filter_apps
from .auth import Session
from .errors import ApiError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30
INFLUX_DATABASE = '"dias"'
EXCHANGE_PAGE_SIZE = 250


class AnypointClient:
    """Thin read-only wrapper around the Anypoint Platform APIs used by MuleTracker."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self._http = requests.Session()
        self._http.headers.update(
            {
                "Authorization": f"Bearer {session.current_token()}",
                "Accept": "application/json",
            }
        )

    def _get(self, path: str, params: dict | None = None, headers: dict | None = None) -> Any:
        """Single GET request returning decoded JSON."""
        url = f"{self.session.host}{path}"
        logger.debug("GET %s", url)
        try:
            resp = self._http.get(url, params=params, headers=headers, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as exc:
            raise ApiError(f"Error sending request to {url}: {exc}") from exc

        if resp.status_code in (401, 403):
            raise ApiError(f"Anypoint access denied ({resp.status_code}): {resp.text}")
        if resp.status_code != 200:
            raise ApiError(f"Non-OK status {resp.status_code} from {url}: {resp.text}")

        try:
            return resp.json()
        except ValueError as exc:
            raise ApiError(f"Error decoding response from {url}") from exc

    # ── Accounts ─────────────────────────────────────────────────────────────

    def get_business_group(self, org_id: str) -> dict:
        """Return the business group (organization) details, including its environments."""
        data = self._get(f"/accounts/api/organizations/{org_id}")
        if not isinstance(data, dict):
            raise ApiError(f"Unexpected business group payload for {org_id}")
        return data

    def get_environments(self, org_id: str) -> list[dict]:
        return list(self.get_business_group(org_id).get("environments") or [])

    # ── Runtime Manager ──────────────────────────────────────────────────────

    def get_apps(self, org_id: str, env_id: str, *predicates: AppPredicate) -> list[ApplicationHandle]:
        """List the applications deployed in one environment, keeping those that match every predicate."""
        data = self._get(
            "/armui/api/v1/applications",
            headers={"x-anypnt-org-id": org_id, "x-anypnt-env-id": env_id},
        )
        if not isinstance(data, dict):
            raise ApiError("Unexpected applications payload")
        try:
            apps = [ApplicationHandle.from_payload(item) for item in data.get("data") or []]
        except (AttributeError, TypeError) as exc:
            raise ApiError("Malformed application entry in applications payload") from exc
        logger.debug("Directory returned %d apps for org=%s env=%s", len(apps), org_id, env_id)
        return filter_apps(apps, *predicates)

    # ── Monitoring ───────────────────────────────────────────────────────────

    def get_influxdb_id(self) -> int:
        """Read the organization's InfluxDB datasource id from the visualizer bootdata."""
        data = self._get("/monitoring/api/visualizer/api/bootdata")
        try:
            settings = data.get("Settings") or data.get("settings")
            return int(settings["datasources"]["influxdb"]["id"])
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ApiError("InfluxDB datasource id not found in monitoring bootdata") from exc

    def query_influxdb(self, query: str) -> dict:
        """
        Run one InfluxQL query through the monitoring datasource proxy.

        Timestamps come back as epoch milliseconds. Statement-level errors
        reported inside an otherwise successful response raise ApiError.
        """
        if not self.session.influxdb_id:
            raise ApiError("No InfluxDB datasource id in session. Please run the 'connect' command.")
        data = self._get(
            f"/monitoring/api/visualizer/api/datasources/proxy/{self.session.influxdb_id}/query",
            params={"db": INFLUX_DATABASE, "q": query, "epoch": "ms"},
        )
        if not isinstance(data, dict):
            raise ApiError("Unexpected InfluxDB response payload")
        for result in data.get("results") or []:
            if isinstance(result, dict) and result.get("error"):
                raise ApiError(f"InfluxDB query error: {result['error']}")
        return data

    # ── Exchange ─────────────────────────────────────────────────────────────

    def get_exchange_client_apps(self, org_id: str, target_admin_site: bool = True) -> list[dict]:
        """Return all Exchange client applications, following offset pagination until a short page."""
        apps: list[dict] = []
        offset = 0
        while True:
            page = self._get(
                f"/exchange/api/v2/organizations/{org_id}/applications",
                params={
                    "limit": EXCHANGE_PAGE_SIZE,
                    "offset": offset,
                    "targetAdminSite": str(target_admin_site).lower(),
                },
            )
            if not isinstance(page, list):
                raise ApiError("Unexpected Exchange applications payload")
            apps.extend(page)
            if len(page) < EXCHANGE_PAGE_SIZE:
                return apps
            offset += EXCHANGE_PAGE_SIZE

    def get_exchange_client_app_contracts(self, org_id: str, app_id: int | str) -> list[dict]:
        data = self._get(f"/exchange/api/v2/organizations/{org_id}/applications/{app_id}/contracts")
        if not isinstance(data, list):
            raise ApiError(f"Unexpected contracts payload for client app {app_id}")
        return data
