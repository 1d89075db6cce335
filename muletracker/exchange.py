"""
Exchange client application contracts.

Fetches the API contracts of every Exchange client application through the
same rate-limited fan-out used for app monitoring.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from .anypoint import AnypointClient
from .errors import ApiError
from .scheduler import fan_out

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientAppResult:
    client_app: dict
    contracts: list[dict] = field(default_factory=list)
    error: str | None = None

    @property
    def app_id(self) -> str:
        return str(self.client_app.get("id", ""))

    @property
    def name(self) -> str:
        return self.client_app.get("name") or ""

    @property
    def client_id(self) -> str:
        return self.client_app.get("clientId") or ""


def list_client_app_contracts(client: AnypointClient, org_id: str, client_app: dict) -> ClientAppResult:
    try:
        contracts = client.get_exchange_client_app_contracts(org_id, client_app.get("id"))
    except ApiError as exc:
        return ClientAppResult(client_app=client_app, error=str(exc))
    return ClientAppResult(client_app=client_app, contracts=contracts)


def list_contracts_concurrently(
    client: AnypointClient,
    org_id: str,
    client_apps: Iterable[dict],
    **kwargs,
) -> list[ClientAppResult]:
    """Fetch contracts for every client app. Failed rows are logged and kept."""
    kwargs.setdefault("on_error", lambda app, exc: ClientAppResult(client_app=app, error=f"unexpected error: {exc}"))
    results = fan_out(
        client_apps,
        lambda app: list_client_app_contracts(client, org_id, app),
        **kwargs,
    )
    for r in results:
        if r.error:
            logger.warning("Error reading client app %s: %s", r.app_id, r.error)
    return results


def count_contracts_by_status(contracts: list[dict]) -> dict[str, int]:
    return dict(Counter(c.get("status") or "UNKNOWN" for c in contracts))


def contract_summary(contracts: list[dict]) -> str:
    """'Total 3 / APPROVED 2 / REVOKED 1', or 'empty' when there are none."""
    if not contracts:
        return "empty"
    parts = [f"Total {len(contracts)}"]
    parts.extend(f"{status} {count}" for status, count in sorted(count_contracts_by_status(contracts).items()))
    return " / ".join(parts)


def filter_client_app_results(results: list[ClientAppResult], flag: str) -> list[ClientAppResult]:
    """all, nonempty (has contracts) or empty (no contracts). Input order is kept."""
    flag = flag.lower()
    if flag == "all":
        return list(results)
    if flag == "nonempty":
        return [r for r in results if r.contracts]
    if flag == "empty":
        return [r for r in results if not r.contracts]
    raise ValueError(f"Unknown contract filter '{flag}'. Expected all, nonempty or empty.")
