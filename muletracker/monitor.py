"""
Per-application monitoring.

monitor_app issues the last-called and request-count queries for one
application and folds the outcome, including any failure, into a single
MonitorResult. It never raises: errors become part of the result row.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from .apps import ApplicationHandle, DeploymentKind
from .errors import ApiError
from .queries import UNSUPPORTED_TYPE, MetricKind, QuerySpec

logger = logging.getLogger(__name__)


class MetricsBackend(Protocol):
    def query_influxdb(self, query: str) -> dict: ...


@dataclass(frozen=True)
class MonitorResult:
    app_id: str
    app_type: str
    last_called: datetime | None = None   # None means no traffic in the window
    request_count: int = 0
    lc_window: str = ""
    rc_window: str = ""
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def _first_series_values(payload: dict) -> list[list[Any]]:
    """
    Return the rows of the first series of the first statement result.

    InfluxDB omits "series" when nothing matched, which is an empty result,
    not an error. Anything not shaped like a query response raises ApiError.
    """
    try:
        results = payload["results"]
        if not results:
            return []
        series = results[0].get("series") or []
        if not series:
            return []
        values = series[0].get("values") or []
    except (KeyError, TypeError, AttributeError, IndexError) as exc:
        raise ApiError("Malformed InfluxDB response") from exc
    if not isinstance(values, list):
        raise ApiError("Malformed InfluxDB series values")
    return values


def last_called_from_payload(payload: dict) -> datetime | None:
    """Timestamp of the final bucket of the first series, or None when the series is empty."""
    values = _first_series_values(payload)
    if not values:
        return None
    try:
        epoch_ms = int(values[-1][0])
        return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    except (IndexError, TypeError, ValueError, OverflowError, OSError) as exc:
        raise ApiError(f"Malformed InfluxDB timestamp: {values[-1]!r}") from exc


def request_count_from_payload(payload: dict) -> int:
    """
    Sum of the value column across the first series; 0 when the series is empty.

    Integer cells are summed exactly. Float cells are summed separately and
    truncated once at the end.
    """
    int_total = 0
    float_total = 0.0
    for row in _first_series_values(payload):
        try:
            value = row[1]
        except (IndexError, TypeError) as exc:
            raise ApiError("Malformed InfluxDB row") from exc
        if value is None:
            continue
        if type(value) is int:
            int_total += value
            continue
        try:
            number = float(value)
        except (TypeError, ValueError) as exc:
            raise ApiError(f"Non-numeric InfluxDB value: {value!r}") from exc
        if not math.isfinite(number):
            raise ApiError(f"Non-finite InfluxDB value: {value!r}")
        float_total += number
    if not math.isfinite(float_total):
        raise ApiError("InfluxDB request count overflow")
    return int_total + int(float_total)


def get_last_called_time(backend: MetricsBackend, org_id: str, env_id: str, app: ApplicationHandle, window: str) -> datetime | None:
    spec = QuerySpec(org_id, env_id, app, window, MetricKind.LAST_CALLED)
    return last_called_from_payload(backend.query_influxdb(spec.render()))


def get_request_count(backend: MetricsBackend, org_id: str, env_id: str, app: ApplicationHandle, window: str) -> int:
    spec = QuerySpec(org_id, env_id, app, window, MetricKind.REQUEST_COUNT)
    return request_count_from_payload(backend.query_influxdb(spec.render()))


def monitor_app(
    backend: MetricsBackend,
    org_id: str,
    env_id: str,
    app: ApplicationHandle,
    lc_window: str,
    rc_window: str,
) -> MonitorResult:
    """Compute last-called time and request count for one application."""
    if app.kind is DeploymentKind.OTHER:
        return MonitorResult(
            app_id=app.app_id,
            app_type=app.type_label,
            lc_window=lc_window,
            rc_window=rc_window,
            error=UNSUPPORTED_TYPE,
        )

    last_called: datetime | None = None
    request_count = 0
    lc_error: Exception | None = None
    rc_error: Exception | None = None

    try:
        last_called = get_last_called_time(backend, org_id, env_id, app, lc_window)
    except (ApiError, ValueError) as exc:
        lc_error = exc
    try:
        request_count = get_request_count(backend, org_id, env_id, app, rc_window)
    except (ApiError, ValueError) as exc:
        rc_error = exc

    error = None
    if lc_error is not None or rc_error is not None:
        error = f"last-called error: {lc_error or 'none'}, request-count error: {rc_error or 'none'}"
        logger.debug("Monitoring %s degraded: %s", app.app_id, error)

    return MonitorResult(
        app_id=app.app_id,
        app_type=app.type_label,
        last_called=last_called,
        request_count=request_count,
        lc_window=lc_window,
        rc_window=rc_window,
        error=error,
    )
