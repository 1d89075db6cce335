"""
InfluxQL query construction for Anypoint Monitoring.

Queries are rendered from Jinja2 templates in muletracker/templates, one per
metric. The WHERE clause depends on the deployment kind: CloudHub apps are
keyed by domain, Runtime Fabric apps by cluster id and artifact name.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from .apps import ApplicationHandle, DeploymentKind

TEMPLATES_DIR = Path(__file__).parent / "templates"

# InfluxQL duration literal: integer followed by a unit (15m, 24h, 3d, ...)
DURATION_RE = re.compile(r"^\d+(ns|u|µ|ms|s|m|h|d|w)$")

UNSUPPORTED_TYPE = "unsupported application type"


class MetricKind(Enum):
    LAST_CALLED = "last_called"
    REQUEST_COUNT = "request_count"

    @property
    def template_name(self) -> str:
        return f"{self.value}.influxql.j2"


def is_valid_window(window: str) -> bool:
    return bool(DURATION_RE.match(window or ""))


def _influx_str(value: str | None) -> str:
    """Quote a value as an InfluxQL string literal."""
    escaped = str(value or "").replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _build_jinja_env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        undefined=StrictUndefined,
        autoescape=False,
    )
    env.filters["influx_str"] = _influx_str
    return env


_ENV = _build_jinja_env()


@dataclass(frozen=True)
class QuerySpec:
    org_id: str
    env_id: str
    app: ApplicationHandle
    window: str
    metric: MetricKind

    def render(self) -> str:
        """
        Render the InfluxQL text for this query.

        Raises ValueError for unsupported deployment kinds or a window that
        is not a duration literal.
        """
        if self.app.kind is DeploymentKind.OTHER:
            raise ValueError(UNSUPPORTED_TYPE)
        if not is_valid_window(self.window):
            raise ValueError(f"invalid lookback window {self.window!r}")

        template = _ENV.get_template(self.metric.template_name)
        return template.render(
            org_id=self.org_id,
            env_id=self.env_id,
            app=self.app,
            kind=self.app.kind.value,
            window=self.window,
        ).strip()
