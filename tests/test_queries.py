"""
Unit tests for muletracker/queries.py.
"""

import pytest

from muletracker.apps import ApplicationHandle, DeploymentKind
from muletracker.queries import (
    UNSUPPORTED_TYPE,
    MetricKind,
    QuerySpec,
    _influx_str,
    is_valid_window,
)


# ── Helpers ────────────────────────────────────────────────────────────────────


def _make_cloudhub(domain: str = "orders-api-prod") -> ApplicationHandle:
    return ApplicationHandle(
        app_id="ch-1", kind=DeploymentKind.CLOUDHUB, type_label="CLOUDHUB", domain=domain,
    )


def _make_rtf(cluster_id: str = "cluster-7", artifact_name: str = "payments-api") -> ApplicationHandle:
    return ApplicationHandle(
        app_id="rtf-1",
        kind=DeploymentKind.RUNTIME_FABRIC,
        type_label="runtime-fabric",
        cluster_id=cluster_id,
        artifact_name=artifact_name,
    )


def _render(app, metric=MetricKind.REQUEST_COUNT, window="24h", org="org-1", env="env-1") -> str:
    return QuerySpec(org, env, app, window, metric).render()


# ── is_valid_window ────────────────────────────────────────────────────────────


class TestIsValidWindow:
    @pytest.mark.parametrize("window", ["15m", "24h", "3d", "1w", "30s", "500ms"])
    def test_accepts_duration_literals(self, window):
        assert is_valid_window(window)

    @pytest.mark.parametrize("window", ["", "15", "m", "1.5h", "15 m", "24h; DROP", "-1h", None])
    def test_rejects_everything_else(self, window):
        assert not is_valid_window(window)


# ── _influx_str ────────────────────────────────────────────────────────────────


class TestInfluxStr:
    def test_plain_value_quoted(self):
        assert _influx_str("abc") == "'abc'"

    def test_single_quote_escaped(self):
        assert _influx_str("o'brien") == "'o\\'brien'"

    def test_backslash_escaped(self):
        assert _influx_str("a\\b") == "'a\\\\b'"

    def test_none_is_empty_literal(self):
        assert _influx_str(None) == "''"


# ── QuerySpec.render ───────────────────────────────────────────────────────────


class TestRender:
    def test_cloudhub_scoped_by_domain(self):
        q = _render(_make_cloudhub())
        assert "\"app_id\" = 'orders-api-prod'" in q
        assert "cluster_id" not in q

    def test_rtf_scoped_by_cluster_and_artifact(self):
        q = _render(_make_rtf())
        assert "\"cluster_id\" = 'cluster-7'" in q
        assert "\"app_id\" = 'payments-api'" in q

    def test_org_env_and_window_present(self):
        q = _render(_make_cloudhub(), window="3d", org="org-9", env="env-4")
        assert "\"org_id\" = 'org-9'" in q
        assert "\"env_id\" = 'env-4'" in q
        assert "time >= now() - 3d" in q

    def test_request_count_sums_count(self):
        q = _render(_make_cloudhub(), metric=MetricKind.REQUEST_COUNT)
        assert q.startswith('SELECT sum("count")')
        assert "GROUP BY time(1m)" in q

    def test_last_called_selects_buckets(self):
        q = _render(_make_cloudhub(), metric=MetricKind.LAST_CALLED, window="15m")
        assert q.startswith("SELECT ")
        assert "sum(" not in q
        assert "now() - 15m" in q

    def test_rendered_query_is_single_line(self):
        assert "\n" not in _render(_make_rtf())

    def test_quotes_in_identifiers_escaped(self):
        q = _render(_make_cloudhub(domain="x' OR '1'='1"))
        assert "'x\\' OR \\'1\\'=\\'1'" in q

    def test_other_kind_rejected(self):
        app = ApplicationHandle(app_id="o", kind=DeploymentKind.OTHER, type_label="SERVER")
        with pytest.raises(ValueError, match=UNSUPPORTED_TYPE):
            _render(app)

    def test_invalid_window_rejected(self):
        with pytest.raises(ValueError, match="window"):
            _render(_make_cloudhub(), window="1 day")

    def test_metric_template_names(self):
        assert MetricKind.LAST_CALLED.template_name == "last_called.influxql.j2"
        assert MetricKind.REQUEST_COUNT.template_name == "request_count.influxql.j2"
