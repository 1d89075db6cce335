"""
Application handles and directory predicates.

An ApplicationHandle is an immutable snapshot of one deployed application as
returned by the ARM UI applications endpoint, classified into a closed set
of deployment kinds. Predicates are pure functions over handles.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

from .config import DEFAULT_RUNNING_STATUSES


class DeploymentKind(Enum):
    CLOUDHUB = "cloudhub"               # CloudHub 1.0 shared workers
    RUNTIME_FABRIC = "runtime-fabric"   # Runtime Fabric clusters
    OTHER = "other"                     # CloudHub 2.0, hybrid, anything else


@dataclass(frozen=True)
class ApplicationHandle:
    app_id: str
    kind: DeploymentKind
    type_label: str
    name: str = ""
    status: str = ""

    # CloudHub addressing
    domain: str | None = None

    # Runtime Fabric addressing
    cluster_id: str | None = None
    artifact_name: str | None = None

    @classmethod
    def from_payload(cls, item: dict) -> "ApplicationHandle":
        """Build a handle from one /armui/api/v1/applications item."""
        target = item.get("target") or {}
        artifact = item.get("artifact") or {}
        target_type = target.get("type") or ""
        subtype = target.get("subtype") or ""
        name = artifact.get("name") or ""

        if target_type == "CLOUDHUB":
            details = item.get("details") or {}
            return cls(
                app_id=str(item.get("id", "")),
                kind=DeploymentKind.CLOUDHUB,
                type_label=target_type,
                name=name,
                status=item.get("lastReportedStatus") or "",
                domain=details.get("domain") or name,
            )

        application = item.get("application") or {}
        status = application.get("status") or ""
        if target_type == "MC" and subtype == "runtime-fabric":
            return cls(
                app_id=str(item.get("id", "")),
                kind=DeploymentKind.RUNTIME_FABRIC,
                type_label=subtype,
                name=name,
                status=status,
                cluster_id=target.get("id"),
                artifact_name=name,
            )

        return cls(
            app_id=str(item.get("id", "")),
            kind=DeploymentKind.OTHER,
            type_label=subtype if target_type == "MC" else target_type,
            name=name,
            status=status,
        )


AppPredicate = Callable[[ApplicationHandle], bool]


def is_cloudhub(app: ApplicationHandle) -> bool:
    return app.kind is DeploymentKind.CLOUDHUB


def is_runtime_fabric(app: ApplicationHandle) -> bool:
    return app.kind is DeploymentKind.RUNTIME_FABRIC


def is_cloudhub_or_rtf(app: ApplicationHandle) -> bool:
    return is_cloudhub(app) or is_runtime_fabric(app)


def running(statuses: dict[str, list[str]] | None = None) -> AppPredicate:
    """
    Build a predicate that keeps running applications.

    statuses maps a deployment kind value to the status strings that count as
    running for it. Kinds without an entry are always kept.
    """
    vocabulary = {
        kind: {s.upper() for s in values}
        for kind, values in (statuses or DEFAULT_RUNNING_STATUSES).items()
    }

    def _running(app: ApplicationHandle) -> bool:
        accepted = vocabulary.get(app.kind.value)
        if accepted is None:
            return True
        return app.status.upper() in accepted

    return _running


def by_name(name: str) -> AppPredicate:
    def _by_name(app: ApplicationHandle) -> bool:
        return app.name == name

    return _by_name


def by_id(app_id: str) -> AppPredicate:
    def _by_id(app: ApplicationHandle) -> bool:
        return app.app_id == app_id

    return _by_id


# --app-type flag value → type predicate
APP_TYPE_FILTERS: dict[str, AppPredicate | None] = {
    "all": None,
    "cloudhub": is_cloudhub,
    "rtf": is_runtime_fabric,
}


def filter_apps(apps: Iterable[ApplicationHandle], *predicates: AppPredicate) -> list[ApplicationHandle]:
    """Keep the apps that satisfy every predicate, preserving input order."""
    return [app for app in apps if all(pred(app) for pred in predicates)]
