"""
Local configuration for MuleTracker.

The session (connected app credentials, access token, selected business group
and environment) is persisted in a JSON file, by default ~/.muletracker.json.
The path can be overridden with --config or the MULETRACKER_CONFIG variable.
"""

from __future__ import annotations

import json
from pathlib import Path

from .errors import ConfigError

CONFIG_ENV_VAR = "MULETRACKER_CONFIG"
DEFAULT_CONFIG_FILE = Path.home() / ".muletracker.json"

# Control plane name → Anypoint base URL
CONTROL_PLANES: dict[str, str] = {
    "us": "https://anypoint.mulesoft.com",
    "eu": "https://eu1.anypoint.mulesoft.com",
    "gov": "https://gov.anypoint.mulesoft.com",
}
DEFAULT_CONTROL_PLANE = "eu"

# Status values that count as "running" for each deployment kind.
# Overridable per config file with the "running_statuses" key.
DEFAULT_RUNNING_STATUSES: dict[str, list[str]] = {
    "cloudhub": ["STARTED"],
    "runtime-fabric": ["RUNNING"],
}


def server_host(control_plane: str) -> str:
    """Return the Anypoint base URL for a control plane name (us, eu, gov)."""
    try:
        return CONTROL_PLANES[control_plane.lower()]
    except KeyError:
        raise ConfigError(
            f"Invalid control plane '{control_plane}'. Valid values are: {', '.join(CONTROL_PLANES)}."
        ) from None


def load_config(config_path: Path | None = None) -> dict:
    """Read the JSON config file. A missing file is an empty config."""
    path = config_path or DEFAULT_CONFIG_FILE
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Error reading config file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Could not open config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} does not contain a JSON object.")
    return data


def save_config(config: dict, config_path: Path | None = None) -> Path:
    """Write the config dict to disk, creating parent directories as needed."""
    path = config_path or DEFAULT_CONFIG_FILE
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(config, indent=2, default=str), encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Unable to persist configuration to {path}: {exc}") from exc
    return path


def update_config(config_path: Path | None = None, **values) -> dict:
    """Merge values into the persisted config and save it. Returns the merged dict."""
    config = load_config(config_path)
    config.update(values)
    save_config(config, config_path)
    return config


def running_statuses(config: dict) -> dict[str, list[str]]:
    """Return the running-status vocabulary, config overrides merged onto the defaults."""
    statuses = {kind: list(values) for kind, values in DEFAULT_RUNNING_STATUSES.items()}
    overrides = config.get("running_statuses") or {}
    if not isinstance(overrides, dict):
        raise ConfigError("'running_statuses' must be an object mapping deployment kind to status list.")
    for kind, values in overrides.items():
        if isinstance(values, str):
            values = [values]
        statuses[kind] = [str(v).upper() for v in values]
    return statuses
