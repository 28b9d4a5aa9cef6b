"""Job and settings files: YAML with ``${VAR}`` / ``${VAR:-default}`` references.

References are expanded inside string values only, so input paths, output
paths, hosts and URLs can be parameterised per machine::

    input_path: ${PDD_DATA_DIR:-/var/tmp}/disk.img

Anything the file leaves out falls back to the model defaults.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from pdd.config.models import EngineSettings, JobConfig

_ENV_REF = re.compile(
    r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}"
)


def expand_env(value: Any, *, source: str | Path = "<config>") -> Any:
    """Expand environment references in every string of parsed YAML data."""
    if isinstance(value, dict):
        return {k: expand_env(v, source=source) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v, source=source) for v in value]
    if not isinstance(value, str):
        return value

    def _lookup(match: re.Match[str]) -> str:
        name, default = match.group("name"), match.group("default")
        resolved = os.environ.get(name, default)
        if resolved is None:
            msg = f"{source}: environment variable '{name}' is not set"
            raise ValueError(msg)
        return resolved

    return _ENV_REF.sub(_lookup, value)


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Read a YAML mapping from *path* and expand its environment references.

    An empty file is an empty mapping.
    """
    p = Path(path)
    try:
        text = p.read_text()
    except FileNotFoundError as exc:
        msg = f"Config file not found: {p}"
        raise FileNotFoundError(msg) from exc

    try:
        data = yaml.safe_load(text)
    except yaml.MarkedYAMLError as exc:
        where = ""
        if exc.problem_mark is not None:
            where = f" at line {exc.problem_mark.line + 1}"
            where += f", column {exc.problem_mark.column + 1}"
        msg = f"Cannot parse {p}{where}: {exc.problem}"
        raise ValueError(msg) from exc
    except yaml.YAMLError as exc:
        msg = f"Cannot parse {p}: {exc}"
        raise ValueError(msg) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"{p} must hold a YAML mapping, got {type(data).__name__}"
        raise TypeError(msg)
    return expand_env(data, source=p)


def load_settings(path: str | Path | None = None) -> EngineSettings:
    """Engine settings from *path*, or the built-in defaults without one."""
    try:
        return EngineSettings.model_validate(load_yaml(path) if path else {})
    except ValidationError as exc:
        msg = f"Invalid settings ({path}):\n{exc}"
        raise ValueError(msg) from exc


def load_job_config(path: str | Path) -> JobConfig:
    """Load a job file: a list of ``operations`` plus an optional ``settings``."""
    data = load_yaml(path)
    # A bare ``settings:`` key means "all defaults".
    if data.get("settings") is None:
        data.pop("settings", None)
    try:
        return JobConfig.model_validate(data)
    except ValidationError as exc:
        msg = f"Invalid job config ({path}):\n{exc}"
        raise ValueError(msg) from exc
