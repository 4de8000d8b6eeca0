"""Shared helpers for resolving CLI, context-file and environment inputs."""

from __future__ import annotations

import json
import os
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path

from authorizer_stack._stack_errors import ConfigError


@dataclass(frozen=True, slots=True)
class InputResolution:
    """Configuration for resolving an input from multiple sources.

    ``context_key`` names the key in the context mapping and ``env_keys`` are
    tried in order; the first one set wins.
    """

    context_key: str | None = None
    env_keys: tuple[str, ...] = ()
    default: str | None = None


def resolve_input(
    param_value: str | bool | None,
    resolution: InputResolution,
    context: cabc.Mapping[str, object] | None = None,
    env: cabc.Mapping[str, str] | None = None,
) -> str | bool | None:
    """Resolve input from parameter, context, environment variable, or default.

    Context values keep JSON booleans as ``bool``; everything else is
    converted to ``str``. Blank context values count as unset.
    """

    if param_value is not None:
        return param_value

    if context is not None and resolution.context_key is not None:
        context_value = context.get(resolution.context_key)
        if isinstance(context_value, bool):
            return context_value
        if context_value is not None and str(context_value) != "":
            return str(context_value)

    source = os.environ if env is None else env
    for env_key in resolution.env_keys:
        env_value = source.get(env_key)
        if env_value is not None:
            return env_value

    return resolution.default


def load_context(path: Path | None) -> dict[str, object]:
    """Load the ``context`` object from a ``cdk.json``-style file.

    A missing file yields an empty mapping.

    Raises
    ------
    ConfigError
        If the file is not valid JSON or ``context`` is not an object.
    """

    if path is None or not path.is_file():
        return {}
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError([("contextFile", f"invalid JSON in {path}: {exc}")]) from exc
    if not isinstance(document, dict):
        raise ConfigError([("contextFile", f"{path} must contain a JSON object")])
    context = document.get("context", {})
    if not isinstance(context, dict):
        raise ConfigError([("contextFile", f"'context' in {path} must be an object")])
    return context
