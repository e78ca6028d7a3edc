"""
Settings loader for OneLLM.

Reads a YAML settings file, expands ``${VAR}`` / ``${VAR:-default}``
environment references inside string values, and validates the result
against the pydantic schema.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import ValidationError

from onellm.config.schema import OneLLMSettings
from onellm.exceptions import ConfigurationError

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def expand_env(value: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """
    Recursively substitute ``${VAR}`` references in strings.

    Unset variables without a default expand to an empty string, which the
    schema then treats as "not provided".
    """
    env = os.environ if environ is None else environ
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: env.get(m.group(1), m.group(2) or ""), value)
    if isinstance(value, dict):
        return {k: expand_env(v, env) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v, env) for v in value]
    return value


def parse_settings(
    raw: Optional[Mapping[str, Any]],
    *,
    source: str = "<settings>",
    environ: Optional[Mapping[str, str]] = None,
) -> OneLLMSettings:
    """Validate an already-parsed settings mapping."""
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError(
            f"Settings in {source} must be a mapping, got {type(raw).__name__}"
        )
    try:
        return OneLLMSettings(**expand_env(dict(raw), environ))
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid OneLLM settings in {source}:\n{e}",
            details={"errors": e.errors(include_url=False)},
        ) from e


def load_settings(
    path: str | Path,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> OneLLMSettings:
    """
    Load and validate a settings file.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ConfigurationError: If the YAML is malformed or fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(path, "r") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Malformed YAML in {path}: {e}") from e

    return parse_settings(raw, source=str(path), environ=environ)
