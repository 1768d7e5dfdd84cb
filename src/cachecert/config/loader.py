# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cachecert/config/loader.py

import logging
import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional

from .models import OperatorSettings

log = logging.getLogger("cachecert")

ENV_PREFIX = "CACHECERT_"


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    return yaml.safe_load(expanded) or {}


def _env_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    Pick up ``CACHECERT_<FIELD>`` variables for every settings field,
    e.g. ``CACHECERT_CACHE_NAMESPACE=cert-cache``.
    """
    environ = os.environ if environ is None else environ
    out = {}
    for field in OperatorSettings.model_fields:
        value = environ.get(ENV_PREFIX + field.upper())
        if value not in (None, ""):
            out[field] = value
    return out


def load_settings(
    path: str | Path | None = None,
    *,
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> OperatorSettings:
    """
    Build operator settings from, lowest priority first:

      1. defaults on ``OperatorSettings``
      2. an optional YAML file (``${ENV_VAR}`` placeholders are expanded)
      3. ``CACHECERT_*`` environment variables
      4. explicit overrides, typically CLI flags; ``None`` values are ignored
    """
    data: Dict[str, Any] = {}

    if path is not None:
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"operator config not found: {path}")
        log.debug("Loading settings from %s", path)
        data.update(_load_yaml(path))

    data.update(_env_overrides(environ))

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    return OperatorSettings.model_validate(data)
