"""YAML configuration loading.

Every configurable object ([Pool][searchsync.core.pool.Pool],
[Store][searchsync.core.store.Store] and services built on
[BaseService][searchsync.core.base_service.BaseService]) is parsed from a
plain dictionary; this module produces that dictionary from a file using
``yaml.safe_load`` so no YAML tag can instantiate Python objects.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError


def load_yaml(config_path: str) -> dict[str, Any]:
    """Load a YAML mapping from ``config_path``.

    Args:
        config_path: Path to the YAML file (absolute or relative).

    Returns:
        The parsed mapping, or an empty dict for an empty file.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file contains invalid YAML syntax.
        ConfigurationError: If the document root is not a mapping.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with path.open(encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {config_path} must contain a mapping, got {type(data).__name__}"
        )
    return data
