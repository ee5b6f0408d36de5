"""Site variables for Gorgon.

Variables are referenced from any template as ``@{var("key")}``. They are looked
up in order: the page's own ``vars`` frontmatter, the environment overlay
(``variables.dev.yaml`` or ``variables.prod.yaml``) and the global
``variables.yaml``. Dotted keys descend into nested mappings.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

_MISSING = object()


class Variables:
    """Layered variable lookup: page vars, then environment vars, then globals."""

    def __init__(
        self,
        globals_: Mapping[str, Any] | None = None,
        env: Mapping[str, Any] | None = None,
        page: Mapping[str, Any] | None = None,
    ):
        self._globals = dict(globals_ or {})
        self._env = dict(env or {})
        self._page = dict(page or {})

    def with_page(self, page: Mapping[str, Any] | None) -> Variables:
        """Return a copy whose page layer is replaced by page."""
        return Variables(self._globals, self._env, page)

    def get(self, key: str) -> str | None:
        """Look up a variable and return it as a string, or None if undefined."""
        for layer in (self._page, self._env, self._globals):
            value = _lookup(layer, key)
            if value is not _MISSING:
                return _format(value)
        return None

    def digest(self) -> str:
        """Hash of the global and environment layers, used for invalidation."""
        payload = json.dumps(
            {"globals": self._globals, "env": self._env}, sort_keys=True, default=str
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def __bool__(self) -> bool:
        return bool(self._globals or self._env or self._page)


def _lookup(layer: Mapping[str, Any], key: str) -> Any:
    if key in layer:
        return layer[key]
    current: Any = layer
    for part in key.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _format(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ", ".join(_format(v) for v in value)
    return str(value)


def load_variables(data_dir: Path, environment: str = "dev") -> Variables:
    """Load variables.yaml and its environment overlay from data_dir.

    Args:
        data_dir: Directory holding the variable files.
        environment: Overlay name, usually "dev" or "prod".

    Returns:
        Variables with the global and environment layers filled in.

    Raises:
        ConfigError: If a variable file is not a YAML mapping.
    """
    return Variables(
        _load_file(data_dir / "variables.yaml"),
        _load_file(data_dir / f"variables.{environment}.yaml"),
    )


def _load_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            payload = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: invalid YAML: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"{path}: expected a mapping of variables")
    return payload
