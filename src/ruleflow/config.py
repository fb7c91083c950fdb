# config.py
"""
Layered workflow configuration.

Precedence, highest first:
    --config key=value overrides  >  --configfile  >  workflow default configfile

The resolved mapping is built once and is read-only afterwards.
"""
from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import yaml

from .errors import ConfigFileError, MissingConfigKey

_MISSING = object()

LAYER_DEFAULT = "default"
LAYER_CONFIGFILE = "configfile"
LAYER_OVERRIDE = "override"


def load_config_file(path: str | Path) -> Dict[str, Any]:
    """Parse a YAML (or JSON) config file into a plain dict."""
    p = Path(path).expanduser()
    if not p.is_file():
        raise ConfigFileError(str(p), "config file not found")
    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigFileError(str(p), f"invalid YAML: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigFileError(str(p), f"top level must be a mapping, got {type(data).__name__}")
    return data


def parse_overrides(overrides: Iterable[str]) -> List[Tuple[str, Any]]:
    """
    Parse `key=value` tokens. Values go through YAML so `a=4` is the int 4
    and `samples=[A,B]` is a list. Order is kept; later duplicates win.
    """
    parsed: List[Tuple[str, Any]] = []
    for token in overrides:
        key, sep, raw = token.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigFileError("--config", f"invalid override {token!r}, expected key=value")
        try:
            value = yaml.safe_load(raw) if raw.strip() else ""
        except yaml.YAMLError:
            value = raw
        parsed.append((key, value))
    return parsed


class ConfigMapping(Mapping[str, Any]):
    """Immutable, precedence-merged config with mandatory and optional lookup."""

    def __init__(self, values: Mapping[str, Any] | None = None, sources: Mapping[str, str] | None = None):
        self._values = MappingProxyType(dict(values or {}))
        self._sources = MappingProxyType(dict(sources or {}))

    def __getitem__(self, key: str) -> Any:
        try:
            return self._values[key]
        except KeyError:
            raise MissingConfigKey(key, known=list(self._values)) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def get(self, key: str, default: Any = _MISSING) -> Any:
        """Mandatory lookup without a default; never fails when one is given."""
        if key in self._values:
            return self._values[key]
        if default is _MISSING:
            raise MissingConfigKey(key, known=list(self._values))
        return default

    def source_of(self, key: str) -> Optional[str]:
        return self._sources.get(key)

    def __repr__(self) -> str:
        return f"ConfigMapping({dict(self._values)!r})"


class ConfigResolver:
    """Merges default configfile, --configfile and --config overrides."""

    def __init__(self, loader=load_config_file):
        self._load = loader

    def resolve(
        self,
        defaults_path: str | Path | None = None,
        cli_configfile: str | Path | None = None,
        cli_overrides: Sequence[str] = (),
    ) -> ConfigMapping:
        values: Dict[str, Any] = {}
        sources: Dict[str, str] = {}

        def _apply(layer: Mapping[str, Any], name: str) -> None:
            for k, v in layer.items():
                values[str(k)] = v
                sources[str(k)] = name

        if defaults_path is not None:
            _apply(self._load(defaults_path), LAYER_DEFAULT)
        if cli_configfile is not None:
            _apply(self._load(cli_configfile), LAYER_CONFIGFILE)
        _apply(dict(parse_overrides(cli_overrides)), LAYER_OVERRIDE)

        return ConfigMapping(values, sources)

    @staticmethod
    def from_layers(
        defaults: Mapping[str, Any] | None = None,
        configfile: Mapping[str, Any] | None = None,
        overrides: Sequence[str] = (),
    ) -> ConfigMapping:
        """Same precedence as resolve(), from already-parsed mappings."""
        resolver = ConfigResolver(loader=lambda layer: layer)
        return resolver.resolve(defaults, configfile, overrides)
