"""Application configuration."""

from __future__ import annotations

import os
import signal
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from .errors import ConfigurationError

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _parse_signal(value: str | int) -> int:
    if isinstance(value, int):
        return signal.Signals(value)
    name = value.strip().upper()
    if not name.startswith("SIG"):
        name = f"SIG{name}"
    try:
        return signal.Signals[name]
    except KeyError:
        raise ConfigurationError(f"Unknown signal '{value}'") from None


@dataclass
class ApplicationConfig:
    """Configuration for an Application.

    Attributes:
        name: Context name, defaults to ``Application-<uuid>``
        shutdown_signals: Signals that trigger ``stop()`` while started
        debug: Free for applications to consult, not used by Cask itself
        extra: Any other options, exposed as ``app.options``
    """

    name: str | None = None
    shutdown_signals: tuple[int, ...] = (signal.SIGTERM,)
    debug: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.shutdown_signals = tuple(_parse_signal(s) for s in self.shutdown_signals)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ApplicationConfig:
        """Build a config from a mapping, collecting unknown keys into ``extra``."""
        known = {f.name for f in fields(cls)} - {"extra"}
        kwargs = {k: v for k, v in data.items() if k in known}
        extra = dict(data.get("extra") or {})
        extra.update({k: v for k, v in data.items() if k not in known and k != "extra"})
        if isinstance(kwargs.get("shutdown_signals"), (str, int)):
            kwargs["shutdown_signals"] = (kwargs["shutdown_signals"],)
        return cls(**kwargs, extra=extra)

    @classmethod
    def from_env(cls, prefix: str = "CASK_") -> ApplicationConfig:
        """Read ``<prefix>NAME``, ``<prefix>DEBUG`` and ``<prefix>SHUTDOWN_SIGNALS``."""
        data: dict[str, Any] = {}
        if f"{prefix}NAME" in os.environ:
            data["name"] = os.environ[f"{prefix}NAME"]
        if f"{prefix}DEBUG" in os.environ:
            data["debug"] = os.environ[f"{prefix}DEBUG"].strip().lower() in _TRUE_VALUES
        if f"{prefix}SHUTDOWN_SIGNALS" in os.environ:
            raw = os.environ[f"{prefix}SHUTDOWN_SIGNALS"]
            data["shutdown_signals"] = tuple(s for s in raw.split(",") if s.strip())
        return cls.from_mapping(data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> ApplicationConfig:
        """Load a config from a YAML mapping file."""
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Expected a mapping in {path}, got {type(data).__name__}")
        logger.debug(f"Loaded application config from {path}")
        return cls.from_mapping(data)

    def to_dict(self) -> dict[str, Any]:
        """Options as a flat mapping, with ``extra`` merged in."""
        options: dict[str, Any] = dict(self.extra)
        if self.name is not None:
            options["name"] = self.name
        return options
