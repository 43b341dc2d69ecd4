# bitalino_ble/app/config.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from bitalino_ble.core.errors import ConfigError
from bitalino_ble.protocol.defs import GattProfile


@dataclass(frozen=True)
class BitalinoConfig:
    address: Optional[str] = None
    name: str = "BITalino"
    adapter: Optional[str] = None
    connect_timeout_s: Optional[float] = 10.0
    write_with_response: bool = True
    profile: GattProfile = field(default_factory=GattProfile)
    log_path: Optional[Path] = None

    def with_overrides(self, **overrides: Any) -> "BitalinoConfig":
        """Return a copy with every non-None override applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        if not values:
            return self
        try:
            return _validated(replace(self, **values))
        except TypeError as e:
            raise ConfigError("Invalid configuration override.", hint=str(e)) from None


_KEYS = ("address", "name", "adapter", "connect_timeout_s", "write_with_response", "profile", "log_path")


def config_from_mapping(data: Dict[str, Any]) -> BitalinoConfig:
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping.", details={"type": type(data).__name__})

    unknown = sorted(set(data) - set(_KEYS))
    if unknown:
        raise ConfigError(
            f"Unknown configuration keys: {', '.join(unknown)}.",
            hint=f"Allowed keys: {', '.join(_KEYS)}.",
        )

    values = dict(data)

    profile = values.pop("profile", None)
    if profile is not None:
        if not isinstance(profile, dict):
            raise ConfigError("'profile' must be a mapping of UUIDs.")
        try:
            values["profile"] = GattProfile.from_mapping(profile)
        except ValueError as e:
            raise ConfigError("Invalid GATT profile.", hint=str(e)) from None

    if values.get("log_path") is not None:
        values["log_path"] = Path(values["log_path"])

    if values.get("address") is not None:
        values["address"] = str(values["address"])

    return _validated(BitalinoConfig(**values))


def load_config(path: Path | str) -> BitalinoConfig:
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}", details={"path": str(path)}) from None
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file is not valid YAML: {path}", hint=str(e)) from None

    return config_from_mapping(data)


def _validated(cfg: BitalinoConfig) -> BitalinoConfig:
    t = cfg.connect_timeout_s
    if t is not None:
        try:
            t = float(t)
        except (TypeError, ValueError):
            raise ConfigError(f"connect_timeout_s must be a number, got {t!r}.") from None
        if t < 0:
            raise ConfigError("connect_timeout_s must be >= 0 (0 disables the timeout).")
        cfg = replace(cfg, connect_timeout_s=t or None)

    if not isinstance(cfg.write_with_response, bool):
        raise ConfigError("write_with_response must be true or false.")

    return cfg
