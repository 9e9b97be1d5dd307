"""Typed configuration models for chanwatch.

Provides Pydantic validation for config.toml, catching typos, wrong types,
and invalid values at startup rather than in the middle of a probe cycle.
"""

from __future__ import annotations

import logging
import re
import tomllib
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from chanwatch.errors import ConfigValidationError

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config.toml")

# Go-style duration units, in seconds
_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(text: str) -> float:
    """Parse a duration string such as ``"90s"``, ``"1h30m"`` or ``"1.5h"``.

    Follows Go's ``time.ParseDuration`` grammar: an optional sign followed
    by one or more decimal numbers, each with a unit suffix. A bare ``"0"``
    is accepted. Returns seconds.
    """
    raw = text.strip()
    if not raw:
        raise ValueError("empty duration")

    sign = 1.0
    if raw[0] in "+-":
        sign = -1.0 if raw[0] == "-" else 1.0
        raw = raw[1:]
    if raw == "0":
        return 0.0

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(raw):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(raw):
        raise ValueError(f"invalid duration {text!r}")
    return sign * total


class ProbeConfig(BaseModel):
    interval: float = Field(default=3600.0, gt=0)
    fallback_models: list[str] = Field(default_factory=list)
    exclude_channels: frozenset[int] = Field(default_factory=frozenset)
    probe_timeout_seconds: float = Field(default=10.0, gt=0)
    discovery_timeout_seconds: float | None = Field(default=None, gt=0)

    @field_validator("interval", mode="before")
    @classmethod
    def parse_interval(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_duration(v)
        return v

    @field_validator("fallback_models", mode="before")
    @classmethod
    def strip_model_names(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [m.strip() if isinstance(m, str) else m for m in v]
        return v


class StoreConfig(BaseModel):
    db_path: str = "data/channels.db"


class RuntimeConfig(BaseModel):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = False
    log_dir: str | None = None
    module_levels: dict[str, str] | None = None


class ChanwatchConfig(BaseModel):
    """Root configuration model for config.toml."""

    probe: ProbeConfig = Field(default_factory=ProbeConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    model_config = {"extra": "forbid"}


def load_config(path: Path | None = None) -> ChanwatchConfig:
    """Load and validate config.toml, returning typed ChanwatchConfig.

    Missing file or sections are filled with defaults.
    Raises ConfigValidationError on malformed TOML or invalid values.
    """
    config_path = path or DEFAULT_CONFIG_PATH
    raw: dict[str, Any] = {}

    if config_path.exists():
        try:
            with config_path.open("rb") as f:
                raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigValidationError(
                f"cannot parse {config_path}: {exc}",
                context={"path": str(config_path)},
            ) from exc

    try:
        config = ChanwatchConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigValidationError(
            f"invalid configuration in {config_path}",
            context={
                "path": str(config_path),
                "errors": [
                    {"loc": ".".join(str(x) for x in err["loc"]), "msg": err["msg"]}
                    for err in exc.errors()
                ],
            },
        ) from exc

    log.debug(
        "config.loaded path=%s interval=%.0fs fallback=%d excluded=%d db=%s",
        config_path,
        config.probe.interval,
        len(config.probe.fallback_models),
        len(config.probe.exclude_channels),
        config.store.db_path,
    )
    return config
