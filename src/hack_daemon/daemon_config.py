"""Configuration loader for the hacking daemon.

Reads ops/daemon-config.yaml and provides typed access to all settings.
Pure Python -- no I/O beyond initial file read.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


class Mode(enum.Enum):
    """Scheduling mode selected at startup or by an explicit command."""

    NORMAL = "normal"
    STOCK = "stock"
    XP_FARM = "xp-farm"
    SHARE = "share"

    @classmethod
    def parse(cls, value: str) -> Mode:
        """Parse a mode name, accepting underscores and any case."""
        normalized = value.strip().lower().replace("_", "-")
        for mode in cls:
            if mode.value == normalized:
                return mode
        raise ValueError(f"Unknown mode: {value!r}")


@dataclass(frozen=True)
class ScriptConfig:
    """Per-thread RAM cost of each worker script."""

    hack_ram: float = 1.7
    grow_ram: float = 1.75
    weaken_ram: float = 1.75
    share_ram: float = 4.0


@dataclass(frozen=True)
class TimingConfig:
    """Delays in milliseconds between stages, batches and ticks."""

    batch_delay_ms: float = 2000.0
    step_delay_ms: float | None = None  # None = batch_delay_ms / 6
    start_delay_ms: float = 500.0
    tick_interval_ms: float = 750.0

    @property
    def step_delay(self) -> float:
        if self.step_delay_ms is None:
            return self.batch_delay_ms / 6
        return self.step_delay_ms

    @property
    def worker_padding(self) -> float:
        """Padding added after a worker's last stage lands."""
        return self.start_delay_ms * 2 + self.batch_delay_ms * 2

    @property
    def target_padding(self) -> float:
        """Padding added after a target's last stage lands."""
        return self.batch_delay_ms


@dataclass(frozen=True)
class HackingConfig:
    """Security/money effect constants and hack cycle search limits."""

    hack_fortify: float = 0.002
    grow_fortify: float = 0.004
    weaken_potency: float = 0.05
    max_hack_fraction: float = 0.75
    max_batches: int = 25
    search_iterations: int = 25
    grow_safety_margin: float = 1.05


@dataclass(frozen=True)
class XPFarmConfig:
    """Bootstrap targets weakened repeatedly in XP farm mode."""

    primary_target: str = "joesguns"
    fallback_target: str = "n00dles"


@dataclass(frozen=True)
class ShareConfig:
    """Share mode settings."""

    hold_ms: float = 10_000.0


@dataclass(frozen=True)
class DaemonConfig:
    """Top-level daemon configuration."""

    mode: Mode = Mode.NORMAL
    scripts: ScriptConfig = field(default_factory=ScriptConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    hacking: HackingConfig = field(default_factory=HackingConfig)
    xp_farm: XPFarmConfig = field(default_factory=XPFarmConfig)
    share: ShareConfig = field(default_factory=ShareConfig)
    excluded_workers: tuple[str, ...] = ()
    excluded_prefixes: tuple[str, ...] = ("hacknet",)
    mode_file: str = ""

    def __post_init__(self) -> None:
        validate_config(self)


def validate_config(config: DaemonConfig) -> None:
    """Reject settings the cycle arithmetic cannot work with.

    Raises:
        ValueError: On a non-positive RAM cost or delay, or a maximum hack
            fraction outside (0, 1).
    """
    for name in ("hack_ram", "grow_ram", "weaken_ram", "share_ram"):
        if getattr(config.scripts, name) <= 0:
            raise ValueError(f"scripts.{name} must be positive")
    if config.timing.batch_delay_ms <= 0 or config.timing.step_delay <= 0:
        raise ValueError("timing delays must be positive")
    if config.timing.tick_interval_ms <= 0:
        raise ValueError("timing.tick_interval_ms must be positive")
    if not 0 < config.hacking.max_hack_fraction < 1:
        raise ValueError("hacking.max_hack_fraction must be in (0, 1)")
    if config.hacking.weaken_potency <= 0:
        raise ValueError("hacking.weaken_potency must be positive")
    if config.hacking.max_batches < 1 or config.hacking.search_iterations < 1:
        raise ValueError("hacking.max_batches and search_iterations must be >= 1")


def _build_sub(cls: type, data: dict[str, Any] | None) -> Any:
    """Build a frozen dataclass from a dict, ignoring unknown keys."""
    if data is None:
        return cls()
    valid = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in valid}
    return cls(**filtered)


def _as_tuple(value: Any, default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return default
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def load_config(config_path: Path) -> DaemonConfig:
    """Load daemon configuration from a YAML file.

    Args:
        config_path: Path to ops/daemon-config.yaml.

    Returns:
        Populated DaemonConfig.

    Raises:
        FileNotFoundError: If config file does not exist.
        yaml.YAMLError: If YAML is malformed.
        ValueError: If a setting is out of range or the mode is unknown.
    """
    raw = yaml.safe_load(config_path.read_text())
    if not isinstance(raw, dict):
        return DaemonConfig()

    defaults = DaemonConfig()
    mode_raw = raw.get("mode")
    mode = Mode.parse(str(mode_raw)) if mode_raw else defaults.mode

    return DaemonConfig(
        mode=mode,
        scripts=_build_sub(ScriptConfig, raw.get("scripts")),
        timing=_build_sub(TimingConfig, raw.get("timing")),
        hacking=_build_sub(HackingConfig, raw.get("hacking")),
        xp_farm=_build_sub(XPFarmConfig, raw.get("xp_farm")),
        share=_build_sub(ShareConfig, raw.get("share")),
        excluded_workers=_as_tuple(
            raw.get("excluded_workers"), defaults.excluded_workers
        ),
        excluded_prefixes=_as_tuple(
            raw.get("excluded_prefixes"), defaults.excluded_prefixes
        ),
        mode_file=str(raw.get("mode_file") or ""),
    )
