"""Per-tick snapshot of worker and target nodes.

The catalog never mutates node records: each tick replaces them wholesale
with the latest telemetry snapshot; the scheduler reconciles its trackers
against the hostnames the catalog holds after each refresh.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from hack_daemon.daemon_config import DaemonConfig

if TYPE_CHECKING:
    from hack_daemon.market import MarketSignal

logger = logging.getLogger(__name__)

# Grow threads gain 1/16 of their base effect per additional core.
_CORE_BONUS_STEP = 1 / 16


# ---------------------------------------------------------------------------
# Node records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlayerSnapshot:
    """Player state read by mode selection and privilege escalation."""

    hacking: int = 1


@dataclass(frozen=True)
class WorkerNode:
    """A host that can run dispatched scripts."""

    hostname: str
    ram_max: float
    ram_used: float = 0.0
    cores: int = 1
    has_root: bool = True
    purchased: bool = False
    # The worker's own server state, read by stock influence mode.
    security_at_min: bool = True
    money_at_max: bool = True

    @property
    def ram_free(self) -> float:
        return max(0.0, self.ram_max - self.ram_used)


@dataclass(frozen=True)
class TargetNode:
    """A host whose money is extracted and whose security is managed.

    Durations are milliseconds. ``hack_fraction`` is the fraction of current
    money a single hack thread steals; ``growth_log`` is the natural log of
    the money multiplier a single grow thread gives on a one-core worker.
    """

    hostname: str
    security: float
    security_min: float
    money: float
    money_max: float
    hack_time: float
    grow_time: float
    weaken_time: float
    hack_time_min: float | None = None
    grow_time_min: float | None = None
    weaken_time_min: float | None = None
    required_hacking: int = 1
    has_root: bool = False
    hack_fraction: float = 0.0
    growth_log: float = 0.0
    open_ports: int = 0
    required_ports: int = 0

    @property
    def security_is_min(self) -> bool:
        return self.security <= self.security_min

    @property
    def money_is_max(self) -> bool:
        return self.money >= self.money_max

    @property
    def min_hack_time(self) -> float:
        return self.hack_time if self.hack_time_min is None else self.hack_time_min

    @property
    def min_grow_time(self) -> float:
        return self.grow_time if self.grow_time_min is None else self.grow_time_min

    @property
    def min_weaken_time(self) -> float:
        if self.weaken_time_min is None:
            return self.weaken_time
        return self.weaken_time_min

    @property
    def hack_attractiveness(self) -> float:
        """Money available per unit of security-weighted weaken time."""
        denominator = max(self.security_min, 1.0) * max(self.min_weaken_time, 1.0)
        return self.money_max * max(self.hack_fraction, 0.0) / denominator

    def growth_threads(self, multiplier: float, cores: int = 1) -> float:
        """Grow threads needed to multiply this target's money by ``multiplier``."""
        if multiplier <= 1 or self.growth_log <= 0:
            return 0.0
        return math.log(multiplier) / (self.growth_log * _core_bonus(cores))

    def grow_multiplier(self, threads: int, cores: int = 1) -> float:
        """Money multiplier produced by ``threads`` grow threads."""
        if threads <= 0 or self.growth_log <= 0:
            return 1.0
        return math.exp(self.growth_log * _core_bonus(cores) * threads)


def _core_bonus(cores: int) -> float:
    return 1 + (max(cores, 1) - 1) * _CORE_BONUS_STEP


@dataclass
class ClusterSnapshot:
    """Everything the telemetry collaborator reports for one tick."""

    player: PlayerSnapshot = field(default_factory=PlayerSnapshot)
    workers: list[WorkerNode] = field(default_factory=list)
    targets: list[TargetNode] = field(default_factory=list)
    market: list[MarketSignal] | None = None
    symbol_hosts: dict[str, str] = field(default_factory=dict)


@runtime_checkable
class Telemetry(Protocol):
    """Source of per-tick cluster snapshots."""

    def snapshot(self) -> ClusterSnapshot: ...


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class NodeCatalog:
    """Latest worker/target views, filtered by the daemon configuration."""

    def __init__(self, config: DaemonConfig) -> None:
        self._config = config
        self.player = PlayerSnapshot()
        self.workers: dict[str, WorkerNode] = {}
        self.targets: dict[str, TargetNode] = {}
        self.market: list[MarketSignal] | None = None
        self.symbol_hosts: dict[str, str] = {}

    def _excluded(self, hostname: str) -> bool:
        return any(hostname.startswith(p) for p in self._config.excluded_prefixes)

    @property
    def node_ids(self) -> set[str]:
        """Every hostname known to the catalog, workers and targets alike."""
        return set(self.workers) | set(self.targets)

    def refresh(self, snapshot: ClusterSnapshot) -> None:
        """Replace node records with ``snapshot``."""
        self.player = snapshot.player
        self.workers = {
            w.hostname: w for w in snapshot.workers if not self._excluded(w.hostname)
        }
        self.targets = {
            t.hostname: t for t in snapshot.targets if not self._excluded(t.hostname)
        }
        self.market = snapshot.market
        self.symbol_hosts = dict(snapshot.symbol_hosts)

    def eligible_workers(self) -> list[WorkerNode]:
        """Workers with root access and RAM, minus configured exclusions."""
        excluded = set(self._config.excluded_workers)
        return [
            w
            for w in self.workers.values()
            if w.has_root and w.ram_max > 0 and w.hostname not in excluded
        ]

    def is_hackable(self, target: TargetNode) -> bool:
        return (
            target.has_root
            and target.money_max > 0
            and self.player.hacking >= target.required_hacking
        )

    def targets_by_hack_rating(self) -> list[TargetNode]:
        """Hackable targets, most attractive first."""
        hackable = [t for t in self.targets.values() if self.is_hackable(t)]
        return sorted(hackable, key=lambda t: t.hack_attractiveness, reverse=True)

    def target(self, hostname: str) -> TargetNode | None:
        return self.targets.get(hostname)

    def mark_rooted(self, hostname: str) -> None:
        """Record root access gained during this tick, until the next refresh."""
        target = self.targets.get(hostname)
        if target is not None and not target.has_root:
            self.targets[hostname] = replace(target, has_root=True)
