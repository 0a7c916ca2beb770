"""Thread counts and stage timings for weaken, grow and hack cycles.

Every function here is pure: given a worker, a target, the target's
next-free time and the current clock reading it returns a cycle or None
when nothing worthwhile fits.

Stages are issued at different absolute times but engineered to *land* in a
fixed order. A stage of duration ``d`` at position ``k`` in its cycle starts
at ``ceil(landing - d + k * step_delay)``, where ``landing`` is the earliest
moment a full weaken could complete that is also no earlier than the
target's next-free time.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace

from hack_daemon.catalog import TargetNode, WorkerNode
from hack_daemon.daemon_config import DaemonConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Cycle records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StageTiming:
    """One stage of a cycle: how many threads, how long, and when to start."""

    operation: str
    threads: int
    duration: float
    start_time: float

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def shifted(self, offset: float) -> StageTiming:
        return replace(self, start_time=self.start_time + offset)


@dataclass(frozen=True)
class WeakenCycle:
    w: StageTiming

    @property
    def stages(self) -> list[StageTiming]:
        return [self.w]


@dataclass(frozen=True)
class GrowCycle:
    g: StageTiming
    w: StageTiming

    @property
    def stages(self) -> list[StageTiming]:
        return [self.g, self.w]


@dataclass(frozen=True)
class HackCycle:
    """Four-stage batch repeated ``batches`` times, ``batch_delay`` apart."""

    batches: int
    batch_delay: float
    h: StageTiming
    wh: StageTiming
    g: StageTiming
    wg: StageTiming
    stolen_fraction: float = 0.0

    @property
    def stages(self) -> list[StageTiming]:
        return [self.h, self.wh, self.g, self.wg]

    def batch(self, index: int) -> list[StageTiming]:
        """Stages of the ``index``-th batch, offset from the first."""
        offset = index * self.batch_delay
        return [stage.shifted(offset) for stage in self.stages]


Cycle = WeakenCycle | GrowCycle | HackCycle


# ---------------------------------------------------------------------------
# Timing helpers
# ---------------------------------------------------------------------------


def landing_time(now: float, target_available: float, weaken_time: float) -> float:
    """Earliest time a weaken started now could land, but not before the target frees."""
    return max(now + weaken_time, target_available)


def stage_start(landing: float, duration: float, index: int, step_delay: float) -> float:
    return math.ceil(landing - duration + index * step_delay)


# ---------------------------------------------------------------------------
# Weaken
# ---------------------------------------------------------------------------


def calculate_weaken_cycle(
    worker: WorkerNode,
    target: TargetNode,
    target_available: float,
    now: float,
    config: DaemonConfig,
) -> WeakenCycle | None:
    """Spend all of the worker's free RAM on weaken threads."""
    threads = math.floor(worker.ram_free / config.scripts.weaken_ram)
    if threads < 1:
        return None

    weaken_time = target.weaken_time
    landing = landing_time(now, target_available, weaken_time)
    return WeakenCycle(
        w=StageTiming(
            operation="weaken",
            threads=threads,
            duration=weaken_time,
            start_time=stage_start(landing, weaken_time, 0, config.timing.step_delay),
        )
    )


# ---------------------------------------------------------------------------
# Grow
# ---------------------------------------------------------------------------


def calculate_grow_cycle(
    worker: WorkerNode,
    target: TargetNode,
    target_available: float,
    now: float,
    config: DaemonConfig,
) -> GrowCycle | None:
    """Grow threads plus exactly enough weaken threads to cancel their security."""
    scripts = config.scripts
    hacking = config.hacking
    ratio = hacking.grow_fortify / hacking.weaken_potency

    cycle_ram = scripts.grow_ram + scripts.weaken_ram * ratio
    grow_threads = math.floor((worker.ram_free - scripts.weaken_ram) / cycle_ram)
    if grow_threads < 1:
        return None
    weaken_threads = math.ceil(grow_threads * ratio)

    grow_time = target.min_grow_time
    weaken_time = target.min_weaken_time
    step = config.timing.step_delay
    landing = landing_time(now, target_available, weaken_time)

    return GrowCycle(
        g=StageTiming("grow", grow_threads, grow_time, stage_start(landing, grow_time, 0, step)),
        w=StageTiming(
            "weaken", weaken_threads, weaken_time, stage_start(landing, weaken_time, 1, step)
        ),
    )


# ---------------------------------------------------------------------------
# Hack
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _BatchPrice:
    hack_threads: int
    grow_threads: int
    weaken_hack_threads: int
    weaken_grow_threads: int
    ram_cost: float
    batches: float  # how many whole batches the worker's free RAM could hold
    stolen_fraction: float


def _price_batch(
    worker: WorkerNode,
    target: TargetNode,
    hack_threads: int,
    hack_fraction: float,
    config: DaemonConfig,
) -> _BatchPrice:
    """Threads and RAM for one HWGW batch stealing with ``hack_threads``."""
    scripts = config.scripts
    hacking = config.hacking

    stolen = max(0, hack_threads) * hack_fraction
    if stolen >= 1:
        return _BatchPrice(hack_threads, 0, 0, 0, math.inf, 0.0, stolen)

    regrowth = 1 / (1 - stolen)
    grow_threads = math.ceil(
        target.growth_threads(regrowth, worker.cores) * hacking.grow_safety_margin
    )
    weaken_hack = math.ceil(hack_threads * hacking.hack_fortify / hacking.weaken_potency)
    weaken_grow = math.ceil(grow_threads * hacking.grow_fortify / hacking.weaken_potency)

    ram_cost = (
        hack_threads * scripts.hack_ram
        + grow_threads * scripts.grow_ram
        + (weaken_hack + weaken_grow) * scripts.weaken_ram
    )
    batches = worker.ram_free / ram_cost if ram_cost > 0 else 0.0
    return _BatchPrice(
        hack_threads=hack_threads,
        grow_threads=grow_threads,
        weaken_hack_threads=weaken_hack,
        weaken_grow_threads=weaken_grow,
        ram_cost=ram_cost,
        batches=batches,
        stolen_fraction=stolen,
    )


def search_hack_threads(
    worker: WorkerNode,
    target: TargetNode,
    config: DaemonConfig,
) -> _BatchPrice | None:
    """Find the largest hack thread count that still fits more than one batch.

    The bounds are narrowed for at most ``hacking.search_iterations`` probes.
    The affordability test is not strictly monotonic near RAM boundaries
    (thread counts are rounded up per stage), so the cap is the stopping rule
    rather than a convergence proof.
    """
    hacking = config.hacking
    hack_fraction = target.hack_fraction
    if hack_fraction <= 0:
        # Telemetry occasionally reports zero; treat one thread as stealing it all.
        hack_fraction = 1.0

    max_threads = math.floor(hacking.max_hack_fraction / hack_fraction)
    low, high = 1, max_threads

    probe: _BatchPrice | None = None
    for _ in range(hacking.search_iterations):
        if low == high:
            break
        threads = (low + high) // 2
        probe = _price_batch(worker, target, threads, hack_fraction, config)
        if probe.batches > 1:
            low = threads
        elif probe.batches < 1:
            high = threads

    if probe is None or (probe.batches < 1 and 1 <= low <= max_threads):
        if low > max_threads:
            return None
        probe = _price_batch(worker, target, low, hack_fraction, config)

    if probe.hack_threads <= 0 or probe.batches < 1:
        return None
    return probe


def calculate_hack_cycle(
    worker: WorkerNode,
    target: TargetNode,
    target_available: float,
    now: float,
    config: DaemonConfig,
) -> HackCycle | None:
    """Size and time a pipelined hack/weaken/grow/weaken batch set.

    Returns None when no batch with at least one hack thread fits in the
    worker's free RAM.
    """
    price = search_hack_threads(worker, target, config)
    if price is None:
        logger.debug(
            "No viable hack cycle for %s against %s", worker.hostname, target.hostname
        )
        return None

    hack_time = target.min_hack_time
    grow_time = target.min_grow_time
    weaken_time = target.min_weaken_time
    step = config.timing.step_delay
    landing = landing_time(now, target_available, weaken_time)

    return HackCycle(
        batches=min(config.hacking.max_batches, math.floor(price.batches)),
        batch_delay=config.timing.batch_delay_ms,
        h=StageTiming(
            "hack", price.hack_threads, hack_time, stage_start(landing, hack_time, 0, step)
        ),
        wh=StageTiming(
            "weaken",
            price.weaken_hack_threads,
            weaken_time,
            stage_start(landing, weaken_time, 1, step),
        ),
        g=StageTiming(
            "grow", price.grow_threads, grow_time, stage_start(landing, grow_time, 2, step)
        ),
        wg=StageTiming(
            "weaken",
            price.weaken_grow_threads,
            weaken_time,
            stage_start(landing, weaken_time, 3, step),
        ),
        stolen_fraction=price.stolen_fraction,
    )


# ---------------------------------------------------------------------------
# Share
# ---------------------------------------------------------------------------


def calculate_share_threads(
    ram_available: float,
    ram_max: float,
    config: DaemonConfig,
    *,
    at_max: bool = False,
) -> int:
    """Share threads for ``ram_available`` RAM.

    At max every available byte is shared; otherwise the share scales with
    ``0.03 * log2(ram_max)`` so larger hosts give up a larger slice.
    """
    if at_max:
        modifier = 1.0
    else:
        modifier = 0.03 * math.log2(ram_max) if ram_max > 1 else 0.0
    return max(0, math.floor(ram_available * modifier / config.scripts.share_ram))
