"""Mode strategies and the shared dispatch/commit path.

Each tick the OrderAssigner walks the idle workers and asks the strategy
chosen by the ModeController for an order. Strategies compute a cycle,
hand every stage to the executor, and only then book the worker, the
target and any queued effects -- bookkeeping covers exactly the stages the
executor accepted.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Protocol, runtime_checkable

from hack_daemon.availability import AvailabilityTracker
from hack_daemon.catalog import NodeCatalog, TargetNode, WorkerNode
from hack_daemon.cycles import (
    GrowCycle,
    HackCycle,
    StageTiming,
    WeakenCycle,
    calculate_grow_cycle,
    calculate_hack_cycle,
    calculate_share_threads,
    calculate_weaken_cycle,
)
from hack_daemon.daemon_config import DaemonConfig, Mode
from hack_daemon.effect_queue import (
    GROW,
    WEAKEN,
    EffectQueue,
    QueuedEffect,
    needs_grow,
    needs_weaken,
)
from hack_daemon.market import INFLUENCE_GROW, INFLUENCE_HACK

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Dispatch contract -- what the external executor receives
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DispatchRequest:
    """A single script launch for the executor."""

    operation: str
    worker: str
    threads: int
    target: str | None
    start_time: float
    stock_influence: bool = False

    def to_json(self, indent: int | None = None) -> str:
        return json.dumps(asdict(self), indent=indent, ensure_ascii=False)


@runtime_checkable
class Executor(Protocol):
    """Launches and kills worker scripts outside the scheduler."""

    def dispatch(self, request: DispatchRequest) -> bool: ...

    def kill(self, worker: str, operation: str) -> float:
        """Kill running instances of ``operation``; return the RAM released."""
        ...

    def kill_all(self, worker: str) -> None: ...


# ---------------------------------------------------------------------------
# Scheduler context
# ---------------------------------------------------------------------------


@dataclass
class SchedulerContext:
    """Shared state every strategy reads and commits into."""

    config: DaemonConfig
    catalog: NodeCatalog
    executor: Executor
    clock: Callable[[], float]
    workers: AvailabilityTracker = field(
        default_factory=lambda: AvailabilityTracker("workers")
    )
    targets: AvailabilityTracker = field(
        default_factory=lambda: AvailabilityTracker("targets")
    )
    effects: EffectQueue = field(default_factory=EffectQueue)
    # (target, influence) pairs, recomputed every tick in stock mode.
    stock_targets: list[tuple[TargetNode, str]] = field(default_factory=list)

    def now(self) -> float:
        return self.clock()


# ---------------------------------------------------------------------------
# Commit
# ---------------------------------------------------------------------------


def _dispatch_stages(
    worker: WorkerNode,
    target: TargetNode,
    stages: list[StageTiming],
    ctx: SchedulerContext,
    influence: str | None,
) -> tuple[list[StageTiming], list[DispatchRequest], bool]:
    """Send ``stages`` in order, stopping at the first rejection.

    Returns:
        (accepted stages, their requests, whether every stage was accepted).
    """
    accepted: list[StageTiming] = []
    requests: list[DispatchRequest] = []
    for stage in stages:
        request = DispatchRequest(
            operation=stage.operation,
            worker=worker.hostname,
            threads=stage.threads,
            target=target.hostname,
            start_time=stage.start_time,
            stock_influence=influence == stage.operation,
        )
        if not ctx.executor.dispatch(request):
            logger.warning(
                "Executor rejected %s x%d on %s against %s",
                stage.operation,
                stage.threads,
                worker.hostname,
                target.hostname,
            )
            return accepted, requests, False
        accepted.append(stage)
        requests.append(request)
    return accepted, requests, True


def _book(
    worker: WorkerNode,
    target: TargetNode,
    accepted: list[StageTiming],
    ctx: SchedulerContext,
) -> None:
    """Reserve worker and target until the last accepted stage has landed."""
    if not accepted:
        return
    timing = ctx.config.timing
    last_end = max(stage.end_time for stage in accepted)
    ctx.workers.reserve(worker.hostname, last_end + timing.worker_padding)
    ctx.targets.reserve(target.hostname, last_end + timing.target_padding)


def _queue_effect(
    worker: WorkerNode,
    target: TargetNode,
    kind: str,
    magnitude: float,
    landed_at: float,
    ctx: SchedulerContext,
) -> None:
    ctx.effects.enqueue(
        QueuedEffect(
            uid=ctx.effects.next_uid(),
            target=target.hostname,
            assignee=worker.hostname,
            kind=kind,
            magnitude=magnitude,
            expiry=landed_at + ctx.config.timing.batch_delay_ms,
        )
    )


def _queue_stage_effects(
    worker: WorkerNode,
    target: TargetNode,
    accepted: list[StageTiming],
    ctx: SchedulerContext,
) -> None:
    """Queue the gross effect of every accepted weaken and grow stage."""
    potency = ctx.config.hacking.weaken_potency
    for stage in accepted:
        if stage.operation == WEAKEN:
            magnitude = stage.threads * potency
            _queue_effect(worker, target, WEAKEN, magnitude, stage.end_time, ctx)
        elif stage.operation == GROW:
            multiplier = target.grow_multiplier(stage.threads, worker.cores)
            _queue_effect(worker, target, GROW, multiplier, stage.end_time, ctx)


def commit_weaken(
    worker: WorkerNode, target: TargetNode, cycle: WeakenCycle, ctx: SchedulerContext
) -> list[DispatchRequest] | None:
    logger.info(
        "Starting weaken cycle on %s from %s for %d threads",
        target.hostname,
        worker.hostname,
        cycle.w.threads,
    )
    accepted, requests, _ = _dispatch_stages(worker, target, cycle.stages, ctx, None)
    if not accepted:
        return None
    _book(worker, target, accepted, ctx)
    _queue_stage_effects(worker, target, accepted, ctx)
    return requests


def commit_grow(
    worker: WorkerNode,
    target: TargetNode,
    cycle: GrowCycle,
    ctx: SchedulerContext,
    influence: str | None = None,
) -> list[DispatchRequest] | None:
    logger.info(
        "Starting grow cycle on %s from %s for %d grow and %d weaken threads",
        target.hostname,
        worker.hostname,
        cycle.g.threads,
        cycle.w.threads,
    )
    accepted, requests, _ = _dispatch_stages(
        worker, target, cycle.stages, ctx, influence
    )
    if not accepted:
        return None
    _book(worker, target, accepted, ctx)
    _queue_stage_effects(worker, target, accepted, ctx)
    return requests


def commit_hack(
    worker: WorkerNode,
    target: TargetNode,
    cycle: HackCycle,
    ctx: SchedulerContext,
    influence: str | None = None,
) -> list[DispatchRequest] | None:
    logger.info(
        "Stealing %.2f%% of funds from %s for %d batches",
        cycle.stolen_fraction * 100,
        target.hostname,
        cycle.batches,
    )
    logger.info(
        "Hacks = %d, Weakens = %d, Grows = %d, Weakens = %d",
        cycle.h.threads,
        cycle.wh.threads,
        cycle.g.threads,
        cycle.wg.threads,
    )
    accepted: list[StageTiming] = []
    requests: list[DispatchRequest] = []
    for index in range(cycle.batches):
        logger.debug("Executing batch %d on %s", index, worker.hostname)
        batch_accepted, batch_requests, complete = _dispatch_stages(
            worker, target, cycle.batch(index), ctx, influence
        )
        accepted.extend(batch_accepted)
        requests.extend(batch_requests)
        if not complete:
            break
    if not accepted:
        return None
    _book(worker, target, accepted, ctx)
    # A batch's counter stages cover the dip its hack leaves in live state.
    _queue_stage_effects(worker, target, accepted, ctx)
    return requests


# ---------------------------------------------------------------------------
# Try-assign helpers
# ---------------------------------------------------------------------------


def try_assign_weaken(
    worker: WorkerNode, target: TargetNode, ctx: SchedulerContext
) -> list[DispatchRequest] | None:
    logger.debug("Trying to assign weaken order to %s", worker.hostname)
    cycle = calculate_weaken_cycle(
        worker, target, ctx.targets.next_available(target.hostname), ctx.now(), ctx.config
    )
    if cycle is None:
        return None
    return commit_weaken(worker, target, cycle, ctx)


def try_assign_grow(
    worker: WorkerNode,
    target: TargetNode,
    ctx: SchedulerContext,
    influence: str | None = None,
) -> list[DispatchRequest] | None:
    logger.debug("Trying to assign grow order to %s", worker.hostname)
    cycle = calculate_grow_cycle(
        worker, target, ctx.targets.next_available(target.hostname), ctx.now(), ctx.config
    )
    if cycle is None:
        return None
    return commit_grow(worker, target, cycle, ctx, influence)


def try_assign_hack(
    worker: WorkerNode,
    target: TargetNode,
    ctx: SchedulerContext,
    influence: str | None = None,
) -> list[DispatchRequest] | None:
    logger.debug("Trying to assign hack order to %s", worker.hostname)
    cycle = calculate_hack_cycle(
        worker, target, ctx.targets.next_available(target.hostname), ctx.now(), ctx.config
    )
    if cycle is None:
        return None
    return commit_hack(worker, target, cycle, ctx, influence)


# ---------------------------------------------------------------------------
# Strategies -- one per mode
# ---------------------------------------------------------------------------


class Strategy(Protocol):
    mode: Mode

    def assign(
        self, worker: WorkerNode, ctx: SchedulerContext
    ) -> list[DispatchRequest] | None: ...


class NormalStrategy:
    """Weaken, then grow, then hack the most attractive target."""

    mode = Mode.NORMAL

    def assign(
        self, worker: WorkerNode, ctx: SchedulerContext
    ) -> list[DispatchRequest] | None:
        ranked = ctx.catalog.targets_by_hack_rating()
        if not ranked:
            return None
        for target in ranked:
            if needs_weaken(target, ctx.effects):
                return try_assign_weaken(worker, target, ctx)
        for target in ranked:
            if needs_grow(target, ctx.effects):
                return try_assign_grow(worker, target, ctx)
        return try_assign_hack(worker, ranked[0], ctx)


class StockInfluenceStrategy:
    """Push held stocks in the direction of their forecast."""

    mode = Mode.STOCK

    def assign(
        self, worker: WorkerNode, ctx: SchedulerContext
    ) -> list[DispatchRequest] | None:
        if not ctx.stock_targets:
            return None
        target, influence = ctx.stock_targets[0]
        # The worker's own server state decides the operation.
        if not worker.security_at_min:
            return try_assign_weaken(worker, target, ctx)
        if not worker.money_at_max:
            return try_assign_grow(worker, target, ctx, influence)
        return try_assign_hack(worker, target, ctx, influence)


class ExperienceFarmStrategy:
    """Weaken a cheap bootstrap target over and over for hacking experience."""

    mode = Mode.XP_FARM

    def assign(
        self, worker: WorkerNode, ctx: SchedulerContext
    ) -> list[DispatchRequest] | None:
        farm = ctx.config.xp_farm
        primary = ctx.catalog.target(farm.primary_target)
        if primary is not None and ctx.catalog.player.hacking >= primary.required_hacking:
            target = primary
        else:
            target = ctx.catalog.target(farm.fallback_target)
        if target is None:
            logger.warning(
                "No XP farm target available (%s / %s)",
                farm.primary_target,
                farm.fallback_target,
            )
            return None
        return try_assign_weaken(worker, target, ctx)


class ShareAllStrategy:
    """Give every byte of the worker's RAM to share instances."""

    mode = Mode.SHARE

    def assign(
        self, worker: WorkerNode, ctx: SchedulerContext
    ) -> list[DispatchRequest] | None:
        logger.debug("Killing share instances on %s", worker.hostname)
        released = ctx.executor.kill(worker.hostname, "share")
        threads = calculate_share_threads(
            worker.ram_free + released, worker.ram_max, ctx.config, at_max=True
        )
        if threads < 1:
            return None

        now = ctx.now()
        request = DispatchRequest(
            operation="share",
            worker=worker.hostname,
            threads=threads,
            target=None,
            start_time=now,
        )
        logger.debug("Starting %d share threads on %s", threads, worker.hostname)
        if not ctx.executor.dispatch(request):
            logger.warning("Executor rejected share x%d on %s", threads, worker.hostname)
            return None
        ctx.workers.reserve(worker.hostname, now + ctx.config.share.hold_ms)
        return [request]


# ---------------------------------------------------------------------------
# Mode controller and assigner
# ---------------------------------------------------------------------------


class ModeController:
    """Holds the current mode and hands out the strategy for this tick."""

    def __init__(self, mode: Mode = Mode.NORMAL) -> None:
        self.mode = mode
        self._strategies: dict[Mode, Strategy] = {
            Mode.NORMAL: NormalStrategy(),
            Mode.STOCK: StockInfluenceStrategy(),
            Mode.XP_FARM: ExperienceFarmStrategy(),
            Mode.SHARE: ShareAllStrategy(),
        }
        self._stock_fallback_warned = False

    def set_mode(self, mode: Mode) -> None:
        if mode is not self.mode:
            logger.info("Switching mode from %s to %s", self.mode.value, mode.value)
        self.mode = mode
        self._stock_fallback_warned = False

    def strategy_for(self, ctx: SchedulerContext) -> Strategy:
        if self.mode is Mode.STOCK and not ctx.stock_targets:
            if not self._stock_fallback_warned:
                logger.warning(
                    "No targets to push for stock influence; using normal orders"
                )
                self._stock_fallback_warned = True
            return self._strategies[Mode.NORMAL]
        if self.mode is Mode.STOCK:
            self._stock_fallback_warned = False
        return self._strategies[self.mode]


class OrderAssigner:
    """Assigns one order to every idle, eligible worker."""

    def __init__(self, controller: ModeController) -> None:
        self.controller = controller

    def assign_all(self, ctx: SchedulerContext) -> dict[str, list[DispatchRequest]]:
        """Run one assignment pass.

        Returns:
            Worker hostname -> requests dispatched for it this pass.
        """
        strategy = self.controller.strategy_for(ctx)
        assigned: dict[str, list[DispatchRequest]] = {}
        for worker in ctx.catalog.eligible_workers():
            if not ctx.workers.is_idle(worker.hostname, ctx.now()):
                continue
            logger.info("Processing order assignment for %s", worker.hostname)
            requests = strategy.assign(worker, ctx)
            if requests:
                assigned[worker.hostname] = requests
        return assigned
