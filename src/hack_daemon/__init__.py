"""hack-daemon: batch scheduler for hack/grow/weaken worker scripts."""

__version__ = "0.7.0"

from hack_daemon.availability import AvailabilityTracker, UnknownNodeError
from hack_daemon.catalog import (
    ClusterSnapshot,
    NodeCatalog,
    PlayerSnapshot,
    TargetNode,
    WorkerNode,
)
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
from hack_daemon.daemon import Scheduler
from hack_daemon.daemon_config import DaemonConfig, Mode, load_config
from hack_daemon.effect_queue import EffectQueue, QueuedEffect, needs_grow, needs_weaken
from hack_daemon.order_assigner import (
    DispatchRequest,
    ModeController,
    OrderAssigner,
    SchedulerContext,
)

__all__ = [
    # availability
    "AvailabilityTracker",
    "UnknownNodeError",
    # catalog
    "ClusterSnapshot",
    "NodeCatalog",
    "PlayerSnapshot",
    "TargetNode",
    "WorkerNode",
    # cycles
    "GrowCycle",
    "HackCycle",
    "StageTiming",
    "WeakenCycle",
    "calculate_grow_cycle",
    "calculate_hack_cycle",
    "calculate_share_threads",
    "calculate_weaken_cycle",
    # daemon
    "Scheduler",
    # daemon_config
    "DaemonConfig",
    "Mode",
    "load_config",
    # effect_queue
    "EffectQueue",
    "QueuedEffect",
    "needs_grow",
    "needs_weaken",
    # order_assigner
    "DispatchRequest",
    "ModeController",
    "OrderAssigner",
    "SchedulerContext",
]
