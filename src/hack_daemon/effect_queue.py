"""In-flight weaken and grow effects that have not landed yet.

Targets are read "optimistically": live telemetry plus the effects already
dispatched against them. This keeps the scheduler from ordering a second
weaken or grow while the first is still travelling. Expired entries are
removed by one sweep per tick rather than per-effect timers.
"""

from __future__ import annotations

import itertools
import logging
import math
from dataclasses import dataclass

from hack_daemon.catalog import TargetNode

logger = logging.getLogger(__name__)

WEAKEN = "weaken"
GROW = "grow"


@dataclass(frozen=True)
class QueuedEffect:
    """A predicted contribution to a target's state.

    ``magnitude`` is a security reduction for weaken effects and a money
    multiplier for grow effects.
    """

    uid: int
    target: str
    assignee: str
    kind: str
    magnitude: float
    expiry: float


class EffectQueue:
    """Per-target lists of queued effects."""

    def __init__(self) -> None:
        self._effects: dict[str, list[QueuedEffect]] = {}
        self._uids = itertools.count(1)

    def next_uid(self) -> int:
        return next(self._uids)

    def enqueue(self, effect: QueuedEffect) -> None:
        if effect.kind not in (WEAKEN, GROW):
            raise ValueError(f"Unknown effect kind: {effect.kind!r}")
        self._effects.setdefault(effect.target, []).append(effect)

    def pending(self, target: str, kind: str | None = None) -> list[QueuedEffect]:
        effects = self._effects.get(target, [])
        if kind is None:
            return list(effects)
        return [e for e in effects if e.kind == kind]

    def outstanding_magnitude(self, target: str) -> float:
        """Total security reduction still in flight against ``target``."""
        return sum(e.magnitude for e in self.pending(target, WEAKEN))

    def outstanding_growth(self, target: str) -> float:
        """Combined money multiplier still in flight against ``target``."""
        return math.prod(e.magnitude for e in self.pending(target, GROW))

    def expire_due(self, now: float) -> int:
        """Drop every effect whose expiry is at or before ``now``.

        Returns:
            Number of effects removed.
        """
        removed = 0
        for target in list(self._effects):
            kept = [e for e in self._effects[target] if e.expiry > now]
            removed += len(self._effects[target]) - len(kept)
            if kept:
                self._effects[target] = kept
            else:
                del self._effects[target]
        if removed:
            logger.debug("Expired %d queued effects", removed)
        return removed

    def drop_target(self, target: str) -> None:
        self._effects.pop(target, None)

    def drop_assignee(self, assignee: str) -> int:
        """Remove effects dispatched by a worker that no longer exists."""
        removed = 0
        for target in list(self._effects):
            kept = [e for e in self._effects[target] if e.assignee != assignee]
            removed += len(self._effects[target]) - len(kept)
            if kept:
                self._effects[target] = kept
            else:
                del self._effects[target]
        return removed

    def __len__(self) -> int:
        return sum(len(v) for v in self._effects.values())


# ---------------------------------------------------------------------------
# Target state predicates
# ---------------------------------------------------------------------------


def needs_weaken(target: TargetNode, queue: EffectQueue) -> bool:
    """True if security stays above its floor once queued weakens land."""
    if queue.pending(target.hostname, WEAKEN):
        outstanding = queue.outstanding_magnitude(target.hostname)
        return target.security - outstanding > target.security_min
    return not target.security_is_min


def needs_grow(target: TargetNode, queue: EffectQueue) -> bool:
    """True if money stays below its ceiling once queued grows land.

    Only meaningful when the target does not need weakening first.
    """
    if needs_weaken(target, queue):
        return False
    if queue.pending(target.hostname, GROW):
        growth = queue.outstanding_growth(target.hostname)
        return target.money * growth < target.money_max
    return not target.money_is_max
