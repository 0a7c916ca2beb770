"""Next-free timestamps for workers and targets.

One tracker instance is kept for workers (as assignees) and one for targets
(as contended resources). Timestamps only move forward; a node goes back to
zero only when it is explicitly reset or removed and re-added.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class UnknownNodeError(KeyError):
    """Raised when a tracker is asked about a node it was never given."""


class AvailabilityTracker:
    """Map of node hostname -> timestamp after which the node is free."""

    def __init__(self, name: str = "nodes") -> None:
        self.name = name
        self._next_free: dict[str, float] = {}

    def __contains__(self, node: object) -> bool:
        return node in self._next_free

    def __len__(self) -> int:
        return len(self._next_free)

    @property
    def nodes(self) -> set[str]:
        return set(self._next_free)

    def add_node(self, node: str, initial: float = 0.0) -> None:
        """Start tracking ``node``; an already tracked node is left untouched."""
        self._next_free.setdefault(node, initial)

    def remove(self, node: str) -> None:
        self._next_free.pop(node, None)

    def reset(self, node: str, value: float = 0.0) -> None:
        """Recreate the entry for ``node``, discarding any reservation."""
        self._next_free[node] = value

    def next_available(self, node: str) -> float:
        try:
            return self._next_free[node]
        except KeyError:
            raise UnknownNodeError(f"{self.name}: unknown node {node!r}") from None

    def is_idle(self, node: str, now: float) -> bool:
        return now > self.next_available(node)

    def reserve(self, node: str, until: float) -> bool:
        """Mark ``node`` busy until ``until``.

        Returns:
            True if the stored timestamp advanced. An earlier timestamp than
            the one stored is ignored so a node is never double-booked.

        Raises:
            UnknownNodeError: If ``node`` is not tracked.
        """
        current = self.next_available(node)
        if until <= current:
            logger.debug(
                "%s: ignoring reservation of %s until %.0f (already %.0f)",
                self.name,
                node,
                until,
                current,
            )
            return False
        self._next_free[node] = until
        return True
