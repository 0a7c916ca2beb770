"""Stock market signals for stock influence mode.

The market channel is produced elsewhere; this module only ranks the
targets linked to held positions and decides which way each should be
pushed. Growing a target nudges its stock up, hacking it nudges it down.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from hack_daemon.catalog import NodeCatalog, TargetNode

logger = logging.getLogger(__name__)

INFLUENCE_GROW = "grow"
INFLUENCE_HACK = "hack"


@dataclass(frozen=True)
class MarketSignal:
    """One stock's position and forecast as published on the market channel."""

    symbol: str
    long_shares: float = 0.0
    long_price: float = 0.0
    short_shares: float = 0.0
    short_price: float = 0.0
    forecast: float = 0.0
    expected_return: float = 0.0

    @property
    def has_position(self) -> bool:
        return self.long_shares > 0 or self.short_shares > 0

    @property
    def position_value(self) -> float:
        return self.long_shares * self.long_price + self.short_shares * self.short_price

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MarketSignal:
        """Build from a channel record, ignoring unknown keys.

        Accepts both flat keys and the nested ``long``/``short`` position
        blocks the market daemon writes.
        """
        long_pos = data.get("long") or {}
        short_pos = data.get("short") or {}
        return cls(
            symbol=str(data["symbol"]),
            long_shares=float(data.get("long_shares", long_pos.get("shares", 0.0))),
            long_price=float(data.get("long_price", long_pos.get("price", 0.0))),
            short_shares=float(data.get("short_shares", short_pos.get("shares", 0.0))),
            short_price=float(data.get("short_price", short_pos.get("price", 0.0))),
            forecast=float(data.get("forecast", 0.0)),
            expected_return=float(data.get("expected_return", 0.0)),
        )


def stock_benefit(signal: MarketSignal, target: TargetNode) -> float:
    """Position value per unit of hack time, damped by forecast strength."""
    hack_time = max(target.hack_time, 1.0)
    return signal.position_value / (hack_time * (1 + abs(signal.forecast)))


def rank_stock_targets(catalog: NodeCatalog) -> list[tuple[TargetNode, str]]:
    """Targets linked to held stocks, most beneficial first.

    Returns:
        (target, influence) pairs where influence is INFLUENCE_GROW for
        stocks expected to rise and INFLUENCE_HACK otherwise. Empty when
        the market channel has nothing to offer.
    """
    if not catalog.market:
        return []

    scored: list[tuple[float, TargetNode, str]] = []
    for signal in catalog.market:
        if not signal.has_position:
            continue
        hostname = catalog.symbol_hosts.get(signal.symbol)
        if not hostname:
            continue
        target = catalog.target(hostname)
        if target is None or not catalog.is_hackable(target):
            continue
        influence = INFLUENCE_GROW if signal.expected_return > 0 else INFLUENCE_HACK
        scored.append((stock_benefit(signal, target), target, influence))

    scored.sort(key=lambda item: item[0], reverse=True)
    return [(target, influence) for _, target, influence in scored]
