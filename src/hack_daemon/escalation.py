"""Opportunistic root-access pass over newly reachable targets."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from hack_daemon.catalog import NodeCatalog

logger = logging.getLogger(__name__)


@runtime_checkable
class Escalator(Protocol):
    """Port-opening and root-granting side of the environment."""

    def open_ports(self, hostname: str) -> int:
        """Run every available port opener; return the open port count."""
        ...

    def grant_root(self, hostname: str) -> bool: ...


def escalate_privileges(catalog: NodeCatalog, escalator: Escalator) -> list[str]:
    """Try to gain root on every target that lacks it.

    A target is rooted once its open ports reach the required count and the
    player's hacking skill meets its requirement.

    Returns:
        Hostnames that gained root access during this pass.
    """
    rooted: list[str] = []
    for target in catalog.targets.values():
        if target.has_root or target.hostname == "home":
            continue
        open_ports = target.open_ports
        if open_ports < target.required_ports:
            open_ports = max(open_ports, escalator.open_ports(target.hostname))
        if open_ports < target.required_ports:
            continue
        if catalog.player.hacking < target.required_hacking:
            continue
        if escalator.grant_root(target.hostname):
            logger.info("Gained root access on %s", target.hostname)
            catalog.mark_rooted(target.hostname)
            rooted.append(target.hostname)
    return rooted
