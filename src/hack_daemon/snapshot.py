"""File-backed telemetry and a JSON-lines executor.

The daemon itself never talks to live hosts. An outside collector writes a
YAML (or JSON) snapshot of the cluster; the daemon re-reads it every tick
and prints one JSON object per decision for an outside runner to execute.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import IO, Any

import yaml

from hack_daemon.catalog import ClusterSnapshot, PlayerSnapshot, TargetNode, WorkerNode
from hack_daemon.market import MarketSignal
from hack_daemon.order_assigner import DispatchRequest

logger = logging.getLogger(__name__)

_TARGET_FIELDS = {f for f in TargetNode.__dataclass_fields__}


# ---------------------------------------------------------------------------
# Snapshot parsing
# ---------------------------------------------------------------------------


def _worker_from_server(server: dict[str, Any]) -> WorkerNode:
    security = float(server.get("security", 0.0))
    security_min = float(server.get("security_min", security))
    money = float(server.get("money", 0.0))
    money_max = float(server.get("money_max", money))
    return WorkerNode(
        hostname=str(server["hostname"]),
        ram_max=float(server.get("ram_max", 0.0)),
        ram_used=float(server.get("ram_used", 0.0)),
        cores=int(server.get("cores", 1)),
        has_root=bool(server.get("has_root", False)),
        purchased=bool(server.get("purchased", False)),
        security_at_min=security <= security_min,
        money_at_max=money >= money_max,
    )


def _target_from_server(server: dict[str, Any]) -> TargetNode:
    data = {k: v for k, v in server.items() if k in _TARGET_FIELDS}
    data.setdefault("security", 0.0)
    data.setdefault("security_min", data["security"])
    data.setdefault("money", 0.0)
    data.setdefault("money_max", data["money"])
    for key in ("hack_time", "grow_time", "weaken_time"):
        data.setdefault(key, 0.0)
    data["hostname"] = str(data["hostname"])
    return TargetNode(**data)


def parse_snapshot(raw: dict[str, Any]) -> ClusterSnapshot:
    """Convert a decoded snapshot document into a ClusterSnapshot.

    Every server with RAM becomes a worker; every server that is neither
    purchased nor ``home`` becomes a target.

    Raises:
        KeyError: If a server entry has no hostname.
    """
    player_raw = raw.get("player") or {}
    player = PlayerSnapshot(hacking=int(player_raw.get("hacking", 1)))

    workers: list[WorkerNode] = []
    targets: list[TargetNode] = []
    for server in raw.get("servers") or []:
        if not isinstance(server, dict):
            continue
        if float(server.get("ram_max", 0.0)) > 0:
            workers.append(_worker_from_server(server))
        if not server.get("purchased", False) and server.get("hostname") != "home":
            targets.append(_target_from_server(server))

    market_raw = raw.get("market")
    market = None
    if isinstance(market_raw, list):
        market = [MarketSignal.from_dict(s) for s in market_raw if isinstance(s, dict)]

    symbol_hosts = raw.get("symbol_hosts") or {}
    return ClusterSnapshot(
        player=player,
        workers=workers,
        targets=targets,
        market=market,
        symbol_hosts={str(k): str(v) for k, v in symbol_hosts.items()},
    )


class FileTelemetry:
    """Re-read a snapshot file on every call to :meth:`snapshot`.

    A missing or malformed file keeps the previous snapshot so one bad
    write by the collector does not empty the catalog.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._last = ClusterSnapshot()

    def snapshot(self) -> ClusterSnapshot:
        try:
            raw = yaml.safe_load(self.path.read_text())
        except OSError:
            logger.warning("Cannot read snapshot: %s", self.path)
            return self._last
        except yaml.YAMLError:
            logger.warning("Malformed snapshot in %s", self.path)
            return self._last
        if not isinstance(raw, dict):
            logger.warning("Snapshot %s is not a mapping", self.path)
            return self._last
        try:
            self._last = parse_snapshot(raw)
        except (KeyError, TypeError, ValueError):
            logger.warning("Invalid server entry in %s", self.path, exc_info=True)
        return self._last


# ---------------------------------------------------------------------------
# JSON-lines executor
# ---------------------------------------------------------------------------


class JsonLinesExecutor:
    """Write each decision as one JSON object per line.

    Kill requests cannot report the RAM they free, so the next snapshot is
    what reflects it. Port openers likewise report 0; ports opened by the
    runner show up as ``open_ports`` in a later snapshot.
    """

    def __init__(self, stream: IO[str] | None = None) -> None:
        self.stream = stream if stream is not None else sys.stdout
        self._nuked: set[str] = set()

    def _emit(self, record: dict[str, Any]) -> None:
        self.stream.write(json.dumps(record, ensure_ascii=False) + "\n")
        self.stream.flush()

    def dispatch(self, request: DispatchRequest) -> bool:
        self._emit({"action": "dispatch", **json.loads(request.to_json())})
        return True

    def kill(self, worker: str, operation: str) -> float:
        self._emit({"action": "kill", "worker": worker, "operation": operation})
        return 0.0

    def kill_all(self, worker: str) -> None:
        self._emit({"action": "kill_all", "worker": worker})

    def open_ports(self, hostname: str) -> int:
        self._emit({"action": "open_ports", "target": hostname})
        return 0

    def grant_root(self, hostname: str) -> bool:
        """Request root once per host; repeats wait for the snapshot to catch up."""
        if hostname in self._nuked:
            logger.debug("Root already requested on %s", hostname)
            return False
        self._nuked.add(hostname)
        self._emit({"action": "nuke", "target": hostname})
        return True
