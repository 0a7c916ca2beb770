"""Hacking daemon control loop.

Each tick refreshes the node catalog from telemetry, reconciles the
availability trackers and effect queue against it, runs the privilege
pass, sweeps expired effects, and assigns one order per idle worker.
Decisions go to the executor; the daemon never waits on them.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from collections.abc import Callable
from pathlib import Path

import yaml

from hack_daemon.availability import UnknownNodeError
from hack_daemon.catalog import NodeCatalog, Telemetry
from hack_daemon.daemon_config import DaemonConfig, Mode, load_config
from hack_daemon.escalation import Escalator, escalate_privileges
from hack_daemon.market import rank_stock_targets
from hack_daemon.order_assigner import (
    DispatchRequest,
    Executor,
    ModeController,
    OrderAssigner,
    SchedulerContext,
)
from hack_daemon.snapshot import FileTelemetry, JsonLinesExecutor

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("ops") / "daemon-config.yaml"


def monotonic_ms() -> float:
    return time.monotonic() * 1000


class Scheduler:
    """Owns the scheduling context and drives it one tick at a time."""

    def __init__(
        self,
        config: DaemonConfig,
        telemetry: Telemetry,
        executor: Executor,
        *,
        escalator: Escalator | None = None,
        clock: Callable[[], float] = monotonic_ms,
        controller: ModeController | None = None,
    ) -> None:
        self.config = config
        self.telemetry = telemetry
        self.escalator = escalator
        self.controller = controller or ModeController(config.mode)
        self.assigner = OrderAssigner(self.controller)
        self.ctx = SchedulerContext(
            config=config,
            catalog=NodeCatalog(config),
            executor=executor,
            clock=clock,
        )

    @property
    def catalog(self) -> NodeCatalog:
        return self.ctx.catalog

    # -- setup -------------------------------------------------------------

    def prepare(self) -> None:
        """Kill leftover worker scripts and start every node from zero."""
        logger.debug("Preparing all servers")
        self.catalog.refresh(self.telemetry.snapshot())
        for worker in self.catalog.eligible_workers():
            self.ctx.executor.kill_all(worker.hostname)
        for hostname in self.ctx.workers.nodes:
            self.ctx.workers.remove(hostname)
        for hostname in self.ctx.targets.nodes:
            self.ctx.targets.remove(hostname)
            self.ctx.effects.drop_target(hostname)
        self.reconcile()

    def reconcile(self) -> None:
        """Match trackers and queued effects to the current catalog."""
        workers, targets, effects = self.ctx.workers, self.ctx.targets, self.ctx.effects

        for hostname in workers.nodes - set(self.catalog.workers):
            logger.info("Worker %s disappeared; dropping its bookings", hostname)
            workers.remove(hostname)
            effects.drop_assignee(hostname)
        for hostname in targets.nodes - set(self.catalog.targets):
            targets.remove(hostname)
            effects.drop_target(hostname)

        for hostname in set(self.catalog.workers) - workers.nodes:
            workers.add_node(hostname)
        for hostname in set(self.catalog.targets) - targets.nodes:
            targets.add_node(hostname)

    # -- tick --------------------------------------------------------------

    def _apply_mode_command(self) -> None:
        if not self.config.mode_file:
            return
        path = Path(self.config.mode_file)
        if not path.is_file():
            return
        try:
            text = path.read_text().strip()
        except OSError:
            logger.warning("Cannot read mode file: %s", path)
            return
        if not text:
            return
        try:
            mode = Mode.parse(text)
        except ValueError:
            logger.warning("Ignoring unknown mode %r in %s", text, path)
            return
        if mode is not self.controller.mode:
            self.controller.set_mode(mode)

    def tick(self) -> dict[str, list[DispatchRequest]]:
        """Run one scheduling pass.

        Returns:
            Worker hostname -> requests dispatched for it this tick.
        """
        self._apply_mode_command()

        logger.debug("Updating server lists")
        self.catalog.refresh(self.telemetry.snapshot())
        self.reconcile()

        if self.escalator is not None:
            logger.debug("Trying to gain root on new servers")
            escalate_privileges(self.catalog, self.escalator)

        self.ctx.effects.expire_due(self.ctx.now())

        if self.controller.mode is Mode.STOCK:
            self.ctx.stock_targets = rank_stock_targets(self.catalog)
        else:
            self.ctx.stock_targets = []

        return self.assigner.assign_all(self.ctx)

    def run_forever(self, ticks: int | None = None) -> None:
        """Tick every ``timing.tick_interval_ms`` until ``ticks`` have run.

        Errors inside a tick are logged and the loop carries on, except
        UnknownNodeError, which means the trackers and catalog disagree.
        """
        interval = self.config.timing.tick_interval_ms / 1000
        completed = 0
        while ticks is None or completed < ticks:
            try:
                self.tick()
            except UnknownNodeError:
                raise
            except Exception:
                logger.exception("Scheduling tick failed")
            completed += 1
            if ticks is None or completed < ticks:
                time.sleep(interval)


# ---------------------------------------------------------------------------
# CLI entrypoint
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hack-daemon",
        description=(
            "Controls the flow of all hacking scripts by assigning jobs. "
            "Has 4 modes: normal, stock market, XP farm, and share."
        ),
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Daemon config YAML (default: {DEFAULT_CONFIG_PATH} if present)",
    )
    parser.add_argument(
        "--snapshot",
        type=Path,
        required=True,
        help="Cluster snapshot file re-read every tick",
    )
    modes = parser.add_mutually_exclusive_group()
    modes.add_argument("--normal-mode", action="store_true", help="Normal hacking mode")
    modes.add_argument(
        "--stock-mode", action="store_true", help="Stock market influence mode"
    )
    modes.add_argument("--xp-farm-mode", action="store_true", help="XP farm mode")
    modes.add_argument("--share-mode", action="store_true", help="Share all RAM mode")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="More verbose logging"
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Debug logging")
    parser.add_argument(
        "--ticks", type=int, default=None, help="Stop after N ticks (default: forever)"
    )
    return parser


def _mode_from_args(args: argparse.Namespace) -> Mode | None:
    if args.normal_mode:
        return Mode.NORMAL
    if args.stock_mode:
        return Mode.STOCK
    if args.xp_farm_mode:
        return Mode.XP_FARM
    if args.share_mode:
        return Mode.SHARE
    return None


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint for the hacking daemon.

    Usage:
        python -m hack_daemon.daemon --snapshot cluster.yaml [--stock-mode]

    Dispatch decisions are printed to stdout as JSON lines; logs go to
    stderr. Exit code:
        0 = finished the requested ticks or interrupted
        1 = configuration error or tracker/catalog inconsistency
    """
    args = _build_parser().parse_args(argv)

    level = logging.WARNING
    if args.verbose:
        level = logging.INFO
    if args.debug:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    config_path = args.config
    if config_path is None and DEFAULT_CONFIG_PATH.is_file():
        config_path = DEFAULT_CONFIG_PATH
    try:
        config = load_config(config_path) if config_path else DaemonConfig()
    except (OSError, yaml.YAMLError, ValueError) as exc:
        logger.error("Cannot load config %s: %s", config_path, exc)
        return 1

    controller = ModeController(_mode_from_args(args) or config.mode)
    executor = JsonLinesExecutor()
    scheduler = Scheduler(
        config,
        FileTelemetry(args.snapshot),
        executor,
        escalator=executor,
        controller=controller,
    )

    logger.info("Hacking daemon started in %s mode", controller.mode.value)
    try:
        scheduler.prepare()
        scheduler.run_forever(args.ticks)
    except KeyboardInterrupt:
        logger.info("Interrupted; stopping")
    except UnknownNodeError:
        logger.exception("Availability trackers out of sync with the catalog")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
