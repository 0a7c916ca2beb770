"""Tests for hack_daemon.catalog -- node records and filtering."""

import math

import pytest

from hack_daemon.catalog import (
    ClusterSnapshot,
    NodeCatalog,
    PlayerSnapshot,
    TargetNode,
    WorkerNode,
)
from hack_daemon.daemon_config import DaemonConfig


def _target(hostname="n00dles", **overrides):
    data = dict(
        hostname=hostname,
        security=10.0,
        security_min=10.0,
        money=1000.0,
        money_max=1000.0,
        hack_time=1000.0,
        grow_time=3200.0,
        weaken_time=4000.0,
        has_root=True,
        hack_fraction=0.01,
        growth_log=0.05,
    )
    data.update(overrides)
    return TargetNode(**data)


@pytest.fixture
def catalog():
    c = NodeCatalog(DaemonConfig(excluded_workers=("home",)))
    c.refresh(
        ClusterSnapshot(
            player=PlayerSnapshot(hacking=50),
            workers=[
                WorkerNode("home", ram_max=64),
                WorkerNode("pserv-0", ram_max=32, purchased=True),
                WorkerNode("n00dles", ram_max=4, has_root=False),
                WorkerNode("hacknet-node-0", ram_max=16),
                WorkerNode("empty", ram_max=0),
            ],
            targets=[
                _target("n00dles", money_max=1000.0),
                _target("joesguns", money_max=50_000.0),
                _target("phantasy", required_hacking=100, money_max=1e9),
                _target("locked", has_root=False, money_max=1e9),
                _target("darkweb", money_max=0.0),
                _target("hacknet-node-0", money_max=1e9),
            ],
        )
    )
    return c


class TestWorkerNode:
    def test_ram_free(self):
        assert WorkerNode("a", ram_max=32, ram_used=8).ram_free == 24

    def test_ram_free_never_negative(self):
        assert WorkerNode("a", ram_max=8, ram_used=10).ram_free == 0


class TestTargetNode:
    def test_state_flags(self):
        assert _target().security_is_min
        assert _target().money_is_max
        assert not _target(security=11.0).security_is_min
        assert not _target(money=10.0).money_is_max

    def test_min_times_fall_back_to_current(self):
        t = _target(weaken_time=9000.0)
        assert t.min_weaken_time == 9000.0
        t = _target(weaken_time=9000.0, weaken_time_min=4000.0)
        assert t.min_weaken_time == 4000.0
        assert _target(hack_time_min=700.0).min_hack_time == 700.0
        assert _target(grow_time_min=2000.0).min_grow_time == 2000.0

    def test_growth_threads_inverts_multiplier(self):
        t = _target()
        threads = t.growth_threads(2.0)
        assert threads == pytest.approx(math.log(2) / 0.05)
        assert t.grow_multiplier(10) == pytest.approx(math.exp(0.5))

    def test_cores_reduce_growth_threads(self):
        t = _target()
        assert t.growth_threads(2.0, cores=17) == pytest.approx(t.growth_threads(2.0) / 2)

    def test_growth_degenerate_inputs(self):
        assert _target().growth_threads(1.0) == 0.0
        assert _target(growth_log=0.0).growth_threads(2.0) == 0.0
        assert _target().grow_multiplier(0) == 1.0

    def test_attractiveness_prefers_richer(self):
        assert (
            _target(money_max=2000.0).hack_attractiveness
            > _target(money_max=1000.0).hack_attractiveness
        )

    def test_attractiveness_zero_fraction(self):
        assert _target(hack_fraction=0.0).hack_attractiveness == 0.0


class TestNodeCatalog:
    def test_prefix_exclusion(self, catalog):
        assert "hacknet-node-0" not in catalog.workers
        assert "hacknet-node-0" not in catalog.targets

    def test_node_ids(self, catalog):
        assert "home" in catalog.node_ids
        assert "joesguns" in catalog.node_ids

    def test_eligible_workers(self, catalog):
        names = [w.hostname for w in catalog.eligible_workers()]
        assert names == ["pserv-0"]

    def test_targets_by_hack_rating(self, catalog):
        names = [t.hostname for t in catalog.targets_by_hack_rating()]
        assert names == ["joesguns", "n00dles"]

    def test_target_lookup(self, catalog):
        assert catalog.target("joesguns").money_max == 50_000.0
        assert catalog.target("ghost") is None

    def test_refresh_replaces_records(self, catalog):
        catalog.refresh(ClusterSnapshot(workers=[WorkerNode("pserv-1", ram_max=8)]))
        assert set(catalog.workers) == {"pserv-1"}
        assert catalog.targets == {}
        assert catalog.player.hacking == 1

    def test_mark_rooted_lasts_until_refresh(self, catalog):
        catalog.mark_rooted("locked")
        assert catalog.target("locked").has_root
        catalog.mark_rooted("ghost")
        assert "ghost" not in catalog.targets
        catalog.refresh(ClusterSnapshot(targets=[_target("locked", has_root=False)]))
        assert not catalog.target("locked").has_root
