"""Tests for hack_daemon.escalation -- the root access pass."""

from hack_daemon.catalog import ClusterSnapshot, NodeCatalog, PlayerSnapshot, TargetNode
from hack_daemon.daemon_config import DaemonConfig
from hack_daemon.escalation import Escalator, escalate_privileges


class FakeEscalator:
    def __init__(self, ports=0, grant=True):
        self.ports = ports
        self.grant = grant
        self.opened = []
        self.granted = []

    def open_ports(self, hostname):
        self.opened.append(hostname)
        return self.ports

    def grant_root(self, hostname):
        self.granted.append(hostname)
        return self.grant


def _target(hostname, **overrides):
    data = dict(
        hostname=hostname,
        security=5.0,
        security_min=1.0,
        money=0.0,
        money_max=1000.0,
        hack_time=1000.0,
        grow_time=3200.0,
        weaken_time=4000.0,
    )
    data.update(overrides)
    return TargetNode(**data)


def _catalog(targets, hacking=10):
    catalog = NodeCatalog(DaemonConfig())
    catalog.refresh(
        ClusterSnapshot(player=PlayerSnapshot(hacking=hacking), targets=targets)
    )
    return catalog


def test_fake_escalator_satisfies_protocol():
    assert isinstance(FakeEscalator(), Escalator)


def test_roots_target_without_port_requirement():
    escalator = FakeEscalator()
    rooted = escalate_privileges(_catalog([_target("n00dles")]), escalator)
    assert rooted == ["n00dles"]
    assert escalator.opened == []


def test_opens_ports_when_short():
    escalator = FakeEscalator(ports=2)
    catalog = _catalog([_target("phantasy", required_ports=2)])
    assert escalate_privileges(catalog, escalator) == ["phantasy"]
    assert escalator.opened == ["phantasy"]


def test_not_enough_ports():
    escalator = FakeEscalator(ports=1)
    catalog = _catalog([_target("phantasy", required_ports=2)])
    assert escalate_privileges(catalog, escalator) == []
    assert escalator.granted == []


def test_already_open_ports_count():
    escalator = FakeEscalator(ports=0)
    catalog = _catalog([_target("phantasy", required_ports=2, open_ports=2)])
    assert escalate_privileges(catalog, escalator) == ["phantasy"]


def test_skill_too_low():
    escalator = FakeEscalator()
    catalog = _catalog([_target("phantasy", required_hacking=50)], hacking=10)
    assert escalate_privileges(catalog, escalator) == []


def test_skips_rooted_and_home():
    escalator = FakeEscalator()
    catalog = _catalog([_target("home"), _target("n00dles", has_root=True)])
    assert escalate_privileges(catalog, escalator) == []
    assert escalator.granted == []


def test_failed_grant_not_reported():
    escalator = FakeEscalator(grant=False)
    assert escalate_privileges(_catalog([_target("n00dles")]), escalator) == []


def test_rooted_target_usable_for_rest_of_tick():
    catalog = _catalog([_target("n00dles")])
    escalate_privileges(catalog, FakeEscalator())
    assert catalog.target("n00dles").has_root
    assert [t.hostname for t in catalog.targets_by_hack_rating()] == ["n00dles"]
