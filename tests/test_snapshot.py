"""Tests for hack_daemon.snapshot -- file telemetry and JSON-lines executor."""

import io
import json

import pytest
import yaml

from hack_daemon.order_assigner import DispatchRequest, Executor
from hack_daemon.snapshot import FileTelemetry, JsonLinesExecutor, parse_snapshot

SNAPSHOT = {
    "player": {"hacking": 42},
    "servers": [
        {"hostname": "home", "ram_max": 64, "ram_used": 8, "cores": 4, "has_root": True},
        {"hostname": "pserv-0", "ram_max": 32, "has_root": True, "purchased": True},
        {
            "hostname": "joesguns",
            "ram_max": 16,
            "has_root": True,
            "security": 12,
            "security_min": 5,
            "money": 100,
            "money_max": 2000,
            "hack_time": 1500,
            "grow_time": 4800,
            "weaken_time": 6000,
            "required_hacking": 10,
            "hack_fraction": 0.004,
            "growth_log": 0.02,
            "owner": "nobody",
        },
        {"hostname": "CSEC", "ram_max": 0, "required_ports": 1},
    ],
    "market": [{"symbol": "JGN", "long": {"shares": 5, "price": 1.5}}],
    "symbol_hosts": {"JGN": "joesguns"},
}


@pytest.fixture
def snapshot_file(tmp_path):
    path = tmp_path / "cluster.yaml"
    path.write_text(yaml.dump(SNAPSHOT))
    return path


class TestParseSnapshot:
    def test_player(self):
        assert parse_snapshot(SNAPSHOT).player.hacking == 42

    def test_workers_are_servers_with_ram(self):
        workers = {w.hostname: w for w in parse_snapshot(SNAPSHOT).workers}
        assert set(workers) == {"home", "pserv-0", "joesguns"}
        assert workers["home"].ram_free == 56
        assert workers["home"].cores == 4
        assert workers["pserv-0"].purchased

    def test_worker_own_state_flags(self):
        workers = {w.hostname: w for w in parse_snapshot(SNAPSHOT).workers}
        assert not workers["joesguns"].security_at_min
        assert not workers["joesguns"].money_at_max
        assert workers["home"].security_at_min
        assert workers["home"].money_at_max

    def test_targets_exclude_home_and_purchased(self):
        targets = {t.hostname: t for t in parse_snapshot(SNAPSHOT).targets}
        assert set(targets) == {"joesguns", "CSEC"}
        joesguns = targets["joesguns"]
        assert joesguns.security == 12
        assert joesguns.money_max == 2000
        assert joesguns.required_hacking == 10
        assert targets["CSEC"].required_ports == 1
        assert targets["CSEC"].money_max == 0.0

    def test_market(self):
        snapshot = parse_snapshot(SNAPSHOT)
        assert snapshot.market[0].position_value == 7.5
        assert snapshot.symbol_hosts == {"JGN": "joesguns"}

    def test_empty_document(self):
        snapshot = parse_snapshot({})
        assert snapshot.workers == []
        assert snapshot.targets == []
        assert snapshot.market is None

    def test_missing_hostname(self):
        with pytest.raises(KeyError):
            parse_snapshot({"servers": [{"ram_max": 8}]})


class TestFileTelemetry:
    def test_reads_file(self, snapshot_file):
        snapshot = FileTelemetry(snapshot_file).snapshot()
        assert snapshot.player.hacking == 42

    def test_rereads_each_call(self, snapshot_file):
        telemetry = FileTelemetry(snapshot_file)
        telemetry.snapshot()
        snapshot_file.write_text(yaml.dump({"player": {"hacking": 43}}))
        assert telemetry.snapshot().player.hacking == 43

    def test_missing_file_keeps_last(self, snapshot_file, caplog):
        telemetry = FileTelemetry(snapshot_file)
        first = telemetry.snapshot()
        snapshot_file.unlink()
        with caplog.at_level("WARNING"):
            assert telemetry.snapshot() is first
        assert "Cannot read snapshot" in caplog.text

    def test_malformed_file_keeps_last(self, snapshot_file):
        telemetry = FileTelemetry(snapshot_file)
        first = telemetry.snapshot()
        snapshot_file.write_text("servers: [unclosed\n")
        assert telemetry.snapshot() is first

    def test_non_mapping_keeps_last(self, snapshot_file):
        telemetry = FileTelemetry(snapshot_file)
        first = telemetry.snapshot()
        snapshot_file.write_text("- just\n- a list\n")
        assert telemetry.snapshot() is first

    def test_bad_server_entry_keeps_last(self, snapshot_file):
        telemetry = FileTelemetry(snapshot_file)
        first = telemetry.snapshot()
        snapshot_file.write_text(yaml.dump({"servers": [{"ram_max": 8}]}))
        assert telemetry.snapshot() is first

    def test_no_file_ever(self, tmp_path):
        snapshot = FileTelemetry(tmp_path / "missing.yaml").snapshot()
        assert snapshot.workers == []


class TestJsonLinesExecutor:
    def _lines(self, stream):
        return [json.loads(line) for line in stream.getvalue().splitlines()]

    def test_satisfies_protocol(self):
        assert isinstance(JsonLinesExecutor(io.StringIO()), Executor)

    def test_dispatch(self):
        stream = io.StringIO()
        executor = JsonLinesExecutor(stream)
        request = DispatchRequest("grow", "home", 12, "joesguns", 2500.0, True)
        assert executor.dispatch(request) is True
        assert self._lines(stream) == [
            {
                "action": "dispatch",
                "operation": "grow",
                "worker": "home",
                "threads": 12,
                "target": "joesguns",
                "start_time": 2500.0,
                "stock_influence": True,
            }
        ]

    def test_kill_and_escalation_records(self):
        stream = io.StringIO()
        executor = JsonLinesExecutor(stream)
        assert executor.kill("home", "share") == 0.0
        executor.kill_all("pserv-0")
        assert executor.open_ports("CSEC") == 0
        assert executor.grant_root("CSEC") is True
        assert [r["action"] for r in self._lines(stream)] == [
            "kill",
            "kill_all",
            "open_ports",
            "nuke",
        ]

    def test_root_requested_once_per_host(self):
        stream = io.StringIO()
        executor = JsonLinesExecutor(stream)
        assert executor.grant_root("CSEC") is True
        assert executor.grant_root("CSEC") is False
        assert executor.grant_root("avmnite-02h") is True
        nukes = [r["target"] for r in self._lines(stream) if r["action"] == "nuke"]
        assert nukes == ["CSEC", "avmnite-02h"]
