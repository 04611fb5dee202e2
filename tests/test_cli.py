"""
Tests for the fleet-health command line.
"""

import argparse
import json
from unittest.mock import AsyncMock, patch

import pytest

from fleet_health._types import (
    CheckResult,
    FailureKind,
    FailureRecord,
    FleetReport,
    Host,
    HostReport,
    ReachabilityStatus,
)
from fleet_health.aggregator import aggregate
from fleet_health.checks import CheckRegistry
from fleet_health.cli import (
    EXIT_CONFIG_ERROR,
    EXIT_INCOMPLETE,
    EXIT_INVARIANT_VIOLATION,
    EXIT_OK,
    apply_overrides,
    main,
    render_text,
    run_fleet,
)
from fleet_health.config import FleetConfig
from fleet_health.exceptions import AggregationInvariantViolation
from fleet_health.inventory import Inventory

from conftest import FakeSessionFactory, StaticCheck


UP = ReachabilityStatus(network_reachable=True, management_reachable=True)


def healthy_report():
    return aggregate(
        [HostReport(host=Host(name="DC01"), reachability=UP, results={
            "os_info": CheckResult.success("os_info", {"caption": "Windows Server 2022"}),
        })],
        [FailureRecord(host=Host(name="OLD01"), kind=FailureKind.IGNORED)],
    )


def incomplete_report():
    return aggregate(
        [HostReport(host=Host(name="DC01"), reachability=UP, results={
            "dcdiag": CheckResult.failed("dcdiag", "boom"),
        })],
        [FailureRecord(host=Host(name="FS01"), kind=FailureKind.UNREACHABLE, error="no echo reply")],
    )


@pytest.fixture
def inventory_file(tmp_path):
    path = tmp_path / "inventory.yaml"
    path.write_text("hosts:\n  - DC01\n  - OLD01\nignore:\n  - OLD01\n")
    return path


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("FLEET_HEALTH_LOG_LEVEL", "FLEET_HEALTH_CONCURRENCY"):
        monkeypatch.delenv(var, raising=False)


class TestMain:
    """Tests for main exit codes and output."""

    def test_list_checks(self, capsys):
        assert main(["--list-checks"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "os_info:" in out
        assert "dcdiag:" in out

    def test_inventory_required(self):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 2

    def test_missing_inventory_file(self, tmp_path):
        assert main(["--inventory", str(tmp_path / "nope.yaml")]) == EXIT_CONFIG_ERROR

    def test_bad_config(self, tmp_path, inventory_file):
        config = tmp_path / "fleet.yaml"
        config.write_text("concurrency: 0\n")
        assert main(["--inventory", str(inventory_file), "--config", str(config)]) == EXIT_CONFIG_ERROR

    def test_unknown_check(self, inventory_file):
        assert main(["--inventory", str(inventory_file), "--only-check", "bogus"]) == EXIT_CONFIG_ERROR

    def test_healthy_run_writes_json(self, inventory_file, capsys):
        with patch("fleet_health.cli.run_fleet", AsyncMock(return_value=healthy_report())) as run:
            code = main(["--inventory", str(inventory_file), "--ignore", "DC99"])

        assert code == EXIT_OK
        data = json.loads(capsys.readouterr().out)
        assert data["summary"]["ignored"] == 1
        assert data["host_reports"][0]["host"]["name"] == "DC01"
        inventory, registry, ignore = run.call_args.args[1:4]
        assert [h.name for h in inventory.hosts] == ["DC01", "OLD01"]
        assert ignore == ["DC99"]
        assert len(registry) == 9

    def test_incomplete_run(self, inventory_file, tmp_path):
        output = tmp_path / "out" / "report.json"
        with patch("fleet_health.cli.run_fleet", AsyncMock(return_value=incomplete_report())):
            code = main(["--inventory", str(inventory_file), "--output", str(output)])

        assert code == EXIT_INCOMPLETE
        data = json.loads(output.read_text())
        assert {e["host"] for e in data["exceptions"]} == {"DC01", "FS01"}

    def test_invariant_violation(self, inventory_file):
        error = AggregationInvariantViolation(missing=["DC01"])
        with patch("fleet_health.cli.run_fleet", AsyncMock(side_effect=error)):
            assert main(["--inventory", str(inventory_file)]) == EXIT_INVARIANT_VIOLATION

    def test_skip_check(self, inventory_file):
        with patch("fleet_health.cli.run_fleet", AsyncMock(return_value=healthy_report())) as run:
            main(["--inventory", str(inventory_file), "--skip-check", "dcdiag"])

        registry = run.call_args.args[2]
        assert "dcdiag" not in registry

    def test_text_format(self, inventory_file, capsys):
        with patch("fleet_health.cli.run_fleet", AsyncMock(return_value=incomplete_report())):
            main(["--inventory", str(inventory_file), "--format", "text"])

        out = capsys.readouterr().out
        assert out.startswith("Fleet health INCOMPLETE")
        assert "dcdiag: FAIL (boom)" in out
        assert "FS01: unreachable (no echo reply)" in out


class TestOverrides:
    """Tests for command-line config overrides."""

    def _args(self, **kwargs):
        defaults = dict(concurrency=None, probe_timeout=None, check_timeout=None, verbose=False)
        defaults.update(kwargs)
        return argparse.Namespace(**defaults)

    def test_no_overrides_returns_same_config(self):
        config = FleetConfig()
        assert apply_overrides(config, self._args()) is config

    def test_overrides_applied(self):
        config = apply_overrides(FleetConfig(), self._args(concurrency=3, probe_timeout=1.5, verbose=True))
        assert config.concurrency == 3
        assert config.probe_timeout_seconds == 1.5
        assert config.effective_log_level == "DEBUG"

    def test_invalid_override_rejected(self):
        with pytest.raises(ValueError):
            apply_overrides(FleetConfig(), self._args(probe_timeout=-1))


class TestRunFleet:
    """Tests for run_fleet wiring."""

    @pytest.mark.asyncio
    async def test_end_to_end(self):
        config = FleetConfig(check_timeout_seconds=1, session_timeout_seconds=1)
        inventory = Inventory(hosts=[Host(name="DC01"), Host(name="OLD01")], ignore_list=["OLD01"])
        registry = CheckRegistry([StaticCheck("os_info")])
        factory = FakeSessionFactory()

        with patch("fleet_health.cli.ReachabilityProber.probe", AsyncMock(return_value=UP)):
            report = await run_fleet(config, inventory, registry, [], session_factory=factory)

        assert isinstance(report, FleetReport)
        assert [r.host.name for r in report.host_reports] == ["DC01"]
        assert report.failures[0].kind == FailureKind.IGNORED
        assert factory.opened == ["DC01"]


def test_render_text_healthy():
    text = render_text(healthy_report())
    assert text.startswith("Fleet health OK")
    assert "OLD01: ignored" in text
