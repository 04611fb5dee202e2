"""
Tests for per-host check execution.
"""

import asyncio

import pytest

from fleet_health._types import CheckErrorKind, CheckStatus, FailureKind, FailureRecord, HostReport, HostStatus
from fleet_health.checks import CheckRegistry
from fleet_health.exceptions import RemoteCommandError
from fleet_health.executor import HostCheckExecutor

from conftest import FakeSessionFactory, StaticCheck


def dc_only(host):
    return host.is_domain_controller


class TestRunChecks:
    """Tests for HostCheckExecutor.run_checks."""

    @pytest.mark.asyncio
    async def test_all_checks_succeed(self, config, reachable, dc_host, session_factory):
        registry = CheckRegistry([StaticCheck("os_info"), StaticCheck("services", warnings=["service DFSR is Stopped"])])
        executor = HostCheckExecutor(registry, session_factory, config)

        report = await executor.run_checks(dc_host, reachable)

        assert isinstance(report, HostReport)
        assert report.status == HostStatus.FULLY_CHECKED
        assert list(report.results) == ["os_info", "services"]
        assert report.results["services"].warnings == ("service DFSR is Stopped",)
        assert report.reachability is reachable

    @pytest.mark.asyncio
    async def test_one_session_per_host(self, config, reachable, dc_host, session_factory):
        registry = CheckRegistry([StaticCheck("a"), StaticCheck("b"), StaticCheck("c")])
        executor = HostCheckExecutor(registry, session_factory, config)

        await executor.run_checks(dc_host, reachable)

        assert session_factory.opened == [dc_host.name]
        assert session_factory.closed == [dc_host.name]
        assert session_factory.sessions[dc_host.name].closed

    @pytest.mark.asyncio
    async def test_check_failure_is_isolated(self, config, reachable, dc_host, session_factory):
        after = StaticCheck("after")
        registry = CheckRegistry([
            StaticCheck("broken", error=RemoteCommandError(dc_host.name, 1, "Access is denied")),
            after,
        ])
        executor = HostCheckExecutor(registry, session_factory, config)

        report = await executor.run_checks(dc_host, reachable)

        assert report.results["broken"].status == CheckStatus.FAILED
        assert report.results["broken"].error_kind == CheckErrorKind.ERROR
        assert "Access is denied" in report.results["broken"].error
        assert report.results["after"].succeeded
        assert after.calls == [dc_host.name]
        assert report.status == HostStatus.PARTIALLY_FAILED

    @pytest.mark.asyncio
    async def test_check_timeout(self, config, reachable, dc_host, session_factory):
        registry = CheckRegistry([
            StaticCheck("slow", delay=5, timeout_seconds=0.05),
            StaticCheck("fast"),
        ])
        executor = HostCheckExecutor(registry, session_factory, config)

        report = await executor.run_checks(dc_host, reachable)

        slow = report.results["slow"]
        assert slow.is_failed
        assert slow.error_kind == CheckErrorKind.TIMEOUT
        assert "timed out after 0.05s" in slow.error
        assert report.results["fast"].succeeded

    @pytest.mark.asyncio
    async def test_not_applicable_is_skipped_not_run(self, config, reachable, member_host, session_factory):
        dcdiag = StaticCheck("dcdiag", applies=dc_only, error=RuntimeError("would fail"))
        registry = CheckRegistry([StaticCheck("os_info"), dcdiag])
        executor = HostCheckExecutor(registry, session_factory, config)

        report = await executor.run_checks(member_host, reachable)

        assert report.results["dcdiag"].status == CheckStatus.SKIPPED
        assert dcdiag.calls == []
        assert report.status == HostStatus.FULLY_CHECKED

    @pytest.mark.asyncio
    async def test_session_failure_runs_no_checks(self, config, reachable, member_host, failing_session_factory):
        check = StaticCheck("os_info")
        executor = HostCheckExecutor(CheckRegistry([check]), failing_session_factory, config)

        outcome = await executor.run_checks(member_host, reachable)

        assert isinstance(outcome, FailureRecord)
        assert outcome.kind == FailureKind.SESSION_SETUP_FAILED
        assert "access denied" in outcome.error
        assert outcome.reachability is reachable
        assert check.calls == []

    @pytest.mark.asyncio
    async def test_session_setup_timeout(self, config, reachable, dc_host):
        from contextlib import asynccontextmanager

        @asynccontextmanager
        async def hanging_factory(host):
            await asyncio.sleep(10)
            yield None

        config.session_timeout_seconds = 0.05
        executor = HostCheckExecutor(CheckRegistry([StaticCheck("os_info")]), hanging_factory, config)

        outcome = await executor.run_checks(dc_host, reachable)

        assert outcome.kind == FailureKind.SESSION_SETUP_FAILED
        assert "timed out" in outcome.error

    @pytest.mark.asyncio
    async def test_close_error_keeps_results(self, config, reachable, dc_host):
        factory = FakeSessionFactory(close_error=RuntimeError("transport gone"))
        executor = HostCheckExecutor(CheckRegistry([StaticCheck("os_info")]), factory, config)

        report = await executor.run_checks(dc_host, reachable)

        assert isinstance(report, HostReport)
        assert report.results["os_info"].succeeded
        assert factory.closed == [dc_host.name]

    @pytest.mark.asyncio
    async def test_stop_marks_remaining_checks_cancelled(self, config, reachable, dc_host, session_factory):
        first = StaticCheck("first")
        second = StaticCheck("second")
        registry = CheckRegistry([first, second])
        executor = HostCheckExecutor(registry, session_factory, config)

        report = await executor.run_checks(dc_host, reachable, should_stop=lambda: bool(first.calls))

        assert report.results["first"].succeeded
        assert report.results["second"].error_kind == CheckErrorKind.CANCELLED
        assert second.calls == []
        assert session_factory.closed == [dc_host.name]


class TestRunCheck:
    """Tests for HostCheckExecutor.run_check."""

    @pytest.mark.asyncio
    async def test_applicability_error_is_failure(self, config, dc_host, session_factory):
        def explode(host):
            raise KeyError("site")

        executor = HostCheckExecutor(CheckRegistry([]), session_factory, config)
        result = await executor.run_check(StaticCheck("odd", applies=explode), dc_host, None)

        assert result.is_failed
        assert "applicability" in result.error

    @pytest.mark.asyncio
    async def test_evaluation_error_is_failure(self, config, dc_host, session_factory):
        class BadEvaluator(StaticCheck):
            def evaluate(self, payload):
                raise TypeError("unexpected payload")

        executor = HostCheckExecutor(CheckRegistry([]), session_factory, config)
        result = await executor.run_check(BadEvaluator("odd"), dc_host, None)

        assert result.is_failed
        assert "could not evaluate" in result.error

    @pytest.mark.asyncio
    async def test_default_timeout_from_config(self, config, dc_host, session_factory):
        config.check_timeout_seconds = 0.05
        executor = HostCheckExecutor(CheckRegistry([]), session_factory, config)

        result = await executor.run_check(StaticCheck("slow", delay=5), dc_host, None)

        assert result.error_kind == CheckErrorKind.TIMEOUT
