"""
Command-line entry point.

    fleet-health --inventory hosts.yaml --config fleet.yaml --output report.json

Exit codes:
    0  every non-ignored host was fully checked
    1  at least one host or check could not be completed
    2  configuration or inventory error
    3  fleet report invariant violated
"""

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from ._types import FleetReport
from .checks import CheckRegistry, default_registry
from .config import FleetConfig, load_config
from .dispatcher import FleetDispatcher
from .exceptions import AggregationInvariantViolation, ConfigError
from .executor import HostCheckExecutor
from .inventory import Inventory, load_inventory
from .reachability import ReachabilityProber
from .session import SessionFactory, winrm_session_factory

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INCOMPLETE = 1
EXIT_CONFIG_ERROR = 2
EXIT_INVARIANT_VIOLATION = 3


def build_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="fleet-health",
        description="Read-only health checks across a Windows server fleet",
    )
    parser.add_argument(
        "--inventory",
        type=Path,
        help="Inventory YAML with the hosts to check"
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Run configuration YAML (defaults + env vars if not specified)"
    )
    parser.add_argument(
        "--ignore",
        action="append",
        default=[],
        metavar="HOST",
        help="Skip a host by name or address (repeatable)"
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        help="Max simultaneous host pipelines"
    )
    parser.add_argument(
        "--probe-timeout",
        type=float,
        help="Reachability probe timeout in seconds"
    )
    parser.add_argument(
        "--check-timeout",
        type=float,
        help="Default per-check timeout in seconds"
    )
    parser.add_argument(
        "--only-check",
        action="append",
        metavar="CHECK",
        help="Run only this check (repeatable)"
    )
    parser.add_argument(
        "--skip-check",
        action="append",
        metavar="CHECK",
        help="Do not run this check (repeatable)"
    )
    parser.add_argument(
        "--list-checks",
        action="store_true",
        help="List available checks and exit"
    )
    parser.add_argument(
        "--format",
        choices=["json", "text"],
        default="json",
        help="Report format"
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="Write the report to a file instead of stdout"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Debug logging"
    )
    return parser


def apply_overrides(config: FleetConfig, args) -> FleetConfig:
    """Apply command-line overrides on top of the loaded config."""
    updates = {}
    if args.concurrency is not None:
        updates["concurrency"] = args.concurrency
    if args.probe_timeout is not None:
        updates["probe_timeout_seconds"] = args.probe_timeout
    if args.check_timeout is not None:
        updates["check_timeout_seconds"] = args.check_timeout
    if args.verbose:
        updates["verbose"] = True
    if not updates:
        return config
    # Round-trip through validation so bad CLI values are rejected like file values
    return FleetConfig(**{**config.model_dump(), **updates})


def render_text(report: FleetReport) -> str:
    summary = report.summary
    lines = [
        f"Fleet health {'OK' if report.healthy else 'INCOMPLETE'}",
        f"  Hosts: {summary.total_hosts} total, {summary.fully_checked} fully checked, "
        f"{summary.partially_failed} partially failed, {summary.unreachable} unreachable, "
        f"{summary.session_failures} session failures, {summary.ignored} ignored",
        f"  Checks: {summary.checks_succeeded} succeeded, {summary.checks_skipped} skipped, "
        f"{summary.checks_failed} failed, {summary.checks_with_warnings} with warnings",
    ]
    for host in report.host_reports:
        lines.append(f"  {host.host.name}: {host.status.value}")
        for result in host.results.values():
            if result.is_failed:
                lines.append(f"    {result.check}: FAIL ({result.error})")
            for warning in result.warnings:
                lines.append(f"    {result.check}: WARN {warning}")
    for failure in report.failures:
        extra = f" ({failure.error})" if failure.error else ""
        lines.append(f"  {failure.host.name}: {failure.kind.value}{extra}")
    for finding in report.topology_findings:
        lines.append(f"  [{finding.severity.value}] {finding.source}: {finding.message}")
    return "\n".join(lines) + "\n"


def write_report(report: FleetReport, fmt: str, output: Optional[Path]) -> None:
    if fmt == "text":
        content = render_text(report)
    else:
        content = json.dumps(report.to_dict(), indent=2, default=str) + "\n"

    if output is None:
        sys.stdout.write(content)
        return

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(content)
    logger.info(f"Report written to {output}")


async def run_fleet(
    config: FleetConfig,
    inventory: Inventory,
    registry: CheckRegistry,
    ignore: List[str],
    session_factory: Optional[SessionFactory] = None,
) -> FleetReport:
    """Wire the pipeline together and run it once."""
    prober = ReachabilityProber(config)
    executor = HostCheckExecutor(
        registry, session_factory or winrm_session_factory(config), config
    )
    dispatcher = FleetDispatcher(prober, executor, config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, dispatcher.request_stop)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform or outside the main thread
            pass

    try:
        return await dispatcher.run(
            inventory.hosts,
            ignore_list=list(inventory.ignore_list) + list(ignore),
            topology_findings=inventory.findings,
        )
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for fleet health runs."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        config = apply_overrides(load_config(args.config), args)
        registry = default_registry(config).select(args.only_check, args.skip_check)
    except (ConfigError, FileNotFoundError, ValueError) as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    logging.getLogger().setLevel(config.effective_log_level)

    if args.list_checks:
        for check in registry.describe():
            print(f"{check['name']}: {check['description']}")
        return EXIT_OK

    if args.inventory is None:
        parser.error("--inventory is required")

    try:
        inventory = load_inventory(args.inventory)
    except (ConfigError, FileNotFoundError) as e:
        logger.error(f"Inventory error: {e}")
        return EXIT_CONFIG_ERROR

    if not inventory.hosts:
        logger.warning("Inventory contains no hosts")

    try:
        report = asyncio.run(run_fleet(config, inventory, registry, args.ignore))
    except AggregationInvariantViolation as e:
        logger.error(str(e))
        return EXIT_INVARIANT_VIOLATION
    except ValueError as e:
        logger.error(f"Invalid host list: {e}")
        return EXIT_CONFIG_ERROR

    write_report(report, args.format, args.output)
    return EXIT_OK if report.healthy else EXIT_INCOMPLETE


if __name__ == "__main__":
    sys.exit(main())
