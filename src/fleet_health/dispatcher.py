"""
Fleet dispatcher.

Fans out the per-host pipeline (probe, then checks) across the fleet with
a bounded number of concurrent pipelines, collects every outcome and hands
them to the aggregator.

Every input host yields exactly one outcome: a HostReport, or a
FailureRecord tagged with why it was not checked. One host's failure never
prevents another host's pipeline from running.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from ._types import (
    FailureKind,
    FailureRecord,
    FleetReport,
    Host,
    HostReport,
    TopologyFinding,
    host_sort_key,
    now_utc,
)
from .aggregator import aggregate
from .config import FleetConfig
from .executor import HostCheckExecutor
from .reachability import ReachabilityProber

logger = logging.getLogger(__name__)

Outcome = Union[HostReport, FailureRecord]


def find_duplicates(hosts: Sequence[Host]) -> List[str]:
    """Host names that appear more than once (case-insensitive)."""
    seen = set()
    duplicates = []
    for host in hosts:
        key = host_sort_key(host.name)
        if key in seen:
            duplicates.append(host.name)
        seen.add(key)
    return duplicates


def describe_outcome(outcome: Outcome) -> str:
    if isinstance(outcome, HostReport):
        return (
            f"{outcome.status.value}: {outcome.succeeded} succeeded, "
            f"{outcome.skipped} skipped, {outcome.failed} failed"
        )
    return outcome.kind.value


def split_ignored(
    hosts: Sequence[Host], ignore_list: Iterable[str]
) -> Tuple[List[Host], List[Host]]:
    """Partition hosts into (to_check, ignored) by full name or address."""
    tokens = [t for t in (t.strip() for t in ignore_list) if t]
    to_check: List[Host] = []
    ignored: List[Host] = []
    for host in hosts:
        if any(host.matches(t) for t in tokens):
            ignored.append(host)
        else:
            to_check.append(host)
    return to_check, ignored


class FleetDispatcher:
    """
    Run the health pipeline across a fleet.

    Usage:
        dispatcher = FleetDispatcher(prober, executor, config)
        report = await dispatcher.run(hosts)
    """

    def __init__(
        self,
        prober: ReachabilityProber,
        executor: HostCheckExecutor,
        config: FleetConfig,
    ):
        self.prober = prober
        self.executor = executor
        self.config = config
        self._stop = asyncio.Event()
        self._semaphore: Optional[asyncio.Semaphore] = None

    def request_stop(self) -> None:
        """
        Stop the run gracefully.

        Pipelines not yet started are recorded as cancelled. Running
        pipelines finish their current check and record the rest as
        cancelled.
        """
        if not self._stop.is_set():
            logger.info("Stop requested, finishing in-flight checks")
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def run(
        self,
        hosts: Sequence[Host],
        ignore_list: Iterable[str] = (),
        topology_findings: Iterable[TopologyFinding] = (),
    ) -> FleetReport:
        """
        Check every host and build the fleet report.

        Args:
            hosts: Hosts from topology discovery
            ignore_list: Extra names/addresses to skip, on top of config.ignore_list
            topology_findings: Directory-level findings passed through to the report

        Returns:
            FleetReport covering every input host exactly once

        Raises:
            ValueError: duplicate host names in the input
            AggregationInvariantViolation: an outcome was lost or duplicated
        """
        hosts = list(hosts)
        duplicates = find_duplicates(hosts)
        if duplicates:
            raise ValueError(f"Duplicate host names in input: {', '.join(duplicates)}")

        started_at = now_utc()
        to_check, ignored = split_ignored(
            hosts, list(self.config.ignore_list) + list(ignore_list)
        )

        concurrency = self.config.effective_concurrency(len(to_check))
        self._semaphore = asyncio.Semaphore(concurrency)
        logger.info(
            f"Checking {len(to_check)} hosts ({len(ignored)} ignored), "
            f"concurrency={concurrency}"
        )

        outcomes: List[Outcome] = [
            FailureRecord(host=h, kind=FailureKind.IGNORED, error="host is on the ignore list")
            for h in ignored
        ]
        if to_check:
            outcomes.extend(
                await asyncio.gather(*(self._run_host_pipeline(h) for h in to_check))
            )

        reports = [o for o in outcomes if isinstance(o, HostReport)]
        failures = [o for o in outcomes if isinstance(o, FailureRecord)]

        report = aggregate(reports, failures, topology_findings, expected_hosts=hosts)
        report = replace(report, started_at=started_at, finished_at=now_utc())

        summary = report.summary
        logger.info(
            f"Fleet run complete: {summary.fully_checked} fully checked, "
            f"{summary.partially_failed} partially failed, "
            f"{len(report.failures) - summary.ignored} not checked"
        )
        return report

    async def _run_host_pipeline(self, host: Host) -> Outcome:
        """Probe and check one host under the concurrency bound."""
        async with self._semaphore:
            if self._stop.is_set():
                return FailureRecord(
                    host=host,
                    kind=FailureKind.CANCELLED,
                    error="run stopped before host was checked",
                )
            logger.info(f"{host.name}: starting")
            try:
                outcome = await self._check_host(host)
            except Exception as e:
                logger.error(f"Pipeline for {host.name} failed: {e}", exc_info=True)
                outcome = FailureRecord(
                    host=host,
                    kind=FailureKind.PIPELINE_ERROR,
                    error=str(e) or type(e).__name__,
                )
            logger.info(f"{host.name}: finished ({describe_outcome(outcome)})")
            return outcome

    async def _check_host(self, host: Host) -> Outcome:
        status = await self.prober.probe(host)

        if not status.network_reachable:
            logger.info(f"{host.name}: unreachable ({status.network_error})")
            return FailureRecord(
                host=host,
                kind=FailureKind.UNREACHABLE,
                reachability=status,
                error=status.network_error,
            )

        if not status.management_reachable:
            logger.info(f"{host.name}: management unavailable ({status.management_error})")
            return FailureRecord(
                host=host,
                kind=FailureKind.MANAGEMENT_UNAVAILABLE,
                reachability=status,
                error=status.management_error,
            )

        return await self.executor.run_checks(host, status, should_stop=self._stop.is_set)
