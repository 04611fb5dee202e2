"""
Fleet result aggregation.

Merges per-host reports, failure records and topology findings into one
normalized FleetReport. Deterministic and side-effect free: no remote
calls, no clock reads, inputs are never modified.
"""

from collections import Counter
from typing import Iterable, Optional, Sequence

from ._types import (
    FailureKind,
    FailureRecord,
    FleetReport,
    FleetSummary,
    Host,
    HostReport,
    HostStatus,
    HostSummary,
    TopologyFinding,
    host_sort_key,
)
from .exceptions import AggregationInvariantViolation

NOT_REACHABLE_KINDS = (FailureKind.UNREACHABLE, FailureKind.MANAGEMENT_UNAVAILABLE)


def validate_coverage(
    host_reports: Sequence[HostReport],
    failures: Sequence[FailureRecord],
    expected_hosts: Optional[Iterable[Host]] = None,
) -> None:
    """
    Check that every host appears exactly once across both lists.

    Raises:
        AggregationInvariantViolation: duplicated, missing or unexpected hosts
    """
    names = [r.host.name for r in host_reports] + [f.host.name for f in failures]
    counts = Counter(n.casefold() for n in names)
    duplicated = {n for n in names if counts[n.casefold()] > 1}

    missing = set()
    unexpected = set()
    if expected_hosts is not None:
        expected = {h.name.casefold(): h.name for h in expected_hosts}
        seen = {n.casefold(): n for n in names}
        missing = {expected[k] for k in expected.keys() - seen.keys()}
        unexpected = {seen[k] for k in seen.keys() - expected.keys()}

    if duplicated or missing or unexpected:
        raise AggregationInvariantViolation(
            duplicated=duplicated, missing=missing, unexpected=unexpected
        )


def summarize_host(report: HostReport) -> HostSummary:
    return HostSummary(
        host=report.host.name,
        status=report.status,
        succeeded=report.succeeded,
        skipped=report.skipped,
        failed=report.failed,
        warnings=report.warnings,
    )


def summarize(
    host_reports: Sequence[HostReport],
    failures: Sequence[FailureRecord],
) -> FleetSummary:
    """Compute fleet-wide counts from sorted inputs."""
    kinds = Counter(f.kind for f in failures)
    host_summaries = tuple(summarize_host(r) for r in host_reports)

    # Session failures passed both probes, so they count as reachable
    reachable = len(host_reports) + sum(
        1 for f in failures
        if f.reachability is not None and f.reachability.is_reachable
    )

    return FleetSummary(
        total_hosts=len(host_reports) + len(failures),
        reachable=reachable,
        unreachable=sum(kinds[k] for k in NOT_REACHABLE_KINDS),
        ignored=kinds[FailureKind.IGNORED],
        session_failures=kinds[FailureKind.SESSION_SETUP_FAILED],
        cancelled=kinds[FailureKind.CANCELLED],
        pipeline_errors=kinds[FailureKind.PIPELINE_ERROR],
        fully_checked=sum(1 for h in host_summaries if h.status == HostStatus.FULLY_CHECKED),
        partially_failed=sum(1 for h in host_summaries if h.status == HostStatus.PARTIALLY_FAILED),
        checks_succeeded=sum(h.succeeded for h in host_summaries),
        checks_skipped=sum(h.skipped for h in host_summaries),
        checks_failed=sum(h.failed for h in host_summaries),
        checks_with_warnings=sum(
            1 for r in host_reports for c in r.results.values() if c.warnings
        ),
        hosts=host_summaries,
    )


def aggregate(
    host_reports: Iterable[HostReport],
    failures: Iterable[FailureRecord],
    topology_findings: Iterable[TopologyFinding] = (),
    expected_hosts: Optional[Iterable[Host]] = None,
) -> FleetReport:
    """
    Build the FleetReport.

    Args:
        host_reports: Reports for hosts that were checked
        failures: Records for hosts that could not be checked (incl. ignored)
        topology_findings: Directory-level findings, attached unchanged
        expected_hosts: Full input host list; when given, missing or
            unexpected hosts are an invariant violation

    Returns:
        FleetReport with both lists sorted by host name

    Raises:
        AggregationInvariantViolation: a host is missing or duplicated
    """
    host_reports = sorted(host_reports, key=lambda r: host_sort_key(r.host.name))
    failures = sorted(failures, key=lambda f: host_sort_key(f.host.name))

    validate_coverage(host_reports, failures, expected_hosts)

    return FleetReport(
        host_reports=tuple(host_reports),
        failures=tuple(failures),
        topology_findings=tuple(topology_findings),
        summary=summarize(host_reports, failures),
    )
