"""
Single source of truth for all shared types in fleet-health.

IMPORTANT: Import types from this module, not from individual files.

Usage:
    from fleet_health._types import (
        Host, ReachabilityStatus, CheckResult, HostReport,
        FailureRecord, FleetReport, CheckStatus, FailureKind,
        now_utc
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def now_utc() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def host_sort_key(name: str) -> str:
    """Canonical ordering key for host names."""
    return name.casefold()


# =============================================================================
# ENUMS
# =============================================================================


class CheckStatus(str, Enum):
    """Outcome of a single (host, check) pair."""
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class CheckErrorKind(str, Enum):
    """Why a check ended up FAILED."""
    ERROR = "error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class FailureKind(str, Enum):
    """Why a host produced no per-check results."""
    UNREACHABLE = "unreachable"
    MANAGEMENT_UNAVAILABLE = "management_unavailable"
    SESSION_SETUP_FAILED = "session_setup_failed"
    IGNORED = "ignored"
    CANCELLED = "cancelled"
    PIPELINE_ERROR = "pipeline_error"


class HostStatus(str, Enum):
    """Classification of a host that was checked."""
    FULLY_CHECKED = "fully_checked"
    PARTIALLY_FAILED = "partially_failed"


class Severity(str, Enum):
    """Severity of a topology-level finding."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


# =============================================================================
# HOSTS
# =============================================================================


@dataclass(frozen=True)
class Host:
    """
    A target host as resolved by topology discovery.

    Immutable for the duration of a run.
    """
    name: str
    address: Optional[str] = None
    is_domain_controller: bool = False
    is_global_catalog: bool = False
    is_core_install: bool = False
    site: Optional[str] = None
    roles: Tuple[str, ...] = ()

    @property
    def target(self) -> str:
        """Address to connect to (IP if known, otherwise the name)."""
        return self.address or self.name

    @property
    def short_name(self) -> str:
        return self.name.split(".", 1)[0]

    def matches(self, token: str) -> bool:
        """
        Check if a name/address token refers to this host (case-insensitive).

        Only the full name counts: a bare "DC01" does not match
        "DC01.corp.local", since the same short name can exist in every
        domain of a forest.
        """
        token = token.strip().casefold()
        if not token:
            return False
        candidates = {self.name.casefold()}
        if self.address:
            candidates.add(self.address.casefold())
        return token in candidates

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "address": self.address,
            "is_domain_controller": self.is_domain_controller,
            "is_global_catalog": self.is_global_catalog,
            "is_core_install": self.is_core_install,
            "site": self.site,
            "roles": list(self.roles),
        }


@dataclass(frozen=True)
class ReachabilityStatus:
    """Result of the two independent reachability probes."""
    network_reachable: bool
    management_reachable: bool
    network_error: Optional[str] = None
    management_error: Optional[str] = None

    @property
    def is_reachable(self) -> bool:
        return self.network_reachable and self.management_reachable

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network_reachable": self.network_reachable,
            "management_reachable": self.management_reachable,
            "network_error": self.network_error,
            "management_error": self.management_error,
        }


# =============================================================================
# CHECK RESULTS
# =============================================================================


@dataclass(frozen=True)
class CheckResult:
    """
    Tagged result of one check on one host.

    Exactly one of the variants applies, selected by ``status``:
    - SUCCESS carries ``payload`` (and any ``warnings`` evaluated from it)
    - SKIPPED carries ``reason``
    - FAILED carries ``error`` and ``error_kind``

    Use the ``success``/``skipped``/``failed`` constructors rather than
    building instances directly.
    """
    check: str
    status: CheckStatus
    payload: Any = None
    reason: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[CheckErrorKind] = None
    warnings: Tuple[str, ...] = ()
    duration_ms: float = 0.0

    @classmethod
    def success(
        cls,
        check: str,
        payload: Any,
        warnings: Tuple[str, ...] = (),
        duration_ms: float = 0.0,
    ) -> "CheckResult":
        return cls(
            check=check,
            status=CheckStatus.SUCCESS,
            payload=payload,
            warnings=tuple(warnings),
            duration_ms=duration_ms,
        )

    @classmethod
    def skipped(cls, check: str, reason: str) -> "CheckResult":
        return cls(check=check, status=CheckStatus.SKIPPED, reason=reason)

    @classmethod
    def failed(
        cls,
        check: str,
        error: str,
        error_kind: CheckErrorKind = CheckErrorKind.ERROR,
        duration_ms: float = 0.0,
    ) -> "CheckResult":
        return cls(
            check=check,
            status=CheckStatus.FAILED,
            error=error,
            error_kind=error_kind,
            duration_ms=duration_ms,
        )

    @property
    def succeeded(self) -> bool:
        return self.status == CheckStatus.SUCCESS

    @property
    def is_skipped(self) -> bool:
        return self.status == CheckStatus.SKIPPED

    @property
    def is_failed(self) -> bool:
        return self.status == CheckStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for report rendering."""
        return {
            "check": self.check,
            "status": self.status.value,
            "payload": self.payload,
            "reason": self.reason,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "warnings": list(self.warnings),
            "duration_ms": round(self.duration_ms, 1),
        }


@dataclass(frozen=True)
class HostReport:
    """Per-check results for a host that was reachable and had a session."""
    host: Host
    reachability: ReachabilityStatus
    results: Mapping[str, CheckResult] = field(default_factory=dict)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results.values() if r.succeeded)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results.values() if r.is_skipped)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results.values() if r.is_failed)

    @property
    def warnings(self) -> int:
        return sum(len(r.warnings) for r in self.results.values())

    @property
    def status(self) -> HostStatus:
        # Skipped checks never count against a host
        if self.failed:
            return HostStatus.PARTIALLY_FAILED
        return HostStatus.FULLY_CHECKED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host.to_dict(),
            "reachability": self.reachability.to_dict(),
            "status": self.status.value,
            "checks": {name: r.to_dict() for name, r in self.results.items()},
        }


@dataclass(frozen=True)
class FailureRecord:
    """Terminal outcome for a host that yielded no per-check results."""
    host: Host
    kind: FailureKind
    reachability: Optional[ReachabilityStatus] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host.to_dict(),
            "kind": self.kind.value,
            "reachability": self.reachability.to_dict() if self.reachability else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class TopologyFinding:
    """Directory-level finding supplied by the topology collaborator."""
    source: str
    message: str
    severity: Severity = Severity.INFO
    details: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "severity": self.severity.value,
            "message": self.message,
            "details": dict(self.details),
        }


# =============================================================================
# SUMMARIES AND FLEET REPORT
# =============================================================================


@dataclass(frozen=True)
class HostSummary:
    """Check counts for one checked host."""
    host: str
    status: HostStatus
    succeeded: int
    skipped: int
    failed: int
    warnings: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "status": self.status.value,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "warnings": self.warnings,
        }


@dataclass(frozen=True)
class FleetSummary:
    """Fleet-wide counts computed by the aggregator."""
    total_hosts: int = 0
    reachable: int = 0
    unreachable: int = 0
    ignored: int = 0
    session_failures: int = 0
    cancelled: int = 0
    pipeline_errors: int = 0
    fully_checked: int = 0
    partially_failed: int = 0
    checks_succeeded: int = 0
    checks_skipped: int = 0
    checks_failed: int = 0
    checks_with_warnings: int = 0
    hosts: Tuple[HostSummary, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_hosts": self.total_hosts,
            "reachable": self.reachable,
            "unreachable": self.unreachable,
            "ignored": self.ignored,
            "session_failures": self.session_failures,
            "cancelled": self.cancelled,
            "pipeline_errors": self.pipeline_errors,
            "fully_checked": self.fully_checked,
            "partially_failed": self.partially_failed,
            "checks_succeeded": self.checks_succeeded,
            "checks_skipped": self.checks_skipped,
            "checks_failed": self.checks_failed,
            "checks_with_warnings": self.checks_with_warnings,
            "hosts": [h.to_dict() for h in self.hosts],
        }


@dataclass(frozen=True)
class FleetReport:
    """
    Final artifact handed to the rendering collaborator.

    Every input host appears exactly once, either in ``host_reports`` or
    in ``failures``.
    """
    host_reports: Tuple[HostReport, ...] = ()
    failures: Tuple[FailureRecord, ...] = ()
    topology_findings: Tuple[TopologyFinding, ...] = ()
    summary: FleetSummary = field(default_factory=FleetSummary)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def all_hosts(self) -> List[str]:
        return [r.host.name for r in self.host_reports] + [f.host.name for f in self.failures]

    @property
    def healthy(self) -> bool:
        """True when every non-ignored host was fully checked."""
        return (
            all(r.status == HostStatus.FULLY_CHECKED for r in self.host_reports)
            and all(f.kind == FailureKind.IGNORED for f in self.failures)
        )

    def exceptions(self) -> List[Dict[str, Any]]:
        """
        Structured list of everything that could not be fully checked.

        Covers hosts with a FailureRecord and individual failed checks on
        otherwise reachable hosts, for an "exceptions" report section.
        """
        entries: List[Dict[str, Any]] = []
        for failure in self.failures:
            entries.append({
                "host": failure.host.name,
                "check": None,
                "kind": failure.kind.value,
                "error": failure.error,
            })
        for report in self.host_reports:
            for result in report.results.values():
                if result.is_failed:
                    entries.append({
                        "host": report.host.name,
                        "check": result.check,
                        "kind": result.error_kind.value if result.error_kind else CheckErrorKind.ERROR.value,
                        "error": result.error,
                    })
        return entries

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "summary": self.summary.to_dict(),
            "host_reports": [r.to_dict() for r in self.host_reports],
            "failures": [f.to_dict() for f in self.failures],
            "topology_findings": [f.to_dict() for f in self.topology_findings],
            "exceptions": self.exceptions(),
        }


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    # Functions
    "now_utc",
    "host_sort_key",

    # Enums
    "CheckStatus",
    "CheckErrorKind",
    "FailureKind",
    "HostStatus",
    "Severity",

    # Dataclasses
    "Host",
    "ReachabilityStatus",
    "CheckResult",
    "HostReport",
    "FailureRecord",
    "TopologyFinding",
    "HostSummary",
    "FleetSummary",
    "FleetReport",
]
