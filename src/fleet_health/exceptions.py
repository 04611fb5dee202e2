"""
Error taxonomy for fleet health runs.

Unreachable hosts, unavailable management endpoints and inapplicable
checks are recorded as data in the report model, not raised. The
exceptions here cover the cases that cross a function boundary:

- SessionSetupError: the shared remote session for a host could not be
  established. Turned into a FailureRecord by the executor.
- RemoteCommandError / CheckTimeoutError: an individual check failed.
  Turned into a FAILED CheckResult by the executor.
- AggregationInvariantViolation: a host is missing or duplicated in the
  final report. Fatal to the run.
- ConfigError: configuration or inventory could not be loaded.
"""

from typing import Iterable, Optional


class FleetHealthError(Exception):
    """Base class for all fleet-health errors."""


class ConfigError(FleetHealthError):
    """Configuration or inventory is missing or invalid."""


class SessionSetupError(FleetHealthError):
    """Remote session to a host could not be established."""

    def __init__(self, host: str, reason: str):
        self.host = host
        self.reason = reason
        super().__init__(f"Session setup failed for {host}: {reason}")


class RemoteCommandError(FleetHealthError):
    """A remote script returned a non-zero exit code or unusable output."""

    def __init__(self, host: str, exit_code: Optional[int], stderr: str = "", message: str = ""):
        self.host = host
        self.exit_code = exit_code
        self.stderr = stderr
        detail = message or (stderr.strip().splitlines()[-1] if stderr.strip() else "no error output")
        super().__init__(f"Remote command on {host} failed (exit {exit_code}): {detail}")


class CheckTimeoutError(FleetHealthError):
    """A check exceeded its time budget."""

    def __init__(self, check: str, host: str, timeout: float):
        self.check = check
        self.host = host
        self.timeout = timeout
        super().__init__(f"Check {check} on {host} timed out after {timeout:g}s")


class AggregationInvariantViolation(FleetHealthError):
    """
    Hosts missing or duplicated across HostReports and FailureRecords.

    Signals a programming defect; never swallowed.
    """

    def __init__(
        self,
        duplicated: Iterable[str] = (),
        missing: Iterable[str] = (),
        unexpected: Iterable[str] = (),
    ):
        self.duplicated = sorted(duplicated)
        self.missing = sorted(missing)
        self.unexpected = sorted(unexpected)
        parts = []
        if self.duplicated:
            parts.append(f"duplicated: {', '.join(self.duplicated)}")
        if self.missing:
            parts.append(f"missing: {', '.join(self.missing)}")
        if self.unexpected:
            parts.append(f"unexpected: {', '.join(self.unexpected)}")
        super().__init__(f"Fleet report invariant violated ({'; '.join(parts)})")
