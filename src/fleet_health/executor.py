"""
Per-host check execution.

Runs the check registry against one reachable host over a single shared
remote session:

- The session is acquired once and released on every exit path.
- If the session cannot be established, no check runs and the host
  yields a FailureRecord.
- Applicability is evaluated before execution; inapplicable checks are
  SKIPPED, never FAILED.
- Each check runs under its own timeout. An error or timeout is captured
  as a FAILED result for that check only and the sequence continues.
"""

import asyncio
import logging
import time
from contextlib import AsyncExitStack
from typing import Callable, Dict, Optional, Union

from ._types import (
    CheckErrorKind,
    CheckResult,
    FailureKind,
    FailureRecord,
    Host,
    HostReport,
    ReachabilityStatus,
)
from .checks.base import CheckRegistry, CheckSpec
from .config import FleetConfig
from .exceptions import CheckTimeoutError
from .session import RemoteSession, SessionFactory

logger = logging.getLogger(__name__)

StopPredicate = Callable[[], bool]


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000


class HostCheckExecutor:
    """
    Execute all registered checks on a single host.

    Holds no per-host state, so one executor serves every pipeline in a run.
    """

    def __init__(
        self,
        registry: CheckRegistry,
        session_factory: SessionFactory,
        config: FleetConfig,
    ):
        self.registry = registry
        self.session_factory = session_factory
        self.config = config

    async def run_checks(
        self,
        host: Host,
        reachability: ReachabilityStatus,
        should_stop: Optional[StopPredicate] = None,
    ) -> Union[HostReport, FailureRecord]:
        """
        Run the check battery on a host.

        Args:
            host: Target host (already probed reachable)
            reachability: Probe result, carried into the report
            should_stop: Polled between checks; once True, the remaining
                checks are recorded as cancelled

        Returns:
            HostReport, or FailureRecord if the session could not be set up
        """
        stack = AsyncExitStack()
        try:
            session = await asyncio.wait_for(
                stack.enter_async_context(self.session_factory(host)),
                timeout=self.config.session_timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = f"session setup timed out after {self.config.session_timeout_seconds:g}s"
            logger.warning(f"{host.name}: {error}")
            return FailureRecord(
                host=host,
                kind=FailureKind.SESSION_SETUP_FAILED,
                reachability=reachability,
                error=error,
            )
        except Exception as e:
            logger.warning(f"{host.name}: session setup failed: {e}")
            return FailureRecord(
                host=host,
                kind=FailureKind.SESSION_SETUP_FAILED,
                reachability=reachability,
                error=str(e) or type(e).__name__,
            )

        try:
            results = await self._run_sequence(host, session, should_stop)
        finally:
            await self._release(host, stack)

        return HostReport(host=host, reachability=reachability, results=results)

    async def _release(self, host: Host, stack: AsyncExitStack) -> None:
        """Close the session; a failing close never discards check results."""
        try:
            await asyncio.wait_for(stack.aclose(), timeout=self.config.session_timeout_seconds)
        except Exception as e:
            logger.warning(f"{host.name}: error closing session: {e}")

    async def _run_sequence(
        self,
        host: Host,
        session: RemoteSession,
        should_stop: Optional[StopPredicate],
    ) -> Dict[str, CheckResult]:
        results: Dict[str, CheckResult] = {}

        for spec in self.registry:
            if should_stop is not None and should_stop():
                results[spec.name] = CheckResult.failed(
                    spec.name,
                    "run stopped before check started",
                    CheckErrorKind.CANCELLED,
                )
                continue

            result = await self.run_check(spec, host, session)
            results[spec.name] = result
            logger.debug(f"{host.name}: {spec.name} -> {result.status.value}")

        failed = sum(1 for r in results.values() if r.is_failed)
        if failed:
            logger.warning(f"{host.name}: {failed}/{len(results)} checks failed")
        return results

    async def run_check(self, spec: CheckSpec, host: Host, session: RemoteSession) -> CheckResult:
        """Run one check with applicability gating, timeout and failure capture."""
        try:
            applies = spec.applies_to(host)
        except Exception as e:
            return CheckResult.failed(spec.name, f"applicability check raised: {e}")

        if not applies:
            return CheckResult.skipped(spec.name, spec.not_applicable_reason(host))

        timeout = spec.timeout_seconds or self.config.check_timeout_seconds
        start = time.monotonic()

        try:
            payload = await asyncio.wait_for(spec.execute(host, session), timeout=timeout)
        except asyncio.TimeoutError:
            error = CheckTimeoutError(spec.name, host.name, timeout)
            logger.warning(str(error))
            return CheckResult.failed(
                spec.name, str(error), CheckErrorKind.TIMEOUT, _elapsed_ms(start)
            )
        except Exception as e:
            logger.warning(f"Check {spec.name} failed on {host.name}: {e}")
            return CheckResult.failed(
                spec.name, str(e) or type(e).__name__, CheckErrorKind.ERROR, _elapsed_ms(start)
            )

        duration_ms = _elapsed_ms(start)

        try:
            warnings = tuple(spec.evaluate(payload))
        except Exception as e:
            return CheckResult.failed(
                spec.name, f"could not evaluate result: {e}", CheckErrorKind.ERROR, duration_ms
            )

        return CheckResult.success(spec.name, payload, warnings, duration_ms)
