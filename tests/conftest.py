"""
Shared test doubles for fleet-health tests.

Provides an in-memory RemoteSession, a session factory that records
open/close calls, and a configurable CheckSpec.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional

import pytest

from fleet_health._types import Host, ReachabilityStatus
from fleet_health.checks.base import CheckSpec
from fleet_health.config import FleetConfig
from fleet_health.exceptions import SessionSetupError
from fleet_health.session import RemoteSession


class FakeSession(RemoteSession):
    """RemoteSession returning canned payloads keyed by script."""

    def __init__(self, host: Host, responses: Optional[Dict[str, Any]] = None):
        self.host = host
        self.responses = responses or {}
        self.scripts: List[str] = []
        self.closed = False

    async def run_json(self, script: str, timeout: Optional[float] = None) -> Any:
        self.scripts.append(script)
        return self.responses.get(script, {})

    async def close(self) -> None:
        self.closed = True


class FakeSessionFactory:
    """
    SessionFactory recording every open and close.

    ``fail_for`` maps host names to the exception raised on open.
    """

    def __init__(self, fail_for: Optional[Dict[str, Exception]] = None, close_error: Optional[Exception] = None):
        self.fail_for = fail_for or {}
        self.close_error = close_error
        self.opened: List[str] = []
        self.closed: List[str] = []
        self.sessions: Dict[str, FakeSession] = {}

    def __call__(self, host: Host):
        @asynccontextmanager
        async def open_session():
            self.opened.append(host.name)
            if host.name in self.fail_for:
                raise self.fail_for[host.name]
            session = FakeSession(host)
            self.sessions[host.name] = session
            try:
                yield session
            finally:
                self.closed.append(host.name)
                await session.close()
                if self.close_error is not None:
                    raise self.close_error

        return open_session()


class StaticCheck(CheckSpec):
    """CheckSpec with scripted behaviour for executor/dispatcher tests."""

    def __init__(
        self,
        name: str,
        payload: Any = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        applies: Callable[[Host], bool] = lambda host: True,
        warnings: Optional[List[str]] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self._name = name
        self.payload = payload if payload is not None else {"ok": True}
        self.error = error
        self.delay = delay
        self._applies = applies
        self._warnings = warnings or []
        self.timeout_seconds = timeout_seconds
        self.calls: List[str] = []

    @property
    def name(self) -> str:
        return self._name

    def applies_to(self, host: Host) -> bool:
        return self._applies(host)

    async def execute(self, host: Host, session) -> Any:
        self.calls.append(host.name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.payload

    def evaluate(self, payload: Any) -> List[str]:
        return list(self._warnings)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def config():
    return FleetConfig(
        probe_timeout_seconds=0.5,
        session_timeout_seconds=1.0,
        check_timeout_seconds=1.0,
    )


@pytest.fixture
def reachable():
    return ReachabilityStatus(network_reachable=True, management_reachable=True)


@pytest.fixture
def dc_host():
    return Host(
        name="DC01.corp.local",
        address="10.0.0.10",
        is_domain_controller=True,
        is_global_catalog=True,
        site="HQ",
    )


@pytest.fixture
def member_host():
    return Host(name="FS01.corp.local", address="10.0.0.20", roles=("file_server",))


@pytest.fixture
def core_host():
    return Host(name="CORE01.corp.local", is_core_install=True)


@pytest.fixture
def session_factory():
    return FakeSessionFactory()


@pytest.fixture
def failing_session_factory():
    return FakeSessionFactory(
        fail_for={"FS01.corp.local": SessionSetupError("FS01.corp.local", "access denied")}
    )
