"""
Remote PowerShell sessions via WinRM.

A session is the shared precondition of every check on a host. It is
acquired once per host pipeline with ``open_session`` and released on
every exit path.

Uses pywinrm for WinRM/PSRP communication. pywinrm is synchronous, so
every call runs on a worker thread under an asyncio timeout. Each session
owns its single worker: a command that hangs past its timeout keeps only
that host's thread, and the session refuses further commands until it
returns.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Dict, Optional

import winrm

from ._types import Host
from .config import FleetConfig
from .exceptions import RemoteCommandError, SessionSetupError

logger = logging.getLogger(__name__)

# Forces authentication and protocol negotiation on session open
IDENTITY_SCRIPT = '@{ computer_name = $env:COMPUTERNAME; domain = $env:USERDNSDOMAIN } | ConvertTo-Json'


class RemoteSession(ABC):
    """Interface the checks use to talk to a host."""

    host: Host

    @abstractmethod
    async def run_json(self, script: str, timeout: Optional[float] = None) -> Any:
        """Run a PowerShell script and return its JSON output, parsed."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


SessionFactory = Callable[[Host], AsyncContextManager[RemoteSession]]


class WinRMSession(RemoteSession):
    """RemoteSession backed by a pywinrm Session."""

    def __init__(self, host: Host, config: FleetConfig):
        self.host = host
        self.config = config
        self._session: Optional[winrm.Session] = None
        self._worker = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"winrm-{host.short_name}"
        )
        self._inflight: Optional[Future] = None
        self.identity: Dict[str, Any] = {}

    @property
    def busy(self) -> bool:
        """True while a command (possibly one that already timed out) is still running."""
        return self._inflight is not None and not self._inflight.done()

    @property
    def endpoint(self) -> str:
        protocol = "https" if self.config.winrm_use_ssl else "http"
        return f"{protocol}://{self.host.target}:{self.config.effective_winrm_port}/wsman"

    def _create_session(self) -> winrm.Session:
        read_timeout = max(30, int(self.config.session_timeout_seconds) + 10)
        return winrm.Session(
            self.endpoint,
            auth=(self.config.username or "", self.config.password or ""),
            transport=self.config.winrm_transport,
            server_cert_validation='validate' if self.config.winrm_verify_ssl else 'ignore',
            read_timeout_sec=read_timeout,
            operation_timeout_sec=read_timeout - 10,
        )

    async def connect(self) -> None:
        """
        Establish the session and verify it with an identity command.

        Raises:
            SessionSetupError: authentication, negotiation or timeout failure
        """
        timeout = self.config.session_timeout_seconds
        try:
            self._session = self._create_session()
            self.identity = await self.run_json(IDENTITY_SCRIPT, timeout) or {}
        except asyncio.TimeoutError:
            raise SessionSetupError(self.host.name, f"timed out after {timeout:g}s")
        except Exception as e:
            raise SessionSetupError(self.host.name, str(e)) from e

        logger.debug(f"Session established to {self.host.name} ({self.endpoint})")

    async def run_json(self, script: str, timeout: Optional[float] = None) -> Any:
        """
        Execute PowerShell script on the host and parse its JSON output.

        ``timeout`` defaults to the configured check timeout.

        Raises:
            asyncio.TimeoutError: script exceeded ``timeout``
            RemoteCommandError: non-zero exit or unparsable output
        """
        if self._session is None:
            raise RemoteCommandError(self.host.name, None, message="session is not open")
        if self.busy:
            raise RemoteCommandError(
                self.host.name, None,
                message="session unusable: an earlier command timed out and is still running",
            )

        self._inflight = self._worker.submit(self._execute_sync, self._session, script)
        output = await asyncio.wait_for(
            asyncio.wrap_future(self._inflight),
            timeout=timeout or self.config.check_timeout_seconds,
        )

        if output["status_code"] != 0:
            raise RemoteCommandError(self.host.name, output["status_code"], output["std_err"])

        stdout = output["std_out"].strip()
        if not stdout:
            return {}
        try:
            return json.loads(stdout)
        except json.JSONDecodeError as e:
            raise RemoteCommandError(
                self.host.name, output["status_code"],
                message=f"output is not valid JSON: {e}",
            ) from e

    def _execute_sync(self, session: winrm.Session, script: str) -> Dict[str, Any]:
        """Synchronous script execution (runs on the session worker)."""
        result = session.run_ps(script)
        return {
            "status_code": result.status_code,
            "std_out": result.std_out.decode('utf-8', errors='replace') if result.std_out else "",
            "std_err": result.std_err.decode('utf-8', errors='replace') if result.std_err else "",
        }

    async def close(self) -> None:
        # Never waits for a hung command; its thread exits when pywinrm's read timeout fires
        self._worker.shutdown(wait=False, cancel_futures=True)
        if self._session is None:
            return
        session, self._session = self._session, None

        if self.busy:
            # The transport is not thread-safe; leave it to the running command
            logger.warning(
                f"Session to {self.host.name} abandoned with a command still running"
            )
            return

        transport = getattr(session.protocol, "transport", None)
        if transport is not None and hasattr(transport, "close_session"):
            transport.close_session()
        logger.debug(f"Session to {self.host.name} closed")


def winrm_session_factory(config: FleetConfig) -> SessionFactory:
    """Build a SessionFactory that opens WinRM sessions with ``config``."""

    @asynccontextmanager
    async def open_session(host: Host) -> AsyncIterator[RemoteSession]:
        session = WinRMSession(host, config)
        try:
            await session.connect()
            yield session
        finally:
            await session.close()

    return open_session
