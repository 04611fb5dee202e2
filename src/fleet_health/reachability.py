"""
Host reachability probing.

Answers "is this host up and administratively reachable" with two
independent signals:

1. Network liveness: a single ICMP echo (or TCP connect) with a short
   timeout. No retry, a fleet run must not stall on one down host.
2. Management handshake: a WS-Management Identify request against the
   WinRM listener. A host can answer pings while WinRM is down.

Both probes run concurrently and a timeout counts as "not reachable",
never as an error.
"""

import asyncio
import logging
import math
import sys
from typing import List, Optional, Tuple

import aiohttp

from ._types import Host, ReachabilityStatus
from .config import FleetConfig

logger = logging.getLogger(__name__)

WSMAN_IDENTIFY_BODY = (
    '<s:Envelope xmlns:s="http://www.w3.org/2003/05/soap-envelope" '
    'xmlns:wsmid="http://schemas.dmtf.org/wbem/wsman/identity/1/wsmanidentity.xsd">'
    '<s:Header/><s:Body><wsmid:Identify/></s:Body></s:Envelope>'
)

WSMAN_HEADERS = {"Content-Type": "application/soap+xml;charset=UTF-8"}


def build_ping_command(target: str, timeout_seconds: float) -> List[str]:
    """Build a single-echo ping command for the current platform."""
    if sys.platform.startswith("win"):
        return ["ping", "-n", "1", "-w", str(int(timeout_seconds * 1000)), target]
    # Linux ping -W takes whole seconds
    return ["ping", "-c", "1", "-W", str(max(1, math.ceil(timeout_seconds))), "-q", target]


class ReachabilityProber:
    """
    Probe network and WinRM reachability of a host.

    Stateless across hosts; safe to share between concurrent pipelines.
    """

    def __init__(self, config: FleetConfig):
        self.config = config
        self.timeout = config.probe_timeout_seconds

    async def probe(self, host: Host) -> ReachabilityStatus:
        """
        Run both probes and combine them.

        Returns:
            ReachabilityStatus; never raises for probe failures.
        """
        (network_ok, network_error), (mgmt_ok, mgmt_error) = await asyncio.gather(
            self._bounded(self.check_network(host), "network"),
            self._bounded(self.check_management(host), "management"),
        )

        status = ReachabilityStatus(
            network_reachable=network_ok,
            management_reachable=mgmt_ok,
            network_error=network_error,
            management_error=mgmt_error,
        )
        logger.debug(
            f"Probe {host.name}: network={network_ok} management={mgmt_ok}"
        )
        return status

    async def _bounded(self, coro, label: str) -> Tuple[bool, Optional[str]]:
        """Apply the probe timeout; map timeouts and errors to (False, reason)."""
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            return False, f"{label} probe timed out after {self.timeout:g}s"
        except Exception as e:
            return False, f"{label} probe error: {e}"

    async def check_network(self, host: Host) -> Tuple[bool, Optional[str]]:
        """Network liveness probe, dispatched on config.network_probe."""
        if self.config.network_probe == "tcp":
            return await self._tcp_connect(host.target, self.config.tcp_probe_port)
        return await self._icmp_ping(host.target)

    async def _icmp_ping(self, target: str) -> Tuple[bool, Optional[str]]:
        cmd = build_ping_command(target, self.timeout)
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            await proc.wait()
        except asyncio.CancelledError:
            # Timed out by the caller: don't leave the ping process behind
            if proc.returncode is None:
                proc.kill()
            raise
        if proc.returncode == 0:
            return True, None
        return False, f"no echo reply (ping exit {proc.returncode})"

    async def _tcp_connect(self, target: str, port: int) -> Tuple[bool, Optional[str]]:
        try:
            reader, writer = await asyncio.open_connection(target, port)
        except OSError as e:
            return False, f"tcp {port}: {e}"
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True, None

    @property
    def wsman_url_scheme(self) -> str:
        return "https" if self.config.winrm_use_ssl else "http"

    def wsman_url(self, host: Host) -> str:
        return f"{self.wsman_url_scheme}://{host.target}:{self.config.effective_winrm_port}/wsman"

    async def check_management(self, host: Host) -> Tuple[bool, Optional[str]]:
        """
        WS-Management Identify handshake.

        A 200 IdentifyResponse means the listener is up. A 401 also proves
        the listener answered; authentication is the session layer's job.
        """
        url = self.wsman_url(host)
        ssl = bool(self.config.winrm_verify_ssl)
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(
                url, data=WSMAN_IDENTIFY_BODY, headers=WSMAN_HEADERS, ssl=ssl
            ) as response:
                if response.status == 401:
                    return True, None
                if response.status != 200:
                    return False, f"WS-Man identify returned HTTP {response.status}"
                body = await response.text()
                if "IdentifyResponse" not in body:
                    return False, "WS-Man identify returned an unexpected body"
                return True, None
