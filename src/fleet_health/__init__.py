"""Fleet Health - read-only health checks across a Windows server fleet"""

__version__ = "0.1.0"

from ._types import (
    Host,
    ReachabilityStatus,
    CheckResult,
    CheckStatus,
    CheckErrorKind,
    HostReport,
    HostStatus,
    FailureKind,
    FailureRecord,
    TopologyFinding,
    Severity,
    FleetSummary,
    FleetReport,
)
from .config import FleetConfig, load_config
from .reachability import ReachabilityProber
from .session import RemoteSession, WinRMSession, winrm_session_factory
from .checks import CheckRegistry, CheckSpec, ScriptCheck, default_registry
from .executor import HostCheckExecutor
from .dispatcher import FleetDispatcher
from .aggregator import aggregate
from .inventory import Inventory, load_inventory
from .exceptions import (
    FleetHealthError,
    ConfigError,
    SessionSetupError,
    RemoteCommandError,
    CheckTimeoutError,
    AggregationInvariantViolation,
)

__all__ = [
    # Version
    "__version__",

    # Report model
    "Host",
    "ReachabilityStatus",
    "CheckResult",
    "CheckStatus",
    "CheckErrorKind",
    "HostReport",
    "HostStatus",
    "FailureKind",
    "FailureRecord",
    "TopologyFinding",
    "Severity",
    "FleetSummary",
    "FleetReport",

    # Configuration
    "FleetConfig",
    "load_config",
    "Inventory",
    "load_inventory",

    # Pipeline
    "ReachabilityProber",
    "RemoteSession",
    "WinRMSession",
    "winrm_session_factory",
    "CheckRegistry",
    "CheckSpec",
    "ScriptCheck",
    "default_registry",
    "HostCheckExecutor",
    "FleetDispatcher",
    "aggregate",

    # Errors
    "FleetHealthError",
    "ConfigError",
    "SessionSetupError",
    "RemoteCommandError",
    "CheckTimeoutError",
    "AggregationInvariantViolation",
]
