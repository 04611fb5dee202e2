"""
Run configuration for fleet health checks.

Loads settings from a YAML file with environment variable overrides.
Validates all settings and provides typed access.

Config file example:

    concurrency: 16
    probe_timeout_seconds: 2
    check_timeout_seconds: 120
    winrm_transport: kerberos
    username: CORP\\svc-health
    ignore_list:
      - OLD-DC.corp.local
"""

import logging
import os
from pathlib import Path
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

WINRM_HTTP_PORT = 5985
WINRM_HTTPS_PORT = 5986


class FleetConfig(BaseModel):
    """Fleet health run configuration."""

    # ========================================================================
    # Concurrency
    # ========================================================================

    concurrency: Optional[int] = Field(
        default=None,
        ge=1,
        description="Max simultaneous host pipelines (default derived from fleet size)"
    )

    max_default_concurrency: int = Field(
        default=16,
        ge=1,
        description="Upper bound for the derived default concurrency"
    )

    # ========================================================================
    # Timeouts
    # ========================================================================

    probe_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        le=60,
        description="Timeout for each reachability probe (single attempt)"
    )

    session_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for establishing a remote session"
    )

    check_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Default timeout for each individual check"
    )

    # ========================================================================
    # Reachability
    # ========================================================================

    network_probe: Literal["icmp", "tcp"] = Field(
        default="icmp",
        description="Network liveness probe: icmp (ping) or tcp (connect)"
    )

    tcp_probe_port: int = Field(
        default=445,
        ge=1,
        le=65535,
        description="Port used when network_probe=tcp"
    )

    # ========================================================================
    # WinRM
    # ========================================================================

    winrm_port: Optional[int] = Field(
        default=None,
        ge=1,
        le=65535,
        description="WinRM port (default 5985, or 5986 with SSL)"
    )

    winrm_use_ssl: bool = Field(
        default=False,
        description="Use HTTPS for WinRM"
    )

    winrm_verify_ssl: bool = Field(
        default=True,
        description="Validate WinRM server certificates"
    )

    winrm_transport: str = Field(
        default="ntlm",
        description="WinRM auth transport: ntlm, kerberos, credssp, basic, certificate"
    )

    username: Optional[str] = Field(
        default=None,
        description="Account for remote sessions (DOMAIN\\user or user@domain)"
    )

    password: Optional[str] = Field(
        default=None,
        description="Password for remote sessions"
    )

    # ========================================================================
    # Filtering
    # ========================================================================

    ignore_list: List[str] = Field(
        default_factory=list,
        description="Host names or addresses to exclude from checks"
    )

    # ========================================================================
    # Health thresholds
    # ========================================================================

    disk_free_warning_percent: float = Field(
        default=15.0,
        ge=0,
        le=100,
        description="Warn when a fixed volume has less free space than this"
    )

    time_skew_warning_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Warn when the time service offset exceeds this"
    )

    dfsr_backlog_warning: int = Field(
        default=100,
        ge=0,
        description="Warn when SYSVOL replication backlog exceeds this"
    )

    # ========================================================================
    # Logging
    # ========================================================================

    verbose: bool = Field(
        default=False,
        description="Verbose (DEBUG) logging"
    )

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)"
    )

    # ========================================================================
    # Validators
    # ========================================================================

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        if v.upper() not in ['DEBUG', 'INFO', 'WARNING', 'ERROR']:
            raise ValueError('log_level must be DEBUG, INFO, WARNING, or ERROR')
        return v.upper()

    @field_validator('winrm_transport')
    @classmethod
    def validate_winrm_transport(cls, v):
        if v not in ['ntlm', 'kerberos', 'credssp', 'basic', 'certificate']:
            raise ValueError('winrm_transport must be ntlm, kerberos, credssp, basic, or certificate')
        return v

    @field_validator('ignore_list')
    @classmethod
    def strip_ignore_list(cls, v):
        return [entry.strip() for entry in v if entry and entry.strip()]

    # ========================================================================
    # Parsed Properties
    # ========================================================================

    @property
    def effective_winrm_port(self) -> int:
        if self.winrm_port:
            return self.winrm_port
        return WINRM_HTTPS_PORT if self.winrm_use_ssl else WINRM_HTTP_PORT

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.verbose else self.log_level

    def effective_concurrency(self, fleet_size: int) -> int:
        """
        Resolve the concurrency cap for a fleet of the given size.

        An explicit ``concurrency`` wins; otherwise one slot per host up to
        ``max_default_concurrency``.
        """
        if self.concurrency:
            return self.concurrency
        return max(1, min(fleet_size, self.max_default_concurrency))

    model_config = ConfigDict(
        validate_assignment=True,
        extra='forbid'
    )


def load_config(config_path: Optional[Path] = None) -> FleetConfig:
    """
    Load run configuration from YAML file and environment.

    Args:
        config_path: Path to YAML config. When omitted, defaults are used
            and only environment overrides apply.

    Returns:
        FleetConfig instance

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist
        ConfigError: If config is empty or invalid
    """
    config_dict = {}

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        logger.info(f"Loading config from {config_path}")

        with open(config_path, 'r') as f:
            try:
                config_dict = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Config file is not valid YAML: {config_path}: {e}") from e

        if config_dict is None:
            raise ConfigError(f"Config file is empty: {config_path}")
        if not isinstance(config_dict, dict):
            raise ConfigError(f"Config file must contain a mapping: {config_path}")

    # Environment variable overrides
    env_overrides = {
        'log_level': os.environ.get('FLEET_HEALTH_LOG_LEVEL'),
        'concurrency': os.environ.get('FLEET_HEALTH_CONCURRENCY'),
        'username': os.environ.get('FLEET_HEALTH_USERNAME'),
        'password': os.environ.get('FLEET_HEALTH_PASSWORD'),
    }

    for key, value in env_overrides.items():
        if value:
            config_dict[key] = value
            if key != 'password':
                logger.info(f"Environment override: {key}={value}")

    try:
        return FleetConfig(**config_dict)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
