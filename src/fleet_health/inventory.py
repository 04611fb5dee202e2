"""
Host inventory loading.

The inventory is the topology collaborator's output persisted as YAML:
the resolved host list, an optional ignore list and any directory-level
findings to carry into the report.

    hosts:
      - name: DC01.corp.local
        address: 10.0.0.10
        is_domain_controller: true
        is_global_catalog: true
        site: HQ
      - name: FS01.corp.local
        roles: [file_server]
    ignore:
      - OLD-DC.corp.local
    findings:
      - source: ad_topology
        severity: warning
        message: Site BRANCH has no global catalog

A bare list of host names is also accepted.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from ._types import Host, Severity, TopologyFinding
from .exceptions import ConfigError

logger = logging.getLogger(__name__)

HOST_FIELDS = {
    "name", "address", "is_domain_controller", "is_global_catalog",
    "is_core_install", "site", "roles",
}


@dataclass
class Inventory:
    """Hosts and findings loaded from an inventory file."""
    hosts: List[Host] = field(default_factory=list)
    ignore_list: List[str] = field(default_factory=list)
    findings: List[TopologyFinding] = field(default_factory=list)


def parse_host(entry: Any) -> Host:
    """Build a Host from a name string or a mapping."""
    if isinstance(entry, str):
        name = entry.strip()
        if not name:
            raise ConfigError("Inventory host name is empty")
        return Host(name=name)

    if not isinstance(entry, dict):
        raise ConfigError(f"Inventory host entry must be a name or mapping: {entry!r}")

    unknown = set(entry) - HOST_FIELDS
    if unknown:
        raise ConfigError(f"Unknown inventory host field(s): {', '.join(sorted(unknown))}")

    name = str(entry.get("name") or "").strip()
    if not name:
        raise ConfigError(f"Inventory host entry has no name: {entry!r}")

    roles = entry.get("roles") or ()
    if isinstance(roles, str):
        roles = (roles,)

    return Host(
        name=name,
        address=entry.get("address") or None,
        is_domain_controller=bool(entry.get("is_domain_controller", False)),
        is_global_catalog=bool(entry.get("is_global_catalog", False)),
        is_core_install=bool(entry.get("is_core_install", False)),
        site=entry.get("site") or None,
        roles=tuple(str(r) for r in roles),
    )


def parse_finding(entry: Any) -> TopologyFinding:
    if not isinstance(entry, dict) or not entry.get("message"):
        raise ConfigError(f"Inventory finding must be a mapping with a message: {entry!r}")

    severity = str(entry.get("severity", Severity.INFO.value)).lower()
    try:
        severity = Severity(severity)
    except ValueError:
        raise ConfigError(f"Unknown finding severity: {severity}") from None

    return TopologyFinding(
        source=str(entry.get("source", "inventory")),
        message=str(entry["message"]),
        severity=severity,
        details=dict(entry.get("details") or {}),
    )


def dedupe_hosts(hosts: List[Host]) -> Tuple[List[Host], List[str]]:
    """Drop repeated host names (case-insensitive); the first entry wins."""
    seen: Dict[str, Host] = {}
    dropped: List[str] = []
    for host in hosts:
        key = host.name.casefold()
        if key in seen:
            dropped.append(host.name)
            continue
        seen[key] = host
    return list(seen.values()), dropped


def load_inventory(path: Path) -> Inventory:
    """
    Load an inventory file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigError: If the file is not a valid inventory
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Inventory file not found: {path}")

    with open(path, "r") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Inventory is not valid YAML: {path}: {e}") from e

    if data is None:
        raise ConfigError(f"Inventory file is empty: {path}")

    if isinstance(data, list):
        data = {"hosts": data}
    if not isinstance(data, dict):
        raise ConfigError(f"Inventory must be a mapping or a list of hosts: {path}")

    raw_hosts = data.get("hosts") or []
    if not isinstance(raw_hosts, list):
        raise ConfigError(f"Inventory 'hosts' must be a list: {path}")

    hosts, dropped = dedupe_hosts([parse_host(e) for e in raw_hosts])
    for name in dropped:
        logger.warning(f"Duplicate inventory entry ignored: {name}")

    ignore_list = [str(e).strip() for e in (data.get("ignore") or []) if str(e).strip()]
    findings = [parse_finding(e) for e in (data.get("findings") or [])]

    logger.info(
        f"Loaded inventory {path}: {len(hosts)} hosts, "
        f"{len(ignore_list)} ignored, {len(findings)} findings"
    )
    return Inventory(hosts=hosts, ignore_list=ignore_list, findings=findings)
