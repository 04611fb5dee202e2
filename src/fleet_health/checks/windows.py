"""
Built-in Windows host checks.

Each check is a read-only PowerShell detection script that emits JSON,
plus an evaluator turning the payload into health warnings:

1. os_info          - OS caption/version, last boot, uptime
2. services         - role-relevant service state
3. disk_space       - free space on fixed volumes
4. pending_reboot   - CBS / Windows Update / file-rename reboot flags
5. windows_updates  - last installed hotfix, pending update count
6. time_sync        - time service source and offset
7. dfsr_backlog     - SYSVOL replication backlog (domain controllers)
8. dcdiag           - failing dcdiag tests (domain controllers)
9. ie_esc           - IE Enhanced Security Configuration (desktop shell only)
"""

from functools import partial
from typing import Any, List, Optional

from ..config import FleetConfig
from .base import CheckRegistry, ScriptCheck


# =============================================================================
# PowerShell detection scripts
# =============================================================================

OS_INFO_SCRIPT = r'''
$os = Get-CimInstance Win32_OperatingSystem
$cs = Get-CimInstance Win32_ComputerSystem
@{
    computer_name = $env:COMPUTERNAME
    caption = $os.Caption
    version = $os.Version
    build = $os.BuildNumber
    domain = $cs.Domain
    domain_role = $cs.DomainRole
    last_boot = $os.LastBootUpTime.ToString("o")
    uptime_hours = [math]::Round(((Get-Date) - $os.LastBootUpTime).TotalHours, 1)
} | ConvertTo-Json
'''

SERVICES_SCRIPT = r'''
$names = @('WinRM', 'W32Time', 'Netlogon')
# DomainRole 4/5 = backup/primary domain controller
if ((Get-CimInstance Win32_ComputerSystem).DomainRole -ge 4) {
    $names += @('NTDS', 'DNS', 'Kdc', 'DFSR', 'ADWS')
}

$result = @()
foreach ($name in $names) {
    $svc = Get-Service -Name $name -ErrorAction SilentlyContinue
    $result += @{
        name = $name
        display_name = if ($svc) { $svc.DisplayName } else { $null }
        status = if ($svc) { $svc.Status.ToString() } else { 'NotInstalled' }
        start_type = if ($svc) { $svc.StartType.ToString() } else { $null }
    }
}
@{ services = $result } | ConvertTo-Json -Depth 3
'''

DISK_SPACE_SCRIPT = r'''
$disks = Get-CimInstance Win32_LogicalDisk -Filter "DriveType=3"
$result = @()
foreach ($d in $disks) {
    $result += @{
        drive = $d.DeviceID
        size_gb = [math]::Round($d.Size / 1GB, 1)
        free_gb = [math]::Round($d.FreeSpace / 1GB, 1)
        free_percent = if ($d.Size) { [math]::Round(($d.FreeSpace / $d.Size) * 100, 1) } else { 0 }
    }
}
@{ volumes = $result } | ConvertTo-Json -Depth 3
'''

PENDING_REBOOT_SCRIPT = r'''
$cbs = Test-Path 'HKLM:\SOFTWARE\Microsoft\Windows\CurrentVersion\Component Based Servicing\RebootPending'
$wu = Test-Path 'HKLM:\SOFTWARE\Microsoft\Windows\CurrentVersion\WindowsUpdate\Auto Update\RebootRequired'
$pfro = $null -ne (Get-ItemProperty 'HKLM:\SYSTEM\CurrentControlSet\Control\Session Manager' `
    -Name PendingFileRenameOperations -ErrorAction SilentlyContinue)
@{
    component_based_servicing = $cbs
    windows_update = $wu
    pending_file_rename = $pfro
    reboot_pending = ($cbs -or $wu -or $pfro)
} | ConvertTo-Json
'''

WINDOWS_UPDATES_SCRIPT = r'''
$last = Get-HotFix -ErrorAction SilentlyContinue |
    Where-Object { $_.InstalledOn } |
    Sort-Object InstalledOn -Descending |
    Select-Object -First 1

$pending = $null
$searchError = $null
try {
    $searcher = (New-Object -ComObject Microsoft.Update.Session).CreateUpdateSearcher()
    $pending = $searcher.Search("IsInstalled=0 and Type='Software' and IsHidden=0").Updates.Count
} catch {
    $searchError = $_.Exception.Message
}

@{
    last_hotfix = if ($last) { $last.HotFixID } else { $null }
    last_installed = if ($last) { $last.InstalledOn.ToString("o") } else { $null }
    days_since_last_install = if ($last) { [math]::Round(((Get-Date) - $last.InstalledOn).TotalDays, 1) } else { $null }
    pending_updates = $pending
    search_error = $searchError
} | ConvertTo-Json
'''

TIME_SYNC_SCRIPT = r'''
$lines = w32tm /query /status /verbose 2>&1 | ForEach-Object { $_.ToString() }
function Get-Field([string]$Name) {
    $line = $lines | Where-Object { $_ -match "^$Name\s*:" } | Select-Object -First 1
    if ($line) { ($line -split ':', 2)[1].Trim() } else { $null }
}
$offset = Get-Field 'Phase Offset'
@{
    source = Get-Field 'Source'
    stratum = Get-Field 'Stratum'
    last_sync = Get-Field 'Last Successful Sync Time'
    phase_offset_seconds = if ($offset) { [double]($offset.TrimEnd('s')) } else { $null }
} | ConvertTo-Json
'''

DFSR_BACKLOG_SCRIPT = r'''
$me = $env:COMPUTERNAME
$partners = @(Get-CimInstance -Namespace 'root\MicrosoftDFS' -ClassName DfsrConnectionConfig -ErrorAction Stop |
    Where-Object { -not $_.Inbound } |
    ForEach-Object { (($_.PartnerName -split '\\')[-1]).TrimEnd('$') } |
    Sort-Object -Unique)

$result = @()
foreach ($partner in $partners) {
    $out = dfsrdiag backlog /rgname:"Domain System Volume" /rfname:"SYSVOL Share" /smem:$me /rmem:$partner 2>&1 | Out-String
    $count = -1
    if ($out -match 'Backlog File Count:\s*(\d+)') { $count = [int]$Matches[1] }
    elseif ($out -match 'No Backlog') { $count = 0 }
    $result += @{ partner = $partner; backlog = $count }
}
@{ sending_member = $me; partners = $result } | ConvertTo-Json -Depth 3
'''

DCDIAG_SCRIPT = r'''
$out = dcdiag /q 2>&1 | ForEach-Object { $_.ToString() }
$failed = @($out | ForEach-Object {
    $m = [regex]::Match($_, 'failed test\s+(\S+)')
    if ($m.Success) { $m.Groups[1].Value }
})
@{ failed_tests = $failed; output = ($out -join "`n") } | ConvertTo-Json -Depth 3
'''

IE_ESC_SCRIPT = r'''
$base = 'HKLM:\SOFTWARE\Microsoft\Active Setup\Installed Components'
$admin = (Get-ItemProperty "$base\{A509B1A7-37EF-4b3f-8CFC-4F3A74704073}" -Name IsInstalled -ErrorAction SilentlyContinue).IsInstalled
$user = (Get-ItemProperty "$base\{A509B1A8-37EF-4b3f-8CFC-4F3A74704073}" -Name IsInstalled -ErrorAction SilentlyContinue).IsInstalled
@{ admin_enabled = ($admin -eq 1); user_enabled = ($user -eq 1) } | ConvertTo-Json
'''


# =============================================================================
# Evaluators
# =============================================================================


def _as_list(value: Any) -> List[Any]:
    """ConvertTo-Json emits a bare object for single-element arrays."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def evaluate_services(payload: Any) -> List[str]:
    warnings = []
    for svc in _as_list((payload or {}).get("services")):
        status = svc.get("status")
        if status not in ("Running", "NotInstalled"):
            warnings.append(f"service {svc.get('name')} is {status}")
    return warnings


def evaluate_disk_space(payload: Any, threshold_percent: float) -> List[str]:
    warnings = []
    for volume in _as_list((payload or {}).get("volumes")):
        free = volume.get("free_percent")
        if free is not None and free < threshold_percent:
            warnings.append(
                f"volume {volume.get('drive')} has {free}% free (below {threshold_percent:g}%)"
            )
    return warnings


def evaluate_pending_reboot(payload: Any) -> List[str]:
    if (payload or {}).get("reboot_pending"):
        return ["reboot pending"]
    return []


def evaluate_windows_updates(payload: Any, max_days_since_install: float = 45.0) -> List[str]:
    payload = payload or {}
    warnings = []
    pending = payload.get("pending_updates")
    if pending:
        warnings.append(f"{pending} update(s) pending")
    days = payload.get("days_since_last_install")
    if days is not None and days > max_days_since_install:
        warnings.append(f"last update installed {days:g} days ago")
    if payload.get("search_error"):
        warnings.append(f"update search failed: {payload['search_error']}")
    return warnings


def evaluate_time_sync(payload: Any, max_skew_seconds: float) -> List[str]:
    payload = payload or {}
    warnings = []
    source = payload.get("source") or ""
    if "Local CMOS Clock" in source or "Free-running" in source:
        warnings.append(f"time source is {source}")
    offset = payload.get("phase_offset_seconds")
    if offset is not None and abs(offset) > max_skew_seconds:
        warnings.append(f"time offset {offset:g}s exceeds {max_skew_seconds:g}s")
    return warnings


def evaluate_dfsr_backlog(payload: Any, threshold: int) -> List[str]:
    warnings = []
    for partner in _as_list((payload or {}).get("partners")):
        backlog = partner.get("backlog")
        if backlog is None or backlog < 0:
            warnings.append(f"SYSVOL backlog to {partner.get('partner')} could not be determined")
        elif backlog > threshold:
            warnings.append(f"SYSVOL backlog to {partner.get('partner')} is {backlog} files")
    return warnings


def evaluate_dcdiag(payload: Any) -> List[str]:
    return [f"dcdiag test {t} failed" for t in _as_list((payload or {}).get("failed_tests"))]


def evaluate_ie_esc(payload: Any) -> List[str]:
    if not (payload or {}).get("admin_enabled", True):
        return ["IE Enhanced Security Configuration is disabled for administrators"]
    return []


# =============================================================================
# Registry
# =============================================================================


def default_registry(config: Optional[FleetConfig] = None) -> CheckRegistry:
    """
    Build the standard check battery.

    Thresholds come from ``config`` (FleetConfig defaults when omitted).
    """
    config = config or FleetConfig()

    return CheckRegistry([
        ScriptCheck(
            name="os_info",
            description="Operating system version, last boot and uptime",
            script=OS_INFO_SCRIPT,
        ),
        ScriptCheck(
            name="services",
            description="State of role-relevant Windows services",
            script=SERVICES_SCRIPT,
            evaluator=evaluate_services,
        ),
        ScriptCheck(
            name="disk_space",
            description="Free space on fixed volumes",
            script=DISK_SPACE_SCRIPT,
            evaluator=partial(evaluate_disk_space, threshold_percent=config.disk_free_warning_percent),
        ),
        ScriptCheck(
            name="pending_reboot",
            description="Pending reboot flags",
            script=PENDING_REBOOT_SCRIPT,
            evaluator=evaluate_pending_reboot,
        ),
        ScriptCheck(
            name="windows_updates",
            description="Last installed hotfix and pending updates",
            script=WINDOWS_UPDATES_SCRIPT,
            timeout_seconds=300,
            evaluator=evaluate_windows_updates,
        ),
        ScriptCheck(
            name="time_sync",
            description="Time service source and offset",
            script=TIME_SYNC_SCRIPT,
            evaluator=partial(evaluate_time_sync, max_skew_seconds=config.time_skew_warning_seconds),
        ),
        ScriptCheck(
            name="dfsr_backlog",
            description="SYSVOL replication backlog to each partner",
            script=DFSR_BACKLOG_SCRIPT,
            domain_controllers_only=True,
            timeout_seconds=300,
            evaluator=partial(evaluate_dfsr_backlog, threshold=config.dfsr_backlog_warning),
        ),
        ScriptCheck(
            name="dcdiag",
            description="Domain controller diagnostics",
            script=DCDIAG_SCRIPT,
            domain_controllers_only=True,
            timeout_seconds=600,
            evaluator=evaluate_dcdiag,
        ),
        ScriptCheck(
            name="ie_esc",
            description="IE Enhanced Security Configuration",
            script=IE_ESC_SCRIPT,
            requires_desktop_shell=True,
            evaluator=evaluate_ie_esc,
        ),
    ])
