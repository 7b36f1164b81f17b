"""
PowerShell bodies of the three scripts shipped inside the Win32 app package.

Placeholders use the __NAME__ form and are filled with values quoted for
single-quoted PowerShell strings.
"""
from arcboard.core.settings import AgentSettings, ArcSettings, PathSettings
from arcboard.utils.azcmagent import RESOURCE_GROUP_MARKER, TENANT_MARKER

DETECT_SCRIPT_NAME = "Detect-ArcAgent.ps1"
INSTALL_SCRIPT_NAME = "Install-ArcAgent.ps1"
UNINSTALL_SCRIPT_NAME = "Uninstall-ArcAgent.ps1"

GENERATED_SCRIPTS = (DETECT_SCRIPT_NAME, INSTALL_SCRIPT_NAME, UNINSTALL_SCRIPT_NAME)


def ps_quote(value: str) -> str:
    return "'" + str(value).replace("'", "''") + "'"


DETECT_TEMPLATE = r'''# Intune detection rule: exit 0 + output when the machine is registered with Azure Arc
$service = Get-Service -Name __SERVICE__ -ErrorAction SilentlyContinue
if (-not $service -or $service.Status -ne 'Running') {
    exit 1
}

$cli = __CLI__
if (-not (Test-Path $cli)) {
    exit 1
}

$status = & $cli show 2>&1 | Out-String
if ($status -match __TENANT_PATTERN__ -and $status -match __GROUP_PATTERN__) {
    Write-Output "Azure Arc agent registered"
    exit 0
}
exit 1
'''

INSTALL_TEMPLATE = r'''# Intune install command: runs the onboarding entry point shipped next to this script
$ErrorActionPreference = "Stop"
$logDir = __LOG_DIR__
New-Item -Path $logDir -ItemType Directory -Force | Out-Null
$wrapperLog = Join-Path $logDir "install-wrapper.log"

function Write-Log([string]$Level, [string]$Message) {
    Add-Content -Path $wrapperLog -Value "[$(Get-Date -Format 'yyyy-MM-dd HH:mm:ss')] [$Level] $Message"
}

$entry = Join-Path $PSScriptRoot __ENTRY__
if (-not (Test-Path $entry)) {
    Write-Log "Error" "Entry point not found: $entry"
    exit 1
}

Write-Log "Info" "Starting onboarding"
& $entry --quiet onboard __ARGS__
$code = $LASTEXITCODE
if ($code -ne 0) {
    Write-Log "Error" "Onboarding failed with exit code $code"
    exit 1
}
Write-Log "Info" "Onboarding finished"
exit 0
'''

UNINSTALL_TEMPLATE = r'''# Intune uninstall command: disconnects the machine and removes the agent
$logDir = __LOG_DIR__
New-Item -Path $logDir -ItemType Directory -Force | Out-Null
$log = Join-Path $logDir "uninstall.log"

function Write-Log([string]$Level, [string]$Message) {
    Add-Content -Path $log -Value "[$(Get-Date -Format 'yyyy-MM-dd HH:mm:ss')] [$Level] $Message"
}

Write-Log "Info" "Starting uninstall"
$cli = __CLI__
if (Test-Path $cli) {
    & $cli disconnect --force-local-only 2>&1 | ForEach-Object { Write-Log "Info" $_ }
}

$product = Get-CimInstance -ClassName Win32_Product -Filter "Name=__PRODUCT__" | Select-Object -First 1
if (-not $product) {
    Write-Log "Warning" "Agent not installed"
    exit 0
}

$msiLog = Join-Path $logDir "msi-uninstall.log"
$proc = Start-Process -FilePath "msiexec.exe" -ArgumentList "/x $($product.IdentifyingNumber) /qn /norestart /l*v `"$msiLog`"" -Wait -PassThru
if ($proc.ExitCode -ne 0) {
    Write-Log "Error" "msiexec exited with code $($proc.ExitCode)"
    exit 1
}
Write-Log "Info" "Agent removed"
exit 0
'''


def _fill(template: str, values: dict) -> str:
    for key, value in values.items():
        template = template.replace(f"__{key}__", value)
    return template


def populated_field_pattern(marker: str) -> str:
    """
    Matches a '<marker> : <value>' line whose value is not empty.
    Horizontal whitespace only: an empty field must not borrow the next line.
    Same meaning under Python re and .NET -match.
    """
    return rf"(?m)^[ \t]*{marker}[ \t]*:[ \t]*\S"


def generate_detect_script(agent: AgentSettings) -> str:
    return _fill(DETECT_TEMPLATE, {
        "SERVICE": ps_quote(agent.service_name),
        "CLI": ps_quote(agent.cli_path),
        "TENANT_PATTERN": ps_quote(populated_field_pattern(TENANT_MARKER)),
        "GROUP_PATTERN": ps_quote(populated_field_pattern(RESOURCE_GROUP_MARKER)),
    })


def onboard_arguments(arc: ArcSettings) -> str:
    """CLI options of 'arcboard onboard' for the supplied connection values only."""
    options = (
        ("--subscription-id", arc.subscription_id),
        ("--resource-group", arc.resource_group),
        ("--location", arc.location),
        ("--tenant-id", arc.tenant_id),
        ("--tags", arc.tags),
    )
    return " ".join(f"{flag} {ps_quote(value)}" for flag, value in options if value)


def generate_install_script(entry_name: str, arc: ArcSettings, paths: PathSettings) -> str:
    return _fill(INSTALL_TEMPLATE, {
        "LOG_DIR": ps_quote(paths.log_dir),
        "ENTRY": ps_quote(entry_name),
        "ARGS": onboard_arguments(arc),
    })


def generate_uninstall_script(agent: AgentSettings, paths: PathSettings) -> str:
    return _fill(UNINSTALL_TEMPLATE, {
        "LOG_DIR": ps_quote(paths.log_dir),
        "CLI": ps_quote(agent.cli_path),
        "PRODUCT": ps_quote(agent.product_name),
    })
