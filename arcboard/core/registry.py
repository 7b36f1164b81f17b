from typing import Dict, List, Callable, Any

from arcboard.tasks.agent_download import fetch_agent, cleanup_downloads
from arcboard.tasks.agent_install import install_agent
from arcboard.tasks.agent_state import report_agent_state
from arcboard.tasks.arc_connect import connect_arc
from arcboard.tasks.autopilot import collect_device_identity, import_device_identity, sync_autopilot_devices
from arcboard.tasks.diagnostics import configure_diagnostic_settings
from arcboard.tasks.offboard import offboard_agent
from arcboard.tasks.packaging import (
    stage_package_sources,
    ensure_packaging_tool,
    build_intunewin,
    write_deployment_instructions,
)
from arcboard.tasks.prerequisites import check_prerequisites

TaskChain = List[Callable[..., Any]]

ONBOARD = "ONBOARD"
STATUS = "STATUS"
OFFBOARD = "OFFBOARD"
PACKAGE = "PACKAGE"
AUTOPILOT = "AUTOPILOT"
DIAGNOSTICS = "DIAGNOSTICS"

TASK_REGISTRY: Dict[str, TaskChain] = {

    # --- Onboarding flow (runs on the target machine) ---
    ONBOARD: [
        check_prerequisites,
        fetch_agent,
        install_agent,
        connect_arc,
        cleanup_downloads,
    ],

    STATUS: [
        report_agent_state,
    ],

    OFFBOARD: [
        offboard_agent,
    ],

    # --- Packaging (runs once on the operator workstation) ---
    PACKAGE: [
        stage_package_sources,
        ensure_packaging_tool,
        build_intunewin,
        write_deployment_instructions,
    ],

    # --- Intune / Entra ID ---
    AUTOPILOT: [
        collect_device_identity,
        import_device_identity,
        sync_autopilot_devices,
    ],

    DIAGNOSTICS: [
        configure_diagnostic_settings,
    ],
}

# One log file per concern
LOG_FILES: Dict[str, str] = {
    ONBOARD: "onboarding.log",
    STATUS: "onboarding.log",
    OFFBOARD: "uninstall.log",
    PACKAGE: "packaging.log",
    AUTOPILOT: "intune.log",
    DIAGNOSTICS: "intune.log",
}

TROUBLESHOOTING: Dict[str, List[str]] = {
    ONBOARD: [
        "Run the command from an elevated (Administrator) session.",
        "Check outbound HTTPS (443) to *.his.arc.azure.com, management.azure.com and login.microsoftonline.com.",
        "Read onboarding.log, install.log and the MSI verbose log (msi-install.log) in the log directory.",
        "If sign-in timed out, open the device-code file and complete the login within 5 minutes.",
        "Verify the subscription has the Microsoft.HybridCompute provider registered.",
        "Run 'azcmagent check' for the agent's own connectivity diagnostics.",
    ],
    OFFBOARD: [
        "Run the command from an elevated (Administrator) session.",
        "Use --force-local-only when the Azure resource was already deleted.",
        "Read uninstall.log and msi-uninstall.log in the log directory.",
    ],
    PACKAGE: [
        "Build the onboarding entry point first (packaging.entry_file).",
        "IntuneWinAppUtil.exe only runs on Windows.",
        "Read packaging.log in the log directory.",
    ],
    AUTOPILOT: [
        "Run 'az login' with an account allowed to manage Windows Autopilot devices.",
        "Run the command elevated: the hardware hash is only readable by administrators.",
        "A device can only be imported once; delete the old record in Intune first.",
    ],
    DIAGNOSTICS: [
        "Run 'az login' as a Global or Security Administrator.",
        "Check the Log Analytics workspace resource id.",
    ],
}
