from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich import print as rprint
from rich.panel import Panel

from arcboard import __version__
from arcboard.core.engine import LocalEngine
from arcboard.core.models import AgentState
from arcboard.core.registry import (
    LOG_FILES, ONBOARD, STATUS, OFFBOARD, PACKAGE, AUTOPILOT, DIAGNOSTICS,
)
from arcboard.core.settings import AppSettings, load_settings
from arcboard.core.state import config as global_config
from arcboard.utils.logger import configure_logging, sys_logger

app = typer.Typer(
    help="arcboard - Azure Arc onboarding & Intune packaging for Windows devices",
    add_completion=False,
    no_args_is_help=True
)


@app.callback()
def main(
        ctx: typer.Context,
        quiet: bool = typer.Option(
            False, "--quiet", "-q",
            help="Disable detailed sub-step output (Silent Mode)."
        ),
        config_file: Path = typer.Option(
            "arcboard.yaml", "--config", "-c",
            help="Path to the configuration YAML file (optional).",
            dir_okay=False
        )
):
    """
    arcboard CLI.
    Common entry point for all commands.
    """
    global_config.VERBOSE = not quiet
    global_config.CONFIG_FILE = str(config_file)

    if ctx.invoked_subcommand and not quiet:
        rprint(Panel.fit(
            "[bold white]arcboard[/bold white]",
            border_style="blue",
            subtitle=f"v{__version__}"
        ))


def _prepare(goal: str, overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> AppSettings:
    """Loads settings and points the file logger at the goal's log file."""
    try:
        settings = load_settings(global_config.CONFIG_FILE, overrides=overrides)
    except (TypeError, ValueError) as e:
        rprint(f"[bold red]❌ Configuration error:[/bold red] {e}")
        raise typer.Exit(code=1)

    configure_logging(settings.paths.log_file(LOG_FILES[goal]))
    return settings


def run_goal(goal: str, settings: AppSettings, task_params: Optional[Dict[str, Dict[str, Any]]] = None):
    engine = LocalEngine(settings)
    exit_code = engine.run(goal, task_params=task_params)
    raise typer.Exit(code=exit_code)


def _arc_overrides(subscription_id, resource_group, location, tenant_id, tags) -> Dict[str, Dict[str, Any]]:
    return {
        "arc": {
            "subscription_id": subscription_id,
            "resource_group": resource_group,
            "location": location,
            "tenant_id": tenant_id,
            "tags": tags,
        }
    }


@app.command()
def onboard(
        subscription_id: Optional[str] = typer.Option(None, "--subscription-id", help="Azure subscription id."),
        resource_group: Optional[str] = typer.Option(None, "--resource-group", help="Target resource group."),
        location: Optional[str] = typer.Option(None, "--location", help="Azure region, e.g. westeurope."),
        tenant_id: Optional[str] = typer.Option(None, "--tenant-id", help="Entra ID tenant id."),
        tags: Optional[str] = typer.Option(None, "--tags", help="Resource tags, 'k1=v1,k2=v2'."),
        installer_sha256: Optional[str] = typer.Option(None, "--installer-sha256", help="Pin the agent MSI hash."),
):
    """
    [Azure Arc] Installs the Connected Machine agent and registers this machine.
    """
    overrides = _arc_overrides(subscription_id, resource_group, location, tenant_id, tags)
    overrides["agent"] = {"installer_sha256": installer_sha256}
    settings = _prepare(ONBOARD, overrides)
    run_goal(ONBOARD, settings)


@app.command()
def status():
    """
    [Azure Arc] Prints the agent state. Exit code 0 only when registered.
    """
    settings = _prepare(STATUS)
    engine = LocalEngine(settings)
    engine.run(STATUS)

    state = engine.host.get("agent_state")
    label = state.value if state else "Unknown"
    rprint(f"Agent state: [bold]{label}[/bold]")
    raise typer.Exit(code=0 if state == AgentState.REGISTERED else 1)


@app.command()
def offboard(
        force_local_only: bool = typer.Option(
            False, "--force-local-only",
            help="Clear local agent state without deleting the Azure resource."
        ),
):
    """
    [Azure Arc] Disconnects this machine and uninstalls the agent.
    """
    settings = _prepare(OFFBOARD)
    run_goal(OFFBOARD, settings, task_params={"offboard_agent": {"force_local_only": force_local_only}})


@app.command()
def package(
        entry_file: Optional[Path] = typer.Option(
            None, "--entry-file", "-e",
            help="Onboarding entry point copied into the package (e.g. a frozen arcboard.exe)."
        ),
        source_dir: Optional[Path] = typer.Option(None, "--source-dir", help="Staging directory."),
        output_dir: Optional[Path] = typer.Option(None, "--output-dir", help="Where the .intunewin is written."),
        subscription_id: Optional[str] = typer.Option(None, "--subscription-id"),
        resource_group: Optional[str] = typer.Option(None, "--resource-group"),
        location: Optional[str] = typer.Option(None, "--location"),
        tenant_id: Optional[str] = typer.Option(None, "--tenant-id"),
        tags: Optional[str] = typer.Option(None, "--tags"),
):
    """
    [Intune] Builds the Win32 app package that onboards devices to Azure Arc.
    """
    overrides = _arc_overrides(subscription_id, resource_group, location, tenant_id, tags)
    overrides["packaging"] = {
        "entry_file": str(entry_file) if entry_file else None,
        "source_dir": str(source_dir) if source_dir else None,
        "output_dir": str(output_dir) if output_dir else None,
    }
    settings = _prepare(PACKAGE, overrides)
    run_goal(PACKAGE, settings)


@app.command(name="autopilot-import")
def autopilot_import(
        group_tag: Optional[str] = typer.Option(None, "--group-tag", "-g", help="Autopilot group tag."),
        tenant_id: Optional[str] = typer.Option(None, "--tenant-id"),
):
    """
    [Intune] Imports this device into Windows Autopilot and triggers a sync.
    """
    overrides = {
        "autopilot": {"group_tag": group_tag},
        "arc": {"tenant_id": tenant_id},
    }
    settings = _prepare(AUTOPILOT, overrides)
    run_goal(AUTOPILOT, settings)


@app.command(name="diagnostic-settings")
def diagnostic_settings(
        workspace_id: Optional[str] = typer.Option(
            None, "--workspace-id", "-w",
            help="Log Analytics workspace resource id."
        ),
        name: Optional[str] = typer.Option(None, "--name", help="Diagnostic setting name."),
        tenant_id: Optional[str] = typer.Option(None, "--tenant-id"),
):
    """
    [Entra ID] Routes tenant audit and sign-in logs to Log Analytics.
    """
    overrides = {
        "diagnostics": {"workspace_id": workspace_id, "name": name},
        "arc": {"tenant_id": tenant_id},
    }
    settings = _prepare(DIAGNOSTICS, overrides)
    sys_logger.info(f"Diagnostic setting '{settings.diagnostics.name}' -> {settings.diagnostics.workspace_id}")
    run_goal(DIAGNOSTICS, settings)


if __name__ == "__main__":
    app()
