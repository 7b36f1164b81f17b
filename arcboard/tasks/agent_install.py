import time
from pathlib import Path
from typing import Callable, Optional

from nornir.core.task import Task, Result

from arcboard.core.decorators import automated_step, automated_substep
from arcboard.core.errors import InstallError
from arcboard.core.models import AgentState, TaskStatus, StandardResult, SubTaskResult
from arcboard.core.settings import AgentSettings
from arcboard.tasks import fail, get_settings
from arcboard.tasks.agent_download import installer_path
from arcboard.utils.logger import also_log_to, sys_logger
from arcboard.utils.windows import msiexec, service_state

INSTALL_LOG_NAME = "install.log"
MSI_LOG_NAME = "msi-install.log"


def wait_for_service(
        task: Task,
        service: str,
        initial_delay: float = 1.0,
        factor: float = 2.0,
        max_wait: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
) -> Optional[str]:
    """
    Polls the service manager with exponential backoff until the service runs
    or 'max_wait' seconds of sleeping have been spent.
    Returns the last observed state (None if the service never appeared).
    """
    if max_wait > 0 and (initial_delay <= 0 or factor < 1):
        # The summed sleeps would never reach max_wait
        raise ValueError(
            f"Service wait needs initial_delay > 0 and factor >= 1 (got {initial_delay}, {factor})"
        )

    waited = 0.0
    delay = initial_delay
    state = None

    while True:
        state = service_state(task, service)
        if state == "RUNNING":
            return state
        if waited >= max_wait:
            return state

        step = min(delay, max_wait - waited)
        sleep(step)
        waited += step
        delay *= factor


# --- SUB-STEPS ---

@automated_substep("Run MSI Installer")
def _run_installer(task: Task, installer: Path, log_path: Path) -> SubTaskResult:
    if not installer.is_file():
        error = InstallError(message=f"Installer not found at {installer}")
        return SubTaskResult(success=False, message=str(error), exception=error)

    log_path.parent.mkdir(parents=True, exist_ok=True)
    res = msiexec(task, ["/i", str(installer), "/qn", "/norestart", "/l*v", str(log_path)])
    exit_code = getattr(res, "returncode", None)

    if exit_code != 0:
        error = InstallError(exit_code=exit_code)
        return SubTaskResult(success=False, message=f"{error}. See {log_path}", exception=error)

    return SubTaskResult(success=True, message="msiexec exited with code 0")


@automated_substep("Confirm Agent Service Is Running")
def _confirm_service(task: Task, agent: AgentSettings) -> SubTaskResult:
    # Exit code 0 doesn't mean the service finished starting
    state = wait_for_service(
        task,
        agent.service_name,
        initial_delay=agent.service_wait_initial,
        factor=agent.service_wait_factor,
        max_wait=agent.service_wait_max,
    )

    if state != "RUNNING":
        observed = state or "absent"
        error = InstallError(
            reason=InstallError.SERVICE_NOT_RUNNING,
            message=f"Service '{agent.service_name}' is {observed} after {agent.service_wait_max}s",
        )
        return SubTaskResult(success=False, message=str(error), exception=error)

    return SubTaskResult(success=True, message=f"Service '{agent.service_name}' running")


# --- MAIN TASK ---

@automated_step("Install Connected Machine Agent")
def install_agent(task: Task) -> Result:
    """Installs the downloaded MSI silently, then double-checks the agent service."""
    if task.host.get("agent_state") == AgentState.INSTALLED_UNREGISTERED:
        return Result(
            host=task.host,
            result=StandardResult(TaskStatus.SKIPPED, "Agent already installed, install skipped")
        )

    settings = get_settings(task)
    msi_log = settings.paths.log_file(MSI_LOG_NAME)

    with also_log_to(settings.paths.log_file(INSTALL_LOG_NAME)):
        s1 = _run_installer(task, installer_path(task), msi_log)
        if not s1.success: return fail(task, s1)

        s2 = _confirm_service(task, settings.agent)
        if not s2.success: return fail(task, s2)

        sys_logger.info(f"MSI verbose log written to {msi_log}")

    task.host["agent_state"] = AgentState.INSTALLED_UNREGISTERED

    return Result(
        host=task.host,
        changed=True,
        result=StandardResult(TaskStatus.CHANGED, "Agent installed and service running")
    )
