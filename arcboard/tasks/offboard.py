from nornir.core.task import Task, Result

from arcboard.core.decorators import automated_step, automated_substep
from arcboard.core.errors import InstallError
from arcboard.core.models import AgentState, TaskStatus, StandardResult, SubTaskResult
from arcboard.core.settings import AgentSettings
from arcboard.tasks import fail, get_settings
from arcboard.tasks.agent_state import derive_agent_state
from arcboard.utils.azcmagent import azcmagent_disconnect
from arcboard.utils.windows import find_product_code, msiexec

MSI_UNINSTALL_LOG_NAME = "msi-uninstall.log"


# --- SUB-STEPS ---

@automated_substep("Disconnect From Azure Arc")
def _disconnect(task: Task, agent: AgentSettings, force_local_only: bool) -> SubTaskResult:
    res = azcmagent_disconnect(task, agent.cli_path, force_local_only=force_local_only)
    if res.failed:
        return SubTaskResult(success=False, message=f"azcmagent disconnect failed: {res.result.strip()}")
    return SubTaskResult(success=True, message="Azure resource removed" if not force_local_only else "Local state cleared")


@automated_substep("Uninstall Connected Machine Agent")
def _uninstall(task: Task, agent: AgentSettings, log_path) -> SubTaskResult:
    product_code = find_product_code(task, agent.product_name)
    if not product_code:
        return SubTaskResult(success=False, message=f"Product code for '{agent.product_name}' not found")

    log_path.parent.mkdir(parents=True, exist_ok=True)
    res = msiexec(task, ["/x", product_code, "/qn", "/norestart", "/l*v", str(log_path)])
    exit_code = getattr(res, "returncode", None)
    if exit_code != 0:
        error = InstallError(exit_code=exit_code)
        return SubTaskResult(success=False, message=f"Uninstall: {error}. See {log_path}", exception=error)

    return SubTaskResult(success=True, message=f"Removed {product_code}")


# --- MAIN TASK ---

@automated_step("Offboard Azure Arc Agent")
def offboard_agent(task: Task, force_local_only: bool = False) -> Result:
    """
    Disconnects the machine (when registered) and uninstalls the agent.
    Nothing installed is a no-op.
    """
    settings = get_settings(task)
    state, _ = derive_agent_state(task, settings.agent)

    if state == AgentState.NOT_INSTALLED:
        return Result(host=task.host, result=StandardResult(TaskStatus.OK, "Agent not installed, nothing to do"))

    if state == AgentState.REGISTERED:
        s1 = _disconnect(task, settings.agent, force_local_only)
        if not s1.success: return fail(task, s1)

    s2 = _uninstall(task, settings.agent, settings.paths.log_file(MSI_UNINSTALL_LOG_NAME))
    if not s2.success: return fail(task, s2)

    task.host["agent_state"] = AgentState.NOT_INSTALLED

    return Result(
        host=task.host,
        changed=True,
        result=StandardResult(TaskStatus.CHANGED, "Agent disconnected and uninstalled")
    )
