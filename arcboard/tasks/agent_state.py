from typing import Tuple

from nornir.core.task import Task, Result

from arcboard.core.decorators import automated_step
from arcboard.core.models import AgentState, TaskStatus, StandardResult
from arcboard.core.settings import AgentSettings
from arcboard.tasks import get_settings
from arcboard.utils.azcmagent import azcmagent_show, parse_registration
from arcboard.utils.windows import service_state


def derive_agent_state(task: Task, agent: AgentSettings) -> Tuple[AgentState, str]:
    """
    Reads the agent state from the live system: service manager first, then the agent CLI.
    Returns the state and the raw status output (empty when nothing is installed).
    """
    if service_state(task, agent.service_name) is None:
        return AgentState.NOT_INSTALLED, ""

    res = azcmagent_show(task, agent.cli_path)
    output = res.result or ""
    if parse_registration(output).registered:
        return AgentState.REGISTERED, output
    return AgentState.INSTALLED_UNREGISTERED, output


@automated_step("Report Agent State")
def report_agent_state(task: Task) -> Result:
    """
    Detection entry point: OK when the machine is registered, FAILED otherwise.
    The derived state is stored on the host as 'agent_state'.
    """
    settings = get_settings(task)
    state, _ = derive_agent_state(task, settings.agent)
    task.host["agent_state"] = state

    if state == AgentState.REGISTERED:
        return Result(host=task.host, result=StandardResult(TaskStatus.OK, f"Agent state: {state.value}", data=state))

    return Result(
        host=task.host,
        failed=True,
        result=StandardResult(TaskStatus.FAILED, f"Agent state: {state.value}", data=state)
    )
