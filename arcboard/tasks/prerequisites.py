from nornir.core.task import Task, Result

from arcboard.core.decorators import automated_step, automated_substep
from arcboard.core.errors import PrerequisiteFailure
from arcboard.core.models import AgentState, TaskStatus, StandardResult, SubTaskResult
from arcboard.core.settings import AgentSettings, PrerequisiteSettings
from arcboard.tasks import fail, get_settings
from arcboard.tasks.agent_state import derive_agent_state
from arcboard.utils.windows import get_os_build, get_powershell_version, tcp_probe, version_tuple


def _failure(message: str) -> SubTaskResult:
    return SubTaskResult(success=False, message=message, exception=PrerequisiteFailure(message))


# --- SUB-STEPS ---

@automated_substep("Check OS Build")
def _check_os_build(task: Task, prereq: PrerequisiteSettings) -> SubTaskResult:
    build = get_os_build()
    if build is None:
        return _failure("Could not determine the Windows build. Run on Windows Server 2019 / Windows 10 1809 or later.")

    if build < prereq.min_os_build:
        return _failure(
            f"OS build {build} is below the minimum {prereq.min_os_build}. "
            "Upgrade the operating system before onboarding."
        )

    return SubTaskResult(success=True, message=f"OS build {build}", data=build)


@automated_substep("Check PowerShell Version")
def _check_runtime_version(task: Task, prereq: PrerequisiteSettings) -> SubTaskResult:
    version = get_powershell_version(task)
    if version is None:
        return _failure("Windows PowerShell not found. Install Windows PowerShell "
                        f"{prereq.min_powershell} (Windows Management Framework).")

    if version_tuple(version) < version_tuple(prereq.min_powershell):
        return _failure(
            f"PowerShell {version} is below the minimum {prereq.min_powershell}. "
            "Install Windows Management Framework 5.1."
        )

    return SubTaskResult(success=True, message=f"PowerShell {version}", data=version)


@automated_substep("Check Azure Endpoint Reachability")
def _check_endpoint(task: Task, prereq: PrerequisiteSettings) -> SubTaskResult:
    target = f"{prereq.endpoint_host}:{prereq.endpoint_port}"
    error = tcp_probe(prereq.endpoint_host, prereq.endpoint_port, prereq.probe_timeout)

    if error is not None:
        return _failure(
            f"Unreachable: {target} ({error}). Allow outbound HTTPS to Azure "
            "(firewall/proxy) and check DNS."
        )

    return SubTaskResult(success=True, message=f"Connectivity to {target} verified")


@automated_substep("Check Existing Agent")
def _check_agent_state(task: Task, agent: AgentSettings) -> SubTaskResult:
    state, _ = derive_agent_state(task, agent)

    if state == AgentState.REGISTERED:
        return _failure(
            "Machine is already registered with Azure Arc. "
            "Run 'offboard' first if it must be re-onboarded."
        )

    return SubTaskResult(success=True, message=f"Agent state: {state.value}", data=state)


# --- MAIN TASK ---

@automated_step("Check Prerequisites")
def check_prerequisites(task: Task) -> Result:
    """
    Read-only gate in front of the onboarding flow.
    Records the agent state on the host so fetch/install can take the install-skip path.
    """
    settings = get_settings(task)
    prereq = settings.prerequisites

    s1 = _check_os_build(task, prereq)
    if not s1.success: return fail(task, s1)

    s2 = _check_runtime_version(task, prereq)
    if not s2.success: return fail(task, s2)

    s3 = _check_endpoint(task, prereq)
    if not s3.success: return fail(task, s3)

    s4 = _check_agent_state(task, settings.agent)
    if not s4.success: return fail(task, s4)

    task.host["agent_state"] = s4.data

    return Result(
        host=task.host,
        result=StandardResult(
            status=TaskStatus.OK,
            message=f"Ready | {s1.message}, {s2.message}, {s4.message}",
            data=s4.data
        )
    )
