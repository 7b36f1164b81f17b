import shutil
from pathlib import Path

from nornir.core.task import Task, Result

from arcboard.core.decorators import automated_step, automated_substep
from arcboard.core.errors import FetchError
from arcboard.core.models import AgentState, TaskStatus, StandardResult, SubTaskResult
from arcboard.tasks import fail, get_settings
from arcboard.utils.download import download_file, sha256sum
from arcboard.utils.logger import sys_logger


def installer_path(task: Task) -> Path:
    settings = get_settings(task)
    return Path(settings.paths.download_dir) / settings.agent.installer_name


# --- SUB-STEPS ---

@automated_substep("Download Connected Machine Agent")
def _download_installer(task: Task, url: str, dest: Path, timeout: float) -> SubTaskResult:
    try:
        download_file(url, dest, timeout=timeout)
    except FetchError as e:
        return SubTaskResult(success=False, message=str(e), exception=e)

    return SubTaskResult(success=True, message=f"Saved to {dest}", data=dest)


@automated_substep("Verify Installer Integrity")
def _verify_installer(task: Task, dest: Path, expected_sha256: str) -> SubTaskResult:
    actual = sha256sum(dest)
    if actual.lower() != expected_sha256.strip().lower():
        error = FetchError(f"SHA-256 mismatch for {dest.name}: expected {expected_sha256}, got {actual}")
        return SubTaskResult(success=False, message=str(error), exception=error)

    return SubTaskResult(success=True, message="SHA-256 matches pinned value")


# --- MAIN TASKS ---

@automated_step("Fetch Agent Installer")
def fetch_agent(task: Task) -> Result:
    """Downloads the agent MSI unless the agent is already installed."""
    if task.host.get("agent_state") == AgentState.INSTALLED_UNREGISTERED:
        return Result(
            host=task.host,
            result=StandardResult(TaskStatus.SKIPPED, "Agent already installed, download skipped")
        )

    settings = get_settings(task)
    agent = settings.agent
    dest = installer_path(task)

    s1 = _download_installer(task, agent.installer_url, dest, agent.download_timeout)
    if not s1.success: return fail(task, s1)

    if agent.installer_sha256:
        s2 = _verify_installer(task, dest, agent.installer_sha256)
        if not s2.success: return fail(task, s2)
    else:
        sys_logger.warning("No installer SHA-256 pinned (agent.installer_sha256); integrity not verified")

    return Result(
        host=task.host,
        changed=True,
        result=StandardResult(TaskStatus.CHANGED, f"Installer downloaded to {dest}", data=dest)
    )


@automated_step("Clean Up Downloads")
def cleanup_downloads(task: Task) -> Result:
    """Best effort: a failure here is a warning, never a failed run."""
    download_dir = Path(get_settings(task).paths.download_dir)

    if not download_dir.exists():
        return Result(host=task.host, result=StandardResult(TaskStatus.OK, "Nothing to clean up"))

    try:
        shutil.rmtree(download_dir)
    except OSError as e:
        sys_logger.warning(f"Could not remove {download_dir}: {e}")
        return Result(
            host=task.host,
            result=StandardResult(TaskStatus.WARNING, f"Could not remove {download_dir}: {e}")
        )

    return Result(host=task.host, changed=True, result=StandardResult(TaskStatus.CHANGED, f"Removed {download_dir}"))
