import shutil
from pathlib import Path

from nornir.core.task import Task, Result

from arcboard.core.decorators import automated_step, automated_substep
from arcboard.core.errors import FetchError, PackagingError
from arcboard.core.models import TaskStatus, StandardResult, SubTaskResult
from arcboard.core.settings import AppSettings
from arcboard.tasks import fail, get_settings
from arcboard.tasks.package_scripts import (
    DETECT_SCRIPT_NAME,
    INSTALL_SCRIPT_NAME,
    UNINSTALL_SCRIPT_NAME,
    generate_detect_script,
    generate_install_script,
    generate_uninstall_script,
)
from arcboard.utils.download import download_file
from arcboard.utils.windows import run_command

INSTRUCTIONS_NAME = "DEPLOYMENT_INSTRUCTIONS.txt"


def package_file_name() -> str:
    return Path(INSTALL_SCRIPT_NAME).stem + ".intunewin"


def instructions_path(settings: AppSettings) -> Path:
    return Path(settings.packaging.output_dir).parent / INSTRUCTIONS_NAME


# --- SUB-STEPS ---

@automated_substep("Write Package Scripts")
def _write_scripts(task: Task, settings: AppSettings, source_dir: Path) -> SubTaskResult:
    entry_name = Path(settings.packaging.entry_file).name
    scripts = {
        DETECT_SCRIPT_NAME: generate_detect_script(settings.agent),
        INSTALL_SCRIPT_NAME: generate_install_script(entry_name, settings.arc, settings.paths),
        UNINSTALL_SCRIPT_NAME: generate_uninstall_script(settings.agent, settings.paths),
    }

    source_dir.mkdir(parents=True, exist_ok=True)
    for name, body in scripts.items():
        # BOM-less UTF-8 with CRLF, what Windows PowerShell 5.1 reads best
        (source_dir / name).write_text(body.replace("\n", "\r\n"), encoding="utf-8", newline="")

    return SubTaskResult(success=True, message=f"{len(scripts)} scripts written", data=list(scripts))


@automated_substep("Copy Onboarding Entry Point")
def _copy_entry(task: Task, entry_file: Path, source_dir: Path) -> SubTaskResult:
    if not entry_file.is_file():
        error = PackagingError(f"Onboarding entry point not found: {entry_file}")
        return SubTaskResult(success=False, message=str(error), exception=error)

    dest = source_dir / entry_file.name
    shutil.copy2(entry_file, dest)
    return SubTaskResult(success=True, message=f"Copied {entry_file.name}", data=dest)


@automated_substep("Download Win32 Content Prep Tool")
def _download_tool(task: Task, url: str, dest: Path) -> SubTaskResult:
    try:
        download_file(url, dest)
    except FetchError as e:
        return SubTaskResult(success=False, message=str(e), exception=e)
    return SubTaskResult(success=True, message=f"Saved to {dest}")


@automated_substep("Run IntuneWinAppUtil")
def _run_packager(task: Task, tool: Path, source_dir: Path, output_dir: Path) -> SubTaskResult:
    output_dir.mkdir(parents=True, exist_ok=True)
    cmd = [str(tool), "-c", str(source_dir), "-s", INSTALL_SCRIPT_NAME, "-o", str(output_dir), "-q"]

    res = run_command(task, cmd)
    if res.failed:
        error = PackagingError(f"IntuneWinAppUtil failed: {res.result.strip()}")
        return SubTaskResult(success=False, message=str(error), exception=error)

    artifact = output_dir / package_file_name()
    if not artifact.is_file():
        error = PackagingError(f"IntuneWinAppUtil finished but {artifact} was not produced")
        return SubTaskResult(success=False, message=str(error), exception=error)

    return SubTaskResult(success=True, message=f"Built {artifact.name}", data=artifact)


# --- MAIN TASKS ---

@automated_step("Stage Package Sources")
def stage_package_sources(task: Task) -> Result:
    """Generates detect/install/uninstall scripts and copies the entry point next to them."""
    settings = get_settings(task)
    source_dir = Path(settings.packaging.source_dir)

    s1 = _write_scripts(task, settings, source_dir)
    if not s1.success: return fail(task, s1)

    s2 = _copy_entry(task, Path(settings.packaging.entry_file), source_dir)
    if not s2.success: return fail(task, s2)

    return Result(
        host=task.host,
        changed=True,
        result=StandardResult(TaskStatus.CHANGED, f"Sources staged in {source_dir}")
    )


@automated_step("Ensure Packaging Tool")
def ensure_packaging_tool(task: Task) -> Result:
    settings = get_settings(task)
    tool = Path(settings.packaging.tool_path)

    if tool.is_file():
        return Result(host=task.host, result=StandardResult(TaskStatus.OK, f"{tool.name} already present"))

    s1 = _download_tool(task, settings.packaging.tool_url, tool)
    if not s1.success: return fail(task, s1)

    return Result(host=task.host, changed=True, result=StandardResult(TaskStatus.CHANGED, s1.message))


@automated_step("Build Win32 App Package")
def build_intunewin(task: Task) -> Result:
    settings = get_settings(task)
    packaging = settings.packaging

    s1 = _run_packager(task, Path(packaging.tool_path), Path(packaging.source_dir), Path(packaging.output_dir))
    if not s1.success: return fail(task, s1)

    task.host["package_artifact"] = s1.data
    return Result(host=task.host, changed=True, result=StandardResult(TaskStatus.CHANGED, s1.message, data=s1.data))


@automated_step("Write Deployment Instructions")
def write_deployment_instructions(task: Task) -> Result:
    settings = get_settings(task)
    path = instructions_path(settings)
    artifact = task.host.get("package_artifact") or Path(settings.packaging.output_dir) / package_file_name()

    install_cmd = f'powershell.exe -NoProfile -ExecutionPolicy Bypass -File .\\{INSTALL_SCRIPT_NAME}'
    uninstall_cmd = f'powershell.exe -NoProfile -ExecutionPolicy Bypass -File .\\{UNINSTALL_SCRIPT_NAME}'

    lines = [
        "Azure Arc agent - Intune Win32 app deployment",
        "=" * 46,
        "",
        f"Package file:       {artifact}",
        "",
        "App information",
        "  Name:             Azure Connected Machine Agent (Arc onboarding)",
        "  Publisher:        Microsoft",
        "",
        "Program",
        f"  Install command:  {install_cmd}",
        f"  Uninstall command: {uninstall_cmd}",
        "  Install behavior: System",
        "  Device restart:   No specific action",
        "  Return codes:     0 = Success, 1 = Failed",
        "",
        "Requirements",
        "  Operating system architecture: x64",
        f"  Minimum OS build: {settings.prerequisites.min_os_build}",
        "",
        "Detection rules",
        "  Rule format:      Use a custom detection script",
        f"  Script file:      {Path(settings.packaging.source_dir) / DETECT_SCRIPT_NAME}",
        "  Run script as 32-bit process on 64-bit clients: No",
        "",
        "Notes",
        "  Onboarding uses device-code sign-in. The code is written to",
        f"  {settings.paths.device_code_file} and the logs to {settings.paths.log_dir}.",
        "",
    ]

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines), encoding="utf-8")

    return Result(host=task.host, changed=True, result=StandardResult(TaskStatus.CHANGED, f"Instructions written to {path}"))
