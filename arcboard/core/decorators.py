import time
from functools import wraps

from nornir.core.task import Task, Result

from arcboard.core.models import TaskStatus, StandardResult, SubTaskResult
from arcboard.core.state import config as global_config
from arcboard.utils.logger import sys_logger, logger

console = logger.console


def _describe(result: Result) -> str:
    """'<STATUS>: <message>' of a step result, with the error type when one is attached."""
    payload = result.result
    if not isinstance(payload, StandardResult):
        return "UNKNOWN"

    text = f"{payload.status.value}: {payload.message}"
    if isinstance(payload.data, Exception):
        text += f" [{type(payload.data).__name__}]"
    return text


def automated_step(step_name: str):
    """
    Wraps a top-level task.
    1. Writes START/END markers (with duration) to the log file.
    2. A failed result is logged at Error so the transcript shows why the run stopped.
    3. Any exception becomes a failed Result: the engine never sees a raise.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(task: Task, *args, **kwargs) -> Result:
            host_name = task.host.name
            started = time.monotonic()
            sys_logger.info(f"START task='{step_name}' host='{host_name}'")

            try:
                result = func(task, *args, **kwargs)
            except Exception as e:
                sys_logger.error(f"CRASH task='{step_name}' host='{host_name}': {e}", exc_info=True)
                return Result(
                    host=task.host,
                    failed=True,
                    exception=e,
                    result=StandardResult(TaskStatus.FAILED, f"Unhandled {type(e).__name__}: {e}", data=e)
                )

            elapsed = time.monotonic() - started
            if result.failed:
                sys_logger.error(f"FAILED task='{step_name}' host='{host_name}' -> {_describe(result)}")
            sys_logger.info(f"END task='{step_name}' host='{host_name}' ({elapsed:.1f}s) -> {_describe(result)}")
            return result

        return wrapper

    return decorator


def _run_quietly_or_with_spinner(step_name: str, call):
    if not global_config.VERBOSE:
        return call()
    with console.status(f"    [dim]🔹 {step_name}...[/dim]", spinner="dots"):
        return call()


def automated_substep(step_name: str):
    """
    Wraps an internal sub-step returning a SubTaskResult.
    In VERBOSE mode a spinner is shown and replaced by a one-line outcome.
    Exceptions are kept in SubTaskResult.exception instead of propagating.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(task: Task, *args, **kwargs) -> SubTaskResult:
            prefix = f"[{task.host.name}] '{step_name}'"
            sys_logger.info(f"{prefix} started")

            try:
                result = _run_quietly_or_with_spinner(step_name, lambda: func(task, *args, **kwargs))
            except Exception as e:
                sys_logger.error(f"{prefix} raised {type(e).__name__}: {e}", exc_info=True)
                if global_config.VERBOSE:
                    console.print(f"    [bold red]💥 {step_name}[/bold red]: {e}")
                return SubTaskResult(success=False, message=f"{step_name}: {e}", exception=e)

            if result.success:
                sys_logger.info(f"{prefix} ok ({result.message})")
                if global_config.VERBOSE:
                    console.print(f"    [green]✔[/green] [dim]{step_name}[/dim]")
            else:
                sys_logger.error(f"{prefix} failed ({result.message})")
                if global_config.VERBOSE:
                    console.print(f"    [red]✖ {step_name}[/red]: [dim]{result.message}[/dim]")

            return result

        return wrapper

    return decorator
