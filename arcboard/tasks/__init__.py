from nornir.core.task import Task, Result

from arcboard.core.models import TaskStatus, StandardResult, SubTaskResult
from arcboard.core.settings import AppSettings


def fail(task: Task, sub_res: SubTaskResult) -> Result:
    """
    Helper to return a failed Result from a SubTaskResult.
    The typed error (if any) travels in 'data'.
    """
    return Result(
        host=task.host,
        failed=True,
        result=StandardResult(TaskStatus.FAILED, sub_res.message, data=sub_res.exception)
    )


def get_settings(task: Task) -> AppSettings:
    """Settings injected by the engine into the host data."""
    return task.host["app_config"]


__all__ = [
    "fail",
    "get_settings",
]
