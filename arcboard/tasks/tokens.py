from typing import Optional

from nornir.core.task import Task

from arcboard.core.decorators import automated_substep
from arcboard.core.models import SubTaskResult
from arcboard.utils.azure import az_get_access_token, az_is_installed


@automated_substep("Acquire Access Token")
def acquire_token(task: Task, resource: str, tenant_id: Optional[str] = None) -> SubTaskResult:
    """Bearer token from the signed-in Azure CLI session ('az login' first)."""
    if not az_is_installed():
        return SubTaskResult(success=False, message="Binary 'az' not found")

    res = az_get_access_token(task, resource, tenant_id=tenant_id)
    if res.failed:
        return SubTaskResult(success=False, message=f"No token for {resource}: {res.result.strip()}")

    return SubTaskResult(success=True, message=f"Token acquired for {resource}", data=res.result)
