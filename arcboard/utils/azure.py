import json
import shutil
from typing import Optional

from nornir.core.task import Task, Result

from arcboard.utils.windows import run_command

GRAPH_RESOURCE = "https://graph.microsoft.com"
ARM_RESOURCE = "https://management.azure.com"


def az_executable() -> str:
    # On Windows the CLI entry point is a batch file
    return shutil.which("az") or shutil.which("az.cmd") or "az"


def az_is_installed() -> bool:
    """Checks if az CLI is installed."""
    return shutil.which("az") is not None or shutil.which("az.cmd") is not None


def az_get_access_token(task: Task, resource: str, tenant_id: Optional[str] = None) -> Result:
    """
    Requests a bearer token for 'resource' from the signed-in CLI session.
    On success 'result' holds the token string.
    """
    cmd = [az_executable(), "account", "get-access-token", "--resource", resource, "-o", "json"]
    if tenant_id:
        cmd += ["--tenant", tenant_id]

    res = run_command(task, cmd)
    if res.failed:
        return res

    try:
        data = json.loads(res.result)
    except json.JSONDecodeError:
        return Result(host=task.host, failed=True, result="Could not parse az get-access-token output")

    token = data.get("accessToken")
    if not token:
        return Result(host=task.host, failed=True, result="No accessToken in az output (az login required?)")

    return Result(host=task.host, result=token)
