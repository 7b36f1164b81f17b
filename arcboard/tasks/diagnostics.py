from nornir.core.task import Task, Result

from arcboard.core.decorators import automated_step, automated_substep
from arcboard.core.errors import GraphError
from arcboard.core.models import TaskStatus, StandardResult, SubTaskResult
from arcboard.core.settings import DiagnosticsSettings
from arcboard.tasks import fail, get_settings
from arcboard.tasks.tokens import acquire_token
from arcboard.utils.azure import ARM_RESOURCE
from arcboard.utils.graph import RestClient, build_diagnostic_setting, put_diagnostic_setting


@automated_substep("Apply Entra ID Diagnostic Setting")
def _apply_setting(task: Task, client: RestClient, diag: DiagnosticsSettings) -> SubTaskResult:
    body = build_diagnostic_setting(diag.workspace_id, diag.categories)
    try:
        response = put_diagnostic_setting(client, diag.name, body)
    except GraphError as e:
        return SubTaskResult(success=False, message=str(e), exception=e)

    return SubTaskResult(success=True, message=f"Setting '{diag.name}' applied", data=response)


@automated_step("Configure Tenant Diagnostic Settings")
def configure_diagnostic_settings(task: Task) -> Result:
    """Sends Entra ID sign-in and audit logs to a Log Analytics workspace."""
    settings = get_settings(task)
    diag = settings.diagnostics

    if not diag.workspace_id:
        return Result(
            host=task.host,
            failed=True,
            result=StandardResult(TaskStatus.FAILED, "Missing diagnostics.workspace_id (or LOG_ANALYTICS_WORKSPACE_ID)")
        )

    s1 = acquire_token(task, ARM_RESOURCE, settings.arc.tenant_id)
    if not s1.success: return fail(task, s1)

    client = RestClient(settings.graph.arm_url, s1.data, timeout=settings.graph.timeout)

    s2 = _apply_setting(task, client, diag)
    if not s2.success: return fail(task, s2)

    return Result(
        host=task.host,
        changed=True,
        result=StandardResult(TaskStatus.CHANGED, f"{s2.message}: {', '.join(diag.categories)}")
    )
