import json
import time

from nornir.core.task import Task, Result

from arcboard.core.decorators import automated_step, automated_substep
from arcboard.core.errors import GraphError
from arcboard.core.models import AutopilotDevice, TaskStatus, StandardResult, SubTaskResult
from arcboard.core.settings import AppSettings
from arcboard.tasks import fail, get_settings
from arcboard.tasks.tokens import acquire_token
from arcboard.utils.azure import GRAPH_RESOURCE
from arcboard.utils.graph import (
    RestClient,
    get_imported_device,
    import_autopilot_device,
    import_status,
    sync_autopilot,
)
from arcboard.utils.windows import powershell

HARDWARE_HASH_SCRIPT = (
    "$d = Get-CimInstance -Namespace root/cimv2/mdm/dmmap -ClassName MDM_DevDetail_Ext01 "
    "-Filter \"InstanceID='Ext' AND ParentID='./DevDetail'\"; "
    "$s = (Get-CimInstance -ClassName Win32_BIOS).SerialNumber; "
    "@{ serialNumber = $s; hardwareHash = $d.DeviceHardwareData } | ConvertTo-Json -Compress"
)


# --- SUB-STEPS ---

@automated_substep("Collect Hardware Hash")
def _collect_hardware_hash(task: Task, settings: AppSettings) -> SubTaskResult:
    # The MDM bridge WMI provider needs an elevated session
    res = powershell(task, HARDWARE_HASH_SCRIPT)
    if res.failed:
        return SubTaskResult(success=False, message=f"Hardware hash query failed (run elevated): {res.result.strip()}")

    try:
        data = json.loads(res.result)
    except json.JSONDecodeError as e:
        return SubTaskResult(success=False, exception=e, message="JSON parse error on hardware hash output")

    serial = (data.get("serialNumber") or "").strip()
    hardware_hash = (data.get("hardwareHash") or "").strip()
    if not serial or not hardware_hash:
        return SubTaskResult(success=False, message="Serial number or hardware hash missing")

    device = AutopilotDevice(
        serial_number=serial,
        hardware_hash=hardware_hash,
        group_tag=settings.autopilot.group_tag,
        product_key=settings.autopilot.product_key,
    )
    return SubTaskResult(success=True, message=f"Serial {serial}", data=device)


@automated_substep("Import Device Identity")
def _import_device(task: Task, client: RestClient, device: AutopilotDevice) -> SubTaskResult:
    try:
        identity = import_autopilot_device(client, device)
    except GraphError as e:
        return SubTaskResult(success=False, message=str(e), exception=e)

    return SubTaskResult(success=True, message=f"Import requested (id {identity.get('id')})", data=identity)


@automated_substep("Wait For Import To Complete")
def _wait_for_import(task: Task, client: RestClient, identity_id: str, interval: float, attempts: int) -> SubTaskResult:
    status = "unknown"
    for _ in range(attempts):
        try:
            identity = get_imported_device(client, identity_id)
        except GraphError as e:
            return SubTaskResult(success=False, message=str(e), exception=e)

        status = import_status(identity)
        if status == "complete":
            return SubTaskResult(success=True, message="Import complete", data=identity)
        if status == "error":
            detail = (identity.get("state") or {}).get("deviceErrorName", "unknown error")
            return SubTaskResult(success=False, message=f"Import failed: {detail}")

        time.sleep(interval)

    return SubTaskResult(success=False, message=f"Import still '{status}' after {attempts} checks")


# --- MAIN TASKS ---

@automated_step("Collect Autopilot Device Identity")
def collect_device_identity(task: Task) -> Result:
    settings = get_settings(task)

    s1 = _collect_hardware_hash(task, settings)
    if not s1.success: return fail(task, s1)

    task.host["autopilot_device"] = s1.data
    return Result(host=task.host, result=StandardResult(TaskStatus.OK, s1.message, data=s1.data))


@automated_step("Import Device Into Autopilot")
def import_device_identity(task: Task) -> Result:
    """Uploads the collected identity (with group tag) and waits for Intune to process it."""
    settings = get_settings(task)
    device: AutopilotDevice = task.host["autopilot_device"]

    s1 = acquire_token(task, GRAPH_RESOURCE, settings.arc.tenant_id)
    if not s1.success: return fail(task, s1)

    client = RestClient(settings.graph.graph_url, s1.data, timeout=settings.graph.timeout)
    task.host["graph_client"] = client

    s2 = _import_device(task, client, device)
    if not s2.success: return fail(task, s2)

    s3 = _wait_for_import(
        task,
        client,
        s2.data.get("id", ""),
        settings.autopilot.import_poll_interval,
        settings.autopilot.import_poll_attempts,
    )
    if not s3.success: return fail(task, s3)

    tag = f" (group tag '{device.group_tag}')" if device.group_tag else ""
    return Result(
        host=task.host,
        changed=True,
        result=StandardResult(TaskStatus.CHANGED, f"Device {device.serial_number} imported{tag}")
    )


@automated_step("Trigger Autopilot Sync")
def sync_autopilot_devices(task: Task) -> Result:
    client: RestClient = task.host["graph_client"]

    try:
        sync_autopilot(client)
    except GraphError as e:
        # 429 means a sync ran recently: the import will be picked up by it
        if e.status_code == 429:
            return Result(host=task.host, result=StandardResult(TaskStatus.WARNING, "Sync throttled, try again later"))
        return fail(task, SubTaskResult(success=False, message=str(e), exception=e))

    return Result(host=task.host, changed=True, result=StandardResult(TaskStatus.CHANGED, "Autopilot sync requested"))
