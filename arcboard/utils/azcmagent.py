import json
import re
from typing import List, Optional

from nornir.core.task import Task, Result

from arcboard.core.models import RegistrationInfo
from arcboard.core.settings import ArcSettings
from arcboard.utils.windows import run_command, StreamedCommand

# First words of the interactive login prompt printed by 'azcmagent connect'
DEVICE_CODE_MARKER = "To sign in, use a web browser"

# Text fallback markers in 'azcmagent show' output
TENANT_MARKER = "Tenant ID"
RESOURCE_GROUP_MARKER = "Resource Group Name"

_CONNECT_FLAGS = (
    ("subscription_id", "--subscription-id"),
    ("resource_group", "--resource-group"),
    ("location", "--location"),
    ("tenant_id", "--tenant-id"),
    ("tags", "--tags"),
)


def build_connect_args(arc: ArcSettings) -> List[str]:
    """
    Arguments for 'azcmagent connect'.
    Flags are emitted only for supplied values. Device-code auth is always requested.
    """
    args = ["connect"]
    for attr, flag in _CONNECT_FLAGS:
        value = getattr(arc, attr)
        if value:
            args += [flag, value]
    args.append("--use-device-code")
    return args


def extract_device_code(line: str) -> Optional[str]:
    """
    'To sign in, ... enter the code ABCD1234 to authenticate.' -> 'ABCD1234'
    Depends on the English wording of the prompt.
    """
    if "code " not in line:
        return None
    code = line.split("code ", 1)[1].split(" to", 1)[0].strip()
    return code or None


def _text_value(output: str, marker: str) -> Optional[str]:
    match = re.search(rf"^[ \t]*{re.escape(marker)}[ \t]*:[ \t]*(\S.*?)[ \t]*$", output, re.MULTILINE)
    return match.group(1) if match else None


def parse_registration(output: str) -> RegistrationInfo:
    """
    Extracts tenant id and resource group from 'azcmagent show' output.
    JSON ('-j') is tried first, free text is the fallback.
    """
    if not output:
        return RegistrationInfo()

    try:
        data = json.loads(output)
    except ValueError:
        data = None

    if isinstance(data, dict):
        return RegistrationInfo(
            tenant_id=data.get("tenantId") or None,
            resource_group=data.get("resourceGroup") or None,
        )

    return RegistrationInfo(
        tenant_id=_text_value(output, TENANT_MARKER),
        resource_group=_text_value(output, RESOURCE_GROUP_MARKER),
    )


def azcmagent_show(task: Task, cli_path: str) -> Result:
    """Agent status, machine readable when the agent supports it."""
    res = run_command(task, [cli_path, "show", "-j"])
    if res.failed:
        # Older agents don't know '-j'
        res = run_command(task, [cli_path, "show"])
    return res


def azcmagent_disconnect(task: Task, cli_path: str, force_local_only: bool = False) -> Result:
    args = [cli_path, "disconnect"]
    if force_local_only:
        args.append("--force-local-only")
    else:
        args.append("--use-device-code")
    return run_command(task, args)


class AgentCli:
    """The two agent commands the connector needs, bound to one host."""

    def __init__(self, task: Task, cli_path: str, wait_timeout: float = 30.0):
        self.task = task
        self.cli_path = cli_path
        self.wait_timeout = wait_timeout

    def connect(self, args: List[str]) -> StreamedCommand:
        return StreamedCommand([self.cli_path] + args, wait_timeout=self.wait_timeout)

    def status(self) -> str:
        res = azcmagent_show(self.task, self.cli_path)
        return res.result or ""
