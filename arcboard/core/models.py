from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class TaskStatus(str, Enum):
    OK = "OK"  # Task completed successfully or was idempotent (no change)
    CHANGED = "CHANGED"  # Task performed an action successfully
    WARNING = "WARNING"  # Task succeeded but with non-critical issues
    FAILED = "FAILED"  # Task failed, blocking execution
    SKIPPED = "SKIPPED"  # Task was skipped due to the machine state


class AgentState(str, Enum):
    """Live state of the Connected Machine agent. Always re-derived, never cached."""
    NOT_INSTALLED = "NotInstalled"
    INSTALLED_UNREGISTERED = "InstalledUnregistered"
    REGISTERED = "Registered"


class ConnectState(str, Enum):
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    AWAITING_DEVICE_AUTH = "AwaitingDeviceAuth"
    CONNECTED = "Connected"
    TIMED_OUT = "TimedOut"
    FAILED = "Failed"


@dataclass
class StandardResult:
    """
    Standard payload to be included in Nornir's Result.result.
    """
    status: TaskStatus
    message: str
    data: Optional[Any] = None  # To pass data between tasks (context sharing)


@dataclass
class SubTaskResult:
    """Lightweight result object for internal sub-steps."""
    success: bool
    message: str
    exception: Optional[Exception] = None
    data: Optional[Any] = None


@dataclass(frozen=True)
class RegistrationInfo:
    """Registration markers extracted from the agent status output."""
    tenant_id: Optional[str] = None
    resource_group: Optional[str] = None

    @property
    def registered(self) -> bool:
        return bool(self.tenant_id) and bool(self.resource_group)


@dataclass
class ConnectionInfo:
    state: ConnectState
    device_code: Optional[str] = None
    status_output: str = ""
    polls: int = 0


@dataclass(frozen=True)
class AutopilotDevice:
    serial_number: str
    hardware_hash: str
    group_tag: Optional[str] = None
    product_key: Optional[str] = None

    def to_payload(self) -> dict:
        payload = {
            "@odata.type": "#microsoft.graph.importedWindowsAutopilotDeviceIdentity",
            "serialNumber": self.serial_number,
            "hardwareIdentifier": self.hardware_hash,
            "groupTag": self.group_tag or "",
        }
        if self.product_key:
            payload["productKey"] = self.product_key
        return payload
