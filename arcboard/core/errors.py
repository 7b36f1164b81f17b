from enum import Enum
from typing import Optional


class ArcboardError(Exception):
    """Base class for every failure a task can report."""


class PrerequisiteFailure(ArcboardError):
    pass


class FetchError(ArcboardError):
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class InstallError(ArcboardError):
    SERVICE_NOT_RUNNING = "ServiceNotRunning"

    def __init__(self, exit_code: Optional[int] = None, reason: Optional[str] = None, message: str = ""):
        self.exit_code = exit_code
        self.reason = reason
        if not message:
            if reason:
                message = f"Installer failed ({reason})"
            else:
                message = f"Installer exited with code {exit_code}"
        super().__init__(message)


class ConnectErrorReason(str, Enum):
    TIMEOUT = "Timeout"
    NO_CONNECTION_ESTABLISHED = "NoConnectionEstablished"


class ConnectError(ArcboardError):
    def __init__(self, reason: ConnectErrorReason, message: str = "", output: str = ""):
        super().__init__(message or reason.value)
        self.reason = reason
        # Raw CLI output kept for diagnostics
        self.output = output


class ServiceQueryError(ArcboardError):
    """The service manager could not be asked (access denied, sc.exe missing, ...)."""


class PackagingError(ArcboardError):
    pass


class GraphError(ArcboardError):
    def __init__(self, status_code: int, body: str, url: str = ""):
        super().__init__(f"HTTP {status_code} from {url}: {body[:500]}")
        self.status_code = status_code
        self.body = body
        self.url = url
