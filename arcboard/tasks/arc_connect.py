import time
from pathlib import Path
from typing import Callable, List, Optional

from nornir.core.task import Task, Result

from arcboard.core.decorators import automated_step, automated_substep
from arcboard.core.errors import ConnectError, ConnectErrorReason
from arcboard.core.models import ConnectionInfo, ConnectState, TaskStatus, StandardResult, SubTaskResult
from arcboard.core.settings import ArcSettings
from arcboard.tasks import fail, get_settings
from arcboard.utils.azcmagent import (
    AgentCli,
    DEVICE_CODE_MARKER,
    build_connect_args,
    extract_device_code,
    parse_registration,
)
from arcboard.utils.logger import sys_logger, logger


class ArcConnector:
    """
    Drives 'azcmagent connect' with device-code auth.

    Disconnected -> Connecting -> AwaitingDeviceAuth -> Connected | TimedOut
                               -> Connected | Failed   (no prompt seen)

    A single attempt per instance: any failure is terminal.
    """

    def __init__(
            self,
            cli: AgentCli,
            device_code_file: Path,
            poll_interval: float = 1.0,
            poll_attempts: int = 300,
            sleep: Callable[[float], None] = time.sleep,
    ):
        self.cli = cli
        self.device_code_file = Path(device_code_file)
        self.poll_interval = poll_interval
        self.poll_attempts = poll_attempts
        self.sleep = sleep
        self.state = ConnectState.DISCONNECTED

    def connect(self, arc: ArcSettings) -> ConnectionInfo:
        """Raises ConnectError on Timeout or NoConnectionEstablished."""
        args = build_connect_args(arc)
        sys_logger.info(f"Running azcmagent {' '.join(args)}")
        self.state = ConnectState.CONNECTING

        output: List[str] = []
        prompt: List[str] = []

        with self.cli.connect(args) as proc:
            for line in proc.lines():
                output.append(line)
                if DEVICE_CODE_MARKER in line:
                    # azcmagent prints the whole sign-in instruction on this one line and then
                    # stays silent until sign-in completes: reading on would block the polling
                    prompt.append(line)
                    break

            if prompt:
                code = extract_device_code(prompt[0])
                self._persist_device_code(code, prompt)
                self.state = ConnectState.AWAITING_DEVICE_AUTH
                # The connect process keeps running while the operator signs in
                return self._await_registration(code)

        # No prompt: maybe a cached credential did the job
        status = self.cli.status()
        if parse_registration(status).registered:
            self.state = ConnectState.CONNECTED
            return ConnectionInfo(state=self.state, status_output=status)

        self.state = ConnectState.FAILED
        raise ConnectError(
            ConnectErrorReason.NO_CONNECTION_ESTABLISHED,
            message="azcmagent connect finished without registering the machine",
            output="\n".join(output),
        )

    def _await_registration(self, code: Optional[str]) -> ConnectionInfo:
        for attempt in range(1, self.poll_attempts + 1):
            self.sleep(self.poll_interval)
            status = self.cli.status()
            if parse_registration(status).registered:
                self.state = ConnectState.CONNECTED
                sys_logger.info(f"Registration confirmed after {attempt} poll(s)")
                return ConnectionInfo(state=self.state, device_code=code, status_output=status, polls=attempt)

        self.state = ConnectState.TIMED_OUT
        budget = self.poll_attempts * self.poll_interval
        raise ConnectError(
            ConnectErrorReason.TIMEOUT,
            message=f"Device sign-in not completed within {budget:.0f}s",
        )

    def _persist_device_code(self, code: Optional[str], lines: List[str]):
        self.device_code_file.parent.mkdir(parents=True, exist_ok=True)
        content = f"Code: {code or 'unknown'}\n" + "\n".join(lines) + "\n"
        self.device_code_file.write_text(content, encoding="utf-8")

        sys_logger.info(f"Device code {code} written to {self.device_code_file}")
        logger.log_step("warning", lines[0])


# --- SUB-STEPS ---

@automated_substep("Connect Machine to Azure Arc")
def _connect_machine(task: Task, connector: ArcConnector, arc: ArcSettings) -> SubTaskResult:
    try:
        info = connector.connect(arc)
    except ConnectError as e:
        message = f"{e.reason.value}: {e}"
        if e.output:
            sys_logger.error(f"azcmagent output:\n{e.output}")
        return SubTaskResult(success=False, message=message, exception=e)

    return SubTaskResult(success=True, message=f"State {info.state.value}", data=info)


# --- MAIN TASK ---

@automated_step("Connect to Azure Arc")
def connect_arc(task: Task) -> Result:
    """Registers the machine with Azure Arc using device-code sign-in."""
    settings = get_settings(task)
    cli = AgentCli(task, settings.agent.cli_path, wait_timeout=settings.connect.process_wait)
    connector = ArcConnector(
        cli,
        Path(settings.paths.device_code_file),
        poll_interval=settings.connect.poll_interval,
        poll_attempts=settings.connect.poll_attempts,
    )

    s1 = _connect_machine(task, connector, settings.arc)
    if not s1.success: return fail(task, s1)

    return Result(
        host=task.host,
        changed=True,
        result=StandardResult(TaskStatus.CHANGED, "Machine registered with Azure Arc", data=s1.data)
    )
