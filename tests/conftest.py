"""
Shared fixtures.

Nothing here touches Windows, the network or the real agent: every external
collaborator is patched in the test that needs it.
"""
from dataclasses import replace
from pathlib import Path
from types import SimpleNamespace

import pytest
from nornir.core.inventory import Host

from arcboard.core.settings import AppSettings, ConnectSettings, PathSettings
from arcboard.core.state import config as global_config
from arcboard.utils.logger import configure_logging


@pytest.fixture(autouse=True)
def silent_mode():
    """No spinners in tests."""
    previous = global_config.VERBOSE
    global_config.VERBOSE = False
    yield
    global_config.VERBOSE = previous


@pytest.fixture
def settings(tmp_path: Path) -> AppSettings:
    base = AppSettings()
    return replace(
        base,
        paths=PathSettings(
            log_dir=str(tmp_path / "logs"),
            download_dir=str(tmp_path / "download"),
            device_code_file=str(tmp_path / "DeviceCode.txt"),
        ),
        agent=replace(base.agent, service_wait_initial=0.0, service_wait_max=0.0),
        connect=ConnectSettings(poll_interval=0.0, poll_attempts=5, process_wait=1.0),
        packaging=replace(
            base.packaging,
            tool_path=str(tmp_path / "tools" / "IntuneWinAppUtil.exe"),
            source_dir=str(tmp_path / "package" / "source"),
            output_dir=str(tmp_path / "package" / "output"),
            entry_file=str(tmp_path / "dist" / "arcboard.exe"),
        ),
    )


@pytest.fixture
def log_file(settings: AppSettings) -> Path:
    return configure_logging(settings.paths.log_file("onboarding.log"))


@pytest.fixture
def host(settings: AppSettings) -> Host:
    return Host(name="test-host", hostname="localhost", platform="windows_local", data={"app_config": settings})


@pytest.fixture
def task(host: Host, log_file: Path):
    """Stand-in for a nornir Task: the tasks only use 'task.host'."""
    return SimpleNamespace(host=host)


def command_result(returncode: int = 0, output: str = "") -> SimpleNamespace:
    """Shape of the Result returned by arcboard.utils.windows.run_command."""
    return SimpleNamespace(returncode=returncode, failed=returncode != 0, result=output, stdout=output, stderr="")


REGISTERED_STATUS = """\
Resource Name                           : WIN-APP-01
Resource Group Name                     : rg-arc-servers
Resource Namespace                      : Microsoft.HybridCompute
Subscription ID                         : 00000000-0000-0000-0000-000000000001
Tenant ID                               : 00000000-0000-0000-0000-0000000000aa
Agent Status                            : Connected
"""

UNREGISTERED_STATUS = """\
Resource Name                           :
Resource Group Name                     :
Subscription ID                         :
Tenant ID                               :
Agent Status                            : Disconnected
"""

PROMPT = ("To sign in, use a web browser to open the page https://microsoft.com/devicelogin "
          "and enter the code F7XK2QPLM to authenticate.")


class FakeProcess:
    def __init__(self, lines):
        self._lines = lines
        self.closed = False
        self.lines_read = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.closed = True
        return False

    def lines(self):
        for line in self._lines:
            self.lines_read += 1
            yield line


class FakeCli:
    """Scripted 'azcmagent': fixed connect output, one status string per call (the last one repeats)."""

    def __init__(self, lines, statuses):
        self.process = FakeProcess(lines)
        self.statuses = list(statuses)
        self.connect_args = None
        self.status_calls = 0
        self.process_open_during_status = []

    def connect(self, args):
        self.connect_args = args
        return self.process

    def status(self):
        self.status_calls += 1
        self.process_open_during_status.append(not self.process.closed)
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]
