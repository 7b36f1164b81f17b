from unittest.mock import patch

import pytest

from arcboard.core.errors import InstallError
from arcboard.core.models import AgentState, TaskStatus
from arcboard.tasks.agent_download import installer_path
from arcboard.tasks.agent_install import install_agent, wait_for_service
from tests.conftest import command_result


@pytest.fixture
def installer(task):
    path = installer_path(task)
    path.parent.mkdir(parents=True)
    path.write_bytes(b"msi")
    return path


class TestInstallAgent:

    def test_success_marks_agent_installed(self, task, installer, settings):
        with patch("arcboard.tasks.agent_install.msiexec", return_value=command_result(0)) as msi, \
                patch("arcboard.tasks.agent_install.service_state", return_value="RUNNING"):
            res = install_agent(task)

        assert not res.failed
        assert res.result.status == TaskStatus.CHANGED
        assert task.host["agent_state"] == AgentState.INSTALLED_UNREGISTERED
        args = msi.call_args.args[1]
        assert args[:4] == ["/i", str(installer), "/qn", "/norestart"]
        assert args[-1] == str(settings.paths.log_file("msi-install.log"))
        install_log = settings.paths.log_file("install.log").read_text(encoding="utf-8")
        assert "[Info] MSI verbose log written to" in install_log

    def test_nonzero_exit_code_is_reported(self, task, installer):
        with patch("arcboard.tasks.agent_install.msiexec", return_value=command_result(1603)), \
                patch("arcboard.tasks.agent_install.service_state") as svc:
            res = install_agent(task)

        assert res.failed
        error = res.result.data
        assert isinstance(error, InstallError)
        assert error.exit_code == 1603
        svc.assert_not_called()

    def test_exit_zero_without_service_fails(self, task, installer):
        with patch("arcboard.tasks.agent_install.msiexec", return_value=command_result(0)), \
                patch("arcboard.tasks.agent_install.service_state", return_value=None):
            res = install_agent(task)

        assert res.failed
        assert res.result.data.reason == InstallError.SERVICE_NOT_RUNNING
        assert "absent" in res.result.message

    def test_missing_installer_fails(self, task):
        with patch("arcboard.tasks.agent_install.msiexec") as msi:
            res = install_agent(task)

        assert res.failed
        msi.assert_not_called()

    def test_installed_agent_skips(self, task):
        task.host["agent_state"] = AgentState.INSTALLED_UNREGISTERED

        with patch("arcboard.tasks.agent_install.msiexec") as msi:
            res = install_agent(task)

        assert res.result.status == TaskStatus.SKIPPED
        msi.assert_not_called()


class TestWaitForService:

    def test_backoff_is_capped_by_max_wait(self, task):
        sleeps = []
        with patch("arcboard.tasks.agent_install.service_state", return_value="STOPPED") as svc:
            state = wait_for_service(task, "himds", initial_delay=1, factor=2, max_wait=10, sleep=sleeps.append)

        assert state == "STOPPED"
        assert sleeps == [1, 2, 4, 3]
        assert svc.call_count == 5

    def test_returns_as_soon_as_running(self, task):
        sleeps = []
        with patch("arcboard.tasks.agent_install.service_state", side_effect=[None, "START_PENDING", "RUNNING"]):
            state = wait_for_service(task, "himds", initial_delay=1, factor=2, max_wait=30, sleep=sleeps.append)

        assert state == "RUNNING"
        assert sleeps == [1, 2]

    @pytest.mark.parametrize("initial_delay, factor", [(0.0, 2), (1.0, 0.5)])
    def test_backoff_that_cannot_reach_max_wait_is_rejected(self, task, initial_delay, factor):
        with patch("arcboard.tasks.agent_install.service_state", return_value="STOPPED") as svc:
            with pytest.raises(ValueError):
                wait_for_service(task, "himds", initial_delay=initial_delay, factor=factor, max_wait=30,
                                 sleep=lambda _: None)

        svc.assert_not_called()

    def test_zero_max_wait_checks_once(self, task):
        with patch("arcboard.tasks.agent_install.service_state", return_value="STOPPED") as svc:
            state = wait_for_service(task, "himds", initial_delay=0.0, max_wait=0.0, sleep=lambda _: None)

        assert state == "STOPPED"
        assert svc.call_count == 1
