from unittest.mock import patch

import pytest

from arcboard.core.models import AgentState, TaskStatus
from arcboard.tasks.offboard import offboard_agent
from tests.conftest import command_result, REGISTERED_STATUS, UNREGISTERED_STATUS

PRODUCT_CODE = "{2A6B2E1C-0000-4D5B-9A50-000000000000}"


@pytest.fixture
def agent(request):
    status = getattr(request, "param", REGISTERED_STATUS)
    with patch("arcboard.tasks.agent_state.service_state", return_value="RUNNING") as svc, \
            patch("arcboard.tasks.agent_state.azcmagent_show", return_value=command_result(0, status)), \
            patch("arcboard.tasks.offboard.azcmagent_disconnect", return_value=command_result(0)) as disconnect, \
            patch("arcboard.tasks.offboard.find_product_code", return_value=PRODUCT_CODE), \
            patch("arcboard.tasks.offboard.msiexec", return_value=command_result(0)) as msi:
        yield {"service": svc, "disconnect": disconnect, "msiexec": msi}


def test_registered_agent_is_disconnected_then_removed(task, agent):
    res = offboard_agent(task)

    assert res.result.status == TaskStatus.CHANGED
    agent["disconnect"].assert_called_once()
    assert agent["disconnect"].call_args.kwargs["force_local_only"] is False
    assert agent["msiexec"].call_args.args[1][:2] == ["/x", PRODUCT_CODE]
    assert task.host["agent_state"] == AgentState.NOT_INSTALLED


def test_force_local_only_is_forwarded(task, agent):
    offboard_agent(task, force_local_only=True)

    assert agent["disconnect"].call_args.kwargs["force_local_only"] is True


@pytest.mark.parametrize("agent", [UNREGISTERED_STATUS], indirect=True)
def test_unregistered_agent_is_only_removed(task, agent):
    res = offboard_agent(task)

    assert not res.failed
    agent["disconnect"].assert_not_called()
    agent["msiexec"].assert_called_once()


def test_nothing_installed(task, agent):
    agent["service"].return_value = None

    res = offboard_agent(task)

    assert res.result.status == TaskStatus.OK
    agent["msiexec"].assert_not_called()


def test_uninstall_failure(task, agent):
    agent["msiexec"].return_value = command_result(1605)

    res = offboard_agent(task)

    assert res.failed
    assert res.result.data.exit_code == 1605
