import json
from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from arcboard.core.errors import GraphError
from arcboard.core.models import AutopilotDevice, TaskStatus
from arcboard.tasks.autopilot import collect_device_identity, import_device_identity, sync_autopilot_devices
from arcboard.tasks.diagnostics import configure_diagnostic_settings
from arcboard.utils.graph import RestClient, build_diagnostic_setting, import_status
from tests.conftest import command_result


def http_response(status_code=200, body=None):
    content = json.dumps(body).encode() if body is not None else b""
    return SimpleNamespace(
        ok=200 <= status_code < 300,
        status_code=status_code,
        content=content,
        text=content.decode(),
        json=lambda: body,
    )


@pytest.fixture
def session():
    return MagicMock()


class TestRestClient:

    def test_bearer_token_and_json(self, session):
        session.request.return_value = http_response(201, {"id": "abc"})
        client = RestClient("https://graph.microsoft.com/beta/", "tok", session=session)

        data = client.request("POST", "/deviceManagement/x", payload={"a": 1})

        assert data == {"id": "abc"}
        session.headers.update.assert_called_once()
        assert session.headers.update.call_args.args[0]["Authorization"] == "Bearer tok"
        method, url = session.request.call_args.args
        assert (method, url) == ("POST", "https://graph.microsoft.com/beta/deviceManagement/x")
        assert session.request.call_args.kwargs["json"] == {"a": 1}

    def test_empty_body(self, session):
        session.request.return_value = http_response(204)

        assert RestClient("https://x", "tok", session=session).request("POST", "sync") == {}

    def test_error_status_raises(self, session):
        session.request.return_value = http_response(403, {"error": "Forbidden"})

        with pytest.raises(GraphError) as exc:
            RestClient("https://x", "tok", session=session).request("GET", "thing")

        assert exc.value.status_code == 403
        assert exc.value.url == "https://x/thing"


def test_autopilot_payload():
    payload = AutopilotDevice("SN1", "HASH", group_tag=None).to_payload()

    assert payload["serialNumber"] == "SN1"
    assert payload["hardwareIdentifier"] == "HASH"
    assert payload["groupTag"] == ""
    assert "productKey" not in payload


def test_import_status_defaults_to_unknown():
    assert import_status({}) == "unknown"
    assert import_status({"state": {"deviceImportStatus": "complete"}}) == "complete"


def test_diagnostic_setting_body():
    body = build_diagnostic_setting("/subscriptions/s/workspaces/w", ("AuditLogs",))

    assert body == {"properties": {
        "workspaceId": "/subscriptions/s/workspaces/w",
        "logs": [{"category": "AuditLogs", "enabled": True}],
    }}


class TestAutopilotTasks:

    def test_collect_identity(self, task):
        output = json.dumps({"serialNumber": " SN-42 ", "hardwareHash": "T0FBQ"})
        with patch("arcboard.tasks.autopilot.powershell", return_value=command_result(0, output)):
            res = collect_device_identity(task)

        assert not res.failed
        device = task.host["autopilot_device"]
        assert device.serial_number == "SN-42"
        assert device.hardware_hash == "T0FBQ"

    def test_collect_identity_without_hash_fails(self, task):
        output = json.dumps({"serialNumber": "SN-42", "hardwareHash": None})
        with patch("arcboard.tasks.autopilot.powershell", return_value=command_result(0, output)):
            res = collect_device_identity(task)

        assert res.failed

    def test_import_waits_for_completion(self, task):
        task.host["autopilot_device"] = AutopilotDevice("SN-42", "HASH", group_tag="kiosk")
        client = MagicMock()
        with patch("arcboard.tasks.tokens.az_is_installed", return_value=True), \
                patch("arcboard.tasks.tokens.az_get_access_token", return_value=command_result(0, "tok")), \
                patch("arcboard.tasks.autopilot.RestClient", return_value=client), \
                patch("arcboard.tasks.autopilot.import_autopilot_device", return_value={"id": "imp-1"}), \
                patch("arcboard.tasks.autopilot.get_imported_device",
                      return_value={"state": {"deviceImportStatus": "complete"}}) as get:
            res = import_device_identity(task)

        assert not res.failed
        assert "group tag 'kiosk'" in res.result.message
        get.assert_called_once_with(client, "imp-1")
        assert task.host["graph_client"] is client

    def test_import_without_az_cli_fails(self, task):
        task.host["autopilot_device"] = AutopilotDevice("SN-42", "HASH")
        with patch("arcboard.tasks.tokens.az_is_installed", return_value=False):
            res = import_device_identity(task)

        assert res.failed
        assert "'az' not found" in res.result.message

    def test_throttled_sync_is_a_warning(self, task):
        task.host["graph_client"] = MagicMock()
        with patch("arcboard.tasks.autopilot.sync_autopilot", side_effect=GraphError(429, "Too many requests")):
            res = sync_autopilot_devices(task)

        assert not res.failed
        assert res.result.status == TaskStatus.WARNING


class TestDiagnosticSettings:

    def test_missing_workspace_fails(self, task):
        assert configure_diagnostic_settings(task).failed

    def test_setting_is_applied(self, task, settings):
        task.host["app_config"] = replace(
            settings, diagnostics=replace(settings.diagnostics, workspace_id="/subscriptions/s/workspaces/w"))

        with patch("arcboard.tasks.tokens.az_is_installed", return_value=True), \
                patch("arcboard.tasks.tokens.az_get_access_token", return_value=command_result(0, "tok")), \
                patch("arcboard.tasks.diagnostics.put_diagnostic_setting", return_value={}) as put:
            res = configure_diagnostic_settings(task)

        assert not res.failed
        assert put.call_args.args[1] == "arcboard-diagnostics"
        assert "AuditLogs, SignInLogs" in res.result.message
