import json

import pytest

from arcboard.core.settings import ArcSettings
from arcboard.utils.azcmagent import build_connect_args, extract_device_code, parse_registration
from tests.conftest import PROMPT, REGISTERED_STATUS, UNREGISTERED_STATUS


class TestBuildConnectArgs:

    def test_no_parameters_only_device_code_flag(self):
        assert build_connect_args(ArcSettings()) == ["connect", "--use-device-code"]

    def test_all_parameters(self):
        arc = ArcSettings(
            subscription_id="sub",
            resource_group="rg",
            location="westeurope",
            tenant_id="tenant",
            tags="env=prod,owner=it",
        )

        assert build_connect_args(arc) == [
            "connect",
            "--subscription-id", "sub",
            "--resource-group", "rg",
            "--location", "westeurope",
            "--tenant-id", "tenant",
            "--tags", "env=prod,owner=it",
            "--use-device-code",
        ]

    @pytest.mark.parametrize("missing, flag", [
        ("subscription_id", "--subscription-id"),
        ("resource_group", "--resource-group"),
        ("location", "--location"),
        ("tenant_id", "--tenant-id"),
        ("tags", "--tags"),
    ])
    def test_omitted_parameter_has_no_flag(self, missing, flag):
        values = dict(subscription_id="sub", resource_group="rg", location="loc", tenant_id="t", tags="a=b")
        values[missing] = None

        args = build_connect_args(ArcSettings(**values))

        assert flag not in args
        assert "" not in args

    def test_empty_string_counts_as_omitted(self):
        assert "--location" not in build_connect_args(ArcSettings(location=""))


class TestExtractDeviceCode:

    def test_code_between_markers(self):
        assert extract_device_code(PROMPT) == "F7XK2QPLM"

    def test_no_code_in_line(self):
        assert extract_device_code("Downloading agent package") is None


class TestParseRegistration:

    def test_text_output_registered(self):
        info = parse_registration(REGISTERED_STATUS)

        assert info.registered
        assert info.resource_group == "rg-arc-servers"
        assert info.tenant_id == "00000000-0000-0000-0000-0000000000aa"

    def test_text_output_with_empty_values(self):
        assert not parse_registration(UNREGISTERED_STATUS).registered

    def test_only_tenant_is_not_registered(self):
        assert not parse_registration("Tenant ID : abc\n").registered

    def test_json_output(self):
        output = json.dumps({"tenantId": "t-1", "resourceGroup": "rg-1", "status": "Connected"})

        info = parse_registration(output)

        assert info.registered
        assert info.tenant_id == "t-1"

    def test_json_output_disconnected(self):
        assert not parse_registration(json.dumps({"tenantId": "", "resourceGroup": ""})).registered

    def test_empty_output(self):
        assert not parse_registration("").registered
