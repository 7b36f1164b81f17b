import dataclasses

import pytest

from arcboard.core.settings import AppSettings, clean_none, load_settings


@pytest.fixture
def no_env(monkeypatch):
    for var in ("AZURE_SUBSCRIPTION_ID", "AZURE_TENANT_ID", "AZURE_LOCATION", "AZURE_RESOURCE_GROUP",
                "ARC_TAGS", "ARC_INSTALLER_SHA256", "ARC_LOG_DIR", "ARC_DOWNLOAD_DIR",
                "AUTOPILOT_GROUP_TAG", "LOG_ANALYTICS_WORKSPACE_ID"):
        monkeypatch.delenv(var, raising=False)


class TestLoadSettings:

    def test_defaults_without_file(self, tmp_path, no_env):
        settings = load_settings(str(tmp_path / "missing.yaml"))

        assert settings.arc.subscription_id is None
        assert settings.connect.poll_interval == 1.0
        assert settings.connect.poll_attempts == 300
        assert settings.prerequisites.endpoint_port == 443
        assert settings.agent.service_name == "himds"

    def test_yaml_values_are_applied(self, tmp_path, no_env):
        config = tmp_path / "arcboard.yaml"
        config.write_text(
            "arc:\n"
            "  resource_group: rg-from-file\n"
            "  location: westeurope\n"
            "connect:\n"
            "  poll_attempts: 10\n"
            "diagnostics:\n"
            "  categories: [AuditLogs]\n"
            "unknown_section:\n"
            "  foo: bar\n"
        )

        settings = load_settings(str(config))

        assert settings.arc.resource_group == "rg-from-file"
        assert settings.arc.location == "westeurope"
        assert settings.connect.poll_attempts == 10
        assert settings.diagnostics.categories == ("AuditLogs",)

    def test_unknown_keys_are_ignored(self, tmp_path, no_env):
        config = tmp_path / "arcboard.yaml"
        config.write_text("arc:\n  not_a_field: 1\n  tags: env=prod\n")

        settings = load_settings(str(config))

        assert settings.arc.tags == "env=prod"

    def test_priority_cli_over_env_over_file(self, tmp_path, monkeypatch, no_env):
        config = tmp_path / "arcboard.yaml"
        config.write_text("arc:\n  resource_group: file-rg\n  location: file-loc\n  tenant_id: file-tenant\n")
        monkeypatch.setenv("AZURE_RESOURCE_GROUP", "env-rg")
        monkeypatch.setenv("AZURE_LOCATION", "env-loc")

        settings = load_settings(str(config), overrides={"arc": {"resource_group": "cli-rg", "location": None}})

        assert settings.arc.resource_group == "cli-rg"
        assert settings.arc.location == "env-loc"
        assert settings.arc.tenant_id == "file-tenant"

    def test_categories_from_comma_separated_string(self, tmp_path, no_env):
        settings = load_settings(str(tmp_path / "none.yaml"),
                                 overrides={"diagnostics": {"categories": "AuditLogs, SignInLogs"}})

        assert settings.diagnostics.categories == ("AuditLogs", "SignInLogs")

    @pytest.mark.parametrize("agent", [
        {"service_wait_initial": 0},
        {"service_wait_factor": 0.5},
    ])
    def test_service_wait_that_never_ends_is_rejected(self, tmp_path, no_env, agent):
        with pytest.raises(ValueError, match="service_wait"):
            load_settings(str(tmp_path / "none.yaml"), overrides={"agent": agent})

    def test_settings_are_immutable(self):
        settings = AppSettings()

        with pytest.raises(dataclasses.FrozenInstanceError):
            settings.arc.resource_group = "changed"


def test_clean_none_drops_empty_sections():
    assert clean_none({"a": {"x": None}, "b": {"y": 1}, "c": None}) == {"b": {"y": 1}}
