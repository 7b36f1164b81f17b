import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml
from dotenv import load_dotenv

# Load env vars if present
load_dotenv()


# --- DATACLASSES (SCHEMA) ---

@dataclass(frozen=True)
class ArcSettings:
    """Connection parameters passed to 'azcmagent connect'. All optional."""
    subscription_id: Optional[str] = None
    resource_group: Optional[str] = None
    location: Optional[str] = None
    tenant_id: Optional[str] = None
    tags: Optional[str] = None


@dataclass(frozen=True)
class AgentSettings:
    """Where the agent comes from and how it shows up once installed."""
    installer_url: str = "https://aka.ms/AzureConnectedMachineAgent"
    installer_sha256: Optional[str] = None
    installer_name: str = "AzureConnectedMachineAgent.msi"
    download_timeout: float = 300.0
    service_name: str = "himds"
    product_name: str = "Azure Connected Machine Agent"
    cli_path: str = r"C:\Program Files\AzureConnectedMachineAgent\azcmagent.exe"
    # Service start confirmation (exponential backoff)
    service_wait_initial: float = 1.0
    service_wait_factor: float = 2.0
    service_wait_max: float = 30.0

    def __post_init__(self):
        if self.service_wait_max > 0 and (self.service_wait_initial <= 0 or self.service_wait_factor < 1):
            raise ValueError("agent.service_wait_initial must be > 0 and agent.service_wait_factor >= 1")


@dataclass(frozen=True)
class PathSettings:
    log_dir: str = r"C:\ProgramData\arcboard\logs"
    download_dir: str = r"C:\ProgramData\arcboard\download"
    device_code_file: str = r"C:\ProgramData\arcboard\DeviceCode.txt"

    def log_file(self, name: str) -> Path:
        return Path(self.log_dir) / name


@dataclass(frozen=True)
class PrerequisiteSettings:
    min_os_build: int = 17763
    min_powershell: str = "5.1"
    endpoint_host: str = "management.azure.com"
    endpoint_port: int = 443
    probe_timeout: float = 5.0


@dataclass(frozen=True)
class ConnectSettings:
    poll_interval: float = 1.0
    poll_attempts: int = 300
    # How long to wait for 'azcmagent connect' to exit once polling is over
    process_wait: float = 30.0


@dataclass(frozen=True)
class PackagingSettings:
    tool_url: str = "https://github.com/microsoft/Microsoft-Win32-Content-Prep-Tool/raw/master/IntuneWinAppUtil.exe"
    tool_path: str = "packaging/tools/IntuneWinAppUtil.exe"
    source_dir: str = "packaging/source"
    output_dir: str = "packaging/output"
    entry_file: str = "dist/arcboard.exe"


@dataclass(frozen=True)
class AutopilotSettings:
    group_tag: Optional[str] = None
    product_key: Optional[str] = None
    import_poll_interval: float = 10.0
    import_poll_attempts: int = 30


@dataclass(frozen=True)
class DiagnosticsSettings:
    name: str = "arcboard-diagnostics"
    workspace_id: str = ""
    categories: Tuple[str, ...] = ("AuditLogs", "SignInLogs")


@dataclass(frozen=True)
class GraphSettings:
    graph_url: str = "https://graph.microsoft.com/beta"
    arm_url: str = "https://management.azure.com"
    timeout: float = 30.0


@dataclass(frozen=True)
class AppSettings:
    """Root configuration object. Built once at start-up, never mutated."""
    arc: ArcSettings = field(default_factory=ArcSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)
    paths: PathSettings = field(default_factory=PathSettings)
    prerequisites: PrerequisiteSettings = field(default_factory=PrerequisiteSettings)
    connect: ConnectSettings = field(default_factory=ConnectSettings)
    packaging: PackagingSettings = field(default_factory=PackagingSettings)
    autopilot: AutopilotSettings = field(default_factory=AutopilotSettings)
    diagnostics: DiagnosticsSettings = field(default_factory=DiagnosticsSettings)
    graph: GraphSettings = field(default_factory=GraphSettings)


_SECTIONS = {
    "arc": ArcSettings,
    "agent": AgentSettings,
    "paths": PathSettings,
    "prerequisites": PrerequisiteSettings,
    "connect": ConnectSettings,
    "packaging": PackagingSettings,
    "autopilot": AutopilotSettings,
    "diagnostics": DiagnosticsSettings,
    "graph": GraphSettings,
}


# --- LOADER LOGIC ---

def clean_none(d: Union[Dict, None]):
    """Removes None values and empty dictionaries, recursively."""
    if not isinstance(d, dict):
        return d
    cleaned = {k: clean_none(v) for k, v in d.items() if v is not None}
    return {k: v for k, v in cleaned.items() if v != {}}


def _build_section(cls, *layers: Dict[str, Any]):
    merged: Dict[str, Any] = {}
    for layer in layers:
        merged.update(layer or {})

    # We filter only known keys to avoid init errors
    args = {k: v for k, v in merged.items() if k in cls.__annotations__}
    if "categories" in args and isinstance(args["categories"], (list, str)):
        categories = args["categories"]
        if isinstance(categories, str):
            categories = [c.strip() for c in categories.split(",") if c.strip()]
        args["categories"] = tuple(categories)
    return cls(**args)


def _env_config() -> Dict[str, Any]:
    # We manually map only the keys that make sense to override via ENV
    env_config = {
        "arc": {
            "subscription_id": os.getenv("AZURE_SUBSCRIPTION_ID"),
            "tenant_id": os.getenv("AZURE_TENANT_ID"),
            "location": os.getenv("AZURE_LOCATION"),
            "resource_group": os.getenv("AZURE_RESOURCE_GROUP"),
            "tags": os.getenv("ARC_TAGS"),
        },
        "agent": {
            "installer_sha256": os.getenv("ARC_INSTALLER_SHA256"),
        },
        "paths": {
            "log_dir": os.getenv("ARC_LOG_DIR"),
            "download_dir": os.getenv("ARC_DOWNLOAD_DIR"),
        },
        "autopilot": {
            "group_tag": os.getenv("AUTOPILOT_GROUP_TAG"),
        },
        "diagnostics": {
            "workspace_id": os.getenv("LOG_ANALYTICS_WORKSPACE_ID"),
        },
    }
    return clean_none(env_config)


def load_settings(
        config_path: str = "arcboard.yaml",
        overrides: Optional[Dict[str, Dict[str, Any]]] = None
) -> AppSettings:
    """
    Loads configuration merging:
    Defaults (Schema) < YAML File (Config) < Environment Vars < CLI overrides.
    """

    # 1. Load YAML Config
    file_config = {}
    path = Path(config_path)
    if path.exists():
        try:
            with open(path, "r") as f:
                file_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            # The logger is not configured yet at this point
            print(f"[Warning] Failed to load {config_path}: {e}")

    # 2. Environment Variables (Secrets & Overrides)
    env_config = _env_config()

    # 3. CLI options
    cli_config = clean_none(overrides or {})

    # 4. Merge Logic. Priority: CLI > Env > File > Defaults
    sections = {
        name: _build_section(
            cls,
            file_config.get(name) or {},
            env_config.get(name, {}),
            cli_config.get(name, {}),
        )
        for name, cls in _SECTIONS.items()
    }
    return AppSettings(**sections)
