"""
Thin REST client for Microsoft Graph and Azure Resource Manager.

Payload shapes are owned by the services; this module only adds the bearer
token, serialises JSON and turns non-2xx answers into GraphError.
"""
from typing import Any, Dict, Optional

import requests

from arcboard.core.errors import GraphError
from arcboard.core.models import AutopilotDevice

DIAGNOSTIC_SETTINGS_API_VERSION = "2017-04-01"


class RestClient:
    def __init__(self, base_url: str, token: str, timeout: float = 30.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    def request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None,
                params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        response = self.session.request(method, url, json=payload, params=params, timeout=self.timeout)

        if not response.ok:
            raise GraphError(response.status_code, response.text, url=url)

        # 204 No Content (e.g. sync)
        if not response.content:
            return {}
        return response.json()


# --- INTUNE / AUTOPILOT ---

def import_autopilot_device(client: RestClient, device: AutopilotDevice) -> Dict[str, Any]:
    return client.request(
        "POST",
        "deviceManagement/importedWindowsAutopilotDeviceIdentities",
        payload=device.to_payload(),
    )


def get_imported_device(client: RestClient, identity_id: str) -> Dict[str, Any]:
    return client.request("GET", f"deviceManagement/importedWindowsAutopilotDeviceIdentities/{identity_id}")


def import_status(identity: Dict[str, Any]) -> str:
    """'unknown', 'pending', 'partial', 'complete' or 'error'."""
    return (identity.get("state") or {}).get("deviceImportStatus", "unknown")


def sync_autopilot(client: RestClient) -> Dict[str, Any]:
    return client.request("POST", "deviceManagement/windowsAutopilotSettings/sync")


# --- ENTRA ID DIAGNOSTIC SETTINGS ---

def build_diagnostic_setting(workspace_id: str, categories) -> Dict[str, Any]:
    return {
        "properties": {
            "workspaceId": workspace_id,
            "logs": [{"category": c, "enabled": True} for c in categories],
        }
    }


def put_diagnostic_setting(client: RestClient, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
    return client.request(
        "PUT",
        f"providers/microsoft.aadiam/diagnosticSettings/{name}",
        payload=body,
        params={"api-version": DIAGNOSTIC_SETTINGS_API_VERSION},
    )
