"""DigitalOcean provider adapter."""
from typing import Any, Dict, List, Optional, Tuple

import requests

from machina.domain.core.exceptions import InvalidCredentialsError, ProviderError
from machina.domain.machine.machine_aggregate import Machine
from machina.domain.machine.value_objects import MachineStatus, ProviderType
from machina.domain.provider.credentials import DigitalOceanCredentials
from machina.infrastructure.logging.logger import get_logger
from machina.providers.base.adapter import (
    CredentialCheck,
    ProviderAdapter,
    ProvisionRequest,
    ResourceDescription,
)

DEFAULT_API_URL = "https://api.digitalocean.com/v2"
DEFAULT_FIREWALL_RULES = [
    {"protocol": "tcp", "port_range": "22", "source_addresses": ["0.0.0.0/0", "::/0"]},
]


def firewall_rules_from_profile(rules: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Convert firewall profile rules to the module's inbound rule format.

    Without inbound rules only SSH is opened.
    """
    inbound = [r for r in (rules or []) if r.get("direction", "inbound") == "inbound"]
    if not inbound:
        return [dict(rule) for rule in DEFAULT_FIREWALL_RULES]
    converted = []
    for rule in inbound:
        start = rule.get("port_range_start")
        end = rule.get("port_range_end", start)
        port_range = rule.get("port_range") or (str(start) if start == end else f"{start}-{end}")
        converted.append({
            "protocol": rule.get("protocol", "tcp"),
            "port_range": port_range,
            "source_addresses": rule.get("source_addresses") or ["0.0.0.0/0", "::/0"],
        })
    return converted


class DigitalOceanAdapter(ProviderAdapter):
    """Talks to the DigitalOcean REST API and feeds the ``digitalocean`` Terraform module."""

    provider_type = ProviderType.DIGITALOCEAN
    terraform_module = "digitalocean"
    STATUS_MAP = {
        "new": MachineStatus.PROVISIONING,
        "active": MachineStatus.RUNNING,
        "off": MachineStatus.STOPPED,
        "archive": MachineStatus.TERMINATED,
    }

    def __init__(self,
                 api_url: str = DEFAULT_API_URL,
                 timeout: float = 30.0,
                 session: Optional[requests.Session] = None):
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._logger = get_logger(__name__)

    def _request(self, credentials: DigitalOceanCredentials, method: str, path: str,
                 allow_404: bool = False, **kwargs: Any) -> Optional[Dict[str, Any]]:
        headers = {
            "Authorization": f"Bearer {credentials.api_token.get_secret_value()}",
            "Content-Type": "application/json",
        }
        url = f"{self._api_url}{path}"
        try:
            response = self._session.request(method, url, headers=headers, timeout=self._timeout, **kwargs)
        except requests.RequestException as e:
            raise ProviderError("DigitalOcean", f"{method} {path} failed: {type(e).__name__}: {e}")

        if response.status_code in (401, 403):
            raise InvalidCredentialsError("DigitalOcean API token is invalid or expired",
                                          {"status_code": response.status_code})
        if response.status_code == 404 and allow_404:
            return None
        if response.status_code >= 400:
            message = response.reason or "request failed"
            try:
                message = response.json().get("message", message)
            except ValueError:
                pass
            raise ProviderError("DigitalOcean", f"{method} {path}: {message}", response.status_code)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def validate_credentials(self, credentials: DigitalOceanCredentials) -> CredentialCheck:
        try:
            data = self._request(credentials, "GET", "/account")
        except InvalidCredentialsError as e:
            return CredentialCheck(valid=False, message=e.message)
        account = data.get("account", {})
        return CredentialCheck(
            valid=True,
            message="DigitalOcean API token is valid",
            account={"email": account.get("email"), "status": account.get("status")}
        )

    def list_regions(self, credentials: Optional[DigitalOceanCredentials] = None) -> List[Dict[str, Any]]:
        if credentials is None:
            return super().list_regions()
        data = self._request(credentials, "GET", "/regions", params={"per_page": 200})
        return [
            {"slug": r["slug"], "name": r.get("name", r["slug"]), "available": r.get("available", True)}
            for r in data.get("regions", [])
        ]

    def list_sizes(self, credentials: Optional[DigitalOceanCredentials] = None) -> List[Dict[str, Any]]:
        if credentials is None:
            return super().list_sizes()
        data = self._request(credentials, "GET", "/sizes", params={"per_page": 200})
        return [
            {
                "slug": s["slug"],
                "name": s.get("description") or s["slug"],
                "vcpus": s.get("vcpus"),
                "memory_mb": s.get("memory"),
                "disk_gb": s.get("disk"),
                "price_monthly": s.get("price_monthly"),
                "available": s.get("available", True),
            }
            for s in data.get("sizes", [])
        ]

    def list_images(self, credentials: Optional[DigitalOceanCredentials] = None) -> List[Dict[str, Any]]:
        if credentials is None:
            return super().list_images()
        data = self._request(credentials, "GET", "/images", params={"type": "distribution", "per_page": 200})
        return [
            {
                "slug": i.get("slug") or str(i["id"]),
                "name": i.get("name"),
                "distribution": i.get("distribution"),
            }
            for i in data.get("images", [])
        ]

    def _describe(self, droplet: Dict[str, Any]) -> ResourceDescription:
        public_ip = private_ip = None
        for net in droplet.get("networks", {}).get("v4", []):
            if net.get("type") == "public" and public_ip is None:
                public_ip = net.get("ip_address")
            elif net.get("type") == "private" and private_ip is None:
                private_ip = net.get("ip_address")
        raw_status = droplet.get("status", "")
        return ResourceDescription(
            resource_id=str(droplet["id"]),
            status=self.map_status(raw_status),
            raw_status=raw_status,
            public_ip=public_ip,
            private_ip=private_ip,
            region=droplet.get("region", {}).get("slug"),
            size=droplet.get("size_slug"),
        )

    def create_resource(self, credentials: DigitalOceanCredentials, request: ProvisionRequest) -> ResourceDescription:
        payload = {
            "name": request.name,
            "region": request.region,
            "size": request.size,
            "image": request.image,
            "ssh_keys": request.ssh_keys,
            "tags": [f"{k}:{v}" for k, v in request.tags.items()] + [f"machine_id:{request.machine_id}"],
        }
        if request.user_data:
            payload["user_data"] = request.user_data
        data = self._request(credentials, "POST", "/droplets", json=payload)
        return self._describe(data["droplet"])

    def destroy_resource(self, credentials: DigitalOceanCredentials, resource_id: str,
                         region: Optional[str] = None) -> None:
        self._request(credentials, "DELETE", f"/droplets/{resource_id}", allow_404=True)

    def describe_resource(self, credentials: DigitalOceanCredentials, resource_id: str,
                          region: Optional[str] = None) -> Optional[ResourceDescription]:
        data = self._request(credentials, "GET", f"/droplets/{resource_id}", allow_404=True)
        if data is None:
            return None
        return self._describe(data["droplet"])

    def reboot_resource(self, credentials: DigitalOceanCredentials, resource_id: str,
                        region: Optional[str] = None) -> None:
        self._request(credentials, "POST", f"/droplets/{resource_id}/actions", json={"type": "reboot"})
        self._logger.info("Reboot requested", provider="digitalocean", resource_id=resource_id)

    def terraform_variables(self, machine: Machine, credentials: DigitalOceanCredentials,
                            parameters: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
        variables = {
            "do_token": credentials.api_token.get_secret_value(),
            "name": machine.name,
            "machine_id": machine.machine_id,
            "region": machine.region,
            "size": machine.size,
            "image": machine.image,
            "ssh_keys": list(parameters.get("provider_ssh_key_ids") or []),
            "tags": machine.tags.to_label_list(),
            "user_data": parameters.get("user_data") or "",
            "firewall_enabled": True,
            "firewall_inbound_rules": firewall_rules_from_profile(parameters.get("firewall_rules")),
        }
        return variables, ["do_token"]
