from unittest.mock import Mock

import pytest
import requests

from machina.domain.core.exceptions import InvalidCredentialsError, ProviderError
from machina.domain.machine.machine_aggregate import Machine
from machina.domain.machine.value_objects import MachineStatus, ProviderType
from machina.domain.provider.credentials import DigitalOceanCredentials
from machina.providers.base.adapter import ProvisionRequest
from machina.providers.digitalocean.adapter import DigitalOceanAdapter, firewall_rules_from_profile

TOKEN = "dop_v1_" + "0" * 64


def _response(status_code=200, payload=None, reason="OK"):
    response = Mock()
    response.status_code = status_code
    response.reason = reason
    response.content = b"{}" if payload is not None else b""
    response.json.return_value = payload if payload is not None else {}
    return response


def _droplet(status="active"):
    return {
        "id": 3164444,
        "status": status,
        "size_slug": "s-1vcpu-1gb",
        "region": {"slug": "nyc3"},
        "networks": {"v4": [
            {"ip_address": "10.128.0.4", "type": "private"},
            {"ip_address": "104.236.32.182", "type": "public"},
        ]},
    }


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


@pytest.fixture
def adapter(session):
    return DigitalOceanAdapter(api_url="https://api.example.test/v2/", session=session)


@pytest.fixture
def credentials():
    return DigitalOceanCredentials(api_token=TOKEN)


def test_validate_credentials_sends_bearer_token(adapter, session, credentials):
    # Arrange
    session.request.return_value = _response(payload={"account": {"email": "ops@example.com", "status": "active"}})

    # Act
    check = adapter.validate_credentials(credentials)

    # Assert
    assert check.valid
    assert check.account["email"] == "ops@example.com"
    args, kwargs = session.request.call_args
    assert args == ("GET", "https://api.example.test/v2/account")
    assert kwargs["headers"]["Authorization"] == f"Bearer {TOKEN}"


def test_rejected_token_is_an_invalid_check(adapter, session, credentials):
    session.request.return_value = _response(401, reason="Unauthorized")

    check = adapter.validate_credentials(credentials)

    assert not check.valid
    assert "invalid" in check.message


def test_describe_maps_status_and_addresses(adapter, session, credentials):
    session.request.return_value = _response(payload={"droplet": _droplet("off")})

    description = adapter.describe_resource(credentials, "3164444")

    assert description.status == MachineStatus.STOPPED
    assert description.raw_status == "off"
    assert description.public_ip == "104.236.32.182"
    assert description.private_ip == "10.128.0.4"
    assert description.region == "nyc3"


def test_describe_missing_droplet_returns_none(adapter, session, credentials):
    session.request.return_value = _response(404, reason="Not Found")

    assert adapter.describe_resource(credentials, "1") is None


def test_server_errors_raise_provider_error(adapter, session, credentials):
    session.request.return_value = _response(500, payload={"message": "Server was unable to give you a response."})

    with pytest.raises(ProviderError) as exc_info:
        adapter.reboot_resource(credentials, "3164444")

    assert exc_info.value.details["status_code"] == 500
    assert "unable to give you a response" in exc_info.value.message


def test_network_errors_raise_provider_error(adapter, session, credentials):
    session.request.side_effect = requests.ConnectionError("connection refused")

    with pytest.raises(ProviderError):
        adapter.describe_resource(credentials, "3164444")


def test_forbidden_outside_validation_raises(adapter, session, credentials):
    session.request.return_value = _response(403, reason="Forbidden")

    with pytest.raises(InvalidCredentialsError):
        adapter.describe_resource(credentials, "3164444")


def test_create_resource_tags_droplet_with_machine_id(adapter, session, credentials):
    # Arrange
    session.request.return_value = _response(202, payload={"droplet": _droplet("new")})
    request = ProvisionRequest(name="web-1", region="nyc3", size="s-1vcpu-1gb", image="ubuntu-22-04-x64",
                               machine_id="mach_1", tags={"env": "prod"})

    # Act
    description = adapter.create_resource(credentials, request)

    # Assert
    assert description.status == MachineStatus.PROVISIONING
    payload = session.request.call_args.kwargs["json"]
    assert payload["tags"] == ["env:prod", "machine_id:mach_1"]


def test_unknown_status_maps_to_error(adapter):
    assert adapter.map_status("melting") == MachineStatus.ERROR
    assert adapter.map_status(None) == MachineStatus.ERROR
    assert adapter.map_status("ACTIVE") == MachineStatus.RUNNING


def test_catalog_used_without_credentials(adapter, session):
    regions = adapter.list_regions()

    assert "nyc3" in [r["slug"] for r in regions]
    session.request.assert_not_called()


def test_terraform_variables_mark_token_sensitive(adapter, credentials):
    machine = Machine.create("web-1", ProviderType.DIGITALOCEAN, "prov_1", "nyc3", "s-1vcpu-1gb",
                             "ubuntu-22-04-x64", tags={"env": "prod"})

    variables, sensitive = adapter.terraform_variables(machine, credentials, {"provider_ssh_key_ids": ["123"]})

    assert sensitive == ["do_token"]
    assert variables["do_token"] == TOKEN
    assert variables["machine_id"] == machine.machine_id
    assert variables["ssh_keys"] == ["123"]
    assert variables["tags"] == ["env:prod"]
    assert variables["firewall_inbound_rules"][0]["port_range"] == "22"


def test_firewall_rules_from_profile():
    rules = firewall_rules_from_profile([
        {"direction": "inbound", "protocol": "tcp", "port_range_start": 80, "port_range_end": 80},
        {"direction": "inbound", "protocol": "tcp", "port_range_start": 8000, "port_range_end": 8100,
         "source_addresses": ["10.0.0.0/8"]},
        {"direction": "outbound", "protocol": "udp", "port_range_start": 53},
    ])

    assert rules == [
        {"protocol": "tcp", "port_range": "80", "source_addresses": ["0.0.0.0/0", "::/0"]},
        {"protocol": "tcp", "port_range": "8000-8100", "source_addresses": ["10.0.0.0/8"]},
    ]
