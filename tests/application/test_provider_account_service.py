import pytest

from machina.domain.core.exceptions import InvalidCredentialsError, UnsupportedProviderError, ValidationError
from machina.domain.provider.exceptions import ProviderAccountNotFoundError, ProviderHasMachinesError
from machina.domain.provider.provider_aggregate import CredentialStatus

DO_TOKEN = "dop_v1_" + "a1b2c3d4" * 8


def test_create_account_stores_encrypted_credentials(app):
    # Act
    account = app.provider_service.create_account("digitalocean", "  Primary  ", {"api_token": DO_TOKEN},
                                                  actor_id="alice")

    # Assert
    assert account.label == "Primary"
    assert account.credential_status == CredentialStatus.VALID
    assert account.metadata["provider_account"] == {"email": "ops@example.com"}
    assert app.secret_store.get_credentials(account.provider_account_id)["api_token"] == DO_TOKEN
    assert app.audit.find_by_target(account.provider_account_id)[0].actor_id == "alice"


def test_rejected_credentials_are_never_stored(app, fake_adapter):
    fake_adapter.valid = False

    with pytest.raises(InvalidCredentialsError) as exc_info:
        app.provider_service.create_account("digitalocean", "Primary", {"api_token": DO_TOKEN})

    assert "invalid or expired" in exc_info.value.message
    assert app.provider_service.list_accounts() == []


def test_malformed_credentials_are_rejected(app):
    with pytest.raises(InvalidCredentialsError):
        app.provider_service.create_account("digitalocean", "Primary", {"api_token": "short"})


def test_unknown_provider_type(app):
    with pytest.raises(ValidationError) as exc_info:
        app.provider_service.create_account("linode", "Primary", {"api_token": DO_TOKEN})

    assert "digitalocean" in exc_info.value.details["allowed"]


def test_empty_label_is_rejected(app):
    with pytest.raises(ValidationError):
        app.provider_service.create_account("digitalocean", "   ", {"api_token": DO_TOKEN})


def test_account_for_provider_without_adapter_is_stored_unchecked(app):
    # Arrange
    token = "h" * 64

    # Act
    account = app.provider_service.create_account("hetzner", "Lab", {"api_token": token})

    # Assert
    assert account.credential_status == CredentialStatus.UNCHECKED
    with pytest.raises(UnsupportedProviderError):
        app.provider_service.verify_account(account.provider_account_id)


def test_update_rotates_credentials(app, account, fake_adapter):
    new_token = "dop_v1_" + "f" * 64

    updated = app.provider_service.update_account(account.provider_account_id, label="Renamed",
                                                  credentials={"api_token": new_token})

    assert updated.label == "Renamed"
    assert app.secret_store.get_credentials(account.provider_account_id)["api_token"] == new_token
    assert app.provider_service.get_account(account.provider_account_id).label == "Renamed"


def test_update_with_rejected_credentials_keeps_old_ones(app, account, fake_adapter):
    fake_adapter.valid = False

    with pytest.raises(InvalidCredentialsError):
        app.provider_service.update_account(account.provider_account_id,
                                            credentials={"api_token": "dop_v1_" + "f" * 64})

    assert app.secret_store.get_credentials(account.provider_account_id)["api_token"] == DO_TOKEN


def test_delete_blocked_while_machines_reference_account(app, account, create_machine):
    create_machine()

    with pytest.raises(ProviderHasMachinesError) as exc_info:
        app.provider_service.delete_account(account.provider_account_id)

    assert exc_info.value.code == "CONFLICT"
    assert app.secret_store.has_credentials(account.provider_account_id)


def test_delete_removes_account_and_credentials(app, account):
    app.provider_service.delete_account(account.provider_account_id)

    assert not app.secret_store.has_credentials(account.provider_account_id)
    with pytest.raises(ProviderAccountNotFoundError):
        app.provider_service.get_account(account.provider_account_id)


def test_verify_records_invalid_status(app, account, fake_adapter):
    # Arrange
    fake_adapter.valid = False

    # Act
    verified, check = app.provider_service.verify_account(account.provider_account_id)

    # Assert
    assert not check.valid
    assert verified.credential_status == CredentialStatus.INVALID
    stored = app.provider_service.get_account(account.provider_account_id)
    assert stored.credential_status == CredentialStatus.INVALID


def test_options_come_from_catalog(app, account):
    options = app.provider_service.get_options(account.provider_account_id)

    assert "nyc3" in [r["slug"] for r in options["regions"]]
    assert "s-1vcpu-1gb" in [s["slug"] for s in options["sizes"]]
    assert options["images"]


def test_supported_providers_listing(app):
    providers = {p["provider_type"]: p for p in app.provider_service.list_supported_providers()}

    assert providers["digitalocean"]["supported"] is True
    assert providers["aws"]["supported"] is False
