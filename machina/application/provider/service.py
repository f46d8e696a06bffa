# machina/application/provider/service.py
from typing import Any, Dict, List, Optional, Tuple

from machina.application.provider.credentials import resolve_credentials
from machina.domain.audit.audit_event import AuditAction, AuditEvent, AuditOutcome
from machina.domain.audit.repository import AuditRepository
from machina.domain.core.exceptions import InvalidCredentialsError, ValidationError
from machina.domain.machine.repository import MachineRepository
from machina.domain.machine.value_objects import ProviderType
from machina.domain.provider.credentials import parse_credentials
from machina.domain.provider.exceptions import ProviderAccountNotFoundError, ProviderHasMachinesError
from machina.domain.provider.provider_aggregate import CredentialStatus, ProviderAccount
from machina.domain.provider.repository import ProviderAccountRepository
from machina.infrastructure.logging.logger import get_logger
from machina.infrastructure.vault.secret_store import SecretStore
from machina.providers.base.adapter import CredentialCheck
from machina.providers.registry import ProviderRegistry


class ProviderAccountService:
    """Application service for linked provider accounts and their credentials."""

    def __init__(self,
                 account_repository: ProviderAccountRepository,
                 machine_repository: MachineRepository,
                 secret_store: SecretStore,
                 providers: ProviderRegistry,
                 audit_repository: AuditRepository):
        self._repository = account_repository
        self._machines = machine_repository
        self._secret_store = secret_store
        self._providers = providers
        self._audit = audit_repository
        self._logger = get_logger(__name__)

    @staticmethod
    def _provider_type(value: Any) -> ProviderType:
        try:
            return ProviderType(value)
        except ValueError:
            raise ValidationError(f"Unknown provider type: {value}",
                                  {"allowed": [t.value for t in ProviderType]})

    def list_supported_providers(self) -> List[Dict[str, Any]]:
        return [
            {
                "provider_type": provider_type.value,
                "supported": self._providers.is_supported(provider_type),
                "terraform_module": self._providers.get(provider_type).terraform_module,
            }
            for provider_type in ProviderType
        ]

    def list_accounts(self) -> List[ProviderAccount]:
        return self._repository.find_all()

    def get_account(self, provider_account_id: str) -> ProviderAccount:
        account = self._repository.find_by_id(provider_account_id)
        if account is None:
            raise ProviderAccountNotFoundError(provider_account_id)
        return account

    def _verify(self, provider_type: ProviderType, credentials) -> Optional[CredentialCheck]:
        """Check credentials with the provider. None when the provider has no adapter."""
        if not self._providers.is_supported(provider_type):
            return None
        return self._providers.get(provider_type).validate_credentials(credentials)

    def create_account(self,
                       provider_type: Any,
                       label: str,
                       credentials: Dict[str, Any],
                       metadata: Optional[Dict[str, Any]] = None,
                       actor_id: str = "system") -> ProviderAccount:
        """
        Link a provider account.

        Credentials are validated against the provider before anything is
        stored; rejected credentials are never persisted.

        Raises:
            ValidationError: Unknown provider type or empty label
            InvalidCredentialsError: Malformed or rejected credentials
        """
        provider_type = self._provider_type(provider_type)
        if not label or not label.strip():
            raise ValidationError("Account label must not be empty")
        parsed = parse_credentials(credentials, provider_type.value)

        account = ProviderAccount.create(provider_type, label.strip(), metadata)
        check = self._verify(provider_type, parsed)
        if check is not None:
            if not check.valid:
                self._audit.record(AuditEvent.by(
                    actor_id, AuditAction.PROVIDER_CREATE, AuditOutcome.FAILURE,
                    "provider_account", account.provider_account_id, reason=check.message
                ))
                raise InvalidCredentialsError(check.message or "Credentials were rejected by the provider")
            account.record_verification(CredentialStatus.VALID)
            if check.account:
                account.metadata["provider_account"] = check.account

        self._secret_store.store_credentials(account.provider_account_id, parsed.secret_dict())
        self._repository.save(account)
        self._audit.record(AuditEvent.by(
            actor_id, AuditAction.PROVIDER_CREATE, AuditOutcome.SUCCESS,
            "provider_account", account.provider_account_id, provider_type=provider_type.value
        ))
        self._logger.info("Provider account linked",
                          provider_account_id=account.provider_account_id,
                          provider_type=provider_type.value)
        return account

    def update_account(self,
                       provider_account_id: str,
                       label: Optional[str] = None,
                       credentials: Optional[Dict[str, Any]] = None,
                       metadata: Optional[Dict[str, Any]] = None,
                       actor_id: str = "system") -> ProviderAccount:
        """Rename, re-key or annotate an account. New credentials are verified first."""
        account = self.get_account(provider_account_id)
        if label is not None:
            if not label.strip():
                raise ValidationError("Account label must not be empty")
            account.rename(label.strip())
        if metadata is not None:
            account.metadata.update(metadata)
        if credentials is not None:
            parsed = parse_credentials(credentials, account.provider_type.value)
            check = self._verify(account.provider_type, parsed)
            if check is not None:
                if not check.valid:
                    raise InvalidCredentialsError(check.message or "Credentials were rejected by the provider")
                account.record_verification(CredentialStatus.VALID)
            else:
                account.record_verification(CredentialStatus.UNCHECKED)
            self._secret_store.store_credentials(account.provider_account_id, parsed.secret_dict())

        self._repository.save(account)
        self._audit.record(AuditEvent.by(
            actor_id, AuditAction.PROVIDER_UPDATE, AuditOutcome.SUCCESS,
            "provider_account", provider_account_id, credentials_rotated=credentials is not None
        ))
        return account

    def delete_account(self, provider_account_id: str, actor_id: str = "system") -> None:
        """
        Unlink an account and delete its credentials.

        Raises:
            ProviderHasMachinesError: If machines still reference the account
        """
        self.get_account(provider_account_id)
        machines = self._machines.find_by_provider_account(provider_account_id)
        if machines:
            raise ProviderHasMachinesError(provider_account_id, len(machines))
        self._secret_store.delete_credentials(provider_account_id)
        self._repository.delete(provider_account_id)
        self._audit.record(AuditEvent.by(
            actor_id, AuditAction.PROVIDER_DELETE, AuditOutcome.SUCCESS,
            "provider_account", provider_account_id
        ))
        self._logger.info("Provider account deleted", provider_account_id=provider_account_id)

    def verify_account(self, provider_account_id: str,
                       actor_id: str = "system") -> Tuple[ProviderAccount, CredentialCheck]:
        """Re-check stored credentials and persist the resulting status."""
        account = self.get_account(provider_account_id)
        credentials = resolve_credentials(self._secret_store, provider_account_id,
                                          account.provider_type.value)
        check = self._providers.get(account.provider_type).validate_credentials(credentials)
        account.record_verification(CredentialStatus.VALID if check.valid else CredentialStatus.INVALID)
        self._repository.save(account)
        self._audit.record(AuditEvent.by(
            actor_id, AuditAction.PROVIDER_VERIFY,
            AuditOutcome.SUCCESS if check.valid else AuditOutcome.FAILURE,
            "provider_account", provider_account_id, message=check.message
        ))
        return account, check

    def get_options(self, provider_account_id: str) -> Dict[str, List[Dict[str, Any]]]:
        """Regions, sizes and images available to an account."""
        account = self.get_account(provider_account_id)
        adapter = self._providers.get(account.provider_type)
        credentials = None
        if self._providers.is_supported(account.provider_type):
            credentials = resolve_credentials(self._secret_store, provider_account_id,
                                              account.provider_type.value)
        return {
            "regions": adapter.list_regions(credentials),
            "sizes": adapter.list_sizes(credentials),
            "images": adapter.list_images(credentials),
        }
