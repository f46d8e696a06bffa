"""Provider account repository interface."""

from abc import ABC, abstractmethod
from typing import List, Optional

from machina.domain.provider.provider_aggregate import ProviderAccount


class ProviderAccountRepository(ABC):

    @abstractmethod
    def save(self, account: ProviderAccount) -> None:
        """Persist a provider account."""

    @abstractmethod
    def find_by_id(self, provider_account_id: str) -> Optional[ProviderAccount]:
        """Find account by ID."""

    @abstractmethod
    def find_all(self) -> List[ProviderAccount]:
        """Find all accounts."""

    @abstractmethod
    def delete(self, provider_account_id: str) -> None:
        """Remove an account."""
