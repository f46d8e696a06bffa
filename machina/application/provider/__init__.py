from .credentials import resolve_credentials
from .service import ProviderAccountService

__all__ = ["ProviderAccountService", "resolve_credentials"]
