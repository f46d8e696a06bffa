"""Cloud provider adapters."""
from machina.providers.registry import ProviderRegistry

__all__ = ["ProviderRegistry"]
