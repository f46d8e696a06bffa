from machina.providers.base.adapter import (
    CredentialCheck,
    ProviderAdapter,
    ProvisionRequest,
    ResourceDescription,
    UnsupportedProviderAdapter,
    load_catalog,
)

__all__ = [
    "CredentialCheck",
    "ProviderAdapter",
    "ProvisionRequest",
    "ResourceDescription",
    "UnsupportedProviderAdapter",
    "load_catalog",
]
