"""Provider account bounded context."""

from .provider_aggregate import ProviderAccount, CredentialStatus
from .credentials import (
    ProviderCredentials,
    DigitalOceanCredentials,
    AWSCredentials,
    GCPCredentials,
    HetznerCredentials,
    BareMetalCredentials,
    parse_credentials,
)
from .exceptions import ProviderAccountNotFoundError, ProviderHasMachinesError

__all__ = [
    "ProviderAccount",
    "CredentialStatus",
    "ProviderCredentials",
    "DigitalOceanCredentials",
    "AWSCredentials",
    "GCPCredentials",
    "HetznerCredentials",
    "BareMetalCredentials",
    "parse_credentials",
    "ProviderAccountNotFoundError",
    "ProviderHasMachinesError",
]
