"""Lookup of provider adapters by provider type."""
from typing import Dict, List, Optional

from machina.config.schemas.app_schema import ProvidersConfig
from machina.domain.machine.value_objects import ProviderType
from machina.providers.aws.adapter import AWSAdapter
from machina.providers.base.adapter import ProviderAdapter, UnsupportedProviderAdapter
from machina.providers.digitalocean.adapter import DigitalOceanAdapter


class ProviderRegistry:
    """Holds one adapter per provider type.

    Types without a real adapter resolve to :class:`UnsupportedProviderAdapter`
    so callers get ``UNSUPPORTED_PROVIDER`` instead of a lookup failure.
    """

    def __init__(self, adapters: Optional[Dict[ProviderType, ProviderAdapter]] = None):
        self._adapters: Dict[ProviderType, ProviderAdapter] = dict(adapters or {})

    @classmethod
    def from_config(cls, config: ProvidersConfig) -> "ProviderRegistry":
        return cls({
            ProviderType.DIGITALOCEAN: DigitalOceanAdapter(
                api_url=config.digitalocean_api_url,
                timeout=config.request_timeout,
            ),
            ProviderType.AWS: AWSAdapter(
                retry_attempts=config.aws_retry_attempts,
                connect_timeout_ms=config.aws_connect_timeout_ms,
            ),
        })

    def register(self, adapter: ProviderAdapter) -> None:
        self._adapters[adapter.provider_type] = adapter

    def get(self, provider_type) -> ProviderAdapter:
        provider_type = ProviderType(provider_type)
        adapter = self._adapters.get(provider_type)
        if adapter is None:
            return UnsupportedProviderAdapter(provider_type)
        return adapter

    def is_supported(self, provider_type) -> bool:
        return ProviderType(provider_type) in self._adapters

    def supported_types(self) -> List[ProviderType]:
        return [t for t in ProviderType if t in self._adapters]
