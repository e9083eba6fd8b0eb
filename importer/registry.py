# importer/registry.py
import logging

from importer.providers.alibaba import AlibabaProvider
from importer.providers.temu import TemuProvider

logger = logging.getLogger("importer")


class ProviderRegistry:
    """
    Registry of import providers, keyed by name.

    Lookup by URL walks providers in registration order and returns the first
    one whose ``can_handle`` accepts the URL. Registering a provider under an
    existing name replaces it in place.
    """

    def __init__(self, providers=None):
        self._providers = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider):
        self._providers[provider.name] = provider

    def get_provider(self, name):
        if not name:
            return None
        return self._providers.get(name.lower())

    def detect_provider(self, url):
        for provider in self._providers.values():
            if provider.can_handle(url):
                return provider
        return None

    def get_provider_for_url(self, url, provider_name=None):
        """
        Resolve the provider for a URL.

        Args:
            url (str): Product URL
            provider_name (str, optional): Explicit provider. It must also
                claim the URL; otherwise no provider is returned.

        Returns:
            ImportProvider or None
        """
        if provider_name:
            provider = self.get_provider(provider_name)
            if provider is not None and provider.can_handle(url):
                return provider
            return None
        return self.detect_provider(url)

    def get_all_providers(self):
        return list(self._providers.values())

    def is_url_supported(self, url):
        return self.detect_provider(url) is not None

    def supported_names(self):
        return list(self._providers)

    async def close(self):
        for provider in self._providers.values():
            await provider.close()


def build_default_registry(fetcher=None):
    """Registry with Temu then Alibaba, optionally sharing one PageFetcher."""
    registry = ProviderRegistry([TemuProvider(fetcher), AlibabaProvider(fetcher)])
    logger.info(f"Provider registry ready: {', '.join(registry.supported_names())}")
    return registry
