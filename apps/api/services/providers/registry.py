"""
Provider Registry

Maps provider slugs to configured API clients. One registry is built per
process by services.container and injected into the components that talk
to providers.
"""

from typing import Dict, Iterable, List
import logging

from core.config import settings
from core.exceptions import UnsupportedProvider
from .base import ProviderClient
from .strava import StravaClient

logger = logging.getLogger(__name__)


class ProviderRegistry:
    def __init__(self, clients: Iterable[ProviderClient] = ()):
        self._clients: Dict[str, ProviderClient] = {}
        for client in clients:
            self.register(client)

    def register(self, client: ProviderClient) -> None:
        if client.slug in self._clients:
            logger.warning(f"Overwriting existing client for provider: {client.slug}")
        self._clients[client.slug] = client

    def get(self, slug: str) -> ProviderClient:
        try:
            return self._clients[slug]
        except KeyError:
            raise UnsupportedProvider(f"unsupported provider: {slug}") from None

    def slugs(self) -> List[str]:
        return sorted(self._clients)


def build_default_registry() -> ProviderRegistry:
    """Registry with every provider configured from settings."""
    strava = StravaClient(
        client_id=settings.STRAVA_CLIENT_ID,
        client_secret=settings.STRAVA_CLIENT_SECRET,
        redirect_uri=f"{settings.API_BASE_URL.rstrip('/')}/providers/strava/auth/callback",
        api_base=settings.STRAVA_API_BASE,
        oauth_url=settings.STRAVA_OAUTH_URL,
        timeout=settings.EXTERNAL_API_TIMEOUT,
    )
    return ProviderRegistry([strava])
