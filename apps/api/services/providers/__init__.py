"""
Provider clients

Unified interface over external OAuth2 activity providers:
1. Abstract client and shared dataclasses (base)
2. Strava implementation (strava)
3. Slug -> client registry (registry)
"""

from .base import (
    AuthorizationGrant,
    OAuth2Token,
    ProviderAthlete,
    ProviderClient,
    RawActivityFields,
    WebhookAspect,
    WebhookEvent,
)
from .registry import ProviderRegistry, build_default_registry

__all__ = [
    'AuthorizationGrant',
    'OAuth2Token',
    'ProviderAthlete',
    'ProviderClient',
    'RawActivityFields',
    'WebhookAspect',
    'WebhookEvent',
    'ProviderRegistry',
    'build_default_registry',
]
