"""
Base classes for provider API clients.

Every OAuth2 provider (only Strava today) implements `ProviderClient` so the
credential manager, backfill processor and webhook ingestor can work with any
source uniformly. Provider-native payloads stay as dicts; decoding them into
the provider's own schema is the provider module's job.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class WebhookAspect(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class OAuth2Token:
    access_token: str
    refresh_token: str
    expires_at: datetime


@dataclass
class ProviderAthlete:
    """Profile returned alongside the token on first authorization."""
    external_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    country: Optional[str] = None
    gender: Optional[str] = None

    @property
    def display_name(self) -> Optional[str]:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or None


@dataclass
class AuthorizationGrant:
    token: OAuth2Token
    athlete: ProviderAthlete


@dataclass
class WebhookEvent:
    object_type: str
    object_id: str
    aspect_type: WebhookAspect
    owner_id: str
    subscription_id: str
    event_time: Optional[datetime] = None
    updates: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_activity_upsert(self) -> bool:
        return self.object_type == "activity" and self.aspect_type in (
            WebhookAspect.CREATE,
            WebhookAspect.UPDATE,
        )


@dataclass
class RawActivityFields:
    """Columns of provider_activity_raw_data extracted from a native payload."""
    provider_activity_id: str
    start_time: datetime
    elapsed_time: int
    iana_timezone: Optional[str]
    utc_offset: Optional[int]


class ProviderClient(ABC):
    """
    OAuth2 provider API.

    Implementations raise core.exceptions.ProviderRateLimited on a rate-limit
    signal, ProviderRequestFailed on other transport/HTTP errors and
    RefreshFailed when a token refresh is rejected.
    """

    @property
    @abstractmethod
    def slug(self) -> str:
        """Lowercase identifier matching provider.slug, e.g. 'strava'."""

    # --- OAuth2 ---

    @abstractmethod
    def authorization_url(self, state: Optional[str] = None) -> str:
        pass

    @abstractmethod
    def exchange_code(self, code: str) -> AuthorizationGrant:
        pass

    @abstractmethod
    def refresh_token(self, refresh_token: str) -> OAuth2Token:
        pass

    # --- Activities ---

    @abstractmethod
    def list_activity_summaries(
        self, access_token: str, after: datetime, before: datetime, page_size: int
    ) -> List[Dict[str, Any]]:
        """
        Summaries started in [after, before).

        Pages until a short page. A rate-limit signal ends paging early and
        the summaries collected so far are returned.
        """

    @abstractmethod
    def get_activity(self, access_token: str, activity_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    def get_activity_streams(self, access_token: str, activity_id: str) -> Dict[str, Any]:
        """Time-series keyed by stream type; empty when the activity has none."""

    @abstractmethod
    def raw_fields(self, payload: Dict[str, Any]) -> RawActivityFields:
        pass

    # --- Webhooks ---

    @abstractmethod
    def parse_webhook_event(self, body: Dict[str, Any]) -> WebhookEvent:
        pass

    @abstractmethod
    def list_subscriptions(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def create_subscription(self, callback_url: str, verify_token: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    def delete_subscription(self, subscription_id: str) -> None:
        pass
