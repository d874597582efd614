"""
Webhook Ingestor

Handshake (GET): the provider echoes back the verify_token we issued when
registering the subscription. The token is consumed on success; expired and
unknown tokens are reported as distinct outcomes.

Event delivery (POST):
1. decode the event
2. resolve the local user from the event owner id
3. check the subscription id against the provider's live subscription list
4. valid access token via the credential manager
5. activity create/update: fetch detail + streams, run the activity pipeline
Deletes and non-activity objects are acknowledged and ignored.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from core.exceptions import InvalidHandshake, UnknownSubscription, UserNotFound
from core.logging import log_fields
from services.accounts import get_provider_by_slug, get_user_by_external_id, primary_athlete_id
from services.activity_pipeline import ActivityPipeline
from services.credential_manager import CredentialManager
from services.providers import ProviderRegistry
from services.webhook_verification import VerificationOutcome, VerificationTokenStore

logger = logging.getLogger(__name__)

SUBSCRIBE_MODE = "subscribe"


@dataclass
class EventResult:
    status: str  # "processed" | "skipped" | "ignored"
    activity_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"status": self.status}
        if self.activity_id:
            body["activityId"] = self.activity_id
        return body


class WebhookIngestor:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        providers: ProviderRegistry,
        verification_tokens: VerificationTokenStore,
        credentials: CredentialManager,
        pipeline: ActivityPipeline,
    ):
        self.session_factory = session_factory
        self.providers = providers
        self.verification_tokens = verification_tokens
        self.credentials = credentials
        self.pipeline = pipeline

    def verify_handshake(self, mode: Optional[str], challenge: Optional[str], verify_token: Optional[str]) -> VerificationOutcome:
        if mode != SUBSCRIBE_MODE:
            raise InvalidHandshake(f"unexpected hub.mode: {mode!r}")
        if not challenge or not verify_token:
            raise InvalidHandshake("hub.challenge and hub.verify_token are required")

        outcome = self.verification_tokens.consume(verify_token)
        if outcome is not VerificationOutcome.VALID:
            logger.warning(f"Webhook handshake rejected: {outcome.value}")
        return outcome

    def _subscription_registered(self, provider_slug: str, subscription_id: str) -> bool:
        client = self.providers.get(provider_slug)
        return any(str(s.get("id")) == subscription_id for s in client.list_subscriptions())

    def handle_event(self, provider_slug: str, body: Dict[str, Any]) -> EventResult:
        client = self.providers.get(provider_slug)
        event = client.parse_webhook_event(body)

        db = self.session_factory()
        try:
            provider = get_provider_by_slug(db, provider_slug)
            provider_id = provider.id
            user = get_user_by_external_id(db, provider_id, event.owner_id)
            if user is None:
                raise UserNotFound(provider_slug, event.owner_id)
            user_id = user.id
            athlete_id = primary_athlete_id(db, user_id)
        finally:
            db.close()

        # Live check, no cache: forged callbacks carry an unknown subscription id.
        if not self._subscription_registered(provider_slug, event.subscription_id):
            raise UnknownSubscription(event.subscription_id)

        access_token = self.credentials.ensure_valid(provider_id, user_id)

        context = log_fields(
            provider=provider_slug,
            user_id=str(user_id),
            object_type=event.object_type,
            object_id=event.object_id,
            aspect_type=event.aspect_type.value,
        )

        if not event.is_activity_upsert:
            logger.info("Ignoring webhook event", extra=context)
            return EventResult(status="ignored")

        detail = client.get_activity(access_token, event.object_id)
        streams = client.get_activity_streams(access_token, event.object_id)
        activity_id = self.pipeline.ingest(client, provider_id, user_id, athlete_id, detail, streams)

        logger.info("Processed webhook event", extra=context)
        if activity_id is None:
            return EventResult(status="skipped")
        return EventResult(status="processed", activity_id=str(activity_id))
