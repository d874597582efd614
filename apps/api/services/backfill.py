"""
Backfill Processor

Consumes one historical_backfill window:
1. provider row, then a valid access token via the credential manager
2. remote summaries for the window (rate limit = soft stop, partial list)
3. existing raw rows for (provider, user), indexed by provider activity id
4. first remote summary that still needs work:
   - raw row with a stream reference: already done, skip
   - raw row without one: fetch streams, attach, normalize, stop
   - no raw row: fetch detail, persist, fetch streams, attach, normalize, stop

At most one activity is fetched per invocation. Windows are re-run by
redelivery and re-scheduling, and every write is an upsert, so replays
converge on the same rows.

Summary/detail/stream failures propagate so the queue redelivers the message.
A permanent per-record error (undecodable payload) skips that activity and
moves on to the next summary.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import PermanentRecordError, UnsupportedProvider
from core.logging import log_fields
from models import Provider
from services.accounts import primary_athlete_id
from services.activity_pipeline import ActivityPipeline
from services.activity_store import RawActivityRepository
from services.credential_manager import CredentialManager
from services.providers import ProviderRegistry
from services.task_queue import BackfillTask

logger = logging.getLogger(__name__)


@dataclass
class BackfillResult:
    summaries: int
    skipped: int = 0
    processed_activity_id: Optional[str] = None
    raw_activity_id: Optional[UUID] = None

    def to_dict(self) -> dict:
        return {
            "summaries": self.summaries,
            "skipped": self.skipped,
            "processed_activity_id": self.processed_activity_id,
            "raw_activity_id": str(self.raw_activity_id) if self.raw_activity_id else None,
        }


class BackfillProcessor:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        providers: ProviderRegistry,
        credentials: CredentialManager,
        pipeline: ActivityPipeline,
        raw_activities: Optional[RawActivityRepository] = None,
        page_size: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.providers = providers
        self.credentials = credentials
        self.pipeline = pipeline
        self.raw_activities = raw_activities or RawActivityRepository()
        self.page_size = page_size or settings.STRAVA_PAGE_SIZE

    def process(self, task: BackfillTask) -> BackfillResult:
        db = self.session_factory()
        try:
            provider = db.get(Provider, task.provider_id)
            if provider is None:
                raise UnsupportedProvider(f"provider {task.provider_id} not found")
            provider_slug = provider.slug
            athlete_id = primary_athlete_id(db, task.user_id)
            existing = {
                row.provider_activity_id: row
                for row in self.raw_activities.list_for_user(db, task.provider_id, task.user_id)
            }
        finally:
            db.close()

        access_token = self.credentials.ensure_valid(task.provider_id, task.user_id)
        client = self.providers.get(provider_slug)
        summaries = client.list_activity_summaries(
            access_token, task.window_start, task.window_end, self.page_size
        )
        result = BackfillResult(summaries=len(summaries))

        for summary in summaries:
            activity_id = str(summary["id"])
            row = existing.get(activity_id)

            if row is not None and row.detailed_activity_uri:
                result.skipped += 1
                continue

            try:
                if row is not None:
                    streams = client.get_activity_streams(access_token, activity_id)
                    self.pipeline.attach_streams(row.id, provider_slug, streams)
                    canonical_id = self.pipeline.process(row.id, provider_slug, streams)
                    result.raw_activity_id = row.id
                else:
                    detail = client.get_activity(access_token, activity_id)
                    raw_id = self.pipeline.persist_raw(client, task.provider_id, task.user_id, athlete_id, detail)
                    streams = client.get_activity_streams(access_token, activity_id)
                    self.pipeline.attach_streams(raw_id, provider_slug, streams)
                    canonical_id = self.pipeline.process(raw_id, provider_slug, streams)
                    result.raw_activity_id = raw_id
            except PermanentRecordError as e:
                # Bad record: skip it so later activities in the window still land.
                logger.warning(
                    f"Skipping activity in backfill window: {e}",
                    extra=log_fields(
                        user_id=str(task.user_id),
                        provider=provider_slug,
                        provider_activity_id=activity_id,
                    ),
                )
                result.skipped += 1
                continue

            result.processed_activity_id = activity_id
            logger.info(
                "Backfilled activity",
                extra=log_fields(
                    user_id=str(task.user_id),
                    provider=provider_slug,
                    provider_activity_id=activity_id,
                    canonical_id=str(canonical_id) if canonical_id else None,
                ),
            )
            break

        logger.info(
            "Backfill window processed",
            extra=log_fields(
                user_id=str(task.user_id),
                provider=provider_slug,
                window_start=task.window_start.isoformat(),
                window_end=task.window_end.isoformat(),
                **result.to_dict(),
            ),
        )
        return result
