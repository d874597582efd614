"""
Activity pipeline: raw persist -> stream upload -> normalize -> enrich -> tag.

Shared by the backfill processor, the webhook ingestor and the
post_process_activity handler so every path writes the same rows.

Writes happen in three steps that are not atomic together:
1. raw row upsert (committed)
2. stream blob upload + detailed_activity_uri (committed)
3. canonical upsert, enrichment, tags and processed_at (one transaction)
A crash between them leaves a raw row with processed_at NULL, which the
reconciliation sweep re-enqueues.
"""

import json
import logging
from typing import Any, Callable, Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.exceptions import PermanentRecordError
from core.logging import log_fields
from models import ProviderActivityRawData
from services.activity_store import CanonicalActivityRepository, RawActivityRepository, TagRepository
from services.normalization import activity_tags, enrich, normalize
from services.object_store import ObjectStore, gpx_key, raw_streams_key
from services.providers import ProviderClient

logger = logging.getLogger(__name__)


class ActivityPipeline:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        object_store: ObjectStore,
        raw_activities: Optional[RawActivityRepository] = None,
        canonical_activities: Optional[CanonicalActivityRepository] = None,
        tags: Optional[TagRepository] = None,
        tag_style: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.object_store = object_store
        self.raw_activities = raw_activities or RawActivityRepository()
        self.canonical_activities = canonical_activities or CanonicalActivityRepository()
        self.tags = tags or TagRepository()
        self.tag_style = tag_style

    def persist_raw(
        self,
        client: ProviderClient,
        provider_id: int,
        user_id: UUID,
        athlete_id: Optional[UUID],
        detail: Dict[str, Any],
    ) -> UUID:
        fields = client.raw_fields(detail)
        db = self.session_factory()
        try:
            raw_id = self.raw_activities.upsert(
                db,
                provider_id=provider_id,
                user_id=user_id,
                athlete_id=athlete_id,
                fields=fields,
                data=detail,
            )
            db.commit()
            return raw_id
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def attach_streams(self, raw_id: UUID, provider_slug: str, streams: Dict[str, Any]) -> str:
        """Upload the stream blob and point the raw row at it."""
        uri = self.object_store.put(
            raw_streams_key(provider_slug, raw_id),
            json.dumps(streams).encode("utf-8"),
            content_type="application/json",
        )
        db = self.session_factory()
        try:
            self.raw_activities.attach_detail(db, raw_id, uri)
            db.commit()
            return uri
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def load_streams(self, raw: ProviderActivityRawData) -> Optional[Dict[str, Any]]:
        if not raw.detailed_activity_uri:
            return None
        return json.loads(self.object_store.get(raw.detailed_activity_uri))

    def process(self, raw_id: UUID, provider_slug: str, streams: Optional[Dict[str, Any]] = None) -> Optional[UUID]:
        """
        Normalize, enrich and tag a stored raw activity.

        Returns the canonical activity id, or None when the record was skipped
        (non-endurance sport, undecodable payload). Skips still stamp
        processed_at so the reconciliation sweep leaves the row alone.
        """
        db = self.session_factory()
        try:
            raw = self.raw_activities.get(db, raw_id)
            if raw is None:
                raise LookupError(f"raw activity {raw_id} not found")

            try:
                activity = normalize(raw, provider_slug)
            except PermanentRecordError as e:
                logger.info(
                    f"Skipping raw activity: {e}",
                    extra=log_fields(raw_activity_id=str(raw_id), provider=provider_slug),
                )
                self.raw_activities.mark_processed(db, raw_id)
                db.commit()
                return None

            activity_id = self.canonical_activities.upsert(db, activity)

            if streams:
                enrichment = enrich(activity, streams)
                gpx_uri = None
                if enrichment.gpx:
                    gpx_uri = self.object_store.put(
                        gpx_key(provider_slug, activity_id),
                        enrichment.gpx,
                        content_type="application/gpx+xml",
                    )
                self.canonical_activities.update_enrichment(
                    db,
                    activity_id,
                    avg_hr=enrichment.avg_hr,
                    max_hr=enrichment.max_hr,
                    elev_loss=enrichment.elev_loss,
                    gpx_file_uri=gpx_uri,
                )

            tag_ids = self.tags.upsert(db, activity_tags(activity, self.tag_style))
            self.tags.link(db, activity_id, tag_ids.values())

            self.raw_activities.mark_processed(db, raw_id)
            db.commit()

            logger.info(
                "Stored endurance activity",
                extra=log_fields(
                    activity_id=str(activity_id),
                    raw_activity_id=str(raw_id),
                    sport=activity.sport,
                    tags=sorted(tag_ids),
                ),
            )
            return activity_id
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def ingest(
        self,
        client: ProviderClient,
        provider_id: int,
        user_id: UUID,
        athlete_id: Optional[UUID],
        detail: Dict[str, Any],
        streams: Dict[str, Any],
    ) -> Optional[UUID]:
        """Full path for a freshly fetched activity."""
        raw_id = self.persist_raw(client, provider_id, user_id, athlete_id, detail)
        self.attach_streams(raw_id, client.slug, streams)
        return self.process(raw_id, client.slug, streams)
