"""
Activity repositories.

One class per capability so each can be substituted independently:
- RawActivityRepository: provider payloads, upsert on the natural key
  (provider_id, user_id, provider_activity_id)
- CanonicalActivityRepository: activity_endurance, upsert on the raw row id
- TagRepository: tag upsert by name + insert-if-absent links

All methods run inside the caller's session and never commit.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from core.database import upsert
from models import ActivityTag, EnduranceActivity, ProviderActivityRawData, activity_endurance_tag
from services.providers import RawActivityFields


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RawActivityRepository:
    def upsert(
        self,
        db: Session,
        *,
        provider_id: int,
        user_id: UUID,
        athlete_id: Optional[UUID],
        fields: RawActivityFields,
        data: Dict[str, Any],
    ) -> UUID:
        """
        Insert or refresh a raw payload and return the row id.

        A new payload clears processed_at so the row goes back through the
        pipeline (and the reconciliation sweep) with the new data. The stream
        reference is left alone.
        """
        table = ProviderActivityRawData.__table__
        now = _utcnow()
        stmt = upsert(db, table).values(
            id=uuid.uuid4(),
            provider_id=provider_id,
            user_id=user_id,
            athlete_id=athlete_id,
            provider_activity_id=fields.provider_activity_id,
            start_time=fields.start_time,
            elapsed_time=fields.elapsed_time,
            iana_timezone=fields.iana_timezone,
            utc_offset=fields.utc_offset,
            data=data,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["provider_id", "user_id", "provider_activity_id"],
            set_={
                "athlete_id": func.coalesce(stmt.excluded.athlete_id, table.c.athlete_id),
                "start_time": stmt.excluded.start_time,
                "elapsed_time": stmt.excluded.elapsed_time,
                "iana_timezone": stmt.excluded.iana_timezone,
                "utc_offset": stmt.excluded.utc_offset,
                "data": stmt.excluded.data,
                "processed_at": None,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        db.execute(stmt)
        return db.execute(
            select(table.c.id).where(
                table.c.provider_id == provider_id,
                table.c.user_id == user_id,
                table.c.provider_activity_id == fields.provider_activity_id,
            )
        ).scalar_one()

    def get(self, db: Session, raw_id: UUID) -> Optional[ProviderActivityRawData]:
        return db.get(ProviderActivityRawData, raw_id)

    def list_for_user(self, db: Session, provider_id: int, user_id: UUID) -> List[ProviderActivityRawData]:
        return (
            db.query(ProviderActivityRawData)
            .filter(
                ProviderActivityRawData.provider_id == provider_id,
                ProviderActivityRawData.user_id == user_id,
                ProviderActivityRawData.deleted_at.is_(None),
            )
            .all()
        )

    def attach_detail(self, db: Session, raw_id: UUID, uri: str) -> None:
        db.query(ProviderActivityRawData).filter(ProviderActivityRawData.id == raw_id).update(
            {"detailed_activity_uri": uri, "updated_at": _utcnow()},
            synchronize_session=False,
        )

    def mark_processed(self, db: Session, raw_id: UUID) -> None:
        db.query(ProviderActivityRawData).filter(ProviderActivityRawData.id == raw_id).update(
            {"processed_at": _utcnow()},
            synchronize_session=False,
        )

    def find_unprocessed(self, db: Session, created_before: datetime, limit: int) -> List[ProviderActivityRawData]:
        return (
            db.query(ProviderActivityRawData)
            .filter(
                ProviderActivityRawData.processed_at.is_(None),
                ProviderActivityRawData.detailed_activity_uri.isnot(None),
                ProviderActivityRawData.deleted_at.is_(None),
                ProviderActivityRawData.created_at < created_before,
            )
            .order_by(ProviderActivityRawData.created_at)
            .limit(limit)
            .all()
        )


# Filled by the enrichment pass; a plain re-normalization must not wipe them.
ENRICHMENT_COLUMNS = ("avg_hr", "max_hr", "elev_loss", "gpx_file_uri", "fit_file_uri")

NORMALIZED_COLUMNS = (
    "provider_id",
    "athlete_id",
    "name",
    "description",
    "sport",
    "start_time",
    "end_time",
    "iana_timezone",
    "utc_offset",
    "elapsed_time",
    "moving_time",
    "distance",
    "elev_gain",
    "avg_speed",
    "summary_polyline",
    "summary_route",
)


class CanonicalActivityRepository:
    def upsert(self, db: Session, activity: EnduranceActivity) -> UUID:
        table = EnduranceActivity.__table__
        now = _utcnow()
        values = {c: getattr(activity, c) for c in NORMALIZED_COLUMNS + ENRICHMENT_COLUMNS}
        stmt = upsert(db, table).values(
            id=activity.id or uuid.uuid4(),
            provider_raw_activity_id=activity.provider_raw_activity_id,
            created_at=now,
            updated_at=now,
            **values,
        )
        set_ = {c: stmt.excluded[c] for c in NORMALIZED_COLUMNS}
        set_.update({c: func.coalesce(stmt.excluded[c], table.c[c]) for c in ENRICHMENT_COLUMNS})
        set_["updated_at"] = stmt.excluded.updated_at
        stmt = stmt.on_conflict_do_update(index_elements=["provider_raw_activity_id"], set_=set_)
        db.execute(stmt)
        return db.execute(
            select(table.c.id).where(table.c.provider_raw_activity_id == activity.provider_raw_activity_id)
        ).scalar_one()

    def get_by_raw(self, db: Session, raw_id: UUID) -> Optional[EnduranceActivity]:
        return db.query(EnduranceActivity).filter(EnduranceActivity.provider_raw_activity_id == raw_id).first()

    def update_enrichment(
        self,
        db: Session,
        activity_id: UUID,
        *,
        avg_hr: Optional[int],
        max_hr: Optional[int],
        elev_loss: Optional[int],
        gpx_file_uri: Optional[str],
    ) -> None:
        db.query(EnduranceActivity).filter(EnduranceActivity.id == activity_id).update(
            {
                "avg_hr": avg_hr,
                "max_hr": max_hr,
                "elev_loss": elev_loss,
                "gpx_file_uri": gpx_file_uri,
                "updated_at": _utcnow(),
            },
            synchronize_session=False,
        )


class TagRepository:
    def upsert(self, db: Session, names: Iterable[str], description: Optional[str] = None) -> Dict[str, int]:
        """Upsert tags by name and return {name: id}."""
        names = list(dict.fromkeys(names))
        if not names:
            return {}
        table = ActivityTag.__table__
        stmt = upsert(db, table).values([{"name": n, "description": description} for n in names])
        stmt = stmt.on_conflict_do_update(
            index_elements=["name"],
            set_={"description": func.coalesce(stmt.excluded.description, table.c.description)},
        )
        db.execute(stmt)
        rows = db.execute(select(table.c.name, table.c.id).where(table.c.name.in_(names))).all()
        return {name: tag_id for name, tag_id in rows}

    def link(self, db: Session, activity_id: UUID, tag_ids: Iterable[int]) -> None:
        rows = [{"activity_endurance_id": activity_id, "activity_tag_id": t} for t in tag_ids]
        if not rows:
            return
        stmt = upsert(db, activity_endurance_tag).values(rows).on_conflict_do_nothing()
        db.execute(stmt)
