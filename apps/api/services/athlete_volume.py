"""
Athlete training volume.

Aggregates canonical activities per sport and period (day, week or month)
from a start date onwards. Weeks start on Monday. Periods are computed on
UTC start times and reported as ISO dates of the period start.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from core.database import as_utc
from models import EnduranceActivity

FREQUENCIES = ("day", "week", "month")


def period_start(value: date, frequency: str) -> date:
    if frequency == "day":
        return value
    if frequency == "week":
        return value - timedelta(days=value.weekday())
    if frequency == "month":
        return value.replace(day=1)
    raise ValueError(f"unknown frequency: {frequency}")


@dataclass
class VolumeBucket:
    period: date
    activity_count: int = 0
    total_distance_meters: int = 0
    total_elapsed_time_seconds: int = 0
    total_moving_time_seconds: int = 0
    total_elevation_gain_meters: int = 0

    def to_dict(self) -> dict:
        return {
            "period": self.period.isoformat(),
            "activityCount": self.activity_count,
            "totalDistanceMeters": self.total_distance_meters,
            "totalElapsedTimeSeconds": self.total_elapsed_time_seconds,
            "totalMovingTimeSeconds": self.total_moving_time_seconds,
            "totalElevationGainMeters": self.total_elevation_gain_meters,
        }


def athlete_volume(
    db: Session,
    athlete_id: UUID,
    provider_id: int,
    frequency: str,
    start_date: date,
    sports: Sequence[str],
) -> Dict[str, List[dict]]:
    """{sport: [bucket, ...]} with every requested sport present, periods ascending."""
    if frequency not in FREQUENCIES:
        raise ValueError(f"unknown frequency: {frequency}")

    since = datetime.combine(start_date, datetime.min.time(), tzinfo=timezone.utc)
    activities = (
        db.query(EnduranceActivity)
        .filter(
            EnduranceActivity.athlete_id == athlete_id,
            EnduranceActivity.provider_id == provider_id,
            EnduranceActivity.sport.in_(list(sports)),
            EnduranceActivity.start_time >= since,
            EnduranceActivity.deleted_at.is_(None),
        )
        .all()
    )

    buckets: Dict[str, Dict[date, VolumeBucket]] = {sport: {} for sport in sports}
    for activity in activities:
        period = period_start(as_utc(activity.start_time).date(), frequency)
        per_sport = buckets[activity.sport]
        bucket = per_sport.get(period)
        if bucket is None:
            bucket = per_sport[period] = VolumeBucket(period=period)
        bucket.activity_count += 1
        bucket.total_distance_meters += activity.distance or 0
        bucket.total_elapsed_time_seconds += activity.elapsed_time or 0
        bucket.total_moving_time_seconds += activity.moving_time or 0
        bucket.total_elevation_gain_meters += activity.elev_gain or 0

    return {
        sport: [b.to_dict() for _, b in sorted(per_sport.items())]
        for sport, per_sport in buckets.items()
    }
