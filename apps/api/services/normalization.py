"""
Normalization Engine

Raw provider payload -> canonical EnduranceActivity.

normalize() is the first pass: decode the native payload, classify the sport,
derive end time, integer distance/elevation and route geometry. Non-endurance
sports raise NotQualifyingActivity, which callers treat as a skip.

enrich() is the second pass, run once stream data is available: heart-rate
metrics, elevation loss and a rendered GPX file. Both passes are pure
functions of their inputs.

Tags come from free text: hashtag style (#word) or bracket style ([word]).
Purely numeric bracket tokens are lap markers, not tags.
"""

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

from core.config import settings
from core.database import as_utc
from core.exceptions import NotQualifyingActivity, UnsupportedProvider
from models import EnduranceActivity, ProviderActivityRawData
from services.activity_analytics import (
    classify_sport,
    elevation_loss,
    heart_rate_metrics,
    polyline_to_wkt,
    render_gpx,
    timeseries,
)
from services.providers.strava import StravaActivity

TAG_PATTERNS = {
    "hashtag": re.compile(r"#([\w-]+)"),
    "bracket": re.compile(r"\[([\w-]+)\]"),
}


def normalize(raw: ProviderActivityRawData, provider_slug: str) -> EnduranceActivity:
    """Build an unsaved canonical activity from a raw row."""
    if provider_slug != "strava":
        raise UnsupportedProvider(f"unsupported provider: {provider_slug}")

    native = StravaActivity.from_payload(raw.data)
    sport = classify_sport(provider_slug, native.sport_type)
    if sport is None:
        raise NotQualifyingActivity(f"activity {native.id} is a {native.sport_type or 'unknown'} activity")

    start_time = as_utc(raw.start_time)
    activity = EnduranceActivity(
        provider_id=raw.provider_id,
        athlete_id=raw.athlete_id,
        provider_raw_activity_id=raw.id,
        name=native.name,
        description=native.description,
        sport=sport,
        start_time=start_time,
        end_time=start_time + timedelta(seconds=raw.elapsed_time),
        iana_timezone=raw.iana_timezone,
        utc_offset=raw.utc_offset,
        elapsed_time=native.elapsed_time,
        moving_time=native.moving_time,
        distance=int(native.distance),
        elev_gain=int(native.total_elevation_gain) if native.total_elevation_gain > 0 else None,
        avg_speed=native.average_speed,
    )

    if native.summary_polyline:
        activity.summary_polyline = native.summary_polyline
        activity.summary_route = polyline_to_wkt(native.summary_polyline)

    return activity


@dataclass
class Enrichment:
    avg_hr: Optional[int]
    max_hr: Optional[int]
    elev_loss: Optional[int]
    gpx: Optional[bytes]


def enrich(activity: EnduranceActivity, streams: Dict[str, Any]) -> Enrichment:
    samples = timeseries(streams)
    avg_hr, max_hr = heart_rate_metrics(samples)
    return Enrichment(
        avg_hr=avg_hr,
        max_hr=max_hr,
        elev_loss=elevation_loss(samples),
        gpx=render_gpx(activity.name, activity.sport, as_utc(activity.start_time), samples),
    )


def extract_tags(text: Optional[str], style: Optional[str] = None) -> List[str]:
    """Case-sensitive tag names in first-seen order, duplicates dropped."""
    if not text:
        return []
    style = style or settings.TAG_STYLE
    tags = []
    for token in TAG_PATTERNS[style].findall(text):
        if style == "bracket" and token.isdigit():
            continue
        tags.append(token)
    return list(dict.fromkeys(tags))


def activity_tags(activity: EnduranceActivity, style: Optional[str] = None) -> List[str]:
    """Tags from the description; the name is only read when the description has none."""
    return extract_tags(activity.description, style) or extract_tags(activity.name, style)
