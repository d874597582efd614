"""
Activity analytics adapter.

Thin, deterministic helpers the normalization engine delegates to:
- sport classification (provider sport type -> canonical endurance sport)
- heart-rate and elevation metrics from stream data
- GPX rendering from stream data
- encoded polyline -> WKT LINESTRING

Everything here is pure: same inputs, same outputs. The enrichment pass relies
on that to converge when it is re-run.
"""

import math
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from core.exceptions import MalformedPayload

# Strava sport_type -> canonical sport. Anything missing is not endurance.
STRAVA_ENDURANCE_SPORTS: Dict[str, str] = {
    "Run": "running",
    "VirtualRun": "running",
    "TrailRun": "trail-running",
    "Ride": "cycling",
    "VirtualRide": "cycling",
    "GravelRide": "gravel-cycling",
    "MountainBikeRide": "mountain-biking",
    "Swim": "swimming",
    "Hike": "hiking",
    "Walk": "walking",
    "NordicSki": "cross-country-skiing",
    "BackcountrySki": "ski-touring",
    "RollerSki": "roller-skiing",
    "Rowing": "rowing",
    "VirtualRow": "rowing",
    "Canoeing": "paddling",
    "Kayaking": "paddling",
    "StandUpPaddling": "paddling",
    "InlineSkate": "inline-skating",
    "Snowshoe": "snowshoeing",
}

ENDURANCE_SPORTS = frozenset(STRAVA_ENDURANCE_SPORTS.values())

GPX_NS = "http://www.topografix.com/GPX/1/1"
GPXTPX_NS = "http://www.garmin.com/xmlschemas/TrackPointExtension/v1"


def classify_sport(provider_slug: str, sport_type: str) -> Optional[str]:
    """Canonical sport for a provider sport type, None when not endurance."""
    if provider_slug == "strava":
        return STRAVA_ENDURANCE_SPORTS.get(sport_type)
    return None


def is_endurance_sport(sport: str) -> bool:
    return sport in ENDURANCE_SPORTS


# ---------------------------------------------------------------------------
# Streams
# ---------------------------------------------------------------------------


@dataclass
class Sample:
    offset_s: int
    lat: Optional[float] = None
    lng: Optional[float] = None
    altitude: Optional[float] = None
    heartrate: Optional[int] = None


def _stream(streams: Dict[str, Any], name: str) -> List[Any]:
    stream = streams.get(name) if streams else None
    if isinstance(stream, dict):
        return stream.get("data") or []
    if isinstance(stream, list):
        return stream
    return []


def timeseries(streams: Dict[str, Any]) -> List[Sample]:
    """Zip key_by_type streams into samples, indexed by the `time` stream."""
    times = _stream(streams, "time")
    latlng = _stream(streams, "latlng")
    altitude = _stream(streams, "altitude")
    heartrate = _stream(streams, "heartrate")

    samples = []
    for i, offset in enumerate(times):
        sample = Sample(offset_s=int(offset))
        if i < len(latlng) and latlng[i]:
            sample.lat, sample.lng = float(latlng[i][0]), float(latlng[i][1])
        if i < len(altitude) and altitude[i] is not None:
            sample.altitude = float(altitude[i])
        if i < len(heartrate) and heartrate[i]:
            sample.heartrate = int(heartrate[i])
        samples.append(sample)
    return samples


def heart_rate_metrics(samples: List[Sample]) -> Tuple[Optional[int], Optional[int]]:
    """(average, max) heart rate over samples that carry one."""
    values = [s.heartrate for s in samples if s.heartrate]
    if not values:
        return None, None
    return int(round(sum(values) / len(values))), max(values)


def elevation_loss(samples: List[Sample]) -> Optional[int]:
    altitudes = [s.altitude for s in samples if s.altitude is not None]
    if len(altitudes) < 2:
        return None
    loss = sum(max(0.0, a - b) for a, b in zip(altitudes, altitudes[1:]))
    return int(loss)


def render_gpx(name: str, sport: str, start_time: datetime, samples: List[Sample]) -> Optional[bytes]:
    """GPX 1.1 track for samples with a position; None when there are none."""
    points = [s for s in samples if s.lat is not None and s.lng is not None]
    if not points:
        return None

    ET.register_namespace("", GPX_NS)
    ET.register_namespace("gpxtpx", GPXTPX_NS)

    gpx = ET.Element(f"{{{GPX_NS}}}gpx", {"version": "1.1", "creator": "endurance-ingest"})
    metadata = ET.SubElement(gpx, f"{{{GPX_NS}}}metadata")
    ET.SubElement(metadata, f"{{{GPX_NS}}}name").text = name
    ET.SubElement(metadata, f"{{{GPX_NS}}}time").text = _gpx_time(start_time)

    trk = ET.SubElement(gpx, f"{{{GPX_NS}}}trk")
    ET.SubElement(trk, f"{{{GPX_NS}}}name").text = name
    ET.SubElement(trk, f"{{{GPX_NS}}}type").text = sport
    seg = ET.SubElement(trk, f"{{{GPX_NS}}}trkseg")

    for s in points:
        pt = ET.SubElement(seg, f"{{{GPX_NS}}}trkpt", {"lat": f"{s.lat:.7f}", "lon": f"{s.lng:.7f}"})
        if s.altitude is not None:
            ET.SubElement(pt, f"{{{GPX_NS}}}ele").text = f"{s.altitude:.1f}"
        ET.SubElement(pt, f"{{{GPX_NS}}}time").text = _gpx_time(start_time + timedelta(seconds=s.offset_s))
        if s.heartrate:
            ext = ET.SubElement(pt, f"{{{GPX_NS}}}extensions")
            tpx = ET.SubElement(ext, f"{{{GPXTPX_NS}}}TrackPointExtension")
            ET.SubElement(tpx, f"{{{GPXTPX_NS}}}hr").text = str(s.heartrate)

    return ET.tostring(gpx, encoding="utf-8", xml_declaration=True)


def _gpx_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


# ---------------------------------------------------------------------------
# Polylines
# ---------------------------------------------------------------------------


def decode_polyline(encoded: str, precision: int = 5) -> List[Tuple[float, float]]:
    """Google encoded polyline -> [(lat, lng), ...]."""
    factor = math.pow(10, precision)
    coords = []
    index = lat = lng = 0
    try:
        while index < len(encoded):
            deltas = []
            for _ in range(2):
                shift = result = 0
                while True:
                    b = ord(encoded[index]) - 63
                    index += 1
                    result |= (b & 0x1F) << shift
                    shift += 5
                    if b < 0x20:
                        break
                deltas.append(~(result >> 1) if result & 1 else result >> 1)
            lat += deltas[0]
            lng += deltas[1]
            coords.append((lat / factor, lng / factor))
    except IndexError:
        raise MalformedPayload("truncated polyline") from None
    return coords


def polyline_to_wkt(encoded: str) -> Optional[str]:
    """WKT LINESTRING in lng/lat order; None below two points."""
    coords = decode_polyline(encoded)
    if len(coords) < 2:
        return None
    return "LINESTRING(" + ", ".join(f"{lng:.5f} {lat:.5f}" for lat, lng in coords) + ")"
