"""Tests for normalization, enrichment and tag extraction."""
from datetime import datetime, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest

from core.exceptions import MalformedPayload, NotQualifyingActivity, UnsupportedProvider
from services.activity_analytics import decode_polyline, polyline_to_wkt, render_gpx, timeseries
from services.normalization import activity_tags, enrich, extract_tags, normalize
from fixtures.strava_fixtures import activity_payload, stream_payload

POLYLINE = "_p~iF~ps|U_ulLnnqC_mqNvxq`@"


def _raw(payload, elapsed_time=3600):
    return SimpleNamespace(
        id=uuid4(),
        provider_id=1,
        athlete_id=uuid4(),
        data=payload,
        start_time=datetime(2024, 3, 10, 8, 0, tzinfo=timezone.utc),
        elapsed_time=elapsed_time,
        iana_timezone="Europe/Rome",
        utc_offset=3600,
    )


class TestNormalize:
    def test_run_is_normalized(self):
        raw = _raw(activity_payload(1, polyline=POLYLINE))
        activity = normalize(raw, "strava")

        assert activity.sport == "running"
        assert activity.provider_raw_activity_id == raw.id
        assert activity.end_time == datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc)
        assert activity.distance == 10012
        assert activity.elev_gain == 120
        assert activity.moving_time == 3500
        assert activity.summary_route.startswith("LINESTRING(-120.20000 38.50000")

    def test_zero_elevation_is_unknown(self):
        activity = normalize(_raw(activity_payload(1, total_elevation_gain=0)), "strava")
        assert activity.elev_gain is None

    def test_non_endurance_sport_is_rejected(self):
        with pytest.raises(NotQualifyingActivity):
            normalize(_raw(activity_payload(1, sport_type="WeightTraining")), "strava")

    def test_unknown_provider(self):
        with pytest.raises(UnsupportedProvider):
            normalize(_raw(activity_payload(1)), "garmin")

    def test_payload_without_start_date(self):
        payload = activity_payload(1)
        del payload["start_date"]
        with pytest.raises(MalformedPayload):
            normalize(_raw(payload), "strava")


class TestEnrich:
    def test_heart_rate_elevation_and_gpx(self):
        activity = normalize(_raw(activity_payload(1)), "strava")
        enrichment = enrich(activity, stream_payload())

        assert enrichment.avg_hr == 143
        assert enrichment.max_hr == 160
        assert enrichment.elev_loss == 10
        assert b"<trkpt" in enrichment.gpx
        assert b"2024-03-10T08:00:10Z" in enrichment.gpx

    def test_no_streams(self):
        activity = normalize(_raw(activity_payload(1)), "strava")
        enrichment = enrich(activity, {})
        assert (enrichment.avg_hr, enrichment.max_hr, enrichment.elev_loss, enrichment.gpx) == (None, None, None, None)

    def test_gpx_needs_positions(self):
        samples = timeseries({"time": {"data": [0, 1]}, "heartrate": {"data": [100, 110]}})
        assert render_gpx("x", "running", datetime(2024, 1, 1, tzinfo=timezone.utc), samples) is None


class TestPolyline:
    def test_decode(self):
        assert decode_polyline(POLYLINE) == [(38.5, -120.2), (40.7, -120.95), (43.252, -126.453)]

    def test_wkt_lng_lat_order(self):
        assert polyline_to_wkt(POLYLINE) == (
            "LINESTRING(-120.20000 38.50000, -120.95000 40.70000, -126.45300 43.25200)"
        )

    def test_single_point_has_no_route(self):
        assert polyline_to_wkt("_p~iF~ps|U") is None

    def test_truncated(self):
        with pytest.raises(MalformedPayload):
            decode_polyline("_p~iF~ps|")


class TestTags:
    def test_hashtags(self):
        assert extract_tags("Easy #recovery with #club-run and #recovery", "hashtag") == ["recovery", "club-run"]

    def test_brackets_skip_numeric_tokens(self):
        assert extract_tags("[tempo] 3x [10] min [race]", "bracket") == ["tempo", "race"]

    def test_tags_are_case_sensitive(self):
        assert extract_tags("#Race #race", "hashtag") == ["Race", "race"]

    def test_empty(self):
        assert extract_tags(None, "hashtag") == []
        assert extract_tags("no tags here", "hashtag") == []

    def test_description_then_name(self):
        activity = normalize(
            _raw(activity_payload(1, name="Long run #long", description="#easy then #long")),
            "strava",
        )
        assert activity_tags(activity, "hashtag") == ["easy", "long"]

    def test_name_is_ignored_when_description_has_tags(self):
        activity = normalize(
            _raw(activity_payload(1, name="Long run #long", description="#easy")),
            "strava",
        )
        assert activity_tags(activity, "hashtag") == ["easy"]

    def test_name_is_used_when_description_has_no_tags(self):
        activity = normalize(
            _raw(activity_payload(1, name="Long run #long", description="felt good")),
            "strava",
        )
        assert activity_tags(activity, "hashtag") == ["long"]
