"""
Tests for the backfill processor and the shared activity pipeline.

Each invocation fetches at most one activity; replays must converge on the
same rows.
"""
import dataclasses
import json
from datetime import datetime, timezone

import pytest

from core.exceptions import ProviderRateLimited, UnsupportedProvider
from models import ActivityTag, EnduranceActivity, ProviderActivityRawData
from services.task_queue import BackfillTask
from fixtures.strava_fixtures import activity_payload

MARCH_START = datetime(2024, 3, 1, tzinfo=timezone.utc)
MARCH_END = datetime(2024, 4, 1, tzinfo=timezone.utc)


@pytest.fixture
def task(connected_user, provider_id):
    user, _ = connected_user
    return BackfillTask(user_id=user.id, provider_id=provider_id, window_start=MARCH_START, window_end=MARCH_END)


def _counts(db):
    db.expire_all()
    return db.query(ProviderActivityRawData).count(), db.query(EnduranceActivity).count()


def test_new_activity_is_fully_ingested(container, strava, object_store, db_session, task, connected_user):
    _, athlete = connected_user
    strava.add_activity(activity_payload(101, description="#tempo session"))

    result = container.backfill.process(task)

    assert result.summaries == 1
    assert result.processed_activity_id == "101"
    raw = db_session.query(ProviderActivityRawData).one()
    assert raw.provider_activity_id == "101"
    assert raw.athlete_id == athlete.id
    assert raw.processed_at is not None
    assert json.loads(object_store.get(raw.detailed_activity_uri))["heartrate"]["data"] == [120, 150, 160]

    activity = db_session.query(EnduranceActivity).one()
    assert activity.sport == "running"
    assert activity.avg_hr == 143
    assert activity.gpx_file_uri.endswith(f"activity_details/strava/gpx/{activity.id}.gpx")
    assert [t.name for t in activity.tags] == ["tempo"]


def test_one_activity_per_invocation(container, strava, db_session, task):
    strava.add_activity(activity_payload(101, start_date="2024-03-10T08:00:00Z"))
    strava.add_activity(activity_payload(102, start_date="2024-03-11T08:00:00Z"))

    container.backfill.process(task)
    assert _counts(db_session) == (1, 1)
    assert strava.detail_calls == ["101"]

    container.backfill.process(task)
    assert _counts(db_session) == (2, 2)
    assert strava.detail_calls == ["101", "102"]


def test_replay_is_idempotent(container, strava, db_session, task):
    strava.add_activity(activity_payload(101, description="#tempo"))

    for _ in range(3):
        container.backfill.process(task)

    assert _counts(db_session) == (1, 1)
    assert db_session.query(ActivityTag).count() == 1
    # Completed rows are skipped without any provider fetch
    assert strava.detail_calls == ["101"]
    assert strava.stream_calls == ["101"]


def test_raw_row_without_streams_is_resumed(container, strava, db_session, task, connected_user, provider_id):
    user, athlete = connected_user
    strava.add_activity(activity_payload(101))
    container.pipeline.persist_raw(strava, provider_id, user.id, athlete.id, strava.activities["101"])

    result = container.backfill.process(task)

    assert result.processed_activity_id == "101"
    assert strava.detail_calls == []
    assert strava.stream_calls == ["101"]
    assert _counts(db_session) == (1, 1)


def test_non_endurance_activity_is_kept_raw_only(container, strava, db_session, task):
    strava.add_activity(activity_payload(101, sport_type="Yoga"))

    container.backfill.process(task)

    db_session.expire_all()
    raw = db_session.query(ProviderActivityRawData).one()
    assert raw.processed_at is not None
    assert db_session.query(EnduranceActivity).count() == 0


def test_activities_outside_window_are_ignored(container, strava, db_session, task):
    strava.add_activity(activity_payload(101, start_date="2024-02-28T08:00:00Z"))

    result = container.backfill.process(task)

    assert result.summaries == 0
    assert _counts(db_session) == (0, 0)


def test_rate_limited_listing_ends_quietly(container, strava, db_session, task):
    strava.add_activity(activity_payload(101))
    strava.rate_limit_listing = True

    result = container.backfill.process(task)

    assert result.summaries == 0
    assert _counts(db_session) == (0, 0)


def test_rate_limited_detail_propagates(container, strava, db_session, task):
    strava.add_activity(activity_payload(101))

    def limited(access_token, activity_id):
        raise ProviderRateLimited("429", retry_after_s=60)

    strava.get_activity = limited
    with pytest.raises(ProviderRateLimited):
        container.backfill.process(task)
    assert _counts(db_session) == (0, 0)


def test_payload_update_resets_processed_at(container, strava, db_session, task, connected_user, provider_id):
    user, athlete = connected_user
    strava.add_activity(activity_payload(101, name="Run"))
    container.backfill.process(task)

    updated = activity_payload(101, name="Renamed run")
    container.pipeline.persist_raw(strava, provider_id, user.id, athlete.id, updated)

    db_session.expire_all()
    raw = db_session.query(ProviderActivityRawData).one()
    assert raw.processed_at is None
    assert raw.detailed_activity_uri is not None

    container.pipeline.process(raw.id, "strava", container.pipeline.load_streams(raw))
    db_session.expire_all()
    activity = db_session.query(EnduranceActivity).one()
    assert activity.name == "Renamed run"
    # Enrichment survives the re-normalization
    assert activity.avg_hr == 143


def test_malformed_activity_is_skipped_and_window_continues(container, strava, db_session, task):
    strava.add_activity(activity_payload(101, start_date="2024-03-10T08:00:00Z", elapsed_time="n/a"))
    strava.add_activity(activity_payload(102, start_date="2024-03-11T08:00:00Z"))

    result = container.backfill.process(task)

    assert result.skipped == 1
    assert result.processed_activity_id == "102"
    db_session.expire_all()
    ids = [row.provider_activity_id for row in db_session.query(ProviderActivityRawData)]
    assert ids == ["102"]
    assert db_session.query(EnduranceActivity).count() == 1


def test_malformed_activity_does_not_block_replays(container, strava, db_session, task):
    strava.add_activity(activity_payload(101, start_date="2024-03-10T08:00:00Z", elapsed_time="n/a"))
    strava.add_activity(activity_payload(102, start_date="2024-03-11T08:00:00Z"))

    for _ in range(3):
        assert container.dispatcher.dispatch(
            json.dumps({"type": "historical_backfill", "payload": task.to_payload()})
        )

    assert _counts(db_session) == (1, 1)


def test_unknown_provider_is_a_permanent_error(container, task):
    task = dataclasses.replace(task, provider_id=9999)

    with pytest.raises(UnsupportedProvider):
        container.backfill.process(task)
