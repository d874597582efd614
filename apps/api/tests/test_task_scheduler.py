"""Tests for backfill window scheduling and queue payloads."""
import json
from datetime import datetime, timezone
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from core.exceptions import MalformedPayload
from services.task_queue import (
    HISTORICAL_BACKFILL,
    BackfillTask,
    CeleryTaskQueue,
    PostProcessTask,
    SQSTaskQueue,
    build_message,
)
from services.task_scheduler import TaskScheduler, backfill_windows

NOW = datetime(2024, 3, 15, 10, 30, tzinfo=timezone.utc)


class TestBackfillWindows:
    def test_current_month_is_clipped_to_now(self):
        windows = backfill_windows(NOW, 3)
        assert windows[0] == (datetime(2024, 3, 1, tzinfo=timezone.utc), NOW)
        assert windows[1] == (datetime(2024, 2, 1, tzinfo=timezone.utc), datetime(2024, 3, 1, tzinfo=timezone.utc))
        assert windows[2] == (datetime(2024, 1, 1, tzinfo=timezone.utc), datetime(2024, 2, 1, tzinfo=timezone.utc))

    def test_windows_cross_year_boundary(self):
        windows = backfill_windows(NOW, 4)
        assert windows[3] == (datetime(2023, 12, 1, tzinfo=timezone.utc), datetime(2024, 1, 1, tzinfo=timezone.utc))

    def test_windows_are_contiguous(self):
        windows = backfill_windows(NOW, 48)
        assert len(windows) == 48
        for newer, older in zip(windows, windows[1:]):
            assert older[1] == newer[0]


class TestTaskScheduler:
    def test_one_message_per_window_grouped_by_user(self, queue):
        user_id = uuid4()
        tasks = TaskScheduler(queue, window_months=12).schedule_backfill(user_id, 1, now=NOW)

        assert len(tasks) == len(queue.sent) == 12
        group_key, message = queue.sent[0]
        assert group_key == str(user_id)
        assert message == {
            "type": HISTORICAL_BACKFILL,
            "payload": {
                "userId": str(user_id),
                "providerId": 1,
                "windowStart": "2024-03-01T00:00:00+00:00",
                "windowEnd": "2024-03-15T10:30:00+00:00",
            },
        }

    def test_queue_failure_propagates(self, queue):
        queue.fail = True
        with pytest.raises(ConnectionError):
            TaskScheduler(queue, window_months=2).schedule_backfill(uuid4(), 1, now=NOW)


class TestPayloads:
    def test_backfill_payload_parses(self):
        task = BackfillTask(uuid4(), 1, datetime(2024, 2, 1, tzinfo=timezone.utc), NOW)
        assert BackfillTask.from_payload(task.to_payload()) == task

    def test_backfill_payload_accepts_zulu_suffix(self):
        task = BackfillTask.from_payload({
            "userId": str(uuid4()),
            "providerId": "1",
            "windowStart": "2024-02-01T00:00:00Z",
            "windowEnd": "2024-03-01T00:00:00Z",
        })
        assert task.window_start == datetime(2024, 2, 1, tzinfo=timezone.utc)
        assert task.provider_id == 1

    @pytest.mark.parametrize("payload", [
        {},
        {"userId": "not-a-uuid", "providerId": 1, "windowStart": "2024-01-01T00:00:00Z", "windowEnd": "2024-02-01T00:00:00Z"},
        {"userId": str(uuid4()), "providerId": 1, "windowStart": 5, "windowEnd": "2024-02-01T00:00:00Z"},
    ])
    def test_malformed_backfill_payload(self, payload):
        with pytest.raises(MalformedPayload):
            BackfillTask.from_payload(payload)

    def test_malformed_post_process_payload(self):
        with pytest.raises(MalformedPayload):
            PostProcessTask.from_payload({"userId": str(uuid4()), "providerId": 1})

    def test_unknown_message_type(self):
        with pytest.raises(ValueError):
            build_message("nope", {})


class TestTransports:
    def test_sqs_uses_group_and_content_dedup_ids(self):
        client = MagicMock()
        transport = SQSTaskQueue(
            {"historical_backfill": "https://sqs/backfill.fifo", "post_process_activity": "https://sqs/post.fifo"},
            client=client,
        )
        message = build_message(HISTORICAL_BACKFILL, {"userId": "u"})
        transport.send("u", message)
        transport.send("u", message)

        first, second = [c.kwargs for c in client.send_message.call_args_list]
        assert first["QueueUrl"] == "https://sqs/backfill.fifo"
        assert first["MessageGroupId"] == "u"
        assert first["MessageDeduplicationId"] == second["MessageDeduplicationId"]
        assert json.loads(first["MessageBody"]) == message

    def test_sqs_requires_every_queue_url(self):
        with pytest.raises(ValueError):
            SQSTaskQueue({"historical_backfill": "https://sqs/backfill.fifo"}, client=MagicMock())

    def test_celery_sends_dispatch_task(self):
        app = MagicMock()
        message = build_message(HISTORICAL_BACKFILL, {"userId": "u"})
        CeleryTaskQueue(celery_app=app).send("u", message)
        app.send_task.assert_called_once_with("tasks.dispatch_queue_message", args=[json.dumps(message)])
