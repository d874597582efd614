"""Tests for the Celery ingestion tasks, called directly (no broker)."""
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from core.exceptions import ProviderRequestFailed
from models import WebhookVerification
from services.task_queue import HISTORICAL_BACKFILL, build_message
from tasks import ingestion_tasks


@pytest.fixture
def installed(container):
    with patch.object(ingestion_tasks, "get_container", return_value=container):
        yield container


def test_dispatch_success(installed):
    seen = []
    installed.dispatcher.handlers[HISTORICAL_BACKFILL] = seen.append
    body = json.dumps(build_message(HISTORICAL_BACKFILL, {"userId": "u"}))

    assert ingestion_tasks.dispatch_queue_message(body) == {"status": "success"}
    assert seen == [{"userId": "u"}]


def test_dispatch_drops_undecodable_message(installed):
    assert ingestion_tasks.dispatch_queue_message("not json") == {"status": "dropped"}


def test_transient_failure_is_raised_for_retry(installed):
    def failing(payload):
        raise ProviderRequestFailed("503", status_code=503)

    installed.dispatcher.handlers[HISTORICAL_BACKFILL] = failing
    with pytest.raises(ProviderRequestFailed):
        ingestion_tasks.dispatch_queue_message(json.dumps(build_message(HISTORICAL_BACKFILL, {})))


def test_reconcile_task_purges_stale_verify_tokens(installed, db_session, provider_id):
    now = datetime.now(timezone.utc)
    db_session.add(WebhookVerification(token="stale", created_at=now - timedelta(days=3),
                                       expires_at=now - timedelta(days=2)))
    db_session.commit()

    result = ingestion_tasks.reconcile_raw_activities()

    assert result == {"status": "success", "enqueued": 0, "verify_tokens_purged": 1}
