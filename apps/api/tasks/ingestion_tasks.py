"""
Celery tasks for activity ingestion.

dispatch_queue_message is the worker-side consumer for CeleryTaskQueue: it
receives the JSON envelope and hands it to the shared QueueDispatcher, the
same one the serverless entrypoint uses for SQS batches.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict

from celery import Task

from core.exceptions import ProviderRateLimited, TransientIngestionError
from services.container import get_container
from tasks import celery_app

logger = logging.getLogger(__name__)

MAX_RETRIES = 5
# Bound for rate-limit deferrals: 1m..60m
MIN_COUNTDOWN_S = 60
MAX_COUNTDOWN_S = 60 * 60


@celery_app.task(name="tasks.dispatch_queue_message", bind=True, max_retries=MAX_RETRIES)
def dispatch_queue_message(self: Task, body: str) -> Dict:
    """
    Run one queued ingestion message.

    Transient failures are retried with backoff (or after the provider's
    Retry-After on 429). Permanent failures are dropped by the dispatcher.
    """
    try:
        handled = get_container().dispatcher.dispatch(body)
    except ProviderRateLimited as e:
        countdown = max(MIN_COUNTDOWN_S, min(int(e.retry_after_s or MAX_COUNTDOWN_S), MAX_COUNTDOWN_S))
        logger.warning(f"Provider rate limited; retrying message in {countdown}s")
        raise self.retry(exc=e, countdown=countdown)
    except TransientIngestionError as e:
        countdown = MIN_COUNTDOWN_S * (2 ** self.request.retries)
        logger.warning(f"Transient ingestion failure, retry {self.request.retries + 1}/{MAX_RETRIES}: {e}")
        raise self.retry(exc=e, countdown=countdown)

    return {"status": "success" if handled else "dropped"}


@celery_app.task(name="tasks.reconcile_raw_activities")
def reconcile_raw_activities() -> Dict:
    """Periodic sweep: re-enqueue stranded raw activities and purge stale verify tokens."""
    container = get_container()
    enqueued = container.reconciler.reconcile()
    purged = container.verification_tokens.purge_expired(datetime.now(timezone.utc) - timedelta(days=1))
    return {"status": "success", "enqueued": enqueued, "verify_tokens_purged": purged}
