"""
Reconciliation sweep.

The activity pipeline's writes are not atomic together, so a crash can leave
a raw row with a stream reference but no canonical pass (processed_at NULL).
This sweep finds such rows once they are older than RECONCILE_GRACE_MINUTES
and enqueues a post_process_activity message for each.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from core.config import settings
from services.activity_store import RawActivityRepository
from services.task_queue import POST_PROCESS_ACTIVITY, PostProcessTask, TaskQueue, build_message

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reconciler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        queue: TaskQueue,
        raw_activities: Optional[RawActivityRepository] = None,
        grace_minutes: Optional[int] = None,
        batch_size: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.queue = queue
        self.raw_activities = raw_activities or RawActivityRepository()
        self.grace = timedelta(minutes=settings.RECONCILE_GRACE_MINUTES if grace_minutes is None else grace_minutes)
        self.batch_size = batch_size or settings.RECONCILE_BATCH_SIZE

    def reconcile(self, now: Optional[datetime] = None) -> int:
        """Enqueue post-processing for stranded raw rows; returns how many."""
        cutoff = (now or _utcnow()) - self.grace
        db = self.session_factory()
        try:
            rows = self.raw_activities.find_unprocessed(db, cutoff, self.batch_size)
        finally:
            db.close()

        for row in rows:
            task = PostProcessTask(user_id=row.user_id, provider_id=row.provider_id, raw_activity_id=row.id)
            self.queue.send(str(row.user_id), build_message(POST_PROCESS_ACTIVITY, task.to_payload()))

        if rows:
            logger.info(f"Reconciliation enqueued {len(rows)} raw activities for post-processing")
        return len(rows)
