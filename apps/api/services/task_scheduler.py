"""
Historical backfill scheduling.

Splits the trailing BACKFILL_WINDOW_MONTHS months into calendar-month windows
(UTC) and enqueues one historical_backfill message per window. Window 0 is the
current month, clipped so it ends at "now" instead of the next month boundary.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from core.config import settings
from core.logging import log_fields
from services.task_queue import HISTORICAL_BACKFILL, BackfillTask, TaskQueue, build_message

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _shift_month(month_start: datetime, months: int) -> datetime:
    index = month_start.year * 12 + (month_start.month - 1) + months
    return month_start.replace(year=index // 12, month=index % 12 + 1)


def backfill_windows(now: datetime, months: int) -> List[Tuple[datetime, datetime]]:
    """[start, end) pairs, most recent first."""
    now = now.astimezone(timezone.utc)
    current_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    windows = []
    for i in range(months):
        start = _shift_month(current_month, -i)
        end = min(_shift_month(start, 1), now)
        windows.append((start, end))
    return windows


class TaskScheduler:
    def __init__(self, queue: TaskQueue, window_months: Optional[int] = None):
        self.queue = queue
        self.window_months = window_months or settings.BACKFILL_WINDOW_MONTHS

    def schedule_backfill(self, user_id: UUID, provider_id: int, now: Optional[datetime] = None) -> List[BackfillTask]:
        """
        Enqueue every historical window for a user.

        Each window is an independent message grouped by user id; delivery
        order is best-effort since the processor is idempotent.
        """
        now = now or _utcnow()
        tasks = []
        for start, end in backfill_windows(now, self.window_months):
            task = BackfillTask(user_id=user_id, provider_id=provider_id, window_start=start, window_end=end)
            self.queue.send(str(user_id), build_message(HISTORICAL_BACKFILL, task.to_payload()))
            tasks.append(task)

        logger.info(
            f"Scheduled {len(tasks)} backfill windows",
            extra=log_fields(user_id=str(user_id), provider_id=provider_id),
        )
        return tasks
