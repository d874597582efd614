"""
Queue Dispatcher

Routes queued envelopes to handlers by `type`.

- Undecodable bodies and unknown types are logged and dropped; redelivering
  them would never succeed.
- Handler errors propagate (single message) or mark the record as failed
  (batch) so only failed records are redelivered.
"""

import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Tuple, Union

from core.exceptions import PermanentRecordError
from core.logging import log_fields
from models import Provider
from services.task_queue import HISTORICAL_BACKFILL, POST_PROCESS_ACTIVITY, BackfillTask, PostProcessTask

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Any]


class QueueDispatcher:
    def __init__(self, handlers: Dict[str, Handler]):
        self.handlers = dict(handlers)

    def dispatch(self, body: Union[str, bytes, Dict[str, Any]]) -> bool:
        """Run the handler for one message. False when the message was dropped."""
        try:
            message = json.loads(body) if isinstance(body, (str, bytes)) else body
            message_type = message["type"]
            payload = message.get("payload") or {}
        except (ValueError, TypeError, KeyError) as e:
            logger.error(f"Dropping undecodable queue message: {e}")
            return False

        handler = self.handlers.get(message_type)
        if handler is None:
            logger.error(f"Dropping queue message with unknown type: {message_type}")
            return False

        try:
            handler(payload)
        except PermanentRecordError as e:
            logger.error(f"Dropping queue message {message_type}: {e}")
            return False
        return True

    def dispatch_batch(self, records: Iterable[Tuple[str, Union[str, bytes]]]) -> List[str]:
        """Process (message_id, body) pairs; return ids whose handler raised."""
        failures = []
        for message_id, body in records:
            try:
                self.dispatch(body)
            except Exception as e:
                logger.error(
                    f"Queue message failed: {e}",
                    exc_info=True,
                    extra=log_fields(message_id=message_id),
                )
                failures.append(message_id)
        return failures


def build_dispatcher(backfill, pipeline, session_factory) -> QueueDispatcher:
    """Default handler table: backfill windows and raw-activity post-processing."""

    def handle_backfill(payload: Dict[str, Any]) -> None:
        backfill.process(BackfillTask.from_payload(payload))

    def handle_post_process(payload: Dict[str, Any]) -> None:
        task = PostProcessTask.from_payload(payload)
        db = session_factory()
        try:
            provider = db.get(Provider, task.provider_id)
            raw = pipeline.raw_activities.get(db, task.raw_activity_id)
        finally:
            db.close()
        if provider is None or raw is None:
            logger.warning(
                "Post-process target no longer exists",
                extra=log_fields(raw_activity_id=str(task.raw_activity_id), provider_id=task.provider_id),
            )
            return
        pipeline.process(raw.id, provider.slug, pipeline.load_streams(raw))

    return QueueDispatcher({
        HISTORICAL_BACKFILL: handle_backfill,
        POST_PROCESS_ACTIVITY: handle_post_process,
    })
