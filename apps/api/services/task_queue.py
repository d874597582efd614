"""
Task queue abstraction and message payloads.

Every queued message is an envelope:
    {"type": "historical_backfill" | "post_process_activity", "payload": {...}}

Two transports:
- CeleryTaskQueue: always-on worker, redis broker (tasks.dispatch_queue_message)
- SQSTaskQueue: FIFO queues consumed by the serverless entrypoint; the group
  key becomes MessageGroupId so one user's windows are delivered in order
"""

import hashlib
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from core.exceptions import MalformedPayload

logger = logging.getLogger(__name__)

HISTORICAL_BACKFILL = "historical_backfill"
POST_PROCESS_ACTIVITY = "post_process_activity"

MESSAGE_TYPES = (HISTORICAL_BACKFILL, POST_PROCESS_ACTIVITY)


def build_message(message_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    if message_type not in MESSAGE_TYPES:
        raise ValueError(f"unknown message type: {message_type}")
    return {"type": message_type, "payload": payload}


def _parse_datetime(value: Any) -> datetime:
    if not isinstance(value, str):
        raise MalformedPayload(f"invalid timestamp: {value!r}")
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise MalformedPayload(f"invalid timestamp: {value!r}") from e


@dataclass(frozen=True)
class BackfillTask:
    """One historical window for one (user, provider) pair."""
    user_id: UUID
    provider_id: int
    window_start: datetime
    window_end: datetime

    def to_payload(self) -> Dict[str, Any]:
        return {
            "userId": str(self.user_id),
            "providerId": self.provider_id,
            "windowStart": self.window_start.isoformat(),
            "windowEnd": self.window_end.isoformat(),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "BackfillTask":
        try:
            return cls(
                user_id=UUID(str(payload["userId"])),
                provider_id=int(payload["providerId"]),
                window_start=_parse_datetime(payload["windowStart"]),
                window_end=_parse_datetime(payload["windowEnd"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedPayload(f"invalid backfill payload: {e}") from e


@dataclass(frozen=True)
class PostProcessTask:
    """Re-run normalization/enrichment/tagging for a stored raw activity."""
    user_id: UUID
    provider_id: int
    raw_activity_id: UUID

    def to_payload(self) -> Dict[str, Any]:
        return {
            "userId": str(self.user_id),
            "providerId": self.provider_id,
            "rawActivityId": str(self.raw_activity_id),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PostProcessTask":
        try:
            return cls(
                user_id=UUID(str(payload["userId"])),
                provider_id=int(payload["providerId"]),
                raw_activity_id=UUID(str(payload["rawActivityId"])),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedPayload(f"invalid post-process payload: {e}") from e


class TaskQueue(ABC):
    @abstractmethod
    def send(self, group_key: str, message: Dict[str, Any]) -> None:
        pass


class CeleryTaskQueue(TaskQueue):
    """Enqueue onto the Celery worker; group_key is informational only."""

    task_name = "tasks.dispatch_queue_message"

    def __init__(self, celery_app=None):
        if celery_app is None:
            from tasks import celery_app
        self.celery_app = celery_app

    def send(self, group_key: str, message: Dict[str, Any]) -> None:
        self.celery_app.send_task(self.task_name, args=[json.dumps(message)])


class SQSTaskQueue(TaskQueue):
    def __init__(self, queue_urls: Dict[str, Optional[str]], client=None, region_name: Optional[str] = None):
        missing = [t for t in MESSAGE_TYPES if not queue_urls.get(t)]
        if missing:
            raise ValueError(f"no queue URL configured for: {', '.join(missing)}")
        self.queue_urls = queue_urls
        if client is None:
            import boto3
            client = boto3.client("sqs", region_name=region_name)
        self.client = client

    def send(self, group_key: str, message: Dict[str, Any]) -> None:
        body = json.dumps(message, sort_keys=True)
        self.client.send_message(
            QueueUrl=self.queue_urls[message["type"]],
            MessageBody=body,
            MessageGroupId=group_key,
            # Identical bodies inside SQS's dedup interval collapse into one delivery.
            MessageDeduplicationId=hashlib.sha256(body.encode()).hexdigest(),
        )
