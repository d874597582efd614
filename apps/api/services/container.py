"""
Component wiring.

Every ingestion component takes its collaborators through its constructor.
Container builds the production graph once per process (API, Celery worker
or serverless runtime); tests build their own Container around fakes and
install it with set_container() or FastAPI's dependency_overrides.
"""

import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from core.config import settings
from core.database import SessionLocal
from services.accounts import AuthorizationService
from services.activity_pipeline import ActivityPipeline
from services.backfill import BackfillProcessor
from services.credential_manager import CredentialManager
from services.object_store import ObjectStore, S3ObjectStore
from services.providers import ProviderRegistry, build_default_registry
from services.queue_dispatcher import QueueDispatcher, build_dispatcher
from services.reconciliation import Reconciler
from services.task_queue import HISTORICAL_BACKFILL, POST_PROCESS_ACTIVITY, CeleryTaskQueue, SQSTaskQueue, TaskQueue
from services.task_scheduler import TaskScheduler
from services.webhook_ingestor import WebhookIngestor
from services.webhook_verification import VerificationTokenStore

logger = logging.getLogger(__name__)


def build_task_queue() -> TaskQueue:
    if settings.QUEUE_BACKEND == "sqs":
        return SQSTaskQueue(
            {
                HISTORICAL_BACKFILL: settings.HISTORICAL_DATA_QUEUE_URL,
                POST_PROCESS_ACTIVITY: settings.POST_PROCESSING_QUEUE_URL,
            },
            region_name=settings.AWS_REGION,
        )
    return CeleryTaskQueue()


def build_object_store() -> ObjectStore:
    return S3ObjectStore(settings.AWS_S3_BUCKET_NAME, region_name=settings.AWS_REGION)


class Container:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        providers: ProviderRegistry,
        object_store: ObjectStore,
        queue: TaskQueue,
    ):
        self.session_factory = session_factory
        self.providers = providers
        self.object_store = object_store
        self.queue = queue

        self.credentials = CredentialManager(session_factory, providers)
        self.verification_tokens = VerificationTokenStore(session_factory)
        self.pipeline = ActivityPipeline(session_factory, object_store)
        self.scheduler = TaskScheduler(queue)
        self.backfill = BackfillProcessor(session_factory, providers, self.credentials, self.pipeline)
        self.webhooks = WebhookIngestor(
            session_factory, providers, self.verification_tokens, self.credentials, self.pipeline
        )
        self.authorization = AuthorizationService(session_factory, providers, self.credentials, self.scheduler)
        self.reconciler = Reconciler(session_factory, queue)
        self.dispatcher: QueueDispatcher = build_dispatcher(self.backfill, self.pipeline, session_factory)


_container: Optional[Container] = None


def get_container() -> Container:
    """Lazily build the production container."""
    global _container
    if _container is None:
        _container = Container(
            session_factory=SessionLocal,
            providers=build_default_registry(),
            object_store=build_object_store(),
            queue=build_task_queue(),
        )
        logger.info(f"Ingestion components initialized (queue backend: {settings.QUEUE_BACKEND})")
    return _container


def set_container(container: Optional[Container]) -> None:
    global _container
    _container = container
