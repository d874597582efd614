"""
Users, athletes and the OAuth2 authorization callback.

complete_authorization() is the entry point for a new or returning user:
exchange the code, insert-if-absent the user, upsert the athlete profile and
the credential in one transaction, then schedule the historical backfill.
Scheduling is best-effort: a queue outage must not fail the connection.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.database import upsert
from core.exceptions import UnsupportedProvider
from core.logging import log_fields
from models import Athlete, Provider, User
from services.credential_manager import CredentialManager
from services.providers import ProviderAthlete, ProviderRegistry
from services.task_scheduler import TaskScheduler

logger = logging.getLogger(__name__)


def get_provider_by_slug(db: Session, slug: str) -> Provider:
    provider = db.query(Provider).filter(Provider.slug == slug).first()
    if provider is None:
        raise UnsupportedProvider(f"unsupported provider: {slug}")
    return provider


def get_user_by_external_id(db: Session, provider_id: int, external_id: str) -> Optional[User]:
    return (
        db.query(User)
        .filter(User.provider_id == provider_id, User.user_external_id == str(external_id))
        .first()
    )


def primary_athlete_id(db: Session, user_id: UUID) -> Optional[UUID]:
    """A user's first athlete (one per user today)."""
    return db.execute(
        select(Athlete.id).where(Athlete.user_id == user_id).order_by(Athlete.created_at).limit(1)
    ).scalar_one_or_none()


def ensure_user(db: Session, provider_id: int, external_id: str) -> UUID:
    """Insert the user if absent and return its id."""
    stmt = (
        upsert(db, User.__table__)
        .values(id=uuid.uuid4(), provider_id=provider_id, user_external_id=str(external_id))
        .on_conflict_do_nothing(index_elements=["provider_id", "user_external_id"])
    )
    db.execute(stmt)
    return db.execute(
        select(User.id).where(User.provider_id == provider_id, User.user_external_id == str(external_id))
    ).scalar_one()


def upsert_athlete(db: Session, user_id: UUID, profile: ProviderAthlete) -> UUID:
    values = {
        "display_name": profile.display_name,
        "first_name": profile.first_name,
        "last_name": profile.last_name,
        "country": profile.country,
        "gender": profile.gender,
    }
    stmt = upsert(db, Athlete.__table__).values(id=uuid.uuid4(), user_id=user_id, **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id"],
        set_={**{k: stmt.excluded[k] for k in values}, "updated_at": datetime.now(timezone.utc)},
    )
    db.execute(stmt)
    return db.execute(select(Athlete.id).where(Athlete.user_id == user_id)).scalar_one()


@dataclass
class AuthorizationResult:
    provider_id: int
    user_id: UUID
    athlete_id: UUID
    backfill_scheduled: bool


class AuthorizationService:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        providers: ProviderRegistry,
        credentials: CredentialManager,
        scheduler: TaskScheduler,
    ):
        self.session_factory = session_factory
        self.providers = providers
        self.credentials = credentials
        self.scheduler = scheduler

    def complete_authorization(self, provider_slug: str, code: str) -> AuthorizationResult:
        client = self.providers.get(provider_slug)

        db = self.session_factory()
        try:
            provider = get_provider_by_slug(db, provider_slug)
            grant = client.exchange_code(code)

            user_id = ensure_user(db, provider.id, grant.athlete.external_id)
            athlete_id = upsert_athlete(db, user_id, grant.athlete)
            self.credentials.save_authorization(db, provider.id, user_id, grant.token)
            db.commit()
            provider_id = provider.id
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(
            "Provider authorization completed",
            extra=log_fields(provider=provider_slug, user_id=str(user_id), athlete_id=str(athlete_id)),
        )

        scheduled = True
        try:
            self.scheduler.schedule_backfill(user_id, provider_id)
        except Exception as e:
            scheduled = False
            logger.error(
                f"Failed to schedule historical backfill: {e}",
                exc_info=True,
                extra=log_fields(provider=provider_slug, user_id=str(user_id)),
            )

        return AuthorizationResult(
            provider_id=provider_id,
            user_id=user_id,
            athlete_id=athlete_id,
            backfill_scheduled=scheduled,
        )
