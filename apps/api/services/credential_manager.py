"""
Credential Manager

Owns the OAuth2 token lifecycle for (provider, user) pairs.

Refresh protocol:
1. Read the credential row without a transaction. A token that is still valid
   beyond the refresh buffer is returned as-is, no write.
2. Otherwise open a transaction and re-read the same row with SELECT ... FOR UPDATE.
3. Re-test expiry under the lock. A concurrent caller that already refreshed
   leaves a valid token behind, so the provider is not called again.
4. Refresh, persist the new tokens, commit. Any failure rolls back.

The row lock is the only coordination; it holds across processes and hosts.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.config import settings
from core.database import as_utc, upsert
from core.exceptions import CredentialError, CredentialNotFound, MalformedPayload, ProviderRequestFailed, RefreshFailed
from core.logging import log_fields
from models import Provider, ProviderOAuth2Credential
from services.providers import OAuth2Token, ProviderRegistry
from services.token_encryption import decrypt_token, encrypt_token

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialManager:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        providers: ProviderRegistry,
        refresh_buffer_s: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.providers = providers
        buffer_s = settings.TOKEN_REFRESH_BUFFER_S if refresh_buffer_s is None else refresh_buffer_s
        self.refresh_buffer = timedelta(seconds=buffer_s)

    def is_expired(self, expires_at: datetime, now: Optional[datetime] = None) -> bool:
        """A token counts as expired once it is inside the refresh buffer."""
        now = now or _utcnow()
        return not (now + self.refresh_buffer < as_utc(expires_at))

    @staticmethod
    def _select(db: Session, provider_id: int, user_id: UUID, lock: bool = False) -> Optional[ProviderOAuth2Credential]:
        q = db.query(ProviderOAuth2Credential).filter(
            ProviderOAuth2Credential.provider_id == provider_id,
            ProviderOAuth2Credential.user_id == user_id,
            ProviderOAuth2Credential.deleted_at.is_(None),
        )
        if lock:
            q = q.with_for_update()
        return q.first()

    @staticmethod
    def _access_token(credential: ProviderOAuth2Credential) -> str:
        token = decrypt_token(credential.access_token)
        if not token:
            raise CredentialError(
                f"stored access token for provider={credential.provider_id} user={credential.user_id} is unreadable"
            )
        return token

    def ensure_valid(self, provider_id: int, user_id: UUID) -> str:
        """Return a usable access token, refreshing it first when needed."""
        db = self.session_factory()
        try:
            credential = self._select(db, provider_id, user_id)
            if credential is None:
                raise CredentialNotFound(provider_id, user_id)
            if not self.is_expired(credential.expires_at):
                return self._access_token(credential)
        finally:
            db.close()

        return self._refresh_locked(provider_id, user_id)

    def _refresh_locked(self, provider_id: int, user_id: UUID) -> str:
        db = self.session_factory()
        try:
            credential = self._select(db, provider_id, user_id, lock=True)
            if credential is None:
                raise CredentialNotFound(provider_id, user_id)

            if not self.is_expired(credential.expires_at):
                # Another invocation refreshed between our read and the lock.
                access_token = self._access_token(credential)
                db.commit()
                logger.info(
                    "Credential already refreshed concurrently",
                    extra=log_fields(provider_id=provider_id, user_id=str(user_id)),
                )
                return access_token

            refresh_token = decrypt_token(credential.refresh_token)
            if not refresh_token:
                raise RefreshFailed(f"stored refresh token for provider={provider_id} user={user_id} is unreadable")

            provider = db.get(Provider, provider_id)
            if provider is None:
                raise CredentialNotFound(provider_id, user_id)
            client = self.providers.get(provider.slug)

            try:
                token = client.refresh_token(refresh_token)
            except (ProviderRequestFailed, MalformedPayload) as e:
                raise RefreshFailed(str(e)) from e

            current_expiry = as_utc(credential.expires_at)
            credential.access_token = encrypt_token(token.access_token)
            credential.refresh_token = encrypt_token(token.refresh_token)
            credential.expires_at = max(current_expiry, as_utc(token.expires_at))
            credential.updated_at = _utcnow()
            db.commit()

            logger.info(
                "Refreshed provider credentials",
                extra=log_fields(
                    provider_id=provider_id,
                    user_id=str(user_id),
                    expires_at=token.expires_at.isoformat(),
                ),
            )
            return token.access_token
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def save_authorization(self, db: Session, provider_id: int, user_id: UUID, token: OAuth2Token) -> None:
        """
        Upsert the credential row for a fresh authorization.

        Runs inside the caller's transaction; the caller commits.
        """
        now = _utcnow()
        values = {
            "provider_id": provider_id,
            "user_id": user_id,
            "access_token": encrypt_token(token.access_token),
            "refresh_token": encrypt_token(token.refresh_token),
            "expires_at": as_utc(token.expires_at),
            "updated_at": now,
            "deleted_at": None,
        }
        stmt = upsert(db, ProviderOAuth2Credential.__table__).values(id=uuid.uuid4(), **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["provider_id", "user_id"],
            set_={k: stmt.excluded[k] for k in ("access_token", "refresh_token", "expires_at", "updated_at", "deleted_at")},
        )
        db.execute(stmt)
