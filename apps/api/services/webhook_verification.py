"""
Webhook verification tokens.

A token is issued right before registering a push subscription and handed
to the provider as `verify_token`; the provider echoes it back during the
GET handshake. Tokens are single-use and expire after WEBHOOK_VERIFICATION_TTL_S.

consume() deletes a valid token in the same statement that checks it, so two
concurrent handshakes with one token see exactly one VALID.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from core.config import settings
from models import WebhookVerification

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32  # 256 bits, hex-encoded


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationOutcome(str, Enum):
    VALID = "valid"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"


class VerificationTokenStore:
    def __init__(self, session_factory: Callable[[], Session], ttl_s: Optional[int] = None):
        self.session_factory = session_factory
        self.ttl = timedelta(seconds=settings.WEBHOOK_VERIFICATION_TTL_S if ttl_s is None else ttl_s)

    def issue(self) -> WebhookVerification:
        now = _utcnow()
        verification = WebhookVerification(
            token=secrets.token_hex(TOKEN_BYTES),
            created_at=now,
            expires_at=now + self.ttl,
        )
        db = self.session_factory()
        try:
            db.add(verification)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        return verification

    def consume(self, token: str) -> VerificationOutcome:
        db = self.session_factory()
        try:
            result = db.execute(
                delete(WebhookVerification).where(
                    WebhookVerification.token == token,
                    WebhookVerification.expires_at > _utcnow(),
                )
            )
            db.commit()
            if result.rowcount:
                return VerificationOutcome.VALID

            # Expired rows are left in place so the caller can tell them apart.
            if db.get(WebhookVerification, token) is not None:
                return VerificationOutcome.EXPIRED
            return VerificationOutcome.NOT_FOUND
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def revoke(self, token: str) -> None:
        db = self.session_factory()
        try:
            db.execute(delete(WebhookVerification).where(WebhookVerification.token == token))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def purge_expired(self, older_than: Optional[datetime] = None) -> int:
        """Delete tokens that expired before `older_than` (default: now)."""
        cutoff = older_than or _utcnow()
        db = self.session_factory()
        try:
            result = db.execute(delete(WebhookVerification).where(WebhookVerification.expires_at <= cutoff))
            db.commit()
            if result.rowcount:
                logger.info(f"Purged {result.rowcount} expired webhook verification tokens")
            return result.rowcount or 0
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
