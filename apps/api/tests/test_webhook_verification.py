"""Tests for the webhook verify-token store."""
from datetime import datetime, timedelta, timezone

from models import WebhookVerification
from services.webhook_verification import VerificationOutcome, VerificationTokenStore


def test_token_is_single_use(session_factory):
    store = VerificationTokenStore(session_factory, ttl_s=300)
    token = store.issue().token

    assert len(token) == 64
    assert store.consume(token) is VerificationOutcome.VALID
    assert store.consume(token) is VerificationOutcome.NOT_FOUND


def test_expired_token_is_reported_as_expired(session_factory, db_session):
    store = VerificationTokenStore(session_factory)
    now = datetime.now(timezone.utc)
    db_session.add(WebhookVerification(token="a" * 64, created_at=now - timedelta(minutes=10),
                                       expires_at=now - timedelta(minutes=5)))
    db_session.commit()

    assert store.consume("a" * 64) is VerificationOutcome.EXPIRED
    # Still expired, not consumed
    assert store.consume("a" * 64) is VerificationOutcome.EXPIRED


def test_unknown_token(session_factory):
    assert VerificationTokenStore(session_factory).consume("nope") is VerificationOutcome.NOT_FOUND


def test_revoke(session_factory):
    store = VerificationTokenStore(session_factory)
    token = store.issue().token
    store.revoke(token)
    assert store.consume(token) is VerificationOutcome.NOT_FOUND


def test_purge_only_removes_tokens_expired_before_cutoff(session_factory, db_session):
    store = VerificationTokenStore(session_factory)
    now = datetime.now(timezone.utc)
    db_session.add_all([
        WebhookVerification(token="old", created_at=now - timedelta(days=3), expires_at=now - timedelta(days=2)),
        WebhookVerification(token="recent", created_at=now - timedelta(minutes=10), expires_at=now - timedelta(minutes=5)),
        WebhookVerification(token="live", created_at=now, expires_at=now + timedelta(minutes=5)),
    ])
    db_session.commit()

    assert store.purge_expired(now - timedelta(days=1)) == 1
    assert store.consume("old") is VerificationOutcome.NOT_FOUND
    assert store.consume("recent") is VerificationOutcome.EXPIRED
    assert store.consume("live") is VerificationOutcome.VALID
