"""
Provider Router

OAuth2 callback and webhook endpoints, one set per provider slug:
- GET  /providers/{provider}/auth/callback
- GET  /providers/{provider}/webhook   (subscription handshake)
- POST /providers/{provider}/webhook   (event delivery)
"""

import json
import logging
from typing import Optional

import requests
from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool

from core.exceptions import BadRequestError, IngestionError, UpstreamError, http_error_for
from core.logging import log_fields
from services.container import Container, get_container
from services.webhook_verification import VerificationOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/providers", tags=["providers"])


@router.get("/{provider}/auth/callback")
def auth_callback(
    provider: str,
    code: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    container: Container = Depends(get_container),
):
    """
    OAuth2 redirect target.

    Creates or updates the user, athlete and credential, then schedules the
    historical backfill. A failed scheduling step is logged, not returned.
    """
    if error:
        logger.warning(f"Authorization denied by user: {error}", extra=log_fields(provider=provider))
        raise BadRequestError(f"authorization failed: {error}", error_code="AUTHORIZATION_DENIED")
    if not code:
        raise BadRequestError("missing authorization code", error_code="MISSING_CODE")

    try:
        result = container.authorization.complete_authorization(provider, code)
    except IngestionError as e:
        raise http_error_for(e)
    except requests.RequestException as e:
        logger.error(f"Authorization code exchange failed: {e}", extra=log_fields(provider=provider))
        raise UpstreamError("authorization code exchange failed")

    return {
        "success": True,
        "userId": str(result.user_id),
        "athleteId": str(result.athlete_id),
        "backfillScheduled": result.backfill_scheduled,
    }


@router.get("/{provider}/webhook")
def verify_webhook(
    provider: str,
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    container: Container = Depends(get_container),
):
    """
    Subscription handshake.

    The provider calls this while the subscription is being created and
    expects the challenge echoed back.
    """
    try:
        container.providers.get(provider)
        outcome = container.webhooks.verify_handshake(hub_mode, hub_challenge, hub_verify_token)
    except IngestionError as e:
        raise http_error_for(e)

    if outcome is VerificationOutcome.EXPIRED:
        raise BadRequestError("verify token expired", error_code="VERIFY_TOKEN_EXPIRED")
    if outcome is VerificationOutcome.NOT_FOUND:
        raise BadRequestError("verify token not found", error_code="VERIFY_TOKEN_NOT_FOUND")

    logger.info("Webhook verification successful", extra=log_fields(provider=provider))
    return {"hub.challenge": hub_challenge}


@router.post("/{provider}/webhook")
async def handle_webhook_event(
    provider: str,
    request: Request,
    container: Container = Depends(get_container),
):
    """Event delivery. Always answers quickly; the provider retries on non-2xx."""
    try:
        body = json.loads(await request.body())
    except (ValueError, UnicodeDecodeError):
        raise BadRequestError("invalid event payload", error_code="INVALID_EVENT")

    try:
        result = await run_in_threadpool(container.webhooks.handle_event, provider, body)
    except IngestionError as e:
        logger.warning(f"Webhook event rejected: {e}", extra=log_fields(provider=provider))
        raise http_error_for(e)

    return result.to_dict()
