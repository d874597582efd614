"""
Strava API client.

Covers the OAuth2 token endpoints, activity summaries/detail/streams and the
push_subscriptions webhook API.

Rate limits: Strava answers 429 when the 15-minute or daily budget is spent.
Listing treats that as a soft stop (partial result); every other call raises
ProviderRateLimited so the enclosing queue message is retried later.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

from core.exceptions import MalformedPayload, ProviderRateLimited, ProviderRequestFailed, RefreshFailed
from core.logging import log_fields
from services.providers.base import (
    AuthorizationGrant,
    OAuth2Token,
    ProviderAthlete,
    ProviderClient,
    RawActivityFields,
    WebhookAspect,
    WebhookEvent,
)

logger = logging.getLogger(__name__)

# Strava OAuth scopes:
#   - read: public profile
#   - activity:read_all: all activities, including private ones
#   - profile:read_all: full profile (sex, weight) for athlete upsert
STRAVA_SCOPES = "read,activity:read_all,profile:read_all"

# Streams requested for enrichment (GPX rendering + heart rate metrics).
STRAVA_STREAM_TYPES = ["time", "latlng", "altitude", "heartrate", "distance"]

DEFAULT_RETRY_AFTER_S = 900  # Strava's short-term window is 15 minutes


def _retry_after_seconds(value: Any) -> int:
    # Only delta-seconds is honoured; HTTP-date or junk falls back to the default.
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_S


def _parse_strava_time(value: Any) -> datetime:
    if not isinstance(value, str) or not value:
        raise MalformedPayload(f"invalid Strava timestamp: {value!r}")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise MalformedPayload(f"invalid Strava timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _iana_timezone(value: Optional[str]) -> Optional[str]:
    # Strava sends "(GMT+01:00) Europe/Rome"
    if not value:
        return None
    if ") " in value:
        return value.split(") ", 1)[1].strip() or None
    return value.strip() or None


@dataclass
class StravaActivity:
    """The subset of Strava's DetailedActivity this service reads."""
    id: str
    name: str
    description: Optional[str]
    sport_type: str
    start_date: datetime
    timezone: Optional[str]
    utc_offset: Optional[int]
    elapsed_time: int
    moving_time: int
    distance: float
    total_elevation_gain: float
    average_speed: float
    summary_polyline: Optional[str]
    has_heartrate: bool = False
    average_heartrate: Optional[float] = None
    max_heartrate: Optional[float] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "StravaActivity":
        if not isinstance(data, dict):
            raise MalformedPayload("Strava activity payload is not an object")
        try:
            activity_id = data["id"]
            start_date = _parse_strava_time(data["start_date"])
            elapsed_time = int(data["elapsed_time"])
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedPayload(f"Strava activity payload missing required field: {e}") from e

        summary_map = data.get("map") or {}
        utc_offset = data.get("utc_offset")
        return cls(
            id=str(activity_id),
            name=data.get("name") or "",
            description=data.get("description") or None,
            # `type` is the legacy field; sport_type is the granular one.
            sport_type=data.get("sport_type") or data.get("type") or "",
            start_date=start_date,
            timezone=_iana_timezone(data.get("timezone")),
            utc_offset=int(utc_offset) if utc_offset is not None else None,
            elapsed_time=elapsed_time,
            moving_time=int(data.get("moving_time") or 0),
            distance=float(data.get("distance") or 0.0),
            total_elevation_gain=float(data.get("total_elevation_gain") or 0.0),
            average_speed=float(data.get("average_speed") or 0.0),
            summary_polyline=summary_map.get("summary_polyline") or None,
            has_heartrate=bool(data.get("has_heartrate")),
            average_heartrate=data.get("average_heartrate"),
            max_heartrate=data.get("max_heartrate"),
        )


class StravaClient(ProviderClient):
    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: Optional[str] = None,
        api_base: str = "https://www.strava.com/api/v3",
        oauth_url: str = "https://www.strava.com/oauth",
        timeout: int = 30,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.api_base = api_base.rstrip("/")
        self.oauth_url = oauth_url.rstrip("/")
        self.timeout = timeout

    @property
    def slug(self) -> str:
        return "strava"

    def _require_app_credentials(self) -> None:
        if not self.client_id or not self.client_secret:
            raise ValueError("Strava credentials not configured")

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _check(self, r: requests.Response, what: str) -> requests.Response:
        if r.status_code == 429:
            retry_after = _retry_after_seconds(r.headers.get("Retry-After"))
            raise ProviderRateLimited(
                f"429 Rate limited for {what} (Retry-After {retry_after}s)",
                retry_after_s=retry_after,
            )
        if r.status_code >= 400:
            raise ProviderRequestFailed(
                f"Strava {what} returned {r.status_code}",
                status_code=r.status_code,
            )
        return r

    def _get(self, path: str, access_token: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        try:
            return requests.get(
                f"{self.api_base}{path}",
                headers={"Authorization": f"Bearer {access_token}"},
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ProviderRequestFailed(f"Strava GET {path} failed: {e}") from e

    def _token_request(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self._require_app_credentials()
        payload = {"client_id": self.client_id, "client_secret": self.client_secret, **data}
        r = requests.post(f"{self.oauth_url}/token", json=payload, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    @staticmethod
    def _token_from_response(payload: Dict[str, Any]) -> OAuth2Token:
        try:
            return OAuth2Token(
                access_token=payload["access_token"],
                refresh_token=payload["refresh_token"],
                expires_at=datetime.fromtimestamp(int(payload["expires_at"]), tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedPayload(f"unexpected Strava token response: {e}") from e

    # ------------------------------------------------------------------
    # OAuth2
    # ------------------------------------------------------------------

    def authorization_url(self, state: Optional[str] = None) -> str:
        if not self.client_id:
            raise ValueError("STRAVA_CLIENT_ID is not set")
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": STRAVA_SCOPES,
            "approval_prompt": "auto",
        }
        if state:
            params["state"] = state
        return f"{self.oauth_url}/authorize?{urlencode(params)}"

    def exchange_code(self, code: str) -> AuthorizationGrant:
        payload = self._token_request({"code": code, "grant_type": "authorization_code"})
        athlete = payload.get("athlete") or {}
        if "id" not in athlete:
            raise MalformedPayload("Strava token response has no athlete")
        return AuthorizationGrant(
            token=self._token_from_response(payload),
            athlete=ProviderAthlete(
                external_id=str(athlete["id"]),
                first_name=athlete.get("firstname"),
                last_name=athlete.get("lastname"),
                country=athlete.get("country"),
                gender=athlete.get("sex"),
            ),
        )

    def refresh_token(self, refresh_token: str) -> OAuth2Token:
        """
        Exchange a refresh token for a new access token.

        Raises RefreshFailed on any HTTP/transport error (e.g. 400 = revoked).
        """
        try:
            payload = self._token_request({"refresh_token": refresh_token, "grant_type": "refresh_token"})
        except requests.RequestException as e:
            raise RefreshFailed(f"Strava token refresh failed: {e}") from e
        return self._token_from_response(payload)

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    def list_activity_summaries(
        self, access_token: str, after: datetime, before: datetime, page_size: int = 200
    ) -> List[Dict[str, Any]]:
        summaries: List[Dict[str, Any]] = []
        page = 1
        while True:
            params = {
                "after": int(after.timestamp()),
                "before": int(before.timestamp()),
                "page": page,
                "per_page": page_size,
            }
            try:
                r = self._check(self._get("/athlete/activities", access_token, params), "activity list")
            except ProviderRateLimited as e:
                logger.warning(
                    "Rate limited while listing activities, keeping partial result",
                    extra=log_fields(page=page, collected=len(summaries), retry_after_s=e.retry_after_s),
                )
                break

            batch = r.json() or []
            summaries.extend(batch)
            if len(batch) < page_size:
                break
            page += 1
        return summaries

    def get_activity(self, access_token: str, activity_id: str) -> Dict[str, Any]:
        r = self._get(f"/activities/{activity_id}", access_token, {"include_all_efforts": "false"})
        return self._check(r, f"activity {activity_id}").json()

    def get_activity_streams(self, access_token: str, activity_id: str) -> Dict[str, Any]:
        params = {"keys": ",".join(STRAVA_STREAM_TYPES), "key_by_type": "true"}
        r = self._get(f"/activities/{activity_id}/streams", access_token, params)
        # Manual entries have no streams
        if r.status_code == 404:
            return {}
        return self._check(r, f"streams {activity_id}").json() or {}

    def raw_fields(self, payload: Dict[str, Any]) -> RawActivityFields:
        activity = StravaActivity.from_payload(payload)
        return RawActivityFields(
            provider_activity_id=activity.id,
            start_time=activity.start_date,
            elapsed_time=activity.elapsed_time,
            iana_timezone=activity.timezone,
            utc_offset=activity.utc_offset,
        )

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def parse_webhook_event(self, body: Dict[str, Any]) -> WebhookEvent:
        if not isinstance(body, dict):
            raise MalformedPayload("webhook body is not an object")
        try:
            aspect = WebhookAspect(body["aspect_type"])
            event = WebhookEvent(
                object_type=str(body["object_type"]),
                object_id=str(body["object_id"]),
                aspect_type=aspect,
                owner_id=str(body["owner_id"]),
                subscription_id=str(body["subscription_id"]),
                updates=body.get("updates") or {},
            )
            if body.get("event_time") is not None:
                event.event_time = datetime.fromtimestamp(int(body["event_time"]), tz=timezone.utc)
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedPayload(f"invalid Strava webhook event: {e}") from e
        return event

    def _subscription_params(self) -> Dict[str, str]:
        self._require_app_credentials()
        return {"client_id": self.client_id, "client_secret": self.client_secret}

    def list_subscriptions(self) -> List[Dict[str, Any]]:
        r = requests.get(
            f"{self.api_base}/push_subscriptions",
            params=self._subscription_params(),
            timeout=self.timeout,
        )
        return self._check(r, "subscription list").json() or []

    def create_subscription(self, callback_url: str, verify_token: str) -> Dict[str, Any]:
        # Strava calls back the handshake endpoint synchronously before answering.
        r = requests.post(
            f"{self.api_base}/push_subscriptions",
            data={**self._subscription_params(), "callback_url": callback_url, "verify_token": verify_token},
            timeout=self.timeout,
        )
        return self._check(r, "subscription create").json()

    def delete_subscription(self, subscription_id: str) -> None:
        r = requests.delete(
            f"{self.api_base}/push_subscriptions/{subscription_id}",
            params=self._subscription_params(),
            timeout=self.timeout,
        )
        self._check(r, f"subscription delete {subscription_id}")
