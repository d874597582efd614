"""
Tests for the provider OAuth callback and webhook endpoints.

The app is exercised through TestClient with the component container
replaced by one built around the in-memory fakes.
"""
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from main import app
from models import Athlete, EnduranceActivity, ProviderOAuth2Credential, User
from services.container import get_container
from services.token_encryption import decrypt_token
from fixtures.strava_fixtures import STRAVA_ATHLETE_ID, SUBSCRIPTION_ID, activity_payload


@pytest.fixture
def client(container):
    app.dependency_overrides[get_container] = lambda: container
    yield TestClient(app)
    app.dependency_overrides.clear()


def _event(aspect="create", object_type="activity", object_id=101, owner_id=STRAVA_ATHLETE_ID,
           subscription_id=SUBSCRIPTION_ID):
    return {
        "aspect_type": aspect,
        "event_time": int(datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc).timestamp()),
        "object_id": int(object_id),
        "object_type": object_type,
        "owner_id": int(owner_id),
        "subscription_id": int(subscription_id),
        "updates": {},
    }


class TestAuthCallback:
    def test_creates_user_athlete_credential_and_schedules_backfill(self, client, queue, db_session, provider_id):
        response = client.get("/providers/strava/auth/callback", params={"code": "auth-code"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["backfillScheduled"] is True

        user = db_session.query(User).one()
        assert user.user_external_id == STRAVA_ATHLETE_ID
        assert str(user.id) == body["userId"]
        athlete = db_session.query(Athlete).one()
        assert athlete.display_name == "Marianne Vos"
        credential = db_session.query(ProviderOAuth2Credential).one()
        assert decrypt_token(credential.access_token) == "initial-access"

        assert len(queue.sent) == 48
        assert {group for group, _ in queue.sent} == {body["userId"]}

    def test_returning_user_is_not_duplicated(self, client, db_session, provider_id):
        first = client.get("/providers/strava/auth/callback", params={"code": "a"}).json()
        second = client.get("/providers/strava/auth/callback", params={"code": "b"}).json()

        assert first["userId"] == second["userId"]
        assert first["athleteId"] == second["athleteId"]
        assert db_session.query(User).count() == 1
        assert db_session.query(ProviderOAuth2Credential).count() == 1

    def test_scheduling_failure_does_not_fail_callback(self, client, queue, db_session, provider_id):
        queue.fail = True
        response = client.get("/providers/strava/auth/callback", params={"code": "auth-code"})

        assert response.status_code == 200
        assert response.json()["backfillScheduled"] is False
        assert db_session.query(User).count() == 1

    def test_denied_authorization(self, client, provider_id):
        response = client.get("/providers/strava/auth/callback", params={"error": "access_denied"})
        assert response.status_code == 400
        assert response.json()["error_code"] == "AUTHORIZATION_DENIED"

    def test_missing_code(self, client, provider_id):
        response = client.get("/providers/strava/auth/callback")
        assert response.status_code == 400
        assert response.json()["error_code"] == "MISSING_CODE"

    def test_unknown_provider(self, client, provider_id):
        response = client.get("/providers/garmin/auth/callback", params={"code": "x"})
        assert response.status_code == 404


class TestWebhookHandshake:
    def test_valid_token_echoes_challenge(self, client, container):
        token = container.verification_tokens.issue().token
        params = {"hub.mode": "subscribe", "hub.challenge": "15f7d1a91c1f40f8", "hub.verify_token": token}

        response = client.get("/providers/strava/webhook", params=params)
        assert response.status_code == 200
        assert response.json() == {"hub.challenge": "15f7d1a91c1f40f8"}

        # Single use
        again = client.get("/providers/strava/webhook", params=params)
        assert again.status_code == 400
        assert again.json()["error_code"] == "VERIFY_TOKEN_NOT_FOUND"

    def test_wrong_mode(self, client, container):
        token = container.verification_tokens.issue().token
        params = {"hub.mode": "unsubscribe", "hub.challenge": "c", "hub.verify_token": token}
        response = client.get("/providers/strava/webhook", params=params)
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_EVENT"


class TestWebhookEvents:
    def test_activity_create_is_ingested(self, client, strava, db_session, connected_user):
        strava.add_activity(activity_payload(101, description="#race"))

        response = client.post("/providers/strava/webhook", json=_event())

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "processed"
        activity = db_session.query(EnduranceActivity).one()
        assert str(activity.id) == body["activityId"]
        assert [t.name for t in activity.tags] == ["race"]

    def test_redelivered_event_converges(self, client, strava, db_session, connected_user):
        strava.add_activity(activity_payload(101))
        client.post("/providers/strava/webhook", json=_event())
        client.post("/providers/strava/webhook", json=_event(aspect="update"))
        assert db_session.query(EnduranceActivity).count() == 1

    def test_non_endurance_activity_is_skipped(self, client, strava, db_session, connected_user):
        strava.add_activity(activity_payload(101, sport_type="Yoga"))
        response = client.post("/providers/strava/webhook", json=_event())
        assert response.json() == {"status": "skipped"}
        assert db_session.query(EnduranceActivity).count() == 0

    def test_delete_is_ignored(self, client, strava, connected_user):
        response = client.post("/providers/strava/webhook", json=_event(aspect="delete"))
        assert response.json() == {"status": "ignored"}
        assert strava.detail_calls == []

    def test_athlete_event_is_ignored(self, client, strava, connected_user):
        response = client.post("/providers/strava/webhook", json=_event(aspect="update", object_type="athlete"))
        assert response.json() == {"status": "ignored"}

    def test_unknown_owner(self, client, connected_user):
        response = client.post("/providers/strava/webhook", json=_event(owner_id=999))
        assert response.status_code == 404

    def test_unknown_subscription(self, client, strava, connected_user):
        strava.add_activity(activity_payload(101))
        response = client.post("/providers/strava/webhook", json=_event(subscription_id=1))
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_EVENT"
        assert strava.detail_calls == []

    def test_malformed_body(self, client, connected_user):
        response = client.post(
            "/providers/strava/webhook",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )
        assert response.status_code == 400

    def test_missing_fields(self, client, connected_user):
        response = client.post("/providers/strava/webhook", json={"aspect_type": "create"})
        assert response.status_code == 400

    def test_revoked_credential(self, client, strava, db_session, connected_user, provider_id):
        user, _ = connected_user
        db_session.query(ProviderOAuth2Credential).delete()
        db_session.commit()
        strava.add_activity(activity_payload(101))

        response = client.post("/providers/strava/webhook", json=_event())
        assert response.status_code == 502


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/ping").json() == {"pong": True}
