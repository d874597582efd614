"""Tests for the Strava admin script commands."""
import importlib.util
import os
from argparse import Namespace

import pytest

from models import EnduranceActivity, WebhookVerification
from fixtures.strava_fixtures import activity_payload

_SCRIPT = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "scripts", "strava_admin.py")


@pytest.fixture(scope="module")
def admin():
    spec = importlib.util.spec_from_file_location("strava_admin", _SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_create_subscription_uses_fresh_verify_token(admin, container, strava, db_session):
    sent = {}

    def create(callback_url, verify_token):
        sent["token"] = verify_token
        return {"id": 1}

    strava.create_subscription = create
    assert admin.cmd_create_subscription(container, Namespace(callback_url="https://x/providers/strava/webhook")) == 0
    assert db_session.get(WebhookVerification, sent["token"]) is not None


def test_failed_create_revokes_token(admin, container, strava, db_session):
    def create(callback_url, verify_token):
        raise RuntimeError("callback unreachable")

    strava.create_subscription = create
    assert admin.cmd_create_subscription(container, Namespace(callback_url="https://x")) == 1
    assert db_session.query(WebhookVerification).count() == 0


def test_normalize_reprocesses_raw_rows(admin, container, strava, db_session, connected_user, provider_id):
    user, athlete = connected_user
    for i, sport in enumerate(["Run", "Yoga"]):
        container.pipeline.persist_raw(strava, provider_id, user.id, athlete.id, activity_payload(100 + i, sport_type=sport))

    assert admin.cmd_normalize(container, Namespace(user_id=str(user.id))) == 0
    assert db_session.query(EnduranceActivity).count() == 1
