"""
Strava administration commands.

Usage (inside api container):
  python scripts/strava_admin.py auth-url
  python scripts/strava_admin.py create-subscription
  python scripts/strava_admin.py list-subscriptions
  python scripts/strava_admin.py delete-subscription 12345
  python scripts/strava_admin.py normalize 4368ec7f-c30d-45ff-a6ee-58db7716be24

create-subscription issues a short-lived verify token first: Strava calls
GET /providers/strava/webhook during the create request and the handshake
consumes that token.
"""

from __future__ import annotations

import json
import os
import sys
from uuid import UUID


# Ensure /app is on sys.path when run as a script inside the container.
_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _ROOT not in sys.path:
    sys.path.insert(0, _ROOT)


def _callback_url() -> str:
    from core.config import settings

    return f"{settings.API_BASE_URL.rstrip('/')}/providers/strava/webhook"


def cmd_auth_url(container, args) -> int:
    print(container.providers.get("strava").authorization_url(state=args.state))
    return 0


def cmd_create_subscription(container, args) -> int:
    client = container.providers.get("strava")
    token = container.verification_tokens.issue()
    callback_url = args.callback_url or _callback_url()
    try:
        subscription = client.create_subscription(callback_url, token.token)
    except Exception as e:
        container.verification_tokens.revoke(token.token)
        print(f"ERROR: subscription create failed: {e}")
        return 1
    print(json.dumps(subscription, indent=2))
    return 0


def cmd_list_subscriptions(container, args) -> int:
    subscriptions = container.providers.get("strava").list_subscriptions()
    if not subscriptions:
        print("No subscriptions")
        return 0
    for sub in subscriptions:
        print(f"{sub.get('id')}  {sub.get('callback_url')}  created={sub.get('created_at')}")
    return 0


def cmd_delete_subscription(container, args) -> int:
    container.providers.get("strava").delete_subscription(args.subscription_id)
    print(f"Deleted subscription {args.subscription_id}")
    return 0


def cmd_normalize(container, args) -> int:
    """Re-run normalize/enrich/tag over every stored raw activity of a user."""
    from services.accounts import get_provider_by_slug

    user_id = UUID(args.user_id)
    db = container.session_factory()
    try:
        provider = get_provider_by_slug(db, "strava")
        raws = container.pipeline.raw_activities.list_for_user(db, provider.id, user_id)
    finally:
        db.close()

    stored = 0
    skipped = 0
    for raw in raws:
        activity_id = container.pipeline.process(raw.id, provider.slug, container.pipeline.load_streams(raw))
        if activity_id is None:
            skipped += 1
        else:
            stored += 1
    print(f"raw={len(raws)} stored={stored} skipped={skipped}")
    return 0


def main() -> int:
    import argparse

    parser = argparse.ArgumentParser(description="Strava subscription and ingestion admin")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("auth-url", help="Print the OAuth2 authorization URL")
    p.add_argument("--state", default=None)
    p.set_defaults(func=cmd_auth_url)

    p = sub.add_parser("create-subscription", help="Register the webhook subscription")
    p.add_argument("--callback-url", default=None, help="Defaults to API_BASE_URL + /providers/strava/webhook")
    p.set_defaults(func=cmd_create_subscription)

    p = sub.add_parser("list-subscriptions", help="List webhook subscriptions")
    p.set_defaults(func=cmd_list_subscriptions)

    p = sub.add_parser("delete-subscription", help="Delete a webhook subscription")
    p.add_argument("subscription_id")
    p.set_defaults(func=cmd_delete_subscription)

    p = sub.add_parser("normalize", help="Re-process a user's stored raw activities")
    p.add_argument("user_id", help="UUID of user")
    p.set_defaults(func=cmd_normalize)

    args = parser.parse_args()

    from core.logging import setup_logging
    from services.container import get_container

    setup_logging()
    return args.func(get_container(), args)


if __name__ == "__main__":
    raise SystemExit(main())
