"""
Athlete Router

Read-only aggregates over canonical activities for the consuming app.
Authenticated with the shared x-api-key header.
"""

import secrets
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from core.config import settings
from core.database import get_db
from core.exceptions import BadRequestError, NotFoundError, UnauthorizedError
from models import Athlete, Provider
from services.activity_analytics import is_endurance_sport
from services.athlete_volume import FREQUENCIES, athlete_volume

router = APIRouter(prefix="/athletes", tags=["athletes"])


def require_api_key(x_api_key: Optional[str] = Header(None, alias="x-api-key")) -> None:
    if not settings.API_KEY or not x_api_key or not secrets.compare_digest(x_api_key, settings.API_KEY):
        raise UnauthorizedError("invalid API key")


def _parse_sports(values: List[str]) -> List[str]:
    sports = []
    for value in values:
        for part in value.split(","):
            sport = part.strip().lower()
            if sport:
                sports.append(sport)
    return list(dict.fromkeys(sports))


@router.get("/{athlete_id}/metrics/volume", dependencies=[Depends(require_api_key)])
def get_volume(
    athlete_id: str,
    provider: Optional[str] = Query(None),
    frequency: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None, alias="startDate"),
    sport: List[str] = Query(default=[]),
    db: Session = Depends(get_db),
):
    try:
        athlete_uuid = UUID(athlete_id)
    except ValueError:
        raise BadRequestError(f"invalid athlete id: {athlete_id}")

    if not provider or not frequency or not start_date or not sport:
        raise BadRequestError("provider, frequency, startDate and sport are required")
    if frequency not in FREQUENCIES:
        raise BadRequestError(f"frequency must be one of: {', '.join(FREQUENCIES)}")
    try:
        since = datetime.strptime(start_date, "%Y-%m-%d").date()
    except ValueError:
        raise BadRequestError("startDate must be formatted as YYYY-MM-DD")

    sports = _parse_sports(sport)
    if not sports:
        raise BadRequestError("sport is required")
    invalid = [s for s in sports if not is_endurance_sport(s)]
    if invalid:
        raise BadRequestError(f"not an endurance sport: {', '.join(invalid)}")

    provider_row = db.query(Provider).filter(Provider.slug == provider).first()
    if provider_row is None:
        raise BadRequestError(f"unsupported provider: {provider}")
    if db.get(Athlete, athlete_uuid) is None:
        raise NotFoundError("Athlete", athlete_id)

    data = athlete_volume(db, athlete_uuid, provider_row.id, frequency, since, sports)
    return {
        "athleteId": str(athlete_uuid),
        "provider": provider,
        "frequency": frequency,
        "sports": sports,
        "startDate": since.isoformat(),
        "data": data,
    }
