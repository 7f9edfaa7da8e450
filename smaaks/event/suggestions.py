"""Ranking of events to suggest to a user."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

from smaaks.core.constants import (
    EVENT_ACTIVE,
    EVENTS_COLLECTION,
    MIN_SPOTS_LEFT,
    PROFILE_LEVELS,
    RECENTLY_CREATED_DAYS,
    SCORE_FAVORITE_SPORT,
    SCORE_LOCATION,
    SCORE_RECENTLY_CREATED,
    SCORE_SKILL_LEVEL,
    SCORE_SPOTS_LEFT,
    SCORE_STARTS_SOON,
    SKILL_LEVEL_ALL,
    STARTS_SOON_DAYS,
    SUGGESTION_LIMIT,
)
from smaaks.core.timestamps import to_datetime, utcnow
from smaaks.group.services.membership import capacity, member_count

if TYPE_CHECKING:
    from datetime import datetime


def _spots_left(event: dict[str, Any]) -> int | None:
    limit = capacity(event)
    if limit is None:
        return None
    return limit - member_count(event, EVENTS_COLLECTION)


def is_candidate(event: dict[str, Any], uid: str, now: datetime) -> bool:
    """Return False for events the user cannot or need not be offered."""
    if event.get("status", EVENT_ACTIVE) != EVENT_ACTIVE:
        return False
    if event.get("creatorId") == uid or uid in (event.get("participantIds") or []):
        return False
    spots = _spots_left(event)
    if spots is not None and spots <= 0:
        return False
    date = to_datetime(event.get("date"))
    return date is not None and date > now


def skill_matches(event: dict[str, Any], profile: dict[str, Any]) -> bool:
    """Return True if the user's level for the event's sport fits the event."""
    levels = profile.get("skillLevels") or {}
    user_level = PROFILE_LEVELS.get(levels.get(event.get("sport")))
    if user_level is None:
        return False
    event_level = event.get("skillLevel") or SKILL_LEVEL_ALL
    return event_level == SKILL_LEVEL_ALL or event_level == user_level


def score_event(
    event: dict[str, Any], profile: dict[str, Any], now: datetime
) -> int:
    """Sum the fixed bonuses an event earns for a user profile."""
    score = 0
    if event.get("sport") in (profile.get("favoriteSports") or []):
        score += SCORE_FAVORITE_SPORT
    if skill_matches(event, profile):
        score += SCORE_SKILL_LEVEL

    user_location = (profile.get("location") or "").strip().lower()
    if user_location and user_location in (event.get("location") or "").lower():
        score += SCORE_LOCATION

    created = to_datetime(event.get("createdAt"))
    if created is not None and now - created <= timedelta(days=RECENTLY_CREATED_DAYS):
        score += SCORE_RECENTLY_CREATED

    spots = _spots_left(event)
    if spots is not None and spots >= MIN_SPOTS_LEFT:
        score += SCORE_SPOTS_LEFT

    date = to_datetime(event.get("date"))
    if date is not None and timedelta(0) <= date - now <= timedelta(days=STARTS_SOON_DAYS):
        score += SCORE_STARTS_SOON
    return score


def suggest_events(
    profile: dict[str, Any],
    uid: str,
    events: list[dict[str, Any]],
    now: datetime | None = None,
    limit: int = SUGGESTION_LIMIT,
) -> list[dict[str, Any]]:
    """Return the best events for a user, highest score first.

    Events with equal scores keep the order in which they were given.
    Each returned event carries its ``score``.
    """
    now = now or utcnow()
    scored = [
        {**event, "score": score_event(event, profile, now)}
        for event in events
        if is_candidate(event, uid, now)
    ]
    ranked = sorted(scored, key=lambda e: e["score"], reverse=True)
    return ranked[:limit]
