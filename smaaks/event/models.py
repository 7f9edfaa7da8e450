"""Data models for the event blueprint."""

from __future__ import annotations

from datetime import datetime
from typing import Any, TypedDict

from smaaks.core.types import FirestoreDocument


class Event(FirestoreDocument, total=False):
    """A sport event in Firestore."""

    title: str
    description: str
    sport: str
    date: datetime
    location: str
    maxParticipants: int
    participantIds: list[str]
    skillLevel: str
    equipment: str
    settings: dict[str, Any]
    creatorId: str
    organizer: dict[str, Any]
    stats: dict[str, int]
    status: str


class MessageReport(TypedDict, total=False):
    """A report filed against a chat message, keyed by reporter."""

    userId: str
    userName: str
    reason: str
    description: str
    createdAt: datetime


class EventMessage(FirestoreDocument, total=False):
    """A message of an event chat."""

    eventId: str
    userId: str
    userName: str
    userAvatar: str | None
    content: str
    status: str
    isOrganizer: bool
    reportCount: int
    reports: list[MessageReport]
