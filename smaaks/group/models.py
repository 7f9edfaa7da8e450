"""Data models for the group blueprint."""

from __future__ import annotations

from datetime import datetime
from typing import Any, TypedDict

from smaaks.core.types import FirestoreDocument


class Member(TypedDict, total=False):
    """A document of the members sub-collection, keyed by user ID."""

    id: str
    uid: str
    role: str
    status: str
    joinedAt: datetime
    removedAt: datetime
    removedBy: str


class GroupSettings(TypedDict, total=False):
    """Visibility, approval and capacity settings of a group."""

    isPrivate: bool
    requiresApproval: bool
    maxMembers: int
    minAge: int
    maxAge: int


class AdmissionQuestion(TypedDict):
    """A question asked to users requesting to join."""

    id: str
    question: str
    required: bool


class Group(FirestoreDocument, total=False):
    """A group document in Firestore."""

    name: str
    description: str
    category: str
    location: dict[str, Any]
    rules: list[str]
    admissionQuestions: list[AdmissionQuestion]
    externalLinks: dict[str, Any]
    settings: GroupSettings
    ownerId: str
    organizer: dict[str, Any]
    memberIds: list[str]
    stats: dict[str, int]

    # Assembled when reading
    members: list[Member]


class MembershipRequest(FirestoreDocument, total=False):
    """A request to join, keyed ``{groupId}_{userId}``."""

    groupId: str
    eventId: str
    userId: str
    userInfo: dict[str, Any]
    answers: list[dict[str, Any]]
    status: str
    submittedAt: datetime
    reviewedAt: datetime
    reviewedBy: str
    rejectionReason: str
    history: list[dict[str, Any]]


class Post(FirestoreDocument, total=False):
    """A post of a group feed."""

    groupId: str
    authorId: str
    authorInfo: dict[str, Any]
    content: dict[str, Any]
    isPinned: bool
    pinnedBy: str
    commentsCount: int
    reactions: dict[str, list[dict[str, Any]]]


class Comment(FirestoreDocument, total=False):
    """A comment on a post."""

    postId: str
    groupId: str
    authorId: str
    authorInfo: dict[str, Any]
    content: str
