"""Data models for the auth blueprint."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Identity:
    """The authenticated user on whose behalf a workflow runs."""

    uid: str
    display_name: str = ""
    email: str = ""
    photo_url: Optional[str] = None

    @property
    def name(self) -> str:
        """Return a printable name, falling back to the e-mail local part."""
        if self.display_name:
            return self.display_name
        if self.email:
            return self.email.split("@")[0]
        return "Utilisateur"

    def as_author(self) -> dict[str, Any]:
        """Return the author summary cached on posts, comments and requests."""
        info: dict[str, Any] = {"name": self.name, "email": self.email}
        if self.photo_url:
            info["photoURL"] = self.photo_url
        return info

    @classmethod
    def from_token(cls, decoded_token: dict[str, Any]) -> Identity:
        """Build an identity from a verified Firebase ID token."""
        return cls(
            uid=decoded_token["uid"],
            display_name=decoded_token.get("name") or "",
            email=decoded_token.get("email") or "",
            photo_url=decoded_token.get("picture"),
        )

    @classmethod
    def from_user_doc(cls, uid: str, user_data: dict[str, Any]) -> Identity:
        """Build an identity from a stored user profile."""
        return cls(
            uid=uid,
            display_name=user_data.get("username")
            or user_data.get("displayName")
            or "",
            email=user_data.get("email") or "",
            photo_url=user_data.get("avatar") or user_data.get("photoURL"),
        )
