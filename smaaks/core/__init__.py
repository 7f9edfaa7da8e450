"""Core module for the SMAAKS application."""

from .timestamps import to_datetime, utcnow
from .types import FirestoreDocument

__all__ = ["FirestoreDocument", "to_datetime", "utcnow"]
