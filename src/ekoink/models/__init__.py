"""Database models for the EkoInk service."""

from .account import Account
from .api_key import APIKey
from .api_usage import ApiUsage
from .background_task import BackgroundTask
from .deal import Call, Deal
from .event import Event
from .note import Note, NoteStatus
from .user import User

__all__ = [
    "Account",
    "APIKey",
    "ApiUsage",
    "BackgroundTask",
    "Call",
    "Deal",
    "Event",
    "Note",
    "NoteStatus",
    "User",
]
