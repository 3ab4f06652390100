"""Relational storage with change notifications."""

from huddle.store.base import Change, ChangeFeed, ChangeKind, Store
from huddle.store.cache import LookupCache
from huddle.store.json_file import JsonFileStore
from huddle.store.memory import MemoryStore
from huddle.store.models import (
    CONVERSATIONS,
    MEMBERSHIPS,
    MESSAGES,
    PARTICIPANTS,
    SCHEDULED_MESSAGES,
    Conversation,
    ConversationKind,
    Membership,
    Message,
    Participant,
    RecipientType,
    ScheduledMessage,
    ScheduleStatus,
)

__all__ = [
    "CONVERSATIONS",
    "MEMBERSHIPS",
    "MESSAGES",
    "PARTICIPANTS",
    "SCHEDULED_MESSAGES",
    "Change",
    "ChangeFeed",
    "ChangeKind",
    "Conversation",
    "ConversationKind",
    "JsonFileStore",
    "LookupCache",
    "Membership",
    "MemoryStore",
    "Message",
    "Participant",
    "RecipientType",
    "ScheduleStatus",
    "ScheduledMessage",
    "Store",
]
