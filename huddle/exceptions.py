"""Exception classes for Huddle."""

from typing import Optional


class HuddleError(Exception):
    """Base class for errors raised by Huddle."""


class ConfigError(HuddleError):
    """Configuration file is missing required data or cannot be parsed."""


class StoreError(HuddleError):
    """A store read or write failed.

    Treated as transient by callers: persistence is retried before giving up.

    Attributes:
        table: Table the operation targeted
        operation: Name of the failed operation (insert, select, ...)
    """

    def __init__(self, message: str, table: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.table = table
        self.operation = operation


class GenerationError(HuddleError):
    """The generation service failed to open or continue a response stream."""
