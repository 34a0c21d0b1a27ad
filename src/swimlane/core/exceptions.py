"""Custom exception hierarchy for swimlane."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class SwimlaneException(Exception):
    """Base exception type for all swimlane errors."""

    message: str
    context: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        if not self.context:
            return self.message
        return f"{self.message} | context={self.context}"


class ConfigurationError(SwimlaneException):
    """Raised when configuration is missing or invalid."""


class FormatError(SwimlaneException):
    """Raised when a text document is not a swimlane export or holds no diagram."""


class UnknownCommandError(SwimlaneException):
    """Raised when a command name is not part of the store's command API."""
