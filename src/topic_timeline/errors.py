from __future__ import annotations

from typing import Optional


class TimelineError(Exception):
    """Base class for every error raised by topic_timeline."""


class CompletionError(TimelineError):
    """The completion call failed outright (network, timeout, empty or unparseable reply)."""


class UpstreamAuthError(CompletionError):
    """The completion service rejected our credentials. No fallback tier can recover from this."""


class ShapeViolationError(TimelineError):
    """The completion service replied, but the reply does not satisfy the shape contract."""


class GenerationError(TimelineError):
    def __init__(self, message: str = "generation failed", detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base}: {self.detail}" if self.detail else base


class VersionConflictError(TimelineError):
    """Another writer inserted the same (slug, version) first."""


class PersistenceConflictError(TimelineError):
    """Version conflicts kept happening after every retry. Transient; the caller may try again."""


class OwnershipError(TimelineError):
    """Caller does not own the timeline (or may not see it)."""
