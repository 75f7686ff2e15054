"""Progression state for the advent calendar: clock, sessions, unlocks, badges.

The engine itself lives in ``progression.core``.
"""

from .clock import Clock
from .errors import ValidationError
from .notifier import BadgeAwarded, BadgeNotifier
from .resolver import (
    ArcProgress,
    ProgressionSummary,
    Resolution,
    VisibleContent,
    accessible_days,
    is_accessible,
    progression_summary,
    resolve,
    story_arc_progress,
)
from .session import Session, new_session

__all__ = [
    "ArcProgress",
    "BadgeAwarded",
    "BadgeNotifier",
    "Clock",
    "ProgressionSummary",
    "Resolution",
    "Session",
    "ValidationError",
    "VisibleContent",
    "accessible_days",
    "is_accessible",
    "new_session",
    "progression_summary",
    "resolve",
    "story_arc_progress",
]
