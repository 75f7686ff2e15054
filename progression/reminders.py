"""Batch job: tell subscribed families which mission opens tomorrow."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from catalog import Mission
from sessionstore.credentials import Credential, CredentialDirectory

from .core import ProgressionEngine

logger = logging.getLogger(__name__)

# sink(credential, mission, completed_days); may be async
ReminderSink = Callable[[Credential, Mission, set[int]], Any]


@dataclass
class ReminderReport:
    day: int
    sent: int = 0
    failed: int = 0
    skipped: bool = False
    failures: list[str] = field(default_factory=list)  # session ids


def reminder_day(engine: ProgressionEngine) -> int | None:
    """Tomorrow's calendar day, or None when no mission opens tomorrow."""
    clock = engine.clock
    if not clock.test_mode and clock.current_month() != 12:
        return None
    tomorrow = clock.current_day() + 1
    return tomorrow if 1 <= tomorrow <= 24 else None


async def send_mission_reminders(
    engine: ProgressionEngine,
    directory: CredentialDirectory,
    sink: ReminderSink,
    day: int | None = None,
) -> ReminderReport:
    """Notify every subscribed family; one family failing never stops the rest."""
    day = day if day is not None else reminder_day(engine)
    mission = engine.mission_for_day(day) if day is not None else None
    if mission is None:
        logger.info("No mission opens tomorrow; nothing to send")
        return ReminderReport(day=day or 0, skipped=True)

    report = ReminderReport(day=day)
    for credential in await directory.list_subscribed():
        try:
            completed = await engine.get_completed_days(credential.session_id)
            result = sink(credential, mission, completed)
            if inspect.isawaitable(result):
                await result
        except Exception:
            report.failed += 1
            report.failures.append(credential.session_id)
            logger.error("Reminder for session %s failed", credential.session_id, exc_info=True)
            continue
        report.sent += 1

    logger.info("Day %d reminders: %d sent, %d failed", day, report.sent, report.failed)
    return report
