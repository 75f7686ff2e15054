"""Unlock resolution: derive visible content and earned badges from a session.

Everything here is pure. ``resolve`` returns a new session and never
touches the one it was given, so callers can discard the result freely.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone

from catalog import Badge, BadgeCondition, Catalog, Mission, normalize_code

from .session import BonusBadgeRecord, EarnedBadge, EventyrBadgeRecord, Session

TOTAL_DAYS = 24


@dataclass
class Resolution:
    session: Session
    newly_earned: list[Badge] = field(default_factory=list)


@dataclass
class VisibleContent:
    topics: dict[str, int] = field(default_factory=dict)
    files: set[str] = field(default_factory=set)
    modules: set[str] = field(default_factory=set)
    symbols: set[str] = field(default_factory=set)


@dataclass
class ArcProgress:
    arc_id: str
    completed_days: list[int]
    total_days: int
    percent: int
    is_complete: bool


@dataclass
class ProgressionSummary:
    main_quests_completed: int
    main_quests_total: int
    main_quests_percent: int
    bonus_quests_completed: int
    bonus_quests_available: int
    badges_earned: int
    badges_total: int
    modules_unlocked: int
    modules_total: int
    is_complete: bool


# ── Completion ──────────────────────────────────────────────────


def completed_days_from_codes(session: Session, catalog: Catalog) -> set[int]:
    days: set[int] = set()
    for submitted in session.submitted_codes:
        mission = catalog.mission_for_code(submitted.code)
        if mission is not None:
            days.add(mission.day)
    return days


def bonus_quest_completed(session: Session, mission: Mission) -> bool:
    if mission.bonus is None:
        return False
    return bool(session.crisis_status.get(mission.bonus.flag))


def is_bonus_accessible(session: Session, day: int) -> bool:
    """A bonus quest opens once its main mission is done."""
    return day in session.completed_days


def is_accessible(mission: Mission, session: Session, current_day: int) -> bool:
    if current_day < mission.day:
        return False
    if not set(mission.requires.completed_days) <= session.completed_days:
        return False
    return set(mission.requires.topics) <= set(session.topic_unlocks)


def accessible_days(session: Session, catalog: Catalog, current_day: int) -> list[int]:
    return [m.day for m in catalog.all_missions() if is_accessible(m, session, current_day)]


# ── Badge conditions ────────────────────────────────────────────


def _condition_met(cond: BadgeCondition, session: Session, catalog: Catalog) -> bool:
    if cond.type == "bonusoppdrag":
        mission = catalog.mission_for_day(cond.day) if cond.day is not None else None
        return mission is not None and bonus_quest_completed(session, mission)

    if cond.type == "eventyr":
        if catalog.story_arc_by_id(cond.arc_id) is None:
            return False
        days = catalog.arc_days(cond.arc_id)
        return bool(days) and set(days) <= session.completed_days

    if cond.type == "allDecryptionsSolved":
        ids = set(cond.challenge_ids)
        if not ids or any(catalog.challenge_by_id(i) is None for i in ids):
            return False
        return ids <= session.solved_decryptions

    if cond.type == "allSymbolsCollected":
        return cond.count > 0 and len(session.collected_symbol_ids()) >= cond.count

    if cond.type == "allQuestsCompleted":
        return cond.count > 0 and len(session.completed_days) >= cond.count

    return False


def _record_grouped_badge(session: Session, badge: Badge) -> None:
    """Mirror an award into the display sub-lists."""
    cond = badge.condition
    if badge.type == "bonusoppdrag" and cond.day is not None:
        if all(b.day != cond.day for b in session.bonus_oppdrag_badges):
            session.bonus_oppdrag_badges.append(BonusBadgeRecord(day=cond.day, icon=badge.icon, name=badge.name))
    elif badge.type == "eventyr" and cond.arc_id:
        if all(b.eventyr_id != cond.arc_id for b in session.eventyr_badges):
            session.eventyr_badges.append(EventyrBadgeRecord(eventyr_id=cond.arc_id, icon=badge.icon, name=badge.name))


# ── Resolution ──────────────────────────────────────────────────


def resolve(
    session: Session,
    catalog: Catalog,
    current_day: int,
    now: str | None = None,
) -> Resolution:
    """Re-derive unlocks and award any badges whose condition now holds.

    ``current_day`` does not affect what a completed day unlocks; it is
    accepted so callers resolve and classify against the same day.
    """
    now = now or datetime.now(timezone.utc).isoformat()
    updated = copy.deepcopy(session)

    submitted = {normalize_code(c.code) for c in updated.submitted_codes}
    updated.completed_days = completed_days_from_codes(updated, catalog)

    for mission in catalog.all_missions():
        bonus = mission.bonus
        if bonus and bonus.validation == "kode" and bonus.code in submitted:
            updated.crisis_status[bonus.flag] = True

    for day in sorted(updated.completed_days):
        mission = catalog.mission_for_day(day)
        if mission is None:
            continue
        for topic in mission.reveals.topics:
            updated.topic_unlocks.setdefault(topic, day)
        updated.unlocked_files.update(mission.reveals.files)
        updated.unlocked_modules.update(mission.reveals.modules)
        updated.revealed_symbols.update(mission.reveals.symbols)

    for challenge_id in sorted(updated.solved_decryptions):
        challenge = catalog.challenge_by_id(challenge_id)
        if challenge is not None:
            updated.unlocked_files.update(challenge.unlocks_files)

    earned = updated.earned_badge_ids()
    newly: list[Badge] = []
    for badge in catalog.all_badges():
        if badge.badge_id in earned:
            continue
        if _condition_met(badge.condition, updated, catalog):
            updated.earned_badges.append(EarnedBadge(badge_id=badge.badge_id, timestamp=now))
            _record_grouped_badge(updated, badge)
            earned.add(badge.badge_id)
            newly.append(badge)

    return Resolution(session=updated, newly_earned=newly)


# ── Projections ─────────────────────────────────────────────────


def visible_content(session: Session) -> VisibleContent:
    return VisibleContent(
        topics=dict(session.topic_unlocks),
        files=set(session.unlocked_files),
        modules=set(session.unlocked_modules),
        symbols=set(session.revealed_symbols),
    )


def story_arc_progress(session: Session, catalog: Catalog, arc_id: str) -> ArcProgress | None:
    if catalog.story_arc_by_id(arc_id) is None:
        return None
    days = catalog.arc_days(arc_id)
    done = [d for d in days if d in session.completed_days]
    percent = round(len(done) / len(days) * 100) if days else 0
    return ArcProgress(
        arc_id=arc_id,
        completed_days=done,
        total_days=len(days),
        percent=percent,
        is_complete=bool(days) and len(done) == len(days),
    )


def progression_summary(session: Session, catalog: Catalog) -> ProgressionSummary:
    completed = len(session.completed_days & set(range(1, TOTAL_DAYS + 1)))
    bonus_missions = catalog.bonus_missions()
    available = [m for m in bonus_missions if is_bonus_accessible(session, m.day)]
    modules_total = len(catalog.module_ids())
    return ProgressionSummary(
        main_quests_completed=completed,
        main_quests_total=TOTAL_DAYS,
        main_quests_percent=round(completed / TOTAL_DAYS * 100),
        bonus_quests_completed=sum(1 for m in bonus_missions if bonus_quest_completed(session, m)),
        bonus_quests_available=len(available),
        badges_earned=len(session.earned_badge_ids() & {b.badge_id for b in catalog.all_badges()}),
        badges_total=len(catalog.all_badges()),
        modules_unlocked=len(session.unlocked_modules & catalog.module_ids()),
        modules_total=modules_total,
        is_complete=completed == TOTAL_DAYS,
    )
