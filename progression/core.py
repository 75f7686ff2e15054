"""Progression engine: the single entry point for reading and changing sessions.

Every mutation reads the stored session, applies the change to a resolved
copy, re-resolves, writes, and only then announces new badges. Nothing is
cached between calls, so a failed write leaves no trace.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from catalog import Badge, Catalog, Mission, get_catalog, normalize_code
from sessionstore.base import SessionNotFoundError, SessionStore, StorageError, check_session_id

from .clock import Clock
from .errors import ValidationError
from .notifier import BadgeAwarded, BadgeNotifier
from .resolver import (
    ArcProgress,
    ProgressionSummary,
    Resolution,
    VisibleContent,
    accessible_days,
    bonus_quest_completed,
    is_accessible,
    is_bonus_accessible,
    progression_summary,
    resolve,
    story_arc_progress,
    visible_content,
)
from .session import CollectedSymbol, Session, SubmittedCode, new_session

logger = logging.getLogger(__name__)

MAX_PLAYER_NAMES = 4
MAX_FRIEND_NAMES = 15
MAX_NAME_LENGTH = 20


@dataclass
class SubmissionResult:
    accepted: bool
    day: int | None = None
    already_submitted: bool = False
    is_bonus: bool = False
    reason: str = ""  # "locked" | "incorrect" | "unknown" when rejected
    failed_attempts: int = 0
    newly_earned: list[Badge] = field(default_factory=list)


@dataclass
class DecryptionResult:
    solved: bool
    correct_count: int
    attempts: int
    already_solved: bool = False
    message: str = ""
    newly_earned: list[Badge] = field(default_factory=list)


@dataclass
class CollectResult:
    symbol_id: str
    collected: bool
    already_collected: bool = False
    newly_earned: list[Badge] = field(default_factory=list)


@dataclass
class CrisisResult:
    crisis_key: str
    already_resolved: bool = False
    newly_earned: list[Badge] = field(default_factory=list)


def _check_day(day: int) -> int:
    if isinstance(day, bool) or not isinstance(day, int) or not 1 <= day <= 24:
        raise ValidationError(f"Day must be between 1 and 24, got {day!r}", field="day")
    return day


def _check_session_id(session_id: str) -> str:
    try:
        return check_session_id(session_id)
    except StorageError as e:
        raise ValidationError(str(e), field="session_id") from e


def _clean_names(names: Iterable[str], max_count: int, field_name: str) -> list[str]:
    if isinstance(names, str) or names is None:
        raise ValidationError("Names must be given as a list", field=field_name)
    cleaned = [n.strip() for n in names if isinstance(n, str) and n.strip()]
    if len(cleaned) > max_count:
        raise ValidationError(f"At most {max_count} names allowed", field=field_name)
    for name in cleaned:
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(
                f"Name {name!r} is longer than {MAX_NAME_LENGTH} characters", field=field_name
            )
    return cleaned


class ProgressionEngine:
    """Reads and mutates sessions, keeping derived state and badges current.

    Usage::

        engine = ProgressionEngine(LocalSessionStore("data/sessions"))
        result = await engine.submit_code("family-42", "brevfugl")
    """

    def __init__(
        self,
        store: SessionStore,
        catalog: Catalog | None = None,
        clock: Clock | None = None,
        notifier: BadgeNotifier | None = None,
    ):
        self._store = store
        self._catalog = catalog or get_catalog()
        self._clock = clock or Clock()
        self.notifier = notifier or BadgeNotifier()

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    @property
    def clock(self) -> Clock:
        return self._clock

    # ── Internals ───────────────────────────────────────────────

    async def _read(self, session_id: str) -> Session | None:
        _check_session_id(session_id)
        return await self._store.read_session(session_id)

    async def _load(self, session_id: str) -> Session:
        session = await self._read(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _resolve(self, session: Session) -> Resolution:
        return resolve(session, self._catalog, self._clock.season_day(), now=self._clock.now_iso())

    async def _commit(self, stored: Session, resolution: Resolution) -> Session:
        """Write a re-derived session guarded by the revision it was read at."""
        updated = resolution.session
        updated.last_updated = self._clock.now_iso()
        updated.revision = await self._store.write_session(
            updated.session_id, updated, expected_revision=stored.revision
        )
        self._announce(updated.session_id, resolution.newly_earned)
        return updated

    def _announce(self, session_id: str, badges: list[Badge]) -> None:
        awarded_at = self._clock.now_iso()
        for badge in badges:
            logger.info("Session %s earned badge %s", session_id, badge.badge_id)
            self.notifier.publish(BadgeAwarded(session_id=session_id, badge=badge, awarded_at=awarded_at))

    # ── Sessions ────────────────────────────────────────────────

    async def create_session(self, session_id: str) -> Session:
        existing = await self._read(session_id)
        if existing is not None:
            return existing
        # Another device may have created it since the read; the store keeps theirs
        await self._store.create_session(session_id, new_session(session_id))
        logger.info("Created session %s", session_id)
        return await self._load(session_id)

    async def get_session(self, session_id: str) -> Session:
        return self._resolve(await self._load(session_id)).session

    async def _view(self, session_id: str) -> Session | None:
        session = await self._read(session_id)
        if session is None:
            return None
        return self._resolve(session).session

    # ── Codes ───────────────────────────────────────────────────

    async def submit_code(self, session_id: str, code: str, day: int | None = None) -> SubmissionResult:
        """Submit a mission or bonus-quest code.

        Passing ``day`` ties the attempt to that day's mission: a code that
        does not belong to it counts as a failed attempt for the day.
        """
        normalized = normalize_code(code)
        if not normalized:
            raise ValidationError("Code must not be empty", field="code")
        if day is not None:
            _check_day(day)

        stored = await self._load(session_id)
        current = self._resolve(stored).session
        current_day = self._clock.season_day()
        now = self._clock.now_iso()

        mission = self._catalog.mission_for_code(normalized)
        if mission is not None and day in (None, mission.day):
            if mission.day in current.completed_days:
                return SubmissionResult(accepted=True, day=mission.day, already_submitted=True)
            if not is_accessible(mission, current, current_day):
                logger.info("Session %s tried locked day %d", session_id, mission.day)
                return SubmissionResult(accepted=False, day=mission.day, reason="locked")
            current.submitted_codes.append(SubmittedCode(code=normalized, submitted_at=now))
            current.failed_attempts.pop(mission.day, None)
            resolution = self._resolve(current)
            await self._commit(stored, resolution)
            logger.info("Session %s completed day %d", session_id, mission.day)
            return SubmissionResult(accepted=True, day=mission.day, newly_earned=resolution.newly_earned)

        bonus_mission = self._catalog.mission_for_bonus_code(normalized)
        if bonus_mission is not None and day in (None, bonus_mission.day):
            if current.has_code(normalized) or bonus_quest_completed(current, bonus_mission):
                return SubmissionResult(
                    accepted=True, day=bonus_mission.day, already_submitted=True, is_bonus=True
                )
            if not is_bonus_accessible(current, bonus_mission.day):
                return SubmissionResult(accepted=False, day=bonus_mission.day, is_bonus=True, reason="locked")
            current.submitted_codes.append(SubmittedCode(code=normalized, submitted_at=now))
            resolution = self._resolve(current)
            await self._commit(stored, resolution)
            logger.info("Session %s completed bonus quest on day %d", session_id, bonus_mission.day)
            return SubmissionResult(
                accepted=True, day=bonus_mission.day, is_bonus=True, newly_earned=resolution.newly_earned
            )

        if day is None:
            return SubmissionResult(accepted=False, reason="unknown")

        current.failed_attempts[day] = current.failed_attempts.get(day, 0) + 1
        failed = current.failed_attempts[day]
        await self._commit(stored, self._resolve(current))
        logger.debug("Session %s: wrong code for day %d (%d failed)", session_id, day, failed)
        return SubmissionResult(accepted=False, day=day, reason="incorrect", failed_attempts=failed)

    # ── Symbols ─────────────────────────────────────────────────

    async def record_symbol_collected(
        self,
        session_id: str,
        symbol_id: str,
        icon: str = "",
        description: str = "",
    ) -> CollectResult:
        symbol_id = (symbol_id or "").strip()
        if not symbol_id:
            raise ValidationError("Symbol id must not be empty", field="symbol_id")

        stored = await self._load(session_id)
        current = self._resolve(stored).session
        if symbol_id in current.collected_symbol_ids():
            return CollectResult(symbol_id=symbol_id, collected=False, already_collected=True)

        current.collected_symbols.append(
            CollectedSymbol(
                symbol_id=symbol_id,
                icon=icon,
                description=description,
                collected_at=self._clock.now_iso(),
            )
        )
        resolution = self._resolve(current)
        await self._commit(stored, resolution)
        logger.info("Session %s collected symbol %s", session_id, symbol_id)
        return CollectResult(symbol_id=symbol_id, collected=True, newly_earned=resolution.newly_earned)

    async def collect_symbol_by_code(self, session_id: str, code: str) -> CollectResult:
        symbol = self._catalog.symbol_for_code(code)
        if symbol is None:
            raise ValidationError(f"Unknown symbol code: {code!r}", field="code")
        return await self.record_symbol_collected(session_id, symbol.symbol_id, symbol.icon, symbol.description)

    # ── Decryption ──────────────────────────────────────────────

    async def attempt_decryption(
        self,
        session_id: str,
        challenge_id: str,
        proposed_sequence: Iterable[str],
    ) -> DecryptionResult:
        challenge = self._catalog.challenge_by_id(challenge_id)
        if challenge is None:
            raise ValidationError(f"Unknown decryption challenge: {challenge_id!r}", field="challenge_id")
        proposed = [str(s).strip() for s in proposed_sequence or ()]
        if not proposed:
            raise ValidationError("Proposed sequence must not be empty", field="proposed_sequence")

        stored = await self._load(session_id)
        current = self._resolve(stored).session
        attempts = current.decryption_attempts.get(challenge_id, 0)
        expected = list(challenge.correct_sequence)

        if challenge_id in current.solved_decryptions:
            return DecryptionResult(
                solved=True,
                correct_count=len(expected),
                attempts=attempts,
                already_solved=True,
                message=challenge.solved_message,
            )

        if len(proposed) != len(expected):
            correct = 0
        else:
            correct = sum(1 for got, want in zip(proposed, expected) if got == want)

        if correct == len(expected):
            current.solved_decryptions.add(challenge_id)
            resolution = self._resolve(current)
            await self._commit(stored, resolution)
            logger.info("Session %s solved %s after %d failed attempts", session_id, challenge_id, attempts)
            return DecryptionResult(
                solved=True,
                correct_count=correct,
                attempts=attempts,
                message=challenge.solved_message,
                newly_earned=resolution.newly_earned,
            )

        attempts += 1
        current.decryption_attempts[challenge_id] = attempts
        await self._commit(stored, self._resolve(current))
        return DecryptionResult(solved=False, correct_count=correct, attempts=attempts)

    # ── Crises & bonus quests ───────────────────────────────────

    async def resolve_crisis(self, session_id: str, crisis_key: str) -> CrisisResult:
        if crisis_key not in self._catalog.crisis_flags():
            raise ValidationError(f"Unknown crisis: {crisis_key!r}", field="crisis_key")

        stored = await self._load(session_id)
        current = self._resolve(stored).session
        if current.crisis_status.get(crisis_key):
            return CrisisResult(crisis_key=crisis_key, already_resolved=True)

        current.crisis_status[crisis_key] = True
        resolution = self._resolve(current)

        # Only the flag is ours to set; badge lists ride along guarded by revision
        fields = {f"crisisStatus.{crisis_key}": True, "lastUpdated": self._clock.now_iso()}
        expected_revision = None
        if "crisisStatus" in stored.legacy_fields:
            # A dotted path cannot be set inside a stringified or keyed-array value
            fields = {"crisisStatus": dict(current.crisis_status), "lastUpdated": fields["lastUpdated"]}
            expected_revision = stored.revision
        if resolution.newly_earned:
            fields.update(
                resolution.session.document_fields("earnedBadges", "bonusOppdragBadges", "eventyrBadges")
            )
            expected_revision = stored.revision
        await self._store.patch_session_fields(session_id, fields, expected_revision=expected_revision)
        logger.info("Session %s resolved crisis %s", session_id, crisis_key)

        self._announce(session_id, resolution.newly_earned)
        return CrisisResult(crisis_key=crisis_key, newly_earned=resolution.newly_earned)

    async def confirm_bonus_quest(self, session_id: str, day: int) -> SubmissionResult:
        """Guardian confirmation for a bonus quest that has no code."""
        _check_day(day)
        mission = self._catalog.mission_for_day(day)
        if mission is None or mission.bonus is None:
            raise ValidationError(f"Day {day} has no bonus quest", field="day")
        if mission.bonus.validation != "forelder":
            raise ValidationError(f"Bonus quest on day {day} is completed with a code", field="day")

        current = await self._view(session_id)
        if current is None:
            raise SessionNotFoundError(session_id)
        if not is_bonus_accessible(current, day):
            return SubmissionResult(accepted=False, day=day, is_bonus=True, reason="locked")

        result = await self.resolve_crisis(session_id, mission.bonus.flag)
        return SubmissionResult(
            accepted=True,
            day=day,
            is_bonus=True,
            already_submitted=result.already_resolved,
            newly_earned=result.newly_earned,
        )

    # ── Personalization & UI tracking ───────────────────────────

    async def mark_email_viewed(self, session_id: str, day: int, bonus: bool = False) -> bool:
        _check_day(day)
        stored = await self._load(session_id)
        current = self._resolve(stored).session
        viewed = current.viewed_bonus_emails if bonus else current.viewed_emails
        if day in viewed:
            return False
        viewed.add(day)
        await self._commit(stored, self._resolve(current))
        return True

    async def set_player_names(self, session_id: str, names: Iterable[str]) -> list[str]:
        cleaned = _clean_names(names, MAX_PLAYER_NAMES, "player_names")
        _check_session_id(session_id)
        await self._store.patch_session_fields(session_id, {"playerNames": cleaned})
        return cleaned

    async def set_friend_names(self, session_id: str, names: Iterable[str]) -> list[str]:
        cleaned = _clean_names(names, MAX_FRIEND_NAMES, "friend_names")
        _check_session_id(session_id)
        await self._store.patch_session_fields(session_id, {"friendNames": cleaned})
        return cleaned

    # ── Read-only projections ───────────────────────────────────

    async def get_visible_content(self, session_id: str) -> VisibleContent:
        session = await self._view(session_id)
        if session is None:
            return VisibleContent()
        return visible_content(session)

    async def get_completed_days(self, session_id: str) -> set[int]:
        session = await self._view(session_id)
        return set(session.completed_days) if session is not None else set()

    async def accessible_days(self, session_id: str) -> list[int]:
        session = await self._view(session_id) or Session(session_id=session_id)
        return accessible_days(session, self._catalog, self._clock.season_day())

    async def get_summary(self, session_id: str) -> ProgressionSummary:
        session = await self._view(session_id) or Session(session_id=session_id)
        return progression_summary(session, self._catalog)

    async def get_story_arc_progress(self, session_id: str, arc_id: str) -> ArcProgress | None:
        session = await self._view(session_id) or Session(session_id=session_id)
        return story_arc_progress(session, self._catalog, arc_id)

    def mission_for_day(self, day: int) -> Mission | None:
        return self._catalog.mission_for_day(day)
