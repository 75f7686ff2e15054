"""Session state and its document representation.

A session is stored as a single document with camelCase field names. The
read path is deliberately forgiving: map fields may arrive as objects, as
arrays of keyed items (remote store) or as stringified JSON left behind by
older clients. Everything is normalized into the dataclasses below.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CRISIS_STATUS = {"antenna": False, "inventory": False}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Normalizers ─────────────────────────────────────────────────


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _unwrap(value: Any, field_name: str) -> Any:
    """Decode legacy fields that were saved as a JSON string."""
    if not isinstance(value, str):
        return value
    if not value.strip():
        return None
    try:
        return json.loads(value)
    except ValueError:
        logger.warning("Ignoring unparseable legacy value for %s", field_name)
        return None


def _as_timestamp(value: Any) -> str:
    # Older records stored epoch milliseconds
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()
    return _as_text(value)


def _as_int_set(value: Any, field_name: str) -> set[int]:
    value = _unwrap(value, field_name)
    if not isinstance(value, (list, tuple, set)):
        return set()
    return {n for n in (_as_int(v) for v in value) if n is not None}


def _as_str_set(value: Any, field_name: str) -> set[str]:
    value = _unwrap(value, field_name)
    if not isinstance(value, (list, tuple, set)):
        return set()
    return {_as_text(v) for v in value if v is not None and _as_text(v)}


def _as_str_list(value: Any, field_name: str) -> list[str]:
    value = _unwrap(value, field_name)
    if not isinstance(value, (list, tuple)):
        return []
    return [_as_text(v) for v in value if v is not None]


def _as_dict_list(value: Any, field_name: str) -> list[dict]:
    value = _unwrap(value, field_name)
    if not isinstance(value, (list, tuple)):
        return []
    return [v for v in value if isinstance(v, dict)]


def _as_keyed_map(
    value: Any,
    field_name: str,
    key_field: str,
    value_field: str,
    key_prefix: str,
) -> dict[str, int]:
    """Read a str -> int map stored either as an object or as keyed items.

    Keyed items look like ``{"_key": "decrypt-x", "challengeId": "x",
    "attemptCount": 2}``; the explicit key field wins over ``_key``.
    """
    value = _unwrap(value, field_name)
    result: dict[str, int] = {}
    if isinstance(value, dict):
        for key, raw in value.items():
            n = _as_int(raw)
            if n is not None:
                result[_as_text(key)] = n
        return result
    if not isinstance(value, (list, tuple)):
        return result
    for item in value:
        if not isinstance(item, dict):
            continue
        key = _as_text(item.get(key_field))
        if not key:
            raw_key = _as_text(item.get("_key"))
            key = raw_key[len(key_prefix):] if raw_key.startswith(key_prefix) else raw_key
        n = _as_int(item.get(value_field))
        if key and n is not None:
            result[key] = n
    return result


def _as_bool_map(value: Any, field_name: str, key_prefix: str = "") -> dict[str, bool]:
    """Read a str -> bool map stored as an object or as keyed items.

    Keyed items look like ``{"_key": "crisis-antenna", "flag": "antenna",
    "resolved": true}``.
    """
    value = _unwrap(value, field_name)
    if isinstance(value, dict):
        return {_as_text(k): bool(v) for k, v in value.items() if not _as_text(k).startswith("_")}
    if not isinstance(value, (list, tuple)):
        return {}
    result: dict[str, bool] = {}
    for item in value:
        if not isinstance(item, dict):
            continue
        key = _as_text(item.get("flag") or item.get("key"))
        if not key:
            raw_key = _as_text(item.get("_key"))
            key = raw_key[len(key_prefix):] if key_prefix and raw_key.startswith(key_prefix) else raw_key
        if key:
            result[key] = bool(item.get("resolved", item.get("value", False)))
    return result


# ── Records ─────────────────────────────────────────────────────


@dataclass
class SubmittedCode:
    code: str
    submitted_at: str = ""

    @classmethod
    def from_document(cls, data: dict) -> SubmittedCode:
        return cls(
            code=_as_text(data.get("code") or data.get("kode")),
            submitted_at=_as_timestamp(data.get("submittedAt", data.get("dato", ""))),
        )

    def to_document(self) -> dict:
        return {"code": self.code, "submittedAt": self.submitted_at}


@dataclass
class EarnedBadge:
    badge_id: str
    timestamp: str = ""

    @classmethod
    def from_document(cls, data: dict) -> EarnedBadge:
        return cls(
            badge_id=_as_text(data.get("badgeId")),
            timestamp=_as_timestamp(data.get("timestamp", "")),
        )

    def to_document(self) -> dict:
        return {"badgeId": self.badge_id, "timestamp": self.timestamp}


@dataclass
class CollectedSymbol:
    symbol_id: str
    icon: str = ""
    description: str = ""
    collected_at: str = ""

    @classmethod
    def from_document(cls, data: dict) -> CollectedSymbol:
        return cls(
            symbol_id=_as_text(data.get("symbolId")),
            icon=_as_text(data.get("icon", data.get("symbolIcon", ""))),
            description=_as_text(data.get("description")),
            collected_at=_as_timestamp(data.get("collectedAt", "")),
        )

    def to_document(self) -> dict:
        return {
            "symbolId": self.symbol_id,
            "icon": self.icon,
            "description": self.description,
            "collectedAt": self.collected_at,
        }


@dataclass
class BonusBadgeRecord:
    day: int
    icon: str = ""
    name: str = ""

    def to_document(self) -> dict:
        return {"day": self.day, "icon": self.icon, "navn": self.name}


@dataclass
class EventyrBadgeRecord:
    eventyr_id: str
    icon: str = ""
    name: str = ""

    def to_document(self) -> dict:
        return {"eventyrId": self.eventyr_id, "icon": self.icon, "navn": self.name}


# ── Session ─────────────────────────────────────────────────────


@dataclass
class Session:
    """One family's progression record."""

    session_id: str
    authenticated: bool = False

    # Accepted codes, append-only
    submitted_codes: list[SubmittedCode] = field(default_factory=list)

    # Derived by the resolver
    completed_days: set[int] = field(default_factory=set)
    topic_unlocks: dict[str, int] = field(default_factory=dict)  # topic -> day
    unlocked_files: set[str] = field(default_factory=set)
    unlocked_modules: set[str] = field(default_factory=set)
    revealed_symbols: set[str] = field(default_factory=set)

    # UI tracking
    viewed_emails: set[int] = field(default_factory=set)
    viewed_bonus_emails: set[int] = field(default_factory=set)

    # Puzzles
    collected_symbols: list[CollectedSymbol] = field(default_factory=list)
    solved_decryptions: set[str] = field(default_factory=set)
    decryption_attempts: dict[str, int] = field(default_factory=dict)
    failed_attempts: dict[int, int] = field(default_factory=dict)  # day -> count
    crisis_status: dict[str, bool] = field(default_factory=lambda: dict(DEFAULT_CRISIS_STATUS))

    # Badges
    earned_badges: list[EarnedBadge] = field(default_factory=list)
    bonus_oppdrag_badges: list[BonusBadgeRecord] = field(default_factory=list)
    eventyr_badges: list[EventyrBadgeRecord] = field(default_factory=list)

    # Personalization
    player_names: list[str] = field(default_factory=list)
    friend_names: list[str] = field(default_factory=list)

    last_updated: str = ""

    # Storage revision of the document this was read from; not stored in it
    revision: str | None = None

    # Fields whose stored shape was not a plain object
    legacy_fields: set[str] = field(default_factory=set, compare=False, repr=False)

    def collected_symbol_ids(self) -> set[str]:
        return {s.symbol_id for s in self.collected_symbols}

    def earned_badge_ids(self) -> set[str]:
        return {b.badge_id for b in self.earned_badges}

    def has_code(self, code: str) -> bool:
        wanted = code.strip().upper()
        return any(c.code.strip().upper() == wanted for c in self.submitted_codes)

    # ── Document mapping ────────────────────────────────────────

    def to_document(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "authenticated": self.authenticated,
            "submittedCodes": [c.to_document() for c in self.submitted_codes],
            "completedDays": sorted(self.completed_days),
            "topicUnlocks": dict(sorted(self.topic_unlocks.items())),
            "unlockedFiles": sorted(self.unlocked_files),
            "unlockedModules": sorted(self.unlocked_modules),
            "revealedSymbols": sorted(self.revealed_symbols),
            "viewedEmails": sorted(self.viewed_emails),
            "viewedBonusEmails": sorted(self.viewed_bonus_emails),
            "collectedSymbols": [s.to_document() for s in self.collected_symbols],
            "solvedDecryptions": sorted(self.solved_decryptions),
            "decryptionAttempts": dict(sorted(self.decryption_attempts.items())),
            "failedAttempts": {str(day): n for day, n in sorted(self.failed_attempts.items())},
            "crisisStatus": dict(self.crisis_status),
            "earnedBadges": [b.to_document() for b in self.earned_badges],
            "bonusOppdragBadges": [b.to_document() for b in self.bonus_oppdrag_badges],
            "eventyrBadges": [b.to_document() for b in self.eventyr_badges],
            "playerNames": list(self.player_names),
            "friendNames": list(self.friend_names),
            "lastUpdated": self.last_updated,
        }

    def document_fields(self, *names: str) -> dict[str, Any]:
        """Subset of the document, for narrow patches."""
        doc = self.to_document()
        return {name: doc[name] for name in names}

    @classmethod
    def from_document(cls, data: dict, session_id: str | None = None) -> Session:
        crisis = dict(DEFAULT_CRISIS_STATUS)
        crisis.update(_as_bool_map(data.get("crisisStatus"), "crisisStatus", "crisis-"))

        failed = _as_keyed_map(data.get("failedAttempts"), "failedAttempts", "day", "attemptCount", "failed-")
        failed_by_day = {n: count for n, count in ((_as_int(k), v) for k, v in failed.items()) if n is not None}

        session = cls(
            session_id=_as_text(data.get("sessionId")) or session_id or "",
            authenticated=bool(data.get("authenticated", False)),
            submitted_codes=[
                SubmittedCode.from_document(d)
                for d in _as_dict_list(data.get("submittedCodes"), "submittedCodes")
            ],
            completed_days=_as_int_set(data.get("completedDays"), "completedDays"),
            topic_unlocks=_as_keyed_map(data.get("topicUnlocks"), "topicUnlocks", "topic", "day", "topic-"),
            unlocked_files=_as_str_set(data.get("unlockedFiles"), "unlockedFiles"),
            unlocked_modules=_as_str_set(data.get("unlockedModules"), "unlockedModules"),
            revealed_symbols=_as_str_set(data.get("revealedSymbols"), "revealedSymbols"),
            viewed_emails=_as_int_set(data.get("viewedEmails"), "viewedEmails"),
            viewed_bonus_emails=(
                _as_int_set(data.get("viewedBonusEmails"), "viewedBonusEmails")
                | _as_int_set(data.get("viewedBonusOppdragEmails"), "viewedBonusOppdragEmails")
            ),
            solved_decryptions=_as_str_set(data.get("solvedDecryptions"), "solvedDecryptions"),
            decryption_attempts=_as_keyed_map(
                data.get("decryptionAttempts"), "decryptionAttempts", "challengeId", "attemptCount", "decrypt-"
            ),
            failed_attempts=failed_by_day,
            crisis_status=crisis,
            player_names=_as_str_list(data.get("playerNames"), "playerNames"),
            friend_names=_as_str_list(data.get("friendNames"), "friendNames"),
            last_updated=_as_timestamp(data.get("lastUpdated", "")),
            revision=_as_text(data.get("_rev")) or None,
        )

        seen: set[str] = set()
        for item in _as_dict_list(data.get("collectedSymbols"), "collectedSymbols"):
            symbol = CollectedSymbol.from_document(item)
            if symbol.symbol_id and symbol.symbol_id not in seen:
                seen.add(symbol.symbol_id)
                session.collected_symbols.append(symbol)

        seen = set()
        for item in _as_dict_list(data.get("earnedBadges"), "earnedBadges"):
            badge = EarnedBadge.from_document(item)
            if badge.badge_id and badge.badge_id not in seen:
                seen.add(badge.badge_id)
                session.earned_badges.append(badge)

        for item in _as_dict_list(data.get("bonusOppdragBadges"), "bonusOppdragBadges"):
            day = _as_int(item.get("day"))
            if day is not None and all(b.day != day for b in session.bonus_oppdrag_badges):
                session.bonus_oppdrag_badges.append(
                    BonusBadgeRecord(day=day, icon=_as_text(item.get("icon")), name=_as_text(item.get("navn")))
                )

        for item in _as_dict_list(data.get("eventyrBadges"), "eventyrBadges"):
            eventyr_id = _as_text(item.get("eventyrId"))
            if eventyr_id and all(b.eventyr_id != eventyr_id for b in session.eventyr_badges):
                session.eventyr_badges.append(
                    EventyrBadgeRecord(
                        eventyr_id=eventyr_id, icon=_as_text(item.get("icon")), name=_as_text(item.get("navn"))
                    )
                )

        if "crisisStatus" in data and not isinstance(data["crisisStatus"], dict):
            session.legacy_fields.add("crisisStatus")

        return session


def new_session(session_id: str) -> Session:
    """All-defaults session, as created at registration."""
    return Session(session_id=session_id, last_updated=_now_iso())
