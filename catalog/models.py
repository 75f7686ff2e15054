"""Content definitions: missions, story arcs, badges and symbols."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_tuple(value: Any) -> tuple:
    if value is None:
        return ()
    if isinstance(value, (list, tuple, set)):
        return tuple(value)
    return (value,)


def _as_int_tuple(value: Any) -> tuple[int, ...]:
    return tuple(int(v) for v in _as_tuple(value))


def _as_text_tuple(value: Any) -> tuple[str, ...]:
    return tuple(_as_text(v) for v in _as_tuple(value) if v is not None)


def normalize_code(code: str) -> str:
    """Codes are compared trimmed and upper-cased."""
    return _as_text(code).strip().upper()


@dataclass(frozen=True)
class RevealSet:
    topics: tuple[str, ...] = ()
    files: tuple[str, ...] = ()
    modules: tuple[str, ...] = ()
    symbols: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict | None) -> RevealSet:
        data = data or {}
        return cls(
            topics=_as_text_tuple(data.get("topics")),
            files=_as_text_tuple(data.get("files")),
            modules=_as_text_tuple(data.get("modules")),
            symbols=_as_text_tuple(data.get("symbols")),
        )


@dataclass(frozen=True)
class Requirements:
    topics: tuple[str, ...] = ()
    completed_days: tuple[int, ...] = ()

    @classmethod
    def from_dict(cls, data: dict | None) -> Requirements:
        data = data or {}
        return cls(
            topics=_as_text_tuple(data.get("topics")),
            completed_days=_as_int_tuple(data.get("completed_days")),
        )


@dataclass(frozen=True)
class BonusQuest:
    """Optional side quest attached to a mission day.

    ``validation`` is ``"kode"`` (a second code is submitted) or
    ``"forelder"`` (a guardian confirms completion). Either way completion
    is recorded as ``flag`` in the session's crisis status.
    """

    title: str
    flag: str
    validation: str = "kode"
    code: str = ""
    badge_icon: str = "star"

    @classmethod
    def from_dict(cls, data: dict) -> BonusQuest:
        return cls(
            title=_as_text(data.get("title")),
            flag=_as_text(data.get("flag")),
            validation=_as_text(data.get("validation", "kode")),
            code=normalize_code(data.get("code", "")),
            badge_icon=_as_text(data.get("badge_icon", "star")),
        )


@dataclass(frozen=True)
class DecryptionChallenge:
    challenge_id: str
    correct_sequence: tuple[str, ...]
    unlocks_files: tuple[str, ...] = ()
    solved_message: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> DecryptionChallenge:
        return cls(
            challenge_id=_as_text(data.get("id")),
            correct_sequence=_as_text_tuple(data.get("correct_sequence")),
            unlocks_files=_as_text_tuple(data.get("unlocks_files")),
            solved_message=_as_text(data.get("solved_message")),
        )


@dataclass(frozen=True)
class ArcMembership:
    arc_id: str
    phase: int

    @classmethod
    def from_dict(cls, data: dict) -> ArcMembership:
        return cls(arc_id=_as_text(data.get("id")), phase=int(data.get("phase", 0)))


@dataclass(frozen=True)
class Mission:
    day: int
    title: str
    code: str
    reveals: RevealSet = field(default_factory=RevealSet)
    requires: Requirements = field(default_factory=Requirements)
    bonus: BonusQuest | None = None
    decryption: DecryptionChallenge | None = None
    arc: ArcMembership | None = None

    @classmethod
    def from_dict(cls, data: dict) -> Mission:
        bonus = data.get("bonus")
        decryption = data.get("decryption")
        arc = data.get("arc")
        return cls(
            day=int(data.get("day", 0)),
            title=_as_text(data.get("title")),
            code=normalize_code(data.get("code", "")),
            reveals=RevealSet.from_dict(data.get("reveals")),
            requires=Requirements.from_dict(data.get("requires")),
            bonus=BonusQuest.from_dict(bonus) if bonus else None,
            decryption=DecryptionChallenge.from_dict(decryption) if decryption else None,
            arc=ArcMembership.from_dict(arc) if arc else None,
        )


@dataclass(frozen=True)
class StoryArc:
    arc_id: str
    name: str
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> StoryArc:
        return cls(
            arc_id=_as_text(data.get("id")),
            name=_as_text(data.get("name")),
            description=_as_text(data.get("description")),
        )


# Condition kinds a badge can be unlocked by
CONDITION_TYPES = (
    "bonusoppdrag",
    "eventyr",
    "allDecryptionsSolved",
    "allSymbolsCollected",
    "allQuestsCompleted",
)


@dataclass(frozen=True)
class BadgeCondition:
    type: str
    day: int | None = None
    arc_id: str = ""
    challenge_ids: tuple[str, ...] = ()
    count: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> BadgeCondition:
        day = data.get("day")
        return cls(
            type=_as_text(data.get("type")),
            day=int(day) if day is not None else None,
            arc_id=_as_text(data.get("arc_id")),
            challenge_ids=_as_text_tuple(data.get("challenge_ids")),
            count=int(data.get("count", 0)),
        )


@dataclass(frozen=True)
class Badge:
    badge_id: str
    name: str
    icon: str
    type: str
    condition: BadgeCondition
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> Badge:
        return cls(
            badge_id=_as_text(data.get("id")),
            name=_as_text(data.get("name")),
            icon=_as_text(data.get("icon")),
            type=_as_text(data.get("type")),
            condition=BadgeCondition.from_dict(data.get("condition") or {}),
            description=_as_text(data.get("description")),
        )


@dataclass(frozen=True)
class SymbolDefinition:
    symbol_id: str
    icon: str
    color: str
    description: str = ""
    code: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> SymbolDefinition:
        return cls(
            symbol_id=_as_text(data.get("id")),
            icon=_as_text(data.get("icon")),
            color=_as_text(data.get("color")),
            description=_as_text(data.get("description")),
            code=normalize_code(data.get("code", "")),
        )
