"""Catalog registry, YAML loading and structural validation."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Iterable

import yaml

from .models import (
    CONDITION_TYPES,
    Badge,
    DecryptionChallenge,
    Mission,
    StoryArc,
    SymbolDefinition,
    normalize_code,
)

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"

TOTAL_DAYS = 24
BADGE_ICONS = frozenset({"coin", "heart", "zap", "trophy", "gift", "star"})


class CatalogError(Exception):
    """Raised when catalog definitions are structurally invalid."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("Invalid catalog: " + "; ".join(problems))


class Catalog:
    """Read-only registry of missions, story arcs, badges and symbols."""

    def __init__(
        self,
        missions: Iterable[Mission] = (),
        story_arcs: Iterable[StoryArc] = (),
        badges: Iterable[Badge] = (),
        symbols: Iterable[SymbolDefinition] = (),
    ):
        self._missions = tuple(sorted(missions, key=lambda m: m.day))
        self._story_arcs = tuple(story_arcs)
        self._badges = tuple(badges)
        self._symbols = tuple(symbols)

        self._by_day = MappingProxyType({m.day: m for m in self._missions})
        self._by_code = MappingProxyType({m.code: m for m in self._missions if m.code})
        self._by_bonus_code = MappingProxyType({
            m.bonus.code: m for m in self._missions if m.bonus and m.bonus.code
        })
        self._arcs = MappingProxyType({a.arc_id: a for a in self._story_arcs})
        self._badges_by_id = MappingProxyType({b.badge_id: b for b in self._badges})
        self._challenges = MappingProxyType({
            m.decryption.challenge_id: m.decryption for m in self._missions if m.decryption
        })
        self._symbols_by_id = MappingProxyType({s.symbol_id: s for s in self._symbols})

    # ── Missions ────────────────────────────────────────────────

    def mission_for_day(self, day: int) -> Mission | None:
        return self._by_day.get(day)

    def all_missions(self) -> tuple[Mission, ...]:
        return self._missions

    def mission_for_code(self, code: str) -> Mission | None:
        return self._by_code.get(normalize_code(code))

    def mission_for_bonus_code(self, code: str) -> Mission | None:
        return self._by_bonus_code.get(normalize_code(code))

    def bonus_missions(self) -> tuple[Mission, ...]:
        return tuple(m for m in self._missions if m.bonus)

    def crisis_flags(self) -> frozenset[str]:
        """All flags a bonus quest can set in a session's crisis status."""
        return frozenset(m.bonus.flag for m in self._missions if m.bonus)

    def module_ids(self) -> frozenset[str]:
        return frozenset(mod for m in self._missions for mod in m.reveals.modules)

    # ── Story arcs ──────────────────────────────────────────────

    def story_arc_by_id(self, arc_id: str) -> StoryArc | None:
        return self._arcs.get(arc_id)

    def all_story_arcs(self) -> tuple[StoryArc, ...]:
        return self._story_arcs

    def arc_days(self, arc_id: str) -> tuple[int, ...]:
        """Mission days belonging to an arc, ordered by phase."""
        members = [m for m in self._missions if m.arc and m.arc.arc_id == arc_id]
        return tuple(m.day for m in sorted(members, key=lambda m: m.arc.phase))

    # ── Badges ──────────────────────────────────────────────────

    def badge_by_id(self, badge_id: str) -> Badge | None:
        return self._badges_by_id.get(badge_id)

    def all_badges(self) -> tuple[Badge, ...]:
        return self._badges

    # ── Decryption & symbols ────────────────────────────────────

    def challenge_by_id(self, challenge_id: str) -> DecryptionChallenge | None:
        return self._challenges.get(challenge_id)

    def all_challenges(self) -> tuple[DecryptionChallenge, ...]:
        return tuple(self._challenges.values())

    def symbol_by_id(self, symbol_id: str) -> SymbolDefinition | None:
        return self._symbols_by_id.get(symbol_id)

    def symbol_for_code(self, code: str) -> SymbolDefinition | None:
        wanted = normalize_code(code)
        if not wanted:
            return None
        for symbol in self._symbols:
            if symbol.code == wanted:
                return symbol
        return None

    def all_symbols(self) -> tuple[SymbolDefinition, ...]:
        return self._symbols


# ── Validation ──────────────────────────────────────────────────


def _topic_cycles(missions: tuple[Mission, ...]) -> list[str]:
    """Find topics that (transitively) require themselves."""
    depends_on: dict[str, set[str]] = {}
    for mission in missions:
        for topic in mission.reveals.topics:
            depends_on.setdefault(topic, set()).update(mission.requires.topics)

    problems: list[str] = []
    visiting: set[str] = set()
    done: set[str] = set()

    def visit(topic: str, path: list[str]) -> None:
        if topic in done:
            return
        if topic in visiting:
            cycle = path[path.index(topic):] + [topic]
            problems.append("Topic dependency cycle: " + " -> ".join(cycle))
            return
        visiting.add(topic)
        for dep in sorted(depends_on.get(topic, ())):
            visit(dep, path + [topic])
        visiting.discard(topic)
        done.add(topic)

    for topic in sorted(depends_on):
        visit(topic, [])
    return problems


def validate_catalog(catalog: Catalog, expected_days: int | None = TOTAL_DAYS) -> list[str]:
    """Return a list of structural problems; empty when the catalog is sound."""
    problems: list[str] = []
    missions = catalog.all_missions()

    days = [m.day for m in missions]
    if expected_days is not None and len(missions) != expected_days:
        problems.append(f"Expected {expected_days} missions, found {len(missions)}")
    for day in sorted({d for d in days if days.count(d) > 1}):
        problems.append(f"Duplicate mission day {day}")
    for day in days:
        if not 1 <= day <= TOTAL_DAYS:
            problems.append(f"Mission day {day} outside 1..{TOTAL_DAYS}")

    seen_codes: dict[str, int] = {}
    for mission in missions:
        codes = [mission.code]
        if mission.bonus and mission.bonus.code:
            codes.append(mission.bonus.code)
        for code in codes:
            if not code:
                problems.append(f"Day {mission.day} has an empty code")
            elif code in seen_codes:
                problems.append(f"Code {code!r} used by day {seen_codes[code]} and day {mission.day}")
            else:
                seen_codes[code] = mission.day

    revealed = {t for m in missions for t in m.reveals.topics}
    for mission in missions:
        for topic in mission.requires.topics:
            if topic not in revealed:
                problems.append(f"Day {mission.day} requires topic {topic!r} that no mission reveals")
        for day in mission.requires.completed_days:
            if catalog.mission_for_day(day) is None:
                problems.append(f"Day {mission.day} requires unknown day {day}")
            elif day >= mission.day:
                problems.append(f"Day {mission.day} requires later day {day}")
    problems.extend(_topic_cycles(missions))

    phases: dict[str, list[int]] = {}
    for mission in missions:
        if mission.arc is None:
            continue
        if catalog.story_arc_by_id(mission.arc.arc_id) is None:
            problems.append(f"Day {mission.day} references unknown story arc {mission.arc.arc_id!r}")
            continue
        phases.setdefault(mission.arc.arc_id, []).append(mission.arc.phase)
    for arc_id, arc_phases in phases.items():
        if sorted(arc_phases) != list(range(1, len(arc_phases) + 1)):
            problems.append(f"Story arc {arc_id!r} phases must run 1..N, got {sorted(arc_phases)}")

    challenge_ids: set[str] = set()
    for mission in missions:
        bonus = mission.bonus
        if bonus is not None:
            if not bonus.flag:
                problems.append(f"Bonus quest on day {mission.day} has no flag")
            if bonus.validation not in ("kode", "forelder"):
                problems.append(f"Bonus quest on day {mission.day} has unknown validation {bonus.validation!r}")
            if bonus.validation == "kode" and not bonus.code:
                problems.append(f"Bonus quest on day {mission.day} is code-validated but has no code")
            if bonus.badge_icon not in BADGE_ICONS:
                problems.append(f"Bonus quest on day {mission.day} has invalid badge icon {bonus.badge_icon!r}")
        challenge = mission.decryption
        if challenge is not None:
            if challenge.challenge_id in challenge_ids:
                problems.append(f"Duplicate decryption challenge {challenge.challenge_id!r}")
            challenge_ids.add(challenge.challenge_id)
            if not challenge.correct_sequence:
                problems.append(f"Decryption challenge {challenge.challenge_id!r} has an empty sequence")

    for badge in catalog.all_badges():
        if badge.condition.type not in CONDITION_TYPES:
            problems.append(f"Badge {badge.badge_id!r} has unknown condition {badge.condition.type!r}")

    return problems


def _warn_dangling_badges(catalog: Catalog) -> None:
    """Badges pointing at missing content can never be earned; say so once."""
    for badge in catalog.all_badges():
        cond = badge.condition
        if cond.type == "bonusoppdrag":
            mission = catalog.mission_for_day(cond.day) if cond.day is not None else None
            if mission is None or mission.bonus is None:
                logger.warning("Badge %s references day %s without a bonus quest", badge.badge_id, cond.day)
        elif cond.type == "eventyr" and catalog.story_arc_by_id(cond.arc_id) is None:
            logger.warning("Badge %s references unknown story arc %s", badge.badge_id, cond.arc_id)
        elif cond.type == "allDecryptionsSolved":
            for challenge_id in cond.challenge_ids:
                if catalog.challenge_by_id(challenge_id) is None:
                    logger.warning("Badge %s references unknown challenge %s", badge.badge_id, challenge_id)


# ── Loading ─────────────────────────────────────────────────────


def _read_yaml_list(path: Path, key: str) -> list[dict]:
    if not path.exists():
        return []
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    items = data.get(key, []) if isinstance(data, dict) else data
    return [item for item in items or [] if isinstance(item, dict)]


def load_catalog(
    data_dir: str | Path | None = None,
    expected_days: int | None = TOTAL_DAYS,
) -> Catalog:
    """Build and validate a catalog from the YAML files in ``data_dir``."""
    data_dir = Path(data_dir) if data_dir is not None else DATA_DIR

    missions_path = data_dir / "missions.yaml"
    if not missions_path.exists():
        raise FileNotFoundError(f"Catalog not found: {missions_path}")

    catalog = Catalog(
        missions=[Mission.from_dict(d) for d in _read_yaml_list(missions_path, "missions")],
        story_arcs=[StoryArc.from_dict(d) for d in _read_yaml_list(data_dir / "story_arcs.yaml", "story_arcs")],
        badges=[Badge.from_dict(d) for d in _read_yaml_list(data_dir / "badges.yaml", "badges")],
        symbols=[SymbolDefinition.from_dict(d) for d in _read_yaml_list(data_dir / "symbols.yaml", "symbols")],
    )

    problems = validate_catalog(catalog, expected_days=expected_days)
    if problems:
        raise CatalogError(problems)
    _warn_dangling_badges(catalog)

    logger.debug(
        "Loaded catalog from %s: %d missions, %d arcs, %d badges",
        data_dir,
        len(catalog.all_missions()),
        len(catalog.all_story_arcs()),
        len(catalog.all_badges()),
    )
    return catalog


@lru_cache(maxsize=None)
def get_catalog() -> Catalog:
    """Process-wide catalog, built from the bundled data on first use."""
    return load_catalog()
