"""Tests for unlock resolution and derived views."""

from __future__ import annotations

import pytest

from catalog import (
    Badge,
    BadgeCondition,
    BonusQuest,
    Catalog,
    Mission,
    RevealSet,
    Requirements,
    load_catalog,
)
from progression.resolver import (
    accessible_days,
    is_accessible,
    progression_summary,
    resolve,
    story_arc_progress,
    visible_content,
)
from progression.session import CollectedSymbol, Session, SubmittedCode

NOW = "2025-12-10T08:00:00+00:00"


@pytest.fixture(scope="module")
def catalog() -> Catalog:
    return load_catalog()


def _with_codes(*codes: str) -> Session:
    return Session(session_id="fam", submitted_codes=[SubmittedCode(code=c) for c in codes])


def test_empty_session_resolves_to_nothing(catalog):
    result = resolve(Session(session_id="fam"), catalog, 24, now=NOW)
    assert result.newly_earned == []
    assert result.session.completed_days == set()
    content = visible_content(result.session)
    assert (content.topics, content.files, content.modules, content.symbols) == ({}, set(), set(), set())


def test_codes_map_to_days_case_insensitively(catalog):
    result = resolve(_with_codes("brevfugl", " SnoFnugg ", "WHATEVER"), catalog, 5, now=NOW)
    assert result.session.completed_days == {1, 3}
    assert result.session.topic_unlocks == {"brevfugler": 1, "snofall": 3}
    assert result.session.unlocked_modules == {"SNOFALL_TV"}
    assert "rapporter/brevfugl_logg.txt" in result.session.unlocked_files


def test_resolving_twice_is_idempotent(catalog):
    first = resolve(_with_codes("BREVFUGL", "TANNHJUL", "RADIOSIGNAL", "ANTENNE"), catalog, 11, now=NOW)
    second = resolve(first.session, catalog, 11, now="2025-12-11T08:00:00+00:00")
    assert [b.badge_id for b in first.newly_earned] == ["antenne-ingenior"]
    assert second.newly_earned == []
    assert second.session.to_document() == first.session.to_document()


def test_input_session_is_not_modified(catalog):
    session = _with_codes("BREVFUGL")
    resolve(session, catalog, 1, now=NOW)
    assert session.completed_days == set()
    assert session.topic_unlocks == {}


def test_topic_keeps_first_unlock_day(catalog):
    session = _with_codes("BREVFUGL")
    session.topic_unlocks["brevfugler"] = 0
    result = resolve(session, catalog, 1, now=NOW)
    assert result.session.topic_unlocks["brevfugler"] == 0


def test_bonus_code_sets_flag_and_mirrors_badge(catalog):
    result = resolve(_with_codes("RADIOSIGNAL", "antenne"), catalog, 11, now=NOW)
    session = result.session
    assert session.crisis_status["antenna"] is True
    assert [(b.badge_id, b.timestamp) for b in session.earned_badges] == [("antenne-ingenior", NOW)]
    assert [(b.day, b.icon) for b in session.bonus_oppdrag_badges] == [(11, "zap")]


def test_solved_challenge_unlocks_its_files(catalog):
    session = Session(session_id="fam", solved_decryptions={"frosne-koder", "retired-puzzle"})
    result = resolve(session, catalog, 24, now=NOW)
    assert "kryptering/frosne_koder_losning.txt" in result.session.unlocked_files
    assert result.newly_earned == []


def test_all_decryptions_award_code_master(catalog):
    session = Session(
        session_id="fam",
        solved_decryptions={"frosne-koder", "stjernetegn", "hjertets-hemmelighet"},
    )
    assert [b.badge_id for b in resolve(session, catalog, 24, now=NOW).newly_earned] == ["kode-mester"]


def test_symbol_badge_needs_full_count(catalog):
    ids = [s.symbol_id for s in catalog.all_symbols()]
    session = Session(session_id="fam", collected_symbols=[CollectedSymbol(symbol_id=i) for i in ids[:8]])
    assert resolve(session, catalog, 24, now=NOW).newly_earned == []

    session.collected_symbols.append(CollectedSymbol(symbol_id=ids[8]))
    assert [b.badge_id for b in resolve(session, catalog, 24, now=NOW).newly_earned] == ["symbol-mester"]


def test_completing_every_day(catalog):
    codes = [m.code for m in catalog.all_missions()]
    result = resolve(_with_codes(*codes), catalog, 24, now=NOW)
    earned = {b.badge_id for b in result.newly_earned}
    assert "julekalender-fullfort" in earned
    assert {"brevfugl-detektiv", "oppfinner-assistent", "frost-vokter", "morket-beseirer"} <= earned
    assert {b.eventyr_id for b in result.session.eventyr_badges} == {
        "brevfugl-mysteriet", "iqs-oppfinnelser", "frosne-monster", "morkets-trussel",
    }
    assert progression_summary(result.session, catalog).is_complete


def test_already_earned_badge_is_not_awarded_again(catalog):
    first = resolve(_with_codes("RADIOSIGNAL", "ANTENNE"), catalog, 11, now=NOW)
    session = first.session
    session.crisis_status["antenna"] = True
    again = resolve(session, catalog, 11, now=NOW)
    assert again.newly_earned == []
    assert [b.badge_id for b in again.session.earned_badges].count("antenne-ingenior") == 1


def test_unknown_references_never_award():
    catalog = Catalog(
        missions=[Mission(day=1, title="A", code="A", bonus=BonusQuest(title="b", flag="f", code="B"))],
        badges=[
            Badge("arc", "Arc", "star", "eventyr", BadgeCondition(type="eventyr", arc_id="gone")),
            Badge("bonus", "Bonus", "star", "bonusoppdrag", BadgeCondition(type="bonusoppdrag", day=9)),
            Badge("dec", "Dec", "star", "decryption",
                  BadgeCondition(type="allDecryptionsSolved", challenge_ids=("gone",))),
            Badge("weird", "Weird", "star", "x", BadgeCondition(type="moonPhase")),
        ],
    )
    session = Session(
        session_id="fam",
        submitted_codes=[SubmittedCode(code="A"), SubmittedCode(code="B")],
        solved_decryptions={"gone"},
    )
    assert resolve(session, catalog, 24, now=NOW).newly_earned == []


class TestAccessibility:
    def test_date_gate(self, catalog):
        mission = catalog.mission_for_day(3)
        session = Session(session_id="fam")
        assert not is_accessible(mission, session, 2)
        assert is_accessible(mission, session, 3)

    def test_required_days_and_topics(self, catalog):
        day9 = catalog.mission_for_day(9)
        day5 = catalog.mission_for_day(5)
        empty = resolve(Session(session_id="fam"), catalog, 24, now=NOW).session
        assert not is_accessible(day9, empty, 24)
        assert not is_accessible(day5, empty, 24)

        done = resolve(_with_codes("SNOFNUGG", "BREVFUGL"), catalog, 24, now=NOW).session
        assert is_accessible(day9, done, 24)
        assert is_accessible(day5, done, 24)

    def test_accessible_days_listing(self):
        catalog = Catalog(missions=[
            Mission(day=1, title="A", code="A", reveals=RevealSet(topics=("t",))),
            Mission(day=2, title="B", code="B", requires=Requirements(topics=("t",))),
            Mission(day=3, title="C", code="C"),
        ])
        assert accessible_days(Session(session_id="fam"), catalog, 2) == [1]


def test_story_arc_progress(catalog):
    session = resolve(_with_codes("BREVFUGL", "POSTKASSE"), catalog, 5, now=NOW).session
    progress = story_arc_progress(session, catalog, "brevfugl-mysteriet")
    assert progress.completed_days == [1, 5]
    assert progress.total_days == 3
    assert progress.percent == 67
    assert not progress.is_complete
    assert story_arc_progress(session, catalog, "missing") is None


def test_progression_summary_counts(catalog):
    session = resolve(_with_codes("RADIOSIGNAL", "ANTENNE", "SNOFNUGG"), catalog, 11, now=NOW).session
    summary = progression_summary(session, catalog)
    assert summary.main_quests_completed == 2
    assert summary.main_quests_percent == 8
    assert summary.bonus_quests_completed == 1
    assert summary.bonus_quests_available == 1
    assert summary.badges_earned == 1
    assert summary.badges_total == len(catalog.all_badges())
    assert (summary.modules_unlocked, summary.modules_total) == (1, 5)
    assert not summary.is_complete
