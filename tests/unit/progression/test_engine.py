"""Tests for the progression engine over the local session store."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from catalog import load_catalog
from progression.clock import Clock
from progression.core import ProgressionEngine
from progression.errors import ValidationError
from progression.notifier import BadgeAwarded
from progression.session import new_session
from sessionstore.base import BackendUnavailableError, SessionNotFoundError
from sessionstore.local import LocalSessionStore

CATALOG = load_catalog()
SID = "family-1"


def _engine(tmp_path: Path, day: int = 24, month: int = 12, **clock_kwargs) -> ProgressionEngine:
    clock = Clock(override_day=day, override_month=month, **clock_kwargs)
    return ProgressionEngine(LocalSessionStore(tmp_path), catalog=CATALOG, clock=clock)


def _collector(engine: ProgressionEngine) -> list[BadgeAwarded]:
    events: list[BadgeAwarded] = []
    engine.notifier.subscribe(events.append)
    return events


def test_day_one_code_then_duplicate(tmp_path: Path):
    engine = _engine(tmp_path, day=5)

    async def _run() -> None:
        await engine.create_session(SID)
        first = await engine.submit_code(SID, "brevfugl")
        assert (first.accepted, first.day, first.already_submitted) == (True, 1, False)
        assert await engine.get_completed_days(SID) == {1}

        again = await engine.submit_code(SID, " BREVFUGL ")
        assert (again.accepted, again.already_submitted) == (True, True)
        assert await engine.get_completed_days(SID) == {1}
        assert len((await engine.get_session(SID)).submitted_codes) == 1

    asyncio.run(_run())


def test_required_day_gates_mission(tmp_path: Path):
    engine = _engine(tmp_path, day=10)

    async def _run() -> None:
        await engine.create_session(SID)
        locked = await engine.submit_code(SID, "ISKRYSTALL")
        assert (locked.accepted, locked.day, locked.reason) == (False, 9, "locked")

        assert (await engine.submit_code(SID, "SNOFNUGG")).accepted
        opened = await engine.submit_code(SID, "ISKRYSTALL")
        assert opened.accepted
        assert await engine.get_completed_days(SID) == {3, 9}

    asyncio.run(_run())


def test_future_day_is_locked(tmp_path: Path):
    engine = _engine(tmp_path, day=2)

    async def _run() -> None:
        await engine.create_session(SID)
        result = await engine.submit_code(SID, "SNOFNUGG")
        assert (result.accepted, result.reason) == (False, "locked")
        assert await engine.accessible_days(SID) == [1, 2]

    asyncio.run(_run())


def test_nothing_opens_outside_december(tmp_path: Path):
    async def _run() -> None:
        november = _engine(tmp_path, day=5, month=11)
        await november.create_session(SID)
        assert (await november.submit_code(SID, "BREVFUGL")).reason == "locked"

        testing = _engine(tmp_path, day=5, month=11, test_mode=True)
        assert (await testing.submit_code(SID, "BREVFUGL")).accepted

    asyncio.run(_run())


def test_failed_attempts_are_counted_per_day_and_cleared(tmp_path: Path):
    engine = _engine(tmp_path, day=5)

    async def _run() -> None:
        await engine.create_session(SID)
        unknown = await engine.submit_code(SID, "JULENISSE")
        assert (unknown.accepted, unknown.reason) == (False, "unknown")

        await engine.submit_code(SID, "JULENISSE", day=1)
        wrong_day = await engine.submit_code(SID, "SNOFNUGG", day=1)
        assert (wrong_day.reason, wrong_day.failed_attempts) == ("incorrect", 2)
        assert (await engine.get_session(SID)).failed_attempts == {1: 2}

        assert (await engine.submit_code(SID, "BREVFUGL", day=1)).accepted
        assert (await engine.get_session(SID)).failed_attempts == {}

    asyncio.run(_run())


def test_empty_code_is_rejected(tmp_path: Path):
    engine = _engine(tmp_path)

    async def _run() -> None:
        await engine.create_session(SID)
        with pytest.raises(ValidationError):
            await engine.submit_code(SID, "   ")
        with pytest.raises(ValidationError):
            await engine.submit_code(SID, "BREVFUGL", day=25)

    asyncio.run(_run())


def test_visible_content_follows_completed_days(tmp_path: Path):
    engine = _engine(tmp_path, day=5)

    async def _run() -> None:
        await engine.create_session(SID)
        await engine.submit_code(SID, "BREVFUGL")
        await engine.submit_code(SID, "SNOFNUGG")
        content = await engine.get_visible_content(SID)
        assert content.topics == {"brevfugler": 1, "snofall": 3}
        assert content.modules == {"SNOFALL_TV"}
        assert "rapporter/brevfugl_logg.txt" in content.files

    asyncio.run(_run())


def test_unknown_session(tmp_path: Path):
    engine = _engine(tmp_path)

    async def _run() -> None:
        assert await engine.get_completed_days("nobody") == set()
        content = await engine.get_visible_content("nobody")
        assert (content.topics, content.files, content.modules) == ({}, set(), set())
        assert (await engine.get_summary("nobody")).main_quests_completed == 0
        with pytest.raises(SessionNotFoundError):
            await engine.get_session("nobody")
        with pytest.raises(SessionNotFoundError):
            await engine.submit_code("nobody", "BREVFUGL")
        with pytest.raises(ValidationError):
            await engine.get_completed_days("../escape")

    asyncio.run(_run())


def test_create_session_keeps_existing(tmp_path: Path):
    engine = _engine(tmp_path)

    async def _run() -> None:
        await engine.create_session(SID)
        await engine.submit_code(SID, "BREVFUGL")
        again = await engine.create_session(SID)
        assert len(again.submitted_codes) == 1

    asyncio.run(_run())


class TestDecryption:
    def test_attempts_count_until_solved(self, tmp_path: Path):
        engine = _engine(tmp_path)

        async def _run() -> None:
            await engine.create_session(SID)
            for _ in range(3):
                result = await engine.attempt_decryption(SID, "frosne-koder", ["moon-blue", "sun-red", "heart-green"])
                assert not result.solved
            assert result.attempts == 3
            assert result.correct_count == 1

            solved = await engine.attempt_decryption(SID, "frosne-koder", ["heart-green", "sun-red", "moon-blue"])
            assert solved.solved
            assert solved.attempts == 3
            assert solved.message

            session = await engine.get_session(SID)
            assert session.decryption_attempts == {"frosne-koder": 3}
            assert "frosne-koder" in session.solved_decryptions
            assert "kryptering/frosne_koder_losning.txt" in session.unlocked_files

            repeat = await engine.attempt_decryption(SID, "frosne-koder", ["wrong"])
            assert (repeat.solved, repeat.already_solved, repeat.attempts) == (True, True, 3)

        asyncio.run(_run())

    def test_length_mismatch_scores_zero(self, tmp_path: Path):
        engine = _engine(tmp_path)

        async def _run() -> None:
            await engine.create_session(SID)
            result = await engine.attempt_decryption(SID, "stjernetegn", ["sun-green", "moon-green"])
            assert (result.solved, result.correct_count, result.attempts) == (False, 0, 1)

        asyncio.run(_run())

    def test_bad_input(self, tmp_path: Path):
        engine = _engine(tmp_path)

        async def _run() -> None:
            await engine.create_session(SID)
            with pytest.raises(ValidationError):
                await engine.attempt_decryption(SID, "no-such-puzzle", ["a"])
            with pytest.raises(ValidationError):
                await engine.attempt_decryption(SID, "frosne-koder", [])
            assert (await engine.get_session(SID)).decryption_attempts == {}

        asyncio.run(_run())

    def test_last_challenge_awards_code_master(self, tmp_path: Path):
        engine = _engine(tmp_path)
        events = _collector(engine)

        async def _run() -> None:
            await engine.create_session(SID)
            for challenge in CATALOG.all_challenges():
                result = await engine.attempt_decryption(SID, challenge.challenge_id, challenge.correct_sequence)
            assert [b.badge_id for b in result.newly_earned] == ["kode-mester"]
            await engine.notifier.drain()

        asyncio.run(_run())
        assert [e.badge.badge_id for e in events] == ["kode-mester"]


class TestSymbols:
    def test_ninth_symbol_triggers_one_badge_event(self, tmp_path: Path):
        engine = _engine(tmp_path)
        events = _collector(engine)
        symbols = CATALOG.all_symbols()

        async def _run() -> None:
            await engine.create_session(SID)
            for symbol in symbols[:8]:
                result = await engine.record_symbol_collected(SID, symbol.symbol_id, symbol.icon, symbol.description)
                assert result.newly_earned == []
            await engine.notifier.drain()
            assert events == []

            last = symbols[8]
            result = await engine.record_symbol_collected(SID, last.symbol_id, last.icon, last.description)
            assert [b.badge_id for b in result.newly_earned] == ["symbol-mester"]
            await engine.notifier.drain()

            duplicate = await engine.record_symbol_collected(SID, last.symbol_id)
            assert duplicate.already_collected
            await engine.notifier.drain()

        asyncio.run(_run())
        assert [(e.session_id, e.badge.badge_id) for e in events] == [(SID, "symbol-mester")]

    def test_collect_by_card_code(self, tmp_path: Path):
        engine = _engine(tmp_path)

        async def _run() -> None:
            await engine.create_session(SID)
            result = await engine.collect_symbol_by_code(SID, "sol-rod")
            assert (result.symbol_id, result.collected) == ("sun-red", True)
            stored = (await engine.get_session(SID)).collected_symbols[0]
            assert (stored.icon, stored.description) == ("sun", "En rød sol i vinduet")
            with pytest.raises(ValidationError):
                await engine.collect_symbol_by_code(SID, "not-a-card")
            with pytest.raises(ValidationError):
                await engine.record_symbol_collected(SID, "  ")

        asyncio.run(_run())


class TestBonusAndCrisis:
    def test_bonus_code_needs_main_mission(self, tmp_path: Path):
        engine = _engine(tmp_path, day=11)

        async def _run() -> None:
            await engine.create_session(SID)
            early = await engine.submit_code(SID, "antenne")
            assert (early.accepted, early.is_bonus, early.reason) == (False, True, "locked")

            await engine.submit_code(SID, "RADIOSIGNAL")
            bonus = await engine.submit_code(SID, "antenne")
            assert (bonus.accepted, bonus.is_bonus, bonus.day) == (True, True, 11)
            assert [b.badge_id for b in bonus.newly_earned] == ["antenne-ingenior"]

        asyncio.run(_run())

    def test_badge_earned_once_through_two_paths(self, tmp_path: Path):
        engine = _engine(tmp_path, day=11)
        events = _collector(engine)

        async def _run() -> None:
            await engine.create_session(SID)
            await engine.submit_code(SID, "RADIOSIGNAL")
            crisis = await engine.resolve_crisis(SID, "antenna")
            assert [b.badge_id for b in crisis.newly_earned] == ["antenne-ingenior"]

            via_code = await engine.submit_code(SID, "ANTENNE")
            assert (via_code.accepted, via_code.already_submitted) == (True, True)
            assert (await engine.resolve_crisis(SID, "antenna")).already_resolved
            await engine.notifier.drain()

            session = await engine.get_session(SID)
            assert [b.badge_id for b in session.earned_badges] == ["antenne-ingenior"]
            assert [b.day for b in session.bonus_oppdrag_badges] == [11]

        asyncio.run(_run())
        assert len(events) == 1

    def test_unknown_crisis(self, tmp_path: Path):
        engine = _engine(tmp_path)

        async def _run() -> None:
            await engine.create_session(SID)
            with pytest.raises(ValidationError):
                await engine.resolve_crisis(SID, "volcano")

        asyncio.run(_run())

    def test_guardian_confirmation(self, tmp_path: Path):
        engine = _engine(tmp_path, day=6)

        async def _run() -> None:
            await engine.create_session(SID)
            assert (await engine.confirm_bonus_quest(SID, 6)).reason == "locked"

            await engine.submit_code(SID, "PEPPERKAKE")
            confirmed = await engine.confirm_bonus_quest(SID, 6)
            assert confirmed.accepted
            assert [b.badge_id for b in confirmed.newly_earned] == ["pepperkake-baker"]
            assert (await engine.confirm_bonus_quest(SID, 6)).already_submitted

            with pytest.raises(ValidationError):
                await engine.confirm_bonus_quest(SID, 11)
            with pytest.raises(ValidationError):
                await engine.confirm_bonus_quest(SID, 1)

        asyncio.run(_run())


def test_story_arc_badge(tmp_path: Path):
    engine = _engine(tmp_path, day=14)

    async def _run() -> None:
        await engine.create_session(SID)
        for code in ("BREVFUGL", "POSTKASSE", "FROSTROSE"):
            assert (await engine.submit_code(SID, code)).accepted
        last = await engine.submit_code(SID, "FJAERPENN")
        assert [b.badge_id for b in last.newly_earned] == ["brevfugl-detektiv"]

        progress = await engine.get_story_arc_progress(SID, "brevfugl-mysteriet")
        assert progress.is_complete
        session = await engine.get_session(SID)
        assert [b.eventyr_id for b in session.eventyr_badges] == ["brevfugl-mysteriet"]
        assert "BREVFUGLER" in session.unlocked_modules

    asyncio.run(_run())


def test_concurrent_narrow_patches_keep_both_fields(tmp_path: Path):
    engine = _engine(tmp_path)

    async def _run() -> None:
        await engine.create_session(SID)
        await asyncio.gather(
            engine.set_friend_names(SID, [" Ola ", "", "Kari"]),
            engine.resolve_crisis(SID, "antenna"),
        )
        session = await engine.get_session(SID)
        assert session.friend_names == ["Ola", "Kari"]
        assert session.crisis_status["antenna"] is True
        assert session.crisis_status["inventory"] is False

    asyncio.run(_run())


def test_name_validation(tmp_path: Path):
    engine = _engine(tmp_path)

    async def _run() -> None:
        await engine.create_session(SID)
        with pytest.raises(ValidationError):
            await engine.set_friend_names(SID, [f"venn{i}" for i in range(16)])
        with pytest.raises(ValidationError):
            await engine.set_friend_names(SID, ["x" * 21])
        with pytest.raises(ValidationError):
            await engine.set_player_names(SID, ["A", "B", "C", "D", "E"])
        assert await engine.set_player_names(SID, ["  Emma", "Noah "]) == ["Emma", "Noah"]
        assert (await engine.get_session(SID)).player_names == ["Emma", "Noah"]
        with pytest.raises(SessionNotFoundError):
            await engine.set_friend_names("nobody", ["Ola"])

    asyncio.run(_run())


def test_mark_email_viewed(tmp_path: Path):
    engine = _engine(tmp_path)

    async def _run() -> None:
        await engine.create_session(SID)
        assert await engine.mark_email_viewed(SID, 3)
        assert not await engine.mark_email_viewed(SID, 3)
        assert await engine.mark_email_viewed(SID, 3, bonus=True)
        session = await engine.get_session(SID)
        assert (session.viewed_emails, session.viewed_bonus_emails) == ({3}, {3})
        with pytest.raises(ValidationError):
            await engine.mark_email_viewed(SID, 0)

    asyncio.run(_run())


def test_unlocked_state_never_shrinks(tmp_path: Path):
    engine = _engine(tmp_path, day=14)

    def snapshot(session) -> tuple:
        return (
            set(session.completed_days),
            set(session.topic_unlocks),
            set(session.unlocked_files),
            set(session.unlocked_modules),
            session.collected_symbol_ids(),
            set(session.solved_decryptions),
            session.earned_badge_ids(),
        )

    steps = [
        lambda: engine.submit_code(SID, "BREVFUGL"),
        lambda: engine.submit_code(SID, "WRONG", day=2),
        lambda: engine.record_symbol_collected(SID, "heart-green"),
        lambda: engine.attempt_decryption(SID, "frosne-koder", ["x", "y", "z"]),
        lambda: engine.submit_code(SID, "FROSTROSE"),
        lambda: engine.attempt_decryption(SID, "frosne-koder", ["heart-green", "sun-red", "moon-blue"]),
        lambda: engine.resolve_crisis(SID, "inventory"),
        lambda: engine.set_friend_names(SID, ["Ola"]),
        lambda: engine.submit_code(SID, "BREVFUGL"),
    ]

    async def _run() -> None:
        await engine.create_session(SID)
        previous = snapshot(await engine.get_session(SID))
        for step in steps:
            await step()
            current = snapshot(await engine.get_session(SID))
            assert all(old <= new for old, new in zip(previous, current))
            previous = current

    asyncio.run(_run())


class _BrokenWrites(LocalSessionStore):
    async def write_session(self, session_id, session, *, expected_revision=None):
        raise BackendUnavailableError("disk on fire")


def test_failed_write_discards_mutation(tmp_path: Path):
    async def _run() -> None:
        healthy = _engine(tmp_path)
        await healthy.create_session(SID)

        broken = ProgressionEngine(_BrokenWrites(tmp_path), catalog=CATALOG, clock=Clock(override_day=24))
        events = _collector(broken)
        with pytest.raises(BackendUnavailableError) as exc:
            await broken.submit_code(SID, "BREVFUGL")
        assert exc.value.retryable
        await broken.notifier.drain()
        assert events == []
        assert await healthy.get_completed_days(SID) == set()

    asyncio.run(_run())


def _write_raw(tmp_path: Path, session_id: str, doc: dict) -> None:
    (tmp_path / f"{session_id}.json").write_text(json.dumps(doc), encoding="utf-8")


def _read_raw(tmp_path: Path, session_id: str) -> dict:
    return json.loads((tmp_path / f"{session_id}.json").read_text(encoding="utf-8"))


def test_older_client_codes_survive_a_write(tmp_path: Path):
    _write_raw(tmp_path, SID, {
        "sessionId": SID,
        "submittedCodes": [{"kode": "BREVFUGL", "dato": "2025-12-01T08:00:00Z"}],
    })
    engine = _engine(tmp_path, day=5)

    async def _run() -> None:
        assert await engine.get_completed_days(SID) == {1}
        assert await engine.mark_email_viewed(SID, 1)
        assert await engine.get_completed_days(SID) == {1}

    asyncio.run(_run())
    stored = _read_raw(tmp_path, SID)
    assert [c["code"] for c in stored["submittedCodes"]] == ["BREVFUGL"]


@pytest.mark.parametrize(
    "stored_status",
    [
        '{"antenna": true, "inventory": false}',
        [{"_key": "crisis-antenna", "flag": "antenna", "resolved": True}],
    ],
)
def test_resolving_a_crisis_keeps_flags_stored_in_older_shapes(tmp_path: Path, stored_status):
    _write_raw(tmp_path, SID, {"sessionId": SID, "crisisStatus": stored_status})
    engine = _engine(tmp_path)

    async def _run():
        assert (await engine.get_session(SID)).crisis_status["antenna"] is True
        await engine.resolve_crisis(SID, "inventory")
        return await engine.get_session(SID)

    session = asyncio.run(_run())
    assert session.crisis_status == {"antenna": True, "inventory": True}
    assert _read_raw(tmp_path, SID)["crisisStatus"] == {"antenna": True, "inventory": True}
    assert {"antenne-ingenior", "inventar-ekspert"} <= session.earned_badge_ids()


def test_create_session_never_replaces_a_concurrent_one(tmp_path: Path):
    store = LocalSessionStore(tmp_path)
    engine = ProgressionEngine(store, catalog=CATALOG, clock=Clock(override_day=24))

    async def _run() -> None:
        await engine.create_session(SID)
        await engine.submit_code(SID, "BREVFUGL")
        # A second device that read "no session" before the first one wrote
        await store.create_session(SID, new_session(SID))
        assert await engine.get_completed_days(SID) == {1}

    asyncio.run(_run())
