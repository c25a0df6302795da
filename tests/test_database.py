from datetime import datetime, timezone

from matchday.config import ADVANCEMENT_MODE
from matchday.database import (
    append_match_history,
    get_final_results,
    get_match_history,
    get_match_raw,
    get_or_create_schedule,
    get_outcome_overrides,
    get_result_by_match,
    get_setting,
    get_system_state,
    mark_match_finished,
    save_match,
    set_outcome_override,
    set_setting,
    upsert_match_result,
)
from matchday.models import PRE_COUNTDOWN, ForcedOutcome, GoalEvent, Match, PersistedMatchResult

KICKOFF = datetime(2026, 3, 1, 15, 0, tzinfo=timezone.utc)


def test_system_state_defaults(conn):
    state = get_system_state(conn)
    assert state.current_week == 1
    assert state.current_timeframe_index == 0
    assert state.match_phase == PRE_COUNTDOWN
    assert state.countdown_seconds == 10
    assert get_system_state(conn).last_updated == state.last_updated


def test_schedule_first_write_wins(conn):
    first = get_or_create_schedule(conn, reference_epoch=KICKOFF, match_interval=15)
    second = get_or_create_schedule(conn, reference_epoch=datetime.now(timezone.utc), match_interval=45)
    assert second.reference_epoch == first.reference_epoch == KICKOFF
    assert second.match_interval_minutes == 15


def test_settings(conn):
    assert get_setting(conn, "advancement_mode") == ADVANCEMENT_MODE
    set_setting(conn, "advancement_mode", "schedule")
    assert get_setting(conn, "advancement_mode") == "schedule"
    assert get_setting(conn, "missing", "fallback") == "fallback"


def test_result_upsert_updates_in_place(conn):
    upsert_match_result(conn, PersistedMatchResult("m1", 0, 0, "draw"))
    upsert_match_result(conn, PersistedMatchResult("m1", 2, 1, "home", is_final=True, first_goal_minute=12))
    upsert_match_result(conn, PersistedMatchResult("m1", 2, 1, "home", is_final=False))

    count = conn.execute("SELECT COUNT(*) FROM match_results WHERE match_id = 'm1'").fetchone()[0]
    assert count == 1
    result = get_result_by_match(conn, "m1")
    assert (result.home_goals, result.away_goals, result.winner) == (2, 1, "home")
    assert result.is_final is True


def test_raw_match_finished_markers(conn):
    match = Match("m1", "Gor Mahia", "Tusker", KICKOFF, "KEN")
    assert mark_match_finished(conn, "m1", 1, 0) is False
    save_match(conn, match)
    assert get_match_raw(conn, "m1")["status"] == "scheduled"
    assert mark_match_finished(conn, "m1", 1, 0) is True

    raw = get_match_raw(conn, "m1")
    assert raw["home_score"] == 1
    assert raw["away_score"] == 0
    assert raw["status"] == "finished"
    assert raw["finished"] is True
    assert raw["match_finished"] is True
    assert raw["home_team"] == "Gor Mahia"


def test_match_history(conn):
    match = Match("m1", "Inter", "Roma", KICKOFF, "ITA")
    append_match_history(conn, match, 3, 1, "home")
    rows = get_match_history(conn)
    assert len(rows) == 1
    assert rows[0]["country"] == "ITA"
    assert (rows[0]["home_goals"], rows[0]["away_goals"], rows[0]["winner"]) == (3, 1, "home")


def test_outcome_overrides(conn):
    set_outcome_override(conn, "m1", ForcedOutcome(2, 1, "home"))
    set_outcome_override(conn, "m1", ForcedOutcome(0, 0))
    assert get_outcome_overrides(conn) == {"m1": ForcedOutcome(0, 0, None)}


def test_result_events_are_stored_with_the_score(conn):
    events = [GoalEvent(3, "home"), GoalEvent(17, "away"), GoalEvent(40, "home")]
    upsert_match_result(conn, PersistedMatchResult("m1", 2, 1, "home", is_final=True, events=events))
    assert get_result_by_match(conn, "m1").events == events

    upsert_match_result(conn, PersistedMatchResult("m2", 0, 0, "draw"))
    assert get_result_by_match(conn, "m2").events == []


def test_final_results_lookup(conn):
    upsert_match_result(conn, PersistedMatchResult("m1", 1, 0, "home", is_final=True))
    upsert_match_result(conn, PersistedMatchResult("m2", 0, 0, "draw"))
    finals = get_final_results(conn, ["m1", "m2", "m3"])
    assert list(finals) == ["m1"]
    assert finals["m1"].winner == "home"
    assert get_final_results(conn, []) == {}
