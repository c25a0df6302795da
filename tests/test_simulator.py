import random

import pytest

from matchday.models import ForcedOutcome, GoalEvent
from matchday.simulator import (
    SimulationCache,
    first_goal_minute,
    score_at,
    simulate,
    tick_to_minute,
    winner_for,
)


def test_goal_totals_match_event_counts():
    for seed in range(300):
        result = simulate("m", rng=random.Random(seed))
        assert result.home_goals == sum(1 for e in result.events if e.team == "home")
        assert result.away_goals == sum(1 for e in result.events if e.team == "away")
        assert result.winner == winner_for(result.home_goals, result.away_goals)


@pytest.mark.parametrize("home,away", [(2, 1), (0, 0), (5, 0), (3, 3)])
def test_forced_outcome_always_hits_target(home, away):
    for seed in range(1000):
        result = simulate("m", forced=ForcedOutcome(home, away), rng=random.Random(seed))
        assert (result.home_goals, result.away_goals) == (home, away)
        assert sum(1 for e in result.events if e.team == "home") == home
        assert sum(1 for e in result.events if e.team == "away") == away


def test_forced_events_stay_within_the_match():
    result = simulate("m", duration_ticks=40, forced=ForcedOutcome(9, 9), rng=random.Random(1))
    assert all(1 <= e.time <= 40 for e in result.events)


def test_forced_winner_must_agree_with_score():
    assert simulate("m", forced=ForcedOutcome(2, 1, "home"), rng=random.Random(0)).winner == "home"
    with pytest.raises(ValueError):
        simulate("m", forced=ForcedOutcome(2, 1, "away"))
    with pytest.raises(ValueError):
        simulate("m", forced=ForcedOutcome(-1, 0))


def test_full_time_replay_equals_final_score():
    for seed in range(200):
        result = simulate("m", rng=random.Random(seed))
        assert score_at(result.events, 90, 40) == {"home": result.home_goals, "away": result.away_goals}


def test_score_at_kickoff_is_goalless():
    events = [GoalEvent(time=1, team="home"), GoalEvent(time=20, team="away")]
    assert score_at(events, 0, 40) == {"home": 0, "away": 0}
    assert score_at(events, 45, 40) == {"home": 1, "away": 1}
    assert score_at(events, 30, 40) == {"home": 1, "away": 0}


def test_first_goal_minute():
    events = [GoalEvent(time=10, team="away"), GoalEvent(time=4, team="home")]
    assert first_goal_minute(events, 40) == 9
    assert first_goal_minute([], 40) is None
    assert tick_to_minute(40, 40) == 90


def test_cache_never_resimulates():
    cache = SimulationCache(rng=random.Random(3))
    first = cache.get_or_simulate("m1")
    again = cache.get_or_simulate("m1", ForcedOutcome(7, 7))
    assert again is first
    assert "m1" in cache
    assert cache.get("missing") is None
    assert len(cache) == 1


def test_cache_applies_override_on_first_build():
    cache = SimulationCache(rng=random.Random(3))
    result = cache.get_or_simulate("m1", ForcedOutcome(4, 2))
    assert (result.home_goals, result.away_goals, result.winner) == (4, 2, "home")


def test_cache_seed_keeps_an_existing_result():
    cache = SimulationCache(rng=random.Random(3))
    known = simulate("m1", forced=ForcedOutcome(1, 0), rng=random.Random(1))
    assert cache.seed("m1", known) is known
    assert cache.get_or_simulate("m1") is known

    other = simulate("m1", forced=ForcedOutcome(0, 2), rng=random.Random(1))
    assert cache.seed("m1", other) is known


def test_cache_discard():
    cache = SimulationCache(rng=random.Random(3))
    cache.get_or_simulate("m1")
    cache.discard("m1")
    cache.discard("never-built")
    assert "m1" not in cache
    assert len(cache) == 0
