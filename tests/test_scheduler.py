import random
from datetime import datetime, timedelta, timezone

import pytest

from matchday.config import LEAGUES
from matchday.models import (
    MODE_CYCLE,
    MODE_SCHEDULE,
    ForcedOutcome,
    GlobalSchedule,
    GoalEvent,
    Match,
    PersistedMatchResult,
)
from matchday.scheduler import (
    KEEP_TIMEFRAMES,
    TimeframeBook,
    calculate_scheduled_time,
    current_timeframe_index,
    find_schedule_index_for_time,
    is_match_live,
    past_slots,
    time_until_next_match,
    upcoming_slots,
)
from matchday.simulator import SimulationCache

EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def schedule():
    return GlobalSchedule(reference_epoch=EPOCH, match_interval_minutes=30)


def test_index_for_time(schedule):
    assert find_schedule_index_for_time(EPOCH, schedule) == 0
    assert find_schedule_index_for_time(EPOCH + timedelta(minutes=95), schedule) == 3
    assert find_schedule_index_for_time(EPOCH - timedelta(minutes=1), schedule) == -1
    assert current_timeframe_index(schedule, now=EPOCH + timedelta(hours=2)) == 4


def test_scheduled_time(schedule):
    assert calculate_scheduled_time(4, schedule) == EPOCH + timedelta(minutes=120)


def test_time_until_next_match(schedule):
    assert time_until_next_match(schedule, now=EPOCH + timedelta(minutes=10)) == 1200


def test_upcoming_and_past_slots(schedule):
    now = EPOCH + timedelta(minutes=61)
    assert [idx for idx, _ in upcoming_slots(schedule, 3, now=now)] == [2, 3, 4]
    assert [idx for idx, _ in past_slots(schedule, 2, now=now)] == [0, 1]
    assert past_slots(schedule, 5, now=EPOCH) == []


def test_is_match_live():
    match = Match("m", "A", "B", EPOCH)
    assert is_match_live(match, now=EPOCH + timedelta(minutes=45))
    assert not is_match_live(match, now=EPOCH - timedelta(seconds=1))
    assert not is_match_live(match, now=EPOCH + timedelta(minutes=90))


def _book(schedule, **kwargs):
    return TimeframeBook(
        "ENG",
        LEAGUES["ENG"]["teams"],
        schedule,
        SimulationCache(rng=random.Random(5)),
        **kwargs
    )


def test_card_has_nine_stable_ids(schedule):
    book = _book(schedule, mode=MODE_SCHEDULE)
    card = book.matches_for(2)
    millis = int((EPOCH + timedelta(minutes=60)).timestamp() * 1000)
    assert [m.id for m in card] == [f"ENG-{millis}-{pos}" for pos in range(9)]
    assert all(m.kickoff_time == EPOCH + timedelta(minutes=60) for m in card)
    assert all(m.country == "ENG" for m in card)


def test_card_is_memoized_and_simulated(schedule):
    book = _book(schedule)
    card = book.matches_for(0)
    assert book.matches_for(0) is card
    assert all(m.id in book.sim_cache for m in card)


def test_cards_do_not_share_ids(schedule):
    book = _book(schedule)
    ids = [m.id for idx in range(36) for m in book.matches_for(idx)]
    assert len(set(ids)) == len(ids)


def test_cycle_seasons_use_new_slots(schedule):
    book = _book(schedule, mode=MODE_CYCLE, season=0)
    first = {m.id for m in book.matches_for(0)}
    book.regenerate(1)
    assert book.slot_index(0) == 36
    assert first.isdisjoint(m.id for m in book.matches_for(0))


def test_overrides_seed_simulation(schedule):
    book = _book(schedule)
    target = book.match_id(1, 4)
    book.load_overrides = lambda: {target: ForcedOutcome(3, 0)}
    book.matches_for(1)
    result = book.sim_cache.get(target)
    assert (result.home_goals, result.away_goals) == (3, 0)


def test_week_fixtures(schedule):
    book = _book(schedule)
    assert len(book.week_fixtures(1)) == 10
    assert book.week_fixtures(37) == []


def test_evicted_cards_release_simulations(schedule):
    book = _book(schedule)
    for idx in range(12):
        book.matches_for(idx)
    assert len(book.sim_cache) <= 9 * (KEEP_TIMEFRAMES + 1)
    assert all(m.id in book.sim_cache for m in book.matches_for(11))
    assert book.match_id(0, 0) not in book.sim_cache


def test_regenerate_empties_simulation_cache(schedule):
    book = _book(schedule)
    book.matches_for(0)
    book.matches_for(1)
    book.regenerate(1)
    assert len(book.sim_cache) == 0


def test_persisted_finals_seed_simulation(schedule):
    book = _book(schedule)
    target = book.match_id(3, 2)
    final = PersistedMatchResult(
        match_id=target,
        home_goals=1,
        away_goals=2,
        winner="away",
        is_final=True,
        events=[GoalEvent(5, "away"), GoalEvent(12, "home"), GoalEvent(30, "away")],
    )
    book.load_overrides = lambda: {target: ForcedOutcome(4, 0)}
    book.load_results = lambda match_ids: {target: final} if target in match_ids else {}

    book.matches_for(3)
    result = book.sim_cache.get(target)
    assert (result.home_goals, result.away_goals, result.winner) == (1, 2, "away")
    assert result.events == final.events
