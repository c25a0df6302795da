"""Wall-clock scheduling: which timeframe is live and which matches it holds."""
import logging
import math
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import MATCH_MINUTES, MATCHES_PER_TIMEFRAME, MIN_POOL_SIZE, TOTAL_WEEKS
from .database import utcnow
from .fixtures import build_match_pool, draw_matches, generate_fixtures
from .models import MODE_CYCLE, ForcedOutcome, GlobalSchedule, Match, PersistedMatchResult, SimulatedResult
from .simulator import SimulationCache

logger = logging.getLogger(__name__)

# Timeframes kept in memory behind the most recent one built
KEEP_TIMEFRAMES = 4


def calculate_scheduled_time(schedule_index: int, schedule: GlobalSchedule) -> datetime:
    """Start time of a schedule index: reference_epoch + index * interval."""
    return schedule.reference_epoch + timedelta(minutes=schedule_index * schedule.match_interval_minutes)


def find_schedule_index_for_time(when: datetime, schedule: GlobalSchedule) -> int:
    """Schedule index a moment falls into (floor, negative before the epoch)."""
    elapsed = (when - schedule.reference_epoch).total_seconds()
    return math.floor(elapsed / (schedule.match_interval_minutes * 60))


def current_timeframe_index(schedule: GlobalSchedule, now: Optional[datetime] = None) -> int:
    """Which timeframe is actually live right now."""
    return find_schedule_index_for_time(now or utcnow(), schedule)


def upcoming_slots(schedule: GlobalSchedule, count: int, now: Optional[datetime] = None) -> List[Tuple[int, datetime]]:
    """The next count slots starting with the live one."""
    start = current_timeframe_index(schedule, now)
    return [
        (idx, calculate_scheduled_time(idx, schedule))
        for idx in range(start, start + count)
        if idx >= 0
    ]


def past_slots(schedule: GlobalSchedule, count: int, now: Optional[datetime] = None) -> List[Tuple[int, datetime]]:
    """The count slots before the live one, oldest first."""
    start = current_timeframe_index(schedule, now)
    return [
        (idx, calculate_scheduled_time(idx, schedule))
        for idx in range(start - count, start)
        if idx >= 0
    ]


def time_until_next_match(schedule: GlobalSchedule, now: Optional[datetime] = None) -> int:
    """Whole seconds until the next slot starts."""
    now = now or utcnow()
    next_start = calculate_scheduled_time(current_timeframe_index(schedule, now) + 1, schedule)
    return max(0, math.ceil((next_start - now).total_seconds()))


def is_match_live(match: Match, now: Optional[datetime] = None) -> bool:
    """True between kickoff and full time."""
    now = now or utcnow()
    return match.kickoff_time <= now < match.kickoff_time + timedelta(minutes=MATCH_MINUTES)


class TimeframeBook:
    """
    Build and memoize the match card of each timeframe for one league.

    Each card draws MATCHES_PER_TIMEFRAME pairs cyclically from the league's
    all-pairs pool. Ids take the form {country}-{slotEpochMillis}-{position}
    and every match is simulated as soon as the card is built, so later phase
    transitions only ever read an existing score. A match that already has a
    persisted final result is seeded from it instead of re-simulated.
    """

    def __init__(
        self,
        country: str,
        teams: Sequence[str],
        schedule: GlobalSchedule,
        sim_cache: SimulationCache,
        load_overrides: Optional[Callable[[], Dict[str, ForcedOutcome]]] = None,
        load_results: Optional[Callable[[List[str]], Dict[str, PersistedMatchResult]]] = None,
        mode: str = MODE_CYCLE,
        season: int = 0,
        total_weeks: int = TOTAL_WEEKS,
        per_timeframe: int = MATCHES_PER_TIMEFRAME,
        min_pool_size: int = MIN_POOL_SIZE
    ):
        self.country = country
        self.teams = list(teams)
        self.schedule = schedule
        self.sim_cache = sim_cache
        self.load_overrides = load_overrides or dict
        self.load_results = load_results or (lambda match_ids: {})
        self.mode = mode
        self.total_weeks = total_weeks
        self.per_timeframe = per_timeframe
        self.min_pool_size = min_pool_size
        self._cards: Dict[int, List[Match]] = {}
        self._lock = threading.Lock()
        self.regenerate(season)

    def regenerate(self, season: int) -> None:
        """Rebuild fixtures and the draw pool for a season."""
        with self._lock:
            self.season = season
            self.fixtures = generate_fixtures(self.teams, self.total_weeks)
            self.pool = build_match_pool(self.teams, self.min_pool_size, seed=f"{self.country}-{season}")
            for idx in list(self._cards):
                self._evict(idx)
        logger.info(f"{self.country}: season {season} fixtures ready, pool of {len(self.pool)} matches")

    def slot_index(self, timeframe_index: int) -> int:
        """Schedule slot backing a timeframe; cycle-mode seasons never reuse a slot."""
        if self.mode == MODE_CYCLE:
            return self.season * self.total_weeks + timeframe_index
        return timeframe_index

    def kickoff_for(self, timeframe_index: int) -> datetime:
        return calculate_scheduled_time(self.slot_index(timeframe_index), self.schedule)

    def match_id(self, timeframe_index: int, position: int) -> str:
        """Stable id of the match at a position on a timeframe's card."""
        slot_millis = int(self.kickoff_for(timeframe_index).timestamp() * 1000)
        return f"{self.country}-{slot_millis}-{position}"

    def matches_for(self, timeframe_index: int) -> List[Match]:
        """The match card for a timeframe, built once."""
        with self._lock:
            card = self._cards.get(timeframe_index)
            if card is not None:
                return card

            kickoff = self.kickoff_for(timeframe_index)
            card = [
                Match(
                    id=self.match_id(timeframe_index, position),
                    home_team=pair["home"],
                    away_team=pair["away"],
                    kickoff_time=kickoff,
                    country=self.country,
                )
                for position, pair in enumerate(
                    draw_matches(self.pool, self.slot_index(timeframe_index), self.per_timeframe)
                )
            ]

            overrides = self.load_overrides()
            finals = self.load_results([m.id for m in card])
            for match in card:
                final = finals.get(match.id)
                if final is not None:
                    self.sim_cache.seed(match.id, SimulatedResult(
                        home_goals=final.home_goals,
                        away_goals=final.away_goals,
                        winner=final.winner,
                        events=list(final.events),
                    ))
                else:
                    self.sim_cache.get_or_simulate(match.id, overrides.get(match.id))

            self._cards[timeframe_index] = card
            for stale in [idx for idx in self._cards if idx < timeframe_index - KEEP_TIMEFRAMES]:
                self._evict(stale)

            logger.debug(
                f"Timeframe {timeframe_index} ({self.country}): {len(card)} matches, "
                f"{len(finals)} already final"
            )
            return card

    def _evict(self, timeframe_index: int) -> None:
        # Caller holds the lock
        for match in self._cards.pop(timeframe_index, []):
            self.sim_cache.discard(match.id)

    def week_fixtures(self, week: int) -> List[Dict]:
        """Rotation pairings for a season week (1-based)."""
        for entry in self.fixtures:
            if entry["week"] == week:
                return entry["matches"]
        return []
