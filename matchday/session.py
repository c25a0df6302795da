"""Betting session: one league feed wired to the shared clock and settlement."""
import logging
import random
import sqlite3
import threading
import time
from concurrent.futures import Future
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .clock import MatchClock
from .config import (
    ADVANCEMENT_MODE,
    DB_PATH,
    LEAGUES,
    LIVE_INDEX_REFRESH_SECONDS,
    PRE_COUNTDOWN_SECONDS,
    STALE_SWEEP_DELAY_SECONDS,
)
from .database import (
    get_connection,
    get_final_results,
    get_or_create_schedule,
    get_outcome_overrides,
    get_result_by_match,
    get_setting,
    save_match,
    set_setting,
)
from .models import (
    BETTING,
    MODE_CYCLE,
    MODE_SCHEDULE,
    NEXT_COUNTDOWN,
    PLAYING,
    PRE_COUNTDOWN,
    ForcedOutcome,
    GlobalSystemState,
    Match,
    OddsBoard,
    PersistedMatchResult,
)
from .notifications import BalanceNotifier
from .odds import DEFAULT_BET_TYPES, compute_odds
from .scheduler import TimeframeBook, current_timeframe_index
from .settlement import SettlementPipeline
from .simulator import SimulationCache, score_at
from .state_store import StateStore

logger = logging.getLogger(__name__)


def season_key(country: str) -> str:
    return f"season:{country}"


def read_mode(conn: sqlite3.Connection) -> str:
    """The persisted advancement mode for this deployment."""
    return get_setting(conn, "advancement_mode", ADVANCEMENT_MODE)


def read_season(conn: sqlite3.Connection, country: str) -> int:
    return int(get_setting(conn, season_key(country), "0"))


def stored_board(conn: sqlite3.Connection, match_id: str) -> OddsBoard:
    """Odds board rebuilt from a persisted final result, or the default board."""
    result = get_result_by_match(conn, match_id)
    if result is not None and result.is_final:
        return compute_odds(result.home_goals, result.away_goals)
    return DEFAULT_BET_TYPES


class BettingSession:
    """
    Run one country's feed against the global clock.

    The advancement mode is read once here; a session never switches modes
    while running. Odds boards are captured when betting opens and never
    recomputed for the same match.
    """

    def __init__(
        self,
        db_path: Path = DB_PATH,
        country: str = "ENG",
        mode: Optional[str] = None,
        sim_cache: Optional[SimulationCache] = None,
        notifier: Optional[BalanceNotifier] = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
        sweep_delay: float = STALE_SWEEP_DELAY_SECONDS,
        rng: Optional[random.Random] = None
    ):
        if country not in LEAGUES:
            raise ValueError(f"Unknown league: {country}")

        self.db_path = db_path
        self.country = country
        self.store = StateStore(db_path)
        self.sim_cache = sim_cache if sim_cache is not None else SimulationCache(rng=rng)
        self.notifier = notifier or BalanceNotifier()

        conn = get_connection(db_path)
        try:
            self.schedule = get_or_create_schedule(conn)
            self.mode = mode or read_mode(conn)
            self.season = read_season(conn, country)
        finally:
            conn.close()

        if self.mode not in (MODE_CYCLE, MODE_SCHEDULE):
            raise ValueError(f"Unknown advancement mode: {self.mode}")

        self.book = TimeframeBook(
            country,
            LEAGUES[country]["teams"],
            self.schedule,
            self.sim_cache,
            load_overrides=self._load_overrides,
            load_results=self._load_final_results,
            mode=self.mode,
            season=self.season,
        )
        self.settlement = SettlementPipeline(
            db_path,
            self.sim_cache,
            notifier=self.notifier,
            sweep_delay=sweep_delay,
            timer_factory=timer_factory,
        )

        self.clock: Optional[MatchClock] = None
        self.odds_boards: Dict[str, OddsBoard] = {}
        self.last_settlement: Optional[Future] = None
        self._unsubscribe: List[Callable[[], None]] = []
        self._live_index: Optional[int] = None
        self._live_index_at = 0.0

    def _load_overrides(self) -> Dict[str, ForcedOutcome]:
        conn = get_connection(self.db_path)
        try:
            return get_outcome_overrides(conn)
        except sqlite3.Error as e:
            logger.error(f"Failed to load outcome overrides: {e}")
            return {}
        finally:
            conn.close()

    def _load_final_results(self, match_ids: List[str]) -> Dict[str, PersistedMatchResult]:
        conn = get_connection(self.db_path)
        try:
            return get_final_results(conn, match_ids)
        except sqlite3.Error as e:
            logger.error(f"Failed to load final results: {e}")
            return {}
        finally:
            conn.close()

    def live_timeframe_index(self) -> int:
        """Wall-clock timeframe, recomputed at most every few seconds."""
        now = time.monotonic()
        if self._live_index is None or now - self._live_index_at >= LIVE_INDEX_REFRESH_SECONDS:
            self._live_index = max(0, current_timeframe_index(self.schedule))
            self._live_index_at = now
        return self._live_index

    def start(self) -> MatchClock:
        """Load or derive the starting state and attach the clock."""
        if self.clock is not None:
            return self.clock

        state = self.store.read()
        if self.mode == MODE_SCHEDULE:
            idx = self.live_timeframe_index()
            state = replace(
                state,
                current_timeframe_index=idx,
                current_week=idx % self.book.total_weeks + 1,
                match_phase=PRE_COUNTDOWN,
                countdown_seconds=PRE_COUNTDOWN_SECONDS,
            )
            logger.info(f"{self.country}: schedule mode, live timeframe {idx}")
        else:
            logger.info(
                f"{self.country}: cycle mode, resuming week {state.current_week} "
                f"({state.match_phase}, {state.countdown_seconds}s)"
            )

        self.clock = MatchClock(
            self.store,
            state=state,
            mode=self.mode,
            total_weeks=self.book.total_weeks,
            timeframe_source=self.live_timeframe_index if self.mode == MODE_SCHEDULE else None,
            on_season_end=self._rollover,
        )
        self._unsubscribe.append(self.clock.subscribe(self.settlement.on_phase_change))
        self._unsubscribe.append(self.clock.subscribe(self._on_phase_change))
        self._resume_results(state)
        self.clock.broadcast()
        return self.clock

    def _resume_results(self, state: GlobalSystemState) -> None:
        """Restore what the betting-entry transition would have produced."""
        if state.match_phase not in (BETTING, NEXT_COUNTDOWN):
            return
        matches = self.book.matches_for(state.current_timeframe_index)
        self._capture_odds(matches)
        if state.match_phase != BETTING:
            return

        finals = self._load_final_results([m.id for m in matches])
        unsettled = [m for m in matches if m.id not in finals]
        if unsettled:
            logger.info(f"{self.country}: settling {len(unsettled)} matches left open by a restart")
            future = self.settlement.trigger(state.current_timeframe_index, unsettled)
            if future is not None:
                self.last_settlement = future

    @property
    def state(self) -> GlobalSystemState:
        return self.start().state

    def active_matches(self) -> List[Match]:
        """The match card of the live timeframe."""
        return self.book.matches_for(self.state.current_timeframe_index)

    def live_scores(self) -> Dict[str, Dict[str, int]]:
        """Scores as viewers see them: replayed while playing, final afterwards."""
        clock = self.start()
        scores = {}
        for match in self.active_matches():
            result = self.sim_cache.get(match.id)
            if result is None or clock.phase == PRE_COUNTDOWN:
                scores[match.id] = {"home": 0, "away": 0}
            elif clock.phase == PLAYING:
                scores[match.id] = score_at(result.events, clock.match_minute, self.sim_cache.duration_ticks)
            else:
                scores[match.id] = {"home": result.home_goals, "away": result.away_goals}
        return scores

    def board_for(self, match_id: str) -> OddsBoard:
        """Captured odds for a match, or the default board before betting opens."""
        return self.odds_boards.get(match_id, DEFAULT_BET_TYPES)

    def _register_matches(self, matches: List[Match]) -> None:
        conn = get_connection(self.db_path)
        try:
            for match in matches:
                save_match(conn, match)
        except sqlite3.Error as e:
            logger.error(f"Failed to register matches: {e}")
        finally:
            conn.close()

    def _capture_odds(self, matches: List[Match]) -> None:
        for match in matches:
            if match.id in self.odds_boards:
                continue
            result = self.sim_cache.get(match.id)
            if result is None:
                logger.warning(f"No simulated result for {match.id}, keeping default odds")
                continue
            self.odds_boards[match.id] = compute_odds(result.home_goals, result.away_goals)

    def _on_phase_change(self, old_phase: str, new_phase: str, state: GlobalSystemState) -> None:
        if new_phase == PLAYING:
            self._register_matches(self.book.matches_for(state.current_timeframe_index))
        elif new_phase == BETTING:
            matches = self.book.matches_for(state.current_timeframe_index)
            self._capture_odds(matches)
            future = self.settlement.trigger(state.current_timeframe_index, matches)
            if future is not None:
                self.last_settlement = future
        elif new_phase == NEXT_COUNTDOWN:
            logger.debug(f"Betting closed for timeframe {state.current_timeframe_index}")

    def _rollover(self) -> None:
        self.season += 1
        conn = get_connection(self.db_path)
        try:
            set_setting(conn, season_key(self.country), str(self.season))
        except sqlite3.Error as e:
            logger.error(f"Failed to persist season {self.season}: {e}")
        finally:
            conn.close()
        self.book.regenerate(self.season)
        self.odds_boards.clear()

    def tick(self) -> GlobalSystemState:
        return self.start().tick()

    def run(self, stop_event: Optional[threading.Event] = None, ticks: Optional[int] = None) -> None:
        """Tick once per second until stopped."""
        self.start().run(stop_event, ticks)

    def close(self) -> None:
        """Detach from the clock and cancel every pending sweep."""
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        self.settlement.close()
        logger.info(f"{self.country}: session closed")
