"""Global match clock: the four-phase state machine shared by every viewer."""
import logging
import math
import sqlite3
import threading
from dataclasses import replace
from typing import Callable, Optional

from .config import (
    BETTING_WINDOW_SECONDS,
    MATCH_MINUTES,
    PRE_COUNTDOWN_SECONDS,
    SIMULATION_TICKS,
    TOTAL_WEEKS,
)
from .models import (
    BETTING,
    MODE_CYCLE,
    MODE_SCHEDULE,
    NEXT_COUNTDOWN,
    PLAYING,
    PRE_COUNTDOWN,
    GlobalSystemState,
)
from .notifications import Broadcaster
from .state_store import StateStore

logger = logging.getLogger(__name__)

# Match minutes advanced per second of real time
MINUTE_STEP = math.ceil(MATCH_MINUTES / SIMULATION_TICKS)


class MatchClock:
    """
    Advance the shared clock one second at a time.

        pre-countdown --10s--> playing --0..90--> betting --30s--> next-countdown --10s--> pre-countdown

    Every tick writes the full state to the store. Phase listeners receive
    (old_phase, new_phase, state) on each transition. In cycle mode the
    return to pre-countdown advances the timeframe exactly once; in schedule
    mode the timeframe follows timeframe_source instead.
    """

    def __init__(
        self,
        store: StateStore,
        state: Optional[GlobalSystemState] = None,
        mode: str = MODE_CYCLE,
        total_weeks: int = TOTAL_WEEKS,
        timeframe_source: Optional[Callable[[], int]] = None,
        on_season_end: Optional[Callable[[], None]] = None
    ):
        if mode not in (MODE_CYCLE, MODE_SCHEDULE):
            raise ValueError(f"Unknown advancement mode: {mode}")
        if mode == MODE_SCHEDULE and timeframe_source is None:
            raise ValueError("Schedule mode needs a timeframe source")

        self.store = store
        self.state = state or store.read()
        self.mode = mode
        self.total_weeks = total_weeks
        self.timeframe_source = timeframe_source
        self.on_season_end = on_season_end

        self.match_minute = 0
        self.betting_timer = BETTING_WINDOW_SECONDS
        self.countdown = PRE_COUNTDOWN_SECONDS
        self._resume(self.state.countdown_seconds)
        self._prev_phase = self.state.match_phase
        self._advanced_this_cycle = False
        self._transitions = Broadcaster()

    def _resume(self, remaining: int) -> None:
        # Pick up a persisted clock mid-phase
        if remaining <= 0:
            return
        if self.phase in (PRE_COUNTDOWN, NEXT_COUNTDOWN):
            self.countdown = min(remaining, PRE_COUNTDOWN_SECONDS)
        elif self.phase == PLAYING:
            self.match_minute = max(0, MATCH_MINUTES - remaining * MINUTE_STEP)
        elif self.phase == BETTING:
            self.betting_timer = min(remaining, BETTING_WINDOW_SECONDS)

    @property
    def phase(self) -> str:
        return self.state.match_phase

    def subscribe(self, callback: Callable[[str, str, GlobalSystemState], None]) -> Callable[[], None]:
        """Listen for phase transitions."""
        return self._transitions.subscribe(callback)

    def remaining_seconds(self) -> int:
        """Seconds left in the current phase."""
        if self.phase == PLAYING:
            return math.ceil(max(0, MATCH_MINUTES - self.match_minute) / MINUTE_STEP)
        if self.phase == BETTING:
            return self.betting_timer
        return self.countdown

    def _transition(self, new_phase: str) -> None:
        old_phase = self.phase
        self.state = replace(self.state, match_phase=new_phase)
        logger.info(
            f"Timeframe {self.state.current_timeframe_index}: {old_phase} -> {new_phase}"
        )
        self._transitions.publish(old_phase, new_phase, self.state)

    def tick(self) -> GlobalSystemState:
        """Advance one second."""
        phase = self.phase

        if phase in (PRE_COUNTDOWN, NEXT_COUNTDOWN):
            self.countdown -= 1
            if self.countdown <= 0:
                self.countdown = PRE_COUNTDOWN_SECONDS
                if phase == PRE_COUNTDOWN:
                    self.match_minute = 0
                    self._transition(PLAYING)
                else:
                    self._transition(PRE_COUNTDOWN)

        elif phase == PLAYING:
            self.match_minute = min(MATCH_MINUTES, self.match_minute + MINUTE_STEP)
            if self.match_minute >= MATCH_MINUTES:
                self.betting_timer = BETTING_WINDOW_SECONDS
                self._transition(BETTING)

        elif phase == BETTING:
            self.betting_timer -= 1
            if self.betting_timer <= 0:
                self.betting_timer = BETTING_WINDOW_SECONDS
                self.countdown = PRE_COUNTDOWN_SECONDS
                self._transition(NEXT_COUNTDOWN)

        if self.mode == MODE_SCHEDULE:
            self.sync_timeframe()
        else:
            self.check_cycle_advance()

        self.broadcast()
        return self.state

    def check_cycle_advance(self) -> bool:
        """
        Advance the timeframe when a cycle has just completed.

        Safe to call repeatedly: the guard flag stays set until the clock
        leaves pre-countdown, so re-evaluation cannot advance twice.
        """
        advanced = False
        if (
            self._prev_phase == NEXT_COUNTDOWN
            and self.phase == PRE_COUNTDOWN
            and not self._advanced_this_cycle
        ):
            self._advance_timeframe()
            self._advanced_this_cycle = True
            advanced = True

        if self.phase != PRE_COUNTDOWN:
            self._advanced_this_cycle = False

        self._prev_phase = self.phase
        return advanced

    def _advance_timeframe(self) -> None:
        next_idx = self.state.current_timeframe_index + 1
        if next_idx >= self.total_weeks:
            logger.info(f"Week {self.total_weeks} complete, starting a new season")
            if self.on_season_end is not None:
                self.on_season_end()
            next_idx = 0
        self.state = replace(
            self.state,
            current_timeframe_index=next_idx,
            current_week=next_idx + 1,
        )
        logger.info(f"Cycle complete, advancing to week {self.state.current_week}")

    def sync_timeframe(self) -> None:
        """Follow the wall-clock schedule index (schedule mode only)."""
        live_idx = self.timeframe_source()
        if live_idx != self.state.current_timeframe_index:
            self.state = replace(
                self.state,
                current_timeframe_index=live_idx,
                current_week=live_idx % self.total_weeks + 1,
            )
            logger.info(f"Schedule moved live timeframe to {live_idx}")

    def broadcast(self) -> None:
        """Write the full state to the store. Store failures never stop the clock."""
        # countdown_seconds carries the remaining time of whichever phase is active
        self.state = replace(self.state, countdown_seconds=self.remaining_seconds())
        try:
            self.state = self.store.upsert(self.state)
        except sqlite3.Error as e:
            logger.error(f"Failed to save system state: {e}")

    def run(self, stop_event: Optional[threading.Event] = None, ticks: Optional[int] = None) -> None:
        """Tick once per second until stopped (or for a fixed number of ticks)."""
        stop_event = stop_event or threading.Event()
        count = 0
        while not stop_event.is_set():
            self.tick()
            count += 1
            if ticks is not None and count >= ticks:
                break
            stop_event.wait(1)
