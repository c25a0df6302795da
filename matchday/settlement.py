"""Settlement pipeline: persist final scores and resolve bets when betting opens."""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence

from .config import DB_PATH, MATCHES_PER_TIMEFRAME, STALE_SWEEP_DELAY_SECONDS
from .database import (
    append_match_history,
    get_connection,
    mark_match_finished,
    save_match,
    upsert_match_result,
)
from .ledger import force_resolve_stale_bets, resolve_bets_for_match
from .models import (
    BETTING,
    GlobalSystemState,
    Match,
    PersistedMatchResult,
    ResolutionResult,
    SettlementReport,
)
from .notifications import BalanceNotifier
from .simulator import SimulationCache, first_goal_minute

logger = logging.getLogger(__name__)


class SettlementPipeline:
    """
    Settle every match of a timeframe once per betting phase.

    For each match, concurrently: append history, upsert the final result,
    mark the raw match record finished, then resolve its pending bets. A
    one-shot stale-bet sweep is armed per match and cancelled on close().
    """

    def __init__(
        self,
        db_path: Path = DB_PATH,
        sim_cache: Optional[SimulationCache] = None,
        notifier: Optional[BalanceNotifier] = None,
        sweep_delay: float = STALE_SWEEP_DELAY_SECONDS,
        max_workers: int = MATCHES_PER_TIMEFRAME,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
        resolver: Callable[..., ResolutionResult] = resolve_bets_for_match,
        sweeper: Callable = force_resolve_stale_bets
    ):
        self.db_path = db_path
        self.sim_cache = sim_cache if sim_cache is not None else SimulationCache()
        self.notifier = notifier
        self.sweep_delay = sweep_delay
        self.max_workers = max_workers
        self.timer_factory = timer_factory
        self.resolver = resolver
        self.sweeper = sweeper

        self._saved_this_phase = False
        self._flag_lock = threading.Lock()
        self._sweeps: Dict[str, threading.Timer] = {}
        self._sweeps_lock = threading.Lock()
        self._trigger_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="settlement")
        self._closed = False

    def _claim(self) -> bool:
        # True for the first caller of this betting phase only
        with self._flag_lock:
            if self._saved_this_phase:
                return False
            self._saved_this_phase = True
            return True

    @property
    def armed(self) -> bool:
        """Whether the next trigger will settle."""
        return not self._saved_this_phase

    def on_phase_change(self, old_phase: str, new_phase: str, state: GlobalSystemState) -> None:
        """Clock listener: leaving betting re-arms the pipeline."""
        if old_phase == BETTING and new_phase != BETTING:
            with self._flag_lock:
                self._saved_this_phase = False

    def trigger(self, timeframe_index: int, matches: Sequence[Match]) -> Optional[Future]:
        """
        Settle in the background so the clock never waits on I/O.

        Returns:
            A Future of the SettlementReport, or None if this phase already settled
        """
        if self._closed:
            logger.warning("Settlement pipeline is closed, ignoring trigger")
            return None
        if not self._claim():
            logger.debug(f"Timeframe {timeframe_index} already settled this phase")
            return None
        return self._trigger_pool.submit(self._settle_all, timeframe_index, list(matches))

    def settle_timeframe(self, timeframe_index: int, matches: Sequence[Match]) -> SettlementReport:
        """Settle synchronously. A second call in the same phase is skipped."""
        if not self._claim():
            logger.debug(f"Timeframe {timeframe_index} already settled this phase")
            return SettlementReport(timeframe_index=timeframe_index, skipped=True)
        return self._settle_all(timeframe_index, list(matches))

    def _settle_all(self, timeframe_index: int, matches: Sequence[Match]) -> SettlementReport:
        report = SettlementReport(timeframe_index=timeframe_index)
        if not matches:
            return report

        logger.info(f"Settling timeframe {timeframe_index}: {len(matches)} matches")

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(matches))) as executor:
            future_to_match = {
                executor.submit(self.settle_match, match): match
                for match in matches
            }
            for future in as_completed(future_to_match):
                match = future_to_match[future]
                try:
                    resolution = future.result()
                    report.settled.append(match.id)
                    report.bets_resolved += resolution.resolved
                except Exception as e:
                    logger.error(f"Settlement failed for {match.id}: {e}")
                    report.failed.append(match.id)

        for match in matches:
            self.schedule_sweep(match.id)

        logger.info(
            f"Timeframe {timeframe_index} settled: {len(report.settled)} ok, "
            f"{len(report.failed)} failed, {report.bets_resolved} bets resolved"
        )
        return report

    def settle_match(self, match: Match) -> ResolutionResult:
        """
        Persist one match's final score, then resolve its bets.

        Raises:
            LookupError: If the match was never simulated
            sqlite3.Error: If the result could not be written (bets are not resolved)
        """
        result = self.sim_cache.get(match.id)
        if result is None:
            raise LookupError(f"No simulated result for {match.id}")
        opening_minute = first_goal_minute(result.events, self.sim_cache.duration_ticks)

        conn = get_connection(self.db_path)
        try:
            append_match_history(conn, match, result.home_goals, result.away_goals, result.winner)
            upsert_match_result(conn, PersistedMatchResult(
                match_id=match.id,
                home_goals=result.home_goals,
                away_goals=result.away_goals,
                winner=result.winner,
                is_final=True,
                first_goal_minute=opening_minute,
                events=list(result.events),
            ))

            try:
                save_match(conn, match)
                mark_match_finished(conn, match.id, result.home_goals, result.away_goals)
            except Exception as e:
                logger.error(f"Failed to update raw match record {match.id}: {e}")

            resolution = self.resolver(
                conn,
                match.id,
                result.home_goals,
                result.away_goals,
                opening_minute,
                self.notifier,
            )
        finally:
            conn.close()

        if resolution.error:
            logger.error(f"Bet resolution for {match.id} failed: {resolution.error}")
        else:
            logger.debug(
                f"{match.home_team} {result.home_goals}-{result.away_goals} {match.away_team}: "
                f"{resolution.resolved} bets resolved"
            )
        return resolution

    def schedule_sweep(self, match_id: str) -> None:
        """Arm the deferred stale-bet sweep for a match, replacing any earlier one."""
        if self._closed:
            return
        timer = self.timer_factory(self.sweep_delay, self._sweep, args=(match_id,))
        timer.daemon = True
        with self._sweeps_lock:
            previous = self._sweeps.pop(match_id, None)
            self._sweeps[match_id] = timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def _sweep(self, match_id: str) -> None:
        with self._sweeps_lock:
            self._sweeps.pop(match_id, None)
        if self._closed:
            return

        conn = get_connection(self.db_path)
        try:
            swept = self.sweeper(conn, match_id, self.notifier)
            if swept.forced:
                logger.warning(
                    f"Stale sweep forced {swept.forced} pending bets on {match_id} "
                    f"({swept.cancelled} refunded)"
                )
        except Exception as e:
            logger.error(f"Stale sweep failed for {match_id}: {e}")
        finally:
            conn.close()

    @property
    def pending_sweeps(self) -> int:
        with self._sweeps_lock:
            return len(self._sweeps)

    def cancel_pending_sweeps(self) -> int:
        """Cancel every armed sweep. Returns how many were cancelled."""
        with self._sweeps_lock:
            timers = list(self._sweeps.values())
            self._sweeps.clear()
        for timer in timers:
            timer.cancel()
        if timers:
            logger.info(f"Cancelled {len(timers)} pending stale-bet sweeps")
        return len(timers)

    def close(self) -> None:
        """Tear down: cancel sweeps and wait for an in-flight settlement."""
        self._closed = True
        self.cancel_pending_sweeps()
        self._trigger_pool.shutdown(wait=True)
