"""Match outcome simulation and progressive score replay."""
import logging
import random
import threading
from typing import Dict, List, Optional, Sequence

from .config import MATCH_MINUTES, SIMULATION_TICKS
from .models import ForcedOutcome, GoalEvent, SimulatedResult

logger = logging.getLogger(__name__)

GOAL_PROBABILITY = 0.07
FORCED_GOAL_PROBABILITY = 0.10


def winner_for(home_goals: int, away_goals: int) -> str:
    """Derive the winner from a score."""
    if home_goals > away_goals:
        return "home"
    if away_goals > home_goals:
        return "away"
    return "draw"


def _validate_forced(forced: ForcedOutcome) -> str:
    if forced.home_goals < 0 or forced.away_goals < 0:
        raise ValueError(f"Forced goals must be non-negative, got {forced.home_goals}-{forced.away_goals}")
    derived = winner_for(forced.home_goals, forced.away_goals)
    if forced.winner is not None and forced.winner != derived:
        raise ValueError(
            f"Forced winner '{forced.winner}' contradicts score "
            f"{forced.home_goals}-{forced.away_goals}"
        )
    return derived


def _simulate_forced(forced: ForcedOutcome, duration_ticks: int, rng: random.Random) -> SimulatedResult:
    winner = _validate_forced(forced)
    remaining = {"home": forced.home_goals, "away": forced.away_goals}
    events: List[GoalEvent] = []

    for t in range(1, duration_ticks + 1):
        if remaining["home"] <= 0 and remaining["away"] <= 0:
            break
        if rng.random() < FORCED_GOAL_PROBABILITY:
            candidates = [team for team in ("home", "away") if remaining[team] > 0]
            team = candidates[0] if len(candidates) == 1 else rng.choice(candidates)
            remaining[team] -= 1
            events.append(GoalEvent(time=t, team=team))

    # Goals the walk did not place land on the final whistle
    for team in ("home", "away"):
        events.extend(GoalEvent(time=duration_ticks, team=team) for _ in range(remaining[team]))

    return SimulatedResult(
        home_goals=forced.home_goals,
        away_goals=forced.away_goals,
        winner=winner,
        events=events,
    )


def simulate(
    match_id: str,
    duration_ticks: int = SIMULATION_TICKS,
    forced: Optional[ForcedOutcome] = None,
    rng: Optional[random.Random] = None
) -> SimulatedResult:
    """
    Simulate a match as a timeline of goal events.

    Without an override each tick scores with a 7% chance for a random side.
    With an override the walk only scores for sides still short of their
    target, so the final score always equals the forced one.

    Args:
        match_id: Identity of the match (used for logging)
        duration_ticks: Number of simulation ticks
        forced: Optional admin override
        rng: Random source, defaults to a fresh unseeded generator

    Returns:
        SimulatedResult whose event counts equal its goal totals
    """
    rng = rng or random.Random()

    if forced is not None:
        result = _simulate_forced(forced, duration_ticks, rng)
        logger.debug(f"Forced simulation for {match_id}: {result.home_goals}-{result.away_goals}")
        return result

    events: List[GoalEvent] = []
    home_goals = 0
    away_goals = 0
    for t in range(1, duration_ticks + 1):
        if rng.random() < GOAL_PROBABILITY:
            team = "home" if rng.random() < 0.5 else "away"
            if team == "home":
                home_goals += 1
            else:
                away_goals += 1
            events.append(GoalEvent(time=t, team=team))

    return SimulatedResult(
        home_goals=home_goals,
        away_goals=away_goals,
        winner=winner_for(home_goals, away_goals),
        events=events,
    )


def score_at(events: Sequence[GoalEvent], match_minute: int, duration_ticks: int = SIMULATION_TICKS) -> Dict[str, int]:
    """Score after a given match minute (0-90), replaying the event timeline."""
    tick = (match_minute * duration_ticks) // MATCH_MINUTES
    home = 0
    away = 0
    for event in events:
        if event.time <= tick:
            if event.team == "home":
                home += 1
            else:
                away += 1
    return {"home": home, "away": away}


def tick_to_minute(tick: int, duration_ticks: int = SIMULATION_TICKS) -> int:
    """Map a simulation tick to a match minute."""
    return (tick * MATCH_MINUTES) // duration_ticks


def first_goal_minute(events: Sequence[GoalEvent], duration_ticks: int = SIMULATION_TICKS) -> Optional[int]:
    """Match minute of the opening goal, or None for a goalless match."""
    if not events:
        return None
    return tick_to_minute(min(e.time for e in events), duration_ticks)


class SimulationCache:
    """
    Per-match result cache.

    A result is computed once, on first need, and never overwritten, so the
    live replay and the settled score can never disagree.
    """

    def __init__(self, duration_ticks: int = SIMULATION_TICKS, rng: Optional[random.Random] = None):
        self.duration_ticks = duration_ticks
        self._rng = rng or random.Random()
        self._results: Dict[str, SimulatedResult] = {}
        self._lock = threading.Lock()

    def get(self, match_id: str) -> Optional[SimulatedResult]:
        return self._results.get(match_id)

    def get_or_simulate(self, match_id: str, forced: Optional[ForcedOutcome] = None) -> SimulatedResult:
        with self._lock:
            result = self._results.get(match_id)
            if result is None:
                result = simulate(match_id, self.duration_ticks, forced, self._rng)
                self._results[match_id] = result
            return result

    def seed(self, match_id: str, result: SimulatedResult) -> SimulatedResult:
        """Adopt an already-known result (e.g. a persisted final) unless one is cached."""
        with self._lock:
            return self._results.setdefault(match_id, result)

    def discard(self, match_id: str) -> None:
        with self._lock:
            self._results.pop(match_id, None)

    def __contains__(self, match_id: str) -> bool:
        return match_id in self._results

    def __len__(self) -> int:
        return len(self._results)
