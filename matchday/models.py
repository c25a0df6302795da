"""Data models for the matchday simulator."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

# Match clock phases, in cycle order
PRE_COUNTDOWN = "pre-countdown"
PLAYING = "playing"
BETTING = "betting"
NEXT_COUNTDOWN = "next-countdown"
PHASES = (PRE_COUNTDOWN, PLAYING, BETTING, NEXT_COUNTDOWN)

# Timeframe advancement modes
MODE_CYCLE = "cycle"
MODE_SCHEDULE = "schedule"

# Bet statuses
PENDING = "pending"
WON = "won"
LOST = "lost"
CANCELLED = "cancelled"


@dataclass
class GlobalSystemState:
    """The single shared clock row every viewer converges to."""
    current_week: int = 1
    current_timeframe_index: int = 0
    match_phase: str = PRE_COUNTDOWN
    countdown_seconds: int = 10
    last_updated: Optional[datetime] = None


@dataclass
class GlobalSchedule:
    """Reference epoch that maps wall-clock time onto schedule indices."""
    reference_epoch: datetime
    match_interval_minutes: int
    timezone: str = "UTC"
    last_updated: Optional[datetime] = None


@dataclass(frozen=True)
class Match:
    """A simulated fixture. Identity is the composite id, not a counter."""
    id: str
    home_team: str
    away_team: str
    kickoff_time: datetime
    country: Optional[str] = None


@dataclass(frozen=True)
class GoalEvent:
    """A goal at a simulation tick."""
    time: int
    team: str  # 'home' or 'away'


@dataclass
class SimulatedResult:
    """Final score plus the goal timeline used for progressive replay."""
    home_goals: int
    away_goals: int
    winner: str  # 'home', 'away', 'draw'
    events: List[GoalEvent] = field(default_factory=list)


@dataclass
class ForcedOutcome:
    """Admin override for a match's final score."""
    home_goals: int
    away_goals: int
    winner: Optional[str] = None


@dataclass
class PersistedMatchResult:
    """Authoritative final result that bet resolution reads from."""
    match_id: str
    home_goals: int
    away_goals: int
    winner: str
    is_final: bool = False
    first_goal_minute: Optional[int] = None
    events: List[GoalEvent] = field(default_factory=list)
    updated_at: Optional[datetime] = None


@dataclass
class Bet:
    """A wager on a single selection."""
    id: Optional[int]
    user_id: str
    match_id: str
    bet_type: str
    selection: str
    odds: float
    stake: float
    status: str = PENDING
    payout: float = 0.0
    placed_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None


@dataclass
class BetRequest:
    """A bet slip line submitted for atomic placement."""
    match_id: str
    bet_type: str
    selection: str
    amount: float
    odds: float


@dataclass
class PlaceBetsResult:
    """Outcome of an all-or-nothing bet placement."""
    status: str  # 'ok', 'insufficient_balance', 'failed', 'invalid_bets'
    new_balance: Optional[float] = None
    bets_placed: int = 0
    stake_deducted: float = 0.0
    error: Optional[str] = None


@dataclass
class ResolutionResult:
    """Outcome of resolving bets for a finished match."""
    resolved: int = 0
    error: Optional[str] = None


@dataclass
class StaleSweepResult:
    """Outcome of the deferred stale-bet safety check."""
    forced: int = 0
    cancelled: int = 0


@dataclass
class SettlementReport:
    """Summary of one settlement batch."""
    timeframe_index: int
    settled: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    bets_resolved: int = 0
    skipped: bool = False


# Bet type name -> {"selections": [...], "odds": ["1.20", ...]}
OddsBoard = Dict[str, Dict[str, List[str]]]
