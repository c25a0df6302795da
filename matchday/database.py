"""Database connection and operations for the matchday simulator."""
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Generator, List, Optional, Sequence

from .config import ADVANCEMENT_MODE, DB_PATH, DEFAULT_MATCH_INTERVAL_MINUTES
from .models import (
    PHASES,
    PRE_COUNTDOWN,
    Bet,
    ForcedOutcome,
    GoalEvent,
    GlobalSchedule,
    GlobalSystemState,
    Match,
    PersistedMatchResult,
)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def get_connection(db_path: Path = DB_PATH) -> sqlite3.Connection:
    """Create a database connection with row factory enabled."""
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Generator[sqlite3.Connection, None, None]:
    """Context manager for database transactions."""
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_database(conn: sqlite3.Connection) -> None:
    """Initialize the database schema."""
    conn.executescript("""
        -- Shared match clock (single row)
        CREATE TABLE IF NOT EXISTS system_state (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            current_week INTEGER NOT NULL,
            current_timeframe_idx INTEGER NOT NULL,
            match_state TEXT NOT NULL,
            countdown INTEGER NOT NULL,
            updated_at DATETIME
        );

        -- Reference epoch for time-based scheduling (first write wins)
        CREATE TABLE IF NOT EXISTS global_schedule (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            reference_epoch DATETIME NOT NULL,
            match_interval INTEGER NOT NULL,
            timezone TEXT DEFAULT 'UTC',
            last_updated DATETIME
        );

        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        -- Raw match records
        CREATE TABLE IF NOT EXISTS matches (
            id TEXT PRIMARY KEY,
            country TEXT,
            home_team TEXT NOT NULL,
            away_team TEXT NOT NULL,
            kickoff_time DATETIME,
            raw TEXT DEFAULT '{}'
        );

        -- Authoritative final results
        CREATE TABLE IF NOT EXISTS match_results (
            id INTEGER PRIMARY KEY,
            match_id TEXT UNIQUE NOT NULL,
            home_goals INTEGER NOT NULL,
            away_goals INTEGER NOT NULL,
            winner TEXT NOT NULL,
            is_final INTEGER NOT NULL DEFAULT 0,
            first_goal_minute INTEGER,
            events TEXT DEFAULT '[]',
            updated_at DATETIME
        );

        -- Human-readable match history
        CREATE TABLE IF NOT EXISTS match_history (
            id INTEGER PRIMARY KEY,
            match_id TEXT NOT NULL,
            country TEXT,
            home_team TEXT NOT NULL,
            away_team TEXT NOT NULL,
            home_goals INTEGER NOT NULL,
            away_goals INTEGER NOT NULL,
            winner TEXT NOT NULL,
            recorded_at DATETIME
        );

        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            balance REAL NOT NULL DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS bets (
            id INTEGER PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(id),
            match_id TEXT NOT NULL,
            bet_type TEXT NOT NULL,
            selection TEXT NOT NULL,
            odds REAL NOT NULL,
            stake REAL NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            payout REAL NOT NULL DEFAULT 0,
            placed_at DATETIME,
            settled_at DATETIME
        );

        -- Admin forced outcomes
        CREATE TABLE IF NOT EXISTS outcome_overrides (
            match_id TEXT PRIMARY KEY,
            home_goals INTEGER NOT NULL,
            away_goals INTEGER NOT NULL,
            winner TEXT
        );

        -- Indexes
        CREATE INDEX IF NOT EXISTS idx_bets_match_status ON bets(match_id, status);
        CREATE INDEX IF NOT EXISTS idx_bets_user ON bets(user_id);
        CREATE INDEX IF NOT EXISTS idx_history_time ON match_history(recorded_at);
    """)
    conn.execute(
        "INSERT OR IGNORE INTO settings (key, value) VALUES ('advancement_mode', ?)",
        (ADVANCEMENT_MODE,)
    )
    conn.commit()


# System state operations
def get_system_state(conn: sqlite3.Connection) -> GlobalSystemState:
    """Read the shared clock row, creating it with defaults on first access."""
    row = conn.execute("SELECT * FROM system_state WHERE id = 1").fetchone()
    if row is None:
        state = GlobalSystemState(last_updated=utcnow())
        save_system_state(conn, state)
        return state
    return GlobalSystemState(
        current_week=row["current_week"],
        current_timeframe_index=row["current_timeframe_idx"],
        match_phase=row["match_state"] if row["match_state"] in PHASES else PRE_COUNTDOWN,
        countdown_seconds=row["countdown"],
        last_updated=_parse_ts(row["updated_at"]),
    )


def save_system_state(conn: sqlite3.Connection, state: GlobalSystemState) -> None:
    """Upsert the shared clock row (last write wins)."""
    updated_at = state.last_updated or utcnow()
    conn.execute(
        """
        INSERT INTO system_state (id, current_week, current_timeframe_idx, match_state, countdown, updated_at)
        VALUES (1, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            current_week = excluded.current_week,
            current_timeframe_idx = excluded.current_timeframe_idx,
            match_state = excluded.match_state,
            countdown = excluded.countdown,
            updated_at = excluded.updated_at
        """,
        (
            state.current_week,
            state.current_timeframe_index,
            state.match_phase,
            state.countdown_seconds,
            updated_at.isoformat(),
        )
    )
    conn.commit()


# Schedule operations
def get_or_create_schedule(
    conn: sqlite3.Connection,
    reference_epoch: Optional[datetime] = None,
    match_interval: int = DEFAULT_MATCH_INTERVAL_MINUTES,
    tz: str = "UTC"
) -> GlobalSchedule:
    """Get the global schedule, initializing it if absent. First write wins."""
    now = utcnow()
    conn.execute(
        """
        INSERT OR IGNORE INTO global_schedule (id, reference_epoch, match_interval, timezone, last_updated)
        VALUES (1, ?, ?, ?, ?)
        """,
        ((reference_epoch or now).isoformat(), match_interval, tz, now.isoformat())
    )
    conn.commit()
    row = conn.execute("SELECT * FROM global_schedule WHERE id = 1").fetchone()
    return GlobalSchedule(
        reference_epoch=datetime.fromisoformat(row["reference_epoch"]),
        match_interval_minutes=row["match_interval"],
        timezone=row["timezone"],
        last_updated=_parse_ts(row["last_updated"]),
    )


# Settings
def get_setting(conn: sqlite3.Connection, key: str, default: Optional[str] = None) -> Optional[str]:
    """Read a persisted setting."""
    row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else default


def set_setting(conn: sqlite3.Connection, key: str, value: str) -> None:
    """Write a persisted setting."""
    conn.execute(
        "INSERT INTO settings (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (key, value)
    )
    conn.commit()


# Match operations
def save_match(conn: sqlite3.Connection, match: Match) -> None:
    """Register a raw match record if it does not exist yet."""
    raw = {
        "home_team": match.home_team,
        "away_team": match.away_team,
        "status": "scheduled",
    }
    conn.execute(
        """
        INSERT OR IGNORE INTO matches (id, country, home_team, away_team, kickoff_time, raw)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (match.id, match.country, match.home_team, match.away_team,
         match.kickoff_time.isoformat(), json.dumps(raw))
    )
    conn.commit()


def get_match_raw(conn: sqlite3.Connection, match_id: str) -> Optional[dict]:
    """Get the raw JSON record of a match."""
    row = conn.execute("SELECT raw FROM matches WHERE id = ?", (match_id,)).fetchone()
    if row is None:
        return None
    return json.loads(row["raw"] or "{}")


def mark_match_finished(conn: sqlite3.Connection, match_id: str, home_goals: int, away_goals: int) -> bool:
    """Merge final scores and finished markers into the raw match record."""
    raw = get_match_raw(conn, match_id)
    if raw is None:
        return False
    raw.update({
        "home_score": home_goals,
        "away_score": away_goals,
        "status": "finished",
        "finished": True,
        "match_finished": True,
    })
    conn.execute("UPDATE matches SET raw = ? WHERE id = ?", (json.dumps(raw), match_id))
    conn.commit()
    return True


# Result operations
def upsert_match_result(conn: sqlite3.Connection, result: PersistedMatchResult) -> None:
    """Insert or update the result for a match. A final result never reverts."""
    events = json.dumps([{"time": e.time, "team": e.team} for e in result.events])
    conn.execute(
        """
        INSERT INTO match_results (match_id, home_goals, away_goals, winner, is_final, first_goal_minute, events, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(match_id) DO UPDATE SET
            home_goals = excluded.home_goals,
            away_goals = excluded.away_goals,
            winner = excluded.winner,
            is_final = MAX(match_results.is_final, excluded.is_final),
            first_goal_minute = excluded.first_goal_minute,
            events = excluded.events,
            updated_at = excluded.updated_at
        """,
        (
            result.match_id,
            result.home_goals,
            result.away_goals,
            result.winner,
            int(result.is_final),
            result.first_goal_minute,
            events,
            utcnow().isoformat(),
        )
    )
    conn.commit()


def _row_to_result(row: sqlite3.Row) -> PersistedMatchResult:
    return PersistedMatchResult(
        match_id=row["match_id"],
        home_goals=row["home_goals"],
        away_goals=row["away_goals"],
        winner=row["winner"],
        is_final=bool(row["is_final"]),
        first_goal_minute=row["first_goal_minute"],
        events=[GoalEvent(time=e["time"], team=e["team"]) for e in json.loads(row["events"] or "[]")],
        updated_at=_parse_ts(row["updated_at"]),
    )


def get_result_by_match(conn: sqlite3.Connection, match_id: str) -> Optional[PersistedMatchResult]:
    """Get the persisted result for a match."""
    row = conn.execute("SELECT * FROM match_results WHERE match_id = ?", (match_id,)).fetchone()
    return _row_to_result(row) if row else None


def get_final_results(conn: sqlite3.Connection, match_ids: Sequence[str]) -> Dict[str, PersistedMatchResult]:
    """Get the final results among a set of matches, keyed by match id."""
    if not match_ids:
        return {}
    placeholders = ", ".join("?" for _ in match_ids)
    cursor = conn.execute(
        f"SELECT * FROM match_results WHERE is_final = 1 AND match_id IN ({placeholders})",
        list(match_ids)
    )
    return {row["match_id"]: _row_to_result(row) for row in cursor.fetchall()}


def get_recent_results(conn: sqlite3.Connection, limit: int = 20) -> List[dict]:
    """Get the latest persisted results joined with team names."""
    cursor = conn.execute(
        """
        SELECT r.*, m.home_team, m.away_team, m.country
        FROM match_results r
        LEFT JOIN matches m ON m.id = r.match_id
        ORDER BY r.updated_at DESC
        LIMIT ?
        """,
        (limit,)
    )
    return [dict(row) for row in cursor.fetchall()]


# History operations
def append_match_history(
    conn: sqlite3.Connection,
    match: Match,
    home_goals: int,
    away_goals: int,
    winner: str
) -> int:
    """Append a human-readable record of a finished match."""
    cursor = conn.execute(
        """
        INSERT INTO match_history (match_id, country, home_team, away_team, home_goals, away_goals, winner, recorded_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (match.id, match.country, match.home_team, match.away_team,
         home_goals, away_goals, winner, utcnow().isoformat())
    )
    conn.commit()
    return cursor.lastrowid


def get_match_history(conn: sqlite3.Connection, limit: int = 50) -> List[dict]:
    """Get the most recent match history rows."""
    cursor = conn.execute(
        "SELECT * FROM match_history ORDER BY id DESC LIMIT ?",
        (limit,)
    )
    return [dict(row) for row in cursor.fetchall()]


# Override operations
def set_outcome_override(conn: sqlite3.Connection, match_id: str, outcome: ForcedOutcome) -> None:
    """Store an admin forced outcome for a match."""
    conn.execute(
        """
        INSERT OR REPLACE INTO outcome_overrides (match_id, home_goals, away_goals, winner)
        VALUES (?, ?, ?, ?)
        """,
        (match_id, outcome.home_goals, outcome.away_goals, outcome.winner)
    )
    conn.commit()


def get_outcome_overrides(conn: sqlite3.Connection) -> dict:
    """Get all forced outcomes keyed by match id."""
    cursor = conn.execute("SELECT * FROM outcome_overrides")
    return {
        row["match_id"]: ForcedOutcome(
            home_goals=row["home_goals"],
            away_goals=row["away_goals"],
            winner=row["winner"],
        )
        for row in cursor.fetchall()
    }


# User operations
def ensure_user(conn: sqlite3.Connection, user_id: str, balance: float = 0.0) -> None:
    """Create a user with an opening balance if absent."""
    conn.execute("INSERT OR IGNORE INTO users (id, balance) VALUES (?, ?)", (user_id, balance))
    conn.commit()


def get_balance(conn: sqlite3.Connection, user_id: str) -> Optional[float]:
    """Get a user's balance, or None for an unknown user."""
    row = conn.execute("SELECT balance FROM users WHERE id = ?", (user_id,)).fetchone()
    return row["balance"] if row else None


def adjust_balance(conn: sqlite3.Connection, user_id: str, delta: float) -> float:
    """Add delta to a user's balance without committing. Returns the new balance."""
    conn.execute("UPDATE users SET balance = balance + ? WHERE id = ?", (delta, user_id))
    return conn.execute("SELECT balance FROM users WHERE id = ?", (user_id,)).fetchone()["balance"]


# Bet operations
def _row_to_bet(row: sqlite3.Row) -> Bet:
    return Bet(
        id=row["id"],
        user_id=row["user_id"],
        match_id=row["match_id"],
        bet_type=row["bet_type"],
        selection=row["selection"],
        odds=row["odds"],
        stake=row["stake"],
        status=row["status"],
        payout=row["payout"],
        placed_at=_parse_ts(row["placed_at"]),
        settled_at=_parse_ts(row["settled_at"]),
    )


def get_bet(conn: sqlite3.Connection, bet_id: int) -> Optional[Bet]:
    """Get a bet by its ID."""
    row = conn.execute("SELECT * FROM bets WHERE id = ?", (bet_id,)).fetchone()
    return _row_to_bet(row) if row else None


def get_bets_for_match(conn: sqlite3.Connection, match_id: str, status: Optional[str] = None) -> List[Bet]:
    """Get bets on a match, optionally filtered by status."""
    if status is None:
        cursor = conn.execute("SELECT * FROM bets WHERE match_id = ? ORDER BY id", (match_id,))
    else:
        cursor = conn.execute(
            "SELECT * FROM bets WHERE match_id = ? AND status = ? ORDER BY id",
            (match_id, status)
        )
    return [_row_to_bet(row) for row in cursor.fetchall()]


def get_bets_for_user(conn: sqlite3.Connection, user_id: str, status: Optional[str] = None) -> List[Bet]:
    """Get a user's bets, newest first."""
    if status is None:
        cursor = conn.execute("SELECT * FROM bets WHERE user_id = ? ORDER BY id DESC", (user_id,))
    else:
        cursor = conn.execute(
            "SELECT * FROM bets WHERE user_id = ? AND status = ? ORDER BY id DESC",
            (user_id, status)
        )
    return [_row_to_bet(row) for row in cursor.fetchall()]
