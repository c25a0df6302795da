"""Bet ledger: atomic placement, resolution and the stale-bet safety sweep."""
import logging
import re
import sqlite3
from typing import Dict, List, Optional, Sequence, Tuple

from .config import CURRENCY, MIN_STAKE
from .database import (
    adjust_balance,
    get_bet,
    get_bets_for_match,
    get_result_by_match,
    transaction,
    utcnow,
)
from .models import (
    CANCELLED,
    LOST,
    PENDING,
    WON,
    Bet,
    BetRequest,
    PlaceBetsResult,
    ResolutionResult,
    StaleSweepResult,
)
from .notifications import BalanceNotifier
from .simulator import winner_for

logger = logging.getLogger(__name__)

OVER_UNDER_RE = re.compile(r"^(Over|Under) (\d+(?:\.\d+)?)$")
MINUTE_RANGE_RE = re.compile(r"^(\d+)-(\d+) min$")
CORRECT_SCORE_RE = re.compile(r"^(\d+)-(\d+)$")

ONE_X_TWO = {"home": "1", "draw": "X", "away": "2"}


def validate_bets(bets: Sequence[BetRequest]) -> List[str]:
    """Check a bet slip before placement. Returns a list of error messages."""
    errors = []

    if not bets:
        return ["No bets to place"]

    for index, bet in enumerate(bets):
        if not bet.match_id:
            errors.append(f"Bet {index}: Missing match ID")
        if not bet.bet_type:
            errors.append(f"Bet {index}: Missing bet type")
        if not bet.selection:
            errors.append(f"Bet {index}: Missing selection")
        if not isinstance(bet.amount, (int, float)) or bet.amount <= 0:
            errors.append(f"Bet {index}: Invalid amount")
        elif bet.amount < MIN_STAKE:
            errors.append(f"Bet {index}: Minimum stake is {MIN_STAKE} {CURRENCY}")
        if not isinstance(bet.odds, (int, float)) or bet.odds <= 0:
            errors.append(f"Bet {index}: Invalid odds")

    return errors


def place_bets_atomic(
    conn: sqlite3.Connection,
    user_id: str,
    bets: Sequence[BetRequest],
    notifier: Optional[BalanceNotifier] = None
) -> PlaceBetsResult:
    """
    Place every bet on the slip and deduct the total stake, or do nothing.

    Returns:
        PlaceBetsResult with status ok, insufficient_balance, failed or invalid_bets
    """
    if not user_id:
        return PlaceBetsResult(status="failed", error="User not authenticated")

    errors = validate_bets(bets)
    if errors:
        return PlaceBetsResult(status="invalid_bets", error="; ".join(errors))

    total_stake = sum(bet.amount for bet in bets)
    placed_at = utcnow().isoformat()

    try:
        with transaction(conn):
            row = conn.execute("SELECT balance FROM users WHERE id = ?", (user_id,)).fetchone()
            if row is None:
                return PlaceBetsResult(status="failed", error=f"Unknown user {user_id}")

            # Check and deduct in one statement so concurrent slips cannot overdraw
            cursor = conn.execute(
                "UPDATE users SET balance = balance - ? WHERE id = ? AND balance >= ?",
                (total_stake, user_id, total_stake)
            )
            if cursor.rowcount == 0:
                return PlaceBetsResult(
                    status="insufficient_balance",
                    new_balance=row["balance"],
                    error=f"insufficient balance: {row['balance']:.2f} < {total_stake:.2f}",
                )

            conn.executemany(
                """
                INSERT INTO bets (user_id, match_id, bet_type, selection, odds, stake, status, placed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (user_id, bet.match_id, bet.bet_type, bet.selection, bet.odds, bet.amount, PENDING, placed_at)
                    for bet in bets
                ]
            )
            new_balance = conn.execute("SELECT balance FROM users WHERE id = ?", (user_id,)).fetchone()["balance"]
    except sqlite3.Error as e:
        logger.error(f"Bet placement failed for {user_id}: {e}")
        return PlaceBetsResult(status="failed", error=str(e))

    logger.info(f"Placed {len(bets)} bets for {user_id}, stake {total_stake:.2f} {CURRENCY}")
    if notifier is not None:
        notifier.publish(user_id, new_balance)

    return PlaceBetsResult(
        status="ok",
        new_balance=new_balance,
        bets_placed=len(bets),
        stake_deducted=total_stake,
    )


def _in_minute_range(selection: str, minute: int) -> Optional[bool]:
    m = MINUTE_RANGE_RE.match(selection)
    if not m:
        return None
    low, high = int(m.group(1)), int(m.group(2))
    return low <= minute <= high


def bet_outcome(
    bet_type: str,
    selection: str,
    home_goals: int,
    away_goals: int,
    first_goal_minute: Optional[int] = None
) -> Optional[str]:
    """
    Decide whether a selection won against a final score.

    Returns:
        'won', 'lost', or None when the bet cannot be graded (void)
    """
    total = home_goals + away_goals

    if bet_type == "1X2":
        if selection not in ("1", "X", "2"):
            return None
        return WON if selection == ONE_X_TWO[winner_for(home_goals, away_goals)] else LOST

    if bet_type == "BTTS":
        both_scored = home_goals > 0 and away_goals > 0
        if selection == "Yes":
            return WON if both_scored else LOST
        if selection == "No":
            return LOST if both_scored else WON
        return None

    if bet_type in ("OV/UN 1.5", "OV/UN 2.5", "Total Goals"):
        m = OVER_UNDER_RE.match(selection)
        if not m:
            return None
        line = float(m.group(2))
        hit = total > line if m.group(1) == "Over" else total < line
        return WON if hit else LOST

    if bet_type == "Total Goals Odd/Even":
        if selection not in ("Odd", "Even"):
            return None
        actual = "Odd" if total % 2 == 1 else "Even"
        return WON if selection == actual else LOST

    if bet_type == "Time of First Goal":
        if total == 0:
            return LOST
        if first_goal_minute is None:
            return None
        hit = _in_minute_range(selection, first_goal_minute)
        if hit is None:
            return None
        return WON if hit else LOST

    if bet_type == "Correct Score":
        m = CORRECT_SCORE_RE.match(selection)
        if not m:
            return None
        return WON if (int(m.group(1)), int(m.group(2))) == (home_goals, away_goals) else LOST

    return None


def _settle_pending(
    conn: sqlite3.Connection,
    bets: Sequence[Bet],
    home_goals: int,
    away_goals: int,
    first_goal_minute: Optional[int]
) -> Tuple[Dict[str, float], int]:
    """
    Grade pending bets inside the caller's transaction.

    Returns:
        New balances by user, and how many bets this call actually graded
    """
    settled_at = utcnow().isoformat()
    balances: Dict[str, float] = {}
    graded = 0

    for bet in bets:
        outcome = bet_outcome(bet.bet_type, bet.selection, home_goals, away_goals, first_goal_minute)
        if outcome == WON:
            status, payout = WON, round(bet.stake * bet.odds, 2)
        elif outcome == LOST:
            status, payout = LOST, 0.0
        else:
            status, payout = CANCELLED, bet.stake

        # Already graded bets are left alone
        cursor = conn.execute(
            "UPDATE bets SET status = ?, payout = ?, settled_at = ? WHERE id = ? AND status = ?",
            (status, payout, settled_at, bet.id, PENDING)
        )
        if cursor.rowcount != 1:
            continue
        graded += 1
        if payout > 0:
            balances[bet.user_id] = adjust_balance(conn, bet.user_id, payout)
        logger.debug(f"Bet {bet.id} {bet.bet_type}/{bet.selection} -> {status}")

    return balances, graded


def _notify(notifier: Optional[BalanceNotifier], balances: Dict[str, float]) -> None:
    if notifier is None:
        return
    for user_id, balance in balances.items():
        notifier.publish(user_id, balance)


def resolve_bets_for_match(
    conn: sqlite3.Connection,
    match_id: str,
    home_goals: int,
    away_goals: int,
    first_goal_minute: Optional[int] = None,
    notifier: Optional[BalanceNotifier] = None
) -> ResolutionResult:
    """Settle every pending bet on a match against its final score."""
    try:
        with transaction(conn):
            pending = get_bets_for_match(conn, match_id, PENDING)
            balances, graded = _settle_pending(conn, pending, home_goals, away_goals, first_goal_minute)
    except sqlite3.Error as e:
        logger.error(f"Resolving bets for {match_id} failed: {e}")
        return ResolutionResult(error=str(e))

    _notify(notifier, balances)
    return ResolutionResult(resolved=graded)


def force_resolve_stale_bets(
    conn: sqlite3.Connection,
    match_id: str,
    notifier: Optional[BalanceNotifier] = None
) -> StaleSweepResult:
    """
    Safety net for bets still pending after settlement.

    Pending bets are graded from the persisted final result. Without a final
    result there is nothing to grade against, so they are cancelled and the
    stakes refunded. Bets that are already graded are a no-op.
    """
    with transaction(conn):
        pending = get_bets_for_match(conn, match_id, PENDING)
        if not pending:
            return StaleSweepResult()

        result = get_result_by_match(conn, match_id)
        if result is not None and result.is_final:
            balances, graded = _settle_pending(
                conn, pending, result.home_goals, result.away_goals, result.first_goal_minute
            )
            sweep = StaleSweepResult(forced=graded)
        else:
            settled_at = utcnow().isoformat()
            balances = {}
            cancelled = 0
            for bet in pending:
                cursor = conn.execute(
                    "UPDATE bets SET status = ?, payout = ?, settled_at = ? WHERE id = ? AND status = ?",
                    (CANCELLED, bet.stake, settled_at, bet.id, PENDING)
                )
                if cursor.rowcount == 1:
                    cancelled += 1
                    balances[bet.user_id] = adjust_balance(conn, bet.user_id, bet.stake)
            sweep = StaleSweepResult(forced=cancelled, cancelled=cancelled)

    _notify(notifier, balances)
    return sweep


def cancel_bet(
    conn: sqlite3.Connection,
    user_id: str,
    bet_id: int,
    notifier: Optional[BalanceNotifier] = None
) -> Optional[float]:
    """
    Cancel a pending bet and refund its stake.

    Returns:
        The new balance, or None if the bet is not the user's or not pending
    """
    with transaction(conn):
        bet = get_bet(conn, bet_id)
        if bet is None or bet.user_id != user_id:
            logger.warning(f"Bet {bet_id} not found for {user_id}")
            return None
        cursor = conn.execute(
            "UPDATE bets SET status = ?, payout = ?, settled_at = ? WHERE id = ? AND status = ?",
            (CANCELLED, bet.stake, utcnow().isoformat(), bet_id, PENDING)
        )
        if cursor.rowcount == 0:
            logger.warning(f"Bet {bet_id} is {bet.status}, cannot cancel")
            return None
        new_balance = adjust_balance(conn, user_id, bet.stake)

    _notify(notifier, {user_id: new_balance})
    return new_balance
