"""Odds boards derived from a finished (simulated) score."""
from typing import List

from .models import OddsBoard

TIME_OF_FIRST_GOAL_SELECTIONS = ["0-15 min", "16-30 min", "31-45 min", "46-60 min", "61-75 min", "76-90 min"]

# Shown before a match has a result
DEFAULT_BET_TYPES: OddsBoard = {
    "1X2": {"selections": ["1", "X", "2"], "odds": ["2.10", "3.20", "2.80"]},
    "BTTS": {"selections": ["Yes", "No"], "odds": ["1.90", "1.90"]},
    "OV/UN 1.5": {"selections": ["Over 1.5", "Under 1.5"], "odds": ["1.60", "2.20"]},
    "OV/UN 2.5": {"selections": ["Over 2.5", "Under 2.5"], "odds": ["2.00", "1.80"]},
    "Total Goals": {
        "selections": ["Over 2.5", "Over 3.5", "Over 4.5", "Under 2.5", "Under 3.5", "Under 4.5"],
        "odds": ["1.85", "2.40", "3.50", "1.95", "1.50", "1.25"],
    },
    "Time of First Goal": {
        "selections": TIME_OF_FIRST_GOAL_SELECTIONS,
        "odds": ["4.50", "3.80", "3.20", "3.40", "2.80", "2.50"],
    },
    "Total Goals Odd/Even": {"selections": ["Odd", "Even"], "odds": ["1.90", "1.90"]},
}

CORRECT_SCORE_ODDS = {
    "0-0": 8.50, "0-1": 10.00, "0-2": 15.00, "0-3": 20.00,
    "1-0": 6.50, "1-1": 5.50, "1-2": 12.00, "1-3": 18.00,
    "2-0": 9.00, "2-1": 7.50, "2-2": 8.00, "2-3": 16.00,
    "3-0": 14.00, "3-1": 11.00, "3-2": 13.00, "3-3": 18.50,
}

# Placeholder: the board has no goal-time input
TIME_OF_FIRST_GOAL_ODDS = [1.05, 1.05, 1.05, 2.50, 3.50, 4.00]


def fmt(odds: float) -> str:
    """Render decimal odds with exactly two places."""
    return f"{odds:.2f}"


def _entry(selections: List[str], odds: List[float]) -> dict:
    return {"selections": list(selections), "odds": [fmt(o) for o in odds]}


def compute_odds(home_goals: int, away_goals: int) -> OddsBoard:
    """
    Build the full odds board for a final score.

    Odds are fixed constants chosen by branching on the score: the side that
    matches the actual result is cheap, the other side expensive.
    """
    total = home_goals + away_goals

    if home_goals > away_goals:
        odds_1, odds_x, odds_2 = 1.20, 5.00, 8.00
    elif away_goals > home_goals:
        odds_1, odds_x, odds_2 = 8.00, 5.00, 1.20
    else:
        odds_1, odds_x, odds_2 = 4.00, 1.15, 4.00

    both_scored = home_goals > 0 and away_goals > 0
    btts_yes = 1.10 if both_scored else 2.50
    btts_no = 4.00 if both_scored else 1.20

    ov15 = 1.15 if total > 1.5 else 3.20
    un15 = 1.15 if total < 1.5 else 3.20
    ov25 = 1.30 if total > 2.5 else 2.50
    un25 = 1.30 if total < 2.5 else 2.50
    ov35 = 1.40 if total > 3.5 else 2.20
    un35 = 1.40 if total < 3.5 else 2.20
    ov45 = 2.00 if total > 4.5 else 1.80
    un45 = 1.80 if total < 4.5 else 2.00

    odd_total = total % 2 == 1
    odd_odds = 1.10 if odd_total else 3.00
    even_odds = 3.00 if odd_total else 1.10

    return {
        "1X2": _entry(["1", "X", "2"], [odds_1, odds_x, odds_2]),
        "BTTS": _entry(["Yes", "No"], [btts_yes, btts_no]),
        "OV/UN 1.5": _entry(["Over 1.5", "Under 1.5"], [ov15, un15]),
        "OV/UN 2.5": _entry(["Over 2.5", "Under 2.5"], [ov25, un25]),
        "Total Goals": _entry(
            ["Over 2.5", "Over 3.5", "Over 4.5", "Under 2.5", "Under 3.5", "Under 4.5"],
            [ov25, ov35, ov45, un25, un35, un45],
        ),
        "Time of First Goal": _entry(TIME_OF_FIRST_GOAL_SELECTIONS, TIME_OF_FIRST_GOAL_ODDS),
        "Total Goals Odd/Even": _entry(["Odd", "Even"], [odd_odds, even_odds]),
        "Correct Score": _entry(list(CORRECT_SCORE_ODDS), list(CORRECT_SCORE_ODDS.values())),
    }


def lookup_odds(board: OddsBoard, bet_type: str, selection: str) -> float:
    """Price of a selection on a board. Raises KeyError if it is not offered."""
    entry = board[bet_type]
    try:
        idx = entry["selections"].index(selection)
    except ValueError:
        raise KeyError(f"{selection!r} is not offered in {bet_type}")
    return float(entry["odds"][idx])
