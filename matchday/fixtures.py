"""Fixture generation: weekly rotations and all-pairs draw pools."""
import random
from typing import Dict, List, Optional, Sequence

from .config import MIN_POOL_SIZE, TOTAL_WEEKS


def generate_fixtures(teams: Sequence[str], total_weeks: int = TOTAL_WEEKS) -> List[Dict]:
    """
    Build a fixed rotation of pairings, one list of matches per week.

    Week w pairs the team at (w + i) mod n against (w + n - i - 1) mod n for
    i in [0, n/2). This is not a strict round-robin: for odd n or short
    seasons teams can meet again before every pair has played.

    Args:
        teams: Team names of the league
        total_weeks: Number of weeks in the season

    Returns:
        List of {"week": int, "matches": [{"home": str, "away": str}, ...]}
    """
    n = len(teams)
    fixtures = []
    if n < 2:
        return fixtures

    for week in range(1, total_weeks + 1):
        week_matches = []
        for i in range(n // 2):
            home_idx = (week + i) % n
            away_idx = (week + n - i - 1) % n
            week_matches.append({"home": teams[home_idx], "away": teams[away_idx]})
        fixtures.append({"week": week, "matches": week_matches})

    return fixtures


def all_pairs(teams: Sequence[str]) -> List[Dict]:
    """Every unique unordered pair of teams, once."""
    pairs = []
    for i in range(len(teams)):
        for j in range(i + 1, len(teams)):
            pairs.append({"home": teams[i], "away": teams[j]})
    return pairs


def build_match_pool(
    teams: Sequence[str],
    min_size: int = MIN_POOL_SIZE,
    seed: Optional[str] = None
) -> List[Dict]:
    """
    Build the draw pool for per-timeframe match cards.

    The pairs are shuffled with a seeded generator so every viewer of the same
    league draws the same order. Leagues with too few teams are padded by
    repeating the pool until it reaches min_size.
    """
    pairs = all_pairs(teams)
    if not pairs:
        return []

    random.Random(seed).shuffle(pairs)

    if len(pairs) >= min_size:
        return pairs

    padded = list(pairs)
    while len(padded) < min_size:
        padded.extend(pairs)
    return padded[:min_size]


def draw_matches(pool: Sequence[Dict], timeframe_index: int, count: int) -> List[Dict]:
    """Draw count entries cyclically from the pool for a timeframe."""
    if not pool:
        return []
    return [pool[(timeframe_index * count + i) % len(pool)] for i in range(count)]
