import pytest

from matchday.database import (
    ensure_user,
    get_balance,
    get_bets_for_match,
    get_bets_for_user,
    upsert_match_result,
)
from matchday.ledger import (
    bet_outcome,
    cancel_bet,
    force_resolve_stale_bets,
    place_bets_atomic,
    resolve_bets_for_match,
    validate_bets,
)
from matchday.models import CANCELLED, LOST, PENDING, WON, BetRequest, PersistedMatchResult
from matchday.notifications import BalanceNotifier


@pytest.fixture
def user(conn):
    ensure_user(conn, "alice", 1000.0)
    return "alice"


def _slip(*entries):
    return [BetRequest(match_id, bet_type, selection, amount, odds)
            for match_id, bet_type, selection, amount, odds in entries]


def test_place_bets_deducts_total_stake(conn, user):
    result = place_bets_atomic(conn, user, _slip(
        ("m1", "1X2", "1", 100, 2.10),
        ("m1", "BTTS", "Yes", 150, 1.90),
    ))
    assert result.status == "ok"
    assert result.bets_placed == 2
    assert result.stake_deducted == 250
    assert result.new_balance == 750
    assert get_balance(conn, user) == 750
    assert [b.status for b in get_bets_for_match(conn, "m1")] == [PENDING, PENDING]


def test_insufficient_balance_places_nothing(conn, user):
    result = place_bets_atomic(conn, user, _slip(
        ("m1", "1X2", "1", 600, 2.10),
        ("m1", "1X2", "2", 600, 2.80),
    ))
    assert result.status == "insufficient_balance"
    assert get_balance(conn, user) == 1000
    assert get_bets_for_user(conn, user) == []


def test_invalid_slips_are_rejected(conn, user):
    assert place_bets_atomic(conn, user, []).status == "invalid_bets"
    result = place_bets_atomic(conn, user, _slip(("m1", "1X2", "1", 10, 2.10)))
    assert result.status == "invalid_bets"
    assert "Minimum stake" in result.error
    assert get_balance(conn, user) == 1000


def test_unknown_or_missing_user_fails(conn):
    assert place_bets_atomic(conn, "", _slip(("m1", "1X2", "1", 100, 2.0))).status == "failed"
    assert place_bets_atomic(conn, "ghost", _slip(("m1", "1X2", "1", 100, 2.0))).status == "failed"


def test_validate_bets_reports_each_problem():
    errors = validate_bets(_slip(("", "", "", 0, 0)))
    assert len(errors) == 5


@pytest.mark.parametrize("bet_type,selection,home,away,expected", [
    ("1X2", "1", 2, 1, WON),
    ("1X2", "X", 2, 1, LOST),
    ("1X2", "X", 1, 1, WON),
    ("1X2", "2", 0, 1, WON),
    ("BTTS", "Yes", 2, 1, WON),
    ("BTTS", "No", 2, 0, WON),
    ("OV/UN 2.5", "Over 2.5", 2, 1, WON),
    ("OV/UN 2.5", "Under 2.5", 2, 1, LOST),
    ("OV/UN 1.5", "Under 1.5", 1, 0, WON),
    ("Total Goals", "Over 3.5", 2, 1, LOST),
    ("Total Goals", "Under 4.5", 2, 2, WON),
    ("Total Goals Odd/Even", "Odd", 2, 1, WON),
    ("Total Goals Odd/Even", "Even", 0, 0, WON),
    ("Correct Score", "2-1", 2, 1, WON),
    ("Correct Score", "1-2", 2, 1, LOST),
    ("Time of First Goal", "0-15 min", 0, 0, LOST),
])
def test_bet_outcome(bet_type, selection, home, away, expected):
    assert bet_outcome(bet_type, selection, home, away) == expected


def test_time_of_first_goal_uses_minute():
    assert bet_outcome("Time of First Goal", "16-30 min", 1, 0, first_goal_minute=22) == WON
    assert bet_outcome("Time of First Goal", "0-15 min", 1, 0, first_goal_minute=22) == LOST
    assert bet_outcome("Time of First Goal", "0-15 min", 1, 0) is None


def test_ungradeable_bets_are_void():
    assert bet_outcome("1X2", "Home", 1, 0) is None
    assert bet_outcome("Half Time", "1", 1, 0) is None


def test_resolve_pays_winners(conn, user):
    place_bets_atomic(conn, user, _slip(
        ("m1", "1X2", "1", 100, 1.20),
        ("m1", "1X2", "2", 100, 8.00),
        ("m1", "OV/UN 2.5", "Over 2.5", 100, 2.00),
    ))
    result = resolve_bets_for_match(conn, "m1", 2, 1)
    assert result.resolved == 3
    assert result.error is None

    bets = get_bets_for_match(conn, "m1")
    assert [b.status for b in bets] == [WON, LOST, WON]
    assert [b.payout for b in bets] == [120.0, 0.0, 200.0]
    assert get_balance(conn, user) == pytest.approx(700 + 120 + 200)


def test_resolve_twice_pays_once(conn, user):
    place_bets_atomic(conn, user, _slip(("m1", "1X2", "1", 100, 1.20)))
    resolve_bets_for_match(conn, "m1", 2, 1)
    again = resolve_bets_for_match(conn, "m1", 2, 1)
    assert again.resolved == 0
    assert get_balance(conn, user) == pytest.approx(1020)


def test_void_bet_is_refunded(conn, user):
    place_bets_atomic(conn, user, _slip(("m1", "Half Time", "1", 100, 3.00)))
    resolve_bets_for_match(conn, "m1", 1, 0)
    assert get_bets_for_match(conn, "m1")[0].status == CANCELLED
    assert get_balance(conn, user) == 1000


def test_stale_sweep_grades_from_final_result(conn, user):
    place_bets_atomic(conn, user, _slip(("m1", "1X2", "X", 100, 1.15)))
    upsert_match_result(conn, PersistedMatchResult("m1", 1, 1, "draw", is_final=True))
    swept = force_resolve_stale_bets(conn, "m1")
    assert swept.forced == 1
    assert swept.cancelled == 0
    assert get_bets_for_match(conn, "m1", PENDING) == []
    assert get_balance(conn, user) == pytest.approx(1015)


def test_stale_sweep_without_result_refunds(conn, user):
    place_bets_atomic(conn, user, _slip(("m1", "1X2", "1", 100, 2.10)))
    swept = force_resolve_stale_bets(conn, "m1")
    assert swept.cancelled == 1
    assert get_bets_for_match(conn, "m1")[0].status == CANCELLED
    assert get_balance(conn, user) == 1000


def test_stale_sweep_is_noop_when_resolved(conn, user):
    place_bets_atomic(conn, user, _slip(("m1", "1X2", "1", 100, 1.20)))
    resolve_bets_for_match(conn, "m1", 2, 1)
    assert force_resolve_stale_bets(conn, "m1").forced == 0
    assert get_balance(conn, user) == pytest.approx(1020)


def test_cancel_bet(conn, user):
    place_bets_atomic(conn, user, _slip(("m1", "1X2", "1", 100, 2.10)))
    bet = get_bets_for_user(conn, user)[0]
    assert cancel_bet(conn, "bob", bet.id) is None
    assert cancel_bet(conn, user, bet.id) == 1000
    assert cancel_bet(conn, user, bet.id) is None


def test_balance_notifications(conn, user):
    notifier = BalanceNotifier()
    seen = []
    notifier.subscribe(user, seen.append)
    place_bets_atomic(conn, user, _slip(("m1", "1X2", "1", 100, 1.20)), notifier)
    resolve_bets_for_match(conn, "m1", 3, 0, notifier=notifier)
    assert seen == [900, pytest.approx(1020)]


def test_resolve_counts_only_bets_it_graded(conn, user, monkeypatch):
    place_bets_atomic(conn, user, _slip(
        ("m1", "1X2", "1", 100, 1.20),
        ("m1", "1X2", "2", 100, 8.00),
    ))
    snapshot = get_bets_for_match(conn, "m1", PENDING)
    cancel_bet(conn, user, snapshot[1].id)

    # A pending list read before the cancellation landed
    monkeypatch.setattr("matchday.ledger.get_bets_for_match", lambda *args, **kwargs: snapshot)
    result = resolve_bets_for_match(conn, "m1", 2, 1)
    assert result.resolved == 1
    assert get_balance(conn, user) == pytest.approx(800 + 100 + 120)
    assert [b.status for b in get_bets_for_match(conn, "m1")] == [WON, CANCELLED]


def test_stale_sweep_counts_only_bets_it_graded(conn, user, monkeypatch):
    place_bets_atomic(conn, user, _slip(
        ("m1", "1X2", "X", 100, 1.15),
        ("m1", "BTTS", "Yes", 100, 1.90),
    ))
    upsert_match_result(conn, PersistedMatchResult("m1", 1, 1, "draw", is_final=True))
    snapshot = get_bets_for_match(conn, "m1", PENDING)
    resolve_bets_for_match(conn, "m1", 1, 1)

    monkeypatch.setattr("matchday.ledger.get_bets_for_match", lambda *args, **kwargs: snapshot)
    assert force_resolve_stale_bets(conn, "m1").forced == 0
    assert get_balance(conn, user) == pytest.approx(800 + 115 + 190)
