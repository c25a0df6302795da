from matchday.config import LEAGUES
from matchday.fixtures import all_pairs, build_match_pool, draw_matches, generate_fixtures


def test_rotation_formula():
    teams = ["A", "B", "C", "D"]
    fixtures = generate_fixtures(teams, total_weeks=2)
    assert [f["week"] for f in fixtures] == [1, 2]
    assert fixtures[0]["matches"] == [{"home": "B", "away": "A"}, {"home": "C", "away": "D"}]
    assert fixtures[1]["matches"] == [{"home": "C", "away": "B"}, {"home": "D", "away": "A"}]


def test_rotation_needs_two_teams():
    assert generate_fixtures(["A"]) == []


def test_season_has_36_weeks():
    fixtures = generate_fixtures(LEAGUES["ENG"]["teams"])
    assert len(fixtures) == 36
    assert all(len(f["matches"]) == 10 for f in fixtures)


def test_all_pairs_is_unique():
    pairs = all_pairs(LEAGUES["ENG"]["teams"])
    assert len(pairs) == 190
    assert len({frozenset((p["home"], p["away"])) for p in pairs}) == 190


def test_small_league_pool_is_padded():
    pool = build_match_pool(LEAGUES["KEN"]["teams"], min_size=54, seed="KEN")
    assert len(pool) == 54


def test_pool_order_is_seeded():
    teams = LEAGUES["ESP"]["teams"]
    assert build_match_pool(teams, seed="ESP-0") == build_match_pool(teams, seed="ESP-0")
    assert build_match_pool(teams, seed="ESP-0") != build_match_pool(teams, seed="ESP-1")


def test_draw_wraps_cyclically():
    pool = [{"home": str(i), "away": "x"} for i in range(54)]
    assert draw_matches(pool, 0, 9) == pool[:9]
    assert draw_matches(pool, 6, 9) == pool[:9]
    assert [m["home"] for m in draw_matches(pool, 5, 9)] == [str(i) for i in range(45, 54)]
    assert draw_matches([], 3, 9) == []
