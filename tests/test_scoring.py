import pytest

from fantaf1.exceptions import IncompleteResults
from fantaf1.scoring import (
    calculate_position_change,
    compute_leaderboard,
    has_sprint,
    is_last_race,
    main_breakdown,
    main_session_earns_jolly,
    score_championship,
    score_main_session,
    score_sprint_session,
    season_total,
    sprint_breakdown,
)

OFFICIAL = {"P1": "Lando Norris", "P2": "Oscar Piastri", "P3": "Max Verstappen"}


def _sub(**kw):
    base = {
        "mainP1": "Lando Norris",
        "mainP2": "Oscar Piastri",
        "mainP3": "Max Verstappen",
        "mainJolly": "Lando Norris",
    }
    base.update(kw)
    return base


def test_perfect_lineup_with_both_jokers_scores_40():
    sub = _sub(mainJolly2="Max Verstappen")
    assert score_main_session(sub, OFFICIAL) == 40
    assert main_session_earns_jolly(sub, OFFICIAL) is False


def test_position_matches_are_order_sensitive():
    sub = _sub(mainP1="Oscar Piastri", mainP2="Lando Norris", mainJolly="Charles Leclerc")
    # Only P3 lines up
    assert score_main_session(sub, OFFICIAL) == 8


def test_single_joker_on_podium_without_position_hits():
    sub = {
        "mainP1": "Charles Leclerc",
        "mainP2": "Lewis Hamilton",
        "mainP3": "George Russell",
        "mainJolly": "Max Verstappen",
    }
    assert score_main_session(sub, OFFICIAL) == 5


def test_empty_lineup_is_flat_penalty_regardless_of_jokers():
    sub = {"mainJolly": "Lando Norris", "mainJolly2": "Oscar Piastri", "isLate": True, "latePenalty": -3}
    assert score_main_session(sub, OFFICIAL) == -3
    assert score_main_session(sub, dict(OFFICIAL, doublePoints=True)) == -3


def test_late_penalty_applies_after_positive_scoring_and_is_doubled():
    sub = _sub(mainP3="Charles Leclerc", mainJolly="Charles Leclerc", isLate=True, latePenalty=-3)
    assert score_main_session(sub, OFFICIAL) == 19
    assert score_main_session(sub, dict(OFFICIAL, doublePoints=True)) == 38


def test_late_flag_without_stored_penalty_uses_default():
    sub = _sub(mainP3="Charles Leclerc", mainJolly="Charles Leclerc", isLate=True)
    assert score_main_session(sub, OFFICIAL) == 19


def test_29_rounds_to_30_and_earns_a_joker():
    # 12 + 10 + 5 + 5 - 3 = 29
    sub = _sub(mainP3="Charles Leclerc", mainJolly2="Oscar Piastri", isLate=True, latePenalty=-3)
    assert score_main_session(sub, OFFICIAL) == 30
    assert main_session_earns_jolly(sub, OFFICIAL) is True
    assert score_main_session(sub, dict(OFFICIAL, doublePoints=True)) == 60


def test_28_is_left_alone():
    sub = {
        "mainP1": "Charles Leclerc",
        "mainP2": "Oscar Piastri",
        "mainP3": "Max Verstappen",
        "mainJolly": "Lando Norris",
        "mainJolly2": "Oscar Piastri",
    }
    assert score_main_session(sub, OFFICIAL) == 28
    assert main_session_earns_jolly(sub, OFFICIAL) is False


def test_incomplete_podium_raises():
    with pytest.raises(IncompleteResults):
        score_main_session(_sub(), {"P1": "Lando Norris", "P2": "Oscar Piastri"})
    with pytest.raises(IncompleteResults):
        score_main_session(_sub(), None)


SPRINT = dict(OFFICIAL, SP1="Oscar Piastri", SP2="Lando Norris", SP3="George Russell")


def test_sprint_full_hit():
    sub = {
        "sprintP1": "Oscar Piastri",
        "sprintP2": "Lando Norris",
        "sprintP3": "George Russell",
        "sprintJolly": "George Russell",
    }
    assert score_sprint_session(sub, SPRINT) == 20
    assert score_sprint_session(sub, dict(SPRINT, doublePoints=True)) == 40


def test_sprint_absent_or_cancelled_scores_zero():
    sub = {"sprintP1": "Oscar Piastri"}
    assert score_sprint_session(sub, OFFICIAL) == 0
    assert score_sprint_session(sub, SPRINT, cancelled_sprint=True) == 0


def test_sprint_empty_lineup_penalty_and_no_late_penalty():
    assert score_sprint_session({"isLate": True}, SPRINT) == -3
    sub = {"sprintP1": "Oscar Piastri", "sprintJolly": "Max Verstappen", "isLate": True, "latePenalty": -3}
    assert score_sprint_session(sub, SPRINT) == 8


def test_breakdowns():
    sub = _sub(mainP2="Charles Leclerc", mainJolly2="Oscar Piastri", sprintP1="Oscar Piastri", sprintJolly="Lando Norris")
    bd = main_breakdown(sub, OFFICIAL)
    assert bd == {"p1Pts": 12, "p2Pts": 0, "p3Pts": 8, "j1Pts": 5, "j2Pts": 5, "total": 30}
    assert main_breakdown(sub, None)["total"] is None
    sbd = sprint_breakdown(sub, SPRINT)
    assert sbd["sp1Pts"] == 8 and sbd["jspPts"] == 2 and sbd["total"] == 10
    assert sprint_breakdown(sub, OFFICIAL)["total"] is None
    assert has_sprint(SPRINT) and not has_sprint(OFFICIAL)


def test_is_last_race_uses_highest_round():
    races = [{"id": "bahrain", "round": 1}, {"id": "abu-dhabi", "round": 3}, {"id": "qatar", "round": 2}]
    assert is_last_race(races, "abu-dhabi") is True
    assert is_last_race(races, "qatar") is False
    assert is_last_race(races, "unknown") is False
    assert is_last_race([], "abu-dhabi") is False


def test_season_total_recomputes_from_breakdown():
    pbr = {"a": {"mainPts": 20, "sprintPts": 6}, "b": {"mainPts": -3, "sprintPts": 0}}
    assert season_total(pbr) == 23
    assert season_total(pbr, championship_pts=30) == 53
    assert season_total(None) == 0


def test_championship_scoring():
    official = {"P1": "Lando Norris", "P2": "Oscar Piastri", "P3": "Max Verstappen",
                "C1": "McLaren", "C2": "Ferrari", "C3": "Mercedes"}
    points, bonus = score_championship(
        ["Lando Norris", "Oscar Piastri", "Max Verstappen"],
        ["McLaren", "Mercedes", "Ferrari"],
        official,
    )
    assert points == 30 + 12
    assert bonus == 0
    assert score_championship([], [], official) == (0, 0)


def test_leaderboard_order_and_position_change():
    rankings = [
        {"id": "u1", "name": "Anna", "puntiTotali": 10, "jolly": 1},
        {"id": "u2", "name": "Bruno", "puntiTotali": 30},
        {"id": "u3", "name": "Carla", "puntiTotali": 10},
    ]
    previous = [
        {"userId": "u1", "position": 1},
        {"userId": "u2", "position": 3},
    ]
    table = compute_leaderboard(rankings, previous)
    assert [e["userId"] for e in table] == ["u2", "u1", "u3"]
    assert [e["position"] for e in table] == [1, 2, 3]
    assert table[0]["positionChange"] == 2
    assert table[1]["positionChange"] == -1
    assert table[2]["positionChange"] == 0
    assert table[1]["jolly"] == 1


def test_position_change_without_snapshot():
    assert calculate_position_change("u1", 3, None) == 0
    assert calculate_position_change("u1", 3, {"not": "a list"}) == 0
