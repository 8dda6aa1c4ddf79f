"""Scoring utilities for race lineups, championship predictions and standings."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .exceptions import IncompleteResults
from .racing import POINTS

PODIUM_KEYS = ("P1", "P2", "P3")
SPRINT_PODIUM_KEYS = ("SP1", "SP2", "SP3")


def _position_points(table: Dict[int, int], position: int) -> int:
    """Return the table value for a finishing position (0 off the podium)."""
    return int(table.get(position, 0))


def _podium(official: Dict[str, Any], keys: Sequence[str]) -> List[Any]:
    return [official.get(k) for k in keys]


def _require_podium(official: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not official or not all(official.get(k) for k in PODIUM_KEYS):
        raise IncompleteResults("Official results are incomplete (podium missing).")
    return official


def _apply_rounding(points: int) -> Tuple[int, bool]:
    """Apply the 29 -> 30 rule. Returns (points, earned_extra_jolly)."""
    if points == POINTS["ROUNDING_FROM"]:
        return POINTS["ROUNDING_TO"], True
    return points, False


def _late_penalty(submission: Dict[str, Any]) -> int:
    if not submission.get("isLate"):
        return 0
    penalty = submission.get("latePenalty")
    if penalty is None:
        penalty = POINTS["PENALTY_LATE_SUBMISSION"]
    return int(penalty)


def _main_session(submission: Dict[str, Any], official: Dict[str, Any]) -> Tuple[int, bool]:
    official = _require_podium(official)
    if not submission.get("mainP1"):
        return POINTS["PENALTY_EMPTY_LIST"], False

    points = 0
    for position, key in enumerate(PODIUM_KEYS, start=1):
        if submission.get(f"main{key}") == official.get(key):
            points += _position_points(POINTS["MAIN"], position)

    podium = _podium(official, PODIUM_KEYS)
    for field in ("mainJolly", "mainJolly2"):
        pick = submission.get(field)
        if pick and pick in podium:
            points += POINTS["BONUS_JOLLY_MAIN"]

    # Penalty lands before the rounding rule and before doubling
    points += _late_penalty(submission)
    points, bonus = _apply_rounding(points)

    if official.get("doublePoints"):
        points *= 2
    return points, bonus


def score_main_session(submission: Dict[str, Any], official: Dict[str, Any]) -> int:
    """Score the main race lineup of one submission.

    Positional picks score only when they match the official finisher in the
    same position. Each joker scores its bonus if the driver is anywhere on the
    podium. An empty lineup (no ``mainP1``) scores the flat empty-lineup
    penalty and nothing else.

    Args:
        submission: Submission document (``mainP1..3``, ``mainJolly``,
            ``mainJolly2``, ``isLate``, ``latePenalty``).
        official: Official results (``P1..P3``, ``doublePoints``).

    Returns:
        Points for the session, after the late penalty, the 29 -> 30 rule and
        the double-points multiplier.

    Raises:
        IncompleteResults: if the official podium is not complete.
    """
    return _main_session(submission, official)[0]


def main_session_earns_jolly(submission: Dict[str, Any], official: Dict[str, Any]) -> bool:
    """Return True when the 29 -> 30 rule grants the user an extra joker."""
    return _main_session(submission, official)[1]


def score_sprint_session(
    submission: Dict[str, Any],
    official: Dict[str, Any],
    cancelled_sprint: bool = False,
) -> int:
    """Score the sprint lineup of one submission.

    Returns 0 when the race has no sprint result or the sprint was cancelled.
    The sprint has a single joker and no late penalty of its own.
    """
    if cancelled_sprint or not official or not official.get("SP1"):
        return 0
    if not submission.get("sprintP1"):
        return POINTS["PENALTY_EMPTY_LIST"]

    points = 0
    for position, key in enumerate(SPRINT_PODIUM_KEYS, start=1):
        if submission.get(f"sprint{key[1:]}") == official.get(key):
            points += _position_points(POINTS["SPRINT"], position)

    pick = submission.get("sprintJolly")
    if pick and pick in _podium(official, SPRINT_PODIUM_KEYS):
        points += POINTS["BONUS_JOLLY_SPRINT"]

    if official.get("doublePoints"):
        points *= 2
    return points


def main_breakdown(submission: Dict[str, Any], official: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Per-pick points for the main race, for detailed history tables.

    ``total`` is ``None`` when no official result is available yet. Bonuses
    and penalties outside the picks themselves are not included.
    """
    if not official:
        return {"p1Pts": 0, "p2Pts": 0, "p3Pts": 0, "j1Pts": 0, "j2Pts": 0, "total": None}
    podium = _podium(official, PODIUM_KEYS)
    out = {}
    for position, key in enumerate(PODIUM_KEYS, start=1):
        hit = submission.get(f"main{key}") == official.get(key)
        out[f"p{position}Pts"] = _position_points(POINTS["MAIN"], position) if hit else 0
    for idx, field in enumerate(("mainJolly", "mainJolly2"), start=1):
        pick = submission.get(field)
        out[f"j{idx}Pts"] = POINTS["BONUS_JOLLY_MAIN"] if pick and pick in podium else 0
    out["total"] = sum(out.values())
    return out


def sprint_breakdown(submission: Dict[str, Any], official: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not has_sprint(official):
        return {"sp1Pts": 0, "sp2Pts": 0, "sp3Pts": 0, "jspPts": 0, "total": None}
    podium = _podium(official, SPRINT_PODIUM_KEYS)
    out = {}
    for position, key in enumerate(SPRINT_PODIUM_KEYS, start=1):
        hit = submission.get(f"sprint{key[1:]}") == official.get(key)
        out[f"sp{position}Pts"] = _position_points(POINTS["SPRINT"], position) if hit else 0
    pick = submission.get("sprintJolly")
    out["jspPts"] = POINTS["BONUS_JOLLY_SPRINT"] if pick and pick in podium else 0
    out["total"] = sum(out.values())
    return out


def has_sprint(official: Optional[Dict[str, Any]]) -> bool:
    return bool(official and official.get("SP1"))


def is_last_race(races: Iterable[Dict[str, Any]], race_id: str) -> bool:
    """Return True if ``race_id`` is the highest round of the calendar."""
    races = [r for r in (races or []) if r.get("round") is not None]
    if not races or not race_id:
        return False
    max_round = max(int(r["round"]) for r in races)
    for race in races:
        if race.get("id") == race_id:
            return int(race["round"]) == max_round
    return False


def season_total(points_by_race: Optional[Dict[str, Dict[str, Any]]], championship_pts: int = 0) -> int:
    """Recompute the season total from the per-race breakdown.

    Always derived from the full map, never patched incrementally, so scoring
    a race again overwrites instead of accumulating.
    """
    total = 0
    for entry in (points_by_race or {}).values():
        total += int(entry.get("mainPts") or 0) + int(entry.get("sprintPts") or 0)
    return total + int(championship_pts or 0)


def score_championship(
    drivers: Sequence[Any],
    constructors: Sequence[Any],
    official: Dict[str, Any],
) -> Tuple[int, int]:
    """Score end-of-season predictions.

    Driver picks are compared position by position with ``P1..P3`` and
    constructor picks with ``C1..C3`` using the main race table. The 29 -> 30
    rule applies to each list separately.

    Returns:
        Tuple of (points, extra jokers earned).
    """
    drivers = list(drivers or [])
    constructors = list(constructors or [])
    bonus = 0
    total = 0
    for picks, keys in ((drivers, PODIUM_KEYS), (constructors, ("C1", "C2", "C3"))):
        pts = 0
        for position, key in enumerate(keys, start=1):
            if len(picks) >= position and picks[position - 1] == official.get(key):
                pts += _position_points(POINTS["MAIN"], position)
        pts, earned = _apply_rounding(pts)
        bonus += int(earned)
        total += pts
    return total, bonus


def compute_leaderboard(
    rankings: Iterable[Dict[str, Any]],
    previous_snapshot: Optional[List[Dict[str, Any]]] = None,
) -> List[Dict[str, Any]]:
    """Order ranking documents into a leaderboard.

    Args:
        rankings: Ranking documents (``id``, ``name``, ``puntiTotali``, ``jolly``).
        previous_snapshot: Optional earlier snapshot entries used to report
            ``positionChange`` (positive means the user moved up).

    Returns:
        List of standings dictionaries sorted by total points (high wins).
    """
    table = [
        {
            "userId": r.get("id"),
            "name": r.get("name"),
            "points": int(r.get("puntiTotali") or 0),
            "jolly": int(r.get("jolly") or 0),
        }
        for r in rankings
    ]
    table.sort(key=lambda e: (-e["points"], e["name"] or "", e["userId"] or ""))
    for position, entry in enumerate(table, start=1):
        entry["position"] = position
        entry["positionChange"] = calculate_position_change(entry["userId"], position, previous_snapshot)
    return table


def calculate_position_change(
    user_id: Any,
    current_position: int,
    previous_snapshot: Optional[List[Dict[str, Any]]],
) -> int:
    """Positions gained since ``previous_snapshot``; 0 when unknown."""
    if not previous_snapshot or not isinstance(previous_snapshot, list):
        return 0
    for entry in previous_snapshot:
        if entry.get("userId") == user_id:
            return int(entry.get("position") or 0) - int(current_position)
    return 0


__all__ = [
    "score_main_session",
    "score_sprint_session",
    "main_session_earns_jolly",
    "main_breakdown",
    "sprint_breakdown",
    "has_sprint",
    "is_last_race",
    "season_total",
    "score_championship",
    "compute_leaderboard",
    "calculate_position_change",
]
