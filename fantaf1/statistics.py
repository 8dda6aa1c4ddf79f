"""Season progression statistics derived from stored race points."""

from typing import Any, Dict, Iterable, List


def _scored_races(races: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    scored = [r for r in races if not r.get("cancelledMain") and r.get("officialResults")]
    return sorted(scored, key=lambda r: (r.get("round") is None, r.get("round") or 0))


def championship_statistics(races: Iterable[Dict[str, Any]], rankings: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Per-player history of points, running total and standing after each race.

    Points come from each ranking document's ``pointsByRace`` map, so the
    figures always agree with the leaderboard. A player without an entry for a
    race scores 0 for it. Positions are ranked on the running total, ties
    broken by name.

    Returns:
        ``{"races": [...], "playersData": {user_id: [entry, ...]},
        "playerNames": {user_id: name}}``.
    """
    scored = _scored_races(races)
    rankings = list(rankings)
    names = {r["id"]: r.get("name") or r["id"] for r in rankings}
    by_race = {r["id"]: r.get("pointsByRace") or {} for r in rankings}

    history: Dict[str, List[Dict[str, Any]]] = {uid: [] for uid in names}
    running = {uid: 0 for uid in names}

    for race in scored:
        race_id = race["id"]
        for uid in names:
            entry = by_race[uid].get(race_id) or {}
            points = int(entry.get("mainPts") or 0) + int(entry.get("sprintPts") or 0)
            running[uid] += points
            history[uid].append({
                "raceId": race_id,
                "raceName": race.get("name"),
                "raceRound": race.get("round"),
                "raceDate": race.get("raceUTC"),
                "points": points,
                "cumulativePoints": running[uid],
            })
        order = sorted(names, key=lambda uid: (-running[uid], names[uid]))
        for position, uid in enumerate(order, start=1):
            history[uid][-1]["position"] = position

    return {
        "races": [
            {"id": r["id"], "name": r.get("name"), "round": r.get("round"), "raceUTC": r.get("raceUTC")}
            for r in scored
        ],
        "playersData": history,
        "playerNames": names,
    }


__all__ = ["championship_statistics"]
