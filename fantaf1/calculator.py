"""Batch scoring: apply official results to every submission of a race.

Input errors are raised before anything is written. Once writing starts, each
user's work runs on its own worker and failures are collected per user so one
bad document never stops the rest of the batch.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Optional

from . import datastore as ds
from .exceptions import ChampionshipResultsMissing, IncompleteResults, RaceCancelled, RaceNotFound
from .racing import DEFAULT_RANKING
from .scoring import (
    PODIUM_KEYS,
    is_last_race,
    main_session_earns_jolly,
    score_championship,
    score_main_session,
    score_sprint_session,
    season_total,
)
from .snapshots import save_ranking_snapshot

logger = logging.getLogger(__name__)

CONSTRUCTOR_KEYS = ("C1", "C2", "C3")


def _max_workers(requested: Optional[int]) -> int:
    if requested:
        return max(1, int(requested))
    try:
        return max(1, int(os.environ.get("SCORING_MAX_WORKERS", "8")))
    except ValueError:
        return 8


def _defaults() -> Dict[str, Any]:
    return {k: (v.copy() if isinstance(v, (dict, list)) else v) for k, v in DEFAULT_RANKING.items()}


def _settle_all(
    items: Dict[str, Any],
    work: Callable[[str, Any], Any],
    max_workers: int,
) -> Dict[str, Any]:
    """Run ``work(key, item)`` for every item and wait for all of them.

    Returns a dict with ``results`` and ``failed`` (key -> error message).
    """
    results: Dict[str, Any] = {}
    failed: Dict[str, str] = {}
    if not items:
        return {"results": results, "failed": failed}
    with ThreadPoolExecutor(max_workers=min(max_workers, len(items))) as pool:
        futures = {pool.submit(work, key, item): key for key, item in items.items()}
        for fut in as_completed(futures):
            key = futures[fut]
            try:
                results[key] = fut.result()
            except Exception as exc:
                logger.exception("scoring_failed user=%s", key)
                failed[key] = str(exc) or exc.__class__.__name__
    return {"results": results, "failed": failed}


def _apply_race_points(race_id: str, main_pts: int, sprint_pts: int, bonus: bool):
    """Build the ranking mutation for one user's race result."""

    def _mutate(current: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        doc = current if current is not None else _defaults()
        points_by_race = dict(doc.get("pointsByRace") or {})
        points_by_race[race_id] = {"mainPts": main_pts, "sprintPts": sprint_pts}
        patch: Dict[str, Any] = {
            "pointsByRace": points_by_race,
            "puntiTotali": season_total(points_by_race, doc.get("championshipPts") or 0),
        }
        if current is None:
            patch = {**_defaults(), **patch}

        # Extra joker from the 29 -> 30 rule, at most once per race
        bonus_races = list(doc.get("bonusJollyRaces") or [])
        jolly = int(doc.get("jolly") or 0)
        if bonus and race_id not in bonus_races:
            bonus_races.append(race_id)
            patch["jolly"] = jolly + 1
            patch["bonusJollyRaces"] = bonus_races
        elif not bonus and race_id in bonus_races:
            bonus_races.remove(race_id)
            patch["jolly"] = max(0, jolly - 1)
            patch["bonusJollyRaces"] = bonus_races
        return patch

    return _mutate


def _validate_race(race: Optional[Dict[str, Any]], race_id: str, official: Dict[str, Any]) -> None:
    if not race:
        raise RaceNotFound(race_id)
    if race.get("cancelledMain"):
        raise RaceCancelled(f"Race {race_id} is cancelled and cannot be scored.")
    missing = [k for k in PODIUM_KEYS if not official.get(k)]
    if missing:
        raise IncompleteResults(f"Official results are incomplete: missing {', '.join(missing)}.")


def calculate_points_for_race(
    race_id: str,
    official: Optional[Dict[str, Any]] = None,
    max_workers: Optional[int] = None,
) -> Dict[str, Any]:
    """Score every submission of ``race_id`` and refresh the season standings.

    Args:
        race_id: Race document id.
        official: Official results to store (``P1..P3``, optional
            ``SP1..SP3``, ``doublePoints``). Merged over the stored results;
            ``None`` re-scores with what is already stored.
        max_workers: Thread fan-out for per-user writes
            (``SCORING_MAX_WORKERS`` when omitted).

    Returns:
        Summary dict with ``race_id``, ``processed``, ``succeeded``,
        ``failed`` (user id -> message) and ``message``.

    Raises:
        RaceNotFound, RaceCancelled, IncompleteResults: before any write.
    """
    race = ds.get_race(race_id)
    merged = dict((race or {}).get("officialResults") or {})
    merged.update(official or {})
    _validate_race(race, race_id, merged)
    if merged.get("doublePoints") is None:
        merged["doublePoints"] = is_last_race(ds.list_races(), race_id)
    merged["doublePoints"] = bool(merged["doublePoints"])

    ds.upsert_race(race_id, {"officialResults": merged})
    cancelled_sprint = bool(race.get("cancelledSprint"))
    submissions = {s["id"]: s for s in ds.list_submissions(race_id)}

    def _score_user(user_id: str, submission: Dict[str, Any]) -> Dict[str, int]:
        main_pts = score_main_session(submission, merged)
        bonus = main_session_earns_jolly(submission, merged)
        sprint_pts = score_sprint_session(submission, merged, cancelled_sprint=cancelled_sprint)
        ds.upsert_submission(race_id, user_id, {"pointsEarned": main_pts, "pointsEarnedSprint": sprint_pts})
        ds.update_ranking(user_id, _apply_race_points(race_id, main_pts, sprint_pts, bonus))
        return {"mainPts": main_pts, "sprintPts": sprint_pts}

    outcome = _settle_all(submissions, _score_user, _max_workers(max_workers))
    failed = outcome["failed"]
    processed = len(submissions)
    succeeded = processed - len(failed)

    save_ranking_snapshot("race", race_id=race_id)
    logger.info(
        "scoring_run race=%s processed=%d succeeded=%d failed=%d",
        race_id, processed, succeeded, len(failed),
    )
    if failed:
        message = f"Points calculated for {succeeded} of {processed} submissions; {len(failed)} failed."
    else:
        message = f"Points calculated for {processed} submissions."
    return {
        "race_id": race_id,
        "processed": processed,
        "succeeded": succeeded,
        "failed": failed,
        "message": message,
    }


def _apply_championship_points(official: Dict[str, Any]):
    def _mutate(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if current is None:
            return None
        points, bonus = score_championship(
            current.get("championshipPiloti") or [],
            current.get("championshipCostruttori") or [],
            official,
        )
        previous_bonus = int(current.get("championshipBonusJolly") or 0)
        jolly = int(current.get("jolly") or 0)
        return {
            "championshipPts": points,
            "puntiTotali": season_total(current.get("pointsByRace"), points),
            "championshipBonusJolly": bonus,
            "jolly": max(0, jolly + bonus - previous_bonus),
        }

    return _mutate


def calculate_championship_points(max_workers: Optional[int] = None) -> Dict[str, Any]:
    """Score end-of-season predictions for every ranking entry.

    Raises:
        ChampionshipResultsMissing: ``championship/results`` does not exist.
        IncompleteResults: driver or constructor standings are incomplete.
    """
    official = ds.get_championship_results()
    if not official:
        raise ChampionshipResultsMissing("Championship results not found.")
    missing: List[str] = [k for k in PODIUM_KEYS + CONSTRUCTOR_KEYS if not official.get(k)]
    if missing:
        raise IncompleteResults(f"Championship results are incomplete: missing {', '.join(missing)}.")

    users = {r["id"]: r for r in ds.list_ranking()}

    def _score_user(user_id: str, _ranking: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return ds.update_ranking(user_id, _apply_championship_points(official))

    outcome = _settle_all(users, _score_user, _max_workers(max_workers))
    failed = outcome["failed"]
    processed = len(users)
    succeeded = processed - len(failed)

    save_ranking_snapshot("championship")
    logger.info(
        "championship_run processed=%d succeeded=%d failed=%d",
        processed, succeeded, len(failed),
    )
    return {
        "processed": processed,
        "succeeded": succeeded,
        "failed": failed,
        "message": f"Championship points updated for {succeeded} of {processed} users.",
    }


__all__ = ["calculate_points_for_race", "calculate_championship_points"]
