"""Lineup and championship-pick submission flow."""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from . import datastore as ds
from .exceptions import RaceNotFound, SubmissionRejected
from .lateness import find_duplicates, validate_lineup
from .racing import CONSTRUCTORS, MAIN_FIELDS, POINTS, SPRINT_FIELDS
from .timestamps import as_utc, to_iso, utcnow

logger = logging.getLogger(__name__)

NO_JOLLY_MESSAGE = "No jokers available for a second joker pick."


def ensure_ranking_entry(user_id: str, name: Optional[str] = None) -> Dict[str, Any]:
    """Create the user's season ranking record on first login."""
    doc, created = ds.ensure_ranking(user_id, name=name)
    if created:
        logger.info("ranking_created user=%s", user_id)
    return doc


def _session_fields(mode: str, picks: Dict[str, Any]) -> Dict[str, Any]:
    fields = MAIN_FIELDS if mode == "main" else SPRINT_FIELDS
    # Missing optional picks are written as null so a removed joker is cleared
    return {f: (picks.get(f) or None) for f in fields}


def save_lineup(
    race_id: str,
    user_id: str,
    mode: str,
    picks: Dict[str, Any],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Validate and persist one session of a user's lineup.

    Args:
        race_id: Race document id.
        user_id: Submitting user.
        mode: ``"main"`` or ``"sprint"``.
        picks: Submission fields for the session (``mainP1``..``mainJolly2`` or
            ``sprintP1``..``sprintJolly``).
        now: Reference instant, captured once per request.

    Returns:
        Dict with ``mode``, ``isLate`` and the user's remaining ``jolly``.

    Raises:
        RaceNotFound: unknown race.
        SubmissionRejected: validation failed; nothing was written.
    """
    now = as_utc(now) if now is not None else utcnow()
    race = ds.get_race(race_id)
    if not race:
        raise RaceNotFound(race_id)
    ranking = ensure_ranking_entry(user_id)

    errors, is_late = validate_lineup(mode, race, picks, ranking, now)

    new_j2 = (picks.get("mainJolly2") or None) if mode == "main" else None
    already_charged = race_id in (ranking.get("jolly2Races") or [])
    if new_j2 is not None and not already_charged and int(ranking.get("jolly") or 0) < 1:
        errors.append(NO_JOLLY_MESSAGE)

    if errors:
        raise SubmissionRejected(errors)

    # Each step registers its compensation so a failure later in the save
    # leaves jokers and the late allowance as they were.
    undo: List[Callable[[], Any]] = []
    try:
        if new_j2 is not None:
            outcome = ds.set_second_jolly(user_id, race_id, True)
            if outcome == "refused":
                raise SubmissionRejected([NO_JOLLY_MESSAGE])
            if outcome == "charged":
                undo.append(lambda: ds.set_second_jolly(user_id, race_id, False))

        if is_late:
            if not ds.claim_late_submission(user_id):
                raise SubmissionRejected(
                    ["Deadline passed and the late submission allowance has already been used this season."]
                )
            undo.append(lambda: ds.release_late_submission(user_id))

        if mode == "main" and new_j2 is None:
            if ds.set_second_jolly(user_id, race_id, False) == "refunded":
                undo.append(lambda: ds.set_second_jolly(user_id, race_id, True))

        fields = _session_fields(mode, picks)
        fields["submittedAt"] = to_iso(now)
        if is_late:
            fields.update({
                "isLate": True,
                "latePenalty": POINTS["PENALTY_LATE_SUBMISSION"],
                "lateMode": mode,
                "lateSubmittedAt": to_iso(now),
            })
        ds.upsert_submission(race_id, user_id, fields)
    except Exception:
        for step in reversed(undo):
            step()
        raise

    jolly = int((ds.get_ranking(user_id) or {}).get("jolly") or 0)
    logger.info(
        "lineup_saved race=%s user=%s mode=%s late=%s jolly=%s",
        race_id, user_id, mode, is_late, jolly,
    )
    return {"mode": mode, "isLate": is_late, "jolly": jolly}


def championship_deadline(races: List[Dict[str, Any]]) -> Optional[datetime]:
    """Championship picks close at the start of the mid-season race."""
    if not races:
        return None
    mid_round = math.ceil(len(races) / 2)
    for race in races:
        if race.get("round") == mid_round:
            return as_utc(race.get("raceUTC"))
    return None


def save_championship_picks(
    user_id: str,
    drivers: List[str],
    constructors: List[str],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Store the user's end-of-season top-3 drivers and constructors."""
    now = as_utc(now) if now is not None else utcnow()
    drivers = list(drivers or [])
    constructors = list(constructors or [])
    errors: List[str] = []
    if len(drivers) != 3 or not all(drivers):
        errors.append("Select exactly three drivers.")
    if len(constructors) != 3 or not all(constructors):
        errors.append("Select exactly three constructors.")
    unknown = [c for c in constructors if c and c not in CONSTRUCTORS]
    if unknown:
        errors.append(f"Unknown constructors: {', '.join(unknown)}.")
    for label, picks in (("drivers", drivers), ("constructors", constructors)):
        dupes = find_duplicates(picks)
        if dupes:
            errors.append(f"Duplicate {label}: {', '.join(dupes)}.")
    deadline = championship_deadline(ds.list_races())
    if deadline is not None and now > deadline:
        errors.append("The championship prediction deadline has passed.")
    if errors:
        raise SubmissionRejected(errors)

    ensure_ranking_entry(user_id)
    ds.upsert_ranking(user_id, {
        "championshipPiloti": drivers,
        "championshipCostruttori": constructors,
    })
    logger.info("championship_picks_saved user=%s", user_id)
    return {"championshipPiloti": drivers, "championshipCostruttori": constructors}


__all__ = ["ensure_ranking_entry", "save_lineup", "save_championship_picks", "championship_deadline"]
