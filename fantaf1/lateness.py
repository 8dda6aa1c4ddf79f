"""Deadline classification and lineup validation.

Callers capture ``now`` once per user action and pass the same value to every
check below, so a deadline cannot be crossed between two reads of the clock
within a single submit.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from .racing import MAIN_PICK_FIELDS, SPRINT_PICK_FIELDS, TIME_CONSTANTS
from .timestamps import as_utc

MODES = ("main", "sprint")

_DEADLINE_FIELD = {"main": "qualiUTC", "sprint": "qualiSprintUTC"}
_CANCEL_FIELD = {"main": "cancelledMain", "sprint": "cancelledSprint"}


def _closed() -> Dict[str, Any]:
    return {
        "deadline": None,
        "is_open": False,
        "is_in_late_window": False,
        "late_window_end": None,
    }


def get_late_window_info(mode: str, race: Optional[Dict[str, Any]], now: Any) -> Dict[str, Any]:
    """Classify ``now`` against the session deadline.

    Args:
        mode: ``"main"`` (deadline ``qualiUTC``) or ``"sprint"``
            (deadline ``qualiSprintUTC``).
        race: Race document, may be ``None``.
        now: Reference instant (datetime, ISO string or epoch seconds).

    Returns:
        Dict with ``deadline``, ``is_open``, ``is_in_late_window`` and
        ``late_window_end``. All closed/neutral when the race or deadline is
        missing.
    """
    if not race or mode not in _DEADLINE_FIELD:
        return _closed()
    deadline = as_utc(race.get(_DEADLINE_FIELD[mode]))
    if deadline is None:
        return _closed()
    current = as_utc(now)
    late_window_end = deadline + timedelta(minutes=TIME_CONSTANTS["LATE_SUBMISSION_WINDOW_MINUTES"])
    return {
        "deadline": deadline,
        "is_open": current < deadline,
        "is_in_late_window": deadline < current <= late_window_end,
        "late_window_end": late_window_end,
    }


def find_duplicates(picks: List[Any]) -> List[Any]:
    """Return drivers selected more than once, in first-seen order."""
    seen = set()
    dupes: List[Any] = []
    for pick in picks:
        if not pick:
            continue
        if pick in seen and pick not in dupes:
            dupes.append(pick)
        seen.add(pick)
    return dupes


def _pick_fields(mode: str) -> Tuple[str, ...]:
    if mode == "main":
        return MAIN_PICK_FIELDS + ("mainJolly", "mainJolly2")
    return SPRINT_PICK_FIELDS + ("sprintJolly",)


def session_picks(mode: str, picks: Dict[str, Any]) -> List[Any]:
    return [picks.get(f) for f in _pick_fields(mode)]


def _required_fields(mode: str) -> Tuple[str, ...]:
    if mode == "main":
        return MAIN_PICK_FIELDS + ("mainJolly",)
    return SPRINT_PICK_FIELDS + ("sprintJolly",)


def validate_lineup(
    mode: str,
    race: Optional[Dict[str, Any]],
    picks: Dict[str, Any],
    ranking: Optional[Dict[str, Any]],
    now: datetime,
) -> Tuple[List[str], bool]:
    """Validate a lineup for one session.

    Returns:
        Tuple of (error messages, is_late). The submission is accepted when
        the error list is empty; ``is_late`` is True when acceptance consumes
        the user's one-time late allowance.
    """
    if mode not in MODES:
        return [f"Unknown submission mode '{mode}'."], False
    if not race:
        return ["Race not found."], False

    errors: List[str] = []
    label = "race" if mode == "main" else "sprint"

    if race.get(_CANCEL_FIELD[mode]):
        errors.append(f"The {label} has been cancelled; lineups are closed.")
        return errors, False

    if mode == "sprint" and not race.get("qualiSprintUTC"):
        errors.append("This race weekend has no sprint.")
        return errors, False

    not_names = [f for f in _pick_fields(mode) if picks.get(f) is not None and not isinstance(picks.get(f), str)]
    if not_names:
        errors.append(f"Picks must be driver names: {', '.join(not_names)}.")
        return errors, False

    missing = [f for f in _required_fields(mode) if not picks.get(f)]
    if missing:
        errors.append(f"Incomplete {label} lineup: missing {', '.join(missing)}.")

    dupes = find_duplicates(session_picks(mode, picks))
    if dupes:
        errors.append(
            f"The same driver cannot be selected more than once in the {label}: {', '.join(map(str, dupes))}."
        )

    info = get_late_window_info(mode, race, now)
    is_late = False
    if info["is_in_late_window"]:
        if (ranking or {}).get("usedLateSubmission"):
            errors.append("Deadline passed and the late submission allowance has already been used this season.")
        else:
            is_late = True
    elif not info["is_open"]:
        errors.append(f"The {label} deadline has passed.")

    return errors, (is_late and not errors)


__all__ = ["get_late_window_info", "find_duplicates", "validate_lineup", "session_picks", "MODES"]
