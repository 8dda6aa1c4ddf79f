"""Import the season calendar from an F1 ICS feed.

Only the sessions the game needs are kept: qualifying, the Grand Prix, and
sprint qualifying and sprint on sprint weekends. Practice and other events are
ignored.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from . import datastore as ds
from .timestamps import to_iso

logger = logging.getLogger(__name__)

_EVENT_RE = re.compile(r"BEGIN:VEVENT.*?END:VEVENT", re.S)
_SUMMARY_RE = re.compile(r"^SUMMARY(?:;[^:]*)?:(.*)$", re.M)
_DTSTART_RE = re.compile(r"^DTSTART[^:]*:(.*)$", re.M)

# Order matters: sprint qualifying must be tried before plain sprint.
_SESSION_PATTERNS = (
    ("qualiSprint", re.compile(r"^F1:\s*(?:Qualifiche Sprint|Sprint Qualifying|Sprint Shootout)\s*\((.+)\)$")),
    ("quali", re.compile(r"^F1:\s*(?:Qualifiche|Qualifying)\s*\((.+)\)$")),
    ("race", re.compile(r"^F1:\s*(?:Gran Premio|Grand Prix)\s*\((.+)\)$")),
    ("sprint", re.compile(r"^F1:\s*Sprint\s*\((.+)\)$")),
)


def parse_ics_date(value: Optional[str]) -> Optional[datetime]:
    """Parse ``20250316T050000Z`` style values (also date-only) as UTC."""
    if not value:
        return None
    digits = re.sub(r"[TZ:\-]", "", value.strip())
    if len(digits) < 8 or not digits[:8].isdigit():
        return None
    parts = [digits[0:4], digits[4:6], digits[6:8], digits[8:10], digits[10:12], digits[12:14]]
    year, month, day, hour, minute, second = (int(p) if p.isdigit() else 0 for p in parts)
    try:
        return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
    except ValueError:
        return None


def make_slug(text: str) -> str:
    """``"Gran Premio d'Italia"`` -> ``"gran-premio-d-italia"``."""
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return re.sub(r"[^a-z0-9]+", "-", stripped).strip("-")


def _unfold(text: str) -> str:
    # RFC 5545 folding: CRLF followed by a single space or tab continues the line
    return re.sub(r"\r?\n[ \t]", "", text)


def _parse_event(block: str) -> Dict[str, Any]:
    summary = _SUMMARY_RE.search(block)
    start = _DTSTART_RE.search(block)
    return {
        "summary": summary.group(1).strip() if summary else "",
        "start": parse_ics_date(start.group(1)) if start else None,
    }


def parse_f1_calendar(text: str) -> List[Dict[str, Any]]:
    """Extract race weekends from ICS text.

    Returns:
        Races sorted by race start, each with ``id`` (slug), ``name``,
        ``round`` (1-based), ``qualiUTC``, ``raceUTC``, ``qualiSprintUTC`` and
        ``sprintUTC`` as datetimes (sprint fields may be ``None``). Weekends
        missing either qualifying or the race are dropped.
    """
    weekends: Dict[str, Dict[str, Any]] = {}
    for block in _EVENT_RE.findall(_unfold(text or "")):
        event = _parse_event(block)
        for session, pattern in _SESSION_PATTERNS:
            match = pattern.match(event["summary"])
            if not match:
                continue
            name = match.group(1).strip()
            entry = weekends.setdefault(make_slug(name), {
                "name": name, "quali": None, "race": None, "qualiSprint": None, "sprint": None,
            })
            entry[session] = event["start"]
            break

    complete = [w for w in weekends.values() if w["quali"] and w["race"]]
    complete.sort(key=lambda w: w["race"])
    return [
        {
            "id": make_slug(w["name"]),
            "name": w["name"],
            "round": idx,
            "qualiUTC": w["quali"],
            "raceUTC": w["race"],
            "qualiSprintUTC": w["qualiSprint"],
            "sprintUTC": w["sprint"],
        }
        for idx, w in enumerate(complete, start=1)
    ]


def import_calendar(text: str) -> List[Dict[str, Any]]:
    """Parse ``text`` and merge the races into storage.

    Existing race documents keep fields the calendar does not carry
    (official results, cancellation flags).
    """
    races = parse_f1_calendar(text)
    for race in races:
        fields = {k: (to_iso(v) if isinstance(v, datetime) else v) for k, v in race.items() if k != "id"}
        ds.upsert_race(race["id"], fields)
    logger.info("calendar_import races=%d", len(races))
    return races


__all__ = ["parse_ics_date", "make_slug", "parse_f1_calendar", "import_calendar"]
