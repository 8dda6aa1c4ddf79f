"""Ranking history snapshots used for position-change arrows."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from . import datastore as ds
from .scoring import calculate_position_change, compute_leaderboard
from .timestamps import as_utc, to_iso, utcnow

logger = logging.getLogger(__name__)


def save_ranking_snapshot(kind: str = "race", race_id: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """Store the current standings under ``rankingHistory/snapshot_<epoch ms>_<suffix>``.

    Args:
        kind: ``"race"`` or ``"championship"``.
        race_id: Race that triggered the snapshot, for ``kind="race"``.
        now: Creation instant; defaults to the current time.

    Returns:
        The snapshot id.
    """
    now = as_utc(now) if now is not None else utcnow()
    standings = compute_leaderboard(ds.list_ranking())
    snapshot = [
        {
            "userId": e["userId"],
            "name": e["name"],
            "position": e["position"],
            "points": e["points"],
            "jolly": e["jolly"],
        }
        for e in standings
    ]
    # Random suffix keeps runs within the same millisecond from colliding
    snapshot_id = f"snapshot_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:8]}"
    ds.add_ranking_snapshot(snapshot_id, {
        "snapshot": snapshot,
        "createdAt": to_iso(now),
        "type": kind,
        "raceId": race_id,
    })
    logger.info("ranking_snapshot id=%s type=%s users=%d", snapshot_id, kind, len(snapshot))
    return snapshot_id


def get_last_ranking_snapshot() -> Optional[Dict[str, Any]]:
    return ds.get_last_ranking_snapshot()


def get_previous_standings() -> Optional[List[Dict[str, Any]]]:
    """Standings as they were before the most recent scoring run.

    Every run ends by snapshotting the standings it produced, so the latest
    snapshot mirrors the live table and the comparison baseline is the one
    before it.
    """
    rows = ds.list_ranking_snapshots(limit=2)
    if len(rows) < 2:
        return None
    return rows[1].get("snapshot")


__all__ = [
    "save_ranking_snapshot",
    "get_last_ranking_snapshot",
    "get_previous_standings",
    "calculate_position_change",
]
