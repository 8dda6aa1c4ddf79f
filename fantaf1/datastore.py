from typing import Any, Callable, Dict, List, Optional, Tuple

# Domain-level datastore proxy.
# Every call goes through the document primitives in datastore_pg so tests can
# swap the backend by patching that module alone.

from . import datastore_pg as _pg
from .racing import DEFAULT_RANKING

RACES = "races"
SUBMISSIONS = "submissions"
RANKING = "ranking"
CHAMPIONSHIP = "championship"
SENT_NOTIFICATIONS = "sentNotifications"
NOTIFICATION_TOKENS = "notificationTokens"
RANKING_HISTORY = "rankingHistory"

CHAMPIONSHIP_RESULTS_ID = "results"


def create_tables() -> None:
    _pg.create_tables()


def health() -> Dict[str, Any]:
    return _pg.health()


# Races

def get_race(race_id: str) -> Optional[Dict[str, Any]]:
    return _pg.get_document(RACES, race_id)


def list_races() -> List[Dict[str, Any]]:
    """Return races in season order (round ascending, unnumbered last)."""
    races = _pg.list_documents(RACES)

    def _key(r: Dict[str, Any]):
        rnd = r.get("round")
        return (rnd is None, rnd if rnd is not None else 0, r.get("id") or "")

    return sorted(races, key=_key)


def upsert_race(race_id: str, fields: Dict[str, Any]) -> None:
    _pg.set_document(RACES, race_id, fields)


def list_upcoming_races(after_iso: str, limit: int) -> List[Dict[str, Any]]:
    """Races starting after ``after_iso``, soonest first."""
    return _pg.list_documents(RACES, where=[("raceUTC", ">=", after_iso)], order_by="raceUTC", limit=limit)


# Submissions (children of a race)

def get_submission(race_id: str, user_id: str) -> Optional[Dict[str, Any]]:
    return _pg.get_document(SUBMISSIONS, user_id, parent=race_id)


def list_submissions(race_id: str) -> List[Dict[str, Any]]:
    return _pg.list_documents(SUBMISSIONS, parent=race_id)


def upsert_submission(race_id: str, user_id: str, fields: Dict[str, Any]) -> None:
    _pg.set_document(SUBMISSIONS, user_id, fields, parent=race_id)


# Ranking

def get_ranking(user_id: str) -> Optional[Dict[str, Any]]:
    return _pg.get_document(RANKING, user_id)


def list_ranking() -> List[Dict[str, Any]]:
    return _pg.list_documents(RANKING)


def upsert_ranking(user_id: str, fields: Dict[str, Any]) -> None:
    _pg.set_document(RANKING, user_id, fields)


def update_ranking(
    user_id: str,
    mutate: Callable[[Optional[Dict[str, Any]]], Optional[Dict[str, Any]]],
) -> Optional[Dict[str, Any]]:
    """Atomic read-modify-write of one ranking document."""
    return _pg.transact_document(RANKING, user_id, mutate)


def ensure_ranking(user_id: str, name: Optional[str] = None) -> Tuple[Dict[str, Any], bool]:
    """Create the ranking document with defaults if missing.

    Returns (document, created).
    """
    created = []

    def _mutate(current):
        if current is not None:
            return None
        created.append(True)
        fields = {k: (v.copy() if isinstance(v, (dict, list)) else v) for k, v in DEFAULT_RANKING.items()}
        fields["name"] = name or user_id
        return fields

    doc = _pg.transact_document(RANKING, user_id, _mutate)
    return doc, bool(created)


def claim_late_submission(user_id: str) -> bool:
    """Flip ``usedLateSubmission`` from unused to used.

    Returns False when the allowance was already consumed, including by a
    concurrent request that committed first.
    """
    claimed = []

    def _mutate(current):
        if (current or {}).get("usedLateSubmission"):
            return None
        claimed.append(True)
        return {"usedLateSubmission": True}

    _pg.transact_document(RANKING, user_id, _mutate)
    return bool(claimed)


def release_late_submission(user_id: str) -> None:
    """Give the late allowance back after a save that did not complete."""
    _pg.transact_document(RANKING, user_id, lambda current: {"usedLateSubmission": False} if current else None)


def set_second_jolly(user_id: str, race_id: str, in_use: bool) -> str:
    """Charge or refund the second joker for one race in a single locked write.

    ``jolly2Races`` on the ranking document lists the races already charged,
    so repeated or concurrent saves of the same lineup charge at most once.

    Returns ``"charged"``, ``"refunded"``, ``"unchanged"`` or ``"refused"``
    (no joker left to spend).
    """
    outcome = ["unchanged"]

    def _mutate(current):
        doc = current or {}
        races = list(doc.get("jolly2Races") or [])
        available = int(doc.get("jolly") or 0)
        if in_use and race_id not in races:
            if available < 1:
                outcome[0] = "refused"
                return None
            outcome[0] = "charged"
            return {"jolly": available - 1, "jolly2Races": races + [race_id]}
        if not in_use and race_id in races:
            races.remove(race_id)
            outcome[0] = "refunded"
            return {"jolly": available + 1, "jolly2Races": races}
        return None

    _pg.transact_document(RANKING, user_id, _mutate)
    return outcome[0]


# Championship

def get_championship_results() -> Optional[Dict[str, Any]]:
    return _pg.get_document(CHAMPIONSHIP, CHAMPIONSHIP_RESULTS_ID)


def set_championship_results(fields: Dict[str, Any]) -> None:
    _pg.set_document(CHAMPIONSHIP, CHAMPIONSHIP_RESULTS_ID, fields)


# Notifications

def get_sent_notification(notification_id: str) -> Optional[Dict[str, Any]]:
    return _pg.get_document(SENT_NOTIFICATIONS, notification_id)


def record_sent_notification(notification_id: str, fields: Dict[str, Any]) -> None:
    _pg.set_document(SENT_NOTIFICATIONS, notification_id, fields, merge=False)


def list_sent_notifications_before(cutoff_iso: str, limit: int) -> List[Dict[str, Any]]:
    return _pg.list_documents(SENT_NOTIFICATIONS, where=[("sentAt", "<", cutoff_iso)], limit=limit)


def list_recent_sent_notifications(limit: int = 10) -> List[Dict[str, Any]]:
    return _pg.list_documents(SENT_NOTIFICATIONS, order_by="sentAt", descending=True, limit=limit)


def delete_sent_notification(notification_id: str) -> None:
    _pg.delete_document(SENT_NOTIFICATIONS, notification_id)


def count_sent_notifications() -> int:
    return _pg.count_documents(SENT_NOTIFICATIONS)


def list_notification_tokens(limit: int) -> List[Dict[str, Any]]:
    return _pg.list_documents(NOTIFICATION_TOKENS, limit=limit)


def set_notification_token(token_id: str, fields: Dict[str, Any]) -> None:
    _pg.set_document(NOTIFICATION_TOKENS, token_id, fields)


def delete_notification_token(token_id: str) -> None:
    _pg.delete_document(NOTIFICATION_TOKENS, token_id)


def count_notification_tokens() -> int:
    return _pg.count_documents(NOTIFICATION_TOKENS)


# Ranking history

def add_ranking_snapshot(snapshot_id: str, fields: Dict[str, Any]) -> None:
    _pg.set_document(RANKING_HISTORY, snapshot_id, fields, merge=False)


def list_ranking_snapshots(limit: int = 2) -> List[Dict[str, Any]]:
    """Most recent snapshots first."""
    return _pg.list_documents(RANKING_HISTORY, order_by="createdAt", descending=True, limit=limit)


def get_last_ranking_snapshot() -> Optional[Dict[str, Any]]:
    rows = list_ranking_snapshots(limit=1)
    return rows[0] if rows else None
