"""Session reminders pushed to registered devices.

The scheduler calls ``check_upcoming_events`` every 15 minutes and
``cleanup_old_notifications`` once a day. Every run is capped by
``SAFETY_LIMITS`` so a bad calendar or a token flood cannot fan out without
bound.
"""

from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, MutableMapping, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from . import datastore as ds
from .exceptions import NoRecipients, RateLimitExceeded
from .racing import SAFETY_LIMITS, TIME_CONSTANTS
from .timestamps import as_utc, to_iso, utcnow

logger = logging.getLogger(__name__)

DEFAULT_PUSH_ENDPOINT = "https://fcm.googleapis.com/fcm/send"
DEFAULT_APP_URL = "https://fanta-f1.example/lineup"

STALE_TOKEN_ERRORS = {"NotRegistered", "InvalidRegistration"}

EVENT_TYPES = (("quali", "qualiUTC"), ("qualiSprint", "qualiSprintUTC"), ("race", "raceUTC"))

_EVENT_COPY = {
    "quali": ("Qualifying", "{name} Qualifying starts in 30 minutes! Get ready!"),
    "qualiSprint": ("Sprint Qualifying", "{name} Sprint Qualifying starts in 30 minutes! Get ready!"),
    "race": ("Race", "{name} starts in 30 minutes! Submit your lineup now!"),
}


class RateLimiter:
    """Fixed-window call counter keyed by caller.

    The store and clock are injected so limits are explicit and testable
    instead of living in module state for the life of the process.
    """

    def __init__(
        self,
        max_calls: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        store: Optional[MutableMapping[str, Dict[str, float]]] = None,
    ):
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self.clock = clock
        self.store = store if store is not None else {}

    def is_limited(self, key: str) -> bool:
        """Count one call for ``key``; True when it exceeds the window quota."""
        now = self.clock()
        self._evict_expired(now)
        record = self.store.get(key)
        if record is None or now > record["reset_at"]:
            self.store[key] = {"count": 1, "reset_at": now + self.window_seconds}
            return False
        if record["count"] >= self.max_calls:
            return True
        record["count"] += 1
        return False

    def _evict_expired(self, now: float) -> None:
        expired = [k for k, record in self.store.items() if now > record["reset_at"]]
        for k in expired:
            del self.store[k]

    def retry_after(self, key: str) -> int:
        record = self.store.get(key)
        if record is None:
            return 0
        return max(0, int(round(record["reset_at"] - self.clock())))

    def check(self, key: str) -> None:
        if self.is_limited(key):
            raise RateLimitExceeded(key, retry_after=self.retry_after(key) or int(self.window_seconds))


def create_session() -> requests.Session:
    """Session retrying connection failures only; sends are never replayed."""
    session = requests.Session()
    retry_strategy = Retry(total=2, connect=2, read=0, status=0, backoff_factor=1, allowed_methods=None)
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class PushClient:
    """Multicast sender speaking the FCM legacy HTTP format."""

    def __init__(self, endpoint: str = DEFAULT_PUSH_ENDPOINT, server_key: Optional[str] = None,
                 session: Optional[requests.Session] = None, timeout: float = 10.0):
        self.endpoint = endpoint
        self.server_key = server_key
        self.session = session or create_session()
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.server_key)

    def send_multicast(
        self,
        tokens: List[str],
        notification: Dict[str, Any],
        data: Dict[str, Any],
        link: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Send one message to every token.

        Returns:
            ``success_count``, ``failure_count`` and ``responses``, one
            ``{"success": bool, "error": code}`` per token in input order.

        Raises:
            requests.HTTPError: the gateway rejected the whole request.
        """
        body: Dict[str, Any] = {
            "registration_ids": list(tokens),
            "notification": dict(notification),
            "data": {k: str(v) for k, v in data.items()},
        }
        if link:
            body["notification"]["click_action"] = link
        resp = self.session.post(
            self.endpoint,
            json=body,
            headers={"Authorization": f"key={self.server_key}"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        payload = resp.json() or {}
        results = payload.get("results") or []
        responses = [
            {"success": "error" not in r, "error": r.get("error")}
            for r in results
        ]
        return {
            "success_count": int(payload.get("success") or 0),
            "failure_count": int(payload.get("failure") or 0),
            "responses": responses,
        }


def client_from_env() -> PushClient:
    return PushClient(
        endpoint=os.environ.get("PUSH_ENDPOINT_URL", DEFAULT_PUSH_ENDPOINT),
        server_key=os.environ.get("PUSH_SERVER_KEY"),
    )


def _load_tokens() -> List[Dict[str, Any]]:
    limit = SAFETY_LIMITS["MAX_TOKENS_PER_NOTIFICATION"]
    rows = [r for r in ds.list_notification_tokens(limit=limit + 1) if r.get("token")]
    if len(rows) > limit:
        logger.warning("token_limit_exceeded limit=%d", limit)
    return rows[:limit]


def _purge_stale_tokens(rows: List[Dict[str, Any]], responses: List[Dict[str, Any]]) -> int:
    stale = [
        row["id"]
        for row, resp in zip(rows, responses)
        if not resp.get("success") and resp.get("error") in STALE_TOKEN_ERRORS
    ]
    stale = stale[:SAFETY_LIMITS["MAX_TOKEN_DELETES_PER_RUN"]]
    for token_id in stale:
        ds.delete_notification_token(token_id)
    if stale:
        logger.info("stale_tokens_deleted count=%d", len(stale))
    return len(stale)


def notification_id(race_id: str, event_type: str) -> str:
    lead = TIME_CONSTANTS["REMINDER_LEAD_MINUTES"]
    return f"{race_id}_{event_type}_{lead}min"


def send_event_notification(
    race: Dict[str, Any],
    event_type: str,
    event_time: datetime,
    token_rows: List[Dict[str, Any]],
    client: PushClient,
    now: Optional[datetime] = None,
) -> Optional[Dict[str, Any]]:
    """Push one session reminder unless it was already sent.

    Returns the gateway summary, or ``None`` when nothing was sent.
    """
    now = as_utc(now) if now is not None else utcnow()
    notif_id = notification_id(race["id"], event_type)
    if ds.get_sent_notification(notif_id):
        logger.info("notification_already_sent id=%s", notif_id)
        return None
    if not token_rows:
        return None
    if not client.configured:
        logger.warning("push_not_configured id=%s", notif_id)
        return None

    title, body = _EVENT_COPY.get(event_type, ("Event", "{name} " + event_type + " starts in 30 minutes!"))
    tokens = [r["token"] for r in token_rows]
    response = client.send_multicast(
        tokens,
        notification={"title": f"{title} Starting Soon!", "body": body.format(name=race.get("name"))},
        data={
            "raceId": race["id"],
            "raceName": race.get("name") or "",
            "eventType": event_type,
            "eventTime": to_iso(event_time),
            "type": "event-reminder",
            "url": "/lineup",
        },
        link=os.environ.get("APP_URL", DEFAULT_APP_URL),
    )
    _purge_stale_tokens(token_rows, response["responses"])
    ds.record_sent_notification(notif_id, {
        "raceId": race["id"],
        "raceName": race.get("name"),
        "eventType": event_type,
        "eventTime": to_iso(event_time),
        "sentAt": to_iso(now),
        "recipientCount": len(tokens),
        "successCount": response["success_count"],
        "failureCount": response["failure_count"],
    })
    logger.info(
        "notification_sent id=%s recipients=%d success=%d failure=%d",
        notif_id, len(tokens), response["success_count"], response["failure_count"],
    )
    return response


def find_upcoming_events(races: List[Dict[str, Any]], now: datetime) -> List[Dict[str, Any]]:
    """Sessions starting between the reminder lead and lead + scan window."""
    lead = TIME_CONSTANTS["REMINDER_LEAD_MINUTES"]
    start = now + timedelta(minutes=lead)
    end = now + timedelta(minutes=lead + TIME_CONSTANTS["REMINDER_SCAN_WINDOW_MINUTES"])
    events = []
    for race in races:
        for event_type, field in EVENT_TYPES:
            when = as_utc(race.get(field))
            if when is not None and start <= when <= end:
                events.append({"race": race, "event_type": event_type, "event_time": when})
    return events


def check_upcoming_events(now: Optional[datetime] = None, client: Optional[PushClient] = None) -> Dict[str, int]:
    """Scheduler entry point: remind every device of sessions about to start.

    A failure while sending one event is logged and the remaining events are
    still processed.
    """
    now = as_utc(now) if now is not None else utcnow()
    client = client or client_from_env()
    races = ds.list_upcoming_races(to_iso(now), limit=SAFETY_LIMITS["MAX_NOTIFICATIONS_PER_RUN"])
    events = find_upcoming_events(races, now)
    summary = {"events": len(events), "sent": 0, "failed": 0}
    if not events:
        logger.info("notify_run events=0 sent=0")
        return summary

    token_rows = _load_tokens()
    if not token_rows:
        logger.info("notify_run events=%d sent=0 tokens=0", len(events))
        return summary

    for event in events:
        try:
            if send_event_notification(event["race"], event["event_type"], event["event_time"],
                                       token_rows, client, now=now):
                summary["sent"] += 1
        except Exception:
            summary["failed"] += 1
            logger.exception("notification_failed race=%s event=%s",
                             event["race"].get("id"), event["event_type"])
    logger.info("notify_run events=%d sent=%d failed=%d", summary["events"], summary["sent"], summary["failed"])
    return summary


def cleanup_old_notifications(now: Optional[datetime] = None, days: Optional[int] = None) -> int:
    """Delete sent-notification receipts older than ``days``; returns the count."""
    now = as_utc(now) if now is not None else utcnow()
    if days is None:
        days = TIME_CONSTANTS["SENT_NOTIFICATION_RETENTION_DAYS"]
    cutoff = now - timedelta(days=days)
    rows = ds.list_sent_notifications_before(to_iso(cutoff), limit=SAFETY_LIMITS["MAX_READS_PER_RUN"])
    for row in rows:
        ds.delete_sent_notification(row["id"])
    logger.info("notification_cleanup deleted=%d cutoff=%s", len(rows), to_iso(cutoff))
    return len(rows)


def send_test_notification(client: Optional[PushClient] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = as_utc(now) if now is not None else utcnow()
    client = client or client_from_env()
    token_rows = _load_tokens()
    if not token_rows:
        raise NoRecipients("No tokens registered")
    tokens = [r["token"] for r in token_rows]
    if not client.configured:
        logger.warning("push_not_configured test")
        response = {"success_count": 0, "failure_count": len(tokens), "responses": []}
    else:
        response = client.send_multicast(
            tokens,
            notification={
                "title": "Test Notification",
                "body": "This is a test notification from FantaF1! Your notifications are working correctly.",
            },
            data={"type": "test", "timestamp": to_iso(now)},
        )
    return {
        "success": True,
        "message": "Test notification sent",
        "totalTokens": len(tokens),
        "successCount": response["success_count"],
        "failureCount": response["failure_count"],
        "timestamp": to_iso(now),
    }


def notification_stats(now: Optional[datetime] = None) -> Dict[str, Any]:
    now = as_utc(now) if now is not None else utcnow()
    recent = [
        {
            "eventType": r.get("eventType"),
            "raceName": r.get("raceName"),
            "sentAt": r.get("sentAt"),
            "recipients": r.get("recipientCount"),
            "success": r.get("successCount"),
        }
        for r in ds.list_recent_sent_notifications(limit=10)
    ]
    return {
        "totalTokens": ds.count_notification_tokens(),
        "totalNotificationsSent": ds.count_sent_notifications(),
        "recentNotifications": recent,
        "safetyLimits": dict(SAFETY_LIMITS),
        "timestamp": to_iso(now),
    }


def register_token(user_id: str, token: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Store the device token for ``user_id``, one device per user."""
    if not token:
        raise ValueError("token is required")
    now = as_utc(now) if now is not None else utcnow()
    fields = {"token": token, "userId": user_id, "updatedAt": to_iso(now)}
    ds.set_notification_token(user_id, fields)
    return fields


__all__ = [
    "RateLimiter",
    "PushClient",
    "client_from_env",
    "check_upcoming_events",
    "send_event_notification",
    "find_upcoming_events",
    "cleanup_old_notifications",
    "send_test_notification",
    "notification_stats",
    "register_token",
]
