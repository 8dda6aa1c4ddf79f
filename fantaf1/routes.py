from flask import Blueprint, abort, current_app, request
import os
import time

import psycopg2
from werkzeug.exceptions import HTTPException

from . import datastore as ds
from .calculator import calculate_championship_points, calculate_points_for_race
from .exceptions import (
    ChampionshipResultsMissing,
    FantaF1Error,
    IncompleteResults,
    NoRecipients,
    RaceCancelled,
    RaceNotFound,
    RateLimitExceeded,
    SubmissionRejected,
)
from .lateness import MODES, get_late_window_info
from .notifications import notification_stats, register_token, send_test_notification
from .racing import MAIN_FIELDS, SPRINT_FIELDS
from .scoring import compute_leaderboard, main_breakdown, sprint_breakdown
from .snapshots import get_previous_standings
from .statistics import championship_statistics
from .submissions import ensure_ranking_entry, save_championship_picks, save_lineup
from .timestamps import to_iso, utcnow


bp = Blueprint('main', __name__)

# Simple in-process caches for read-heavy views; any write through this
# blueprint clears them.
_VIEW_CACHE: dict[str, tuple[float, dict]] = {}
_VIEW_TTL = int(os.environ.get('CACHE_TTL_STANDINGS', '60'))  # seconds


def _cache_get(key: str) -> dict | None:
    entry = _VIEW_CACHE.get(key)
    if not entry:
        return None
    exp, value = entry
    if exp < time.time():
        _VIEW_CACHE.pop(key, None)
        return None
    return value


def _cache_set(key: str, value: dict) -> None:
    _VIEW_CACHE[key] = (time.time() + _VIEW_TTL, value)


def _cache_clear_all() -> None:
    _VIEW_CACHE.clear()


_ERROR_STATUS = (
    (RaceNotFound, 404),
    (ChampionshipResultsMissing, 404),
    (NoRecipients, 404),
    (RaceCancelled, 409),
    (IncompleteResults, 400),
    (SubmissionRejected, 422),
    (RateLimitExceeded, 429),
)


@bp.errorhandler(FantaF1Error)
def handle_domain_error(err):
    status = next((code for cls, code in _ERROR_STATUS if isinstance(err, cls)), 400)
    if isinstance(err, SubmissionRejected):
        return {'errors': err.errors}, status
    if isinstance(err, RateLimitExceeded):
        current_app.logger.warning("Rate limit exceeded for %s", err.key)
        retry = int(err.retry_after or 0)
        return {'error': str(err), 'retryAfter': retry}, status, {'Retry-After': str(retry)}
    return {'error': str(err)}, status


@bp.errorhandler(HTTPException)
def handle_http_error(err):
    return {"error": err.description}, err.code


@bp.route('/health/db')
def health_db():
    """Database connectivity health check.

    Always returns HTTP 200 with a JSON body describing connection status.
    """
    if not os.environ.get('DATABASE_URL'):
        return {
            'connected': False,
            'status': 'no_database_url',
            'message': 'DATABASE_URL is not set.',
        }
    try:
        info = ds.health()
    except (psycopg2.Error, RuntimeError) as e:
        return {'connected': False, 'status': 'error', 'error': str(e)}
    return {'connected': True, 'status': 'ok', **info}


@bp.route('/api/races')
def list_races():
    return {'races': ds.list_races()}


def _race_or_404(race_id: str) -> dict:
    race = ds.get_race(race_id)
    if not race:
        abort(404, description=f"Race not found: {race_id}")
    return race


@bp.route('/api/races/<race_id>')
def get_race(race_id):
    return _race_or_404(race_id)


@bp.route('/api/races/<race_id>/late-window')
def late_window(race_id):
    """Deadline state of one session, evaluated with the server clock."""
    mode = request.args.get('mode', 'main')
    if mode not in MODES:
        abort(400, description=f"Unknown mode '{mode}'. Expected one of: {', '.join(MODES)}.")
    race = _race_or_404(race_id)
    now = utcnow()
    info = get_late_window_info(mode, race, now)
    return {
        'mode': mode,
        'now': to_iso(now),
        'deadline': to_iso(info['deadline']),
        'is_open': info['is_open'],
        'is_in_late_window': info['is_in_late_window'],
        'late_window_end': to_iso(info['late_window_end']),
    }


@bp.route('/api/races/<race_id>/submissions')
def list_submissions(race_id):
    """Submissions of a race with per-pick points once results exist."""
    race = _race_or_404(race_id)
    official = race.get('officialResults')
    rows = []
    for sub in ds.list_submissions(race_id):
        entry = dict(sub)
        entry['userId'] = sub.get('id')
        entry['mainBreakdown'] = main_breakdown(sub, official)
        entry['sprintBreakdown'] = sprint_breakdown(sub, official)
        rows.append(entry)
    return {'raceId': race_id, 'submissions': rows}


@bp.route('/api/races/<race_id>/submissions/<user_id>', methods=['POST'])
def submit_lineup(race_id, user_id):
    payload = request.get_json(silent=True) or {}
    mode = payload.get('mode', 'main')
    picks = payload.get('picks')
    if picks is None:
        fields = MAIN_FIELDS + SPRINT_FIELDS
        picks = {k: payload.get(k) for k in fields if k in payload}
    if not isinstance(picks, dict):
        abort(400, description="'picks' must be an object.")
    result = save_lineup(race_id, user_id, mode, picks, now=utcnow())
    _cache_clear_all()
    current_app.logger.info("Lineup saved for %s on %s (%s)", user_id, race_id, mode)
    return result


@bp.route('/api/races/<race_id>/results', methods=['POST'])
def submit_results(race_id):
    """Store official results and score every submission of the race."""
    payload = request.get_json(silent=True) or {}
    official = {k: payload[k] for k in ('P1', 'P2', 'P3', 'SP1', 'SP2', 'SP3', 'doublePoints') if k in payload}
    max_workers = current_app.config.get('SCORING_MAX_WORKERS')
    summary = calculate_points_for_race(race_id, official, max_workers=max_workers)
    _cache_clear_all()
    return summary


@bp.route('/api/races/<race_id>/cancel', methods=['POST'])
def cancel_race(race_id):
    payload = request.get_json(silent=True) or {}
    _race_or_404(race_id)
    fields = {}
    if 'main' in payload:
        fields['cancelledMain'] = bool(payload['main'])
    if 'sprint' in payload:
        fields['cancelledSprint'] = bool(payload['sprint'])
    if not fields:
        abort(400, description="Provide 'main' and/or 'sprint' flags.")
    ds.upsert_race(race_id, fields)
    _cache_clear_all()
    current_app.logger.info("Race %s cancellation updated: %s", race_id, fields)
    return {'status': 'ok', 'raceId': race_id, **fields}


@bp.route('/api/ranking')
def ranking():
    cached = _cache_get('ranking')
    if cached is not None:
        return cached
    standings = compute_leaderboard(ds.list_ranking(), get_previous_standings())
    result = {'standings': standings}
    _cache_set('ranking', result)
    return result


@bp.route('/api/ranking/<user_id>', methods=['POST'])
def create_ranking_entry(user_id):
    payload = request.get_json(silent=True) or {}
    doc = ensure_ranking_entry(user_id, payload.get('name'))
    _cache_clear_all()
    return doc


@bp.route('/api/championship/results', methods=['POST'])
def submit_championship_results():
    payload = request.get_json(silent=True) or {}
    official = {k: payload.get(k) for k in ('P1', 'P2', 'P3', 'C1', 'C2', 'C3')}
    missing = [k for k, v in official.items() if not v]
    if missing:
        abort(400, description=f"Missing championship positions: {', '.join(missing)}.")
    ds.set_championship_results(official)
    summary = calculate_championship_points(max_workers=current_app.config.get('SCORING_MAX_WORKERS'))
    _cache_clear_all()
    return summary


@bp.route('/api/championship/<user_id>', methods=['POST'])
def submit_championship_picks(user_id):
    payload = request.get_json(silent=True) or {}
    result = save_championship_picks(
        user_id,
        payload.get('drivers') or [],
        payload.get('constructors') or [],
        now=utcnow(),
    )
    _cache_clear_all()
    return result


@bp.route('/api/statistics')
def statistics():
    cached = _cache_get('statistics')
    if cached is not None:
        return cached
    result = championship_statistics(ds.list_races(), ds.list_ranking())
    _cache_set('statistics', result)
    return result


@bp.route('/api/notifications/tokens/<user_id>', methods=['POST'])
def save_token(user_id):
    payload = request.get_json(silent=True) or {}
    token = (payload.get('token') or '').strip()
    if not token:
        abort(400, description="'token' is required.")
    return register_token(user_id, token)


@bp.route('/api/notifications/test', methods=['POST'])
def test_notification():
    limiter = current_app.extensions['notify_test_limiter']
    client_ip = request.remote_addr or 'unknown'
    limiter.check(f"test_{client_ip}")
    current_app.logger.info("Test notification requested from %s", client_ip)
    return send_test_notification(current_app.extensions.get('push_client'))


@bp.route('/api/notifications/stats')
def notifications_stats():
    return notification_stats()
