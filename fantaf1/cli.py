"""Operator commands, registered on the app as ``flask --app fantaf1 <command>``.

``check-events`` is meant to run every 15 minutes and
``cleanup-notifications`` once a day from the host scheduler.
"""

import click
from flask import current_app
from flask.cli import with_appcontext

from . import datastore as ds
from .calculator import calculate_points_for_race
from .ics import import_calendar
from .notifications import check_upcoming_events, cleanup_old_notifications


@click.command('init-db')
def init_db_command():
    """Create the documents table."""
    ds.create_tables()
    click.echo("Database schema ready.")


@click.command('import-calendar')
@click.argument('ics_file', type=click.File('r', encoding='utf-8'))
def import_calendar_command(ics_file):
    """Load race weekends from an F1 ICS calendar."""
    races = import_calendar(ics_file.read())
    for race in races:
        click.echo(f"R{race['round']:02d} {race['id']} race={race['raceUTC'].isoformat()}")
    click.echo(f"Imported {len(races)} races.")


@click.command('calculate-points')
@click.argument('race_id')
@with_appcontext
def calculate_points_command(race_id):
    """Re-score a race from its stored official results."""
    summary = calculate_points_for_race(race_id, max_workers=current_app.config.get('SCORING_MAX_WORKERS'))
    click.echo(summary['message'])
    for user_id, error in sorted(summary['failed'].items()):
        click.echo(f"  failed {user_id}: {error}", err=True)
    if summary['failed']:
        raise SystemExit(1)


@click.command('check-events')
@with_appcontext
def check_events_command():
    """Send reminders for sessions starting in the next 30-45 minutes."""
    summary = check_upcoming_events(client=current_app.extensions.get('push_client'))
    click.echo(f"events={summary['events']} sent={summary['sent']} failed={summary['failed']}")


@click.command('cleanup-notifications')
@click.option('--days', type=int, default=None, help="Retention in days (default 30).")
def cleanup_notifications_command(days):
    """Delete old sent-notification receipts."""
    deleted = cleanup_old_notifications(days=days)
    click.echo(f"Deleted {deleted} notification receipts.")


COMMANDS = (
    init_db_command,
    import_calendar_command,
    calculate_points_command,
    check_events_command,
    cleanup_notifications_command,
)


def register(app):
    for command in COMMANDS:
        app.cli.add_command(command)
