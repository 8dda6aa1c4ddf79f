from datetime import datetime, timezone

from fantaf1 import datastore as ds
from fantaf1.ics import import_calendar, make_slug, parse_f1_calendar, parse_ics_date

CALENDAR = "\r\n".join([
    "BEGIN:VCALENDAR",
    "VERSION:2.0",
    "BEGIN:VEVENT",
    "SUMMARY:F1: Prove Libere 1 (Gran Premio d'Australia)",
    "DTSTART:20250314T013000Z",
    "END:VEVENT",
    "BEGIN:VEVENT",
    "SUMMARY:F1: Gran Premio (Gran Premio d'Australia)",
    "DTSTART:20250316T040000Z",
    "END:VEVENT",
    "BEGIN:VEVENT",
    "SUMMARY:F1: Qualifiche (Gran Premio d'Australia)",
    "DTSTART:20250315T050000Z",
    "END:VEVENT",
    "BEGIN:VEVENT",
    "SUMMARY:F1: Qualifiche Sprint (Gran Premio della Cina)",
    "DTSTART:20250321T073000Z",
    "END:VEVENT",
    "BEGIN:VEVENT",
    "SUMMARY:F1: Sprint (Gran Premio della Cina)",
    "DTSTART:20250322T030000Z",
    "END:VEVENT",
    "BEGIN:VEVENT",
    "SUMMARY:F1: Qualifiche (Gran Premio della Cina)",
    "DTSTART:20250322T070000Z",
    "END:VEVENT",
    "BEGIN:VEVENT",
    "SUMMARY:F1: Gran Premio (Gran Premio",
    "  della Cina)",
    "DTSTART;TZID=UTC:20250323T070000",
    "END:VEVENT",
    "BEGIN:VEVENT",
    "SUMMARY:F1: Qualifiche (Gran Premio del Giappone)",
    "DTSTART:20250405T060000Z",
    "END:VEVENT",
    "END:VCALENDAR",
])


def test_parse_ics_date():
    assert parse_ics_date("20250316T050000Z") == datetime(2025, 3, 16, 5, 0, tzinfo=timezone.utc)
    assert parse_ics_date("20250316") == datetime(2025, 3, 16, tzinfo=timezone.utc)
    assert parse_ics_date("") is None
    assert parse_ics_date("garbage") is None


def test_make_slug_strips_accents_and_punctuation():
    assert make_slug("Gran Premio d'Australia") == "gran-premio-d-australia"
    assert make_slug("  São Paulo GP ") == "sao-paulo-gp"
    assert make_slug("Emilia-Romagna!") == "emilia-romagna"


def test_parse_calendar_groups_sessions_and_numbers_rounds():
    races = parse_f1_calendar(CALENDAR)
    # Japan has no race start and is dropped
    assert [r["id"] for r in races] == ["gran-premio-d-australia", "gran-premio-della-cina"]
    assert [r["round"] for r in races] == [1, 2]

    australia, china = races
    assert australia["qualiUTC"] == datetime(2025, 3, 15, 5, 0, tzinfo=timezone.utc)
    assert australia["qualiSprintUTC"] is None
    assert china["name"] == "Gran Premio della Cina"
    assert china["qualiSprintUTC"] == datetime(2025, 3, 21, 7, 30, tzinfo=timezone.utc)
    assert china["sprintUTC"] == datetime(2025, 3, 22, 3, 0, tzinfo=timezone.utc)
    assert china["raceUTC"] == datetime(2025, 3, 23, 7, 0, tzinfo=timezone.utc)


def test_english_titles():
    text = "\n".join([
        "BEGIN:VEVENT", "SUMMARY:F1: Qualifying (Monaco Grand Prix)", "DTSTART:20250524T140000Z", "END:VEVENT",
        "BEGIN:VEVENT", "SUMMARY:F1: Grand Prix (Monaco Grand Prix)", "DTSTART:20250525T130000Z", "END:VEVENT",
        "BEGIN:VEVENT", "SUMMARY:F1: Sprint Qualifying (Monaco Grand Prix)", "DTSTART:20250523T150000Z", "END:VEVENT",
    ])
    (race,) = parse_f1_calendar(text)
    assert race["id"] == "monaco-grand-prix"
    assert race["qualiSprintUTC"] == datetime(2025, 5, 23, 15, 0, tzinfo=timezone.utc)


def test_import_calendar_keeps_existing_results():
    ds.upsert_race("gran-premio-d-australia", {"officialResults": {"P1": "Lando Norris"}, "cancelledSprint": False})
    races = import_calendar(CALENDAR)
    assert len(races) == 2
    stored = ds.get_race("gran-premio-d-australia")
    assert stored["officialResults"] == {"P1": "Lando Norris"}
    assert stored["qualiUTC"] == "2025-03-15T05:00:00.000000Z"
    assert stored["round"] == 1
    assert ds.get_race("gran-premio-della-cina")["qualiSprintUTC"] == "2025-03-21T07:30:00.000000Z"


def test_out_of_range_dates_are_skipped():
    assert parse_ics_date("20251345T250000Z") is None
    text = "\n".join([
        "BEGIN:VEVENT", "SUMMARY:F1: Qualifying (Monaco Grand Prix)", "DTSTART:20251324T140000Z", "END:VEVENT",
        "BEGIN:VEVENT", "SUMMARY:F1: Grand Prix (Monaco Grand Prix)", "DTSTART:20250525T130000Z", "END:VEVENT",
    ])
    # Without a usable qualifying time the weekend is dropped rather than crashing the import
    assert parse_f1_calendar(text) == []
