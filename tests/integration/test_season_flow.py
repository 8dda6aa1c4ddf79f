from fantaf1 import datastore as ds

CALENDAR = "\r\n".join([
    "BEGIN:VCALENDAR",
    "BEGIN:VEVENT",
    "SUMMARY:F1: Qualifiche (Gran Premio d'Italia)",
    "DTSTART:20990905T140000Z",
    "END:VEVENT",
    "BEGIN:VEVENT",
    "SUMMARY:F1: Gran Premio (Gran Premio d'Italia)",
    "DTSTART:20990906T130000Z",
    "END:VEVENT",
    "BEGIN:VEVENT",
    "SUMMARY:F1: Qualifiche (Gran Premio di Singapore)",
    "DTSTART:20991003T130000Z",
    "END:VEVENT",
    "BEGIN:VEVENT",
    "SUMMARY:F1: Gran Premio (Gran Premio di Singapore)",
    "DTSTART:20991004T120000Z",
    "END:VEVENT",
    "END:VCALENDAR",
])

PODIUM = {"P1": "Lando Norris", "P2": "Oscar Piastri", "P3": "Max Verstappen"}
EXACT = {"mainP1": "Lando Norris", "mainP2": "Oscar Piastri", "mainP3": "Max Verstappen", "mainJolly": "Charles Leclerc"}
WINNER_ONLY = {"mainP1": "Lando Norris", "mainP2": "Lewis Hamilton", "mainP3": "George Russell", "mainJolly": "Pierre Gasly"}
MISSED = {"mainP1": "Fernando Alonso", "mainP2": "Lance Stroll", "mainP3": "Esteban Ocon", "mainJolly": "Liam Lawson"}


def _submit(client, race_id, user_id, picks):
    res = client.post(f"/api/races/{race_id}/submissions/{user_id}", json={"mode": "main", "picks": picks})
    assert res.status_code == 200, res.get_json()


def test_calendar_to_standings(app, client, tmp_path):
    ics = tmp_path / "calendar.ics"
    ics.write_text(CALENDAR, encoding="utf-8")
    runner = app.test_cli_runner()
    result = runner.invoke(args=["import-calendar", str(ics)])
    assert result.exit_code == 0, result.output
    assert "Imported 2 races." in result.output

    races = client.get("/api/races").get_json()["races"]
    assert [r["id"] for r in races] == ["gran-premio-d-italia", "gran-premio-di-singapore"]
    monza, singapore = (r["id"] for r in races)

    client.post("/api/ranking/u1", json={"name": "Anna"})
    client.post("/api/ranking/u2", json={"name": "Bruno"})

    # Round 1: Anna calls the podium, Bruno only the winner
    _submit(client, monza, "u1", EXACT)
    _submit(client, monza, "u2", WINNER_ONLY)
    assert client.post(f"/api/races/{monza}/results", json=PODIUM).status_code == 200

    standings = client.get("/api/ranking").get_json()["standings"]
    assert [s["userId"] for s in standings] == ["u1", "u2"]
    assert all(s["positionChange"] == 0 for s in standings)

    # Round 2 (season finale): Bruno takes the lead
    _submit(client, singapore, "u1", MISSED)
    _submit(client, singapore, "u2", EXACT)
    res = client.post(f"/api/races/{singapore}/results", json=PODIUM)
    assert res.status_code == 200
    assert ds.get_race(singapore)["officialResults"]["doublePoints"] is True

    standings = client.get("/api/ranking").get_json()["standings"]
    assert [s["userId"] for s in standings] == ["u2", "u1"]
    assert standings[0]["positionChange"] == 1
    assert standings[1]["positionChange"] == -1

    stats = client.get("/api/statistics").get_json()
    bruno = stats["playersData"]["u2"]
    assert [e["position"] for e in bruno] == [2, 1]
    assert bruno[-1]["cumulativePoints"] == standings[0]["points"]

    # Re-scoring from the CLI leaves totals unchanged
    before = {r["id"]: r["puntiTotali"] for r in ds.list_ranking()}
    result = runner.invoke(args=["calculate-points", singapore])
    assert result.exit_code == 0, result.output
    assert {r["id"]: r["puntiTotali"] for r in ds.list_ranking()} == before
