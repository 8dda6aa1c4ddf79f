"""Reference data: roster, teams, point values and time/safety constants."""

from typing import Any, Dict, List

DRIVERS: List[str] = [
    "Lando Norris",
    "Oscar Piastri",
    "Max Verstappen",
    "Charles Leclerc",
    "Lewis Hamilton",
    "George Russell",
    "Andrea Kimi Antonelli",
    "Yuki Tsunoda",
    "Fernando Alonso",
    "Lance Stroll",
    "Pierre Gasly",
    "Franco Colapinto",
    "Oliver Bearman",
    "Esteban Ocon",
    "Nico Hülkenberg",
    "Gabriel Bortoleto",
    "Liam Lawson",
    "Isack Hadjar",
    "Alexander Albon",
    "Carlos Sainz Jr.",
]

CONSTRUCTORS: List[str] = [
    "Red Bull",
    "Ferrari",
    "Mercedes",
    "McLaren",
    "Aston Martin",
    "Alpine",
    "Haas",
    "Sauber",
    "Vcarb",
    "Williams",
]

DRIVER_TEAM: Dict[str, str] = {
    "Max Verstappen": "Red Bull",
    "Yuki Tsunoda": "Red Bull",
    "Charles Leclerc": "Ferrari",
    "Lewis Hamilton": "Ferrari",
    "George Russell": "Mercedes",
    "Andrea Kimi Antonelli": "Mercedes",
    "Lando Norris": "McLaren",
    "Oscar Piastri": "McLaren",
    "Fernando Alonso": "Aston Martin",
    "Lance Stroll": "Aston Martin",
    "Pierre Gasly": "Alpine",
    "Franco Colapinto": "Alpine",
    "Oliver Bearman": "Haas",
    "Esteban Ocon": "Haas",
    "Nico Hülkenberg": "Sauber",
    "Gabriel Bortoleto": "Sauber",
    "Liam Lawson": "Vcarb",
    "Isack Hadjar": "Vcarb",
    "Alexander Albon": "Williams",
    "Carlos Sainz Jr.": "Williams",
}

# Paths are relative to the frontend's public assets.
TEAM_LOGOS: Dict[str, str] = {
    "Ferrari": "/ferrari.png",
    "Mercedes": "/mercedes.png",
    "Red Bull": "/redbull.png",
    "McLaren": "/mclaren.png",
    "Aston Martin": "/aston.png",
    "Alpine": "/alpine.png",
    "Haas": "/haas.png",
    "Williams": "/williams.png",
    "Sauber": "/sauber.png",
    "Vcarb": "/vcarb.png",
}

POINTS: Dict[str, Any] = {
    "MAIN": {1: 12, 2: 10, 3: 8},
    "SPRINT": {1: 8, 2: 6, 3: 4},
    # Joker bonus applies when the pick finishes anywhere on the podium
    "BONUS_JOLLY_MAIN": 5,
    "BONUS_JOLLY_SPRINT": 2,
    "PENALTY_EMPTY_LIST": -3,
    "PENALTY_LATE_SUBMISSION": -3,
    # A session total of exactly ROUNDING_FROM becomes ROUNDING_TO plus one joker
    "ROUNDING_FROM": 29,
    "ROUNDING_TO": 30,
}

TIME_CONSTANTS: Dict[str, int] = {
    # Minutes after the race during which results may be entered
    "GRACE_PERIOD_MINUTES": 90,
    "LATE_SUBMISSION_WINDOW_MINUTES": 10,
    "REMINDER_LEAD_MINUTES": 30,
    "REMINDER_SCAN_WINDOW_MINUTES": 15,
    "SENT_NOTIFICATION_RETENTION_DAYS": 30,
}

SAFETY_LIMITS: Dict[str, int] = {
    "MAX_TOKENS_PER_NOTIFICATION": 1000,
    "MAX_NOTIFICATIONS_PER_RUN": 10,
    "MAX_READS_PER_RUN": 100,
    "MAX_TOKEN_DELETES_PER_RUN": 50,
    "RATE_LIMIT_WINDOW_SECONDS": 60,
    "MAX_TEST_CALLS_PER_MINUTE": 3,
}

DEFAULT_RANKING: Dict[str, Any] = {
    "puntiTotali": 0,
    "jolly": 0,
    "usedLateSubmission": False,
    "pointsByRace": {},
    "championshipPiloti": [],
    "championshipCostruttori": [],
    "championshipPts": 0,
}

MAIN_PICK_FIELDS = ("mainP1", "mainP2", "mainP3")
SPRINT_PICK_FIELDS = ("sprintP1", "sprintP2", "sprintP3")
MAIN_FIELDS = MAIN_PICK_FIELDS + ("mainJolly", "mainJolly2")
SPRINT_FIELDS = SPRINT_PICK_FIELDS + ("sprintJolly",)
