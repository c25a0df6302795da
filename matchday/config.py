"""Configuration and settings for the matchday simulator."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Base paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = BASE_DIR / "data"
DB_PATH = Path(os.getenv("MATCHDAY_DB_PATH", str(DATA_DIR / "matchday.db")))

# Ensure data directory exists
DATA_DIR.mkdir(exist_ok=True)

# Match clock (seconds per phase)
PRE_COUNTDOWN_SECONDS = 10
BETTING_WINDOW_SECONDS = 30
MATCH_MINUTES = 90
SIMULATION_TICKS = 40

# Viewers poll the shared state at this rate when push is unavailable
POLL_INTERVAL_SECONDS = 2
LIVE_INDEX_REFRESH_SECONDS = 5

# 90 second match + 5 second buffer
STALE_SWEEP_DELAY_SECONDS = 95

# Season / timeframe layout
TOTAL_WEEKS = 36
MATCHES_PER_TIMEFRAME = 9
MIN_POOL_SIZE = 54
DEFAULT_MATCH_INTERVAL_MINUTES = int(os.getenv("MATCH_INTERVAL_MINUTES", "30"))

# Betting
MIN_STAKE = 50
CURRENCY = "KES"

# Timeframe advancement: "cycle" (phase-driven) or "schedule" (wall-clock driven).
# Only seeds the persisted flag the first time a database is initialized.
ADVANCEMENT_MODE = os.getenv("ADVANCEMENT_MODE", "cycle")

DEFAULT_COUNTRY = os.getenv("DEFAULT_COUNTRY", "ENG")

# League mappings keyed by country code
LEAGUES = {
    "ENG": {
        "name": "English Premier League",
        "country": "England",
        "teams": [
            "Arsenal", "Aston Villa", "Bournemouth", "Brentford", "Brighton",
            "Chelsea", "Crystal Palace", "Everton", "Fulham", "Liverpool",
            "Man City", "Man United", "Newcastle", "Nottm Forest",
            "Tottenham", "West Ham", "Wolves", "Leeds", "Burnley", "Sunderland",
        ],
    },
    "ESP": {
        "name": "La Liga",
        "country": "Spain",
        "teams": [
            "Real Madrid", "Barcelona", "Atletico Madrid", "Athletic Club",
            "Real Sociedad", "Real Betis", "Villarreal", "Valencia", "Sevilla",
            "Girona", "Osasuna", "Celta Vigo", "Mallorca", "Getafe",
            "Rayo Vallecano", "Alaves", "Espanyol", "Levante", "Elche", "Real Oviedo",
        ],
    },
    "GER": {
        "name": "German Bundesliga",
        "country": "Germany",
        "teams": [
            "Bayern Munich", "Dortmund", "Leverkusen", "RB Leipzig", "Stuttgart",
            "Eintracht Frankfurt", "Freiburg", "Wolfsburg", "Gladbach", "Mainz",
            "Union Berlin", "Werder Bremen", "Augsburg", "Hoffenheim",
            "Heidenheim", "St. Pauli", "Cologne", "Hamburg",
        ],
    },
    "ITA": {
        "name": "Serie A",
        "country": "Italy",
        "teams": [
            "Inter", "AC Milan", "Juventus", "Napoli", "Roma", "Lazio", "Atalanta",
            "Fiorentina", "Bologna", "Torino", "Udinese", "Genoa", "Cagliari",
            "Lecce", "Verona", "Parma", "Como", "Sassuolo", "Pisa", "Cremonese",
        ],
    },
    "KEN": {
        "name": "Kenyan Premier League",
        "country": "Kenya",
        "teams": [
            "Gor Mahia", "AFC Leopards", "Tusker", "KCB", "Kakamega Homeboyz",
            "Bandari", "Posta Rangers", "Sofapaka",
        ],
    },
}
