import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _csv(name: str, default: str = "") -> list:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


# ────────────────────────────── CORE ──────────────────────────────

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./resq.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = _csv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173,http://localhost:8080",
)
SEED_MECHANICS = _flag("SEED_MECHANICS", "true")

# ────────────────────────────── AUTH ──────────────────────────────

SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
TOKEN_EXPIRE_MINUTES = int(os.getenv("TOKEN_EXPIRE_MINUTES", "43200"))

# ────────────────────────────── LIFECYCLE ──────────────────────────────

# Fake dispatch that walks each request through its statuses on a timer
DEMO_PROGRESSION = _flag("DEMO_PROGRESSION")
DEMO_STEP_SECONDS = float(os.getenv("DEMO_STEP_SECONDS", "10"))

# ────────────────────────────── SUBMISSION ──────────────────────────────

GEOLOCATION_TIMEOUT = float(os.getenv("GEOLOCATION_TIMEOUT", "10"))
GEOCODER = os.getenv("GEOCODER", "none").strip().lower()
GEOCODER_USER_AGENT = os.getenv("GEOCODER_USER_AGENT", "resq-dispatch")
DISALLOWED_TERMS = _csv("DISALLOWED_TERMS", "badword1,badword2")

# ────────────────────────────── MAP ──────────────────────────────

DEFAULT_COORDINATES = (
    float(os.getenv("DEFAULT_LONGITUDE", "-74.006")),
    float(os.getenv("DEFAULT_LATITUDE", "40.7128")),
)
MAPBOX_ACCESS_TOKEN = os.getenv("MAPBOX_ACCESS_TOKEN")
MAPBOX_STYLE = os.getenv("MAPBOX_STYLE", "mapbox://styles/mapbox/streets-v12")
GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY")
LEAFLET_TILE_URL = os.getenv(
    "LEAFLET_TILE_URL", "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png"
)
FEATURES = os.getenv("FEATURES", "")

# ────────────────────────────── SMS ──────────────────────────────

AT_USERNAME = os.getenv("AT_USERNAME") or os.getenv("AFRICASTALKING_USERNAME")
AT_API_KEY = os.getenv("AT_API_KEY") or os.getenv("AFRICASTALKING_APIKEY")
AT_FROM = os.getenv("AT_FROM") or os.getenv("AFRICASTALKING_FROM")
SMS_COUNTRY_CODE = os.getenv("SMS_COUNTRY_CODE", "+1")
