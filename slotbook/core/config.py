import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./slotbook.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

PENDING_EXPIRY_MINUTES = _get_int(os.getenv("PENDING_EXPIRY_MINUTES"), 30)
DEFAULT_PRE_TRAVEL_MINUTES = _get_int(os.getenv("DEFAULT_PRE_TRAVEL_MINUTES"), 15)
DEFAULT_POST_TRAVEL_MINUTES = _get_int(os.getenv("DEFAULT_POST_TRAVEL_MINUTES"), 15)
SLOT_GRANULARITY_MINUTES = _get_int(os.getenv("SLOT_GRANULARITY_MINUTES"), 15)

# Upper bounds on a single appointment and on each side of its travel buffer.
MAX_APPOINTMENT_MINUTES = 24 * 60
MAX_TRAVEL_MINUTES = 4 * 60

BOOKING_LOCK_TIMEOUT_SECONDS = float(os.getenv("BOOKING_LOCK_TIMEOUT_SECONDS", "5"))
EXPIRY_SWEEP_INTERVAL_SECONDS = _get_int(os.getenv("EXPIRY_SWEEP_INTERVAL_SECONDS"), 60)

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:4200").split(",")
    if origin.strip()
]


def validate_runtime_config() -> None:
    if PENDING_EXPIRY_MINUTES <= 0:
        raise RuntimeError("PENDING_EXPIRY_MINUTES must be positive.")
    if DEFAULT_PRE_TRAVEL_MINUTES < 0 or DEFAULT_POST_TRAVEL_MINUTES < 0:
        raise RuntimeError("Default travel buffers cannot be negative.")
    if max(DEFAULT_PRE_TRAVEL_MINUTES, DEFAULT_POST_TRAVEL_MINUTES) > MAX_TRAVEL_MINUTES:
        raise RuntimeError(f"Default travel buffers cannot exceed {MAX_TRAVEL_MINUTES} minutes.")
    if SLOT_GRANULARITY_MINUTES <= 0:
        raise RuntimeError("SLOT_GRANULARITY_MINUTES must be positive.")
    if BOOKING_LOCK_TIMEOUT_SECONDS <= 0:
        raise RuntimeError("BOOKING_LOCK_TIMEOUT_SECONDS must be positive.")
    if EXPIRY_SWEEP_INTERVAL_SECONDS < 0:
        raise RuntimeError("EXPIRY_SWEEP_INTERVAL_SECONDS cannot be negative.")
