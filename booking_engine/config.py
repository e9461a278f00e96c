"""Configuration for the booking engine.

Business defaults live here as plain constants - modify as needed without
touching code. Deployment knobs are read from the environment (.env supported).
"""
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

SERVICES = [
    {"id": "design-normal", "name": "Design normal", "duration_minutes": 30},
    {"id": "design-henna", "name": "Design com henna", "duration_minutes": 60},
]

DEFAULT_SERVICE = "Design normal"

BUSINESS_INFO = {
    "name": "Giovanna Beauty Design de Sobrancelhas",
    "address": "Rua Exemplo, 123 - Bairro - Cidade/UF",
    "phone": "5534991122682",
    "workingHours": "Segunda a Sexta, 9h às 18h",
}

OPERATING_HOURS = {
    "start_hour": 8,
    "end_hour": 20,
    "slot_duration_minutes": 30,
    "closed_weekdays": ["sunday"],
}

REMINDER = {
    "lead_minutes": 30,
    "tolerance_minutes": 1,
    "period_seconds": 60,
}

BOOKING_PATH = "/agendar"

DEFAULT_STORAGE_URL = "json://data"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _data_dir_url() -> str:
    data_dir = os.getenv("BOOKING_DATA_DIR")
    return f"json://{data_dir}" if data_dir else DEFAULT_STORAGE_URL


class Settings(BaseModel):
    """Runtime settings resolved from the environment."""
    storage_url: str = Field(default=DEFAULT_STORAGE_URL, description="json://<dir>, memory:// or a SQLAlchemy URL")
    strict_persistence: bool = Field(default=False, description="Reject writes storage did not acknowledge")
    successor_policy: str = Field(default="keep_reserved", pattern="^(keep_reserved|release)$")
    reminder_lead_minutes: int = Field(default=REMINDER["lead_minutes"], gt=0)
    reminder_tolerance_minutes: int = Field(default=REMINDER["tolerance_minutes"], ge=0)
    reminder_period_seconds: float = Field(default=REMINDER["period_seconds"], gt=0)
    reminders_enabled: bool = True
    access_key_hash: Optional[str] = None
    webhook_url: Optional[str] = None
    public_base_url: str = "http://localhost:8000"
    log_level: str = "INFO"


def load_settings() -> Settings:
    """
    Build Settings from environment variables.

    Returns:
        Settings instance (validated)
    """
    return Settings(
        storage_url=os.getenv("BOOKING_STORAGE_URL") or _data_dir_url(),
        strict_persistence=_env_bool("BOOKING_STRICT_PERSISTENCE", False),
        successor_policy=os.getenv("BOOKING_SUCCESSOR_POLICY", "keep_reserved"),
        reminder_lead_minutes=int(os.getenv("BOOKING_REMINDER_LEAD_MINUTES", REMINDER["lead_minutes"])),
        reminder_tolerance_minutes=int(
            os.getenv("BOOKING_REMINDER_TOLERANCE_MINUTES", REMINDER["tolerance_minutes"])
        ),
        reminder_period_seconds=float(
            os.getenv("BOOKING_REMINDER_PERIOD_SECONDS", REMINDER["period_seconds"])
        ),
        reminders_enabled=_env_bool("BOOKING_REMINDERS_ENABLED", True),
        access_key_hash=os.getenv("BOOKING_ACCESS_KEY_HASH") or None,
        webhook_url=os.getenv("BOOKING_WEBHOOK_URL") or None,
        public_base_url=os.getenv("BOOKING_PUBLIC_BASE_URL", "http://localhost:8000"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
