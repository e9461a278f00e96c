"""Domain records for the booking engine.

Records are frozen pydantic models. Attribute names are snake_case; the
camelCase aliases are the serialization schema used by every storage backend:

    {"id": "...", "date": "2024-06-10", "startTime": "09:00",
     "endTime": "09:30", "isAvailable": true}
"""
import re
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class AppointmentStatus(str, Enum):
    """Appointment lifecycle states."""
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED})


class Record(BaseModel):
    """Base for stored records: immutable, camelCase on the wire."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_record(self) -> Dict[str, Any]:
        """Serialize to the persisted field shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Client(Record):
    """A person who books appointments."""
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    phone: str = Field(..., min_length=1, max_length=40)
    email: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=2000)


EDITABLE_CLIENT_FIELDS = ("name", "phone", "email", "notes")


class TimeSlot(Record):
    """A fixed calendar date plus a start/end wall-clock interval."""
    id: str = Field(..., min_length=1)
    date: date
    start_time: str
    end_time: str
    is_available: bool = True

    @field_validator("date", mode="before")
    @classmethod
    def accept_iso_datetime(cls, v):
        """Older records store the date as a full ISO timestamp; keep the day."""
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        return v

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_hhmm(cls, v: str) -> str:
        if not HHMM_PATTERN.match(v):
            raise ValueError(f"'{v}' is not a zero-padded HH:MM time")
        return v

    @model_validator(mode="after")
    def check_interval(self):
        if self.start_time >= self.end_time:
            raise ValueError(
                f"startTime {self.start_time} must be before endTime {self.end_time}"
            )
        return self

    @property
    def start_at(self) -> datetime:
        """Slot start as a naive local datetime."""
        return datetime.combine(self.date, time.fromisoformat(self.start_time))

    @property
    def end_at(self) -> datetime:
        return datetime.combine(self.date, time.fromisoformat(self.end_time))

    @property
    def sort_key(self):
        return (self.date.isoformat(), self.start_time)

    @property
    def label(self) -> str:
        """Human label, e.g. '10/06/2024 09:00 - 09:30'."""
        return f"{self.date.strftime('%d/%m/%Y')} {self.start_time} - {self.end_time}"


class Appointment(Record):
    """A client's reservation of one time slot."""
    id: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    time_slot_id: str = Field(..., min_length=1)
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    service: str = Field(..., min_length=1)
    created_at: datetime
    reminder_sent: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class BusinessInfo(Record):
    """Singleton business profile, replaced wholesale on update."""
    name: str = Field(..., min_length=1, max_length=200)
    address: str = Field(..., max_length=500)
    phone: str = Field(..., max_length=40)
    working_hours: str = Field(..., max_length=200)


class ServiceConfig(BaseModel):
    """A service the business offers."""
    id: str = Field(..., description="Unique service ID (e.g., design-normal)")
    name: str = Field(..., min_length=1, max_length=100, description="Label shown to clients")
    duration_minutes: int = Field(..., gt=0, le=480, description="Duration in minutes (1-480)")
    active: bool = Field(default=True, description="Whether service can be booked")


class ServiceCatalog:
    """
    Closed lookup of bookable services.

    Accepts either the service id or its label (case-insensitive) and always
    resolves to the canonical label stored on the appointment.
    """

    def __init__(self, services: List[ServiceConfig]):
        if not services:
            raise ValueError("At least 1 service required")
        self._services = list(services)
        self._index: Dict[str, ServiceConfig] = {}
        for service in self._services:
            self._index[service.id.lower()] = service
            self._index[service.name.lower()] = service

    @classmethod
    def from_config(cls, raw: List[Dict[str, Any]]) -> "ServiceCatalog":
        return cls([ServiceConfig(**item) for item in raw])

    def get(self, value: str) -> Optional[ServiceConfig]:
        service = self._index.get(value.strip().lower()) if value else None
        if service is None or not service.active:
            return None
        return service

    def active(self) -> List[ServiceConfig]:
        return [s for s in self._services if s.active]

    def __contains__(self, value: str) -> bool:
        return self.get(value) is not None
