"""Pydantic models for API request/response validation."""
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from booking_engine import config


class APIModel(BaseModel):
    """camelCase on the wire, same as stored records."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookingRequest(APIModel):
    """Public booking: new client + slot in one request."""
    name: str = Field(..., min_length=1, max_length=200, examples=["Ana Souza"])
    phone: str = Field(..., min_length=7, max_length=40, examples=["(34) 99112-2682"])
    email: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=2000)
    time_slot_id: str = Field(..., min_length=1)
    service: str = Field(default=config.DEFAULT_SERVICE, min_length=1)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "name": "Ana Souza",
                "phone": "(34) 99112-2682",
                "timeSlotId": "4f0c2f8e9b5d4c51a6b1f0e2d3c4b5a6",
                "service": "Design normal"
            }
        }
    )


class AppointmentCreate(APIModel):
    """Staff booking for an existing client."""
    client_id: str = Field(..., min_length=1)
    time_slot_id: str = Field(..., min_length=1)
    service: str = Field(default=config.DEFAULT_SERVICE, min_length=1)


class ClientCreate(APIModel):
    name: str = Field(..., min_length=1, max_length=200)
    phone: str = Field(..., min_length=1, max_length=40)
    email: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=2000)


class ClientUpdate(APIModel):
    """Partial client edit; only fields sent are changed."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    phone: Optional[str] = Field(default=None, min_length=1, max_length=40)
    email: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=2000)


class SlotCreate(APIModel):
    date: date
    start_time: str = Field(..., examples=["09:00"])
    end_time: str = Field(..., examples=["09:30"])


class SlotGenerateRequest(APIModel):
    """Generate slots over a date range using the operating hours."""
    start_date: date
    end_date: date
    start_hour: Optional[int] = Field(default=None, ge=0, le=23)
    end_hour: Optional[int] = Field(default=None, ge=1, le=24)
    slot_duration_minutes: Optional[int] = Field(default=None, gt=0, le=480)

    @model_validator(mode="after")
    def check_range(self):
        if self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        if (self.end_date - self.start_date).days > 366:
            raise ValueError("Range may not exceed one year")
        return self

    def operating_hours(self):
        overrides = {
            "start_hour": self.start_hour,
            "end_hour": self.end_hour,
            "slot_duration_minutes": self.slot_duration_minutes,
        }
        return {k: v for k, v in overrides.items() if v is not None}


class ErrorResponse(BaseModel):
    """Error response schema."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Detailed error information")
    code: Optional[str] = Field(None, description="Error code")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Slot Unavailable",
                "detail": "Time slot '4f0c2f8e' is no longer available",
                "code": "SLOT_UNAVAILABLE"
            }
        }
    )
