"""Pydantic schemas for booking, availability and admin flows."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from booking.intervals import is_valid_hhmm, to_minutes


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"
    BLOCKED = "BLOCKED"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    CONFLICT = "CONFLICT"
    INTERNAL = "INTERNAL"


def _check_hhmm(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if not is_valid_hhmm(value):
        raise ValueError("time must use 24-hour HH:MM format.")
    return value


def _optional_hhmm(value: Optional[str]) -> Optional[str]:
    if isinstance(value, str):
        value = value.strip()
    return _check_hhmm(value or None)


def exception_block_error(start_time: Optional[str], end_time: Optional[str]) -> Optional[str]:
    """Why a start/end pair cannot describe a blocked period, or None when it can."""
    if end_time and not start_time:
        return "end_time requires start_time."
    if start_time and end_time and to_minutes(start_time) >= to_minutes(end_time):
        return "start_time must be earlier than end_time."
    return None


class BookingRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    tenant_id: int
    service_id: int
    variant_id: Optional[int] = None
    staff_id: Optional[int] = None
    booking_date: dt.date
    booking_time: str
    customer_name: str = Field(min_length=1)
    customer_phone: str = Field(min_length=1)
    customer_email: Optional[str] = None
    notes: Optional[str] = None
    payment_method: Optional[str] = None

    @field_validator("booking_time")
    @classmethod
    def validate_booking_time(cls, value: str) -> str:
        return _check_hhmm(value)


class BookingItem(BaseModel):
    booking_id: str
    tenant_id: int
    service_id: int
    variant_id: Optional[int] = None
    staff_id: Optional[int] = None
    booking_date: dt.date
    booking_time: str
    duration_minutes: int
    status: BookingStatus
    customer_name: str
    customer_phone: str
    customer_email: Optional[str] = None
    notes: Optional[str] = None
    payment_method: Optional[str] = None


class BookingResult(BaseModel):
    success: bool
    code: Optional[ErrorCode] = None
    reason: Optional[str] = None
    booking: Optional[BookingItem] = None
    notification_url: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def normalize_reason(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class StatusUpdateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    tenant_id: int
    booking_id: str = Field(min_length=1)
    status: BookingStatus
    notes: Optional[str] = None


class _WeeklyWindowRequest(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: str
    end_time: str
    is_active: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_times(cls, value: str) -> str:
        return _check_hhmm(value)

    @model_validator(mode="after")
    def validate_window(self):
        if to_minutes(self.start_time) >= to_minutes(self.end_time):
            raise ValueError("start_time must be earlier than end_time.")
        return self


class ServiceScheduleCreateRequest(_WeeklyWindowRequest):
    service_id: int


class ServiceScheduleUpdateRequest(BaseModel):
    schedule_id: int
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_times(cls, value: Optional[str]) -> Optional[str]:
        return _check_hhmm(value)


class ScheduleDeleteRequest(BaseModel):
    schedule_id: int


class StaffScheduleCreateRequest(_WeeklyWindowRequest):
    staff_id: int


class StaffScheduleDeleteRequest(BaseModel):
    staff_id: int
    schedule_id: int


class ScheduleExceptionCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    tenant_id: int
    service_id: Optional[int] = None
    exception_date: dt.date
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_blocked: bool = True
    reason: Optional[str] = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def validate_times(cls, value: Optional[str]) -> Optional[str]:
        return _optional_hhmm(value)

    @model_validator(mode="after")
    def validate_block(self):
        error = exception_block_error(self.start_time, self.end_time)
        if error:
            raise ValueError(error)
        return self


class ScheduleExceptionUpdateRequest(BaseModel):
    """Partial update; only fields present in the payload are applied."""

    model_config = ConfigDict(str_strip_whitespace=True)

    exception_id: int
    service_id: Optional[int] = None
    exception_date: Optional[dt.date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_blocked: Optional[bool] = None
    reason: Optional[str] = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def validate_times(cls, value: Optional[str]) -> Optional[str]:
        return _optional_hhmm(value)


class StaffTimeOffCreateRequest(BaseModel):
    staff_id: int
    date_from: dt.date
    date_to: dt.date
    reason: Optional[str] = None

    @model_validator(mode="after")
    def validate_range(self):
        if self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to.")
        return self


class ExceptionDeleteRequest(BaseModel):
    exception_id: int


class StaffTimeOffDeleteRequest(BaseModel):
    staff_id: int
    time_off_id: int


class StaffServicesUpdateRequest(BaseModel):
    staff_id: int
    service_ids: list[int]


class AdminActionResult(BaseModel):
    success: bool
    code: Optional[ErrorCode] = None
    reason: Optional[str] = None
    record_id: Optional[int] = None


class BookingListRequest(BaseModel):
    tenant_id: int
    booking_date: Optional[dt.date] = None
    status: Optional[BookingStatus] = None


class BookingListResult(BaseModel):
    success: bool
    code: Optional[ErrorCode] = None
    reason: Optional[str] = None
    bookings: list[BookingItem] = Field(default_factory=list)


class BookableDatesResponse(BaseModel):
    service_id: int
    variant_id: Optional[int] = None
    staff_id: Optional[int] = None
    dates: list[dt.date]


class BookableSlotsResponse(BaseModel):
    service_id: int
    variant_id: Optional[int] = None
    staff_id: Optional[int] = None
    day: dt.date
    slots: list[str]
