from __future__ import annotations

import hmac
import logging
from datetime import date
from typing import Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from booking.availability import list_bookable_dates, list_bookable_slots
from booking.engine import (
    create_booking,
    create_schedule_exception,
    create_service_schedule,
    create_staff_schedule,
    create_staff_time_off,
    delete_schedule_exception,
    delete_service_schedule,
    delete_staff_schedule,
    delete_staff_time_off,
    list_bookings,
    set_staff_services,
    update_booking_status,
    update_schedule_exception,
    update_service_schedule,
)
from booking.errors import HTTP_STATUS_BY_CODE, BookingRejected
from booking.rate_limit import create_rate_limiter
from booking.schema import (
    BookableDatesResponse,
    BookableSlotsResponse,
    BookingRequest,
    BookingStatus,
    ErrorCode,
    ScheduleExceptionCreateRequest,
    ServiceScheduleCreateRequest,
)
from config import get_settings
from db.session import validate_db_compatibility

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = settings.app_name
APP_VERSION = settings.app_version
API_KEY_HEADER = "X-API-Key"
ADMIN_API_KEY_HEADER = "X-Admin-API-Key"


def verify_api_key(x_api_key: Optional[str] = Header(default=None, alias=API_KEY_HEADER)):
    if not x_api_key or not hmac.compare_digest(x_api_key, settings.booking_api_key):
        raise HTTPException(status_code=401, detail="Invalid or missing API key.")


def verify_admin_api_key(x_admin_api_key: Optional[str] = Header(default=None, alias=ADMIN_API_KEY_HEADER)):
    if not x_admin_api_key or not hmac.compare_digest(x_admin_api_key, settings.admin_api_key):
        raise HTTPException(status_code=401, detail="Invalid or missing admin API key.")


class HealthResponse(BaseModel):
    status: Literal["ok", "error"]
    service: str
    version: str


class StatusChangeRequest(BaseModel):
    tenant_id: int
    status: BookingStatus
    notes: Optional[str] = None


class StaffScheduleRequest(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: str
    end_time: str
    is_active: bool = True


class StaffTimeOffRequest(BaseModel):
    date_from: date
    date_to: date
    reason: Optional[str] = None


class StaffServicesRequest(BaseModel):
    service_ids: list[int]


class ScheduleUpdateRequest(BaseModel):
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_active: Optional[bool] = None


class ExceptionUpdateRequest(BaseModel):
    service_id: Optional[int] = None
    exception_date: Optional[date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_blocked: Optional[bool] = None
    reason: Optional[str] = None


booking_rate_limiter = create_rate_limiter(
    limit=settings.booking_rate_limit,
    window_seconds=settings.booking_rate_window_seconds,
    key_prefix="bookings",
)


app = FastAPI(title=APP_NAME, version=APP_VERSION)


def _result_response(result: dict, success_status: int = 200) -> JSONResponse:
    if result.get("success"):
        return JSONResponse(status_code=success_status, content=result)
    status_code = HTTP_STATUS_BY_CODE.get(ErrorCode(result.get("code") or ErrorCode.INTERNAL.value), 500)
    return JSONResponse(status_code=status_code, content=result)


@app.on_event("startup")
def startup_checks():
    _ = settings.booking_api_key
    _ = settings.admin_api_key
    _ = settings.database_url
    validate_db_compatibility()


@app.exception_handler(BookingRejected)
def handle_booking_rejected(_, exc: BookingRejected):
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.reason, "code": exc.code.value},
    )


@app.exception_handler(SQLAlchemyError)
def handle_database_error(request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal error while reading availability.", "code": ErrorCode.INTERNAL.value},
    )


@app.get("/health/live", response_model=HealthResponse)
def health_live():
    return HealthResponse(status="ok", service=APP_NAME, version=APP_VERSION)


@app.get("/health/ready", response_model=HealthResponse)
def health_ready():
    try:
        validate_db_compatibility()
    except Exception as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return HealthResponse(status="ok", service=APP_NAME, version=APP_VERSION)


@app.get(
    "/v1/services/{service_id}/available-dates",
    response_model=BookableDatesResponse,
    dependencies=[Depends(verify_api_key)],
)
def get_available_dates(service_id: int, variant_id: Optional[int] = None, staff_id: Optional[int] = None):
    dates = list_bookable_dates(service_id=service_id, variant_id=variant_id, staff_id=staff_id)
    return BookableDatesResponse(service_id=service_id, variant_id=variant_id, staff_id=staff_id, dates=dates)


@app.get(
    "/v1/services/{service_id}/slots",
    response_model=BookableSlotsResponse,
    dependencies=[Depends(verify_api_key)],
)
def get_available_slots(
    service_id: int,
    day: date,
    variant_id: Optional[int] = None,
    staff_id: Optional[int] = None,
):
    slots = list_bookable_slots(service_id=service_id, day=day, variant_id=variant_id, staff_id=staff_id)
    return BookableSlotsResponse(
        service_id=service_id,
        variant_id=variant_id,
        staff_id=staff_id,
        day=day,
        slots=slots,
    )


@app.post("/v1/bookings", dependencies=[Depends(verify_api_key), Depends(booking_rate_limiter)])
def post_booking(request: BookingRequest):
    return _result_response(create_booking(request.model_dump(mode="json")), success_status=201)


@app.patch("/v1/admin/bookings/{booking_id}/status", dependencies=[Depends(verify_admin_api_key)])
def admin_update_booking_status(booking_id: str, request: StatusChangeRequest):
    payload = {"booking_id": booking_id, **request.model_dump(mode="json")}
    return _result_response(update_booking_status(payload))


@app.post("/v1/admin/schedules", dependencies=[Depends(verify_admin_api_key)])
def admin_create_schedule(request: ServiceScheduleCreateRequest):
    return _result_response(create_service_schedule(request.model_dump(mode="json")), success_status=201)


@app.post("/v1/admin/staff/{staff_id}/schedules", dependencies=[Depends(verify_admin_api_key)])
def admin_create_staff_schedule(staff_id: int, request: StaffScheduleRequest):
    payload = {"staff_id": staff_id, **request.model_dump(mode="json")}
    return _result_response(create_staff_schedule(payload), success_status=201)


@app.post("/v1/admin/exceptions", dependencies=[Depends(verify_admin_api_key)])
def admin_create_exception(request: ScheduleExceptionCreateRequest):
    return _result_response(create_schedule_exception(request.model_dump(mode="json")), success_status=201)


@app.post("/v1/admin/staff/{staff_id}/time-off", dependencies=[Depends(verify_admin_api_key)])
def admin_create_time_off(staff_id: int, request: StaffTimeOffRequest):
    payload = {"staff_id": staff_id, **request.model_dump(mode="json")}
    return _result_response(create_staff_time_off(payload), success_status=201)


@app.put("/v1/admin/staff/{staff_id}/services", dependencies=[Depends(verify_admin_api_key)])
def admin_set_staff_services(staff_id: int, request: StaffServicesRequest):
    payload = {"staff_id": staff_id, **request.model_dump(mode="json")}
    return _result_response(set_staff_services(payload))


@app.get("/v1/admin/bookings", dependencies=[Depends(verify_admin_api_key)])
def admin_list_bookings(tenant_id: int, day: Optional[date] = None, status: Optional[BookingStatus] = None):
    payload = {"tenant_id": tenant_id, "booking_date": day, "status": status}
    return _result_response(list_bookings(payload))


@app.patch("/v1/admin/schedules/{schedule_id}", dependencies=[Depends(verify_admin_api_key)])
def admin_update_schedule(schedule_id: int, request: ScheduleUpdateRequest):
    payload = {"schedule_id": schedule_id, **request.model_dump(mode="json", exclude_unset=True)}
    return _result_response(update_service_schedule(payload))


@app.delete("/v1/admin/schedules/{schedule_id}", dependencies=[Depends(verify_admin_api_key)])
def admin_delete_schedule(schedule_id: int):
    return _result_response(delete_service_schedule({"schedule_id": schedule_id}))


@app.delete("/v1/admin/staff/{staff_id}/schedules/{schedule_id}", dependencies=[Depends(verify_admin_api_key)])
def admin_delete_staff_schedule(staff_id: int, schedule_id: int):
    return _result_response(delete_staff_schedule({"staff_id": staff_id, "schedule_id": schedule_id}))


@app.patch("/v1/admin/exceptions/{exception_id}", dependencies=[Depends(verify_admin_api_key)])
def admin_update_exception(exception_id: int, request: ExceptionUpdateRequest):
    payload = {"exception_id": exception_id, **request.model_dump(mode="json", exclude_unset=True)}
    return _result_response(update_schedule_exception(payload))


@app.delete("/v1/admin/exceptions/{exception_id}", dependencies=[Depends(verify_admin_api_key)])
def admin_delete_exception(exception_id: int):
    return _result_response(delete_schedule_exception({"exception_id": exception_id}))


@app.delete("/v1/admin/staff/{staff_id}/time-off/{time_off_id}", dependencies=[Depends(verify_admin_api_key)])
def admin_delete_time_off(staff_id: int, time_off_id: int):
    return _result_response(delete_staff_time_off({"staff_id": staff_id, "time_off_id": time_off_id}))
