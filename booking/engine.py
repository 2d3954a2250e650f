"""Core booking writes: creation, status changes and owner schedule updates."""

from __future__ import annotations

import logging
import time
import uuid
from datetime import date
from typing import Any, Callable, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import Select, delete, select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from booking.availability import overlap_count
from booking.errors import BookingRejected, invalid_input, not_found
from booking.intervals import Window, to_minutes
from booking.models import (
    Booking,
    Calendar,
    DayLedger,
    ScheduleException,
    Service,
    ServiceSchedule,
    ServiceVariant,
    StaffMember,
    StaffSchedule,
    StaffService,
    StaffTimeOff,
    Tenant,
)
from booking.notifications import BookingNotifier, WhatsAppLinkNotifier
from booking.resolver import (
    AvailabilityQuery,
    ScheduleResolver,
    ServiceScoped,
    StaffScoped,
    build_query,
    resolver_for,
)
from booking.rules import RuleEngine
from booking.schema import (
    AdminActionResult,
    BookingItem,
    BookingListRequest,
    BookingListResult,
    BookingRequest,
    BookingResult,
    BookingStatus,
    ErrorCode,
    ExceptionDeleteRequest,
    ScheduleDeleteRequest,
    ScheduleExceptionCreateRequest,
    ScheduleExceptionUpdateRequest,
    ServiceScheduleCreateRequest,
    ServiceScheduleUpdateRequest,
    StaffScheduleCreateRequest,
    StaffScheduleDeleteRequest,
    StaffServicesUpdateRequest,
    StaffTimeOffCreateRequest,
    StaffTimeOffDeleteRequest,
    StatusUpdateRequest,
    exception_block_error,
)
from booking.status import NOTIFY_ON, check_transition, reactivates
from config import Settings, get_settings
from db.session import SessionLocal, staff_scheduling_available

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)
ModelT = TypeVar("ModelT")

_RETRY_BACKOFF_SECONDS = 0.05

# PostgreSQL serialization failure and deadlock.
_CONTENTION_SQLSTATES = frozenset({"40001", "40P01"})


class _WriteContention(Exception):
    """Another writer touched the same guard row; the transaction must be retried."""


def _is_lock_contention(exc: OperationalError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in _CONTENTION_SQLSTATES:
        return True
    # SQLite reports a competing writer as a locked database.
    return "database is locked" in str(orig).lower()


def _get_or_create(db: Session, stmt: Select, factory: Callable[[], ModelT]) -> ModelT:
    existing = db.scalar(stmt)
    if existing is not None:
        return existing
    created = factory()
    db.add(created)
    try:
        db.flush()
    except IntegrityError as exc:
        # Another writer created the row first; retrying the transaction will find it.
        raise _WriteContention() from exc
    return created


def _acquire_ledger(db: Session, *, tenant_id: int, day: date) -> tuple[int, int]:
    stmt = (
        select(DayLedger)
        .where(DayLedger.tenant_id == tenant_id, DayLedger.ledger_date == day)
        .with_for_update()
    )
    ledger = _get_or_create(db, stmt, lambda: DayLedger(tenant_id=tenant_id, ledger_date=day, version=0))
    return ledger.id, ledger.version


def _bump_ledger(db: Session, *, ledger_id: int, expected_version: int) -> None:
    result = db.execute(
        update(DayLedger)
        .where(DayLedger.id == ledger_id, DayLedger.version == expected_version)
        .values(version=expected_version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise _WriteContention()


def _default_calendar(db: Session, tenant_id: int) -> Calendar:
    stmt = (
        select(Calendar)
        .where(Calendar.tenant_id == tenant_id, Calendar.kind == "default")
        .with_for_update()
    )
    return _get_or_create(db, stmt, lambda: Calendar(tenant_id=tenant_id, kind="default", name="Default calendar"))


def _booking_item(booking: Booking, duration_minutes: int) -> BookingItem:
    return BookingItem(
        booking_id=str(booking.id),
        tenant_id=booking.tenant_id,
        service_id=booking.service_id,
        variant_id=booking.variant_id,
        staff_id=booking.staff_id,
        booking_date=booking.booking_date,
        booking_time=booking.booking_time,
        duration_minutes=duration_minutes,
        status=BookingStatus(booking.status),
        customer_name=booking.customer_name,
        customer_phone=booking.customer_phone,
        customer_email=booking.customer_email,
        notes=booking.notes,
        payment_method=booking.payment_method,
    )


def _database_failure(db: Session, result_cls: type[ResultT], action: str, context: dict[str, Any]) -> dict[str, Any]:
    db.rollback()
    logger.exception("Database error while %s %s", action, context)
    return result_cls(
        success=False,
        code=ErrorCode.INTERNAL,
        reason=f"Database error while {action}.",
    ).model_dump(mode="json")


def _run_write(
    action: str,
    result_cls: type[ResultT],
    work: Callable[[Session, Settings], ResultT],
    *,
    contention_code: ErrorCode = ErrorCode.CONFLICT,
    **context: Any,
) -> dict[str, Any]:
    settings = get_settings()
    for attempt in range(1, settings.booking_write_retries + 1):
        with SessionLocal() as db:
            try:
                with db.begin():
                    result = work(db, settings)
            except BookingRejected as rejected:
                logger.info("Rejected %s (%s): %s %s", action, rejected.code.value, rejected.reason, context)
                return result_cls(success=False, code=rejected.code, reason=rejected.reason).model_dump(mode="json")
            except (_WriteContention, OperationalError) as exc:
                if isinstance(exc, OperationalError) and not _is_lock_contention(exc):
                    return _database_failure(db, result_cls, action, context)
                logger.warning(
                    "Concurrent write while %s %s (attempt %s of %s)",
                    action,
                    context,
                    attempt,
                    settings.booking_write_retries,
                )
                if attempt < settings.booking_write_retries:
                    time.sleep(_RETRY_BACKOFF_SECONDS * attempt)
                continue
            except SQLAlchemyError:
                return _database_failure(db, result_cls, action, context)
        return result.model_dump(mode="json")

    return result_cls(
        success=False,
        code=contention_code,
        reason="Another request changed the same records at the same time. Please try again.",
    ).model_dump(mode="json")


def _validate_slot(
    db: Session,
    resolver: ScheduleResolver,
    query: AvailabilityQuery,
    *,
    day: date,
    start: int,
    end: int,
    settings: Settings,
) -> None:
    mask = RuleEngine.load_exception_mask(
        db,
        tenant_id=query.tenant.id,
        service_id=query.service.id,
        day=day,
        partial_block_minutes=settings.partial_block_minutes,
    )
    exception_check = RuleEngine.check_exceptions(mask, start, end)
    if not exception_check.allowed:
        raise BookingRejected(exception_check.code, exception_check.reason)

    if resolver.is_on_leave(db, day):
        raise BookingRejected(ErrorCode.BLOCKED, "The staff member is not available on this date.")

    _validate_capacity(db, resolver, day=day, start=start, end=end, settings=settings)


def _validate_capacity(
    db: Session,
    resolver: ScheduleResolver,
    *,
    day: date,
    start: int,
    end: int,
    settings: Settings,
    exclude_booking_id: uuid.UUID | None = None,
) -> None:
    intervals = resolver.competing_intervals(
        db,
        day,
        fallback_duration=settings.default_duration_minutes,
        exclude_booking_id=exclude_booking_id,
    )
    if overlap_count(intervals, start, end) >= resolver.concurrency_limit:
        raise BookingRejected(ErrorCode.CAPACITY_EXCEEDED, "No capacity available at this time.")


def _create_booking(db: Session, settings: Settings, request: BookingRequest) -> BookingResult:
    tenant = db.get(Tenant, request.tenant_id)
    if not tenant or not tenant.is_active:
        raise not_found("Business not found or inactive.")
    if request.staff_id is not None and not staff_scheduling_available(db.connection()):
        raise not_found("Staff member not found or inactive.")

    query = build_query(
        db,
        service_id=request.service_id,
        variant_id=request.variant_id,
        staff_id=request.staff_id,
        tenant_id=request.tenant_id,
    )
    resolver = resolver_for(query)
    if not resolver.can_serve(db):
        raise invalid_input("The selected staff member does not offer this service.")

    ledger_id, ledger_version = _acquire_ledger(db, tenant_id=tenant.id, day=request.booking_date)

    duration = RuleEngine.effective_duration(query.service, query.variant, settings.default_duration_minutes)
    start = to_minutes(request.booking_time)
    _validate_slot(db, resolver, query, day=request.booking_date, start=start, end=start + duration, settings=settings)

    booking = Booking(
        tenant_id=tenant.id,
        service_id=query.service.id,
        variant_id=query.variant.id if query.variant else None,
        staff_id=request.staff_id,
        booking_date=request.booking_date,
        booking_time=request.booking_time,
        status=BookingStatus.PENDING.value,
        customer_name=request.customer_name,
        customer_phone=request.customer_phone,
        customer_email=request.customer_email or None,
        notes=request.notes or None,
        payment_method=request.payment_method or None,
    )
    db.add(booking)
    db.flush()
    _bump_ledger(db, ledger_id=ledger_id, expected_version=ledger_version)

    logger.info(
        "Created booking %s for service %s on %s %s",
        booking.id,
        booking.service_id,
        booking.booking_date,
        booking.booking_time,
    )
    return BookingResult(success=True, booking=_booking_item(booking, duration))


def create_booking(payload: dict) -> dict:
    try:
        request = BookingRequest.model_validate(payload)
    except ValidationError as exc:
        return BookingResult(
            success=False,
            code=ErrorCode.INVALID_INPUT,
            reason=f"Invalid booking payload: {exc}",
        ).model_dump(mode="json")

    return _run_write(
        "creating booking",
        BookingResult,
        lambda db, settings: _create_booking(db, settings, request),
        contention_code=ErrorCode.CAPACITY_EXCEEDED,
        tenant_id=request.tenant_id,
        service_id=request.service_id,
        booking_date=str(request.booking_date),
        booking_time=request.booking_time,
    )


def _scope_for_booking(db: Session, booking: Booking) -> AvailabilityQuery:
    tenant = db.get(Tenant, booking.tenant_id)
    service = db.get(Service, booking.service_id)
    variant = db.get(ServiceVariant, booking.variant_id) if booking.variant_id else None
    if booking.staff_id is not None and staff_scheduling_available(db.connection()):
        staff = db.get(StaffMember, booking.staff_id)
        if staff is not None:
            return StaffScoped(tenant=tenant, service=service, staff=staff, variant=variant)
    return ServiceScoped(tenant=tenant, service=service, variant=variant)


def _notification_link(notifier: BookingNotifier, booking: Booking, query: AvailabilityQuery) -> str | None:
    try:
        return notifier.link_for(booking, query.tenant, query.service)
    except Exception:
        logger.warning("Notification link failed for booking %s", booking.id, exc_info=True)
        return None


def _update_booking_status(
    db: Session,
    settings: Settings,
    request: StatusUpdateRequest,
    booking_id: uuid.UUID,
    notifier: BookingNotifier,
) -> BookingResult:
    booking = db.scalar(
        select(Booking)
        .where(Booking.id == booking_id, Booking.tenant_id == request.tenant_id)
        .with_for_update()
    )
    if not booking:
        raise not_found("Booking not found.")

    current = BookingStatus(booking.status)
    transition = check_transition(current, request.status, request.notes)
    if not transition.allowed:
        raise BookingRejected(transition.code, transition.reason)

    query = _scope_for_booking(db, booking)
    duration = RuleEngine.effective_duration(query.service, query.variant, settings.default_duration_minutes)

    reactivated = reactivates(current, request.status)
    if reactivated:
        ledger_id, ledger_version = _acquire_ledger(db, tenant_id=booking.tenant_id, day=booking.booking_date)
        start = to_minutes(booking.booking_time)
        _validate_capacity(
            db,
            resolver_for(query),
            day=booking.booking_date,
            start=start,
            end=start + duration,
            settings=settings,
            exclude_booking_id=booking.id,
        )

    booking.status = request.status.value
    if request.notes is not None:
        booking.notes = request.notes
    db.flush()
    if reactivated:
        _bump_ledger(db, ledger_id=ledger_id, expected_version=ledger_version)

    notification_url = None
    if request.status in NOTIFY_ON:
        notification_url = _notification_link(notifier, booking, query)

    logger.info("Booking %s moved from %s to %s", booking.id, current.value, booking.status)
    return BookingResult(success=True, booking=_booking_item(booking, duration), notification_url=notification_url)


def update_booking_status(payload: dict, notifier: BookingNotifier | None = None) -> dict:
    try:
        request = StatusUpdateRequest.model_validate(payload)
    except ValidationError as exc:
        return BookingResult(
            success=False,
            code=ErrorCode.INVALID_INPUT,
            reason=f"Invalid status payload: {exc}",
        ).model_dump(mode="json")

    try:
        booking_id = uuid.UUID(request.booking_id)
    except ValueError:
        return BookingResult(success=False, code=ErrorCode.NOT_FOUND, reason="Booking not found.").model_dump(mode="json")

    active_notifier = notifier or WhatsAppLinkNotifier()
    return _run_write(
        "updating booking status",
        BookingResult,
        lambda db, settings: _update_booking_status(db, settings, request, booking_id, active_notifier),
        contention_code=ErrorCode.CAPACITY_EXCEEDED,
        tenant_id=request.tenant_id,
        booking_id=request.booking_id,
        status=request.status.value,
    )


def _list_bookings(db: Session, settings: Settings, request: BookingListRequest) -> BookingListResult:
    if not db.get(Tenant, request.tenant_id):
        raise not_found("Business not found.")

    stmt = (
        select(Booking, Service, ServiceVariant)
        .join(Service, Service.id == Booking.service_id)
        .outerjoin(ServiceVariant, ServiceVariant.id == Booking.variant_id)
        .where(Booking.tenant_id == request.tenant_id)
        .order_by(Booking.booking_date.desc(), Booking.booking_time.desc())
    )
    if request.booking_date is not None:
        stmt = stmt.where(Booking.booking_date == request.booking_date)
    if request.status is not None:
        stmt = stmt.where(Booking.status == request.status.value)

    bookings = [
        _booking_item(
            booking,
            RuleEngine.effective_duration(service, variant, settings.default_duration_minutes),
        )
        for booking, service, variant in db.execute(stmt)
    ]
    return BookingListResult(success=True, bookings=bookings)


def list_bookings(payload: dict) -> dict:
    """Owner view of a business's bookings, newest first, optionally narrowed to one date or status."""
    try:
        request = BookingListRequest.model_validate(payload)
    except ValidationError as exc:
        return BookingListResult(
            success=False,
            code=ErrorCode.INVALID_INPUT,
            reason=f"Invalid booking filter: {exc}",
        ).model_dump(mode="json")

    return _run_write(
        "listing bookings",
        BookingListResult,
        lambda db, settings: _list_bookings(db, settings, request),
        tenant_id=request.tenant_id,
    )


def _reject_overlap(existing, window: Window, scope: str) -> None:
    for row in existing:
        if window.overlaps(to_minutes(row.start_time), to_minutes(row.end_time)):
            raise BookingRejected(
                ErrorCode.CONFLICT,
                f"This schedule overlaps another {scope} schedule ({row.start_time} - {row.end_time}).",
            )


def _reject_calendar_overlap(
    db: Session,
    *,
    calendar_id: int,
    day_of_week: int,
    window: Window,
    exclude_schedule_id: int | None = None,
) -> None:
    stmt = select(ServiceSchedule).where(
        ServiceSchedule.calendar_id == calendar_id,
        ServiceSchedule.day_of_week == day_of_week,
        ServiceSchedule.is_active.is_(True),
    )
    if exclude_schedule_id is not None:
        stmt = stmt.where(ServiceSchedule.id != exclude_schedule_id)
    _reject_overlap(db.scalars(stmt), window, "business")


def _merged_window(start_time: str, end_time: str) -> Window:
    if to_minutes(start_time) >= to_minutes(end_time):
        raise invalid_input("start_time must be earlier than end_time.")
    return Window.from_hhmm(start_time, end_time)


def _admin_payload_error(kind: str, exc: ValidationError) -> dict:
    return AdminActionResult(
        success=False,
        code=ErrorCode.INVALID_INPUT,
        reason=f"Invalid {kind} payload: {exc}",
    ).model_dump(mode="json")


def _create_service_schedule(db: Session, request: ServiceScheduleCreateRequest) -> AdminActionResult:
    service = db.get(Service, request.service_id)
    if not service:
        raise not_found("Service not found.")

    calendar = _default_calendar(db, service.tenant_id)
    if service.calendar_id != calendar.id:
        service.calendar_id = calendar.id

    if request.is_active:
        _reject_calendar_overlap(
            db,
            calendar_id=calendar.id,
            day_of_week=request.day_of_week,
            window=Window.from_hhmm(request.start_time, request.end_time),
        )

    schedule = ServiceSchedule(
        service_id=service.id,
        calendar_id=calendar.id,
        day_of_week=request.day_of_week,
        start_time=request.start_time,
        end_time=request.end_time,
        is_active=request.is_active,
    )
    db.add(schedule)
    db.flush()
    logger.info("Added schedule %s to service %s on calendar %s", schedule.id, service.id, calendar.id)
    return AdminActionResult(success=True, record_id=schedule.id)


def create_service_schedule(payload: dict) -> dict:
    try:
        request = ServiceScheduleCreateRequest.model_validate(payload)
    except ValidationError as exc:
        return _admin_payload_error("schedule", exc)

    return _run_write(
        "creating schedule",
        AdminActionResult,
        lambda db, settings: _create_service_schedule(db, request),
        service_id=request.service_id,
        day_of_week=request.day_of_week,
    )


def _update_service_schedule(db: Session, request: ServiceScheduleUpdateRequest) -> AdminActionResult:
    schedule = db.scalar(
        select(ServiceSchedule).where(ServiceSchedule.id == request.schedule_id).with_for_update()
    )
    if not schedule:
        raise not_found("Schedule not found.")
    service = db.get(Service, schedule.service_id)
    calendar = _default_calendar(db, service.tenant_id)

    day_of_week = schedule.day_of_week if request.day_of_week is None else request.day_of_week
    start_time = request.start_time or schedule.start_time
    end_time = request.end_time or schedule.end_time
    is_active = schedule.is_active if request.is_active is None else request.is_active

    window = _merged_window(start_time, end_time)
    if is_active:
        _reject_calendar_overlap(
            db,
            calendar_id=calendar.id,
            day_of_week=day_of_week,
            window=window,
            exclude_schedule_id=schedule.id,
        )

    schedule.calendar_id = calendar.id
    schedule.day_of_week = day_of_week
    schedule.start_time = start_time
    schedule.end_time = end_time
    schedule.is_active = is_active
    db.flush()
    logger.info("Updated schedule %s of service %s", schedule.id, schedule.service_id)
    return AdminActionResult(success=True, record_id=schedule.id)


def update_service_schedule(payload: dict) -> dict:
    try:
        request = ServiceScheduleUpdateRequest.model_validate(payload)
    except ValidationError as exc:
        return _admin_payload_error("schedule", exc)

    return _run_write(
        "updating schedule",
        AdminActionResult,
        lambda db, settings: _update_service_schedule(db, request),
        schedule_id=request.schedule_id,
    )


def _delete_service_schedule(db: Session, request: ScheduleDeleteRequest) -> AdminActionResult:
    schedule = db.get(ServiceSchedule, request.schedule_id)
    if not schedule:
        raise not_found("Schedule not found.")
    db.delete(schedule)
    db.flush()
    logger.info("Deleted schedule %s of service %s", request.schedule_id, schedule.service_id)
    return AdminActionResult(success=True, record_id=request.schedule_id)


def delete_service_schedule(payload: dict) -> dict:
    try:
        request = ScheduleDeleteRequest.model_validate(payload)
    except ValidationError as exc:
        return _admin_payload_error("schedule", exc)

    return _run_write(
        "deleting schedule",
        AdminActionResult,
        lambda db, settings: _delete_service_schedule(db, request),
        schedule_id=request.schedule_id,
    )


def _load_staff(db: Session, staff_id: int, *, lock: bool = False) -> StaffMember:
    if not staff_scheduling_available(db.connection()):
        raise not_found("Staff scheduling is not configured.")
    stmt = select(StaffMember).where(StaffMember.id == staff_id)
    if lock:
        stmt = stmt.with_for_update()
    staff = db.scalar(stmt)
    if not staff:
        raise not_found("Staff member not found.")
    return staff


def _create_staff_schedule(db: Session, request: StaffScheduleCreateRequest) -> AdminActionResult:
    staff = _load_staff(db, request.staff_id, lock=True)

    window = Window.from_hhmm(request.start_time, request.end_time)
    if request.is_active:
        existing = db.scalars(
            select(StaffSchedule).where(
                StaffSchedule.staff_id == staff.id,
                StaffSchedule.day_of_week == request.day_of_week,
                StaffSchedule.is_active.is_(True),
            )
        )
        _reject_overlap(existing, window, "staff")

    schedule = StaffSchedule(
        staff_id=staff.id,
        day_of_week=request.day_of_week,
        start_time=request.start_time,
        end_time=request.end_time,
        is_active=request.is_active,
    )
    db.add(schedule)
    db.flush()
    logger.info("Added schedule %s to staff %s", schedule.id, staff.id)
    return AdminActionResult(success=True, record_id=schedule.id)


def create_staff_schedule(payload: dict) -> dict:
    try:
        request = StaffScheduleCreateRequest.model_validate(payload)
    except ValidationError as exc:
        return _admin_payload_error("staff schedule", exc)

    return _run_write(
        "creating staff schedule",
        AdminActionResult,
        lambda db, settings: _create_staff_schedule(db, request),
        staff_id=request.staff_id,
        day_of_week=request.day_of_week,
    )


def _delete_staff_schedule(db: Session, request: StaffScheduleDeleteRequest) -> AdminActionResult:
    staff = _load_staff(db, request.staff_id)
    schedule = db.scalar(
        select(StaffSchedule).where(StaffSchedule.id == request.schedule_id, StaffSchedule.staff_id == staff.id)
    )
    if not schedule:
        raise not_found("Staff schedule not found.")
    db.delete(schedule)
    db.flush()
    logger.info("Deleted schedule %s of staff %s", request.schedule_id, staff.id)
    return AdminActionResult(success=True, record_id=request.schedule_id)


def delete_staff_schedule(payload: dict) -> dict:
    try:
        request = StaffScheduleDeleteRequest.model_validate(payload)
    except ValidationError as exc:
        return _admin_payload_error("staff schedule", exc)

    return _run_write(
        "deleting staff schedule",
        AdminActionResult,
        lambda db, settings: _delete_staff_schedule(db, request),
        staff_id=request.staff_id,
        schedule_id=request.schedule_id,
    )


def _check_exception_service(db: Session, *, tenant_id: int, service_id: int | None) -> None:
    if service_id is None:
        return
    service = db.get(Service, service_id)
    if not service:
        raise not_found("Service not found.")
    if service.tenant_id != tenant_id:
        raise invalid_input("Service does not belong to this business.")


def _create_schedule_exception(db: Session, request: ScheduleExceptionCreateRequest) -> AdminActionResult:
    tenant = db.get(Tenant, request.tenant_id)
    if not tenant:
        raise not_found("Business not found.")
    _check_exception_service(db, tenant_id=tenant.id, service_id=request.service_id)

    exception = ScheduleException(
        tenant_id=tenant.id,
        service_id=request.service_id,
        exception_date=request.exception_date,
        start_time=request.start_time,
        end_time=request.end_time,
        is_blocked=request.is_blocked,
        reason=request.reason or None,
    )
    db.add(exception)
    db.flush()
    logger.info("Added exception %s for tenant %s on %s", exception.id, tenant.id, exception.exception_date)
    return AdminActionResult(success=True, record_id=exception.id)


def create_schedule_exception(payload: dict) -> dict:
    try:
        request = ScheduleExceptionCreateRequest.model_validate(payload)
    except ValidationError as exc:
        return _admin_payload_error("exception", exc)

    return _run_write(
        "creating exception",
        AdminActionResult,
        lambda db, settings: _create_schedule_exception(db, request),
        tenant_id=request.tenant_id,
        exception_date=str(request.exception_date),
    )


# Columns that accept an explicit null on update; the rest keep their value when null is sent.
_NULLABLE_EXCEPTION_FIELDS = frozenset({"service_id", "start_time", "end_time", "reason"})
_EXCEPTION_UPDATE_FIELDS = _NULLABLE_EXCEPTION_FIELDS | {"exception_date", "is_blocked"}


def _update_schedule_exception(db: Session, request: ScheduleExceptionUpdateRequest) -> AdminActionResult:
    exception = db.scalar(
        select(ScheduleException).where(ScheduleException.id == request.exception_id).with_for_update()
    )
    if not exception:
        raise not_found("Exception not found.")

    changes = {
        field: getattr(request, field)
        for field in request.model_fields_set & _EXCEPTION_UPDATE_FIELDS
        if getattr(request, field) is not None or field in _NULLABLE_EXCEPTION_FIELDS
    }
    if "reason" in changes:
        changes["reason"] = changes["reason"] or None

    start_time = changes.get("start_time", exception.start_time)
    end_time = changes.get("end_time", exception.end_time)
    error = exception_block_error(start_time, end_time)
    if error:
        raise invalid_input(error)
    if "service_id" in changes:
        _check_exception_service(db, tenant_id=exception.tenant_id, service_id=changes["service_id"])

    for field, value in changes.items():
        setattr(exception, field, value)
    db.flush()
    logger.info("Updated exception %s for tenant %s", exception.id, exception.tenant_id)
    return AdminActionResult(success=True, record_id=exception.id)


def update_schedule_exception(payload: dict) -> dict:
    try:
        request = ScheduleExceptionUpdateRequest.model_validate(payload)
    except ValidationError as exc:
        return _admin_payload_error("exception", exc)

    return _run_write(
        "updating exception",
        AdminActionResult,
        lambda db, settings: _update_schedule_exception(db, request),
        exception_id=request.exception_id,
    )


def _delete_schedule_exception(db: Session, request: ExceptionDeleteRequest) -> AdminActionResult:
    exception = db.get(ScheduleException, request.exception_id)
    if not exception:
        raise not_found("Exception not found.")
    db.delete(exception)
    db.flush()
    logger.info("Deleted exception %s for tenant %s", request.exception_id, exception.tenant_id)
    return AdminActionResult(success=True, record_id=request.exception_id)


def delete_schedule_exception(payload: dict) -> dict:
    try:
        request = ExceptionDeleteRequest.model_validate(payload)
    except ValidationError as exc:
        return _admin_payload_error("exception", exc)

    return _run_write(
        "deleting exception",
        AdminActionResult,
        lambda db, settings: _delete_schedule_exception(db, request),
        exception_id=request.exception_id,
    )


def _create_staff_time_off(db: Session, request: StaffTimeOffCreateRequest) -> AdminActionResult:
    staff = _load_staff(db, request.staff_id)
    time_off = StaffTimeOff(
        staff_id=staff.id,
        date_from=request.date_from,
        date_to=request.date_to,
        reason=request.reason or None,
    )
    db.add(time_off)
    db.flush()
    return AdminActionResult(success=True, record_id=time_off.id)


def create_staff_time_off(payload: dict) -> dict:
    try:
        request = StaffTimeOffCreateRequest.model_validate(payload)
    except ValidationError as exc:
        return _admin_payload_error("time off", exc)

    return _run_write(
        "creating time off",
        AdminActionResult,
        lambda db, settings: _create_staff_time_off(db, request),
        staff_id=request.staff_id,
    )


def _delete_staff_time_off(db: Session, request: StaffTimeOffDeleteRequest) -> AdminActionResult:
    staff = _load_staff(db, request.staff_id)
    time_off = db.scalar(
        select(StaffTimeOff).where(StaffTimeOff.id == request.time_off_id, StaffTimeOff.staff_id == staff.id)
    )
    if not time_off:
        raise not_found("Time off not found.")
    db.delete(time_off)
    db.flush()
    return AdminActionResult(success=True, record_id=request.time_off_id)


def delete_staff_time_off(payload: dict) -> dict:
    try:
        request = StaffTimeOffDeleteRequest.model_validate(payload)
    except ValidationError as exc:
        return _admin_payload_error("time off", exc)

    return _run_write(
        "deleting time off",
        AdminActionResult,
        lambda db, settings: _delete_staff_time_off(db, request),
        staff_id=request.staff_id,
        time_off_id=request.time_off_id,
    )


def _set_staff_services(db: Session, request: StaffServicesUpdateRequest) -> AdminActionResult:
    staff = _load_staff(db, request.staff_id, lock=True)
    service_ids = sorted(set(request.service_ids))
    if service_ids:
        owned = set(
            db.scalars(
                select(Service.id).where(Service.id.in_(service_ids), Service.tenant_id == staff.tenant_id)
            )
        )
        missing = [service_id for service_id in service_ids if service_id not in owned]
        if missing:
            raise invalid_input(f"Services do not belong to this business: {', '.join(map(str, missing))}.")

    db.execute(delete(StaffService).where(StaffService.staff_id == staff.id))
    for service_id in service_ids:
        db.add(StaffService(staff_id=staff.id, service_id=service_id))
    db.flush()
    return AdminActionResult(success=True, record_id=staff.id)


def set_staff_services(payload: dict) -> dict:
    try:
        request = StaffServicesUpdateRequest.model_validate(payload)
    except ValidationError as exc:
        return _admin_payload_error("staff services", exc)

    return _run_write(
        "updating staff services",
        AdminActionResult,
        lambda db, settings: _set_staff_services(db, request),
        staff_id=request.staff_id,
    )
