"""Resolve which weekly windows and competing bookings apply to an availability query.

A query is either scoped to a service (the tenant's shared default calendar)
or to one staff member. Each scope has its own resolver so the callers never
branch on whether a staff member was requested.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Union

from sqlalchemy import Select, or_, select
from sqlalchemy.orm import Session

from booking.errors import invalid_input, not_found
from booking.intervals import BookedInterval, Window, day_of_week, to_minutes
from booking.models import (
    Booking,
    Service,
    ServiceSchedule,
    ServiceVariant,
    StaffMember,
    StaffSchedule,
    StaffService,
    StaffTimeOff,
    Tenant,
)
from booking.schema import BookingStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceScoped:
    tenant: Tenant
    service: Service
    variant: ServiceVariant | None = None


@dataclass(frozen=True)
class StaffScoped:
    tenant: Tenant
    service: Service
    staff: StaffMember
    variant: ServiceVariant | None = None


AvailabilityQuery = Union[ServiceScoped, StaffScoped]


def _windows_from_rows(rows, owner: str) -> list[Window]:
    windows: list[Window] = []
    for row in rows:
        try:
            windows.append(Window.from_hhmm(row.start_time, row.end_time))
        except ValueError:
            logger.warning("Skipping malformed schedule row %s for %s", row.id, owner)
    return sorted(set(windows))


class ScheduleResolver(ABC):
    def __init__(self, query: AvailabilityQuery) -> None:
        self.query = query

    @property
    @abstractmethod
    def concurrency_limit(self) -> int:
        ...

    @abstractmethod
    def windows(self, db: Session, day: date) -> list[Window]:
        ...

    def can_serve(self, db: Session) -> bool:
        return True

    def is_on_leave(self, db: Session, day: date) -> bool:
        return False

    def _scope_bookings(self, stmt: Select) -> Select:
        return stmt

    def competing_intervals(
        self,
        db: Session,
        day: date,
        *,
        fallback_duration: int,
        exclude_booking_id: uuid.UUID | None = None,
    ) -> list[BookedInterval]:
        stmt = (
            select(Booking, Service.duration_minutes, ServiceVariant.duration_minutes)
            .join(Service, Service.id == Booking.service_id)
            .outerjoin(ServiceVariant, ServiceVariant.id == Booking.variant_id)
            .where(
                Booking.tenant_id == self.query.tenant.id,
                Booking.booking_date == day,
                Booking.status != BookingStatus.CANCELLED.value,
            )
        )
        if exclude_booking_id is not None:
            stmt = stmt.where(Booking.id != exclude_booking_id)
        stmt = self._scope_bookings(stmt)

        intervals: list[BookedInterval] = []
        for booking, service_duration, variant_duration in db.execute(stmt).all():
            duration = variant_duration or service_duration or fallback_duration
            start = to_minutes(booking.booking_time)
            intervals.append(BookedInterval(booking_id=str(booking.id), start=start, end=start + duration))
        return intervals


class ServiceScheduleResolver(ScheduleResolver):
    """Windows of the service on its tenant's default calendar."""

    @property
    def concurrency_limit(self) -> int:
        return max(self.query.service.max_concurrent or 1, 1)

    def windows(self, db: Session, day: date) -> list[Window]:
        rows = db.scalars(
            select(ServiceSchedule).where(
                ServiceSchedule.service_id == self.query.service.id,
                ServiceSchedule.day_of_week == day_of_week(day),
                ServiceSchedule.is_active.is_(True),
            )
        )
        return _windows_from_rows(rows, f"service {self.query.service.id}")


class StaffScheduleResolver(ScheduleResolver):
    """Windows of one staff member; the service's own schedule is never consulted."""

    @property
    def concurrency_limit(self) -> int:
        # A person can only be in one place at a time.
        return 1

    def windows(self, db: Session, day: date) -> list[Window]:
        rows = db.scalars(
            select(StaffSchedule).where(
                StaffSchedule.staff_id == self.query.staff.id,
                StaffSchedule.day_of_week == day_of_week(day),
                StaffSchedule.is_active.is_(True),
            )
        )
        return _windows_from_rows(rows, f"staff {self.query.staff.id}")

    def can_serve(self, db: Session) -> bool:
        return has_capability(db, staff_id=self.query.staff.id, service_id=self.query.service.id)

    def is_on_leave(self, db: Session, day: date) -> bool:
        stmt = select(StaffTimeOff.id).where(
            StaffTimeOff.staff_id == self.query.staff.id,
            StaffTimeOff.date_from <= day,
            StaffTimeOff.date_to >= day,
        )
        return db.scalar(stmt.limit(1)) is not None

    def _scope_bookings(self, stmt: Select) -> Select:
        # Unassigned bookings still occupy one person, so they count against everyone.
        return stmt.where(or_(Booking.staff_id == self.query.staff.id, Booking.staff_id.is_(None)))


def resolver_for(query: AvailabilityQuery) -> ScheduleResolver:
    if isinstance(query, StaffScoped):
        return StaffScheduleResolver(query)
    return ServiceScheduleResolver(query)


def has_capability(db: Session, *, staff_id: int, service_id: int) -> bool:
    stmt = select(StaffService.staff_id).where(
        StaffService.staff_id == staff_id,
        StaffService.service_id == service_id,
    )
    return db.scalar(stmt) is not None


def build_query(
    db: Session,
    *,
    service_id: int,
    variant_id: int | None = None,
    staff_id: int | None = None,
    tenant_id: int | None = None,
) -> AvailabilityQuery:
    service = db.get(Service, service_id)
    if not service or not service.is_active:
        raise not_found("Service not found or inactive.")
    if tenant_id is not None and service.tenant_id != tenant_id:
        raise invalid_input("Service does not belong to this business.")

    tenant = db.get(Tenant, service.tenant_id)
    if not tenant or not tenant.is_active:
        raise not_found("Business not found or inactive.")

    variant = None
    if variant_id is not None:
        variant = db.get(ServiceVariant, variant_id)
        if not variant or not variant.is_active:
            raise not_found("Service variant not found or inactive.")
        if variant.service_id != service.id:
            raise invalid_input("Variant does not belong to this service.")

    if staff_id is None:
        return ServiceScoped(tenant=tenant, service=service, variant=variant)

    staff = db.get(StaffMember, staff_id)
    if not staff or not staff.is_active or staff.tenant_id != tenant.id:
        raise not_found("Staff member not found or inactive.")
    return StaffScoped(tenant=tenant, service=service, staff=staff, variant=variant)
