import os
import tempfile
from datetime import date

import pytest

_TEST_DB_DIR = tempfile.mkdtemp(prefix="booking-tests-")
os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{os.path.join(_TEST_DB_DIR, 'booking.db')}"
os.environ["BOOKING_API_KEY"] = "test-booking-key"
os.environ["ADMIN_API_KEY"] = "test-admin-key"

from booking.models import (  # noqa: E402
    Base,
    Booking,
    Calendar,
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
from db.session import SessionLocal, engine, init_db  # noqa: E402

# 2030-01-07 is a Monday (day_of_week == 1).
MONDAY = date(2030, 1, 7)
MONDAY_DOW = 1


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    init_db()
    yield


class Factory:
    """Seeds rows directly, bypassing the engine's validation."""

    def _save(self, obj):
        with SessionLocal() as db:
            with db.begin():
                db.add(obj)
            db.refresh(obj)
            return obj

    def tenant(self, slug="studio", **kwargs):
        tenant = self._save(Tenant(slug=slug, name=kwargs.pop("name", slug.title()), **kwargs))
        self._save(Calendar(tenant_id=tenant.id, kind="default", name="Default calendar"))
        return tenant

    def calendar_for(self, tenant_id):
        with SessionLocal() as db:
            return db.query(Calendar).filter_by(tenant_id=tenant_id, kind="default").one()

    def service(self, tenant, title="Haircut", duration_minutes=60, max_concurrent=1, **kwargs):
        calendar = self.calendar_for(tenant.id)
        return self._save(
            Service(
                tenant_id=tenant.id,
                calendar_id=calendar.id,
                title=title,
                duration_minutes=duration_minutes,
                max_concurrent=max_concurrent,
                **kwargs,
            )
        )

    def variant(self, service, name="Long", duration_minutes=None, **kwargs):
        return self._save(ServiceVariant(service_id=service.id, name=name, duration_minutes=duration_minutes, **kwargs))

    def schedule(self, service, day_of_week=MONDAY_DOW, start="09:00", end="12:00", is_active=True):
        return self._save(
            ServiceSchedule(
                service_id=service.id,
                calendar_id=service.calendar_id,
                day_of_week=day_of_week,
                start_time=start,
                end_time=end,
                is_active=is_active,
            )
        )

    def staff(self, tenant, name="Alex", services=(), **kwargs):
        member = self._save(StaffMember(tenant_id=tenant.id, name=name, **kwargs))
        for service in services:
            self._save(StaffService(staff_id=member.id, service_id=service.id))
        return member

    def staff_schedule(self, staff, day_of_week=MONDAY_DOW, start="13:00", end="15:00", is_active=True):
        return self._save(
            StaffSchedule(staff_id=staff.id, day_of_week=day_of_week, start_time=start, end_time=end, is_active=is_active)
        )

    def time_off(self, staff, date_from, date_to):
        return self._save(StaffTimeOff(staff_id=staff.id, date_from=date_from, date_to=date_to))

    def exception(self, tenant, day=MONDAY, start=None, end=None, service=None, is_blocked=True):
        return self._save(
            ScheduleException(
                tenant_id=tenant.id,
                service_id=service.id if service else None,
                exception_date=day,
                start_time=start,
                end_time=end,
                is_blocked=is_blocked,
            )
        )

    def booking(self, service, time="09:00", day=MONDAY, status="confirmed", staff=None, variant=None):
        return self._save(
            Booking(
                tenant_id=service.tenant_id,
                service_id=service.id,
                variant_id=variant.id if variant else None,
                staff_id=staff.id if staff else None,
                booking_date=day,
                booking_time=time,
                status=status,
                customer_name="Casey",
                customer_phone="+1 555 0100",
            )
        )


@pytest.fixture
def factory():
    return Factory()


@pytest.fixture
def studio(factory):
    """Scenario A: one 60 minute service with a Monday 09:00-12:00 schedule."""
    tenant = factory.tenant()
    service = factory.service(tenant)
    factory.schedule(service)
    return tenant, service


def booking_payload(tenant, service, time="09:00", day=MONDAY, **extra):
    payload = {
        "tenant_id": tenant.id,
        "service_id": service.id,
        "booking_date": day.isoformat(),
        "booking_time": time,
        "customer_name": "Jordan",
        "customer_phone": "+52 55 1234 5678",
    }
    payload.update(extra)
    return payload


@pytest.fixture
def make_payload():
    return booking_payload
