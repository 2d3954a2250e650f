"""Slot generation and capacity checks for bookable dates and times."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Iterator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from booking.intervals import BookedInterval, Window, format_minutes
from booking.models import Tenant
from booking.resolver import AvailabilityQuery, build_query, resolver_for
from booking.rules import ExceptionMask, RuleEngine
from config import get_settings
from db.session import SessionLocal, staff_scheduling_available

logger = logging.getLogger(__name__)


def candidate_starts(windows: Iterable[Window], duration_minutes: int, stride_minutes: int) -> Iterator[int]:
    """Yield start minutes on the stride grid of each window that still fit the duration."""
    seen: set[int] = set()
    for window in sorted(windows):
        start = window.start
        while start + duration_minutes <= window.end:
            if start not in seen:
                seen.add(start)
                yield start
            start += stride_minutes


def overlap_count(intervals: Iterable[BookedInterval], start: int, end: int) -> int:
    return sum(1 for interval in intervals if interval.overlaps(start, end))


def slot_admitted(
    *,
    mask: ExceptionMask,
    intervals: list[BookedInterval],
    start: int,
    end: int,
    limit: int,
) -> bool:
    if mask.blocks_range(start, end):
        return False
    return overlap_count(intervals, start, end) < limit


@dataclass
class DayPlan:
    windows: list[Window]
    mask: ExceptionMask
    intervals: list[BookedInterval]
    limit: int
    duration: int


def plan_day(
    db: Session,
    query: AvailabilityQuery,
    day: date,
    *,
    fallback_duration: int,
    partial_block_minutes: int,
) -> DayPlan | None:
    """Gather everything needed to test slots on ``day``; None when the day is closed."""
    resolver = resolver_for(query)
    windows = resolver.windows(db, day)
    if not windows:
        return None
    if resolver.is_on_leave(db, day):
        return None

    mask = RuleEngine.load_exception_mask(
        db,
        tenant_id=query.tenant.id,
        service_id=query.service.id,
        day=day,
        partial_block_minutes=partial_block_minutes,
    )
    if mask.whole_day:
        return None

    return DayPlan(
        windows=windows,
        mask=mask,
        intervals=resolver.competing_intervals(db, day, fallback_duration=fallback_duration),
        limit=resolver.concurrency_limit,
        duration=RuleEngine.effective_duration(query.service, query.variant, fallback_duration),
    )


def iter_bookable_starts(plan: DayPlan, stride_minutes: int) -> Iterator[int]:
    for start in candidate_starts(plan.windows, plan.duration, stride_minutes):
        if slot_admitted(
            mask=plan.mask,
            intervals=plan.intervals,
            start=start,
            end=start + plan.duration,
            limit=plan.limit,
        ):
            yield start


def bookable_slots(
    db: Session,
    query: AvailabilityQuery,
    day: date,
    *,
    stride_minutes: int,
    fallback_duration: int,
    partial_block_minutes: int,
) -> list[str]:
    plan = plan_day(
        db,
        query,
        day,
        fallback_duration=fallback_duration,
        partial_block_minutes=partial_block_minutes,
    )
    if plan is None:
        return []
    return [format_minutes(start) for start in sorted(iter_bookable_starts(plan, stride_minutes))]


def has_bookable_slot(
    db: Session,
    query: AvailabilityQuery,
    day: date,
    *,
    stride_minutes: int,
    fallback_duration: int,
    partial_block_minutes: int,
) -> bool:
    plan = plan_day(
        db,
        query,
        day,
        fallback_duration=fallback_duration,
        partial_block_minutes=partial_block_minutes,
    )
    if plan is None:
        return False
    return next(iter_bookable_starts(plan, stride_minutes), None) is not None


def tenant_today(tenant: Tenant) -> date:
    try:
        zone = ZoneInfo(tenant.timezone) if tenant.timezone else timezone.utc
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r for tenant %s, using UTC", tenant.timezone, tenant.id)
        zone = timezone.utc
    return datetime.now(zone).date()


def _load_servable_query(
    db: Session,
    *,
    service_id: int,
    variant_id: int | None,
    staff_id: int | None,
) -> AvailabilityQuery | None:
    if staff_id is not None and not staff_scheduling_available(db.get_bind()):
        logger.info("Staff scheduling is not configured; no availability for staff %s", staff_id)
        return None

    query = build_query(db, service_id=service_id, variant_id=variant_id, staff_id=staff_id)
    if not resolver_for(query).can_serve(db):
        logger.info("Staff %s does not offer service %s", staff_id, service_id)
        return None
    return query


def list_bookable_slots(
    *,
    service_id: int,
    day: date,
    variant_id: int | None = None,
    staff_id: int | None = None,
    stride_minutes: int | None = None,
) -> list[str]:
    settings = get_settings()
    with SessionLocal() as db:
        query = _load_servable_query(db, service_id=service_id, variant_id=variant_id, staff_id=staff_id)
        if query is None:
            return []
        return bookable_slots(
            db,
            query,
            day,
            stride_minutes=stride_minutes or settings.slot_stride_minutes,
            fallback_duration=settings.default_duration_minutes,
            partial_block_minutes=settings.partial_block_minutes,
        )


def list_bookable_dates(
    *,
    service_id: int,
    variant_id: int | None = None,
    staff_id: int | None = None,
    today: date | None = None,
    horizon_days: int | None = None,
    stride_minutes: int | None = None,
) -> list[date]:
    settings = get_settings()
    horizon = horizon_days or settings.booking_horizon_days
    with SessionLocal() as db:
        query = _load_servable_query(db, service_id=service_id, variant_id=variant_id, staff_id=staff_id)
        if query is None:
            return []

        start_day = today or tenant_today(query.tenant)
        dates: list[date] = []
        # Inclusive horizon: today plus the next ``horizon`` days.
        for offset in range(horizon + 1):
            day = start_day + timedelta(days=offset)
            if has_bookable_slot(
                db,
                query,
                day,
                stride_minutes=stride_minutes or settings.slot_stride_minutes,
                fallback_duration=settings.default_duration_minutes,
                partial_block_minutes=settings.partial_block_minutes,
            ):
                dates.append(day)
        return dates
