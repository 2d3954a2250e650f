"""Rule evaluation for durations and date-specific schedule exceptions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from booking.intervals import Window, to_minutes
from booking.models import ScheduleException, Service, ServiceVariant
from booking.schema import ErrorCode

logger = logging.getLogger(__name__)


@dataclass
class RuleCheckResult:
    allowed: bool
    reason: str | None = None
    code: ErrorCode | None = None


@dataclass
class ExceptionMask:
    """Blocked parts of a single date for one service."""

    whole_day: bool = False
    blocks: list[Window] = field(default_factory=list)

    def blocks_range(self, start: int, end: int) -> bool:
        if self.whole_day:
            return True
        return any(block.overlaps(start, end) for block in self.blocks)


class RuleEngine:
    @staticmethod
    def effective_duration(service: Service, variant: ServiceVariant | None, fallback: int) -> int:
        if variant is not None and variant.duration_minutes:
            return variant.duration_minutes
        return service.duration_minutes or fallback

    @staticmethod
    def load_exception_mask(
        db: Session,
        *,
        tenant_id: int,
        service_id: int,
        day: date,
        partial_block_minutes: int,
    ) -> ExceptionMask:
        stmt = select(ScheduleException).where(
            ScheduleException.tenant_id == tenant_id,
            ScheduleException.exception_date == day,
            ScheduleException.is_blocked.is_(True),
            or_(ScheduleException.service_id == service_id, ScheduleException.service_id.is_(None)),
        )
        mask = ExceptionMask()
        for exception in db.scalars(stmt):
            if not exception.start_time:
                # End without start blocks nothing; such rows are rejected on write.
                if not exception.end_time:
                    mask.whole_day = True
                continue
            try:
                start = to_minutes(exception.start_time)
                end = to_minutes(exception.end_time) if exception.end_time else start + partial_block_minutes
            except ValueError:
                logger.warning("Skipping exception %s with malformed times", exception.id)
                continue
            if end > start:
                mask.blocks.append(Window(start, end))
        return mask

    @staticmethod
    def check_exceptions(mask: ExceptionMask, start: int, end: int) -> RuleCheckResult:
        if mask.whole_day:
            return RuleCheckResult(allowed=False, reason="This date is blocked.", code=ErrorCode.BLOCKED)
        if mask.blocks_range(start, end):
            return RuleCheckResult(allowed=False, reason="This time is blocked.", code=ErrorCode.BLOCKED)
        return RuleCheckResult(allowed=True)
