"""Legal booking status transitions after creation."""

from __future__ import annotations

from booking.rules import RuleCheckResult
from booking.schema import BookingStatus, ErrorCode

ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset({BookingStatus.PENDING}),
    BookingStatus.COMPLETED: frozenset(),
}

NOTIFY_ON = frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED})


def check_transition(current: BookingStatus, target: BookingStatus, reason: str | None = None) -> RuleCheckResult:
    if current == BookingStatus.COMPLETED:
        return RuleCheckResult(
            allowed=False,
            reason="Completed bookings cannot change status.",
            code=ErrorCode.INVALID_INPUT,
        )

    if target not in ALLOWED_TRANSITIONS[current]:
        return RuleCheckResult(
            allowed=False,
            reason=f"Cannot change status from {current.value} to {target.value}.",
            code=ErrorCode.INVALID_INPUT,
        )

    if current == BookingStatus.CANCELLED and not (reason or "").strip():
        return RuleCheckResult(
            allowed=False,
            reason="A reason is required to reactivate a cancelled booking.",
            code=ErrorCode.INVALID_INPUT,
        )

    return RuleCheckResult(allowed=True)


def reactivates(current: BookingStatus, target: BookingStatus) -> bool:
    """True when the booking starts consuming capacity again."""
    return current == BookingStatus.CANCELLED and target != BookingStatus.CANCELLED
