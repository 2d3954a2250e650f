"""Typed rejections raised inside the engine and reported at its edges."""

from __future__ import annotations

from booking.schema import ErrorCode

HTTP_STATUS_BY_CODE = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.BLOCKED: 409,
    ErrorCode.CAPACITY_EXCEEDED: 409,
    ErrorCode.CONFLICT: 409,
    ErrorCode.INTERNAL: 500,
}


class BookingRejected(Exception):
    """An expected business outcome; ``reason`` is safe to show to callers."""

    def __init__(self, code: ErrorCode, reason: str) -> None:
        self.code = code
        self.reason = reason
        super().__init__(reason)

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_CODE[self.code]


def not_found(reason: str) -> BookingRejected:
    return BookingRejected(ErrorCode.NOT_FOUND, reason)


def invalid_input(reason: str) -> BookingRejected:
    return BookingRejected(ErrorCode.INVALID_INPUT, reason)
