"""Outbound notification links produced when an owner confirms or cancels a booking."""

from __future__ import annotations

import re
from typing import Protocol
from urllib.parse import quote

from booking.models import Booking, Service, Tenant


class BookingNotifier(Protocol):
    def link_for(self, booking: Booking, tenant: Tenant, service: Service) -> str | None:
        ...


class NullNotifier:
    def link_for(self, booking: Booking, tenant: Tenant, service: Service) -> str | None:
        return None


class WhatsAppLinkNotifier:
    """Builds a wa.me link addressed to the customer; None when no number is usable."""

    base_url = "https://wa.me"

    def link_for(self, booking: Booking, tenant: Tenant, service: Service) -> str | None:
        phone = re.sub(r"[^0-9]", "", booking.customer_phone or "")
        if not phone:
            return None
        return f"{self.base_url}/{phone}?text={quote(self._message(booking, tenant, service))}"

    @staticmethod
    def _message(booking: Booking, tenant: Tenant, service: Service) -> str:
        when = f"{booking.booking_date.isoformat()} {booking.booking_time}"
        if booking.status == "confirmed":
            return (
                f"Hi {booking.customer_name}, your {service.title} appointment on {when} "
                f"is confirmed. See you at {tenant.name}."
            )
        return (
            f"Hi {booking.customer_name}, your {service.title} appointment on {when} "
            f"has been cancelled. Contact {tenant.name} to reschedule."
        )
