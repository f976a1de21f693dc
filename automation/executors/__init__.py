"""Booking execution modules for exam checkout automation."""

from .booking import PAYMENT_HANDOFF_MESSAGE, GoetheBookingExecutor
from .forms import CheckoutFormService

__all__ = [
    "CheckoutFormService",
    "GoetheBookingExecutor",
    "PAYMENT_HANDOFF_MESSAGE",
]
