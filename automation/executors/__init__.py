"""Booking execution modules for courtbot automation."""

from .tfc_booking import TfcCourtBooker, court_name_for, format_slot_label

__all__ = [
    "TfcCourtBooker",
    "court_name_for",
    "format_slot_label",
]
