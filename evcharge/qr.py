from __future__ import annotations

import json
import uuid
from typing import Optional

from .models import Booking, as_uuid


def qr_text(booking: Booking) -> str:
    """What the ticket QR encodes: the booking id itself."""
    return str(booking.id)


def qr_envelope(booking: Booking) -> str:
    return json.dumps(
        {
            "bookingId": str(booking.id),
            "stationName": booking.station_name,
            "startTime": booking.start_time.isoformat() + "Z",
            "endTime": booking.end_time.isoformat() + "Z",
        },
        separators=(",", ":"),
    )


def decode_payload(payload: str | None) -> Optional[uuid.UUID]:
    """Extract the booking id from scanned text.

    Accepts the bare id or the JSON envelope; returns None for anything else.
    """
    if payload is None:
        return None
    text = payload.strip()
    if not text:
        return None
    if text.startswith("{"):
        try:
            data = json.loads(text)
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        return as_uuid(data.get("bookingId"))
    return as_uuid(text)
