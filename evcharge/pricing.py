from datetime import datetime, timedelta


def booking_cost_cents(rate_per_hour_cents: int, duration_minutes: int) -> int:
    """Hourly rate prorated by the minute, rounded to the nearest cent."""
    return int(round((rate_per_hour_cents or 0) * max(0, duration_minutes) / 60.0))


def booking_window(start: datetime, duration_minutes: int) -> tuple[datetime, datetime]:
    return start, start + timedelta(minutes=duration_minutes)
