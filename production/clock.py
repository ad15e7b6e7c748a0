"""Business time zone clock used for shift gating and entry dates."""

from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context

from config import DEFAULT_BUSINESS_TIMEZONE


def business_zone(name: str | None = None) -> ZoneInfo:
    if name is None and has_app_context():
        name = current_app.config.get("BUSINESS_TIMEZONE")
    return ZoneInfo(name or DEFAULT_BUSINESS_TIMEZONE)


def to_business_time(value: datetime, zone: ZoneInfo | None = None) -> datetime:
    """Return ``value`` in the business zone; naive values are read as UTC."""

    zone = zone or business_zone()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(zone)


def _system_clock() -> datetime:
    return datetime.now(timezone.utc)


def business_now() -> datetime:
    """Read the configured ``LEDGER_CLOCK`` and convert it to business time."""

    clock = None
    if has_app_context():
        clock = current_app.config.get("LEDGER_CLOCK")
    if not callable(clock):
        clock = _system_clock
    return to_business_time(clock())


def business_today() -> date:
    return business_now().date()
