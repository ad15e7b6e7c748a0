"""Monthly production report built from the daily entry ledger."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import joinedload

from models import DailyEntry, TeamEnum

from .errors import EntryValidationError


@dataclass(frozen=True)
class ReportRange:
    start: date
    end: date
    month: int
    year: int


def _parse_int(value, *, field_name: str, low: int, high: int) -> int:
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        raise EntryValidationError({field_name: f"{field_name} must be an integer."})
    if number < low or number > high:
        raise EntryValidationError({field_name: f"{field_name} must be between {low} and {high}."})
    return number


def _parse_date(value, *, field_name: str) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise EntryValidationError({field_name: f"Invalid date for {field_name}. Use YYYY-MM-DD."})


def month_bounds(year: int, month: int) -> tuple[date, date]:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def resolve_report_range(month=None, year=None, start_date=None, end_date=None) -> ReportRange:
    """Work out the inclusive date range a report covers.

    Explicit start and end dates take precedence; month and year default to
    the start date's when omitted. Otherwise month and year select the whole
    calendar month.
    """

    start = _parse_date(start_date, field_name="start_date")
    end = _parse_date(end_date, field_name="end_date")

    if start and end:
        if start > end:
            raise EntryValidationError({"start_date": "start_date must be on or before end_date."})
        month_value = (
            _parse_int(month, field_name="month", low=1, high=12) if month not in (None, "") else start.month
        )
        year_value = (
            _parse_int(year, field_name="year", low=1, high=9999) if year not in (None, "") else start.year
        )
        return ReportRange(start=start, end=end, month=month_value, year=year_value)

    if month in (None, "") or year in (None, ""):
        raise EntryValidationError({"month": "Month and year are required."})

    month_value = _parse_int(month, field_name="month", low=1, high=12)
    year_value = _parse_int(year, field_name="year", low=1, high=9999)
    start, end = month_bounds(year_value, month_value)
    return ReportRange(start=start, end=end, month=month_value, year=year_value)


def build_monthly_report(start: date, end: date, team: Optional[TeamEnum] = None) -> List[Dict[str, Any]]:
    """Group the entries between ``start`` and ``end`` (inclusive) by product.

    Products appear in the order they are first seen while walking the
    entries by date. Entries whose product no longer exists are skipped.
    """

    entries = (
        DailyEntry.query.options(joinedload(DailyEntry.product))
        .filter(DailyEntry.date >= start, DailyEntry.date <= end)
        .order_by(DailyEntry.date.asc(), DailyEntry.id.asc())
        .all()
    )

    grouped: Dict[int, Dict[str, Any]] = {}
    for entry in entries:
        product = entry.product
        if product is None:
            continue
        if team is not None and product.team != team:
            continue

        bucket = grouped.get(product.id)
        if bucket is None:
            bucket = {
                "product_id": product.id,
                "product_name": product.name,
                "brand": product.brand,
                "team": product.team.value if product.team else None,
                "monthly_target": int(product.monthly_target or 0),
                "entries": [],
            }
            grouped[product.id] = bucket

        bucket["entries"].append(
            {
                "date": entry.date.isoformat(),
                "morning_count": entry.morning_count,
                "evening_count": entry.evening_count,
                "late_night_count": entry.late_night_count,
                "daily_total": entry.daily_total,
                "entered_by": entry.entered_by,
            }
        )

    report = []
    for bucket in grouped.values():
        total_produced = sum(item["daily_total"] for item in bucket["entries"])
        bucket["total_produced"] = total_produced
        bucket["remaining_target"] = max(0, bucket["monthly_target"] - total_produced)
        report.append(bucket)
    return report
