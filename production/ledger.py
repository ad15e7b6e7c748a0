"""Daily entry ledger and stock deduction services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import joinedload

from extensions import db
from models import DailyEntry, Product, StockDeduction, TeamEnum

from .clock import to_business_time
from .errors import EntryConflictError, EntryValidationError, ProductNotFoundError
from .shifts import SHIFT_FIELDS

ENTERED_BY_MAX_LENGTH = 120
DEFAULT_CONFLICT_RETRIES = 2


@dataclass(frozen=True)
class ShiftCounts:
    """Counts submitted for each shift; ``None`` means the field was not sent."""

    morning_count: Optional[int] = None
    evening_count: Optional[int] = None
    late_night_count: Optional[int] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ShiftCounts":
        return cls(**{field: data[field] for field in SHIFT_FIELDS if data.get(field) is not None})

    def present(self) -> Dict[str, int]:
        values = {}
        for field in SHIFT_FIELDS:
            value = getattr(self, field)
            if value is not None:
                values[field] = value
        return values

    def resolved(self) -> Dict[str, int]:
        return {field: getattr(self, field) or 0 for field in SHIFT_FIELDS}


@dataclass
class SubmissionResult:
    entry: DailyEntry
    product: Optional[Product]
    stock_deducted: int
    deduction: Optional[StockDeduction] = None
    created: bool = False


def _log_event(event: str, payload: Dict[str, Any]) -> None:
    current_app.logger.info({"event": event, **payload})


def _is_unique_violation(exc: IntegrityError, *keywords: str) -> bool:
    """Return ``True`` if ``exc`` represents a unique constraint violation."""

    orig = getattr(exc, "orig", None)
    diag = getattr(orig, "diag", None)
    constraint_name = getattr(diag, "constraint_name", None)

    haystacks: list[str] = []
    if constraint_name:
        haystacks.append(constraint_name.lower())
    haystacks.append(str(orig if orig is not None else exc).lower())

    lowered_keywords = [keyword.lower() for keyword in keywords]
    for haystack in haystacks:
        if "unique" not in haystack and "uq_" not in haystack and "duplicate" not in haystack:
            continue
        if all(keyword in haystack for keyword in lowered_keywords):
            return True
    return False


def normalize_entry_date(value) -> date:
    """Return the business calendar day an entry belongs to.

    Naive datetimes are read as UTC, like every other clock reading.
    """

    if isinstance(value, datetime):
        return to_business_time(value).date()
    if isinstance(value, date):
        return value
    raise EntryValidationError({"date": "A valid entry date is required."})


def find_entry(product_id, day: date) -> Optional[DailyEntry]:
    return DailyEntry.query.filter_by(product_id=product_id, date=day).one_or_none()


def validate_submission(product_id, counts: ShiftCounts, entered_by) -> Dict[str, str]:
    errors: Dict[str, str] = {}

    if product_id in (None, ""):
        errors["product_id"] = "Product ID is required."

    if not (entered_by or "").strip():
        errors["entered_by"] = "entered_by is required."
    elif len(entered_by.strip()) > ENTERED_BY_MAX_LENGTH:
        errors["entered_by"] = f"entered_by must be at most {ENTERED_BY_MAX_LENGTH} characters."

    present = counts.present()
    for field, value in present.items():
        if isinstance(value, bool) or not isinstance(value, int):
            errors[field] = f"{field} must be an integer."
        elif value < 0:
            errors[field] = f"{field} cannot be negative."

    if not present:
        errors["counts"] = "At least one count field must be provided."
    elif not any(field in errors for field in present) and not any(value > 0 for value in present.values()):
        errors["counts"] = "At least one count must be greater than 0."

    return errors


def record_entry(
    product_id: int,
    entry_date,
    counts: ShiftCounts,
    entered_by: str,
) -> Tuple[DailyEntry, int]:
    """Create or update the day's entry and return it with the deduction owed.

    The first submission of the day deducts the sum of all three counts.
    Later submissions overwrite only the fields they carry and deduct the
    full value of each of those fields again; the amount is not a diff
    against what was stored before.
    """

    errors = validate_submission(product_id, counts, entered_by)
    if errors:
        raise EntryValidationError(errors)

    day = normalize_entry_date(entry_date)
    entered_by = entered_by.strip()
    present = counts.present()

    entry = find_entry(product_id, day)

    if entry is None:
        entry = DailyEntry(product_id=product_id, date=day, entered_by=entered_by, **counts.resolved())
        db.session.add(entry)
        try:
            db.session.flush()
        except IntegrityError as exc:
            if _is_unique_violation(exc):
                raise EntryConflictError(product_id, day) from exc
            raise
        deduction = entry.daily_total
    else:
        for field, value in present.items():
            setattr(entry, field, value)
        entry.entered_by = entered_by
        entry.updated_at = datetime.utcnow()
        deduction = sum(present.values())

    _log_event(
        "daily_entry_recorded",
        {
            "product_id": product_id,
            "date": day.isoformat(),
            "submitted": present,
            "stock_to_deduct": deduction,
            "totals": {
                "morning": entry.morning_count,
                "evening": entry.evening_count,
                "late_night": entry.late_night_count,
                "total": entry.daily_total,
            },
        },
    )
    return entry, deduction


def apply_stock_deduction(
    product_id: int,
    amount: int,
    *,
    entry: Optional[DailyEntry] = None,
    entered_by: Optional[str] = None,
) -> Optional[StockDeduction]:
    """Decrease the product's remaining stock, never below zero.

    The product row is locked for the rest of the transaction so concurrent
    submissions serialise on it. Nothing happens for a non-positive amount.
    """

    if not amount or amount <= 0:
        return None

    product = Product.query.filter_by(id=product_id).with_for_update().one_or_none()
    if product is None:
        raise ProductNotFoundError(product_id)

    stock_before = int(product.remaining_stock or 0)
    stock_after = max(0, stock_before - amount)
    product.remaining_stock = stock_after

    record = StockDeduction(
        product=product,
        daily_entry=entry,
        requested_quantity=amount,
        applied_quantity=stock_before - stock_after,
        stock_before=stock_before,
        stock_after=stock_after,
        entered_by=entered_by,
    )
    db.session.add(record)

    _log_event(
        "stock_deducted",
        {
            "product_id": product.id,
            "product_name": product.name,
            "old_remaining": stock_before,
            "stock_deducted": amount,
            "new_remaining": stock_after,
        },
    )
    return record


def submit_entry(
    product_id: int,
    counts: ShiftCounts,
    entered_by: str,
    *,
    entry_date,
    retries: Optional[int] = None,
) -> SubmissionResult:
    """Record a submission and deduct its stock in a single transaction.

    When the product does not exist the entry is still recorded and the
    deduction is skipped. That only holds on databases that do not enforce
    the ``daily_entries.product_id`` foreign key (SQLite by default); elsewhere
    the insert fails with an ``IntegrityError``. HTTP callers check the
    product first and answer 404, so they never reach that path.
    """

    if retries is None:
        retries = current_app.config.get("ENTRY_CONFLICT_RETRIES", DEFAULT_CONFLICT_RETRIES)

    attempt = 0
    while True:
        try:
            existing_id = (
                db.session.query(DailyEntry.id)
                .filter_by(product_id=product_id, date=normalize_entry_date(entry_date))
                .scalar()
            )
            entry, amount = record_entry(product_id, entry_date, counts, entered_by)

            deduction = None
            try:
                deduction = apply_stock_deduction(
                    product_id,
                    amount,
                    entry=entry,
                    entered_by=entry.entered_by,
                )
            except ProductNotFoundError:
                current_app.logger.warning(
                    {
                        "event": "stock_deduction_skipped",
                        "product_id": product_id,
                        "reason": "product_not_found",
                        "stock_to_deduct": amount,
                    }
                )

            db.session.commit()
            product = db.session.get(Product, product_id)
            return SubmissionResult(
                entry=entry,
                product=product,
                stock_deducted=amount,
                deduction=deduction,
                created=existing_id is None,
            )
        except EntryConflictError:
            db.session.rollback()
            if attempt >= retries:
                raise
            attempt += 1
            current_app.logger.warning(
                {
                    "event": "daily_entry_conflict_retry",
                    "product_id": product_id,
                    "attempt": attempt,
                }
            )
        except (EntryValidationError, SQLAlchemyError):
            db.session.rollback()
            raise


def list_entries_for_date(day: date, team: Optional[TeamEnum] = None) -> list[DailyEntry]:
    query = DailyEntry.query.options(joinedload(DailyEntry.product)).filter(DailyEntry.date == day)
    if team is not None:
        query = query.join(Product, DailyEntry.product_id == Product.id).filter(Product.team == team)
    return query.order_by(DailyEntry.created_at.desc(), DailyEntry.id.desc()).all()


def entries_by_product(day: date, product_ids: Iterable[int]) -> Dict[int, DailyEntry]:
    ids = list(product_ids)
    if not ids:
        return {}
    entries = DailyEntry.query.filter(DailyEntry.date == day, DailyEntry.product_id.in_(ids)).all()
    return {entry.product_id: entry for entry in entries}
