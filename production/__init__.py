"""Daily production entry and stock ledger."""

from .clock import business_now, business_today, to_business_time
from .errors import (
    EntryConflictError,
    EntryValidationError,
    LedgerError,
    ProductNotFoundError,
)
from .ledger import (
    ShiftCounts,
    SubmissionResult,
    apply_stock_deduction,
    entries_by_product,
    list_entries_for_date,
    record_entry,
    submit_entry,
)
from .reports import build_monthly_report, resolve_report_range
from .shifts import (
    SHIFT_FIELDS,
    ShiftName,
    calculate_daily_target,
    closed_fields,
    current_shift,
    editable_fields,
    filter_editable_counts,
    is_shift_editable,
    shift_status,
)

__all__ = [
    "business_now",
    "business_today",
    "to_business_time",
    "EntryConflictError",
    "EntryValidationError",
    "LedgerError",
    "ProductNotFoundError",
    "ShiftCounts",
    "SubmissionResult",
    "apply_stock_deduction",
    "entries_by_product",
    "list_entries_for_date",
    "record_entry",
    "submit_entry",
    "build_monthly_report",
    "resolve_report_range",
    "SHIFT_FIELDS",
    "ShiftName",
    "calculate_daily_target",
    "closed_fields",
    "current_shift",
    "editable_fields",
    "filter_editable_counts",
    "is_shift_editable",
    "shift_status",
]
