import importlib
import os
import sys
import unittest
from datetime import date, datetime
from unittest import mock

from production import ledger
from production.errors import EntryConflictError, EntryValidationError, ProductNotFoundError
from production.ledger import ShiftCounts


class LedgerServiceTestCase(unittest.TestCase):
    def setUp(self):
        os.environ["DATABASE_URL"] = "sqlite:///:memory:"
        if "app" in sys.modules:
            self.app_module = importlib.reload(sys.modules["app"])
        else:
            self.app_module = importlib.import_module("app")

        self.app = self.app_module.create_app()
        self.app.testing = True
        self.ctx = self.app.app_context()
        self.ctx.push()
        self.app_module.db.create_all()

        self.db = self.app_module.db
        product = self.app_module.Product(
            name="Widget",
            team=self.app_module.TeamEnum.portal,
            monthly_target=50,
            remaining_stock=50,
        )
        self.db.session.add(product)
        self.db.session.commit()
        self.product_id = product.id
        self.day = date(2024, 5, 10)

    def tearDown(self):
        self.db.session.remove()
        self.db.drop_all()
        self.ctx.pop()
        os.environ.pop("DATABASE_URL", None)
        if "app" in sys.modules:
            del sys.modules["app"]

    def test_shift_counts_treat_none_as_absent(self):
        counts = ShiftCounts.from_mapping({"morning_count": 4, "evening_count": None, "extra": 9})

        self.assertEqual(counts.present(), {"morning_count": 4})
        self.assertEqual(counts.resolved(), {"morning_count": 4, "evening_count": 0, "late_night_count": 0})

    def test_validate_submission_messages(self):
        errors = ledger.validate_submission(None, ShiftCounts(), "")
        self.assertEqual(errors["product_id"], "Product ID is required.")
        self.assertEqual(errors["entered_by"], "entered_by is required.")
        self.assertEqual(errors["counts"], "At least one count field must be provided.")

        errors = ledger.validate_submission(1, ShiftCounts(morning_count=0, evening_count=0), "Rahim")
        self.assertEqual(errors, {"counts": "At least one count must be greater than 0."})

        errors = ledger.validate_submission(1, ShiftCounts(morning_count=-1), "Rahim")
        self.assertIn("morning_count", errors)
        self.assertNotIn("counts", errors)

    def test_first_submission_deducts_daily_total(self):
        result = ledger.submit_entry(
            self.product_id,
            ShiftCounts(morning_count=10, late_night_count=5),
            "  Rahim ",
            entry_date=self.day,
        )

        self.assertTrue(result.created)
        self.assertEqual(result.stock_deducted, 15)
        self.assertEqual(result.entry.entered_by, "Rahim")
        self.assertEqual(result.entry.evening_count, 0)
        self.assertEqual(result.product.remaining_stock, 35)
        self.assertEqual(result.deduction.applied_quantity, 15)
        self.assertEqual(result.deduction.daily_entry_id, result.entry.id)

    def test_update_overwrites_only_submitted_fields(self):
        ledger.submit_entry(self.product_id, ShiftCounts(morning_count=10), "Rahim", entry_date=self.day)
        result = ledger.submit_entry(
            self.product_id,
            ShiftCounts(evening_count=8),
            "Karim",
            entry_date=datetime(2024, 5, 10, 8, 0),
        )

        self.assertFalse(result.created)
        self.assertEqual(result.stock_deducted, 8)
        self.assertEqual(
            (result.entry.morning_count, result.entry.evening_count, result.entry.late_night_count),
            (10, 8, 0),
        )
        self.assertEqual(result.entry.entered_by, "Karim")
        self.assertEqual(result.product.remaining_stock, 32)

    def test_missing_product_still_records_entry(self):
        with self.assertLogs(self.app.logger, level="WARNING") as captured:
            result = ledger.submit_entry(9999, ShiftCounts(morning_count=5), "Rahim", entry_date=self.day)

        self.assertIsNone(result.product)
        self.assertIsNone(result.deduction)
        self.assertEqual(result.stock_deducted, 5)
        self.assertIsNotNone(result.entry.id)
        self.assertTrue(any("stock_deduction_skipped" in line for line in captured.output))

    def test_apply_stock_deduction(self):
        self.assertIsNone(ledger.apply_stock_deduction(self.product_id, 0))

        record = ledger.apply_stock_deduction(self.product_id, 80, entered_by="Rahim")
        self.assertEqual((record.stock_before, record.applied_quantity, record.stock_after), (50, 50, 0))

        with self.assertRaises(ProductNotFoundError):
            ledger.apply_stock_deduction(9999, 3)

    def test_invalid_submission_rolls_back(self):
        with self.assertRaises(EntryValidationError) as ctx:
            ledger.submit_entry(self.product_id, ShiftCounts(), "Rahim", entry_date=self.day)

        self.assertEqual(ctx.exception.message, "At least one count field must be provided.")
        self.assertEqual(self.app_module.DailyEntry.query.count(), 0)

    def test_conflict_is_retried_as_update(self):
        real_record_entry = ledger.record_entry
        calls = []

        def flaky(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise EntryConflictError(self.product_id, self.day)
            return real_record_entry(*args, **kwargs)

        with mock.patch.object(ledger, "record_entry", side_effect=flaky):
            with self.assertLogs(self.app.logger, level="WARNING") as captured:
                result = ledger.submit_entry(
                    self.product_id,
                    ShiftCounts(morning_count=7),
                    "Rahim",
                    entry_date=self.day,
                )

        self.assertEqual(len(calls), 2)
        self.assertEqual(result.entry.morning_count, 7)
        self.assertEqual(result.product.remaining_stock, 43)
        self.assertTrue(any("daily_entry_conflict_retry" in line for line in captured.output))

    def test_conflict_is_raised_when_retries_run_out(self):
        with mock.patch.object(
            ledger,
            "record_entry",
            side_effect=EntryConflictError(self.product_id, self.day),
        ) as patched:
            with self.assertRaises(EntryConflictError):
                ledger.submit_entry(
                    self.product_id,
                    ShiftCounts(morning_count=7),
                    "Rahim",
                    entry_date=self.day,
                    retries=1,
                )

        self.assertEqual(patched.call_count, 2)

    def test_concurrent_first_insert_hits_unique_constraint_and_updates(self):
        DailyEntry = self.app_module.DailyEntry
        self.db.session.add(
            DailyEntry(product_id=self.product_id, date=self.day, morning_count=3, entered_by="Rahim")
        )
        self.db.session.commit()

        real_find_entry = ledger.find_entry
        lookups = []

        def stale_first_lookup(product_id, day):
            lookups.append(day)
            if len(lookups) == 1:
                # Another worker inserted the row after this lookup ran.
                return None
            return real_find_entry(product_id, day)

        with mock.patch.object(ledger, "find_entry", side_effect=stale_first_lookup):
            with self.assertLogs(self.app.logger, level="WARNING") as captured:
                result = ledger.submit_entry(
                    self.product_id,
                    ShiftCounts(evening_count=4),
                    "Karim",
                    entry_date=self.day,
                )

        self.assertEqual(len(lookups), 2)
        self.assertFalse(result.created)
        self.assertEqual((result.entry.morning_count, result.entry.evening_count), (3, 4))
        self.assertEqual(result.stock_deducted, 4)
        self.assertEqual(result.product.remaining_stock, 46)
        self.assertEqual(DailyEntry.query.filter_by(product_id=self.product_id).count(), 1)
        self.assertTrue(any("daily_entry_conflict_retry" in line for line in captured.output))

    def test_normalize_entry_date_reads_naive_datetimes_as_utc(self):
        self.assertEqual(ledger.normalize_entry_date(datetime(2024, 5, 10, 20, 30)), date(2024, 5, 11))
        self.assertEqual(ledger.normalize_entry_date(datetime(2024, 5, 10, 17, 59)), date(2024, 5, 10))
        self.assertEqual(ledger.normalize_entry_date(self.day), self.day)

        with self.assertRaises(EntryValidationError):
            ledger.normalize_entry_date("2024-05-10")


if __name__ == "__main__":
    unittest.main()
