import importlib
import os
import sys
import unittest
from datetime import datetime
from zoneinfo import ZoneInfo

DHAKA = ZoneInfo("Asia/Dhaka")


class DailyEntriesApiTestCase(unittest.TestCase):
    def setUp(self):
        os.environ["DATABASE_URL"] = "sqlite:///:memory:"
        if "app" in sys.modules:
            self.app_module = importlib.reload(sys.modules["app"])
        else:
            self.app_module = importlib.import_module("app")

        self.app = self.app_module.create_app()
        self.app.testing = True
        self.now = datetime(2024, 5, 10, 10, 0, tzinfo=DHAKA)
        self.app.config["LEDGER_CLOCK"] = lambda: self.now
        self.ctx = self.app.app_context()
        self.ctx.push()
        self.app_module.db.create_all()

        self.client = self.app.test_client()
        User = self.app_module.User
        RoleEnum = self.app_module.RoleEnum
        TeamEnum = self.app_module.TeamEnum
        Product = self.app_module.Product

        self.video_user = User(name="Video Operator", email="video@example.com", team=TeamEnum.video)
        self.video_user.set_password("Password!1")
        self.portal_user = User(name="Portal Operator", email="portal@example.com", team=TeamEnum.portal)
        self.portal_user.set_password("Password!1")
        self.owner = User(
            name="Owner",
            email="owner@example.com",
            team=TeamEnum.video,
            role=RoleEnum.super_admin,
        )
        self.owner.set_password("Password!1")

        self.product = Product(
            name="Widget",
            brand="Acme",
            team=TeamEnum.video,
            monthly_target=100,
            remaining_stock=100,
        )
        self.app_module.db.session.add_all([self.video_user, self.portal_user, self.owner, self.product])
        self.app_module.db.session.commit()
        self.product_id = self.product.id

        self.video_token = self._login("video@example.com")
        self.portal_token = self._login("portal@example.com")
        self.owner_token = self._login("owner@example.com")

    def tearDown(self):
        self.app_module.db.session.remove()
        self.app_module.db.drop_all()
        self.ctx.pop()
        os.environ.pop("DATABASE_URL", None)
        if "app" in sys.modules:
            del sys.modules["app"]

    def _login(self, email):
        response = self.client.post(
            "/api/auth/login",
            json={"email": email, "password": "Password!1"},
        )
        self.assertEqual(response.status_code, 200)
        return response.get_json()["access_token"]

    def _auth_headers(self, token):
        return {"Authorization": f"Bearer {token}"}

    def _at(self, hour, minute=0, day=10):
        self.now = datetime(2024, 5, day, hour, minute, tzinfo=DHAKA)

    def _submit(self, token=None, **fields):
        payload = {"product_id": self.product_id, "entered_by": "Rahim"}
        payload.update(fields)
        return self.client.post(
            "/api/daily-entries",
            headers=self._auth_headers(token or self.video_token),
            json=payload,
        )

    def _stock(self):
        self.app_module.db.session.expire_all()
        return self.app_module.db.session.get(self.app_module.Product, self.product_id).remaining_stock

    def test_morning_then_evening_submission_updates_single_entry(self):
        response = self._submit(morning_count=20)
        self.assertEqual(response.status_code, 201)
        body = response.get_json()
        self.assertEqual(body["stock_deducted"], 20)
        self.assertEqual(body["entry"]["morning_count"], 20)
        self.assertEqual(body["entry"]["evening_count"], 0)
        self.assertEqual(body["entry"]["date"], "2024-05-10")
        self.assertEqual(body["entry"]["product_name"], "Widget")
        self.assertEqual(body["product"]["remaining_stock"], 80)

        self._at(16, 0)
        response = self._submit(evening_count=15, entered_by="Karim")
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["stock_deducted"], 15)
        self.assertEqual(body["entry"]["morning_count"], 20)
        self.assertEqual(body["entry"]["evening_count"], 15)
        self.assertEqual(body["entry"]["daily_total"], 35)
        self.assertEqual(body["entry"]["entered_by"], "Karim")
        self.assertEqual(self._stock(), 65)

        DailyEntry = self.app_module.DailyEntry
        self.assertEqual(DailyEntry.query.filter_by(product_id=self.product_id).count(), 1)

    def test_resubmitting_a_field_deducts_its_full_value_again(self):
        # Not a delta: 20 then 25 removes 45 units although the entry holds 25.
        # Identical resubmissions keep draining stock until product intent says otherwise.
        self.assertEqual(self._submit(morning_count=20).status_code, 201)
        response = self._submit(morning_count=25)

        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["entry"]["morning_count"], 25)
        self.assertEqual(body["stock_deducted"], 25)
        self.assertEqual(self._stock(), 55)

    def test_stock_never_goes_below_zero(self):
        product = self.app_module.db.session.get(self.app_module.Product, self.product_id)
        product.remaining_stock = 10
        self.app_module.db.session.commit()

        response = self._submit(morning_count=25)
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.get_json()["stock_deducted"], 25)
        self.assertEqual(self._stock(), 0)

        StockDeduction = self.app_module.StockDeduction
        record = StockDeduction.query.filter_by(product_id=self.product_id).one()
        self.assertEqual(record.requested_quantity, 25)
        self.assertEqual(record.applied_quantity, 10)
        self.assertEqual((record.stock_before, record.stock_after), (10, 0))

    def test_every_deduction_is_recorded_consistently(self):
        self._submit(morning_count=30)
        self._submit(morning_count=40)
        self._at(15, 10)
        self._submit(morning_count=10, evening_count=5)

        StockDeduction = self.app_module.StockDeduction
        records = (
            StockDeduction.query.filter_by(product_id=self.product_id).order_by(StockDeduction.id.asc()).all()
        )
        self.assertEqual([item.requested_quantity for item in records], [30, 40, 15])
        for record in records:
            self.assertEqual(record.stock_before - record.applied_quantity, record.stock_after)
            self.assertGreaterEqual(record.stock_after, 0)
        self.assertEqual(self._stock(), 15)

    def test_submission_requires_a_positive_count(self):
        response = self._submit()
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["msg"], "At least one count field must be provided.")

        response = self._submit(morning_count=0)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["msg"], "At least one count must be greater than 0.")

        response = self._submit(morning_count=-3)
        self.assertEqual(response.status_code, 400)
        self.assertIn("morning_count", response.get_json()["errors"])

        self.assertEqual(self._stock(), 100)

    def test_fractional_counts_are_rejected(self):
        response = self._submit(morning_count=5.7)
        self.assertEqual(response.status_code, 400)
        self.assertIn("morning_count", response.get_json()["errors"])

        response = self._submit(morning_count="5")
        self.assertEqual(response.status_code, 400)

        self.assertEqual(self._stock(), 100)
        self.assertEqual(self.app_module.DailyEntry.query.count(), 0)

    def test_product_and_entered_by_are_required(self):
        response = self.client.post(
            "/api/daily-entries",
            headers=self._auth_headers(self.video_token),
            json={"entered_by": "Rahim", "morning_count": 5},
        )
        self.assertEqual(response.status_code, 400)

        response = self._submit(entered_by="   ", morning_count=5)
        self.assertEqual(response.status_code, 400)

        response = self.client.post(
            "/api/daily-entries",
            headers=self._auth_headers(self.video_token),
            json={"product_id": 9999, "entered_by": "Rahim", "morning_count": 5},
        )
        self.assertEqual(response.status_code, 404)

    def test_closed_shift_fields_are_rejected(self):
        response = self._submit(evening_count=5)
        self.assertEqual(response.status_code, 400)
        self.assertIn("evening_count", response.get_json()["errors"])

        self._at(4, 0)
        response = self._submit(morning_count=5)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self._stock(), 100)

    def test_morning_stays_editable_during_grace_period(self):
        self._at(15, 15)
        response = self._submit(morning_count=5)
        self.assertEqual(response.status_code, 201)

        self._at(15, 30)
        response = self._submit(morning_count=6)
        self.assertEqual(response.status_code, 400)

    def test_window_enforcement_can_be_disabled(self):
        self.app.config["ENFORCE_SHIFT_WINDOWS"] = False
        self._at(5, 0)

        response = self._submit(evening_count=7)
        self.assertEqual(response.status_code, 201)
        self.assertEqual(self._stock(), 93)

    def test_late_night_after_midnight_uses_business_calendar_day(self):
        self._at(1, 30, day=11)
        response = self._submit(late_night_count=12)

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.get_json()["entry"]["date"], "2024-05-11")

    def test_inactive_product_is_rejected(self):
        product = self.app_module.db.session.get(self.app_module.Product, self.product_id)
        product.is_active = False
        self.app_module.db.session.commit()

        response = self._submit(morning_count=5)
        self.assertEqual(response.status_code, 400)

    def test_users_cannot_submit_for_another_teams_product(self):
        response = self._submit(token=self.portal_token, morning_count=5)
        self.assertEqual(response.status_code, 404)

        response = self._submit(token=self.owner_token, morning_count=5)
        self.assertEqual(response.status_code, 201)

    def test_list_entries_for_date(self):
        self._submit(morning_count=12)

        response = self.client.get(
            "/api/daily-entries?date=2024-05-10",
            headers=self._auth_headers(self.video_token),
        )
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["date"], "2024-05-10")
        self.assertEqual(len(body["entries"]), 1)
        self.assertEqual(body["entries"][0]["morning_count"], 12)

        response = self.client.get("/api/daily-entries", headers=self._auth_headers(self.portal_token))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["entries"], [])

        response = self.client.get(
            "/api/daily-entries?date=10-05-2024",
            headers=self._auth_headers(self.video_token),
        )
        self.assertEqual(response.status_code, 400)

    def test_daily_sheet_reports_status_target_and_todays_counts(self):
        self._submit(morning_count=10)

        response = self.client.get("/api/daily-entries/sheet", headers=self._auth_headers(self.video_token))
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["date"], "2024-05-10")
        self.assertEqual(body["status"]["shift"], "morning")
        self.assertEqual(body["status"]["editable_fields"], ["morning_count"])
        self.assertEqual(len(body["products"]), 1)

        row = body["products"][0]
        self.assertEqual(row["remaining_stock"], 90)
        # 90 units over the 22 days left in May.
        self.assertEqual(row["daily_target"], 5)
        self.assertEqual(row["today"]["morning_count"], 10)

        response = self.client.get("/api/daily-entries/sheet", headers=self._auth_headers(self.portal_token))
        self.assertEqual(response.get_json()["products"], [])

    def test_requires_authentication(self):
        response = self.client.post("/api/daily-entries", json={"product_id": self.product_id})
        self.assertEqual(response.status_code, 401)


if __name__ == "__main__":
    unittest.main()
