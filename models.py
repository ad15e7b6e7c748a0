from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, UniqueConstraint
from werkzeug.security import check_password_hash, generate_password_hash

from extensions import db


class RoleEnum(str, Enum):
    user = "user"
    admin = "admin"
    super_admin = "superAdmin"


class TeamEnum(str, Enum):
    video = "video"
    portal = "portal"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(
        db.Enum(RoleEnum, name="user_role", values_callable=_enum_values),
        nullable=False,
        default=RoleEnum.user,
    )
    team = db.Column(
        db.Enum(TeamEnum, name="user_team", values_callable=_enum_values),
        nullable=False,
    )
    active = db.Column(db.Boolean, nullable=False, default=True)
    last_login_at = db.Column(db.DateTime)
    password_changed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def set_password(self, pw, *, changed: bool = False):
        self.password_hash = generate_password_hash(pw)
        if changed:
            # Tokens issued in the same second as the change stay valid.
            self.password_changed_at = datetime.utcnow().replace(microsecond=0)

    def check_password(self, pw): return check_password_hash(self.password_hash, pw)

    @property
    def is_super_admin(self) -> bool:
        return self.role == RoleEnum.super_admin

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<User {self.email} role={self.role.value if self.role else None}>"


class Product(db.Model):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("monthly_target >= 0", name="ck_product_monthly_target_non_negative"),
        CheckConstraint("remaining_stock >= 0", name="ck_product_remaining_stock_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    brand = db.Column(db.String(200), nullable=False, default="")
    team = db.Column(
        db.Enum(TeamEnum, name="product_team", values_callable=_enum_values),
        nullable=False,
        index=True,
    )
    monthly_target = db.Column(db.Integer, nullable=False, default=0)
    remaining_stock = db.Column(db.Integer, nullable=False, default=0)
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<Product {self.name} team={self.team.value if self.team else None} stock={self.remaining_stock}>"


class DailyEntry(db.Model):
    """One row of shift counts per product and business calendar day."""

    __tablename__ = "daily_entries"
    __table_args__ = (
        UniqueConstraint("product_id", "date", name="uq_daily_entry_product_date"),
        CheckConstraint("morning_count >= 0", name="ck_daily_entry_morning_non_negative"),
        CheckConstraint("evening_count >= 0", name="ck_daily_entry_evening_non_negative"),
        CheckConstraint("late_night_count >= 0", name="ck_daily_entry_late_night_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    morning_count = db.Column(db.Integer, nullable=False, default=0)
    evening_count = db.Column(db.Integer, nullable=False, default=0)
    late_night_count = db.Column(db.Integer, nullable=False, default=0)
    entered_by = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    product = db.relationship(
        "Product",
        backref=db.backref("daily_entries", lazy="dynamic", order_by="DailyEntry.date"),
    )

    @property
    def daily_total(self) -> int:
        return (self.morning_count or 0) + (self.evening_count or 0) + (self.late_night_count or 0)

    def __repr__(self):
        return (
            f"<DailyEntry date={self.date} product_id={self.product_id} "
            f"morning={self.morning_count} evening={self.evening_count} "
            f"late_night={self.late_night_count}>"
        )


class StockDeduction(db.Model):
    """Audit trail of every decrement applied to ``Product.remaining_stock``."""

    __tablename__ = "stock_deductions"
    __table_args__ = (
        CheckConstraint("requested_quantity > 0", name="ck_stock_deduction_requested_positive"),
        CheckConstraint("applied_quantity >= 0", name="ck_stock_deduction_applied_non_negative"),
        CheckConstraint("stock_after >= 0", name="ck_stock_deduction_stock_after_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    daily_entry_id = db.Column(db.Integer, db.ForeignKey("daily_entries.id"), index=True)
    requested_quantity = db.Column(db.Integer, nullable=False)
    applied_quantity = db.Column(db.Integer, nullable=False)
    stock_before = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)
    entered_by = db.Column(db.String(120))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    product = db.relationship(
        "Product",
        backref=db.backref(
            "stock_deductions",
            lazy="dynamic",
            order_by="StockDeduction.created_at.desc()",
        ),
    )
    daily_entry = db.relationship("DailyEntry", backref=db.backref("stock_deductions", lazy="dynamic"))

    def __repr__(self):
        return (
            f"<StockDeduction product_id={self.product_id} requested={self.requested_quantity} "
            f"applied={self.applied_quantity} {self.stock_before}->{self.stock_after}>"
        )
