from datetime import datetime

from marshmallow import EXCLUDE, Schema, ValidationError, fields, pre_load, validates_schema
from marshmallow.validate import Length, OneOf, Range

from models import RoleEnum, TeamEnum
from production.clock import to_business_time

TEAM_VALUES = [team.value for team in TeamEnum]
ROLE_VALUES = [role.value for role in RoleEnum]


# --- helpers ---------------------------------------------------------------

def format_datetime_as_business_iso(value) -> str | None:
    """Return an ISO 8601 string in the business time zone.

    Stored timestamps are naive UTC values.
    """

    if not isinstance(value, datetime):
        return None
    return to_business_time(value).isoformat()


def _enum_value(value):
    return getattr(value, "value", value)


def _strip_strings(data, keys):
    if not isinstance(data, dict):
        return data
    cleaned = dict(data)
    for key in keys:
        if isinstance(cleaned.get(key), str):
            cleaned[key] = cleaned[key].strip()
    return cleaned


# --- users -----------------------------------------------------------------

class UserSchema(Schema):
    id = fields.Int()
    name = fields.Str()
    email = fields.Str()
    role = fields.Function(lambda obj: _enum_value(obj.role))
    team = fields.Function(lambda obj: _enum_value(obj.team))
    active = fields.Bool()
    last_login_at = fields.Method("get_last_login_at", allow_none=True)

    def get_last_login_at(self, obj):
        return format_datetime_as_business_iso(obj.last_login_at)


class RegisterSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(required=True, validate=Length(min=2, max=120))
    email = fields.Email(required=True)
    password = fields.Str(required=True, load_only=True)
    team = fields.Str(required=True, validate=OneOf(TEAM_VALUES, error="Team must be either \"video\" or \"portal\""))

    @pre_load
    def normalize(self, data, **kwargs):
        data = _strip_strings(data, ("name", "email", "team"))
        if isinstance(data, dict) and isinstance(data.get("email"), str):
            data["email"] = data["email"].lower()
        return data


# --- products --------------------------------------------------------------

class ProductSchema(Schema):
    id = fields.Int()
    name = fields.Str()
    brand = fields.Str()
    team = fields.Function(lambda obj: _enum_value(obj.team))
    monthly_target = fields.Int()
    remaining_stock = fields.Int()
    start_date = fields.Date(allow_none=True)
    end_date = fields.Date(allow_none=True)
    is_active = fields.Bool()
    created_at = fields.Method("get_created_at", allow_none=True)
    updated_at = fields.Method("get_updated_at", allow_none=True)

    def get_created_at(self, obj):
        return format_datetime_as_business_iso(obj.created_at)

    def get_updated_at(self, obj):
        return format_datetime_as_business_iso(obj.updated_at or obj.created_at)


class ProductUpdateSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(validate=Length(min=1, max=200))
    brand = fields.Str(validate=Length(max=200))
    team = fields.Str(validate=OneOf(TEAM_VALUES, error="Team must be video or portal"))
    monthly_target = fields.Int(validate=Range(min=0))
    remaining_stock = fields.Int(validate=Range(min=0))
    start_date = fields.Date(allow_none=True)
    end_date = fields.Date(allow_none=True)
    is_active = fields.Bool()

    @pre_load
    def normalize(self, data, **kwargs):
        data = _strip_strings(data, ("name", "brand", "team"))
        if isinstance(data, dict):
            for key in ("start_date", "end_date"):
                if data.get(key) == "":
                    data[key] = None
        return data

    @validates_schema
    def validate_period(self, data, **kwargs):
        start = data.get("start_date")
        end = data.get("end_date")
        if start and end and start > end:
            raise ValidationError("start_date must be on or before end_date.", "end_date")


class ProductCreateSchema(ProductUpdateSchema):
    name = fields.Str(required=True, validate=Length(min=1, max=200))
    brand = fields.Str(load_default="", validate=Length(max=200))
    team = fields.Str(
        required=True,
        validate=OneOf(TEAM_VALUES, error="Valid team (video or portal) is required"),
    )
    monthly_target = fields.Int(load_default=0, validate=Range(min=0))
    remaining_stock = fields.Int(allow_none=True, load_default=None, validate=Range(min=0))
    is_active = fields.Bool(load_default=True)


# --- daily entries ---------------------------------------------------------

class DailyEntrySchema(Schema):
    id = fields.Int()
    product_id = fields.Int()
    product_name = fields.Method("get_product_name")
    date = fields.Date()
    morning_count = fields.Int()
    evening_count = fields.Int()
    late_night_count = fields.Int()
    daily_total = fields.Int()
    entered_by = fields.Str()
    updated_at = fields.Method("get_updated_at", allow_none=True)

    def get_product_name(self, obj):
        try:
            return obj.product.name
        except AttributeError:
            return None

    def get_updated_at(self, obj):
        value = getattr(obj, "updated_at", None)
        if value is None:
            value = getattr(obj, "created_at", None)
        return format_datetime_as_business_iso(value)


class DailyEntrySubmitSchema(Schema):
    """Submission payload; shift counts are optional and absent means untouched."""

    class Meta:
        unknown = EXCLUDE

    product_id = fields.Int(allow_none=True)
    entered_by = fields.Str(allow_none=True)
    morning_count = fields.Int(allow_none=True, strict=True, validate=Range(min=0))
    evening_count = fields.Int(allow_none=True, strict=True, validate=Range(min=0))
    late_night_count = fields.Int(allow_none=True, strict=True, validate=Range(min=0))


class StockDeductionSchema(Schema):
    id = fields.Int()
    product_id = fields.Int()
    daily_entry_id = fields.Int(allow_none=True)
    requested_quantity = fields.Int()
    applied_quantity = fields.Int()
    stock_before = fields.Int()
    stock_after = fields.Int()
    entered_by = fields.Str(allow_none=True)
    created_at = fields.Method("get_created_at")

    def get_created_at(self, obj):
        return format_datetime_as_business_iso(obj.created_at)
