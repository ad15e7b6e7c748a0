"""REST endpoints for per-shift daily production entries."""

from datetime import date as dt_date

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from marshmallow import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from models import Product
from production import (
    EntryConflictError,
    EntryValidationError,
    ShiftCounts,
    business_now,
    closed_fields,
    entries_by_product,
    list_entries_for_date,
    shift_status,
    submit_entry,
)
from routes.auth import scoped_team
from routes.products import serialize_with_target
from schemas import DailyEntrySchema, DailyEntrySubmitSchema, ProductSchema

bp = Blueprint("daily_entries", __name__, url_prefix="/api/daily-entries")

entry_schema = DailyEntrySchema()
entries_schema = DailyEntrySchema(many=True)
submit_schema = DailyEntrySubmitSchema()
product_schema = ProductSchema()


def _parse_date(value, *, field_name: str):
    if not value:
        return None
    try:
        return dt_date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid date for {field_name}")


def _shift_closed_errors(fields, now) -> dict:
    return {
        field: f"The {field[: -len('_count')].replace('_', ' ')} shift is not open for entry right now."
        for field in closed_fields(fields, now)
    }


@bp.post("")
@jwt_required()
def submit_daily_entry():
    payload = request.get_json(silent=True) or {}
    try:
        data = submit_schema.load(payload)
    except ValidationError as exc:
        return jsonify({"msg": "Invalid daily entry payload", "errors": exc.messages}), 400

    product_id = data.get("product_id")
    if product_id is None or not (data.get("entered_by") or "").strip():
        return jsonify({"msg": "Product ID and entered_by are required"}), 400

    product = Product.query.filter(Product.id == product_id).one_or_none()
    team = scoped_team()
    if product is None or (team is not None and product.team != team):
        return jsonify({"msg": "Product not found"}), 404
    if not product.is_active:
        return jsonify({"msg": "Product is not active"}), 400

    counts = ShiftCounts.from_mapping(data)
    now = business_now()

    if current_app.config.get("ENFORCE_SHIFT_WINDOWS", True):
        closed = _shift_closed_errors(counts.present().keys(), now)
        if closed:
            return jsonify({"msg": next(iter(closed.values())), "errors": closed}), 400

    try:
        result = submit_entry(product.id, counts, data["entered_by"], entry_date=now.date())
    except EntryValidationError as exc:
        return jsonify({"msg": exc.message, "errors": exc.errors}), 400
    except EntryConflictError as exc:
        return jsonify({"msg": str(exc)}), 409
    except SQLAlchemyError:
        current_app.logger.exception("Failed to record daily entry for product %s", product_id)
        return jsonify({"msg": "Failed to save daily entry"}), 500

    response = {
        "entry": entry_schema.dump(result.entry),
        "product": product_schema.dump(result.product) if result.product else None,
        "stock_deducted": result.stock_deducted,
    }
    return jsonify(response), 201 if result.created else 200


@bp.get("")
@jwt_required()
def list_daily_entries():
    try:
        query_date = _parse_date(request.args.get("date"), field_name="date") or business_now().date()
    except ValueError as exc:
        return jsonify({"msg": str(exc)}), 400

    entries = list_entries_for_date(query_date, team=scoped_team())
    return jsonify({"date": query_date.isoformat(), "entries": entries_schema.dump(entries)})


@bp.get("/sheet")
@jwt_required()
def daily_sheet():
    """Shift status plus today's counts and target for each active product."""

    now = business_now()
    today = now.date()

    query = Product.query.filter(Product.is_active.is_(True))
    team = scoped_team()
    if team is not None:
        query = query.filter(Product.team == team)
    products = query.order_by(Product.name.asc()).all()

    todays_entries = entries_by_product(today, [product.id for product in products])

    rows = []
    for product in products:
        entry = todays_entries.get(product.id)
        data = serialize_with_target(product, today)
        data["today"] = entry_schema.dump(entry) if entry else None
        rows.append(data)

    return jsonify(
        {
            "date": today.isoformat(),
            "now": now.isoformat(),
            "status": shift_status(now),
            "products": rows,
        }
    )
