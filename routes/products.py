"""Product registry endpoints."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from marshmallow import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import DailyEntry, Product, RoleEnum, StockDeduction, TeamEnum
from production import business_today, calculate_daily_target
from routes.auth import require_role, scoped_team
from schemas import ProductCreateSchema, ProductSchema, ProductUpdateSchema, StockDeductionSchema

bp = Blueprint("products", __name__, url_prefix="/api/products")

product_schema = ProductSchema()
products_schema = ProductSchema(many=True)
product_create_schema = ProductCreateSchema()
product_update_schema = ProductUpdateSchema()
deductions_schema = StockDeductionSchema(many=True)


def _scoped_query():
    query = Product.query
    team = scoped_team()
    if team is not None:
        query = query.filter(Product.team == team)
    return query


def _get_scoped_product(product_id: int) -> Product | None:
    return _scoped_query().filter(Product.id == product_id).one_or_none()


def serialize_with_target(product: Product, today) -> dict:
    data = product_schema.dump(product)
    data["daily_target"] = calculate_daily_target(
        product.remaining_stock,
        product.start_date,
        product.end_date,
        today,
    )
    return data


def _forbidden():
    return jsonify({"msg": "Only super admins can manage products."}), 403


@bp.get("")
@jwt_required()
def list_products():
    products = _scoped_query().order_by(Product.created_at.desc(), Product.id.desc()).all()
    return jsonify(products_schema.dump(products))


@bp.get("/active")
@jwt_required()
def list_active_products():
    today = business_today()
    products = _scoped_query().filter(Product.is_active.is_(True)).order_by(Product.name.asc()).all()
    return jsonify([serialize_with_target(product, today) for product in products])


@bp.get("/<int:product_id>")
@jwt_required()
def get_product(product_id: int):
    product = _get_scoped_product(product_id)
    if product is None:
        return jsonify({"msg": "Product not found"}), 404
    return jsonify(serialize_with_target(product, business_today()))


@bp.post("")
@jwt_required()
def create_product():
    if not require_role(RoleEnum.super_admin):
        return _forbidden()

    payload = request.get_json(silent=True) or {}
    try:
        data = product_create_schema.load(payload)
    except ValidationError as exc:
        return jsonify({"msg": "Invalid product details", "errors": exc.messages}), 400

    remaining_stock = data.get("remaining_stock")
    if remaining_stock is None:
        remaining_stock = data["monthly_target"]

    product = Product(
        name=data["name"],
        brand=data.get("brand") or "",
        team=TeamEnum(data["team"]),
        monthly_target=data["monthly_target"],
        remaining_stock=remaining_stock,
        start_date=data.get("start_date"),
        end_date=data.get("end_date"),
        is_active=data["is_active"],
    )
    db.session.add(product)
    db.session.commit()

    current_app.logger.info({"event": "product_created", "product_id": product.id, "team": product.team.value})
    return jsonify(product_schema.dump(product)), 201


@bp.put("/<int:product_id>")
@jwt_required()
def update_product(product_id: int):
    if not require_role(RoleEnum.super_admin):
        return _forbidden()

    product = db.session.get(Product, product_id)
    if product is None:
        return jsonify({"msg": "Product not found"}), 404

    payload = request.get_json(silent=True) or {}
    try:
        data = product_update_schema.load(payload)
    except ValidationError as exc:
        return jsonify({"msg": "Invalid product details", "errors": exc.messages}), 400

    start = data.get("start_date", product.start_date)
    end = data.get("end_date", product.end_date)
    if start and end and start > end:
        return jsonify({"msg": "start_date must be on or before end_date."}), 400

    if "team" in data:
        data["team"] = TeamEnum(data["team"])

    for field, value in data.items():
        if getattr(product, field) != value:
            setattr(product, field, value)

    db.session.commit()
    return jsonify(product_schema.dump(product))


@bp.delete("/<int:product_id>")
@jwt_required()
def delete_product(product_id: int):
    if not require_role(RoleEnum.super_admin):
        return _forbidden()

    product = db.session.get(Product, product_id)
    if product is None:
        return jsonify({"msg": "Product not found"}), 404

    has_entries = db.session.query(DailyEntry.id).filter(DailyEntry.product_id == product.id).first()
    if has_entries:
        return (
            jsonify({"msg": "Product has daily entries and cannot be deleted. Deactivate it instead."}),
            409,
        )

    try:
        StockDeduction.query.filter_by(product_id=product.id).delete()
        db.session.delete(product)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to delete product %s", product_id)
        return jsonify({"msg": "Failed to delete product"}), 500

    return jsonify({"msg": "Product deleted successfully"})


@bp.get("/<int:product_id>/deductions")
@jwt_required()
def list_product_deductions(product_id: int):
    if not require_role(RoleEnum.super_admin, RoleEnum.admin):
        return jsonify({"msg": "You do not have permission to view stock history."}), 403

    product = _get_scoped_product(product_id)
    if product is None:
        return jsonify({"msg": "Product not found"}), 404

    deductions = (
        StockDeduction.query.filter_by(product_id=product.id)
        .order_by(StockDeduction.created_at.desc(), StockDeduction.id.desc())
        .all()
    )
    return jsonify(
        {
            "product": product_schema.dump(product),
            "total_applied": sum(item.applied_quantity for item in deductions),
            "deductions": deductions_schema.dump(deductions),
        }
    )
