"""Administrative endpoints for managing application users."""

from __future__ import annotations

from typing import Any

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import current_user, jwt_required

from extensions import db
from models import RoleEnum, TeamEnum, User
from routes.auth import require_role
from schemas import UserSchema

bp = Blueprint("users", __name__, url_prefix="/api/users")

user_schema = UserSchema()
users_schema = UserSchema(many=True)


def _require_super_admin() -> Any:
    if not require_role(RoleEnum.super_admin):
        roles = [RoleEnum.super_admin.value]
        return (
            jsonify(
                {
                    "msg": f"Access denied. This action requires one of the following roles: {', '.join(roles)}.",
                    "required_roles": roles,
                    "user_role": current_user.role.value,
                }
            ),
            403,
        )
    return None


@bp.get("")
@bp.get("/")
@jwt_required()
def list_users():
    """Return every user, newest first."""

    error = _require_super_admin()
    if error:
        return error

    users = User.query.order_by(User.created_at.desc(), User.id.desc()).all()
    return jsonify({"count": len(users), "users": users_schema.dump(users)})


@bp.put("/<int:user_id>/role")
@jwt_required()
def update_user_role(user_id: int):
    error = _require_super_admin()
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    try:
        role = RoleEnum(payload.get("role"))
    except ValueError:
        return jsonify({"msg": "Invalid role. Must be user, admin, or superAdmin"}), 400

    if user_id == current_user.id and role != RoleEnum.super_admin:
        return jsonify({"msg": "You cannot change your own role"}), 403

    user = db.session.get(User, user_id)
    if user is None:
        return jsonify({"msg": "User not found"}), 404

    user.role = role
    db.session.commit()
    current_app.logger.info({"event": "user_role_updated", "user_id": user.id, "role": role.value})
    return jsonify({"msg": f"User role updated to {role.value}", "user": user_schema.dump(user)})


@bp.put("/<int:user_id>/status")
@jwt_required()
def update_user_status(user_id: int):
    error = _require_super_admin()
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    active = payload.get("active")
    if not isinstance(active, bool):
        return jsonify({"msg": "active must be true or false"}), 400

    if user_id == current_user.id:
        return jsonify({"msg": "You cannot deactivate your own account"}), 403

    user = db.session.get(User, user_id)
    if user is None:
        return jsonify({"msg": "User not found"}), 404

    user.active = active
    db.session.commit()
    state = "activated" if active else "deactivated"
    return jsonify({"msg": f"User {state} successfully", "user": user_schema.dump(user)})


@bp.put("/<int:user_id>/team")
@jwt_required()
def update_user_team(user_id: int):
    error = _require_super_admin()
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    try:
        team = TeamEnum(payload.get("team"))
    except ValueError:
        return jsonify({"msg": "Invalid team. Must be video or portal"}), 400

    user = db.session.get(User, user_id)
    if user is None:
        return jsonify({"msg": "User not found"}), 404

    user.team = team
    db.session.commit()
    return jsonify({"msg": f"User team updated to {team.value}", "user": user_schema.dump(user)})
