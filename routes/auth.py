import re
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import create_access_token, current_user, jwt_required
from marshmallow import ValidationError
from marshmallow.validate import Email
from sqlalchemy import func

from extensions import db
from models import RoleEnum, TeamEnum, User
from schemas import RegisterSchema, UserSchema

bp = Blueprint("auth", __name__, url_prefix="/api/auth")

user_schema = UserSchema()
register_schema = RegisterSchema()

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}$")
PASSWORD_RULE_MSG = (
    "Password must be at least 8 characters long and contain at least one uppercase letter, "
    "one lowercase letter, one number, and one special character (@$!%*?&)"
)

_validate_email = Email(error="Please enter a valid email")


def require_role(*roles: RoleEnum) -> bool:
    """Return ``True`` if the authenticated user holds one of the roles."""

    user = current_user
    if user is None:
        return False
    try:
        current_role = RoleEnum(user.role)
    except (TypeError, ValueError):
        return False
    return current_role in roles


def scoped_team():
    """Team the current user is limited to, or ``None`` for super admins."""

    if current_user.is_super_admin:
        return None
    return current_user.team


def load_token_user(jwt_header, jwt_data):
    """Resolve the token subject, rejecting stale or deactivated accounts."""

    try:
        user_id = int(jwt_data.get("sub"))
    except (TypeError, ValueError):
        return None

    user = db.session.get(User, user_id)
    if user is None or not user.active:
        return None

    if user.password_changed_at:
        changed_at = user.password_changed_at.replace(tzinfo=timezone.utc).timestamp()
        if int(jwt_data.get("iat") or 0) < int(changed_at):
            return None

    return user


def token_user_error(jwt_header, jwt_data):
    return jsonify({"msg": "User associated with this token is no longer valid. Please login again."}), 401


def issue_token(user: User) -> str:
    claims = {"role": user.role.value, "team": user.team.value}
    return create_access_token(identity=str(user.id), additional_claims=claims)


@bp.post("/register")
def register():
    payload = request.get_json(silent=True) or {}
    try:
        data = register_schema.load(payload)
    except ValidationError as exc:
        return jsonify({"msg": "Please provide name, email, password, and team", "errors": exc.messages}), 400

    if not PASSWORD_PATTERN.match(data["password"]):
        return jsonify({"msg": PASSWORD_RULE_MSG}), 400

    if User.query.filter(func.lower(User.email) == data["email"]).first():
        return jsonify({"msg": "Email already registered"}), 400

    # Self-registered accounts always start as plain users.
    user = User(
        name=data["name"],
        email=data["email"],
        team=TeamEnum(data["team"]),
        role=RoleEnum.user,
        active=True,
    )
    user.set_password(data["password"])
    db.session.add(user)
    db.session.commit()

    current_app.logger.info({"event": "user_registered", "user_id": user.id, "team": user.team.value})
    return jsonify(access_token=issue_token(user), user=user_schema.dump(user)), 201


@bp.post("/login")
def login():
    payload = request.get_json(silent=True)
    if not payload:
        payload = request.form.to_dict() if request.form else {}

    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""

    if not email or not password:
        return jsonify({"msg": "Email and password are required"}), 400

    u = User.query.filter(func.lower(User.email) == email).first()
    if not u or not u.check_password(password):
        return jsonify({"msg": "Invalid email or password"}), 401
    if not u.active:
        return jsonify({"msg": "Your account has been deactivated. Please contact admin."}), 401

    u.last_login_at = datetime.utcnow()
    db.session.commit()

    return jsonify(access_token=issue_token(u), user=user_schema.dump(u))


@bp.get("/me")
@jwt_required()
def me():
    return jsonify(user=user_schema.dump(current_user))


@bp.put("/profile")
@jwt_required()
def update_profile():
    payload = request.get_json(silent=True) or {}
    name = (payload.get("name") or "").strip()
    email = (payload.get("email") or "").strip().lower()

    if not name and not email:
        return jsonify({"msg": "Please provide name or email to update"}), 400

    if name and len(name) < 2:
        return jsonify({"msg": "Name must be at least 2 characters long"}), 400

    if email:
        try:
            _validate_email(email)
        except ValidationError as exc:
            return jsonify({"msg": exc.messages[0]}), 400

        existing = User.query.filter(func.lower(User.email) == email, User.id != current_user.id).first()
        if existing:
            return jsonify({"msg": "Email already in use by another user"}), 400

    user = current_user
    if name:
        user.name = name
    if email:
        user.email = email
    db.session.commit()

    return jsonify(msg="Profile updated successfully", user=user_schema.dump(user))


@bp.put("/change-password")
@jwt_required()
def change_password():
    payload = request.get_json(silent=True) or {}
    current_password = payload.get("current_password") or ""
    new_password = payload.get("new_password") or ""

    if not current_password or not new_password:
        return jsonify({"msg": "Please provide current and new password"}), 400

    if not PASSWORD_PATTERN.match(new_password):
        return jsonify({"msg": PASSWORD_RULE_MSG}), 400

    user = current_user
    if not user.check_password(current_password):
        return jsonify({"msg": "Current password is incorrect"}), 401

    user.set_password(new_password, changed=True)
    db.session.commit()

    return jsonify(msg="Password changed successfully", access_token=issue_token(user))
