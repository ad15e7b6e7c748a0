import logging
import os
from typing import Optional, Tuple

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory
from flask import Flask, jsonify
from sqlalchemy import create_engine, func, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError, ProgrammingError

from config import Config, current_database_url
from extensions import db, migrate, jwt
from models import DailyEntry, Product, RoleEnum, StockDeduction, TeamEnum, User
from routes import (
    auth,
    daily_entries,
    products,
    reports,
    users,
)


if os.name != "nt":  # pragma: no cover - platform dependent import
    import fcntl  # type: ignore[import-not-found]
else:  # pragma: no cover - Windows fallback
    fcntl = None  # type: ignore[assignment]


def _ensure_database_exists(database_url: str | None) -> None:
    if not database_url:
        return

    url = make_url(database_url)
    backend = (url.get_backend_name() or "").lower()

    if backend.startswith("sqlite"):
        database_path = url.database
        if database_path and database_path not in {":memory:", ""}:
            directory = os.path.dirname(os.path.abspath(database_path))
            if directory:
                os.makedirs(directory, exist_ok=True)
        return

    database_name = url.database
    if not database_name:
        return

    engine = create_engine(url)
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return
    except OperationalError:
        pass
    finally:
        engine.dispose()

    if not backend.startswith("postgresql"):
        return

    admin_url = url.set(database="postgres")
    admin_engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")
    try:
        with admin_engine.connect() as connection:
            exists = connection.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": database_name},
            ).scalar()
            if not exists:
                connection.execute(text(f'CREATE DATABASE "{database_name}"'))
    finally:
        admin_engine.dispose()


def _run_database_migrations(app: Flask) -> None:
    """Apply Alembic migrations if the schema is not up-to-date."""

    database_uri = app.config.get("SQLALCHEMY_DATABASE_URI")
    if not database_uri:
        return

    if database_uri.startswith("sqlite") and ":memory:" in database_uri:
        return

    migrations_dir = os.path.join(app.root_path, "migrations")
    alembic_ini = os.path.join(migrations_dir, "alembic.ini")
    if not os.path.exists(alembic_ini):
        return

    config = AlembicConfig(alembic_ini)
    config.set_main_option("script_location", migrations_dir)
    config.set_main_option("sqlalchemy.url", database_uri)

    script = ScriptDirectory.from_config(config)
    head_revision = script.get_current_head()
    if not head_revision:
        return

    def _current_revision() -> str | None:
        try:
            with db.engine.connect() as connection:
                return connection.execute(text("SELECT version_num FROM alembic_version")).scalar()
        except (OperationalError, ProgrammingError):
            return None

    with app.app_context():
        if _current_revision() == head_revision:
            return

        lock_path = os.path.join(app.instance_path, "alembic.lock")
        os.makedirs(app.instance_path, exist_ok=True)
        lock_file = open(lock_path, "w")
        try:
            if fcntl is not None:
                fcntl.flock(lock_file, fcntl.LOCK_EX)

            if _current_revision() == head_revision:
                return

            app.logger.info("Applying database migrations…")
            try:
                command.upgrade(config, "head")
            except Exception:
                if _current_revision() != head_revision:
                    raise
        finally:
            if fcntl is not None:
                fcntl.flock(lock_file, fcntl.LOCK_UN)
            lock_file.close()


def _configure_logging(app: Flask) -> None:
    level = logging.getLevelName(app.config.get("LOG_LEVEL", "INFO"))
    if isinstance(level, int):
        app.logger.setLevel(level)


def create_app():
    app = Flask(__name__)
    app.config.from_object(Config)
    database_url = current_database_url()
    _ensure_database_exists(database_url)
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    _configure_logging(app)
    db.init_app(app)
    migrate.init_app(app, db)
    _run_database_migrations(app)
    jwt.init_app(app)

    jwt.user_lookup_loader(auth.load_token_user)
    jwt.user_lookup_error_loader(auth.token_user_error)

    app.register_blueprint(auth.bp)
    app.register_blueprint(users.bp)
    app.register_blueprint(products.bp)
    app.register_blueprint(daily_entries.bp)
    app.register_blueprint(reports.bp)

    @app.get("/api/health")
    def health(): return jsonify({"ok": True})

    return app


app = create_app()


def _normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def _ensure_super_admin_user(
    flask_app=None,
    *,
    email: Optional[str] = None,
    password: Optional[str] = None,
    name: Optional[str] = None,
    team: Optional[str] = None,
    ensure_if_missing: bool = True,
    force_reset: bool = False,
) -> Tuple[str, str]:
    """Ensure a super admin exists and optionally reset its password.

    Returns a tuple of (status, normalized_email) where status is one of
    ``{"created", "reset", "updated", "skipped"}``.
    """

    target_app = flask_app or globals().get("app")
    normalized_email = _normalize_email(email or os.getenv("SUPERADMIN_EMAIL"))
    password = password or os.getenv("SUPERADMIN_PASSWORD")
    target_name = (name or os.getenv("SUPERADMIN_NAME") or "").strip() or None
    target_team = TeamEnum(team or os.getenv("SUPERADMIN_TEAM") or TeamEnum.video.value)

    if target_app is None or not normalized_email:
        return "skipped", normalized_email

    with target_app.app_context():
        try:
            user = User.query.filter(func.lower(User.email) == normalized_email).first()
        except (OperationalError, ProgrammingError):
            # Tables might not be ready yet (e.g. before migrations run)
            return "skipped", normalized_email

        if user:
            status = "skipped"
            if user.role != RoleEnum.super_admin:
                user.role = RoleEnum.super_admin
                status = "updated"
            if not user.active:
                user.active = True
                status = "updated"
            if target_name and user.name != target_name:
                user.name = target_name
                status = "updated"
            if force_reset and password:
                user.set_password(password, changed=True)
                status = "reset"

            if status != "skipped":
                db.session.commit()
            return status, normalized_email

        if not ensure_if_missing or not password:
            return "skipped", normalized_email

        user = User(
            name=target_name or "Super Admin",
            email=normalized_email,
            role=RoleEnum.super_admin,
            team=target_team,
            active=True,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return "created", normalized_email


def _bootstrap_super_admin_user(flask_app=None):
    status, normalized_email = _ensure_super_admin_user(
        flask_app=flask_app,
        force_reset=os.getenv("RUN_SEED_SUPERADMIN") == "1",
    )
    if status == "created":
        print(f"✅ Super admin created: {normalized_email}")
    elif status == "reset":
        print(f"✅ Super admin password reset: {normalized_email}")
    elif status == "updated":
        print(f"✅ Super admin role updated: {normalized_email}")


# Call the hook at startup (idempotent, no-op unless SUPERADMIN_EMAIL is set)
_bootstrap_super_admin_user(flask_app=app)


# ---- CLI: seed or reset the super admin ----
@app.cli.command("seed-superadmin")
@click.option("--email", required=True, help="Super admin email")
@click.option("--password", required=True, help="Super admin password")
@click.option("--name", default="Super Admin", help="Super admin display name")
@click.option(
    "--team",
    type=click.Choice([team.value for team in TeamEnum]),
    default=TeamEnum.video.value,
    help="Team recorded on the account",
)
def seed_superadmin(email, password, name, team):
    """Create or reset the super admin user."""

    status, normalized_email = _ensure_super_admin_user(
        flask_app=app,
        email=email,
        password=password,
        name=name,
        team=team,
        ensure_if_missing=True,
        force_reset=True,
    )

    if status == "created":
        click.echo(f"✅ Super admin created: {normalized_email}")
    elif status == "reset":
        click.echo(f"✅ Super admin password reset: {normalized_email}")
    elif status == "updated":
        click.echo(f"✅ Super admin role updated: {normalized_email}")
    else:
        click.echo(f"ℹ️ Super admin already up-to-date: {normalized_email}")


@app.cli.command("promote-user")
@click.argument("email")
@click.option(
    "--role",
    type=click.Choice([role.value for role in RoleEnum]),
    default=RoleEnum.super_admin.value,
    help="Role to assign",
)
def promote_user(email, role):
    """Change the role of an existing user."""

    with app.app_context():
        user = User.query.filter(func.lower(User.email) == _normalize_email(email)).first()
        if user is None:
            raise click.ClickException(f'User with email "{email}" not found')

        old_role = user.role.value
        user.role = RoleEnum(role)
        db.session.commit()
        click.echo(f"✅ {user.email}: {old_role} -> {user.role.value}")
        click.echo("ℹ️ The user must log in again for the change to reach their token.")


@app.cli.command("reset-password")
@click.argument("email")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
def reset_password(email, password):
    """Set a new password for an existing user."""

    if not auth.PASSWORD_PATTERN.match(password):
        raise click.BadParameter(auth.PASSWORD_RULE_MSG, param_hint="--password")

    with app.app_context():
        user = User.query.filter(func.lower(User.email) == _normalize_email(email)).first()
        if user is None:
            raise click.ClickException(f'User with email "{email}" not found')

        user.set_password(password, changed=True)
        db.session.commit()
        click.echo(f"✅ Password reset for {user.email}")


@app.cli.command("list-users")
def list_users():
    """Print every account with its role, team and status."""

    with app.app_context():
        for user in User.query.order_by(User.email.asc()).all():
            state = "active" if user.active else "inactive"
            click.echo(f"{user.email}\t{user.role.value}\t{user.team.value}\t{state}")


@app.cli.command("stock-audit")
@click.option("--product-id", type=int, help="Limit the audit to one product")
def stock_audit(product_id):
    """Compare each product's stock with its deduction history and entries."""

    with app.app_context():
        query = Product.query.order_by(Product.id.asc())
        if product_id is not None:
            query = query.filter(Product.id == product_id)

        for product in query.all():
            applied = (
                db.session.query(func.coalesce(func.sum(StockDeduction.applied_quantity), 0))
                .filter(StockDeduction.product_id == product.id)
                .scalar()
            )
            produced = (
                db.session.query(
                    func.coalesce(
                        func.sum(
                            DailyEntry.morning_count + DailyEntry.evening_count + DailyEntry.late_night_count
                        ),
                        0,
                    )
                )
                .filter(DailyEntry.product_id == product.id)
                .scalar()
            )
            click.echo(
                f"{product.id}\t{product.name}\tremaining={product.remaining_stock}"
                f"\tapplied_deductions={applied}\trecorded_production={produced}"
            )


if __name__ == "__main__":
    app.run(debug=True, port=int(os.getenv("PORT", 5000)))
