from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from sqlalchemy.exc import SQLAlchemyError

from models import TeamEnum
from production import EntryValidationError, build_monthly_report, resolve_report_range
from routes.auth import scoped_team

bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@bp.get("/monthly")
@jwt_required()
def monthly_report():
    args = request.args
    try:
        report_range = resolve_report_range(
            month=args.get("month"),
            year=args.get("year"),
            start_date=args.get("start_date"),
            end_date=args.get("end_date"),
        )
    except EntryValidationError as exc:
        return jsonify({"msg": exc.message, "errors": exc.errors}), 400

    team = scoped_team()
    team_param = (args.get("team") or "").strip().lower()
    if team is None and team_param:
        try:
            team = TeamEnum(team_param)
        except ValueError:
            return jsonify({"msg": "Invalid team. Must be video or portal"}), 400

    try:
        products = build_monthly_report(report_range.start, report_range.end, team=team)
    except SQLAlchemyError:
        current_app.logger.exception(
            "Failed to build monthly report for %s..%s", report_range.start, report_range.end
        )
        return jsonify({"msg": "Failed to build monthly report"}), 500

    return jsonify(
        {
            "month": report_range.month,
            "year": report_range.year,
            "start_date": report_range.start.isoformat(),
            "end_date": report_range.end.isoformat(),
            "team": team.value if team else None,
            "products": products,
        }
    )
