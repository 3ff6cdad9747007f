"""
Programme Blueprint — schedule import and activity graph queries.

Routes:
  POST   /projects/<project_id>/programmes              – create programme shell
  GET    /programmes/<programme_id>                     – programme detail
  POST   /programmes/<programme_id>/import              – import a schedule file
  GET    /programmes/<programme_id>/activities          – activities (?parent_id, ?critical=true)
  GET    /activities/<activity_id>/relationships        – predecessors + successors
  GET    /programmes/<programme_id>/milestones          – milestones (?key_dates=true)
  PUT    /milestones/<milestone_id>                     – curate a milestone
  GET    /programmes/<programme_id>/network-summary     – logic-quality summary
"""

import logging
import os

from flask import Blueprint, current_app, jsonify, request

from contractflow.blueprints import register_error_handlers
from contractflow.services import activity_graph
from contractflow.services.schedule_parser import ScheduleParser, parse_programme_file
from contractflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

programme_bp = Blueprint("programme_bp", __name__, url_prefix="/api/v1")
register_error_handlers(programme_bp)


def _extract_upload():
    """Return (content_bytes, file_type) from a multipart upload or raw body."""
    file_type = request.args.get("file_type") or request.form.get("file_type")
    if request.files:
        upload = request.files.get("file")
        if upload:
            if not file_type and upload.filename:
                file_type = os.path.splitext(upload.filename)[1]
            return upload.read(), file_type
    if request.data:
        return request.data, file_type or "xml"
    return None, file_type


# ═════════════════════════════════════════════════════════════════════════════
# Programmes
# ═════════════════════════════════════════════════════════════════════════════

@programme_bp.route("/projects/<int:project_id>/programmes", methods=["POST"])
def create_programme(project_id):
    """Create an empty Programme to import into.

    Body: { name, version?, status? }
    """
    data = request.get_json(silent=True) or {}
    programme = activity_graph.create_programme(project_id, data)
    return jsonify(programme.to_dict()), 201


@programme_bp.route("/programmes/<int:programme_id>", methods=["GET"])
def get_programme(programme_id):
    return jsonify(activity_graph.get_programme(programme_id).to_dict())


@programme_bp.route("/programmes/<int:programme_id>/import", methods=["POST"])
def import_programme(programme_id):
    """Parse a schedule file into the programme's activity graph.

    Multipart field ``file`` or raw body; ``file_type`` from the query/form
    or the upload's extension. Failures return 422 with the parse result.
    """
    activity_graph.get_programme(programme_id)
    content, file_type = _extract_upload()
    if not content:
        return api_error(E.VALIDATION_REQUIRED, "A schedule file is required")

    parser = ScheduleParser.from_config(current_app.config)
    result = parse_programme_file(content, file_type, programme_id, parser=parser)
    if not result.success:
        return api_error(E.PARSE_FAILED, result.error_message or "Import failed",
                         details=result.to_dict())
    return jsonify(result.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════════
# Activity graph
# ═════════════════════════════════════════════════════════════════════════════

@programme_bp.route("/programmes/<int:programme_id>/activities", methods=["GET"])
def list_activities(programme_id):
    parent_id = request.args.get("parent_id", type=int)
    critical_only = request.args.get("critical") == "true"
    include_deps = request.args.get("include_dependencies") == "true"
    items = activity_graph.list_activities(programme_id, parent_id=parent_id,
                                           critical_only=critical_only)
    return jsonify([a.to_dict(include_dependencies=include_deps) for a in items])


@programme_bp.route("/activities/<int:activity_id>/relationships", methods=["GET"])
def activity_relationships(activity_id):
    return jsonify(activity_graph.get_relationships(activity_id))


@programme_bp.route("/programmes/<int:programme_id>/milestones", methods=["GET"])
def list_milestones(programme_id):
    key_only = request.args.get("key_dates") == "true"
    items = activity_graph.list_milestones(programme_id, key_dates_only=key_only)
    return jsonify([m.to_dict() for m in items])


@programme_bp.route("/milestones/<int:milestone_id>", methods=["PUT"])
def update_milestone(milestone_id):
    """Body: { is_key_date?, forecast_date?, actual_date?, status?, description? }"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "JSON object body required")
    milestone = activity_graph.update_milestone(milestone_id, data)
    return jsonify(milestone.to_dict())


@programme_bp.route("/programmes/<int:programme_id>/network-summary", methods=["GET"])
def network_summary(programme_id):
    return jsonify(activity_graph.network_summary(programme_id))
