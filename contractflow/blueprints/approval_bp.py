"""
Approval Blueprint — change requests, decisions, registry and policy.

Routes:
  POST   /projects/<project_id>/approvals                 – submit a change
  GET    /projects/<project_id>/approvals                 – all requests (newest first)
  GET    /projects/<project_id>/approvals/pending         – pending requests (oldest first)
  GET    /projects/<project_id>/approvals/stats           – statistics
  GET    /approvals/<approval_id>                         – detail
  POST   /approvals/<approval_id>/decision                – approve / reject
  POST   /approvals/<approval_id>/authorized-decision     – decide via the registry
  POST   /approvals/<approval_id>/review                  – add a review comment
  GET    /approvals/<approval_id>/audit-trail             – audit trail (newest first)
  GET    /projects/<project_id>/approval-hierarchy        – registry entries
  POST   /projects/<project_id>/approval-hierarchy        – register an approver
  DELETE /approval-hierarchy/<entry_id>                   – revoke an approver
  GET    /projects/<project_id>/approval-policy           – thresholds in force
  PUT    /projects/<project_id>/approval-policy           – new threshold version
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from contractflow.blueprints import current_user, register_error_handlers, request_meta
from contractflow.core.exceptions import NotFoundError
from contractflow.models import db
from contractflow.models.approval import APPROVAL_STATUSES
from contractflow.models.project import Project
from contractflow.services import approval_policy
from contractflow.services.approval_hierarchy import ApprovalHierarchyRegistry
from contractflow.services.approval_workflow import ApprovalWorkflowService, Decision
from contractflow.services.impact_analyzer import ImpactAnalyzer
from contractflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

approval_bp = Blueprint("approval_bp", __name__, url_prefix="/api/v1")
register_error_handlers(approval_bp)


# ── helpers ──────────────────────────────────────────────────────────────

def _service():
    return ApprovalWorkflowService(
        session=db.session,
        event_bus=current_app.extensions["event_bus"],
        analyzer=ImpactAnalyzer.from_config(current_app.config),
    )


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def _decision_from(data):
    """Build a Decision from a request body, or return an error tuple."""
    if not isinstance(data.get("approved"), bool):
        return None, api_error(E.VALIDATION_REQUIRED, "approved (boolean) is required")
    approved_by = (data.get("approved_by") or current_user("")).strip()
    if not approved_by:
        return None, api_error(E.VALIDATION_REQUIRED, "approved_by is required")
    modified = data.get("modified_impact")
    if modified is not None and not isinstance(modified, dict):
        return None, api_error(E.VALIDATION_INVALID, "modified_impact must be an object")
    return Decision(
        approved=data["approved"],
        approved_by=approved_by,
        reason=data.get("reason"),
        modified_impact=modified,
    ), None


def _require_project(project_id):
    if db.session.get(Project, project_id) is None:
        raise NotFoundError(resource="Project", resource_id=project_id)


# ═════════════════════════════════════════════════════════════════════════════
# Change requests
# ═════════════════════════════════════════════════════════════════════════════

@approval_bp.route("/projects/<int:project_id>/approvals", methods=["POST"])
def submit_change(project_id):
    """Submit a change for impact analysis and routing.

    Body: { change_type, description, nec4_clause?, title?, requested_by? }
    """
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "JSON object body required")
    change_type = data.get("change_type")
    if not change_type:
        return api_error(E.VALIDATION_REQUIRED, "change_type is required")
    data.setdefault("requested_by", current_user())

    approval = _service().submit(project_id, change_type, data, request_meta=request_meta())
    return jsonify(approval.to_dict()), 201


@approval_bp.route("/projects/<int:project_id>/approvals", methods=["GET"])
def list_approvals(project_id):
    _require_project(project_id)
    status = request.args.get("status")
    if status and status not in APPROVAL_STATUSES:
        return api_error(E.VALIDATION_INVALID, f"status must be one of {sorted(APPROVAL_STATUSES)}")
    items = _service().list_approvals(project_id, status=status)
    return jsonify([a.to_dict() for a in items])


@approval_bp.route("/projects/<int:project_id>/approvals/pending", methods=["GET"])
def list_pending(project_id):
    _require_project(project_id)
    return jsonify([a.to_dict() for a in _service().get_pending(project_id)])


@approval_bp.route("/projects/<int:project_id>/approvals/stats", methods=["GET"])
def approval_stats(project_id):
    _require_project(project_id)
    return jsonify(_service().get_stats(project_id))


@approval_bp.route("/approvals/<approval_id>", methods=["GET"])
def get_approval(approval_id):
    return jsonify(_service().get_approval(approval_id).to_dict())


@approval_bp.route("/approvals/<approval_id>/decision", methods=["POST"])
def decide(approval_id):
    """Body: { approved, approved_by, reason?, modified_impact? }"""
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "JSON object body required")
    decision, err = _decision_from(data)
    if err:
        return err
    approval = _service().decide(approval_id, decision, request_meta=request_meta())
    return jsonify(approval.to_dict())


@approval_bp.route("/approvals/<approval_id>/authorized-decision", methods=["POST"])
def decide_authorized(approval_id):
    """Body: { approved, approved_by, authorized_by, authorization_level, notes?, reason?, modified_impact? }"""
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "JSON object body required")
    authorized_by = (data.get("authorized_by") or "").strip()
    level = data.get("authorization_level")
    if not authorized_by or not level:
        return api_error(E.VALIDATION_REQUIRED, "authorized_by and authorization_level are required")
    data.setdefault("approved_by", authorized_by)
    decision, err = _decision_from(data)
    if err:
        return err
    approval = _service().decide_authorized(
        approval_id, decision, authorized_by, level,
        notes=data.get("notes"), request_meta=request_meta(),
    )
    return jsonify(approval.to_dict())


@approval_bp.route("/approvals/<approval_id>/review", methods=["POST"])
def review(approval_id):
    """Body: { reviewer?, comments? }"""
    data = _json_body() or {}
    entry = _service().review(
        approval_id, data.get("reviewer") or current_user(""),
        comments=data.get("comments") or "", request_meta=request_meta(),
    )
    return jsonify(entry.to_dict()), 201


@approval_bp.route("/approvals/<approval_id>/audit-trail", methods=["GET"])
def audit_trail(approval_id):
    return jsonify([e.to_dict() for e in _service().get_audit_trail(approval_id)])


# ═════════════════════════════════════════════════════════════════════════════
# Authorization registry
# ═════════════════════════════════════════════════════════════════════════════

@approval_bp.route("/projects/<int:project_id>/approval-hierarchy", methods=["GET"])
def list_hierarchy(project_id):
    _require_project(project_id)
    include_inactive = request.args.get("include_inactive") == "true"
    entries = ApprovalHierarchyRegistry(db.session).list_entries(
        project_id, include_inactive=include_inactive,
    )
    return jsonify([e.to_dict() for e in entries])


@approval_bp.route("/projects/<int:project_id>/approval-hierarchy", methods=["POST"])
def register_approver(project_id):
    """Body: { user_id, authorization_level, max_approval_value, can_approve_types: [...] }"""
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "JSON object body required")
    entry = ApprovalHierarchyRegistry(db.session).register(
        project_id,
        data.get("user_id"),
        data.get("authorization_level"),
        data.get("max_approval_value"),
        data.get("can_approve_types"),
    )
    return jsonify(entry.to_dict()), 201


@approval_bp.route("/approval-hierarchy/<int:entry_id>", methods=["DELETE"])
def revoke_approver(entry_id):
    entry = ApprovalHierarchyRegistry(db.session).revoke(entry_id)
    return jsonify(entry.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Threshold policy
# ═════════════════════════════════════════════════════════════════════════════

@approval_bp.route("/projects/<int:project_id>/approval-policy", methods=["GET"])
def get_policy(project_id):
    _require_project(project_id)
    return jsonify(approval_policy.get_thresholds(project_id).to_dict())


@approval_bp.route("/projects/<int:project_id>/approval-policy", methods=["PUT"])
def set_policy(project_id):
    """Body: { t1, t2, t3 }. Appends a new policy version."""
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "JSON object body required")
    missing = [k for k in ("t1", "t2", "t3") if data.get(k) is None]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"Missing thresholds: {', '.join(missing)}")
    policy = approval_policy.set_policy(
        project_id, data["t1"], data["t2"], data["t3"], created_by=current_user(),
    )
    return jsonify(policy.to_dict())
