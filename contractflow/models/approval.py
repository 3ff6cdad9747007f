"""
Contract Management Platform
Change-approval domain models.

Models:
    - ProgrammeApproval:    one proposed schedule/cost change and its decision
    - ApprovalHierarchy:    per-project authorization registry entry
    - ApprovalAuditTrail:   immutable, append-only log of approval actions

Lifecycle:
    ProgrammeApproval:  pending → approved | rejected     (terminal)
                        auto_approved                     (terminal on creation)
"""

import uuid
from datetime import datetime, timezone

from contractflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

CHANGE_TYPES = {
    "compensation_event",
    "early_warning",
    "programme_change",
    "budget_change",
    "resource_change",
    "contract_modification",
    "procurement_change",
}

APPROVAL_STATUSES = {"pending", "approved", "rejected", "auto_approved"}

TERMINAL_STATUSES = {"approved", "rejected", "auto_approved"}

APPROVAL_TIERS = {"auto", "project_manager", "senior_management"}

AUTHORIZATION_LEVELS = ("project_manager", "senior_manager", "director", "board")

AUDIT_ACTIONS = {"created", "reviewed", "approved", "rejected", "modified"}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

APPROVAL_TRANSITIONS = {
    "pending":       ["approved", "rejected"],
    "approved":      [],
    "rejected":      [],
    "auto_approved": [],
}


def validate_approval_transition(old_status, new_status):
    """Return True if ProgrammeApproval status transition is valid."""
    return new_status in APPROVAL_TRANSITIONS.get(old_status, [])


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# 1. ProgrammeApproval
# ═════════════════════════════════════════════════════════════════════════════


class ProgrammeApproval(db.Model):
    """A change request routed through the approval state machine."""

    __tablename__ = "programme_approvals"
    __table_args__ = (
        db.Index("ix_approval_project_status", "project_id", "status"),
        db.CheckConstraint(
            "status IN ('pending','approved','rejected','auto_approved')",
            name="ck_programme_approval_status",
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    change_type = db.Column(db.String(40), nullable=False)
    title = db.Column(db.String(200), nullable=False, default="Schedule Change")
    description = db.Column(db.Text, default="")

    # Impact
    impact_days = db.Column(db.Integer, nullable=False, default=0)
    impact_cost = db.Column(db.Float, nullable=False, default=0)
    affects_critical_path = db.Column(db.Boolean, nullable=False, default=False)
    confidence = db.Column(db.Float, nullable=False, default=0)

    # Compliance
    nec4_clause = db.Column(db.String(50), default="")
    compliance_valid = db.Column(db.Boolean, nullable=False, default=False)
    compliance_reason = db.Column(db.String(200), default="")

    # Routing
    required_tier = db.Column(
        db.String(30), nullable=False,
        comment="auto | project_manager | senior_management",
    )
    policy_version = db.Column(db.Integer, nullable=False, default=0)
    has_qualified_approver = db.Column(
        db.Boolean, nullable=False, default=True,
        comment="False when the registry resolved no approver at submission",
    )

    # State
    status = db.Column(db.String(20), nullable=False, default="pending")
    auto_approved = db.Column(db.Boolean, nullable=False, default=False)
    requested_by = db.Column(db.String(150), default="system")
    requested_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    approved_by = db.Column(db.String(150), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_reason = db.Column(db.Text, nullable=True)
    modified_impact = db.Column(db.JSON, nullable=True)

    # Authorization
    authorized_by = db.Column(db.String(150), nullable=True)
    authorization_level = db.Column(db.String(30), nullable=True)
    authorization_notes = db.Column(db.Text, nullable=True)

    audit_entries = db.relationship(
        "ApprovalAuditTrail", backref="approval", lazy="dynamic",
        order_by="ApprovalAuditTrail.sequence",
    )

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "change_type": self.change_type,
            "title": self.title,
            "description": self.description,
            "impact": {
                "delay_days": self.impact_days,
                "cost": self.impact_cost,
                "affects_critical_path": self.affects_critical_path,
                "confidence": self.confidence,
            },
            "compliance": {
                "is_valid": self.compliance_valid,
                "clause_reference": self.nec4_clause or "",
                "reason": self.compliance_reason or "",
            },
            "required_tier": self.required_tier,
            "policy_version": self.policy_version,
            "has_qualified_approver": self.has_qualified_approver,
            "status": self.status,
            "auto_approved": self.auto_approved,
            "requested_by": self.requested_by,
            "requested_at": _iso(self.requested_at),
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "rejected_reason": self.rejected_reason,
            "modified_impact": self.modified_impact,
            "authorized_by": self.authorized_by,
            "authorization_level": self.authorization_level,
            "authorization_notes": self.authorization_notes,
        }

    def __repr__(self):
        return f"<ProgrammeApproval {self.id}: {self.change_type} ({self.status})>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. ApprovalHierarchy
# ═════════════════════════════════════════════════════════════════════════════


class ApprovalHierarchy(db.Model):
    """
    Registry entry: who may approve which change types up to what value.
    Several active rows per user are allowed (different scopes).
    Revocation is soft so history is preserved.
    """

    __tablename__ = "approval_hierarchy"
    __table_args__ = (
        db.Index("ix_hierarchy_project_user", "project_id", "user_id"),
        db.CheckConstraint(
            "authorization_level IN ('project_manager','senior_manager','director','board')",
            name="ck_hierarchy_level",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(db.String(150), nullable=False)
    authorization_level = db.Column(db.String(30), nullable=False)
    max_approval_value = db.Column(db.Float, nullable=False, default=0)
    can_approve_types = db.Column(db.JSON, nullable=False, default=list)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def allows(self, change_type, value):
        """True if this entry covers ``change_type`` at ``value``."""
        return (
            self.is_active
            and change_type in (self.can_approve_types or [])
            and (self.max_approval_value or 0) >= value
        )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "authorization_level": self.authorization_level,
            "max_approval_value": self.max_approval_value,
            "can_approve_types": sorted(self.can_approve_types or []),
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "revoked_at": _iso(self.revoked_at),
        }

    def __repr__(self):
        return f"<ApprovalHierarchy {self.user_id}@{self.project_id} {self.authorization_level}>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. ApprovalAuditTrail
# ═════════════════════════════════════════════════════════════════════════════


class ApprovalAuditTrail(db.Model):
    """
    Immutable audit row. One per action; ``sequence`` totally orders the
    rows of one approval and the unique constraint rejects a second writer
    racing for the same slot.
    """

    __tablename__ = "approval_audit_trail"
    __table_args__ = (
        db.UniqueConstraint("approval_id", "sequence", name="uq_audit_approval_sequence"),
        db.CheckConstraint(
            "action IN ('created','reviewed','approved','rejected','modified')",
            name="ck_audit_action",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    approval_id = db.Column(
        db.String(36), db.ForeignKey("programme_approvals.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    sequence = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(20), nullable=False)
    performed_by = db.Column(db.String(150), nullable=False, default="system")
    previous_status = db.Column(db.String(20), nullable=True)
    new_status = db.Column(db.String(20), nullable=True)
    comments = db.Column(db.Text, nullable=True)
    changes = db.Column(db.JSON, nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(300), nullable=True)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "approval_id": self.approval_id,
            "sequence": self.sequence,
            "action": self.action,
            "performed_by": self.performed_by,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "comments": self.comments,
            "changes": self.changes or {},
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "timestamp": _iso(self.timestamp),
        }

    def __repr__(self):
        return f"<ApprovalAuditTrail {self.approval_id}#{self.sequence}: {self.action}>"
