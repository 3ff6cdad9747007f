"""
Contract Management Platform
Project context models.

Models:
    - Project:         contract/project record owned by the outer CRUD layer
    - ApprovalPolicy:  versioned approval-routing thresholds per project

Architecture:
    Project ──1:N──▶ Programme
    Project ──1:N──▶ ApprovalPolicy   (only the newest row is active)
    Project ──1:N──▶ ProgrammeApproval / ApprovalHierarchy
"""

from datetime import datetime, timezone

from contractflow.models import db


class Project(db.Model):
    """A contract under management. The core reads it; it never edits it."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    contract_type = db.Column(db.String(50), default="NEC4 ECC")
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    programmes = db.relationship(
        "Programme", backref="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "contract_type": self.contract_type,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"


class ApprovalPolicy(db.Model):
    """
    Approval routing thresholds for one project, versioned.

    Every change appends a new row with ``version + 1`` and deactivates the
    previous one, so approvals can record which policy routed them.
    Amounts are in the contract currency.
    """

    __tablename__ = "approval_policies"
    __table_args__ = (
        db.UniqueConstraint("project_id", "version", name="uq_approval_policy_version"),
        db.CheckConstraint(
            "t1_auto_max_cost >= 0 AND t1_auto_max_cost <= t2_auto_one_day_max_cost "
            "AND t2_auto_one_day_max_cost <= t3_project_manager_max_cost",
            name="ck_approval_policy_ordered",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    version = db.Column(db.Integer, nullable=False, default=1)
    t1_auto_max_cost = db.Column(
        db.Float, nullable=False,
        comment="T1: zero-delay changes below this cost are auto-approved",
    )
    t2_auto_one_day_max_cost = db.Column(
        db.Float, nullable=False,
        comment="T2: one-day, off-critical-path changes below this cost are auto-approved",
    )
    t3_project_manager_max_cost = db.Column(
        db.Float, nullable=False,
        comment="T3: at or above this cost the change goes to senior management",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.String(150), default="system")
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "version": self.version,
            "t1": self.t1_auto_max_cost,
            "t2": self.t2_auto_one_day_max_cost,
            "t3": self.t3_project_manager_max_cost,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ApprovalPolicy project={self.project_id} v{self.version}>"
