"""
Contract Management Platform
Programme (schedule) domain models — the activity graph store.

Models:
    - Programme:             one schedule import context for a project
    - Activity:              a task row from the imported schedule
    - ActivityRelationship:  predecessor → successor dependency edge
    - ProgrammeMilestone:    milestone-flagged activity with tracking status

Architecture:
    Project ──1:N──▶ Programme ──1:N──▶ Activity
    Activity ──1:N──▶ Activity               (parent/child tree via parent_id)
    Activity ──N:M──▶ Activity               (via ActivityRelationship)
    Activity ──1:1──▶ ProgrammeMilestone

Invariants:
    - external_id is unique within a programme (the re-import upsert key)
    - both ends of a relationship belong to the same programme
    - parent/child is a tree: a parent always has a strictly lower outline level
"""

from datetime import datetime, timezone

from contractflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

PROGRAMME_STATUSES = {"draft", "submitted", "accepted", "rejected"}

PROGRAMME_FILE_TYPES = {"xml", "msp", "xer"}

RELATIONSHIP_TYPES = {"FS", "SS", "FF", "SF"}

RELATIONSHIP_TYPE_LABELS = {
    "FS": "finish_to_start",
    "SS": "start_to_start",
    "FF": "finish_to_finish",
    "SF": "start_to_finish",
}

MILESTONE_STATUSES = {"Not Started", "At Risk", "On Track", "Delayed", "Completed"}


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# 1. Programme
# ═════════════════════════════════════════════════════════════════════════════


class Programme(db.Model):
    """One schedule import context. Re-imports update it in place."""

    __tablename__ = "programmes"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    version = db.Column(db.String(30), default="1")
    status = db.Column(
        db.String(20), nullable=False, default="draft",
        comment="draft | submitted | accepted | rejected",
    )
    file_type = db.Column(db.String(10), nullable=True, comment="xml | msp | xer")
    planned_completion_date = db.Column(
        db.DateTime(timezone=True), nullable=True,
        comment="Project FinishDate from the most recent successful import",
    )
    last_imported_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    activities = db.relationship(
        "Activity", backref="programme", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    milestones = db.relationship(
        "ProgrammeMilestone", backref="programme", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "version": self.version,
            "status": self.status,
            "file_type": self.file_type,
            "planned_completion_date": _iso(self.planned_completion_date),
            "last_imported_at": _iso(self.last_imported_at),
            "activity_count": self.activities.count(),
            "milestone_count": self.milestones.count(),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Programme {self.id}: {self.name} v{self.version}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Activity
# ═════════════════════════════════════════════════════════════════════════════


class Activity(db.Model):
    """A task imported from the schedule file (leaf or summary)."""

    __tablename__ = "activities"
    __table_args__ = (
        db.UniqueConstraint("programme_id", "external_id", name="uq_activity_external_id"),
        db.Index("ix_activity_programme_critical", "programme_id", "is_critical"),
    )

    id = db.Column(db.Integer, primary_key=True)
    programme_id = db.Column(
        db.Integer, db.ForeignKey("programmes.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    external_id = db.Column(
        db.String(50), nullable=False,
        comment="Task ID from the source file; unique within the programme",
    )
    name = db.Column(db.String(500), nullable=False, default="")
    description = db.Column(db.Text, default="")
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)
    duration = db.Column(db.Integer, nullable=False, default=0, comment="Working days")
    percent_complete = db.Column(db.Integer, nullable=False, default=0)
    is_critical = db.Column(db.Boolean, nullable=False, default=False)
    total_float = db.Column(db.Integer, nullable=True, comment="Working days, trusted from file")
    wbs_code = db.Column(db.String(100), default="")
    outline_number = db.Column(db.String(100), nullable=True)
    outline_level = db.Column(db.Integer, nullable=True)
    is_summary = db.Column(db.Boolean, nullable=False, default=False)
    milestone = db.Column(db.Boolean, nullable=False, default=False)
    parent_id = db.Column(
        db.Integer, db.ForeignKey("activities.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    children = db.relationship(
        "Activity",
        backref=db.backref("parent", remote_side=[id]),
        lazy="dynamic",
    )
    predecessors = db.relationship(
        "ActivityRelationship",
        foreign_keys="ActivityRelationship.successor_id",
        backref="successor",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )
    successors = db.relationship(
        "ActivityRelationship",
        foreign_keys="ActivityRelationship.predecessor_id",
        backref="predecessor",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_dependencies=False):
        result = {
            "id": self.id,
            "programme_id": self.programme_id,
            "external_id": self.external_id,
            "name": self.name,
            "description": self.description,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "duration": self.duration,
            "percent_complete": self.percent_complete,
            "is_critical": self.is_critical,
            "total_float": self.total_float,
            "wbs_code": self.wbs_code,
            "outline_number": self.outline_number,
            "outline_level": self.outline_level,
            "is_summary": self.is_summary,
            "milestone": self.milestone,
            "parent_id": self.parent_id,
        }
        if include_dependencies:
            result["predecessor_ids"] = [r.predecessor_id for r in self.predecessors]
            result["successor_ids"] = [r.successor_id for r in self.successors]
        return result

    def __repr__(self):
        return f"<Activity {self.id}: [{self.external_id}] {self.name[:40]}>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. ActivityRelationship
# ═════════════════════════════════════════════════════════════════════════════


class ActivityRelationship(db.Model):
    """
    Predecessor → Successor dependency between activities of one programme.
    Types: FS (default), SS, FF, SF. Lag is signed, in working days.
    """

    __tablename__ = "activity_relationships"
    __table_args__ = (
        db.UniqueConstraint(
            "predecessor_id", "successor_id", "type",
            name="uq_activity_relationship",
        ),
        db.CheckConstraint(
            "predecessor_id != successor_id",
            name="ck_activity_rel_no_self_loop",
        ),
        db.CheckConstraint(
            "type IN ('FS','SS','FF','SF')",
            name="ck_activity_rel_type",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    programme_id = db.Column(
        db.Integer, db.ForeignKey("programmes.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    predecessor_id = db.Column(
        db.Integer, db.ForeignKey("activities.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    successor_id = db.Column(
        db.Integer, db.ForeignKey("activities.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    type = db.Column(db.String(2), nullable=False, default="FS")
    lag = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {
            "id": self.id,
            "programme_id": self.programme_id,
            "predecessor_id": self.predecessor_id,
            "successor_id": self.successor_id,
            "type": self.type,
            "type_label": RELATIONSHIP_TYPE_LABELS.get(self.type),
            "lag": self.lag,
        }

    def __repr__(self):
        return f"<ActivityRelationship {self.predecessor_id} -{self.type}→ {self.successor_id}>"


# ═════════════════════════════════════════════════════════════════════════════
# 4. ProgrammeMilestone
# ═════════════════════════════════════════════════════════════════════════════


class ProgrammeMilestone(db.Model):
    """
    Milestone tracking row for a milestone-flagged activity.

    is_key_date is curated by users and survives re-imports; the other
    fields are refreshed from the file on every import.
    """

    __tablename__ = "programme_milestones"
    __table_args__ = (
        db.UniqueConstraint("activity_id", name="uq_milestone_activity"),
        db.CheckConstraint(
            "status IN ('Not Started','At Risk','On Track','Delayed','Completed')",
            name="ck_milestone_status",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    programme_id = db.Column(
        db.Integer, db.ForeignKey("programmes.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    activity_id = db.Column(
        db.Integer, db.ForeignKey("activities.id", ondelete="CASCADE"),
        nullable=False,
    )
    name = db.Column(db.String(500), nullable=False)
    planned_date = db.Column(db.DateTime(timezone=True), nullable=True)
    forecast_date = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_date = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="Not Started")
    is_key_date = db.Column(db.Boolean, nullable=False, default=False)
    affects_completion_date = db.Column(db.Boolean, nullable=False, default=False)
    description = db.Column(db.Text, default="")

    activity = db.relationship("Activity", foreign_keys=[activity_id])

    def to_dict(self):
        return {
            "id": self.id,
            "programme_id": self.programme_id,
            "project_id": self.project_id,
            "activity_id": self.activity_id,
            "name": self.name,
            "planned_date": _iso(self.planned_date),
            "forecast_date": _iso(self.forecast_date),
            "actual_date": _iso(self.actual_date),
            "status": self.status,
            "is_key_date": self.is_key_date,
            "affects_completion_date": self.affects_completion_date,
            "description": self.description,
        }

    def __repr__(self):
        return f"<ProgrammeMilestone {self.id}: {self.name[:40]} ({self.status})>"
