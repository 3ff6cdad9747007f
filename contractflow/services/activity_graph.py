"""
Activity Graph Store — read side and milestone curation.

Business logic for:
    - Programme shells:    create the import context for a project
    - Activity queries:    by programme, by parent, critical-only
    - Relationships:       predecessors / successors of one activity
    - Milestones:          list, curate (is_key_date, forecast, actual, status)
    - Network summary:     logic-quality heuristics over the imported network
"""

import logging

from sqlalchemy import func, select

from contractflow.core.exceptions import NotFoundError, ValidationError
from contractflow.models import db
from contractflow.models.programme import (
    MILESTONE_STATUSES,
    PROGRAMME_STATUSES,
    Activity,
    ActivityRelationship,
    Programme,
    ProgrammeMilestone,
)
from contractflow.models.project import Project
from contractflow.utils.helpers import parse_datetime_input

logger = logging.getLogger(__name__)


# ── Programmes ───────────────────────────────────────────────────────────────


def create_programme(project_id: int, data: dict) -> Programme:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)

    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    status = data.get("status", "draft")
    if status not in PROGRAMME_STATUSES:
        raise ValidationError(
            f"status must be one of {sorted(PROGRAMME_STATUSES)}",
            details={"status": status},
        )

    programme = Programme(
        project_id=project_id,
        name=name,
        version=str(data.get("version") or "1"),
        status=status,
    )
    db.session.add(programme)
    db.session.commit()
    logger.info("Programme %s created for project %s", programme.id, project_id,
                extra={"programme_id": programme.id, "project_id": project_id})
    return programme


def get_programme(programme_id: int) -> Programme:
    programme = db.session.get(Programme, programme_id)
    if programme is None:
        raise NotFoundError(resource="Programme", resource_id=programme_id)
    return programme


# ── Activities ───────────────────────────────────────────────────────────────


def list_activities(programme_id: int, parent_id=None, critical_only=False):
    """Activities of a programme in outline order."""
    get_programme(programme_id)
    stmt = select(Activity).where(Activity.programme_id == programme_id)
    if parent_id is not None:
        stmt = stmt.where(Activity.parent_id == parent_id)
    if critical_only:
        stmt = stmt.where(Activity.is_critical.is_(True))
    stmt = stmt.order_by(Activity.outline_level, Activity.outline_number, Activity.id)
    return db.session.execute(stmt).scalars().all()


def get_relationships(activity_id: int) -> dict:
    activity = db.session.get(Activity, activity_id)
    if activity is None:
        raise NotFoundError(resource="Activity", resource_id=activity_id)
    return {
        "activity": activity.to_dict(),
        "predecessors": [r.to_dict() for r in activity.predecessors.order_by(ActivityRelationship.id)],
        "successors": [r.to_dict() for r in activity.successors.order_by(ActivityRelationship.id)],
    }


# ── Milestones ───────────────────────────────────────────────────────────────


def list_milestones(programme_id: int, key_dates_only=False):
    get_programme(programme_id)
    stmt = select(ProgrammeMilestone).where(ProgrammeMilestone.programme_id == programme_id)
    if key_dates_only:
        stmt = stmt.where(ProgrammeMilestone.is_key_date.is_(True))
    stmt = stmt.order_by(ProgrammeMilestone.planned_date, ProgrammeMilestone.id)
    return db.session.execute(stmt).scalars().all()


def update_milestone(milestone_id: int, data: dict) -> ProgrammeMilestone:
    """Curate a milestone. Re-imports keep is_key_date; other fields are refreshed."""
    milestone = db.session.get(ProgrammeMilestone, milestone_id)
    if milestone is None:
        raise NotFoundError(resource="ProgrammeMilestone", resource_id=milestone_id)

    for flag in ("is_key_date", "affects_completion_date"):
        if flag in data and not isinstance(data[flag], bool):
            raise ValidationError(f"{flag} must be a boolean", details={flag: data[flag]})
    if "status" in data:
        if data["status"] not in MILESTONE_STATUSES:
            raise ValidationError(
                f"status must be one of {sorted(MILESTONE_STATUSES)}",
                details={"status": data["status"]},
            )
        milestone.status = data["status"]
    if "is_key_date" in data:
        milestone.is_key_date = data["is_key_date"]
    if "affects_completion_date" in data:
        milestone.affects_completion_date = data["affects_completion_date"]
    if "description" in data:
        milestone.description = data["description"] or ""
    for field in ("forecast_date", "actual_date"):
        if field in data:
            try:
                setattr(milestone, field, parse_datetime_input(data[field]))
            except ValueError as exc:
                raise ValidationError(str(exc), details={field: data[field]})

    db.session.commit()
    return milestone


# ── Network summary ──────────────────────────────────────────────────────────


def network_summary(programme_id: int) -> dict:
    """
    Logic-quality heuristics over the imported network.

    Score starts at 70, loses up to 30 for open ends (activities without a
    predecessor or successor) and 20 if nothing is flagged critical.
    Clause 31 needs activities, milestones and a critical path.
    """
    programme = get_programme(programme_id)

    total = db.session.execute(
        select(func.count(Activity.id)).where(Activity.programme_id == programme_id)
    ).scalar() or 0
    milestones = db.session.execute(
        select(func.count(Activity.id))
        .where(Activity.programme_id == programme_id, Activity.milestone.is_(True))
    ).scalar() or 0
    critical = db.session.execute(
        select(func.count(Activity.id))
        .where(Activity.programme_id == programme_id, Activity.is_critical.is_(True))
    ).scalar() or 0
    relationships = db.session.execute(
        select(func.count(ActivityRelationship.id))
        .where(ActivityRelationship.programme_id == programme_id)
    ).scalar() or 0

    with_pred = select(ActivityRelationship.successor_id).where(
        ActivityRelationship.programme_id == programme_id
    )
    with_succ = select(ActivityRelationship.predecessor_id).where(
        ActivityRelationship.programme_id == programme_id
    )
    no_predecessors = db.session.execute(
        select(func.count(Activity.id))
        .where(Activity.programme_id == programme_id, Activity.id.not_in(with_pred))
    ).scalar() or 0
    no_successors = db.session.execute(
        select(func.count(Activity.id))
        .where(Activity.programme_id == programme_id, Activity.id.not_in(with_succ))
    ).scalar() or 0

    score = 70
    if total:
        score -= round((no_predecessors + no_successors) / (total * 2) * 30)
    if critical == 0:
        score -= 20
    score = max(0, min(100, score))

    if score >= 70:
        risk = "low"
    elif score >= 40:
        risk = "medium"
    else:
        risk = "high"

    clause31 = total > 0 and milestones > 0 and critical > 0
    issues = []
    if not clause31:
        issues.append(
            "Programme missing required elements per clause 31 (critical path, key dates, etc.)"
        )

    return {
        "programme_id": programme.id,
        "activity_count": total,
        "relationship_count": relationships,
        "milestone_count": milestones,
        "critical_activity_count": critical,
        "activities_without_predecessors": no_predecessors,
        "activities_without_successors": no_successors,
        "quality_score": score,
        "schedule_risk": risk,
        "nec4_compliance": {
            "clause31": clause31,
            "issues": issues,
        },
        "planned_completion_date": (
            programme.planned_completion_date.isoformat()
            if programme.planned_completion_date else None
        ),
    }
