"""
Approval Policy — thresholds and tier routing.

Thresholds are versioned per project in ``approval_policies``; a project
without a policy row uses the app config defaults (version 0).

Routing (ordered, first match wins):

    0. affects_critical_path                              → senior_management
    1. delay == 0 and cost < T1, or delay == 1 and cost < T2 → auto
    2. delay ≤ 3 and cost < T3                            → project_manager
    3. otherwise                                          → senior_management

Usage:
    from contractflow.services.approval_policy import get_thresholds, route
    tier = route(impact, get_thresholds(project_id))
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum

from flask import current_app
from sqlalchemy import func, select, update

from contractflow.core.exceptions import NotFoundError, ValidationError
from contractflow.models import db
from contractflow.models.project import ApprovalPolicy, Project

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    AUTO = "auto"
    PROJECT_MANAGER = "project_manager"
    SENIOR_MANAGEMENT = "senior_management"


@dataclass(frozen=True)
class Thresholds:
    t1: float
    t2: float
    t3: float
    version: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def validate_thresholds(t1, t2, t3) -> tuple[float, float, float]:
    """Coerce to float and enforce 0 ≤ t1 ≤ t2 ≤ t3."""
    try:
        values = (float(t1), float(t2), float(t3))
    except (TypeError, ValueError):
        raise ValidationError(
            "Thresholds t1, t2 and t3 must be numbers",
            details={"t1": t1, "t2": t2, "t3": t3},
        )
    if not 0 <= values[0] <= values[1] <= values[2]:
        raise ValidationError(
            "Thresholds must satisfy 0 <= t1 <= t2 <= t3",
            details={"t1": values[0], "t2": values[1], "t3": values[2]},
        )
    return values


def default_thresholds() -> Thresholds:
    cfg = current_app.config
    return Thresholds(
        t1=float(cfg.get("APPROVAL_T1", 1000)),
        t2=float(cfg.get("APPROVAL_T2", 5000)),
        t3=float(cfg.get("APPROVAL_T3", 25000)),
        version=0,
    )


def get_active_policy(project_id: int, session=None) -> ApprovalPolicy | None:
    session = session or db.session
    return session.execute(
        select(ApprovalPolicy)
        .where(ApprovalPolicy.project_id == project_id, ApprovalPolicy.is_active.is_(True))
        .order_by(ApprovalPolicy.version.desc())
        .limit(1)
    ).scalar_one_or_none()


def get_thresholds(project_id: int, session=None) -> Thresholds:
    """Thresholds in force for a project: newest active policy, else config."""
    policy = get_active_policy(project_id, session=session)
    if policy is None:
        return default_thresholds()
    return Thresholds(
        t1=policy.t1_auto_max_cost,
        t2=policy.t2_auto_one_day_max_cost,
        t3=policy.t3_project_manager_max_cost,
        version=policy.version,
    )


def set_policy(project_id: int, t1, t2, t3, created_by: str = "system",
               session=None) -> ApprovalPolicy:
    """
    Append a new policy version for the project and deactivate the previous one.
    Commits.
    """
    session = session or db.session
    if session.get(Project, project_id) is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    t1, t2, t3 = validate_thresholds(t1, t2, t3)

    latest_version = session.execute(
        select(func.max(ApprovalPolicy.version))
        .where(ApprovalPolicy.project_id == project_id)
    ).scalar() or 0

    session.execute(
        update(ApprovalPolicy)
        .where(ApprovalPolicy.project_id == project_id, ApprovalPolicy.is_active.is_(True))
        .values(is_active=False)
    )
    policy = ApprovalPolicy(
        project_id=project_id,
        version=latest_version + 1,
        t1_auto_max_cost=t1,
        t2_auto_one_day_max_cost=t2,
        t3_project_manager_max_cost=t3,
        is_active=True,
        created_by=created_by,
    )
    session.add(policy)
    session.commit()
    logger.info(
        "Approval policy v%d set for project %s: T1=%.2f T2=%.2f T3=%.2f",
        policy.version, project_id, t1, t2, t3,
        extra={"project_id": project_id},
    )
    return policy


def route(impact, thresholds: Thresholds) -> Tier:
    """Pick the approval tier for an Impact under the given thresholds."""
    if impact.affects_critical_path:
        return Tier.SENIOR_MANAGEMENT

    delay = max(int(impact.delay_days or 0), 0)
    cost = float(impact.cost or 0)

    if (delay == 0 and cost < thresholds.t1) or (delay == 1 and cost < thresholds.t2):
        return Tier.AUTO
    if delay <= 3 and cost < thresholds.t3:
        return Tier.PROJECT_MANAGER
    return Tier.SENIOR_MANAGEMENT
