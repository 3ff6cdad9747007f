"""
Approval Workflow — change request state machine.

    submit ──▶ analyze impact ──▶ route tier ──┬─ auto ──▶ auto_approved (terminal)
                                               └─ pm / senior ──▶ pending
    pending ──decide──▶ approved | rejected (terminal)

Guarantees:
    - decide() flips status with ``UPDATE … WHERE status = 'pending'``;
      a lost race affects zero rows and raises StaleStateError
    - the status change and its audit row commit together
    - events are published only after commit; handler failures never
      undo a decision

The service is an explicit value built per request with its session,
event bus and analyzer; nothing is cached at module level.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update

from contractflow.core.exceptions import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    StaleStateError,
    ValidationError,
)
from contractflow.models.approval import (
    AUTHORIZATION_LEVELS,
    CHANGE_TYPES,
    ProgrammeApproval,
    validate_approval_transition,
)
from contractflow.models.project import Project
from contractflow.services import audit_trail
from contractflow.services.approval_hierarchy import (
    ApprovalHierarchyRegistry,
    level_satisfies_tier,
)
from contractflow.services.approval_policy import Tier, get_thresholds, route
from contractflow.services.event_bus import APPROVAL_COMPLETED, NOTIFICATION_SEND
from contractflow.services.impact_analyzer import ImpactAnalyzer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    approved: bool
    approved_by: str
    reason: str | None = None
    modified_impact: dict | None = None


MODIFIED_IMPACT_FIELDS = ("delay_days", "cost", "reason")


def _finite_number(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def validate_modified_impact(modified):
    """Check an approver's revised impact: whole-day delay, finite cost, text reason."""
    if modified is None:
        return
    if not isinstance(modified, dict):
        raise ValidationError("modified_impact must be an object",
                              details={"modified_impact": "invalid"})
    errors = {}
    unknown = sorted(set(modified) - set(MODIFIED_IMPACT_FIELDS))
    if unknown:
        errors["unknown_fields"] = unknown
    if "delay_days" not in modified and "cost" not in modified:
        errors["modified_impact"] = "delay_days or cost is required"
    delay = modified.get("delay_days")
    if delay is not None and (isinstance(delay, bool) or not isinstance(delay, int) or delay < 0):
        errors["delay_days"] = "must be a non-negative integer"
    cost = modified.get("cost")
    if cost is not None and (not _finite_number(cost) or cost < 0):
        errors["cost"] = "must be a finite non-negative number"
    reason = modified.get("reason")
    if reason is not None and not isinstance(reason, str):
        errors["reason"] = "must be a string"
    if errors:
        raise ValidationError("Invalid modified_impact", details=errors)


def _aware(value):
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ApprovalWorkflowService:
    """Submits, routes and decides change requests for one unit of work."""

    def __init__(self, session, event_bus, analyzer=None, registry=None):
        self.session = session
        self.event_bus = event_bus
        self.analyzer = analyzer or ImpactAnalyzer()
        self.registry = registry or ApprovalHierarchyRegistry(session)

    # ═════════════════════════════════════════════════════════════════════
    # Submission
    # ═════════════════════════════════════════════════════════════════════

    def submit(self, project_id, change_type, event_data,
               request_meta=None) -> ProgrammeApproval:
        """
        Analyze, route and persist a change request.

        Auto-routed requests are stored already ``auto_approved``; all
        others are stored ``pending``. Both get a ``created`` audit row.
        """
        if self.session.get(Project, project_id) is None:
            raise NotFoundError(resource="Project", resource_id=project_id)
        if change_type not in CHANGE_TYPES:
            raise ValidationError(
                f"change_type must be one of {sorted(CHANGE_TYPES)}",
                details={"change_type": change_type},
            )
        event_data = event_data or {}
        description = event_data.get("description") or ""
        clause = event_data.get("nec4_clause") or event_data.get("clause_reference") or ""

        impact = self.analyzer.analyze(description, change_type, clause)
        compliance = self.analyzer.validate_compliance(clause)
        thresholds = get_thresholds(project_id, session=self.session)
        tier = route(impact, thresholds)
        is_auto = tier == Tier.AUTO
        now = datetime.now(timezone.utc)

        approval = ProgrammeApproval(
            project_id=project_id,
            change_type=change_type,
            title=event_data.get("title") or "Schedule Change",
            description=description,
            impact_days=impact.delay_days,
            impact_cost=impact.cost,
            affects_critical_path=impact.affects_critical_path,
            confidence=impact.confidence,
            nec4_clause=compliance.clause_reference,
            compliance_valid=compliance.is_valid,
            compliance_reason=compliance.reason,
            required_tier=tier.value,
            policy_version=thresholds.version,
            status="auto_approved" if is_auto else "pending",
            auto_approved=is_auto,
            requested_by=event_data.get("requested_by") or "system",
            requested_at=now,
            approved_by="system" if is_auto else None,
            approved_at=now if is_auto else None,
        )

        approvers = []
        if not is_auto:
            approvers = [
                entry for entry in self.registry.resolve(project_id, change_type, impact.cost)
                if level_satisfies_tier(entry.authorization_level, tier.value)
            ]
            approval.has_qualified_approver = bool(approvers)

        try:
            self.session.add(approval)
            self.session.flush()
            audit_trail.append_entry(
                self.session, approval.id,
                audit_trail.Created(impact=impact.to_dict(), tier=tier.value),
                performed_by=approval.requested_by,
                previous_status=None,
                new_status=approval.status,
                request_meta=request_meta,
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "Change %s submitted for project %s: %d day(s), £%.2f, tier=%s, status=%s",
            approval.id, project_id, impact.delay_days, impact.cost, tier.value, approval.status,
            extra={"approval_id": approval.id, "project_id": project_id},
        )

        if is_auto:
            self.event_bus.publish(APPROVAL_COMPLETED, {
                "approval_id": approval.id,
                "approved": True,
                "auto_approved": True,
                "project_id": project_id,
            })
            self.event_bus.publish(NOTIFICATION_SEND, {
                "recipient_type": "project_team",
                "recipient_id": str(project_id),
                "message": f"Change auto-approved: {approval.title}",
                "type": "approval_completed",
                "priority": "low",
                "action_required": False,
                "approval_id": approval.id,
            })
        else:
            self._notify_approvers(approval, approvers)
        return approval

    def _notify_approvers(self, approval, approvers):
        priority = "high" if approval.required_tier == Tier.SENIOR_MANAGEMENT.value else "medium"
        message = (
            f"Approval required ({approval.required_tier}): {approval.title}, "
            f"{approval.impact_days} day(s), £{approval.impact_cost:,.2f}"
        )
        if not approvers:
            logger.warning(
                "No qualified approver registered for change %s (%s, £%.2f) on project %s",
                approval.id, approval.change_type, approval.impact_cost, approval.project_id,
                extra={"approval_id": approval.id, "project_id": approval.project_id},
            )
            self.event_bus.publish(NOTIFICATION_SEND, {
                "recipient_type": "role",
                "recipient_id": approval.required_tier,
                "message": f"No qualified approver registered. {message}",
                "type": "approval_unassigned",
                "priority": "high",
                "action_required": True,
                "approval_id": approval.id,
            })
            return
        for entry in approvers:
            self.event_bus.publish(NOTIFICATION_SEND, {
                "recipient_type": "user",
                "recipient_id": entry.user_id,
                "message": message,
                "type": "approval_required",
                "priority": priority,
                "action_required": True,
                "approval_id": approval.id,
            })

    # ═════════════════════════════════════════════════════════════════════
    # Decisions
    # ═════════════════════════════════════════════════════════════════════

    def decide(self, approval_id, decision: Decision, request_meta=None) -> ProgrammeApproval:
        validate_modified_impact(decision.modified_impact)
        approval = self.get_approval(approval_id)
        return self._apply_decision(approval, decision, request_meta)

    def decide_authorized(self, approval_id, decision: Decision, authorized_by,
                          authorization_level, notes=None,
                          request_meta=None) -> ProgrammeApproval:
        """
        decide() gated by the authorization registry.

        The acting user needs an active entry at ``authorization_level``
        covering the change type and the larger of the original and
        modified cost, and the level must be senior enough for the tier.
        """
        approval = self.get_approval(approval_id)
        if authorization_level not in AUTHORIZATION_LEVELS:
            raise ValidationError(
                f"authorization_level must be one of {list(AUTHORIZATION_LEVELS)}",
                details={"authorization_level": authorization_level},
            )
        validate_modified_impact(decision.modified_impact)
        if decision.approved_by != authorized_by:
            raise AuthorizationError(
                f"Decision by {decision.approved_by} cannot be recorded under {authorized_by}'s authorization",
                details={"approved_by": decision.approved_by, "authorized_by": authorized_by},
            )

        cost = float(approval.impact_cost or 0)
        if decision.modified_impact and decision.modified_impact.get("cost") is not None:
            cost = max(cost, float(decision.modified_impact["cost"]))
        context = {
            "user_id": authorized_by,
            "authorization_level": authorization_level,
            "required_tier": approval.required_tier,
            "change_type": approval.change_type,
            "cost": cost,
        }

        if not level_satisfies_tier(authorization_level, approval.required_tier):
            logger.warning("Authorization level %s too low for %s tier on %s",
                           authorization_level, approval.required_tier, approval.id,
                           extra={"approval_id": approval.id})
            raise AuthorizationError(
                f"{authorization_level} cannot approve {approval.required_tier} changes",
                details=context,
            )
        entry = self.registry.find_authorizing_entry(
            approval.project_id, authorized_by, authorization_level,
            approval.change_type, cost,
        )
        if entry is None:
            logger.warning("User %s not authorized (%s) for change %s",
                           authorized_by, authorization_level, approval.id,
                           extra={"approval_id": approval.id})
            raise AuthorizationError(
                f"{authorized_by} is not authorized to approve this change at "
                f"{authorization_level} level",
                details=context,
            )

        return self._apply_decision(approval, decision, request_meta, extra={
            "authorized_by": authorized_by,
            "authorization_level": authorization_level,
            "authorization_notes": notes,
        })

    def _apply_decision(self, approval, decision, request_meta, extra=None):
        target = "approved" if decision.approved else "rejected"
        if not validate_approval_transition(approval.status, target):
            raise InvalidTransitionError(approval.id, approval.status, target)
        if not (decision.approved_by or "").strip():
            raise ValidationError("approved_by is required", details={"approved_by": "required"})

        values = {
            "status": target,
            "approved_by": decision.approved_by,
            "approved_at": datetime.now(timezone.utc),
        }
        if not decision.approved:
            values["rejected_reason"] = decision.reason
        if decision.modified_impact is not None:
            values["modified_impact"] = decision.modified_impact
        values.update(extra or {})

        if not decision.approved:
            action = audit_trail.Rejected(reason=decision.reason or "")
        elif decision.modified_impact:
            action = audit_trail.Modified(
                original={
                    "delay_days": approval.impact_days,
                    "cost": approval.impact_cost,
                    "affects_critical_path": approval.affects_critical_path,
                },
                modified=decision.modified_impact,
                comments_text=decision.reason or "",
            )
        else:
            action = audit_trail.Approved(comments_text=decision.reason or "")

        approval_id = approval.id
        try:
            result = self.session.execute(
                update(ProgrammeApproval)
                .where(ProgrammeApproval.id == approval_id,
                       ProgrammeApproval.status == "pending")
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise StaleStateError(approval_id, "pending")
            audit_trail.append_entry(
                self.session, approval_id, action,
                performed_by=decision.approved_by,
                previous_status="pending",
                new_status=target,
                request_meta=request_meta,
            )
            self.session.commit()
        except StaleStateError:
            self.session.rollback()
            logger.warning("Lost decision race on change %s", approval_id,
                           extra={"approval_id": approval_id})
            raise
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(approval)
        logger.info(
            "Change %s %s by %s", approval_id, target, decision.approved_by,
            extra={"approval_id": approval_id, "project_id": approval.project_id},
        )

        completed = {
            "approval_id": approval_id,
            "approved": decision.approved,
            "auto_approved": False,
            "project_id": approval.project_id,
        }
        if decision.modified_impact is not None:
            completed["modified_impact"] = decision.modified_impact
        self.event_bus.publish(APPROVAL_COMPLETED, completed)
        self.event_bus.publish(NOTIFICATION_SEND, {
            "recipient_type": "user",
            "recipient_id": approval.requested_by,
            "message": f"Change request '{approval.title}' {target} by {decision.approved_by}",
            "type": "approval_decision",
            "priority": "medium",
            "action_required": False,
            "approval_id": approval_id,
        })
        return approval

    def review(self, approval_id, reviewer, comments="", request_meta=None):
        """Record a review comment without changing status."""
        approval = self.get_approval(approval_id)
        if not (reviewer or "").strip():
            raise ValidationError("reviewer is required", details={"reviewer": "required"})
        try:
            entry = audit_trail.append_entry(
                self.session, approval.id, audit_trail.Reviewed(comments_text=comments or ""),
                performed_by=reviewer,
                previous_status=approval.status,
                new_status=approval.status,
                request_meta=request_meta,
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return entry

    # ═════════════════════════════════════════════════════════════════════
    # Queries
    # ═════════════════════════════════════════════════════════════════════

    def get_approval(self, approval_id) -> ProgrammeApproval:
        approval = self.session.get(ProgrammeApproval, approval_id)
        if approval is None:
            raise NotFoundError(resource="ProgrammeApproval", resource_id=approval_id)
        return approval

    def get_pending(self, project_id):
        """Pending requests, oldest first."""
        return self.session.execute(
            select(ProgrammeApproval)
            .where(ProgrammeApproval.project_id == project_id,
                   ProgrammeApproval.status == "pending")
            .order_by(ProgrammeApproval.requested_at, ProgrammeApproval.id)
        ).scalars().all()

    def list_approvals(self, project_id, status=None):
        """All requests, newest first."""
        stmt = select(ProgrammeApproval).where(ProgrammeApproval.project_id == project_id)
        if status:
            stmt = stmt.where(ProgrammeApproval.status == status)
        return self.session.execute(
            stmt.order_by(ProgrammeApproval.requested_at.desc(), ProgrammeApproval.id)
        ).scalars().all()

    def get_audit_trail(self, approval_id):
        self.get_approval(approval_id)
        return audit_trail.list_entries(self.session, approval_id)

    def get_stats(self, project_id) -> dict:
        rows = self.list_approvals(project_id)
        total = len(rows)
        auto = sum(1 for r in rows if r.auto_approved)
        approved = sum(1 for r in rows if r.status == "approved")
        rejected = sum(1 for r in rows if r.status == "rejected")
        compliant = sum(1 for r in rows if r.compliance_valid)

        durations = [
            (_aware(r.approved_at) - _aware(r.requested_at)).total_seconds() / 3600
            for r in rows
            if r.status in ("approved", "rejected") and r.approved_at and r.requested_at
        ]
        return {
            "total_requests": total,
            "pending_approvals": sum(1 for r in rows if r.status == "pending"),
            "auto_approved": auto,
            "manual_approvals": total - auto,
            "approved": approved,
            "rejected": rejected,
            "total_impact_days": sum(r.impact_days or 0 for r in rows),
            "total_impact_cost": round(sum(r.impact_cost or 0 for r in rows), 2),
            "compliance_rate": round(compliant / total * 100, 1) if total else 0,
            "average_processing_hours": (
                round(sum(durations) / len(durations), 2) if durations else None
            ),
        }
