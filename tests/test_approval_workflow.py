"""
Approval workflow tests.

Covers:
    - submit: analysis, routing, auto vs pending, created audit row, events
    - approver notification (qualified approvers / none registered)
    - decide: approve, reject, modify, terminal guard, lost race
    - decide_authorized: tier and registry checks
    - queries and statistics
"""

import pytest
from sqlalchemy import update

from contractflow.core.exceptions import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    StaleStateError,
    ValidationError,
)
from contractflow.models import db
from contractflow.models.approval import ApprovalAuditTrail, ProgrammeApproval
from contractflow.services.approval_hierarchy import ApprovalHierarchyRegistry
from contractflow.services.approval_policy import set_policy
from contractflow.services.approval_workflow import ApprovalWorkflowService, Decision
from contractflow.services.audit_trail import RequestMeta
from contractflow.services.event_bus import APPROVAL_COMPLETED, NOTIFICATION_SEND, EventBus

STEEL_DELAY = {
    "description": "Steel delivery delayed 2 days due to supplier issue affecting foundation works",
    "nec4_clause": "60.1(12)",
    "title": "Steel delivery",
    "requested_by": "site.agent",
}
NO_DELAY = {
    "description": "Minor change with no measurable delay",
    "nec4_clause": "60.1(12)",
    "requested_by": "site.agent",
}
PM_CHANGE = {
    "description": "Access road closed for 2 days",
    "nec4_clause": "60.1(12)",
    "requested_by": "site.agent",
}


@pytest.fixture()
def service(app):
    return ApprovalWorkflowService(db.session, app.extensions["event_bus"])


@pytest.fixture()
def registry():
    return ApprovalHierarchyRegistry(db.session)


def _events(log, event_type):
    return [payload for kind, payload in log if kind == event_type]


# ═════════════════════════════════════════════════════════════════════════════
# Submission
# ═════════════════════════════════════════════════════════════════════════════


class TestSubmit:
    def test_worked_example_goes_to_senior_management(self, service, project):
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)
        assert approval.status == "pending"
        assert approval.required_tier == "senior_management"
        assert approval.impact_days == 2
        assert approval.impact_cost == 4000
        assert approval.affects_critical_path is True
        assert approval.compliance_valid is True
        assert approval.nec4_clause == "60.1(12)"
        assert approval.title == "Steel delivery"
        assert approval.policy_version == 0
        assert approval.approved_at is None

    def test_no_delay_is_auto_approved(self, service, project, event_log):
        approval = service.submit(project.id, "programme_change", NO_DELAY)
        assert approval.status == "auto_approved"
        assert approval.auto_approved is True
        assert approval.approved_by == "system"
        assert approval.approved_at is not None
        assert approval.title == "Schedule Change"

        completed = _events(event_log, APPROVAL_COMPLETED)
        assert completed == [{
            "approval_id": approval.id,
            "approved": True,
            "auto_approved": True,
            "project_id": project.id,
        }]
        notes = _events(event_log, NOTIFICATION_SEND)
        assert notes[0]["recipient_type"] == "project_team"
        assert notes[0]["priority"] == "low"

    def test_pm_tier(self, service, project):
        approval = service.submit(project.id, "programme_change", PM_CHANGE)
        assert approval.required_tier == "project_manager"
        assert approval.status == "pending"

    def test_clause_reference_alias(self, service, project):
        data = {"description": "1 day", "clause_reference": "60.1(1)"}
        approval = service.submit(project.id, "early_warning", data)
        assert approval.nec4_clause == "60.1(1)"
        assert approval.impact_cost == 5000

    def test_missing_clause_flagged_not_blocked(self, service, project):
        approval = service.submit(project.id, "early_warning", {"description": "Crane down 2 days"})
        assert approval.compliance_valid is False
        assert approval.compliance_reason == "No NEC4 clause reference provided"
        assert approval.status == "pending"

    def test_every_submission_gets_created_audit(self, service, project):
        auto = service.submit(project.id, "programme_change", NO_DELAY,
                              request_meta=RequestMeta("10.0.0.1", "pytest"))
        pending = service.submit(project.id, "compensation_event", STEEL_DELAY)
        for approval in (auto, pending):
            [entry] = service.get_audit_trail(approval.id)
            assert entry.action == "created"
            assert entry.sequence == 1
            assert entry.previous_status is None
            assert entry.new_status == approval.status
        assert service.get_audit_trail(auto.id)[0].ip_address == "10.0.0.1"
        assert service.get_audit_trail(pending.id)[0].changes["tier"] == "senior_management"

    def test_policy_version_recorded(self, service, project):
        set_policy(project.id, 0, 5000, 25000)
        approval = service.submit(project.id, "programme_change", NO_DELAY)
        assert approval.policy_version == 1
        assert approval.required_tier == "project_manager"

    def test_unknown_change_type(self, service, project):
        with pytest.raises(ValidationError):
            service.submit(project.id, "coffee_order", NO_DELAY)

    def test_unknown_project(self, service):
        with pytest.raises(NotFoundError):
            service.submit(555, "programme_change", NO_DELAY)


class TestApproverNotifications:
    def test_no_registered_approver(self, service, project, event_log):
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)
        assert approval.has_qualified_approver is False
        [note] = _events(event_log, NOTIFICATION_SEND)
        assert note["type"] == "approval_unassigned"
        assert note["recipient_type"] == "role"
        assert note["recipient_id"] == "senior_management"
        assert note["priority"] == "high"
        assert note["action_required"] is True

    def test_only_qualified_approvers_notified(self, service, registry, project, event_log):
        registry.register(project.id, "sara", "senior_manager", 10000, ["compensation_event"])
        registry.register(project.id, "pete", "project_manager", 10000, ["compensation_event"])
        registry.register(project.id, "dina", "director", 1000, ["compensation_event"])
        registry.register(project.id, "bob", "board", 1e9, ["budget_change"])

        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)

        assert approval.has_qualified_approver is True
        notes = _events(event_log, NOTIFICATION_SEND)
        assert [n["recipient_id"] for n in notes] == ["sara"]
        assert notes[0]["type"] == "approval_required"
        assert notes[0]["priority"] == "high"
        assert notes[0]["approval_id"] == approval.id

    def test_pm_tier_is_medium_priority(self, service, registry, project, event_log):
        registry.register(project.id, "pete", "project_manager", 10000, ["programme_change"])
        service.submit(project.id, "programme_change", PM_CHANGE)
        [note] = _events(event_log, NOTIFICATION_SEND)
        assert note["recipient_id"] == "pete"
        assert note["priority"] == "medium"


# ═════════════════════════════════════════════════════════════════════════════
# Decisions
# ═════════════════════════════════════════════════════════════════════════════


class TestDecide:
    def test_approve(self, service, project, event_log):
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)
        event_log.clear()

        decided = service.decide(approval.id, Decision(True, "director.jones", "Agreed"))

        assert decided.status == "approved"
        assert decided.approved_by == "director.jones"
        assert decided.approved_at is not None
        trail = service.get_audit_trail(approval.id)
        assert [e.action for e in trail] == ["approved", "created"]
        assert trail[0].previous_status == "pending"
        assert trail[0].new_status == "approved"
        assert trail[0].comments == "Agreed"

        assert _events(event_log, APPROVAL_COMPLETED) == [{
            "approval_id": approval.id,
            "approved": True,
            "auto_approved": False,
            "project_id": project.id,
        }]
        [note] = _events(event_log, NOTIFICATION_SEND)
        assert note["recipient_id"] == "site.agent"
        assert note["type"] == "approval_decision"

    def test_reject(self, service, project):
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)
        decided = service.decide(approval.id, Decision(False, "pm", "Not a compensation event"))
        assert decided.status == "rejected"
        assert decided.rejected_reason == "Not a compensation event"
        assert service.get_audit_trail(approval.id)[0].action == "rejected"

    def test_approve_with_modified_impact(self, service, project, event_log):
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)
        modified = {"delay_days": 1, "cost": 2000}
        decided = service.decide(approval.id, Decision(True, "pm", "One day only", modified))

        assert decided.status == "approved"
        assert decided.modified_impact == modified
        entry = service.get_audit_trail(approval.id)[0]
        assert entry.action == "modified"
        assert entry.changes["original"]["delay_days"] == 2
        assert entry.changes["modified"] == modified
        assert _events(event_log, APPROVAL_COMPLETED)[-1]["modified_impact"] == modified

    @pytest.mark.parametrize("modified", [
        {"cost": "abc"},
        {"cost": float("inf")},
        {"cost": -5},
        {"cost": 10 ** 400},
        {"delay_days": 1.5},
        {"delay_days": True},
        {"reason": "cheaper"},
        {"delay_days": 1, "rate": 2},
    ])
    def test_invalid_modified_impact(self, service, project, event_log, modified):
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)
        with pytest.raises(ValidationError):
            service.decide(approval.id, Decision(True, "pm", modified_impact=modified))
        assert service.get_approval(approval.id).status == "pending"
        assert _events(event_log, APPROVAL_COMPLETED) == []

    def test_second_decision_rejected(self, service, project):
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)
        service.decide(approval.id, Decision(True, "pm"))
        with pytest.raises(InvalidTransitionError):
            service.decide(approval.id, Decision(False, "other"))
        assert ApprovalAuditTrail.query.filter_by(approval_id=approval.id).count() == 2

    def test_auto_approved_is_terminal(self, service, project):
        approval = service.submit(project.id, "programme_change", NO_DELAY)
        with pytest.raises(InvalidTransitionError):
            service.decide(approval.id, Decision(False, "pm"))

    def test_approver_required(self, service, project):
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)
        with pytest.raises(ValidationError):
            service.decide(approval.id, Decision(True, "  "))
        assert db.session.get(ProgrammeApproval, approval.id).status == "pending"

    def test_unknown_approval(self, service):
        with pytest.raises(NotFoundError):
            service.decide("missing", Decision(True, "pm"))

    def test_lost_race_raises_stale(self, service, project, event_log, monkeypatch):
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)
        approval_id = approval.id
        stale = service.get_approval(approval_id)
        db.session.expunge(stale)

        # another worker decides first
        db.session.execute(
            update(ProgrammeApproval)
            .where(ProgrammeApproval.id == approval_id)
            .values(status="rejected", approved_by="someone.else")
        )
        db.session.commit()
        event_log.clear()

        monkeypatch.setattr(service, "get_approval", lambda _id: stale)
        with pytest.raises(StaleStateError):
            service.decide(approval_id, Decision(True, "pm"))

        current = db.session.get(ProgrammeApproval, approval_id)
        assert current.status == "rejected"
        assert current.approved_by == "someone.else"
        assert ApprovalAuditTrail.query.filter_by(approval_id=approval_id).count() == 1
        assert event_log == []

    def test_handler_failure_does_not_undo_decision(self, project):
        bus = EventBus()

        def broken(payload):
            raise RuntimeError("mail server unavailable")

        bus.subscribe(APPROVAL_COMPLETED, broken)
        service = ApprovalWorkflowService(db.session, bus)
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)

        decided = service.decide(approval.id, Decision(True, "pm"))

        assert decided.status == "approved"
        assert db.session.get(ProgrammeApproval, approval.id).status == "approved"
        assert bus.stats()["delivery_failures"] == {APPROVAL_COMPLETED: 1}

    def test_review_keeps_status(self, service, project):
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)
        entry = service.review(approval.id, "qs.smith", "Checked rates")
        assert entry.action == "reviewed"
        assert entry.sequence == 2
        assert entry.previous_status == entry.new_status == "pending"
        assert service.get_approval(approval.id).status == "pending"
        with pytest.raises(ValidationError):
            service.review(approval.id, "")


class TestDecideAuthorized:
    def test_authorized_senior_manager(self, service, registry, project):
        registry.register(project.id, "sara", "senior_manager", 10000, ["compensation_event"])
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)

        decided = service.decide_authorized(
            approval.id, Decision(True, "sara"), "sara", "senior_manager", notes="Within delegation",
        )

        assert decided.status == "approved"
        assert decided.authorized_by == "sara"
        assert decided.authorization_level == "senior_manager"
        assert decided.authorization_notes == "Within delegation"

    def test_level_too_low_for_tier(self, service, registry, project):
        registry.register(project.id, "pete", "project_manager", 1e6, ["compensation_event"])
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)

        with pytest.raises(AuthorizationError) as exc_info:
            service.decide_authorized(approval.id, Decision(True, "pete"), "pete", "project_manager")

        assert exc_info.value.details["required_tier"] == "senior_management"
        assert service.get_approval(approval.id).status == "pending"

    def test_not_registered(self, service, project):
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)
        with pytest.raises(AuthorizationError):
            service.decide_authorized(approval.id, Decision(True, "eve"), "eve", "director")

    def test_value_above_limit(self, service, registry, project):
        registry.register(project.id, "sara", "senior_manager", 3000, ["compensation_event"])
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)
        with pytest.raises(AuthorizationError) as exc_info:
            service.decide_authorized(approval.id, Decision(True, "sara"), "sara", "senior_manager")
        assert exc_info.value.details["cost"] == 4000

    def test_modified_cost_counts(self, service, registry, project):
        registry.register(project.id, "sara", "senior_manager", 5000, ["compensation_event"])
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)
        decision = Decision(True, "sara", modified_impact={"delay_days": 3, "cost": 6000})
        with pytest.raises(AuthorizationError):
            service.decide_authorized(approval.id, decision, "sara", "senior_manager")

    def test_revoked_entry_does_not_authorize(self, service, registry, project):
        entry = registry.register(project.id, "sara", "senior_manager", 10000, ["compensation_event"])
        registry.revoke(entry.id)
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)
        with pytest.raises(AuthorizationError):
            service.decide_authorized(approval.id, Decision(True, "sara"), "sara", "senior_manager")

    def test_approver_must_be_the_authorized_user(self, service, registry, project):
        registry.register(project.id, "sara", "senior_manager", 10000, ["compensation_event"])
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)
        with pytest.raises(AuthorizationError) as exc_info:
            service.decide_authorized(approval.id, Decision(True, "intern"), "sara", "senior_manager")
        assert exc_info.value.details == {"approved_by": "intern", "authorized_by": "sara"}
        assert service.get_approval(approval.id).status == "pending"
        assert service.get_audit_trail(approval.id)[0].action == "created"

    def test_invalid_modified_cost(self, service, registry, project):
        registry.register(project.id, "sara", "senior_manager", 10000, ["compensation_event"])
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)
        decision = Decision(True, "sara", modified_impact={"cost": "abc"})
        with pytest.raises(ValidationError) as exc_info:
            service.decide_authorized(approval.id, decision, "sara", "senior_manager")
        assert "cost" in exc_info.value.details

    def test_invalid_level(self, service, project):
        approval = service.submit(project.id, "compensation_event", STEEL_DELAY)
        with pytest.raises(ValidationError):
            service.decide_authorized(approval.id, Decision(True, "x"), "x", "intern")


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


class TestQueries:
    def test_pending_oldest_first(self, service, project):
        first = service.submit(project.id, "compensation_event", STEEL_DELAY)
        service.submit(project.id, "programme_change", NO_DELAY)
        second = service.submit(project.id, "programme_change", PM_CHANGE)
        assert [a.id for a in service.get_pending(project.id)] == [first.id, second.id]

    def test_list_filter_by_status(self, service, project):
        service.submit(project.id, "compensation_event", STEEL_DELAY)
        auto = service.submit(project.id, "programme_change", NO_DELAY)
        assert len(service.list_approvals(project.id)) == 2
        assert [a.id for a in service.list_approvals(project.id, status="auto_approved")] == [auto.id]

    def test_stats(self, service, project):
        service.submit(project.id, "programme_change", NO_DELAY)
        steel = service.submit(project.id, "compensation_event", STEEL_DELAY)
        pm = service.submit(project.id, "programme_change", PM_CHANGE)
        service.submit(project.id, "early_warning", {"description": "Crane down 3 days"})
        service.decide(steel.id, Decision(True, "sara"))
        service.decide(pm.id, Decision(False, "pete"))

        stats = service.get_stats(project.id)
        assert stats["total_requests"] == 4
        assert stats["pending_approvals"] == 1
        assert stats["auto_approved"] == 1
        assert stats["manual_approvals"] == 3
        assert stats["approved"] == 1
        assert stats["rejected"] == 1
        assert stats["total_impact_days"] == 7
        assert stats["total_impact_cost"] == 8000
        assert stats["compliance_rate"] == 75.0
        assert stats["average_processing_hours"] is not None
        assert stats["average_processing_hours"] >= 0

    def test_stats_empty_project(self, service, project):
        stats = service.get_stats(project.id)
        assert stats["total_requests"] == 0
        assert stats["compliance_rate"] == 0
        assert stats["average_processing_hours"] is None
