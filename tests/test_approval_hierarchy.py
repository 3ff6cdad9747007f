"""Authorization registry: register, resolve, find, revoke."""

import pytest

from contractflow.core.exceptions import NotFoundError, ValidationError
from contractflow.models.approval import ApprovalHierarchy
from contractflow.models import db
from contractflow.services.approval_hierarchy import (
    ApprovalHierarchyRegistry,
    level_satisfies_tier,
)


@pytest.fixture()
def registry():
    return ApprovalHierarchyRegistry(db.session)


class TestRegister:
    def test_register(self, registry, project):
        entry = registry.register(
            project.id, " sara ", "senior_manager", "50000",
            ["compensation_event", "budget_change", "compensation_event"],
        )
        assert entry.id is not None
        assert entry.user_id == "sara"
        assert entry.max_approval_value == 50000.0
        assert entry.can_approve_types == ["budget_change", "compensation_event"]
        assert entry.is_active is True

    def test_identical_registration_is_idempotent(self, registry, project):
        first = registry.register(project.id, "sara", "director", 100, ["early_warning"])
        again = registry.register(project.id, "sara", "director", 100.0, ["early_warning"])
        assert again.id == first.id
        assert ApprovalHierarchy.query.count() == 1

    def test_different_scope_appends(self, registry, project):
        registry.register(project.id, "sara", "director", 100, ["early_warning"])
        registry.register(project.id, "sara", "director", 500, ["early_warning"])
        assert len(registry.entries_for_user(project.id, "sara")) == 2

    def test_validation_details(self, registry, project):
        with pytest.raises(ValidationError) as exc_info:
            registry.register(project.id, "", "intern", -5, ["tea_break"])
        details = exc_info.value.details
        assert set(details) == {
            "user_id", "authorization_level", "max_approval_value", "can_approve_types",
        }

    @pytest.mark.parametrize("types", [[], None, "early_warning"])
    def test_types_must_be_non_empty_list(self, registry, project, types):
        with pytest.raises(ValidationError):
            registry.register(project.id, "sara", "director", 1, types)

    def test_unknown_project(self, registry):
        with pytest.raises(NotFoundError):
            registry.register(404, "sara", "director", 1, ["early_warning"])


class TestResolve:
    def test_filters_by_type_value_and_active(self, registry, project):
        low = registry.register(project.id, "pete", "project_manager", 5000, ["programme_change"])
        high = registry.register(project.id, "dina", "director", 100000, ["programme_change", "budget_change"])
        registry.register(project.id, "bob", "board", 1e9, ["budget_change"])
        revoked = registry.register(project.id, "old", "director", 1e9, ["programme_change"])
        registry.revoke(revoked.id)

        assert [e.id for e in registry.resolve(project.id, "programme_change", 4000)] == [low.id, high.id]
        assert [e.id for e in registry.resolve(project.id, "programme_change", 5000)] == [low.id, high.id]
        assert [e.id for e in registry.resolve(project.id, "programme_change", 5001)] == [high.id]
        assert registry.resolve(project.id, "procurement_change", 1) == []

    def test_find_authorizing_entry(self, registry, project):
        registry.register(project.id, "sara", "senior_manager", 1000, ["budget_change"])
        wide = registry.register(project.id, "sara", "senior_manager", 9000, ["budget_change"])
        assert registry.find_authorizing_entry(project.id, "sara", "senior_manager", "budget_change", 5000).id == wide.id
        assert registry.find_authorizing_entry(project.id, "sara", "director", "budget_change", 10) is None
        assert registry.find_authorizing_entry(project.id, "sara", "senior_manager", "early_warning", 10) is None


class TestRevoke:
    def test_revoke_is_soft(self, registry, project):
        entry = registry.register(project.id, "sara", "director", 100, ["early_warning"])
        registry.revoke(entry.id)
        assert registry.list_entries(project.id) == []
        [kept] = registry.list_entries(project.id, include_inactive=True)
        assert kept.is_active is False
        assert kept.revoked_at is not None

    def test_revoke_twice(self, registry, project):
        entry = registry.register(project.id, "sara", "director", 100, ["early_warning"])
        first = registry.revoke(entry.id).revoked_at
        assert registry.revoke(entry.id).revoked_at == first

    def test_revoke_missing(self, registry):
        with pytest.raises(NotFoundError):
            registry.revoke(9)


@pytest.mark.parametrize("level,tier,expected", [
    ("project_manager", "project_manager", True),
    ("project_manager", "senior_management", False),
    ("senior_manager", "senior_management", True),
    ("director", "senior_management", True),
    ("board", "senior_management", True),
    ("board", "unknown", False),
])
def test_level_satisfies_tier(level, tier, expected):
    assert level_satisfies_tier(level, tier) is expected
