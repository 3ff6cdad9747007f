"""
Authorization Hierarchy Registry.

Who may approve which change types, up to which value, per project.
Entries are append-only; revocation flips ``is_active`` and stamps
``revoked_at``.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from contractflow.core.exceptions import NotFoundError, ValidationError
from contractflow.models.approval import (
    AUTHORIZATION_LEVELS,
    CHANGE_TYPES,
    ApprovalHierarchy,
)
from contractflow.models.project import Project

logger = logging.getLogger(__name__)

# Levels allowed to sign off each routing tier.
TIER_LEVELS = {
    "auto": set(AUTHORIZATION_LEVELS),
    "project_manager": set(AUTHORIZATION_LEVELS),
    "senior_management": {"senior_manager", "director", "board"},
}


def level_satisfies_tier(level: str, tier: str) -> bool:
    return level in TIER_LEVELS.get(tier, set())


class ApprovalHierarchyRegistry:
    """Registry over the ``approval_hierarchy`` table for one session."""

    def __init__(self, session):
        self.session = session

    def register(self, project_id, user_id, level, max_value, allowed_types):
        """
        Add an authorization entry. An identical active entry is returned
        as-is; a different scope for the same user appends a new row.
        Commits.
        """
        if self.session.get(Project, project_id) is None:
            raise NotFoundError(resource="Project", resource_id=project_id)

        errors = {}
        user_id = (user_id or "").strip()
        if not user_id:
            errors["user_id"] = "required"
        if level not in AUTHORIZATION_LEVELS:
            errors["authorization_level"] = f"must be one of {list(AUTHORIZATION_LEVELS)}"
        try:
            max_value = float(max_value)
            if max_value < 0:
                errors["max_approval_value"] = "must be >= 0"
        except (TypeError, ValueError):
            errors["max_approval_value"] = "must be a number"
        if not isinstance(allowed_types, (list, tuple, set)) or not allowed_types:
            errors["can_approve_types"] = "must be a non-empty list"
        else:
            unknown = sorted(set(allowed_types) - CHANGE_TYPES)
            if unknown:
                errors["can_approve_types"] = f"unknown change types: {unknown}"
        if errors:
            raise ValidationError("Invalid approval hierarchy entry", details=errors)

        types = sorted(set(allowed_types))
        for existing in self.entries_for_user(project_id, user_id):
            if (
                existing.authorization_level == level
                and existing.max_approval_value == max_value
                and sorted(existing.can_approve_types or []) == types
            ):
                return existing

        entry = ApprovalHierarchy(
            project_id=project_id,
            user_id=user_id,
            authorization_level=level,
            max_approval_value=max_value,
            can_approve_types=types,
            is_active=True,
        )
        self.session.add(entry)
        self.session.commit()
        logger.info(
            "Registered approver %s (%s, max %.2f) on project %s",
            user_id, level, max_value, project_id,
            extra={"project_id": project_id},
        )
        return entry

    def resolve(self, project_id, change_type, value):
        """Active entries able to approve ``change_type`` at ``value``."""
        rows = self.session.execute(
            select(ApprovalHierarchy)
            .where(
                ApprovalHierarchy.project_id == project_id,
                ApprovalHierarchy.is_active.is_(True),
                ApprovalHierarchy.max_approval_value >= value,
            )
            .order_by(ApprovalHierarchy.max_approval_value, ApprovalHierarchy.id)
        ).scalars().all()
        return [r for r in rows if change_type in (r.can_approve_types or [])]

    def list_entries(self, project_id, include_inactive=False):
        stmt = select(ApprovalHierarchy).where(ApprovalHierarchy.project_id == project_id)
        if not include_inactive:
            stmt = stmt.where(ApprovalHierarchy.is_active.is_(True))
        return self.session.execute(stmt.order_by(ApprovalHierarchy.id)).scalars().all()

    def entries_for_user(self, project_id, user_id):
        return self.session.execute(
            select(ApprovalHierarchy)
            .where(
                ApprovalHierarchy.project_id == project_id,
                ApprovalHierarchy.user_id == user_id,
                ApprovalHierarchy.is_active.is_(True),
            )
            .order_by(ApprovalHierarchy.id)
        ).scalars().all()

    def find_authorizing_entry(self, project_id, user_id, level, change_type, value):
        """First active entry for (user, level) covering the change, or None."""
        for entry in self.entries_for_user(project_id, user_id):
            if entry.authorization_level == level and entry.allows(change_type, value):
                return entry
        return None

    def revoke(self, entry_id):
        """Soft-revoke an entry. Commits. Revoking twice is a no-op."""
        entry = self.session.get(ApprovalHierarchy, entry_id)
        if entry is None:
            raise NotFoundError(resource="ApprovalHierarchy", resource_id=entry_id)
        if entry.is_active:
            entry.is_active = False
            entry.revoked_at = datetime.now(timezone.utc)
            self.session.commit()
            logger.info(
                "Revoked approver %s on project %s", entry.user_id, entry.project_id,
                extra={"project_id": entry.project_id},
            )
        return entry
