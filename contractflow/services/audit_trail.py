"""
Approval audit trail — append-only.

Each action is a frozen dataclass carrying only its own fields:

    Created(impact, tier)          request submitted (auto or pending)
    Reviewed(comments)             looked at, no state change
    Approved(comments)             human approval
    Rejected(reason)               human rejection
    Modified(original, modified, comments)
                                   approval with an amended impact

``append_entry`` allocates the per-approval sequence (max + 1) and adds
the row to the session with a flush; the caller owns the transaction.
The unique (approval_id, sequence) constraint turns a racing writer into
an IntegrityError instead of a silently duplicated slot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

from sqlalchemy import func, select

from contractflow.models.approval import ApprovalAuditTrail

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Created:
    impact: dict
    tier: str
    action = "created"

    def comments(self):
        return f"Submitted; routed to {self.tier}"

    def changes(self):
        return {"impact": self.impact, "tier": self.tier}


@dataclass(frozen=True)
class Reviewed:
    comments_text: str = ""
    action = "reviewed"

    def comments(self):
        return self.comments_text or None

    def changes(self):
        return None


@dataclass(frozen=True)
class Approved:
    comments_text: str = ""
    action = "approved"

    def comments(self):
        return self.comments_text or None

    def changes(self):
        return None


@dataclass(frozen=True)
class Rejected:
    reason: str = ""
    action = "rejected"

    def comments(self):
        return self.reason or None

    def changes(self):
        return None


@dataclass(frozen=True)
class Modified:
    original: dict
    modified: dict
    comments_text: str = ""
    action = "modified"

    def comments(self):
        return self.comments_text or None

    def changes(self):
        return {"original": self.original, "modified": self.modified}


AuditAction = Union[Created, Reviewed, Approved, Rejected, Modified]


@dataclass(frozen=True)
class RequestMeta:
    ip_address: str | None = None
    user_agent: str | None = None


def next_sequence(session, approval_id: str) -> int:
    current = session.execute(
        select(func.max(ApprovalAuditTrail.sequence))
        .where(ApprovalAuditTrail.approval_id == approval_id)
    ).scalar()
    return (current or 0) + 1


def append_entry(session, approval_id: str, action: AuditAction, performed_by: str,
                 previous_status: str | None, new_status: str | None,
                 request_meta: RequestMeta | None = None) -> ApprovalAuditTrail:
    """Add one audit row to the session and flush. Does NOT commit."""
    meta = request_meta or RequestMeta()
    entry = ApprovalAuditTrail(
        approval_id=approval_id,
        sequence=next_sequence(session, approval_id),
        action=action.action,
        performed_by=performed_by or "system",
        previous_status=previous_status,
        new_status=new_status,
        comments=action.comments(),
        changes=action.changes(),
        ip_address=meta.ip_address,
        user_agent=(meta.user_agent or "")[:300] or None,
    )
    session.add(entry)
    session.flush()
    logger.debug(
        "Audit #%d %s on approval %s by %s",
        entry.sequence, entry.action, approval_id, entry.performed_by,
        extra={"approval_id": approval_id},
    )
    return entry


def list_entries(session, approval_id: str) -> list[ApprovalAuditTrail]:
    """Audit rows for an approval, newest first."""
    return session.execute(
        select(ApprovalAuditTrail)
        .where(ApprovalAuditTrail.approval_id == approval_id)
        .order_by(ApprovalAuditTrail.sequence.desc())
    ).scalars().all()
