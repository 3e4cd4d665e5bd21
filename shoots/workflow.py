"""Shoot status lifecycle.

Pure functions over plain values: the current status, the acting role and
the number of blocking issues. Persistence, locking and assignment checks
live in :mod:`shoots.services`.
"""
from __future__ import annotations

from dataclasses import dataclass

from rest_framework import status as http_status

from common.exceptions import DomainError

BOOKED = "booked"
RAW_UPLOADED = "raw_uploaded"
EDITING = "editing"
IN_REVIEW = "in_review"
READY = "ready"
DELIVERED = "delivered"
SCHEDULED = "scheduled"
COMPLETED = "completed"

STATUSES = (BOOKED, RAW_UPLOADED, EDITING, IN_REVIEW, READY, DELIVERED, SCHEDULED, COMPLETED)
INITIAL_STATUS = BOOKED
TERMINAL_STATUSES = frozenset({DELIVERED, COMPLETED})

UPLOAD_RAW = "upload_raw"
SEND_TO_EDITING = "send_to_editing"
SUBMIT_EDITS = "submit_edits"
FINALISE = "finalise"
MARK_COMPLETE = "mark_complete"

ADMIN = "admin"
SUPERADMIN = "superadmin"
PHOTOGRAPHER = "photographer"
EDITOR = "editor"
ADMINS = frozenset({ADMIN, SUPERADMIN})

# Statuses that count as unresolved for the review guard.
BLOCKING_ISSUE_STATUSES = ("open", "in-progress")


@dataclass(frozen=True)
class Transition:
    action: str
    sources: frozenset
    target: str
    roles: frozenset


TRANSITIONS = {
    UPLOAD_RAW: Transition(UPLOAD_RAW, frozenset({BOOKED, SCHEDULED}), RAW_UPLOADED, frozenset({PHOTOGRAPHER})),
    SEND_TO_EDITING: Transition(SEND_TO_EDITING, frozenset({RAW_UPLOADED}), EDITING, ADMINS),
    SUBMIT_EDITS: Transition(SUBMIT_EDITS, frozenset({EDITING}), IN_REVIEW, frozenset({EDITOR})),
    FINALISE: Transition(FINALISE, frozenset({IN_REVIEW}), DELIVERED, ADMINS),
    MARK_COMPLETE: Transition(MARK_COMPLETE, frozenset(STATUSES) - {COMPLETED}, COMPLETED, ADMINS),
}


class TransitionRejected(DomainError):
    INVALID_TRANSITION = "invalid_transition"
    FORBIDDEN = "forbidden"
    NOT_ASSIGNED = "not_assigned"
    OPEN_ISSUES = "open_issues"
    UPLOAD_REQUIRED = "upload_required"

    STATUS_BY_REASON = {
        FORBIDDEN: http_status.HTTP_403_FORBIDDEN,
        NOT_ASSIGNED: http_status.HTTP_403_FORBIDDEN,
    }
    MESSAGES = {
        INVALID_TRANSITION: "This status change is not allowed from the shoot's current status.",
        FORBIDDEN: "Your role cannot perform this workflow action.",
        NOT_ASSIGNED: "Only the user assigned to this shoot can perform this workflow action.",
        OPEN_ISSUES: "Resolve all open issues before the shoot can leave review.",
        UPLOAD_REQUIRED: "This status is reached by uploading files, not by editing the shoot.",
    }

    def __init__(self, reason, details=None, message=None):
        super().__init__(reason, details=details, message=message or self.MESSAGES.get(reason))
        self.status_code = self.STATUS_BY_REASON.get(reason, http_status.HTTP_409_CONFLICT)


def _get_transition(action):
    try:
        return TRANSITIONS[action]
    except KeyError:
        raise TransitionRejected(TransitionRejected.INVALID_TRANSITION, {"action": action}) from None


def check_transition(action: str, current: str, *, role: str | None, open_issue_count: int = 0) -> str:
    """Return the status ``action`` moves a shoot to, or raise ``TransitionRejected``.

    The role is checked before the source status so that a caller without
    the capability learns nothing about the shoot's state.
    """
    transition = _get_transition(action)
    details = {"action": action, "from_status": current, "to_status": transition.target}

    if role not in transition.roles:
        raise TransitionRejected(TransitionRejected.FORBIDDEN, {**details, "role": role})
    if current not in transition.sources:
        raise TransitionRejected(TransitionRejected.INVALID_TRANSITION, details)
    if current == IN_REVIEW and open_issue_count > 0:
        raise TransitionRejected(
            TransitionRejected.OPEN_ISSUES,
            {**details, "open_issue_count": open_issue_count},
        )
    return transition.target


def resolve_action(current: str, target: str) -> str:
    """Map a requested ``current -> target`` status change to the action that owns that edge."""
    for transition in TRANSITIONS.values():
        if transition.target == target and current in transition.sources:
            return transition.action
    raise TransitionRejected(
        TransitionRejected.INVALID_TRANSITION,
        {"from_status": current, "to_status": target},
    )


def available_actions(current: str, role: str | None, open_issue_count: int = 0) -> list[str]:
    actions = []
    for action in TRANSITIONS:
        try:
            check_transition(action, current, role=role, open_issue_count=open_issue_count)
        except TransitionRejected:
            continue
        actions.append(action)
    return actions
