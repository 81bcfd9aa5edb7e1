from __future__ import annotations

import os
from enum import StrEnum


class TransitionMode(StrEnum):
    STRICT = "strict"
    LENIENT = "lenient"


def get_transition_mode() -> TransitionMode:
    raw = os.getenv("ISOLATION_TRANSITION_MODE", TransitionMode.STRICT).strip().lower()
    if raw == TransitionMode.LENIENT:
        return TransitionMode.LENIENT
    return TransitionMode.STRICT


class IsolationPlanStatus(StrEnum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


PLAN_ALLOWED_TRANSITIONS: dict[IsolationPlanStatus, set[IsolationPlanStatus]] = {
    IsolationPlanStatus.DRAFT: {
        IsolationPlanStatus.PENDING_APPROVAL,
        IsolationPlanStatus.CANCELLED,
    },
    IsolationPlanStatus.PENDING_APPROVAL: {
        IsolationPlanStatus.APPROVED,
        IsolationPlanStatus.DRAFT,
        IsolationPlanStatus.CANCELLED,
    },
    IsolationPlanStatus.APPROVED: {
        IsolationPlanStatus.ACTIVE,
        IsolationPlanStatus.CANCELLED,
    },
    IsolationPlanStatus.ACTIVE: {
        IsolationPlanStatus.COMPLETED,
        IsolationPlanStatus.CANCELLED,
    },
    IsolationPlanStatus.COMPLETED: set(),
    IsolationPlanStatus.CANCELLED: set(),
}

# Only the approve operation may move a plan into APPROVED.
PLAN_APPROVAL_ONLY_TARGETS = {IsolationPlanStatus.APPROVED}


def can_plan_transition(source: IsolationPlanStatus, target: IsolationPlanStatus) -> bool:
    return target in PLAN_ALLOWED_TRANSITIONS.get(source, set())


class IsolationPointStatus(StrEnum):
    PENDING = "pending"
    ISOLATED = "isolated"
    VERIFIED = "verified"
    RESTORED = "restored"


POINT_ALLOWED_TRANSITIONS: dict[IsolationPointStatus, set[IsolationPointStatus]] = {
    IsolationPointStatus.PENDING: {IsolationPointStatus.ISOLATED},
    IsolationPointStatus.ISOLATED: {
        IsolationPointStatus.VERIFIED,
        IsolationPointStatus.RESTORED,
    },
    IsolationPointStatus.VERIFIED: {IsolationPointStatus.RESTORED},
    IsolationPointStatus.RESTORED: set(),
}


def can_point_transition(source: IsolationPointStatus, target: IsolationPointStatus) -> bool:
    return target in POINT_ALLOWED_TRANSITIONS.get(source, set())
