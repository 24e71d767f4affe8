"""
Verification case lifecycle as pure functions.

transition(status, event) -> status is the only place the legal state
table lives. The workflow applies its result to the case record under the
per-case lock.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from exceptions import InvalidTransition
from models import CaseStatus, KybStage


class TransitionEvent(str, Enum):
    DOCUMENT_ACCEPTED = "document_accepted"
    PRESCREEN_HIT = "prescreen_hit"
    RISK_AUTO_APPROVED = "risk_auto_approved"
    RISK_REVIEW_REQUIRED = "risk_review_required"
    DISQUALIFIED = "disqualified"
    REVIEWER_APPROVED = "reviewer_approved"
    REVIEWER_REJECTED = "reviewer_rejected"
    VALIDITY_LAPSED = "validity_lapsed"


ALLOWED_TRANSITIONS: dict[CaseStatus, set[CaseStatus]] = {
    CaseStatus.PENDING: {CaseStatus.IN_PROGRESS, CaseStatus.REJECTED},
    CaseStatus.IN_PROGRESS: {CaseStatus.APPROVED, CaseStatus.REJECTED, CaseStatus.REQUIRES_MANUAL_REVIEW},
    CaseStatus.REQUIRES_MANUAL_REVIEW: {CaseStatus.APPROVED, CaseStatus.REJECTED},
    CaseStatus.APPROVED: {CaseStatus.EXPIRED},
    CaseStatus.REJECTED: set(),
    CaseStatus.EXPIRED: set(),
}

_TRANSITION_TABLE: dict[tuple[CaseStatus, TransitionEvent], CaseStatus] = {
    (CaseStatus.PENDING, TransitionEvent.DOCUMENT_ACCEPTED): CaseStatus.IN_PROGRESS,
    (CaseStatus.PENDING, TransitionEvent.PRESCREEN_HIT): CaseStatus.REJECTED,
    (CaseStatus.IN_PROGRESS, TransitionEvent.RISK_AUTO_APPROVED): CaseStatus.APPROVED,
    (CaseStatus.IN_PROGRESS, TransitionEvent.RISK_REVIEW_REQUIRED): CaseStatus.REQUIRES_MANUAL_REVIEW,
    (CaseStatus.IN_PROGRESS, TransitionEvent.DISQUALIFIED): CaseStatus.REJECTED,
    (CaseStatus.IN_PROGRESS, TransitionEvent.REVIEWER_APPROVED): CaseStatus.APPROVED,
    (CaseStatus.IN_PROGRESS, TransitionEvent.REVIEWER_REJECTED): CaseStatus.REJECTED,
    (CaseStatus.REQUIRES_MANUAL_REVIEW, TransitionEvent.REVIEWER_APPROVED): CaseStatus.APPROVED,
    (CaseStatus.REQUIRES_MANUAL_REVIEW, TransitionEvent.REVIEWER_REJECTED): CaseStatus.REJECTED,
    (CaseStatus.APPROVED, TransitionEvent.VALIDITY_LAPSED): CaseStatus.EXPIRED,
}

# Statuses that block a new case for the same subject
ACTIVE_STATUSES = {
    CaseStatus.PENDING, CaseStatus.IN_PROGRESS,
    CaseStatus.REQUIRES_MANUAL_REVIEW, CaseStatus.APPROVED,
}

# Statuses that accept document and owner changes
MUTABLE_STATUSES = {CaseStatus.PENDING, CaseStatus.IN_PROGRESS}

REVIEWABLE_STATUSES = {CaseStatus.REQUIRES_MANUAL_REVIEW, CaseStatus.IN_PROGRESS}

_STAGE_ORDER = list(KybStage)


def transition(current: CaseStatus, event: TransitionEvent, case_id: Optional[str] = None) -> CaseStatus:
    """Next status for (current, event). Raises InvalidTransition outside the table."""
    target = _TRANSITION_TABLE.get((current, event))
    if target is None or target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(current.value, event.value, case_id)
    return target


def add_years(moment: datetime, years: int) -> datetime:
    """Calendar-year offset; Feb 29 falls back to Feb 28."""
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        return moment.replace(year=moment.year + years, day=28)


def advance_stage(current: Optional[KybStage], target: KybStage) -> KybStage:
    """KYB stages only move forward."""
    if current is None:
        return target
    return target if _STAGE_ORDER.index(target) > _STAGE_ORDER.index(current) else current


def derive_stage(
    has_documents: bool,
    documents_complete: bool,
    ownership_complete: bool,
    decided: bool,
) -> KybStage:
    """Furthest KYB stage the case's data supports."""
    if decided:
        return KybStage.COMPLETED
    if documents_complete and ownership_complete:
        return KybStage.OWNER_VERIFICATION
    if documents_complete:
        return KybStage.ENTITY_VERIFICATION
    if has_documents:
        return KybStage.DOCUMENTS_UPLOADED
    return KybStage.DOCUMENTS_PENDING
