"""Tests for the case lifecycle table and KYB stage helpers."""

import pytest
from datetime import datetime, timezone

from exceptions import InvalidTransition, StateError
from models import CaseStatus, KybStage
from workflow_transitions import (
    ALLOWED_TRANSITIONS, TransitionEvent, add_years, advance_stage,
    derive_stage, transition,
)


class TestTransition:
    def test_first_document_starts_progress(self):
        assert transition(CaseStatus.PENDING, TransitionEvent.DOCUMENT_ACCEPTED) == CaseStatus.IN_PROGRESS

    def test_prescreen_hit_rejects_pending(self):
        assert transition(CaseStatus.PENDING, TransitionEvent.PRESCREEN_HIT) == CaseStatus.REJECTED

    def test_risk_outcomes(self):
        assert transition(CaseStatus.IN_PROGRESS, TransitionEvent.RISK_AUTO_APPROVED) == CaseStatus.APPROVED
        assert transition(CaseStatus.IN_PROGRESS, TransitionEvent.RISK_REVIEW_REQUIRED) == CaseStatus.REQUIRES_MANUAL_REVIEW

    def test_reviewer_decisions(self):
        for status in (CaseStatus.IN_PROGRESS, CaseStatus.REQUIRES_MANUAL_REVIEW):
            assert transition(status, TransitionEvent.REVIEWER_APPROVED) == CaseStatus.APPROVED
            assert transition(status, TransitionEvent.REVIEWER_REJECTED) == CaseStatus.REJECTED

    def test_expiry_only_from_approved(self):
        assert transition(CaseStatus.APPROVED, TransitionEvent.VALIDITY_LAPSED) == CaseStatus.EXPIRED
        with pytest.raises(InvalidTransition):
            transition(CaseStatus.REQUIRES_MANUAL_REVIEW, TransitionEvent.VALIDITY_LAPSED)

    def test_terminal_states_reject_everything(self):
        for status in (CaseStatus.REJECTED, CaseStatus.EXPIRED):
            for event in TransitionEvent:
                with pytest.raises(InvalidTransition):
                    transition(status, event)

    def test_manual_review_cannot_auto_approve(self):
        with pytest.raises(InvalidTransition):
            transition(CaseStatus.REQUIRES_MANUAL_REVIEW, TransitionEvent.RISK_AUTO_APPROVED)

    def test_error_carries_context(self):
        with pytest.raises(InvalidTransition) as exc_info:
            transition(CaseStatus.APPROVED, TransitionEvent.DOCUMENT_ACCEPTED, "case_x")
        err = exc_info.value
        assert isinstance(err, StateError)
        assert err.case_id == "case_x"
        assert err.current == "APPROVED"
        assert err.event == "document_accepted"
        assert not err.retryable

    def test_table_matches_allowed_transitions(self):
        for status in CaseStatus:
            for event in TransitionEvent:
                try:
                    target = transition(status, event)
                except InvalidTransition:
                    continue
                assert target in ALLOWED_TRANSITIONS[status]

    def test_allowed_targets(self):
        assert CaseStatus.IN_PROGRESS in ALLOWED_TRANSITIONS[CaseStatus.PENDING]
        assert CaseStatus.APPROVED not in ALLOWED_TRANSITIONS[CaseStatus.PENDING]
        assert not ALLOWED_TRANSITIONS[CaseStatus.EXPIRED]


class TestAddYears:
    def test_plain_date(self):
        start = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        assert add_years(start, 1) == datetime(2027, 3, 1, 9, 0, tzinfo=timezone.utc)

    def test_leap_day_falls_back(self):
        start = datetime(2028, 2, 29, tzinfo=timezone.utc)
        assert add_years(start, 1) == datetime(2029, 2, 28, tzinfo=timezone.utc)


class TestStages:
    def test_stage_never_moves_backwards(self):
        assert advance_stage(KybStage.OWNER_VERIFICATION, KybStage.DOCUMENTS_UPLOADED) == KybStage.OWNER_VERIFICATION
        assert advance_stage(KybStage.DOCUMENTS_PENDING, KybStage.ENTITY_VERIFICATION) == KybStage.ENTITY_VERIFICATION

    def test_missing_stage_takes_target(self):
        assert advance_stage(None, KybStage.DOCUMENTS_UPLOADED) == KybStage.DOCUMENTS_UPLOADED

    def test_derive_stage(self):
        assert derive_stage(False, False, False, False) == KybStage.DOCUMENTS_PENDING
        assert derive_stage(True, False, True, False) == KybStage.DOCUMENTS_UPLOADED
        assert derive_stage(True, True, False, False) == KybStage.ENTITY_VERIFICATION
        assert derive_stage(True, True, True, False) == KybStage.OWNER_VERIFICATION
        assert derive_stage(True, False, False, True) == KybStage.COMPLETED
