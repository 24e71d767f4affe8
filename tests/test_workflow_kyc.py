"""Tests for the KYC verification workflow."""

import asyncio
import pytest
from datetime import datetime, timezone

from config import Config
from exceptions import (
    CaseNotFound, DuplicateActiveCase, DuplicateDocument, InvalidDocument, InvalidState,
    MissingDocuments, OverrideRequired, ScreeningUnavailable, UnexpectedDocumentType,
    ValidationError,
)
from models import (
    CaseStatus, ComplianceRule, Decision, DocumentType, KycLevel, PersonalInfo,
    RuleAction, RuleCondition, RuleOperator, RuleType, ScreeningResult,
)
from utilities.rules_engine import RuleStore
from workflow import VerificationWorkflow
from workflow_metrics import ERRORS_TOTAL, OPERATIONS_TOTAL, SCREENINGS_TOTAL

from conftest import (
    PDF_BYTES, START, FailingBus, FakeCapture, FakeScreening, pep_screening,
    png_header, run, sanctions_screening,
)


def make_workflow(repo, screening, capture, bus, clock, **kwargs):
    return VerificationWorkflow(
        repository=repo, screening=screening, capture=capture,
        event_bus=bus, clock=clock, config=kwargs.pop("config", Config()), **kwargs,
    )


async def submit_pdf(workflow, case_id, document_type, side=None):
    filename = f"{document_type.value.lower()}.pdf"
    return await workflow.submit_document(case_id, document_type, PDF_BYTES, filename, "application/pdf", side=side)


async def complete_documents(workflow, case_id):
    await submit_pdf(workflow, case_id, DocumentType.NATIONAL_ID, side="front")
    return await submit_pdf(workflow, case_id, DocumentType.SELFIE)


def kyc_rule(rule_id, action, field="kycLevel", value="BASIC"):
    return ComplianceRule(
        rule_id=rule_id,
        name=rule_id,
        rule_type=RuleType.KYC_REQUIREMENTS,
        conditions=[RuleCondition(field=field, operator=RuleOperator.EQUALS, value=value)],
        action=action,
        severity="MEDIUM",
    )


class TestInitiation:
    def test_opens_pending_case(self, workflow, bus, personal_info):
        case = run(workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info))
        assert case.status == CaseStatus.PENDING
        assert case.created_at == START
        assert case.risk_assessment.is_prescreen
        assert case.risk_flags == []
        assert bus.names(case.case_id) == ["kyc.initiated", "kyc.risk_assessed"]
        assert bus.events[0].data == {"tier": "BASIC"}

    def test_duplicate_active_case(self, workflow, personal_info):
        first = run(workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info))
        with pytest.raises(DuplicateActiveCase) as exc_info:
            run(workflow.initiate_kyc("user-1", KycLevel.STANDARD, personal_info))
        assert exc_info.value.existing_case_id == first.case_id

    def test_concurrent_initiations_create_one_case(self, workflow, repo, personal_info):
        async def scenario():
            return await asyncio.gather(
                workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info),
                workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info),
                return_exceptions=True,
            )

        results = run(scenario())
        assert sum(isinstance(r, DuplicateActiveCase) for r in results) == 1
        assert len(repo.find_by_subject("user-1")) == 1
        assert workflow._locks == {}

    def test_hard_hit_rejects_at_prescreen(self, workflow, screening, bus, personal_info):
        screening.default = sanctions_screening(score=0.99)
        case = run(workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info))
        assert case.status == CaseStatus.REJECTED
        assert "pre-screening" in case.rejection_reason
        assert case.expires_at is None
        assert bus.names(case.case_id)[-1] == "kyc.rejected"
        assert bus.events[-1].data["sanctions_score"] == pytest.approx(0.99)

    def test_rejected_subject_can_start_again(self, workflow, screening, personal_info):
        screening.default = sanctions_screening(score=0.99)
        run(workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info))
        screening.default = pep_screening()
        case = run(workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info))
        assert case.status == CaseStatus.PENDING

    def test_soft_hit_is_flagged(self, workflow, screening, personal_info):
        screening.default = sanctions_screening(score=0.9)
        case = run(workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info))
        assert case.status == CaseStatus.PENDING
        assert case.risk_flags == ["initial_screening_hit"]

    def test_unavailable_provider_is_flagged(self, workflow, screening, personal_info):
        screening.default = ScreeningResult.safe_default()
        case = run(workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info))
        assert case.status == CaseStatus.PENDING
        assert "prescreen_unavailable" in case.risk_flags

    def test_get_case_not_found(self, workflow):
        with pytest.raises(CaseNotFound):
            workflow.get_case("case_missing")


class TestCleanFlow:
    def test_clean_case_is_approved(self, workflow, repo, bus, metrics, personal_info):
        async def scenario():
            case = await workflow.initiate_kyc("user-1001", KycLevel.BASIC, personal_info)
            return await complete_documents(workflow, case.case_id)

        case = run(scenario())
        assert case.status == CaseStatus.APPROVED
        assert case.risk_assessment.score == pytest.approx(0.985)
        assert case.risk_assessment.decision == Decision.AUTO_APPROVE
        assert not case.risk_assessment.is_prescreen
        assert case.approved_at == START
        assert case.expires_at == datetime(2027, 3, 1, 9, 0, tzinfo=timezone.utc)
        assert repo.find_by_id(case.case_id).status == CaseStatus.APPROVED

        assert bus.names(case.case_id) == [
            "kyc.initiated",
            "kyc.risk_assessed",
            "kyc.document.uploaded",
            "kyc.in_progress",
            "kyc.document.uploaded",
            "kyc.risk_assessed",
            "kyc.approved",
        ]
        approved = bus.events[-1].data
        assert approved["from"] == "IN_PROGRESS"
        assert approved["trigger"] == "risk_auto_approved"

        assert metrics.counter_value(OPERATIONS_TOTAL, {"operation": "submit_document", "status": "success"}) == 2
        assert metrics.counter_value(SCREENINGS_TOTAL, {"result": "clear"}) == 2

    def test_documents_are_analyzed_and_stored(self, workflow, capture, personal_info):
        async def scenario():
            case = await workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info)
            return await submit_pdf(workflow, case.case_id, DocumentType.NATIONAL_ID, side="front")

        case = run(scenario())
        assert case.status == CaseStatus.IN_PROGRESS
        document = case.documents[0]
        assert document.storage_url == "memory://1/national_id.pdf"
        assert document.quality_score == 0.95
        assert document.size_bytes == len(PDF_BYTES)
        assert capture.uploads == ["national_id.pdf"]

    def test_required_documents_checklist(self, workflow, personal_info):
        async def scenario():
            case = await workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info)
            await submit_pdf(workflow, case.case_id, DocumentType.NATIONAL_ID, side="front")
            return workflow.get_required_documents(case.case_id)

        checklist = run(scenario())
        assert checklist["required"] == ["NATIONAL_ID", "SELFIE"]
        assert checklist["missing"] == ["SELFIE"]
        assert checklist["complete"] is False
        assert checklist["submitted"][0]["side"] == "front"

    def test_dob_from_document_when_not_declared(self, repo, screening, bus, clock):
        capture = FakeCapture(fields={"date_of_birth": "1990-04-02"})
        workflow = make_workflow(repo, screening, capture, bus, clock)
        info = PersonalInfo(first_name="Emily", last_name="Carter", nationality="CA")

        async def scenario():
            case = await workflow.initiate_kyc("user-1", KycLevel.BASIC, info)
            return await complete_documents(workflow, case.case_id)

        case = run(scenario())
        assert case.risk_assessment.age_verified is True
        assert case.status == CaseStatus.APPROVED

    def test_unknown_dob_goes_to_review(self, workflow):
        info = PersonalInfo(first_name="Emily", last_name="Carter", nationality="CA")

        async def scenario():
            case = await workflow.initiate_kyc("user-1", KycLevel.BASIC, info)
            return await complete_documents(workflow, case.case_id)

        case = run(scenario())
        assert "age_unverified" in case.risk_assessment.factor_codes()
        assert case.status == CaseStatus.REQUIRES_MANUAL_REVIEW

    def test_approved_case_is_frozen(self, workflow, personal_info):
        async def scenario():
            case = await workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info)
            await complete_documents(workflow, case.case_id)
            await submit_pdf(workflow, case.case_id, DocumentType.DRIVERS_LICENSE)

        with pytest.raises(InvalidState):
            run(scenario())

    def test_expired_approval_allows_new_case(self, workflow, clock, personal_info):
        async def scenario():
            case = await workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info)
            await complete_documents(workflow, case.case_id)
            clock.advance(days=366)
            return await workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info)

        assert run(scenario()).status == CaseStatus.PENDING


class TestDocumentValidation:
    @pytest.fixture
    def case_id(self, workflow, personal_info):
        return run(workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info)).case_id

    def test_empty_content(self, workflow, case_id):
        with pytest.raises(InvalidDocument, match="empty"):
            run(workflow.submit_document(case_id, DocumentType.NATIONAL_ID, b"", "id.pdf", "application/pdf"))

    def test_oversized(self, repo, screening, capture, bus, clock, personal_info):
        workflow = make_workflow(repo, screening, capture, bus, clock, config=Config(max_document_size=16))

        async def scenario():
            case = await workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info)
            await submit_pdf(workflow, case.case_id, DocumentType.NATIONAL_ID)

        with pytest.raises(InvalidDocument, match="limit"):
            run(scenario())

    def test_mime_type(self, workflow, case_id):
        with pytest.raises(InvalidDocument, match="MIME"):
            run(workflow.submit_document(case_id, DocumentType.NATIONAL_ID, PDF_BYTES, "id.pdf", "text/plain"))

    def test_extension(self, workflow, case_id):
        with pytest.raises(InvalidDocument, match="extension"):
            run(workflow.submit_document(case_id, DocumentType.NATIONAL_ID, PDF_BYTES, "id.exe", "application/pdf"))

    def test_unexpected_type(self, workflow, case_id):
        with pytest.raises(UnexpectedDocumentType):
            run(submit_pdf(workflow, case_id, DocumentType.PASSPORT))

    def test_rejected_upload_leaves_case_unchanged(self, workflow, repo, capture, case_id):
        with pytest.raises(InvalidDocument):
            run(workflow.submit_document(case_id, DocumentType.NATIONAL_ID, PDF_BYTES, "id.gif", "image/gif"))
        case = repo.find_by_id(case_id)
        assert case.status == CaseStatus.PENDING
        assert case.documents == []
        assert capture.uploads == []

    def test_duplicate_type_and_side(self, workflow, case_id):
        run(submit_pdf(workflow, case_id, DocumentType.NATIONAL_ID, side="front"))
        with pytest.raises(DuplicateDocument):
            run(submit_pdf(workflow, case_id, DocumentType.NATIONAL_ID, side="front"))
        case = run(submit_pdf(workflow, case_id, DocumentType.NATIONAL_ID, side="back"))
        assert len(case.documents) == 2

    def test_undecodable_image_is_still_accepted(self, workflow, case_id):
        content = png_header(20000, 10000)
        case = run(workflow.submit_document(case_id, DocumentType.NATIONAL_ID, content, "id.png", "image/png", side="front"))
        assert case.status == CaseStatus.IN_PROGRESS
        assert case.documents[0].analysis.fraud.indicators == ["detection_error"]
        assert case.documents[0].quality_score == 0.5

    def test_concurrent_duplicates(self, workflow, repo, case_id):
        async def scenario():
            return await asyncio.gather(
                submit_pdf(workflow, case_id, DocumentType.NATIONAL_ID, side="front"),
                submit_pdf(workflow, case_id, DocumentType.NATIONAL_ID, side="front"),
                return_exceptions=True,
            )

        results = run(scenario())
        assert sum(isinstance(r, DuplicateDocument) for r in results) == 1
        assert len(repo.find_by_id(case_id).documents) == 1
        assert workflow._locks == {}


class TestScreeningOutcomes:
    def test_sanctions_match_requires_review(self, workflow, screening, personal_info):
        screening.default = sanctions_screening(score=0.9)

        async def scenario():
            case = await workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info)
            return await complete_documents(workflow, case.case_id)

        case = run(scenario())
        assert case.status == CaseStatus.REQUIRES_MANUAL_REVIEW
        assert case.risk_assessment.sanctions_match
        assert case.expires_at is None
        assert "initial_screening_hit" in case.risk_assessment.factor_codes()
        assert case.risk_assessment.rule_action == RuleAction.BLOCK
        assert any(a.rule_id == "sanctions-match" for a in case.alerts)

    def test_timeout_keeps_document_and_retries(self, repo, capture, bus, clock, metrics, personal_info):
        screening = FakeScreening(delay=0.2)
        workflow = make_workflow(
            repo, screening, capture, bus, clock, metrics=metrics, config=Config(screening_timeout=0.01),
        )

        async def scenario():
            case = await workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info)
            await submit_pdf(workflow, case.case_id, DocumentType.NATIONAL_ID, side="front")
            with pytest.raises(ScreeningUnavailable):
                await submit_pdf(workflow, case.case_id, DocumentType.SELFIE)

            stored = repo.find_by_id(case.case_id)
            assert stored.status == CaseStatus.IN_PROGRESS
            assert len(stored.documents) == 2
            assert "prescreen_unavailable" in stored.risk_flags

            screening.delay = 0.0
            assessment = await workflow.assess_risk(case.case_id)
            return assessment, workflow.get_case(case.case_id)

        assessment, case = run(scenario())
        assert assessment.decision == Decision.AUTO_APPROVE
        assert case.status == CaseStatus.APPROVED
        assert metrics.counter_value(SCREENINGS_TOTAL, {"result": "timeout"}) == 2
        assert metrics.counter_value(ERRORS_TOTAL, {"error": "ScreeningUnavailable"}) >= 1

    def test_submit_recomputes_after_timeout(self, repo, capture, bus, clock, personal_info):
        screening = FakeScreening(delay=0.2)
        workflow = make_workflow(repo, screening, capture, bus, clock, config=Config(screening_timeout=0.01))

        async def scenario():
            case = await workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info)
            await submit_pdf(workflow, case.case_id, DocumentType.NATIONAL_ID, side="front")
            with pytest.raises(ScreeningUnavailable):
                await submit_pdf(workflow, case.case_id, DocumentType.SELFIE)
            screening.delay = 0.0
            return await workflow.submit(case.case_id)

        case = run(scenario())
        assert case.status == CaseStatus.APPROVED
        assert case.submitted_at == START
        assert bus.events[-1].data["submitted"] is True

    def test_submit_with_missing_documents(self, workflow, personal_info):
        async def scenario():
            case = await workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info)
            await submit_pdf(workflow, case.case_id, DocumentType.NATIONAL_ID, side="front")
            await workflow.submit(case.case_id)

        with pytest.raises(MissingDocuments) as exc_info:
            run(scenario())
        assert exc_info.value.missing == ["SELFIE"]

    def test_assess_risk_requires_in_progress(self, workflow, personal_info):
        case = run(workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info))
        with pytest.raises(InvalidState):
            run(workflow.assess_risk(case.case_id))


class TestRuleOverrides:
    def test_review_rule_overrides_auto_approval(self, repo, screening, capture, bus, clock, personal_info):
        store = RuleStore([kyc_rule("basic-review", RuleAction.MANUAL_REVIEW)])
        workflow = make_workflow(repo, screening, capture, bus, clock, rule_store=store)

        async def scenario():
            case = await workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info)
            return await complete_documents(workflow, case.case_id)

        case = run(scenario())
        assert case.status == CaseStatus.REQUIRES_MANUAL_REVIEW
        assert case.risk_assessment.decision == Decision.MANUAL_REVIEW
        assert "rule_override" in case.risk_assessment.factor_codes()
        assert [a.rule_id for a in case.alerts] == ["basic-review"]

    def test_block_never_rejects(self, repo, screening, capture, bus, clock, personal_info):
        store = RuleStore([kyc_rule("basic-block", RuleAction.BLOCK)])
        workflow = make_workflow(repo, screening, capture, bus, clock, rule_store=store)

        async def scenario():
            case = await workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info)
            return await complete_documents(workflow, case.case_id)

        assert run(scenario()).status == CaseStatus.REQUIRES_MANUAL_REVIEW

    def test_enhanced_monitoring_keeps_approval(self, repo, screening, capture, bus, clock, personal_info):
        store = RuleStore([kyc_rule("watch", RuleAction.ENHANCED_MONITORING)])
        workflow = make_workflow(repo, screening, capture, bus, clock, rule_store=store)

        async def scenario():
            case = await workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info)
            return await complete_documents(workflow, case.case_id)

        case = run(scenario())
        assert case.status == CaseStatus.APPROVED
        assert case.enhanced_monitoring is True
        assert case.risk_assessment.rule_action == RuleAction.ENHANCED_MONITORING

    def test_check_transaction(self, workflow, metrics):
        evaluation = workflow.check_transaction({"amount": 25000, "userId": "user-1"})
        assert evaluation.resolved_action == RuleAction.ENHANCED_MONITORING
        assert evaluation.triggered_rule_ids == ["txn-high-value"]
        assert metrics.counter_value("compliance_checks_total", {"check": "transaction"}) == 1


class TestReview:
    def _in_review(self, workflow, subject_id, personal_info):
        async def scenario():
            case = await workflow.initiate_kyc(subject_id, KycLevel.BASIC, personal_info)
            return await complete_documents(workflow, case.case_id)
        return run(scenario())

    def test_sanctions_approval_needs_override(self, workflow, screening, personal_info):
        screening.default = sanctions_screening(score=0.9)
        case = self._in_review(workflow, "user-1", personal_info)
        with pytest.raises(OverrideRequired):
            run(workflow.review(case.case_id, approve=True, reviewer_id="analyst-7"))
        assert workflow.get_case(case.case_id).expires_at is None

        approved = run(workflow.review(case.case_id, approve=True, reviewer_id="analyst-7", risk_override=True, notes="false positive"))
        assert approved.status == CaseStatus.APPROVED
        assert approved.reviewed_by == "analyst-7"
        assert approved.review_notes == "false positive"
        assert approved.expires_at == datetime(2027, 3, 1, 9, 0, tzinfo=timezone.utc)

    def test_reject_requires_reason(self, workflow, screening, personal_info):
        screening.default = pep_screening()
        case = self._in_review(workflow, "user-1", personal_info)
        with pytest.raises(ValidationError, match="reason"):
            run(workflow.review(case.case_id, approve=False, reviewer_id="analyst-7", rejection_reason="  "))
        rejected = run(workflow.review(case.case_id, approve=False, reviewer_id="analyst-7", rejection_reason="Unverifiable source of funds"))
        assert rejected.status == CaseStatus.REJECTED
        assert rejected.rejection_reason == "Unverifiable source of funds"
        assert rejected.expires_at is None
        assert rejected.approved_at is None

    def test_reviewer_id_required(self, workflow, screening, personal_info):
        screening.default = pep_screening()
        case = self._in_review(workflow, "user-1", personal_info)
        with pytest.raises(ValidationError, match="Reviewer"):
            run(workflow.review(case.case_id, approve=True, reviewer_id=""))

    def test_pending_case_cannot_be_reviewed(self, workflow, personal_info):
        case = run(workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info))
        with pytest.raises(InvalidState):
            run(workflow.review(case.case_id, approve=True, reviewer_id="analyst-7"))

    def test_in_progress_case_can_be_rejected(self, workflow, personal_info):
        async def scenario():
            case = await workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info)
            await submit_pdf(workflow, case.case_id, DocumentType.NATIONAL_ID, side="front")
            return await workflow.review(case.case_id, approve=False, reviewer_id="analyst-7", rejection_reason="Withdrawn")

        case = run(scenario())
        assert case.status == CaseStatus.REJECTED
        assert case.expires_at is None

    def test_bulk_process(self, workflow, screening, personal_info):
        screening.default = pep_screening()
        first = self._in_review(workflow, "user-1", personal_info)
        second = self._in_review(workflow, "user-2", personal_info)

        result = run(workflow.bulk_process([first.case_id, "case_missing", second.case_id], "approve", "analyst-7"))
        assert result["successful_ids"] == [first.case_id, second.case_id]
        assert list(result["failed_ids"]) == ["case_missing"]
        assert result["failed_ids"]["case_missing"] == "Verification case not found"
        assert workflow.get_case(first.case_id).status == CaseStatus.APPROVED

    def test_bulk_reject_without_reason_fails_each(self, workflow, screening, personal_info):
        screening.default = pep_screening()
        case = self._in_review(workflow, "user-1", personal_info)
        result = run(workflow.bulk_process([case.case_id], "reject", "analyst-7"))
        assert result["successful_ids"] == []
        assert case.case_id in result["failed_ids"]

    def test_bulk_unknown_action(self, workflow):
        with pytest.raises(ValidationError):
            run(workflow.bulk_process(["case_1"], "escalate", "analyst-7"))


class TestEventDelivery:
    def test_bus_failure_does_not_roll_back(self, repo, screening, capture, clock, metrics, personal_info):
        workflow = make_workflow(repo, screening, capture, FailingBus(), clock, metrics=metrics)

        async def scenario():
            case = await workflow.initiate_kyc("user-1", KycLevel.BASIC, personal_info)
            return await complete_documents(workflow, case.case_id)

        case = run(scenario())
        assert case.status == CaseStatus.APPROVED
        assert repo.find_by_id(case.case_id).status == CaseStatus.APPROVED
        assert metrics.counter_value(ERRORS_TOTAL, {"operation": "publish_event"}) == 7
