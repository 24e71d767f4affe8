"""
Review mixin for VerificationWorkflow.

Handles submission for decision and the compliance reviewer's terminal
decision. Only a reviewer rejects a case past pre-screening.
"""

from typing import Optional, Union

from exceptions import (
    DeclarationRequired, IncompleteOwnership, InvalidState, MissingDocuments,
    OverrideRequired, ValidationError, VerificationError,
)
from logger import get_logger
from models import CaseStatus, Declarations, Decision, KybStage, VerificationCase, VerificationKind
from utilities.beneficial_ownership import ownership_coverage
from utilities.document_requirements import missing_documents
from workflow_transitions import REVIEWABLE_STATUSES, TransitionEvent

logger = get_logger(__name__)

BULK_ACTIONS = ("approve", "reject")


class ReviewMixin:
    """Mixin providing submit, review and bulk review."""

    async def submit(
        self,
        case_id: str,
        declarations: Optional[Union[Declarations, dict]] = None,
    ) -> VerificationCase:
        """
        Submit an IN_PROGRESS case for its risk decision.

        KYB needs complete ownership coverage, the OWNER_VERIFICATION stage
        and both declarations, and always recomputes its assessment since
        owners may have changed after the last one.
        """
        async with self._operation("submit", case_id), self._lock(case_id):
            case = self._load(case_id)
            if case.status != CaseStatus.IN_PROGRESS:
                raise InvalidState(case.status.value, "submit", case_id)
            missing = missing_documents(case)
            if missing:
                raise MissingDocuments([d.value for d in missing], case_id)

            if isinstance(declarations, dict):
                declarations = Declarations(**declarations)

            if case.kind == VerificationKind.KYB:
                self._check_kyb_submission(case, declarations)
                recompute = True
            else:
                recompute = case.risk_assessment is None or case.risk_assessment.is_prescreen

            if declarations is not None:
                case.declarations = declarations
            case.submitted_at = self.clock()

            if recompute:
                await self._assess_and_decide(case, {"submitted": True})
            else:
                events = []
                event = (
                    TransitionEvent.RISK_AUTO_APPROVED
                    if case.risk_assessment.decision == Decision.AUTO_APPROVE
                    else TransitionEvent.RISK_REVIEW_REQUIRED
                )
                self._apply(case, event, events, {"submitted": True, "score": round(case.risk_assessment.score, 4)})
                self._commit(case, events)
            return case

    def _check_kyb_submission(self, case: VerificationCase, declarations: Optional[Declarations]):
        coverage = ownership_coverage(case.beneficial_owners, self.config.ubo_threshold, self.config.min_ownership_coverage)
        if not coverage["coverage_complete"]:
            problems = coverage["errors"] or [f"Total ownership is {coverage['total_ownership']:g}%"]
            raise IncompleteOwnership(f"Ownership coverage incomplete: {'; '.join(problems)}", case.case_id)

        self._refresh_stage(case)
        if case.stage != KybStage.OWNER_VERIFICATION:
            stage = case.stage.value if case.stage else None
            raise InvalidState(f"{case.status.value}/{stage}", "submit", case.case_id)

        if declarations is None or not declarations.ubo_declaration:
            raise DeclarationRequired("ubo_declaration", case.case_id)
        if not declarations.final_attestation:
            raise DeclarationRequired("final_attestation", case.case_id)

    async def review(
        self,
        case_id: str,
        approve: bool,
        reviewer_id: str,
        notes: Optional[str] = None,
        rejection_reason: Optional[str] = None,
        risk_override: bool = False,
    ) -> VerificationCase:
        """
        Record a reviewer's terminal decision.

        Raises:
            InvalidState: case is not awaiting a decision
            ValidationError: missing reviewer id, or rejection without a reason
            OverrideRequired: approving a known sanctions match without risk_override
        """
        async with self._operation("review", case_id), self._lock(case_id):
            case = self._load(case_id)
            if case.status not in REVIEWABLE_STATUSES:
                raise InvalidState(case.status.value, "review", case_id)
            if not reviewer_id or not reviewer_id.strip():
                raise ValidationError("Reviewer id is required", case_id)

            if approve:
                if self._has_sanctions_match(case) and not risk_override:
                    raise OverrideRequired("Case has a sanctions match; approval requires risk_override", case_id)
                event = TransitionEvent.REVIEWER_APPROVED
            else:
                if not rejection_reason or not rejection_reason.strip():
                    raise ValidationError("Rejection reason is required", case_id)
                case.rejection_reason = rejection_reason.strip()
                event = TransitionEvent.REVIEWER_REJECTED

            case.reviewed_by = reviewer_id
            case.reviewed_at = self.clock()
            case.review_notes = notes

            events = []
            self._apply(case, event, events, {
                "reviewer_id": reviewer_id,
                "notes": notes,
                "risk_override": risk_override,
                "rejection_reason": case.rejection_reason if not approve else None,
            })
            self._commit(case, events)
            if risk_override and approve:
                logger.warning(f"Case {case_id}: approved by {reviewer_id} with sanctions risk override")
            return case

    def _has_sanctions_match(self, case: VerificationCase) -> bool:
        if case.risk_assessment and case.risk_assessment.sanctions_match:
            return True
        if case.business_screening and case.business_screening.sanctions_match:
            return True
        return any(o.sanctions_match for o in case.active_owners)

    async def bulk_process(
        self,
        case_ids: list[str],
        action: str,
        reviewer_id: str,
        notes: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> dict:
        """
        Apply one review action to several cases independently.

        Returns dict with:
            successful_ids: list of str
            failed_ids: dict of case id -> reason
        """
        if action not in BULK_ACTIONS:
            raise ValidationError(f"Unknown bulk action '{action}', expected one of {', '.join(BULK_ACTIONS)}")

        successful_ids = []
        failed_ids = {}
        for case_id in case_ids:
            try:
                await self.review(
                    case_id,
                    approve=action == "approve",
                    reviewer_id=reviewer_id,
                    notes=notes,
                    rejection_reason=rejection_reason,
                )
                successful_ids.append(case_id)
            except VerificationError as e:
                failed_ids[case_id] = e.message

        logger.info(f"Bulk {action} by {reviewer_id}: {len(successful_ids)} succeeded, {len(failed_ids)} failed")
        return {"successful_ids": successful_ids, "failed_ids": failed_ids}
