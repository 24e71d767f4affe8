"""
Assessment mixin for VerificationWorkflow.

Screening calls, pre-screening at initiation, the full risk assessment and
the rule overrides applied on top of the risk decision.
"""

import asyncio
from datetime import date
from typing import Optional, Union

from exceptions import InvalidState, MissingDocuments, ScreeningUnavailable
from logger import get_logger
from models import (
    AlertStatus, BeneficialOwner, BusinessScreeningResult, CaseStatus, Decision, OwnerType,
    RiskAssessment, RiskFactor, RuleAction, RuleEvaluation, RuleType,
    ScreeningResult, VerificationCase, VerificationKind,
)
from utilities.document_requirements import missing_documents
from utilities.rules_engine import build_kyb_context, build_kyc_context
from workflow_metrics import CHECKS_TOTAL, ERRORS_TOTAL, RISK_SCORES, SCREENINGS_TOTAL
from workflow_transitions import TransitionEvent

logger = get_logger(__name__)

INITIAL_SCREENING_HIT = "initial_screening_hit"
PRESCREEN_UNAVAILABLE = "prescreen_unavailable"

KYC_RULE_TYPES = [RuleType.KYC_REQUIREMENTS, RuleType.SANCTIONS_SCREENING]
KYB_RULE_TYPES = [RuleType.KYB_REQUIREMENTS, RuleType.SANCTIONS_SCREENING, RuleType.GEOGRAPHIC_RESTRICTIONS]

# Resolved actions that send an auto-approvable case to a reviewer
REVIEW_ACTIONS = {RuleAction.REQUEST_ADDITIONAL_INFO, RuleAction.MANUAL_REVIEW, RuleAction.BLOCK}


def _assessment_summary(assessment: RiskAssessment) -> dict:
    return {
        "score": round(assessment.score, 4),
        "decision": assessment.decision.value,
        "confidence": assessment.confidence,
        "rule_action": assessment.rule_action.value,
        "factors": assessment.factor_codes(),
        "prescreen": assessment.is_prescreen,
    }


class AssessmentMixin:
    """Mixin providing screening, pre-screening and risk assessment."""

    # -------------------------------------------------------------------------
    # Screening
    # -------------------------------------------------------------------------

    async def _screen(self, call, operation: str, case_id: str) -> Union[ScreeningResult, BusinessScreeningResult]:
        """Await one screening call under the configured timeout."""
        timeout = self.config.screening_timeout
        labels = {"provider": self.screening.name, "operation": operation}
        try:
            result = await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError:
            self.metrics.increment(SCREENINGS_TOTAL, {**labels, "result": "timeout"})
            raise ScreeningUnavailable(operation, f"no answer within {timeout:g}s", case_id)

        if not result.provider_available:
            outcome = "unavailable"
            logger.warning(f"Case {case_id}: screening provider unavailable during {operation}, using safe default")
        elif result.matches:
            outcome = "hit"
        else:
            outcome = "clear"
        self.metrics.increment(SCREENINGS_TOTAL, {**labels, "result": outcome})
        return result

    async def _screen_subject(self, case: VerificationCase, operation: str) -> ScreeningResult:
        info = case.personal_info
        return await self._screen(
            self.screening.screen_individual(
                info.full_name,
                date_of_birth=self._date_of_birth(case),
                nationality=info.nationality,
                address=info.address.one_line() if info.address else None,
            ),
            operation,
            case.case_id,
        )

    async def _screen_entity(self, case: VerificationCase, operation: str) -> BusinessScreeningResult:
        details = case.business_details
        return await self._screen(
            self.screening.screen_business(
                details.legal_name,
                registration_number=details.registration_number,
                country=details.incorporation_country,
                address=details.address.one_line() if details.address else None,
            ),
            operation,
            case.case_id,
        )

    async def _screen_owner(self, owner: BeneficialOwner, case_id: str):
        if owner.owner_type == OwnerType.ENTITY:
            call = self.screening.screen_business(owner.entity_name, country=owner.jurisdiction)
        else:
            call = self.screening.screen_individual(
                owner.display_name,
                date_of_birth=owner.date_of_birth,
                nationality=owner.nationality,
            )
        return await self._screen(call, "owner_screening", case_id)

    async def _screen_owners(self, case: VerificationCase) -> dict:
        owners = case.active_owners
        results = await asyncio.gather(
            *(self._screen_owner(o, case.case_id) for o in owners),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return {o.owner_id: r for o, r in zip(owners, results)}

    def _date_of_birth(self, case: VerificationCase) -> Optional[date]:
        """Declared DOB, else one extracted from a submitted document."""
        if case.personal_info and case.personal_info.date_of_birth:
            return case.personal_info.date_of_birth
        for document in case.documents:
            value = document.extracted_fields.get("date_of_birth")
            if not value:
                continue
            try:
                return value if isinstance(value, date) else date.fromisoformat(str(value))
            except ValueError:
                logger.debug(f"Case {case.case_id}: unparseable extracted date_of_birth {value!r}")
        return None

    # -------------------------------------------------------------------------
    # Pre-screening
    # -------------------------------------------------------------------------

    async def _prescreen(self, case: VerificationCase):
        """
        Screen the declared subject data right after initiation.

        Only a hard sanctions hit rejects. A softer hit is flagged for the
        full assessment; an unreachable provider is flagged and the case
        stays PENDING.
        """
        today = self.clock().date()
        try:
            if case.kind == VerificationKind.KYC:
                screening = await self._screen_subject(case, "prescreen")
                assessment = self.risk_engine.score_individual(
                    screening, date_of_birth=self._date_of_birth(case), today=today, prescreen=True,
                )
            else:
                screening = await self._screen_entity(case, "prescreen")
                assessment = self.risk_engine.score_business(
                    screening, [], case.business_details.industry, [], {}, today=today, prescreen=True,
                )
                case.business_screening = screening
        except ScreeningUnavailable as e:
            logger.warning(f"Case {case.case_id}: pre-screen skipped, {e.reason}")
            self.metrics.increment(ERRORS_TOTAL, {"operation": "prescreen", "error": type(e).__name__})
            self._add_flag(case, PRESCREEN_UNAVAILABLE)
            self._commit(case, [])
            return

        case.risk_assessment = assessment
        events = [(f"{case.event_prefix}.risk_assessed", _assessment_summary(assessment))]
        if not screening.provider_available:
            self._add_flag(case, PRESCREEN_UNAVAILABLE)

        if self.risk_engine.is_hard_sanctions_hit(screening):
            case.rejection_reason = "Sanctions list match at pre-screening"
            self._apply(case, TransitionEvent.PRESCREEN_HIT, events, {
                "sanctions_score": screening.strongest_sanctions_score(),
            })
        elif screening.matches:
            self._add_flag(case, INITIAL_SCREENING_HIT)
            logger.info(f"Case {case.case_id}: pre-screen returned {len(screening.matches)} possible match(es)")
        self._commit(case, events)

    def _add_flag(self, case: VerificationCase, flag: str):
        if flag not in case.risk_flags:
            case.risk_flags.append(flag)

    # -------------------------------------------------------------------------
    # Full assessment
    # -------------------------------------------------------------------------

    async def assess_risk(self, case_id: str) -> RiskAssessment:
        """
        (Re)compute the risk assessment of an IN_PROGRESS case.

        KYC cases take their transition from the result; KYB cases keep the
        assessment and wait for submit(). This is the retry path after a
        screening timeout.
        """
        async with self._operation("assess_risk", case_id), self._lock(case_id):
            case = self._load(case_id)
            if case.status != CaseStatus.IN_PROGRESS:
                raise InvalidState(case.status.value, "assess risk", case_id)
            missing = missing_documents(case)
            if missing:
                raise MissingDocuments([d.value for d in missing], case_id)

            if case.kind == VerificationKind.KYC:
                await self._assess_and_decide(case)
            else:
                assessment = await self._compute_assessment(case)
                self._commit(case, [(f"{case.event_prefix}.risk_assessed", _assessment_summary(assessment))])
            return case.risk_assessment

    def check_transaction(self, context: dict) -> RuleEvaluation:
        """Transaction monitoring and velocity rules for one transaction."""
        evaluation = self.rules.check_transaction(context)
        self.metrics.increment(CHECKS_TOTAL, {"check": "transaction", "result": evaluation.resolved_action.value})
        return evaluation

    async def _assess_and_decide(self, case: VerificationCase, data: Optional[dict] = None):
        """Assess, then move IN_PROGRESS to APPROVED or REQUIRES_MANUAL_REVIEW."""
        assessment = await self._compute_assessment(case)
        events = [(f"{case.event_prefix}.risk_assessed", _assessment_summary(assessment))]
        event = (
            TransitionEvent.RISK_AUTO_APPROVED
            if assessment.decision == Decision.AUTO_APPROVE
            else TransitionEvent.RISK_REVIEW_REQUIRED
        )
        payload = {"score": round(assessment.score, 4), "decision": assessment.decision.value}
        payload.update(data or {})
        self._apply(case, event, events, payload)
        self._commit(case, events)

    async def _compute_assessment(self, case: VerificationCase) -> RiskAssessment:
        """Screen, score and apply rules. Nothing on the case changes until screening succeeds."""
        today = self.clock().date()
        if case.kind == VerificationKind.KYC:
            screening = await self._screen_subject(case, "assess_risk")
            assessment = self.risk_engine.score_individual(
                screening, case.documents, self._date_of_birth(case), today,
            )
        else:
            screening = await self._screen_entity(case, "assess_risk")
            owner_screenings = await self._screen_owners(case)
            assessment = self.risk_engine.score_business(
                screening,
                case.documents,
                case.business_details.industry,
                case.beneficial_owners,
                owner_screenings,
                today,
            )
            case.business_screening = screening

        if INITIAL_SCREENING_HIT in case.risk_flags:
            assessment.factors.append(RiskFactor(factor=INITIAL_SCREENING_HIT, weight=0.0, category="screening", source="prescreen"))
        assessment.assessed_at = self.clock()
        case.risk_assessment = assessment

        evaluation = self._evaluate_rules(case)
        self._apply_rule_outcome(case, assessment, evaluation)

        self.metrics.observe(RISK_SCORES, assessment.score, {"kind": case.kind.value})
        logger.info(
            f"Case {case.case_id}: risk score {assessment.score:.3f} -> {assessment.decision.value} "
            f"(rules: {assessment.rule_action.value})"
        )
        return assessment

    def _evaluate_rules(self, case: VerificationCase) -> RuleEvaluation:
        if case.kind == VerificationKind.KYC:
            evaluation = self.rules.evaluate(KYC_RULE_TYPES, build_kyc_context(case))
        else:
            evaluation = self.rules.evaluate(KYB_RULE_TYPES, build_kyb_context(case, self.config.ubo_threshold))
        self.metrics.increment(CHECKS_TOTAL, {"check": case.kind.value.lower(), "result": evaluation.resolved_action.value})
        return evaluation

    def _apply_rule_outcome(self, case: VerificationCase, assessment: RiskAssessment, evaluation: RuleEvaluation):
        """Rules can only make the decision stricter; they never reject."""
        # A rule that still has an open alert on the case is not alerted again
        open_rules = {a.rule_id for a in case.alerts if a.status == AlertStatus.OPEN}
        case.alerts.extend(a for a in evaluation.alerts if a.rule_id not in open_rules)
        assessment.rule_action = evaluation.resolved_action
        assessment.rule_risk_contribution = evaluation.risk_contribution

        if any(a.action == RuleAction.ENHANCED_MONITORING for a in evaluation.alerts):
            case.enhanced_monitoring = True

        if evaluation.resolved_action in REVIEW_ACTIONS and assessment.decision == Decision.AUTO_APPROVE:
            assessment.decision = Decision.MANUAL_REVIEW
            assessment.factors.append(RiskFactor(
                factor="rule_override",
                weight=0.0,
                category="rules",
                source=",".join(evaluation.triggered_rule_ids),
            ))
