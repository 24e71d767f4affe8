"""
Risk scoring engine for KYC/KYB verification cases.

The score is a normalized confidence metric: 1.0 is the lowest risk.
Every deduction is recorded as a RiskFactor so reviewers can see why.

Decision policy: only a clean case at or above the auto-approval threshold
bypasses a human. Everything else, mid-band included, goes to manual review.
There is no automatic rejection here.
"""

from datetime import date
from typing import Optional, Union

from config import Config, get_config
from logger import get_logger
from models import (
    BeneficialOwner, BusinessScreeningResult, Decision, Document,
    OwnerType, RiskAssessment, RiskFactor, ScreeningResult, utcnow,
)
from utilities.reference_data import calculate_industry_risk

logger = get_logger(__name__)

# Individual deductions
SANCTIONS_PENALTY = 0.5
PEP_PENALTY = 0.3
ADVERSE_MEDIA_PENALTY = 0.2
COUNTRY_RISK_WEIGHT = 0.3
AGE_PENALTY = 0.1
DOCUMENT_QUALITY_PENALTY = 0.2

# Business deductions
BUSINESS_SANCTIONS_PENALTY = 0.5
BUSINESS_ADVERSE_MEDIA_PENALTY = 0.3
JURISDICTION_RISK_WEIGHT = 0.2
INDUSTRY_RISK_WEIGHT = 0.2
OWNER_AVERAGE_WEIGHT = 0.3
LOW_SCORE_OWNER_PENALTY = 0.1
OWNERSHIP_COVERAGE_PENALTY = 0.2

HIGH_JURISDICTION_RISK = 0.7
HIGH_INDUSTRY_RISK = 0.6


def _clamp(score: float) -> float:
    return max(0.0, min(1.0, score))


def calculate_age(date_of_birth: date, today: Optional[date] = None) -> int:
    today = today or utcnow().date()
    years = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        years -= 1
    return years


def mean_document_quality(documents: list[Document]) -> Optional[float]:
    if not documents:
        return None
    return sum(d.quality_score for d in documents) / len(documents)


class RiskScoringEngine:
    """Fuses screening, document and entity signals into a RiskAssessment."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()

    # -------------------------------------------------------------------------
    # Individual (KYC)
    # -------------------------------------------------------------------------

    def score_individual(
        self,
        screening: ScreeningResult,
        documents: Optional[list[Document]] = None,
        date_of_birth: Optional[date] = None,
        today: Optional[date] = None,
        prescreen: bool = False,
    ) -> RiskAssessment:
        """
        Score an individual subject.

        With prescreen=True no document term is applied; only declared data
        and the screening result count.
        """
        factors: list[RiskFactor] = []
        score = 1.0

        doc_quality = None
        if not prescreen:
            doc_quality = mean_document_quality(documents or [])
            score -= self._document_deduction(doc_quality, factors)

        score -= self._screening_deductions(screening, factors, source="screening")

        age_ok = self._age_verified(date_of_birth, today)
        if not age_ok:
            reason = "age_unverified" if date_of_birth is None else "below_minimum_age"
            factors.append(RiskFactor(factor=reason, weight=AGE_PENALTY, category="age", source="personal_info"))
            score -= AGE_PENALTY

        assessment = RiskAssessment(
            score=_clamp(score),
            sanctions_match=screening.sanctions_match,
            pep_match=screening.pep_match,
            adverse_media_match=screening.adverse_media_match,
            country_risk=screening.country_risk,
            document_quality=doc_quality,
            max_document_fraud_risk=max((d.fraud_risk for d in documents or []), default=0.0),
            age_verified=age_ok,
            factors=factors,
            confidence=screening.confidence,
            is_prescreen=prescreen,
        )
        assessment.decision = self.decide(assessment, screening_available=screening.provider_available)
        return assessment

    def is_hard_sanctions_hit(self, screening: Union[ScreeningResult, BusinessScreeningResult]) -> bool:
        """A sanctions match strong enough to reject at pre-screening."""
        return screening.sanctions_match and screening.strongest_sanctions_score() >= self.config.hard_match_score

    # -------------------------------------------------------------------------
    # Owners and businesses (KYB)
    # -------------------------------------------------------------------------

    def score_owner(
        self,
        owner: BeneficialOwner,
        screening: Union[ScreeningResult, BusinessScreeningResult],
        today: Optional[date] = None,
        factors: Optional[list[RiskFactor]] = None,
    ) -> float:
        """
        Individual formula on the owner's own screening, without documents.

        The owner's deductions are appended to factors when given, with
        source "owner:<owner_id>".
        """
        source = f"owner:{owner.owner_id}"
        owner_factors: list[RiskFactor] = []
        score = 1.0 - self._screening_deductions(screening, owner_factors, source=source)
        if owner.owner_type == OwnerType.INDIVIDUAL and not self._age_verified(owner.date_of_birth, today):
            reason = "age_unverified" if owner.date_of_birth is None else "below_minimum_age"
            owner_factors.append(RiskFactor(factor=reason, weight=AGE_PENALTY, category="age", source=source))
            score -= AGE_PENALTY
        if factors is not None:
            factors.extend(owner_factors)

        owner.sanctions_match = screening.sanctions_match
        owner.pep_match = getattr(screening, "pep_match", False)
        owner.adverse_media_match = screening.adverse_media_match
        owner.risk_score = _clamp(score)
        owner.screened_at = screening.screened_at
        return owner.risk_score

    def score_business(
        self,
        screening: BusinessScreeningResult,
        documents: list[Document],
        industry: Optional[str],
        owners: list[BeneficialOwner],
        owner_screenings: dict[str, Union[ScreeningResult, BusinessScreeningResult]],
        today: Optional[date] = None,
        prescreen: bool = False,
    ) -> RiskAssessment:
        """
        Score a business subject and its active owners.

        With prescreen=True only the entity screening, jurisdiction and
        industry terms apply; documents and ownership are not known yet.
        """
        factors: list[RiskFactor] = []
        score = 1.0

        if screening.sanctions_match:
            factors.append(RiskFactor(factor="business_sanctions_match", weight=BUSINESS_SANCTIONS_PENALTY, category="screening", source="business_screening"))
            score -= BUSINESS_SANCTIONS_PENALTY
        if screening.adverse_media_match:
            factors.append(RiskFactor(factor="business_adverse_media", weight=BUSINESS_ADVERSE_MEDIA_PENALTY, category="screening", source="business_screening"))
            score -= BUSINESS_ADVERSE_MEDIA_PENALTY
        if not screening.provider_available:
            factors.append(RiskFactor(factor="screening_unavailable", weight=0.0, category="screening", source="business_screening"))

        jurisdiction_deduction = screening.jurisdiction_risk * JURISDICTION_RISK_WEIGHT
        score -= jurisdiction_deduction
        if screening.jurisdiction_risk > HIGH_JURISDICTION_RISK:
            factors.append(RiskFactor(factor="high_jurisdiction_risk", weight=jurisdiction_deduction, category="jurisdiction", source="business_screening"))

        industry_risk = calculate_industry_risk(industry)
        industry_deduction = industry_risk * INDUSTRY_RISK_WEIGHT
        score -= industry_deduction
        if industry_risk > HIGH_INDUSTRY_RISK:
            factors.append(RiskFactor(factor="high_industry_risk", weight=industry_deduction, category="industry", source="business_details"))

        if prescreen:
            documents, owners, owner_screenings = [], [], {}

        doc_quality = mean_document_quality(documents)
        score -= self._document_deduction(doc_quality, factors)

        active = [o for o in owners if o.is_active]
        owner_scores = {
            o.owner_id: self.score_owner(o, owner_screenings[o.owner_id], today, factors)
            for o in active if o.owner_id in owner_screenings
        }
        if owner_scores:
            avg = sum(owner_scores.values()) / len(owner_scores)
            low_count = sum(1 for s in owner_scores.values() if s < self.config.manual_review_threshold)
            avg_deduction = (1 - avg) * OWNER_AVERAGE_WEIGHT
            score -= avg_deduction
            if avg_deduction > 0:
                factors.append(RiskFactor(factor="owner_risk", weight=avg_deduction, category="ownership", source="owner_screening"))
            if low_count:
                factors.append(RiskFactor(factor="high_risk_owners", weight=low_count * LOW_SCORE_OWNER_PENALTY, category="ownership", source="owner_screening"))
                score -= low_count * LOW_SCORE_OWNER_PENALTY

        if not prescreen:
            score -= self._ownership_deductions(active, factors)

        owner_screens = [owner_screenings[oid] for oid in owner_scores]
        assessment = RiskAssessment(
            score=_clamp(score),
            sanctions_match=screening.sanctions_match or any(s.sanctions_match for s in owner_screens),
            pep_match=any(getattr(s, "pep_match", False) for s in owner_screens),
            adverse_media_match=screening.adverse_media_match or any(s.adverse_media_match for s in owner_screens),
            country_risk=screening.jurisdiction_risk,
            jurisdiction_risk=screening.jurisdiction_risk,
            industry_risk=industry_risk,
            document_quality=doc_quality,
            max_document_fraud_risk=max((d.fraud_risk for d in documents), default=0.0),
            owner_scores=owner_scores,
            factors=factors,
            confidence=min([screening.confidence] + [s.confidence for s in owner_screens]),
            is_prescreen=prescreen,
        )
        providers_ok = screening.provider_available and all(s.provider_available for s in owner_screens)
        assessment.decision = self.decide(assessment, screening_available=providers_ok)
        return assessment

    # -------------------------------------------------------------------------
    # Decision
    # -------------------------------------------------------------------------

    def decide(self, assessment: RiskAssessment, screening_available: bool = True) -> Decision:
        """AUTO_APPROVE only for a clean case at or above the approval threshold."""
        if self.review_reasons(assessment, screening_available):
            return Decision.MANUAL_REVIEW
        return Decision.AUTO_APPROVE

    def review_reasons(self, assessment: RiskAssessment, screening_available: bool = True) -> list[str]:
        reasons = []
        if assessment.score < self.config.manual_review_threshold:
            reasons.append("score_below_review_threshold")
        elif assessment.score < self.config.auto_approval_threshold:
            reasons.append("score_below_auto_approval")
        if assessment.sanctions_match:
            reasons.append("sanctions_match")
        if assessment.pep_match:
            reasons.append("pep_match")
        if assessment.adverse_media_match:
            reasons.append("adverse_media_match")
        if not screening_available:
            reasons.append("screening_unavailable")
        if any(s < self.config.manual_review_threshold for s in assessment.owner_scores.values()):
            reasons.append("owner_below_review_threshold")
        elif any(s < self.config.auto_approval_threshold for s in assessment.owner_scores.values()):
            reasons.append("owner_below_auto_approval")
        return reasons

    # -------------------------------------------------------------------------

    def _document_deduction(self, doc_quality: Optional[float], factors: list[RiskFactor]) -> float:
        if doc_quality is not None and doc_quality < self.config.document_quality_threshold:
            factors.append(RiskFactor(factor="poor_document_quality", weight=DOCUMENT_QUALITY_PENALTY, category="documents", source="document_analysis"))
            return DOCUMENT_QUALITY_PENALTY
        return 0.0

    def _ownership_deductions(self, active: list[BeneficialOwner], factors: list[RiskFactor]) -> float:
        if not any(o.is_ultimate_beneficial_owner for o in active):
            factors.append(RiskFactor(factor="missing_ubo_information", weight=0.0, category="ownership", source="beneficial_owners"))
        total_ownership = sum(o.ownership_percentage for o in active)
        if total_ownership < self.config.min_ownership_coverage:
            factors.append(RiskFactor(factor="incomplete_ownership_structure", weight=OWNERSHIP_COVERAGE_PENALTY, category="ownership", source="beneficial_owners"))
            return OWNERSHIP_COVERAGE_PENALTY
        return 0.0

    def _screening_deductions(
        self,
        screening: Union[ScreeningResult, BusinessScreeningResult],
        factors: list[RiskFactor],
        source: str,
    ) -> float:
        deduction = 0.0
        if screening.sanctions_match:
            factors.append(RiskFactor(factor="sanctions_match", weight=SANCTIONS_PENALTY, category="screening", source=source))
            deduction += SANCTIONS_PENALTY
        if getattr(screening, "pep_match", False):
            factors.append(RiskFactor(factor="pep_match", weight=PEP_PENALTY, category="screening", source=source))
            deduction += PEP_PENALTY
        if screening.adverse_media_match:
            factors.append(RiskFactor(factor="adverse_media_match", weight=ADVERSE_MEDIA_PENALTY, category="screening", source=source))
            deduction += ADVERSE_MEDIA_PENALTY

        country_risk = getattr(screening, "country_risk", None)
        if country_risk is None:
            country_risk = screening.jurisdiction_risk
        country_deduction = country_risk * COUNTRY_RISK_WEIGHT
        if country_deduction > 0:
            factors.append(RiskFactor(factor="country_risk", weight=country_deduction, category="jurisdiction", source=source))
        deduction += country_deduction

        if not screening.provider_available:
            factors.append(RiskFactor(factor="screening_unavailable", weight=0.0, category="screening", source=source))
        return deduction

    def _age_verified(self, date_of_birth: Optional[date], today: Optional[date]) -> bool:
        if date_of_birth is None:
            return False
        return calculate_age(date_of_birth, today) >= self.config.min_age
