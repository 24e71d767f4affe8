"""
Pydantic models for the KYC/KYB Verification Workflow.

Defines the data structures shared by the workflow and its engines:
1. Verification cases (KYC and KYB share one shape)
2. Documents and their quality/fraud analysis
3. Screening results and risk assessments
4. Beneficial owners
5. Compliance rules and alerts
"""

import copy
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


# =============================================================================
# Verification Enums
# =============================================================================

class VerificationKind(str, Enum):
    KYC = "KYC"
    KYB = "KYB"


class KycLevel(str, Enum):
    BASIC = "BASIC"
    STANDARD = "STANDARD"
    ENHANCED = "ENHANCED"


class BusinessType(str, Enum):
    SOLE_PROPRIETORSHIP = "sole_proprietorship"
    PARTNERSHIP = "partnership"
    LLC = "limited_liability_company"
    CORPORATION = "corporation"
    NON_PROFIT = "non_profit"
    GOVERNMENT_ENTITY = "government_entity"
    TRUST = "trust"
    OTHER = "other"


class CaseStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    REQUIRES_MANUAL_REVIEW = "REQUIRES_MANUAL_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class KybStage(str, Enum):
    """Finer-grained KYB progress. Ordered; never moves backwards."""
    DOCUMENTS_PENDING = "DOCUMENTS_PENDING"
    DOCUMENTS_UPLOADED = "DOCUMENTS_UPLOADED"
    ENTITY_VERIFICATION = "ENTITY_VERIFICATION"
    OWNER_VERIFICATION = "OWNER_VERIFICATION"
    COMPLETED = "COMPLETED"


class DocumentType(str, Enum):
    # Individual
    PASSPORT = "PASSPORT"
    NATIONAL_ID = "NATIONAL_ID"
    DRIVERS_LICENSE = "DRIVERS_LICENSE"
    UTILITY_BILL = "UTILITY_BILL"
    BANK_STATEMENT = "BANK_STATEMENT"
    SELFIE = "SELFIE"
    VIDEO_SELFIE = "VIDEO_SELFIE"
    BIRTH_CERTIFICATE = "BIRTH_CERTIFICATE"
    # Business
    CERTIFICATE_OF_INCORPORATION = "CERTIFICATE_OF_INCORPORATION"
    BUSINESS_LICENSE = "BUSINESS_LICENSE"
    TAX_REGISTRATION = "TAX_REGISTRATION"
    UBO_DECLARATION = "UBO_DECLARATION"
    MEMORANDUM_OF_ASSOCIATION = "MEMORANDUM_OF_ASSOCIATION"
    ARTICLES_OF_ASSOCIATION = "ARTICLES_OF_ASSOCIATION"
    SHAREHOLDERS_REGISTER = "SHAREHOLDERS_REGISTER"
    DIRECTORS_REGISTER = "DIRECTORS_REGISTER"
    PROOF_OF_ADDRESS = "PROOF_OF_ADDRESS"


class DocumentSide(str, Enum):
    FRONT = "front"
    BACK = "back"


class OwnerType(str, Enum):
    INDIVIDUAL = "individual"
    ENTITY = "entity"


class Decision(str, Enum):
    AUTO_APPROVE = "AUTO_APPROVE"
    MANUAL_REVIEW = "MANUAL_REVIEW"


class MatchCategory(str, Enum):
    SANCTIONS = "sanctions"
    PEP = "pep"
    ADVERSE_MEDIA = "adverse_media"


# =============================================================================
# Compliance Enums
# =============================================================================

class RuleType(str, Enum):
    TRANSACTION_MONITORING = "transaction_monitoring"
    VELOCITY_LIMITS = "velocity_limits"
    GEOGRAPHIC_RESTRICTIONS = "geographic_restrictions"
    SANCTIONS_SCREENING = "sanctions_screening"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    KYC_REQUIREMENTS = "kyc_requirements"
    KYB_REQUIREMENTS = "kyb_requirements"


class RuleOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    IN = "in"
    NOT_IN = "not_in"
    REGEX = "regex"


class RuleAction(str, Enum):
    ALLOW = "ALLOW"
    REQUEST_ADDITIONAL_INFO = "REQUEST_ADDITIONAL_INFO"
    ENHANCED_MONITORING = "ENHANCED_MONITORING"
    MANUAL_REVIEW = "MANUAL_REVIEW"
    BLOCK = "BLOCK"


# Restrictiveness, lowest first
ACTION_PRIORITY = {
    RuleAction.ALLOW: 0,
    RuleAction.REQUEST_ADDITIONAL_INFO: 1,
    RuleAction.ENHANCED_MONITORING: 2,
    RuleAction.MANUAL_REVIEW: 3,
    RuleAction.BLOCK: 4,
}


class AlertSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


SEVERITY_WEIGHTS = {
    AlertSeverity.CRITICAL: 40,
    AlertSeverity.HIGH: 30,
    AlertSeverity.MEDIUM: 20,
    AlertSeverity.LOW: 10,
}


class AlertStatus(str, Enum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


# =============================================================================
# Subject Data
# =============================================================================

class Address(BaseModel):
    """Physical address."""
    street: Optional[str] = None
    city: Optional[str] = None
    province_state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    def one_line(self) -> str:
        parts = [self.street, self.city, self.province_state, self.postal_code, self.country]
        return ", ".join(p for p in parts if p)


class PersonalInfo(BaseModel):
    """Declared identity data for a KYC subject."""
    first_name: str
    last_name: str
    date_of_birth: Optional[date] = None
    nationality: Optional[str] = None
    address: Optional[Address] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class BusinessDetails(BaseModel):
    """Declared entity data for a KYB subject."""
    legal_name: str
    registration_number: Optional[str] = None
    incorporation_country: Optional[str] = None
    industry: Optional[str] = None
    address: Optional[Address] = None


class BeneficialOwner(BaseModel):
    """Owner of a KYB subject. The UBO flag is derived from the percentages."""
    owner_id: str = Field(default_factory=lambda: new_id("ubo"))
    owner_type: OwnerType = OwnerType.INDIVIDUAL
    # Individual variant
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    nationality: Optional[str] = None
    # Entity variant
    entity_name: Optional[str] = None
    entity_type: Optional[str] = None
    jurisdiction: Optional[str] = None

    ownership_percentage: float = 0.0
    control_percentage: float = 0.0
    is_ultimate_beneficial_owner: bool = False
    is_active: bool = True

    sanctions_match: Optional[bool] = None
    pep_match: Optional[bool] = None
    adverse_media_match: Optional[bool] = None
    risk_score: Optional[float] = None
    screened_at: Optional[datetime] = None
    added_at: datetime = Field(default_factory=utcnow)

    @property
    def display_name(self) -> str:
        if self.owner_type == OwnerType.ENTITY:
            return self.entity_name or ""
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


# =============================================================================
# Documents
# =============================================================================

class DocumentQuality(BaseModel):
    """Quality sub-scores for one document, each in [0,1]."""
    image_quality: float = 0.5
    blur: float = 0.5
    brightness: float = 0.5
    contrast: float = 0.5
    resolution: float = 0.5
    edge_detection: bool = False
    text_clarity: float = 0.5
    overall_score: float = 0.5
    width: Optional[int] = None
    height: Optional[int] = None


class FraudIndicators(BaseModel):
    risk_score: float = 0.0
    indicators: list[str] = Field(default_factory=list)
    manipulation_detected: bool = False
    tampering_detected: bool = False
    template_valid: bool = True


class DocumentAnalysis(BaseModel):
    """Result of DocumentQualityAnalyzer for one file."""
    mime_type: str
    is_image: bool = True
    quality: DocumentQuality = Field(default_factory=DocumentQuality)
    fraud: FraudIndicators = Field(default_factory=FraudIndicators)
    errors: list[str] = Field(default_factory=list, description="Sub-checks that fell back to neutral")
    analyzed_at: datetime = Field(default_factory=utcnow)


class Document(BaseModel):
    document_id: str = Field(default_factory=lambda: new_id("doc"))
    document_type: DocumentType
    side: Optional[DocumentSide] = None
    filename: str
    mime_type: str
    size_bytes: int = 0
    storage_url: Optional[str] = None
    extracted_fields: dict[str, Any] = Field(default_factory=dict)
    ocr_confidence: Optional[float] = None
    analysis: Optional[DocumentAnalysis] = None
    uploaded_at: datetime = Field(default_factory=utcnow)

    @property
    def quality_score(self) -> float:
        return self.analysis.quality.overall_score if self.analysis else 0.5

    @property
    def fraud_risk(self) -> float:
        return self.analysis.fraud.risk_score if self.analysis else 0.0


# =============================================================================
# Screening & Risk
# =============================================================================

class ScreeningMatch(BaseModel):
    name: str
    list_name: str = ""
    category: MatchCategory = MatchCategory.SANCTIONS
    score: float = Field(default=0.0, ge=0, le=1)
    details: dict[str, Any] = Field(default_factory=dict)


class ScreeningResult(BaseModel):
    """Individual screening outcome from the screening collaborator."""
    sanctions_match: bool = False
    pep_match: bool = False
    adverse_media_match: bool = False
    country_risk: float = Field(default=0.2, ge=0, le=1)
    matches: list[ScreeningMatch] = Field(default_factory=list)
    confidence: float = Field(default=1.0, ge=0, le=1)
    provider_available: bool = True
    screened_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def safe_default(cls) -> "ScreeningResult":
        """Result used when the provider cannot answer. Never a clean pass."""
        return cls(country_risk=0.2, confidence=0.0, provider_available=False)

    def strongest_sanctions_score(self) -> float:
        scores = [m.score for m in self.matches if m.category == MatchCategory.SANCTIONS]
        return max(scores) if scores else 0.0


class BusinessScreeningResult(BaseModel):
    sanctions_match: bool = False
    adverse_media_match: bool = False
    jurisdiction_risk: float = Field(default=0.2, ge=0, le=1)
    matches: list[ScreeningMatch] = Field(default_factory=list)
    confidence: float = Field(default=1.0, ge=0, le=1)
    provider_available: bool = True
    screened_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def safe_default(cls) -> "BusinessScreeningResult":
        return cls(jurisdiction_risk=0.2, confidence=0.0, provider_available=False)

    def strongest_sanctions_score(self) -> float:
        scores = [m.score for m in self.matches if m.category == MatchCategory.SANCTIONS]
        return max(scores) if scores else 0.0


class RiskFactor(BaseModel):
    """Individual risk factor contributing to the score."""
    factor: str = Field(description="Factor code, e.g. sanctions_match")
    weight: float = Field(default=0.0, description="Amount deducted from the score")
    category: str = Field(description="e.g., screening, documents, age, ownership")
    source: str = Field(description="Where this factor was identified")


class RiskAssessment(BaseModel):
    """Composite risk result. score is a confidence metric: 1.0 = lowest risk."""
    score: float = Field(default=0.0, ge=0, le=1)
    decision: Decision = Decision.MANUAL_REVIEW
    sanctions_match: bool = False
    pep_match: bool = False
    adverse_media_match: bool = False
    country_risk: float = 0.0
    jurisdiction_risk: Optional[float] = None
    industry_risk: Optional[float] = None
    document_quality: Optional[float] = None
    max_document_fraud_risk: float = 0.0
    age_verified: Optional[bool] = None
    owner_scores: dict[str, float] = Field(default_factory=dict)
    factors: list[RiskFactor] = Field(default_factory=list)
    confidence: float = 1.0
    rule_action: RuleAction = RuleAction.ALLOW
    rule_risk_contribution: float = 0.0
    is_prescreen: bool = False
    assessed_at: datetime = Field(default_factory=utcnow)

    def factor_codes(self) -> list[str]:
        return [f.factor for f in self.factors]


# =============================================================================
# Compliance Rules
# =============================================================================

class RuleCondition(BaseModel):
    field: str = Field(description="Dot-path into the evaluation context")
    operator: RuleOperator
    value: Any = None


class ComplianceRule(BaseModel):
    rule_id: str
    name: str
    description: str = ""
    rule_type: RuleType
    conditions: list[RuleCondition] = Field(default_factory=list)
    action: RuleAction = RuleAction.ALLOW
    severity: AlertSeverity = AlertSeverity.LOW
    priority: int = 0
    is_active: bool = True


class ComplianceAlert(BaseModel):
    """Append-only audit artifact produced by rule evaluation."""
    alert_id: str = Field(default_factory=lambda: new_id("alert"))
    rule_id: str
    rule_name: str
    severity: AlertSeverity
    description: str
    details: dict[str, Any] = Field(default_factory=dict)
    action: RuleAction
    status: AlertStatus = AlertStatus.OPEN
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("details", mode="before")
    @classmethod
    def _snapshot_details(cls, v):
        # Alerts keep their own copy of the evaluated context
        return copy.deepcopy(v) if v is not None else {}


class RuleEvaluation(BaseModel):
    triggered_rule_ids: list[str] = Field(default_factory=list)
    alerts: list[ComplianceAlert] = Field(default_factory=list)
    resolved_action: RuleAction = RuleAction.ALLOW
    aggregate_risk_contribution: int = 0

    @property
    def risk_contribution(self) -> float:
        """Aggregate severity weight scaled to [0,1]."""
        return min(1.0, max(0.0, self.aggregate_risk_contribution / 100))


# =============================================================================
# Verification Case
# =============================================================================

class Declarations(BaseModel):
    ubo_declaration: bool = False
    final_attestation: bool = False


class VerificationCase(BaseModel):
    """One KYC or KYB verification. Mutated only under its case lock."""
    case_id: str = Field(default_factory=lambda: new_id("case"))
    subject_id: str
    kind: VerificationKind
    kyc_level: Optional[KycLevel] = None
    business_type: Optional[BusinessType] = None
    status: CaseStatus = CaseStatus.PENDING
    stage: Optional[KybStage] = None

    personal_info: Optional[PersonalInfo] = None
    business_details: Optional[BusinessDetails] = None
    beneficial_owners: list[BeneficialOwner] = Field(default_factory=list)
    documents: list[Document] = Field(default_factory=list)

    risk_assessment: Optional[RiskAssessment] = None
    business_screening: Optional[BusinessScreeningResult] = None
    risk_flags: list[str] = Field(default_factory=list)
    alerts: list[ComplianceAlert] = Field(default_factory=list)
    enhanced_monitoring: bool = False
    declarations: Optional[Declarations] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    submitted_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    approved_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None

    @property
    def tier(self) -> str:
        """KYC level or KYB business type, as a display string."""
        if self.kind == VerificationKind.KYB:
            return self.business_type.value if self.business_type else BusinessType.OTHER.value
        return self.kyc_level.value if self.kyc_level else KycLevel.BASIC.value

    @property
    def subject_name(self) -> str:
        if self.personal_info:
            return self.personal_info.full_name
        if self.business_details:
            return self.business_details.legal_name
        return self.subject_id

    @property
    def active_owners(self) -> list[BeneficialOwner]:
        return [o for o in self.beneficial_owners if o.is_active]

    @property
    def total_ownership(self) -> float:
        return sum(o.ownership_percentage for o in self.active_owners)

    @property
    def event_prefix(self) -> str:
        return self.kind.value.lower()


class WorkflowEvent(BaseModel):
    case_id: str
    subject_id: str
    event: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
