"""
Document Requirements.

Required and optional document sets per KYC level and KYB business type,
and a checklist view of what a case still needs.
Pure deterministic logic, no I/O.
"""

from models import (
    BusinessType, DocumentType, KycLevel, VerificationCase, VerificationKind,
)


KYC_REQUIREMENTS = {
    KycLevel.BASIC: {
        "required": [DocumentType.NATIONAL_ID, DocumentType.SELFIE],
        "optional": [DocumentType.DRIVERS_LICENSE],
    },
    KycLevel.STANDARD: {
        "required": [DocumentType.PASSPORT, DocumentType.UTILITY_BILL, DocumentType.SELFIE],
        "optional": [DocumentType.DRIVERS_LICENSE, DocumentType.BANK_STATEMENT],
    },
    KycLevel.ENHANCED: {
        "required": [
            DocumentType.PASSPORT, DocumentType.UTILITY_BILL,
            DocumentType.BANK_STATEMENT, DocumentType.VIDEO_SELFIE,
        ],
        "optional": [DocumentType.BIRTH_CERTIFICATE],
    },
}

KYB_BASE_REQUIRED = [
    DocumentType.CERTIFICATE_OF_INCORPORATION,
    DocumentType.BUSINESS_LICENSE,
    DocumentType.TAX_REGISTRATION,
    DocumentType.BANK_STATEMENT,
    DocumentType.UBO_DECLARATION,
]

KYB_ADDITIONAL_REQUIRED = {
    BusinessType.CORPORATION: [
        DocumentType.MEMORANDUM_OF_ASSOCIATION,
        DocumentType.ARTICLES_OF_ASSOCIATION,
        DocumentType.SHAREHOLDERS_REGISTER,
        DocumentType.DIRECTORS_REGISTER,
    ],
    BusinessType.LLC: [
        DocumentType.MEMORANDUM_OF_ASSOCIATION,
    ],
}

KYB_OPTIONAL = [DocumentType.PROOF_OF_ADDRESS]


def required_documents(case: VerificationCase) -> list[DocumentType]:
    """Required document types for the case's KYC level or business type."""
    if case.kind == VerificationKind.KYB:
        extra = KYB_ADDITIONAL_REQUIRED.get(case.business_type, [])
        return KYB_BASE_REQUIRED + [d for d in extra if d not in KYB_BASE_REQUIRED]
    return list(KYC_REQUIREMENTS[case.kyc_level or KycLevel.BASIC]["required"])


def optional_documents(case: VerificationCase) -> list[DocumentType]:
    if case.kind == VerificationKind.KYB:
        return list(KYB_OPTIONAL)
    return list(KYC_REQUIREMENTS[case.kyc_level or KycLevel.BASIC]["optional"])


def accepted_documents(case: VerificationCase) -> list[DocumentType]:
    return required_documents(case) + optional_documents(case)


def missing_documents(case: VerificationCase) -> list[DocumentType]:
    """Required types with no submitted document (any side counts)."""
    submitted = {d.document_type for d in case.documents}
    return [d for d in required_documents(case) if d not in submitted]


def has_all_required_documents(case: VerificationCase) -> bool:
    return not missing_documents(case)


def document_checklist(case: VerificationCase) -> dict:
    """
    Checklist of document requirements for a case.

    Returns dict with:
        required: list of str
        optional: list of str
        submitted: list of dicts - [{document_type, side, quality_score, fraud_risk}]
        missing: list of str
        complete: bool
    """
    missing = missing_documents(case)
    return {
        "tier": case.tier,
        "required": [d.value for d in required_documents(case)],
        "optional": [d.value for d in optional_documents(case)],
        "submitted": [
            {
                "document_type": d.document_type.value,
                "side": d.side.value if d.side else None,
                "quality_score": round(d.quality_score, 3),
                "fraud_risk": round(d.fraud_risk, 3),
            }
            for d in case.documents
        ],
        "missing": [d.value for d in missing],
        "complete": not missing,
    }
