"""
Default compliance rules seeded at startup.
"""

from models import (
    AlertSeverity, ComplianceRule, RuleAction, RuleCondition, RuleOperator, RuleType,
)
from utilities.rules_engine import RuleStore


def _rule(rule_id, name, description, rule_type, field, operator, value, action, severity, priority):
    return ComplianceRule(
        rule_id=rule_id,
        name=name,
        description=description,
        rule_type=rule_type,
        conditions=[RuleCondition(field=field, operator=operator, value=value)],
        action=action,
        severity=severity,
        priority=priority,
    )


DEFAULT_RULES = [
    _rule(
        "txn-high-value", "High Value Transaction",
        "Transaction amount exceeds the reporting threshold",
        RuleType.TRANSACTION_MONITORING, "amount", RuleOperator.GREATER_THAN, 10000,
        RuleAction.ENHANCED_MONITORING, AlertSeverity.MEDIUM, 80,
    ),
    _rule(
        "sanctions-match", "Sanctions List Match",
        "Subject matched a sanctions list",
        RuleType.SANCTIONS_SCREENING, "sanctionsMatch", RuleOperator.EQUALS, True,
        RuleAction.BLOCK, AlertSeverity.CRITICAL, 100,
    ),
    _rule(
        "pep-match", "Politically Exposed Person",
        "Subject identified as a politically exposed person",
        RuleType.SANCTIONS_SCREENING, "pepMatch", RuleOperator.EQUALS, True,
        RuleAction.MANUAL_REVIEW, AlertSeverity.HIGH, 90,
    ),
    _rule(
        "kyc-incomplete", "Incomplete KYC Documentation",
        "Required KYC documents are missing",
        RuleType.KYC_REQUIREMENTS, "hasAllRequiredDocs", RuleOperator.EQUALS, False,
        RuleAction.REQUEST_ADDITIONAL_INFO, AlertSeverity.MEDIUM, 70,
    ),
    _rule(
        "kyc-document-fraud", "Suspicious KYC Document",
        "A submitted document shows manipulation or tampering signals",
        RuleType.KYC_REQUIREMENTS, "maxDocumentFraudRisk", RuleOperator.GREATER_THAN, 0.35,
        RuleAction.MANUAL_REVIEW, AlertSeverity.HIGH, 75,
    ),
    _rule(
        "kyb-missing-ubo", "Missing Beneficial Owner Information",
        "No owner meets the beneficial ownership threshold",
        RuleType.KYB_REQUIREMENTS, "hasRequiredUbos", RuleOperator.EQUALS, False,
        RuleAction.REQUEST_ADDITIONAL_INFO, AlertSeverity.HIGH, 85,
    ),
    _rule(
        "kyb-document-fraud", "Suspicious KYB Document",
        "A submitted document shows manipulation or tampering signals",
        RuleType.KYB_REQUIREMENTS, "maxDocumentFraudRisk", RuleOperator.GREATER_THAN, 0.35,
        RuleAction.MANUAL_REVIEW, AlertSeverity.HIGH, 75,
    ),
    _rule(
        "kyb-high-jurisdiction", "High Risk Jurisdiction",
        "Business is incorporated in a high-risk jurisdiction",
        RuleType.GEOGRAPHIC_RESTRICTIONS, "jurisdictionRisk", RuleOperator.GREATER_THAN, 0.7,
        RuleAction.ENHANCED_MONITORING, AlertSeverity.MEDIUM, 60,
    ),
]


def default_rule_store() -> RuleStore:
    """A fresh store seeded with copies of the default rules."""
    return RuleStore(rule.model_copy(deep=True) for rule in DEFAULT_RULES)
