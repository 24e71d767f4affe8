"""
Declarative compliance rule evaluation.

Rules live in an injected RuleStore; the engine itself holds no state and
has no side effects. A rule triggers when all of its conditions hold.
The resolved action is the most restrictive one among triggered rules.
"""

import json
import re
from typing import Any, Iterable, Optional, Union

from logger import get_logger
from models import (
    ACTION_PRIORITY, SEVERITY_WEIGHTS,
    ComplianceAlert, ComplianceRule, RuleCondition,
    RuleEvaluation, RuleOperator, RuleType, VerificationCase,
)
from utilities.beneficial_ownership import has_required_ubos
from utilities.document_requirements import has_all_required_documents

logger = get_logger(__name__)

_MISSING = object()


class RuleStore:
    """Ordered, mutable set of compliance rules keyed by rule id."""

    def __init__(self, rules: Optional[Iterable[ComplianceRule]] = None):
        self._rules: dict[str, ComplianceRule] = {}
        for rule in rules or []:
            self.add(rule)

    def add(self, rule: ComplianceRule):
        """Add or replace a rule. A replaced rule keeps its insertion position."""
        if rule.rule_id in self._rules:
            logger.warning(f"Rule '{rule.rule_id}' already registered, overwriting")
        self._rules[rule.rule_id] = rule

    def update(self, rule_id: str, **changes) -> ComplianceRule:
        rule = self._rules[rule_id]
        updated = rule.model_copy(update=changes)
        self._rules[rule_id] = updated
        return updated

    def remove(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None

    def get(self, rule_id: str) -> Optional[ComplianceRule]:
        return self._rules.get(rule_id)

    def list_rules(self, rule_types: Optional[Iterable[RuleType]] = None, active_only: bool = False) -> list[ComplianceRule]:
        types = set(rule_types) if rule_types is not None else None
        return [
            r for r in self._rules.values()
            if (types is None or r.rule_type in types) and (r.is_active or not active_only)
        ]

    def __len__(self) -> int:
        return len(self._rules)


# =============================================================================
# Condition evaluation
# =============================================================================

def resolve_field(context: dict, path: str) -> Any:
    """Dot-path lookup. Returns _MISSING when any segment is absent."""
    current: Any = context
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def evaluate_condition(condition: RuleCondition, context: dict) -> bool:
    """Evaluate one condition. Missing fields and type mismatches are False."""
    actual = resolve_field(context, condition.field)
    if actual is _MISSING:
        return False
    expected = condition.value
    op = condition.operator

    try:
        if op == RuleOperator.EQUALS:
            return actual == expected
        if op == RuleOperator.NOT_EQUALS:
            return actual != expected
        if op == RuleOperator.GREATER_THAN:
            return actual is not None and actual > expected
        if op == RuleOperator.LESS_THAN:
            return actual is not None and actual < expected
        if op == RuleOperator.CONTAINS:
            return str(expected).lower() in str(actual).lower()
        if op == RuleOperator.IN:
            return isinstance(expected, (list, tuple, set)) and actual in expected
        if op == RuleOperator.NOT_IN:
            return isinstance(expected, (list, tuple, set)) and actual not in expected
        if op == RuleOperator.REGEX:
            return re.search(str(expected), str(actual)) is not None
    except (TypeError, re.error) as e:
        logger.debug(f"Condition {condition.field} {op.value} {expected!r} not evaluable: {e}")
        return False

    return False


# =============================================================================
# Engine
# =============================================================================

class RuleEvaluationEngine:
    """Evaluates a context map against the rules of a RuleStore."""

    def __init__(self, store: RuleStore):
        self.store = store

    def evaluate(
        self,
        rule_type: Union[RuleType, Iterable[RuleType]],
        context: dict,
    ) -> RuleEvaluation:
        """
        Evaluate active rules of the given type(s) against a context.

        Rules run in descending priority; ties keep insertion order. The
        order only affects alert order, never the resolved action.
        """
        types = [rule_type] if isinstance(rule_type, RuleType) else list(rule_type)
        rules = sorted(
            self.store.list_rules(types, active_only=True),
            key=lambda r: r.priority,
            reverse=True,
        )

        result = RuleEvaluation()
        for rule in rules:
            if not rule.conditions:
                continue
            if not all(evaluate_condition(c, context) for c in rule.conditions):
                continue

            result.triggered_rule_ids.append(rule.rule_id)
            result.alerts.append(self._create_alert(rule, context))
            result.aggregate_risk_contribution += SEVERITY_WEIGHTS[rule.severity]
            if ACTION_PRIORITY[rule.action] > ACTION_PRIORITY[result.resolved_action]:
                result.resolved_action = rule.action

        if result.triggered_rule_ids:
            logger.info(
                f"Rules triggered: {', '.join(result.triggered_rule_ids)} "
                f"-> {result.resolved_action.value}"
            )
        return result

    def check_transaction(self, context: dict) -> RuleEvaluation:
        """Transaction monitoring and velocity rules for one transaction context."""
        return self.evaluate([RuleType.TRANSACTION_MONITORING, RuleType.VELOCITY_LIMITS], context)

    def _create_alert(self, rule: ComplianceRule, context: dict) -> ComplianceAlert:
        return ComplianceAlert(
            rule_id=rule.rule_id,
            rule_name=rule.name,
            severity=rule.severity,
            description=f"{rule.name}: {rule.description}. Context: {json.dumps(context, default=str, sort_keys=True)}",
            details=context,
            action=rule.action,
        )


# =============================================================================
# Context builders
# =============================================================================

def _max_fraud_risk(case: VerificationCase) -> float:
    return max((d.fraud_risk for d in case.documents), default=0.0)


def build_kyc_context(case: VerificationCase) -> dict:
    assessment = case.risk_assessment
    info = case.personal_info
    return {
        "kycStatus": case.status.value,
        "kycLevel": case.tier,
        "documentCount": len(case.documents),
        "hasAllRequiredDocs": has_all_required_documents(case),
        "riskScore": assessment.score if assessment else None,
        "sanctionsMatch": assessment.sanctions_match if assessment else False,
        "pepMatch": assessment.pep_match if assessment else False,
        "adverseMediaMatch": assessment.adverse_media_match if assessment else False,
        "maxDocumentFraudRisk": _max_fraud_risk(case),
        "riskFlags": list(case.risk_flags),
        "userId": case.subject_id,
        "personalInfo": {
            "nationality": info.nationality if info else None,
            "country": info.address.country if info and info.address else None,
        },
    }


def build_kyb_context(case: VerificationCase, ubo_threshold: float = 25.0) -> dict:
    assessment = case.risk_assessment
    details = case.business_details
    owners = case.active_owners
    return {
        "kybStatus": case.status.value,
        "businessType": case.tier,
        "documentCount": len(case.documents),
        "uboCount": sum(1 for o in owners if o.is_ultimate_beneficial_owner),
        "hasAllRequiredDocs": has_all_required_documents(case),
        "hasRequiredUbos": has_required_ubos(owners, ubo_threshold),
        "totalOwnership": case.total_ownership,
        "riskScore": assessment.score if assessment else None,
        "sanctionsMatch": assessment.sanctions_match if assessment else False,
        "pepMatch": assessment.pep_match if assessment else False,
        "jurisdictionRisk": assessment.jurisdiction_risk if assessment else None,
        "maxDocumentFraudRisk": _max_fraud_risk(case),
        "riskFlags": list(case.risk_flags),
        "businessId": case.subject_id,
        "businessDetails": {
            "industry": details.industry if details else None,
            "incorporationCountry": details.incorporation_country if details else None,
        },
    }
