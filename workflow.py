"""
Verification Workflow

Drives one KYC or KYB case through its lifecycle:
1. Initiation + pre-screen (declared data only)
2. Document submission (quality/fraud analysis per file)
3. Beneficial owners (KYB)
4. Risk assessment + declarative rule overrides
5. Review, expiry and stale-case sweeps

All mutating operations on one case run under that case's asyncio lock.
State is persisted before any event is published.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from config import Config, get_config
from events import EventBus, LoggingEventBus
from exceptions import (
    CaseNotFound, CollaboratorError, DuplicateActiveCase, VerificationError,
)
from logger import get_logger
from models import (
    BusinessDetails, BusinessType, CaseStatus, KybStage, KycLevel, PersonalInfo,
    VerificationCase, VerificationKind, WorkflowEvent, utcnow,
)
from repository import CaseRepository
from tools.base import DocumentCaptureAdapter, ScreeningAdapter
from utilities.beneficial_ownership import ownership_coverage
from utilities.default_rules import default_rule_store
from utilities.document_quality import DocumentQualityAnalyzer
from utilities.document_requirements import has_all_required_documents
from utilities.risk_scoring import RiskScoringEngine
from utilities.rules_engine import RuleEvaluationEngine, RuleStore
from workflow_assessment import AssessmentMixin
from workflow_documents import DocumentsMixin
from workflow_metrics import ERRORS_TOTAL, OPERATIONS_TOTAL, MetricsSink, WorkflowMetrics
from workflow_owners import OwnersMixin
from workflow_review import ReviewMixin
from workflow_sweeps import SweepsMixin
from workflow_transitions import (
    ACTIVE_STATUSES, TransitionEvent, add_years, advance_stage, derive_stage, transition,
)

logger = get_logger(__name__)


class _LockEntry:
    """An asyncio lock plus the number of tasks holding or waiting on it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class VerificationWorkflow(DocumentsMixin, OwnersMixin, AssessmentMixin, ReviewMixin, SweepsMixin):
    """State machine and orchestrator for verification cases."""

    def __init__(
        self,
        repository: CaseRepository,
        screening: ScreeningAdapter,
        capture: DocumentCaptureAdapter,
        event_bus: Optional[EventBus] = None,
        metrics: Optional[MetricsSink] = None,
        rule_store: Optional[RuleStore] = None,
        analyzer: Optional[DocumentQualityAnalyzer] = None,
        risk_engine: Optional[RiskScoringEngine] = None,
        config: Optional[Config] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or get_config()
        self.repository = repository
        self.screening = screening
        self.capture = capture
        self.event_bus = event_bus or LoggingEventBus()
        self.metrics = metrics or WorkflowMetrics()
        self.rule_store = rule_store if rule_store is not None else default_rule_store()
        self.rules = RuleEvaluationEngine(self.rule_store)
        self.analyzer = analyzer or DocumentQualityAnalyzer()
        self.risk_engine = risk_engine or RiskScoringEngine(self.config)
        self.clock = clock or utcnow
        self._locks: dict[str, _LockEntry] = {}

    # -------------------------------------------------------------------------
    # Initiation
    # -------------------------------------------------------------------------

    async def initiate_kyc(
        self,
        subject_id: str,
        kyc_level: KycLevel,
        personal_info: PersonalInfo,
    ) -> VerificationCase:
        """Open a KYC case in PENDING and pre-screen the declared identity."""
        case = VerificationCase(
            subject_id=subject_id,
            kind=VerificationKind.KYC,
            kyc_level=KycLevel(kyc_level),
            personal_info=personal_info,
        )
        return await self._initiate(case)

    async def initiate_kyb(
        self,
        subject_id: str,
        business_type: BusinessType,
        business_details: BusinessDetails,
    ) -> VerificationCase:
        """Open a KYB case in PENDING / DOCUMENTS_PENDING and pre-screen the entity."""
        case = VerificationCase(
            subject_id=subject_id,
            kind=VerificationKind.KYB,
            business_type=BusinessType(business_type),
            business_details=business_details,
            stage=KybStage.DOCUMENTS_PENDING,
        )
        return await self._initiate(case)

    async def _initiate(self, case: VerificationCase) -> VerificationCase:
        operation = f"initiate_{case.event_prefix}"
        # Locked on the subject so two initiations cannot both pass the duplicate check
        async with self._operation(operation, case.case_id), self._lock(f"subject:{case.subject_id}"):
            now = self.clock()
            for existing in self.repository.find_by_subject(case.subject_id):
                if existing.kind == case.kind and self._is_active(existing, now):
                    raise DuplicateActiveCase(case.subject_id, existing.case_id)

            case.created_at = now
            self._commit(case, [(f"{case.event_prefix}.initiated", {"tier": case.tier})])
            logger.info(f"Initiated {case.kind.value} case {case.case_id} for subject {case.subject_id}")

            async with self._lock(case.case_id):
                await self._prescreen(case)
            return case

    def _is_active(self, case: VerificationCase, now: datetime) -> bool:
        if case.status not in ACTIVE_STATUSES:
            return False
        if case.status == CaseStatus.APPROVED:
            return case.expires_at is None or case.expires_at > now
        return True

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_case(self, case_id: str) -> VerificationCase:
        case = self.repository.find_by_id(case_id)
        if case is None:
            raise CaseNotFound(case_id)
        return case

    # -------------------------------------------------------------------------
    # Internals shared by the mixins
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def _lock(self, key: str):
        """Hold the lock for one case (or subject); dropped once nobody uses it."""
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @asynccontextmanager
    async def _operation(self, name: str, case_id: Optional[str]):
        """Count the outcome of one workflow operation and log surfaced failures."""
        try:
            yield
        except VerificationError as e:
            level = logger.error if isinstance(e, CollaboratorError) else logger.warning
            level(f"{name} failed for case {case_id}: {e}")
            self.metrics.increment(ERRORS_TOTAL, {"operation": name, "error": type(e).__name__})
            self.metrics.increment(OPERATIONS_TOTAL, {"operation": name, "status": "failed"})
            raise
        else:
            self.metrics.increment(OPERATIONS_TOTAL, {"operation": name, "status": "success"})

    def _load(self, case_id: str) -> VerificationCase:
        return self.get_case(case_id)

    def _apply(self, case: VerificationCase, event: TransitionEvent, events: list, data: Optional[dict] = None) -> CaseStatus:
        """Apply one transition to the case record and queue its event."""
        previous = case.status
        new_status = transition(case.status, event, case.case_id)
        now = self.clock()
        case.status = new_status

        if new_status == CaseStatus.APPROVED:
            case.approved_at = now
            case.expires_at = add_years(now, self.config.validity_years(case.kind.value))
        elif new_status == CaseStatus.EXPIRED:
            case.expires_at = None
            case.expired_at = now
        if case.kind == VerificationKind.KYB and new_status in (CaseStatus.APPROVED, CaseStatus.REJECTED):
            case.stage = advance_stage(case.stage, KybStage.COMPLETED)

        logger.info(f"Case {case.case_id}: {previous.value} -> {new_status.value} ({event.value})")
        payload = {"from": previous.value, "to": new_status.value, "trigger": event.value}
        payload.update(data or {})
        events.append((f"{case.event_prefix}.{new_status.value.lower()}", payload))
        return new_status

    def _refresh_stage(self, case: VerificationCase):
        if case.kind != VerificationKind.KYB:
            return
        coverage = ownership_coverage(case.beneficial_owners, self.config.ubo_threshold, self.config.min_ownership_coverage)
        target = derive_stage(
            has_documents=bool(case.documents),
            documents_complete=has_all_required_documents(case),
            ownership_complete=coverage["coverage_complete"],
            decided=case.status in (CaseStatus.APPROVED, CaseStatus.REJECTED),
        )
        stage = advance_stage(case.stage, target)
        if stage != case.stage:
            logger.info(f"Case {case.case_id}: stage {case.stage.value if case.stage else None} -> {stage.value}")
            case.stage = stage

    def _commit(self, case: VerificationCase, events: list):
        """Persist the case, then publish queued events."""
        case.updated_at = self.clock()
        self.repository.save(case)
        for name, data in events:
            self._emit(case, name, data)
        events.clear()

    def _emit(self, case: VerificationCase, name: str, data: Optional[dict] = None):
        event = WorkflowEvent(
            case_id=case.case_id,
            subject_id=case.subject_id,
            event=name,
            data=data or {},
            timestamp=self.clock(),
        )
        try:
            self.event_bus.publish(name, event)
        except Exception as e:
            # Delivery is fire-and-forget; persisted state stands
            logger.warning(f"Event {name} for case {case.case_id} not published: {e}")
            self.metrics.increment(ERRORS_TOTAL, {"operation": "publish_event", "error": type(e).__name__})
