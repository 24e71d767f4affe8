"""
Sweeps mixin for VerificationWorkflow.

Time-based maintenance over the repository: expiring approvals past their
validity window, and warning about cases that stopped moving.
"""

from datetime import datetime, timedelta
from typing import Optional

from logger import get_logger
from models import AlertStatus, CaseStatus
from workflow_transitions import MUTABLE_STATUSES, TransitionEvent

logger = get_logger(__name__)


class SweepsMixin:
    """Mixin providing expiry and stale-case sweeps plus statistics."""

    async def expire_sweep(self, now: Optional[datetime] = None) -> list[str]:
        """
        Move every APPROVED case past expires_at (plus grace) to EXPIRED.

        Cases are locked one at a time and re-checked under the lock, so a
        case changed since the query is skipped. Returns the expired case ids.
        """
        now = now or self.clock()
        cutoff = now - timedelta(days=self.config.expiry_grace_days)
        expired = []

        for candidate in self.repository.find_expired(self.config.expiry_grace_days, now):
            case_id = candidate.case_id
            async with self._operation("expire", case_id), self._lock(case_id):
                case = self._load(case_id)
                if case.status != CaseStatus.APPROVED or case.expires_at is None or case.expires_at > cutoff:
                    continue
                events = []
                self._apply(case, TransitionEvent.VALIDITY_LAPSED, events, {
                    "expires_at": case.expires_at.isoformat(),
                })
                self._commit(case, events)
                expired.append(case_id)

        if expired:
            logger.info(f"Expiry sweep: {len(expired)} case(s) expired")
        return expired

    async def stale_case_sweep(self, now: Optional[datetime] = None) -> list[str]:
        """Emit a stale warning for open cases idle past the threshold. No state changes."""
        now = now or self.clock()
        threshold = timedelta(hours=self.config.stale_threshold_hours)
        stale = []

        for status in sorted(MUTABLE_STATUSES, key=lambda s: s.value):
            for case in self.repository.find_by_status(status):
                idle = now - case.updated_at
                if idle < threshold:
                    continue
                self._emit(case, f"{case.event_prefix}.stale_warning", {
                    "status": case.status.value,
                    "idle_hours": round(idle.total_seconds() / 3600, 1),
                })
                stale.append(case.case_id)

        if stale:
            logger.warning(f"Stale sweep: {len(stale)} case(s) idle for over {self.config.stale_threshold_hours}h")
        return stale

    def get_statistics(self) -> dict:
        """Counts by kind and status, average risk score, reviews and open alerts."""
        cases = self.repository.all()
        by_status: dict[str, int] = {}
        by_kind: dict[str, int] = {}
        scores = []
        open_alerts = 0
        for case in cases:
            by_status[case.status.value] = by_status.get(case.status.value, 0) + 1
            by_kind[case.kind.value] = by_kind.get(case.kind.value, 0) + 1
            if case.risk_assessment and not case.risk_assessment.is_prescreen:
                scores.append(case.risk_assessment.score)
            open_alerts += sum(1 for a in case.alerts if a.status == AlertStatus.OPEN)

        return {
            "total": len(cases),
            "by_status": by_status,
            "by_kind": by_kind,
            "pending_review": by_status.get(CaseStatus.REQUIRES_MANUAL_REVIEW.value, 0),
            "average_risk_score": round(sum(scores) / len(scores), 4) if scores else None,
            "open_alerts": open_alerts,
        }
