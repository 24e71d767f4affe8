"""
Case persistence.

CaseRepository is the collaborator contract. InMemoryCaseRepository serves
tests and single-process use; JsonCaseRepository keeps one JSON file per
case under the data directory.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from logger import get_logger
from models import CaseStatus, VerificationCase, utcnow

logger = get_logger(__name__)


class CaseRepository(ABC):
    """Load-by-id, save, and query-by-status/date collaborator."""

    @abstractmethod
    def save(self, case: VerificationCase):
        pass

    @abstractmethod
    def find_by_id(self, case_id: str) -> Optional[VerificationCase]:
        pass

    @abstractmethod
    def all(self) -> list[VerificationCase]:
        pass

    def find_by_subject(self, subject_id: str) -> list[VerificationCase]:
        return [c for c in self.all() if c.subject_id == subject_id]

    def find_by_status(self, status: CaseStatus) -> list[VerificationCase]:
        return [c for c in self.all() if c.status == status]

    def find_expired(self, grace_days: int = 0, now: Optional[datetime] = None) -> list[VerificationCase]:
        """APPROVED cases whose expiry (plus grace) has passed."""
        cutoff = (now or utcnow()) - timedelta(days=grace_days)
        return [
            c for c in self.find_by_status(CaseStatus.APPROVED)
            if c.expires_at is not None and c.expires_at <= cutoff
        ]


class InMemoryCaseRepository(CaseRepository):

    def __init__(self):
        self._cases: dict[str, VerificationCase] = {}

    def save(self, case: VerificationCase):
        # Stored as a copy so callers never share a live record with the store
        self._cases[case.case_id] = case.model_copy(deep=True)

    def find_by_id(self, case_id: str) -> Optional[VerificationCase]:
        case = self._cases.get(case_id)
        return case.model_copy(deep=True) if case else None

    def all(self) -> list[VerificationCase]:
        return [c.model_copy(deep=True) for c in self._cases.values()]


class JsonCaseRepository(CaseRepository):
    """One JSON document per case: {data_dir}/cases/{case_id}.json"""

    def __init__(self, data_dir: str):
        self.cases_dir = Path(data_dir) / "cases"

    def _get_case_path(self, case_id: str) -> Path:
        return self.cases_dir / f"{case_id}.json"

    def save(self, case: VerificationCase):
        path = self._get_case_path(case.case_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(case.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(path)

    def find_by_id(self, case_id: str) -> Optional[VerificationCase]:
        path = self._get_case_path(case_id)
        if not path.exists():
            return None
        return self._load(path)

    def all(self) -> list[VerificationCase]:
        if not self.cases_dir.exists():
            return []
        cases = []
        for path in sorted(self.cases_dir.glob("*.json")):
            case = self._load(path)
            if case is not None:
                cases.append(case)
        return cases

    def _load(self, path: Path) -> Optional[VerificationCase]:
        try:
            return VerificationCase.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError) as e:
            logger.warning(f"Could not load case file {path.name}: {e}")
            return None
