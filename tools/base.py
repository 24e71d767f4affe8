"""
Base classes for workflow collaborators.

Provides abstract interfaces for screening providers and document capture.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from models import BusinessScreeningResult, ScreeningResult


@dataclass
class CaptureResult:
    """Standard result format for a document upload."""

    storage_url: str
    extracted_fields: dict[str, Any] = field(default_factory=dict)
    ocr_confidence: Optional[float] = None

    def to_dict(self) -> dict:
        result = {"storage_url": self.storage_url, "extracted_fields": self.extracted_fields}
        if self.ocr_confidence is not None:
            result["ocr_confidence"] = self.ocr_confidence
        return result


class ScreeningAdapter(ABC):
    """
    Abstract screening provider.

    Implementations return a safe default (no matches, risk 0.2,
    provider_available=False) on provider failure instead of raising.
    Timeouts are enforced by the caller.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name, used in logs and metrics."""
        pass

    @abstractmethod
    async def screen_individual(
        self,
        full_name: str,
        date_of_birth: Optional[date] = None,
        nationality: Optional[str] = None,
        address: Optional[str] = None,
    ) -> ScreeningResult:
        pass

    @abstractmethod
    async def screen_business(
        self,
        name: str,
        registration_number: Optional[str] = None,
        country: Optional[str] = None,
        address: Optional[str] = None,
    ) -> BusinessScreeningResult:
        pass


class DocumentCaptureAdapter(ABC):
    """
    Abstract document storage + OCR.

    Extraction failures are tolerated (empty fields). Storage failures
    raise DocumentStorageError.
    """

    @abstractmethod
    async def upload(self, content: bytes, filename: str, mime_type: str) -> CaptureResult:
        pass
