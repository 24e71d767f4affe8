"""
Local document capture.

Stores uploads as content-addressed files and runs an optional field
extractor. Extraction is best-effort; storage failures are surfaced.
"""

import asyncio
import hashlib
from pathlib import Path
from typing import Any, Callable, Optional

from exceptions import DocumentStorageError
from logger import get_logger
from tools.base import CaptureResult, DocumentCaptureAdapter

logger = get_logger(__name__)

# (content, mime_type) -> (fields, confidence)
Extractor = Callable[[bytes, str], tuple[dict[str, Any], float]]


class LocalDocumentCapture(DocumentCaptureAdapter):
    """Filesystem-backed document storage."""

    def __init__(self, storage_dir: str, extractor: Optional[Extractor] = None):
        self.storage_dir = Path(storage_dir)
        self.extractor = extractor

    async def upload(self, content: bytes, filename: str, mime_type: str) -> CaptureResult:
        digest = hashlib.sha256(content).hexdigest()
        suffix = Path(filename).suffix.lower()
        target = self.storage_dir / digest[:2] / f"{digest}{suffix}"

        try:
            await asyncio.to_thread(self._write, target, content)
        except OSError as e:
            raise DocumentStorageError(f"Could not store {filename}: {e}") from e

        fields: dict[str, Any] = {}
        confidence = None
        if self.extractor:
            try:
                fields, confidence = self.extractor(content, mime_type)
            except Exception as e:
                logger.warning(f"Field extraction failed for {filename}: {e}")

        return CaptureResult(storage_url=target.resolve().as_uri(), extracted_fields=fields, ocr_confidence=confidence)

    @staticmethod
    def _write(target: Path, content: bytes):
        target.parent.mkdir(parents=True, exist_ok=True)
        if not target.exists():
            target.write_bytes(content)
