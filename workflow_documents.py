"""
Documents mixin for VerificationWorkflow.

Validates an upload, stores it through the capture adapter, scores it with
the DocumentQualityAnalyzer and appends it to the case. The first document
moves a case PENDING -> IN_PROGRESS. Completing the required set triggers
the KYC risk assessment, or advances the KYB stage.
"""

from pathlib import PurePath
from typing import Optional, Union

from exceptions import DuplicateDocument, InvalidDocument, InvalidState, UnexpectedDocumentType
from logger import get_logger
from models import (
    CaseStatus, Document, DocumentSide, DocumentType, VerificationCase, VerificationKind,
)
from utilities.document_requirements import (
    accepted_documents, document_checklist, has_all_required_documents,
)
from utilities.reference_data import ALLOWED_EXTENSIONS, ALLOWED_MIME_TYPES
from workflow_metrics import DOCUMENT_QUALITY_SCORES
from workflow_transitions import MUTABLE_STATUSES, TransitionEvent

logger = get_logger(__name__)


class DocumentsMixin:
    """Mixin providing document submission and the requirements view."""

    async def submit_document(
        self,
        case_id: str,
        document_type: Union[DocumentType, str],
        content: bytes,
        filename: str,
        mime_type: str,
        side: Optional[Union[DocumentSide, str]] = None,
    ) -> VerificationCase:
        """
        Accept one document for a PENDING or IN_PROGRESS case.

        Raises:
            InvalidState: case is past document collection
            InvalidDocument: size, MIME type or extension rejected
            UnexpectedDocumentType: type not accepted for the case tier
            DuplicateDocument: same type and side already submitted
            DocumentStorageError: capture adapter failed (retryable)
            ScreeningUnavailable: the KYC assessment triggered by this upload
                timed out; the document is kept and assess_risk can retry
        """
        async with self._operation("submit_document", case_id), self._lock(case_id):
            case = self._load(case_id)
            if case.status not in MUTABLE_STATUSES:
                raise InvalidState(case.status.value, "submit documents", case_id)

            document_type = DocumentType(document_type)
            side = DocumentSide(side) if side else None
            self._validate_upload(case, content, filename, mime_type)
            if document_type not in accepted_documents(case):
                raise UnexpectedDocumentType(document_type.value, case.tier, case_id)
            if any(d.document_type == document_type and d.side == side for d in case.documents):
                raise DuplicateDocument(document_type.value, side.value if side else None, case_id)

            captured = await self.capture.upload(content, filename, mime_type)
            analysis = self.analyzer.analyze(content, mime_type)

            document = Document(
                document_type=document_type,
                side=side,
                filename=filename,
                mime_type=mime_type,
                size_bytes=len(content),
                storage_url=captured.storage_url,
                extracted_fields=captured.extracted_fields,
                ocr_confidence=captured.ocr_confidence,
                analysis=analysis,
                uploaded_at=self.clock(),
            )
            case.documents.append(document)
            self.metrics.observe(DOCUMENT_QUALITY_SCORES, document.quality_score, {"document_type": document_type.value})
            logger.info(
                f"Case {case_id}: accepted {document_type.value} "
                f"(quality {document.quality_score:.2f}, fraud risk {document.fraud_risk:.2f})"
            )

            events = [(f"{case.event_prefix}.document.uploaded", {
                "document_id": document.document_id,
                "document_type": document_type.value,
                "side": side.value if side else None,
                "quality_score": round(document.quality_score, 4),
                "fraud_risk": round(document.fraud_risk, 4),
            })]
            if case.status == CaseStatus.PENDING:
                self._apply(case, TransitionEvent.DOCUMENT_ACCEPTED, events)
            self._refresh_stage(case)
            self._commit(case, events)

            if case.kind == VerificationKind.KYC and has_all_required_documents(case):
                await self._assess_and_decide(case)
            return case

    def get_required_documents(self, case_id: str) -> dict:
        """Required, optional, submitted and missing documents for a case."""
        return document_checklist(self._load(case_id))

    def _validate_upload(self, case: VerificationCase, content: bytes, filename: str, mime_type: str):
        if not content:
            raise InvalidDocument("Document is empty", case.case_id)
        if len(content) > self.config.max_document_size:
            raise InvalidDocument(
                f"Document is {len(content)} bytes, limit is {self.config.max_document_size}",
                case.case_id,
            )
        if (mime_type or "").lower() not in ALLOWED_MIME_TYPES:
            raise InvalidDocument(f"MIME type {mime_type} is not accepted", case.case_id)
        extension = PurePath(filename or "").suffix.lower().lstrip(".")
        if extension not in ALLOWED_EXTENSIONS:
            raise InvalidDocument(f"File extension '{extension}' is not accepted", case.case_id)
