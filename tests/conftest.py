"""Pytest configuration and fixtures for verification workflow tests."""

import asyncio
import io
import pytest
import sys
import os
import struct
import zlib
from datetime import date, datetime, timedelta, timezone

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np
from PIL import Image

from models import (
    Address, BeneficialOwner, BusinessDetails, BusinessScreeningResult,
    MatchCategory, OwnerType, PersonalInfo, ScreeningMatch, ScreeningResult,
)
from tools.base import CaptureResult, DocumentCaptureAdapter, ScreeningAdapter


PDF_BYTES = (
    b"%PDF-1.4\n1 0 obj << /Type /Catalog /Pages 2 0 R >> endobj\n"
    b"trailer << /Root 1 0 R >>\n%%EOF\n"
)

START = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def reset_config():
    """Reset configuration before each test."""
    import config
    config._config = None
    yield
    config._config = None


# =============================================================================
# Collaborator fakes
# =============================================================================

def clean_screening(country_risk: float = 0.05) -> ScreeningResult:
    return ScreeningResult(country_risk=country_risk, confidence=0.9)


def sanctions_screening(score: float = 0.9, country_risk: float = 0.05) -> ScreeningResult:
    return ScreeningResult(
        sanctions_match=True,
        country_risk=country_risk,
        confidence=0.9,
        matches=[ScreeningMatch(name="Listed Person", list_name="SDN", category=MatchCategory.SANCTIONS, score=score)],
    )


def pep_screening(country_risk: float = 0.05) -> ScreeningResult:
    return ScreeningResult(
        pep_match=True,
        country_risk=country_risk,
        confidence=0.9,
        matches=[ScreeningMatch(name="Public Official", list_name="pep_register", category=MatchCategory.PEP, score=0.9)],
    )


class FakeScreening(ScreeningAdapter):
    """Deterministic screening: results by name, a default otherwise, optional delay."""

    def __init__(self, default=None, business_default=None, delay: float = 0.0):
        self.default = default or clean_screening()
        self.business_default = business_default or BusinessScreeningResult(jurisdiction_risk=0.05, confidence=0.9)
        self.by_name: dict = {}
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "fake"

    async def screen_individual(self, full_name, date_of_birth=None, nationality=None, address=None):
        self.calls.append(("individual", full_name))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.by_name.get(full_name, self.default).model_copy(deep=True)

    async def screen_business(self, name, registration_number=None, country=None, address=None):
        self.calls.append(("business", name))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.by_name.get(name, self.business_default).model_copy(deep=True)


class FakeCapture(DocumentCaptureAdapter):
    def __init__(self, fields=None):
        self.fields = fields or {}
        self.uploads: list[str] = []

    async def upload(self, content, filename, mime_type):
        self.uploads.append(filename)
        return CaptureResult(
            storage_url=f"memory://{len(self.uploads)}/{filename}",
            extracted_fields=dict(self.fields),
            ocr_confidence=0.97,
        )


class FailingBus:
    def publish(self, event_name, payload):
        raise ConnectionError("bus down")


class Clock:
    """Settable clock for deterministic timestamps."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


# =============================================================================
# Image helpers
# =============================================================================

def png_bytes(image: Image.Image, **save_kwargs) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG", **save_kwargs)
    return buffer.getvalue()


def document_image(width: int = 1400, height: int = 1000, seed: int = 7) -> Image.Image:
    """Card-shaped grayscale page with dark text-like blocks on white."""
    rng = np.random.default_rng(seed)
    pixels = np.full((height, width), 245, dtype=np.uint8)
    for _ in range(400):
        y = int(rng.integers(0, height - 12))
        x = int(rng.integers(0, width - 60))
        pixels[y:y + 8, x:x + int(rng.integers(10, 60))] = 20
    return Image.fromarray(pixels).convert("RGB")


def flat_image(width: int = 300, height: int = 200, color=(128, 128, 128)) -> Image.Image:
    return Image.new("RGB", (width, height), color)


def png_header(width: int, height: int) -> bytes:
    """A PNG that declares the given size but carries no pixel data."""
    def chunk(kind: bytes, data: bytes) -> bytes:
        return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", zlib.crc32(kind + data))

    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", ihdr) + chunk(b"IDAT", zlib.compress(b"")) + chunk(b"IEND", b"")


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def screening():
    return FakeScreening()


@pytest.fixture
def capture():
    return FakeCapture()


@pytest.fixture
def bus():
    from events import InMemoryEventBus
    return InMemoryEventBus()


@pytest.fixture
def repo():
    from repository import InMemoryCaseRepository
    return InMemoryCaseRepository()


@pytest.fixture
def metrics():
    from workflow_metrics import WorkflowMetrics
    return WorkflowMetrics()


@pytest.fixture
def config():
    from config import Config
    return Config()


@pytest.fixture
def workflow(repo, screening, capture, bus, metrics, config, clock):
    from workflow import VerificationWorkflow
    return VerificationWorkflow(
        repository=repo,
        screening=screening,
        capture=capture,
        event_bus=bus,
        metrics=metrics,
        config=config,
        clock=clock,
    )


@pytest.fixture
def personal_info():
    return PersonalInfo(
        first_name="Emily",
        last_name="Carter",
        date_of_birth=date(1996, 1, 15),
        nationality="CA",
        address=Address(city="Toronto", country="CA"),
    )


@pytest.fixture
def business_details():
    return BusinessDetails(
        legal_name="Harbourline Logistics LLC",
        registration_number="BC1234567",
        incorporation_country="CA",
        industry="freight logistics",
    )


def individual_owner(first: str, last: str, pct: float, control: float = 0.0) -> BeneficialOwner:
    return BeneficialOwner(
        owner_type=OwnerType.INDIVIDUAL,
        first_name=first,
        last_name=last,
        date_of_birth=date(1980, 5, 5),
        nationality="CA",
        ownership_percentage=pct,
        control_percentage=control,
    )


def entity_owner(name: str, pct: float) -> BeneficialOwner:
    return BeneficialOwner(
        owner_type=OwnerType.ENTITY,
        entity_name=name,
        entity_type="corporation",
        jurisdiction="CA",
        ownership_percentage=pct,
    )


def run(coro):
    return asyncio.run(coro)
