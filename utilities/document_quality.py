"""
Document quality and fraud heuristics.

Scores one uploaded file for legibility (resolution, blur, brightness,
contrast, edge density, text coverage) and for tampering signals
(editor metadata, channel imbalance, document aspect ratio).

Every sub-check degrades to a neutral 0.5 on failure. The analyzer never
raises: it informs the risk engine, it does not gate uploads.
"""

import io
from typing import Callable, Optional

import cv2
import numpy as np
from PIL import Image

from logger import get_logger
from models import DocumentAnalysis, DocumentQuality, FraudIndicators
from utilities.reference_data import (
    EDITING_TOOL_SIGNATURES, IMAGE_MIME_TYPES, VALID_ASPECT_RATIOS,
)

logger = get_logger(__name__)

NEUTRAL = 0.5

# Overall score weights
QUALITY_WEIGHTS = {
    "image_quality": 0.25,
    "sharpness": 0.20,
    "brightness": 0.10,
    "contrast": 0.10,
    "resolution": 0.15,
    "edge_detection": 0.10,
    "text_clarity": 0.10,
}

# Fraud indicator weights
MANIPULATION_WEIGHT = 0.4
TAMPERING_WEIGHT = 0.5
INVALID_TEMPLATE_WEIGHT = 0.3

TAMPERING_CHANNEL_DELTA = 50.0
LAPLACIAN_VARIANCE_SCALE = 1000.0
EXIF_SOFTWARE_TAG = 0x0131

# Decoded images above this are refused; pixel checks run on a sample capped below
MAX_DECODE_PIXELS = 50_000_000
MAX_ANALYSIS_PIXELS = 4_000_000

LAPLACIAN_KERNEL = np.array([[-1, -1, -1], [-1, 8, -1], [-1, -1, -1]], dtype=np.float64)


def _laplacian(gray: np.ndarray) -> np.ndarray:
    return cv2.filter2D(gray, cv2.CV_64F, LAPLACIAN_KERNEL, borderType=cv2.BORDER_REPLICATE)


class DocumentQualityAnalyzer:
    """Stateless per call; safe to share across cases."""

    def __init__(
        self,
        min_density: int = 150,
        default_density: int = 72,
        max_decode_pixels: int = MAX_DECODE_PIXELS,
        max_analysis_pixels: int = MAX_ANALYSIS_PIXELS,
    ):
        self.min_density = min_density
        self.default_density = default_density
        self.max_decode_pixels = max_decode_pixels
        self.max_analysis_pixels = max_analysis_pixels

    def analyze(self, content: bytes, mime_type: str) -> DocumentAnalysis:
        """Analyze raw file bytes. Non-images get a fixed high default."""
        mime = (mime_type or "").lower()
        if mime not in IMAGE_MIME_TYPES:
            return self._non_image_analysis(mime)

        errors: list[str] = []
        try:
            image = Image.open(io.BytesIO(content))
            size = image.size
            if size[0] * size[1] > self.max_decode_pixels:
                raise ValueError(f"image of {size[0]}x{size[1]} pixels is too large to analyze")
            # JPEG decodes at a reduced scale; other formats ignore the hint
            image.draft(image.mode, self._sample_size(size))
            image.load()
            sample = self._downscale(image)
        except Exception as e:
            # Includes Pillow's DecompressionBombError for declared sizes far past its limit
            logger.warning(f"Could not decode {mime} document: {e}")
            return DocumentAnalysis(
                mime_type=mime,
                quality=DocumentQuality(),
                fraud=FraudIndicators(risk_score=NEUTRAL, indicators=["detection_error"]),
                errors=[f"decode: {e}"],
            )

        quality = self._assess_quality(image, sample, size, errors)
        fraud = self._detect_fraud(image, sample, size, errors)
        return DocumentAnalysis(mime_type=mime, quality=quality, fraud=fraud, errors=errors)

    def _sample_size(self, size: tuple[int, int]) -> tuple[int, int]:
        width, height = size
        pixels = width * height
        if pixels <= self.max_analysis_pixels:
            return width, height
        scale = (self.max_analysis_pixels / pixels) ** 0.5
        return max(1, int(width * scale)), max(1, int(height * scale))

    def _downscale(self, image: Image.Image) -> Image.Image:
        target = self._sample_size(image.size)
        if target == image.size:
            return image
        return image.resize(target)

    # -------------------------------------------------------------------------
    # Quality
    # -------------------------------------------------------------------------

    def _assess_quality(
        self, image: Image.Image, sample: Image.Image, size: tuple[int, int], errors: list[str]
    ) -> DocumentQuality:
        width, height = size

        pixels = self._safe("rgb_array", lambda: np.asarray(sample.convert("RGB")), None, errors)
        rgb = None if pixels is None else pixels.astype(np.float64)
        gray = self._safe(
            "gray_array", lambda: cv2.cvtColor(pixels, cv2.COLOR_RGB2GRAY).astype(np.float64), None, errors
        )

        image_quality = self._safe("image_quality", lambda: self.check_image_quality(image, size), NEUTRAL, errors)
        blur = self._safe("blur", lambda: self.check_blur(gray), NEUTRAL, errors)
        brightness = self._safe("brightness", lambda: self.check_brightness(rgb), NEUTRAL, errors)
        contrast = self._safe("contrast", lambda: self.check_contrast(rgb), NEUTRAL, errors)
        resolution = self._safe("resolution", lambda: min(1.0, (width * height) / 1_000_000), NEUTRAL, errors)
        edges = self._safe("edge_detection", lambda: self.check_edges(gray), None, errors)
        text_clarity = self._safe("text_clarity", lambda: self.check_text_clarity(gray), NEUTRAL, errors)

        edge_score = NEUTRAL if edges is None else (1.0 if edges else 0.0)
        overall = (
            image_quality * QUALITY_WEIGHTS["image_quality"]
            + (1 - blur) * QUALITY_WEIGHTS["sharpness"]
            + (1 - abs(brightness - 0.5) * 2) * QUALITY_WEIGHTS["brightness"]
            + contrast * QUALITY_WEIGHTS["contrast"]
            + resolution * QUALITY_WEIGHTS["resolution"]
            + edge_score * QUALITY_WEIGHTS["edge_detection"]
            + text_clarity * QUALITY_WEIGHTS["text_clarity"]
        )

        return DocumentQuality(
            image_quality=image_quality,
            blur=blur,
            brightness=brightness,
            contrast=contrast,
            resolution=resolution,
            edge_detection=bool(edges),
            text_clarity=text_clarity,
            overall_score=max(0.0, min(1.0, overall)),
            width=width,
            height=height,
        )

    def check_image_quality(self, image: Image.Image, size: Optional[tuple[int, int]] = None) -> float:
        """Pixel count of the upload (not the analysis sample) and declared density."""
        width, height = size or image.size
        pixels = width * height
        score = 1.0
        if pixels < 500_000:
            score -= 0.3
        elif pixels < 1_000_000:
            score -= 0.1

        dpi = image.info.get("dpi")
        density = float(dpi[0]) if dpi else self.default_density
        if density < self.min_density:
            score -= 0.2
        return max(0.0, score)

    def check_blur(self, gray: np.ndarray) -> float:
        """0 = sharp, 1 = fully blurred. Low Laplacian variance means blurred."""
        variance = float(_laplacian(gray).var())
        sharpness = min(1.0, variance / LAPLACIAN_VARIANCE_SCALE)
        return 1.0 - sharpness

    def check_brightness(self, rgb: np.ndarray) -> float:
        return float(rgb.mean() / 255.0)

    def check_contrast(self, rgb: np.ndarray) -> float:
        channel_std = [float(rgb[..., c].std()) for c in range(rgb.shape[-1])]
        return min(1.0, (sum(channel_std) / len(channel_std)) / 128.0)

    def check_edges(self, gray: np.ndarray) -> bool:
        """Edge density must look like one framed document, not clutter or a blank."""
        response = np.clip(_laplacian(gray), 0, 255)
        ratio = float(np.count_nonzero(response > 128) / response.size)
        return 0.1 < ratio < 0.8

    def check_text_clarity(self, gray: np.ndarray) -> float:
        low, high = float(gray.min()), float(gray.max())
        if high - low == 0:
            normalized = np.full_like(gray, 255.0)
        else:
            normalized = (gray - low) * 255.0 / (high - low)
        dark_ratio = float(np.count_nonzero(normalized < 128) / normalized.size)
        if 0.05 <= dark_ratio <= 0.30:
            return 0.9
        if 0.02 <= dark_ratio <= 0.50:
            return 0.7
        return 0.5

    # -------------------------------------------------------------------------
    # Fraud
    # -------------------------------------------------------------------------

    def _detect_fraud(
        self, image: Image.Image, sample: Image.Image, size: tuple[int, int], errors: list[str]
    ) -> FraudIndicators:
        indicators: list[str] = []
        risk = 0.0

        manipulated = self._safe("manipulation", lambda: self.check_manipulation(image), None, errors)
        tampered = self._safe("tampering", lambda: self.check_tampering(sample), None, errors)
        template_ok = self._safe("template", lambda: self.check_template(*size), None, errors)

        if manipulated is None or tampered is None or template_ok is None:
            indicators.append("detection_error")
            risk = max(risk, NEUTRAL)
        if manipulated:
            indicators.append("digital_manipulation")
            risk += MANIPULATION_WEIGHT
        if tampered:
            indicators.append("color_tampering")
            risk += TAMPERING_WEIGHT
        if template_ok is False:
            indicators.append("invalid_template")
            risk += INVALID_TEMPLATE_WEIGHT

        return FraudIndicators(
            risk_score=min(1.0, risk),
            indicators=indicators,
            manipulation_detected=bool(manipulated),
            tampering_detected=bool(tampered),
            template_valid=template_ok is not False,
        )

    def check_manipulation(self, image: Image.Image) -> bool:
        """Editing-tool signatures in EXIF Software or PNG text chunks."""
        sources = []
        software = image.getexif().get(EXIF_SOFTWARE_TAG)
        if software:
            sources.append(str(software))
        for key in ("Software", "software", "Comment", "comment"):
            if key in image.info:
                sources.append(str(image.info[key]))
        text = " ".join(sources).lower()
        return any(sig in text for sig in EDITING_TOOL_SIGNATURES)

    def check_tampering(self, image: Image.Image) -> bool:
        rgb = np.asarray(image.convert("RGB"), dtype=np.float64)
        r, g, b = (float(rgb[..., c].mean()) for c in range(3))
        return abs(r - g) + abs(g - b) + abs(r - b) > TAMPERING_CHANNEL_DELTA

    def check_template(self, width: int, height: int) -> bool:
        ratio = width / height
        return any(lo <= ratio <= hi for lo, hi in VALID_ASPECT_RATIOS.values())

    # -------------------------------------------------------------------------

    def _non_image_analysis(self, mime: str) -> DocumentAnalysis:
        return DocumentAnalysis(
            mime_type=mime,
            is_image=False,
            quality=DocumentQuality(
                image_quality=1.0,
                blur=0.0,
                brightness=0.5,
                contrast=0.5,
                resolution=1.0,
                edge_detection=True,
                text_clarity=1.0,
                overall_score=0.95,
            ),
            fraud=FraudIndicators(),
        )

    def _safe(self, name: str, check: Callable, default, errors: list[str]):
        try:
            return check()
        except Exception as e:
            logger.warning(f"Document check '{name}' failed, using neutral default: {e}")
            errors.append(f"{name}: {e}")
            return default
