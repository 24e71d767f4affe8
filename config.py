"""
Configuration management for the KYC/KYB Verification Workflow.

Loads configuration from environment variables with sensible defaults.
"""

import os
import logging
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field

from dotenv import load_dotenv


def _load_dotenv():
    """Load the .env file that sits next to this module, if there is one."""
    env_path = Path(__file__).parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)


# Load .env file on module import
_load_dotenv()


def _env_float(name: str, default: str) -> float:
    return float(os.environ.get(name, default))


def _env_int(name: str, default: str) -> int:
    return int(os.environ.get(name, default))


# =============================================================================
# Screening List Configuration
# =============================================================================

SCREENING_LIST_PATH = os.environ.get(
    "SCREENING_LIST_PATH",
    str(Path(__file__).parent / "screening_lists")
)


# =============================================================================
# Application Configuration
# =============================================================================

@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # Storage
    data_dir: str = field(default_factory=lambda: os.environ.get("DATA_DIR", "data"))

    # Logging Configuration
    log_level: str = field(default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO"))
    log_format: str = field(
        default_factory=lambda: os.environ.get(
            "LOG_FORMAT",
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
    )

    # Decision thresholds (risk score: 1.0 = lowest risk)
    auto_approval_threshold: float = field(default_factory=lambda: _env_float("AUTO_APPROVAL_THRESHOLD", "0.95"))
    manual_review_threshold: float = field(default_factory=lambda: _env_float("MANUAL_REVIEW_THRESHOLD", "0.5"))
    document_quality_threshold: float = field(default_factory=lambda: _env_float("DOCUMENT_QUALITY_THRESHOLD", "0.8"))
    min_age: int = field(default_factory=lambda: _env_int("MIN_AGE", "18"))
    hard_match_score: float = field(default_factory=lambda: _env_float("HARD_MATCH_SCORE", "0.98"))

    # Beneficial ownership (percentages)
    ubo_threshold: float = field(default_factory=lambda: _env_float("UBO_THRESHOLD", "25"))
    min_ownership_coverage: float = field(default_factory=lambda: _env_float("MIN_OWNERSHIP_COVERAGE", "75"))

    # Validity and sweeps
    kyc_validity_years: int = field(default_factory=lambda: _env_int("KYC_VALIDITY_YEARS", "1"))
    kyb_validity_years: int = field(default_factory=lambda: _env_int("KYB_VALIDITY_YEARS", "2"))
    expiry_grace_days: int = field(default_factory=lambda: _env_int("EXPIRY_GRACE_DAYS", "0"))
    stale_threshold_hours: int = field(default_factory=lambda: _env_int("STALE_THRESHOLD_HOURS", "72"))

    # Collaborators
    screening_timeout: float = field(default_factory=lambda: _env_float("SCREENING_TIMEOUT", "30"))
    max_retries: int = field(default_factory=lambda: _env_int("MAX_RETRIES", "3"))
    max_document_size: int = field(default_factory=lambda: _env_int("MAX_DOCUMENT_SIZE", str(10 * 1024 * 1024)))

    # Screening list path
    screening_list_path: str = field(default_factory=lambda: SCREENING_LIST_PATH)

    # Verbose output (for CLI)
    verbose: bool = field(default_factory=lambda: os.environ.get("VERBOSE", "").lower() in ("true", "1", "yes"))

    def __post_init__(self):
        """Validate configuration after initialization."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_levels:
            self.log_level = "INFO"
        self.log_level = self.log_level.upper()

        # Review threshold never exceeds the approval threshold
        if self.manual_review_threshold > self.auto_approval_threshold:
            self.manual_review_threshold = self.auto_approval_threshold

    def get_log_level(self) -> int:
        """Get the logging level as an integer."""
        return getattr(logging, self.log_level, logging.INFO)

    def validity_years(self, kind: str) -> int:
        """Approval validity window in years for a verification kind ("KYC"/"KYB")."""
        return self.kyb_validity_years if str(kind).upper().endswith("KYB") else self.kyc_validity_years


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def set_config(config: Config):
    """Set the global configuration instance."""
    global _config
    _config = config
