"""
Trade.gov Consolidated Screening List adapter.
Searches the CSL API, falls back to a local JSON cache, and fuzzy-matches
names with rapidfuzz. Country risk comes from the reference lists.
"""

import json
import os
from datetime import date
from pathlib import Path
from typing import Optional

import httpx
from rapidfuzz import fuzz

from logger import get_logger
from config import get_config
from models import BusinessScreeningResult, MatchCategory, ScreeningMatch, ScreeningResult
from tools.base import ScreeningAdapter
from utilities.reference_data import calculate_country_risk

logger = get_logger(__name__)

# CSL API endpoint
CSL_API_URL = "https://api.trade.gov/gateway/v2/consolidated_screening_list/search"

# Matches at or above this are reported; at or above MATCH_THRESHOLD they set a flag
REPORT_THRESHOLD = 0.70
MATCH_THRESHOLD = 0.85

# Confidence when only the local cache answered
LOCAL_ONLY_CONFIDENCE = 0.6


def _name_similarity(name1: str, name2: str) -> float:
    """Token-sort ratio, so "Smith John" matches "John Smith"."""
    return fuzz.token_sort_ratio(name1.lower(), name2.lower()) / 100.0


def _best_similarity(name: str, entry: dict) -> float:
    candidates = [entry.get("name", "")] + list(entry.get("alt_names") or [])
    return max((_name_similarity(name, c) for c in candidates if c), default=0.0)


def _match_category(entry: dict) -> MatchCategory:
    """CSL lists are sanctions/export lists; the local cache may tag PEP or media entries."""
    category = str(entry.get("category", "")).lower()
    if "pep" in category or "political" in category:
        return MatchCategory.PEP
    if "media" in category:
        return MatchCategory.ADVERSE_MEDIA
    return MatchCategory.SANCTIONS


class CslScreeningAdapter(ScreeningAdapter):
    """Screening against the Consolidated Screening List (API + local cache)."""

    def __init__(
        self,
        api_url: str = CSL_API_URL,
        api_key: Optional[str] = None,
        cache_dir: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = get_config()
        self.api_url = api_url
        self.api_key = api_key or os.environ.get("TRADE_GOV_API_KEY")
        self.cache_dir = Path(cache_dir or config.screening_list_path)
        self.timeout = timeout or config.screening_timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return "trade_gov_csl"

    async def screen_individual(
        self,
        full_name: str,
        date_of_birth: Optional[date] = None,
        nationality: Optional[str] = None,
        address: Optional[str] = None,
    ) -> ScreeningResult:
        logger.info(f"Screening individual: {full_name}")
        matches, available, api_ok = await self._search(full_name, date_of_birth)
        country_risk = calculate_country_risk(nationality or address)
        if not available:
            result = ScreeningResult.safe_default()
            result.country_risk = country_risk
            return result

        flagged = [m for m in matches if m.score >= MATCH_THRESHOLD]
        return ScreeningResult(
            sanctions_match=any(m.category == MatchCategory.SANCTIONS for m in flagged),
            pep_match=any(m.category == MatchCategory.PEP for m in flagged),
            adverse_media_match=any(m.category == MatchCategory.ADVERSE_MEDIA for m in flagged),
            country_risk=country_risk,
            matches=matches,
            confidence=self._confidence(api_ok),
        )

    async def screen_business(
        self,
        name: str,
        registration_number: Optional[str] = None,
        country: Optional[str] = None,
        address: Optional[str] = None,
    ) -> BusinessScreeningResult:
        logger.info(f"Screening business: {name}")
        matches, available, api_ok = await self._search(name)
        jurisdiction_risk = calculate_country_risk(country or address)
        if not available:
            result = BusinessScreeningResult.safe_default()
            result.jurisdiction_risk = jurisdiction_risk
            return result

        flagged = [m for m in matches if m.score >= MATCH_THRESHOLD]
        return BusinessScreeningResult(
            sanctions_match=any(m.category == MatchCategory.SANCTIONS for m in flagged),
            adverse_media_match=any(m.category == MatchCategory.ADVERSE_MEDIA for m in flagged),
            jurisdiction_risk=jurisdiction_risk,
            matches=matches,
            confidence=self._confidence(api_ok),
        )

    # -------------------------------------------------------------------------

    async def _search(self, name: str, date_of_birth: Optional[date] = None) -> tuple[list[ScreeningMatch], bool, bool]:
        """Returns (matches, provider_available, api_answered)."""
        matches: list[ScreeningMatch] = []
        api_ok = False

        try:
            matches.extend(await self._search_csl_api(name, date_of_birth))
            api_ok = True
        except Exception as e:
            logger.warning(f"CSL API search failed: {e}")

        local_entries = self._load_local_cache()
        existing = {m.name.lower() for m in matches}
        try:
            for m in self._fuzzy_search_local(name, local_entries, date_of_birth):
                if m.name.lower() not in existing:
                    matches.append(m)
        except Exception as e:
            logger.warning(f"Local screening search failed: {e}")

        matches.sort(key=lambda m: m.score, reverse=True)
        available = api_ok or local_entries is not None
        return matches[:10], available, api_ok

    async def _search_csl_api(self, name: str, date_of_birth: Optional[date]) -> list[ScreeningMatch]:
        params = {"name": name, "fuzzy_name": "true", "size": 10}
        headers = {}
        if self.api_key:
            headers["subscription-key"] = self.api_key

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(self.api_url, params=params, headers=headers)
            response.raise_for_status()
            data = response.json()

        results = data.get("results", []) if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise ValueError(f"unexpected CSL response: {type(data).__name__}")
        return self._to_matches(name, results, date_of_birth, default_list="CSL")

    def _load_local_cache(self) -> Optional[list[dict]]:
        cache_path = self.cache_dir / "csl_cache.json"
        if not cache_path.exists():
            return None
        try:
            data = json.loads(cache_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Local screening cache unreadable: {e}")
            return None
        entries = data.get("entries", []) if isinstance(data, dict) else None
        if not isinstance(entries, list):
            logger.warning(f"Local screening cache has no entry list: {cache_path}")
            return None
        return entries

    def _fuzzy_search_local(self, name: str, entries: Optional[list[dict]], date_of_birth: Optional[date]) -> list[ScreeningMatch]:
        if not entries:
            return []
        return self._to_matches(name, entries, date_of_birth, default_list="local_cache")

    def _to_matches(self, name: str, entries: list[dict], date_of_birth: Optional[date], default_list: str) -> list[ScreeningMatch]:
        matches = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            score = _best_similarity(name, entry)
            # A listed birth year that differs from the subject's weakens the match
            listed_dobs = entry.get("dates_of_birth") or ""
            if date_of_birth and listed_dobs and str(date_of_birth.year) not in str(listed_dobs):
                score *= 0.8
            if score < REPORT_THRESHOLD:
                continue
            matches.append(ScreeningMatch(
                name=entry.get("name", ""),
                list_name=entry.get("source", default_list),
                category=_match_category(entry),
                score=round(min(1.0, score), 4),
                details={
                    "type": entry.get("type", ""),
                    "programs": entry.get("programs", []),
                    "country": entry.get("country", ""),
                    "remarks": entry.get("remarks", ""),
                },
            ))
        return matches

    def _confidence(self, api_ok: bool) -> float:
        return 0.9 if api_ok else LOCAL_ONLY_CONFIDENCE
