"""Best-effort enrichment of processed results with well-inventory records.

Pipeline: normalize the permit number, correct it in the result, look up the
permit, then fill gaps in the result from the record and flag the file for
review. Every stage except the lookup is pure.
"""

from __future__ import annotations

import copy
import csv
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Protocol, Union

import structlog

from coreextract.core.config import settings
from coreextract.services.exceptions import EnrichmentError

logger = structlog.get_logger(__name__)

IDENTIFIER_FIELD = "permit_number"
IDENTIFIER_CANDIDATE_FIELDS = (
    "permit_number",
    "permitNumber",
    "permit_no",
    "permitNo",
    "permit",
    "permit_id",
    "permitId",
    "well_permit",
    "wellPermit",
    "drilling_permit",
    "drillingPermit",
)
FILENAME_PATTERNS = (
    re.compile(r"permit[_-]?(\d+)", re.IGNORECASE),
    re.compile(r"(\d+)[_-]?permit", re.IGNORECASE),
    re.compile(r"(\d+)"),
)
NON_DIGITS_RE = re.compile(r"[^\d]")
WELL_NUMBER_SLASH_RE = re.compile(r"^([A-Za-z0-9]+)\s*/\s*([A-Za-z0-9]+)$")


# Stage outcomes


@dataclass(frozen=True)
class Corrected:
    identifier: str


@dataclass(frozen=True)
class AlreadyCorrect:
    identifier: str


@dataclass(frozen=True)
class Unidentified:
    pass


Normalization = Union[Corrected, AlreadyCorrect, Unidentified]


@dataclass(frozen=True)
class Found:
    record: dict[str, Any]


@dataclass(frozen=True)
class NoMatch:
    pass


LookupOutcome = Union[Found, NoMatch]


class EnrichmentLookup(Protocol):
    def lookup(self, identifier: str) -> LookupOutcome: ...


@dataclass(frozen=True)
class EnrichmentReport:
    result: dict[str, Any]
    normalization: Normalization
    lookup: LookupOutcome | None
    flagged_for_review: bool
    lookup_failed: bool = False


# Stage 1: normalize


def normalize_identifier(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    return cleaned.lstrip("0") or "0"


def identifier_from_result(result: dict[str, Any]) -> str | None:
    for name in IDENTIFIER_CANDIDATE_FIELDS:
        value = result.get(name)
        if isinstance(value, bool) or value is None:
            continue
        if isinstance(value, (str, int)):
            digits = NON_DIGITS_RE.sub("", str(value))
            if digits:
                return digits
    return None


def identifier_from_filename(filename: str | None) -> str | None:
    if not filename:
        return None
    stem = Path(filename).stem
    for pattern in FILENAME_PATTERNS:
        match = pattern.search(stem)
        if match:
            return match.group(1)
    return None


def normalize(result: dict[str, Any], filename: str | None) -> Normalization:
    identifier = normalize_identifier(identifier_from_result(result)) or normalize_identifier(
        identifier_from_filename(filename)
    )
    if identifier is None:
        return Unidentified()
    if result.get(IDENTIFIER_FIELD) == identifier:
        return AlreadyCorrect(identifier)
    return Corrected(identifier)


# Stage 2: correct


def apply_correction(result: dict[str, Any], normalization: Normalization) -> dict[str, Any]:
    if isinstance(normalization, Corrected):
        return {**result, IDENTIFIER_FIELD: normalization.identifier}
    return result


# Stage 4: merge


def _is_gap(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def fill_gaps(target: dict[str, Any], supplement: dict[str, Any]) -> dict[str, Any]:
    """Deep merge where supplement only fills missing or empty values."""
    merged = dict(target)
    for key, value in supplement.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict) and current:
            merged[key] = fill_gaps(current, value)
        elif _is_gap(current):
            merged[key] = copy.deepcopy(value)
    return merged


def run_enrichment(
    result: dict[str, Any],
    filename: str | None,
    lookup: EnrichmentLookup,
) -> EnrichmentReport:
    working = copy.deepcopy(result)

    normalization = normalize(working, filename)
    if isinstance(normalization, Unidentified):
        logger.info("enrichment_skipped_no_identifier", filename=filename)
        return EnrichmentReport(
            result=working, normalization=normalization, lookup=None, flagged_for_review=False
        )

    working = apply_correction(working, normalization)
    if isinstance(normalization, Corrected):
        logger.info("enrichment_identifier_corrected", identifier=normalization.identifier)

    try:
        outcome = lookup.lookup(normalization.identifier)
    except Exception:
        # Enrichment must never fail the surrounding write.
        logger.warning(
            "enrichment_lookup_failed", identifier=normalization.identifier, exc_info=True
        )
        return EnrichmentReport(
            result=working,
            normalization=normalization,
            lookup=None,
            flagged_for_review=False,
            lookup_failed=True,
        )

    if isinstance(outcome, NoMatch):
        logger.info("enrichment_no_match", identifier=normalization.identifier)
        return EnrichmentReport(
            result=working, normalization=normalization, lookup=outcome, flagged_for_review=False
        )

    working = fill_gaps(working, outcome.record)
    logger.info("enrichment_merged", identifier=normalization.identifier)
    return EnrichmentReport(
        result=working, normalization=normalization, lookup=outcome, flagged_for_review=True
    )


# Stage 3: lookup against the well inventory


DATUM_LABELS = {
    "K": "Kelly Bushing",
    "G": "Ground",
    "R": "Rotary Table",
    "D": "Drill Floor",
}
DEVIATION_LABELS = {
    "H": "Horizontal",
    "D": "Deviated",
    "V": "Straight",
}
WELL_TYPE_LABELS = {
    "GAS": "Gas Production",
    "DH": "Dry Hole",
    "MTW": "Mineral",
    "MNB": "Mineral",
    "BDW": "Brine Disposal",
    "OIL": "Oil Production",
    "LOC": "Location",
    "LPG": "LPG",
    "MSM": "Min",
    "WIW": "Water Injection",
    "GSO": "Gas Storage",
    "MDW": "Mineral",
    "GS": "Gas Storage",
    "GIW": "Gas Injection",
    "LHL": "Lost Hole",
    "OTH": "Other",
    "OBS": "Observation",
}


def _text(row: dict[str, str], column: str) -> str | None:
    value = (row.get(column) or "").strip()
    return value or None


def _number(row: dict[str, str], column: str) -> float | None:
    value = _text(row, column)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def record_from_row(row: dict[str, str]) -> dict[str, Any]:
    well_number = _text(row, "well_no")
    if well_number:
        well_number = WELL_NUMBER_SLASH_RE.sub(r"\1-\2", well_number)

    well_type = _text(row, "well_type")
    datum = _text(row, "ref_tops")
    slant = _text(row, "Slant")
    measured_depth = _number(row, "dtd")
    true_depth = _number(row, "tvd")

    return {
        "api_number": _text(row, "api_wellno"),
        "lease_name": _text(row, "lease_name"),
        "well_number": well_number,
        "latitude": _number(row, "Latitude"),
        "longitude": _number(row, "Longitude"),
        "elevation": _number(row, "elev_ref"),
        "elevation_datum": DATUM_LABELS.get(datum) if datum else None,
        "well_type": WELL_TYPE_LABELS.get(well_type, well_type) if well_type else None,
        "status": _text(row, "well_stat"),
        "measured_depth": measured_depth,
        "true_depth": true_depth if true_depth is not None else measured_depth,
        "deepest_formation": _text(row, "deep_fm"),
        "deviation": DEVIATION_LABELS.get(slant) if slant else None,
        "county": _text(row, "CNTY_NAME"),
    }


class CsvRecordLookup:
    """Looks permits up in a well-inventory CSV, re-reading it after ``cache_seconds``."""

    def __init__(
        self,
        path: str | Path,
        cache_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._path = Path(path)
        self._cache_seconds = cache_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._index: dict[str, dict[str, str]] | None = None
        self._loaded_at: float | None = None

    def _load(self) -> dict[str, dict[str, str]]:
        index: dict[str, dict[str, str]] = {}
        try:
            with self._path.open(newline="", encoding="utf-8-sig") as fh:
                for row in csv.DictReader(fh):
                    key = normalize_identifier(row.get("permit_no"))
                    if key and key not in index:
                        index[key] = row
        except (OSError, csv.Error) as exc:
            raise EnrichmentError(f"cannot read well inventory {self._path}: {exc}") from exc
        logger.info("enrichment_records_loaded", path=str(self._path), records=len(index))
        return index

    def _records(self) -> dict[str, dict[str, str]]:
        with self._lock:
            now = self._clock()
            stale = self._loaded_at is None or (now - self._loaded_at) >= self._cache_seconds
            if self._index is None or stale:
                self._index = self._load()
                self._loaded_at = now
            return self._index

    def lookup(self, identifier: str) -> LookupOutcome:
        row = self._records().get(normalize_identifier(identifier) or "")
        if row is None:
            return NoMatch()
        return Found(record_from_row(row))


@lru_cache(maxsize=1)
def get_enrichment_lookup() -> EnrichmentLookup:
    return CsvRecordLookup(settings.enrichment_records_path, settings.enrichment_cache_seconds)
