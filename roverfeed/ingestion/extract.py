"""Record extraction: one upstream batch in, normalized records and per-record errors out.

Extraction is total over a batch. A malformed item becomes a ``RecordError``
and the remaining items are still extracted.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from roverfeed.core.errors import ExtractionError
from roverfeed.core.logging import get_logger

log = get_logger("ingestion.extract")

SECONDS_PER_SOL = 88775.244
SECONDS_PER_DAY = 86400.0

FULL_SAMPLE_TYPE = "full"

_DIMENSION_RE = re.compile(r"\(\s*(\d+)\s*,\s*(\d+)\s*\)")


@dataclass(frozen=True)
class RawBatch:
    """One upstream response for one window of one source."""

    source_id: str
    window: int
    payload: Any


@dataclass
class NormalizedRecord:
    external_id: str
    source_id: str
    sol: int
    camera_name: str
    img_src_full: str
    raw_payload: Dict[str, Any]
    earth_date: Optional[date] = None
    date_taken_utc: Optional[datetime] = None
    date_taken_mars: Optional[str] = None
    date_received: Optional[datetime] = None
    img_src_small: Optional[str] = None
    img_src_medium: Optional[str] = None
    img_src_large: Optional[str] = None
    sample_type: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    site: Optional[int] = None
    drive: Optional[int] = None
    xyz: Optional[str] = None
    mast_az: Optional[float] = None
    mast_el: Optional[float] = None
    camera_vector: Optional[str] = None
    camera_position: Optional[str] = None
    camera_model_type: Optional[str] = None
    filter_name: Optional[str] = None
    attitude: Optional[str] = None
    spacecraft_clock: Optional[float] = None
    title: Optional[str] = None
    caption: Optional[str] = None
    credit: Optional[str] = None


@dataclass(frozen=True)
class RecordError:
    external_id: Optional[str]
    reason: str


@dataclass
class ExtractionResult:
    records: List[NormalizedRecord] = field(default_factory=list)
    errors: List[RecordError] = field(default_factory=list)
    skipped_non_full: int = 0


# -----------------------------------------------------------------------------
# Defensive field access: missing, null or mistyped optional fields become None
# -----------------------------------------------------------------------------


def get_obj(container: Any, key: str) -> Dict[str, Any]:
    if isinstance(container, dict):
        value = container.get(key)
        if isinstance(value, dict):
            return value
    return {}


def get_str(container: Any, key: str) -> Optional[str]:
    if not isinstance(container, dict):
        return None
    value = container.get(key)
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def get_int(container: Any, key: str) -> Optional[int]:
    if not isinstance(container, dict):
        return None
    value = container.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def get_float(container: Any, key: str) -> Optional[float]:
    """Numeric fields sometimes arrive as strings (e.g. mast_az)."""
    if not isinstance(container, dict):
        return None
    value = container.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def get_datetime(container: Any, key: str) -> Optional[datetime]:
    return parse_datetime(get_str(container, key))


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an upstream timestamp; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_dimensions(value: Optional[str]) -> Tuple[Optional[int], Optional[int]]:
    """``"(1648,1200)"`` -> ``(1648, 1200)``"""
    if not value:
        return None, None
    match = _DIMENSION_RE.search(value)
    if not match:
        return None, None
    return int(match.group(1)), int(match.group(2))


def earth_date_for_sol(sol: int, landing_date: date) -> date:
    """earth date = landing date + sol * (seconds per sol / seconds per day)"""
    landing = datetime.combine(landing_date, time.min)
    return (landing + timedelta(days=sol * SECONDS_PER_SOL / SECONDS_PER_DAY)).date()


def require(value: Any, field_name: str) -> Any:
    if value is None:
        raise ExtractionError(f"missing required field '{field_name}'")
    return value


# -----------------------------------------------------------------------------
# Extractor
# -----------------------------------------------------------------------------


class RecordExtractor(ABC):
    """Template for turning one raw batch into normalized records.

    Subclasses describe where the item list lives, where the sample-type
    marker lives, and how a single full item maps onto ``NormalizedRecord``.
    """

    source_id: str
    landing_date: date

    @abstractmethod
    def batch_items(self, payload: Any) -> Iterable[Any]:
        """Return the list of upstream items in a batch payload."""

    @abstractmethod
    def sample_type(self, item: Dict[str, Any]) -> Optional[str]:
        """Return the quality marker of an item (e.g. 'Full', 'Thumbnail')."""

    @abstractmethod
    def parse_item(self, item: Dict[str, Any], batch: RawBatch) -> NormalizedRecord:
        """Map one full item. Raises ExtractionError when a required field is missing."""

    def item_id(self, item: Any) -> Optional[str]:
        return None

    def extract(self, batch: RawBatch) -> ExtractionResult:
        result = ExtractionResult()
        for item in self.batch_items(batch.payload):
            if not isinstance(item, dict):
                result.errors.append(RecordError(None, f"item is {type(item).__name__}, expected object"))
                continue

            marker = self.sample_type(item)
            if (marker or "").lower() != FULL_SAMPLE_TYPE:
                result.skipped_non_full += 1
                continue

            external_id = self.item_id(item)
            try:
                result.records.append(self.parse_item(item, batch))
            except ExtractionError as exc:
                result.errors.append(RecordError(external_id, str(exc)))
            except Exception as exc:  # noqa: BLE001 - one bad item must not sink the batch
                log.opt(exception=exc).debug(f"Unexpected error extracting item {external_id}")
                result.errors.append(RecordError(external_id, f"{type(exc).__name__}: {exc}"))

        if result.errors:
            log.warning(
                f"{batch.source_id} sol {batch.window}: {len(result.errors)} malformed items skipped "
                f"(first: {result.errors[0].reason})"
            )
        log.debug(
            f"{batch.source_id} sol {batch.window}: extracted={len(result.records)} "
            f"non_full={result.skipped_non_full} errors={len(result.errors)}"
        )
        return result
