"""Curiosity (MSL) source implementation."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, Optional

from roverfeed.core.errors import UpstreamNotFound, UpstreamStatusError
from roverfeed.core.logging import get_logger
from .base import BaseSource
from .extract import (
    NormalizedRecord,
    RawBatch,
    earth_date_for_sol,
    get_datetime,
    get_float,
    get_int,
    get_obj,
    get_str,
    require,
)
from .http_client import ResilientFetchClient

log = get_logger("ingestion.curiosity")

ITEMS_URL = "https://mars.nasa.gov/api/v1/raw_image_items/"
PER_PAGE = 200

# Instrument prefixes reported upstream -> canonical camera names
_CAMERA_PREFIXES = {
    "MAST_": "MAST",
    "NAV_": "NAVCAM",
    "FHAZ_": "FHAZ",
    "RHAZ_": "RHAZ",
    "CHEMCAM_": "CHEMCAM",
}
_CAMERA_ALIASES = {"MASTCAM": "MAST"}


def map_instrument_to_camera(instrument: str) -> str:
    """Collapse instrument variants (``NAV_LEFT_B``) into one camera (``NAVCAM``)."""
    upper = instrument.upper()
    for prefix, camera in _CAMERA_PREFIXES.items():
        if upper.startswith(prefix):
            return camera
    return _CAMERA_ALIASES.get(upper, upper)


class CuriositySource(BaseSource):
    """Raw image items of the Mars Science Laboratory mission."""

    name = "curiosity"
    landing_date = date(2012, 8, 6)

    async def fetch_window(self, client: ResilientFetchClient, window: int) -> RawBatch:
        params = {
            "order": "sol desc",
            "per_page": PER_PAGE,
            "condition_1": "msl:mission",
            "condition_2": f"{window}:sol:in",
        }
        try:
            payload = await client.fetch_json(ITEMS_URL, params=params)
        except UpstreamNotFound:
            # Upstream 404s sols without images
            log.info(f"No photos found for {self.name} sol {window}")
            payload = {"items": []}
        return RawBatch(source_id=self.name, window=window, payload=payload)

    async def current_max_window(self, client: ResilientFetchClient) -> int:
        params = {"order": "sol desc", "per_page": 1, "condition_1": "msl:mission"}
        payload = await client.fetch_json(ITEMS_URL, params=params)
        items = self.batch_items(payload)
        latest = get_int(items[0], "sol") if items else None
        if latest is None:
            raise UpstreamStatusError(f"Upstream response missing 'items[0].sol' for {self.name}", ITEMS_URL)
        log.info(f"Current mission sol for {self.name}: {latest}")
        return latest

    def batch_items(self, payload: Any) -> list:
        items = payload.get("items") if isinstance(payload, dict) else None
        return items if isinstance(items, list) else []

    def sample_type(self, item: Dict[str, Any]) -> Optional[str]:
        return get_str(get_obj(item, "extended"), "sample_type")

    def item_id(self, item: Any) -> Optional[str]:
        return get_str(item, "id")

    def parse_item(self, item: Dict[str, Any], batch: RawBatch) -> NormalizedRecord:
        extended = get_obj(item, "extended")

        external_id = require(get_str(item, "id"), "id")
        sol = get_int(item, "sol")
        if sol is None:
            sol = batch.window
        instrument = require(get_str(item, "instrument"), "instrument")
        img_src_full = require(get_str(item, "https_url"), "https_url")

        return NormalizedRecord(
            external_id=external_id,
            source_id=self.name,
            sol=sol,
            camera_name=map_instrument_to_camera(instrument),
            img_src_full=img_src_full,
            raw_payload=item,
            earth_date=earth_date_for_sol(sol, self.landing_date),
            date_taken_utc=get_datetime(item, "date_taken"),
            date_taken_mars=get_str(extended, "lmst"),
            date_received=get_datetime(item, "date_received"),
            img_src_small=get_str(extended, "url_list"),
            sample_type=get_str(extended, "sample_type"),
            site=get_int(item, "site"),
            drive=get_int(item, "drive"),
            xyz=get_str(item, "xyz"),
            mast_az=get_float(extended, "mast_az"),
            mast_el=get_float(extended, "mast_el"),
            camera_vector=get_str(item, "camera_vector"),
            camera_position=get_str(item, "camera_position"),
            camera_model_type=get_str(item, "camera_model_type"),
            filter_name=get_str(extended, "filter_name"),
            attitude=get_str(item, "attitude"),
            spacecraft_clock=get_float(item, "spacecraft_clock"),
            title=get_str(item, "title"),
            caption=get_str(item, "description"),
            credit=get_str(item, "image_credit"),
        )
