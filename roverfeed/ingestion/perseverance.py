"""Perseverance (Mars 2020) source implementation."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, Iterable, Optional

from roverfeed.core.errors import UpstreamStatusError
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
    parse_dimensions,
    require,
)
from .http_client import ResilientFetchClient

log = get_logger("ingestion.perseverance")

FEED_URL = "https://mars.nasa.gov/rss/api/"
FEED_PARAMS = {"feed": "raw_images", "category": "mars2020", "feedtype": "json"}


class PerseveranceSource(BaseSource):
    """Raw image feed of the Mars 2020 mission (one request per sol)."""

    name = "perseverance"
    landing_date = date(2021, 2, 18)

    async def fetch_window(self, client: ResilientFetchClient, window: int) -> RawBatch:
        payload = await client.fetch_json(FEED_URL, params={**FEED_PARAMS, "sol": window})
        return RawBatch(source_id=self.name, window=window, payload=payload)

    async def current_max_window(self, client: ResilientFetchClient) -> int:
        payload = await client.fetch_json(FEED_URL, params={**FEED_PARAMS, "latest": "true"})
        latest = get_int(payload, "latest_sol")
        if latest is None:
            raise UpstreamStatusError(f"Upstream response missing 'latest_sol' for {self.name}", FEED_URL)
        log.info(f"Current mission sol for {self.name}: {latest}")
        return latest

    def batch_items(self, payload: Any) -> Iterable[Any]:
        images = payload.get("images") if isinstance(payload, dict) else None
        return images if isinstance(images, list) else []

    def sample_type(self, item: Dict[str, Any]) -> Optional[str]:
        return get_str(item, "sample_type")

    def item_id(self, item: Any) -> Optional[str]:
        return get_str(item, "imageid")

    def parse_item(self, item: Dict[str, Any], batch: RawBatch) -> NormalizedRecord:
        camera = get_obj(item, "camera")
        image_files = get_obj(item, "image_files")
        extended = get_obj(item, "extended")

        external_id = require(get_str(item, "imageid"), "imageid")
        sol = get_int(item, "sol")
        if sol is None:
            sol = batch.window
        camera_name = require(get_str(camera, "instrument"), "camera.instrument")
        img_src_full = require(get_str(image_files, "full_res"), "image_files.full_res")
        width, height = parse_dimensions(get_str(extended, "dimension"))

        return NormalizedRecord(
            external_id=external_id,
            source_id=self.name,
            sol=sol,
            camera_name=camera_name,
            img_src_full=img_src_full,
            raw_payload=item,
            earth_date=earth_date_for_sol(sol, self.landing_date),
            date_taken_utc=get_datetime(item, "date_taken_utc"),
            date_taken_mars=get_str(item, "date_taken_mars"),
            date_received=get_datetime(item, "date_received"),
            img_src_small=get_str(image_files, "small"),
            img_src_medium=get_str(image_files, "medium"),
            img_src_large=get_str(image_files, "large"),
            sample_type=get_str(item, "sample_type"),
            width=width,
            height=height,
            site=get_int(item, "site"),
            drive=get_int(item, "drive"),
            xyz=get_str(extended, "xyz"),
            mast_az=get_float(extended, "mastAz"),
            mast_el=get_float(extended, "mastEl"),
            camera_vector=get_str(camera, "camera_vector"),
            camera_position=get_str(camera, "camera_position"),
            camera_model_type=get_str(camera, "camera_model_type"),
            filter_name=get_str(camera, "filter_name"),
            attitude=get_str(item, "attitude"),
            spacecraft_clock=get_float(extended, "sclk"),
            title=get_str(item, "title"),
            caption=get_str(item, "caption"),
            credit=get_str(item, "credit"),
        )
