"""
Interception pipeline for the top-ads list endpoint.

Each matched request is fetched, handed back to the page unmodified and only
then decoded: the raw payload is archived, its pagination block goes to the
tracker and every material is persisted at most once.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from .browser_utils import artifact_name
from .models import AdRecord
from .pagination import PaginationTracker
from .storage import StorageError, StoragePort

logger = logging.getLogger(__name__)

_MAPPED_FIELDS = ("id", "creative_id", "advertiser_id", "brand_name", "country_code", "video_info")


def _query_params(url: str) -> Dict[str, str]:
    parsed = parse_qs(urlparse(url).query)
    return {key: values[0] for key, values in parsed.items() if values}


def material_to_record(material: Dict[str, Any], params: Dict[str, str], source_url: str) -> Optional[AdRecord]:
    """Map one vendor material to an AdRecord. Returns None when it has no id."""
    ad_id = str(material.get("id") or "").strip()
    if not ad_id:
        return None

    region = (
        material.get("country_code")
        or params.get("country_code")
        or params.get("region")
        or ""
    )
    extra = {key: value for key, value in material.items() if key not in _MAPPED_FIELDS}
    extra["source"] = {
        "url": source_url,
        "page": params.get("page"),
        "ad_language": params.get("adLanguage"),
        "period": params.get("period"),
        "order_by": params.get("order_by"),
    }

    return AdRecord(
        id=ad_id,
        source_region=str(region),
        creative_id=str(material.get("creative_id") or ad_id),
        advertiser_id=str(material.get("advertiser_id") or material.get("brand_name") or ""),
        advertiser_name=str(material.get("brand_name") or ""),
        media=material.get("video_info") or {},
        metadata=extra,
    )


class AdResponseInterceptor:
    """Observes list responses on a page without ever altering them"""

    def __init__(
        self,
        tracker: PaginationTracker,
        store: StoragePort,
        responses_dir: Path,
        *,
        url_pattern: str,
        metrics: Optional[Any] = None,
    ):
        self.tracker = tracker
        self.store = store
        self.responses_dir = Path(responses_dir)
        self.url_pattern = url_pattern
        self.metrics = metrics
        self._page: Optional[Any] = None
        self._lock = threading.Lock()

    def _inc(self, key: str, amount: int = 1) -> None:
        if self.metrics is not None:
            self.metrics.inc(key, amount)

    def attach(self, page: Any) -> None:
        self.responses_dir.mkdir(parents=True, exist_ok=True)
        page.route(self.url_pattern, self._handle_route)
        self._page = page
        logger.info("Intercepting %s", self.url_pattern)

    def detach(self) -> None:
        if self._page is None:
            return
        try:
            self._page.unroute(self.url_pattern, self._handle_route)
        except Exception as exc:
            logger.debug("unroute failed: %s", exc)
        self._page = None

    def _handle_route(self, route: Any, request: Any = None) -> None:
        request = request or route.request
        url = request.url

        try:
            response = route.fetch()
        except Exception as exc:
            logger.warning("Intercepted request failed, letting it through: %s", exc)
            try:
                route.continue_()
            except Exception as continue_exc:
                logger.debug("route.continue_ failed: %s", continue_exc)
            return

        try:
            body = response.body()
        except Exception as exc:
            logger.warning("Could not read intercepted body: %s", exc)
            body = None

        try:
            route.fulfill(response=response)
        except Exception as exc:
            logger.warning("Could not hand response back to the page: %s", exc)

        if body is not None:
            self.process_body(url, body)

    def process_body(self, url: str, body: bytes) -> Dict[str, int]:
        self._inc("responses_intercepted")
        try:
            payload = json.loads(body)
        except (ValueError, TypeError) as exc:
            logger.error("Failed to decode response from %s: %s", url, exc)
            self._inc("responses_undecodable")
            return {"persisted": 0, "duplicates": 0, "failed": 0}
        return self.process_payload(url, payload)

    def process_payload(self, url: str, payload: Any) -> Dict[str, int]:
        """Archive, track pagination and persist. Never raises."""
        counts = {"persisted": 0, "duplicates": 0, "failed": 0}
        try:
            with self._lock:
                params = _query_params(url)
                self._archive(params, payload)

                data = payload.get("data") if isinstance(payload, dict) else None
                if not isinstance(data, dict):
                    logger.warning("Response without data block (code=%s)", _code_of(payload))
                    return counts

                pagination = data.get("pagination")
                if pagination:
                    self.tracker.update_from_payload(pagination)

                materials: List[Any] = data.get("materials") or []
                for material in materials:
                    self._persist_material(material, params, url, counts)
        except Exception as exc:
            logger.error("Failed to process intercepted response: %s", exc, exc_info=True)
            self._inc("responses_failed")

        logger.info(
            "Response processed: %s new, %s duplicates, %s failed (progress %s)",
            counts["persisted"],
            counts["duplicates"],
            counts["failed"],
            self.tracker.progress(),
        )
        return counts

    def _persist_material(self, material: Any, params: Dict[str, str], url: str, counts: Dict[str, int]) -> None:
        if not isinstance(material, dict):
            return
        record = material_to_record(material, params, url)
        if record is None:
            logger.warning("Skipping material without id")
            counts["failed"] += 1
            return

        try:
            written = self.store.persist_once(record)
        except StorageError as exc:
            logger.error("Failed to persist ad %s: %s", record.id, exc)
            counts["failed"] += 1
            self._inc("records_failed")
            return

        if written:
            counts["persisted"] += 1
            self._inc("records_persisted")
        else:
            logger.debug("Ad %s already processed, skipping", record.id)
            counts["duplicates"] += 1
            self._inc("records_duplicate")

    def _archive(self, params: Dict[str, str], payload: Any) -> Optional[Path]:
        name = artifact_name("ads_response", params.get("adLanguage"), params.get("page"), "json")
        path = self.responses_dir / name
        try:
            self.responses_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
            return path
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Could not archive response: %s", exc)
            return None


def _code_of(payload: Any) -> Any:
    return payload.get("code") if isinstance(payload, dict) else None
