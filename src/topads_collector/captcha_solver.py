"""
SadCaptcha integration (shape-matching puzzles).

The service receives the puzzle image as base64 and answers with two click
points expressed as proportions of the image's bounding box.
"""

from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Any, List, Optional, Tuple

import requests
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class CaptchaSolveError(RuntimeError):
    pass


class ClickSolution(BaseModel):
    pointOneProportionX: float
    pointOneProportionY: float
    pointTwoProportionX: float
    pointTwoProportionY: float

    def to_pixels(self, width: float, height: float) -> List[Tuple[float, float]]:
        """Convert both proportional points into offsets inside a width x height box."""
        return [
            (width * self.pointOneProportionX, height * self.pointOneProportionY),
            (width * self.pointTwoProportionX, height * self.pointTwoProportionY),
        ]


class SadCaptchaSolver:
    """
    Minimal SadCaptcha client.

    Notes:
      - Never logs the licence key.
      - Raises CaptchaSolveError on every failure so callers can decide on fallback.
    """

    provider = "sadcaptcha"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://www.sadcaptcha.com/api/v1",
        *,
        timeout_seconds: int = 30,
        session: Optional[Any] = None,
    ):
        self._api_key = (api_key or "").strip()
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._http = session or requests

    def available(self) -> bool:
        return bool(self._api_key)

    def _post_json(self, path: str, payload: dict) -> dict:
        url = f"{self._base_url}{path}"
        try:
            resp = self._http.post(
                url,
                json=payload,
                params={"licenseKey": self._api_key},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise CaptchaSolveError(f"sadcaptcha request error: {exc}") from exc

        text = resp.text or ""
        if not resp.ok:
            raise CaptchaSolveError(f"sadcaptcha HTTP {resp.status_code}: {text[:200]}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise CaptchaSolveError(f"sadcaptcha invalid JSON: {text[:200]}") from exc

        if not isinstance(data, dict):
            raise CaptchaSolveError("sadcaptcha returned unexpected response shape")
        return data

    def solve_shapes(self, image_b64: str) -> ClickSolution:
        """Ask the service where to click for a 'select two identical shapes' puzzle."""
        if not self.available():
            raise CaptchaSolveError("missing sadcaptcha licence key")
        if not image_b64:
            raise CaptchaSolveError("missing captcha image")

        data = self._post_json("/shapes", {"imageB64": image_b64})
        try:
            return ClickSolution.model_validate(data)
        except ValidationError as exc:
            raise CaptchaSolveError(f"sadcaptcha response missing click points: {exc}") from exc

    def solve_image_file(self, image_path: Path) -> ClickSolution:
        try:
            raw = Path(image_path).read_bytes()
        except OSError as exc:
            raise CaptchaSolveError(f"cannot read captcha image {image_path}: {exc}") from exc
        logger.info("SadCaptcha: solving shapes puzzle (%s bytes)", len(raw))
        return self.solve_shapes(base64.b64encode(raw).decode("ascii"))
