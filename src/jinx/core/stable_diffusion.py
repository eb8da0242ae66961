"""Async client for the AUTOMATIC1111 Stable Diffusion web UI API."""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)

TXT2IMG_PATH = "/sdapi/v1/txt2img"


class StableDiffusionError(RuntimeError):
    """The web UI could not be reached or returned an unusable response."""


@dataclass
class Txt2ImgResult:
    images: list[bytes] = field(default_factory=list)
    parameters: dict[str, Any] = field(default_factory=dict)
    info: str = ""


class StableDiffusionClient:
    """
    Minimal txt2img client.

    The web UI handles a single generation at a time, so calls are expected
    to go through :class:`jinx.core.queue.Queue`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def txt2img(self, payload: dict[str, Any]) -> Txt2ImgResult:
        """Run a txt2img generation and return the decoded images."""
        url = f"{self.base_url}{TXT2IMG_PATH}"
        logger.info("Requesting txt2img from %s", self.base_url)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                resp = await client.post(url, json=payload)
                resp.raise_for_status()
                body = resp.json()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise StableDiffusionError(f"txt2img request failed: {exc}") from exc
        except ValueError as exc:
            raise StableDiffusionError("txt2img returned invalid JSON") from exc

        return parse_txt2img_response(body)


def parse_txt2img_response(body: Any) -> Txt2ImgResult:
    if not isinstance(body, dict):
        raise StableDiffusionError("txt2img response is not an object")
    try:
        images = [base64.b64decode(image, validate=True) for image in body.get("images") or []]
    except (binascii.Error, TypeError, ValueError) as exc:
        raise StableDiffusionError("txt2img returned a malformed image") from exc
    return Txt2ImgResult(
        images=images,
        parameters=body.get("parameters") or {},
        info=body.get("info") or "",
    )


__all__ = [
    "StableDiffusionClient",
    "StableDiffusionError",
    "Txt2ImgResult",
    "parse_txt2img_response",
]
