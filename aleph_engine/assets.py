"""Asset enrichment — illustrations and ambient sound for published segments.

Segments are published with only their prompts. For every prompt the
enricher starts an independent fetch; when one resolves it becomes an
AssetPatch keyed by segment id and is handed to the session. Fetches run
concurrently, never block a turn, and may still be running when the next
turn starts. A failed fetch is logged and dropped: no retry, no error.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import Protocol

import httpx

from aleph_engine.models import AssetKind, AssetPatch, StorySegment

logger = logging.getLogger(__name__)

ILLUSTRATION_STYLE = (
    "A high-contrast, grainy, black and white illustration in the style of a 1920s "
    "vintage photograph or etching. Noir atmosphere, surrealist undertones. Subject: "
)

_MIME_TYPES: dict[str, str] = {"image": "image/png", "sound": "audio/wav"}


class AssetSource(Protocol):
    async def __call__(self, kind: AssetKind, prompt: str) -> str | None: ...


class AssetError(RuntimeError):
    """Raised when an asset backend cannot be reached or returns an error."""


class HttpAssetSource:
    """Fetches generated assets from OpenAI-style generation endpoints.

    Both endpoints take {"prompt": ..., "response_format": "b64_json"} and
    answer {"data": [{"b64_json": "..."}]}. The result is returned as a
    data: URL. A kind without a configured endpoint yields None.

    Args:
        image_url: Full URL of the illustration endpoint, or "" to disable.
        sound_url: Full URL of the ambient sound endpoint, or "" to disable.
        api_key:   Bearer token, or empty string if not required.
        model:     Model identifier sent with every request, if set.
        timeout:   HTTP timeout in seconds.
    """

    def __init__(
        self,
        image_url: str = "",
        sound_url: str = "",
        api_key: str = "",
        model: str = "",
        timeout: float = 60.0,
    ) -> None:
        self._urls: dict[str, str] = {"image": image_url, "sound": sound_url}
        self._api_key = api_key
        self._model = model
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def __call__(self, kind: AssetKind, prompt: str) -> str | None:
        url = self._urls.get(kind)
        if not url:
            return None
        body: dict = {
            "prompt": ILLUSTRATION_STYLE + prompt if kind == "image" else prompt,
            "response_format": "b64_json",
        }
        if self._model:
            body["model"] = self._model

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise AssetError(f"{kind} fetch failed: {e}") from e

        data = resp.json().get("data")
        if not data or not data[0].get("b64_json"):
            raise AssetError(f"Unexpected response format from {kind} backend")
        return f"data:{_MIME_TYPES[kind]};base64,{data[0]['b64_json']}"


class AssetEnricher:
    """Runs asset fetches in the background and delivers patches as they land.

    Args:
        source: Where assets come from.
        apply:  Receives each resolved AssetPatch; returns whether it applied.
    """

    def __init__(self, source: AssetSource, apply: Callable[[AssetPatch], bool]) -> None:
        self._source = source
        self._apply = apply
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, segments: Iterable[StorySegment]) -> int:
        """Start one fetch per unresolved prompt. Returns the number started."""
        started = 0
        for seg in segments:
            if seg.image_prompt and not seg.image_url:
                self._spawn(seg.id, "image", seg.image_prompt)
                started += 1
            if seg.sound_prompt and not seg.sound_url:
                self._spawn(seg.id, "sound", seg.sound_prompt)
                started += 1
        return started

    def _spawn(self, segment_id: str, kind: AssetKind, prompt: str) -> None:
        task = asyncio.get_running_loop().create_task(self._fetch(segment_id, kind, prompt))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fetch(self, segment_id: str, kind: AssetKind, prompt: str) -> None:
        try:
            url = await self._source(kind, prompt)
        except Exception as e:
            logger.warning("Asset fetch failed segment=%s kind=%s: %s", segment_id, kind, e)
            return
        if not url:
            logger.debug("No %s asset for segment=%s", kind, segment_id)
            return
        if not self._apply(AssetPatch(segment_id=segment_id, kind=kind, url=url)):
            logger.debug("Asset patch not applied segment=%s kind=%s", segment_id, kind)

    async def drain(self) -> None:
        """Wait for every outstanding fetch to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
