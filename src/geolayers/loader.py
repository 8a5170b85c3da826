"""Concurrent per-location layer fetching with tiered fallbacks and cancellation."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Sequence

import requests

from .models import LAYER_KINDS
from .sanitize import empty_collection

_LOGGER = logging.getLogger("geolayers.loader")


@dataclass(frozen=True, slots=True)
class FetchResult:
    ok: bool
    data: Any = None
    status: int | None = None


Fetcher = Callable[[str], Awaitable[FetchResult]]


class HttpFetcher:
    """GET `<base_url>/<path>` with requests, off the event loop thread."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 30.0,
        user_agent: str = "geolayers/0.1",
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", user_agent)

    async def __call__(self, path: str) -> FetchResult:
        return await asyncio.to_thread(self._get, path)

    def _get(self, path: str) -> FetchResult:
        url = f"{self.base_url}/{path.lstrip('/')}"
        response = self.session.get(url, timeout=self.timeout_s)
        if not response.ok:
            return FetchResult(ok=False, status=response.status_code)
        return FetchResult(ok=True, data=response.json(), status=response.status_code)

    def close(self) -> None:
        self.session.close()


class FileFetcher:
    """Reads `<root>/<path>` from a local data directory."""

    def __init__(self, root: Path) -> None:
        self.root = root

    async def __call__(self, path: str) -> FetchResult:
        return await asyncio.to_thread(self._read, path)

    def _read(self, path: str) -> FetchResult:
        file_path = self.root / path
        if not file_path.is_file():
            return FetchResult(ok=False, status=404)
        with file_path.open("r", encoding="utf-8") as fh:
            return FetchResult(ok=True, data=json.load(fh), status=200)

    def close(self) -> None:
        """Nothing to release for local files."""


@dataclass(slots=True)
class LoadResult:
    location_id: str
    generation: int
    payloads: dict[str, Any] = field(default_factory=dict)
    stale: bool = False


@dataclass(slots=True)
class _Batch:
    generation: int
    location_id: str
    tasks: list[asyncio.Task[Any]] = field(default_factory=list)
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True
        for task in self.tasks:
            task.cancel()


class DataLoader:
    """Fetch every layer kind for one location at a time.

    Starting a new load cancels the previous batch. A superseded batch
    returns a stale `LoadResult`; callers must discard it.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        sources: Mapping[str, Sequence[str]],
        *,
        kinds: Sequence[str] = LAYER_KINDS,
    ) -> None:
        self.fetcher = fetcher
        self.sources = {kind: tuple(sources.get(kind, (f"{kind}.geojson",))) for kind in kinds}
        self._generation = 0
        self._batch: _Batch | None = None

    @property
    def generation(self) -> int:
        return self._generation

    def is_current(self, result: LoadResult) -> bool:
        return not result.stale and result.generation == self._generation

    def cancel(self) -> None:
        if self._batch is not None:
            _LOGGER.debug("Cancelling in-flight fetches for %s", self._batch.location_id)
            self._batch.cancel()
            self._batch = None

    async def load(self, location_id: str) -> LoadResult:
        self.cancel()
        self._generation += 1
        batch = _Batch(generation=self._generation, location_id=location_id)
        self._batch = batch
        kinds = list(self.sources)
        batch.tasks = [
            asyncio.ensure_future(self._fetch_kind(location_id, kind)) for kind in kinds
        ]
        try:
            await asyncio.wait(batch.tasks)
        finally:
            # Outer cancellation must not leave orphaned fetch tasks behind.
            for task in batch.tasks:
                if not task.done():
                    task.cancel()

        if batch.cancelled or batch.generation != self._generation:
            _LOGGER.debug("Discarding superseded fetches for %s", location_id)
            return LoadResult(location_id, batch.generation, stale=True)

        if self._batch is batch:
            self._batch = None
        payloads = {kind: task.result() for kind, task in zip(kinds, batch.tasks)}
        return LoadResult(location_id, batch.generation, payloads)

    async def _fetch_kind(self, location_id: str, kind: str) -> Any:
        for file_name in self.sources[kind]:
            path = f"{location_id}/{file_name}"
            try:
                result = await self.fetcher(path)
            except asyncio.CancelledError:
                raise
            except (requests.RequestException, OSError, ValueError) as exc:
                _LOGGER.warning("Fetch failed for %s: %s", path, exc)
                continue
            if result.ok and result.data is not None:
                return result.data
            _LOGGER.debug("No %s data at %s (status=%s)", kind, path, result.status)
        return empty_collection()
