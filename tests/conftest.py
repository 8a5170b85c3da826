from __future__ import annotations

import asyncio
import random
from typing import Any, Callable

import pytest

from geolayers.config import GameConfig
from geolayers.layers import MapLayer
from geolayers.loader import FetchResult
from geolayers.models import Location


class RecordingCanvas:
    """Map canvas double that records every call."""

    def __init__(self, size: tuple[int, int] = (800, 600)) -> None:
        self._size = size
        self.layers: list[MapLayer] = []
        self.fitted: list[tuple[tuple[float, float, float, float], int]] = []
        self.views: list[tuple[tuple[float, float], int]] = []

    def add_layer(self, layer: MapLayer) -> None:
        self.layers.append(layer)

    def remove_layer(self, layer: MapLayer) -> None:
        self.layers = [item for item in self.layers if item is not layer]

    def has_layer(self, layer: MapLayer) -> bool:
        return any(item is layer for item in self.layers)

    def fit_bounds(self, bounds: tuple[float, float, float, float], padding_px: int = 0) -> None:
        self.fitted.append((bounds, padding_px))

    def set_view(self, center: tuple[float, float], zoom: int) -> None:
        self.views.append((center, zoom))

    def size(self) -> tuple[int, int]:
        return self._size

    def resize(self, size: tuple[int, int]) -> None:
        self._size = size

    def get_bounds(self) -> tuple[float, float, float, float] | None:
        return self.fitted[-1][0] if self.fitted else None

    def get_zoom(self) -> float | None:
        return float(self.views[-1][1]) if self.views else None

    @property
    def kinds(self) -> set[str]:
        return {layer.kind for layer in self.layers}


class FakeFetcher:
    """Serves payloads from a dict keyed by `<code>/<file>`.

    Values may be a payload, an exception instance to raise, or an int HTTP
    status for a not-ok response. Paths listed in `gates` wait on their event.
    """

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses = dict(responses or {})
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []

    async def __call__(self, path: str) -> FetchResult:
        self.calls.append(path)
        gate = self.gates.get(path)
        if gate is not None:
            await gate.wait()
        value = self.responses.get(path, 404)
        if isinstance(value, BaseException):
            raise value
        if isinstance(value, int):
            return FetchResult(ok=False, status=value)
        return FetchResult(ok=True, data=value, status=200)


class FakeTimerHandle:
    def __init__(self, scheduler: FakeScheduler, delay: float, callback: Callable[[], None]) -> None:
        self.scheduler = scheduler
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    def __init__(self) -> None:
        self.handles: list[FakeTimerHandle] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimerHandle:
        handle = FakeTimerHandle(self, delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> list[FakeTimerHandle]:
        return [handle for handle in self.handles if not handle.cancelled]

    def fire(self) -> None:
        pending = self.pending
        assert len(pending) == 1
        pending[0].cancelled = True
        pending[0].callback()


def square(x: float, y: float, size: float = 1.0) -> list[list[float]]:
    return [[x, y], [x + size, y], [x + size, y + size], [x, y + size], [x, y]]


def outline_fc(x: float, y: float, size: float = 10.0) -> dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {},
                "geometry": {"type": "Polygon", "coordinates": [square(x, y, size)]},
            }
        ],
    }


def lines_fc(*lines: list[list[float]], **props: Any) -> dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": dict(props), "geometry": {"type": "LineString", "coordinates": line}}
            for line in lines
        ],
    }


def cities_fc(*names_and_coords: tuple[str, float, float]) -> dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": {"name": name}, "geometry": {"type": "Point", "coordinates": [x, y]}}
            for name, x, y in names_and_coords
        ],
    }


def country_payloads(code: str, x: float, y: float) -> dict[str, Any]:
    return {
        f"{code}/outline.geojson": outline_fc(x, y),
        f"{code}/rivers.geojson": lines_fc([[x + 1, y + 1], [x + 2, y + 3]]),
        f"{code}/cities.geojson": cities_fc((f"{code} City", x + 5, y + 5)),
        f"{code}/roads.geojson": lines_fc([[x, y], [x + 9, y + 9]], highway="primary"),
        f"{code}/elevation.geojson": lines_fc([[x + 3, y], [x + 3, y + 8]]),
    }


@pytest.fixture
def locations() -> list[Location]:
    return [
        Location(code="BRA", name="Brazil"),
        Location(code="CAN", name="Canada"),
        Location(code="FRA", name="France"),
        Location(code="MEX", name="Mexico"),
        Location(code="USA", name="United States of America"),
    ]


@pytest.fixture
def cfg() -> GameConfig:
    return GameConfig.default()


@pytest.fixture
def canvas() -> RecordingCanvas:
    return RecordingCanvas()


@pytest.fixture
def fetcher() -> FakeFetcher:
    responses: dict[str, Any] = {}
    for idx, code in enumerate(("BRA", "CAN", "FRA", "MEX", "USA")):
        responses.update(country_payloads(code, idx * 20.0, idx * 5.0))
    return FakeFetcher(responses)


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


async def no_sleep(_delay: float) -> None:
    return None
