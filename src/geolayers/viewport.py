"""Map canvas capability and view fitting."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Protocol

if TYPE_CHECKING:
    from .layers import MapLayer

_LOGGER = logging.getLogger("geolayers.viewport")

Bounds = tuple[float, float, float, float]
Sleep = Callable[[float], Awaitable[None]]


class MapCanvas(Protocol):
    """What the game needs from a map renderer.

    Bounds are `(min_lon, min_lat, max_lon, max_lat)`; centers are `(lat, lon)`.
    """

    def add_layer(self, layer: MapLayer) -> None: ...

    def remove_layer(self, layer: MapLayer) -> None: ...

    def has_layer(self, layer: MapLayer) -> bool: ...

    def fit_bounds(self, bounds: Bounds, padding_px: int = 0) -> None: ...

    def set_view(self, center: tuple[float, float], zoom: int) -> None: ...

    def size(self) -> tuple[int, int]: ...

    def get_bounds(self) -> Bounds | None: ...

    def get_zoom(self) -> float | None: ...


def bounds_valid(bounds: Bounds | None) -> bool:
    if bounds is None:
        return False
    min_x, min_y, max_x, max_y = bounds
    return min_x <= max_x and min_y <= max_y


def pad_bounds(bounds: Bounds, ratio: float) -> Bounds:
    """Grow bounds by `ratio` of their width/height on every side."""
    min_x, min_y, max_x, max_y = bounds
    dx = (max_x - min_x) * ratio
    dy = (max_y - min_y) * ratio
    return (min_x - dx, min_y - dy, max_x + dx, max_y + dy)


def canvas_sized(canvas: MapCanvas) -> bool:
    try:
        width, height = canvas.size()
    except (TypeError, ValueError):
        return False
    return width > 0 and height > 0


async def wait_for_canvas_size(
    canvas: MapCanvas,
    *,
    interval_s: float = 0.05,
    max_attempts: int = 40,
    sleep: Sleep = asyncio.sleep,
) -> bool:
    """Poll until the canvas has a non-zero size; False when attempts run out."""
    if canvas_sized(canvas):
        return True
    for _ in range(max_attempts):
        await sleep(interval_s)
        if canvas_sized(canvas):
            return True
    _LOGGER.debug("Canvas still unsized after %d checks; using default view", max_attempts)
    return False


def fit_or_default(
    canvas: MapCanvas,
    bounds: Bounds | None,
    *,
    padding_px: int,
    default_center: tuple[float, float],
    default_zoom: int,
) -> bool:
    """Fit the view to `bounds`, or fall back to the world view. True when fitted."""
    if bounds is not None and bounds_valid(bounds):
        canvas.fit_bounds(bounds, padding_px)
        return True
    canvas.set_view(default_center, default_zoom)
    return False
