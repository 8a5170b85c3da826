"""Matplotlib-backed map canvas that renders the visible layers to PNG."""

from __future__ import annotations

import logging
import math
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterator, Sequence

import numpy as np

from .layers import MapLayer
from .models import DRAW_ORDER
from .viewport import Bounds, bounds_valid

_LOGGER = logging.getLogger("geolayers.render")

_TILE_PX = 256.0
_MERCATOR_HALF_WORLD_M = 20_037_508.342789244
_MERCATOR_MAX_LAT = 85.05112878


class MatplotlibCanvas:
    """In-memory map state plus a `render` method producing an image.

    With `web_mercator=True` (the default) layer coordinates are expected in
    EPSG:3857; pass `canvas.project` as the layer transform hook so lon/lat
    payloads land in the same space.
    """

    def __init__(
        self,
        *,
        width_px: int = 1024,
        height_px: int = 768,
        dpi: int = 100,
        background: str = "#101820",
        web_mercator: bool = True,
    ) -> None:
        self.width_px = width_px
        self.height_px = height_px
        self.dpi = dpi
        self.background = background
        self.web_mercator = web_mercator
        self._layers: list[MapLayer] = []
        self._extent: Bounds | None = None
        self._zoom: float | None = None

    @property
    def world_width(self) -> float:
        return 2 * _MERCATOR_HALF_WORLD_M if self.web_mercator else 360.0

    def project(self, x: Any, y: Any) -> tuple[Any, Any]:
        """Lon/lat to canvas units; accepts scalars or numpy arrays."""
        if not self.web_mercator:
            return (x, y)
        if np.ndim(y) == 0:
            lat = max(-_MERCATOR_MAX_LAT, min(_MERCATOR_MAX_LAT, float(y)))
            px, py = _mercator_transformer().transform(float(x), lat)
            return (float(px), float(py))
        lat = np.clip(np.asarray(y, dtype=float), -_MERCATOR_MAX_LAT, _MERCATOR_MAX_LAT)
        return _mercator_transformer().transform(np.asarray(x, dtype=float), lat)

    def add_layer(self, layer: MapLayer) -> None:
        if not self.has_layer(layer):
            self._layers.append(layer)

    def remove_layer(self, layer: MapLayer) -> None:
        self._layers = [item for item in self._layers if item is not layer]

    def has_layer(self, layer: MapLayer) -> bool:
        return any(item is layer for item in self._layers)

    @property
    def layers(self) -> tuple[MapLayer, ...]:
        return tuple(self._layers)

    def size(self) -> tuple[int, int]:
        return (self.width_px, self.height_px)

    def fit_bounds(self, bounds: Bounds, padding_px: int = 0) -> None:
        if not bounds_valid(bounds):
            return
        min_x, min_y, max_x, max_y = bounds
        span_x = max(max_x - min_x, 1e-9)
        span_y = max(max_y - min_y, 1e-9)
        inner_w = max(self.width_px - 2 * padding_px, 1)
        inner_h = max(self.height_px - 2 * padding_px, 1)
        units_per_px = max(span_x / inner_w, span_y / inner_h)
        self._set_extent_from_center(
            ((min_x + max_x) / 2.0, (min_y + max_y) / 2.0), units_per_px
        )

    def set_view(self, center: tuple[float, float], zoom: int) -> None:
        lat, lon = center
        cx, cy = self.project(lon, lat)
        units_per_px = self.world_width / (_TILE_PX * (2 ** zoom))
        self._set_extent_from_center((cx, cy), units_per_px)

    def get_bounds(self) -> Bounds | None:
        return self._extent

    def get_zoom(self) -> float | None:
        return self._zoom

    def _set_extent_from_center(self, center: tuple[float, float], units_per_px: float) -> None:
        cx, cy = center
        half_w = units_per_px * self.width_px / 2.0
        half_h = units_per_px * self.height_px / 2.0
        self._extent = (cx - half_w, cy - half_h, cx + half_w, cy + half_h)
        self._zoom = math.log2(self.world_width / (_TILE_PX * units_per_px))

    def render(self, output_path: Path) -> Path:
        plt = _require_matplotlib()
        fig, ax = plt.subplots(
            figsize=(self.width_px / self.dpi, self.height_px / self.dpi), dpi=self.dpi
        )
        fig.subplots_adjust(left=0.0, right=1.0, bottom=0.0, top=1.0)
        try:
            fig.patch.set_facecolor(self.background)
            ax.set_facecolor(self.background)
            ax.set_axis_off()
            for zorder, layer in enumerate(sorted(self._layers, key=_draw_rank), start=1):
                _draw_layer(ax, layer, zorder=zorder)
            if self._extent is not None:
                min_x, min_y, max_x, max_y = self._extent
                ax.set_xlim(min_x, max_x)
                ax.set_ylim(min_y, max_y)
            ax.set_aspect("equal", adjustable="datalim")
            output_path.parent.mkdir(parents=True, exist_ok=True)
            fig.savefig(output_path, dpi=self.dpi, facecolor=fig.get_facecolor())
        finally:
            plt.close(fig)
        _LOGGER.info("Rendered %d layers to %s", len(self._layers), output_path)
        return output_path


def _draw_rank(layer: MapLayer) -> int:
    return DRAW_ORDER.index(layer.kind) if layer.kind in DRAW_ORDER else len(DRAW_ORDER)


def _line_style(style: Any) -> Any:
    dash = style.get("dash")
    if isinstance(dash, (list, tuple)) and dash:
        return (0, tuple(float(v) for v in dash))
    return "solid"


def _draw_layer(ax: Any, layer: MapLayer, *, zorder: int) -> None:
    style = layer.style
    color = str(style.get("color", "#3388ff"))
    alpha = float(style.get("opacity", 1.0))
    for feature in layer.features:
        for coords in _iter_lines(feature.geometry):
            if len(coords) < 2:
                continue
            ax.plot(
                [float(point[0]) for point in coords],
                [float(point[1]) for point in coords],
                color=color,
                linewidth=float(style.get("weight", 1.0)),
                alpha=alpha,
                linestyle=_line_style(style),
                zorder=zorder,
                solid_joinstyle="round",
                solid_capstyle="round",
            )
        points = list(_iter_points(feature.geometry))
        if not points:
            continue
        radius = float(style.get("radius", 5.0))
        ax.scatter(
            [p[0] for p in points],
            [p[1] for p in points],
            s=(radius * 2) ** 2,
            facecolors="none",
            edgecolors=color,
            alpha=alpha,
            zorder=zorder,
        )
        if feature.label:
            x, y = points[0]
            ax.annotate(
                feature.label,
                (x, y),
                xytext=(radius + 2, radius + 2),
                textcoords="offset points",
                color="white",
                fontsize=8,
                zorder=zorder,
            )


def _iter_lines(geometry: Any) -> Iterator[Sequence[tuple[float, ...]]]:
    geom_type = getattr(geometry, "geom_type", "")
    if geom_type in ("LineString", "LinearRing"):
        yield list(geometry.coords)
    elif geom_type == "Polygon":
        yield list(geometry.exterior.coords)
        for interior in geometry.interiors:
            yield list(interior.coords)
    elif geom_type in ("MultiLineString", "MultiPolygon", "GeometryCollection"):
        for part in geometry.geoms:
            yield from _iter_lines(part)


def _iter_points(geometry: Any) -> Iterator[tuple[float, float]]:
    geom_type = getattr(geometry, "geom_type", "")
    if geom_type == "Point":
        yield (float(geometry.x), float(geometry.y))
    elif geom_type in ("MultiPoint", "GeometryCollection"):
        for part in geometry.geoms:
            yield from _iter_points(part)


def _require_matplotlib() -> Any:
    try:
        import matplotlib

        matplotlib.use("Agg", force=False)
        import matplotlib.pyplot as plt
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for map rendering") from exc
    return plt


@lru_cache(maxsize=1)
def _mercator_transformer() -> Any:
    try:
        from pyproj import Transformer
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("pyproj is required for Web Mercator projection") from exc
    return Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)
