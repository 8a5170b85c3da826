"""Construction and visibility bookkeeping for the per-location map layers."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Sequence

import shapely
from shapely.errors import ShapelyError
from shapely.geometry import shape

from .config import LayersConfig
from .models import DRAW_ORDER
from .sanitize import empty_collection, sanitize_geojson

if TYPE_CHECKING:
    from .viewport import MapCanvas

_LOGGER = logging.getLogger("geolayers.layers")

# Called with scalars or with whole numpy coordinate columns.
CoordTransform = Callable[[Any, Any], tuple[Any, Any]]
LabelFn = Callable[[Mapping[str, Any]], str | None]

_OTHER_BIN = "__other__"


@dataclass(frozen=True, slots=True)
class LayerFeature:
    geometry: Any
    properties: Mapping[str, Any] = field(default_factory=dict)
    label: str | None = None


@dataclass(frozen=True, slots=True, eq=False)
class MapLayer:
    """Renderable layer handed to a map canvas.

    Identity-compared: two layers built from equal payloads are still
    different canvas entries.
    """

    kind: str
    features: tuple[LayerFeature, ...] = ()
    style: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.features

    @property
    def bounds(self) -> tuple[float, float, float, float] | None:
        min_x = min_y = math.inf
        max_x = max_y = -math.inf
        for feature in self.features:
            geometry = feature.geometry
            if geometry is None or geometry.is_empty:
                continue
            x0, y0, x1, y1 = geometry.bounds
            min_x, min_y = min(min_x, x0), min(min_y, y0)
            max_x, max_y = max(max_x, x1), max(max_y, y1)
        if not all(math.isfinite(v) for v in (min_x, min_y, max_x, max_y)):
            return None
        return (min_x, min_y, max_x, max_y)


@lru_cache(maxsize=32)
def _suffix_patterns(suffixes: tuple[str, ...]) -> tuple[re.Pattern[str], ...]:
    patterns = []
    for suffix in suffixes:
        words = [re.escape(word) for word in suffix.split()]
        patterns.append(re.compile(r"\s+" + r"\s+".join(words) + r"\.?$", re.IGNORECASE))
    return tuple(patterns)


def format_city_name(name: Any, suffixes: Sequence[str] | None = None) -> str:
    """Strip administrative suffixes ("X City Municipality" -> "X") until none match."""
    text = str(name or "").strip()
    if not text:
        return text
    patterns = _suffix_patterns(tuple(suffixes if suffixes is not None else LayersConfig().city_suffixes))
    changed = True
    while changed:
        changed = False
        for pattern in patterns:
            if pattern.search(text):
                text = pattern.sub("", text).strip()
                changed = True
                break
    return text


def cap_feature_count(features: Sequence[Any], max_features: int) -> list[Any]:
    """Keep the first `max_features` features."""
    return list(features[:max_features])


def limit_roads(
    features: Sequence[Any],
    max_features: int,
    priority: Sequence[str] | None = None,
) -> list[Any]:
    """Cap road features while keeping major classes and geographic spread.

    Features are binned by their `highway` tag in priority order. Bins are
    filled whole while they fit; the first bin that overflows the remaining
    budget is stride-sampled so it still spans the whole file.
    """
    if len(features) <= max_features:
        return list(features)
    order = [p.casefold() for p in (priority if priority is not None else LayersConfig().road_priority)]
    bins: dict[str, list[Any]] = {key: [] for key in order}
    bins[_OTHER_BIN] = []
    for feature in features:
        props = feature.get("properties") if isinstance(feature, Mapping) else None
        highway = str((props or {}).get("highway") or "").casefold()
        bins[highway if highway in bins and highway != _OTHER_BIN else _OTHER_BIN].append(feature)

    out: list[Any] = []
    for key in [*order, _OTHER_BIN]:
        remaining = max_features - len(out)
        if remaining <= 0:
            break
        members = bins[key]
        if not members:
            continue
        if len(members) <= remaining:
            out.extend(members)
            continue
        step = len(members) / remaining
        out.extend(members[int(i * step)] for i in range(remaining))
    return out


def _feature_list(sanitized: Mapping[str, Any]) -> list[dict[str, Any]]:
    if sanitized.get("type") == "FeatureCollection":
        return list(sanitized.get("features") or [])
    if sanitized.get("type") == "Feature":
        return [dict(sanitized)]
    return [{"type": "Feature", "geometry": dict(sanitized), "properties": {}}]


def _apply_cap(kind: str, features: list[dict[str, Any]], cfg: LayersConfig) -> list[dict[str, Any]]:
    cap = cfg.max_features.get(kind)
    if cap is None or len(features) <= cap:
        return features
    if kind == "roads":
        limited = limit_roads(features, cap, cfg.road_priority)
    else:
        limited = cap_feature_count(features, cap)
    _LOGGER.debug("Capped %s layer from %d to %d features", kind, len(features), len(limited))
    return limited


def _default_label_fn(kind: str, cfg: LayersConfig) -> LabelFn | None:
    if kind != "cities":
        return None

    def _label(properties: Mapping[str, Any]) -> str | None:
        label = format_city_name(properties.get("name"), cfg.city_suffixes)
        return label or None

    return _label


def transform_xy(geometry: Any, transform: CoordTransform) -> Any:
    """Apply `transform` to x/y coordinate arrays; any z value is dropped.

    The hook receives whole coordinate columns, so it must accept arrays.
    """

    def _columns(coords: Any) -> Any:
        out = coords.copy()
        out[:, 0], out[:, 1] = transform(coords[:, 0], coords[:, 1])
        return out

    return shapely.transform(geometry, _columns, include_z=False)


def build_layer(
    kind: str,
    payload: Any,
    *,
    cfg: LayersConfig | None = None,
    transform: CoordTransform | None = None,
    style: Mapping[str, Any] | None = None,
    label_for: LabelFn | None = None,
) -> MapLayer:
    """Build a renderable layer from a raw payload.

    Never raises: a payload the geometry library still rejects after
    sanitization produces an empty layer.
    """
    cfg = cfg or LayersConfig()
    layer_style = dict(style if style is not None else cfg.styles.get(kind, {}))
    sanitized = sanitize_geojson(payload) or empty_collection()
    features = _apply_cap(kind, _feature_list(sanitized), cfg)
    label_fn = label_for or _default_label_fn(kind, cfg)

    try:
        built: list[LayerFeature] = []
        for feature in features:
            geometry = shape(feature["geometry"])
            if transform is not None:
                geometry = transform_xy(geometry, transform)
            properties = feature.get("properties") or {}
            built.append(
                LayerFeature(
                    geometry=geometry,
                    properties=properties,
                    label=label_fn(properties) if label_fn is not None else None,
                )
            )
    except (ShapelyError, ValueError, TypeError, KeyError, AttributeError, IndexError) as exc:
        _LOGGER.warning("Falling back to empty %s layer: %s", kind, exc)
        return MapLayer(kind=kind, style=layer_style)
    return MapLayer(kind=kind, features=tuple(built), style=layer_style)


class LayerSet:
    """Zero or one layer per kind for the active location."""

    def __init__(self) -> None:
        self._layers: dict[str, MapLayer] = {}

    def get(self, kind: str) -> MapLayer | None:
        return self._layers.get(kind)

    @property
    def kinds(self) -> frozenset[str]:
        return frozenset(self._layers)

    def replace(self, layers: Mapping[str, MapLayer], canvas: MapCanvas) -> None:
        self.clear(canvas)
        self._layers = dict(layers)

    def clear(self, canvas: MapCanvas) -> None:
        self.hide_all(canvas)
        self._layers = {}

    def show(self, kind: str, canvas: MapCanvas) -> bool:
        layer = self._layers.get(kind)
        if layer is None:
            return False
        if not canvas.has_layer(layer):
            canvas.add_layer(layer)
        return True

    def hide(self, kind: str, canvas: MapCanvas) -> None:
        layer = self._layers.get(kind)
        if layer is not None and canvas.has_layer(layer):
            canvas.remove_layer(layer)

    def hide_all(self, canvas: MapCanvas) -> None:
        for kind in list(self._layers):
            self.hide(kind, canvas)

    def apply(self, kinds: Iterable[str], canvas: MapCanvas) -> frozenset[str]:
        """Make exactly `kinds` visible; returns the kinds actually on the canvas."""
        wanted = frozenset(kinds)
        for kind in DRAW_ORDER:
            if kind not in wanted:
                self.hide(kind, canvas)
        shown = {kind for kind in DRAW_ORDER if kind in wanted and self.show(kind, canvas)}
        return frozenset(shown)

    def visible_kinds(self, canvas: MapCanvas) -> frozenset[str]:
        return frozenset(kind for kind, layer in self._layers.items() if canvas.has_layer(layer))
