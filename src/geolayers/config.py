"""Typed configuration loader for `config.yaml`."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, cast

import yaml

from .models import LAYER_KINDS, normalize_layer_kind


def _mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"Expected mapping for '{field_name}'")
    return cast(Mapping[str, Any], value)


def _str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Expected integer for '{field_name}'")
    return value


def _float(value: Any, field_name: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raise ValueError(f"Expected float for '{field_name}'")


def _bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"Expected bool for '{field_name}'")
    return value


def _str_list(value: Any, field_name: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ValueError(f"Expected list for '{field_name}'")
    out: list[str] = []
    for idx, item in enumerate(value):
        out.append(_str(item, f"{field_name}[{idx}]"))
    return tuple(out)


def _path_from_cfg(value: Any, field_name: str, root_dir: Path) -> Path:
    raw = _str(value, field_name)
    p = Path(raw)
    return p if p.is_absolute() else root_dir / p


def _kind_key(value: Any, field_name: str) -> str:
    kind = normalize_layer_kind(_str(value, field_name))
    if kind is None:
        raise ValueError(
            f"Unknown layer kind '{value}' in '{field_name}'; expected one of: "
            + ", ".join(LAYER_KINDS)
        )
    return kind


_DEFAULT_REVEAL = {"rivers": 1, "cities": 2, "elevation": 3, "roads": 4, "outline": 4}

_DEFAULT_SOURCES = {
    "outline": ("outline.geojson",),
    "rivers": ("rivers_highres.geojson", "rivers.geojson"),
    "cities": ("cities.geojson",),
    "roads": ("roads.geojson",),
    "elevation": ("elevation.geojson",),
}

_DEFAULT_ROAD_PRIORITY = (
    "motorway",
    "trunk",
    "primary",
    "secondary",
    "tertiary",
    "unclassified",
    "residential",
    "service",
    "track",
    "path",
    "road",
)

_DEFAULT_CITY_SUFFIXES = (
    "city municipality",
    "town municipality",
    "city",
    "town",
    "village",
    "municipality",
    "borough",
    "commune",
)

_DEFAULT_STYLES: dict[str, dict[str, Any]] = {
    "outline": {"color": "#3388ff", "weight": 2.0, "opacity": 1.0},
    "rivers": {"color": "#0ff", "weight": 1.0, "opacity": 0.9},
    "cities": {"color": "#f00", "radius": 5.0, "opacity": 1.0},
    "roads": {"color": "#888", "weight": 1.0, "opacity": 0.7},
    "elevation": {"color": "#aaa", "weight": 0.8, "opacity": 0.6, "dash": [2, 2]},
}


@dataclass(frozen=True, slots=True)
class GameRulesConfig:
    max_rounds: int = 4
    rotation_interval_s: float = 300.0
    rotation_max_retries: int = 10
    unresolved_counts_as_guess: bool = True
    reveal: Mapping[str, int] = field(default_factory=lambda: dict(_DEFAULT_REVEAL))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> GameRulesConfig:
        max_rounds = _int(raw.get("max_rounds", 4), "game.max_rounds")
        if max_rounds < 1:
            raise ValueError("game.max_rounds must be >= 1")
        interval = _float(raw.get("rotation_interval_s", 300.0), "game.rotation_interval_s")
        if interval <= 0:
            raise ValueError("game.rotation_interval_s must be > 0")
        retries = _int(raw.get("rotation_max_retries", 10), "game.rotation_max_retries")
        if retries < 1:
            raise ValueError("game.rotation_max_retries must be >= 1")

        # Entries override the default schedule per kind.
        reveal = dict(_DEFAULT_REVEAL)
        for key, value in _mapping(raw.get("reveal"), "game.reveal").items():
            kind = _kind_key(key, "game.reveal")
            threshold = _int(value, f"game.reveal.{kind}")
            if threshold < 1:
                raise ValueError(f"game.reveal.{kind} must be >= 1")
            reveal[kind] = threshold

        return cls(
            max_rounds=max_rounds,
            rotation_interval_s=interval,
            rotation_max_retries=retries,
            unresolved_counts_as_guess=_bool(
                raw.get("unresolved_counts_as_guess", True),
                "game.unresolved_counts_as_guess",
            ),
            reveal=reveal,
        )


@dataclass(frozen=True, slots=True)
class DataConfig:
    countries_file: Path
    data_root: str
    request_timeout_s: float = 30.0
    user_agent: str = "geolayers/0.1"
    sources: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: dict(_DEFAULT_SOURCES)
    )

    @property
    def is_remote(self) -> bool:
        return self.data_root.startswith(("http://", "https://"))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> DataConfig:
        data_root_raw = _str(raw.get("data_root", "data"), "data.data_root")
        if data_root_raw.startswith(("http://", "https://")):
            data_root = data_root_raw.rstrip("/")
        else:
            data_root = str(_path_from_cfg(data_root_raw, "data.data_root", root_dir))

        timeout = _float(raw.get("request_timeout_s", 30.0), "data.request_timeout_s")
        if timeout <= 0:
            raise ValueError("data.request_timeout_s must be > 0")

        sources = dict(_DEFAULT_SOURCES)
        for key, value in _mapping(raw.get("sources"), "data.sources").items():
            kind = _kind_key(key, "data.sources")
            tiers = _str_list(value, f"data.sources.{kind}")
            if not tiers:
                raise ValueError(f"data.sources.{kind} must list at least one file")
            sources[kind] = tiers

        return cls(
            countries_file=_path_from_cfg(
                raw.get("countries_file", "countries.json"), "data.countries_file", root_dir
            ),
            data_root=data_root,
            request_timeout_s=timeout,
            user_agent=_str(raw.get("user_agent", "geolayers/0.1"), "data.user_agent"),
            sources=sources,
        )


@dataclass(frozen=True, slots=True)
class LayersConfig:
    max_features: Mapping[str, int] = field(
        default_factory=lambda: {"rivers": 40000, "elevation": 30000, "roads": 30000}
    )
    road_priority: tuple[str, ...] = _DEFAULT_ROAD_PRIORITY
    city_suffixes: tuple[str, ...] = _DEFAULT_CITY_SUFFIXES
    styles: Mapping[str, Mapping[str, Any]] = field(
        default_factory=lambda: {k: dict(v) for k, v in _DEFAULT_STYLES.items()}
    )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> LayersConfig:
        defaults = cls()
        max_features = dict(defaults.max_features)
        for key, value in _mapping(raw.get("max_features"), "layers.max_features").items():
            kind = _kind_key(key, "layers.max_features")
            cap = _int(value, f"layers.max_features.{kind}")
            if cap < 1:
                raise ValueError(f"layers.max_features.{kind} must be >= 1")
            max_features[kind] = cap

        road_priority = defaults.road_priority
        if raw.get("road_priority") is not None:
            road_priority = tuple(
                item.casefold() for item in _str_list(raw.get("road_priority"), "layers.road_priority")
            )

        city_suffixes = defaults.city_suffixes
        if raw.get("city_suffixes") is not None:
            city_suffixes = _str_list(raw.get("city_suffixes"), "layers.city_suffixes")

        styles = {k: dict(v) for k, v in defaults.styles.items()}
        for key, value in _mapping(raw.get("styles"), "layers.styles").items():
            kind = _kind_key(key, "layers.styles")
            styles[kind] = {**styles[kind], **_mapping(value, f"layers.styles.{kind}")}

        return cls(
            max_features=max_features,
            road_priority=road_priority,
            city_suffixes=city_suffixes,
            styles=styles,
        )


@dataclass(frozen=True, slots=True)
class ViewConfig:
    default_center: tuple[float, float] = (20.0, 0.0)
    default_zoom: int = 2
    fit_padding_px: int = 20
    finish_pad_ratio: float = 0.1
    size_poll_interval_s: float = 0.05
    size_poll_max_attempts: int = 40

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ViewConfig:
        center_raw = raw.get("default_center", [20.0, 0.0])
        if not isinstance(center_raw, list) or len(center_raw) != 2:
            raise ValueError("Expected [lat, lon] list for 'view.default_center'")
        attempts = _int(raw.get("size_poll_max_attempts", 40), "view.size_poll_max_attempts")
        if attempts < 0:
            raise ValueError("view.size_poll_max_attempts must be >= 0")
        return cls(
            default_center=(
                _float(center_raw[0], "view.default_center[0]"),
                _float(center_raw[1], "view.default_center[1]"),
            ),
            default_zoom=_int(raw.get("default_zoom", 2), "view.default_zoom"),
            fit_padding_px=_int(raw.get("fit_padding_px", 20), "view.fit_padding_px"),
            finish_pad_ratio=_float(raw.get("finish_pad_ratio", 0.1), "view.finish_pad_ratio"),
            size_poll_interval_s=_float(
                raw.get("size_poll_interval_s", 0.05), "view.size_poll_interval_s"
            ),
            size_poll_max_attempts=attempts,
        )


@dataclass(frozen=True, slots=True)
class PrepareConfig:
    ne_admin0_countries: Path
    ne_populated_places: Path
    output_dir: Path
    cities_per_country: int = 25
    simplify_km: float = 0.0

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> PrepareConfig:
        cities_n = _int(raw.get("cities_per_country", 25), "prepare.cities_per_country")
        if cities_n < 0:
            raise ValueError("prepare.cities_per_country must be >= 0")
        simplify_km = _float(raw.get("simplify_km", 0.0), "prepare.simplify_km")
        if simplify_km < 0:
            raise ValueError("prepare.simplify_km must be >= 0")
        return cls(
            ne_admin0_countries=_path_from_cfg(
                raw.get("ne_admin0_countries", "natural_earth/ne_10m_admin_0_countries.shp"),
                "prepare.ne_admin0_countries",
                root_dir,
            ),
            ne_populated_places=_path_from_cfg(
                raw.get("ne_populated_places", "natural_earth/ne_10m_populated_places.shp"),
                "prepare.ne_populated_places",
                root_dir,
            ),
            output_dir=_path_from_cfg(raw.get("output_dir", "data"), "prepare.output_dir", root_dir),
            cities_per_country=cities_n,
            simplify_km=simplify_km,
        )


@dataclass(frozen=True, slots=True)
class GameConfig:
    source_path: Path | None
    game: GameRulesConfig
    data: DataConfig
    layers: LayersConfig
    view: ViewConfig
    prepare: PrepareConfig
    logs_dir: Path

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], source_path: Path | None) -> GameConfig:
        root_dir = source_path.parent.resolve() if source_path is not None else Path.cwd()
        paths = _mapping(raw.get("paths"), "paths")
        return cls(
            source_path=source_path.resolve() if source_path is not None else None,
            game=GameRulesConfig.from_mapping(_mapping(raw.get("game"), "game")),
            data=DataConfig.from_mapping(_mapping(raw.get("data"), "data"), root_dir),
            layers=LayersConfig.from_mapping(_mapping(raw.get("layers"), "layers")),
            view=ViewConfig.from_mapping(_mapping(raw.get("view"), "view")),
            prepare=PrepareConfig.from_mapping(_mapping(raw.get("prepare"), "prepare"), root_dir),
            logs_dir=_path_from_cfg(paths.get("logs_dir", "logs"), "paths.logs_dir", root_dir),
        )

    @classmethod
    def default(cls) -> GameConfig:
        return cls.from_mapping({}, None)


def load_config(path: str | Path) -> GameConfig:
    """Load and validate the YAML config file into typed settings."""
    cfg_path = Path(path).resolve()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ValueError("Top-level config must be a YAML mapping")
    return GameConfig.from_mapping(cast(Mapping[str, Any], raw), cfg_path)
