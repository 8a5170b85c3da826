"""Build the static per-country GeoJSON files from Natural Earth datasets."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Sequence

from shapely.geometry import MultiPolygon, Point, mapping

from .config import GameConfig
from .locations import load_locations
from .models import Location
from .util import write_json

_LOGGER = logging.getLogger("geolayers.prepare")

KM_PER_DEGREE = 111.32


@dataclass(frozen=True, slots=True)
class PlaceRecord:
    """Populated place candidate for a country's cities layer."""

    name: str
    iso3: str
    lon: float
    lat: float
    scalerank: int | None = None
    pop_max: int | None = None


@dataclass(slots=True)
class PrepareReport:
    output_dir: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    infos: list[str] = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def add_info(self, msg: str) -> None:
        self.infos.append(msg)


def _first_existing_column(columns: Iterable[str], candidates: Sequence[str]) -> str | None:
    existing = {str(col).lower(): str(col) for col in columns}
    for candidate in candidates:
        match = existing.get(candidate.lower())
        if match:
            return match
    return None


class NaturalEarthRepository:
    """Natural Earth admin-0 and populated places access via GeoPandas."""

    COUNTRY_ISO_COLUMNS = ("ADM0_A3", "ISO_A3", "ISO_A3_EH", "SOV_A3", "GU_A3", "ISO3")
    COUNTRY_NAME_COLUMNS = ("NAME_EN", "NAME", "ADMIN", "name")
    PLACE_ISO_COLUMNS = ("ADM0_A3", "ISO_A3", "SOV0_A3", "SOV_A3", "GU_A3", "ISO3")
    PLACE_NAME_COLUMNS = ("NAME", "NAMEASCII", "name", "nameascii")
    PLACE_LON_COLUMNS = ("LONGITUDE", "LON", "longitude", "lon")
    PLACE_LAT_COLUMNS = ("LATITUDE", "LAT", "latitude", "lat")
    PLACE_SCALERANK_COLUMNS = ("SCALERANK", "scalerank")
    PLACE_POPMAX_COLUMNS = ("POP_MAX", "pop_max")

    def __init__(self, admin0_path: Path, populated_places_path: Path) -> None:
        self.admin0_path = admin0_path
        self.populated_places_path = populated_places_path

    def load_admin0(self) -> Any:
        return self._require_geopandas().read_file(self.admin0_path)

    def load_populated_places(self) -> Any:
        return self._require_geopandas().read_file(self.populated_places_path)

    def detect_iso_column(
        self,
        dataframe: Any,
        preferred: Sequence[str],
        *,
        iso_allowlist: set[str] | None = None,
    ) -> str:
        iso_col = select_best_iso_column(dataframe, preferred, iso_allowlist=iso_allowlist)
        if iso_col is None:
            cols = ", ".join(str(c) for c in dataframe.columns)
            raise ValueError(f"Could not detect an ISO3 column. Available columns: {cols}")
        return iso_col

    def country_locations(self, admin0_df: Any, iso_col: str) -> list[Location]:
        """Derive `{code, name}` entries when no countries file exists yet."""
        name_col = _first_existing_column(admin0_df.columns, self.COUNTRY_NAME_COLUMNS)
        if name_col is None:
            raise ValueError("Admin-0 dataset has no recognizable country name column")
        seen: dict[str, Location] = {}
        for row in admin0_df.itertuples(index=False):
            row_dict = row._asdict()
            code = str(row_dict.get(iso_col) or "").strip().upper()
            name = str(row_dict.get(name_col) or "").strip()
            if len(code) != 3 or not code.isalpha() or not name or code in seen:
                continue
            seen[code] = Location(code=code, name=name)
        return sorted(seen.values(), key=lambda item: item.name.casefold())

    def country_geometries(self, admin0_df: Any, iso3: str, iso_col: str) -> list[Any]:
        subset = admin0_df[admin0_df[iso_col] == iso3]
        return [geom for geom in subset.geometry if geom is not None and not geom.is_empty]

    def place_records(self, places_df: Any, iso3: str, iso_col: str) -> list[PlaceRecord]:
        name_col = _first_existing_column(places_df.columns, self.PLACE_NAME_COLUMNS)
        lon_col = _first_existing_column(places_df.columns, self.PLACE_LON_COLUMNS)
        lat_col = _first_existing_column(places_df.columns, self.PLACE_LAT_COLUMNS)
        if name_col is None or lon_col is None or lat_col is None:
            raise ValueError("Populated places dataset missing required name/lon/lat columns")
        scalerank_col = _first_existing_column(places_df.columns, self.PLACE_SCALERANK_COLUMNS)
        pop_col = _first_existing_column(places_df.columns, self.PLACE_POPMAX_COLUMNS)

        records: list[PlaceRecord] = []
        for row in places_df[places_df[iso_col] == iso3].itertuples(index=False):
            row_dict = row._asdict()
            name = str(row_dict.get(name_col) or "").strip()
            try:
                lon = float(row_dict.get(lon_col))
                lat = float(row_dict.get(lat_col))
            except (TypeError, ValueError):
                continue
            if not name or not math.isfinite(lon) or not math.isfinite(lat):
                continue
            records.append(
                PlaceRecord(
                    name=name,
                    iso3=iso3,
                    lon=lon,
                    lat=lat,
                    scalerank=_to_int_or_none(row_dict.get(scalerank_col)) if scalerank_col else None,
                    pop_max=_to_int_or_none(row_dict.get(pop_col)) if pop_col else None,
                )
            )
        return records

    @staticmethod
    def _require_geopandas() -> Any:
        try:
            import geopandas as gpd
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError("geopandas is required for Natural Earth data loading") from exc
        return gpd


def _to_int_or_none(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def select_best_iso_column(
    dataframe: Any,
    preferred_columns: Sequence[str],
    *,
    iso_allowlist: set[str] | None,
) -> str | None:
    """Pick the ISO3-like column whose values best match the allowlist."""
    by_lower = {str(col).lower(): str(col) for col in dataframe.columns}
    candidates: list[str] = []
    for candidate in preferred_columns:
        match = by_lower.get(candidate.lower())
        if match and match not in candidates:
            candidates.append(match)
    if not candidates:
        return None

    best_col: str | None = None
    best_score: tuple[int, int, int] | None = None
    for candidate in candidates:
        score = score_iso_values(dataframe[candidate].tolist(), iso_allowlist=iso_allowlist)
        if best_score is None or score > best_score:
            best_col = candidate
            best_score = score
    if best_score is None or best_score[1] == 0:
        return None
    return best_col


def score_iso_values(
    values: Sequence[Any],
    *,
    iso_allowlist: set[str] | None,
) -> tuple[int, int, int]:
    """(allowlist overlap, valid ISO3-looking values, unique valid values)."""
    valid = [
        normalized
        for normalized in (str(v).strip().upper() for v in values if v is not None)
        if len(normalized) == 3 and normalized.isalpha()
    ]
    valid_set = set(valid)
    overlap = len(valid_set & iso_allowlist) if iso_allowlist else 0
    return (overlap, len(valid), len(valid_set))


def merge_outline(geometries: Sequence[Any], *, simplify_km: float = 0.0) -> dict[str, Any] | None:
    """Merge a country's polygon parts into one GeoJSON MultiPolygon."""
    tolerance = simplify_km / KM_PER_DEGREE if simplify_km > 0 else 0.0
    polygons: list[Any] = []
    for geometry in geometries:
        geom_type = getattr(geometry, "geom_type", "")
        if geom_type == "Polygon":
            parts = [geometry]
        elif geom_type == "MultiPolygon":
            parts = list(geometry.geoms)
        else:
            continue
        for polygon in parts:
            if tolerance > 0:
                polygon = polygon.simplify(tolerance, preserve_topology=True)
            if polygon.geom_type == "Polygon" and not polygon.is_empty:
                polygons.append(polygon)
    if not polygons:
        return None
    return dict(mapping(MultiPolygon(polygons)))


def outline_collection(iso3: str, geometry: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [{"type": "Feature", "properties": {"iso3": iso3}, "geometry": geometry}],
    }


def _place_sort_key(place: PlaceRecord) -> tuple[float, float, str]:
    scalerank = float(place.scalerank) if place.scalerank is not None else float("inf")
    pop_desc = -float(place.pop_max) if place.pop_max is not None else float("inf")
    return (scalerank, pop_desc, place.name.casefold())


def cities_collection(places: Sequence[PlaceRecord], limit: int) -> dict[str, Any]:
    """Top `limit` places by scalerank then population, one per name."""
    features: list[dict[str, Any]] = []
    seen: set[str] = set()
    for place in sorted(places, key=_place_sort_key):
        if len(features) >= limit:
            break
        key = place.name.casefold()
        if key in seen:
            continue
        seen.add(key)
        features.append(
            {
                "type": "Feature",
                "properties": {"name": place.name, "population": place.pop_max or 0},
                "geometry": dict(mapping(Point(place.lon, place.lat))),
            }
        )
    return {"type": "FeatureCollection", "features": features}


def run_prepare(
    cfg: GameConfig,
    *,
    country_filter: Sequence[str] | None = None,
    simplify_km: float | None = None,
) -> PrepareReport:
    """Write countries.json plus outline and cities GeoJSON per country."""
    prep = cfg.prepare
    report = PrepareReport(output_dir=prep.output_dir)
    missing = [p for p in (prep.ne_admin0_countries, prep.ne_populated_places) if not p.exists()]
    if missing:
        report.add_error(
            "Missing Natural Earth dataset file(s): " + ", ".join(str(p) for p in missing)
        )
        return report

    repo = NaturalEarthRepository(prep.ne_admin0_countries, prep.ne_populated_places)
    try:
        admin0_df = repo.load_admin0()
        places_df = repo.load_populated_places()
    except Exception as exc:
        report.add_error(f"Failed loading Natural Earth datasets: {exc}")
        return report

    countries_path = cfg.data.countries_file
    try:
        if countries_path.exists():
            locations = load_locations(countries_path)
            allowlist: set[str] | None = {location.code for location in locations}
            admin_iso_col = repo.detect_iso_column(
                admin0_df, repo.COUNTRY_ISO_COLUMNS, iso_allowlist=allowlist
            )
            report.add_info(f"Loaded {len(locations)} locations from {countries_path}")
        else:
            admin_iso_col = repo.detect_iso_column(admin0_df, repo.COUNTRY_ISO_COLUMNS)
            locations = repo.country_locations(admin0_df, admin_iso_col)
            allowlist = {location.code for location in locations}
            write_json(countries_path, [location.to_dict() for location in locations])
            report.add_info(f"Wrote {len(locations)} locations to {countries_path}")
        places_iso_col = repo.detect_iso_column(
            places_df, repo.PLACE_ISO_COLUMNS, iso_allowlist=allowlist
        )
    except ValueError as exc:
        report.add_error(f"Natural Earth schema validation failed: {exc}")
        return report
    report.add_info(
        f"Natural Earth ISO columns selected: admin0={admin_iso_col}, populated_places={places_iso_col}"
    )

    requested = {item.strip().upper() for item in (country_filter or ()) if item and item.strip()}
    if requested:
        locations = [location for location in locations if location.code in requested]
    effective_simplify = prep.simplify_km if simplify_km is None else simplify_km

    outlines = 0
    cities = 0
    missing_outline: list[str] = []
    for location in locations:
        country_dir = prep.output_dir / location.code
        geometry = merge_outline(
            repo.country_geometries(admin0_df, location.code, admin_iso_col),
            simplify_km=effective_simplify,
        )
        if geometry is None:
            missing_outline.append(location.code)
        else:
            write_json(country_dir / "outline.geojson", outline_collection(location.code, geometry))
            outlines += 1

        places = repo.place_records(places_df, location.code, places_iso_col)
        if places:
            write_json(
                country_dir / "cities.geojson",
                cities_collection(places, prep.cities_per_country),
            )
            cities += 1
        _LOGGER.debug("%s: outline=%s places=%d", location.code, geometry is not None, len(places))

    if missing_outline:
        report.add_warning(
            "Not found in Natural Earth admin-0: " + _format_code_list(sorted(missing_outline))
        )
    report.summary = {
        "countries_total": len(locations),
        "outlines_written": outlines,
        "cities_written": cities,
    }
    return report


def _format_code_list(values: Sequence[str], limit: int = 12) -> str:
    if len(values) <= limit:
        return ", ".join(values)
    shown = ", ".join(values[:limit])
    return f"{shown}, ... (+{len(values) - limit} more)"


def format_prepare_lines(report: PrepareReport) -> Sequence[str]:
    lines: list[str] = []
    lines.extend(f"[INFO] {msg}" for msg in report.infos)
    lines.extend(f"[WARN] {msg}" for msg in report.warnings)
    lines.extend(f"[ERROR] {msg}" for msg in report.errors)
    if report.summary:
        summary = report.summary
        lines.append(
            "[INFO] Prepare summary: "
            f"countries_total={summary['countries_total']}, "
            f"outlines_written={summary['outlines_written']}, "
            f"cities_written={summary['cities_written']}"
        )
    if report.ok:
        lines.append("[OK] Data preparation completed with no errors.")
    return lines
