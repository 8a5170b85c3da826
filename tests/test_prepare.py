import json

import geopandas as gpd
import pytest
from shapely.geometry import MultiPolygon, Point, Polygon, box

from geolayers.config import GameConfig
from geolayers.prepare import (
    NaturalEarthRepository,
    PlaceRecord,
    cities_collection,
    format_prepare_lines,
    merge_outline,
    run_prepare,
    score_iso_values,
    select_best_iso_column,
)


def _admin0():
    return gpd.GeoDataFrame(
        {
            "ISO_A3": ["-99", "-99", "BRA"],
            "ADM0_A3": ["FRA", "FRA", "BRA"],
            "NAME": ["France", "France", "Brazil"],
        },
        geometry=[box(0, 40, 5, 50), MultiPolygon([box(8, 41, 9, 43)]), box(-60, -20, -40, 0)],
        crs="EPSG:4326",
    )


def _places():
    rows = [
        ("FRA", "Paris", 2.35, 48.85, 0, 11000000),
        ("FRA", "Lyon", 4.83, 45.76, 1, 1600000),
        ("FRA", "Marseille", 5.37, 43.3, 1, 1700000),
        ("FRA", "Paris", 2.4, 48.9, 5, 100),
        ("BRA", "Brasilia", -47.9, -15.8, 0, 4000000),
    ]
    return gpd.GeoDataFrame(
        {
            "ADM0_A3": [r[0] for r in rows],
            "NAME": [r[1] for r in rows],
            "LONGITUDE": [r[2] for r in rows],
            "LATITUDE": [r[3] for r in rows],
            "SCALERANK": [r[4] for r in rows],
            "POP_MAX": [r[5] for r in rows],
        },
        geometry=[Point(r[2], r[3]) for r in rows],
        crs="EPSG:4326",
    )


def test_score_iso_values():
    assert score_iso_values(["FRA", "fra", "-99", None, "BR"], iso_allowlist={"FRA", "DEU"}) == (1, 2, 1)
    assert score_iso_values([], iso_allowlist=None) == (0, 0, 0)


def test_select_best_iso_column_prefers_valid_values():
    df = _admin0()
    assert select_best_iso_column(df, ("ISO_A3", "ADM0_A3"), iso_allowlist=None) == "ADM0_A3"
    assert select_best_iso_column(df, ("ISO3",), iso_allowlist=None) is None


def test_detect_iso_column_reports_columns():
    repo = NaturalEarthRepository(None, None)
    df = gpd.GeoDataFrame({"OTHER": ["x"]}, geometry=[Point(0, 0)])
    with pytest.raises(ValueError, match="OTHER"):
        repo.detect_iso_column(df, repo.COUNTRY_ISO_COLUMNS)


def test_merge_outline_collects_polygon_parts():
    geometries = [box(0, 0, 1, 1), MultiPolygon([box(2, 2, 3, 3), box(4, 4, 5, 5)]), Point(9, 9)]
    merged = merge_outline(geometries)
    assert merged["type"] == "MultiPolygon"
    assert len(merged["coordinates"]) == 3
    assert merge_outline([Point(0, 0)]) is None


def test_merge_outline_simplifies_by_km():
    wiggly = Polygon([(0, 0), (0.5, 0.0001), (1, 0), (1, 1), (0, 1)])
    merged = merge_outline([wiggly], simplify_km=1.0)
    assert len(merged["coordinates"][0][0]) == 5


def test_cities_collection_orders_and_dedupes():
    places = [
        PlaceRecord("Lyon", "FRA", 4.8, 45.7, scalerank=1, pop_max=1_600_000),
        PlaceRecord("Marseille", "FRA", 5.3, 43.3, scalerank=1, pop_max=1_700_000),
        PlaceRecord("Paris", "FRA", 2.3, 48.8, scalerank=0, pop_max=11_000_000),
        PlaceRecord("paris", "FRA", 2.4, 48.9, scalerank=5, pop_max=100),
        PlaceRecord("Nowhere", "FRA", 1.0, 1.0),
    ]
    fc = cities_collection(places, limit=3)
    assert [f["properties"]["name"] for f in fc["features"]] == ["Paris", "Marseille", "Lyon"]
    assert fc["features"][0]["geometry"] == {"type": "Point", "coordinates": (2.3, 48.8)}
    assert cities_collection(places, limit=0)["features"] == []


def test_place_records_skip_bad_rows():
    repo = NaturalEarthRepository(None, None)
    df = _places()
    df.loc[1, "LONGITUDE"] = float("nan")
    records = repo.place_records(df, "FRA", "ADM0_A3")
    assert [r.name for r in records] == ["Paris", "Marseille", "Paris"]
    assert records[0].scalerank == 0 and records[0].pop_max == 11000000


@pytest.fixture
def prepared_cfg(tmp_path, monkeypatch):
    (tmp_path / "admin0.shp").write_text("", encoding="utf-8")
    (tmp_path / "places.shp").write_text("", encoding="utf-8")
    monkeypatch.setattr(NaturalEarthRepository, "load_admin0", lambda self: _admin0())
    monkeypatch.setattr(NaturalEarthRepository, "load_populated_places", lambda self: _places())
    raw = {
        "data": {"countries_file": "out/countries.json", "data_root": "out"},
        "prepare": {
            "ne_admin0_countries": "admin0.shp",
            "ne_populated_places": "places.shp",
            "output_dir": "out",
            "cities_per_country": 2,
        },
    }
    return GameConfig.from_mapping(raw, tmp_path / "config.yaml")


def test_run_prepare_derives_countries_and_writes_layers(prepared_cfg, tmp_path):
    report = run_prepare(prepared_cfg)

    assert report.ok, report.errors
    out = tmp_path / "out"
    countries = json.loads((out / "countries.json").read_text(encoding="utf-8"))
    assert countries == [{"code": "BRA", "name": "Brazil"}, {"code": "FRA", "name": "France"}]

    outline = json.loads((out / "FRA" / "outline.geojson").read_text(encoding="utf-8"))
    assert outline["features"][0]["geometry"]["type"] == "MultiPolygon"
    assert len(outline["features"][0]["geometry"]["coordinates"]) == 2

    cities = json.loads((out / "FRA" / "cities.geojson").read_text(encoding="utf-8"))
    assert [f["properties"]["name"] for f in cities["features"]] == ["Paris", "Marseille"]
    assert report.summary == {"countries_total": 2, "outlines_written": 2, "cities_written": 2}
    assert format_prepare_lines(report)[-1] == "[OK] Data preparation completed with no errors."


def test_run_prepare_respects_existing_file_and_filter(prepared_cfg, tmp_path):
    out = tmp_path / "out"
    out.mkdir()
    (out / "countries.json").write_text(
        json.dumps([{"code": "FRA", "name": "France"}, {"code": "XXX", "name": "Nowhere"}]),
        encoding="utf-8",
    )

    report = run_prepare(prepared_cfg, country_filter=["xxx"])

    assert report.ok
    assert report.summary["outlines_written"] == 0
    assert any("XXX" in msg for msg in report.warnings)
    assert not (out / "FRA").exists()


def test_run_prepare_missing_datasets(tmp_path):
    cfg = GameConfig.from_mapping({"prepare": {"output_dir": "out"}}, tmp_path / "config.yaml")
    report = run_prepare(cfg)
    assert not report.ok
    assert "Missing Natural Earth dataset" in report.errors[0]
    assert format_prepare_lines(report)[-1].startswith("[ERROR]")
