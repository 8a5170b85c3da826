import json

import pytest

from geolayers.locations import load_locations, location_index_by_code, parse_locations
from geolayers.models import Location, parse_layer_list


def test_parse_sorts_by_name_and_uppercases_codes():
    locations = parse_locations(
        [{"code": "fra", "name": "France"}, {"code": "BRA", "name": "brazil"}, {"code": "CAN", "name": "Canada"}]
    )
    assert [loc.code for loc in locations] == ["BRA", "CAN", "FRA"]
    assert location_index_by_code(locations)["FRA"].name == "France"


@pytest.mark.parametrize(
    "raw",
    [
        {"code": "BRA"},
        [{"code": "BRA", "name": "Brazil"}, {"code": "bra", "name": "Brasil"}],
        [{"code": "BRA", "name": "Brazil"}, {"code": "BRZ", "name": "BRAZIL"}],
        [{"code": "B-A", "name": "Brazil"}],
        [{"code": "BRA", "name": "  "}],
        ["BRA"],
    ],
)
def test_invalid_catalogues_raise(raw):
    with pytest.raises(ValueError):
        parse_locations(raw)


def test_load_json_and_yaml(tmp_path):
    json_path = tmp_path / "countries.json"
    json_path.write_text(json.dumps([{"code": "MEX", "name": "Mexico"}]), encoding="utf-8")
    yaml_path = tmp_path / "countries.yml"
    yaml_path.write_text("- code: USA\n  name: United States of America\n", encoding="utf-8")

    assert load_locations(json_path) == [Location("MEX", "Mexico")]
    assert load_locations(yaml_path) == [Location("USA", "United States of America")]

    with pytest.raises(FileNotFoundError):
        load_locations(tmp_path / "missing.json")


def test_location_round_trips_through_dict():
    location = Location.from_mapping({"code": " can ", "name": " Canada "})
    assert location.to_dict() == {"code": "CAN", "name": "Canada"}


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, set()),
        ("", set()),
        ("rivers, Topo ,bogus", {"rivers", "elevation"}),
        ("ALL", {"outline", "rivers", "cities", "roads", "elevation"}),
    ],
)
def test_parse_layer_list(raw, expected):
    assert parse_layer_list(raw) == expected


def test_parse_layer_list_default():
    assert parse_layer_list(None, default=("rivers",)) == {"rivers"}
