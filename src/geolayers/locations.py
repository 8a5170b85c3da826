"""Location catalogue loading and indexing."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable

import yaml

from .models import Location


def parse_locations(raw: Any, *, source: str = "<memory>") -> list[Location]:
    """Validate a list of `{code, name}` mappings, sorted by display name."""
    if not isinstance(raw, list):
        raise ValueError(f"Expected list in {source}")

    locations: list[Location] = []
    seen_codes: set[str] = set()
    seen_names: set[str] = set()
    for idx, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValueError(f"Expected mapping at index {idx} in {source}")
        location = Location.from_mapping(item)
        if location.code in seen_codes:
            raise ValueError(f"Duplicate code '{location.code}' in {source}")
        name_key = location.name.casefold()
        if name_key in seen_names:
            raise ValueError(f"Duplicate name '{location.name}' in {source}")
        seen_codes.add(location.code)
        seen_names.add(name_key)
        locations.append(location)
    return sorted(locations, key=lambda item: item.name.casefold())


def load_locations(path: Path) -> list[Location]:
    """Load the location list from a JSON or YAML file."""
    if not path.exists():
        raise FileNotFoundError(f"Locations file not found: {path}")
    with path.open("r", encoding="utf-8") as fh:
        if path.suffix.lower() in (".yaml", ".yml"):
            raw = yaml.safe_load(fh)
        else:
            raw = json.load(fh)
    return parse_locations(raw, source=str(path))


def location_index_by_code(locations: Iterable[Location]) -> dict[str, Location]:
    return {location.code: location for location in locations}
