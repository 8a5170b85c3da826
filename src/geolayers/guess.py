"""Free-text guess resolution against location codes and names."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from .models import Location


def normalize_guess(value: Any) -> str:
    return str(value or "").strip().casefold()


def resolve_guess(
    raw: Any,
    codes_by_key: Mapping[str, str],
    codes_by_name: Mapping[str, str],
) -> str:
    """Return the canonical code for `raw`, or "" when it resolves to nothing.

    Both lookup maps are keyed by case-folded text. Codes win over names.
    """
    key = normalize_guess(raw)
    if not key:
        return ""
    if key in codes_by_key:
        return codes_by_key[key]
    return codes_by_name.get(key, "")


class GuessResolver:
    def __init__(self, locations: Iterable[Location]) -> None:
        self.codes_by_key: dict[str, str] = {}
        self.codes_by_name: dict[str, str] = {}
        for location in locations:
            self.codes_by_key[location.code.casefold()] = location.code
            self.codes_by_name[location.name.casefold()] = location.code

    def resolve(self, raw: Any) -> str:
        return resolve_guess(raw, self.codes_by_key, self.codes_by_name)
