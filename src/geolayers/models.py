"""Domain models shared across game modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

LAYER_KINDS: tuple[str, ...] = ("outline", "rivers", "cities", "roads", "elevation")

# Draw order on the canvas, bottom to top.
DRAW_ORDER: tuple[str, ...] = ("rivers", "cities", "elevation", "roads", "outline")

_KIND_ALIASES = {"topo": "elevation"}


def normalize_layer_kind(value: str) -> str | None:
    """Map a user-supplied layer name onto a known layer kind, or None."""
    key = value.strip().casefold()
    key = _KIND_ALIASES.get(key, key)
    return key if key in LAYER_KINDS else None


def parse_layer_list(raw: str | None, *, default: tuple[str, ...] = ()) -> frozenset[str]:
    """Parse a comma-separated layer list; `all` expands to every kind."""
    if raw is None or not raw.strip():
        return frozenset(default)
    names = [part.strip() for part in raw.split(",") if part.strip()]
    if any(name.casefold() == "all" for name in names):
        return frozenset(LAYER_KINDS)
    kinds: set[str] = set()
    for name in names:
        kind = normalize_layer_kind(name)
        if kind is not None:
            kinds.add(kind)
    return frozenset(kinds)


def _require_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


@dataclass(frozen=True, slots=True)
class Location:
    """Guessable country from `countries.json`."""

    code: str
    name: str

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Location:
        code = _require_str(data.get("code"), "code").upper()
        if not code.isalnum():
            raise ValueError(f"Invalid location code: '{code}'")
        return cls(code=code, name=_require_str(data.get("name"), "name"))

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "name": self.name}


@dataclass(slots=True)
class RoundState:
    """Mutable guessing state for the active location."""

    location_id: str
    round_number: int = 1
    tried: set[str] = field(default_factory=set)
    solved: set[str] = field(default_factory=set)
    finished: bool = False
    success: bool | None = None


GUESS_IGNORED = "ignored"
GUESS_CORRECT = "correct"
GUESS_INCORRECT = "incorrect"
GUESS_OUT_OF_ROUNDS = "out_of_rounds"


@dataclass(frozen=True, slots=True)
class GuessOutcome:
    kind: str
    code: str
    round_number: int
    message: str = ""

    @property
    def finished(self) -> bool:
        return self.kind in (GUESS_CORRECT, GUESS_OUT_OF_ROUNDS)
