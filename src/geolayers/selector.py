"""Target location selection."""

from __future__ import annotations

import random
from typing import Sequence


class LocationSelector:
    """Uniform random selection with bounded repeat avoidance."""

    def __init__(self, rng: random.Random | None = None, *, max_retries: int = 10) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self.rng = rng or random.Random()
        self.max_retries = max_retries

    def pick(self, candidates: Sequence[str]) -> str:
        if not candidates:
            raise ValueError("Cannot pick a location from an empty candidate list")
        return self.rng.choice(list(candidates))

    def rotate(self, candidates: Sequence[str], excluding: str | None) -> str:
        """Pick a new location, trying not to repeat `excluding`.

        Gives up after `max_retries` collisions and returns the repeat, so a
        one-element candidate list terminates.
        """
        choice = self.pick(candidates)
        for _ in range(self.max_retries - 1):
            if choice != excluding:
                break
            choice = self.pick(candidates)
        return choice

    def select(self, candidates: Sequence[str], forced: str | None = None) -> str:
        if forced:
            wanted = forced.strip().upper()
            for code in candidates:
                if code.upper() == wanted:
                    return code
        return self.pick(candidates)
