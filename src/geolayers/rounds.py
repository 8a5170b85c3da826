"""Round progression, progressive layer reveal and the idle rotation timer."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Mapping, Protocol

from .config import GameRulesConfig
from .models import (
    GUESS_CORRECT,
    GUESS_IGNORED,
    GUESS_INCORRECT,
    GUESS_OUT_OF_ROUNDS,
    LAYER_KINDS,
    GuessOutcome,
    RoundState,
)

_LOGGER = logging.getLogger("geolayers.rounds")

FINISH_REVEAL = "outline"


class RevealSchedule:
    """Maps each layer kind to the first round at which it becomes visible."""

    def __init__(self, thresholds: Mapping[str, int]) -> None:
        unknown = set(thresholds) - set(LAYER_KINDS)
        if unknown:
            raise ValueError("Unknown layer kinds in reveal schedule: " + ", ".join(sorted(unknown)))
        self.thresholds = dict(thresholds)

    def visible_at(self, round_number: int) -> frozenset[str]:
        return frozenset(k for k, first in self.thresholds.items() if first <= round_number)


class RoundEngine:
    """State transitions for one location's guessing session.

    AwaitingGuess(r) moves to AwaitingGuess(r + 1) on a wrong guess while
    r < max_rounds, to Finished(success=False) on a wrong guess at the last
    round, and to Finished(success=True) on a correct guess. Finished ignores
    further guesses until `reset`.
    """

    def __init__(self, rules: GameRulesConfig, names: Mapping[str, str] | None = None) -> None:
        self.rules = rules
        self.names = dict(names or {})
        self.schedule = RevealSchedule(rules.reveal)

    @property
    def max_rounds(self) -> int:
        return self.rules.max_rounds

    def new_state(self, location_id: str) -> RoundState:
        return RoundState(location_id=location_id)

    def reset(self, state: RoundState, location_id: str) -> RoundState:
        """Fresh state for a new location, keeping the cumulative solved set."""
        return RoundState(location_id=location_id, solved=set(state.solved))

    def submit(self, state: RoundState, code: str, *, raw_text: str = "") -> GuessOutcome:
        if state.finished:
            return GuessOutcome(GUESS_IGNORED, code, state.round_number)
        if not code:
            if not raw_text.strip() or not self.rules.unresolved_counts_as_guess:
                return GuessOutcome(GUESS_IGNORED, code, state.round_number)

        if code and code == state.location_id:
            state.finished = True
            state.success = True
            state.solved.add(code)
            return GuessOutcome(
                GUESS_CORRECT, code, state.round_number, f"Correct! It is {code}."
            )

        if code:
            state.tried.add(code)
        if state.round_number < self.max_rounds:
            state.round_number += 1
            return GuessOutcome(
                GUESS_INCORRECT,
                code,
                state.round_number,
                f"Round {state.round_number}/{self.max_rounds} - keep guessing!",
            )

        state.finished = True
        state.success = False
        state.solved.add(state.location_id)
        name = self.names.get(state.location_id, state.location_id)
        return GuessOutcome(
            GUESS_OUT_OF_ROUNDS, code, state.round_number, f"Out of rounds. It was {name}."
        )

    def visible_layers(self, state: RoundState) -> frozenset[str]:
        visible = self.schedule.visible_at(state.round_number)
        if state.finished:
            visible = visible | {FINISH_REVEAL}
        return visible

    def progress_text(self, state: RoundState) -> str:
        parts: list[str] = []
        if state.tried:
            parts.append("Tried: " + ", ".join(self._display(state.tried)))
        if state.solved:
            parts.append("Solved: " + ", ".join(self._display(state.solved)))
        return "  •  ".join(parts)

    def _display(self, codes: set[str]) -> list[str]:
        return sorted(self.names.get(code, code) for code in codes)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


Scheduler = Callable[[float, Callable[[], None]], TimerHandle]


class RotationTimer:
    """Single pending idle timer; every restart cancels the previous one.

    Without an explicit scheduler the timer uses the running event loop, or
    the loop it was bound to when restarted from plain synchronous code. With
    neither available the restart is skipped and the timer stays inactive.
    """

    def __init__(
        self,
        interval_s: float,
        callback: Callable[[], None],
        scheduler: Scheduler | None = None,
    ) -> None:
        self.interval_s = interval_s
        self.callback = callback
        self.scheduler = scheduler
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handle: TimerHandle | None = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def restart(self) -> None:
        self.cancel()
        scheduler = self.scheduler or self._loop_scheduler()
        if scheduler is None:
            _LOGGER.debug("No usable event loop; idle rotation not scheduled")
            return
        self._handle = scheduler(self.interval_s, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _loop_scheduler(self) -> Scheduler | None:
        try:
            loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            loop = self._loop
        if loop is None or loop.is_closed():
            return None
        return loop.call_later

    def _fire(self) -> None:
        self._handle = None
        _LOGGER.info("Idle for %.0fs; rotating location", self.interval_s)
        self.callback()
