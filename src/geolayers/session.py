"""One game instance: selection, loading, rounds and view, owned by the caller."""

from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass
from typing import Any, Mapping, Sequence
from urllib.parse import parse_qs

from .config import GameConfig
from .guess import GuessResolver
from .layers import CoordTransform, LayerSet, build_layer
from .loader import DataLoader, Fetcher
from .models import GUESS_IGNORED, GuessOutcome, Location, RoundState, parse_layer_list
from .rounds import RotationTimer, RoundEngine, Scheduler
from .selector import LocationSelector
from .viewport import MapCanvas, Sleep, fit_or_default, pad_bounds, wait_for_canvas_size

_LOGGER = logging.getLogger("geolayers.session")

_TRUTHY_RE = re.compile(r"^(1|true|yes)$", re.IGNORECASE)
_ADMIN_DEFAULT_LAYERS = ("rivers",)


@dataclass(frozen=True, slots=True)
class DeepLink:
    """Query-string configuration: `country`, `layers` and `admin`."""

    country: str | None = None
    layers: frozenset[str] | None = None
    admin: bool = False

    @classmethod
    def from_query(cls, query: str | Mapping[str, Any]) -> DeepLink:
        if isinstance(query, str):
            parsed = parse_qs(query.lstrip("?"), keep_blank_values=True)
            params = {key: values[0] for key, values in parsed.items() if values}
        else:
            params = {key: ("" if value is None else str(value)) for key, value in query.items()}

        country_raw = params.get("country", "").strip()
        layers_raw = params.get("layers")
        layers = parse_layer_list(layers_raw) if layers_raw and layers_raw.strip() else None
        return cls(
            country=country_raw.upper() or None,
            layers=layers,
            admin=bool(_TRUTHY_RE.match(params.get("admin", "").strip())),
        )

    @property
    def admin_layers(self) -> frozenset[str]:
        return self.layers if self.layers is not None else frozenset(_ADMIN_DEFAULT_LAYERS)


class GameSession:
    """Everything one running game needs, with no module-level state.

    Entry points for the surrounding UI are `start`, `submit_guess`,
    `new_round` and `close`; `status_text` and `progress_text` feed the
    score display.
    """

    def __init__(
        self,
        cfg: GameConfig,
        locations: Sequence[Location],
        canvas: MapCanvas,
        fetcher: Fetcher,
        *,
        deep_link: DeepLink | None = None,
        rng: random.Random | None = None,
        scheduler: Scheduler | None = None,
        sleep: Sleep = asyncio.sleep,
        transform: CoordTransform | None = None,
    ) -> None:
        if not locations:
            raise ValueError("GameSession needs at least one location")
        self.cfg = cfg
        self.locations = list(locations)
        self.names = {location.code: location.name for location in self.locations}
        self.canvas = canvas
        self.deep_link = deep_link or DeepLink()
        self.resolver = GuessResolver(self.locations)
        self.selector = LocationSelector(rng, max_retries=cfg.game.rotation_max_retries)
        self.engine = RoundEngine(cfg.game, self.names)
        self.loader = DataLoader(fetcher, cfg.data.sources)
        self.layers = LayerSet()
        self.timer = RotationTimer(cfg.game.rotation_interval_s, self._on_idle, scheduler)
        self.state: RoundState | None = None
        self.status_text = ""
        self._sleep = sleep
        self._transform = transform
        self._activation = 0
        self._rotation_task: asyncio.Task[bool] | None = None
        self._closed = False

    @property
    def admin(self) -> bool:
        return self.deep_link.admin

    @property
    def codes(self) -> list[str]:
        return [location.code for location in self.locations]

    @property
    def location_id(self) -> str | None:
        return self.state.location_id if self.state is not None else None

    @property
    def progress_text(self) -> str:
        return self.engine.progress_text(self.state) if self.state is not None else ""

    @property
    def visible_kinds(self) -> frozenset[str]:
        return self.layers.visible_kinds(self.canvas)

    def target_kinds(self) -> frozenset[str]:
        """Kinds that should be on the canvas for the current state."""
        if self.admin:
            return self.deep_link.admin_layers
        if self.state is None:
            return frozenset()
        kinds = self.engine.visible_layers(self.state)
        if self.deep_link.layers:
            kinds = kinds | self.deep_link.layers
        return kinds

    async def start(self) -> bool:
        code = self.selector.select(self.codes, self.deep_link.country)
        _LOGGER.info("Selected location %s", code)
        return await self._activate(code)

    async def new_round(self) -> bool:
        code = self.selector.rotate(self.codes, self.location_id)
        _LOGGER.info("Rotating to location %s", code)
        return await self._activate(code)

    def submit_guess(self, text: Any) -> GuessOutcome:
        if self.state is None or self.admin or self._closed:
            return GuessOutcome(GUESS_IGNORED, "", self.state.round_number if self.state else 0)
        code = self.resolver.resolve(text)
        outcome = self.engine.submit(self.state, code, raw_text=str(text or ""))
        if outcome.kind == GUESS_IGNORED:
            return outcome
        _LOGGER.info("Guess %r -> %s (%s)", text, code or "<unresolved>", outcome.kind)
        self.status_text = outcome.message
        self.timer.restart()
        self.layers.apply(self.target_kinds(), self.canvas)
        if outcome.finished:
            self._fit_finished_view()
        return outcome

    def close(self) -> None:
        """Tear down timers and in-flight fetches."""
        self._closed = True
        self.timer.cancel()
        self.loader.cancel()
        if self._rotation_task is not None and not self._rotation_task.done():
            self._rotation_task.cancel()

    async def _activate(self, code: str) -> bool:
        self.timer.bind(asyncio.get_running_loop())
        self._switch_to(code)
        if not self.admin and not self._closed:
            self.timer.restart()
        return await self._load(code, self._activation)

    def _switch_to(self, code: str) -> None:
        self._activation += 1
        self.loader.cancel()
        if self.state is None:
            self.state = self.engine.new_state(code)
        else:
            self.state = self.engine.reset(self.state, code)
        self.layers.clear(self.canvas)
        self.status_text = ""

    def _is_stale(self, activation: int) -> bool:
        return self._closed or activation != self._activation

    async def _load(self, code: str, activation: int) -> bool:
        result = await self.loader.load(code)
        if not self.loader.is_current(result) or self._is_stale(activation):
            _LOGGER.debug("Dropping stale layers for %s", code)
            return False

        built = {
            kind: build_layer(
                kind,
                payload,
                cfg=self.cfg.layers,
                transform=self._transform,
            )
            for kind, payload in result.payloads.items()
        }
        self.layers.replace(built, self.canvas)

        view = self.cfg.view
        sized = await wait_for_canvas_size(
            self.canvas,
            interval_s=view.size_poll_interval_s,
            max_attempts=view.size_poll_max_attempts,
            sleep=self._sleep,
        )
        if self._is_stale(activation):
            return False

        outline = self.layers.get("outline")
        fit_or_default(
            self.canvas,
            outline.bounds if outline is not None and sized else None,
            padding_px=view.fit_padding_px,
            default_center=view.default_center,
            default_zoom=view.default_zoom,
        )
        shown = self.layers.apply(self.target_kinds(), self.canvas)
        _LOGGER.info("Loaded %s; visible layers: %s", code, ", ".join(sorted(shown)) or "none")
        return True

    def _fit_finished_view(self) -> None:
        outline = self.layers.get("outline")
        bounds = outline.bounds if outline is not None else None
        if bounds is not None:
            self.canvas.fit_bounds(pad_bounds(bounds, self.cfg.view.finish_pad_ratio), 0)

    def _on_idle(self) -> None:
        if self._closed or self.admin:
            return
        self._rotation_task = asyncio.ensure_future(self.new_round())
        self._rotation_task.add_done_callback(self._on_rotation_done)

    def _on_rotation_done(self, task: asyncio.Task[bool]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _LOGGER.error("Idle rotation failed: %s", exc, exc_info=exc)
