"""CLI entrypoint for the GeoLayers game and its data preparation."""

from __future__ import annotations

import argparse
import asyncio
import logging
import random
from dataclasses import replace
from pathlib import Path
from typing import Sequence

from .config import GameConfig, load_config
from .loader import FileFetcher, HttpFetcher
from .locations import load_locations, location_index_by_code
from .models import parse_layer_list
from .prepare import format_prepare_lines, run_prepare
from .render import MatplotlibCanvas
from .rounds import RevealSchedule
from .session import DeepLink, GameSession
from .util import setup_logging

LOGGER = logging.getLogger("geolayers.cli")

_NEW_COMMAND = ":new"
_QUIT_COMMANDS = {":q", ":quit", ":exit"}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="geolayers",
        description="Guess the country from progressively revealed map layers.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", default=None, help="Path to YAML config (defaults apply if omitted).")
        p.add_argument("--verbose", action="store_true", help="Enable debug logs.")

    def add_data_root(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--data-root",
            default=None,
            help="Directory or http(s) base URL holding <ISO3>/<layer>.geojson files.",
        )

    prepare_p = subparsers.add_parser(
        "prepare-data",
        help="Write countries.json and per-country outline/cities GeoJSON from Natural Earth.",
    )
    add_common(prepare_p)
    prepare_p.add_argument(
        "--country",
        action="append",
        default=[],
        help="ISO3 filter. Can be repeated.",
    )
    prepare_p.add_argument(
        "--simplify-km",
        type=float,
        default=None,
        help="Simplify outlines with roughly this tolerance in km.",
    )

    preview_p = subparsers.add_parser("preview", help="Render one country's layers to PNG.")
    add_common(preview_p)
    add_data_root(preview_p)
    preview_p.add_argument("--country", required=True, help="ISO3 code to preview.")
    preview_p.add_argument(
        "--round",
        type=int,
        default=None,
        help="Show the layers revealed at this round.",
    )
    preview_p.add_argument(
        "--layers",
        default=None,
        help="Comma-separated layer names or 'all' (overrides --round).",
    )
    preview_p.add_argument("--output", default="preview.png", help="Output PNG path.")
    preview_p.add_argument("--width", type=int, default=1024, help="Image width in pixels.")
    preview_p.add_argument("--height", type=int, default=768, help="Image height in pixels.")

    play_p = subparsers.add_parser("play", help="Play in the terminal.")
    add_common(play_p)
    add_data_root(play_p)
    play_p.add_argument(
        "--query",
        default="",
        help="Deep-link query string, e.g. 'country=CAN&layers=rivers'.",
    )
    play_p.add_argument(
        "--render-dir",
        default=None,
        help="Save a PNG snapshot of the map after every step into this directory.",
    )
    play_p.add_argument("--seed", type=int, default=None, help="Random seed for location picks.")

    return parser


def _load_and_setup(args: argparse.Namespace) -> GameConfig:
    cfg = load_config(args.config) if args.config else GameConfig.default()
    setup_logging(cfg.logs_dir / "geolayers.log", verbose=args.verbose)
    data_root = getattr(args, "data_root", None)
    if data_root:
        if data_root.startswith(("http://", "https://")):
            root = data_root.rstrip("/")
        else:
            root = str(Path(data_root).resolve())
        cfg = replace(cfg, data=replace(cfg.data, data_root=root))
    return cfg


def _make_fetcher(cfg: GameConfig) -> HttpFetcher | FileFetcher:
    if cfg.data.is_remote:
        return HttpFetcher(
            cfg.data.data_root,
            timeout_s=cfg.data.request_timeout_s,
            user_agent=cfg.data.user_agent,
        )
    return FileFetcher(Path(cfg.data.data_root))


def _run_prepare(cfg: GameConfig, *, countries: Sequence[str], simplify_km: float | None) -> int:
    report = run_prepare(cfg, country_filter=countries, simplify_km=simplify_km)
    for line in format_prepare_lines(report):
        LOGGER.info(line)
    return 0 if report.ok else 1


async def _preview(
    cfg: GameConfig,
    *,
    country: str,
    round_number: int | None,
    layers: str | None,
    output: Path,
    width: int,
    height: int,
) -> int:
    locations = load_locations(cfg.data.countries_file)
    if round_number is not None and layers is None:
        kinds = RevealSchedule(cfg.game.reveal).visible_at(round_number)
    else:
        kinds = parse_layer_list(layers, default=("rivers",))
    deep_link = DeepLink(country=country.strip().upper(), layers=frozenset(kinds), admin=True)
    location = location_index_by_code(locations).get(deep_link.country or "")
    if location is None:
        LOGGER.error("Unknown country code: %s", country)
        return 1

    canvas = MatplotlibCanvas(width_px=width, height_px=height)
    fetcher = _make_fetcher(cfg)
    session = GameSession(
        cfg,
        locations,
        canvas,
        fetcher,
        deep_link=deep_link,
        transform=canvas.project,
    )
    try:
        await session.start()
    finally:
        session.close()
        fetcher.close()
    canvas.render(output)
    LOGGER.info(
        "Preview of %s [%s] (%s) written to %s",
        location.name,
        location.code,
        ", ".join(sorted(kinds)),
        output,
    )
    return 0


async def _play(cfg: GameConfig, *, query: str, render_dir: Path | None, seed: int | None) -> int:
    locations = load_locations(cfg.data.countries_file)
    canvas = MatplotlibCanvas()
    fetcher = _make_fetcher(cfg)
    session = GameSession(
        cfg,
        locations,
        canvas,
        fetcher,
        deep_link=DeepLink.from_query(query),
        rng=random.Random(seed),
        transform=canvas.project,
    )
    step = 0

    def snapshot() -> None:
        nonlocal step
        if render_dir is None:
            return
        step += 1
        canvas.render(render_dir / f"step_{step:03d}_{session.location_id}.png")

    try:
        await session.start()
        snapshot()
        print(f"Visible layers: {', '.join(sorted(session.visible_kinds)) or 'none'}")
        while True:
            try:
                text = await asyncio.to_thread(input, "Guess (:new, :quit): ")
            except EOFError:
                break
            command = text.strip().casefold()
            if command in _QUIT_COMMANDS:
                break
            if command == _NEW_COMMAND:
                await session.new_round()
                snapshot()
                print(f"New country. Visible layers: {', '.join(sorted(session.visible_kinds)) or 'none'}")
                continue
            outcome = session.submit_guess(text)
            if outcome.message:
                print(outcome.message)
            if session.progress_text:
                print(session.progress_text)
            snapshot()
            if outcome.finished:
                print(f"Type {_NEW_COMMAND} for another country.")
            elif outcome.message:
                print(f"Visible layers: {', '.join(sorted(session.visible_kinds))}")
    finally:
        session.close()
        fetcher.close()
    return 0


def _dispatch(args: argparse.Namespace) -> int:
    cfg = _load_and_setup(args)
    command = str(args.command)
    if command == "prepare-data":
        return _run_prepare(
            cfg,
            countries=[str(item) for item in args.country],
            simplify_km=args.simplify_km,
        )
    if command == "preview":
        return asyncio.run(
            _preview(
                cfg,
                country=str(args.country),
                round_number=args.round,
                layers=args.layers,
                output=Path(args.output),
                width=int(args.width),
                height=int(args.height),
            )
        )
    if command == "play":
        return asyncio.run(
            _play(
                cfg,
                query=str(args.query),
                render_dir=Path(args.render_dir) if args.render_dir else None,
                seed=args.seed,
            )
        )
    raise ValueError(f"Unknown command: {command}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        return _dispatch(args)
    except (FileNotFoundError, ValueError) as exc:
        LOGGER.error("%s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
