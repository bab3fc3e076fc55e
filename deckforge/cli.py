# ABOUTME: Provides the deckforge command-line entrypoint for drafting an outline and optionally generating the deck.
# ABOUTME: Runs against in-memory stores and prints the event stream as JSON lines.

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import AsyncIterator

from deckforge.app import DeckforgeApp, build_in_memory_app
from deckforge.runtime.contracts import PRESENTATION_TYPES, Deck, GenerationRequest, StreamEvent, new_id
from deckforge.runtime.settings import load_settings


logger = logging.getLogger(__name__)

CLI_USER_ID = "cli-user"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Draft presentation outlines and generate decks.")
    parser.add_argument("--config", help="YAML settings file merged over the defaults.")
    parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Settings override, e.g. pipeline.wave_size=2. Repeatable.",
    )
    parser.add_argument("--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    outline = subparsers.add_parser("outline", help="Generate an outline for a topic.")
    outline.add_argument("topic")
    outline.add_argument("--type", dest="presentation_type", choices=PRESENTATION_TYPES, default="STANDARD")
    outline.add_argument("--min-slides", type=int)
    outline.add_argument("--max-slides", type=int)
    outline.add_argument("--theme", help="Theme id; skips theme selection.")
    outline.add_argument("--no-images", action="store_true")
    outline.add_argument("--credits", type=int, default=10, help="Starting credit balance for the CLI user.")
    outline.add_argument("--tier", default="PRO", choices=("FREE", "STARTER", "PRO", "ENTERPRISE"))
    outline.add_argument("--approve", action="store_true", help="Execute the outline after drafting it.")
    return parser


def _print_events(events: list[StreamEvent]) -> None:
    for event in events:
        print(json.dumps(event.to_dict(), sort_keys=True))


async def _collect(stream: AsyncIterator[StreamEvent]) -> list[StreamEvent]:
    return [event async for event in stream]


async def _run_outline(app: DeckforgeApp, args: argparse.Namespace) -> int:
    app.ledger.open_account(CLI_USER_ID, balance=args.credits, tier=args.tier)
    deck = app.store.add_deck(Deck(id=new_id(), user_id=CLI_USER_ID))
    request = GenerationRequest(
        topic=args.topic,
        presentation_type=args.presentation_type,
        min_slides=args.min_slides,
        max_slides=args.max_slides,
        theme_id=args.theme,
        auto_generate_images=not args.no_images,
    )
    events = await _collect(app.outlines.generate_outline(CLI_USER_ID, deck.id, request))
    _print_events(events)
    if any(event.type == "error" for event in events):
        return 1
    if not args.approve:
        return 0
    events = await _collect(app.orchestrator.execute_outline(CLI_USER_ID, deck.id))
    _print_events(events)
    return 1 if any(event.type == "error" for event in events) else 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = load_settings(args.config, overrides=args.overrides)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    app = build_in_memory_app(settings)
    logger.debug("Running %s with provider %s", args.command, settings.model.provider)
    return asyncio.run(_run_outline(app, args))


if __name__ == "__main__":
    raise SystemExit(main())
