#!/usr/bin/env python3
"""CLI: generate slides and explore the slide graph from a terminal."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

# Ensure the package is importable when running as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from pydantic import BaseModel

from slidegraph import config
from slidegraph.engine.loop import SlideEngine, run_generation
from slidegraph.engine.pregen import PregenCoordinator
from slidegraph.engine.session import SlideSession
from slidegraph.models import (
    ErrorEvent,
    SlideEvent,
    SlideNode,
    SlidePartialEvent,
    StatusEvent,
    ThinkingEvent,
)
from slidegraph.storage.sqlite_store import NotFound, SqliteStore


def _print_event(event: BaseModel) -> None:
    if isinstance(event, StatusEvent):
        print(f"  … {event.message}")
    elif isinstance(event, ThinkingEvent):
        print(f"  ~ {event.text.strip()[:200]}")
    elif isinstance(event, SlidePartialEvent):
        print(f"  [partial] {len(event.slide.blocks)} block(s)")
    elif isinstance(event, SlideEvent):
        print(f"  [slide] {event.slide.title or '(untitled)'}")
    elif isinstance(event, ErrorEvent):
        print(f"  ! {event.message}", file=sys.stderr)


def _print_node(node: SlideNode) -> None:
    slide = node.slide
    print()
    print(f"== {slide.title or '(untitled)'} ==  [{node.id}]")
    if slide.subtitle:
        print(f"   {slide.subtitle}")
    for block in slide.blocks:
        text = block.props.get("text") or block.props.get("content") or block.props.get("title") or ""
        if isinstance(text, str) and block.type != "jsx":
            print(f"   - {block.type}: {text[:100]}")
        else:
            print(f"   - {block.type}")
    for i, action in enumerate(slide.actions, 1):
        print(f"   ({i}) {action.label}")
    if node.main_child_id:
        print(f"   (c) continue -> {node.main_child_id}")
    else:
        print("   (c) continue")


def _make_launcher(args: argparse.Namespace):
    if args.remote:
        from slidegraph.api.client import SlidesClient

        return SlidesClient(args.remote)
    from slidegraph.engine.provider import GeminiModelClient
    from slidegraph.tools.web_search import WebSearcher

    return SlideEngine(GeminiModelClient(), WebSearcher())


def _open_store() -> SqliteStore:
    store = SqliteStore(config.SQLITE_PATH)
    store.init_db()
    return store


def cmd_generate(args: argparse.Namespace) -> int:
    launcher = _make_launcher(args)
    result = run_generation(launcher, args.prompt, [], _print_event)
    if result is None:
        return 1
    print(json.dumps(result.slide.to_wire(), indent=2))
    return 0


def cmd_explore(args: argparse.Namespace) -> int:
    store = _open_store()
    launcher = _make_launcher(args)
    coordinator = PregenCoordinator(launcher.generate, max_workers=config.PREGEN_WORKERS)
    session = SlideSession(store, launcher.generate, coordinator)
    try:
        node = session.start(args.prompt, _print_event)
        if node is None:
            return 1
        while True:
            _print_node(node)
            choice = input("> ").strip()
            if choice in ("q", "quit", ""):
                return 0
            if choice == "c":
                next_node = session.continue_(_print_event)
            elif choice.startswith("o "):
                try:
                    next_node = session.open(choice[2:].strip())
                except NotFound:
                    print("  ! no such slide", file=sys.stderr)
                    continue
            elif choice.isdigit() and 1 <= int(choice) <= len(node.slide.actions):
                next_node = session.act(node.slide.actions[int(choice) - 1].prompt, _print_event)
            else:
                print("  ? enter an action number, c, o <id> or q")
                continue
            if next_node is not None:
                node = next_node
    except (KeyboardInterrupt, EOFError):
        print()
        return 0
    finally:
        coordinator.shutdown()


def cmd_list(args: argparse.Namespace) -> int:
    store = _open_store()
    nodes = store.list_nodes()
    if not nodes:
        print("No slides yet.")
        return 0
    for n in nodes:
        parent = n["parentId"] or "-"
        print(f"{n['id']}  parent={parent:<36}  {n['title'] or '(untitled)'}")
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    store = _open_store()
    try:
        node = store.get_node(args.id)
    except NotFound:
        print(f"Error: no slide with id={args.id}.", file=sys.stderr)
        return 1
    if args.json:
        print(json.dumps(node.to_wire(), indent=2))
    else:
        _print_node(node)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate and explore branching slides")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument(
        "--remote",
        type=str,
        default=None,
        help="Generate on a running server (base URL) instead of calling the model directly",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("generate", help="Generate one slide and print it (not saved)")
    p.add_argument("prompt")
    p.set_defaults(func=cmd_generate)

    p = sub.add_parser("explore", help="Interactive exploration with pre-generation")
    p.add_argument("prompt")
    p.set_defaults(func=cmd_explore)

    p = sub.add_parser("list", help="List saved slides")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("show", help="Show one saved slide")
    p.add_argument("id")
    p.add_argument("--json", action="store_true", help="Print the full node as JSON")
    p.set_defaults(func=cmd_show)

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
