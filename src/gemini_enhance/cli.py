"""Command-line entry point.

``gemini-enhance enhance chapter.txt`` enhances a file and writes the result;
``gemini-enhance config`` prints the effective configuration with keys
redacted.
"""

import argparse
import asyncio
import json
import logging
from pathlib import Path
import sys

from gemini_enhance.config import resolve_config
from gemini_enhance.core.types import (
    RunCancelled,
    RunCompleted,
    RunEvent,
    SegmentError,
    SegmentProcessed,
)
from gemini_enhance.exceptions import GeminiEnhanceError
from gemini_enhance.frontdoor import enhance_chapter

# ruff: noqa: T201


def _print_event(event: RunEvent) -> None:
    match event:
        case SegmentProcessed():
            print(
                f"[{event.progress_percent:3d}%] Segment {event.index + 1}/{event.total} enhanced",
                file=sys.stderr,
            )
        case SegmentError(final_failure=True):
            print(
                f"❌ Segment {event.index + 1}/{event.total} failed: {event.message}",
                file=sys.stderr,
            )
        case SegmentError():
            wait = f", waiting {event.wait_ms / 1000:.0f}s" if event.wait_ms else ""
            print(
                f"⚠️  Segment {event.index + 1}/{event.total} retry {event.retry_count}"
                f"{wait}: {event.message}",
                file=sys.stderr,
            )
        case RunCompleted():
            print(
                f"Done: {event.succeeded_count}/{event.total} segments enhanced",
                file=sys.stderr,
            )
        case RunCancelled():
            print(
                f"Cancelled: {event.processed_count} processed, "
                f"{event.remaining_count} remaining",
                file=sys.stderr,
            )


def _cmd_enhance(args: argparse.Namespace) -> int:
    path = Path(args.file)
    try:
        raw_text = path.read_text(encoding="utf-8")
    except OSError as e:
        print(f"❌ Cannot read {path}: {e}", file=sys.stderr)
        return 1

    try:
        cfg = resolve_config(profile=args.profile)
        result = asyncio.run(
            enhance_chapter(
                args.title or path.stem,
                raw_text,
                cfg=cfg,
                listener=_print_event,
                use_emoji_annotations=args.emoji,
                site_context_prompt=args.site_prompt,
                force_chunking=args.force_chunking,
            )
        )
    except GeminiEnhanceError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    text = result.enhanced_text()
    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
    else:
        print(text)

    for outcome in result.failed:
        print(f"  - segment {outcome.index + 1}: {outcome.error}", file=sys.stderr)
    return 0 if result.is_complete else 1


def _cmd_config(args: argparse.Namespace) -> int:
    try:
        cfg = resolve_config(profile=args.profile)
    except GeminiEnhanceError as e:
        print(f"❌ Configuration Error: {e}", file=sys.stderr)
        return 1

    values = cfg.to_redacted_dict()
    if args.json:
        print(json.dumps(values, indent=2))
        return 0

    print("=== Effective Configuration ===")
    for key, value in values.items():
        print(f"  {key}: {value} ({cfg.origin.get(key, 'default')})")
    print(f"  endpoint (effective): {cfg.effective_endpoint}")
    if not cfg.all_keys:
        print("\n⚠️  No API key configured - enhancement will refuse to start")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gemini-enhance",
        description="Enhance long documents with Gemini, one segment at a time",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    enhance = sub.add_parser("enhance", help="Enhance a text file")
    enhance.add_argument("file", help="Path of the text to enhance")
    enhance.add_argument("--title", help="Document title (defaults to file name)")
    enhance.add_argument(
        "--emoji", action="store_true", help="Annotate dialogue with emojis"
    )
    enhance.add_argument(
        "--site-prompt", default="", help="Extra context about the source site"
    )
    enhance.add_argument(
        "--force-chunking",
        action="store_true",
        help="Split using the configured chunk size even for large-context models",
    )
    enhance.add_argument("-o", "--output", help="Write the result here instead of stdout")
    enhance.add_argument("--profile", help="Configuration profile to use")
    enhance.set_defaults(handler=_cmd_enhance)

    config = sub.add_parser("config", help="Show the effective configuration")
    config.add_argument(
        "--json", action="store_true", help="Output as JSON instead of text"
    )
    config.add_argument("--profile", help="Configuration profile to use")
    config.set_defaults(handler=_cmd_config)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
