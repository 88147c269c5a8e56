#!/usr/bin/env python3
"""
Edit a YouTube gaming thumbnail in one shot.

Usage:
    thumbnail-editor --image thumb.png --remove "Creeper" --remove "Logo"
    thumbnail-editor --image thumb.png --box 100,50,200,150 --instruction "Make the sky red"
    thumbnail-editor --image thumb.png --box 400,100,300,300 --replacement steve.png
    thumbnail-editor --image thumb.png --enhance

Outputs go to data/output/ unless --output-dir is given.
Configuration: GEMINI_API_KEY in .env
"""

import argparse
import asyncio
import sys
from pathlib import Path

from .generator import GeminiEditService
from .images import read_image_file
from .orchestrator import EditOrchestrator
from .session import ThumbnailSession


def parse_box(value: str) -> tuple:
    try:
        x, y, w, h = (float(v) for v in value.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected x,y,width,height, got '{value}'")
    return x, y, w, h


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="AI edit a YouTube gaming thumbnail with Gemini"
    )
    parser.add_argument(
        "--image", "-i",
        type=str,
        required=True,
        help="Path to the thumbnail to edit"
    )
    parser.add_argument(
        "--remove", "-r",
        action="append",
        default=[],
        help="Name of a detected element to remove (repeatable)"
    )
    parser.add_argument(
        "--instruction", "-t",
        type=str,
        default="",
        help="Free-text edit instruction"
    )
    parser.add_argument(
        "--box", "-b",
        type=parse_box,
        default=None,
        help="Area to focus on, in image pixels: x,y,width,height"
    )
    parser.add_argument(
        "--replacement",
        type=str,
        default=None,
        help="Image to put in place of the selected area or object"
    )
    parser.add_argument(
        "--enhance", "-e",
        action="store_true",
        help="Auto-enhance after editing (or instead of it, if nothing is selected)"
    )
    parser.add_argument(
        "--output-dir", "-o",
        type=str,
        default=None,
        help="Output directory (default: data/output)"
    )
    return parser


async def run(args) -> int:
    session = ThumbnailSession(EditOrchestrator(GeminiEditService()), store=None)

    print(f"Analyzing {args.image}...")
    state = await session.upload_file(Path(args.image))
    if state.error:
        print(f"ERROR: {state.error}")
        return 1
    for element in state.detected_elements:
        print(f"  - {element.name} ({element.type.value})")

    for name in args.remove:
        if name not in {e.name for e in state.detected_elements}:
            print(f"  WARNING: '{name}' was not detected, asking for it anyway")
        session.toggle_element(name)
    if args.box:
        session.start_area_selection()
        session.select_area(*args.box)
    if args.instruction:
        session.set_custom_instruction(args.instruction)
    if args.replacement:
        session.set_replacement(await read_image_file(Path(args.replacement)))

    wants_edit = bool(args.remove or args.box or args.instruction or args.replacement)
    if wants_edit:
        print("Applying edits...")
        state = await session.apply_edit()
        if state.error:
            print(f"ERROR: {state.error}")
            return 1
        if state.removed_layer is None:
            print("  WARNING: Removed elements layer not available")

    if args.enhance:
        print("Enhancing...")
        state = await session.auto_enhance()
        if state.error:
            print(f"ERROR: {state.error}")
            return 1

    if not wants_edit and not args.enhance:
        print("Nothing to do. Pass --remove, --box, --instruction, --replacement or --enhance.")

    output_dir = Path(args.output_dir) if args.output_dir else None
    for slot, path in session.export(output_dir).items():
        print(f"  {slot}: {path}")
    return 0


def main():
    args = build_parser().parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
