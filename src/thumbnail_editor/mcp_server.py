#!/usr/bin/env python3
"""
Smart Thumbnail - MCP Server
============================
Model Context Protocol server exposing one thumbnail editing session as
MCP tools.

Tools:
  - session_status: Current phase, detected elements, selections, error
  - upload_image: Load a thumbnail from disk and detect its elements
  - crop_image: Crop the current thumbnail and re-detect elements
  - select_area: Focus the next edit on a rectangle
  - clear_area: Drop the area selection
  - toggle_element: Select/deselect a detected element for removal
  - set_instruction: Free-text edit instruction
  - set_replacement: Image to paste in place of the selection
  - clear_replacement: Drop the replacement image
  - apply_edits: Run the AI edit (+ removed elements layer)
  - auto_enhance: AI colour/lighting enhancement
  - export_assets: Write original / edited / removed layer PNGs
  - dismiss_error: Clear the current error message
  - reset_session: Clear everything, including the saved session

Run: thumbnail-editor-mcp
"""

import json
from pathlib import Path
from typing import Any, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from .generator import GeminiEditService
from .orchestrator import EditOrchestrator
from .session import ThumbnailSession
from .session_store import SessionStore

_session: Optional[ThumbnailSession] = None


def get_session() -> ThumbnailSession:
    global _session
    if _session is None:
        _session = ThumbnailSession(
            EditOrchestrator(GeminiEditService()), store=SessionStore(),
        )
    return _session


def set_session(session: Optional[ThumbnailSession]) -> None:
    global _session
    _session = session


_RECT_PROPERTIES = {
    "x": {"type": "number", "description": "Left edge in pixels"},
    "y": {"type": "number", "description": "Top edge in pixels"},
    "width": {"type": "number", "description": "Width in pixels"},
    "height": {"type": "number", "description": "Height in pixels"},
    "rendered_width": {
        "type": "number",
        "description": "Width the image was displayed at, if coordinates are in display space",
    },
    "rendered_height": {
        "type": "number",
        "description": "Height the image was displayed at, if coordinates are in display space",
    },
}


def _rendered_size(args: dict) -> Optional[tuple]:
    if args.get("rendered_width") and args.get("rendered_height"):
        return (float(args["rendered_width"]), float(args["rendered_height"]))
    return None


def _status_text(title: str, session: ThumbnailSession) -> str:
    state = session.state
    lines = [title, "", json.dumps(state.summary(), indent=2, ensure_ascii=False)]
    if state.error:
        lines.append(f"\nERROR: {state.error}")
    return "\n".join(lines)


# ─── MCP Server ───────────────────────────────────────────────────────

app = Server("smart-thumbnail")


@app.list_tools()
async def list_tools() -> list[Tool]:
    return [
        Tool(
            name="session_status",
            description=(
                "Show the editing session: phase (empty, analyzing, ready, cropping, "
                "selecting_area, editing, enhancing), detected elements, selections and "
                "any error. CALL THIS FIRST."
            ),
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        Tool(
            name="upload_image",
            description=(
                "Load a thumbnail image from disk. Clears previous edits, layers and "
                "detected elements, then runs AI element detection."
            ),
            inputSchema={
                "type": "object",
                "properties": {"path": {"type": "string", "description": "Path to the image file"}},
                "required": ["path"],
            },
        ),
        Tool(
            name="crop_image",
            description=(
                "Crop the current thumbnail. The crop becomes the new original and is "
                "re-analyzed; previous edits are discarded."
            ),
            inputSchema={
                "type": "object",
                "properties": _RECT_PROPERTIES,
                "required": ["x", "y", "width", "height"],
            },
        ),
        Tool(
            name="select_area",
            description="Select a rectangle of the thumbnail for the next edit to focus on.",
            inputSchema={
                "type": "object",
                "properties": _RECT_PROPERTIES,
                "required": ["x", "y", "width", "height"],
            },
        ),
        Tool(
            name="clear_area",
            description="Remove the area selection.",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        Tool(
            name="toggle_element",
            description="Select or deselect a detected element (by name) for removal.",
            inputSchema={
                "type": "object",
                "properties": {"name": {"type": "string", "description": "Element name"}},
                "required": ["name"],
            },
        ),
        Tool(
            name="set_instruction",
            description="Set the free-text edit instruction (empty string clears it).",
            inputSchema={
                "type": "object",
                "properties": {"text": {"type": "string"}},
                "required": ["text"],
            },
        ),
        Tool(
            name="set_replacement",
            description="Use an image from disk to replace the selected area or object.",
            inputSchema={
                "type": "object",
                "properties": {"path": {"type": "string", "description": "Path to the image file"}},
                "required": ["path"],
            },
        ),
        Tool(
            name="clear_replacement",
            description="Remove the replacement image.",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        Tool(
            name="apply_edits",
            description=(
                "Apply the selected removals, area focus, instruction and replacement with "
                "Gemini. Also extracts the removed elements as a transparent layer when possible."
            ),
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        Tool(
            name="auto_enhance",
            description="AI-enhance brightness, contrast, saturation and sharpness of the latest image.",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        Tool(
            name="export_assets",
            description="Write original, edited and removed-layer PNGs to a directory.",
            inputSchema={
                "type": "object",
                "properties": {
                    "output_dir": {"type": "string", "description": "Directory (default: data/output)"},
                },
                "required": [],
            },
        ),
        Tool(
            name="dismiss_error",
            description="Clear the current error message.",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        Tool(
            name="reset_session",
            description="Clear all images, selections and the saved session.",
            inputSchema={
                "type": "object",
                "properties": {
                    "confirm": {"type": "boolean", "description": "Must be true to confirm reset"},
                },
                "required": ["confirm"],
            },
        ),
    ]


@app.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    try:
        result = await _handle_tool(name, arguments or {})
        return [TextContent(type="text", text=result)]
    except Exception as e:
        return [TextContent(type="text", text=f"ERROR: {str(e)}")]


async def _handle_tool(name: str, args: dict[str, Any]) -> str:
    session = get_session()

    # ── session_status ────────────────────────────────────────
    if name == "session_status":
        return _status_text("THUMBNAIL SESSION:", session)

    # ── upload_image ──────────────────────────────────────────
    elif name == "upload_image":
        path = args.get("path", "")
        if not path:
            return "ERROR: path is required"
        await session.upload_file(Path(path))
        return _status_text("Image uploaded and analyzed!", session)

    # ── crop_image ────────────────────────────────────────────
    elif name == "crop_image":
        session.start_crop()
        try:
            await session.complete_crop(
                args["x"], args["y"], args["width"], args["height"], _rendered_size(args),
            )
        except Exception:
            if session.state.is_cropping:
                session.cancel_crop()
            raise
        return _status_text("Image cropped and re-analyzed!", session)

    # ── select_area ───────────────────────────────────────────
    elif name == "select_area":
        session.start_area_selection()
        try:
            session.select_area(
                args["x"], args["y"], args["width"], args["height"], _rendered_size(args),
            )
        except Exception:
            if session.state.is_selecting_area:
                session.cancel_area_selection()
            raise
        return _status_text("Area selected!", session)

    elif name == "clear_area":
        session.clear_area()
        return _status_text("Area selection cleared.", session)

    # ── toggle_element ────────────────────────────────────────
    elif name == "toggle_element":
        element = args.get("name", "")
        if not element:
            return "ERROR: name is required"
        known = {e.name for e in session.state.detected_elements}
        if element not in known and element not in session.state.selected_elements:
            return f"ERROR: Unknown element '{element}'. Detected: {sorted(known)}"
        session.toggle_element(element)
        return _status_text(f"Toggled '{element}'.", session)

    elif name == "set_instruction":
        session.set_custom_instruction(args.get("text", ""))
        return _status_text("Instruction updated.", session)

    # ── replacement ───────────────────────────────────────────
    elif name == "set_replacement":
        from .images import read_image_file

        path = args.get("path", "")
        if not path:
            return "ERROR: path is required"
        session.set_replacement(await read_image_file(Path(path)))
        return _status_text("Replacement image set.", session)

    elif name == "clear_replacement":
        session.clear_replacement()
        return _status_text("Replacement image cleared.", session)

    # ── apply_edits ───────────────────────────────────────────
    elif name == "apply_edits":
        state = await session.apply_edit()
        if state.error:
            return _status_text("Edit failed.", session)
        layer = "with" if state.removed_layer else "without"
        return _status_text(
            f"Edits applied ({layer} removed elements layer)!\n"
            f"Next: export_assets, auto_enhance, or more edits.",
            session,
        )

    # ── auto_enhance ──────────────────────────────────────────
    elif name == "auto_enhance":
        state = await session.auto_enhance()
        if state.error:
            return _status_text("Enhancement failed.", session)
        return _status_text("Thumbnail enhanced!\nNext: export_assets.", session)

    # ── export_assets ─────────────────────────────────────────
    elif name == "export_assets":
        output_dir = args.get("output_dir")
        written = session.export(Path(output_dir) if output_dir else None)
        if not written:
            return "Nothing to export. Upload an image first with upload_image."
        lines = ["Assets exported:"]
        lines += [f"  {slot}: {path}" for slot, path in written.items()]
        return "\n".join(lines)

    elif name == "dismiss_error":
        session.dismiss_error()
        return _status_text("Error dismissed.", session)

    # ── reset_session ─────────────────────────────────────────
    elif name == "reset_session":
        if not args.get("confirm"):
            return "ERROR: Must pass confirm=true to reset. This discards all images and edits."
        session.reset()
        return "Session reset. Upload a new image to start."

    else:
        return f"ERROR: Unknown tool '{name}'"


# ─── Main ─────────────────────────────────────────────────────────────

async def main():
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())


def run():
    import asyncio
    asyncio.run(main())


if __name__ == "__main__":
    run()
