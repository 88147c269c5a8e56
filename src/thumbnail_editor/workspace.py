"""
Workspace - Output directory layout and asset export.

Exports whichever image slots are filled as PNG files:
  original_thumbnail.png, smart_thumbnail_edited.png, removed_elements_layer.png
"""

import sys
from io import BytesIO
from pathlib import Path
from typing import Optional

from PIL import Image

from . import config

EXPORT_NAMES = {
    "original": "original_thumbnail.png",
    "edited": "smart_thumbnail_edited.png",
    "removed_layer": "removed_elements_layer.png",
}


def _save_png(data: bytes, path: Path) -> None:
    img = Image.open(BytesIO(data))
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA")
    img.save(str(path), "PNG")


def export_assets(snapshot, output_dir: Optional[Path] = None) -> dict:
    """Write the filled image slots of a snapshot. Returns {slot: path}."""
    output_dir = Path(output_dir) if output_dir else config.OUTPUT_DIR
    output_dir.mkdir(parents=True, exist_ok=True)

    written = {}
    for slot, filename in EXPORT_NAMES.items():
        image = getattr(snapshot, slot)
        if image is None:
            continue
        path = output_dir / filename
        _save_png(image.data, path)
        print(f"  Saved: {path.name}", file=sys.stderr)
        written[slot] = str(path)
    return written
