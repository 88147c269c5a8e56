"""
Chroma Key - Turns a model-generated green screen into transparency.

The extraction prompt asks Gemini for the removed elements on a solid
#00FF00 background. A pixel counts as background when its green channel is
bright and clearly dominates red and blue:

    g > 100 and g > 1.2 * r and g > 1.2 * b

There is no tolerance band and no feathering, so green spill on subject
edges is left as-is and can show as a hard or fringed outline.
"""

import sys
from typing import Optional

import numpy as np

from . import config
from .errors import DecodeError
from .images import EditableImage, decode_pixels_async, encode_image

GREEN_MIN = 100
DOMINANCE = 1.2


def green_screen_mask(pixels: np.ndarray) -> np.ndarray:
    """Boolean (H, W) mask of pixels classified as green background."""
    rgb = pixels[..., :3].astype(np.float64)
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    return (g > GREEN_MIN) & (g > r * DOMINANCE) & (g > b * DOMINANCE)


def apply_chroma_key(pixels: np.ndarray) -> np.ndarray:
    """Return a copy of an RGBA array with green background alpha set to 0."""
    keyed = pixels.copy()
    keyed[green_screen_mask(pixels), 3] = 0
    return keyed


async def remove_green_screen(
    image: EditableImage, timeout: Optional[float] = None
) -> EditableImage:
    """
    Key out the green background of `image` and return a PNG.

    Falls back to returning `image` untouched if it cannot be decoded
    (including a decode slower than `timeout`) or the result cannot be
    encoded. Never raises.
    """
    timeout = config.DECODE_TIMEOUT if timeout is None else timeout
    try:
        pixels = await decode_pixels_async(image.data, timeout)
    except DecodeError as e:
        print(f"  WARNING: Chroma key skipped, {e}", file=sys.stderr)
        return image

    keyed = apply_chroma_key(pixels)
    try:
        return encode_image(keyed, "PNG")
    except (OSError, ValueError) as e:
        print(f"  WARNING: Chroma key encode failed, keeping original: {e}", file=sys.stderr)
        return image
