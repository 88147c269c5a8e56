"""
Images - Encoded image handles and the Pillow-backed pixel codec.

EditableImage is what flows through the session: encoded bytes plus a mime
type, convertible to and from data URIs. The codec functions turn those
bytes into an (H, W, 4) uint8 RGBA numpy array and back.
"""

import asyncio
import base64
import binascii
import mimetypes
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import DecodeError

FORMAT_MIME = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
}


@dataclass(frozen=True)
class EditableImage:
    data: bytes
    mime_type: str = "image/png"

    def __repr__(self) -> str:
        return f"EditableImage({self.mime_type}, {len(self.data)} bytes)"

    @property
    def b64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.b64}"

    @classmethod
    def from_data_uri(cls, uri: str) -> "EditableImage":
        """Parse `data:<mime>;base64,<payload>`. Bare base64 is read as PNG."""
        if uri.startswith("data:"):
            header, _, payload = uri.partition(",")
            mime_type = header[5:].split(";")[0] or "image/png"
        else:
            payload, mime_type = uri, "image/png"
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 image payload: {e}") from e
        return cls(data=data, mime_type=mime_type)

    @classmethod
    def from_path(cls, path: Path) -> "EditableImage":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Image not found: {path}")
        mime_type = mimetypes.guess_type(path.name)[0] or "image/png"
        return cls(data=path.read_bytes(), mime_type=mime_type)


async def read_image_file(path: Path) -> EditableImage:
    """Read an upload from disk without blocking the event loop."""
    return await asyncio.to_thread(EditableImage.from_path, path)


def _open(data: bytes) -> Image.Image:
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise DecodeError(f"Failed to load image: {e}") from e
    return img


def decode_pixels(data: bytes) -> np.ndarray:
    """Decode encoded image bytes into an (H, W, 4) uint8 RGBA array."""
    img = _open(data)
    return np.array(img.convert("RGBA"), dtype=np.uint8)


async def decode_pixels_async(data: bytes, timeout: float) -> np.ndarray:
    """decode_pixels in a worker thread, bounded by `timeout` seconds."""
    try:
        return await asyncio.wait_for(asyncio.to_thread(decode_pixels, data), timeout)
    except asyncio.TimeoutError as e:
        raise DecodeError("Image processing timed out") from e


def encode_pixels(pixels: np.ndarray, fmt: str = "PNG") -> bytes:
    """Encode an (H, W, 4) RGBA array. JPEG drops the alpha channel."""
    img = Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8), "RGBA")
    if fmt.upper() == "JPEG":
        img = img.convert("RGB")
    buf = BytesIO()
    img.save(buf, fmt.upper())
    return buf.getvalue()


def encode_image(pixels: np.ndarray, fmt: str = "PNG") -> EditableImage:
    return EditableImage(data=encode_pixels(pixels, fmt), mime_type=FORMAT_MIME[fmt.upper()])


def image_size(image: EditableImage) -> Tuple[int, int]:
    """Natural (width, height) of an encoded image."""
    return _open(image.data).size


def crop_image(
    image: EditableImage,
    x: float,
    y: float,
    width: float,
    height: float,
    rendered_size: Optional[Tuple[float, float]] = None,
) -> EditableImage:
    """
    Crop a rectangle out of `image` and return it as a JPEG.

    The rectangle is in rendered coordinates when `rendered_size` is given
    (the size the image was displayed at while the user dragged the crop),
    otherwise in natural pixels. Output keeps natural resolution.
    """
    img = _open(image.data)
    nat_w, nat_h = img.size
    scale_x, scale_y = 1.0, 1.0
    if rendered_size:
        scale_x = nat_w / rendered_size[0]
        scale_y = nat_h / rendered_size[1]

    left = max(0, round(x * scale_x))
    top = max(0, round(y * scale_y))
    right = min(nat_w, round((x + width) * scale_x))
    bottom = min(nat_h, round((y + height) * scale_y))
    if right <= left or bottom <= top:
        raise ValueError(f"Crop rectangle is empty: ({x}, {y}, {width}, {height})")

    cropped = img.convert("RGB").crop((left, top, right, bottom))
    buf = BytesIO()
    cropped.save(buf, "JPEG", quality=92)
    return EditableImage(data=buf.getvalue(), mime_type="image/jpeg")
