"""
Generator - Gemini wrapper for thumbnail analysis and image editing.

Four calls, all async through google-genai's `client.aio`:
  - analyze: structured JSON list of detected elements (text model)
  - edit:    apply an instruction, optionally with a replacement image
  - extract: isolate elements on a solid #00FF00 background
  - enhance: colour/lighting polish without structural changes

Every failure leaves this module as a TransportError with a readable message.
"""

import asyncio
import json
import sys
from typing import List, Optional, Protocol

from . import config
from .errors import TransportError, classify_error, translate_error
from .images import EditableImage
from .models import DetectedElement, ElementType

# ── Prompts ───────────────────────────────────────────────────────────

ANALYSIS_PROMPT = (
    "Analyze this YouTube gaming thumbnail. Identify all visible major elements like "
    "characters, players, mobs, text overlays, specific weapons/tools, background "
    "elements, UI elements, and logos.\n"
    "Return the list of detected elements in a structured JSON format.\n"
    "Each element must have a 'name' (descriptive) and a 'type' (one of: 'character', "
    "'object', 'background', 'text', 'mob', 'ui', 'logo')."
)

EDIT_PROMPT = """You are a professional AI image editor specialized in YouTube gaming thumbnails.
ACTION: {instruction}

CONSTRAINTS:
- Maintain the 16:9 aspect ratio perfectly.
- Inpaint the background realistically behind removed elements.
- Preserve lighting, shadows, and cinematic gaming aesthetic.
- Upscale output to high quality (1920x1080 resolution).
- Do not add new hallucinated objects.
- Keep the image sharp and clear."""

REPLACEMENT_SUFFIX = (
    "\n\nREPLACEMENT TASK: Use the second provided image (the replacement object/person) "
    "to replace the specified area or object in the first image. Ensure the replacement "
    "blends naturally with the lighting and perspective of the original thumbnail."
)

EXTRACT_PROMPT = """Task: Extract ONLY the specified elements and place them on a solid PURE GREEN (#00FF00) background.
ELEMENTS TO EXTRACT: {instruction}

RULES:
- Keep the elements in their EXACT original positions relative to the 16:9 frame.
- The background must be 100% solid #00FF00 green.
- Do not include any environment, shadows on the ground, or lighting from the original background.
- Ensure high fidelity extraction."""

ENHANCE_PROMPT = """You are a professional YouTube thumbnail designer.
TASK: Auto-enhance this gaming thumbnail to make it look professional, vibrant, and eye-catching.

ADJUSTMENTS:
- Optimize brightness and contrast for high visibility.
- Boost color saturation to make it "pop" without looking artificial.
- Improve sharpness and clarity, especially on focal points.
- Balance the levels to ensure a cinematic gaming aesthetic.

CONSTRAINTS:
- Maintain the 16:9 aspect ratio.
- Do not add or remove any objects.
- Output high resolution (1920x1080)."""


class EditService(Protocol):
    """What the orchestrator needs from a generative backend."""

    async def analyze(self, image: EditableImage) -> List[DetectedElement]: ...

    async def edit(
        self,
        image: EditableImage,
        instruction: str,
        replacement: Optional[EditableImage] = None,
    ) -> EditableImage: ...

    async def extract(self, image: EditableImage, instruction: str) -> EditableImage: ...

    async def enhance(self, image: EditableImage) -> EditableImage: ...


def _get_client():
    """Get Gemini client."""
    from google import genai
    if not config.GEMINI_API_KEY:
        raise ValueError("GEMINI_API_KEY not found in .env")
    return genai.Client(api_key=config.GEMINI_API_KEY)


def _image_part(image: EditableImage):
    from google.genai import types
    return types.Part.from_bytes(data=image.data, mime_type=image.mime_type)


def _first_image(response, empty_message: str) -> EditableImage:
    """Pull the first inline image out of a generate_content response."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        raise RuntimeError(empty_message)
    candidate = candidates[0]
    content = getattr(candidate, "content", None)
    parts = getattr(content, "parts", None) or []
    if not parts:
        finish = getattr(candidate, "finish_reason", None)
        if finish is not None and "SAFETY" in str(getattr(finish, "name", finish)):
            raise RuntimeError("SAFETY")
        raise RuntimeError(empty_message)
    for part in parts:
        blob = getattr(part, "inline_data", None)
        if blob is not None and blob.data:
            return EditableImage(data=blob.data, mime_type=blob.mime_type or "image/png")
    raise RuntimeError("No image data found in the AI response.")


class GeminiEditService:
    """EditService backed by the Gemini API."""

    def __init__(
        self,
        client=None,
        analysis_model: Optional[str] = None,
        image_model: Optional[str] = None,
        retry_count: Optional[int] = None,
        retry_wait: Optional[float] = None,
    ):
        self._client = client
        self.analysis_model = analysis_model or config.ANALYSIS_MODEL
        self.image_model = image_model or config.IMAGE_MODEL
        self.retry_count = max(1, retry_count if retry_count is not None else config.RETRY_COUNT)
        self.retry_wait = config.RETRY_WAIT_SECONDS if retry_wait is None else retry_wait

    @property
    def client(self):
        if self._client is None:
            self._client = _get_client()
        return self._client

    async def _generate(self, label: str, model: str, contents: list, gen_config):
        """generate_content with retries on capacity errors only."""
        for attempt in range(self.retry_count):
            try:
                print(f"  {label} (attempt {attempt + 1}/{self.retry_count})...", file=sys.stderr)
                return await self.client.aio.models.generate_content(
                    model=model, contents=contents, config=gen_config,
                )
            except Exception as e:
                error_msg = str(e)
                print(f"  ERROR: {error_msg[:150]}", file=sys.stderr)
                retryable = classify_error(error_msg) == "overloaded" or "capacity" in error_msg.lower()
                if not retryable or attempt == self.retry_count - 1:
                    raise translate_error(e) from e
                wait = self.retry_wait * (attempt + 1)
                print(f"  Waiting {wait:.0f}s before retry...", file=sys.stderr)
                await asyncio.sleep(wait)

    def _image_config(self):
        from google.genai import types
        image_kwargs = {"aspect_ratio": config.ASPECT_RATIO}
        if config.IMAGE_SIZE:
            image_kwargs["image_size"] = config.IMAGE_SIZE
        return types.GenerateContentConfig(
            response_modalities=["IMAGE"],
            image_config=types.ImageConfig(**image_kwargs),
        )

    async def _image_call(self, label: str, contents: list, empty_message: str) -> EditableImage:
        response = await self._generate(label, self.image_model, contents, self._image_config())
        try:
            return _first_image(response, empty_message)
        except RuntimeError as e:
            raise translate_error(e) from e

    async def analyze(self, image: EditableImage) -> List[DetectedElement]:
        from google.genai import types

        schema = types.Schema(
            type=types.Type.OBJECT,
            properties={
                "detected_elements": types.Schema(
                    type=types.Type.ARRAY,
                    items=types.Schema(
                        type=types.Type.OBJECT,
                        properties={
                            "name": types.Schema(type=types.Type.STRING),
                            "type": types.Schema(
                                type=types.Type.STRING,
                                enum=[t.value for t in ElementType],
                            ),
                        },
                        required=["name", "type"],
                    ),
                ),
            },
        )
        response = await self._generate(
            "Analyzing thumbnail",
            self.analysis_model,
            [_image_part(image), ANALYSIS_PROMPT],
            types.GenerateContentConfig(
                response_mime_type="application/json", response_schema=schema,
            ),
        )
        if not response.text:
            raise TransportError("The model returned an empty analysis result.")
        try:
            payload = json.loads(response.text)
        except json.JSONDecodeError as e:
            raise translate_error(e) from e
        elements = [
            DetectedElement.from_dict(item)
            for item in payload.get("detected_elements") or []
            if isinstance(item, dict) and item.get("name")
        ]
        print(f"  Detected {len(elements)} element(s)", file=sys.stderr)
        return elements

    async def edit(
        self,
        image: EditableImage,
        instruction: str,
        replacement: Optional[EditableImage] = None,
    ) -> EditableImage:
        prompt = EDIT_PROMPT.format(instruction=instruction)
        contents = [_image_part(image)]
        if replacement is not None:
            prompt += REPLACEMENT_SUFFIX
            contents.append(_image_part(replacement))
        contents.append(prompt)
        return await self._image_call(
            "Editing thumbnail", contents,
            "The model failed to generate an edited image for this request.",
        )

    async def extract(self, image: EditableImage, instruction: str) -> EditableImage:
        prompt = EXTRACT_PROMPT.format(instruction=instruction)
        return await self._image_call(
            "Extracting elements layer", [_image_part(image), prompt],
            "Could not extract elements layer.",
        )

    async def enhance(self, image: EditableImage) -> EditableImage:
        return await self._image_call(
            "Enhancing thumbnail", [_image_part(image), ENHANCE_PROMPT],
            "The model failed to enhance the image.",
        )
