"""
Edit Orchestrator - Sequences service calls for analyze, edit and enhance.

apply_edit runs the primary edit and the best-effort layer extraction as two
tasks and joins them into one EditResult. Only the primary edit can fail the
operation; the extraction side resolves to None on any error.
"""

import asyncio
import sys
from typing import List, Optional

from .chroma_key import remove_green_screen
from .errors import ExtractionError, ValidationError, translate_error
from .generator import EditService
from .images import EditableImage, image_size
from .instruction import build_instruction
from .models import DetectedElement, EditResult, SelectionSpec

VALIDATION_MESSAGE = "Please select an element, area, or provide a replacement image."


class EditOrchestrator:
    def __init__(self, service: EditService):
        self.service = service

    async def analyze_elements(self, image: EditableImage) -> List[DetectedElement]:
        try:
            return await self.service.analyze(image)
        except Exception as e:
            print(f"  ERROR: Analysis failure: {e}", file=sys.stderr)
            raise translate_error(e) from e

    async def apply_edit(
        self,
        image: EditableImage,
        selection: SelectionSpec,
        replacement: Optional[EditableImage] = None,
    ) -> EditResult:
        """
        Edit `image` according to `selection`.

        Raises ValidationError (before any network call) when there is
        nothing to act on, and TransportError when the edit itself fails.
        """
        if not selection.is_actionable(has_replacement=replacement is not None):
            raise ValidationError(VALIDATION_MESSAGE)

        size = image_size(image) if selection.area is not None else None
        instruction = build_instruction(selection, size, has_replacement=replacement is not None)
        print(f"  Instruction: {instruction[:100]}", file=sys.stderr)

        layer_task = asyncio.create_task(self._extract_layer(image, selection.extraction_text()))
        try:
            edited = await self.service.edit(image, instruction, replacement)
        except Exception as e:
            layer_task.cancel()
            print(f"  ERROR: Editing failure: {e}", file=sys.stderr)
            raise translate_error(e) from e

        removed_layer = await layer_task
        return EditResult(edited=edited, removed_layer=removed_layer)

    async def _extract_layer(self, image: EditableImage, text: str) -> Optional[EditableImage]:
        """Green-screen extraction plus chroma key. Never raises."""
        if not text:
            return None
        try:
            green = await self.service.extract(image, text)
            return await remove_green_screen(green)
        except Exception as e:
            error = ExtractionError(str(e))
            print(f"  WARNING: Layer extraction failed, continuing with main edit: {error}", file=sys.stderr)
            return None

    async def auto_enhance(self, image: EditableImage) -> EditableImage:
        try:
            return await self.service.enhance(image)
        except Exception as e:
            print(f"  ERROR: Enhancement failure: {e}", file=sys.stderr)
            raise translate_error(e) from e
