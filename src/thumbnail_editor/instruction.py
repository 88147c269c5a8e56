"""
Instruction Builder - Composes the ACTION text sent with an edit request.

The model is sensitive to clause order, so clauses always serialize as:
  1. remove selected elements
  2. bounding box focus (normalized 0-1000)
  3. custom instruction
  4. replacement directive
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .models import SelectionBox, SelectionSpec

NORMALIZED_SCALE = 1000


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalize_box(box: SelectionBox, width: float, height: float) -> Tuple[int, int, int, int]:
    """Map a pixel box to Gemini's [ymin, xmin, ymax, xmax] on a 0-1000 scale."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Image dimensions must be positive, got {width}x{height}")
    return (
        _round_half_up(box.y / height * NORMALIZED_SCALE),
        _round_half_up(box.x / width * NORMALIZED_SCALE),
        _round_half_up((box.y + box.height) / height * NORMALIZED_SCALE),
        _round_half_up((box.x + box.width) / width * NORMALIZED_SCALE),
    )


@dataclass(frozen=True)
class RemoveElementsClause:
    order = 1
    elements: Tuple[str, ...]

    def render(self) -> str:
        return f"Remove the following elements: {', '.join(self.elements)}. "


@dataclass(frozen=True)
class BoundingBoxClause:
    order = 2
    box: Tuple[int, int, int, int]

    def render(self) -> str:
        ymin, xmin, ymax, xmax = self.box
        return f"Focus on the area defined by bounding box [{ymin}, {xmin}, {ymax}, {xmax}]. "


@dataclass(frozen=True)
class CustomInstructionClause:
    order = 3
    text: str

    def render(self) -> str:
        return self.text


@dataclass(frozen=True)
class ReplacementClause:
    order = 4

    def render(self) -> str:
        return " Replace the selected area or object with the provided replacement image. "


class InstructionBuilder:
    """Collects clauses in any order and renders them in the fixed order."""

    def __init__(self):
        self._clauses: List = []

    def add(self, clause) -> "InstructionBuilder":
        self._clauses.append(clause)
        return self

    @property
    def clauses(self) -> list:
        return sorted(self._clauses, key=lambda c: c.order)

    def build(self) -> str:
        return "".join(c.render() for c in self.clauses)


def build_instruction(
    selection: SelectionSpec,
    image_size: Optional[Sequence[float]] = None,
    has_replacement: bool = False,
) -> str:
    """
    Build the edit instruction for a selection.

    `image_size` is the natural (width, height) of the image being edited
    and is required when the selection has an area.
    """
    builder = InstructionBuilder()
    if selection.selected_elements:
        builder.add(RemoveElementsClause(tuple(selection.selected_elements)))
    if selection.area is not None:
        if image_size is None:
            raise ValueError("image_size is required to normalize an area selection")
        builder.add(BoundingBoxClause(normalize_box(selection.area, *image_size)))
    if selection.custom_instruction.strip():
        builder.add(CustomInstructionClause(selection.custom_instruction.strip()))
    if has_replacement:
        builder.add(ReplacementClause())
    return builder.build()
