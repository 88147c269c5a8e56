"""
Models - Plain records shared by the editor components.

DetectedElement, SelectionBox, SelectionSpec, SessionSnapshot and EditResult
are frozen dataclasses; EditableImage lives in images.py.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .images import EditableImage


class ElementType(str, Enum):
    CHARACTER = "character"
    OBJECT = "object"
    BACKGROUND = "background"
    TEXT = "text"
    MOB = "mob"
    UI = "ui"
    LOGO = "logo"

    @classmethod
    def parse(cls, value: str) -> "ElementType":
        """Map a model-supplied type string onto the enum, defaulting to object."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.OBJECT


@dataclass(frozen=True)
class DetectedElement:
    name: str
    type: ElementType

    def to_dict(self) -> dict:
        return {"name": self.name, "type": self.type.value}

    @classmethod
    def from_dict(cls, data: dict) -> "DetectedElement":
        return cls(name=str(data["name"]), type=ElementType.parse(data.get("type", "")))


@dataclass(frozen=True)
class SelectionBox:
    """Rectangle in the natural pixel space of the image it selects from."""

    x: float
    y: float
    width: float
    height: float

    def scaled(self, scale_x: float, scale_y: float) -> "SelectionBox":
        return SelectionBox(
            x=self.x * scale_x,
            y=self.y * scale_y,
            width=self.width * scale_x,
            height=self.height * scale_y,
        )

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: dict) -> "SelectionBox":
        return cls(
            x=data["x"], y=data["y"], width=data["width"], height=data["height"]
        )


@dataclass(frozen=True)
class SelectionSpec:
    selected_elements: Tuple[str, ...] = ()
    area: Optional[SelectionBox] = None
    custom_instruction: str = ""

    def is_actionable(self, has_replacement: bool = False) -> bool:
        """True when there is at least one thing for the edit to act on."""
        return bool(
            self.selected_elements
            or self.area is not None
            or self.custom_instruction.strip()
            or has_replacement
        )

    def extraction_text(self) -> str:
        """Text describing what the removed-elements layer should contain."""
        if self.selected_elements:
            return ", ".join(self.selected_elements)
        return self.custom_instruction.strip()


@dataclass(frozen=True)
class EditResult:
    edited: EditableImage
    removed_layer: Optional[EditableImage] = None


@dataclass(frozen=True)
class SessionSnapshot:
    """The part of a session that survives a restart."""

    original: Optional[EditableImage] = None
    edited: Optional[EditableImage] = None
    removed_layer: Optional[EditableImage] = None
    detected_elements: Tuple[DetectedElement, ...] = ()
    custom_instruction: str = ""
    selected_elements: Tuple[str, ...] = ()
    selection: Optional[SelectionBox] = None

    def to_dict(self) -> dict:
        def uri(image):
            return image.to_data_uri() if image is not None else None

        return {
            "original": uri(self.original),
            "edited": uri(self.edited),
            "removed_layer": uri(self.removed_layer),
            "detected_elements": [e.to_dict() for e in self.detected_elements],
            "custom_instruction": self.custom_instruction,
            "selected_elements": list(self.selected_elements),
            "selection": self.selection.to_dict() if self.selection else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionSnapshot":
        if not isinstance(data, dict):
            raise ValueError(f"Expected a session object, got {type(data).__name__}")

        def image(key):
            value = data.get(key)
            return EditableImage.from_data_uri(value) if value else None

        selection = data.get("selection")
        return cls(
            original=image("original"),
            edited=image("edited"),
            removed_layer=image("removed_layer"),
            detected_elements=tuple(
                DetectedElement.from_dict(e) for e in data.get("detected_elements") or []
            ),
            custom_instruction=data.get("custom_instruction") or "",
            selected_elements=tuple(data.get("selected_elements") or []),
            selection=SelectionBox.from_dict(selection) if selection else None,
        )
