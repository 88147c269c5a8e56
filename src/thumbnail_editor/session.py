"""
Session - Editing state machine and the object that owns it.

State is an immutable SessionState. Every change goes through
`reduce(state, action)`, which returns a new state or raises
InvalidTransitionError when the action is not allowed in the current phase.

ThumbnailSession holds the current state, runs the async operations through
the EditOrchestrator and persists a snapshot after every change.

Network results carry the image `version` they were requested against.
Uploading, cropping or resetting bumps the version, so a late response for
an older image is dropped instead of being shown on the new one.
"""

import sys
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from .errors import InvalidTransitionError, ThumbnailEditorError, translate_error
from .images import EditableImage, crop_image, image_size, read_image_file
from .models import (
    DetectedElement, EditResult, SelectionBox, SelectionSpec, SessionSnapshot,
)
from .orchestrator import VALIDATION_MESSAGE, EditOrchestrator
from .session_store import SessionStore
from .workspace import export_assets


class Phase(str, Enum):
    EMPTY = "empty"
    ANALYZING = "analyzing"
    READY = "ready"
    CROPPING = "cropping"
    SELECTING_AREA = "selecting_area"
    EDITING = "editing"
    ENHANCING = "enhancing"


@dataclass(frozen=True)
class SessionState:
    original: Optional[EditableImage] = None
    edited: Optional[EditableImage] = None
    removed_layer: Optional[EditableImage] = None
    replacement: Optional[EditableImage] = None
    detected_elements: Tuple[DetectedElement, ...] = ()
    selected_elements: Tuple[str, ...] = ()
    selection: Optional[SelectionBox] = None
    custom_instruction: str = ""
    is_analyzing: bool = False
    is_editing: bool = False
    is_enhancing: bool = False
    is_cropping: bool = False
    is_selecting_area: bool = False
    error: Optional[str] = None
    version: int = 0

    @property
    def phase(self) -> Phase:
        if self.original is None:
            return Phase.EMPTY
        if self.is_analyzing:
            return Phase.ANALYZING
        if self.is_enhancing:
            return Phase.ENHANCING
        if self.is_editing:
            return Phase.EDITING
        if self.is_cropping:
            return Phase.CROPPING
        if self.is_selecting_area:
            return Phase.SELECTING_AREA
        return Phase.READY

    @property
    def selection_spec(self) -> SelectionSpec:
        return SelectionSpec(
            selected_elements=self.selected_elements,
            area=self.selection,
            custom_instruction=self.custom_instruction,
        )

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            original=self.original,
            edited=self.edited,
            removed_layer=self.removed_layer,
            detected_elements=self.detected_elements,
            custom_instruction=self.custom_instruction,
            selected_elements=self.selected_elements,
            selection=self.selection,
        )

    def summary(self) -> dict:
        """JSON-friendly view of the state, images reduced to their sizes."""
        def describe(image):
            return None if image is None else {"mime_type": image.mime_type, "bytes": len(image.data)}

        return {
            "phase": self.phase.value,
            "version": self.version,
            "original": describe(self.original),
            "edited": describe(self.edited),
            "removed_layer": describe(self.removed_layer),
            "replacement": describe(self.replacement),
            "detected_elements": [e.to_dict() for e in self.detected_elements],
            "selected_elements": list(self.selected_elements),
            "selection": self.selection.to_dict() if self.selection else None,
            "custom_instruction": self.custom_instruction,
            "error": self.error,
        }


# ── Actions ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ImageUploaded:
    image: EditableImage


@dataclass(frozen=True)
class CropStarted:
    pass


@dataclass(frozen=True)
class CropCancelled:
    pass


@dataclass(frozen=True)
class CropCompleted:
    image: EditableImage


@dataclass(frozen=True)
class AnalysisSucceeded:
    version: int
    elements: Tuple[DetectedElement, ...]


@dataclass(frozen=True)
class AnalysisFailed:
    version: int
    message: str


@dataclass(frozen=True)
class AreaSelectionStarted:
    pass


@dataclass(frozen=True)
class AreaSelected:
    box: SelectionBox


@dataclass(frozen=True)
class AreaSelectionCancelled:
    pass


@dataclass(frozen=True)
class AreaCleared:
    pass


@dataclass(frozen=True)
class ElementToggled:
    name: str


@dataclass(frozen=True)
class InstructionChanged:
    text: str


@dataclass(frozen=True)
class ReplacementSet:
    image: EditableImage


@dataclass(frozen=True)
class ReplacementCleared:
    pass


@dataclass(frozen=True)
class EditStarted:
    pass


@dataclass(frozen=True)
class EditSucceeded:
    version: int
    result: EditResult


@dataclass(frozen=True)
class EditFailed:
    version: int
    message: str


@dataclass(frozen=True)
class EnhanceStarted:
    pass


@dataclass(frozen=True)
class EnhanceSucceeded:
    version: int
    image: EditableImage


@dataclass(frozen=True)
class EnhanceFailed:
    version: int
    message: str


@dataclass(frozen=True)
class ErrorRaised:
    message: str


@dataclass(frozen=True)
class ErrorDismissed:
    pass


@dataclass(frozen=True)
class SessionReset:
    pass


@dataclass(frozen=True)
class SessionRestored:
    snapshot: SessionSnapshot


# Selection edits are accepted only while no operation is in flight.
_IDLE = (Phase.EMPTY, Phase.READY)


def _require(state: SessionState, action, *phases: Phase) -> None:
    if state.phase not in phases:
        allowed = ", ".join(p.value for p in phases)
        raise InvalidTransitionError(
            f"{type(action).__name__} not allowed while {state.phase.value} (needs {allowed})"
        )


def _new_base_image(state: SessionState, image: EditableImage, **changes) -> SessionState:
    """Swap in a new original and drop everything derived from the old one."""
    return replace(
        state,
        original=image,
        edited=None,
        removed_layer=None,
        detected_elements=(),
        selected_elements=(),
        selection=None,
        error=None,
        is_analyzing=True,
        is_editing=False,
        is_enhancing=False,
        is_cropping=False,
        is_selecting_area=False,
        version=state.version + 1,
        **changes,
    )


def reduce(state: SessionState, action) -> SessionState:
    """Apply one action to a state and return the resulting state."""

    # Results for an image that is no longer current are dropped.
    if isinstance(action, (AnalysisSucceeded, AnalysisFailed, EditSucceeded,
                           EditFailed, EnhanceSucceeded, EnhanceFailed)):
        if action.version != state.version:
            print(f"  WARNING: Discarding stale {type(action).__name__} "
                  f"(v{action.version}, current v{state.version})", file=sys.stderr)
            return state

    if isinstance(action, ImageUploaded):
        return _new_base_image(state, action.image, replacement=None)

    elif isinstance(action, CropStarted):
        _require(state, action, Phase.READY)
        return replace(state, is_cropping=True)

    elif isinstance(action, CropCancelled):
        _require(state, action, Phase.CROPPING)
        return replace(state, is_cropping=False)

    elif isinstance(action, CropCompleted):
        _require(state, action, Phase.CROPPING)
        return _new_base_image(state, action.image)

    elif isinstance(action, AnalysisSucceeded):
        return replace(state, detected_elements=tuple(action.elements), is_analyzing=False)

    elif isinstance(action, AnalysisFailed):
        return replace(state, detected_elements=(), error=action.message, is_analyzing=False)

    elif isinstance(action, AreaSelectionStarted):
        _require(state, action, Phase.READY)
        return replace(state, is_selecting_area=True)

    elif isinstance(action, AreaSelected):
        _require(state, action, Phase.SELECTING_AREA)
        return replace(state, selection=action.box, is_selecting_area=False)

    elif isinstance(action, AreaSelectionCancelled):
        _require(state, action, Phase.SELECTING_AREA)
        return replace(state, is_selecting_area=False)

    elif isinstance(action, AreaCleared):
        _require(state, action, *_IDLE)
        return replace(state, selection=None)

    elif isinstance(action, ElementToggled):
        _require(state, action, Phase.READY)
        if action.name in state.selected_elements:
            selected = tuple(n for n in state.selected_elements if n != action.name)
        else:
            selected = state.selected_elements + (action.name,)
        return replace(state, selected_elements=selected)

    elif isinstance(action, InstructionChanged):
        _require(state, action, *_IDLE)
        return replace(state, custom_instruction=action.text)

    elif isinstance(action, ReplacementSet):
        _require(state, action, *_IDLE)
        return replace(state, replacement=action.image)

    elif isinstance(action, ReplacementCleared):
        _require(state, action, *_IDLE)
        return replace(state, replacement=None)

    elif isinstance(action, EditStarted):
        _require(state, action, Phase.READY)
        return replace(state, is_editing=True, error=None)

    elif isinstance(action, EditSucceeded):
        return replace(
            state,
            edited=action.result.edited,
            removed_layer=action.result.removed_layer,
            is_editing=False,
        )

    elif isinstance(action, EditFailed):
        return replace(state, error=action.message, is_editing=False)

    elif isinstance(action, EnhanceStarted):
        _require(state, action, Phase.READY)
        return replace(state, is_enhancing=True, error=None)

    elif isinstance(action, EnhanceSucceeded):
        return replace(state, edited=action.image, is_enhancing=False)

    elif isinstance(action, EnhanceFailed):
        return replace(state, error=action.message, is_enhancing=False)

    elif isinstance(action, ErrorRaised):
        return replace(state, error=action.message)

    elif isinstance(action, ErrorDismissed):
        return replace(state, error=None)

    elif isinstance(action, SessionReset):
        return SessionState(version=state.version + 1)

    elif isinstance(action, SessionRestored):
        snap = action.snapshot
        return SessionState(
            original=snap.original,
            edited=snap.edited,
            removed_layer=snap.removed_layer,
            detected_elements=tuple(snap.detected_elements),
            custom_instruction=snap.custom_instruction,
            selected_elements=tuple(snap.selected_elements),
            selection=snap.selection,
            version=state.version + 1,
        )

    raise TypeError(f"Unknown action: {action!r}")


def _failure_message(error: Exception, fallback: str) -> str:
    """User-facing text for a failed operation; anything unexpected is translated."""
    if not isinstance(error, ThumbnailEditorError):
        print(f"  ERROR: Unexpected failure: {error!r}", file=sys.stderr)
        error = translate_error(error)
    return str(error) or fallback


def _scale_to_natural(
    image: EditableImage, box: SelectionBox, rendered_size: Optional[Tuple[float, float]]
) -> SelectionBox:
    if not rendered_size:
        return box
    nat_w, nat_h = image_size(image)
    return box.scaled(nat_w / rendered_size[0], nat_h / rendered_size[1])


class ThumbnailSession:
    """Owns one editing session: state, persistence and the async operations."""

    def __init__(
        self,
        orchestrator: EditOrchestrator,
        store: Optional[SessionStore] = None,
        restore: bool = True,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self._state = SessionState()
        self._saved: Optional[SessionSnapshot] = None
        if restore and store is not None:
            self.restore()

    @property
    def state(self) -> SessionState:
        return self._state

    def _dispatch(self, action) -> SessionState:
        self._state = reduce(self._state, action)
        self._persist()
        return self._state

    def _persist(self) -> None:
        if self.store is None:
            return
        snapshot = self._state.snapshot()
        if snapshot != self._saved:
            self.store.save(snapshot)
            self._saved = snapshot

    def restore(self) -> SessionState:
        """Load the persisted snapshot, if any, with all busy flags cleared."""
        snapshot = self.store.load() if self.store is not None else None
        if snapshot is None:
            return self._state
        print("  Restored saved session", file=sys.stderr)
        self._state = reduce(self._state, SessionRestored(snapshot))
        self._saved = snapshot
        return self._state

    # ── Image loading ─────────────────────────────────────────────────

    async def upload_image(self, image: EditableImage) -> SessionState:
        self._dispatch(ImageUploaded(image))
        return await self._analyze()

    async def upload_file(self, path: Path) -> SessionState:
        return await self.upload_image(await read_image_file(path))

    def start_crop(self) -> SessionState:
        return self._dispatch(CropStarted())

    def cancel_crop(self) -> SessionState:
        return self._dispatch(CropCancelled())

    async def complete_crop(
        self,
        x: float,
        y: float,
        width: float,
        height: float,
        rendered_size: Optional[Tuple[float, float]] = None,
    ) -> SessionState:
        """Crop the current original and re-analyze the result."""
        if self._state.phase != Phase.CROPPING:
            raise InvalidTransitionError(f"Not cropping (phase is {self._state.phase.value})")
        cropped = crop_image(self._state.original, x, y, width, height, rendered_size)
        self._dispatch(CropCompleted(cropped))
        return await self._analyze()

    async def _analyze(self) -> SessionState:
        version = self._state.version
        try:
            elements = await self.orchestrator.analyze_elements(self._state.original)
        except Exception as e:
            return self._dispatch(AnalysisFailed(
                version, _failure_message(e, "Failed to analyze image. Please try again."),
            ))
        return self._dispatch(AnalysisSucceeded(version, tuple(elements)))

    # ── Selection ─────────────────────────────────────────────────────

    def start_area_selection(self) -> SessionState:
        return self._dispatch(AreaSelectionStarted())

    def select_area(
        self,
        x: float,
        y: float,
        width: float,
        height: float,
        rendered_size: Optional[Tuple[float, float]] = None,
    ) -> SessionState:
        """
        Store the area to focus the edit on.

        Coordinates are scaled from `rendered_size` to the natural size of
        the original, so normalization later uses the real pixel grid.
        """
        if self._state.phase != Phase.SELECTING_AREA:
            raise InvalidTransitionError(
                f"Not selecting an area (phase is {self._state.phase.value})"
            )
        box = _scale_to_natural(
            self._state.original, SelectionBox(x, y, width, height), rendered_size
        )
        return self._dispatch(AreaSelected(box))

    def cancel_area_selection(self) -> SessionState:
        return self._dispatch(AreaSelectionCancelled())

    def clear_area(self) -> SessionState:
        return self._dispatch(AreaCleared())

    def toggle_element(self, name: str) -> SessionState:
        return self._dispatch(ElementToggled(name))

    def set_custom_instruction(self, text: str) -> SessionState:
        return self._dispatch(InstructionChanged(text))

    def set_replacement(self, image: EditableImage) -> SessionState:
        return self._dispatch(ReplacementSet(image))

    def clear_replacement(self) -> SessionState:
        return self._dispatch(ReplacementCleared())

    # ── Editing ───────────────────────────────────────────────────────

    async def apply_edit(self) -> SessionState:
        state = self._state
        _require(state, EditStarted(), Phase.READY)
        if not state.selection_spec.is_actionable(has_replacement=state.replacement is not None):
            return self._dispatch(ErrorRaised(VALIDATION_MESSAGE))

        self._dispatch(EditStarted())
        version = self._state.version
        try:
            result = await self.orchestrator.apply_edit(
                state.original, state.selection_spec, state.replacement
            )
        except Exception as e:
            return self._dispatch(EditFailed(
                version,
                _failure_message(
                    e, "An error occurred while editing your thumbnail. The AI might be busy.",
                ),
            ))
        return self._dispatch(EditSucceeded(version, result))

    async def auto_enhance(self) -> SessionState:
        state = self._state
        self._dispatch(EnhanceStarted())
        version = self._state.version
        try:
            enhanced = await self.orchestrator.auto_enhance(state.edited or state.original)
        except Exception as e:
            return self._dispatch(EnhanceFailed(
                version, _failure_message(e, "Failed to enhance image. AI might be busy."),
            ))
        return self._dispatch(EnhanceSucceeded(version, enhanced))

    # ── Housekeeping ──────────────────────────────────────────────────

    def dismiss_error(self) -> SessionState:
        return self._dispatch(ErrorDismissed())

    def reset(self) -> SessionState:
        """Clear every slot and the persisted snapshot."""
        self._state = reduce(self._state, SessionReset())
        if self.store is not None:
            self.store.clear()
        self._saved = self._state.snapshot()
        return self._state

    def export(self, output_dir: Optional[Path] = None) -> dict:
        return export_assets(self._state.snapshot(), output_dir)
