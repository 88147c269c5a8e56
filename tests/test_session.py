"""
Tests for the session state machine and ThumbnailSession.

Covers:
- reducer transitions and guards
- invalidation of derived state on upload / crop
- edit and enhance outcomes
- stale result discarding
- persistence and restore
"""

import asyncio

import pytest
from PIL import Image

from thumbnail_editor.errors import InvalidTransitionError
from thumbnail_editor.images import image_size
from thumbnail_editor.models import EditResult, SelectionBox
from thumbnail_editor.orchestrator import VALIDATION_MESSAGE
from thumbnail_editor.session import (
    AnalysisSucceeded,
    AreaCleared,
    CropCompleted,
    CropStarted,
    EditStarted,
    EditSucceeded,
    ElementToggled,
    ImageUploaded,
    InstructionChanged,
    Phase,
    ReplacementCleared,
    ReplacementSet,
    SessionReset,
    SessionState,
    ThumbnailSession,
    reduce,
)

from conftest import DEFAULT_ELEMENTS, make_png, run


def _edited_state(thumbnail):
    """A READY state with every derived slot filled."""
    return SessionState(
        original=thumbnail,
        edited=make_png(),
        removed_layer=make_png(),
        replacement=make_png(color=(1, 2, 3, 255)),
        detected_elements=tuple(DEFAULT_ELEMENTS),
        selected_elements=("Steve",),
        selection=SelectionBox(1, 2, 3, 4),
        error="old error",
        version=3,
    )


class TestReducer:
    def test_empty_phase(self):
        assert SessionState().phase == Phase.EMPTY

    def test_upload_clears_derived_state(self, thumbnail):
        new_image = make_png(color=(0, 0, 0, 255))
        state = reduce(_edited_state(thumbnail), ImageUploaded(new_image))

        assert state.original is new_image
        assert state.edited is None
        assert state.removed_layer is None
        assert state.replacement is None
        assert state.detected_elements == ()
        assert state.selected_elements == ()
        assert state.selection is None
        assert state.error is None
        assert state.phase == Phase.ANALYZING
        assert state.version == 4

    def test_crop_keeps_replacement(self, thumbnail):
        state = reduce(_edited_state(thumbnail), CropStarted())
        assert state.phase == Phase.CROPPING
        cropped = make_png(size=(8, 8))
        state = reduce(state, CropCompleted(cropped))

        assert state.original is cropped
        assert state.edited is None
        assert state.detected_elements == ()
        assert state.replacement is not None
        assert state.phase == Phase.ANALYZING

    def test_crop_not_allowed_while_empty(self):
        with pytest.raises(InvalidTransitionError):
            reduce(SessionState(), CropStarted())

    def test_edit_not_allowed_while_analyzing(self, thumbnail):
        state = reduce(SessionState(), ImageUploaded(thumbnail))
        with pytest.raises(InvalidTransitionError):
            reduce(state, EditStarted())

    def test_stale_result_is_ignored(self, thumbnail):
        state = reduce(SessionState(), ImageUploaded(thumbnail))
        stale = AnalysisSucceeded(version=state.version - 1, elements=tuple(DEFAULT_ELEMENTS))
        assert reduce(state, stale) is state

    def test_toggle_element(self, thumbnail):
        state = _edited_state(thumbnail)
        state = reduce(state, ElementToggled("Creeper"))
        assert state.selected_elements == ("Steve", "Creeper")
        state = reduce(state, ElementToggled("Steve"))
        assert state.selected_elements == ("Creeper",)

    def test_toggle_needs_image(self):
        with pytest.raises(InvalidTransitionError):
            reduce(SessionState(), ElementToggled("Steve"))

    @pytest.mark.parametrize("action", [
        ElementToggled("Creeper"),
        AreaCleared(),
        InstructionChanged("add fire"),
        ReplacementSet(make_png()),
        ReplacementCleared(),
    ])
    def test_selection_locked_while_editing(self, thumbnail, action):
        state = reduce(_edited_state(thumbnail), EditStarted())
        with pytest.raises(InvalidTransitionError):
            reduce(state, action)

    def test_instruction_allowed_before_upload(self):
        state = reduce(SessionState(), InstructionChanged("add fire"))
        assert state.custom_instruction == "add fire"

    def test_edit_success_commits_both_slots(self, thumbnail):
        state = reduce(_edited_state(thumbnail), EditStarted())
        assert state.phase == Phase.EDITING
        assert state.error is None

        result = EditResult(edited=make_png(), removed_layer=None)
        state = reduce(state, EditSucceeded(state.version, result))
        assert state.edited is result.edited
        assert state.removed_layer is None
        assert state.phase == Phase.READY

    def test_reset(self, thumbnail):
        state = reduce(_edited_state(thumbnail), SessionReset())
        assert state == SessionState(version=4)

    def test_unknown_action(self):
        with pytest.raises(TypeError):
            reduce(SessionState(), object())


class TestUploadAndCrop:
    def test_upload_analyzes(self, session, service, thumbnail):
        state = run(session.upload_image(thumbnail))

        assert state.phase == Phase.READY
        assert [e.name for e in state.detected_elements] == ["Steve", "Creeper", "EPIC WIN text"]
        assert service.call_names() == ["analyze"]

    def test_analysis_failure_sets_error(self, session, service, thumbnail):
        service.analyze_error = RuntimeError("400 INVALID_ARGUMENT")
        state = run(session.upload_image(thumbnail))

        assert state.phase == Phase.READY
        assert state.detected_elements == ()
        assert state.error.startswith("Invalid request.")
        assert state.original is thumbnail

    def test_upload_file(self, session, tmp_path):
        path = tmp_path / "thumb.png"
        path.write_bytes(make_png().data)
        state = run(session.upload_file(path))
        assert state.original.data == path.read_bytes()

    def test_new_upload_resets_previous_results(self, session, thumbnail):
        async def scenario():
            await session.upload_image(thumbnail)
            session.toggle_element("Creeper")
            await session.apply_edit()
            assert session.state.edited is not None
            return await session.upload_image(make_png(color=(5, 5, 5, 255)))

        state = run(scenario())
        assert state.edited is None
        assert state.removed_layer is None
        assert state.selected_elements == ()
        assert state.error is None
        assert len(state.detected_elements) == 3

    def test_complete_crop_scales_from_rendered_size(self, session, service, thumbnail):
        async def scenario():
            await session.upload_image(thumbnail)
            session.start_crop()
            # Displayed at half size: 400x300 rendered -> 800x600 natural
            return await session.complete_crop(50, 25, 100, 75, rendered_size=(400, 300))

        state = run(scenario())
        assert image_size(state.original) == (200, 150)
        assert state.original.mime_type == "image/jpeg"
        assert service.call_names() == ["analyze", "analyze"]

    def test_complete_crop_requires_cropping(self, session, thumbnail):
        run(session.upload_image(thumbnail))
        with pytest.raises(InvalidTransitionError):
            run(session.complete_crop(0, 0, 10, 10))

    def test_cancel_crop(self, session, thumbnail):
        run(session.upload_image(thumbnail))
        session.start_crop()
        assert session.cancel_crop().phase == Phase.READY


class TestSelection:
    def test_select_area_in_natural_pixels(self, session, thumbnail):
        run(session.upload_image(thumbnail))
        session.start_area_selection()
        state = session.select_area(50, 25, 100, 75, rendered_size=(400, 300))

        assert state.selection == SelectionBox(100, 50, 200, 150)
        assert state.phase == Phase.READY

    def test_select_area_outside_mode(self, session, thumbnail):
        run(session.upload_image(thumbnail))
        with pytest.raises(InvalidTransitionError):
            session.select_area(0, 0, 1, 1)

    def test_area_edit_uses_natural_dimensions(self, session, service, thumbnail):
        run(session.upload_image(thumbnail))
        session.start_area_selection()
        session.select_area(50, 25, 100, 75, rendered_size=(400, 300))
        run(session.apply_edit())

        edit_call = [c for c in service.calls if c[0] == "edit"][0]
        assert "[83, 125, 333, 375]" in edit_call[2]


class TestApplyEdit:
    def test_validation_error_without_network(self, session, service, thumbnail):
        run(session.upload_image(thumbnail))
        state = run(session.apply_edit())

        assert state.error == VALIDATION_MESSAGE
        assert state.phase == Phase.READY
        assert service.call_names() == ["analyze"]

    def test_success(self, session, service, thumbnail):
        run(session.upload_image(thumbnail))
        session.toggle_element("Creeper")
        state = run(session.apply_edit())

        assert state.edited is service.edited
        assert state.removed_layer is not None
        assert state.error is None
        assert state.phase == Phase.READY

    def test_extraction_failure_still_succeeds(self, session, service, thumbnail):
        service.extract_error = RuntimeError("Could not extract elements layer.")
        run(session.upload_image(thumbnail))
        session.toggle_element("Creeper")
        state = run(session.apply_edit())

        assert state.edited is service.edited
        assert state.removed_layer is None
        assert state.error is None

    def test_failure_keeps_previous_results(self, session, service, thumbnail):
        run(session.upload_image(thumbnail))
        session.set_custom_instruction("make it pop")
        first = run(session.apply_edit()).edited

        service.edit_error = RuntimeError("503 Service Unavailable")
        state = run(session.apply_edit())

        assert state.edited is first
        assert state.original is thumbnail
        assert state.error.startswith("Google's AI servers are temporarily overloaded")
        assert state.phase == Phase.READY

    def test_concurrent_edit_is_rejected(self, session, service, thumbnail):
        run(session.upload_image(thumbnail))
        session.toggle_element("Steve")

        async def scenario():
            service.gates["edit"] = asyncio.Event()
            first = asyncio.create_task(session.apply_edit())
            await asyncio.sleep(0)
            assert session.state.phase == Phase.EDITING
            with pytest.raises(InvalidTransitionError):
                await session.apply_edit()
            with pytest.raises(InvalidTransitionError):
                await session.auto_enhance()
            service.gates["edit"].set()
            return await first

        state = run(scenario())
        assert state.phase == Phase.READY
        assert service.call_names().count("edit") == 1

    def test_result_for_reset_session_is_discarded(self, session, service, thumbnail):
        run(session.upload_image(thumbnail))
        session.toggle_element("Steve")

        async def scenario():
            service.gates["edit"] = asyncio.Event()
            pending = asyncio.create_task(session.apply_edit())
            await asyncio.sleep(0)
            session.reset()
            service.gates["edit"].set()
            return await pending

        state = run(scenario())
        assert state.phase == Phase.EMPTY
        assert state.edited is None
        assert state.original is None

    def test_result_for_replaced_image_is_discarded(self, session, service, thumbnail):
        run(session.upload_image(thumbnail))
        session.toggle_element("Steve")
        newer = make_png(color=(9, 9, 9, 255))

        async def scenario():
            service.gates["edit"] = asyncio.Event()
            pending = asyncio.create_task(session.apply_edit())
            await asyncio.sleep(0)
            await session.upload_image(newer)
            service.gates["edit"].set()
            return await pending

        state = run(scenario())
        assert state.original is newer
        assert state.edited is None


class TestAutoEnhance:
    def test_enhance_twice_leaves_unrelated_fields(self, session, service, thumbnail):
        run(session.upload_image(thumbnail))
        elements = session.state.detected_elements

        run(session.auto_enhance())
        state = run(session.auto_enhance())

        assert state.original is thumbnail
        assert state.detected_elements == elements
        assert state.edited is service.enhanced
        assert state.phase == Phase.READY

    def test_enhances_latest_edit(self, session, service, thumbnail):
        run(session.upload_image(thumbnail))
        run(session.auto_enhance())
        run(session.auto_enhance())

        enhance_inputs = [c[1] for c in service.calls if c[0] == "enhance"]
        assert enhance_inputs == [thumbnail, service.enhanced]

    def test_failure(self, session, service, thumbnail):
        service.enhance_error = RuntimeError("RECITATION")
        run(session.upload_image(thumbnail))
        state = run(session.auto_enhance())

        assert state.edited is None
        assert "copyrighted" in state.error
        assert state.phase == Phase.READY

    def test_needs_image(self, session):
        with pytest.raises(InvalidTransitionError):
            run(session.auto_enhance())


class TestPersistence:
    def test_changes_are_saved(self, session, store, thumbnail):
        run(session.upload_image(thumbnail))
        session.set_custom_instruction("add fire")

        snapshot = store.load()
        assert snapshot.original == thumbnail
        assert snapshot.custom_instruction == "add fire"
        assert len(snapshot.detected_elements) == 3

    def test_restore_clears_transient_flags(self, orchestrator, store, thumbnail):
        first = ThumbnailSession(orchestrator, store=store)
        run(first.upload_image(thumbnail))
        first.toggle_element("Creeper")
        run(first.apply_edit())

        second = ThumbnailSession(orchestrator, store=store)
        state = second.state
        assert state.original == thumbnail
        assert state.edited == first.state.edited
        assert state.selected_elements == ("Creeper",)
        assert not state.is_analyzing and not state.is_editing
        assert state.error is None
        assert state.phase == Phase.READY

    def test_reset_clears_store(self, session, store, thumbnail):
        run(session.upload_image(thumbnail))
        state = session.reset()

        assert state.phase == Phase.EMPTY
        assert store.load() is None
        assert not store.path.exists()

    def test_without_store(self, orchestrator, thumbnail):
        session = ThumbnailSession(orchestrator, store=None)
        assert run(session.upload_image(thumbnail)).phase == Phase.READY


def test_export(session, thumbnail, tmp_path):
    run(session.upload_image(thumbnail))
    session.toggle_element("Creeper")
    run(session.apply_edit())

    written = session.export(tmp_path / "out")
    assert set(written) == {"original", "edited", "removed_layer"}
    assert (tmp_path / "out" / "removed_elements_layer.png").exists()


class TestBusyGuards:
    def test_selection_locked_while_analyzing(self, session, service, thumbnail):
        async def scenario():
            service.gates["analyze"] = asyncio.Event()
            pending = asyncio.create_task(session.upload_image(thumbnail))
            await asyncio.sleep(0)
            assert session.state.phase == Phase.ANALYZING
            with pytest.raises(InvalidTransitionError):
                session.toggle_element("Creeper")
            with pytest.raises(InvalidTransitionError):
                session.clear_area()
            service.gates["analyze"].set()
            await pending
            return session.toggle_element("Creeper")

        state = run(scenario())
        assert state.selected_elements == ("Creeper",)

    def test_instruction_locked_while_editing(self, session, service, thumbnail):
        run(session.upload_image(thumbnail))
        session.set_custom_instruction("add fire")

        async def scenario():
            service.gates["edit"] = asyncio.Event()
            pending = asyncio.create_task(session.apply_edit())
            await asyncio.sleep(0)
            with pytest.raises(InvalidTransitionError):
                session.set_custom_instruction("something else")
            with pytest.raises(InvalidTransitionError):
                session.set_replacement(make_png())
            service.gates["edit"].set()
            return await pending

        state = run(scenario())
        assert state.custom_instruction == "add fire"
        assert state.replacement is None
        edit_call = [c for c in service.calls if c[0] == "edit"][0]
        assert "add fire" in edit_call[2]


class TestUnexpectedFailures:
    def test_oversized_image_edit_returns_to_ready(self, session, service, thumbnail, monkeypatch):
        run(session.upload_image(thumbnail))
        session.start_area_selection()
        session.select_area(100, 50, 200, 150)
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)

        state = run(session.apply_edit())

        assert state.phase == Phase.READY
        assert state.error.startswith("Failed to load image")
        assert "edit" not in service.call_names()

    def test_unexpected_edit_error_returns_to_ready(self, session, thumbnail, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("boom")

        run(session.upload_image(thumbnail))
        session.toggle_element("Creeper")
        monkeypatch.setattr(session.orchestrator, "apply_edit", broken)

        state = run(session.apply_edit())
        assert state.phase == Phase.READY
        assert state.error == "Error: boom"

    def test_unexpected_enhance_error_returns_to_ready(self, session, thumbnail, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("boom")

        run(session.upload_image(thumbnail))
        monkeypatch.setattr(session.orchestrator, "auto_enhance", broken)

        state = run(session.auto_enhance())
        assert state.phase == Phase.READY
        assert state.error == "Error: boom"
