"""
Pytest configuration and shared fixtures for the thumbnail editor tests.

FakeEditService stands in for Gemini: it records every call and returns
canned images, or raises whatever exception a test configures.
"""

import asyncio
from io import BytesIO

import pytest
from PIL import Image

from thumbnail_editor.images import EditableImage
from thumbnail_editor.models import DetectedElement, ElementType
from thumbnail_editor.orchestrator import EditOrchestrator
from thumbnail_editor.session import ThumbnailSession
from thumbnail_editor.session_store import SessionStore


def make_png(size=(16, 9), color=(200, 30, 30, 255), mode="RGBA") -> EditableImage:
    img = Image.new(mode, size, color)
    buf = BytesIO()
    img.save(buf, "PNG")
    return EditableImage(data=buf.getvalue(), mime_type="image/png")


def make_green_screen(size=(16, 9)) -> EditableImage:
    """Pure #00FF00 frame with a 4x4 red subject in the top-left corner."""
    img = Image.new("RGBA", size, (0, 255, 0, 255))
    for x in range(4):
        for y in range(4):
            img.putpixel((x, y), (220, 40, 40, 255))
    buf = BytesIO()
    img.save(buf, "PNG")
    return EditableImage(data=buf.getvalue(), mime_type="image/png")


DEFAULT_ELEMENTS = [
    DetectedElement("Steve", ElementType.CHARACTER),
    DetectedElement("Creeper", ElementType.MOB),
    DetectedElement("EPIC WIN text", ElementType.TEXT),
]


class FakeEditService:
    """In-memory EditService. Set `*_error` to make a call fail."""

    def __init__(self):
        self.calls = []
        self.elements = list(DEFAULT_ELEMENTS)
        self.edited = make_png(color=(10, 10, 200, 255))
        self.enhanced = make_png(color=(250, 250, 0, 255))
        self.green = make_green_screen()
        self.analyze_error = None
        self.edit_error = None
        self.extract_error = None
        self.enhance_error = None
        # When set, the named call waits for the event before returning.
        self.gates = {}

    async def _gate(self, name):
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()

    async def analyze(self, image):
        self.calls.append(("analyze", image))
        await self._gate("analyze")
        if self.analyze_error:
            raise self.analyze_error
        return list(self.elements)

    async def edit(self, image, instruction, replacement=None):
        self.calls.append(("edit", image, instruction, replacement))
        await self._gate("edit")
        if self.edit_error:
            raise self.edit_error
        return self.edited

    async def extract(self, image, instruction):
        self.calls.append(("extract", image, instruction))
        await self._gate("extract")
        if self.extract_error:
            raise self.extract_error
        return self.green

    async def enhance(self, image):
        self.calls.append(("enhance", image))
        await self._gate("enhance")
        if self.enhance_error:
            raise self.enhance_error
        return self.enhanced

    def call_names(self):
        return [c[0] for c in self.calls]


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def service():
    return FakeEditService()


@pytest.fixture
def orchestrator(service):
    return EditOrchestrator(service)


@pytest.fixture
def store(tmp_path):
    return SessionStore(path=tmp_path / "session.json")


@pytest.fixture
def session(orchestrator, store):
    return ThumbnailSession(orchestrator, store=store)


@pytest.fixture
def thumbnail():
    """800x600 source image."""
    return make_png(size=(800, 600), color=(90, 60, 40, 255))
