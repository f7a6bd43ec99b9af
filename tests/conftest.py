"""Shared test fixtures for all test modules."""

import asyncio
import io
import sys
import tempfile
from pathlib import Path

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from PIL import Image

from image_client import GeneratedImage
from workspace import Character, CharacterSceneOverride, Project, ProjectScene


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def queue_path(temp_dir):
    """Create a queue file path for testing."""
    return temp_dir / "queue.json"


@pytest.fixture
def png_bytes():
    """A small valid PNG image."""
    return make_png()


@pytest.fixture
def sample_project():
    """Project with two characters, two scenes and one override."""
    return Project(
        id=1,
        name="Beach day",
        general_prompt="1girl, 1boy, {{place}}, {{time}}",
        negative_prompt="lowres, {{avoid}}",
        characters=[
            Character(id=10, name="Alice", slot_index=0,
                      prompt="girl, {{pose}}, {{expression}}", negative="{{avoid}}"),
            Character(id=11, name="Bob", slot_index=1,
                      prompt="boy, {{pose}}", negative=""),
        ],
        scenes=[
            ProjectScene(id=100, name="Standing", sort_order=0, placeholders={
                "place": "beach", "time": "sunset", "pose": "standing",
                "expression": "smile", "avoid": "blurry",
            }),
            ProjectScene(id=101, name="Sitting", sort_order=1, placeholders={
                "place": "cafe", "pose": "sitting",
            }),
        ],
        overrides=[
            CharacterSceneOverride(project_scene_id=100, character_id=11,
                                   placeholders={"pose": "waving", "expression": ""}),
        ],
    )


def make_png(size=(64, 48), color=(200, 30, 30)) -> bytes:
    """Encode a solid-color PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeImageClient:
    """Image client double that records requests.

    Args:
        latency: Seconds each call takes
        fail_on: 1-based call numbers that raise
        gate_on: 1-based call number that blocks until ``release`` is set
    """

    def __init__(self, latency: float = 0.0, fail_on=(), gate_on: int | None = None,
                 error_message: str = "NAI API error 429: Too Many Requests"):
        self.latency = latency
        self.fail_on = set(fail_on)
        self.gate_on = gate_on
        self.error_message = error_message
        self.requests = []
        self.reached = asyncio.Event()
        self.release = asyncio.Event()
        self._data = make_png()

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def generate(self, request, api_key):
        self.requests.append(request)
        number = len(self.requests)
        if self.gate_on == number:
            self.reached.set()
            await self.release.wait()
        if self.latency:
            await asyncio.sleep(self.latency)
        if number in self.fail_on:
            raise RuntimeError(self.error_message)
        return GeneratedImage(data=self._data, seed=request.seed)


async def wait_until(condition, timeout: float = 5.0, interval: float = 0.01):
    """Poll ``condition`` until it is true or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)
