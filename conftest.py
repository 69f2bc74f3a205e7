import base64
import io

import pytest
from PIL import Image, ImageDraw

from image_generation import GeneratedImage
from model_exporter import TempArtifactStore
from settings import HandlerOptions, Settings


def png_bytes(draw=None, size=(512, 512), background='white', mode='RGB'):
    """Encode a test image; draw(ImageDraw) paints the design"""
    img = Image.new(mode, size, background)
    if draw is not None:
        draw(ImageDraw.Draw(img))
    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    return buffer.getvalue()


def coin_png():
    """A black disc with a white ring cut out of it"""
    def draw(canvas):
        canvas.ellipse((96, 96, 416, 416), fill='black')
        canvas.ellipse((196, 196, 316, 316), fill='white')
    return png_bytes(draw)


def blank_png():
    return png_bytes()


class StubGenerator:
    """Stands in for ImageGenerator; records every call"""

    def __init__(self, image=None, url=None, edit_error=None, generate_error=None):
        self.b64 = base64.b64encode(image if image is not None else coin_png()).decode('ascii')
        self.url = url
        self.edit_error = edit_error
        self.generate_error = generate_error
        self.calls = []

    def generate(self, prompt):
        self.calls.append(('generate', prompt, ()))
        if self.generate_error is not None:
            raise self.generate_error
        return GeneratedImage(url=self.url, b64_json=self.b64)

    def edit(self, prompt, images):
        self.calls.append(('edit', prompt, tuple(images)))
        if self.edit_error is not None:
            raise self.edit_error
        return GeneratedImage(url=self.url, b64_json=self.b64, images_used=True)


@pytest.fixture
def make_settings(tmp_path):
    def factory(**options):
        return Settings(
            openai_api_key='sk-test-0000000000000000',
            artifact_dir=str(tmp_path / 'artifacts'),
            options=HandlerOptions(**options),
        )
    return factory


@pytest.fixture
def store(tmp_path):
    return TempArtifactStore(str(tmp_path / 'artifacts'), max_age=900)


@pytest.fixture
def stub():
    return StubGenerator()
