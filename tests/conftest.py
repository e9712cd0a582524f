"""Shared test fixtures for loadshow tests."""

import io

import pytest
from PIL import Image

from loadshow.layout import LayoutSpec, compute_layout
from loadshow.recording import ResourcesLoading, ScreenFrame


def jpeg_bytes(width, height, color):
    """Encode a solid-color JPEG, like a screencast frame."""
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, "JPEG", quality=95)
    return buf.getvalue()


@pytest.fixture
def small_layout_spec():
    """A small 2-column layout that keeps compositing tests fast."""
    return LayoutSpec(
        canvas_width=100,
        canvas_height=120,
        columns=2,
        gap=10,
        padding=10,
        border_width=1,
        indent=10,
        outdent=10,
        progress_height=10,
    )


@pytest.fixture
def small_layout(small_layout_spec):
    return compute_layout(small_layout_spec)


@pytest.fixture
def screen_frames(small_layout):
    """Three captured frames covering the full scroll, loading 0/50/100%."""
    scroll = small_layout.scroll
    return [
        ScreenFrame(500, jpeg_bytes(scroll.width, scroll.height, (200, 30, 30)),
                    ResourcesLoading(all=0, images=0)),
        ScreenFrame(1000, jpeg_bytes(scroll.width, scroll.height, (30, 200, 30)),
                    ResourcesLoading(all=500, images=100)),
        ScreenFrame(2500, jpeg_bytes(scroll.width, scroll.height, (30, 30, 200)),
                    ResourcesLoading(all=1000, images=200)),
    ]
