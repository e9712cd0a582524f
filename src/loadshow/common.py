"""loadshow.common — shared utilities for frame compositing and encoding.

Contains: color parsing, font loading, text measurement and rendering,
and ffmpeg invocation.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

import imageio_ffmpeg
from PIL import Image, ImageDraw, ImageFont

logger = logging.getLogger(__name__)


# ── Font paths ─────────────────────────────────────────────────────
# Inter preferred for crisp progress labels, DejaVu Sans as fallback.

FONT_PATHS = [
    Path.home() / ".local/share/fonts/Inter.ttc",
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"),
]


# ── Color utilities ────────────────────────────────────────────────

def parse_hex_color(hex_str: str) -> tuple[int, int, int]:
    """Convert '#RRGGBB', 'RRGGBB' or shorthand '#RGB' to an (R, G, B) tuple."""
    hex_str = hex_str.lstrip("#")
    if len(hex_str) == 3:
        hex_str = "".join(c * 2 for c in hex_str)
    if len(hex_str) != 6 or not all(c in "0123456789abcdefABCDEF" for c in hex_str):
        raise ValueError(f"Invalid hex color: '#{hex_str}'")
    return (int(hex_str[0:2], 16), int(hex_str[2:4], 16), int(hex_str[4:6], 16))


# ── Font loading ───────────────────────────────────────────────────

def load_font(size: float) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Load Inter (or fallback) at the given size.

    Sizes are rounded to whole pixels. Falls back to Pillow's default
    font when no TrueType font is installed.
    """
    px = max(1, round(size))
    for font_path in FONT_PATHS:
        if font_path.exists():
            try:
                return ImageFont.truetype(str(font_path), size=px, index=0)
            except (OSError, IndexError):
                continue
    # Last resort: Pillow default font (scalable on Pillow >= 10.1).
    return ImageFont.load_default(size=px)


# ── Text rendering ─────────────────────────────────────────────────

def measure_text(
    text: str, font: ImageFont.FreeTypeFont | ImageFont.ImageFont,
) -> tuple[int, int]:
    """Return the (width, height) of text's ink box in pixels."""
    draw = ImageDraw.Draw(Image.new("RGB", (1, 1)))
    bbox = draw.textbbox((0, 0), text, font=font)
    return bbox[2] - bbox[0], bbox[3] - bbox[1]


def render_text_on_image(
    img: Image.Image,
    text: str,
    position: tuple[int, int],
    font: ImageFont.FreeTypeFont | ImageFont.ImageFont,
    color: tuple[int, int, int],
) -> int:
    """Draw text on a Pillow image and return the text width."""
    draw = ImageDraw.Draw(img)
    draw.text(position, text, fill=color, font=font)
    return measure_text(text, font)[0]


# ── ffmpeg ─────────────────────────────────────────────────────────

@dataclass
class CommandOutput:
    exit_code: int
    stdout: str
    stderr: str


class EncoderError(RuntimeError):
    """ffmpeg exited with a nonzero status."""

    def __init__(self, message: str, exit_code: int, stderr: str):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


def ffmpeg_exe() -> str:
    """Path to ffmpeg: $FFMPEG_PATH if set, else the imageio-ffmpeg binary."""
    return os.environ.get("FFMPEG_PATH") or imageio_ffmpeg.get_ffmpeg_exe()


def run_ffmpeg(args: list[str]) -> CommandOutput:
    """Run ffmpeg with args, capturing output. Never raises on exit status."""
    cmd = [ffmpeg_exe(), *args]
    logger.debug("Executing %s", cmd)
    result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    return CommandOutput(result.returncode, result.stdout, result.stderr)
