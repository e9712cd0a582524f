"""Frame compositor — one still image per captured screen frame.

Frame layout (back to front):
  ┌──────────────────────────────┐
  │ banner (optional)            │
  ├──────────────────────────────┤
  │██████ 42 % Loaded   1.23 sec.│  ← progress bar (optional)
  ├──────────────────────────────┤
  │  ┌──────┐                    │
  │  │screen│ ┌──────┐ ┌──────┐  │  ← column borders + cropped screen
  │  │ 0..  │ │ ..   │ │ ..   │  │     windows from the layout
  │  └──────┘ │      │ │      │  │
  │           └──────┘ └──────┘  │
  └──────────────────────────────┘

The frame height is rounded up to an even number (yuv420p needs even
dimensions).

Short captures. When the captured screen is shorter than the layout's
total window height, windows are filled until the capture runs out: the
window that straddles the end gets a partial crop and later windows stay
empty. This is intentional and lossy, not an error.

Frames are independent: each reads only shared immutable inputs and writes
its own file, so they are rendered in a process pool and re-sorted by
time afterwards.
"""

import io
import logging
import math
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from PIL import Image, ImageDraw

from .common import load_font, measure_text, parse_hex_color, render_text_on_image
from .layout import LayoutResult, LayoutSpec
from .recording import ResourcesLoading, ScreenFrame

logger = logging.getLogger(__name__)

VALID_FRAME_FORMATS = {"png", "jpeg"}


# ── Spec ───────────────────────────────────────────────────────────

@dataclass
class ColorTheme:
    background: str = "#eee"
    border: str = "#ccc"
    progress_background: str = "#fff"
    progress_foreground: str = "#0a0"
    progress_text: str = "#fff"
    progress_time_text: str = "#333"


@dataclass
class CompositionSpec:
    color_theme: ColorTheme = field(default_factory=ColorTheme)
    workers: int = 4     # parallel worker processes (1 = sequential)


@dataclass(frozen=True)
class FrameFile:
    path: str
    time: int


@dataclass
class CompositionResult:
    dir_path: str
    frame_files: list[FrameFile]


@dataclass(frozen=True)
class FrameSettings:
    """Inputs shared by every frame. Picklable for worker processes."""
    layout_spec: LayoutSpec
    layout: LayoutResult
    total: ResourcesLoading
    colors: dict[str, tuple[int, int, int]]
    has_progress_bar: bool
    frame_format: str
    frame_quality: int
    output_dir: str
    banner_png: bytes | None = None
    banner_height: int = 0


# ── Geometry helpers ──────────────────────────────────────────────

def frame_height(layout_spec: LayoutSpec, banner_height: int) -> int:
    """Banner + progress bar + canvas height, rounded up to an even number."""
    raw = banner_height + layout_spec.progress_height + layout_spec.canvas_height
    return math.ceil(raw / 2) * 2


def frame_file_name(time: int, frame_format: str) -> str:
    ext = "png" if frame_format == "png" else "jpg"
    return f"frame-{time:010d}.{ext}"


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


# ── Drawing ───────────────────────────────────────────────────────

def _draw_progress(
    canvas: Image.Image, frame: ScreenFrame, settings: FrameSettings,
) -> None:
    spec = settings.layout_spec
    colors = settings.colors
    width = spec.canvas_width
    height = spec.progress_height
    top = settings.banner_height
    ratio = frame.resources.all / settings.total.all

    draw = ImageDraw.Draw(canvas)
    draw.rectangle(
        [(0, top), (width - 1, top + height - 1)],
        fill=colors["progress_background"],
    )

    font = load_font(height * 0.8)
    margin = height // 2
    text_top = top + math.floor(height * 0.1)

    # Elapsed time, right-aligned. Drawn before the foreground bar so the
    # bar covers it as loading completes.
    time_label = f"{frame.time / 1000:.2f} sec."
    label_w, _ = measure_text(time_label, font)
    render_text_on_image(
        canvas, time_label, (width - margin - label_w, text_top),
        font, colors["progress_time_text"],
    )

    bar_w = min(width, math.floor(width * ratio))
    if bar_w > 0:
        draw.rectangle(
            [(0, top), (bar_w - 1, top + height - 1)],
            fill=colors["progress_foreground"],
        )

    render_text_on_image(
        canvas, f"{_round_half_up(ratio * 100)} % Loaded", (margin, text_top),
        font, colors["progress_text"],
    )


def _load_screen(data: bytes, scroll_width: int) -> Image.Image:
    """Decode a captured frame and scale it to the scroll width."""
    screen = Image.open(io.BytesIO(data))
    screen = screen.convert("RGB")
    if screen.width != scroll_width and screen.width > 0:
        scaled_h = max(1, round(screen.height * scroll_width / screen.width))
        screen = screen.resize((scroll_width, scaled_h), Image.LANCZOS)
    return screen


def compose_frame(frame: ScreenFrame, settings: FrameSettings) -> Image.Image:
    """Compose one video frame from a captured screen frame."""
    spec = settings.layout_spec
    colors = settings.colors
    canvas = Image.new(
        "RGB",
        (spec.canvas_width, frame_height(spec, settings.banner_height)),
        colors["background"],
    )

    if settings.banner_png and settings.banner_height > 0:
        banner = Image.open(io.BytesIO(settings.banner_png))
        banner = banner.convert("RGBA")
        canvas.paste(banner, (0, 0), banner)

    if settings.has_progress_bar and spec.progress_height > 0 and settings.total.all > 0:
        _draw_progress(canvas, frame, settings)

    offset = settings.banner_height + spec.progress_height

    if spec.border_width > 0:
        draw = ImageDraw.Draw(canvas)
        for column in settings.layout.columns:
            draw.rectangle(
                [
                    (column.x, offset + column.y),
                    (column.x + column.width - 1, offset + column.y + column.height - 1),
                ],
                fill=colors["border"],
            )

    screen = _load_screen(frame.image, settings.layout.scroll.width)
    for window in settings.layout.windows:
        height = min(window.height, screen.height - window.scroll_top)
        width = min(window.width, screen.width)
        if width <= 0 or height <= 0:
            break
        region = screen.crop((0, window.scroll_top, width, window.scroll_top + height))
        canvas.paste(region, (window.x, offset + window.y))
        if height < window.height:
            break

    return canvas


def write_frame(canvas: Image.Image, path: str, frame_format: str, quality: int) -> None:
    if frame_format == "png":
        canvas.save(path, "PNG")
    else:
        canvas.save(path, "JPEG", quality=quality)


def _compose_and_write(args: tuple[ScreenFrame, FrameSettings]) -> FrameFile:
    """Worker function: compose one frame and write it to disk.

    Takes a single tuple so it works with ProcessPoolExecutor.submit().
    """
    frame, settings = args
    logger.debug("Compositing frame #%d", frame.time)
    canvas = compose_frame(frame, settings)
    path = str(Path(settings.output_dir) / frame_file_name(frame.time, settings.frame_format))
    write_frame(canvas, path, settings.frame_format, settings.frame_quality)
    return FrameFile(path=path, time=frame.time)


# ── Main composition ─────────────────────────────────────────────

def composite_frames(
    spec: CompositionSpec,
    frames: list[ScreenFrame],
    total: ResourcesLoading,
    layout_spec: LayoutSpec,
    layout: LayoutResult,
    output_dir: str | Path,
    frame_format: str = "png",
    frame_quality: int = 85,
    has_progress_bar: bool = True,
    banner_file_path: str | None = None,
) -> CompositionResult:
    """Compose every captured frame into an image file in output_dir.

    Args:
        spec: Colors and worker count.
        frames: Captured frames with correlated resource totals.
        total: Grand total of loaded resources (progress bar denominator).
        layout_spec: Canvas geometry.
        layout: Computed columns/windows for layout_spec.
        output_dir: Directory for frame images (created if needed).
        frame_format: "png" or "jpeg".
        frame_quality: JPEG quality.
        has_progress_bar: Draw the progress bar when totals are known.
        banner_file_path: Banner image placed at the top, if any.

    Returns:
        CompositionResult with one FrameFile per input frame, in time order.

    Raises:
        ValueError: Unknown frame format.
        OSError: Malformed captured image or failed write.
    """
    if frame_format not in VALID_FRAME_FORMATS:
        raise ValueError(
            f"Invalid frame format '{frame_format}'. Valid: {sorted(VALID_FRAME_FORMATS)}"
        )

    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    banner_png = None
    banner_height = 0
    if banner_file_path:
        logger.debug("Reading information banner image %s", banner_file_path)
        banner_png = Path(banner_file_path).read_bytes()
        with Image.open(io.BytesIO(banner_png)) as banner:
            banner_height = banner.height

    theme = spec.color_theme
    settings = FrameSettings(
        layout_spec=layout_spec,
        layout=layout,
        total=total,
        colors={
            "background": parse_hex_color(theme.background),
            "border": parse_hex_color(theme.border),
            "progress_background": parse_hex_color(theme.progress_background),
            "progress_foreground": parse_hex_color(theme.progress_foreground),
            "progress_text": parse_hex_color(theme.progress_text),
            "progress_time_text": parse_hex_color(theme.progress_time_text),
        },
        has_progress_bar=has_progress_bar,
        frame_format=frame_format,
        frame_quality=frame_quality,
        output_dir=str(out_dir),
        banner_png=banner_png,
        banner_height=banner_height,
    )

    work = [(frame, settings) for frame in frames]
    effective_workers = max(1, min(spec.workers, len(work)))

    if effective_workers == 1:
        frame_files = [_compose_and_write(item) for item in work]
    else:
        logger.debug("Compositing %d frames with %d workers", len(work), effective_workers)
        frame_files = []
        with ProcessPoolExecutor(max_workers=effective_workers) as pool:
            futures = [pool.submit(_compose_and_write, item) for item in work]
            for future in as_completed(futures):
                frame_files.append(future.result())  # propagate exceptions

    frame_files.sort(key=lambda f: f.time)
    return CompositionResult(dir_path=str(out_dir), frame_files=frame_files)
