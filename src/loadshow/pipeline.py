"""Pipeline driver — layout → recording → banner → composition → rendering.

Each stage's output feeds the next stage's input. After each stage the
optional ProgressListener hook for that stage is called synchronously with
the stage's input and output. A failure in any stage aborts the run; no
stage is retried. Navigation problems are not failures here: the recorder
absorbs them and returns what it captured.

Artifacts written to artifacts_dir_path:
  banner.html, banner.vars.json, banner.png   (when has_banner)
  frames/frame-<time>.png|jpg
  timeline.txt, ffmpeg.args.txt
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from .banner import BannerContext, BannerResult, BannerSpec, create_banner
from .composition import VALID_FRAME_FORMATS, CompositionSpec, composite_frames
from .layout import LayoutSpec, compute_layout
from .recording import RecordingSpec, ResourcesLoading, Timing, record_page_loading
from .rendering import RenderingSpec, render_video
from .spec import ConfigError, merge_spec

logger = logging.getLogger(__name__)


@dataclass
class LoadshowSpec:
    frame_format: str = "png"        # "png" or "jpeg"
    frame_quality: int = 85
    has_banner: bool = True
    has_progress_bar: bool = True
    layout: LayoutSpec = field(default_factory=LayoutSpec)
    recording: RecordingSpec = field(default_factory=RecordingSpec)
    banner: BannerSpec = field(default_factory=BannerSpec)
    composition: CompositionSpec = field(default_factory=CompositionSpec)
    rendering: RenderingSpec = field(default_factory=RenderingSpec)


def build_spec(*overrides) -> LoadshowSpec:
    """Merge override mappings, in order, onto the defaults.

    Raises:
        ConfigError: Unknown key, uncoercible value, or bad frame format.
    """
    spec = LoadshowSpec()
    for override in overrides:
        spec = merge_spec(spec, override)
    if spec.frame_format not in VALID_FRAME_FORMATS:
        raise ConfigError(
            f"Invalid value for frame_format: {spec.frame_format!r}. "
            f"Valid: {sorted(VALID_FRAME_FORMATS)}"
        )
    return spec


class ProgressListener:
    """Stage hooks, called with (input, output). Override what you need."""

    def after_compute_layout(self, layout_spec, layout):
        pass

    def after_record_page_loading(self, recording_spec, recording):
        pass

    def after_create_banner(self, banner_spec, banner):
        pass

    def after_composite_frames(self, composition_spec, composition):
        pass

    def after_render_video(self, rendering_spec, rendering):
        pass


@dataclass
class LoadshowResult:
    url: str
    video_file_path: str
    title: str | None
    timing: Timing
    resources: ResourcesLoading


def run_loadshow(
    spec: LoadshowSpec,
    url: str,
    video_file_path: str,
    artifacts_dir_path: str,
    listener: ProgressListener | None = None,
) -> LoadshowResult:
    """Record url loading and render it to video_file_path.

    Raises:
        BrowserLaunchError: No usable browser.
        EncoderError: ffmpeg failed.
        ValueError: Nothing was captured.
    """
    listener = listener or ProgressListener()
    timestamp_ms = int(time.time() * 1000)
    artifacts = Path(artifacts_dir_path)
    artifacts.mkdir(parents=True, exist_ok=True)
    Path(video_file_path).parent.mkdir(parents=True, exist_ok=True)

    logger.info("Starting loadshow %s", url)

    # ── Layout ───────────────────────────────────────────────────
    layout = compute_layout(spec.layout)
    listener.after_compute_layout(spec.layout, layout)

    # ── Recording ────────────────────────────────────────────────
    logger.info("Recording web page loading")
    recording = asyncio.run(record_page_loading(
        spec.recording, url, layout.scroll, frame_quality=spec.frame_quality,
    ))
    listener.after_record_page_loading(spec.recording, recording)

    # ── Banner ───────────────────────────────────────────────────
    banner: BannerResult | None = None
    if spec.has_banner:
        logger.info("Creating information banner")
        context = BannerContext(
            width=spec.layout.canvas_width,
            url=url,
            html_title=recording.title or url,
            timestamp_ms=timestamp_ms,
            resource_size_bytes=recording.total_resources.all,
            onload_time_ms=recording.timing.on_load_ms,
        )
        banner = asyncio.run(create_banner(
            spec.banner,
            context,
            output_file_path=str(artifacts / "banner.png"),
            html_file_path=str(artifacts / "banner.html"),
            vars_file_path=str(artifacts / "banner.vars.json"),
            browser=spec.recording.browser,
        ))
        listener.after_create_banner(spec.banner, banner)

    # ── Composition ─────────────────────────────────────────────
    logger.info("Composing %d frames", len(recording.screen_frames))
    composition = composite_frames(
        spec.composition,
        recording.screen_frames,
        recording.total_resources,
        spec.layout,
        layout,
        output_dir=artifacts / "frames",
        frame_format=spec.frame_format,
        frame_quality=spec.frame_quality,
        has_progress_bar=spec.has_progress_bar,
        banner_file_path=banner.output_file_path if banner else None,
    )
    listener.after_composite_frames(spec.composition, composition)

    # ── Rendering ───────────────────────────────────────────────
    logger.info("Rendering video file %s", video_file_path)
    rendering = render_video(
        spec.rendering,
        composition.frame_files,
        timeline_file_path=str(artifacts / "timeline.txt"),
        ffmpeg_args_path=str(artifacts / "ffmpeg.args.txt"),
        video_file_path=video_file_path,
    )
    listener.after_render_video(spec.rendering, rendering)

    logger.info(
        "Finished loadshow %s: %d bytes, timing %s",
        url, recording.total_resources.all, recording.timing,
    )
    return LoadshowResult(
        url=url,
        video_file_path=video_file_path,
        title=recording.title,
        timing=recording.timing,
        resources=recording.total_resources,
    )
