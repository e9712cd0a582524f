"""Video assembler — composited frames to a variable-frame-rate video.

Frames arrive at irregular times (whenever the browser repainted), so the
video is assembled with ffmpeg's concat demuxer from a timeline file that
gives each image its own display duration:

    file 'frames/frame-0000001000.png'
    duration 1
    file 'frames/frame-0000003000.png'
    duration 2
    file 'frames/frame-0000003000.png'     ← outro hold
    duration 3
    file 'frames/frame-0000003000.png'     ← no duration

Each frame is shown until the next one arrives; the first is shown from
navigation start. The outro holds the last frame for outro_ms. The final
duration-less entry is required: concat ignores the duration of the last
entry, so without it the outro would be dropped.

The timeline and the exact ffmpeg arguments are written to disk before
encoding so a run can be reproduced by hand.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .common import CommandOutput, EncoderError, run_ffmpeg
from .composition import FrameFile

logger = logging.getLogger(__name__)


@dataclass
class RenderingSpec:
    outro_ms: int = 1000
    ffmpeg_args: list[str] = field(default_factory=list)   # appended before the output path


@dataclass(frozen=True)
class TimelineEntry:
    file: str                          # relative to the timeline file
    duration_s: float | None = None    # None: trailing reference without duration


@dataclass
class RenderingResult:
    exit_code: int
    stdout: str
    stderr: str


def format_seconds(ms: int | float) -> str:
    """1000 -> '1', 1500 -> '1.5', 33 -> '0.033'."""
    return f"{ms / 1000:.3f}".rstrip("0").rstrip(".")


def build_timeline(
    frame_files: list[FrameFile],
    timeline_dir: str | Path,
    outro_ms: int,
) -> list[TimelineEntry]:
    """Build concat entries: one per frame, the outro hold, and a trailing ref.

    Raises:
        ValueError: If frame_files is empty.
    """
    if not frame_files:
        raise ValueError("No frames to render")

    entries = []
    current_ms = 0
    for frame_file in frame_files:
        rel = os.path.relpath(frame_file.path, timeline_dir)
        # A frame stamped before navigation start gets a zero duration.
        entries.append(TimelineEntry(rel, max(0, frame_file.time - current_ms) / 1000))
        current_ms = frame_file.time

    last = os.path.relpath(frame_files[-1].path, timeline_dir)
    if outro_ms > 0:
        entries.append(TimelineEntry(last, outro_ms / 1000))
    entries.append(TimelineEntry(last))
    return entries


def format_timeline(entries: list[TimelineEntry]) -> str:
    lines = []
    for entry in entries:
        lines.append(f"file '{entry.file}'")
        if entry.duration_s is not None:
            lines.append(f"duration {format_seconds(entry.duration_s * 1000)}")
    return "\n".join(lines)


def build_ffmpeg_args(
    timeline_file_path: str, video_file_path: str, extra_args: list[str],
) -> list[str]:
    return [
        "-y",
        "-f", "concat",
        "-safe", "0",
        "-i", timeline_file_path,
        "-vsync", "vfr",
        *extra_args,
        video_file_path,
    ]


def format_args(args: list[str]) -> str:
    """Space-join args, single-quoting those containing spaces."""
    return " ".join(f"'{arg}'" if " " in arg else arg for arg in args)


def render_video(
    spec: RenderingSpec,
    frame_files: list[FrameFile],
    timeline_file_path: str,
    ffmpeg_args_path: str,
    video_file_path: str,
    runner=run_ffmpeg,
) -> RenderingResult:
    """Write the timeline and ffmpeg args, then encode the video.

    Args:
        spec: Outro duration and extra ffmpeg arguments.
        frame_files: Composited frames in time order.
        timeline_file_path: Where to write the concat timeline.
        ffmpeg_args_path: Where to write the ffmpeg argument record.
        video_file_path: Output video.
        runner: Callable taking an argument list and returning a
            CommandOutput. Defaults to running ffmpeg.

    Raises:
        ValueError: If frame_files is empty.
        EncoderError: ffmpeg exited nonzero. Carries its stderr.
    """
    timeline_dir = os.path.dirname(timeline_file_path) or "."
    logger.debug("Creating timeline file %s", timeline_file_path)
    entries = build_timeline(frame_files, timeline_dir, spec.outro_ms)
    Path(timeline_file_path).write_text(format_timeline(entries))

    args = build_ffmpeg_args(timeline_file_path, video_file_path, spec.ffmpeg_args)
    Path(ffmpeg_args_path).write_text(format_args(args))

    logger.debug("Rendering video %s with ffmpeg", video_file_path)
    output: CommandOutput = runner(args)
    if output.exit_code != 0:
        logger.error("Failed to execute ffmpeg with exit code %d", output.exit_code)
        raise EncoderError(
            f"Failed to render video: {output.stderr}", output.exit_code, output.stderr,
        )

    return RenderingResult(output.exit_code, output.stdout, output.stderr)
