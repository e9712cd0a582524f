"""Stack videos side by side with ffmpeg for comparison."""

import logging
from pathlib import Path

from .common import EncoderError, run_ffmpeg

logger = logging.getLogger(__name__)


def build_juxtapose_args(input_paths: list[str], output_path: str) -> list[str]:
    args = ["-y"]
    for path in input_paths:
        args += ["-i", path]
    streams = "".join(f"[{i}:v]" for i in range(len(input_paths)))
    args += [
        "-filter_complex", f"{streams}hstack=inputs={len(input_paths)}[v]",
        "-map", "[v]",
        "-vcodec", "libx264", "-crf", "23",
        output_path,
    ]
    return args


def run_juxtapose(input_paths: list[str], output_path: str, runner=run_ffmpeg) -> str:
    """Stack input videos left to right into output_path.

    Inputs must share the same height (hstack requirement).

    Raises:
        ValueError: Fewer than two inputs.
        EncoderError: ffmpeg exited nonzero.
    """
    if len(input_paths) < 2:
        raise ValueError("At least 2 input videos are required")

    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    output = runner(build_juxtapose_args(input_paths, output_path))
    if output.exit_code != 0:
        raise EncoderError(
            f"Failed to juxtapose videos: {output.stderr}", output.exit_code, output.stderr,
        )
    logger.debug("Juxtaposed %d videos into %s", len(input_paths), output_path)
    return output_path
