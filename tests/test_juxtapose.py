"""Tests for side-by-side comparison videos."""

import subprocess

import imageio_ffmpeg
import pytest
from moviepy import VideoFileClip

from loadshow.common import CommandOutput, EncoderError
from loadshow.juxtapose import build_juxtapose_args, run_juxtapose

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()


def _make_video(path, color):
    subprocess.run(
        [
            _FFMPEG, "-y",
            "-f", "lavfi", "-i", f"color=c={color}:s=64x48:d=1:r=10",
            "-c:v", "libx264", "-pix_fmt", "yuv420p",
            str(path),
        ],
        check=True,
        capture_output=True,
    )
    return str(path)


class TestBuildArgs:
    def test_two_inputs(self):
        assert build_juxtapose_args(["a.mp4", "b.mp4"], "out.mp4") == [
            "-y",
            "-i", "a.mp4",
            "-i", "b.mp4",
            "-filter_complex", "[0:v][1:v]hstack=inputs=2[v]",
            "-map", "[v]",
            "-vcodec", "libx264", "-crf", "23",
            "out.mp4",
        ]

    def test_three_inputs(self):
        args = build_juxtapose_args(["a.mp4", "b.mp4", "c.mp4"], "out.mp4")
        assert "[0:v][1:v][2:v]hstack=inputs=3[v]" in args


class TestRunJuxtapose:
    def test_requires_two_inputs(self, tmp_path):
        with pytest.raises(ValueError, match="At least 2"):
            run_juxtapose(["a.mp4"], str(tmp_path / "out.mp4"))

    def test_failure_raises_encoder_error(self, tmp_path):
        def failing_runner(args):
            return CommandOutput(1, "", "a.mp4: No such file or directory")

        with pytest.raises(EncoderError, match="No such file") as exc_info:
            run_juxtapose(["a.mp4", "b.mp4"], str(tmp_path / "out.mp4"), runner=failing_runner)
        assert exc_info.value.exit_code == 1

    def test_stacks_videos(self, tmp_path):
        left = _make_video(tmp_path / "left.mp4", "red")
        right = _make_video(tmp_path / "right.mp4", "blue")
        out = tmp_path / "compare" / "out.mp4"

        run_juxtapose([left, right], str(out))

        with VideoFileClip(str(out)) as clip:
            assert tuple(clip.size) == (128, 48)
