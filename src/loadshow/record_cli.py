"""CLI for recording a page load to video.

Usage:
    # Defaults
    loadshow record https://example.com/ out.mp4

    # Spec from YAML plus individual overrides, keeping artifacts
    loadshow record https://example.com/ out.mp4 \
        -m spec.yaml \
        -u layout.columns=4 -u recording.network.latency_ms=100 \
        -u rendering.ffmpeg_args="-pix_fmt,yuv420p" \
        -a artifacts/

Without -a, artifacts go to a temporary directory removed afterwards.
"""

import tempfile
import time
from concurrent.futures.process import BrokenProcessPool

from playwright.async_api import Error as PlaywrightError

from .browser import BrowserLaunchError
from .common import EncoderError
from .main import ArgumentParser, configure_logging, fail
from .pipeline import LoadshowSpec, ProgressListener, build_spec, run_loadshow
from .spec import ConfigError, load_yaml_overrides, phrase_to_overrides


class PrintingListener(ProgressListener):
    """Prints one line per finished stage."""

    def __init__(self):
        self.t0 = time.monotonic()

    def _done(self, stage: str, detail: str) -> None:
        elapsed = time.monotonic() - self.t0
        print(f"  DONE   {stage:<11} {detail} ({elapsed:.1f}s)", flush=True)

    def after_compute_layout(self, layout_spec, layout):
        self._done(
            "layout",
            f"{len(layout.columns)} columns, scroll {layout.scroll.width}x{layout.scroll.height}",
        )

    def after_record_page_loading(self, recording_spec, recording):
        onload = recording.timing.on_load_ms
        onload_text = f"{onload / 1000:.2f}s" if onload is not None else "n/a"
        self._done(
            "recording",
            f"{len(recording.screen_frames)} frames, "
            f"{recording.total_resources.all / 1024 / 1024:.2f} MB, onload {onload_text}",
        )

    def after_create_banner(self, banner_spec, banner):
        self._done("banner", f"{banner.width}x{banner.height} {banner.output_file_path}")

    def after_composite_frames(self, composition_spec, composition):
        self._done("composition", f"{len(composition.frame_files)} frames in {composition.dir_path}")

    def after_render_video(self, rendering_spec, rendering):
        self._done("rendering", "ffmpeg finished")


def _record(spec: LoadshowSpec, url: str, video_file_path: str, artifacts_dir_path: str) -> None:
    print(f"Recording {url}", flush=True)
    try:
        result = run_loadshow(
            spec, url, video_file_path, artifacts_dir_path, listener=PrintingListener(),
        )
    except (
        BrowserLaunchError, EncoderError, BrokenProcessPool, PlaywrightError, ValueError, OSError,
    ) as exc:
        fail(exc)
    print(f"\nDone: {result.video_file_path}")


def main(args=None):
    parser = ArgumentParser(
        prog="loadshow record",
        description="Record loading video of the URL.",
    )
    parser.add_argument("url", help="URL to record")
    parser.add_argument("video_file_path", help="Output video file path")
    parser.add_argument(
        "-m", "--merge", default=None,
        help="Path to a YAML spec file merged onto the defaults",
    )
    parser.add_argument(
        "-u", "--update", action="append", default=[], metavar="KEY=VALUE",
        help="Update one spec value, e.g. layout.columns=4 (repeatable)",
    )
    parser.add_argument(
        "-a", "--artifacts", default=None,
        help="Artifacts directory (default: a temporary directory)",
    )
    parsed = parser.parse_args(args)

    configure_logging()

    # Spec: defaults <- YAML file <- each -u phrase, in order.
    try:
        overrides = []
        if parsed.merge:
            overrides.append(load_yaml_overrides(parsed.merge))
        overrides += [phrase_to_overrides(phrase) for phrase in parsed.update]
        spec = build_spec(*overrides)
    except ConfigError as exc:
        fail(exc)
    except OSError as exc:
        fail(f"Failed to read {parsed.merge}: {exc}")

    if parsed.artifacts:
        _record(spec, parsed.url, parsed.video_file_path, parsed.artifacts)
    else:
        with tempfile.TemporaryDirectory(prefix="loadshow-") as tmp:
            _record(spec, parsed.url, parsed.video_file_path, tmp)


if __name__ == "__main__":
    main()
