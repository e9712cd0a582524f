"""CLI for side-by-side comparison videos.

Usage:
    loadshow juxtapose before.mp4 after.mp4 -o compare.mp4
"""

from .common import EncoderError
from .juxtapose import run_juxtapose
from .main import ArgumentParser, configure_logging, fail


def main(args=None):
    parser = ArgumentParser(
        prog="loadshow juxtapose",
        description="Juxtapose multiple videos into one to compare.",
    )
    parser.add_argument(
        "inputs", nargs="+",
        help="Input video file paths (at least 2)",
    )
    parser.add_argument(
        "-o", "--output", required=True,
        help="Output video file path",
    )
    parsed = parser.parse_args(args)

    if len(parsed.inputs) < 2:
        parser.error("At least 2 input paths are required")

    configure_logging()

    print(f"Juxtaposing {len(parsed.inputs)} videos")
    try:
        run_juxtapose(parsed.inputs, parsed.output)
    except EncoderError as exc:
        fail(exc)
    print(f"Done: {parsed.output}")


if __name__ == "__main__":
    main()
