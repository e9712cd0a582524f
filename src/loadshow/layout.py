"""Multi-column scroll geometry.

A tall page capture (the "scroll") is split across N columns so a long
page fits inside a fixed-size video frame:

  ┌──────────────────────────────┐
  │  ┌──────┐                    │  ← padding
  │  │ 0    │  ┌──────┐ ┌──────┐ │  ← columns after the first are indented
  │  │      │  │ 1    │ │ 2    │ │
  │  │      │  │      │ │      │ │
  │  └──────┘  │      │ │      │ │  ← the first column is outdented
  │            │      │ │      │ │
  │            └──────┘ └──────┘ │
  └──────────────────────────────┘

Each column has a border rectangle and an inner window. Window i shows
the scroll region starting at the summed height of windows 0..i-1, so the
columns read as one continuous scroll. Only the first column draws its top
border and only the last column draws its bottom border.

Pure and deterministic. Degenerate specs (zero columns, negative sizes)
are not rejected here; they just produce degenerate geometry.
"""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LayoutSpec:
    canvas_width: int = 512        # width of the video output
    canvas_height: int = 640       # height of the video output (below banner/progress)
    columns: int = 3               # columns of the browser screen
    gap: int = 20                  # gap between columns
    padding: int = 20              # padding around columns
    border_width: int = 1          # border width of columns
    indent: int = 20               # top offset of columns after the first
    outdent: int = 20              # bottom offset of the first column
    progress_height: int = 16      # height of the progress bar


@dataclass(frozen=True)
class Dimension:
    width: int
    height: int


@dataclass(frozen=True)
class Rectangle:
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class Window:
    x: int
    y: int
    width: int
    height: int
    scroll_top: int


@dataclass(frozen=True)
class LayoutResult:
    scroll: Dimension
    columns: tuple[Rectangle, ...]
    windows: tuple[Window, ...]


def compute_layout(spec: LayoutSpec) -> LayoutResult:
    """Compute column borders, inner windows and required scroll size."""
    logger.debug("compute_layout received %s", spec)

    column_width = (
        spec.canvas_width - spec.padding * 2 - spec.gap * (spec.columns - 1)
    ) // spec.columns
    base_height = spec.canvas_height - spec.padding * 2

    columns = []
    windows = []
    scroll_top = 0
    for i in range(spec.columns):
        is_first = i == 0
        is_last = i == spec.columns - 1

        column = Rectangle(
            x=spec.padding + i * (column_width + spec.gap),
            y=spec.padding + (0 if is_first else spec.indent),
            width=column_width,
            height=base_height - (spec.outdent if is_first else spec.indent),
        )
        columns.append(column)

        window = Window(
            x=column.x + spec.border_width,
            y=column.y + (spec.border_width if is_first else 0),
            width=column.width - spec.border_width * 2,
            height=column.height - (spec.border_width if is_last else 0),
            scroll_top=scroll_top,
        )
        windows.append(window)
        scroll_top += window.height

    scroll = Dimension(width=column_width, height=scroll_top)
    return LayoutResult(scroll=scroll, columns=tuple(columns), windows=tuple(windows))
