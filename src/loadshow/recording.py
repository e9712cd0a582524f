"""Page-load recorder — screencast plus network telemetry.

Drives one browser page through a throttled navigation while capturing:
  - screencast frames (CDP Page.screencastFrame), timed relative to the
    navigation start;
  - cumulative bytes of 2xx response bodies (all, and images only), as a
    history of samples;
  - lifecycle milestones: first response, DOMContentLoaded, load, last
    frame.

Event flow. Playwright callbacks never touch the result. They only put
small event records on an asyncio.Queue; a single consumer task owns the
RecordingState and applies events in arrival order. Response bodies and
the page title are read in background tasks that report back through the
same queue. Body reads finish out of order, so the resource history is
in resolution order and frames get their resource snapshot afterwards,
in correlate_resources().

Failure semantics:
  - navigation errors (timeout, network failure) are logged; the capture
    is finalized with whatever arrived.
  - title and body read failures are logged; the value is just absent.
  - browser launch failures propagate (BrowserLaunchError).
"""

import asyncio
import base64
import logging
import math
import time
from dataclasses import dataclass, field, replace

import numpy as np
from playwright.async_api import Error as PlaywrightError

from .browser import BrowserSpec, open_page
from .layout import Dimension

logger = logging.getLogger(__name__)

# Wait after stopping the screencast so an in-flight last frame arrives.
SETTLE_DELAY_S = 0.5


# ── Spec ───────────────────────────────────────────────────────────

@dataclass
class NetworkSpec:
    latency_ms: int = 20
    download_throughput_mbps: float = 10.0
    upload_throughput_mbps: float = 10.0


@dataclass
class RecordingSpec:
    network: NetworkSpec = field(default_factory=NetworkSpec)
    cpu_throttling: float = 4.0          # CPU slowdown multiplier
    headers: dict[str, str] = field(
        default_factory=dict, metadata={"case_insensitive": True},
    )
    viewport_width: int = 375            # CSS pixels
    timeout_ms: int = 30_000             # navigation timeout
    prefer_system_chrome: bool = False
    browser: BrowserSpec = field(default_factory=BrowserSpec)


# ── Results ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ResourcesLoading:
    all: int = 0
    images: int = 0


@dataclass(frozen=True)
class ResourceSample:
    timestamp_ms: int
    resources: ResourcesLoading


@dataclass
class ScreenFrame:
    time: int                    # ms since navigation start
    image: bytes                 # encoded screencast image (jpeg)
    resources: ResourcesLoading = ResourcesLoading()


@dataclass
class Timing:
    ttfr_ms: int | None = None   # time to first response
    ttfr_url: str | None = None
    on_dcl_ms: int | None = None
    on_load_ms: int | None = None
    screen_fix_ms: int | None = None   # time of the last screencast frame


@dataclass
class RecordingResult:
    screen_frames: list[ScreenFrame]
    title: str | None
    timing: Timing
    total_resources: ResourcesLoading
    resource_history: list[ResourceSample] = field(default_factory=list)


# ── Events ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ResponseReceived:
    timestamp_ms: int
    url: str


@dataclass(frozen=True)
class ResourceLoaded:
    timestamp_ms: int
    size: int
    is_image: bool


@dataclass(frozen=True)
class DOMContentLoaded:
    timestamp_ms: int


@dataclass(frozen=True)
class PageLoaded:
    timestamp_ms: int


@dataclass(frozen=True)
class TitleFetched:
    title: str


@dataclass(frozen=True)
class FrameCaptured:
    time: int
    data: str                    # base64 as delivered by CDP


class RecordingState:
    """Accumulates a recording. Only ever touched by the consumer task."""

    def __init__(self):
        self.frames: list[ScreenFrame] = []
        self.history: list[ResourceSample] = []
        self.total = ResourcesLoading()
        self.timing = Timing()
        self.title: str | None = None

    def apply(self, event) -> None:
        if isinstance(event, ResponseReceived):
            if self.timing.ttfr_ms is None:
                self.timing.ttfr_ms = event.timestamp_ms
                self.timing.ttfr_url = event.url
        elif isinstance(event, ResourceLoaded):
            self.total = ResourcesLoading(
                all=self.total.all + event.size,
                images=self.total.images + (event.size if event.is_image else 0),
            )
            self.history.append(ResourceSample(event.timestamp_ms, self.total))
        elif isinstance(event, DOMContentLoaded):
            self.timing.on_dcl_ms = event.timestamp_ms
        elif isinstance(event, PageLoaded):
            self.timing.on_load_ms = event.timestamp_ms
        elif isinstance(event, TitleFetched):
            self.title = event.title
        elif isinstance(event, FrameCaptured):
            # Resources are a placeholder until correlate_resources().
            self.frames.append(ScreenFrame(event.time, base64.b64decode(event.data)))
            self.timing.screen_fix_ms = event.time
        else:
            raise TypeError(f"Unknown recording event: {event!r}")

    def result(self) -> RecordingResult:
        return RecordingResult(
            screen_frames=correlate_resources(self.frames, self.history, self.total),
            title=self.title,
            timing=self.timing,
            total_resources=self.total,
            resource_history=list(self.history),
        )


async def consume_events(queue: asyncio.Queue, state: RecordingState) -> RecordingState:
    """Apply queued events to state until a None sentinel arrives."""
    while True:
        event = await queue.get()
        if event is None:
            return state
        state.apply(event)


# ── Post-processing ────────────────────────────────────────────────

def correlate_resources(
    frames: list[ScreenFrame],
    history: list[ResourceSample],
    total: ResourcesLoading,
) -> list[ScreenFrame]:
    """Attach to each frame the latest resource totals known at its time.

    A frame gets the sample with the greatest timestamp <= frame.time, or
    zero when there is none. The last frame always gets the grand total,
    so a progress bar ends at exactly 100% even if the last body resolved
    after the last frame. History must be in nondecreasing timestamp order,
    which holds for samples appended as bodies resolve.
    """
    if not frames:
        return []

    timestamps = np.array([s.timestamp_ms for s in history], dtype=np.int64)
    times = np.array([f.time for f in frames], dtype=np.int64)
    indices = np.searchsorted(timestamps, times, side="right") - 1

    correlated = [
        replace(frame, resources=history[i].resources if i >= 0 else ResourcesLoading())
        for frame, i in zip(frames, indices)
    ]
    correlated[-1] = replace(correlated[-1], resources=total)
    return correlated


# ── Capture ────────────────────────────────────────────────────────

def _now_ms() -> int:
    # Wall clock, to line up with CDP frame metadata timestamps.
    return int(time.time() * 1000)


class _Capture:
    """Browser-side handlers. Emits events; never mutates the state."""

    def __init__(self, page, cdp, queue: asyncio.Queue):
        self.page = page
        self.cdp = cdp
        self.queue = queue
        self.started_at_ms = _now_ms()
        self.pending: set[asyncio.Task] = set()

    def elapsed_ms(self) -> int:
        return _now_ms() - self.started_at_ms

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self.pending.add(task)
        task.add_done_callback(self.pending.discard)

    def register(self) -> None:
        self.page.on("dialog", self.on_dialog)
        self.page.on("response", self.on_response)
        self.page.on("domcontentloaded", self.on_dom_content_loaded)
        self.page.on("load", self.on_load)
        self.cdp.on("Page.screencastFrame", self.on_screencast_frame)

    async def on_dialog(self, dialog) -> None:
        # alert()/confirm() would otherwise hang the navigation.
        logger.debug("Dismissing %s dialog: %s", dialog.type, dialog.message)
        try:
            await dialog.dismiss()
        except PlaywrightError as exc:
            logger.debug("Failed to dismiss dialog: %s", exc)

    def on_response(self, response) -> None:
        self.queue.put_nowait(ResponseReceived(self.elapsed_ms(), response.url))

        status = response.status or 0
        if not 200 <= status < 300:
            return
        mime = response.headers.get("content-type", "")
        self._spawn(self._read_body(response, mime.startswith("image/")))

    async def _read_body(self, response, is_image: bool) -> None:
        try:
            body = await response.body()
        except PlaywrightError as exc:
            logger.debug("Failed to buffer response %s: %s", response.url, exc)
            return
        self.queue.put_nowait(ResourceLoaded(self.elapsed_ms(), len(body), is_image))

    def on_dom_content_loaded(self, _page) -> None:
        logger.debug("Received DOMContentLoaded event")
        self.queue.put_nowait(DOMContentLoaded(self.elapsed_ms()))
        self._spawn(self._fetch_title())

    async def _fetch_title(self) -> None:
        try:
            title = await self.page.eval_on_selector("title", "el => el.textContent")
        except PlaywrightError as exc:
            logger.warning("Failed to get title on DOMContentLoaded: %s", exc)
            return
        self.queue.put_nowait(TitleFetched(title or ""))

    def on_load(self, _page) -> None:
        logger.debug("Received load event")
        self.queue.put_nowait(PageLoaded(self.elapsed_ms()))

    async def on_screencast_frame(self, params: dict) -> None:
        frame_time = math.floor(params["metadata"]["timestamp"] * 1000) - self.started_at_ms
        self.queue.put_nowait(FrameCaptured(frame_time, params["data"]))
        try:
            await self.cdp.send("Page.screencastFrameAck", {"sessionId": params["sessionId"]})
        except PlaywrightError as exc:
            logger.debug("Failed to acknowledge screencast frame: %s", exc)

    def cancel_pending(self) -> None:
        if self.pending:
            logger.debug("Cancelling %d unfinished background reads", len(self.pending))
        for task in list(self.pending):
            task.cancel()


async def _apply_throttling(cdp, spec: RecordingSpec) -> None:
    logger.debug("Setting up network conditions and CPU throttling via CDP")
    await cdp.send("Network.enable")
    await cdp.send("Network.setCacheDisabled", {"cacheDisabled": True})
    await cdp.send("Network.emulateNetworkConditions", {
        "offline": False,
        "latency": spec.network.latency_ms,
        "downloadThroughput": math.floor(spec.network.download_throughput_mbps * 1024 * 1024 / 8),
        "uploadThroughput": math.floor(spec.network.upload_throughput_mbps * 1024 * 1024 / 8),
    })
    await cdp.send("Emulation.setCPUThrottlingRate", {"rate": spec.cpu_throttling})


async def record_page_loading(
    spec: RecordingSpec,
    url: str,
    screen: Dimension,
    frame_quality: int = 85,
) -> RecordingResult:
    """Load url in a throttled browser and record its screencast.

    Args:
        spec: Recording configuration.
        url: Page to load.
        screen: Required capture size in device pixels (layout scroll size).
            The viewport is viewport_width CSS pixels wide, scaled so that
            the captured width equals screen.width.
        frame_quality: JPEG quality of screencast frames.

    Returns:
        RecordingResult with frames in capture order, each carrying the
        resource totals known at its time.

    Raises:
        BrowserLaunchError: The browser could not be started.
    """
    scale = screen.width / spec.viewport_width
    viewport = {
        "width": spec.viewport_width,
        "height": math.ceil(screen.height / scale),
    }
    logger.debug("Viewport %s at device scale factor %.3f", viewport, scale)

    queue: asyncio.Queue = asyncio.Queue()
    state = RecordingState()

    async with open_page(
        spec.browser,
        spec.prefer_system_chrome,
        viewport=viewport,
        device_scale_factor=scale,
        extra_http_headers=dict(spec.headers),
    ) as page:
        cdp = await page.context.new_cdp_session(page)
        consumer = asyncio.create_task(consume_events(queue, state))
        capture = _Capture(page, cdp, queue)
        try:
            await _apply_throttling(cdp, spec)
            capture.register()

            # Screencast starts before navigation so the first paint is captured.
            logger.debug("Starting screencast")
            await cdp.send("Page.startScreencast", {
                "format": "jpeg",
                "quality": frame_quality,
                "everyNthFrame": 1,
            })
            capture.started_at_ms = _now_ms()

            try:
                logger.debug("Navigating to %s", url)
                await page.goto(url, wait_until="load", timeout=spec.timeout_ms)
            except PlaywrightError as exc:
                logger.error("Failed to navigate to %s: %s", url, exc)

            logger.debug("Stopping screencast and waiting for the last frame")
            try:
                await cdp.send("Page.stopScreencast")
            except PlaywrightError as exc:
                logger.warning("Failed to stop screencast: %s", exc)
            await asyncio.sleep(SETTLE_DELAY_S)
        finally:
            capture.cancel_pending()
            queue.put_nowait(None)
            await consumer
            try:
                await cdp.detach()
            except PlaywrightError as exc:
                logger.debug("Failed to detach CDP session: %s", exc)

    result = state.result()
    logger.debug(
        "Captured %d frames, %d bytes, timing %s",
        len(result.screen_frames), result.total_resources.all, result.timing,
    )
    return result
