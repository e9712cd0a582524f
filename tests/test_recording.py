"""Tests for recorder event handling and resource correlation.

No browser is launched. RecordingState gets hand-built events, and the
capture handlers run against small fake page, CDP session and response
objects.
"""

import asyncio
import base64

import pytest
from playwright.async_api import Error as PlaywrightError

from loadshow import recording
from loadshow.recording import (
    DOMContentLoaded,
    FrameCaptured,
    PageLoaded,
    ResourceLoaded,
    ResourceSample,
    ResourcesLoading,
    ResponseReceived,
    RecordingState,
    ScreenFrame,
    TitleFetched,
    _Capture,
    consume_events,
    correlate_resources,
)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _frames(*times):
    return [ScreenFrame(t, b"") for t in times]


class TestRecordingState:
    def test_first_response_sets_ttfr(self):
        state = RecordingState()
        state.apply(ResponseReceived(120, "https://example.com/"))
        state.apply(ResponseReceived(300, "https://example.com/app.js"))
        assert state.timing.ttfr_ms == 120
        assert state.timing.ttfr_url == "https://example.com/"

    def test_resources_accumulate(self):
        state = RecordingState()
        state.apply(ResourceLoaded(100, 1000, is_image=False))
        state.apply(ResourceLoaded(200, 500, is_image=True))
        state.apply(ResourceLoaded(250, 300, is_image=True))
        assert state.total == ResourcesLoading(all=1800, images=800)
        assert state.history == [
            ResourceSample(100, ResourcesLoading(1000, 0)),
            ResourceSample(200, ResourcesLoading(1500, 500)),
            ResourceSample(250, ResourcesLoading(1800, 800)),
        ]

    def test_lifecycle_and_title(self):
        state = RecordingState()
        state.apply(DOMContentLoaded(800))
        state.apply(TitleFetched("Example Domain"))
        state.apply(PageLoaded(1500))
        assert state.timing.on_dcl_ms == 800
        assert state.timing.on_load_ms == 1500
        assert state.title == "Example Domain"

    def test_frames_decoded_and_screen_fix(self):
        state = RecordingState()
        state.apply(FrameCaptured(40, _b64(b"first")))
        state.apply(FrameCaptured(90, _b64(b"second")))
        assert [f.image for f in state.frames] == [b"first", b"second"]
        assert state.timing.screen_fix_ms == 90

    def test_unknown_event_raises(self):
        with pytest.raises(TypeError, match="Unknown recording event"):
            RecordingState().apply("not an event")

    def test_nothing_observed(self):
        result = RecordingState().result()
        assert result.screen_frames == []
        assert result.title is None
        assert result.timing.on_load_ms is None
        assert result.total_resources == ResourcesLoading(0, 0)

    def test_result_correlates_frames(self):
        state = RecordingState()
        state.apply(FrameCaptured(50, _b64(b"a")))
        state.apply(ResourceLoaded(100, 400, is_image=False))
        state.apply(FrameCaptured(150, _b64(b"b")))
        state.apply(FrameCaptured(200, _b64(b"c")))
        state.apply(ResourceLoaded(500, 600, is_image=True))
        result = state.result()
        assert [f.resources for f in result.screen_frames] == [
            ResourcesLoading(0, 0),
            ResourcesLoading(400, 0),
            ResourcesLoading(1000, 600),   # last frame gets the grand total
        ]
        assert result.total_resources == ResourcesLoading(1000, 600)


class TestConsumeEvents:
    def test_applies_until_sentinel(self):
        async def run():
            queue = asyncio.Queue()
            state = RecordingState()
            consumer = asyncio.create_task(consume_events(queue, state))
            queue.put_nowait(ResponseReceived(10, "https://example.com/"))
            queue.put_nowait(ResourceLoaded(20, 64, is_image=False))
            queue.put_nowait(FrameCaptured(30, _b64(b"x")))
            queue.put_nowait(None)
            queue.put_nowait(PageLoaded(40))    # after the sentinel: ignored
            return await consumer

        state = asyncio.run(run())
        assert state.timing.ttfr_ms == 10
        assert state.total.all == 64
        assert len(state.frames) == 1
        assert state.timing.on_load_ms is None


class TestCorrelateResources:
    HISTORY = [
        ResourceSample(100, ResourcesLoading(10, 0)),
        ResourceSample(200, ResourcesLoading(30, 5)),
        ResourceSample(300, ResourcesLoading(60, 5)),
    ]
    TOTAL = ResourcesLoading(100, 20)

    def test_step_function(self):
        frames = correlate_resources(_frames(50, 100, 150, 250, 400), self.HISTORY, self.TOTAL)
        assert [f.resources.all for f in frames] == [0, 10, 10, 30, 100]

    def test_frame_before_first_sample_is_zero(self):
        frames = correlate_resources(_frames(10, 20), self.HISTORY, self.TOTAL)
        assert frames[0].resources == ResourcesLoading(0, 0)

    def test_last_frame_gets_total(self):
        frames = correlate_resources(_frames(10, 20), self.HISTORY, self.TOTAL)
        assert frames[-1].resources == self.TOTAL

    def test_empty_history(self):
        total = ResourcesLoading(0, 0)
        frames = correlate_resources(_frames(10, 20, 30), [], total)
        assert all(f.resources == total for f in frames)

    def test_empty_frames(self):
        assert correlate_resources([], self.HISTORY, self.TOTAL) == []

    def test_monotonic(self):
        frames = correlate_resources(_frames(0, 120, 220, 320, 420), self.HISTORY, self.TOTAL)
        totals = [f.resources.all for f in frames]
        assert totals == sorted(totals)

    def test_preserves_times_and_images(self):
        source = [ScreenFrame(100, b"img-a"), ScreenFrame(200, b"img-b")]
        frames = correlate_resources(source, self.HISTORY, self.TOTAL)
        assert [(f.time, f.image) for f in frames] == [(100, b"img-a"), (200, b"img-b")]


# ── Capture handlers ──────────────────────────────────────────────

class FakeResponse:
    def __init__(self, url, status=200, content_type="text/html", body=b"", error=None, gate=None):
        self.url = url
        self.status = status
        self.headers = {"content-type": content_type} if content_type else {}
        self._body = body
        self._error = error
        self._gate = gate
        self.body_calls = 0

    async def body(self):
        self.body_calls += 1
        if self._gate is not None:
            await self._gate.wait()
        if self._error is not None:
            raise self._error
        return self._body


class FakeCDPSession:
    def __init__(self, error=None):
        self.sent = []
        self.handlers = {}
        self._error = error

    def on(self, event, handler):
        self.handlers[event] = handler

    async def send(self, method, params=None):
        self.sent.append((method, params))
        if self._error is not None:
            raise self._error


class FakePage:
    def __init__(self, title="Example Domain", error=None):
        self.handlers = {}
        self._title = title
        self._error = error

    def on(self, event, handler):
        self.handlers[event] = handler

    async def eval_on_selector(self, selector, expression):
        if self._error is not None:
            raise self._error
        return self._title


class FakeDialog:
    type = "alert"
    message = "hello"

    def __init__(self):
        self.dismissed = False

    async def dismiss(self):
        self.dismissed = True


def _drain(queue):
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


@pytest.fixture
def fixed_clock(monkeypatch):
    """Navigation starts at 1_000_000 ms and every handler sees +250 ms."""
    monkeypatch.setattr(recording, "_now_ms", lambda: 1_000_250)


class TestCapture:
    def _capture(self, page=None, cdp=None):
        capture = _Capture(page or FakePage(), cdp or FakeCDPSession(), asyncio.Queue())
        capture.started_at_ms = 1_000_000
        return capture

    def _run(self, capture, scenario):
        async def run():
            await scenario(capture)
            await asyncio.gather(*list(capture.pending), return_exceptions=True)
            return _drain(capture.queue)

        return asyncio.run(run())

    def test_register_hooks_page_and_screencast(self):
        page, cdp = FakePage(), FakeCDPSession()
        capture = self._capture(page, cdp)
        capture.register()
        assert set(page.handlers) == {"dialog", "response", "domcontentloaded", "load"}
        assert set(cdp.handlers) == {"Page.screencastFrame"}

    def test_2xx_response_reports_body_size(self, fixed_clock):
        capture = self._capture()
        response = FakeResponse("https://example.com/", body=b"x" * 120)

        async def scenario(c):
            c.on_response(response)

        events = self._run(capture, scenario)
        assert events == [
            ResponseReceived(250, "https://example.com/"),
            ResourceLoaded(250, 120, is_image=False),
        ]

    def test_non_2xx_sets_ttfr_but_skips_body(self, fixed_clock):
        capture = self._capture()
        redirect = FakeResponse("https://example.com/", status=301, body=b"moved")
        missing = FakeResponse("https://example.com/a.png", status=404, content_type="image/png")

        async def scenario(c):
            c.on_response(redirect)
            c.on_response(missing)

        events = self._run(capture, scenario)
        assert events == [
            ResponseReceived(250, "https://example.com/"),
            ResponseReceived(250, "https://example.com/a.png"),
        ]
        assert redirect.body_calls == 0
        assert missing.body_calls == 0

        state = RecordingState()
        for event in events:
            state.apply(event)
        assert state.timing.ttfr_url == "https://example.com/"
        assert state.total == ResourcesLoading(0, 0)

    def test_only_image_content_types_count_as_images(self, fixed_clock):
        capture = self._capture()
        responses = [
            FakeResponse("https://example.com/", content_type="text/html; charset=utf-8", body=b"h" * 50),
            FakeResponse("https://example.com/a.png", content_type="image/png", body=b"i" * 100),
            FakeResponse("https://example.com/b.svg", content_type="image/svg+xml", body=b"s" * 30),
            FakeResponse("https://example.com/app.js", content_type="", body=b"j" * 7),
        ]

        async def scenario(c):
            for response in responses:
                c.on_response(response)

        state = RecordingState()
        for event in self._run(capture, scenario):
            state.apply(event)
        assert state.total == ResourcesLoading(all=187, images=130)

    def test_failed_body_read_leaves_no_sample(self, fixed_clock):
        capture = self._capture()
        response = FakeResponse(
            "https://example.com/", error=PlaywrightError("Response body is unavailable"),
        )

        async def scenario(c):
            c.on_response(response)

        events = self._run(capture, scenario)
        assert events == [ResponseReceived(250, "https://example.com/")]

    def test_cancel_pending_drops_unfinished_reads(self, fixed_clock):
        capture = self._capture()
        response = FakeResponse("https://example.com/big.jpg", content_type="image/jpeg",
                                body=b"x", gate=asyncio.Event())

        async def scenario(c):
            c.on_response(response)
            await asyncio.sleep(0)       # let the read start and block
            assert len(c.pending) == 1
            c.cancel_pending()

        events = self._run(capture, scenario)
        assert events == [ResponseReceived(250, "https://example.com/big.jpg")]
        assert capture.pending == set()

    def test_screencast_frame_offset_and_ack(self):
        cdp = FakeCDPSession()
        capture = self._capture(cdp=cdp)
        params = {
            "data": "aGVsbG8=",
            "metadata": {"timestamp": 1_000.2345},   # seconds
            "sessionId": 7,
        }

        async def scenario(c):
            await c.on_screencast_frame(params)

        events = self._run(capture, scenario)
        # floor(1_000_234.5) - 1_000_000
        assert events == [FrameCaptured(234, "aGVsbG8=")]
        assert cdp.sent == [("Page.screencastFrameAck", {"sessionId": 7})]

    def test_failed_ack_still_keeps_frame(self):
        cdp = FakeCDPSession(error=PlaywrightError("Target closed"))
        capture = self._capture(cdp=cdp)
        params = {"data": "eA==", "metadata": {"timestamp": 1_001.0}, "sessionId": 1}

        async def scenario(c):
            await c.on_screencast_frame(params)

        assert self._run(capture, scenario) == [FrameCaptured(1000, "eA==")]

    def test_dom_content_loaded_fetches_title(self, fixed_clock):
        capture = self._capture(page=FakePage(title="Example Domain"))

        async def scenario(c):
            c.on_dom_content_loaded(c.page)

        events = self._run(capture, scenario)
        assert events == [DOMContentLoaded(250), TitleFetched("Example Domain")]

    def test_title_fetch_failure_is_absorbed(self, fixed_clock):
        page = FakePage(error=PlaywrightError("No element matches selector"))
        capture = self._capture(page=page)

        async def scenario(c):
            c.on_dom_content_loaded(c.page)

        events = self._run(capture, scenario)
        assert events == [DOMContentLoaded(250)]

    def test_load_event(self, fixed_clock):
        capture = self._capture()

        async def scenario(c):
            c.on_load(c.page)

        assert self._run(capture, scenario) == [PageLoaded(250)]

    def test_dialogs_are_dismissed(self):
        capture = self._capture()
        dialog = FakeDialog()

        async def scenario(c):
            await c.on_dialog(dialog)

        assert self._run(capture, scenario) == []
        assert dialog.dismissed
