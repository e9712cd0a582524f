"""Browser launching for recording and banner rendering.

Executable resolution order:
  1. $CHROME_PATH, if set.
  2. The system Chrome channel, when prefer_system_chrome is set.
  3. The Chromium build managed by Playwright (``playwright install chromium``).
"""

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

logger = logging.getLogger(__name__)


@dataclass
class BrowserSpec:
    headless: bool = True
    args: list[str] = field(default_factory=list)   # extra Chromium flags


class BrowserLaunchError(RuntimeError):
    """No usable browser executable, or the browser failed to start."""


async def launch_browser(playwright, spec: BrowserSpec, prefer_system_chrome: bool = False):
    """Launch Chromium according to spec. Raises BrowserLaunchError."""
    options = {"headless": spec.headless, "args": list(spec.args)}

    chrome_path = os.environ.get("CHROME_PATH")
    if chrome_path:
        logger.debug("Using CHROME_PATH=%s as the browser", chrome_path)
        options["executable_path"] = chrome_path
    elif prefer_system_chrome:
        logger.debug("Using system Chrome as the browser")
        options["channel"] = "chrome"
    else:
        logger.debug("Using Playwright's bundled Chromium as the browser")

    try:
        return await playwright.chromium.launch(**options)
    except PlaywrightError as exc:
        raise BrowserLaunchError(f"Failed to launch the browser: {exc}") from exc


@asynccontextmanager
async def open_page(
    spec: BrowserSpec, prefer_system_chrome: bool = False, **context_options,
):
    """Yield a fresh page in a fresh browser context.

    context_options are passed to ``Browser.new_context`` (viewport,
    device_scale_factor, extra_http_headers, ...). Page, context and
    browser are closed on exit.
    """
    async with async_playwright() as playwright:
        browser = await launch_browser(playwright, spec, prefer_system_chrome)
        try:
            context = await browser.new_context(**context_options)
            try:
                yield await context.new_page()
            finally:
                await context.close()
        finally:
            await browser.close()
