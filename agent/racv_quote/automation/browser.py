"""
Browser Launcher

Starts one isolated headless Chromium per quote session, configured to
look like an ordinary Melbourne desktop browser, and the randomised
pacing used between every page interaction.
"""

import asyncio
import random
from typing import Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    async_playwright,
)

from racv_quote.config import get_settings
from racv_quote.errors import BrowserLaunchError


LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-default-apps",
    "--disable-sync",
    "--no-first-run",
    "--window-size=1920,1080",
]

CONTEXT_OPTIONS = {
    "viewport": {"width": 1920, "height": 1080},
    "user_agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    ),
    "locale": "en-AU",
    "timezone_id": "Australia/Melbourne",
    "geolocation": {"latitude": -37.8136, "longitude": 144.9631},
    "permissions": ["geolocation"],
}

STEALTH_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
    Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
    Object.defineProperty(navigator, 'languages', { get: () => ['en-AU', 'en-US', 'en'] });
"""


class BrowserHandle:
    """
    A launched browser owned by exactly one quote session.

    close() releases everything once; later calls do nothing.
    """

    def __init__(
        self,
        playwright: Optional[Playwright],
        browser: Optional[Browser],
        context: Optional[BrowserContext],
        page: Page,
    ):
        self.playwright = playwright
        self.browser = browser
        self.context = context
        self.page = page
        self.closed = False

    async def close(self) -> None:
        """Close the context and browser, then stop Playwright."""
        if self.closed:
            return
        self.closed = True

        for name, closer in (
            ("context", self.context.close if self.context else None),
            ("browser", self.browser.close if self.browser else None),
            ("playwright", self.playwright.stop if self.playwright else None),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except PlaywrightError as e:
                # Browser may already be closed
                print(f"[Browser] {name} already closed: {e}")


async def launch_browser(headless: Optional[bool] = None) -> BrowserHandle:
    """
    Launch Chromium with anti-detection settings and open a page.

    Args:
        headless: Override the configured headless mode

    Returns:
        BrowserHandle: the page plus everything needed to tear it down

    Raises:
        BrowserLaunchError: if any part of the launch fails; whatever was
            already started is closed first
    """
    if headless is None:
        headless = get_settings().headless

    playwright = None
    browser = None
    context = None
    try:
        playwright = await async_playwright().start()
        browser = await playwright.chromium.launch(headless=headless, args=LAUNCH_ARGS)
        context = await browser.new_context(**CONTEXT_OPTIONS)
        await context.add_init_script(STEALTH_SCRIPT)
        page = await context.new_page()
    except Exception as e:
        print(f"[Browser] Launch failed: {e}")
        partial = BrowserHandle(playwright, browser, context, page=None)
        await partial.close()
        raise BrowserLaunchError(f"Failed to launch browser: {e}") from e

    print(f"[Browser] Launched Chromium (headless={headless})")
    return BrowserHandle(playwright, browser, context, page)


async def human_delay(min_ms: int = 200, max_ms: int = 800) -> None:
    """Sleep for a random duration between min_ms and max_ms."""
    await asyncio.sleep(random.uniform(min_ms, max_ms) / 1000)
