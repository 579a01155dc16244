"""
Pytest configuration for RACV Quote Agent tests.

Provides in-memory stand-ins for the Playwright page and the launched
browser so the flow, store and tools run without a real browser.
"""

import asyncio
import os
import re
import sys
from typing import Callable, Optional
from unittest.mock import MagicMock

import pytest
from dotenv import load_dotenv
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment variables
load_dotenv()

from racv_quote import activity_logger, observability
from racv_quote.automation import quote_flow
from racv_quote.automation.session_manager import SessionStore
from racv_quote.config import FlowSettings


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "agent_test: marks tests as agent scenario tests"
    )
    config.addinivalue_line(
        "markers", "integration: needs live services (Anthropic, RACV)"
    )
    config.addinivalue_line(
        "markers", "slow: long-running tests"
    )


@pytest.fixture(autouse=True)
def verify_environment(request):
    """Skip agent scenario tests when the Anthropic key is missing."""
    if request.node.get_closest_marker("agent_test") and not os.getenv("ANTHROPIC_API_KEY"):
        pytest.skip("Missing required environment variables: ANTHROPIC_API_KEY")


@pytest.fixture(autouse=True)
def isolated_activity_log(tmp_path, monkeypatch):
    """Write activity logs under the test's tmp dir."""
    logger = activity_logger.ActivityLogger(str(tmp_path / "activity"))
    monkeypatch.setattr(activity_logger, "_logger", logger)
    return logger


@pytest.fixture(autouse=True)
def quiet_langwatch(monkeypatch):
    """Replace LangWatch spans with mocks so no exporter is needed."""
    span = MagicMock()
    # A truthy __exit__ would swallow exceptions raised inside the span
    span.return_value.__exit__.return_value = False
    monkeypatch.setattr(observability.langwatch, "span", span)


# =========================================================================
# Fake Playwright page
# =========================================================================

class FakeKeyboard:
    def __init__(self, page: "FakePage"):
        self.page = page

    async def type(self, text: str, delay: float = 0):
        self.page.actions.append(("type", text))

    async def press(self, key: str):
        self.page.actions.append(("press", key))


class FakeLocator:
    """Records interactions against one selector of a FakePage."""

    def __init__(self, page: "FakePage", key: str):
        self.page = page
        self.key = key

    @property
    def first(self) -> "FakeLocator":
        return self

    def filter(self, has_text=None) -> "FakeLocator":
        if isinstance(has_text, re.Pattern):
            return FakeLocator(self.page, f"{self.key} >> has_text")
        return FakeLocator(self.page, f"{self.key} >> has_text={has_text}")

    async def wait_for(self, timeout: Optional[float] = None):
        self.page.actions.append(("wait_for", self.key))
        if self.key in self.page.missing:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {self.key}")

    async def fill(self, value: str):
        self.page.actions.append(("fill", self.key, value))
        self.page.values[self.key] = value

    async def press_sequentially(self, text: str, delay: float = 0):
        self.page.actions.append(("press_sequentially", self.key, text))
        self.page.values[self.key] = text

    async def select_option(self, value=None, label=None):
        self.page.actions.append(("select", self.key, label if label is not None else value))

    async def click(self, force: bool = False):
        self.page.actions.append(("click", self.key))
        self.page.clicks[self.key] = self.page.clicks.get(self.key, 0) + 1
        callback = self.page.on_click.get(self.key)
        if callback:
            callback(self.page)

    async def input_value(self) -> str:
        return self.page.values.get(self.key, "")

    async def count(self) -> int:
        return self.page.counts.get(self.key, 1)

    async def is_visible(self) -> bool:
        return self.key not in self.page.hidden

    async def evaluate(self, script: str):
        self.page.actions.append(("evaluate", self.key, script))


class FakePage:
    """
    Minimal async Playwright page.

    - text: what document.body.innerText returns
    - on_click: selector -> callback(page), to change text on a click
    - counts: selector -> locator.count() (default 1)
    - missing: selectors whose wait_for times out
    - hidden: selectors reported as not visible
    """

    def __init__(self, text: str = ""):
        self.text = text
        self.actions: list[tuple] = []
        self.values: dict[str, str] = {}
        self.clicks: dict[str, int] = {}
        self.counts: dict[str, int] = {}
        self.on_click: dict[str, Callable[["FakePage"], None]] = {}
        self.missing: set[str] = set()
        self.hidden: set[str] = set()
        self.keyboard = FakeKeyboard(self)

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    async def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[float] = None):
        self.actions.append(("goto", url, wait_until))

    async def evaluate(self, script: str):
        return self.text

    def performed(self, kind: str) -> list[tuple]:
        return [a for a in self.actions if a[0] == kind]


class FakeHandle:
    """Stand-in for BrowserHandle that counts teardowns."""

    def __init__(self, page: Optional[FakePage] = None):
        self.page = page or FakePage()
        self.close_calls = 0
        self.closed = False

    async def close(self):
        # Yield so concurrent destroys interleave
        await asyncio.sleep(0)
        self.close_calls += 1
        self.closed = True


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =========================================================================
# Fixtures
# =========================================================================

@pytest.fixture
def fast_settings() -> FlowSettings:
    """Flow settings with no polling pause and short deadlines."""
    return FlowSettings(
        poll_interval_min=0,
        poll_interval_max=0,
        continue_timeout=0.02,
        quote_timeout=0.02,
        continue_retries=3,
        address_attempts=2,
    )


@pytest.fixture
def no_delay(monkeypatch):
    """Skip the human pacing delays in the quote flow."""
    async def _no_delay(min_ms: int = 0, max_ms: int = 0):
        return None

    monkeypatch.setattr(quote_flow, "human_delay", _no_delay)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def launched():
    """Every FakeHandle handed out by the fake launcher, in order."""
    return []


@pytest.fixture
def make_store(clock, launched):
    """Build an isolated SessionStore backed by fake browsers."""

    def _make(page_factory: Callable[[], FakePage] = FakePage, **kwargs) -> SessionStore:
        async def launcher():
            handle = FakeHandle(page_factory())
            launched.append(handle)
            return handle

        kwargs.setdefault("session_timeout", 600.0)
        kwargs.setdefault("sweep_interval", 60.0)
        return SessionStore(launcher=launcher, clock=clock, **kwargs)

    return _make


@pytest.fixture
def page() -> FakePage:
    return FakePage()
