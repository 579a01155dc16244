"""
RACV Quote Flow

Drives the four steps of the RACV car quote wizard on a Playwright page:

1. Find the car (by rego, or manually by year/make/model/body)
2. Car details (address, finance, purpose, business use)
3. About you (membership, gender, age, licence age, accidents)
4. Read the quote results

What the site needs, learned the hard way:
- networkidle on the first load, the Lightning components need a full init
- force=True clicks, a label overlays the buttons and eats pointer events
- keyboard.type() for number inputs, a single fill() isn't picked up
- the backend takes 15-20s to price a quote, so completion is detected by
  polling the page text for a landmark
"""

import asyncio
import random
import re
import time
from typing import Optional

from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError

from racv_quote.automation.browser import human_delay
from racv_quote.automation.extraction import build_quote_result, extract_car_description
from racv_quote.config import FlowSettings, get_settings
from racv_quote.errors import InteractionError, LandmarkTimeoutError
from racv_quote.models import CarDetailsInput, DriverDetailsInput, QuoteResult


# Landmarks
ABOUT_YOU_LANDMARK = "Already with us?"
YEARLY_PRICE_LANDMARK = "/Yearly"
QUOTE_PAGE_MARKERS = ("Comprehensive", "Your quote summary")

ADDRESS_SUGGESTION = re.compile(r"\d+.*\w+.*\d{4}")
ADDRESS_FALLBACK = 'li:has-text("St"), li:has-text("Rd"), li:has-text("Ave")'
MIN_ADDRESS_LENGTH = 10

REGO_GUIDANCE = (
    "Verify the registration and state, or use year + make + model + bodyType "
    "for a manual lookup."
)
MANUAL_GUIDANCE = "Check the year, make, model and body type match the options RACV offers."


def _ms(seconds: float) -> float:
    return seconds * 1000


# =========================================================================
# Helpers
# =========================================================================

async def read_page_text(page: Page) -> str:
    return await page.evaluate("() => document.body.innerText")


async def wait_for_text(
    page: Page,
    text: str,
    timeout: float = 60.0,
    settings: Optional[FlowSettings] = None,
) -> bool:
    """
    Poll the rendered page text until it contains `text`.

    Args:
        page: Page to poll
        text: Landmark substring
        timeout: Deadline in seconds

    Returns:
        bool: True if the landmark appeared before the deadline
    """
    settings = settings or get_settings()
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = await read_page_text(page)
        if text in body:
            return True
        await asyncio.sleep(random.uniform(settings.poll_interval_min, settings.poll_interval_max))
    return False


async def click_continue_and_wait(
    page: Page,
    landmark: str,
    settings: Optional[FlowSettings] = None,
) -> None:
    """
    Click Continue until the landmark of the next step shows up.

    The click sometimes lands on an overlay and does nothing, so it is
    retried up to settings.continue_retries times.

    Raises:
        LandmarkTimeoutError: if the page never advanced
    """
    settings = settings or get_settings()
    max_retries = settings.continue_retries

    for attempt in range(1, max_retries + 1):
        await page.locator('button:has-text("Continue")').click(force=True)
        if await wait_for_text(page, landmark, settings.continue_timeout, settings):
            return
        print(f"[QuoteFlow] Continue attempt {attempt}/{max_retries} - page didn't advance")

    raise LandmarkTimeoutError(
        f'Page did not advance to "{landmark}" after {max_retries} attempts'
    )


async def _open_quote_page(page: Page, settings: FlowSettings) -> None:
    try:
        await page.goto(settings.entry_url, wait_until="networkidle", timeout=_ms(settings.navigation_timeout))
        await page.locator('input[name="rego"]').wait_for(timeout=_ms(settings.rego_input_timeout))
    except PlaywrightTimeoutError as e:
        raise LandmarkTimeoutError(f"RACV quote page did not load: {e}") from e
    await human_delay(2000, 3000)


# =========================================================================
# Step 1: Find the car
# =========================================================================

async def find_car_by_rego(
    page: Page,
    rego: str,
    state: str,
    settings: Optional[FlowSettings] = None,
) -> str:
    """
    Look the car up by registration.

    Returns:
        str: Car description shown by RACV, or "Car found" if unreadable
    """
    settings = settings or get_settings()
    print(f"[QuoteFlow] Finding car by rego {rego} ({state})")
    await _open_quote_page(page, settings)

    await page.locator('input[name="rego"]').fill(rego)
    await page.locator('select[name="jurisdictionFieldValue"]').select_option(label=state)
    await human_delay(800, 1200)
    await page.locator('button:has-text("Find Your car")').click(force=True)

    try:
        await page.locator('input[name="addressSearch"]').wait_for(timeout=_ms(settings.car_found_timeout))
    except PlaywrightTimeoutError as e:
        raise LandmarkTimeoutError(
            f"No car found for rego {rego} in {state}", guidance=REGO_GUIDANCE
        ) from e

    description = extract_car_description(await read_page_text(page)) or "Car found"
    print(f"[QuoteFlow] Car found: {description}")
    return description


async def find_car_manually(
    page: Page,
    year: str,
    make: str,
    model: str,
    body_type: str,
    settings: Optional[FlowSettings] = None,
) -> str:
    """
    Look the car up through the cascading year/make/model/body selects.

    Each select repopulates the next one, so every selection is followed
    by a pause before the next list is used.
    """
    settings = settings or get_settings()
    print(f"[QuoteFlow] Finding car manually: {year} {make} {model} {body_type}")
    await _open_quote_page(page, settings)

    await page.locator('a:has-text("Find your car manually")').click()
    await human_delay(1500, 2000)

    for label, value in (("Year", year), ("Make", make), ("Model", model), ("Body", body_type)):
        select = page.locator("select").filter(has_text=label).first
        await select.select_option(value)
        await human_delay(1000, 1500)

    try:
        await page.locator('input[name="addressSearch"]').wait_for(timeout=_ms(settings.manual_lookup_timeout))
    except PlaywrightTimeoutError as e:
        raise LandmarkTimeoutError(
            f"RACV did not accept {year} {make} {model} {body_type}", guidance=MANUAL_GUIDANCE
        ) from e

    return f"{year} {make} {model} {body_type}"


# =========================================================================
# Step 2: Car details
# =========================================================================

async def _fill_address(page: Page, address: str, settings: FlowSettings) -> None:
    """
    Pick the parking address from the autocomplete suggestions.

    Raises:
        InteractionError: if no suggestion was accepted in any attempt
    """
    address_input = page.locator('input[name="addressSearch"]')
    attempts = settings.address_attempts

    for attempt in range(1, attempts + 1):
        await address_input.click()
        await human_delay(300, 500)
        await address_input.fill("")
        await address_input.press_sequentially(address, delay=100)
        await human_delay(4000, 6000)

        suggestion = page.locator("li").filter(has_text=ADDRESS_SUGGESTION).first
        if await suggestion.count() > 0:
            await suggestion.click()
            await human_delay(1500, 2000)
            value = await address_input.input_value()
            if value and len(value) > MIN_ADDRESS_LENGTH:
                print(f"[QuoteFlow] Address: {value}")
                return

        fallback = page.locator(ADDRESS_FALLBACK).first
        if await fallback.count() > 0:
            await fallback.click()
            await human_delay(1500, 2000)
            print("[QuoteFlow] Address: picked fallback suggestion")
            return

        print(f"[QuoteFlow] Address attempt {attempt}/{attempts} - no suggestion clicked, retrying...")
        await address_input.fill("")
        await human_delay(1000, 2000)

    raise InteractionError(
        "Failed to fill address via autocomplete",
        guidance="Try a fuller address including street number, suburb and postcode.",
    )


async def _choose_radio(page: Page, name: str, value: str) -> None:
    await page.locator(f'label:has(input[name="{name}"][value="{value}"])').click()
    await human_delay(800, 1200)


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


async def fill_car_details(
    page: Page,
    details: CarDetailsInput,
    settings: Optional[FlowSettings] = None,
) -> None:
    """Fill the car details step and continue to About You."""
    settings = settings or get_settings()
    print("[QuoteFlow] Filling car details")

    await _fill_address(page, details.address, settings)

    await _choose_radio(page, "UnderFinance", _yes_no(details.under_finance))

    purpose = page.locator('select[name="Purpose"]')
    await purpose.select_option(details.purpose.value)
    # The component ignores the raw select event; re-dispatch a composed change
    await purpose.evaluate(
        "el => el.dispatchEvent(new Event('change', { bubbles: true, composed: true }))"
    )
    await human_delay(800, 1200)

    await _choose_radio(page, "vehicleRegisterInBusinessName", _yes_no(details.business_registered))

    # Cover start date defaults to today on the site
    if details.cover_start_date:
        date_input = page.locator('input[name="startDate"]')
        if await date_input.count() > 0:
            await date_input.click(force=True)
            await date_input.fill(details.cover_start_date)
            await page.keyboard.press("Tab")
            await human_delay(500, 800)

    if details.email:
        email_input = page.locator('input[name="email"]')
        if await email_input.count() > 0:
            await email_input.fill(details.email)
            await human_delay(500, 800)

    await click_continue_and_wait(page, ABOUT_YOU_LANDMARK, settings)
    print("[QuoteFlow] -> About You")


# =========================================================================
# Step 3: Driver details
# =========================================================================

async def _type_number(page: Page, name: str, value: int) -> None:
    await page.locator(f'input[name="{name}"]').click(force=True)
    await human_delay(200, 400)
    await page.keyboard.type(str(value), delay=80)
    await page.keyboard.press("Tab")
    await human_delay(500, 800)


async def fill_driver_details(
    page: Page,
    driver: DriverDetailsInput,
    settings: Optional[FlowSettings] = None,
) -> None:
    """
    Fill the About You step and wait for the quote to be priced.

    Raises:
        LandmarkTimeoutError: if no quote page appeared
    """
    settings = settings or get_settings()
    print("[QuoteFlow] Filling driver details")
    await human_delay(2000, 3000)

    await _choose_radio(page, "isMember0", _yes_no(driver.racv_member))
    await _choose_radio(page, "driverSex0", "Male" if driver.gender == "male" else "Female")
    await _type_number(page, "age0", driver.age)
    await _type_number(page, "driverAge0", driver.licence_age)
    await _choose_radio(page, "hasClaims0", _yes_no(driver.accidents_last_5_years))

    await page.locator('button:has-text("Continue")').click(force=True)
    if await wait_for_text(page, YEARLY_PRICE_LANDMARK, settings.quote_timeout, settings):
        print("[QuoteFlow] -> Quote results")
        return

    body = await read_page_text(page)
    if not any(marker in body for marker in QUOTE_PAGE_MARKERS):
        raise LandmarkTimeoutError("Failed to reach quote results page")
    print("[QuoteFlow] -> Quote page reached without yearly price")


# =========================================================================
# Step 4: Quote results
# =========================================================================

async def extract_quote_results(
    page: Page,
    settings: Optional[FlowSettings] = None,
) -> QuoteResult:
    """Read comprehensive quotes, then switch tabs and read third party quotes."""
    settings = settings or get_settings()
    await human_delay(1000, 2000)

    page_text = await read_page_text(page)

    third_party_text = None
    tp_tab = page.locator('li:has-text("Third Party")').first
    if await tp_tab.count() > 0 and await tp_tab.is_visible():
        await tp_tab.click()
        await human_delay(2000, 3000)
        third_party_text = await read_page_text(page)

    result = build_quote_result(page_text, third_party_text, settings.extraction_window)
    print(
        f"[QuoteFlow] Extracted {len(result.comprehensive)} comprehensive, "
        f"{len(result.third_party)} third party quotes"
    )
    return result
