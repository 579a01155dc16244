"""
Quote Text Extraction

Turns the rendered text of the RACV quote page into structured quotes.
The page exposes no stable ids, so each product is found by its name and
its prices are pattern-matched in a fixed window of text after it.

Everything here is a pure function of the text.
"""

import re
from typing import Iterable, Optional

from racv_quote.models import CarSummary, DriverSummary, ProductQuote, QuoteResult


COMPREHENSIVE_PRODUCTS = ("Comprehensive", "Complete Care")
THIRD_PARTY_PRODUCTS = ("Third Party Property Damage", "Third Party Fire & Theft")

DEFAULT_WINDOW = 500

_YEARLY = re.compile(r"\$([\d,]+\.?\d*)\s*/Yearly")
_MONTHLY = re.compile(r"\$([\d,]+\.?\d*)\s*/Monthly")
_TOTAL = re.compile(r"\(\$([\d,]+\.?\d*)\s*over 12 months\)")
_SAVING = re.compile(r"Save \$([\d,]+\.?\d*)")

# "2019 Toyota Corolla Ascent Sport ... EDIT" on the car details step
_CAR_FOUND = re.compile(r"(\d{4}\s+[A-Z][A-Za-z]+\s+[A-Z][A-Za-z]+[\s\S]*?)(?:EDIT|Not your car)")
_CAR_SUMMARY = re.compile(r"(\d{4}\s+[A-Z][A-Za-z]+\s+[A-Z][A-Za-z]+[\w ]*)")
_AGE = re.compile(r"Age:\s*(\d+)")
_GENDER = re.compile(r"Gender:\s*(\w+)")
_ADDITIONAL_DRIVERS = re.compile(r"Additional drivers:\s*(\d+)")


def _price(match: Optional[re.Match]) -> Optional[str]:
    return f"${match.group(1)}" if match else None


def extract_product(text: str, name: str, window: int = DEFAULT_WINDOW) -> Optional[ProductQuote]:
    """
    Extract one product's prices from the text following its name.

    Args:
        text: Rendered page text
        name: Product name to anchor on (first occurrence)
        window: Number of characters after the anchor to search

    Returns:
        ProductQuote, or None if the name is absent or has no yearly price
    """
    idx = text.find(name)
    if idx == -1:
        return None

    chunk = text[idx:idx + window]

    yearly = _price(_YEARLY.search(chunk))
    if yearly is None:
        # No yearly price means the product isn't offered for this car
        return None

    return ProductQuote(
        name=name,
        yearly_price=yearly,
        monthly_price=_price(_MONTHLY.search(chunk)) or "N/A",
        total_over_12_months=_price(_TOTAL.search(chunk)) or "N/A",
        yearly_saving=_price(_SAVING.search(chunk)),
    )


def extract_products(
    text: str,
    names: Iterable[str],
    window: int = DEFAULT_WINDOW,
) -> list[ProductQuote]:
    """Extract every named product that has a yearly price, in name order."""
    products = []
    for name in names:
        quote = extract_product(text, name, window)
        if quote is not None:
            products.append(quote)
    return products


def extract_car_description(text: str) -> Optional[str]:
    """Read the car description shown after a successful rego lookup."""
    match = _CAR_FOUND.search(text)
    if not match:
        return None
    description = " ".join(match.group(1).split())
    return description or None


def extract_summary(text: str) -> tuple[CarSummary, DriverSummary]:
    """Read the car and main-driver summary from the quote page."""
    car = _CAR_SUMMARY.search(text)
    age = _AGE.search(text)
    gender = _GENDER.search(text)
    drivers = _ADDITIONAL_DRIVERS.search(text)

    return (
        CarSummary(description=car.group(1).strip() if car else "Unknown"),
        DriverSummary(
            age=int(age.group(1)) if age else 0,
            gender=gender.group(1) if gender else "Unknown",
            additional_drivers=int(drivers.group(1)) if drivers else 0,
        ),
    )


def build_quote_result(
    page_text: str,
    third_party_text: Optional[str] = None,
    window: int = DEFAULT_WINDOW,
) -> QuoteResult:
    """
    Build the full quote result from the page text of both tabs.

    Args:
        page_text: Text of the default (comprehensive) tab
        third_party_text: Text after switching to the Third Party tab,
            or None when the tab wasn't available
        window: Extraction window size
    """
    car, driver = extract_summary(page_text)
    third_party = []
    if third_party_text is not None:
        third_party = extract_products(third_party_text, THIRD_PARTY_PRODUCTS, window)

    return QuoteResult(
        car=car,
        driver=driver,
        comprehensive=extract_products(page_text, COMPREHENSIVE_PRODUCTS, window),
        third_party=third_party,
    )
