"""
RACV Quote Automation

Playwright automation of the RACV car quote wizard: the browser launcher,
the session store that owns one browser per quote, the step-by-step flow,
and the text extraction that reads the priced quotes back.
"""

from racv_quote.automation.browser import BrowserHandle, launch_browser, human_delay
from racv_quote.automation.session_manager import QuoteSession, SessionStore, get_session_store
from racv_quote.automation.quote_flow import (
    find_car_by_rego,
    find_car_manually,
    fill_car_details,
    fill_driver_details,
    extract_quote_results,
)
from racv_quote.automation.extraction import extract_products, build_quote_result

__all__ = [
    "BrowserHandle",
    "launch_browser",
    "human_delay",
    "QuoteSession",
    "SessionStore",
    "get_session_store",
    "find_car_by_rego",
    "find_car_manually",
    "fill_car_details",
    "fill_driver_details",
    "extract_quote_results",
    "extract_products",
    "build_quote_result",
]
