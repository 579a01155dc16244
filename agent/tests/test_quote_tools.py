"""
Tests for the quote tools.

The flow steps are replaced with async fakes so each test controls what
a step returns or raises; the last tests run the real flow on a FakePage.
"""

import json

import pytest
from playwright.async_api import Error as PlaywrightError

from racv_quote.automation import quote_flow
from racv_quote.automation.session_manager import SessionStore
from racv_quote.errors import BrowserLaunchError, LandmarkTimeoutError
from racv_quote.models import CarSummary, DriverSummary, ProductQuote, QuoteResult, QuoteState
from racv_quote.tools.quote import SESSION_NOT_FOUND, QuoteTools

from conftest import FakePage


CAR_DETAILS = dict(
    address="10 Bourke Street Melbourne VIC 3000",
    under_finance=False,
    purpose="Private",
    business_registered=False,
)

DRIVER_DETAILS = dict(
    racv_member=True,
    gender="male",
    age=35,
    licence_age=18,
    accidents_last_5_years=False,
)

QUOTE = QuoteResult(
    car=CarSummary(description="2019 Toyota Corolla Ascent Sport"),
    driver=DriverSummary(age=35, gender="Male", additional_drivers=0),
    comprehensive=[
        ProductQuote(
            name="Comprehensive",
            yearly_price="$1,234.56",
            monthly_price="$108.20",
            total_over_12_months="$1,298.40",
            yearly_saving="$61.73",
        )
    ],
)


class FakeFlow:
    """Async stand-ins for the quote_flow steps, recording their calls."""

    def __init__(self):
        self.calls = []
        self.failures = {}

    def step(self, name, result=None):
        async def _step(*args, **kwargs):
            self.calls.append(name)
            if name in self.failures:
                raise self.failures[name]
            return result
        return _step


@pytest.fixture
def flow(monkeypatch):
    fake = FakeFlow()
    monkeypatch.setattr(quote_flow, "find_car_by_rego", fake.step("rego", "2019 Toyota Corolla Ascent Sport"))
    monkeypatch.setattr(quote_flow, "find_car_manually", fake.step("manual", "2020 Toyota Corolla SEDAN"))
    monkeypatch.setattr(quote_flow, "fill_car_details", fake.step("car_details"))
    monkeypatch.setattr(quote_flow, "fill_driver_details", fake.step("driver_details"))
    monkeypatch.setattr(quote_flow, "extract_quote_results", fake.step("extract", QUOTE))
    return fake


@pytest.fixture
def store(make_store):
    return make_store()


@pytest.fixture
def tools(store, fast_settings):
    return QuoteTools(store=store, settings=fast_settings)


async def start(tools) -> str:
    result = json.loads(await tools.start_quote(rego="ABC123", state="VIC"))
    return result["sessionId"]


# =========================================================================
# start_quote
# =========================================================================

@pytest.mark.asyncio
async def test_start_quote_by_rego(tools, store, flow):
    result = json.loads(await tools.start_quote(rego="ABC123", state="VIC"))

    assert result["status"] == "car_found"
    assert result["car"] == "2019 Toyota Corolla Ascent Sport"
    assert "fill_car_details" in result["nextStep"]
    assert flow.calls == ["rego"]

    session = store.get(result["sessionId"])
    assert session.state == QuoteState.CAR_FOUND
    assert session.busy is False


@pytest.mark.asyncio
async def test_start_quote_manual_lookup(tools, flow):
    result = json.loads(await tools.start_quote(
        year="2020", make="Toyota", model="Corolla", body_type="SEDAN"
    ))

    assert result["status"] == "car_found"
    assert result["car"] == "2020 Toyota Corolla SEDAN"
    assert flow.calls == ["manual"]


@pytest.mark.asyncio
async def test_rego_wins_when_both_lookups_given(tools, flow):
    await tools.start_quote(
        rego="ABC123", state="VIC", year="2020", make="Toyota", model="Corolla", body_type="SEDAN"
    )
    assert flow.calls == ["rego"]


@pytest.mark.asyncio
async def test_start_quote_invalid_lookup_launches_nothing(tools, store, launched, flow):
    result = json.loads(await tools.start_quote(rego="ABC123"))

    assert result["errorType"] == "InvalidLookupError"
    assert "guidance" in result
    assert launched == []
    assert store.active_count() == 0
    assert flow.calls == []


@pytest.mark.asyncio
async def test_start_quote_launch_failure(fast_settings, clock, flow):
    async def failing_launcher():
        raise BrowserLaunchError("Failed to launch browser: no chromium")

    tools = QuoteTools(store=SessionStore(launcher=failing_launcher, clock=clock), settings=fast_settings)

    result = json.loads(await tools.start_quote(rego="ABC123", state="VIC"))

    assert result["errorType"] == "BrowserLaunchError"
    assert "no chromium" in result["error"]
    assert flow.calls == []


@pytest.mark.asyncio
async def test_start_quote_lookup_failure_destroys_session(tools, store, launched, flow):
    flow.failures["rego"] = LandmarkTimeoutError("No car found for rego ZZZ999 in VIC", guidance="Check the rego")

    result = json.loads(await tools.start_quote(rego="ZZZ999", state="VIC"))

    assert result["errorType"] == "LandmarkTimeoutError"
    assert result["guidance"] == "Check the rego"
    assert "sessionId" not in result
    assert store.active_count() == 0
    assert launched[0].close_calls == 1


# =========================================================================
# Later steps
# =========================================================================

@pytest.mark.asyncio
async def test_full_quote_flow(tools, store, launched, flow):
    session_id = await start(tools)

    car = json.loads(await tools.fill_car_details(session_id=session_id, **CAR_DETAILS))
    assert car["status"] == "car_details_filled"

    driver = json.loads(await tools.fill_driver_details(session_id=session_id, **DRIVER_DETAILS))
    assert driver["status"] == "driver_details_filled"

    quotes = json.loads(await tools.get_quotes(session_id=session_id))
    assert quotes["car"]["description"] == "2019 Toyota Corolla Ascent Sport"
    assert quotes["comprehensive"][0]["yearlyPrice"] == "$1,234.56"
    assert quotes["thirdParty"] == []

    assert flow.calls == ["rego", "car_details", "driver_details", "extract"]
    # Sessions are torn down once the quote is delivered
    assert session_id not in store
    assert launched[0].close_calls == 1


@pytest.mark.asyncio
async def test_step_failure_destroys_session(tools, store, launched, flow):
    session_id = await start(tools)
    flow.failures["car_details"] = LandmarkTimeoutError('Page did not advance to "Already with us?"')

    result = json.loads(await tools.fill_car_details(session_id=session_id, **CAR_DETAILS))

    assert result["errorType"] == "LandmarkTimeoutError"
    assert "Already with us?" in result["error"]
    assert "guidance" in result
    assert store.get(session_id) is None
    assert launched[0].close_calls == 1

    again = json.loads(await tools.fill_driver_details(session_id=session_id, **DRIVER_DETAILS))
    assert again["errorType"] == "SessionNotFound"


@pytest.mark.asyncio
async def test_playwright_error_becomes_interaction_error(tools, store, flow):
    session_id = await start(tools)
    flow.failures["car_details"] = PlaywrightError("Target page, context or browser has been closed")

    result = json.loads(await tools.fill_car_details(session_id=session_id, **CAR_DETAILS))

    assert result["errorType"] == "InteractionError"
    assert "has been closed" in result["error"]
    assert session_id not in store


@pytest.mark.asyncio
async def test_out_of_order_call_keeps_session(tools, store, launched, flow):
    session_id = await start(tools)

    result = json.loads(await tools.get_quotes(session_id=session_id))

    assert result["errorType"] == "StepOrderError"
    assert result["sessionId"] == session_id
    assert store.get(session_id).state == QuoteState.CAR_FOUND
    assert launched[0].close_calls == 0
    assert "extract" not in flow.calls


@pytest.mark.asyncio
async def test_busy_session_rejects_second_step(tools, store, flow):
    session_id = await start(tools)
    store.get(session_id).busy = True

    result = json.loads(await tools.fill_car_details(session_id=session_id, **CAR_DETAILS))

    assert result["errorType"] == "StepOrderError"
    assert "car_details" not in flow.calls


@pytest.mark.asyncio
async def test_unknown_session(tools, flow):
    for call in (
        tools.fill_car_details(session_id="missing", **CAR_DETAILS),
        tools.fill_driver_details(session_id="missing", **DRIVER_DETAILS),
        tools.get_quotes(session_id="missing"),
    ):
        result = json.loads(await call)
        assert result["error"] == SESSION_NOT_FOUND
        assert result["errorType"] == "SessionNotFound"


@pytest.mark.asyncio
async def test_invalid_car_details_keep_session(tools, store, flow):
    session_id = await start(tools)

    result = json.loads(await tools.fill_car_details(
        session_id=session_id, **{**CAR_DETAILS, "purpose": "Racing"}
    ))

    assert result["errorType"] == "ValidationError"
    assert store.get(session_id).state == QuoteState.CAR_FOUND


@pytest.mark.asyncio
async def test_invalid_driver_age(tools, store, flow):
    session_id = await start(tools)
    await tools.fill_car_details(session_id=session_id, **CAR_DETAILS)

    result = json.loads(await tools.fill_driver_details(
        session_id=session_id, **{**DRIVER_DETAILS, "age": 12}
    ))

    assert result["errorType"] == "ValidationError"
    assert store.get(session_id).state == QuoteState.CAR_DETAILS_FILLED


@pytest.mark.asyncio
async def test_get_quote_status(tools, flow):
    session_id = await start(tools)

    status = json.loads(tools.get_quote_status(session_id=session_id))

    assert status == {
        "sessionId": session_id,
        "status": "car_found",
        "car": "2019 Toyota Corolla Ascent Sport",
        "busy": False,
    }
    assert json.loads(tools.get_quote_status(session_id="missing"))["errorType"] == "SessionNotFound"


# =========================================================================
# Activity log
# =========================================================================

@pytest.mark.asyncio
async def test_activity_log_records_session(tools, flow, isolated_activity_log):
    session_id = await start(tools)
    await tools.fill_car_details(session_id=session_id, **CAR_DETAILS)

    entry = isolated_activity_log.find_session(session_id)
    events = isolated_activity_log.read_session(entry["file"])
    kinds = [e["event"] for e in events]

    assert kinds[0] == "session_start"
    assert events[0]["metadata"]["lookup"] == "rego"
    assert [e["state"] for e in events if e["event"] == "state_change"] == [
        "car_found", "car_details_filled"
    ]
    assert "tool_call" in kinds


@pytest.mark.asyncio
async def test_activity_log_records_step_errors(tools, flow, isolated_activity_log):
    flow.failures["rego"] = LandmarkTimeoutError("No car found for rego ZZZ999 in VIC")

    await tools.start_quote(rego="ZZZ999", state="VIC")

    errors = isolated_activity_log.get_errors()
    assert any(e["event"] == "error" and e["context"]["step"] == "Find car" for e in errors)


@pytest.mark.asyncio
async def test_reaped_session_log_is_closed(tools, store, clock, flow, isolated_activity_log):
    session_id = await start(tools)
    clock.advance(store.session_timeout + 1)

    assert await store.sweep() == [session_id]

    entry = isolated_activity_log.find_session(session_id)
    events = isolated_activity_log.read_session(entry["file"])
    assert events[-1]["event"] == "session_end"
    assert events[-1]["summary"] == "expired"
    assert session_id not in isolated_activity_log.session_files


@pytest.mark.asyncio
async def test_shutdown_closes_session_logs(tools, store, flow, isolated_activity_log):
    session_id = await start(tools)

    await store.stop()

    entry = isolated_activity_log.find_session(session_id)
    events = isolated_activity_log.read_session(entry["file"])
    assert events[-1]["summary"] == "shutdown"
    assert isolated_activity_log.session_files == {}


@pytest.mark.asyncio
async def test_failed_step_logs_session_end_once(tools, store, flow, isolated_activity_log):
    flow.failures["rego"] = LandmarkTimeoutError("No car found for rego ZZZ999 in VIC")

    await tools.start_quote(rego="ZZZ999", state="VIC")

    entry = isolated_activity_log.get_recent_sessions()[-1]
    events = isolated_activity_log.read_session(entry["file"])
    assert [e["event"] for e in events].count("session_end") == 1
    assert events[-1]["summary"].startswith("Find car failed")


# =========================================================================
# Real flow on a fake page
# =========================================================================

CAR_FOUND_TEXT = "2019 Toyota Corolla Ascent Sport\nEDIT\nWhere is the car parked?"


@pytest.mark.asyncio
async def test_landmark_never_appears_ends_session(make_store, launched, fast_settings, no_delay):
    # Continue never reaches "Already with us?"
    store = make_store(page_factory=lambda: FakePage(CAR_FOUND_TEXT))
    tools = QuoteTools(store=store, settings=fast_settings)

    session_id = await start(tools)
    result = json.loads(await tools.fill_car_details(session_id=session_id, **CAR_DETAILS))

    assert result["errorType"] == "LandmarkTimeoutError"
    assert store.get(session_id) is None
    page = launched[0].page
    assert page.clicks['button:has-text("Continue")'] == fast_settings.continue_retries
    assert launched[0].close_calls == 1


@pytest.mark.asyncio
async def test_real_flow_start_to_quotes(make_store, launched, fast_settings, no_delay):
    def page_factory():
        page = FakePage(CAR_FOUND_TEXT)
        page.on_click['button:has-text("Continue")'] = _advance_wizard
        page.counts['li:has-text("Third Party")'] = 0
        return page

    store = make_store(page_factory=page_factory)
    tools = QuoteTools(store=store, settings=fast_settings)

    session_id = await start(tools)
    await tools.fill_car_details(session_id=session_id, **CAR_DETAILS)
    await tools.fill_driver_details(session_id=session_id, **DRIVER_DETAILS)
    quotes = json.loads(await tools.get_quotes(session_id=session_id))

    assert [p["name"] for p in quotes["comprehensive"]] == ["Comprehensive"]
    assert quotes["comprehensive"][0]["monthlyPrice"] == "$108.20"
    assert quotes["driver"]["age"] == 35
    assert store.active_count() == 0


def _advance_wizard(page):
    if page.clicks['button:has-text("Continue")'] == 1:
        page.text = "About you\nAlready with us?"
    else:
        page.text = (
            "Your quote summary\n2019 Toyota Corolla Ascent Sport\nAge: 35\nGender: Male\n"
            "Comprehensive\n$1,234.56/Yearly\n$108.20/Monthly\n($1,298.40 over 12 months)\n"
        )
