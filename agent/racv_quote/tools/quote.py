"""
Quote Tools

The four RACV quote steps as agent tools. Each tool drives the session's
browser through one step and returns a JSON string for the caller.

Rules every tool follows:
- An unknown or expired session id is reported, never recreated
- Steps must run in order; an out-of-order call changes nothing
- Any failure inside a step destroys the session (the flow can't resume
  mid-step), and the error says how to recover
"""

import json
from typing import Any, Awaitable, Callable, Optional

from agno.tools.toolkit import Toolkit
from pydantic import ValidationError

from racv_quote.activity_logger import get_logger
from racv_quote.automation import quote_flow
from racv_quote.automation.session_manager import QuoteSession, SessionStore, get_session_store
from racv_quote.config import FlowSettings, get_settings
from racv_quote.errors import InteractionError, QuoteError, StepOrderError
from racv_quote.models import (
    CarDetailsInput,
    CarLookupInput,
    DriverDetailsInput,
    QuoteState,
)
from racv_quote.observability import observe_tool


SESSION_NOT_FOUND = "Session not found or expired. Start a new quote."


def _payload(**fields: Any) -> str:
    return json.dumps(fields)


def _error(message: str, error_type: str, guidance: Optional[str] = None, **extra: Any) -> str:
    payload = {"error": message, "errorType": error_type, **extra}
    if guidance:
        payload["guidance"] = guidance
    return _payload(**payload)


def _end_session_log(session_id: str, reason: str) -> None:
    get_logger().end_session(session_id, summary=reason)


class QuoteTools(Toolkit):
    """
    Tools for getting an RACV car insurance quote.

    Call order: start_quote -> fill_car_details -> fill_driver_details -> get_quotes.
    """

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        settings: Optional[FlowSettings] = None,
    ):
        """
        Initialize quote tools.

        Args:
            store: Session store (default: the process-wide store)
            settings: Flow settings (default: from environment)
        """
        super().__init__(name="racv_quote")

        self.session_store = store or get_session_store()
        self.flow_settings = settings or get_settings()
        # Reaper and shutdown teardowns close the session log too
        self.session_store.add_destroy_hook(_end_session_log)

        # Register tools explicitly
        self.register(self.start_quote)
        self.register(self.fill_car_details)
        self.register(self.fill_driver_details)
        self.register(self.get_quotes)
        self.register(self.get_quote_status)

    # =========================================================================
    # Step plumbing
    # =========================================================================

    async def _destroy(self, session_id: str, summary: str) -> None:
        await self.session_store.destroy(session_id, reason=summary)

    async def _run_step(
        self,
        session: QuoteSession,
        step_name: str,
        step: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Run one step with the session marked busy.

        Raises:
            QuoteError: the step failed; the session has been destroyed
        """
        session.busy = True
        try:
            return await step()
        except QuoteError as e:
            error = e
        except Exception as e:
            # Playwright errors from a control that vanished or a closed page
            error = InteractionError(f"{step_name} failed: {e}")
        finally:
            session.busy = False

        get_logger().log_error(
            error.message,
            context={"step": step_name, "type": error.error_type},
            session_id=session.id
        )
        print(f"[QuoteTools] {step_name} failed for {session.id[:8]}...: {error.message}")
        await self._destroy(session.id, summary=f"{step_name} failed: {error.message}")
        raise error

    def _require(self, session_id: str, expected: QuoteState) -> QuoteSession:
        """
        Fetch a session that is ready for the next step.

        Raises:
            LookupError: unknown or expired session
            StepOrderError: session is at a different step
        """
        session = self.session_store.get(session_id)
        if session is None:
            raise LookupError(SESSION_NOT_FOUND)
        if session.busy:
            raise StepOrderError(f"Session {session_id} is already running a step.")
        if session.state != expected:
            raise StepOrderError(
                f"Session is at '{session.state.value}', expected '{expected.value}'."
            )
        return session

    def _advance(self, session: QuoteSession, state: QuoteState) -> None:
        self.session_store.set_state(session.id, state)
        get_logger().log_state_change(session.id, state.value)

    # =========================================================================
    # Tools
    # =========================================================================

    @observe_tool
    async def start_quote(
        self,
        rego: Optional[str] = None,
        state: Optional[str] = None,
        year: Optional[str] = None,
        make: Optional[str] = None,
        model: Optional[str] = None,
        body_type: Optional[str] = None,
    ) -> str:
        """
        Start a new RACV car insurance quote session and find the car.

        Provide either rego + state OR year + make + model + body_type.
        Returns a session ID to use in every later call.

        Args:
            rego: Vehicle registration number (e.g. ABC123)
            state: State the car is registered in (VIC, NSW, QLD, SA, WA, TAS, NT, ACT)
            year: Vehicle year (e.g. 2020), if rego is not available
            make: Vehicle make (e.g. Toyota), if rego is not available
            model: Vehicle model (e.g. Corolla), if rego is not available
            body_type: Vehicle body type (e.g. SEDAN, HATCH, SUV), if rego is not available

        Returns:
            str: JSON with sessionId, status, car and nextStep, or an error
        """
        lookup = CarLookupInput(
            rego=rego, state=state, year=year, make=make, model=model, body_type=body_type
        )
        try:
            mode = lookup.lookup_mode()
        except QuoteError as e:
            return _error(e.message, e.error_type, e.guidance)

        try:
            session = await self.session_store.create()
        except QuoteError as e:
            get_logger().log_error(e.message, context={"step": "start_quote"})
            return _error(f"Failed to start quote: {e.message}", e.error_type, e.guidance)

        get_logger().start_session(session.id, metadata={"lookup": mode, **lookup.model_dump(exclude_none=True)})

        if mode == "rego":
            step = lambda: quote_flow.find_car_by_rego(session.page, rego, state, self.flow_settings)
        else:
            step = lambda: quote_flow.find_car_manually(
                session.page, year, make, model, body_type, self.flow_settings
            )

        try:
            description = await self._run_step(session, "Find car", step)
        except QuoteError as e:
            return _error(f"Failed to start quote: {e.message}", e.error_type, e.guidance)

        session.car_description = description
        self._advance(session, QuoteState.CAR_FOUND)
        return _payload(
            sessionId=session.id,
            status=QuoteState.CAR_FOUND.value,
            car=description,
            nextStep="Call fill_car_details with the sessionId to continue.",
        )

    @observe_tool
    async def fill_car_details(
        self,
        session_id: str,
        address: str,
        under_finance: bool,
        purpose: str,
        business_registered: bool,
        cover_start_date: Optional[str] = None,
        email: Optional[str] = None,
    ) -> str:
        """
        Fill in car details for an active quote session. Call after start_quote.

        Args:
            session_id: Session ID from start_quote
            address: Overnight parking address (e.g. '1 Collins St Melbourne')
            under_finance: Is the car currently under finance?
            purpose: Main purpose of the car: 'Private', 'Business', or 'Private and Business'
            business_registered: Is the car registered under a business name?
            cover_start_date: Cover start date in DD/MM/YYYY format (default: today)
            email: Email address for the quote

        Returns:
            str: JSON with sessionId, status and nextStep, or an error
        """
        try:
            details = CarDetailsInput(
                address=address,
                under_finance=under_finance,
                purpose=purpose,
                business_registered=business_registered,
                cover_start_date=cover_start_date,
                email=email,
            )
        except ValidationError as e:
            return _error(f"Invalid car details: {e}", "ValidationError")

        try:
            session = self._require(session_id, QuoteState.CAR_FOUND)
        except LookupError:
            return _error(SESSION_NOT_FOUND, "SessionNotFound")
        except StepOrderError as e:
            return _error(e.message, e.error_type, e.guidance, sessionId=session_id)

        try:
            await self._run_step(
                session,
                "Fill car details",
                lambda: quote_flow.fill_car_details(session.page, details, self.flow_settings),
            )
        except QuoteError as e:
            return _error(f"Failed to fill car details: {e.message}", e.error_type, e.guidance)

        self._advance(session, QuoteState.CAR_DETAILS_FILLED)
        return _payload(
            sessionId=session_id,
            status=QuoteState.CAR_DETAILS_FILLED.value,
            nextStep="Call fill_driver_details with the sessionId to continue.",
        )

    @observe_tool
    async def fill_driver_details(
        self,
        session_id: str,
        racv_member: bool,
        gender: str,
        age: int,
        licence_age: int,
        accidents_last_5_years: bool,
    ) -> str:
        """
        Fill in main driver details for an active quote session. Call after fill_car_details.

        Pricing takes 15-20 seconds on RACV's side, so this call is slow.

        Args:
            session_id: Session ID from start_quote
            racv_member: Is the driver an existing RACV member?
            gender: Driver's gender: 'male' or 'female'
            age: Driver's age in years
            licence_age: Age when the driver got their licence
            accidents_last_5_years: Any accidents or incidents in the last 5 years?

        Returns:
            str: JSON with sessionId, status and nextStep, or an error
        """
        try:
            driver = DriverDetailsInput(
                racv_member=racv_member,
                gender=gender,
                age=age,
                licence_age=licence_age,
                accidents_last_5_years=accidents_last_5_years,
            )
        except ValidationError as e:
            return _error(f"Invalid driver details: {e}", "ValidationError")

        try:
            session = self._require(session_id, QuoteState.CAR_DETAILS_FILLED)
        except LookupError:
            return _error(SESSION_NOT_FOUND, "SessionNotFound")
        except StepOrderError as e:
            return _error(e.message, e.error_type, e.guidance, sessionId=session_id)

        try:
            await self._run_step(
                session,
                "Fill driver details",
                lambda: quote_flow.fill_driver_details(session.page, driver, self.flow_settings),
            )
        except QuoteError as e:
            return _error(f"Failed to fill driver details: {e.message}", e.error_type, e.guidance)

        self._advance(session, QuoteState.DRIVER_DETAILS_FILLED)
        return _payload(
            sessionId=session_id,
            status=QuoteState.DRIVER_DETAILS_FILLED.value,
            nextStep="Call get_quotes with the sessionId to retrieve the quote results.",
        )

    @observe_tool
    async def get_quotes(self, session_id: str) -> str:
        """
        Read the quote results for a session. Call after fill_driver_details.

        The session is closed afterwards.

        Args:
            session_id: Session ID from start_quote

        Returns:
            str: JSON with car, driver, comprehensive and thirdParty quotes
                 (yearly/monthly prices), or an error
        """
        try:
            session = self._require(session_id, QuoteState.DRIVER_DETAILS_FILLED)
        except LookupError:
            return _error(SESSION_NOT_FOUND, "SessionNotFound")
        except StepOrderError as e:
            return _error(e.message, e.error_type, e.guidance, sessionId=session_id)

        try:
            result = await self._run_step(
                session,
                "Extract quotes",
                lambda: quote_flow.extract_quote_results(session.page, self.flow_settings),
            )
        except QuoteError as e:
            return _error(f"Failed to extract quotes: {e.message}", e.error_type, e.guidance)

        self._advance(session, QuoteState.QUOTE_READY)
        await self._destroy(session_id, summary="quote_ready")
        return result.to_json()

    @observe_tool
    def get_quote_status(self, session_id: str) -> str:
        """
        Check whether a quote session is still active and which step it is at.

        Args:
            session_id: Session ID from start_quote

        Returns:
            str: JSON with sessionId, status and car, or an error
        """
        session = self.session_store.get(session_id)
        if session is None:
            return _error(SESSION_NOT_FOUND, "SessionNotFound")

        return _payload(
            sessionId=session.id,
            status=session.state.value,
            car=session.car_description,
            busy=session.busy,
        )


# Global tools instance - shared by the MCP server and the agent
_quote_tools: Optional[QuoteTools] = None


def get_quote_tools() -> QuoteTools:
    """Get or create the process-wide quote tools (bound to the global store)."""
    global _quote_tools
    if _quote_tools is None:
        _quote_tools = QuoteTools()
    return _quote_tools
