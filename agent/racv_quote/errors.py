"""
Quote Errors

Typed failures raised by the quote flow. Each carries a short piece of
guidance for the caller on how to recover.
"""

from typing import Optional


class QuoteError(Exception):
    """Base class for every failure the quote flow reports upward."""

    default_guidance = "Start a new quote and try again."

    def __init__(self, message: str, guidance: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.guidance = guidance or self.default_guidance

    @property
    def error_type(self) -> str:
        return self.__class__.__name__


class InvalidLookupError(QuoteError):
    """Neither rego+state nor year+make+model+body type was supplied."""

    default_guidance = (
        "Provide either rego + state, or year + make + model + bodyType to find the car."
    )


class BrowserLaunchError(QuoteError):
    """The browser or its context could not be created."""

    default_guidance = "The quoting browser could not start. Wait a moment and start a new quote."


class LandmarkTimeoutError(QuoteError):
    """A step's confirmation text never appeared before its deadline."""

    default_guidance = "The RACV site did not respond in time. Start a new quote and try again."


class InteractionError(QuoteError):
    """A required control could not be resolved within its retry budget."""

    default_guidance = "A form control on the RACV site could not be completed. Start a new quote."


class StepOrderError(QuoteError):
    """A tool was called while the session was in the wrong state."""

    default_guidance = "Call the quote tools in order: start_quote, fill_car_details, fill_driver_details, get_quotes."
