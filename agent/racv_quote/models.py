"""
Quote Models

Inputs for each step of the RACV quote flow and the structured quote
result read back from the final page.
"""

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from racv_quote.errors import InvalidLookupError


class QuoteState(str, Enum):
    """Lifecycle of a quote session."""
    INITIALIZED = "initialized"
    CAR_FOUND = "car_found"
    CAR_DETAILS_FILLED = "car_details_filled"
    DRIVER_DETAILS_FILLED = "driver_details_filled"
    QUOTE_READY = "quote_ready"
    ERROR = "error"


class Purpose(str, Enum):
    """Main purpose of the car, as labelled in the Purpose select."""
    PRIVATE = "Private"
    BUSINESS = "Business"
    PRIVATE_AND_BUSINESS = "Private and Business"


# =========================================================================
# Step inputs
# =========================================================================

class CarLookupInput(BaseModel):
    """How to identify the car: rego + state, or year/make/model/body type."""
    rego: Optional[str] = None
    state: Optional[str] = None
    year: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    body_type: Optional[str] = None

    def lookup_mode(self) -> Literal["rego", "manual"]:
        """
        Decide which lookup variant applies.

        Rego lookup wins when both identifications are present.

        Raises:
            InvalidLookupError: if neither identification is complete
        """
        if self.rego and self.state:
            return "rego"
        if self.year and self.make and self.model and self.body_type:
            return "manual"
        raise InvalidLookupError(
            "Please provide either rego + state, or year + make + model + bodyType to find the car."
        )


class CarDetailsInput(BaseModel):
    address: str = Field(min_length=1)
    under_finance: bool
    purpose: Purpose
    business_registered: bool
    cover_start_date: Optional[str] = None  # DD/MM/YYYY
    email: Optional[str] = None

    @field_validator("cover_start_date")
    @classmethod
    def _check_date(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        datetime.strptime(value, "%d/%m/%Y")
        return value


class AdditionalDriver(BaseModel):
    is_owner: bool
    gender: Literal["male", "female"]
    age: int = Field(ge=16, le=120)
    licence_age: int = Field(ge=0, le=120)
    accidents_last_5_years: bool


class DriverDetailsInput(BaseModel):
    racv_member: bool
    gender: Literal["male", "female"]
    age: int = Field(ge=16, le=120)
    licence_age: int = Field(ge=0, le=120)
    accidents_last_5_years: bool
    additional_drivers: list[AdditionalDriver] = Field(default_factory=list)


# =========================================================================
# Quote result
# =========================================================================

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProductQuote(_CamelModel):
    """One priced product read from the quote page. Never mutated."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str
    yearly_price: str
    monthly_price: str
    total_over_12_months: str
    yearly_saving: Optional[str] = None
    features: tuple[str, ...] = ()


class CarSummary(_CamelModel):
    description: str


class DriverSummary(_CamelModel):
    age: int = 0
    gender: str = "Unknown"
    additional_drivers: int = 0


class QuoteResult(_CamelModel):
    car: CarSummary
    driver: DriverSummary
    comprehensive: list[ProductQuote] = Field(default_factory=list)
    third_party: list[ProductQuote] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)
