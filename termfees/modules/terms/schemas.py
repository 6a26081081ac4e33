from datetime import date
from decimal import Decimal

from pydantic import Field, field_validator, model_validator

from termfees.modules.terms.models import TermStatus
from termfees.shared.schemas import BaseSchema


# --- Term Schemas ---

class TermCreate(BaseSchema):
    """Schema for creating a new academic term."""

    name: str = Field(..., min_length=1, max_length=100)
    academic_year: str = Field(..., min_length=4, max_length=20)  # e.g. "2025-2026"
    start_date: date
    end_date: date
    fee_due_date: date | None = None
    notes: str | None = None

    @field_validator("name", "academic_year")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()


class TermUpdate(BaseSchema):
    """Schema for updating a term. Status and current flag are not editable here."""

    name: str | None = Field(None, min_length=1, max_length=100)
    start_date: date | None = None
    end_date: date | None = None
    fee_due_date: date | None = None
    notes: str | None = None


class TermResponse(BaseSchema):
    """Schema for term response."""

    id: int
    name: str
    academic_year: str
    start_date: date
    end_date: date
    fee_due_date: date | None
    is_current: bool
    status: TermStatus
    notes: str | None = None


# --- Grade Fee Template Schemas ---

class FeeTemplateSave(BaseSchema):
    """Create or replace the template for one grade of a term."""

    grade: str = Field(..., min_length=1, max_length=50)
    tuition_fee: Decimal | None = None
    basic_fee: Decimal | None = None
    examination_fee: Decimal | None = None
    transport_fee: Decimal | None = None
    library_fee: Decimal | None = None
    sports_fee: Decimal | None = None
    activity_fee: Decimal | None = None
    hostel_fee: Decimal | None = None
    uniform_fee: Decimal | None = None
    book_fee: Decimal | None = None
    other_fees: Decimal | None = None
    is_active: bool = True
    notes: str | None = None

    @field_validator("grade")
    @classmethod
    def strip_grade(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Grade is required")
        return v

    @model_validator(mode="after")
    def check_non_negative(self) -> "FeeTemplateSave":
        for name, value in self.model_dump(exclude={"grade", "is_active", "notes"}).items():
            if value is not None and value < 0:
                raise ValueError(f"{name} cannot be negative")
        return self


class FeeTemplateResponse(BaseSchema):
    """Schema for grade fee template response."""

    id: int
    term_id: int
    grade: str
    grade_key: str
    tuition_fee: Decimal | None
    basic_fee: Decimal | None
    examination_fee: Decimal | None
    transport_fee: Decimal | None
    library_fee: Decimal | None
    sports_fee: Decimal | None
    activity_fee: Decimal | None
    hostel_fee: Decimal | None
    uniform_fee: Decimal | None
    book_fee: Decimal | None
    other_fees: Decimal | None
    total_fee: Decimal
    is_active: bool


class FeeTemplateStatusUpdate(BaseSchema):
    is_active: bool


# --- Academic Year Schemas ---

class TermPeriod(BaseSchema):
    """One term of an academic year being set up."""

    name: str = Field(..., min_length=1, max_length=100)
    start_date: date
    end_date: date
    fee_due_date: date | None = None
    notes: str | None = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class AcademicYearCreate(BaseSchema):
    """Create every term of a new academic year in one go."""

    academic_year: str = Field(..., min_length=4, max_length=20)
    term_periods: list[TermPeriod] = Field(..., min_length=1)
    make_first_current: bool = True

    @field_validator("academic_year")
    @classmethod
    def strip_year(cls, v: str) -> str:
        return v.strip()
