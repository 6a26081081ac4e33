"""Schemas for Students module."""

from datetime import datetime
from decimal import Decimal

from pydantic import Field, field_validator

from termfees.modules.students.models import StudentStatus, TransportMode
from termfees.shared.schemas import BaseSchema


class StudentCreate(BaseSchema):
    """Schema for creating a student."""

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    grade: str | None = Field(None, max_length=50)
    transport_mode: TransportMode | None = None
    guardian_name: str | None = Field(None, max_length=200)
    guardian_phone: str | None = Field(None, max_length=20)
    guardian_email: str | None = Field(None, max_length=255)
    notes: str | None = None

    @field_validator("grade")
    @classmethod
    def blank_grade_is_none(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        return v or None

    @field_validator("guardian_phone")
    @classmethod
    def normalize_phone(cls, v: str | None) -> str | None:
        """Strip spaces and dashes so reminders get a dialable number."""
        if v is None:
            return v
        return v.replace(" ", "").replace("-", "")


class StudentUpdate(BaseSchema):
    """Schema for updating a student."""

    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, min_length=1, max_length=100)
    grade: str | None = Field(None, max_length=50)
    transport_mode: TransportMode | None = None
    status: StudentStatus | None = None
    guardian_name: str | None = Field(None, max_length=200)
    guardian_phone: str | None = Field(None, max_length=20)
    guardian_email: str | None = Field(None, max_length=255)
    notes: str | None = None


class StudentResponse(BaseSchema):
    """Schema for student response, including the fee snapshot."""

    id: int
    student_number: str
    first_name: str
    last_name: str
    full_name: str
    grade: str | None
    transport_mode: str | None
    status: str
    guardian_name: str | None
    guardian_phone: str | None
    guardian_email: str | None
    fee_total: Decimal
    fee_paid: Decimal
    fee_pending: Decimal
    fee_status: str | None
    fee_updated_at: datetime | None
