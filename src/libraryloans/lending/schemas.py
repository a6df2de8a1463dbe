"""Pydantic schemas for book lending."""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..db.schemas import BookResponse


class LoanCreate(BaseModel):
    """Schema for lending a book, identified by its ISBN."""

    isbn: str = Field(..., min_length=1, max_length=20)
    customer: str = Field(..., min_length=1, max_length=100)
    email: Optional[str] = Field(None, max_length=200)

    @field_validator("customer")
    @classmethod
    def customer_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("customer must not be blank")
        return v


class ReturnedLoan(BaseModel):
    """Schema for recording whether a loan came back."""

    returned: bool


class LoanFilter(BaseModel):
    """Loan history filter.

    A loan matches when its book has ``isbn`` or its customer is
    ``customer``. Omitted fields add no condition; with both omitted every
    loan matches.
    """

    isbn: Optional[str] = None
    customer: Optional[str] = None


class LoanResponse(BaseModel):
    """Schema for loan responses."""

    id: int
    customer: str
    customer_email: Optional[str]
    loan_date: date
    returned: Optional[bool]
    book: BookResponse

    model_config = {"from_attributes": True}
