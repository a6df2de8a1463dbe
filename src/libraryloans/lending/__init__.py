"""Book lending module.

Provides functionality for:
- Lending books while keeping one unreturned loan per book
- Recording returns
- Loan history searches by ISBN or customer
- Overdue loan detection
"""

from .manager import LoanLedger
from .models import Loan
from .overdue import OverdueScanner, is_late, late_cutoff
from .schemas import (
    LoanCreate,
    LoanFilter,
    LoanResponse,
    ReturnedLoan,
)

__all__ = [
    "LoanLedger",
    "Loan",
    "OverdueScanner",
    "is_late",
    "late_cutoff",
    "LoanCreate",
    "LoanFilter",
    "LoanResponse",
    "ReturnedLoan",
]
