from termfees.modules.fees.models import (
    AnnualFeeAssignment,
    FeeLineItem,
    FeeStatus,
    FeeType,
    TermAssignment,
)

__all__ = ["AnnualFeeAssignment", "FeeLineItem", "FeeStatus", "FeeType", "TermAssignment"]
