"""Exceptions raised by the billing core.

Every error is a ``ValueError`` subclass: they all describe inputs that
violate a precondition, and callers that already catch ``ValueError`` keep
working.
"""


class BillingError(ValueError):
    """Base class for billing validation failures."""


class InvalidBillingDayError(BillingError):
    """The billing day is outside 1..28."""


class NegativeAmountError(BillingError):
    """A money amount that must be non-negative is negative."""


class EmptyPaymentError(BillingError):
    """Neither cash nor credit was supplied for a payment."""


class CreditExceedsAvailableError(BillingError):
    """More credit was requested than the account has available."""


class InvalidChargeTransitionError(BillingError):
    """A charge status change leaves a terminal state or is unknown."""
