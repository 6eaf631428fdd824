"""
DOMEX Exceptions

Custom exception classes for the DOMEX exchange core.
"""

from typing import Optional


class DomexException(Exception):
    """Base exception for DOMEX."""
    pass


class DomexError(DomexException):
    """
    Terminal failure of a single requested operation.

    ``recoverable`` errors describe expected conditions that clear on their
    own (a cooldown, a grace period); everything else is a programming or
    authorization fault.
    """

    recoverable: bool = False
    retry_after: Optional[int] = None


class InsufficientLiquidity(DomexError):
    """Pool cannot serve the requested output or mint for the deposit."""
    pass


class ImbalancedDeposit(DomexError):
    """Deposit ratio deviates from the reserve ratio beyond tolerance."""
    pass


class InsufficientShares(DomexError):
    """Provider tried to burn more shares than recorded."""
    pass


class CircuitBreakerPaused(DomexError):
    """Breaker is not operational."""
    pass


class GracePeriodActive(DomexError):
    """Only withdrawals are permitted until the grace period ends."""

    recoverable = True

    def __init__(self, grace_period_end: int):
        self.retry_after = grace_period_end
        super().__init__(f"Grace period active until {grace_period_end}: withdrawals only")


class RateLimited(DomexError):
    """Limiter for the identifier is triggered and cooling down."""

    recoverable = True

    def __init__(self, identifier: str, retry_after: Optional[int]):
        self.identifier = identifier
        self.retry_after = retry_after
        super().__init__(f"Rate limited: {identifier} (retry after {retry_after})")


class Unauthorized(DomexError):
    """Admin operation attempted without a valid capability."""
    pass


class ArithmeticOverflow(DomexError):
    """Fixed-point arithmetic left the representable range."""
    pass


class SlippageExceeded(DomexError):
    """Swap output is below the caller's minimum."""
    pass


class PoolInvariantError(DomexError):
    """Reserve product decreased across a swap."""
    pass


class ReentrancyError(DomexError):
    """Pool mutation re-entered while locked."""
    pass


class PoolNotFound(DomexError):
    """No pool registered under the given id."""
    pass


class ConfigurationError(DomexException):
    """Configuration error."""
    pass
