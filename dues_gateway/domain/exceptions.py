"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Request input is malformed or out of range"""

    pass


class AuthenticationError(DomainException):
    """Missing, malformed or expired credential"""

    pass


class AuthorizationError(DomainException):
    """Caller does not own the balance, plan or payment method"""

    pass


class NotFoundError(DomainException):
    """Referenced dues balance or plan does not exist"""

    pass


class EligibilityError(DomainException):
    """Balance may not be split as requested"""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason


class ConflictError(DomainException):
    """Operation conflicts with current state (e.g. an active plan already exists)"""

    pass


class InvalidTransitionError(ConflictError):
    """Requested status transition is not allowed"""

    pass


class GatewayError(DomainException):
    """Payment processor call failed or timed out"""

    pass


class ChargeDeclinedError(GatewayError):
    """Processor rejected the charge (card declined, insufficient funds, ...)"""

    def __init__(self, message: str, code: str = "declined"):
        super().__init__(message)
        self.code = code


class RateLimitError(DomainException):
    """Too many payment requests in the current window"""

    def __init__(self, retry_after: int):
        super().__init__(f"Rate limit exceeded, retry after {retry_after}s")
        self.retry_after = retry_after
