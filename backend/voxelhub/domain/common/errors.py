"""Domain error types."""


class DomainError(Exception):
    """Base domain error."""
    pass


class NotFoundError(DomainError):
    """Resource not found."""
    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        self.message = f"{resource} not found"
        super().__init__(f"{resource} with id {identifier} not found")


class ValidationError(DomainError):
    """Malformed input (price, amount, rating, missing field)."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AuthorizationError(DomainError):
    """Wrong role or not the owner of the resource."""
    def __init__(self, message: str = "Not authorized"):
        self.message = message
        super().__init__(message)


class ConflictError(DomainError):
    """Operation not allowed in the current state (bid not pending, balance too low, ...)."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class PaymentProviderError(DomainError):
    """Payment provider call failed. Handled by the payout executor, never returned over HTTP."""
    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(f"{provider}: {message}")
