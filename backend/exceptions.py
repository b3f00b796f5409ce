class LearnHubError(Exception):
    """Base exception class for all domain-specific exceptions."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)


class NotFoundError(LearnHubError):
    """Raised when a requested resource does not exist."""

    def __init__(self, resource_type: str, resource_id) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} with ID {resource_id} not found")


class PayoutBatchError(LearnHubError):
    """Raised when a payout batch cannot be created or transitioned."""
