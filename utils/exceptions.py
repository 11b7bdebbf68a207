"""Custom exceptions for the community pot engine."""
from typing import Optional


class PotError(Exception):
    """Base exception for all community pot errors."""
    pass


class ValidationError(PotError):
    """Raised when input or configuration is malformed. Never retried."""
    pass


class InvalidAddressError(ValidationError):
    """Raised when a payout address does not match the chain format."""
    def __init__(self, address: Optional[str]):
        self.address = address
        super().__init__(f"Invalid payout address: {address!r}")


class InvalidAmountError(ValidationError):
    """Raised when a pot amount cannot be split at the configured precision."""
    pass


class ConfigurationError(ValidationError):
    """Raised when a required setting is missing or unusable."""
    pass


class BusinessConflictError(PotError):
    """Base class for expected conflicts the caller should render."""
    code = "conflict"


class NoOpenCycleError(BusinessConflictError):
    """Raised when there is no cycle accepting participants."""
    code = "no_open_cycle"

    def __init__(self, message: str = "No cycle is open for enrollment"):
        super().__init__(message)


class CapacityExceededError(BusinessConflictError):
    """Raised when the open cycle already holds max_participants addresses."""
    code = "capacity_exceeded"

    def __init__(self, cycle_id: str, max_participants: int):
        self.cycle_id = cycle_id
        self.max_participants = max_participants
        super().__init__(
            f"Cycle {cycle_id} is full ({max_participants} participants)"
        )


class AddressAlreadyJoinedError(BusinessConflictError):
    """Raised when another caller already holds this address in the cycle."""
    code = "address_in_use"

    def __init__(self, cycle_id: str, address: str):
        self.cycle_id = cycle_id
        self.address = address
        super().__init__(f"Address {address} is already enrolled in cycle {cycle_id}")


class CycleAlreadyOpenError(BusinessConflictError):
    """Raised when seeding a new cycle while another one is still open."""
    code = "cycle_already_open"

    def __init__(self, cycle_id: str):
        self.cycle_id = cycle_id
        super().__init__(f"Cycle {cycle_id} is already open")


class DatabaseError(PotError):
    """Raised when a database operation fails."""
    pass


class StoreUnavailableError(DatabaseError):
    """Raised when the ledger store cannot be reached. Safe to retry."""
    pass


class TransferError(PotError):
    """Raised by a transfer executor when a send fails."""
    def __init__(self, message: str, transfer_id: Optional[str] = None):
        super().__init__(message)
        self.transfer_id = transfer_id


class TransferTimeoutError(TransferError):
    """Raised when a transfer does not settle within its time budget."""
    def __init__(self, address: str, timeout: float):
        self.address = address
        self.timeout = timeout
        super().__init__(f"Transfer to {address} timed out after {timeout:g}s")


class MissingSecretError(PotError):
    """Raised when the payout secret is not configured. Fatal."""
    pass


class UnauthorizedError(PotError):
    """Raised when a payout trigger presents the wrong secret."""
    pass
