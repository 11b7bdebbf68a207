"""Utility functions and helpers."""
from .addresses import format_address, normalize_address
from .permissions import PayoutPermissions
from .exceptions import (
    PotError,
    ValidationError,
    InvalidAddressError,
    InvalidAmountError,
    ConfigurationError,
    BusinessConflictError,
    NoOpenCycleError,
    CapacityExceededError,
    AddressAlreadyJoinedError,
    CycleAlreadyOpenError,
    DatabaseError,
    StoreUnavailableError,
    TransferError,
    TransferTimeoutError,
    MissingSecretError,
    UnauthorizedError,
)

__all__ = [
    'format_address',
    'normalize_address',
    'PayoutPermissions',
    'PotError',
    'ValidationError',
    'InvalidAddressError',
    'InvalidAmountError',
    'ConfigurationError',
    'BusinessConflictError',
    'NoOpenCycleError',
    'CapacityExceededError',
    'AddressAlreadyJoinedError',
    'CycleAlreadyOpenError',
    'DatabaseError',
    'StoreUnavailableError',
    'TransferError',
    'TransferTimeoutError',
    'MissingSecretError',
    'UnauthorizedError',
]
