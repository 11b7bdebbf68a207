"""Initialize services package."""
from .distribution import Share, compute_shares
from .enrollment_service import EnrollmentManager
from .payout_service import PayoutExecutor, PayoutStatus, PayoutSummary
from .scheduler_service import CycleScheduler
from .status_service import StatusProjector, StatusSnapshot
from .transfer_interface import TransferExecutor, explorer_url

__all__ = [
    'Share',
    'compute_shares',
    'EnrollmentManager',
    'PayoutExecutor',
    'PayoutStatus',
    'PayoutSummary',
    'CycleScheduler',
    'StatusProjector',
    'StatusSnapshot',
    'TransferExecutor',
    'explorer_url',
]
