"""Initialize database package."""
from .database import Base, Database
from .ledger import ConflictKind, LedgerStore, LedgerTransaction
from .models import (
    Cycle,
    CycleCondition,
    CycleStatus,
    OutcomeKind,
    Participant,
    PayoutOutcome,
)

__all__ = [
    'Base',
    'Database',
    'ConflictKind',
    'LedgerStore',
    'LedgerTransaction',
    'Cycle',
    'CycleCondition',
    'CycleStatus',
    'OutcomeKind',
    'Participant',
    'PayoutOutcome',
]
