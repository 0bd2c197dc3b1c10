"""
Server Module - Reference Premium Ledger
"""

from .premium_processor import (
    PremiumProcessor,
    LedgerConfig,
    CriteriaWeights,
    EncryptedCalculationResult,
    Prime,
    MonthPrime,
    LedgerError,
    NotFound,
    Conflict
)

__all__ = [
    'PremiumProcessor',
    'LedgerConfig',
    'CriteriaWeights',
    'EncryptedCalculationResult',
    'Prime',
    'MonthPrime',
    'LedgerError',
    'NotFound',
    'Conflict'
]
