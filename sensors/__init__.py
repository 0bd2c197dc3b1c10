"""
Sensors Module - Owner-Side Telemetry and Ledger Client
"""

from .trip_simulator import (
    BEHAVIOUR_PROFILES,
    TripData,
    VehicleData,
    TripSimulator
)

from .owner_agent import OwnerAgent, OwnerAgentConfig, LedgerRequestError

__all__ = [
    'BEHAVIOUR_PROFILES',
    'TripData',
    'VehicleData',
    'TripSimulator',
    'OwnerAgent',
    'OwnerAgentConfig',
    'LedgerRequestError'
]
