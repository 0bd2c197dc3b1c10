"""
Simulated Trips
===============
Driving-behaviour telemetry for one trip, drawn from a behaviour profile.
Values are small non-negative counts, ready for Paillier encryption on
the owner's side before anything leaves the vehicle.
"""

import numpy as np
from dataclasses import dataclass, asdict
from datetime import date as date_type
from typing import Dict, Optional, Tuple


VEHICLE_FIELDS = ('vehicle_type', 'purchase_mileage', 'year')

# encryption and ledger order of trip fields
TRIP_FIELDS = (
    'speeding',
    'hard_accelerations',
    'emergency_brakes',
    'unsafe_distance',
    'high_risk_zones',
    'traffic_signal_compliance',
    'night_driving',
    'mileage'
)


# Inclusive [low, high] ranges per behaviour profile
BEHAVIOUR_PROFILES: Dict[str, Dict[str, Tuple[int, int]]] = {
    'good': {
        'speeding': (0, 5),
        'hard_accelerations': (0, 2),
        'emergency_brakes': (0, 1),
        'unsafe_distance': (0, 10),
        'high_risk_zones': (0, 5),
        'traffic_signal_compliance': (9, 10),
        'night_driving': (0, 10),
    },
    'average': {
        'speeding': (5, 20),
        'hard_accelerations': (2, 5),
        'emergency_brakes': (1, 3),
        'unsafe_distance': (10, 30),
        'high_risk_zones': (5, 15),
        'traffic_signal_compliance': (8, 9),
        'night_driving': (10, 30),
    },
    'bad': {
        'speeding': (20, 50),
        'hard_accelerations': (5, 15),
        'emergency_brakes': (3, 10),
        'unsafe_distance': (30, 60),
        'high_risk_zones': (15, 30),
        'traffic_signal_compliance': (5, 8),
        'night_driving': (30, 60),
    },
}


@dataclass
class TripData:
    """One trip's plaintext telemetry (owner side only)"""
    trip_id: str
    vehicle_id: str
    date: str
    speeding: int
    hard_accelerations: int
    emergency_brakes: int
    unsafe_distance: int
    high_risk_zones: int
    traffic_signal_compliance: int
    night_driving: int
    mileage: int

    def values(self) -> Dict[str, int]:
        """Fields that get encrypted, in ledger order"""
        return {name: getattr(self, name) for name in TRIP_FIELDS}

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class VehicleData:
    """Plaintext vehicle attributes (owner side only)"""
    vehicle_id: str
    vehicle_type: int
    purchase_mileage: int
    year: int

    def __post_init__(self):
        for name in VEHICLE_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative int, got {value!r}")

    def values(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in VEHICLE_FIELDS}


class TripSimulator:
    """Generates trips for a vehicle from a behaviour profile"""

    def __init__(self, vehicle_id: str, seed: Optional[int] = None):
        self.vehicle_id = vehicle_id
        self.rng = np.random.default_rng(seed)
        self.trips_generated = 0

    def _draw(self, low: int, high: int) -> int:
        return int(self.rng.integers(low, high + 1))

    def generate_trip(self,
                      behaviour: str,
                      mileage: int,
                      trip_date: Optional[str] = None) -> TripData:
        """
        Draw one trip.

        Args:
            behaviour: 'good', 'average' or 'bad'
            mileage: distance driven, supplied by the caller
            trip_date: ISO date, defaults to today
        """
        params = BEHAVIOUR_PROFILES.get(behaviour)
        if params is None:
            raise ValueError(f"Invalid behaviour '{behaviour}', expected one of {sorted(BEHAVIOUR_PROFILES)}")
        if isinstance(mileage, bool) or not isinstance(mileage, int) or mileage < 0:
            raise ValueError(f"mileage must be a non-negative int, got {mileage!r}")

        readings = {name: self._draw(low, high) for name, (low, high) in params.items()}
        self.trips_generated += 1

        return TripData(
            trip_id=f"T{self._draw(1000, 9999)}",
            vehicle_id=self.vehicle_id,
            date=trip_date or date_type.today().isoformat(),
            mileage=mileage,
            **readings
        )
