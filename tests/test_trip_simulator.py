"""
Trip Simulator Tests
"""

import re
import subprocess
import pytest
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from sensors.trip_simulator import BEHAVIOUR_PROFILES, TRIP_FIELDS, TripSimulator, VehicleData


class TestTripSimulator:

    @pytest.mark.parametrize("behaviour", ["good", "average", "bad"])
    def test_values_within_profile(self, behaviour):
        simulator = TripSimulator("V1", seed=5)
        ranges = BEHAVIOUR_PROFILES[behaviour]
        for _ in range(200):
            trip = simulator.generate_trip(behaviour, mileage=80, trip_date="2024-03-15")
            for name, (low, high) in ranges.items():
                assert low <= getattr(trip, name) <= high
            assert trip.mileage == 80
        assert simulator.trips_generated == 200

    def test_trip_id_format(self):
        trip = TripSimulator("V1", seed=1).generate_trip("good", mileage=10)
        assert re.fullmatch(r"T\d{4}", trip.trip_id)
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}", trip.date)

    def test_values_in_ledger_order(self):
        trip = TripSimulator("V1", seed=1).generate_trip("bad", mileage=300)
        values = trip.values()
        assert tuple(values) == TRIP_FIELDS
        assert all(isinstance(v, int) for v in values.values())

    def test_seed_reproducible(self):
        a = TripSimulator("V1", seed=9).generate_trip("average", 50, "2024-01-01")
        b = TripSimulator("V1", seed=9).generate_trip("average", 50, "2024-01-01")
        assert a == b

    def test_invalid_behaviour(self):
        with pytest.raises(ValueError, match="Invalid behaviour"):
            TripSimulator("V1").generate_trip("reckless", mileage=10)

    def test_invalid_mileage(self):
        with pytest.raises(ValueError, match="mileage"):
            TripSimulator("V1").generate_trip("good", mileage=-5)


class TestVehicleData:

    def test_values(self):
        vehicle = VehicleData("V1", vehicle_type=2, purchase_mileage=15000, year=2020)
        assert vehicle.values() == {'vehicle_type': 2, 'purchase_mileage': 15000, 'year': 2020}

    def test_negative_rejected(self):
        with pytest.raises(ValueError, match="year"):
            VehicleData("V1", vehicle_type=2, purchase_mileage=15000, year=-1)


class TestOwnerSideImports:

    def test_sensors_do_not_load_the_ledger(self):
        code = "import sys, sensors; assert not any(m == 'server' or m.startswith('server.') for m in sys.modules)"
        completed = subprocess.run([sys.executable, "-c", code], cwd=str(PROJECT_ROOT))
        assert completed.returncode == 0
