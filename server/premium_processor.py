"""
Premium Processor
=================
Ledger-side state and the homomorphic insurance premium computation.

The ledger stores each owner's public key (a "verifier"), encrypted
vehicle and trip records, and criteria weights. It computes the premium
entirely on ciphertext:

    behaviour = sum(weight_i * field_i) - weight_traffic * compliance
    PAYD      = alpha * mileage
    PHYD      = beta * behaviour
    total     = vehicle_type + purchase_mileage + year + PAYD + PHYD

and then holds the encrypted total until the owner returns the derived
share r' that lets it verify and commit the plaintext premium.
"""

import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from paillier_core.encryption_core import EncryptedRecord
from paillier_core.errors import (
    InvalidCiphertext,
    KeyMismatch,
    ProtocolViolation,
    VerificationFailed
)
from paillier_core.homomorphic import HomomorphicAggregator
from paillier_core.keys import PublicKey
from paillier_core.security_logger import LEDGER, DataType, OperationType, SecurityLogger
from paillier_core.serialization import encode_int
from paillier_core.split_decryption import SplitDecryptionRequest
from sensors.trip_simulator import TRIP_FIELDS, VEHICLE_FIELDS


@dataclass
class LedgerConfig:
    """Ledger configuration"""
    buffer_size: int = 1000     # pending results kept; finalized ones are never evicted

    def __post_init__(self):
        if self.buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")


class LedgerError(Exception):
    """Ledger state error (not cryptographic)"""


class NotFound(LedgerError):
    pass


class Conflict(LedgerError):
    pass


@dataclass
class CriteriaWeights:
    """Public weights and scalars for one premium formula"""
    criteria_weights_id: str
    weight_traffic: int
    weight_speed: int
    weight_acceleration: int
    weight_braking: int
    weight_distance: int
    weight_zone: int
    weight_time: int
    alpha: int      # PAYD scalar
    beta: int       # PHYD scalar

    def __post_init__(self):
        for name, value in asdict(self).items():
            if name == 'criteria_weights_id':
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative int, got {value!r}")

    def to_dict(self) -> dict:
        d = asdict(self)
        d['criteriaweightID'] = d.pop('criteria_weights_id')
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'CriteriaWeights':
        data = dict(data)
        data['criteria_weights_id'] = data.pop('criteriaweightID')
        return cls(**data)


@dataclass
class VehicleEntry:
    vehicle_id: str
    owner_id: str
    record: EncryptedRecord


@dataclass
class TripEntry:
    trip_id: str
    vehicle_id: str
    date: str
    record: EncryptedRecord


@dataclass
class EncryptedCalculationResult:
    """Encrypted premium awaiting the owner's derived share"""
    result_id: str
    prime_totale: int
    r: int
    trip_id: str
    vehicle_id: str
    owner_id: str
    key_fingerprint: str
    date: str
    computed_at: str = field(default_factory=lambda: datetime.now().isoformat())
    finalized: bool = False

    def to_dict(self) -> dict:
        return {
            'resultID': self.result_id,
            'prime_totale': encode_int(self.prime_totale),
            'r': encode_int(self.r),
            'tripID': self.trip_id,
            'vehicleID': self.vehicle_id,
            'key_fingerprint': self.key_fingerprint,
            'computed_at': self.computed_at,
            'finalized': self.finalized
        }

    def to_request(self) -> SplitDecryptionRequest:
        return SplitDecryptionRequest(
            result_id=self.result_id,
            blinding_value=self.r,
            key_fingerprint=self.key_fingerprint,
            ciphertext=self.prime_totale
        )


@dataclass
class Prime:
    """Committed (decrypted, verified) premium for one trip"""
    trip_id: str
    date: str
    prime: int

    def to_dict(self) -> dict:
        return {'tripID': self.trip_id, 'date': self.date, 'prime': self.prime}


@dataclass
class MonthPrime:
    """Running monthly premium for one vehicle"""
    vehicle_id: str
    month: int
    year: int
    month_prime: int = 0

    def to_dict(self) -> dict:
        return {
            'vehicleID': self.vehicle_id,
            'month': self.month,
            'year': self.year,
            'month_prime': self.month_prime
        }


def extract_year_and_month(date: str) -> Tuple[int, int]:
    """'YYYY-MM-DD' -> (year, month)"""
    try:
        parsed = datetime.strptime(date[:10], "%Y-%m-%d")
    except ValueError as e:
        raise ValueError(f"failed to parse date: {date}") from e
    return parsed.year, parsed.month


class PremiumProcessor:
    """
    Reference ledger for encrypted premium computation.

    All aggregation happens on ciphertext under the owner's registered
    key; the only plaintext the ledger ever holds is a premium it has
    verified with the owner's r'.
    """

    def __init__(self,
                 config: Optional[LedgerConfig] = None,
                 security_logger: Optional[SecurityLogger] = None):
        self.config = config or LedgerConfig()
        self.logger = security_logger or SecurityLogger()
        self._lock = threading.RLock()

        self.verifiers: Dict[str, PublicKey] = {}
        self.vehicles: Dict[str, VehicleEntry] = {}
        self.trips: Dict[str, TripEntry] = {}
        self.criteria_weights: Dict[str, CriteriaWeights] = {}
        self.results: Dict[str, EncryptedCalculationResult] = {}
        self.primes: Dict[str, Prime] = {}
        self.month_primes: Dict[Tuple[str, int, int], MonthPrime] = {}

        self.operations_count = 0
        self.last_operation_time: Optional[datetime] = None

    def _log(self, operation: OperationType, data_types: List[DataType], details: dict):
        self.logger.log(LEDGER, operation, data_types, details)

    # ==================== REGISTRATION ====================

    def register_verifier(self, owner_id: str, public_key: PublicKey):
        """Register an owner's public key; at most once per owner"""
        with self._lock:
            if owner_id in self.verifiers:
                raise Conflict(f"Verifier with OwnerID '{owner_id}' already exists")
            self.verifiers[owner_id] = public_key
        self._log(
            OperationType.REGISTER_KEY,
            [DataType.PUBLIC_PARAM],
            {'owner_id': owner_id, 'fingerprint': public_key.fingerprint()}
        )

    def get_verifier(self, owner_id: str) -> PublicKey:
        public_key = self.verifiers.get(owner_id)
        if public_key is None:
            raise NotFound(f"Verifier not found for OwnerID '{owner_id}'")
        return public_key

    def _check_record(self, record: EncryptedRecord, public_key: PublicKey, required: Tuple[str, ...]):
        if record.key_fingerprint != public_key.fingerprint():
            raise KeyMismatch("Record was not encrypted under the owner's registered key")
        if not record.verify():
            raise InvalidCiphertext("Record checksum mismatch")
        missing = [name for name in required if name not in record.fields]
        if missing:
            raise ValueError(f"Missing encrypted fields: {', '.join(missing)}")
        for name, ciphertext in record.fields.items():
            if not 0 < ciphertext < public_key.n_square:
                raise InvalidCiphertext(f"Field '{name}' is outside (0, n^2)")

    def add_vehicle(self, vehicle_id: str, owner_id: str, record: EncryptedRecord):
        public_key = self.get_verifier(owner_id)
        self._check_record(record, public_key, VEHICLE_FIELDS)
        with self._lock:
            if vehicle_id in self.vehicles:
                raise Conflict(f"Vehicle '{vehicle_id}' already exists")
            self.vehicles[vehicle_id] = VehicleEntry(vehicle_id, owner_id, record)
        self._log(OperationType.STORE, [DataType.CIPHERTEXT], {'vehicle_id': vehicle_id})

    def add_trip(self, trip_id: str, vehicle_id: str, date: str, record: EncryptedRecord):
        vehicle = self._get_vehicle(vehicle_id)
        self._check_record(record, self.get_verifier(vehicle.owner_id), TRIP_FIELDS)
        extract_year_and_month(date)
        with self._lock:
            if trip_id in self.trips:
                raise Conflict(f"Trip '{trip_id}' already exists")
            self.trips[trip_id] = TripEntry(trip_id, vehicle_id, date, record)
        self._log(OperationType.STORE, [DataType.CIPHERTEXT], {'trip_id': trip_id})

    def add_criteria_weights(self, weights: CriteriaWeights):
        with self._lock:
            if weights.criteria_weights_id in self.criteria_weights:
                raise Conflict(f"Criteria weights '{weights.criteria_weights_id}' already exist")
            self.criteria_weights[weights.criteria_weights_id] = weights

    def _get_vehicle(self, vehicle_id: str) -> VehicleEntry:
        vehicle = self.vehicles.get(vehicle_id)
        if vehicle is None:
            raise NotFound(f"Vehicle data not found for VehicleID '{vehicle_id}'")
        return vehicle

    def _get_trip(self, trip_id: str) -> TripEntry:
        trip = self.trips.get(trip_id)
        if trip is None:
            raise NotFound(f"Trip data not found for TripID '{trip_id}'")
        return trip

    def _get_weights(self, criteria_weights_id: str) -> CriteriaWeights:
        weights = self.criteria_weights.get(criteria_weights_id)
        if weights is None:
            raise NotFound(f"Criteria weights not found for '{criteria_weights_id}'")
        return weights

    def get_result(self, result_id: str) -> EncryptedCalculationResult:
        result = self.results.get(result_id)
        if result is None:
            raise NotFound(f"No encrypted calculation result '{result_id}'")
        return result

    # ==================== HOMOMORPHIC PREMIUM ====================

    def compute_encrypted_premium(self,
                                  aggregator: HomomorphicAggregator,
                                  vehicle: EncryptedRecord,
                                  trip: EncryptedRecord,
                                  weights: CriteriaWeights) -> int:
        """Premium formula evaluated on ciphertext only"""
        fields = trip.fields

        weighted = [
            aggregator.scalar_multiply(fields[name], getattr(weights, weight))
            for name, weight in BEHAVIOUR_WEIGHTS
        ]
        behaviour = aggregator.sum(weighted)
        compliance = aggregator.scalar_multiply(
            fields['traffic_signal_compliance'], weights.weight_traffic
        )
        behaviour = aggregator.subtract(behaviour, compliance)

        payd = aggregator.scalar_multiply(fields['mileage'], weights.alpha)
        phyd = aggregator.scalar_multiply(behaviour, weights.beta)

        return aggregator.sum([
            vehicle.fields['vehicle_type'],
            vehicle.fields['purchase_mileage'],
            vehicle.fields['year'],
            payd,
            phyd
        ])

    def calculate_premium(self,
                          vehicle_id: str,
                          trip_id: str,
                          criteria_weights_id: str) -> EncryptedCalculationResult:
        """
        Compute the encrypted premium for a trip and store it with its
        blinding value R, pending the owner's r'.
        """
        weights = self._get_weights(criteria_weights_id)
        vehicle = self._get_vehicle(vehicle_id)
        trip = self._get_trip(trip_id)
        if trip.vehicle_id != vehicle_id:
            raise ProtocolViolation(f"Trip '{trip_id}' does not belong to vehicle '{vehicle_id}'")

        public_key = self.get_verifier(vehicle.owner_id)
        aggregator = HomomorphicAggregator(public_key)
        prime_totale = self.compute_encrypted_premium(
            aggregator, vehicle.record, trip.record, weights
        )

        result = EncryptedCalculationResult(
            result_id=f"result_{trip_id}",
            prime_totale=prime_totale,
            r=aggregator.compute_blinding_value(prime_totale),
            trip_id=trip_id,
            vehicle_id=vehicle_id,
            owner_id=vehicle.owner_id,
            key_fingerprint=public_key.fingerprint(),
            date=trip.date
        )

        with self._lock:
            existing = self.results.get(result.result_id)
            if existing is not None and existing.finalized:
                raise Conflict(f"Premium for trip '{trip_id}' is already committed")
            self.results.pop(result.result_id, None)
            self._evict_pending()
            self.results[result.result_id] = result
            self.operations_count += 1
            self.last_operation_time = datetime.now()

        self._log(
            OperationType.AGGREGATE,
            [DataType.CIPHERTEXT, DataType.PUBLIC_PARAM],
            {'result_id': result.result_id, 'operations': aggregator.operations_count}
        )
        self._log(OperationType.BLIND, [DataType.CIPHERTEXT, DataType.BLINDING_VALUE],
                  {'result_id': result.result_id})
        return result

    def _evict_pending(self):
        # oldest pending results go first; they can be recomputed.
        # finalized results stay for finalize replays and result queries
        pending = [rid for rid, r in self.results.items() if not r.finalized]
        while len(pending) >= self.config.buffer_size:
            del self.results[pending.pop(0)]

    # ==================== SPLIT DECRYPTION ====================

    def get_split_request(self, result_id: str) -> SplitDecryptionRequest:
        return self.get_result(result_id).to_request()

    def finalize(self, result_id: str, r_prime: int) -> Prime:
        """
        Verify the owner's derived share, decrypt and commit the premium.

        Replaying the share of an already-committed result returns the
        stored Prime without accumulating it again, so an owner may retry
        a finalize whose response was lost.

        Raises:
            NotFound: unknown result_id
            ProtocolViolation: result already finalized with another share
            VerificationFailed: r' does not open this result
        """
        with self._lock:
            result = self.get_result(result_id)
            aggregator = HomomorphicAggregator(self.get_verifier(result.owner_id))

            if result.finalized:
                try:
                    aggregator.verify_and_decrypt(result.prime_totale, r_prime)
                except VerificationFailed as e:
                    raise ProtocolViolation(f"Result '{result_id}' was already finalized") from e
                return self.primes[result.trip_id]

            premium = aggregator.verify_and_decrypt(result.prime_totale, r_prime)

            result.finalized = True
            prime = Prime(trip_id=result.trip_id, date=result.date, prime=premium)
            self.primes[result.trip_id] = prime

            year, month = extract_year_and_month(result.date)
            key = (result.vehicle_id, month, year)
            month_prime = self.month_primes.get(key)
            if month_prime is None:
                month_prime = MonthPrime(vehicle_id=result.vehicle_id, month=month, year=year)
                self.month_primes[key] = month_prime
            month_prime.month_prime += premium

        self._log(
            OperationType.FINALIZE,
            [DataType.CIPHERTEXT, DataType.DERIVED_SHARE, DataType.PLAINTEXT],
            {'result_id': result_id, 'verified': True}
        )
        return prime

    # ==================== QUERIES ====================

    def query_results_by_vehicle(self, vehicle_id: str) -> List[EncryptedCalculationResult]:
        return [r for r in self.results.values() if r.vehicle_id == vehicle_id]

    def query_primes_by_vehicle(self, vehicle_id: str) -> List[Prime]:
        return [
            self.primes[t.trip_id]
            for t in self.trips.values()
            if t.vehicle_id == vehicle_id and t.trip_id in self.primes
        ]

    def query_month_prime(self, vehicle_id: str, month: int, year: int) -> MonthPrime:
        month_prime = self.month_primes.get((vehicle_id, month, year))
        if month_prime is None:
            raise NotFound(f"No monthly premium for {vehicle_id} {year}-{month:02d}")
        return month_prime

    def get_stats(self) -> dict:
        return {
            'verifiers': len(self.verifiers),
            'vehicles': len(self.vehicles),
            'trips': len(self.trips),
            'pending_results': sum(1 for r in self.results.values() if not r.finalized),
            'committed_primes': len(self.primes),
            'operations_count': self.operations_count,
            'last_operation': self.last_operation_time.isoformat() if self.last_operation_time else None
        }
