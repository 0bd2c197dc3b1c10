"""
Owner Agent
===========
Vehicle owner's client for the ledger:
1. Registers the owner's public key
2. Encrypts vehicle and trip telemetry locally before sending it
3. Asks the ledger to compute premiums on ciphertext
4. Answers split-decryption requests with r', never the private key

Transient failures (connection errors, timeouts, 5xx) are retried;
anything else is raised to the caller immediately.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

from paillier_core.encryption_core import Encryptor
from paillier_core.key_manager import KeyStore
from paillier_core.keys import KeyGenerator, KeyPair
from paillier_core.security_logger import SecurityLogger
from paillier_core.split_decryption import SplitDecryptionCoordinator, SplitDecryptionRequest
from sensors.trip_simulator import TripData, VehicleData


@dataclass
class OwnerAgentConfig:
    """Configuration for the owner agent"""
    ledger_url: str
    owner_id: str
    request_timeout: float = 10.0  # seconds
    retry_attempts: int = 3
    retry_delay: float = 1.0


class LedgerRequestError(Exception):
    """Ledger rejected a request (4xx), or stayed unavailable after retries"""

    def __init__(self, status: Optional[int], detail: str):
        self.status = status
        self.detail = detail
        super().__init__(f"Ledger error {status}: {detail}" if status else detail)


class OwnerAgent:
    """
    Owner side of the ledger protocol.

    Key material comes from the injected KeyStore; it is generated on
    first use and never serialized into a request.
    """

    def __init__(self,
                 config: OwnerAgentConfig,
                 key_store: KeyStore,
                 key_generator: Optional[KeyGenerator] = None,
                 security_logger: Optional[SecurityLogger] = None):
        self.config = config
        self.key_store = key_store
        self.key_generator = key_generator
        self.logger = security_logger
        self.coordinator = SplitDecryptionCoordinator(key_store, config.owner_id, security_logger)

        self._encryptor: Optional[Encryptor] = None
        self._session: Optional[aiohttp.ClientSession] = None

        self.total_requests = 0
        self.failed_requests = 0

    async def __aenter__(self) -> 'OwnerAgent':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    @property
    def entity(self) -> str:
        return f"owner:{self.config.owner_id}"

    @property
    def keypair(self) -> KeyPair:
        return self.key_store.get_or_create(self.config.owner_id, self.key_generator)

    @property
    def encryptor(self) -> Encryptor:
        if self._encryptor is None or self._encryptor.public_key != self.keypair.public_key:
            self._encryptor = Encryptor(self.keypair.public_key,
                                        security_logger=self.logger,
                                        entity=self.entity)
        return self._encryptor

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        """
        Send one request with retry logic

        Raises:
            LedgerRequestError: 4xx response, or retries exhausted
        """
        session = await self._get_session()
        url = f"{self.config.ledger_url}{path}"
        last_error = "no attempt made"

        for attempt in range(self.config.retry_attempts):
            self.total_requests += 1
            try:
                async with session.request(
                    method,
                    url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.config.request_timeout)
                ) as response:
                    if response.status < 400:
                        return await response.json()

                    detail = await self._error_detail(response)
                    if response.status < 500:
                        self.failed_requests += 1
                        raise LedgerRequestError(response.status, detail)
                    last_error = f"server returned {response.status}: {detail}"

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = f"{type(e).__name__}: {e}"

            if attempt < self.config.retry_attempts - 1:
                await asyncio.sleep(self.config.retry_delay)

        self.failed_requests += 1
        raise LedgerRequestError(
            None, f"{method} {path} failed after {self.config.retry_attempts} attempts ({last_error})"
        )

    @staticmethod
    async def _error_detail(response: aiohttp.ClientResponse) -> str:
        try:
            body = await response.json()
        except (aiohttp.ContentTypeError, ValueError):
            return await response.text()
        if isinstance(body, dict) and 'detail' in body:
            return str(body['detail'])
        return str(body)

    # ==================== LEDGER OPERATIONS ====================

    async def register_public_key(self) -> Dict[str, Any]:
        """Publish (n, n^2) as this owner's verifier"""
        return await self._request("POST", "/api/addVerifier", {
            'ownerID': self.config.owner_id,
            **self.keypair.public_key.to_dict()
        })

    async def submit_vehicle(self, vehicle: VehicleData) -> Dict[str, Any]:
        record = self.encryptor.encrypt_record('vehicle', vehicle.values())
        return await self._request("POST", "/api/addEncryptedVehicleData", {
            'vehicleID': vehicle.vehicle_id,
            'ownerID': self.config.owner_id,
            'record': record.to_dict()
        })

    async def submit_trip(self, trip: TripData) -> Dict[str, Any]:
        record = self.encryptor.encrypt_record('trip', trip.values())
        return await self._request("POST", "/api/addEncryptedTripData", {
            'tripID': trip.trip_id,
            'vehicleID': trip.vehicle_id,
            'date': trip.date,
            'record': record.to_dict()
        })

    async def submit_criteria_weights(self, weights: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/api/addCriteriaWeight", weights)

    async def calculate_premium(self,
                                vehicle_id: str,
                                trip_id: str,
                                criteria_weights_id: str) -> Dict[str, Any]:
        return await self._request("POST", "/api/calculateInsurancePremium", {
            'vehicleID': vehicle_id,
            'tripID': trip_id,
            'criteriaWeightsID': criteria_weights_id
        })

    async def finalize_premium(self, result_id: str) -> Dict[str, Any]:
        """
        Close a split-decryption round: fetch (R, fingerprint), derive r'
        locally, post it back. Returns the ledger's committed premium with
        the locally revealed value under 'revealed'.

        Raises:
            KeyMismatch: the result was computed under another key
            LedgerRequestError: ledger refused the share
        """
        data = await self._request("GET", f"/api/queryEncryptedCalculationResult/{result_id}")
        request = SplitDecryptionRequest.from_dict(data)

        revealed, response = self.coordinator.handle(request)
        committed = await self._request(
            "POST", "/api/decryptInsurancePremiumAndUpdate", response.to_dict()
        )
        committed['revealed'] = revealed
        return committed

    def get_stats(self) -> dict:
        return {
            'owner_id': self.config.owner_id,
            'ledger_url': self.config.ledger_url,
            'total_requests': self.total_requests,
            'failed_requests': self.failed_requests,
            'split_rounds': self.coordinator.rounds_completed
        }
