"""
Owner Agent Tests
=================
The aiohttp owner client against a stub ledger served by
aiohttp.test_utils.TestServer.
"""

import asyncio
import pytest
import sys
from pathlib import Path

from aiohttp import web
from aiohttp.test_utils import TestServer

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from paillier_core import InMemoryKeyStore, KeyMismatch, KeyPair, PublicKey, SecurityLogger
from paillier_core.encryption_core import EncryptedRecord
from paillier_core.serialization import decode_int
from sensors.owner_agent import LedgerRequestError, OwnerAgent, OwnerAgentConfig
from sensors.trip_simulator import TripSimulator, VehicleData
from server.premium_processor import CriteriaWeights, PremiumProcessor


WEIGHTS = {
    'criteriaweightID': 'CW1',
    'weight_traffic': 5,
    'weight_speed': 2,
    'weight_acceleration': 3,
    'weight_braking': 4,
    'weight_distance': 1,
    'weight_zone': 2,
    'weight_time': 1,
    'alpha': 2,
    'beta': 3
}


def build_stub_ledger(processor: PremiumProcessor, finalize_handler=None) -> web.Application:
    """Minimal aiohttp ledger backed by a real PremiumProcessor"""

    async def add_verifier(request):
        data = await request.json()
        processor.register_verifier(data['ownerID'], PublicKey.from_dict(data))
        return web.json_response({'status': 'registered'}, status=201)

    async def add_vehicle(request):
        data = await request.json()
        processor.add_vehicle(data['vehicleID'], data['ownerID'],
                              EncryptedRecord.from_dict(data['record']))
        return web.json_response({'status': 'stored'}, status=201)

    async def add_trip(request):
        data = await request.json()
        processor.add_trip(data['tripID'], data['vehicleID'], data['date'],
                           EncryptedRecord.from_dict(data['record']))
        return web.json_response({'status': 'stored'}, status=201)

    async def add_weights(request):
        processor.add_criteria_weights(CriteriaWeights.from_dict(await request.json()))
        return web.json_response({'status': 'stored'}, status=201)

    async def calculate(request):
        data = await request.json()
        result = processor.calculate_premium(data['vehicleID'], data['tripID'], data['criteriaWeightsID'])
        return web.json_response(result.to_dict(), status=201)

    async def query_result(request):
        request_msg = processor.get_split_request(request.match_info['result_id'])
        return web.json_response(request_msg.to_dict())

    async def finalize(request):
        data = await request.json()
        prime = processor.finalize(data['resultID'], decode_int(data['rPrime']))
        return web.json_response(prime.to_dict())

    app = web.Application()
    app.router.add_post("/api/addVerifier", add_verifier)
    app.router.add_post("/api/addEncryptedVehicleData", add_vehicle)
    app.router.add_post("/api/addEncryptedTripData", add_trip)
    app.router.add_post("/api/addCriteriaWeight", add_weights)
    app.router.add_post("/api/calculateInsurancePremium", calculate)
    app.router.add_get("/api/queryEncryptedCalculationResult/{result_id}", query_result)
    app.router.add_post("/api/decryptInsurancePremiumAndUpdate", finalize_handler or finalize)
    return app


async def with_server(app: web.Application, scenario):
    server = TestServer(app, host="127.0.0.1")
    await server.start_server()
    try:
        return await scenario(f"http://127.0.0.1:{server.port}")
    finally:
        await server.close()


@pytest.fixture
def keypair():
    return KeyPair.from_primes(1009, 1013)


@pytest.fixture
def key_store(keypair):
    store = InMemoryKeyStore()
    store.put('alice', keypair)
    return store


def make_config(url: str, **overrides) -> OwnerAgentConfig:
    settings = dict(ledger_url=url, owner_id='alice', request_timeout=2.0,
                    retry_attempts=3, retry_delay=0.0)
    settings.update(overrides)
    return OwnerAgentConfig(**settings)


class TestOwnerAgentFlow:

    def test_full_premium_round(self, key_store):
        processor = PremiumProcessor()
        vehicle = VehicleData('V1', vehicle_type=2, purchase_mileage=15000, year=2020)
        trip = TripSimulator('V1', seed=3).generate_trip('bad', mileage=120, trip_date="2024-03-15")
        audit = SecurityLogger()

        async def scenario(url):
            async with OwnerAgent(make_config(url), key_store, security_logger=audit) as agent:
                await agent.register_public_key()
                await agent.submit_vehicle(vehicle)
                await agent.submit_criteria_weights(WEIGHTS)
                await agent.submit_trip(trip)
                result = await agent.calculate_premium('V1', trip.trip_id, 'CW1')
                committed = await agent.finalize_premium(result['resultID'])
                return committed, agent.get_stats()

        committed, stats = asyncio.run(with_server(build_stub_ledger(processor), scenario))

        assert committed['prime'] == committed['revealed']
        assert processor.query_month_prime('V1', 3, 2024).month_prime == committed['prime']
        assert stats['split_rounds'] == 1
        assert stats['failed_requests'] == 0
        assert audit.get_entries_for_entity('owner:alice')

    def test_key_generated_on_first_use(self):
        from paillier_core import KeyGenConfig, KeyGenerator
        store = InMemoryKeyStore()
        processor = PremiumProcessor()
        generator = KeyGenerator(KeyGenConfig(min_prime=1000, max_prime=1100))

        async def scenario(url):
            async with OwnerAgent(make_config(url), store, key_generator=generator) as agent:
                await agent.register_public_key()

        asyncio.run(with_server(build_stub_ledger(processor), scenario))
        assert 'alice' in store
        assert processor.get_verifier('alice') == store.get('alice').public_key

    def test_key_mismatch_refused(self, key_store):
        # ledger computed the result under a different key for this owner
        processor = PremiumProcessor()
        other = KeyPair.from_primes(1019, 1021)
        other_store = InMemoryKeyStore()
        other_store.put('alice', other)

        vehicle = VehicleData('V1', vehicle_type=2, purchase_mileage=15000, year=2020)
        trip = TripSimulator('V1', seed=3).generate_trip('good', mileage=50, trip_date="2024-03-15")

        async def scenario(url):
            async with OwnerAgent(make_config(url), other_store) as impostor:
                await impostor.register_public_key()
                await impostor.submit_vehicle(vehicle)
                await impostor.submit_criteria_weights(WEIGHTS)
                await impostor.submit_trip(trip)
                result = await impostor.calculate_premium('V1', trip.trip_id, 'CW1')

            async with OwnerAgent(make_config(url), key_store) as agent:
                with pytest.raises(KeyMismatch):
                    await agent.finalize_premium(result['resultID'])

        asyncio.run(with_server(build_stub_ledger(processor), scenario))
        assert processor.get_stats()['committed_primes'] == 0

    def test_finalize_retried_after_lost_response(self, key_store):
        processor = PremiumProcessor()
        vehicle = VehicleData('V1', vehicle_type=2, purchase_mileage=15000, year=2020)
        trip = TripSimulator('V1', seed=3).generate_trip('bad', mileage=120, trip_date="2024-03-15")
        finalize_calls = []

        async def commit_then_fail(request):
            data = await request.json()
            prime = processor.finalize(data['resultID'], decode_int(data['rPrime']))
            finalize_calls.append(prime.prime)
            if len(finalize_calls) == 1:
                return web.json_response({'detail': 'gateway lost the response'}, status=503)
            return web.json_response(prime.to_dict())

        lossy = build_stub_ledger(processor, finalize_handler=commit_then_fail)

        async def scenario(url):
            async with OwnerAgent(make_config(url), key_store) as agent:
                await agent.register_public_key()
                await agent.submit_vehicle(vehicle)
                await agent.submit_criteria_weights(WEIGHTS)
                await agent.submit_trip(trip)
                result = await agent.calculate_premium('V1', trip.trip_id, 'CW1')
                return await agent.finalize_premium(result['resultID'])

        committed = asyncio.run(with_server(lossy, scenario))

        assert len(finalize_calls) == 2
        assert committed['prime'] == committed['revealed'] == finalize_calls[0]
        assert processor.query_month_prime('V1', 3, 2024).month_prime == committed['prime']


class TestOwnerAgentRetries:

    def test_retries_server_errors(self, key_store):
        calls = []

        async def flaky(request):
            calls.append(1)
            if len(calls) < 3:
                return web.json_response({'detail': 'busy'}, status=503)
            return web.json_response({'status': 'registered'}, status=201)

        app = web.Application()
        app.router.add_post("/api/addVerifier", flaky)

        async def scenario(url):
            async with OwnerAgent(make_config(url), key_store) as agent:
                return await agent.register_public_key()

        assert asyncio.run(with_server(app, scenario)) == {'status': 'registered'}
        assert len(calls) == 3

    def test_gives_up_after_retry_budget(self, key_store):
        calls = []

        async def down(request):
            calls.append(1)
            return web.json_response({'detail': 'down'}, status=500)

        app = web.Application()
        app.router.add_post("/api/addVerifier", down)

        async def scenario(url):
            async with OwnerAgent(make_config(url, retry_attempts=2), key_store) as agent:
                with pytest.raises(LedgerRequestError, match="after 2 attempts") as exc_info:
                    await agent.register_public_key()
                assert exc_info.value.status is None
                assert agent.get_stats()['failed_requests'] == 1

        asyncio.run(with_server(app, scenario))
        assert len(calls) == 2

    def test_client_errors_not_retried(self, key_store):
        calls = []

        async def conflict(request):
            calls.append(1)
            return web.json_response({'detail': 'Verifier already exists'}, status=409)

        app = web.Application()
        app.router.add_post("/api/addVerifier", conflict)

        async def scenario(url):
            async with OwnerAgent(make_config(url), key_store) as agent:
                with pytest.raises(LedgerRequestError, match="already exists") as exc_info:
                    await agent.register_public_key()
                assert exc_info.value.status == 409

        asyncio.run(with_server(app, scenario))
        assert len(calls) == 1

    def test_timeout_retried(self, key_store):
        calls = []

        async def slow(request):
            calls.append(1)
            await asyncio.sleep(1.0)
            return web.json_response({'status': 'late'})

        app = web.Application()
        app.router.add_post("/api/addVerifier", slow)

        async def scenario(url):
            config = make_config(url, request_timeout=0.1, retry_attempts=2)
            async with OwnerAgent(config, key_store) as agent:
                with pytest.raises(LedgerRequestError, match="after 2 attempts"):
                    await agent.register_public_key()

        asyncio.run(with_server(app, scenario))
        assert len(calls) == 2

    def test_connection_refused(self, key_store):
        async def scenario():
            # nothing listens on port 9 (discard) in the test environment
            config = make_config("http://127.0.0.1:9", retry_attempts=2)
            async with OwnerAgent(config, key_store) as agent:
                with pytest.raises(LedgerRequestError, match="2 attempts"):
                    await agent.register_public_key()

        asyncio.run(scenario())
