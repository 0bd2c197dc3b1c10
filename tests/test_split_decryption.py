"""
Split Decryption Tests
======================
Owner-side coordinator and the full ledger/owner round.
"""

import pytest
import sys
from pathlib import Path
from random import Random

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from paillier_core import (
    Decryptor,
    Encryptor,
    HomomorphicAggregator,
    InMemoryKeyStore,
    KeyMismatch,
    KeyPair,
    MissingKeyMaterial,
    NoInverseExists,
    SecurityLogger,
    SplitDecryptionCoordinator,
    SplitDecryptionRequest,
    SplitDecryptionResponse,
    VerificationFailed
)


@pytest.fixture
def keypair():
    return KeyPair.from_primes(61, 53)


@pytest.fixture
def store(keypair):
    store = InMemoryKeyStore()
    store.put('alice', keypair)
    return store


@pytest.fixture
def coordinator(store):
    return SplitDecryptionCoordinator(store, 'alice', SecurityLogger())


class TestMessages:

    def test_request_dict(self):
        request = SplitDecryptionRequest('result_T1001', 303, 'abcd', 2741887)
        d = request.to_dict()
        assert d == {
            'resultID': 'result_T1001',
            'r': '303',
            'key_fingerprint': 'abcd',
            'prime_totale': '2741887'
        }
        assert SplitDecryptionRequest.from_dict(d) == request

    def test_request_without_ciphertext(self):
        d = SplitDecryptionRequest('result_T1', 303).to_dict()
        assert 'prime_totale' not in d
        assert SplitDecryptionRequest.from_dict(d).ciphertext is None

    def test_response_dict(self):
        response = SplitDecryptionResponse('result_T1', 17)
        assert response.to_dict() == {'resultID': 'result_T1', 'rPrime': '17'}
        assert SplitDecryptionResponse.from_dict(response.to_dict()) == response


class TestCoordinator:

    def test_respond_fixed_vector(self, coordinator, keypair):
        request = SplitDecryptionRequest('result_T1', 303, keypair.fingerprint())
        response = coordinator.respond(request)
        assert response.result_id == 'result_T1'
        assert response.r_prime == 17
        assert coordinator.rounds_completed == 1

    def test_respond_without_fingerprint(self, coordinator):
        assert coordinator.respond(SplitDecryptionRequest('result_T1', 303)).r_prime == 17

    def test_fingerprint_mismatch(self, coordinator):
        other = KeyPair.from_primes(59, 67).fingerprint()
        with pytest.raises(KeyMismatch, match="result_T1"):
            coordinator.respond(SplitDecryptionRequest('result_T1', 303, other))
        assert coordinator.rounds_completed == 0

    def test_missing_key(self, store):
        coordinator = SplitDecryptionCoordinator(store, 'bob')
        with pytest.raises(MissingKeyMaterial, match="bob"):
            coordinator.respond(SplitDecryptionRequest('result_T1', 303))

    def test_key_provisioned_later(self, keypair):
        store = InMemoryKeyStore()
        coordinator = SplitDecryptionCoordinator(store, 'alice')
        with pytest.raises(MissingKeyMaterial):
            coordinator.respond(SplitDecryptionRequest('result_T1', 303))
        store.put('alice', keypair)
        assert coordinator.respond(SplitDecryptionRequest('result_T1', 303)).r_prime == 17

    def test_corrupted_key_material(self):
        bogus = KeyPair(p=61, q=53, n=3233, n_square=10452289, lambda_=6466, mu=1)
        store = InMemoryKeyStore()
        store.put('alice', bogus)
        coordinator = SplitDecryptionCoordinator(store, 'alice')
        with pytest.raises(NoInverseExists):
            coordinator.respond(SplitDecryptionRequest('result_T1', 303))

    def test_handle_reveals_locally(self, coordinator, keypair):
        request = SplitDecryptionRequest('result_T1', 303, keypair.fingerprint(), 2741887)
        plaintext, response = coordinator.handle(request)
        assert plaintext == 65
        assert response.r_prime == 17

    def test_handle_without_ciphertext(self, coordinator):
        plaintext, response = coordinator.handle(SplitDecryptionRequest('result_T1', 303))
        assert plaintext is None
        assert response.r_prime == 17

    def test_audit_entries(self, coordinator, keypair):
        coordinator.handle(SplitDecryptionRequest('result_T1', 303, keypair.fingerprint(), 2741887))
        entries = coordinator.logger.get_entries_for_entity('owner:alice')
        assert [e.operation for e in entries] == ['derive_share', 'decrypt']
        assert coordinator.logger.verify_no_violations()


class TestFullRound:

    @pytest.fixture
    def big_keypair(self):
        return KeyPair.from_primes(1009, 1013)

    def test_round_opens_aggregate(self, big_keypair):
        store = InMemoryKeyStore()
        store.put('alice', big_keypair)
        coordinator = SplitDecryptionCoordinator(store, 'alice')

        encryptor = Encryptor(big_keypair.public_key, rng=Random(3))
        aggregator = HomomorphicAggregator(big_keypair.public_key)

        values = [120, 37, 2020, 15000]
        total = aggregator.sum(encryptor.encrypt(v) for v in values)
        request = SplitDecryptionRequest(
            'result_T1', aggregator.compute_blinding_value(total),
            big_keypair.fingerprint()
        )

        response = coordinator.respond(request)
        assert aggregator.verify_and_decrypt(total, response.r_prime) == sum(values)
        assert Decryptor(big_keypair).decrypt(total) == sum(values)

    def test_share_for_other_ciphertext_fails(self, big_keypair):
        store = InMemoryKeyStore()
        store.put('alice', big_keypair)
        coordinator = SplitDecryptionCoordinator(store, 'alice')

        encryptor = Encryptor(big_keypair.public_key, rng=Random(4))
        aggregator = HomomorphicAggregator(big_keypair.public_key)
        c1 = encryptor.encrypt_with_random(10, 2)
        c2 = encryptor.encrypt_with_random(10, 3)

        response = coordinator.respond(
            SplitDecryptionRequest('result_T1', aggregator.compute_blinding_value(c1))
        )
        assert response.r_prime == 2
        with pytest.raises(VerificationFailed):
            aggregator.verify_and_decrypt(c2, response.r_prime)
