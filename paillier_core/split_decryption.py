"""
Split Decryption
================
Two-message protocol letting the ledger commit a decrypted result while
the private key stays with the owner.

1. Ledger -> owner:  (result_id, R, key fingerprint), R = C mod n
2. Owner  -> ledger: (result_id, r'),  r' = R^(n^-1 mod lambda) mod n
3. Ledger checks r'^n == C (mod n), unblinds C and commits the value

The coordinator below is the owner's half (step 2). The fingerprint
binds a request to the modulus the ledger used; a mismatch is refused
before r' is computed, since r' under the wrong key is meaningless.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from .decryptor import Decryptor
from .errors import KeyMismatch
from .key_manager import KeyStore
from .security_logger import DataType, OperationType, SecurityLogger
from .serialization import decode_int, encode_int


@dataclass(frozen=True)
class SplitDecryptionRequest:
    """Ledger's request for a derived share"""
    result_id: str
    blinding_value: int
    key_fingerprint: Optional[str] = None
    ciphertext: Optional[int] = None     # aggregated C, for local display

    def to_dict(self) -> dict:
        d = {
            'resultID': self.result_id,
            'r': encode_int(self.blinding_value),
            'key_fingerprint': self.key_fingerprint
        }
        if self.ciphertext is not None:
            d['prime_totale'] = encode_int(self.ciphertext)
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'SplitDecryptionRequest':
        ciphertext = data.get('prime_totale')
        return cls(
            result_id=data['resultID'],
            blinding_value=decode_int(data['r']),
            key_fingerprint=data.get('key_fingerprint'),
            ciphertext=decode_int(ciphertext) if ciphertext is not None else None
        )


@dataclass(frozen=True)
class SplitDecryptionResponse:
    """Owner's answer closing the round"""
    result_id: str
    r_prime: int

    def to_dict(self) -> dict:
        return {'resultID': self.result_id, 'rPrime': encode_int(self.r_prime)}

    @classmethod
    def from_dict(cls, data: dict) -> 'SplitDecryptionResponse':
        return cls(result_id=data['resultID'], r_prime=decode_int(data['rPrime']))


class SplitDecryptionCoordinator:
    """
    Owner-side handler for split-decryption rounds.

    The key pair is looked up in the injected store on every call, so a
    key provisioned after construction is picked up.
    """

    def __init__(self,
                 key_store: KeyStore,
                 owner_id: str,
                 security_logger: Optional[SecurityLogger] = None):
        self.key_store = key_store
        self.owner_id = owner_id
        self.logger = security_logger
        self.rounds_completed = 0

    @property
    def entity(self) -> str:
        return f"owner:{self.owner_id}"

    def _decryptor(self) -> Decryptor:
        # raises MissingKeyMaterial
        return Decryptor(self.key_store.require(self.owner_id))

    def _log(self, operation: OperationType, data_types, details: dict):
        if self.logger:
            self.logger.log(self.entity, operation, data_types, details)

    def respond(self, request: SplitDecryptionRequest) -> SplitDecryptionResponse:
        """
        Compute r' for a ledger request.

        Raises:
            MissingKeyMaterial: no local key for this owner
            KeyMismatch: request bound to a different public key
            NoInverseExists: local key material is corrupted
        """
        decryptor = self._decryptor()
        local_fingerprint = decryptor.public_key.fingerprint()
        if request.key_fingerprint is not None and request.key_fingerprint != local_fingerprint:
            raise KeyMismatch(
                f"Result '{request.result_id}' was computed under key "
                f"{request.key_fingerprint}, local key is {local_fingerprint}"
            )

        r_prime = decryptor.compute_r_prime(request.blinding_value)
        self.rounds_completed += 1
        self._log(
            OperationType.DERIVE_SHARE,
            [DataType.BLINDING_VALUE, DataType.DERIVED_SHARE],
            {'result_id': request.result_id}
        )
        return SplitDecryptionResponse(result_id=request.result_id, r_prime=r_prime)

    def reveal(self, ciphertext: int, result_id: Optional[str] = None) -> int:
        """Decrypt locally for display; nothing is sent anywhere"""
        plaintext = self._decryptor().decrypt(ciphertext)
        self._log(
            OperationType.DECRYPT,
            [DataType.CIPHERTEXT, DataType.PLAINTEXT],
            {'result_id': result_id}
        )
        return plaintext

    def handle(self, request: SplitDecryptionRequest) -> Tuple[Optional[int], SplitDecryptionResponse]:
        """
        Full owner step: reveal the value locally (when the ciphertext
        came with the request) and derive the share for the ledger.
        """
        response = self.respond(request)
        plaintext = None
        if request.ciphertext is not None:
            plaintext = self.reveal(request.ciphertext, request.result_id)
        return plaintext, response
