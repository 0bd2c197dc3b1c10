"""
Paillier Encryption Core
========================
Randomized encryption under an owner's public key:

    c = (1 + m*n) * r^n mod n^2,   r fresh and coprime to n

Used owner-side, once per telemetry field, before anything is sent to
the ledger. Ciphertexts under the same public key can be combined
homomorphically (see homomorphic.py); ciphertexts under different keys
never can.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Mapping, Optional

from .arithmetic import gcd, mod_pow
from .errors import InvalidCiphertext, OutOfRangePlaintext
from .keys import PublicKey, RandomSource
from .security_logger import DataType, OperationType, SecurityLogger
from .serialization import checksum, decode_fields, encode_fields


@dataclass
class EncryptedRecord:
    """A set of encrypted telemetry fields bound to one public key"""
    record_type: str            # 'trip', 'vehicle', ...
    fields: Dict[str, int]      # field name -> ciphertext
    key_fingerprint: str
    timestamp: str
    checksum: str

    def to_dict(self) -> dict:
        return {
            'record_type': self.record_type,
            'fields': encode_fields(self.fields),
            'key_fingerprint': self.key_fingerprint,
            'timestamp': self.timestamp,
            'checksum': self.checksum
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'EncryptedRecord':
        return cls(
            record_type=data['record_type'],
            fields=decode_fields(data['fields']),
            key_fingerprint=data['key_fingerprint'],
            timestamp=data['timestamp'],
            checksum=data['checksum']
        )

    def compute_checksum(self) -> str:
        return checksum({
            'record_type': self.record_type,
            'fields': encode_fields(self.fields),
            'key_fingerprint': self.key_fingerprint
        })

    def verify(self) -> bool:
        """Check the record was not altered in transit"""
        return self.compute_checksum() == self.checksum

    def get_display_ciphertext(self, field_name: str, max_length: int = 24) -> str:
        """Truncated ciphertext for display to untrusted parties"""
        text = str(self.fields[field_name])
        if len(text) > max_length:
            return f"{text[:max_length]}..."
        return text


class Encryptor:
    """
    Encrypts plaintext integers under one public key.

    Every call draws an independent blinding factor; reusing r across two
    encryptions would leak the relationship between their plaintexts.
    """

    def __init__(self,
                 public_key: PublicKey,
                 rng: Optional[RandomSource] = None,
                 security_logger: Optional[SecurityLogger] = None,
                 entity: str = "owner"):
        self.public_key = public_key
        self.rng = rng or secrets.SystemRandom()
        self.logger = security_logger
        self.entity = entity
        self.encryptions_count = 0

    @property
    def n(self) -> int:
        return self.public_key.n

    @property
    def n_square(self) -> int:
        return self.public_key.n_square

    def _check_plaintext(self, plaintext: int):
        if isinstance(plaintext, bool) or not isinstance(plaintext, int):
            raise OutOfRangePlaintext(f"Plaintext must be an int, got {type(plaintext).__name__}")
        if plaintext < 0 or plaintext >= self.n:
            raise OutOfRangePlaintext(
                f"Plaintext {plaintext} outside [0, {self.n}) for this public key"
            )

    def sample_blinding_factor(self) -> int:
        """Uniform r in [1, n-1], redrawn until gcd(r, n) == 1"""
        while True:
            r = self.rng.randrange(1, self.n)
            if gcd(r, self.n) == 1:
                return r

    def encrypt_with_random(self, plaintext: int, r: int) -> int:
        """
        Encrypt with a caller-supplied blinding factor.

        Raises:
            OutOfRangePlaintext: plaintext not in [0, n)
            ValueError: r not in [1, n) or not coprime to n
        """
        self._check_plaintext(plaintext)
        if r < 1 or r >= self.n:
            raise ValueError(f"r must be in [1, {self.n - 1}], got {r}")
        if gcd(r, self.n) != 1:
            raise ValueError("r must be coprime to n")

        n_square = self.n_square
        r_exp_n = mod_pow(r, self.n, n_square)
        return ((1 + plaintext * self.n) * r_exp_n) % n_square

    def encrypt(self, plaintext: int) -> int:
        """Encrypt one plaintext integer with a fresh blinding factor"""
        ciphertext = self.encrypt_with_random(plaintext, self.sample_blinding_factor())
        self.encryptions_count += 1
        return ciphertext

    def encrypt_record(self, record_type: str, values: Mapping[str, int]) -> EncryptedRecord:
        """
        Encrypt every field of a telemetry record independently.

        All fields are range-checked before any is encrypted.
        """
        for name, value in values.items():
            try:
                self._check_plaintext(value)
            except OutOfRangePlaintext as e:
                raise OutOfRangePlaintext(f"Field '{name}': {e}") from e

        fields = {name: self.encrypt(value) for name, value in values.items()}
        record = EncryptedRecord(
            record_type=record_type,
            fields=fields,
            key_fingerprint=self.public_key.fingerprint(),
            timestamp=datetime.now().isoformat(),
            checksum=""
        )
        record.checksum = record.compute_checksum()

        if self.logger:
            self.logger.log(
                entity=self.entity,
                operation=OperationType.ENCRYPT,
                data_types=[DataType.PLAINTEXT, DataType.CIPHERTEXT],
                details={'record_type': record_type, 'field_count': len(fields)}
            )
        return record

    def check_ciphertext(self, ciphertext: int):
        """Range check for values claimed to be ciphertexts under this key"""
        if isinstance(ciphertext, bool) or not isinstance(ciphertext, int):
            raise InvalidCiphertext(f"Ciphertext must be an int, got {type(ciphertext).__name__}")
        if ciphertext <= 0 or ciphertext >= self.n_square:
            raise InvalidCiphertext("Ciphertext outside (0, n^2) for this public key")
