"""
Paillier Decryptor
==================
Owner-side decryption and the derived-share computation used by the
split-decryption protocol.

    u  = c^lambda mod n^2
    m  = L(u) * mu mod n,           L(u) = (u - 1) / n
    r' = R^(n^-1 mod lambda) mod n

Only a holder of lambda can compute either. Both are pure functions of
their inputs and safe to call concurrently.
"""

from typing import Dict, Optional

from .arithmetic import mod_inverse, mod_pow
from .encryption_core import EncryptedRecord
from .errors import InvalidCiphertext, KeyMismatch
from .keys import KeyPair, PublicKey


class Decryptor:
    """
    Decrypts ciphertexts produced under one KeyPair.

    Does not copy or expose the private key; callers that need the
    public half use `public_key`.
    """

    def __init__(self, keypair: KeyPair):
        self._keypair = keypair
        self._n_inverse_mod_lambda: Optional[int] = None

    @property
    def public_key(self) -> PublicKey:
        return self._keypair.public_key

    @property
    def n(self) -> int:
        return self._keypair.n

    def _check_ciphertext(self, ciphertext: int):
        if isinstance(ciphertext, bool) or not isinstance(ciphertext, int):
            raise InvalidCiphertext(f"Ciphertext must be an int, got {type(ciphertext).__name__}")
        if ciphertext <= 0 or ciphertext >= self._keypair.n_square:
            raise InvalidCiphertext(f"Ciphertext {ciphertext} outside (0, n^2)")

    def decrypt(self, ciphertext: int) -> int:
        """
        Standard Paillier decryption.

        Raises:
            InvalidCiphertext: out of range, or c^lambda - 1 is not a
                multiple of n (wrong key or corrupted transport)
        """
        self._check_ciphertext(ciphertext)
        n = self._keypair.n

        u = mod_pow(ciphertext, self._keypair.lambda_, self._keypair.n_square)
        if (u - 1) % n != 0:
            raise InvalidCiphertext(
                "L(u) is not integral: ciphertext was not produced under this key"
            )
        l_u = (u - 1) // n
        return (l_u * self._keypair.mu) % n

    def decrypt_record(self, record: EncryptedRecord) -> Dict[str, int]:
        """Decrypt every field of an encrypted record bound to this key"""
        if record.key_fingerprint != self._keypair.fingerprint():
            raise KeyMismatch(
                f"Record encrypted under key {record.key_fingerprint}, "
                f"local key is {self._keypair.fingerprint()}"
            )
        if not record.verify():
            raise InvalidCiphertext("Record checksum mismatch")
        return {name: self.decrypt(c) for name, c in record.fields.items()}

    @property
    def n_inverse_mod_lambda(self) -> int:
        """
        n^-1 mod lambda.

        Raises:
            NoInverseExists: gcd(n, lambda) != 1, i.e. corrupted or
                mismatched key material. Never retried.
        """
        if self._n_inverse_mod_lambda is None:
            self._n_inverse_mod_lambda = mod_inverse(self._keypair.n, self._keypair.lambda_)
        return self._n_inverse_mod_lambda

    def compute_r_prime(self, blinding_value: int) -> int:
        """
        Derived share for the split-decryption protocol.

        Args:
            blinding_value: R supplied by the ledger

        Returns:
            r' = R^(n^-1 mod lambda) mod n
        """
        if isinstance(blinding_value, bool) or not isinstance(blinding_value, int):
            raise TypeError(f"Blinding value must be an int, got {type(blinding_value).__name__}")
        if blinding_value < 0:
            raise ValueError(f"Blinding value must be non-negative, got {blinding_value}")
        return mod_pow(blinding_value, self.n_inverse_mod_lambda, self._keypair.n)
