"""
Paillier Errors
===============
Failure conditions raised by the cryptographic core.

All of them are local and synchronous. Only KeyGenerationRetry is ever
retried, and only inside KeyGenerator.
"""


class PaillierError(ValueError):
    """Base class for every failure raised by paillier_core"""


class NoInverseExists(PaillierError):
    """Modular inverse undefined because gcd(a, m) != 1"""

    def __init__(self, a: int, m: int):
        self.a = a
        self.m = m
        super().__init__(f"Modular inverse does not exist: gcd({a}, {m}) != 1")


class KeyGenerationRetry(PaillierError):
    """Sampled prime pair rejected (p == q or gcd(n, lambda) != 1)"""


class InvalidCiphertext(PaillierError):
    """Ciphertext was not produced under this key, or was corrupted"""


class MissingKeyMaterial(PaillierError):
    """No usable private key for the requested principal"""


class OutOfRangePlaintext(PaillierError):
    """Plaintext outside [0, n)"""


class KeyMismatch(PaillierError):
    """Ledger request is bound to a different public key than ours"""


class VerificationFailed(PaillierError):
    """Derived share r' does not open the ciphertext it was sent for"""


class ProtocolViolation(PaillierError):
    """Ciphertexts combined in a way that breaks the homomorphism"""
