"""
Homomorphic Aggregation
=======================
Ledger-side operations on ciphertexts under one registered public key.
The ledger never sees plaintext values while aggregating:

    Dec(c1 * c2 mod n^2) == m1 + m2 mod n
    Dec(c^k mod n^2)     == k * m    mod n

Ciphertexts are only ever combined by modular multiplication (and
inversion) and by exponentiation with a known public exponent. Anything
else breaks the homomorphism and is rejected as a protocol violation.

This module also holds the ledger half of split decryption: the blinding
value R handed to the owner, and the verify-and-open step run once the
owner returns r'.
"""

from typing import Iterable

from .arithmetic import gcd, mod_inverse, mod_pow
from .errors import NoInverseExists, ProtocolViolation, VerificationFailed
from .keys import PublicKey


class HomomorphicAggregator:
    """
    Combines ciphertexts encrypted under `public_key`.

    Holds only public material; safe to share between threads.
    """

    def __init__(self, public_key: PublicKey):
        self.public_key = public_key
        self.n = public_key.n
        self.n_square = public_key.n_square
        self.operations_count = 0

    def _check(self, ciphertext: int) -> int:
        if isinstance(ciphertext, bool) or not isinstance(ciphertext, int):
            raise ProtocolViolation(f"Ciphertext must be an int, got {type(ciphertext).__name__}")
        if ciphertext <= 0 or ciphertext >= self.n_square:
            raise ProtocolViolation("Ciphertext outside (0, n^2) for this public key")
        if gcd(ciphertext, self.n) != 1:
            raise ProtocolViolation("Ciphertext shares a factor with n")
        return ciphertext

    # ==================== HOMOMORPHIC OPERATIONS ====================

    def add(self, c1: int, c2: int) -> int:
        """E(m1) * E(m2) = E(m1 + m2)"""
        self.operations_count += 1
        return (self._check(c1) * self._check(c2)) % self.n_square

    def sum(self, ciphertexts: Iterable[int]) -> int:
        """Product of all ciphertexts; the empty sum is the encryption of 0 with r = 1"""
        result = 1
        for ciphertext in ciphertexts:
            result = (result * self._check(ciphertext)) % self.n_square
        self.operations_count += 1
        return result

    def subtract(self, c1: int, c2: int) -> int:
        """
        E(m1) * E(m2)^-1 = E(m1 - m2 mod n)

        Raises:
            NoInverseExists: c2 has no inverse mod n^2
        """
        self._check(c1)
        self._check(c2)
        c2_inverse = mod_inverse(c2, self.n_square)
        self.operations_count += 1
        return (c1 * c2_inverse) % self.n_square

    def scalar_multiply(self, ciphertext: int, scalar: int) -> int:
        """E(m)^k = E(k * m), k a known non-negative integer"""
        if isinstance(scalar, bool) or not isinstance(scalar, int):
            raise ProtocolViolation(f"Scalar must be an int, got {type(scalar).__name__}")
        if scalar < 0:
            raise ProtocolViolation("Negative scalars are not supported, use subtract")
        self.operations_count += 1
        return mod_pow(self._check(ciphertext), scalar, self.n_square)

    def add_plain(self, ciphertext: int, value: int) -> int:
        """E(m) * (1 + k*n) = E(m + k)"""
        if isinstance(value, bool) or not isinstance(value, int):
            raise ProtocolViolation(f"Plain addend must be an int, got {type(value).__name__}")
        if value < 0 or value >= self.n:
            raise ProtocolViolation(f"Plain addend {value} outside [0, n)")
        self.operations_count += 1
        return (self._check(ciphertext) * (1 + value * self.n)) % self.n_square

    # ==================== SPLIT DECRYPTION (LEDGER SIDE) ====================

    def compute_blinding_value(self, ciphertext: int) -> int:
        """R = C mod n, which equals r^n mod n for C = (1 + mn) r^n"""
        return self._check(ciphertext) % self.n

    def verify_and_decrypt(self, ciphertext: int, r_prime: int) -> int:
        """
        Open a ciphertext with the owner's derived share.

        Raises:
            VerificationFailed: r'^n mod n != C mod n, i.e. r' was not
                derived from this ciphertext under this key
        """
        self._check(ciphertext)
        if isinstance(r_prime, bool) or not isinstance(r_prime, int) or not 0 < r_prime < self.n:
            raise VerificationFailed(f"Derived share outside (0, n): {r_prime}")

        if mod_pow(r_prime, self.n, self.n) != ciphertext % self.n:
            raise VerificationFailed("Verification failed: r' is invalid for this ciphertext")

        s = mod_pow(r_prime, self.n, self.n_square)
        try:
            s_inverse = mod_inverse(s, self.n_square)
        except NoInverseExists as e:
            raise VerificationFailed(f"Derived share not invertible: {e}") from e

        unblinded = (ciphertext * s_inverse) % self.n_square
        if (unblinded - 1) % self.n != 0:
            raise VerificationFailed("Unblinded ciphertext is not of the form 1 + m*n")
        return (unblinded - 1) // self.n
