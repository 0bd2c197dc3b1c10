"""
Key Generation
==============
Paillier key material for a data owner.

Key Distribution Model:
1. The owner generates a KeyPair from two random primes
2. Only the public projection {n} is registered with the ledger
3. p, q (and the lambda, mu derived from them) never leave the owner

The primes are drawn from a small fixed band (4-digit by default) and
tested by trial division. That is a toy-strength parameterization of an
otherwise sound scheme; it does not scale to real key sizes.
"""

import hashlib
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from random import Random
from typing import Optional, Union

from .arithmetic import gcd, is_prime, lcm, mod_inverse
from .errors import KeyGenerationRetry, MissingKeyMaterial, NoInverseExists
from .serialization import decode_int, encode_int


RandomSource = Union[secrets.SystemRandom, Random]


@dataclass(frozen=True)
class PublicKey:
    """Public projection of a KeyPair: the modulus n"""
    n: int

    def __post_init__(self):
        if self.n < 6:
            raise ValueError(f"Public modulus too small: {self.n}")

    @property
    def n_square(self) -> int:
        return self.n * self.n

    def fingerprint(self) -> str:
        """Short identifier binding results to this modulus"""
        return hashlib.sha256(encode_int(self.n).encode('utf-8')).hexdigest()[:16]

    def to_dict(self) -> dict:
        return {
            'n': encode_int(self.n),
            'nsquare': encode_int(self.n_square),
            'fingerprint': self.fingerprint()
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'PublicKey':
        key = cls(n=decode_int(data['n']))
        if 'nsquare' in data and decode_int(data['nsquare']) != key.n_square:
            raise ValueError("nsquare does not match n")
        return key


@dataclass(frozen=True)
class KeyPair:
    """
    Full Paillier key pair.

    p, q, lambda_ and mu are private. Everything is re-derivable from
    (p, q), which is all the key store persists.
    """
    p: int
    q: int
    n: int
    n_square: int
    lambda_: int
    mu: int
    created_at: str = field(default_factory=lambda: datetime.now().isoformat(), compare=False)

    @classmethod
    def from_primes(cls, p: int, q: int, created_at: Optional[str] = None) -> 'KeyPair':
        """
        Derive a key pair from two primes.

        Raises:
            KeyGenerationRetry: p == q, either is not prime, or
                gcd(n, lambda) != 1
        """
        if p == q:
            raise KeyGenerationRetry("p and q must differ")
        if not (is_prime(p) and is_prime(q)):
            raise KeyGenerationRetry(f"Non-prime factor in ({p}, {q})")

        n = p * q
        lambda_ = lcm(p - 1, q - 1)
        if gcd(n, lambda_) != 1:
            raise KeyGenerationRetry(f"gcd(n, lambda) != 1 for ({p}, {q})")

        try:
            mu = mod_inverse(lambda_, n)
        except NoInverseExists as e:
            raise KeyGenerationRetry(str(e)) from e

        kwargs = {'created_at': created_at} if created_at else {}
        return cls(p=p, q=q, n=n, n_square=n * n, lambda_=lambda_, mu=mu, **kwargs)

    @property
    def public_key(self) -> PublicKey:
        return PublicKey(self.n)

    def fingerprint(self) -> str:
        return self.public_key.fingerprint()

    def to_dict(self, include_secrets: bool = False) -> dict:
        """Convert to dictionary, optionally excluding secrets"""
        d = {
            'n': encode_int(self.n),
            'nsquare': encode_int(self.n_square),
            'fingerprint': self.fingerprint(),
            'created_at': self.created_at
        }
        if include_secrets:
            d['p'] = encode_int(self.p)
            d['q'] = encode_int(self.q)
            d['lambda'] = encode_int(self.lambda_)
            d['mu'] = encode_int(self.mu)
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'KeyPair':
        """
        Rebuild from a secrets-included dict.

        Raises:
            MissingKeyMaterial: p/q absent, or they no longer form a
                valid pair (corrupted store)
        """
        if 'p' not in data or 'q' not in data:
            raise MissingKeyMaterial("Stored key has no private primes")
        try:
            keypair = cls.from_primes(
                decode_int(data['p']),
                decode_int(data['q']),
                created_at=data.get('created_at')
            )
        except KeyGenerationRetry as e:
            raise MissingKeyMaterial(f"Stored primes are not a valid key pair: {e}") from e

        if 'n' in data and decode_int(data['n']) != keypair.n:
            raise MissingKeyMaterial("Stored modulus does not match stored primes")
        return keypair


@dataclass
class KeyGenConfig:
    """Prime band and retry budget for key generation"""
    min_prime: int = 1000
    max_prime: int = 10000     # exclusive
    max_attempts: Optional[int] = None  # None: retry until a pair is found


def generate_prime(min_value: int = 1000,
                   max_value: int = 10000,
                   rng: Optional[RandomSource] = None) -> int:
    """
    Sample a random prime in [min_value, max_value).

    Args:
        min_value: Inclusive lower bound
        max_value: Exclusive upper bound
        rng: Randomness source, defaults to the OS CSPRNG
    """
    if max_value <= min_value:
        raise ValueError(f"Empty prime band [{min_value}, {max_value})")
    rng = rng or secrets.SystemRandom()

    while True:
        candidate = rng.randrange(min_value, max_value)
        if is_prime(candidate):
            return candidate


class KeyGenerator:
    """
    Produces KeyPairs satisfying p != q and gcd(n, lambda) == 1.

    Rejected pairs are resampled; with the default config the loop is
    unbounded but terminates quickly in practice.
    """

    def __init__(self,
                 config: Optional[KeyGenConfig] = None,
                 rng: Optional[RandomSource] = None):
        self.config = config or KeyGenConfig()
        primes_in_band = sum(
            1 for c in range(max(self.config.min_prime, 2), self.config.max_prime)
            if is_prime(c)
        )
        if primes_in_band < 2:
            raise ValueError(
                f"Prime band [{self.config.min_prime}, {self.config.max_prime}) "
                f"holds fewer than two primes"
            )
        self.rng = rng or secrets.SystemRandom()
        self.attempts = 0
        self.rejections = 0

    def _sample_prime(self) -> int:
        return generate_prime(self.config.min_prime, self.config.max_prime, self.rng)

    def generate(self) -> KeyPair:
        """
        Generate a fresh key pair.

        Raises:
            KeyGenerationRetry: only when config.max_attempts is set and
                exhausted
        """
        last_error: Optional[KeyGenerationRetry] = None
        attempt = 0
        while self.config.max_attempts is None or attempt < self.config.max_attempts:
            attempt += 1
            self.attempts += 1
            p = self._sample_prime()
            q = self._sample_prime()
            try:
                return KeyPair.from_primes(p, q)
            except KeyGenerationRetry as e:
                self.rejections += 1
                last_error = e

        raise KeyGenerationRetry(
            f"No valid prime pair after {self.config.max_attempts} attempts: {last_error}"
        )

    def get_stats(self) -> dict:
        return {
            'attempts': self.attempts,
            'rejections': self.rejections,
            'prime_band': [self.config.min_prime, self.config.max_prime]
        }
