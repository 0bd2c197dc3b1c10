"""
Integer Arithmetic
==================
Exact integer helpers for the Paillier core. Python integers are already
arbitrary precision, so this module only supplies the number theory:
gcd/lcm, the extended Euclidean algorithm, modular inverse, binary
modular exponentiation and trial-division primality.
"""

from math import isqrt
from typing import Tuple

from .errors import NoInverseExists


def gcd(a: int, b: int) -> int:
    """Greatest common divisor (Euclid)"""
    a, b = abs(a), abs(b)
    while b:
        a, b = b, a % b
    return a


def lcm(a: int, b: int) -> int:
    """Least common multiple, lcm(0, x) == 0"""
    if a == 0 or b == 0:
        return 0
    return abs(a * b) // gcd(a, b)


def extended_gcd(a: int, b: int) -> Tuple[int, int, int]:
    """
    Iterative extended Euclidean algorithm.

    Returns:
        (g, x, y) with a*x + b*y == g == gcd(a, b)
    """
    old_r, r = a, b
    old_x, x = 1, 0
    old_y, y = 0, 1
    while r != 0:
        quotient = old_r // r
        old_r, r = r, old_r - quotient * r
        old_x, x = x, old_x - quotient * x
        old_y, y = y, old_y - quotient * y
    if old_r < 0:
        old_r, old_x, old_y = -old_r, -old_x, -old_y
    return old_r, old_x, old_y


def mod_inverse(a: int, m: int) -> int:
    """
    Inverse of a modulo m.

    Raises:
        NoInverseExists: if gcd(a, m) != 1
    """
    if m <= 0:
        raise ValueError(f"Modulus must be positive, got {m}")
    g, x, _ = extended_gcd(a % m, m)
    if g != 1:
        raise NoInverseExists(a, m)
    return x % m


def mod_pow(base: int, exponent: int, modulus: int) -> int:
    """
    Square-and-multiply modular exponentiation.

    The base is reduced first; the exponent is consumed one low bit at a
    time until it reaches zero. Exponents need not be pre-reduced.
    """
    if modulus <= 0:
        raise ValueError(f"Modulus must be positive, got {modulus}")
    if exponent < 0:
        raise ValueError("Negative exponents are not supported, use mod_inverse")
    if modulus == 1:
        return 0

    result = 1
    base = base % modulus
    while exponent > 0:
        if exponent & 1:
            result = (result * base) % modulus
        exponent >>= 1
        base = (base * base) % modulus
    return result


def is_prime(candidate: int) -> bool:
    """
    Trial division up to floor(sqrt(candidate)).

    Only suitable for the small (4-5 digit) primes this scheme is
    parameterized with; it does not scale to real key sizes.
    """
    if candidate < 2:
        return False
    if candidate < 4:
        return True
    if candidate % 2 == 0:
        return False
    for divisor in range(3, isqrt(candidate) + 1, 2):
        if candidate % divisor == 0:
            return False
    return True
