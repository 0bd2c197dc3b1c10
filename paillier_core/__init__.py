"""
Paillier Core Module - Split-Decryption Cryptosystem
====================================================
Additively homomorphic encryption of driving telemetry, with a
two-party decryption handshake between data owner and ledger.
"""

from .arithmetic import gcd, lcm, extended_gcd, mod_inverse, mod_pow, is_prime
from .errors import (
    PaillierError,
    NoInverseExists,
    KeyGenerationRetry,
    InvalidCiphertext,
    MissingKeyMaterial,
    OutOfRangePlaintext,
    KeyMismatch,
    VerificationFailed,
    ProtocolViolation
)
from .keys import PublicKey, KeyPair, KeyGenConfig, KeyGenerator, generate_prime
from .encryption_core import Encryptor, EncryptedRecord
from .decryptor import Decryptor
from .homomorphic import HomomorphicAggregator
from .key_manager import KeyStore, InMemoryKeyStore, EncryptedFileKeyStore
from .split_decryption import (
    SplitDecryptionRequest,
    SplitDecryptionResponse,
    SplitDecryptionCoordinator
)
from .security_logger import SecurityLogger, DataType, OperationType

__all__ = [
    # Arithmetic
    'gcd', 'lcm', 'extended_gcd', 'mod_inverse', 'mod_pow', 'is_prime',

    # Errors
    'PaillierError', 'NoInverseExists', 'KeyGenerationRetry', 'InvalidCiphertext',
    'MissingKeyMaterial', 'OutOfRangePlaintext', 'KeyMismatch',
    'VerificationFailed', 'ProtocolViolation',

    # Keys
    'PublicKey', 'KeyPair', 'KeyGenConfig', 'KeyGenerator', 'generate_prime',
    'KeyStore', 'InMemoryKeyStore', 'EncryptedFileKeyStore',

    # Encryption / decryption
    'Encryptor', 'EncryptedRecord', 'Decryptor', 'HomomorphicAggregator',

    # Split decryption
    'SplitDecryptionRequest', 'SplitDecryptionResponse', 'SplitDecryptionCoordinator',

    # Audit
    'SecurityLogger', 'DataType', 'OperationType'
]

__version__ = '1.0.0'
