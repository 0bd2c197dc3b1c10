"""
Key Manager - Owner-Side Key Storage
====================================
Keyed store for private Paillier key pairs, scoped per principal
(owner id). Injected into the components that need a key instead of
being reached as ambient global state.

Only p and q are persisted; n, lambda and mu are re-derived on load.
Loss of this state forecloses decryption of every ciphertext produced
under the lost key, there is no recovery path.
"""

import json
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken

from .errors import MissingKeyMaterial
from .keys import KeyGenerator, KeyPair


class KeyStore(ABC):
    """get/put/delete of private key pairs, one per principal"""

    @abstractmethod
    def get(self, principal: str) -> Optional[KeyPair]:
        pass

    @abstractmethod
    def put(self, principal: str, keypair: KeyPair):
        pass

    @abstractmethod
    def delete(self, principal: str) -> bool:
        pass

    @abstractmethod
    def list_principals(self) -> List[str]:
        pass

    def __contains__(self, principal: str) -> bool:
        return self.get(principal) is not None

    def require(self, principal: str) -> KeyPair:
        """
        Get a key pair or fail.

        Raises:
            MissingKeyMaterial: nothing stored for this principal
        """
        keypair = self.get(principal)
        if keypair is None:
            raise MissingKeyMaterial(
                f"No private key stored for '{principal}'; provision it out of band"
            )
        return keypair

    def get_or_create(self, principal: str, generator: Optional[KeyGenerator] = None) -> KeyPair:
        """Return the stored pair, generating and storing one on first use"""
        keypair = self.get(principal)
        if keypair is None:
            keypair = (generator or KeyGenerator()).generate()
            self.put(principal, keypair)
        return keypair


class InMemoryKeyStore(KeyStore):
    """Process-local store (tests, demos)"""

    def __init__(self):
        self._keys: Dict[str, KeyPair] = {}
        self._lock = threading.Lock()

    def get(self, principal: str) -> Optional[KeyPair]:
        with self._lock:
            return self._keys.get(principal)

    def put(self, principal: str, keypair: KeyPair):
        with self._lock:
            self._keys[principal] = keypair

    def delete(self, principal: str) -> bool:
        with self._lock:
            return self._keys.pop(principal, None) is not None

    def list_principals(self) -> List[str]:
        with self._lock:
            return sorted(self._keys)


class EncryptedFileKeyStore(KeyStore):
    """
    Durable store encrypted at rest with a Fernet master key.

    Layout under storage_path:
    - .master_key   Fernet key, mode 0600
    - keys.enc      Fernet token over JSON {principal: {p, q, n, created_at}}
    """

    def __init__(self, storage_path: str = "./.keys"):
        """
        Initialize key store

        Args:
            storage_path: Directory holding the master key and key file
        """
        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)

        self.master_key = self._load_or_create_master_key()
        self.fernet = Fernet(self.master_key)

        self._lock = threading.Lock()
        self._entries: Dict[str, dict] = self._load_data()

    @property
    def keys_file(self) -> Path:
        return self.storage_path / "keys.enc"

    def _load_or_create_master_key(self) -> bytes:
        key_file = self.storage_path / ".master_key"

        if key_file.exists():
            with open(key_file, 'rb') as f:
                return f.read()

        key = Fernet.generate_key()
        with open(key_file, 'wb') as f:
            f.write(key)
        os.chmod(key_file, 0o600)
        return key

    def _load_data(self) -> Dict[str, dict]:
        if not self.keys_file.exists():
            return {}
        try:
            with open(self.keys_file, 'rb') as f:
                decrypted = self.fernet.decrypt(f.read())
        except InvalidToken as e:
            raise MissingKeyMaterial(
                f"Key file {self.keys_file} cannot be decrypted with this master key"
            ) from e
        return json.loads(decrypted.decode('utf-8'))

    def _save_data(self):
        encrypted = self.fernet.encrypt(json.dumps(self._entries).encode('utf-8'))
        tmp_file = self.keys_file.with_suffix('.tmp')
        with open(tmp_file, 'wb') as f:
            f.write(encrypted)
        os.chmod(tmp_file, 0o600)
        os.replace(tmp_file, self.keys_file)

    def get(self, principal: str) -> Optional[KeyPair]:
        """
        Raises:
            MissingKeyMaterial: stored primes no longer form a valid pair
        """
        with self._lock:
            entry = self._entries.get(principal)
        if entry is None:
            return None
        return KeyPair.from_dict(entry)

    def put(self, principal: str, keypair: KeyPair):
        full = keypair.to_dict(include_secrets=True)
        entry = {k: full[k] for k in ('p', 'q', 'n', 'created_at')}
        with self._lock:
            self._entries[principal] = entry
            self._save_data()

    def delete(self, principal: str) -> bool:
        with self._lock:
            if principal not in self._entries:
                return False
            del self._entries[principal]
            self._save_data()
            return True

    def list_principals(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)

    def get_stats(self) -> dict:
        return {
            'storage_path': str(self.storage_path),
            'principals': len(self._entries)
        }
