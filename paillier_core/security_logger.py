"""
Security Logger
===============
Audit trail proving the ledger only ever handles ciphertext.

Purpose:
- Log every operation that crosses the owner/ledger trust boundary
- Classify the data involved (ciphertext, plaintext, blinding values...)
- Flag the ledger touching plaintext outside a verified finalize step
- Flag private key material showing up anywhere but on the owner side
"""

import json
import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


LEDGER = "ledger"


class DataType(Enum):
    """Classification of data handled in an operation"""
    CIPHERTEXT = "ciphertext"
    PLAINTEXT = "plaintext"
    PUBLIC_PARAM = "public_param"      # n, weights, scalars
    PRIVATE_KEY = "private_key"        # p, q, lambda, mu
    BLINDING_VALUE = "blinding_value"  # R
    DERIVED_SHARE = "derived_share"    # r'
    METADATA = "metadata"


class OperationType(Enum):
    """Types of operations in the system"""
    KEYGEN = "keygen"
    REGISTER_KEY = "register_key"
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"
    RECEIVE = "receive"
    AGGREGATE = "aggregate"
    BLIND = "blind"
    DERIVE_SHARE = "derive_share"
    FINALIZE = "finalize"
    STORE = "store"


@dataclass
class SecurityLogEntry:
    """Single security audit log entry"""
    timestamp: str
    entity: str
    operation: str
    data_types: List[str]
    is_safe: bool
    details: Dict[str, Any]
    sequence_id: int

    def to_dict(self) -> dict:
        return asdict(self)


class SecurityLogger:
    """
    Append-only audit log for the split-decryption system.

    The ledger should only have CIPHERTEXT, PUBLIC_PARAM, BLINDING_VALUE
    and DERIVED_SHARE entries, plus the plaintext premium it commits in
    a FINALIZE step after verifying r'.
    """

    def __init__(self, log_file: Optional[str] = None):
        """
        Initialize security logger.

        Args:
            log_file: Optional JSON-lines file to persist entries
        """
        self._entries: List[SecurityLogEntry] = []
        self._lock = threading.Lock()
        self._sequence = 0
        self.log_file = Path(log_file) if log_file else None

        if self.log_file and self.log_file.exists():
            self._load_from_file()

    @staticmethod
    def _is_safe(entity: str, operation: OperationType, data_types: List[DataType]) -> bool:
        if entity == LEDGER:
            if DataType.PRIVATE_KEY in data_types:
                return False
            if DataType.PLAINTEXT in data_types and operation != OperationType.FINALIZE:
                return False
        return True

    def log(self,
            entity: str,
            operation: OperationType,
            data_types: List[DataType],
            details: Dict[str, Any] = None) -> SecurityLogEntry:
        """
        Log a security-relevant operation.

        Args:
            entity: 'ledger' or 'owner:<owner_id>'
            operation: Type of operation performed
            data_types: Types of data involved in the operation
            details: Additional context, never secrets or plaintexts
        """
        with self._lock:
            self._sequence += 1
            entry = SecurityLogEntry(
                timestamp=datetime.now().isoformat(),
                entity=entity,
                operation=operation.value,
                data_types=[dt.value for dt in data_types],
                is_safe=self._is_safe(entity, operation, data_types),
                details=details or {},
                sequence_id=self._sequence
            )
            self._entries.append(entry)

            if self.log_file:
                self._append_to_file(entry)

            return entry

    def get_all_entries(self) -> List[SecurityLogEntry]:
        return list(self._entries)

    def get_entries_for_entity(self, entity: str) -> List[SecurityLogEntry]:
        return [e for e in self._entries if e.entity == entity]

    def get_violations(self) -> List[SecurityLogEntry]:
        return [e for e in self._entries if not e.is_safe]

    def verify_no_violations(self) -> bool:
        return len(self.get_violations()) == 0

    def get_ledger_summary(self) -> Dict[str, Any]:
        """Summary of ledger operations for audit"""
        ledger_entries = self.get_entries_for_entity(LEDGER)

        data_types_seen = set()
        for entry in ledger_entries:
            data_types_seen.update(entry.data_types)

        return {
            'total_operations': len(ledger_entries),
            'data_types_handled': sorted(data_types_seen),
            'private_key_access': DataType.PRIVATE_KEY.value in data_types_seen,
            'finalized_results': sum(
                1 for e in ledger_entries if e.operation == OperationType.FINALIZE.value
            ),
            'violations': len([e for e in ledger_entries if not e.is_safe]),
            'privacy_preserved': all(e.is_safe for e in ledger_entries)
        }

    def generate_audit_report(self) -> Dict[str, Any]:
        summary = self.get_ledger_summary()
        return {
            'report_generated': datetime.now().isoformat(),
            'total_log_entries': len(self._entries),
            'entities': sorted(set(e.entity for e in self._entries)),
            'ledger_privacy_audit': summary,
            'security_violations': [e.to_dict() for e in self.get_violations()],
            'conclusion': (
                "PRIVACY PRESERVED: Ledger only handled ciphertext and verified results."
                if summary['privacy_preserved']
                else "PRIVACY VIOLATION: Ledger accessed plaintext or key material!"
            )
        }

    def _append_to_file(self, entry: SecurityLogEntry):
        with open(self.log_file, 'a', encoding='utf-8') as f:
            f.write(json.dumps(entry.to_dict()) + '\n')

    def _load_from_file(self):
        with open(self.log_file, 'r', encoding='utf-8') as f:
            for line in f:
                if line.strip():
                    data = json.loads(line)
                    self._entries.append(SecurityLogEntry(**data))
                    self._sequence = max(self._sequence, data['sequence_id'])

    def clear(self):
        """Clear all entries (for testing)"""
        with self._lock:
            self._entries.clear()
            self._sequence = 0
            if self.log_file and self.log_file.exists():
                self.log_file.unlink()
