# -*- coding: utf-8 -*-
"""
Provenance Tracking for City Prosperity Index Calculations

SHA-256 audit trail for record submissions, deletions, and comparisons.
Maintains an in-memory chain-hashed operation log: each entry links to
the previous one, so any later edit of an entry breaks the chain.

Guarantees:
    - All hashes are deterministic SHA-256
    - Chain hashing links operations in sequence
    - Float normalization ensures reproducible hashing

Example:
    >>> from cityprosperity.provenance import ProvenanceTracker
    >>> tracker = ProvenanceTracker()
    >>> entry = tracker.add_entry("submit", "in_hash", "out_hash")
    >>> tracker.verify_chain()
    True
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import threading
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional
from uuid import uuid4

from cityprosperity.determinism import DeterministicClock

logger = logging.getLogger(__name__)


def _normalize_value(value: Any) -> Any:
    """Normalize a value for deterministic serialization.

    Handles float precision, NaN/Inf edge cases, and recursive
    normalization of nested structures.
    """
    if isinstance(value, float):
        if math.isnan(value):
            return "__NaN__"
        if math.isinf(value):
            return "__Inf__" if value > 0 else "__-Inf__"
        return round(value, 10)
    if isinstance(value, dict):
        return {k: _normalize_value(v) for k, v in sorted(value.items())}
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    return value


@dataclass
class ProvenanceEntry:
    """A single provenance record in the chain.

    Attributes:
        entry_id: Unique identifier for this provenance entry.
        operation: Name of the operation performed.
        input_hash: SHA-256 hash of the operation input.
        output_hash: SHA-256 hash of the operation output.
        timestamp: ISO-formatted UTC timestamp of the operation.
        parent_hash: Chain hash of the previous entry in the chain.
        chain_hash: SHA-256 chain hash linking this entry to the chain.
        metadata: Optional additional metadata for audit context.
    """

    entry_id: str
    operation: str
    input_hash: str
    output_hash: str
    timestamp: str
    parent_hash: str
    chain_hash: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ProvenanceTracker:
    """Chain-hashed log of CPI operations.

    Attributes:
        genesis_hash: Chain hash preceding the first entry.
    """

    def __init__(self, genesis: str = "city-prosperity-index-genesis") -> None:
        self.genesis_hash = hashlib.sha256(genesis.encode("utf-8")).hexdigest()
        self._entries: List[ProvenanceEntry] = []
        self._last_chain_hash: str = self.genesis_hash
        self._lock = threading.Lock()
        logger.debug("ProvenanceTracker initialized")

    # ------------------------------------------------------------------
    # Hashing helpers
    # ------------------------------------------------------------------

    @staticmethod
    def compute_hash(data: Any) -> str:
        """Compute a deterministic SHA-256 hash with float normalization.

        Normalizes floats to 10 decimal places and sorts dictionary keys,
        so equal content always hashes equal regardless of insertion order.

        Args:
            data: Data to hash (dict, list, str, number, or other).

        Returns:
            Hex-encoded SHA-256 hash string.
        """
        normalized = _normalize_value(data)
        serialized = json.dumps(normalized, sort_keys=True, default=str)
        return hashlib.sha256(serialized.encode("utf-8")).hexdigest()

    @staticmethod
    def _compute_chain_hash(
        previous_hash: str,
        input_hash: str,
        output_hash: str,
        operation: str,
        timestamp: str,
    ) -> str:
        combined = json.dumps(
            {
                "previous": previous_hash,
                "input": input_hash,
                "output": output_hash,
                "operation": operation,
                "timestamp": timestamp,
            },
            sort_keys=True,
        )
        return hashlib.sha256(combined.encode("utf-8")).hexdigest()

    # ------------------------------------------------------------------
    # Chain entry methods
    # ------------------------------------------------------------------

    def add_entry(
        self,
        operation: str,
        input_hash: str,
        output_hash: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ProvenanceEntry:
        """Append an operation to the chain.

        Args:
            operation: Name of the operation (submit, delete_record,
                compare, save_comparison, delete_comparison).
            input_hash: SHA-256 hash of the operation input.
            output_hash: SHA-256 hash of the operation output.
            metadata: Optional additional metadata to include.

        Returns:
            The created ProvenanceEntry with computed chain hash.
        """
        timestamp = DeterministicClock.utcnow().isoformat()

        with self._lock:
            parent_hash = self._last_chain_hash
            chain_hash = self._compute_chain_hash(
                parent_hash, input_hash, output_hash, operation, timestamp,
            )
            entry = ProvenanceEntry(
                entry_id=str(uuid4()),
                operation=operation,
                input_hash=input_hash,
                output_hash=output_hash,
                timestamp=timestamp,
                parent_hash=parent_hash,
                chain_hash=chain_hash,
                metadata=dict(metadata or {}),
            )
            self._entries.append(entry)
            self._last_chain_hash = chain_hash

        logger.debug(
            "Chain entry added: op=%s in=%s out=%s chain=%s",
            operation,
            input_hash[:16],
            output_hash[:16],
            chain_hash[:16],
        )
        return entry

    def record(
        self,
        operation: str,
        input_data: Any,
        output_data: Any,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ProvenanceEntry:
        """Hash ``input_data`` and ``output_data`` and append an entry."""
        return self.add_entry(
            operation,
            self.compute_hash(input_data),
            self.compute_hash(output_data),
            metadata,
        )

    # ------------------------------------------------------------------
    # Chain verification and retrieval
    # ------------------------------------------------------------------

    def verify_chain(self) -> bool:
        """Recompute every chain hash and check the links.

        Returns:
            True when the chain is intact.
        """
        with self._lock:
            entries = list(self._entries)

        previous = self.genesis_hash
        for index, entry in enumerate(entries):
            expected = self._compute_chain_hash(
                previous,
                entry.input_hash,
                entry.output_hash,
                entry.operation,
                entry.timestamp,
            )
            if entry.parent_hash != previous or entry.chain_hash != expected:
                logger.warning(
                    "Provenance chain broken at entry %d (%s)", index, entry.entry_id,
                )
                return False
            previous = entry.chain_hash
        return True

    def get_chain(self) -> List[ProvenanceEntry]:
        """Return all entries, oldest first."""
        with self._lock:
            return list(self._entries)

    def get_latest_hash(self) -> str:
        with self._lock:
            return self._last_chain_hash

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def export_json(self) -> str:
        """Export the chain as JSON for external audit systems."""
        return json.dumps(
            [entry.to_dict() for entry in self.get_chain()], indent=2, default=str,
        )


__all__ = ["ProvenanceEntry", "ProvenanceTracker"]
