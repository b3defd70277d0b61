from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel

from caseshield.schemas.provenance import Provenance, Simulated


@dataclass(frozen=True)
class CompressedCommitment:
    """
    Compact on-chain commitment to an encrypted payload.

    Invariants:
        compressed_size <= original_size
        1 <= achieved_ratio <= configured cap
        compressed_size == ceil(original_size / achieved_ratio)

    ``integrity_proof`` is a SHA-256 binding over address, Merkle root and
    size fields, recomputed by CompressionService.verify. ``provenance``
    carries the backend's proof bytes when a backend produced the
    commitment, or the reason it was simulated.
    """
    account_address: str
    merkle_root: str
    payload_digest: str
    original_size: int
    compressed_size: int
    achieved_ratio: float
    integrity_proof: str
    provenance: Provenance

    @property
    def simulated(self) -> bool:
        return isinstance(self.provenance, Simulated)

    @property
    def error(self) -> Optional[str]:
        if isinstance(self.provenance, Simulated):
            return f"Simulated commitment (non-authoritative): {self.provenance.reason}"
        return None

    @property
    def savings(self) -> int:
        return self.original_size - self.compressed_size

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_address": self.account_address,
            "merkle_root": self.merkle_root,
            "payload_digest": self.payload_digest,
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "achieved_ratio": self.achieved_ratio,
            "integrity_proof": self.integrity_proof,
            "backend_proof": self.provenance.proof_bytes.hex(),
            "simulated": self.simulated,
            "error": self.error,
        }


class CompressionEstimate(BaseModel):
    original_size: int
    compressed_size: int
    savings: int
    achieved_ratio: float


class CompressionStats(BaseModel):
    """Running totals across every compress() call."""
    total_compressed: int = 0
    total_original_size: int = 0
    total_final_size: int = 0
    total_saved: int = 0
    average_ratio: float = 0.0
    simulated_count: int = 0
