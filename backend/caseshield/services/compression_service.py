"""
CompressionService — compact on-chain commitments for encrypted payloads.

    achieved_ratio  = min(requested_ratio, MAX_COMPRESSION_RATIO)
    compressed_size = ceil(original_size / achieved_ratio)

Without a compression backend, ``compress`` produces a deterministic
simulated commitment (local Merkle root plus a keccak-derived address)
flagged as non-authoritative. It never fails outright on a backend
problem.
"""

from __future__ import annotations

import asyncio
import logging
import math
from numbers import Real as RealNumber
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from caseshield.core.config import Settings, settings as default_settings
from caseshield.core.crypto.merkle import (
    MerkleTree,
    derive_account_address,
    integrity_binding,
    sha256_hex,
)
from caseshield.core.exceptions import BackendUnavailableError, ValidationError
from caseshield.infrastructure.backends import CompressionBackend
from caseshield.schemas.compression import (
    CompressedCommitment,
    CompressionEstimate,
    CompressionStats,
)
from caseshield.schemas.provenance import Real, Simulated

logger = logging.getLogger(__name__)


def compressed_size_for(size_bytes: int, ratio: float) -> int:
    """ceil(size / ratio), exact for integral ratios."""
    if float(ratio).is_integer():
        return -(-size_bytes // int(ratio))
    return math.ceil(size_bytes / ratio)


def format_bytes(size_bytes: int) -> str:
    """Human readable size, e.g. ``1.5 KB``."""
    if size_bytes <= 0:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB")
    exponent = 0
    while size_bytes >= 1024 ** (exponent + 1) and exponent < len(units) - 1:
        exponent += 1
    value = round(size_bytes / (1024 ** exponent), 2)
    return f"{value:g} {units[exponent]}"


class CompressionService:

    def __init__(
        self,
        backend: Optional[CompressionBackend] = None,
        settings: Settings = default_settings,
    ) -> None:
        self._backend = backend
        self._cap = settings.MAX_COMPRESSION_RATIO
        self._default_ratio = settings.DEFAULT_COMPRESSION_RATIO
        self._stats = CompressionStats()

    @property
    def has_backend(self) -> bool:
        return self._backend is not None

    @property
    def max_ratio(self) -> int:
        return self._cap

    def effective_ratio(self, ratio: Optional[Union[int, float]] = None) -> float:
        """
        Clamp a requested ratio to the configured cap.

        Raises:
            ValidationError: If the ratio is not a number or is below 1.
        """
        if ratio is None:
            ratio = self._default_ratio
        if isinstance(ratio, bool) or not isinstance(ratio, RealNumber):
            raise ValidationError("Compression ratio must be a number", field="ratio")
        if not math.isfinite(ratio) or ratio < 1:
            raise ValidationError("Compression ratio must be at least 1", field="ratio")
        return float(min(ratio, self._cap))

    def estimate(
        self, size_bytes: int, ratio: Optional[Union[int, float]] = None,
    ) -> CompressionEstimate:
        if isinstance(size_bytes, bool) or not isinstance(size_bytes, int) or size_bytes < 0:
            raise ValidationError("Size must be a non-negative integer", field="size_bytes")
        achieved = self.effective_ratio(ratio)
        compressed = compressed_size_for(size_bytes, achieved)
        return CompressionEstimate(
            original_size=size_bytes,
            compressed_size=compressed,
            savings=size_bytes - compressed,
            achieved_ratio=achieved,
        )

    async def compress(
        self,
        payload: bytes,
        ratio: Optional[Union[int, float]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> CompressedCommitment:
        """
        Commit to ``payload`` at ``ratio`` (default from settings).

        Identical payload, ratio and metadata give an identical simulated
        commitment.

        Raises:
            ValidationError: If the payload is empty or the ratio invalid.
        """
        if not isinstance(payload, (bytes, bytearray)) or not payload:
            raise ValidationError("Payload must be non-empty bytes", field="payload")
        payload = bytes(payload)

        achieved = self.effective_ratio(ratio)
        original_size = len(payload)
        compressed_size = compressed_size_for(original_size, achieved)
        payload_digest = sha256_hex(payload)
        commitment_meta: Dict[str, Any] = {
            "payload_digest": payload_digest,
            "original_size": original_size,
            "ratio": achieved,
            **dict(metadata or {}),
        }

        try:
            account, merkle_root, provenance = await self._compress_with_backend(
                payload, achieved, commitment_meta,
            )
        except BackendUnavailableError as exc:
            logger.warning(f"[COMPRESS] Simulating commitment: {exc.reason}")
            merkle_root = MerkleTree.from_payload(payload).root
            account = derive_account_address(merkle_root, commitment_meta)
            provenance = Simulated(reason=exc.reason)

        commitment = CompressedCommitment(
            account_address=account,
            merkle_root=merkle_root,
            payload_digest=payload_digest,
            original_size=original_size,
            compressed_size=compressed_size,
            achieved_ratio=achieved,
            integrity_proof=integrity_binding(
                account, merkle_root, payload_digest, original_size, compressed_size,
            ),
            provenance=provenance,
        )
        self._record(commitment)
        logger.info(
            f"[COMPRESS] {format_bytes(original_size)} -> {format_bytes(compressed_size)} "
            f"({achieved:g}x, simulated={commitment.simulated})"
        )
        return commitment

    async def _compress_with_backend(
        self, payload: bytes, ratio: float, metadata: Dict[str, Any],
    ) -> Tuple[str, str, Real]:
        if self._backend is None:
            raise BackendUnavailableError("compression", "no compression backend configured")
        try:
            result = await asyncio.to_thread(
                self._backend.compress, payload, {"ratio": ratio, "metadata": metadata},
            )
            return (
                str(result["account"]),
                str(result["merkle_root"]),
                Real(proof_bytes=bytes(result["proof"])),
            )
        except Exception as exc:
            raise BackendUnavailableError("compression", f"{type(exc).__name__}: {exc}") from exc

    def verify(self, commitment: CompressedCommitment) -> bool:
        """Recompute size and integrity binding; False on any mismatch."""
        ratio = commitment.achieved_ratio
        if not 1 <= ratio <= self._cap:
            return False
        if commitment.compressed_size != compressed_size_for(commitment.original_size, ratio):
            return False
        if commitment.compressed_size > commitment.original_size:
            return False
        expected = integrity_binding(
            commitment.account_address,
            commitment.merkle_root,
            commitment.payload_digest,
            commitment.original_size,
            commitment.compressed_size,
        )
        return expected == commitment.integrity_proof

    def _record(self, commitment: CompressedCommitment) -> None:
        s = self._stats
        count = s.total_compressed + 1
        self._stats = CompressionStats(
            total_compressed=count,
            total_original_size=s.total_original_size + commitment.original_size,
            total_final_size=s.total_final_size + commitment.compressed_size,
            total_saved=s.total_saved + commitment.savings,
            average_ratio=(s.average_ratio * s.total_compressed + commitment.achieved_ratio) / count,
            simulated_count=s.simulated_count + (1 if commitment.simulated else 0),
        )

    def stats(self) -> CompressionStats:
        return self._stats.model_copy()
