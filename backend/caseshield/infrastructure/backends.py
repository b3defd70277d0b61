"""
External collaborator interfaces.

The privacy core never talks to a concrete prover, compression network,
validator directory or MPC cluster directly. It depends on the protocols
below; concrete implementations are discovered at startup (see
``caseshield.core.crypto.bridge``) or injected by the caller.

A missing prover or compression backend is a normal configuration: the
services fall back to degraded, explicitly simulated artifacts.
"""

from __future__ import annotations

import importlib
import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

from caseshield.core.config import Settings
from caseshield.core.exceptions import CommitteeFormationError

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# PROTOCOLS
# ═══════════════════════════════════════════════════════════════════════════════

@runtime_checkable
class ProverBackend(Protocol):
    """One compiled circuit, bound to a single predicate."""

    def execute(self, inputs: Mapping[str, str]) -> bytes:
        """Run the circuit and return the witness."""
        ...

    def generate_proof(self, witness: bytes) -> bytes:
        ...

    def verify_proof(self, proof: bytes, public_inputs: Mapping[str, str]) -> bool:
        ...


@runtime_checkable
class CompressionBackend(Protocol):
    def compress(self, payload: bytes, options: Mapping[str, Any]) -> Mapping[str, Any]:
        """
        Compress a payload into an on-chain account.

        Must return a mapping with ``account`` (address string),
        ``proof`` (bytes) and ``merkle_root`` (hex string).
        """
        ...


@runtime_checkable
class ValidatorRegistry(Protocol):
    def select_committee(self, size: int, exclude: Sequence[str] = ()) -> List[str]:
        """Return ``size`` distinct validator ids, none of them in ``exclude``."""
        ...


@runtime_checkable
class KeyReconstructor(Protocol):
    def open_session(self, session_id: str, committee: Sequence[str], threshold: int) -> str:
        """Register a committee with the MPC cluster and return its session id."""
        ...

    def reconstruct(self, session_id: str, record_id: str, share_holders: Sequence[str]) -> bytes:
        """Reconstruct the record key from the approving members' shares."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# BUILT-IN VALIDATOR REGISTRY
# ═══════════════════════════════════════════════════════════════════════════════

class StaticValidatorRegistry:
    """
    Fixed validator pool, configured through ``VALIDATOR_IDS``.

    Committees are taken in pool order after removing excluded ids. The
    pool is deduplicated on construction; an empty pool fails every
    committee request.
    """

    def __init__(self, validator_ids: Sequence[str]) -> None:
        seen: Dict[str, None] = {}
        for vid in validator_ids:
            if vid:
                seen.setdefault(vid, None)
        self._pool: List[str] = list(seen)

    @property
    def pool(self) -> List[str]:
        return list(self._pool)

    def select_committee(self, size: int, exclude: Sequence[str] = ()) -> List[str]:
        excluded = set(exclude)
        eligible = [vid for vid in self._pool if vid not in excluded]
        if len(eligible) < size:
            raise CommitteeFormationError(
                f"Validator registry has {len(eligible)} eligible validators, "
                f"committee needs {size}",
                details={"eligible": len(eligible), "required": size},
            )
        return eligible[:size]


# ═══════════════════════════════════════════════════════════════════════════════
# DISCOVERY
# ═══════════════════════════════════════════════════════════════════════════════

def load_compression_backend(settings: Settings) -> Optional[CompressionBackend]:
    """
    Import ``COMPRESSION_MODULE`` and build a backend via its ``create_backend()``.

    Returns None (degraded mode) when the module is unset, missing, or does
    not expose a usable backend. The outcome is logged either way.
    """
    module_name = settings.COMPRESSION_MODULE
    if not module_name:
        logger.info("[COMPRESS] No compression module configured — commitments will be simulated")
        return None

    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        logger.warning(
            f"[COMPRESS] Compression module '{module_name}' not importable ({exc}) — "
            f"commitments will be simulated"
        )
        return None

    factory = getattr(module, "create_backend", None)
    if not callable(factory):
        logger.warning(
            f"[COMPRESS] Module '{module_name}' has no create_backend() — "
            f"commitments will be simulated"
        )
        return None

    try:
        backend = factory()
    except Exception as exc:
        logger.warning(
            f"[COMPRESS] create_backend() in '{module_name}' failed: {exc} — "
            f"commitments will be simulated"
        )
        return None

    if not isinstance(backend, CompressionBackend):
        logger.warning(f"[COMPRESS] Module '{module_name}' returned an invalid backend")
        return None

    logger.info(f"[COMPRESS] Compression backend loaded from '{module_name}'")
    return backend
