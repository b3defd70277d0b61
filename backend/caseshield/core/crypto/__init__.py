"""
CaseShield cryptographic helpers.

Public API:
    - predicates:  Predicate semantics, metadata and input validation.
    - MerkleTree:  Payload commitments for compression.
    - discover_prover_backends: Load compiled predicate circuits.
"""

from caseshield.core.crypto.merkle import MerkleTree, derive_account_address, integrity_binding
from caseshield.core.crypto.bridge import discover_prover_backends

__all__ = [
    "MerkleTree",
    "derive_account_address",
    "integrity_binding",
    "discover_prover_backends",
]
