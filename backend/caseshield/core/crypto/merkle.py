"""
Merkle commitments over encrypted payloads.

The payload is split into fixed-size chunks, each chunk is hashed into a
leaf, and the leaves are folded pairwise into a single root. The root and
a derived account address form the compact commitment that stands in for
the full payload once it has been compressed.

Structure:
    Level 0 (leaves):  [H(c0), H(c1), H(c2), H(c3), ...]
    Level 1:           [H(H0+H1), H(H2+H3), ...]
    Level 2 (root):    [H(L1_0 + L1_1)]
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, List, Optional

from web3 import Web3


# ═══════════════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════════════

EMPTY_ROOT = "0" * 64  # Root of a tree with no leaves
CHUNK_SIZE = 32


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _hash_pair(left: str, right: str) -> str:
    return hashlib.sha256((left + right).encode("utf-8")).hexdigest()


# ═══════════════════════════════════════════════════════════════════════════════
# MERKLE TREE
# ═══════════════════════════════════════════════════════════════════════════════

class MerkleTree:
    """
    Binary Merkle tree over hex-encoded leaf hashes.

    Odd levels duplicate their last node, so any non-empty leaf list has
    exactly one root. Modifying any leaf changes the root.
    """

    def __init__(self, leaves: Optional[List[str]] = None) -> None:
        self._leaves: List[str] = list(leaves or [])
        self._root: str = self.compute_root(self._leaves)

    @classmethod
    def from_payload(cls, payload: bytes, chunk_size: int = CHUNK_SIZE) -> "MerkleTree":
        """Build a tree whose leaves are the SHA-256 digests of payload chunks."""
        leaves = [
            sha256_hex(payload[i:i + chunk_size])
            for i in range(0, len(payload), chunk_size)
        ]
        return cls(leaves)

    @property
    def root(self) -> str:
        return self._root

    @property
    def leaf_count(self) -> int:
        return len(self._leaves)

    def add_leaf(self, leaf_hash: str) -> str:
        self._leaves.append(leaf_hash)
        self._root = self.compute_root(self._leaves)
        return self._root

    def verify(self, leaf_hashes: List[str]) -> bool:
        """True if the given ordered leaves reproduce the current root."""
        return self.compute_root(leaf_hashes) == self._root

    @staticmethod
    def compute_root(leaves: List[str]) -> str:
        if not leaves:
            return EMPTY_ROOT

        level = list(leaves)
        while len(level) > 1:
            next_level: List[str] = []
            for i in range(0, len(level), 2):
                left = level[i]
                right = level[i + 1] if i + 1 < len(level) else left
                next_level.append(_hash_pair(left, right))
            level = next_level

        return level[0]


# ═══════════════════════════════════════════════════════════════════════════════
# COMMITMENT HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def derive_account_address(merkle_root: str, metadata: Dict[str, Any]) -> str:
    """
    Deterministic checksummed address for a compressed account.

    Derived from keccak256 over the Merkle root and canonical metadata, so
    the same payload and metadata always land on the same address.
    """
    canonical = json.dumps(
        {"merkle_root": merkle_root, "metadata": metadata},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    digest = bytes(Web3.keccak(text=canonical))
    return Web3.to_checksum_address("0x" + digest[-20:].hex())


def integrity_binding(
    account_address: str,
    merkle_root: str,
    payload_digest: str,
    original_size: int,
    compressed_size: int,
) -> str:
    """SHA-256 binding over every field a commitment must not change."""
    material = "|".join([
        account_address,
        merkle_root,
        payload_digest,
        str(original_size),
        str(compressed_size),
    ])
    return sha256_hex(material.encode("utf-8"))
