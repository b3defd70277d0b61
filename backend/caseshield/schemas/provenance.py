"""
Provenance tags for cryptographic artifacts.

Every proof and every compressed commitment carries exactly one of:

    Real(proof_bytes)               produced by a live backend
    Simulated(reason, proof_bytes)  produced locally because the backend was
                                    missing or raised

The two are distinct types so that a simulated artifact can never be passed
off as a real one by flipping a boolean.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Real:
    """Artifact produced by a live backend."""
    proof_bytes: bytes


@dataclass(frozen=True)
class Simulated:
    """Locally derived stand-in; never authoritative."""
    reason: str
    proof_bytes: bytes = b""


Provenance = Union[Real, Simulated]
