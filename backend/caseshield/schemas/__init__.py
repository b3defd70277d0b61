"""
CaseShield schemas.

Frozen dataclasses for cryptographic artifacts (proofs, commitments) and
pydantic models for records, sessions and API-facing results.
"""

from caseshield.schemas.provenance import Provenance, Real, Simulated
from caseshield.schemas.proof import PREDICATE_ORDER, PredicateType, ProofResult
from caseshield.schemas.record import CaseRecord, ClinicalInputs, RecordPrivacyStats
from caseshield.schemas.compression import (
    CompressedCommitment,
    CompressionEstimate,
    CompressionStats,
)
from caseshield.schemas.access import (
    AccessSession,
    CommitteeMember,
    CommitteeStatus,
    DecryptionResult,
    EncryptionScheme,
    RequesterType,
    SessionStatus,
)

__all__ = [
    "Provenance",
    "Real",
    "Simulated",
    "PREDICATE_ORDER",
    "PredicateType",
    "ProofResult",
    "CaseRecord",
    "ClinicalInputs",
    "RecordPrivacyStats",
    "CompressedCommitment",
    "CompressionEstimate",
    "CompressionStats",
    "AccessSession",
    "CommitteeMember",
    "CommitteeStatus",
    "DecryptionResult",
    "EncryptionScheme",
    "RequesterType",
    "SessionStatus",
]
