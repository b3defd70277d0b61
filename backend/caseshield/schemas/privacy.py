from __future__ import annotations

import time
from dataclasses import dataclass, field as dc_field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from caseshield.schemas.access import AccessSession
from caseshield.schemas.compression import CompressedCommitment
from caseshield.schemas.proof import PredicateType, ProofResult
from caseshield.schemas.record import ClinicalInputs


# Weights of each privacy feature in the 0-100 score.
PRIVACY_SCORE_WEIGHTS: Dict[str, int] = {
    "encryption": 20,
    "zk_proofs": 30,
    "compression": 20,
    "committee_gating": 30,
}


class OperationType(str, Enum):
    ENCRYPTION = "encryption"
    ZK_PROOF = "zk_proof"
    COMPRESSION = "compression"
    COMMITTEE = "committee"


class OperationService(str, Enum):
    WALLET = "wallet"
    PROVER = "prover"
    COMPRESSOR = "compressor"
    ACCESS_CONTROL = "access_control"


class OperationStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class PrivacyOperation(BaseModel):
    """One entry of the ordered audit log."""
    type: OperationType
    service: OperationService
    status: OperationStatus = OperationStatus.PENDING
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PrivacyFeatures(BaseModel):
    """Privacy features actually exercised for a record."""
    has_encryption: bool = False
    proof_count: int = 0
    has_compression: bool = False
    has_committee_gating: bool = False


class ValidationInputs(BaseModel):
    """A validator's vote on a record plus the values it re-proves."""
    approve: bool = True
    clinical: ClinicalInputs = Field(..., exclude=True, repr=False)
    notes: str = ""


class PrivacyRequirements(BaseModel):
    min_validators: int
    min_proofs: int = 2
    compression_required: bool = True


@dataclass
class EnhancedRecord:
    """Privacy artifacts bound to a submitted record. No cleartext values."""
    record_id: str
    submitter: str
    payload_digest: str
    commitment: CompressedCommitment
    proofs: List[ProofResult]
    proof_digests: List[str]
    privacy_score: int
    submitted_at: float = dc_field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "submitter": self.submitter,
            "payload_digest": self.payload_digest,
            "commitment": self.commitment.to_dict(),
            "proofs": [p.to_public_dict() for p in self.proofs],
            "proof_digests": list(self.proof_digests),
            "privacy_score": self.privacy_score,
            "submitted_at": self.submitted_at,
        }


@dataclass
class EnhancedValidation:
    record_id: str
    validator: str
    approve: bool
    proofs: List[ProofResult]
    compressed_vote: CompressedCommitment
    privacy_score: int
    validated_at: float = dc_field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "validator": self.validator,
            "approve": self.approve,
            "proofs": [p.to_public_dict() for p in self.proofs],
            "compressed_vote": self.compressed_vote.to_dict(),
            "privacy_score": self.privacy_score,
            "validated_at": self.validated_at,
        }


@dataclass
class EnhancedAccessRequest:
    session: AccessSession
    required_proofs: List[PredicateType]
    requirements: PrivacyRequirements

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session": self.session.model_dump(mode="json"),
            "required_proofs": [p.value for p in self.required_proofs],
            "requirements": self.requirements.model_dump(),
        }


@dataclass
class PrivacyOperationResult:
    """
    Result of an orchestrated workflow.

    ``operations`` is always returned in step order, including failed and
    skipped steps. On partial failure ``success`` is False, ``error``
    holds the first failure, and the score reflects completed steps only.
    """
    success: bool
    privacy_score: int
    operations: List[PrivacyOperation]
    error: Optional[str] = None
    enhanced_record: Optional[EnhancedRecord] = None
    validation: Optional[EnhancedValidation] = None
    access_request: Optional[EnhancedAccessRequest] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "privacy_score": self.privacy_score,
            "error": self.error,
            "operations": [op.model_dump(mode="json") for op in self.operations],
            "enhanced_record": self.enhanced_record.to_dict() if self.enhanced_record else None,
            "validation": self.validation.to_dict() if self.validation else None,
            "access_request": self.access_request.to_dict() if self.access_request else None,
        }
