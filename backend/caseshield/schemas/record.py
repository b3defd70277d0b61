"""
Pydantic schemas for case-study records entering the privacy pipeline.

A record is split into two parts:

- The encrypted payload and identifiers, which flow into compression and
  are referenced by the enhanced record.
- ClinicalInputs, the cleartext values needed to generate predicate
  proofs. They are excluded from serialization and are never copied into
  any persisted or returned structure.

Range checks (severity 1–10, positive durations and costs) are NOT done
here: they belong to the proof layer, which rejects out-of-range input
with ValidationError before any backend sees it.
"""

from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from caseshield.schemas.proof import PredicateType


class ClinicalInputs(BaseModel):
    """Cleartext values used transiently for proof generation."""
    model_config = ConfigDict(frozen=True)

    baseline_severity: int = Field(..., description="Symptom severity before treatment, 1-10")
    outcome_severity: int = Field(..., description="Symptom severity after treatment, 1-10")
    duration_days: int = Field(..., description="Treatment duration in days")
    cost_usd: float = Field(..., description="Treatment cost in USD")
    has_baseline: bool = True
    has_outcome: bool = True
    has_duration: bool = True
    has_protocol: bool = True
    has_cost: bool = True

    @property
    def cost_usd_cents(self) -> int:
        return int(round(self.cost_usd * 100))


class CaseRecord(BaseModel):
    """
    An encrypted case study submitted by its owner.

    The caller encrypts before submission; ``encrypted_payload`` is opaque
    to the core. Immutable once constructed.
    """
    model_config = ConfigDict(frozen=True)

    record_id: str = Field(..., min_length=1, max_length=128)
    submitter: str = Field(..., min_length=1, max_length=128)
    encrypted_payload: bytes = Field(..., min_length=1)
    treatment_category: str = ""
    clinical: ClinicalInputs = Field(..., exclude=True, repr=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RecordPrivacyStats(BaseModel):
    """Privacy features a record already has on file."""
    has_compression: bool = False
    proof_count: int = Field(default=0, ge=0)
    proof_types: List[PredicateType] = Field(default_factory=list)
    privacy_score: int = Field(default=0, ge=0, le=100)
