from __future__ import annotations

import time
from dataclasses import dataclass, field as dc_field
from enum import Enum
from typing import Any, Dict, Optional

from caseshield.schemas.provenance import Provenance, Simulated


class PredicateType(str, Enum):
    """The four fixed predicates a record can be proven against."""
    SYMPTOM_IMPROVEMENT = "symptom_improvement"
    DURATION_VERIFICATION = "duration_verification"
    DATA_COMPLETENESS = "data_completeness"
    COST_RANGE = "cost_range"


# Fixed order used by record proof sets and audit metadata.
PREDICATE_ORDER = (
    PredicateType.SYMPTOM_IMPROVEMENT,
    PredicateType.DURATION_VERIFICATION,
    PredicateType.DATA_COMPLETENESS,
    PredicateType.COST_RANGE,
)


@dataclass(frozen=True)
class ProofResult:
    """
    Outcome of proving one predicate over private inputs.

    Fields:
        predicate:      Which predicate was proven.
        public_params:  Public parameters the proof is bound to.
        artifact:       Real(proof_bytes) or Simulated(reason, proof_bytes).
        verified:       Backend verification result, or the locally
                        re-derived boolean when the artifact is Simulated.
        created_at:     Unix timestamp of generation.
    """
    predicate: PredicateType
    public_params: Dict[str, Any]
    artifact: Provenance
    verified: bool
    created_at: float = dc_field(default_factory=time.time)

    @property
    def proof_bytes(self) -> bytes:
        return self.artifact.proof_bytes

    @property
    def degraded(self) -> bool:
        return isinstance(self.artifact, Simulated)

    @property
    def error(self) -> Optional[str]:
        if isinstance(self.artifact, Simulated):
            return f"ZK proof generation failed: {self.artifact.reason}"
        return None

    def to_public_dict(self) -> Dict[str, Any]:
        """
        Representation safe to hand to a third party.

        A degraded result is always reported with ``zero_knowledge`` False
        and its reason attached.
        """
        data: Dict[str, Any] = {
            "predicate": self.predicate.value,
            "public_params": dict(self.public_params),
            "proof": self.proof_bytes.hex(),
            "verified": self.verified,
            "zero_knowledge": not self.degraded,
            "degraded": self.degraded,
            "created_at": self.created_at,
        }
        if self.degraded:
            data["error"] = self.error
        return data
