"""
Predicate definitions for record proofs.

Each predicate is a fixed logical condition over private inputs and public
parameters. The local evaluators here mirror the circuit constraints
exactly; they are used to validate inputs before a prover backend is
invoked and to re-derive ``verified`` when no backend is available.

═══════════════════════════════════════════════════════════════════════════════
PREDICATES
═══════════════════════════════════════════════════════════════════════════════

  symptom_improvement    max(0, b - o) >= max(1, floor(b * p / 100))
  duration_verification  d > 0  and  min <= d <= max
  data_completeness      count(true flags) >= r
  cost_range             c > 0  and  min <= c <= max
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Tuple

from caseshield.core.exceptions import ValidationError
from caseshield.schemas.proof import PredicateType
from caseshield.schemas.record import ClinicalInputs


SEVERITY_MIN: int = 1
SEVERITY_MAX: int = 10
COMPLETENESS_FIELDS: Tuple[str, ...] = (
    "has_baseline", "has_outcome", "has_duration", "has_protocol", "has_cost",
)


@dataclass(frozen=True)
class PredicateMetadata:
    type: PredicateType
    name: str
    description: str
    required_fields: Tuple[str, ...]
    public_fields: Tuple[str, ...]


PREDICATE_METADATA: Dict[PredicateType, PredicateMetadata] = {
    PredicateType.SYMPTOM_IMPROVEMENT: PredicateMetadata(
        type=PredicateType.SYMPTOM_IMPROVEMENT,
        name="Symptom Improvement",
        description="Proves symptom severity improved by at least a threshold percentage",
        required_fields=("baseline_severity", "outcome_severity"),
        public_fields=("min_improvement_percent",),
    ),
    PredicateType.DURATION_VERIFICATION: PredicateMetadata(
        type=PredicateType.DURATION_VERIFICATION,
        name="Duration Verification",
        description="Proves treatment duration is within acceptable bounds",
        required_fields=("duration_days",),
        public_fields=("min_days", "max_days"),
    ),
    PredicateType.DATA_COMPLETENESS: PredicateMetadata(
        type=PredicateType.DATA_COMPLETENESS,
        name="Data Completeness",
        description="Proves required data fields are present",
        required_fields=COMPLETENESS_FIELDS,
        public_fields=("minimum_required",),
    ),
    PredicateType.COST_RANGE: PredicateMetadata(
        type=PredicateType.COST_RANGE,
        name="Cost Range",
        description="Proves treatment cost is within a reasonable range",
        required_fields=("cost_usd_cents",),
        public_fields=("min_cost_cents", "max_cost_cents"),
    ),
}

DEFAULT_PUBLIC_PARAMS: Dict[PredicateType, Dict[str, int]] = {
    PredicateType.SYMPTOM_IMPROVEMENT: {"min_improvement_percent": 20},
    PredicateType.DURATION_VERIFICATION: {"min_days": 7, "max_days": 90},
    PredicateType.DATA_COMPLETENESS: {"minimum_required": 4},
    PredicateType.COST_RANGE: {"min_cost_cents": 1_000, "max_cost_cents": 1_000_000},  # $10 - $10,000
}


# ═══════════════════════════════════════════════════════════════════════════════
# PURE EVALUATORS
# ═══════════════════════════════════════════════════════════════════════════════

def improvement_holds(baseline: int, outcome: int, min_percent: int) -> bool:
    improvement = max(0, baseline - outcome)
    threshold = max(1, (baseline * min_percent) // 100)
    return improvement >= threshold


def range_holds(value: int, minimum: int, maximum: int) -> bool:
    return value > 0 and minimum <= value <= maximum


def completeness_holds(flags: List[bool], minimum_required: int) -> bool:
    return sum(1 for f in flags if f) >= minimum_required


def evaluate(
    predicate: PredicateType,
    private_inputs: Mapping[str, Any],
    public_params: Mapping[str, Any],
) -> bool:
    """Evaluate a predicate locally. Inputs must already be validated."""
    if predicate is PredicateType.SYMPTOM_IMPROVEMENT:
        return improvement_holds(
            private_inputs["baseline_severity"],
            private_inputs["outcome_severity"],
            public_params["min_improvement_percent"],
        )
    if predicate is PredicateType.DURATION_VERIFICATION:
        return range_holds(
            private_inputs["duration_days"],
            public_params["min_days"],
            public_params["max_days"],
        )
    if predicate is PredicateType.DATA_COMPLETENESS:
        return completeness_holds(
            [private_inputs[f] for f in COMPLETENESS_FIELDS],
            public_params["minimum_required"],
        )
    return range_holds(
        private_inputs["cost_usd_cents"],
        public_params["min_cost_cents"],
        public_params["max_cost_cents"],
    )


# ═══════════════════════════════════════════════════════════════════════════════
# INPUT VALIDATION
# ═══════════════════════════════════════════════════════════════════════════════

def _require_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer", field=name)
    return value


def _require_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{name} must be a boolean", field=name)
    return value


def _require_bounds(lo_name: str, hi_name: str, params: Mapping[str, Any]) -> None:
    lo = _require_int(lo_name, params[lo_name])
    hi = _require_int(hi_name, params[hi_name])
    if lo < 0:
        raise ValidationError(f"{lo_name} must be non-negative", field=lo_name)
    if lo > hi:
        raise ValidationError(f"{lo_name} must not exceed {hi_name}", field=lo_name)


def validate_inputs(
    predicate: PredicateType,
    private_inputs: Mapping[str, Any],
    public_params: Mapping[str, Any],
) -> None:
    """
    Range-validate inputs for a predicate.

    Raises:
        ValidationError: On missing fields, wrong types or out-of-range
            values. Nothing invalid ever reaches a prover backend.
    """
    meta = PREDICATE_METADATA[predicate]

    missing = [f for f in meta.required_fields if f not in private_inputs]
    if missing:
        raise ValidationError(
            f"Missing required fields for {predicate.value}: {', '.join(missing)}",
            details={"missing": missing},
        )
    missing_public = [f for f in meta.public_fields if f not in public_params]
    if missing_public:
        raise ValidationError(
            f"Missing public parameters for {predicate.value}: {', '.join(missing_public)}",
            details={"missing": missing_public},
        )

    if predicate is PredicateType.SYMPTOM_IMPROVEMENT:
        for name in ("baseline_severity", "outcome_severity"):
            value = _require_int(name, private_inputs[name])
            if not SEVERITY_MIN <= value <= SEVERITY_MAX:
                raise ValidationError(
                    f"{name} must be {SEVERITY_MIN}-{SEVERITY_MAX}", field=name,
                )
        percent = _require_int("min_improvement_percent", public_params["min_improvement_percent"])
        if not 0 <= percent <= 100:
            raise ValidationError(
                "min_improvement_percent must be 0-100", field="min_improvement_percent",
            )

    elif predicate is PredicateType.DURATION_VERIFICATION:
        if _require_int("duration_days", private_inputs["duration_days"]) <= 0:
            raise ValidationError("Duration must be positive", field="duration_days")
        _require_bounds("min_days", "max_days", public_params)

    elif predicate is PredicateType.DATA_COMPLETENESS:
        for name in COMPLETENESS_FIELDS:
            _require_bool(name, private_inputs[name])
        required = _require_int("minimum_required", public_params["minimum_required"])
        if not 1 <= required <= len(COMPLETENESS_FIELDS):
            raise ValidationError("Minimum required must be 1-5", field="minimum_required")

    else:
        if _require_int("cost_usd_cents", private_inputs["cost_usd_cents"]) <= 0:
            raise ValidationError("Cost must be positive", field="cost_usd_cents")
        _require_bounds("min_cost_cents", "max_cost_cents", public_params)


def record_inputs(clinical: ClinicalInputs) -> Dict[PredicateType, Dict[str, Any]]:
    """
    Split a record's clinical values into per-predicate private inputs.

    Raises:
        ValidationError: If the cost cannot be expressed in whole cents.
    """
    if not math.isfinite(clinical.cost_usd * 100):
        raise ValidationError("Cost must be a finite amount", field="cost_usd")
    return {
        PredicateType.SYMPTOM_IMPROVEMENT: {
            "baseline_severity": clinical.baseline_severity,
            "outcome_severity": clinical.outcome_severity,
        },
        PredicateType.DURATION_VERIFICATION: {
            "duration_days": clinical.duration_days,
        },
        PredicateType.DATA_COMPLETENESS: {
            "has_baseline": clinical.has_baseline,
            "has_outcome": clinical.has_outcome,
            "has_duration": clinical.has_duration,
            "has_protocol": clinical.has_protocol,
            "has_cost": clinical.has_cost,
        },
        PredicateType.COST_RANGE: {
            "cost_usd_cents": clinical.cost_usd_cents,
        },
    }


def to_circuit_inputs(
    private_inputs: Mapping[str, Any],
    public_params: Mapping[str, Any],
) -> Dict[str, str]:
    """Encode inputs the way circuit backends expect: decimal strings, lowercase booleans."""
    encoded: Dict[str, str] = {}
    for key, value in {**private_inputs, **public_params}.items():
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        else:
            encoded[key] = str(value)
    return encoded
