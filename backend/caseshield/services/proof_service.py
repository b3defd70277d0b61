"""
ProofService — predicate proofs over private clinical inputs.

Generates one proof per predicate type without revealing the inputs. A
compiled circuit (see ``caseshield.core.crypto.bridge``) is used when one
is loaded for the predicate; otherwise the proof is produced in degraded
mode:

    - ``verified`` is the locally re-derived predicate value
    - the artifact is ``Simulated(reason, ...)``, never ``Real``
    - ``verify_proof`` always returns False for it

Input validation always runs first. A ValidationError means the backend
was never called.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel

from caseshield.core.config import Settings, settings as default_settings
from caseshield.core.crypto import predicates
from caseshield.core.crypto.predicates import PREDICATE_METADATA, PredicateMetadata
from caseshield.core.exceptions import BackendUnavailableError, ValidationError
from caseshield.infrastructure.backends import ProverBackend
from caseshield.schemas.proof import PREDICATE_ORDER, PredicateType, ProofResult
from caseshield.schemas.provenance import Real, Simulated
from caseshield.schemas.record import CaseRecord, ClinicalInputs

logger = logging.getLogger(__name__)

SIMULATED_PROOF_PREFIX = b"SIMULATED_ZK_"
SIMULATED_PROOF_ENTROPY = 64


class ProofStats(BaseModel):
    generated: int = 0
    degraded: int = 0
    real_backends: List[PredicateType] = []


class ProofService:
    """
    Usage:
        service = ProofService(backends=discover_prover_backends(settings))
        result = await service.generate_proof(
            PredicateType.SYMPTOM_IMPROVEMENT,
            {"baseline_severity": 8, "outcome_severity": 3},
        )
        print(result.verified, result.degraded)
    """

    def __init__(
        self,
        backends: Optional[Mapping[PredicateType, ProverBackend]] = None,
        settings: Settings = default_settings,
    ) -> None:
        self._backends: Dict[PredicateType, ProverBackend] = dict(backends or {})
        self._settings = settings
        self._generated = 0
        self._degraded = 0

        missing = [p.value for p in PREDICATE_ORDER if p not in self._backends]
        if missing:
            logger.warning(
                f"[PROOF] No circuit for {', '.join(missing)} — "
                f"these predicates will produce degraded proofs"
            )

    # ── Introspection ──

    def has_backend(self, predicate: PredicateType) -> bool:
        return predicate in self._backends

    def available_predicates(self) -> List[PredicateMetadata]:
        return [PREDICATE_METADATA[p] for p in PREDICATE_ORDER]

    def stats(self) -> ProofStats:
        return ProofStats(
            generated=self._generated,
            degraded=self._degraded,
            real_backends=[p for p in PREDICATE_ORDER if p in self._backends],
        )

    # ── Generation ──

    @staticmethod
    def _coerce_predicate(predicate: Union[PredicateType, str]) -> PredicateType:
        try:
            return PredicateType(predicate)
        except ValueError:
            raise ValidationError(f"Unknown predicate type: {predicate}", field="predicate")

    @staticmethod
    def _resolve_params(
        predicate: PredicateType, public_params: Optional[Mapping[str, Any]],
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = dict(predicates.DEFAULT_PUBLIC_PARAMS[predicate])
        if public_params:
            params.update(public_params)
        return params

    async def generate_proof(
        self,
        predicate: Union[PredicateType, str],
        private_inputs: Mapping[str, Any],
        public_params: Optional[Mapping[str, Any]] = None,
    ) -> ProofResult:
        """
        Prove one predicate over ``private_inputs``.

        Missing public parameters are filled from the predicate defaults.

        Raises:
            ValidationError: If inputs are missing, mistyped or out of range.
        """
        predicate = self._coerce_predicate(predicate)
        params = self._resolve_params(predicate, public_params)
        predicates.validate_inputs(predicate, private_inputs, params)
        return await self._prove_validated(predicate, private_inputs, params)

    async def _prove_validated(
        self,
        predicate: PredicateType,
        private_inputs: Mapping[str, Any],
        params: Dict[str, Any],
    ) -> ProofResult:
        expected = predicates.evaluate(predicate, private_inputs, params)

        try:
            proof_bytes, verified = await self._prove_with_backend(predicate, private_inputs, params)
            artifact: Union[Real, Simulated] = Real(proof_bytes)
        except BackendUnavailableError as exc:
            logger.warning(f"[PROOF] {predicate.value}: degraded proof ({exc.reason})")
            artifact = Simulated(
                reason=exc.reason,
                proof_bytes=(
                    SIMULATED_PROOF_PREFIX
                    + predicate.value.upper().encode("ascii") + b"_"
                    + secrets.token_bytes(SIMULATED_PROOF_ENTROPY)
                ),
            )
            verified = expected
            self._degraded += 1

        self._generated += 1
        logger.info(
            f"[PROOF] {predicate.value}: verified={verified} "
            f"degraded={isinstance(artifact, Simulated)}"
        )
        return ProofResult(
            predicate=predicate,
            public_params=params,
            artifact=artifact,
            verified=verified,
        )

    async def _prove_with_backend(
        self,
        predicate: PredicateType,
        private_inputs: Mapping[str, Any],
        params: Mapping[str, Any],
    ) -> Tuple[bytes, bool]:
        backend = self._backends.get(predicate)
        if backend is None:
            raise BackendUnavailableError("prover", f"no circuit loaded for {predicate.value}")

        circuit_inputs = predicates.to_circuit_inputs(private_inputs, params)
        public_inputs = predicates.to_circuit_inputs({}, params)

        def _run() -> Tuple[bytes, bool]:
            witness = backend.execute(circuit_inputs)
            proof = bytes(backend.generate_proof(witness))
            return proof, bool(backend.verify_proof(proof, public_inputs))

        try:
            return await asyncio.to_thread(_run)
        except Exception as exc:
            raise BackendUnavailableError("prover", f"{type(exc).__name__}: {exc}") from exc

    async def generate_record_proof_set(
        self,
        record: Union[CaseRecord, ClinicalInputs],
        public_params: Optional[Mapping[PredicateType, Mapping[str, Any]]] = None,
    ) -> List[ProofResult]:
        """
        Prove all four predicates for one record, concurrently.

        Every predicate's inputs are validated before any backend call, so
        one bad field rejects the whole set. Results come back in
        ``PREDICATE_ORDER``.
        """
        clinical = record.clinical if isinstance(record, CaseRecord) else record
        inputs = predicates.record_inputs(clinical)
        overrides = public_params or {}

        params = {p: self._resolve_params(p, overrides.get(p)) for p in PREDICATE_ORDER}
        for p in PREDICATE_ORDER:
            predicates.validate_inputs(p, inputs[p], params[p])

        results = await asyncio.gather(*(
            self._prove_validated(p, inputs[p], params[p]) for p in PREDICATE_ORDER
        ))
        return list(results)

    # ── Verification ──

    async def verify_proof(self, result: ProofResult) -> bool:
        """
        Re-verify a proof against its circuit.

        Degraded proofs are not zero-knowledge proofs and never verify here.
        """
        if isinstance(result.artifact, Simulated):
            return False

        backend = self._backends.get(result.predicate)
        if backend is None:
            logger.warning(f"[PROOF] Cannot verify {result.predicate.value}: no circuit loaded")
            return False

        public_inputs = predicates.to_circuit_inputs({}, result.public_params)
        try:
            return bool(await asyncio.to_thread(
                backend.verify_proof, result.proof_bytes, public_inputs,
            ))
        except Exception as exc:
            logger.warning(f"[PROOF] Verification of {result.predicate.value} failed: {exc}")
            return False
