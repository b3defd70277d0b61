"""
PrivacyOrchestrator — composes proofs, compression and committee gating.

Workflows:
    submit_with_privacy       record → [proof set ‖ compression] → encryption bookkeeping
    validate_with_privacy     vote   → [proof set ‖ compression]
    request_research_access   requester → committee session + requirements

Proofs and compression run concurrently but every workflow reports its
operations in a fixed order (zk_proof, compression, encryption). A step
that raises a CaseShieldError is marked ``failed``; steps that depend on
it are ``skipped``; completed steps keep their share of the score.

Privacy score weights (capped at 100):
    encryption 20 · zk_proofs 30 · compression 20 · committee_gating 30
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from typing import Any, Awaitable, Dict, List, Optional

from caseshield.core.config import Settings, settings as default_settings
from caseshield.core.exceptions import (
    CaseShieldError,
    NotFoundError,
    StateError,
    ValidationError,
)
from caseshield.schemas.access import EncryptionScheme, RequesterType
from caseshield.schemas.compression import CompressedCommitment
from caseshield.schemas.privacy import (
    PRIVACY_SCORE_WEIGHTS,
    EnhancedAccessRequest,
    EnhancedRecord,
    EnhancedValidation,
    OperationService,
    OperationStatus,
    OperationType,
    PrivacyFeatures,
    PrivacyOperation,
    PrivacyOperationResult,
    PrivacyRequirements,
    ValidationInputs,
)
from caseshield.schemas.proof import PredicateType, ProofResult
from caseshield.schemas.record import CaseRecord, RecordPrivacyStats
from caseshield.services.access_control import AccessControlService
from caseshield.services.compression_service import CompressionService
from caseshield.services.proof_service import ProofService

logger = logging.getLogger(__name__)

MAX_PRIVACY_SCORE = 100
MIN_PROOFS_FOR_ACCESS = 2
CORE_PREDICATES = (PredicateType.SYMPTOM_IMPROVEMENT, PredicateType.DATA_COMPLETENESS)


def calculate_privacy_score(features: PrivacyFeatures) -> int:
    score = 0
    if features.has_encryption:
        score += PRIVACY_SCORE_WEIGHTS["encryption"]
    if features.proof_count > 0:
        score += PRIVACY_SCORE_WEIGHTS["zk_proofs"]
    if features.has_compression:
        score += PRIVACY_SCORE_WEIGHTS["compression"]
    if features.has_committee_gating:
        score += PRIVACY_SCORE_WEIGHTS["committee_gating"]
    return min(score, MAX_PRIVACY_SCORE)


def privacy_level(score: int) -> str:
    if score >= 90:
        return "Maximum"
    if score >= 70:
        return "High"
    if score >= 50:
        return "Standard"
    return "Basic"


def proof_digest(proof: ProofResult) -> str:
    return hashlib.sha256(proof.proof_bytes).hexdigest()


class PrivacyOrchestrator:
    """
    Usage:
        orchestrator = PrivacyOrchestrator(proofs, compression, access)
        result = await orchestrator.submit_with_privacy(record)
        result.privacy_score                       # 70
        ... committee approves a session for the record ...
        await orchestrator.privacy_score(record.record_id)   # 100
    """

    def __init__(
        self,
        proofs: ProofService,
        compression: CompressionService,
        access: AccessControlService,
        settings: Settings = default_settings,
    ) -> None:
        self.proofs = proofs
        self.compression = compression
        self.access = access
        self._settings = settings
        self._features: Dict[str, PrivacyFeatures] = {}
        self._records: Dict[str, EnhancedRecord] = {}

    # ── Internal helpers ──

    @staticmethod
    async def _run_steps(steps: List[Optional[Awaitable[Any]]]) -> List[Any]:
        """
        Await the non-None steps concurrently.

        CaseShieldErrors come back as values; anything else propagates.
        """
        pending = [s for s in steps if s is not None]
        outcomes = iter(await asyncio.gather(*pending, return_exceptions=True))
        results = [next(outcomes) if s is not None else None for s in steps]
        for outcome in results:
            if isinstance(outcome, BaseException) and not isinstance(outcome, CaseShieldError):
                raise outcome
        return results

    @staticmethod
    def _settle(op: PrivacyOperation, outcome: Any, errors: List[str]) -> bool:
        if isinstance(outcome, CaseShieldError):
            op.status = OperationStatus.FAILED
            op.metadata["error"] = outcome.to_dict()
            errors.append(str(outcome))
            return False
        op.status = OperationStatus.SUCCESS
        return True

    @staticmethod
    def _proof_metadata(proofs: List[ProofResult]) -> Dict[str, Any]:
        return {
            "circuits": len(proofs),
            "predicates": [p.predicate.value for p in proofs],
            "verified": sum(1 for p in proofs if p.verified),
            "degraded": sum(1 for p in proofs if p.degraded),
        }

    @staticmethod
    def _commitment_metadata(commitment: CompressedCommitment) -> Dict[str, Any]:
        return {
            "account_address": commitment.account_address,
            "original_size": commitment.original_size,
            "compressed_size": commitment.compressed_size,
            "achieved_ratio": commitment.achieved_ratio,
            "simulated": commitment.simulated,
        }

    # ═══════════════════════════════════════════════════════════════════════
    # SUBMISSION
    # ═══════════════════════════════════════════════════════════════════════

    async def submit_with_privacy(
        self,
        record: CaseRecord,
        generate_proofs: bool = True,
        compression_ratio: Optional[float] = None,
    ) -> PrivacyOperationResult:
        """
        Submit an encrypted record through the privacy pipeline.

        Raises:
            StateError: If this record id was already submitted successfully.
        """
        if record.record_id in self._records:
            raise StateError(
                f"Record {record.record_id} already submitted",
                details={"record_id": record.record_id},
            )

        proof_op = PrivacyOperation(
            type=OperationType.ZK_PROOF,
            service=OperationService.PROVER,
            status=OperationStatus.PENDING if generate_proofs else OperationStatus.SKIPPED,
            metadata={"purpose": "submission"},
        )
        compression_op = PrivacyOperation(
            type=OperationType.COMPRESSION,
            service=OperationService.COMPRESSOR,
            metadata={"purpose": "case_record"},
        )
        encryption_op = PrivacyOperation(
            type=OperationType.ENCRYPTION,
            service=OperationService.WALLET,
            metadata={"payload_size": len(record.encrypted_payload), "encrypted_by": "client"},
        )
        operations = [proof_op, compression_op, encryption_op]
        errors: List[str] = []

        proof_outcome, compression_outcome = await self._run_steps([
            self.proofs.generate_record_proof_set(record) if generate_proofs else None,
            self.compression.compress(
                record.encrypted_payload,
                compression_ratio,
                metadata={"record_id": record.record_id, "kind": "case_record"},
            ),
        ])

        proofs: List[ProofResult] = []
        if generate_proofs and self._settle(proof_op, proof_outcome, errors):
            proofs = proof_outcome
            proof_op.metadata.update(self._proof_metadata(proofs))

        commitment: Optional[CompressedCommitment] = None
        if self._settle(compression_op, compression_outcome, errors):
            commitment = compression_outcome
            compression_op.metadata.update(self._commitment_metadata(commitment))

        # The payload arrives already encrypted; this step only records it.
        encryption_op.status = OperationStatus.SUCCESS

        features = PrivacyFeatures(
            has_encryption=True,
            proof_count=len(proofs),
            has_compression=commitment is not None,
        )
        score = calculate_privacy_score(features)

        if errors:
            logger.warning(
                f"[ORCH] Submission of {record.record_id} partially failed "
                f"(score={score}): {errors[0]}"
            )
            return PrivacyOperationResult(
                success=False,
                privacy_score=score,
                operations=operations,
                error=errors[0],
            )

        enhanced = EnhancedRecord(
            record_id=record.record_id,
            submitter=record.submitter,
            payload_digest=commitment.payload_digest,
            commitment=commitment,
            proofs=proofs,
            proof_digests=[proof_digest(p) for p in proofs],
            privacy_score=score,
        )
        self._features[record.record_id] = features
        self._records[record.record_id] = enhanced

        logger.info(
            f"[ORCH] Record {record.record_id} submitted — proofs={len(proofs)} "
            f"compressed={commitment.compressed_size}B score={score} ({privacy_level(score)})"
        )
        return PrivacyOperationResult(
            success=True,
            privacy_score=score,
            operations=operations,
            enhanced_record=enhanced,
        )

    # ═══════════════════════════════════════════════════════════════════════
    # VALIDATION
    # ═══════════════════════════════════════════════════════════════════════

    async def validate_with_privacy(
        self,
        validator: str,
        record_id: str,
        validation_inputs: ValidationInputs,
        compression_ratio: Optional[float] = None,
    ) -> PrivacyOperationResult:
        """
        Prove and compress a validator's vote on a submitted record.

        Raises:
            ValidationError: Missing validator identity.
            NotFoundError: The record was never submitted.
        """
        if not validator:
            raise ValidationError("Validator is required", field="validator")
        self._require_record(record_id)

        proof_op = PrivacyOperation(
            type=OperationType.ZK_PROOF,
            service=OperationService.PROVER,
            metadata={"purpose": "validation"},
        )
        compression_op = PrivacyOperation(
            type=OperationType.COMPRESSION,
            service=OperationService.COMPRESSOR,
            metadata={"purpose": "validation_vote"},
        )
        operations = [proof_op, compression_op]
        errors: List[str] = []

        vote = json.dumps(
            {"record_id": record_id, "validator": validator, "approve": validation_inputs.approve},
            sort_keys=True,
        ).encode("utf-8")

        proof_outcome, compression_outcome = await self._run_steps([
            self.proofs.generate_record_proof_set(validation_inputs.clinical),
            self.compression.compress(
                vote,
                compression_ratio,
                metadata={"record_id": record_id, "validator": validator, "kind": "validation_vote"},
            ),
        ])

        proofs: List[ProofResult] = []
        if self._settle(proof_op, proof_outcome, errors):
            proofs = proof_outcome
            proof_op.metadata.update(self._proof_metadata(proofs))

        commitment: Optional[CompressedCommitment] = None
        if self._settle(compression_op, compression_outcome, errors):
            commitment = compression_outcome
            compression_op.metadata.update(self._commitment_metadata(commitment))

        score = calculate_privacy_score(PrivacyFeatures(
            proof_count=len(proofs),
            has_compression=commitment is not None,
        ))

        if errors:
            logger.warning(
                f"[ORCH] Validation of {record_id} by {validator} partially failed: {errors[0]}"
            )
            return PrivacyOperationResult(
                success=False, privacy_score=score, operations=operations, error=errors[0],
            )

        validation = EnhancedValidation(
            record_id=record_id,
            validator=validator,
            approve=validation_inputs.approve,
            proofs=proofs,
            compressed_vote=commitment,
            privacy_score=score,
        )
        logger.info(
            f"[ORCH] Validation of {record_id} by {validator} recorded "
            f"(approve={validation_inputs.approve}, score={score})"
        )
        return PrivacyOperationResult(
            success=True, privacy_score=score, operations=operations, validation=validation,
        )

    # ═══════════════════════════════════════════════════════════════════════
    # RESEARCH ACCESS
    # ═══════════════════════════════════════════════════════════════════════

    async def request_research_access(
        self,
        requester: str,
        record_id: str,
        justification: str,
        record_privacy_stats: Optional[RecordPrivacyStats] = None,
        preferred_threshold: Optional[int] = None,
        requester_type: RequesterType = RequesterType.RESEARCHER,
        encryption_scheme: EncryptionScheme = EncryptionScheme.AES_256,
    ) -> PrivacyOperationResult:
        """
        Open a committee session for ``record_id`` and state what the
        record still needs before access is meaningful.

        ``record_privacy_stats`` defaults to what this orchestrator knows
        about the record. Errors from AccessControlService propagate.
        """
        stats = record_privacy_stats or self.record_stats(record_id)

        session = await self.access.request_access(
            requester,
            record_id,
            justification,
            preferred_threshold=preferred_threshold,
            requester_type=requester_type,
            encryption_scheme=encryption_scheme,
        )

        required_proofs: List[PredicateType] = []
        if stats.proof_count < MIN_PROOFS_FOR_ACCESS:
            required_proofs = [p for p in CORE_PREDICATES if p not in stats.proof_types]

        requirements = PrivacyRequirements(
            min_validators=session.threshold,
            min_proofs=MIN_PROOFS_FOR_ACCESS,
            compression_required=True,
        )
        committee_op = PrivacyOperation(
            type=OperationType.COMMITTEE,
            service=OperationService.ACCESS_CONTROL,
            status=OperationStatus.SUCCESS,
            metadata={
                "session_id": session.id,
                "threshold": session.threshold,
                "committee_size": len(session.committee),
                "expires_at": session.expires_at.isoformat(),
            },
        )

        logger.info(
            f"[ORCH] Research access requested for {record_id} by {requester} — "
            f"session={session.id[:12]}... missing_proofs={[p.value for p in required_proofs]}"
        )
        return PrivacyOperationResult(
            success=True,
            privacy_score=stats.privacy_score,
            operations=[committee_op],
            access_request=EnhancedAccessRequest(
                session=session,
                required_proofs=required_proofs,
                requirements=requirements,
            ),
        )

    # ═══════════════════════════════════════════════════════════════════════
    # SCORING & STATUS
    # ═══════════════════════════════════════════════════════════════════════

    def _require_record(self, record_id: str) -> EnhancedRecord:
        record = self._records.get(record_id)
        if record is None:
            raise NotFoundError(f"Record {record_id} not found", details={"record_id": record_id})
        return record

    def get_record(self, record_id: str) -> Optional[EnhancedRecord]:
        return self._records.get(record_id)

    def record_stats(self, record_id: str) -> RecordPrivacyStats:
        record = self._records.get(record_id)
        features = self._features.get(record_id)
        if record is None or features is None:
            return RecordPrivacyStats()
        return RecordPrivacyStats(
            has_compression=features.has_compression,
            proof_count=features.proof_count,
            proof_types=[p.predicate for p in record.proofs],
            privacy_score=calculate_privacy_score(features),
        )

    async def privacy_score(self, record_id: str) -> int:
        """
        Current score for a submitted record, including committee gating
        once any linked session has reached APPROVED.

        Raises:
            NotFoundError: The record was never submitted.
        """
        self._require_record(record_id)
        features = self._features[record_id].model_copy(update={
            "has_committee_gating": await self.access.has_approved_session(record_id),
        })
        return calculate_privacy_score(features)

    def service_status(self) -> Dict[str, Any]:
        proof_stats = self.proofs.stats()
        return {
            "prover": {
                "predicates": {
                    meta.type.value: "real" if self.proofs.has_backend(meta.type) else "degraded"
                    for meta in self.proofs.available_predicates()
                },
                "generated": proof_stats.generated,
                "degraded": proof_stats.degraded,
            },
            "compression": {
                "backend": "real" if self.compression.has_backend else "simulated",
                "max_ratio": self.compression.max_ratio,
                **self.compression.stats().model_dump(),
            },
            "access_control": {
                "key_reconstructor": self.access.has_key_reconstructor,
                "default_threshold": self._settings.DEFAULT_THRESHOLD,
                "session_timeout_hours": self._settings.SESSION_TIMEOUT_HOURS,
            },
            "records": len(self._records),
        }

    def validate_configuration(self) -> Dict[str, Any]:
        """Report degraded backends and committee capacity problems."""
        errors: List[str] = []
        warnings: List[str] = []
        recommendations: List[str] = []

        degraded = [
            meta.type.value for meta in self.proofs.available_predicates()
            if not self.proofs.has_backend(meta.type)
        ]
        if degraded:
            warnings.append(f"Predicates without a circuit: {', '.join(degraded)}")
            recommendations.append(
                "Set CASESHIELD_PROVER_MODULE and compile circuits into CIRCUIT_ARTIFACT_DIR"
            )
        if not self.compression.has_backend:
            warnings.append("Compression commitments are simulated")
            recommendations.append("Set CASESHIELD_COMPRESSION_MODULE to a compression backend")
        if not self.access.has_key_reconstructor:
            warnings.append("No key reconstructor; decrypt returns approvals only")

        pool = getattr(self.access.registry, "pool", None)
        needed = max(self._settings.DEFAULT_THRESHOLD + 2, self._settings.DEFAULT_COMMITTEE_SIZE)
        if pool is not None and len(pool) < needed:
            errors.append(
                f"Validator registry has {len(pool)} validators, default committee needs {needed}"
            )
            recommendations.append("Add validators to CASESHIELD_VALIDATOR_IDS")

        return {
            "valid": not errors,
            "errors": errors,
            "warnings": warnings,
            "recommendations": recommendations,
        }
