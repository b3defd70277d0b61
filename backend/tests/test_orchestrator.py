import json

import pytest

from caseshield.core.exceptions import NotFoundError, StateError, ValidationError
from caseshield.schemas.privacy import (
    OperationStatus,
    OperationType,
    PrivacyFeatures,
    ValidationInputs,
)
from caseshield.schemas.proof import PREDICATE_ORDER, PredicateType
from caseshield.schemas.record import RecordPrivacyStats
from caseshield.services.container import build_services
from caseshield.services.orchestrator import calculate_privacy_score, privacy_level

from fakes import (
    JUSTIFICATION,
    VALIDATORS,
    FakeCompressionBackend,
    FakeProver,
    committee_ids,
    make_clinical,
    make_record,
    make_settings,
)


def _ops(result):
    return [(op.type, op.status) for op in result.operations]


# ═══════════════════════════════════════════════════════════════════════════════
# SCORING
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.mark.parametrize("features,expected", [
    (PrivacyFeatures(), 0),
    (PrivacyFeatures(has_encryption=True), 20),
    (PrivacyFeatures(has_encryption=True, proof_count=4, has_compression=True), 70),
    (PrivacyFeatures(proof_count=1), 30),
    (PrivacyFeatures(has_encryption=True, proof_count=4, has_compression=True, has_committee_gating=True), 100),
])
def test_privacy_score_weights(features, expected):
    assert calculate_privacy_score(features) == expected


@pytest.mark.parametrize("score,level", [(100, "Maximum"), (90, "Maximum"), (70, "High"), (50, "Standard"), (40, "Basic")])
def test_privacy_level(score, level):
    assert privacy_level(score) == level


# ═══════════════════════════════════════════════════════════════════════════════
# SUBMISSION
# ═══════════════════════════════════════════════════════════════════════════════

async def test_degraded_submission_scores_seventy(services):
    result = await services.orchestrator.submit_with_privacy(make_record())

    assert result.success
    assert result.error is None
    assert result.privacy_score == 70
    assert _ops(result) == [
        (OperationType.ZK_PROOF, OperationStatus.SUCCESS),
        (OperationType.COMPRESSION, OperationStatus.SUCCESS),
        (OperationType.ENCRYPTION, OperationStatus.SUCCESS),
    ]
    assert result.operations[0].metadata["degraded"] == 4
    assert result.operations[1].metadata["simulated"] is True

    record = result.enhanced_record
    assert [p.predicate for p in record.proofs] == list(PREDICATE_ORDER)
    assert len(record.proof_digests) == 4
    assert record.commitment.original_size == 2048
    assert record.commitment.compressed_size == 205
    assert services.orchestrator.get_record("rec-1") is record


async def test_submission_never_exposes_clinical_values(services):
    result = await services.orchestrator.submit_with_privacy(make_record())

    encoded = json.dumps(result.to_dict())
    assert "baseline_severity" not in encoded
    assert "cost_usd" not in encoded
    for proof in result.to_dict()["enhanced_record"]["proofs"]:
        assert proof["zero_knowledge"] is False


async def test_full_flow_reaches_maximum_score(services):
    orchestrator = services.orchestrator
    await orchestrator.submit_with_privacy(make_record())
    assert await orchestrator.privacy_score("rec-1") == 70

    access = await orchestrator.request_research_access("researcher-1", "rec-1", JUSTIFICATION)
    session = access.access_request.session
    for vid in committee_ids(session)[:3]:
        await services.access.approve(session.id, vid)

    assert await orchestrator.privacy_score("rec-1") == 100


async def test_submission_without_proofs(services):
    result = await services.orchestrator.submit_with_privacy(make_record(), generate_proofs=False)

    assert result.success
    assert result.privacy_score == 40
    assert result.operations[0].status is OperationStatus.SKIPPED
    assert result.enhanced_record.proofs == []


async def test_invalid_clinical_values_fail_proof_step(services):
    result = await services.orchestrator.submit_with_privacy(make_record(baseline_severity=11))

    assert not result.success
    assert result.privacy_score == 40
    assert _ops(result) == [
        (OperationType.ZK_PROOF, OperationStatus.FAILED),
        (OperationType.COMPRESSION, OperationStatus.SUCCESS),
        (OperationType.ENCRYPTION, OperationStatus.SUCCESS),
    ]
    assert result.operations[0].metadata["error"]["error_code"] == "VALIDATION_ERROR"
    assert result.error.startswith("VALIDATION_ERROR")
    assert result.enhanced_record is None
    assert services.orchestrator.get_record("rec-1") is None


@pytest.mark.parametrize("cost", [float("inf"), float("nan")])
async def test_non_finite_cost_fails_proof_step(services, cost):
    result = await services.orchestrator.submit_with_privacy(make_record(cost_usd=cost))

    assert not result.success
    assert result.privacy_score == 40
    assert result.operations[0].status is OperationStatus.FAILED
    assert result.operations[0].metadata["error"]["details"]["field"] == "cost_usd"
    assert result.operations[1].status is OperationStatus.SUCCESS
    assert services.orchestrator.get_record("rec-1") is None


async def test_invalid_ratio_fails_compression_step(services):
    result = await services.orchestrator.submit_with_privacy(make_record(), compression_ratio=0.5)

    assert not result.success
    assert result.privacy_score == 50
    assert result.operations[0].status is OperationStatus.SUCCESS
    assert result.operations[1].status is OperationStatus.FAILED


async def test_failed_submission_can_be_retried(services):
    orchestrator = services.orchestrator
    await orchestrator.submit_with_privacy(make_record(), compression_ratio=0.5)

    retry = await orchestrator.submit_with_privacy(make_record())
    assert retry.success


async def test_resubmission_rejected(services):
    await services.orchestrator.submit_with_privacy(make_record())
    with pytest.raises(StateError):
        await services.orchestrator.submit_with_privacy(make_record())


async def test_submission_with_real_backends(settings, clock):
    services = build_services(
        settings,
        prover_backends={p: FakeProver() for p in PREDICATE_ORDER},
        compression_backend=FakeCompressionBackend(),
        clock=clock,
    )

    result = await services.orchestrator.submit_with_privacy(make_record(), compression_ratio=40)

    assert result.privacy_score == 70
    assert result.operations[0].metadata["degraded"] == 0
    assert result.operations[1].metadata["simulated"] is False
    assert result.enhanced_record.commitment.achieved_ratio == 40


# ═══════════════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════════════

async def test_validation_scores_proofs_and_compression(services):
    orchestrator = services.orchestrator
    await orchestrator.submit_with_privacy(make_record())

    result = await orchestrator.validate_with_privacy(
        "validator-0", "rec-1", ValidationInputs(approve=False, clinical=make_clinical()),
    )

    assert result.success
    assert result.privacy_score == 50
    assert [op.type for op in result.operations] == [OperationType.ZK_PROOF, OperationType.COMPRESSION]
    assert result.validation.approve is False
    assert result.validation.compressed_vote.simulated


async def test_validation_requires_submitted_record(services):
    with pytest.raises(NotFoundError):
        await services.orchestrator.validate_with_privacy(
            "validator-0", "rec-404", ValidationInputs(clinical=make_clinical()),
        )


async def test_validation_requires_validator(services):
    await services.orchestrator.submit_with_privacy(make_record())
    with pytest.raises(ValidationError):
        await services.orchestrator.validate_with_privacy(
            "", "rec-1", ValidationInputs(clinical=make_clinical()),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# RESEARCH ACCESS
# ═══════════════════════════════════════════════════════════════════════════════

async def test_research_access_lists_missing_proofs(services):
    result = await services.orchestrator.request_research_access(
        "researcher-1", "rec-unknown", JUSTIFICATION,
    )

    request = result.access_request
    assert result.success
    assert result.privacy_score == 0
    assert request.required_proofs == [
        PredicateType.SYMPTOM_IMPROVEMENT, PredicateType.DATA_COMPLETENESS,
    ]
    assert request.requirements.min_validators == 3
    assert result.operations[0].type is OperationType.COMMITTEE
    assert result.operations[0].metadata["committee_size"] == 5


async def test_research_access_uses_supplied_stats(services):
    stats = RecordPrivacyStats(
        proof_count=1,
        proof_types=[PredicateType.SYMPTOM_IMPROVEMENT],
        privacy_score=50,
    )

    result = await services.orchestrator.request_research_access(
        "researcher-1", "rec-1", JUSTIFICATION, record_privacy_stats=stats, preferred_threshold=2,
    )

    assert result.access_request.required_proofs == [PredicateType.DATA_COMPLETENESS]
    assert result.access_request.requirements.min_validators == 2
    assert result.privacy_score == 50


async def test_research_access_on_submitted_record(services):
    orchestrator = services.orchestrator
    await orchestrator.submit_with_privacy(make_record())

    result = await orchestrator.request_research_access("researcher-1", "rec-1", JUSTIFICATION)

    assert result.access_request.required_proofs == []
    assert result.privacy_score == 70


async def test_research_access_propagates_errors(services):
    with pytest.raises(ValidationError):
        await services.orchestrator.request_research_access("researcher-1", "rec-1", "please")


async def test_privacy_score_unknown_record(services):
    with pytest.raises(NotFoundError):
        await services.orchestrator.privacy_score("rec-404")


# ═══════════════════════════════════════════════════════════════════════════════
# STATUS & CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

async def test_service_status(services):
    await services.orchestrator.submit_with_privacy(make_record())

    status = services.orchestrator.service_status()

    assert set(status["prover"]["predicates"].values()) == {"degraded"}
    assert status["prover"]["generated"] == 4
    assert status["compression"]["backend"] == "simulated"
    assert status["compression"]["total_compressed"] == 1
    assert status["records"] == 1


def test_validate_configuration_degraded_but_valid(services):
    report = services.orchestrator.validate_configuration()

    assert report["valid"]
    assert report["errors"] == []
    assert any("simulated" in w for w in report["warnings"])


def test_validate_configuration_small_pool(clock):
    services = build_services(
        make_settings(VALIDATOR_IDS=VALIDATORS[:3]), prover_backends={}, clock=clock,
    )

    report = services.orchestrator.validate_configuration()

    assert not report["valid"]
    assert "needs 5" in report["errors"][0]
