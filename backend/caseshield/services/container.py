"""
Service wiring.

``build_services`` constructs every service exactly once for a host
process (the FastAPI app, a worker, a test). Backends are discovered from
settings unless passed in explicitly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from caseshield.core.config import Settings, settings as default_settings
from caseshield.core.crypto.bridge import discover_prover_backends
from caseshield.infrastructure.backends import (
    CompressionBackend,
    KeyReconstructor,
    ProverBackend,
    StaticValidatorRegistry,
    ValidatorRegistry,
    load_compression_backend,
)
from caseshield.infrastructure.session_store import InMemorySessionStore, SessionStore
from caseshield.schemas.proof import PredicateType
from caseshield.services.access_control import AccessControlService, Clock, utc_now
from caseshield.services.compression_service import CompressionService
from caseshield.services.expiry_sweeper import ExpirySweeper
from caseshield.services.orchestrator import PrivacyOrchestrator
from caseshield.services.proof_service import ProofService

logger = logging.getLogger(__name__)


@dataclass
class PrivacyServices:
    proofs: ProofService
    compression: CompressionService
    access: AccessControlService
    orchestrator: PrivacyOrchestrator
    sweeper: ExpirySweeper


def build_services(
    settings: Settings = default_settings,
    *,
    prover_backends: Optional[Mapping[PredicateType, ProverBackend]] = None,
    compression_backend: Optional[CompressionBackend] = None,
    registry: Optional[ValidatorRegistry] = None,
    store: Optional[SessionStore] = None,
    key_reconstructor: Optional[KeyReconstructor] = None,
    clock: Clock = utc_now,
) -> PrivacyServices:
    if prover_backends is None:
        prover_backends = discover_prover_backends(settings)
    if compression_backend is None:
        compression_backend = load_compression_backend(settings)

    proofs = ProofService(prover_backends, settings=settings)
    compression = CompressionService(compression_backend, settings=settings)
    access = AccessControlService(
        store or InMemorySessionStore(),
        registry or StaticValidatorRegistry(settings.VALIDATOR_IDS),
        settings=settings,
        clock=clock,
        key_reconstructor=key_reconstructor,
    )
    orchestrator = PrivacyOrchestrator(proofs, compression, access, settings=settings)
    sweeper = ExpirySweeper(access, interval=settings.SWEEP_INTERVAL_SECONDS)

    logger.info(
        f"[ORCH] Services built — circuits={len(prover_backends)}/4 "
        f"compression={'real' if compression.has_backend else 'simulated'}"
    )
    return PrivacyServices(
        proofs=proofs,
        compression=compression,
        access=access,
        orchestrator=orchestrator,
        sweeper=sweeper,
    )
