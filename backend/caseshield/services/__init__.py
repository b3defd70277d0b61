"""
CaseShield privacy services.

    - ProofService:          predicate proofs (real or degraded)
    - CompressionService:    compact payload commitments
    - AccessControlService:  K-of-N committee gate
    - PrivacyOrchestrator:   end-to-end workflows and privacy scoring
    - build_services:        wire all of the above for one host
"""

from caseshield.services.proof_service import ProofService
from caseshield.services.compression_service import CompressionService, format_bytes
from caseshield.services.access_control import AccessControlService
from caseshield.services.expiry_sweeper import ExpirySweeper
from caseshield.services.orchestrator import (
    PrivacyOrchestrator,
    calculate_privacy_score,
    privacy_level,
)
from caseshield.services.container import PrivacyServices, build_services

__all__ = [
    "ProofService",
    "CompressionService",
    "format_bytes",
    "AccessControlService",
    "ExpirySweeper",
    "PrivacyOrchestrator",
    "calculate_privacy_score",
    "privacy_level",
    "PrivacyServices",
    "build_services",
]
