"""
Prover Bridge — discovery of compiled predicate circuits.

Attempts to import the prover module named by ``PROVER_MODULE`` and load
one compiled circuit per predicate from ``CIRCUIT_ARTIFACT_DIR``. Any
predicate whose circuit cannot be loaded is left out of the returned map;
ProofService then serves that predicate in degraded mode.

The prover module is expected to expose:
    load_circuit(artifact: dict) -> ProverBackend

Circuit artifacts are read from:
    <CIRCUIT_ARTIFACT_DIR>/<predicate>/target/<predicate>.json
"""

from __future__ import annotations

import importlib
import json
import logging
from pathlib import Path
from typing import Dict, Optional

from caseshield.core.config import Settings
from caseshield.infrastructure.backends import ProverBackend
from caseshield.schemas.proof import PREDICATE_ORDER, PredicateType

logger = logging.getLogger(__name__)


def circuit_artifact_path(artifact_dir: str, predicate: PredicateType) -> Path:
    name = predicate.value
    return Path(artifact_dir) / name / "target" / f"{name}.json"


def _try_load_prover_module(module_name: str) -> Optional[object]:
    if not module_name:
        logger.info("[PROOF] No prover module configured — all predicates run degraded")
        return None
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        logger.info(
            f"[PROOF] Prover module '{module_name}' not found ({exc}) — "
            f"all predicates run degraded"
        )
        return None
    if not callable(getattr(module, "load_circuit", None)):
        logger.warning(f"[PROOF] Prover module '{module_name}' has no load_circuit()")
        return None
    logger.info(f"[PROOF] Prover module '{module_name}' loaded")
    return module


def discover_prover_backends(settings: Settings) -> Dict[PredicateType, ProverBackend]:
    """
    Load every available predicate circuit.

    Missing artifacts and loader failures are logged per predicate and never
    raised: an empty map is a valid (fully degraded) configuration.
    """
    module = _try_load_prover_module(settings.PROVER_MODULE)
    if module is None:
        return {}

    backends: Dict[PredicateType, ProverBackend] = {}
    for predicate in PREDICATE_ORDER:
        path = circuit_artifact_path(settings.CIRCUIT_ARTIFACT_DIR, predicate)
        try:
            artifact = json.loads(path.read_text(encoding="utf-8"))
            backends[predicate] = module.load_circuit(artifact)
        except Exception as exc:
            logger.warning(
                f"[PROOF] Circuit '{predicate.value}' unavailable ({path}): {exc}"
            )
            continue
        logger.info(f"[PROOF] Circuit '{predicate.value}' loaded from {path}")

    return backends
