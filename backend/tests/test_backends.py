import json
import sys
import types

import pytest

from caseshield.core.crypto.bridge import circuit_artifact_path, discover_prover_backends
from caseshield.core.exceptions import CommitteeFormationError
from caseshield.infrastructure.backends import (
    StaticValidatorRegistry,
    load_compression_backend,
)
from caseshield.schemas.proof import PredicateType

from fakes import FakeCompressionBackend, FakeProver, make_settings


def _install(monkeypatch, name, **attrs):
    module = types.ModuleType(name)
    for key, value in attrs.items():
        setattr(module, key, value)
    monkeypatch.setitem(sys.modules, name, module)


# ═══════════════════════════════════════════════════════════════════════════════
# VALIDATOR REGISTRY
# ═══════════════════════════════════════════════════════════════════════════════

def test_registry_deduplicates_and_excludes():
    registry = StaticValidatorRegistry(["v1", "v2", "v1", "", "v3"])

    assert registry.pool == ["v1", "v2", "v3"]
    assert registry.select_committee(2, exclude=["v1"]) == ["v2", "v3"]


def test_registry_too_small():
    with pytest.raises(CommitteeFormationError) as exc_info:
        StaticValidatorRegistry(["v1", "v2"]).select_committee(3)
    assert exc_info.value.details == {"eligible": 2, "required": 3}


# ═══════════════════════════════════════════════════════════════════════════════
# PROVER DISCOVERY
# ═══════════════════════════════════════════════════════════════════════════════

def test_no_prover_module_means_no_backends():
    assert discover_prover_backends(make_settings()) == {}


def test_missing_prover_module_is_degraded():
    settings = make_settings(PROVER_MODULE="caseshield_missing_prover")
    assert discover_prover_backends(settings) == {}


def test_discovery_loads_available_circuits(monkeypatch, tmp_path):
    loaded = []

    def load_circuit(artifact):
        loaded.append(artifact["name"])
        return FakeProver()

    _install(monkeypatch, "fake_prover", load_circuit=load_circuit)
    for predicate in (PredicateType.SYMPTOM_IMPROVEMENT, PredicateType.COST_RANGE):
        path = circuit_artifact_path(str(tmp_path), predicate)
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"name": predicate.value}))

    backends = discover_prover_backends(
        make_settings(PROVER_MODULE="fake_prover", CIRCUIT_ARTIFACT_DIR=str(tmp_path)),
    )

    assert set(backends) == {PredicateType.SYMPTOM_IMPROVEMENT, PredicateType.COST_RANGE}
    assert loaded == ["symptom_improvement", "cost_range"]


def test_discovery_skips_circuits_that_fail_to_load(monkeypatch, tmp_path):
    def load_circuit(artifact):
        raise ValueError("bad bytecode")

    _install(monkeypatch, "broken_prover", load_circuit=load_circuit)
    path = circuit_artifact_path(str(tmp_path), PredicateType.DATA_COMPLETENESS)
    path.parent.mkdir(parents=True)
    path.write_text("{}")

    settings = make_settings(PROVER_MODULE="broken_prover", CIRCUIT_ARTIFACT_DIR=str(tmp_path))
    assert discover_prover_backends(settings) == {}


# ═══════════════════════════════════════════════════════════════════════════════
# COMPRESSION BACKEND
# ═══════════════════════════════════════════════════════════════════════════════

def test_compression_backend_unset():
    assert load_compression_backend(make_settings()) is None


def test_compression_backend_from_factory(monkeypatch):
    backend = FakeCompressionBackend()
    _install(monkeypatch, "fake_light", create_backend=lambda: backend)

    assert load_compression_backend(make_settings(COMPRESSION_MODULE="fake_light")) is backend


@pytest.mark.parametrize("attrs", [
    {},
    {"create_backend": lambda: object()},
])
def test_compression_backend_invalid(monkeypatch, attrs):
    _install(monkeypatch, "odd_light", **attrs)
    assert load_compression_backend(make_settings(COMPRESSION_MODULE="odd_light")) is None


def test_compression_factory_failure(monkeypatch):
    def create_backend():
        raise ConnectionError("no rpc")

    _install(monkeypatch, "down_light", create_backend=create_backend)
    assert load_compression_backend(make_settings(COMPRESSION_MODULE="down_light")) is None
