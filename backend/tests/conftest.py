import pytest

from caseshield.infrastructure.backends import StaticValidatorRegistry
from caseshield.infrastructure.session_store import InMemorySessionStore
from caseshield.services.access_control import AccessControlService
from caseshield.services.compression_service import CompressionService
from caseshield.services.container import build_services
from caseshield.services.proof_service import ProofService

from fakes import VALIDATORS, FakeClock, make_settings


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def registry():
    return StaticValidatorRegistry(VALIDATORS)


@pytest.fixture
def access(store, registry, settings, clock):
    return AccessControlService(store, registry, settings=settings, clock=clock)


@pytest.fixture
def proof_service(settings):
    return ProofService(settings=settings)


@pytest.fixture
def compression(settings):
    return CompressionService(settings=settings)


@pytest.fixture
def services(settings, clock):
    """Fully degraded wiring: no circuits, no compression backend."""
    return build_services(settings, prover_backends={}, clock=clock)
