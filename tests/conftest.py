from pathlib import Path
from typing import Callable

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from captra.host import HostState
from captra.manifest import CapabilityManifest, load_manifest

FIXTURES = Path(__file__).resolve().parent / "fixtures"
EXAMPLE_MANIFEST = FIXTURES / "manifest.json"


@pytest.fixture
def example_manifest() -> CapabilityManifest:
    return load_manifest(EXAMPLE_MANIFEST)


@pytest.fixture
def make_host(example_manifest: CapabilityManifest) -> Callable[..., HostState]:
    """Build a HostState with a fixed seed and a fresh Ed25519 key."""

    def _make(seed: int = 12_345, manifest: CapabilityManifest | None = None) -> HostState:
        return HostState(manifest or example_manifest, seed, Ed25519PrivateKey.generate())

    return _make
