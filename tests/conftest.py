import pytest

from erasure_placement.interface import PlacementConfig
from tests.util import scenario_candidates


@pytest.fixture
def candidates():
    """
    The reference five node pool, a fresh copy per test so a test that
    reaches into the mapping cannot leak into another.
    """
    return scenario_candidates()


@pytest.fixture
def config():
    # A fixed seed keeps the random scheme reproducible across runs
    return PlacementConfig(seed=0xCAFE)
