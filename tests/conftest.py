import pytest

from curve_synth import Checkpoint
from life_curve import clear_caches


@pytest.fixture(autouse=True)
def _fresh_caches():
    clear_caches()
    yield
    clear_caches()


def make_scenario_checkpoints() -> list[Checkpoint]:
    return [
        Checkpoint(1, 55, "E1", "甲子", "Steady childhood years"),
        Checkpoint(20, 60, "E2", "庚辰", "Studies begin to pay off"),
        Checkpoint(40, 75, "E3", "庚子", "Career peak approaching"),
        Checkpoint(60, 80, "E4", "庚申", "Harvest of long effort"),
        Checkpoint(80, 60, "E5", "庚辰", "Quiet later years"),
    ]


@pytest.fixture
def scenario_checkpoints():
    return make_scenario_checkpoints()


@pytest.fixture
def scenario_factory():
    """Builds fresh, content-equal checkpoint lists."""
    return make_scenario_checkpoints
