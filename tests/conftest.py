import numpy as np
import pytest

from canopy_field import Config, Simulation, Tuning
from canopy_genome import GENE_COUNT


@pytest.fixture
def midpoint_genes():
    genes = np.full(GENE_COUNT, 0.5)
    genes.flags.writeable = False
    return genes


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def tuning():
    return Tuning()


@pytest.fixture
def empty_sim():
    """64×64 field with no founders."""
    return Simulation(Config(grid_width=64, grid_height=64, initial_population=0),
                      rng=np.random.default_rng(7))
