import numpy as np
import pytest

from accelerator import Device
from grid import GridConfig


class FixedPoints:
    """Stands in for a generator state: every draw puts `inside` points at
    (0.1, 0.1) and the rest at (0.9, 0.9)."""

    def __init__(self, inside):
        self.inside = inside

    def random(self, shape):
        points = np.full(shape, 0.9)
        points[:self.inside] = 0.1
        return points


@pytest.fixture
def small_config():
    return GridConfig(workers_per_block=8, blocks_x=2, blocks_y=2, samples_per_worker=50)


@pytest.fixture
def device():
    with Device(num_workers=2) as device:
        yield device


@pytest.fixture(params=['in_order', 'reverse', 'random'])
def simulated_device(request):
    with Device(num_workers=2, interleaving=request.param, seed=7) as device:
        yield device


@pytest.fixture
def fixed_points():
    return FixedPoints
