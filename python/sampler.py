import numpy as np

from accelerator import kernel
from block_scheduler import BARRIER
from reduction import reduce_block, reduce_block_worker


def draw_pairs(generator, count):
    points = generator.random((count, 2))
    return points[:, 0], points[:, 1]


def count_inside_exclusive(x, y):
    return np.count_nonzero(x * x + y * y < 1.0, axis=-1)


def count_inside_inclusive(x, y):
    return np.count_nonzero(x * x + y * y <= 1.0, axis=-1)


def _block_slot(block):
    return block.y * block.grid[0] + block.x


@kernel(shared_per_worker=1)
def sample_reduce(block, states, partial_sums, samples_per_worker):
    table = states.data
    base = _block_slot(block) * block.dim
    generators = table[base:base + block.dim]
    shared = block.shared

    # first batch: points on the circle count as outside
    batch = np.stack([g.random((samples_per_worker, 2)) for g in generators])
    shared[:] = count_inside_exclusive(batch[..., 0], batch[..., 1])

    # second batch from the advanced states: points on the circle count as inside
    batch = np.stack([g.random((samples_per_worker, 2)) for g in generators])
    shared[:] += count_inside_inclusive(batch[..., 0], batch[..., 1])

    partial_sums.data[_block_slot(block)] = reduce_block(shared)


@sample_reduce.worker
def sample_reduce_worker(block, tid, states, partial_sums, samples_per_worker):
    generator = states.data[_block_slot(block) * block.dim + tid]
    shared = block.shared

    shared[tid] = count_inside_exclusive(*draw_pairs(generator, samples_per_worker))
    yield
    shared[tid] += count_inside_inclusive(*draw_pairs(generator, samples_per_worker))
    yield BARRIER

    total = yield from reduce_block_worker(shared, tid)
    if tid == 0:
        partial_sums.data[_block_slot(block)] = total
    return total


@kernel
def collapse(block, partial_sums):
    sums = partial_sums.data
    total = 0.0
    for value in sums:
        total += value
    sums[0] = total
