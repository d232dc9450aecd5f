import itertools
import time

import numpy as np

from accelerator import kernel

# each sequence index owns a disjoint run of 2**128 Philox counters
SEQUENCE_SHIFT = 128

_seed_calls = itertools.count()


def time_seed():
    # the counter keeps two cycles within one clock tick apart
    return (time.time_ns() << 32) | (next(_seed_calls) & 0xFFFFFFFF)


def derive_key(seed):
    return np.random.SeedSequence(seed).generate_state(2, np.uint64)


def make_state(key, sequence, offset=0):
    return np.random.Generator(np.random.Philox(key=key, counter=(sequence << SEQUENCE_SHIFT) + offset))


def _sequence_base(block):
    grid_x = block.grid[0]
    return (block.y * grid_x + block.x) * block.dim


@kernel
def seed_states(block, states, key):
    table = states.data
    base = _sequence_base(block)
    for tid in range(block.dim):
        table[base + tid] = make_state(key, base + tid)


@seed_states.worker
def seed_states_worker(block, tid, states, key):
    sequence = _sequence_base(block) + tid
    states.data[sequence] = make_state(key, sequence)
    yield
