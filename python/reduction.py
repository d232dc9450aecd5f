"""Two phase block reduction.

Phase one is a halving tree over a shared buffer with a block-wide barrier
after every step. Once the active window is no wider than the hand-off
threshold, the leading lanes finish with a register exchange that needs no
barrier. Each phase comes in two forms: a lock-step form that advances every
worker of the block together with numpy, and a per-worker program that runs
under block_scheduler.BlockScheduler.
"""
from block_scheduler import BARRIER, ShuffleDown

HANDOFF_WIDTH = 32


def _no_barrier():
    pass


def block_window(workers_per_block, threshold=HANDOFF_WIDTH):
    return min(threshold, workers_per_block // 2)


def tree_reduce(buffer, threshold, barrier=None):
    barrier = barrier or _no_barrier
    stride = len(buffer) // 2
    while stride > threshold:
        buffer[:stride] += buffer[stride:2 * stride]
        barrier()
        stride //= 2
    return stride


def tree_reduce_worker(buffer, tid, threshold):
    stride = len(buffer) // 2
    while stride > threshold:
        if tid < stride:
            partial = buffer[tid + stride]
            yield
            buffer[tid] += partial
        yield BARRIER
        stride //= 2
    return stride


def shuffle_down(lanes, offset):
    shifted = lanes.copy()
    if offset < len(lanes):
        shifted[:len(lanes) - offset] = lanes[offset:]
    return shifted


def exchange_reduce(lanes):
    offset = len(lanes) // 2
    while offset > 0:
        lanes = lanes + shuffle_down(lanes, offset)
        offset //= 2
    return lanes


def exchange_reduce_worker(value, lane, width):
    offset = width // 2
    while offset > 0:
        value += yield ShuffleDown(value, offset, width)
        offset //= 2
    return value


def reduce_block(buffer, threshold=HANDOFF_WIDTH, barrier=None):
    """Reduce one block's buffer in lock-step and return the block sum."""
    if len(buffer) == 1:
        return buffer[0]
    window = block_window(len(buffer), threshold)
    tree_reduce(buffer, window, barrier)
    lanes = buffer[:window] + buffer[window:2 * window]
    return exchange_reduce(lanes)[0]


def reduce_block_worker(buffer, tid, threshold=HANDOFF_WIDTH):
    """Per-worker form of reduce_block; lane 0 returns the block sum.

    Workers outside the final window drop out after the tree phase and
    return None.
    """
    if len(buffer) == 1:
        return buffer[0]
    window = block_window(len(buffer), threshold)
    yield from tree_reduce_worker(buffer, tid, window)
    if tid >= window:
        return None
    value = buffer[tid] + buffer[tid + window]
    return (yield from exchange_reduce_worker(value, tid, window))
