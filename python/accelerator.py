import os
import threading
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor, wait

import numpy as np

from block_scheduler import BlockScheduler

DEFAULT_MEMORY_BYTES = 2 * 1024 ** 3
# size of one Philox generator state slot
STATE_BYTES = 64


class AcceleratorError(RuntimeError):
    pass


class AllocationError(AcceleratorError):
    pass


class LaunchError(AcceleratorError):
    pass


Block = namedtuple('Block', ['x', 'y', 'dim', 'grid', 'shared'])


class Kernel:
    def __init__(self, block_fn, shared_per_worker=0):
        self.block_fn = block_fn
        self.worker_fn = None
        self.shared_per_worker = shared_per_worker
        self.name = block_fn.__name__

    def worker(self, fn):
        self.worker_fn = fn
        return fn

    def __repr__(self):
        return f"<Kernel {self.name}>"


def kernel(fn=None, shared_per_worker=0):
    if fn is None:
        return lambda f: Kernel(f, shared_per_worker)
    return Kernel(fn, shared_per_worker)


class DeviceArray:
    def __init__(self, data, nbytes):
        self._data = data
        self.nbytes = nbytes
        self.freed = False

    @property
    def data(self):
        if self.freed:
            raise AcceleratorError("device array used after free")
        return self._data

    def __len__(self):
        return len(self.data)


class Device:
    def __init__(self, memory_bytes=DEFAULT_MEMORY_BYTES, num_workers=None,
                 max_threads_per_block=1024, interleaving=None, seed=0):
        self.memory_bytes = memory_bytes
        self.num_workers = num_workers or os.cpu_count() or 1
        self.max_threads_per_block = max_threads_per_block
        self.interleaving = interleaving
        self.seed = seed
        self.used_bytes = 0
        self._lock = threading.Lock()
        self._stream = ThreadPoolExecutor(max_workers=1)
        self._pool = ThreadPoolExecutor(max_workers=self.num_workers)
        self._pending = []
        self._error = None
        self._launches = 0

    def _reserve(self, count, item_bytes):
        if isinstance(count, bool) or not isinstance(count, (int, np.integer)) or count <= 0:
            raise AllocationError(f"invalid allocation size: {count!r}")
        nbytes = int(count) * item_bytes
        with self._lock:
            if self.used_bytes + nbytes > self.memory_bytes:
                raise AllocationError(
                    f"out of device memory: requested {nbytes} bytes, "
                    f"{self.memory_bytes - self.used_bytes} of {self.memory_bytes} available")
            self.used_bytes += nbytes
        return nbytes

    def allocate(self, count, dtype=np.float64):
        dtype = np.dtype(dtype)
        nbytes = self._reserve(count, dtype.itemsize)
        return DeviceArray(np.zeros(count, dtype=dtype), nbytes)

    def allocate_states(self, count):
        nbytes = self._reserve(count, STATE_BYTES)
        return DeviceArray(np.empty(count, dtype=object), nbytes)

    def free(self, array):
        if array.freed:
            raise AcceleratorError("device array freed twice")
        array.freed = True
        array._data = None
        with self._lock:
            self.used_bytes -= array.nbytes

    def launch(self, kern, grid, block, *args):
        grid_x, grid_y = grid
        if grid_x <= 0 or grid_y <= 0:
            raise LaunchError(f"{kern.name}: invalid grid {grid_x}x{grid_y}")
        if block <= 0 or block > self.max_threads_per_block:
            raise LaunchError(
                f"{kern.name}: invalid block size {block}, limit is {self.max_threads_per_block}")
        launch_id = self._launches
        self._launches += 1
        future = self._stream.submit(self._run_grid, kern, (grid_x, grid_y), block, args, launch_id)
        self._pending.append(future)
        return future

    def _run_grid(self, kern, grid, dim, args, launch_id):
        if self._error is not None:
            return
        blocks = [(x, y) for y in range(grid[1]) for x in range(grid[0])]
        num_chunks = min(self.num_workers, len(blocks))
        blocks_per_chunk = len(blocks) // num_chunks

        futures = []
        for i in range(num_chunks):
            start = i * blocks_per_chunk
            end = start + blocks_per_chunk if i < num_chunks - 1 else len(blocks)
            futures.append(self._pool.submit(
                self._run_blocks, kern, grid, dim, args, blocks[start:end], launch_id))

        # every block of the launch finishes before a failure is reported
        wait(futures)
        try:
            for future in futures:
                future.result()
        except Exception as exc:
            error = LaunchError(f"{kern.name} failed: {exc}")
            self._error = error
            raise error from exc

    def _run_blocks(self, kern, grid, dim, args, blocks, launch_id):
        for x, y in blocks:
            shared = np.zeros(dim * kern.shared_per_worker, dtype=np.float64)
            block = Block(x, y, dim, grid, shared)
            if self.interleaving is None or kern.worker_fn is None:
                kern.block_fn(block, *args)
            else:
                rng = np.random.default_rng([self.seed, launch_id, y * grid[0] + x])
                scheduler = BlockScheduler(self.interleaving, rng)
                scheduler.run(kern.worker_fn(block, tid, *args) for tid in range(dim))

    def wait(self):
        pending, self._pending = self._pending, []
        wait(pending)

    def synchronize(self):
        self.wait()
        if self._error is not None:
            raise self._error

    def copy_to_host(self, array, index=None):
        if index is None:
            return array.data.copy()
        return array.data[index]

    def close(self):
        self._stream.shutdown(wait=True)
        self._pool.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
