import threading
import time

import numpy as np
import pytest

from accelerator import (
    STATE_BYTES,
    AcceleratorError,
    AllocationError,
    Device,
    LaunchError,
    kernel,
)
from block_scheduler import BARRIER


@kernel
def mark_blocks(block, hits):
    hits.data[block.y * block.grid[0] + block.x] += 1


@kernel
def fail_on_block(block, bad_slot):
    if block.y * block.grid[0] + block.x == bad_slot:
        raise ValueError("bad block")


class TestAllocation:
    def test_allocate_zeroed_buffer(self, device):
        array = device.allocate(10)
        assert array.data.tolist() == [0.0] * 10
        assert device.used_bytes == 80

    def test_state_slots_are_accounted(self, device):
        states = device.allocate_states(4)
        assert len(states) == 4
        assert device.used_bytes == 4 * STATE_BYTES

    def test_out_of_memory(self):
        with Device(memory_bytes=100, num_workers=1) as device:
            device.allocate(10)
            with pytest.raises(AllocationError, match='out of device memory'):
                device.allocate(10)
            assert device.used_bytes == 80

    @pytest.mark.parametrize('count', [0, -1, 2.5, None])
    def test_invalid_size(self, device, count):
        with pytest.raises(AllocationError, match='invalid allocation size'):
            device.allocate(count)

    def test_free_returns_capacity(self, device):
        array = device.allocate(10)
        device.free(array)
        assert device.used_bytes == 0

    def test_use_after_free(self, device):
        array = device.allocate(4)
        device.free(array)
        with pytest.raises(AcceleratorError, match='after free'):
            array.data
        with pytest.raises(AcceleratorError, match='freed twice'):
            device.free(array)

    def test_copy_to_host(self, device):
        array = device.allocate(3)
        array.data[:] = [1.0, 2.0, 3.0]
        host = device.copy_to_host(array)
        host[0] = 99.0
        assert array.data[0] == 1.0
        assert device.copy_to_host(array, 2) == 3.0


class TestLaunch:
    def test_every_block_runs_once(self, device):
        hits = device.allocate(12)
        device.launch(mark_blocks, (3, 4), 8, hits)
        device.synchronize()
        assert hits.data.tolist() == [1.0] * 12

    def test_launches_run_in_stream_order(self, device):
        log = []
        lock = threading.Lock()

        @kernel
        def tag(block, name):
            with lock:
                log.append(name)

        device.launch(tag, (4, 4), 1, 'first')
        device.launch(tag, (4, 4), 1, 'second')
        device.synchronize()
        assert log == ['first'] * 16 + ['second'] * 16

    @pytest.mark.parametrize('grid, block', [((0, 1), 8), ((1, -1), 8), ((1, 1), 0), ((1, 1), 2048)])
    def test_invalid_launch_shape(self, device, grid, block):
        hits = device.allocate(1)
        with pytest.raises(LaunchError):
            device.launch(mark_blocks, grid, block, hits)

    def test_kernel_failure_surfaces_at_synchronize(self, device):
        device.launch(fail_on_block, (2, 2), 4, 3)
        with pytest.raises(LaunchError, match='fail_on_block') as excinfo:
            device.synchronize()
        assert isinstance(excinfo.value.__cause__, ValueError)

    def test_failed_launch_finishes_every_block_before_reporting(self):
        log = []

        @kernel
        def fail_fast_finish_slow(block):
            if block.x == 0:
                raise ValueError("bad block")
            time.sleep(0.3)
            log.append(block.x)

        with Device(num_workers=2) as device:
            device.launch(fail_fast_finish_slow, (2, 1), 1)
            with pytest.raises(LaunchError):
                device.synchronize()
            assert log == [1]

    def test_wait_drains_without_raising(self, device):
        device.launch(fail_on_block, (2, 2), 4, 0)
        device.wait()
        with pytest.raises(LaunchError):
            device.synchronize()

    def test_failure_is_sticky(self, device):
        hits = device.allocate(4)
        device.launch(fail_on_block, (2, 2), 4, 0)
        device.launch(mark_blocks, (2, 2), 4, hits)
        with pytest.raises(LaunchError):
            device.synchronize()
        with pytest.raises(LaunchError):
            device.synchronize()
        assert hits.data.tolist() == [0.0] * 4

    def test_simulated_mode_runs_each_worker(self, simulated_device):
        seen = simulated_device.allocate(2 * 4)

        @kernel(shared_per_worker=1)
        def store_tids(block, out):
            raise AssertionError("block form must not run in simulated mode")

        @store_tids.worker
        def store_tids_worker(block, tid, out):
            block.shared[tid] = tid + 1
            yield BARRIER
            # read a neighbour's slot, only safe after the barrier
            neighbour = (tid + 1) % block.dim
            out.data[block.x * block.dim + tid] = block.shared[neighbour]

        simulated_device.launch(store_tids, (2, 1), 4, seen)
        simulated_device.synchronize()
        assert seen.data.tolist() == [2.0, 3.0, 4.0, 1.0] * 2

    def test_kernel_without_worker_form_runs_as_block(self, simulated_device):
        hits = simulated_device.allocate(2)
        simulated_device.launch(mark_blocks, (2, 1), 4, hits)
        simulated_device.synchronize()
        assert np.array_equal(hits.data, [1.0, 1.0])
