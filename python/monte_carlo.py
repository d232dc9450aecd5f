import time

from accelerator import Device
from generator_state import derive_key, seed_states, time_seed
from grid import DEFAULT_CONFIG
from sampler import collapse, sample_reduce


class LifecycleError(RuntimeError):
    pass


class SamplingContext:
    def __init__(self, config=DEFAULT_CONFIG, device=None):
        self.config = config
        self.owns_device = device is None
        self.device = device if device is not None else Device()
        self.states = None
        self.partial_sums = None
        self.released = False

    @property
    def initialized(self):
        return self.states is not None

    def _check_ready(self):
        if self.released:
            raise LifecycleError("sampling context has been released")
        if not self.initialized:
            raise LifecycleError("sampling context is not initialized")

    def initialize(self):
        if self.released:
            raise LifecycleError("sampling context has been released")
        if self.initialized:
            raise LifecycleError("sampling context is already initialized")

        states = self.device.allocate_states(self.config.num_workers)
        try:
            partial_sums = self.device.allocate(self.config.num_blocks)
        except Exception:
            self.device.free(states)
            raise
        self.states, self.partial_sums = states, partial_sums
        return self

    def _launch(self, kern, *args):
        cfg = self.config
        self.device.launch(kern, (cfg.blocks_x, cfg.blocks_y), cfg.workers_per_block, *args)

    def seed_all(self, seed):
        self._check_ready()
        self._launch(seed_states, self.states, derive_key(seed))

    def sample_and_reduce(self):
        self._check_ready()
        self._launch(sample_reduce, self.states, self.partial_sums, self.config.samples_per_worker)

    def collapse(self):
        self._check_ready()
        self.device.launch(collapse, (1, 1), 1, self.partial_sums)

    def count_inside(self, seed=None, verbose=False):
        self._check_ready()
        if seed is None:
            seed = time_seed()

        start_time = time.time()
        self.seed_all(seed)
        if verbose:
            # only wait here so the stage can be timed on its own
            self.device.synchronize()
        seed_time = time.time() - start_time

        start_time = time.time()
        self.sample_and_reduce()
        self.collapse()
        self.device.synchronize()
        sample_time = time.time() - start_time

        inside = self.device.copy_to_host(self.partial_sums, 0)
        if verbose:
            print(f"Seeding took {seed_time * 1000:.2f}ms")
            print(f"Sampling and reduction took {sample_time * 1000:.2f}ms")
        return float(inside)

    def estimate(self, seed=None, verbose=False):
        inside = self.count_inside(seed, verbose)
        return 4.0 * (inside / self.config.total_samples)

    def release(self):
        if self.released:
            raise LifecycleError("sampling context has already been released")
        self.released = True
        try:
            if self.initialized:
                # a failed cycle already raised its LaunchError; only drain queued work
                self.device.wait()
        finally:
            if self.initialized:
                self.device.free(self.states)
                self.device.free(self.partial_sums)
            if self.owns_device:
                self.device.close()

    def __enter__(self):
        if not self.initialized:
            self.initialize()
        return self

    def __exit__(self, *exc):
        if not self.released:
            self.release()


def initialize(config=DEFAULT_CONFIG, device=None):
    context = SamplingContext(config, device)
    try:
        return context.initialize()
    except Exception:
        if context.owns_device:
            context.device.close()
        raise


def estimate(context, seed=None):
    return context.estimate(seed)


def release(context):
    context.release()
