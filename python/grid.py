from dataclasses import dataclass


@dataclass(frozen=True)
class GridConfig:
    workers_per_block: int
    blocks_x: int
    blocks_y: int
    samples_per_worker: int

    def __post_init__(self):
        for name in ('workers_per_block', 'blocks_x', 'blocks_y', 'samples_per_worker'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")
        # the halving tree needs every stride to split evenly
        if self.workers_per_block & (self.workers_per_block - 1):
            raise ValueError(f"workers_per_block must be a power of two, got {self.workers_per_block}")

    @property
    def num_blocks(self):
        return self.blocks_x * self.blocks_y

    @property
    def num_workers(self):
        return self.num_blocks * self.workers_per_block

    @property
    def total_samples(self):
        # two batches of samples_per_worker pairs per worker
        return self.num_workers * self.samples_per_worker * 2

    def block_index(self, block_x, block_y):
        return block_y * self.blocks_x + block_x

    def sequence_index(self, block_x, block_y, tid):
        return self.block_index(block_x, block_y) * self.workers_per_block + tid

    @classmethod
    def from_args(cls, args):
        if len(args) != 4:
            raise ValueError(f"expected 4 grid arguments, got {len(args)}")
        try:
            values = [int(arg) for arg in args]
        except ValueError:
            raise ValueError(f"grid arguments must be integers, got {' '.join(args)}") from None
        return cls(*values)


DEFAULT_CONFIG = GridConfig(workers_per_block=256, blocks_x=10, blocks_y=10, samples_per_worker=600)
