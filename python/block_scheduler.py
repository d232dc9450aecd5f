from collections import namedtuple

import numpy as np

# A worker program is a generator. It yields BARRIER to wait for the whole
# block, None to let another worker run, or a ShuffleDown to trade a register
# value with the other lanes of its group. Its return value is its result.
BARRIER = 'barrier'

ShuffleDown = namedtuple('ShuffleDown', ['value', 'offset', 'width'])

ORDERS = ('in_order', 'reverse', 'random')


class SchedulerError(RuntimeError):
    pass


class BlockScheduler:
    """Cooperative scheduler for the workers of one execution block.

    Workers only switch at their yield points, so `order` decides the
    interleaving: "in_order" always steps the lowest runnable tid, "reverse"
    the highest, "random" picks one uniformly from `rng`.
    """

    def __init__(self, order='in_order', rng=None):
        if order not in ORDERS:
            raise ValueError(f"Unknown interleaving order: {order}")
        self.order = order
        self.rng = rng if rng is not None else np.random.default_rng()

    def _pick(self, runnable):
        if self.order == 'in_order':
            return runnable[0]
        if self.order == 'reverse':
            return runnable[-1]
        return runnable[self.rng.integers(len(runnable))]

    def run(self, programs):
        programs = list(programs)
        count = len(programs)
        results = [None] * count
        live = set(range(count))
        waiting = {}
        inbox = [None] * count

        while live:
            runnable = sorted(tid for tid in live if tid not in waiting)
            if runnable:
                tid = self._pick(runnable)
                message, inbox[tid] = inbox[tid], None
                try:
                    op = programs[tid].send(message)
                except StopIteration as stop:
                    results[tid] = stop.value
                    live.discard(tid)
                    continue
                if op is BARRIER or isinstance(op, ShuffleDown):
                    waiting[tid] = op
                elif op is not None:
                    raise SchedulerError(f"worker {tid} yielded unknown operation {op!r}")
                continue

            ops = list(waiting.values())
            if all(op is BARRIER for op in ops):
                # everyone still alive reached the barrier
                waiting.clear()
            elif any(op is BARRIER for op in ops):
                at_barrier = sorted(tid for tid, op in waiting.items() if op is BARRIER)
                raise SchedulerError(f"barrier reached by workers {at_barrier} only, the rest are blocked elsewhere")
            else:
                self._exchange(waiting, inbox)
        return results

    def _exchange(self, waiting, inbox):
        first = next(iter(waiting.values()))
        offset, width = first.offset, first.width
        if sorted(waiting) != list(range(width)):
            raise SchedulerError(f"shuffle of width {width} reached by lanes {sorted(waiting)}")
        if any(op.offset != offset or op.width != width for op in waiting.values()):
            raise SchedulerError("lanes of one group issued different shuffles")

        values = [waiting[lane].value for lane in range(width)]
        for lane in range(width):
            source = lane + offset
            inbox[lane] = values[source] if source < width else values[lane]
        waiting.clear()
