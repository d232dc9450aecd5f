#!/usr/bin/env python3
import math
import sys
import time

from accelerator import AcceleratorError
from grid import DEFAULT_CONFIG, GridConfig
from monte_carlo import initialize


def main(argv=None):
    argv = sys.argv if argv is None else argv
    if len(argv) not in (1, 5, 6):
        print(f"Usage: {argv[0]} [<workers_per_block> <blocks_x> <blocks_y> <samples_per_worker> [runs]]")
        sys.exit(1)

    try:
        config = GridConfig.from_args(argv[1:5]) if len(argv) > 1 else DEFAULT_CONFIG
        runs = int(argv[5]) if len(argv) == 6 else 1
        if runs <= 0:
            raise ValueError(f"runs must be a positive integer, got {runs}")
    except ValueError as e:
        print(f"Invalid arguments: {e}")
        sys.exit(1)

    try:
        start_time = time.time()
        context = initialize(config)
        setup_time = time.time() - start_time
        print(f"Setup took {setup_time * 1000:.2f}ms")

        estimates = []
        try:
            for run in range(runs):
                start_time = time.time()
                inside = context.count_inside(verbose=True)
                run_time = time.time() - start_time
                pi_estimate = 4.0 * (inside / config.total_samples)
                estimates.append(pi_estimate)

                print(f"Monte Carlo Pi Estimation (run {run + 1}/{runs})")
                print(f"Total samples: {config.total_samples}")
                print(f"Points inside circle: {int(inside)}")
                print(f"Pi estimate: {pi_estimate:.6f}")
                print(f"Error: {math.pi - pi_estimate:.6f}")
                print(f"Run took {run_time * 1000:.2f}ms")
        finally:
            context.release()
    except AcceleratorError as e:
        print(f"Accelerator error: {e}")
        sys.exit(1)

    if runs > 1:
        mean = sum(estimates) / runs
        print(f"Mean estimate over {runs} runs: {mean:.6f}")
        print(f"Mean error: {math.pi - mean:.6f}")


if __name__ == "__main__":
    main()
