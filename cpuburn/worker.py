"""Body of one built-in load worker.

Started by the busy-loop backend as ``python -m cpuburn.worker``. Runs until
it receives SIGTERM (default disposition) or SIGINT.
"""

import argparse
import sys
import time
from typing import List, Optional

COUNTER_MASK = 0xFFFFFFFF
METHODS = ("counter", "matrix")


def busy_counter():
    x = 0
    # Tight integer loop; keeps a core busy.
    while True:
        x = (x + 1) & COUNTER_MASK
        if x == 0:
            time.sleep(0)


def busy_matrix(dim: int = 256, check_every: int = 64):
    # numpy only loads in matrix workers
    import numpy as np

    a = np.random.randn(dim, dim).astype(np.float32)
    b = np.random.randn(dim, dim).astype(np.float32)
    eye = np.eye(dim, dtype=np.float32)
    i = 0
    while True:
        _ = a @ b
        i += 1
        if i % check_every == 0 and not np.allclose(a @ eye, a):
            raise SystemExit("matrix self-check failed")
        time.sleep(0)


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="cpu-burn fallback worker")
    ap.add_argument("--method", choices=METHODS, default="counter")
    ap.add_argument("--dim", type=int, default=256, help="Matrix size for --method matrix")
    args = ap.parse_args(argv)

    try:
        if args.method == "matrix":
            busy_matrix(args.dim)
        else:
            busy_counter()
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
