import math
from typing import Callable

# Multiplicative hashing constant; any irrational-looking fraction spreads
# consecutive ids across workers.
A = 0.357840

Partitioner = Callable[[int, int], int]


def partition(entity_id: int, worker_count: int) -> int:
    """
    Map an entity id to the index of the worker that owns it.

    Only stable for a fixed worker count: changing the count remaps
    nearly every entity.
    """
    if worker_count < 1:
        raise ValueError(f"worker_count must be at least 1, got {worker_count}")
    fraction = (entity_id * A) % 1
    return min(worker_count - 1, math.floor(worker_count * fraction))
