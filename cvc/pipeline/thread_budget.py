import os
from typing import Optional


def detect_cpu_count() -> int:
    return os.cpu_count() or 1


def calculate_threads_per_worker(cpu_count: int, target_percent: int, max_workers: int) -> int:
    """Splits the CPU share given by target_percent evenly across workers.

    Both the total thread budget and the per-worker share are floored at 1.

    >>> calculate_threads_per_worker(8, 50, 2)
    2
    >>> calculate_threads_per_worker(1, 50, 2)
    1
    """
    if cpu_count < 1 or max_workers < 1:
        raise ValueError("cpu_count and max_workers must be positive")
    total_threads = max(1, (target_percent * cpu_count) // 100)
    return max(1, total_threads // max_workers)


def resolve_threads_per_worker(
    target_percent: int,
    max_workers: int,
    override: Optional[int] = None,
    cpu_count: Optional[int] = None,
) -> int:
    """Explicit override wins; otherwise derive from the detected CPU count."""
    if override is not None:
        return max(1, override)
    return calculate_threads_per_worker(cpu_count or detect_cpu_count(), target_percent, max_workers)
