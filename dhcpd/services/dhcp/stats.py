from collections import Counter, deque
from functools import wraps
from threading import RLock
from time import perf_counter, time
from typing import Any, Callable

LATENCY_MAX_SAMPLES = 1000
DEFAULT_PERCENTILES: list[int] = [50, 95, 99]


class DHCPStats:
    """
    Purpose:
        Runtime counters of the DHCP service (received/sent per message
        type, drops) and handling latency samples. Class-level, shared by
        all workers.

    Usage:
        DHCPStats.increment("received_total")
        DHCPStats.get("sent_offer")
        DHCPStats.add_sample(0.4)
        DHCPStats.snapshot()
    """

    _lock = RLock()
    _counters: Counter = Counter()
    _samples: deque = deque(maxlen=LATENCY_MAX_SAMPLES)
    _start_time: float = time()

    @classmethod
    def increment(cls, key: str, value: int = 1) -> None:
        with cls._lock:
            cls._counters[key] += value

    @classmethod
    def get(cls, key: str) -> int:
        with cls._lock:
            return cls._counters.get(key, 0)

    @classmethod
    def add_sample(cls, duration: float) -> None:
        """Add a timing sample in milliseconds, oldest dropped past the limit."""
        with cls._lock:
            cls._samples.append(duration)

    @classmethod
    def get_sample_count(cls) -> int:
        with cls._lock:
            return len(cls._samples)

    @classmethod
    def get_latency_stats(cls, percentiles: list[int] = DEFAULT_PERCENTILES) -> dict:
        """Nearest-rank percentiles of the stored samples, 0.0 when empty."""
        with cls._lock:
            _sorted = sorted(cls._samples)
        if not _sorted:
            return {_percentile: 0.0 for _percentile in percentiles}

        _stats = {}
        for _percentile in percentiles:
            if not 0 <= _percentile <= 100:
                raise ValueError("Percentile must be between 0 and 100.")
            _rank = max(0, -(-_percentile * len(_sorted) // 100) - 1)
            _stats[_percentile] = _sorted[_rank]
        return _stats

    @classmethod
    def snapshot(cls) -> dict:
        """Counters, latency percentiles plus start and capture times."""
        with cls._lock:
            return {
                "start_time": int(cls._start_time),
                "last_updated": int(time()),
                "latency_ms": cls.get_latency_stats(),
                **dict(cls._counters),
            }

    @classmethod
    def clear(cls) -> None:
        with cls._lock:
            cls._counters.clear()
            cls._samples.clear()
            cls._start_time = time()


def measure_latency_decorator(metrics: type[DHCPStats] = DHCPStats):
    """Decorator to measure execution time and add it to the stats.

    Args:
        metrics: stats class receiving the sample, in milliseconds.
    """

    def decorator(func: Callable):
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            start: float = perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                metrics.add_sample((perf_counter() - start) * 1000)

        return wrapper

    return decorator
