"""In-process counters and millisecond histograms.

Import/export runs report through these; ``get_counters`` flattens
histograms into ``histo.<name>.<bucket>`` counters so one dict describes the
process state.
"""

from __future__ import annotations

import contextlib
import time
from collections import defaultdict
from collections.abc import Iterator
from dataclasses import dataclass, field

DEFAULT_BUCKETS_MS: tuple[int, ...] = (1, 2, 5, 10, 20, 50, 100, 250, 500, 1000, 2000, 5000)


@dataclass
class _Histogram:
    bounds: tuple[int, ...]
    buckets: dict[str, int] = field(default_factory=dict)
    total: int = 0
    count: int = 0

    def observe(self, value: int) -> None:
        # <=-style buckets plus one overflow bucket
        label = next((f"le_{ub}" for ub in self.bounds if value <= ub), f"gt_{self.bounds[-1]}")
        self.buckets[label] = self.buckets.get(label, 0) + 1
        self.total += value
        self.count += 1


_counters: dict[str, int] = defaultdict(int)
_histograms: dict[str, _Histogram] = {}


def inc_counter(name: str, value: int = 1) -> None:
    _counters[name] += int(value)


def get_counter(name: str) -> int:
    return _counters.get(name, 0)


def reset_counters() -> None:
    _counters.clear()
    _histograms.clear()


def observe_histogram(name: str, value: int, *, buckets: tuple[int, ...] | None = None) -> None:
    """Record ``value`` (milliseconds) under ``name``.

    Bucket bounds are fixed by the first observation of a histogram.
    """
    hist = _histograms.get(name)
    if hist is None:
        hist = _histograms[name] = _Histogram(bounds=tuple(buckets or DEFAULT_BUCKETS_MS))
    hist.observe(int(value))


@contextlib.contextmanager
def timed(name: str) -> Iterator[None]:
    """Observe the wall time of the block, in whole milliseconds, into ``name``."""
    start = time.perf_counter()
    try:
        yield
    finally:
        observe_histogram(name, int((time.perf_counter() - start) * 1000))


def get_counters(prefix: str | None = None) -> dict[str, int]:
    """Copy of all counters, optionally only those whose name starts with ``prefix``."""
    out = dict(_counters)
    for name, hist in _histograms.items():
        for label, cnt in hist.buckets.items():
            out[f"histo.{name}.{label}"] = cnt
        out[f"histo.{name}.sum"] = hist.total
        out[f"histo.{name}.count"] = hist.count
    if prefix:
        out = {k: v for k, v in out.items() if k.startswith(prefix)}
    return out
