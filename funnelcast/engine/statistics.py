"""
Sample Statistics.

Percentile interpolation and histogram binning shared by the Monte Carlo
engine (trial totals, per-month timeline, per-case distributions).

Edge cases are defined, finite results — never exceptions:
- percentile([]) == 0.0
- histogram with min == max uses a nominal bin width of 1
- histogram([]) returns empty unit-width bins starting at 0
Only out-of-range ARGUMENTS (p outside [0, 100], bin_count < 1) raise.
"""

import math
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from funnelcast.exceptions import ConfigurationError

# ── Configuration ─────────────────────────────────────────────────────────

DEGENERATE_BIN_WIDTH: float = 1.0  # Used when every sample is identical


def _check_p(p: float) -> None:
    if not isinstance(p, (int, float)) or not 0.0 <= p <= 100.0:
        raise ConfigurationError(f"Percentile must be within [0, 100] (got {p!r})")


def percentile_of_sorted(ordered: Sequence[float], p: float) -> float:
    """
    Linear-interpolation percentile over an ALREADY SORTED sequence.

    position = (n - 1) × p / 100, interpolated between the two bracketing
    order statistics.
    """
    _check_p(p)
    n = len(ordered)
    if n == 0:
        return 0.0
    position = (n - 1) * p / 100.0
    lo = math.floor(position)
    hi = math.ceil(position)
    if lo == hi:
        return float(ordered[lo])
    return ordered[lo] + (ordered[hi] - ordered[lo]) * (position - lo)


def percentile(samples: Sequence[float], p: float) -> float:
    """Percentile of an unsorted sample set. Sorts a copy; input is untouched."""
    _check_p(p)
    return percentile_of_sorted(sorted(samples), p)


def percentiles(samples: Sequence[float], ps: Sequence[float]) -> dict[float, float]:
    """Several percentiles from a single sort."""
    ordered = sorted(samples)
    return {p: percentile_of_sorted(ordered, p) for p in ps}


def mean(samples: Sequence[float]) -> float:
    """Arithmetic mean; 0.0 for an empty sample set."""
    if not samples:
        return 0.0
    return math.fsum(samples) / len(samples)


@dataclass(frozen=True)
class HistogramBin:
    """
    One equal-width bin: [start, end), except the final bin which is [start, end].

    `markers` names the reference values (e.g. "p10") that fall inside the bin.
    """
    start: float
    end: float
    count: int
    markers: tuple[str, ...] = ()

    @property
    def midpoint(self) -> float:
        return (self.start + self.end) / 2.0

    def has_marker(self, name: str) -> bool:
        return name in self.markers


def bin_index(value: float, start: float, width: float, bin_count: int) -> int:
    """
    Index of the bin holding `value`.

    Left-inclusive / right-exclusive; anything at or beyond the last edge
    (the sample maximum) lands in the final bin.
    """
    idx = int(math.floor((value - start) / width))
    return max(0, min(bin_count - 1, idx))


def _bin_layout(samples: Sequence[float], bin_count: int) -> tuple[float, float, float]:
    """(start, end, width) for `bin_count` equal bins covering the samples."""
    if not samples:
        return 0.0, DEGENERATE_BIN_WIDTH * bin_count, DEGENERATE_BIN_WIDTH
    lo = min(samples)
    hi = max(samples)
    width = (hi - lo) / bin_count
    if width <= 0:
        return lo, lo + DEGENERATE_BIN_WIDTH * bin_count, DEGENERATE_BIN_WIDTH
    return lo, hi, width


def histogram(
    samples: Sequence[float],
    bin_count: int,
    markers: Optional[Mapping[str, float]] = None,
) -> list[HistogramBin]:
    """
    Partition [min(samples), max(samples)] into `bin_count` equal-width bins.

    Counts always sum to len(samples). Each marker value is attached to the
    bin that would count it; a bin may carry several markers.
    """
    if not isinstance(bin_count, int) or bin_count < 1:
        raise ConfigurationError(f"bin_count must be a positive integer (got {bin_count!r})")

    start, end, width = _bin_layout(samples, bin_count)

    counts = [0] * bin_count
    for value in samples:
        counts[bin_index(value, start, width, bin_count)] += 1

    marked: dict[int, list[str]] = {}
    for name, value in (markers or {}).items():
        if start <= value <= end:
            marked.setdefault(bin_index(value, start, width, bin_count), []).append(name)

    bins: list[HistogramBin] = []
    for i in range(bin_count):
        bin_start = start + i * width
        # Pin the final edge to the exact maximum so it never drifts below it
        bin_end = end if i == bin_count - 1 else start + (i + 1) * width
        bins.append(HistogramBin(
            start=bin_start,
            end=bin_end,
            count=counts[i],
            markers=tuple(marked.get(i, ())),
        ))
    return bins
