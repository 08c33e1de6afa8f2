"""
Log analysis core - single-pass aggregation over a WMS transfer log.

Public entry point is analyze_log(), which folds every line of the file into an
_Accumulator and finalizes it into an immutable AnalysisResult. The helpers it is
built from are exposed as well so each step can be exercised on its own:

- match_timestamp_prefix(), is_error_line(), is_sent_data_line(), extract_elapsed_time()
- parse_log_timestamp()
- fold_line()
- compute_intervals(), suppress_interval_outlier()
- series_to_frame()

Content never raises: lines that do not match a pattern, or carry an unparseable
timestamp, simply do not contribute to the affected aggregate.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from functools import reduce
from typing import Iterable, List, Optional, Sequence, Tuple

import pandas as pd

logger = logging.getLogger(__name__)

# Fixed log grammar
TIMESTAMP_PREFIX_LENGTH: int = 23
ERROR_MARKER: str = "] ERROR"
SENT_DATA_MARKER: str = "INFO  Sent data to: WMS_SNIMACLOG"
# Format applied after the millisecond comma has been swapped for a period
PARSE_TIMESTAMP_FORMAT: str = "%Y-%m-%d %H:%M:%S.%f"

_TIMESTAMP_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2},\d{3}", re.ASCII)
_ELAPSED_TIME_RE = re.compile(r"Elapsed time: (\d+) ms", re.ASCII)


@dataclass(frozen=True)
class TimestampedValue:
    """One point of a time series: a parsed log instant and its numeric value."""

    timestamp: datetime
    value: float


class AnalysisDiagnostics:
    """Counters, warnings and timing collected while analyzing one file."""

    def __init__(self, label: Optional[str] = None) -> None:
        self.label: Optional[str] = label

        self.total_lines: int = 0
        self.timestamped_lines: int = 0
        self.unparseable_sent_timestamps: int = 0
        self.suppressed_interval: Optional[TimestampedValue] = None

        self.warnings: list[str] = []
        self.events: list[str] = []

        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self.elapsed_ms: Optional[float] = None

    def start(self) -> None:
        self.started_at = time.perf_counter()

    def stop(self) -> None:
        self.finished_at = time.perf_counter()
        if self.started_at is not None:
            self.elapsed_ms = (self.finished_at - self.started_at) * 1000.0

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)
        logger.warning(message)

    def add_event(self, message: str) -> None:
        """Add an info-level event message."""
        self.events.append(message)
        logger.info(message)

    def summarize(self) -> str:
        """Produce a concise summary string for diagnostics."""
        lbl = f"{self.label} " if self.label else ""
        parts = [f"{lbl}lines: {self.total_lines} (timestamped={self.timestamped_lines})"]
        if self.unparseable_sent_timestamps:
            parts.append(
                f"unparseable_sent_timestamps={self.unparseable_sent_timestamps}"
            )
        if self.suppressed_interval is not None:
            parts.append(f"suppressed_interval={self.suppressed_interval.value}s")
        if self.elapsed_ms is not None:
            parts.append(f"elapsed_ms={self.elapsed_ms:.1f}")
        return " | ".join(parts)


@dataclass(frozen=True)
class AnalysisResult:
    """
    Aggregate produced once per analyzed log file.

    Attributes:
        file_name / file_size: passthrough metadata supplied by the caller.
        error_count: lines containing ERROR_MARKER.
        sent_data_count: lines containing SENT_DATA_MARKER.
        average_elapsed_time: mean elapsed time in ms, rounded half up; 0 if none seen.
        average_interval: mean seconds between data-sent instants (before outlier
            suppression); 0 with fewer than two instants.
        max_elapsed_time: largest elapsed time in ms; 0 if none seen.
        max_elapsed_time_timestamp: raw 23-character prefix of the line holding the max.
        elapsed_time_data: elapsed time per data-sent line with a parseable timestamp.
        interval_data: seconds between consecutive data-sent instants, with the first
            maximum removed when there are more than two entries.
        first_log_timestamp / last_log_timestamp: raw prefixes of the first and last
            lines that start with a timestamp.
    """

    file_name: str
    file_size: int
    error_count: int
    sent_data_count: int
    average_elapsed_time: int
    average_interval: float
    max_elapsed_time: int
    max_elapsed_time_timestamp: Optional[str]
    elapsed_time_data: Tuple[TimestampedValue, ...]
    interval_data: Tuple[TimestampedValue, ...]
    first_log_timestamp: Optional[str]
    last_log_timestamp: Optional[str]
    diagnostics: Optional[AnalysisDiagnostics] = field(
        default=None, compare=False, repr=False
    )


@dataclass
class _Accumulator:
    """State threaded through fold_line(); owned by a single analysis pass."""

    error_count: int = 0
    sent_data_count: int = 0
    total_elapsed_time: int = 0
    elapsed_time_count: int = 0
    # None until the first elapsed time is seen (0 is a legitimate maximum)
    max_elapsed_time: Optional[int] = None
    max_elapsed_time_timestamp: Optional[str] = None
    first_log_timestamp: Optional[str] = None
    last_log_timestamp: Optional[str] = None
    sent_data_instants: List[datetime] = field(default_factory=list)
    elapsed_time_data: List[TimestampedValue] = field(default_factory=list)
    total_lines: int = 0
    timestamped_lines: int = 0
    unparseable_sent_timestamps: int = 0


# -------------------------
# Line predicates
# -------------------------
def match_timestamp_prefix(line: str) -> Optional[str]:
    """Return the 23-character 'YYYY-MM-DD HH:MM:SS,fff' prefix, or None."""
    m = _TIMESTAMP_PREFIX_RE.match(line)
    return m.group(0) if m else None


def is_error_line(line: str) -> bool:
    return ERROR_MARKER in line


def is_sent_data_line(line: str) -> bool:
    return SENT_DATA_MARKER in line


def extract_elapsed_time(line: str) -> Optional[int]:
    """Return the milliseconds of the first 'Elapsed time: <digits> ms' marker, or None."""
    m = _ELAPSED_TIME_RE.search(line)
    return int(m.group(1)) if m else None


def parse_log_timestamp(raw: str) -> Optional[datetime]:
    """
    Convert a raw 'YYYY-MM-DD HH:MM:SS,fff' prefix into a naive timestamp.

    The millisecond comma is replaced by a period and the string is parsed with an
    exact format; anything that does not form a valid calendar instant yields None.
    """
    ts = pd.to_datetime(
        raw.replace(",", ".", 1),
        format=PARSE_TIMESTAMP_FORMAT,
        errors="coerce",
        exact=True,
    )
    if pd.isna(ts):
        return None
    return ts


def round_half_up(value: float, ndigits: int = 0) -> float:
    """
    Round the exact binary value of `value` to `ndigits` decimals, ties away from zero.

    Python's round() uses banker's rounding; display values here (e.g. 0.125 s -> 0.13)
    need the conventional half-up behaviour.
    """
    quantum = Decimal(1).scaleb(-ndigits)
    return float(Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


# -------------------------
# Fold
# -------------------------
def fold_line(acc: _Accumulator, line: str) -> _Accumulator:
    """Classify one line and fold it into the accumulator. Returns the accumulator."""
    acc.total_lines += 1

    prefix = match_timestamp_prefix(line)
    if prefix is not None:
        acc.timestamped_lines += 1
        if acc.first_log_timestamp is None:
            acc.first_log_timestamp = prefix
        acc.last_log_timestamp = prefix

    if is_error_line(line):
        acc.error_count += 1

    if not is_sent_data_line(line):
        return acc

    acc.sent_data_count += 1
    raw_timestamp = line[:TIMESTAMP_PREFIX_LENGTH]
    timestamp = parse_log_timestamp(raw_timestamp)
    if timestamp is not None:
        acc.sent_data_instants.append(timestamp)
    else:
        acc.unparseable_sent_timestamps += 1

    elapsed = extract_elapsed_time(line)
    if elapsed is not None:
        acc.total_elapsed_time += elapsed
        acc.elapsed_time_count += 1
        if timestamp is not None:
            acc.elapsed_time_data.append(TimestampedValue(timestamp, elapsed))
        if acc.max_elapsed_time is None or elapsed > acc.max_elapsed_time:
            acc.max_elapsed_time = elapsed
            acc.max_elapsed_time_timestamp = raw_timestamp

    return acc


def compute_intervals(
    instants: Sequence[datetime],
) -> Tuple[Tuple[TimestampedValue, ...], float]:
    """
    Pairwise deltas between consecutive instants.

    Returns (series, mean_seconds). Each entry is stamped with the later instant and
    carries the delta rounded to 2 decimals; the mean uses the unrounded deltas and
    is 0 when fewer than two instants are given.
    """
    if len(instants) < 2:
        return (), 0.0

    total_seconds = 0.0
    series: list[TimestampedValue] = []
    for prev, cur in zip(instants, instants[1:]):
        delta = (cur - prev).total_seconds()
        total_seconds += delta
        series.append(TimestampedValue(cur, round_half_up(delta, 2)))
    return tuple(series), total_seconds / (len(instants) - 1)


def suppress_interval_outlier(
    series: Sequence[TimestampedValue],
) -> Tuple[Tuple[TimestampedValue, ...], Optional[TimestampedValue]]:
    """
    Drop the first occurrence of the largest value when the series has more than 2 entries.

    Returns (kept_series, removed_entry_or_None). Ties beyond the first are kept.
    """
    if len(series) <= 2:
        return tuple(series), None
    peak = max(p.value for p in series)
    peak_index = next(i for i, p in enumerate(series) if p.value == peak)
    kept = tuple(p for i, p in enumerate(series) if i != peak_index)
    return kept, series[peak_index]


def _finalize(
    acc: _Accumulator,
    file_name: str,
    file_size: int,
    diagnostics: AnalysisDiagnostics,
) -> AnalysisResult:
    if acc.elapsed_time_count > 0:
        average_elapsed_time = int(
            round_half_up(acc.total_elapsed_time / acc.elapsed_time_count)
        )
    else:
        average_elapsed_time = 0

    intervals, average_interval = compute_intervals(acc.sent_data_instants)
    interval_data, removed = suppress_interval_outlier(intervals)

    diagnostics.total_lines = acc.total_lines
    diagnostics.timestamped_lines = acc.timestamped_lines
    diagnostics.unparseable_sent_timestamps = acc.unparseable_sent_timestamps
    diagnostics.suppressed_interval = removed
    if acc.unparseable_sent_timestamps:
        diagnostics.add_warning(
            f"{acc.unparseable_sent_timestamps} data-sent line(s) had an unparseable "
            f"timestamp and were left out of the time series"
        )

    return AnalysisResult(
        file_name=file_name,
        file_size=file_size,
        error_count=acc.error_count,
        sent_data_count=acc.sent_data_count,
        average_elapsed_time=average_elapsed_time,
        average_interval=average_interval,
        max_elapsed_time=acc.max_elapsed_time if acc.max_elapsed_time is not None else 0,
        max_elapsed_time_timestamp=acc.max_elapsed_time_timestamp,
        elapsed_time_data=tuple(acc.elapsed_time_data),
        interval_data=interval_data,
        first_log_timestamp=acc.first_log_timestamp,
        last_log_timestamp=acc.last_log_timestamp,
        diagnostics=diagnostics,
    )


def analyze_lines(
    lines: Iterable[str],
    file_name: str = "",
    file_size: int = 0,
    verbose: bool = False,
) -> AnalysisResult:
    """Fold an already-split sequence of lines into an AnalysisResult."""
    diagnostics = AnalysisDiagnostics(label=file_name or "analyze_log")
    diagnostics.start()
    acc = reduce(fold_line, lines, _Accumulator())
    result = _finalize(acc, file_name, file_size, diagnostics)
    diagnostics.stop()
    if verbose:
        logger.info(diagnostics.summarize())
    return result


def analyze_log(
    text: str,
    file_name: str = "",
    file_size: int = 0,
    verbose: bool = False,
) -> AnalysisResult:
    """
    Analyze the full contents of one log file.

    The text is split on line feeds only; a trailing carriage return stays on the line
    and does not affect any of the patterns. file_name and file_size are passed
    through to the result untouched.
    """
    return analyze_lines(text.split("\n"), file_name, file_size, verbose)


def series_to_frame(series: Sequence[TimestampedValue]) -> pd.DataFrame:
    """Return a two-column ('timestamp', 'value') DataFrame in series order."""
    return pd.DataFrame(
        {
            "timestamp": pd.to_datetime([p.timestamp for p in series]),
            "value": [p.value for p in series],
        },
        columns=["timestamp", "value"],
    )
