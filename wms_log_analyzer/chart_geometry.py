"""
Chart geometry for one time series: scales, paths, ticks and hover lookup.

compute_chart_geometry() is pure. It takes an ordered series and a Viewport and
returns a ChartGeometry whose scales map timestamps / values into the inner
plotting area (origin at the top-left, y growing downwards).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Sequence, Tuple

import numpy as np

try:
    from .log_analyzer import TimestampedValue, round_half_up
except ImportError:
    from log_analyzer import TimestampedValue, round_half_up

Y_TICK_COUNT: int = 5


@dataclass(frozen=True)
class Margin:
    top: int = 20
    right: int = 20
    bottom: int = 70
    left: int = 60


@dataclass(frozen=True)
class Viewport:
    """Outer chart size in pixels plus the margins reserved for axes and labels."""

    width: int = 800
    height: int = 400
    margin: Margin = field(default_factory=Margin)

    @property
    def inner_width(self) -> int:
        return self.width - self.margin.left - self.margin.right

    @property
    def inner_height(self) -> int:
        return self.height - self.margin.top - self.margin.bottom


@dataclass(frozen=True)
class AxisTick:
    """A tick label value and its pixel position along the axis."""

    value: object
    position: float


@dataclass(frozen=True)
class Tooltip:
    x: float
    y: float
    timestamp: datetime
    value: float


def _svg_number(v: float) -> str:
    v = float(v)
    if v.is_integer():
        return str(int(v))
    return repr(v)


@dataclass(frozen=True)
class ChartGeometry:
    """
    Precomputed geometry for one series. Recompute when the series or viewport changes.

    x_scale takes a timestamp, y_scale a value; both return pixel coordinates inside
    the plotting area. Hover lookups compare a pixel x against every point's scaled x.
    """

    series: Tuple[TimestampedValue, ...]
    viewport: Viewport
    x_scale: Callable[[datetime], float]
    y_scale: Callable[[float], float]
    y_max: float
    points: Tuple[Tuple[float, float], ...]
    line_path: str
    area_path: str
    y_ticks: Tuple[AxisTick, ...]
    x_ticks: Tuple[AxisTick, ...]
    _xs: np.ndarray = field(repr=False, compare=False)

    def nearest_index(self, px: float) -> int:
        """Index of the point whose scaled x is closest to px (earliest point on ties)."""
        # argmin returns the first occurrence of the minimum
        return int(np.argmin(np.abs(self._xs - px)))

    def nearest_point(self, px: float) -> TimestampedValue:
        return self.series[self.nearest_index(px)]

    def client_to_plot_x(self, client_x: float, rendered_width: float) -> float:
        """
        Map a pointer offset inside a rendered plotting area of arbitrary width back to
        the viewport's inner-width coordinate system.
        """
        if rendered_width <= 0:
            raise ValueError(f"rendered_width must be positive, got {rendered_width}")
        return (client_x / rendered_width) * self.viewport.inner_width

    def tooltip_at(self, px: float) -> Tooltip:
        point = self.nearest_point(px)
        return Tooltip(
            x=self.x_scale(point.timestamp),
            y=self.y_scale(point.value),
            timestamp=point.timestamp,
            value=point.value,
        )


def compute_chart_geometry(
    series: Sequence[TimestampedValue],
    viewport: Optional[Viewport] = None,
) -> ChartGeometry:
    """
    Build scales, paths and ticks for an ordered series.

    Requirements:
      - at least two points (callers show a "not enough data" note otherwise)
      - first and last timestamps must differ; the horizontal scale divides by that span

    The horizontal domain runs from the first to the last point (the series is
    chronological), the vertical domain from 0 to max(max(value), 0). A series whose
    values are all <= 0 collapses onto the baseline.
    """
    if viewport is None:
        viewport = Viewport()
    series = tuple(series)
    if len(series) < 2:
        raise ValueError(
            f"Chart geometry needs at least 2 points, got {len(series)}"
        )

    inner_width = viewport.inner_width
    inner_height = viewport.inner_height

    t_first = series[0].timestamp
    # Offsets from the first point keep millisecond deltas exact
    x_span = (series[-1].timestamp - t_first).total_seconds()
    if x_span == 0:
        raise ValueError(
            "Chart geometry needs a non-zero time span between first and last point"
        )

    values = np.array([float(p.value) for p in series])
    y_max = max(float(values.max()), 0.0)
    y_min = 0.0

    def x_scale(ts: datetime) -> float:
        return ((ts - t_first).total_seconds() / x_span) * inner_width

    def y_scale(value: float) -> float:
        if y_max == y_min:
            return float(inner_height)
        return inner_height - ((value - y_min) / (y_max - y_min)) * inner_height

    xs = np.array([x_scale(p.timestamp) for p in series])
    points = tuple((float(x), y_scale(p.value)) for x, p in zip(xs, series))

    joined = " L ".join(f"{_svg_number(x)},{_svg_number(y)}" for x, y in points)
    line_path = f"M {joined}"
    baseline = _svg_number(inner_height)
    area_path = (
        f"M {_svg_number(x_scale(series[0].timestamp))},{baseline} L {joined} "
        f"L {_svg_number(x_scale(series[-1].timestamp))},{baseline} Z"
    )

    y_ticks = []
    for i in range(Y_TICK_COUNT):
        raw = y_min + (i * (y_max - y_min)) / (Y_TICK_COUNT - 1)
        y_ticks.append(AxisTick(value=round_half_up(raw, 1), position=y_scale(raw)))

    x_tick_points = (series[0], series[len(series) // 2], series[-1])
    x_ticks = tuple(
        AxisTick(value=p.timestamp, position=x_scale(p.timestamp))
        for p in x_tick_points
    )

    return ChartGeometry(
        series=series,
        viewport=viewport,
        x_scale=x_scale,
        y_scale=y_scale,
        y_max=y_max,
        points=points,
        line_path=line_path,
        area_path=area_path,
        y_ticks=tuple(y_ticks),
        x_ticks=x_ticks,
        _xs=xs,
    )
