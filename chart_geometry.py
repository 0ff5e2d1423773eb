"""Chart geometry for dense life-curve series.

Maps (position, value) samples into the intrinsic pixel space of a chart
viewport and back again: axis scaling with overflow compression, smooth
Catmull-Rom Bezier paths, callout placement and pointer-to-index probing.
All functions are pure; nothing here knows about a UI framework.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Sequence

import numpy as np

from curve_synth import Sample

logger = logging.getLogger(__name__)

DOMAIN_FLOOR = 1000.0
OVERFLOW_CAP = 10000.0
DISPLAY_CEILING = 12000.0
DEFAULT_TENSION = 1.0 / 6.0


@dataclass(frozen=True)
class Viewport:
    """Intrinsic drawing surface and the padding around the plot area."""

    width: float = 1100
    height: float = 350
    top: float = 50
    right: float = 35
    bottom: float = 50
    left: float = 45

    @property
    def plot_width(self) -> float:
        return self.width - self.left - self.right

    @property
    def plot_height(self) -> float:
        return self.height - self.top - self.bottom

    @property
    def baseline_y(self) -> float:
        return self.top + self.plot_height


DEFAULT_VIEWPORT = Viewport()


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class ValueTick:
    value: float
    y: float
    is_overflowing: bool = False


@dataclass(frozen=True)
class PositionTick:
    position: int
    x: float


@dataclass(frozen=True)
class ScaleConfig:
    """Tunable constants for axis scaling."""

    domain_floor: float = DOMAIN_FLOOR
    overflow_cap: float = OVERFLOW_CAP
    display_ceiling: float = DISPLAY_CEILING
    value_tick_count: int = 5
    position_ticks: tuple[int, ...] = (1, 10, 20, 30, 40, 50, 60, 70, 80, 90)


DEFAULT_SCALE_CONFIG = ScaleConfig()


@dataclass(frozen=True)
class AxisScale:
    """Forward transforms from logical (position, value) to viewport pixels."""

    viewport: Viewport
    position_min: float
    position_max: float
    domain_min: float
    display_ceiling: float
    is_overflowing: bool
    value_ticks: tuple[ValueTick, ...] = ()
    position_ticks: tuple[PositionTick, ...] = ()

    def position_to_x(self, position: float) -> float:
        vp = self.viewport
        span = self.position_max - self.position_min
        if span <= 0 or not math.isfinite(position):
            return float(vp.left)
        return vp.left + (position - self.position_min) / span * vp.plot_width

    def value_to_y(self, value: float) -> float:
        vp = self.viewport
        if not math.isfinite(value):
            return float(vp.baseline_y)
        capped = min(value, self.display_ceiling)
        span = self.display_ceiling - self.domain_min
        if span <= 0:
            return vp.top + vp.plot_height / 2
        return vp.top + vp.plot_height - (capped - self.domain_min) / span * vp.plot_height


@dataclass(frozen=True)
class BezierSegment:
    """Cubic segment ending at ``end``; it starts where the previous one ended."""

    control1: Point
    control2: Point
    end: Point


@dataclass(frozen=True)
class PathGeometry:
    stroke_path: str
    area_path: str
    points: tuple[Point, ...]
    segments: tuple[BezierSegment, ...] = ()


@dataclass(frozen=True)
class Peak:
    position: int
    value: float
    screen_point: Point


@dataclass(frozen=True)
class CandleBar:
    """One per-sample bar spanning the change from the previous sample."""

    position: int
    x: float
    top: float
    width: float
    height: float
    rising: bool


# ---------------------------------------------------------------------------
# Axis scaling
# ---------------------------------------------------------------------------

def _finite(value: float | None) -> bool:
    return value is not None and math.isfinite(value)


@lru_cache(maxsize=128)
def _build_axis_scale_cached(
    samples: tuple[Sample, ...],
    viewport: Viewport,
    domain_min: float,
    domain_max: float | None,
    config: ScaleConfig,
) -> AxisScale:
    if not _finite(domain_min):
        logger.warning("Non-finite domain minimum %r, using 0.", domain_min)
        domain_min = 0.0

    values = [float(s.value) for s in samples if _finite(float(s.value))]
    data_max = max(values) if values else domain_min

    if not _finite(domain_max) or domain_max <= domain_min:
        recomputed = max(data_max, config.domain_floor, domain_min + config.domain_floor)
        logger.info("Invalid value domain max %r, recomputed as %s.", domain_max, recomputed)
        domain_max = recomputed

    true_max = max(domain_max, data_max)
    is_overflowing = true_max > config.overflow_cap
    if is_overflowing:
        display_ceiling = config.display_ceiling
        logger.info(
            "Data maximum %s exceeds cap %s, compressing display to %s.",
            true_max, config.overflow_cap, display_ceiling,
        )
    else:
        display_ceiling = domain_max

    if samples:
        position_min = float(samples[0].position)
        position_max = float(samples[-1].position)
    else:
        position_min = position_max = 0.0

    scale = AxisScale(
        viewport=viewport,
        position_min=position_min,
        position_max=position_max,
        domain_min=float(domain_min),
        display_ceiling=float(display_ceiling),
        is_overflowing=is_overflowing,
    )

    count = max(config.value_tick_count, 2)
    tick_values = np.linspace(domain_min, display_ceiling, count)
    value_ticks = tuple(
        ValueTick(
            value=float(v),
            y=scale.value_to_y(float(v)),
            is_overflowing=is_overflowing and i == count - 1,
        )
        for i, v in enumerate(tick_values)
    )
    position_ticks = tuple(
        PositionTick(position=p, x=scale.position_to_x(p))
        for p in config.position_ticks
        if samples and position_min <= p <= position_max
    )
    return replace(scale, value_ticks=value_ticks, position_ticks=position_ticks)


def build_axis_scale(
    samples: Sequence[Sample],
    viewport: Viewport = DEFAULT_VIEWPORT,
    domain_min: float = 0.0,
    domain_max: float | None = None,
    config: ScaleConfig = DEFAULT_SCALE_CONFIG,
) -> AxisScale:
    """Build position/value transforms for a viewport.

    A missing, non-finite or inverted ``domain_max`` is recomputed from the
    largest sample value, never below ``config.domain_floor``. When the data
    maximum exceeds ``config.overflow_cap`` the value axis tops out at
    ``config.display_ceiling`` and larger values are clamped onto it; the top
    value tick is then flagged as overflowing.

    Args:
        samples: Dense series ordered by position.
        viewport: Intrinsic chart size and padding.
        domain_min: Value mapped to the plot baseline.
        domain_max: Value mapped to the plot top, or None to derive it.
        config: Floor, overflow and tick settings.

    Returns:
        An immutable AxisScale.
    """
    return _build_axis_scale_cached(tuple(samples), viewport, domain_min, domain_max, config)


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

def _fmt(value: float) -> str:
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def project_points(samples: Sequence[Sample], scale: AxisScale) -> tuple[Point, ...]:
    """Screen coordinates for each sample."""
    return tuple(
        Point(scale.position_to_x(s.position), scale.value_to_y(float(s.value)))
        for s in samples
    )


@lru_cache(maxsize=128)
def _fit_cached(points: tuple[Point, ...], baseline_y: float, tension: float) -> PathGeometry:
    n = len(points)
    if n < 2:
        return PathGeometry("", "", points)

    parts = [f"M {_fmt(points[0].x)} {_fmt(points[0].y)}"]
    segments = []
    for i in range(n - 1):
        p0 = points[max(0, i - 1)]
        p1 = points[i]
        p2 = points[i + 1]
        p3 = points[min(n - 1, i + 2)]

        c1 = Point(p1.x + (p2.x - p0.x) * tension, p1.y + (p2.y - p0.y) * tension)
        c2 = Point(p2.x - (p3.x - p1.x) * tension, p2.y - (p3.y - p1.y) * tension)
        segments.append(BezierSegment(c1, c2, p2))

        parts.append(
            f"C {_fmt(c1.x)} {_fmt(c1.y)}, {_fmt(c2.x)} {_fmt(c2.y)}, "
            f"{_fmt(p2.x)} {_fmt(p2.y)}"
        )
    stroke = " ".join(parts)
    area = (
        f"{stroke} L {_fmt(points[-1].x)} {_fmt(baseline_y)} "
        f"L {_fmt(points[0].x)} {_fmt(baseline_y)} Z"
    )
    return PathGeometry(stroke, area, points, tuple(segments))


def fit_smooth_path(
    points: Sequence[Point],
    baseline_y: float,
    tension: float = DEFAULT_TENSION,
) -> PathGeometry:
    """Build a smooth stroke path and a closed area path through *points*.

    Each segment i -> i+1 is a cubic Bezier whose control points follow the
    Catmull-Rom tangent rule: offset from the segment ends by ``tension`` of
    the vector between the neighbouring points (clamped at the ends).

    The same segments are returned as ``BezierSegment`` values so raster
    adapters can draw the identical curve. Returns empty paths for fewer
    than two points.
    """
    return _fit_cached(tuple(points), float(baseline_y), float(tension))


def clear_cache() -> None:
    """Forget memoised axis scales and path fits."""
    _build_axis_scale_cached.cache_clear()
    _fit_cached.cache_clear()


# ---------------------------------------------------------------------------
# Annotation and probing
# ---------------------------------------------------------------------------

def annotate_position(
    samples: Sequence[Sample], position: int, scale: AxisScale
) -> Peak | None:
    """Resolve *position* to its sample and screen point.

    Falls back to the nearest available position (lower wins on ties) when
    no sample sits exactly at *position*. Returns None for an empty series.
    """
    if not samples:
        return None
    match = next((s for s in samples if s.position == position), None)
    if match is None:
        match = min(samples, key=lambda s: (abs(s.position - position), s.position))
    point = Point(scale.position_to_x(match.position), scale.value_to_y(float(match.value)))
    return Peak(position=match.position, value=match.value, screen_point=point)


def probe_index(
    pointer_x: float,
    rendered_width: float,
    viewport: Viewport,
    count: int,
) -> int | None:
    """Map a pointer x (in rendered CSS pixels) to the nearest sample index.

    The pointer is first rescaled into intrinsic viewport units so the
    result is correct however the drawing surface is stretched.
    """
    if count <= 0:
        return None
    if not _finite(pointer_x):
        return 0
    scale_x = viewport.width / rendered_width if _finite(rendered_width) and rendered_width > 0 else 1.0
    scaled = pointer_x * scale_x
    if viewport.plot_width <= 0 or count == 1:
        return 0
    relative = (scaled - viewport.left) / viewport.plot_width
    index = math.floor(relative * (count - 1) + 0.5)
    return min(max(index, 0), count - 1)


@dataclass(frozen=True)
class InteractiveProbe:
    """Callable pointer-to-index mapping handed to UI adapters."""

    viewport: Viewport
    count: int

    def __call__(self, pointer_x: float, rendered_width: float) -> int | None:
        return probe_index(pointer_x, rendered_width, self.viewport, self.count)


def candle_bars(
    samples: Sequence[Sample], scale: AxisScale, min_width: float = 4.0
) -> tuple[CandleBar, ...]:
    """Per-sample bars from the previous value to the current one."""
    if not samples:
        return ()
    vp = scale.viewport
    width = max(min_width, vp.plot_width / len(samples) * 0.7)
    bars = []
    prev_value = float(samples[0].value)
    for sample in samples:
        value = float(sample.value)
        y = scale.value_to_y(value)
        prev_y = scale.value_to_y(prev_value)
        bars.append(CandleBar(
            position=sample.position,
            x=scale.position_to_x(sample.position) - width / 2,
            top=min(y, prev_y),
            width=width,
            height=max(abs(y - prev_y), 1.0),
            rising=value >= prev_value,
        ))
        prev_value = value
    return tuple(bars)
