"""Sparse-to-dense life curve synthesis.

Turns a handful of authoritative checkpoints (e.g. "age 40, score 75, during
era X") into one sample per integer position across the supported domain.
Checkpoint values are reproduced exactly; everything in between is a
Catmull-Rom interpolation plus small deterministic perturbations so that the
curve does not look ruler-drawn.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN = (1, 90)
DEFAULT_CLAMP = (30, 95)
DENSE_THRESHOLD = 50


@dataclass(frozen=True)
class Checkpoint:
    """An authoritative sparse sample supplied by the fortune model."""

    position: int
    value: float
    era_label: str = ""
    short_label: str = ""
    narrative: str = ""


@dataclass(frozen=True)
class Sample:
    """One point of the dense series."""

    position: int
    value: float
    era_label: str
    short_label: str
    narrative: str
    is_authoritative: bool


@dataclass(frozen=True)
class EraGroup:
    """Contiguous index span sharing an era label (inclusive bounds)."""

    era_label: str
    start_index: int
    end_index: int


@dataclass(frozen=True)
class SynthesisConfig:
    """Tunable constants for dense series synthesis."""

    min_position: int = DEFAULT_DOMAIN[0]
    max_position: int = DEFAULT_DOMAIN[1]
    clamp_min: float = DEFAULT_CLAMP[0]
    clamp_max: float = DEFAULT_CLAMP[1]
    dense_threshold: int = DENSE_THRESHOLD
    regime_length: int = 10
    wave_amplitude: float = 1.0
    trend_threshold: float = 15.0
    strong_trend: float = 1.0
    weak_trend: float = 0.7
    trend_scale: float = 0.1
    micro_offsets: tuple[int, ...] = (3, 7)
    micro_amplitude: float = 1.5
    micro_frequency: float = 0.7
    narrative_prefix: int = 12
    short_label_template: str = "{position}"


DEFAULT_CONFIG = SynthesisConfig()

# Accepted record keys, canonical first. The camelCase names are what the
# fortune model emits.
_RECORD_KEYS = {
    "position": ("position", "age"),
    "value": ("value", "score"),
    "era_label": ("era_label", "daYun"),
    "short_label": ("short_label", "ganZhi"),
    "narrative": ("narrative", "reason"),
}


def _pick(record: dict, field: str):
    for key in _RECORD_KEYS[field]:
        if key in record and record[key] is not None:
            return record[key]
    return None


def checkpoints_from_records(records: Iterable[dict]) -> list[Checkpoint]:
    """Validate external dict records and convert them to checkpoints.

    Args:
        records: Dicts with ``position``/``value`` (or ``age``/``score``) and
            optional label/narrative keys.

    Returns:
        Checkpoints in input order.

    Raises:
        ValueError: If a record lacks a position or value, the position is
            not a whole number, or the value is not a finite number.
    """
    checkpoints: list[Checkpoint] = []
    for i, record in enumerate(records):
        position = _pick(record, "position")
        value = _pick(record, "value")
        if position is None or value is None:
            raise ValueError(f"Record {i} is missing a position or value: {record!r}")
        try:
            raw_position = float(position)
            value = float(value)
        except (TypeError, ValueError, OverflowError) as exc:
            raise ValueError(f"Record {i} has a non-numeric position or value.") from exc
        if not math.isfinite(raw_position) or not raw_position.is_integer():
            raise ValueError(f"Record {i} has a non-integral position: {position!r}")
        position = int(raw_position)
        if not math.isfinite(value):
            raise ValueError(f"Record {i} has a non-finite value: {value}")
        if value.is_integer():
            value = int(value)
        checkpoints.append(Checkpoint(
            position=position,
            value=value,
            era_label=str(_pick(record, "era_label") or ""),
            short_label=str(_pick(record, "short_label") or ""),
            narrative=str(_pick(record, "narrative") or ""),
        ))
    return checkpoints


def normalize_checkpoints(checkpoints: Iterable[Checkpoint]) -> tuple[Checkpoint, ...]:
    """Sort checkpoints by position, keeping the first of any duplicates.

    Raises:
        ValueError: If no checkpoints are given.
    """
    seen: dict[int, Checkpoint] = {}
    for cp in checkpoints:
        if cp.position in seen:
            logger.warning(
                "Duplicate checkpoint at position %d discarded (kept first occurrence).",
                cp.position,
            )
            continue
        seen[cp.position] = cp
    if not seen:
        raise ValueError("At least one checkpoint is required.")
    return tuple(sorted(seen.values(), key=lambda cp: cp.position))


def is_dense(checkpoints: tuple[Checkpoint, ...], threshold: int = DENSE_THRESHOLD) -> bool:
    """True when the input already has one entry per position (detailed mode)."""
    return len(checkpoints) >= threshold


def samples_from_dense(checkpoints: tuple[Checkpoint, ...]) -> tuple[Sample, ...]:
    """Pass already-dense checkpoints straight through as authoritative samples."""
    return tuple(
        Sample(
            position=cp.position,
            value=cp.value,
            era_label=cp.era_label,
            short_label=cp.short_label,
            narrative=cp.narrative,
            is_authoritative=True,
        )
        for cp in checkpoints
    )


# ---------------------------------------------------------------------------
# Interpolation and perturbation
# ---------------------------------------------------------------------------

def catmull_rom(y0, y1, y2, y3, t):
    """Uniform Catmull-Rom interpolation between y1 (t=0) and y2 (t=1).

    Works on scalars and numpy arrays alike.
    """
    a = -0.5 * y0 + 1.5 * y1 - 1.5 * y2 + 0.5 * y3
    b = y0 - 2.5 * y1 + 2.0 * y2 - 0.5 * y3
    c = -0.5 * y0 + 0.5 * y2
    return ((a * t + b) * t + c) * t + y1


def regime_wave(positions: np.ndarray, config: SynthesisConfig = DEFAULT_CONFIG) -> np.ndarray:
    """Low-amplitude sine wave with one full cycle per regime."""
    period = config.regime_length
    phase = np.mod(positions, period) / period
    return config.wave_amplitude * np.sin(2.0 * np.pi * phase)


def trend_reinforcement(
    prev_values: np.ndarray,
    next_values: np.ndarray,
    t: np.ndarray,
    config: SynthesisConfig = DEFAULT_CONFIG,
) -> np.ndarray:
    """Push interpolated values further along the segment's direction of travel.

    The bias is ``(next - prev) * t * strength * trend_scale``. Strength is
    ``strong_trend`` for jumps larger than ``trend_threshold`` and
    ``weak_trend`` otherwise. ``trend_scale`` (0.1 by default) damps the
    plain ``(next - prev) * t * strength`` product, which on its own would
    overshoot by up to a whole segment delta near the next checkpoint.
    """
    delta = next_values - prev_values
    strength = np.where(np.abs(delta) > config.trend_threshold,
                        config.strong_trend, config.weak_trend)
    return delta * t * strength * config.trend_scale


def micro_fluctuation(positions: np.ndarray, config: SynthesisConfig = DEFAULT_CONFIG) -> np.ndarray:
    """Sparse wobble at fixed offsets inside each regime; zero elsewhere."""
    offsets = np.mod(positions, config.regime_length)
    active = np.isin(offsets, config.micro_offsets)
    wobble = np.sin(positions * config.micro_frequency) * config.micro_amplitude
    return np.where(active, wobble, 0.0)


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5)


def _narrative_for(era_label: str, source: str, prefix_len: int) -> str:
    prefix = source.strip()
    if len(prefix) > prefix_len:
        prefix = prefix[:prefix_len].rstrip() + "…"
    if not prefix:
        return f"{era_label} continues"
    return f"{era_label} continues: {prefix}"


def _flat_series(cp: Checkpoint, config: SynthesisConfig) -> tuple[Sample, ...]:
    flat = float(np.clip(_round_half_up(np.array(float(cp.value))),
                         config.clamp_min, config.clamp_max))
    samples = []
    for position in range(config.min_position, config.max_position + 1):
        if position == cp.position:
            samples.append(Sample(position, cp.value, cp.era_label,
                                  cp.short_label, cp.narrative, True))
            continue
        samples.append(Sample(
            position=position,
            value=int(flat),
            era_label=cp.era_label,
            short_label=config.short_label_template.format(position=position),
            narrative=_narrative_for(cp.era_label, cp.narrative, config.narrative_prefix),
            is_authoritative=False,
        ))
    return tuple(samples)


@lru_cache(maxsize=128)
def _synthesize_cached(
    checkpoints: tuple[Checkpoint, ...], config: SynthesisConfig
) -> tuple[Sample, ...]:
    normalized = normalize_checkpoints(checkpoints)

    if is_dense(normalized, config.dense_threshold):
        logger.info("Dense input (%d points), skipping synthesis.", len(normalized))
        return samples_from_dense(normalized)

    if len(normalized) < 2:
        logger.warning(
            "Only one checkpoint (position %d); rendering a flat series.",
            normalized[0].position,
        )
        return _flat_series(normalized[0], config)

    n = len(normalized)
    cp_pos = np.array([cp.position for cp in normalized], dtype=float)
    cp_val = np.array([float(cp.value) for cp in normalized], dtype=float)
    positions = np.arange(config.min_position, config.max_position + 1)

    # Segment index i such that cp_pos[i] <= position < cp_pos[i + 1]
    i1 = np.clip(np.searchsorted(cp_pos, positions, side="right") - 1, 0, n - 1)
    i0 = np.maximum(i1 - 1, 0)
    i2 = np.minimum(i1 + 1, n - 1)
    i3 = np.minimum(i1 + 2, n - 1)

    span = cp_pos[i2] - cp_pos[i1]
    safe_span = np.where(span == 0, 1.0, span)
    t = np.where(span == 0, 0.0, (positions - cp_pos[i1]) / safe_span)
    t = np.clip(t, 0.0, 1.0)

    base = catmull_rom(cp_val[i0], cp_val[i1], cp_val[i2], cp_val[i3], t)
    raw = (
        base
        + regime_wave(positions, config)
        + trend_reinforcement(cp_val[i1], cp_val[i2], t, config)
        + micro_fluctuation(positions, config)
    )
    values = np.clip(_round_half_up(raw), config.clamp_min, config.clamp_max)

    by_position = {cp.position: cp for cp in normalized}
    samples: list[Sample] = []
    for idx, position in enumerate(positions.tolist()):
        cp = by_position.get(position)
        if cp is not None:
            samples.append(Sample(position, cp.value, cp.era_label,
                                  cp.short_label, cp.narrative, True))
            continue
        enclosing = normalized[i1[idx]]
        dominant = enclosing if t[idx] < 0.5 else normalized[i2[idx]]
        samples.append(Sample(
            position=position,
            value=int(values[idx]),
            era_label=enclosing.era_label,
            short_label=config.short_label_template.format(position=position),
            narrative=_narrative_for(enclosing.era_label, dominant.narrative,
                                     config.narrative_prefix),
            is_authoritative=False,
        ))
    return tuple(samples)


def synthesize_series(
    checkpoints: Iterable[Checkpoint],
    config: SynthesisConfig = DEFAULT_CONFIG,
) -> tuple[Sample, ...]:
    """Fill every integer position of the configured domain with a Sample.

    Positions matching a checkpoint copy its value verbatim. Other positions
    get a Catmull-Rom interpolation of the surrounding four checkpoints plus
    a regime wave, trend reinforcement and sparse micro-fluctuation, clamped
    to the display range and rounded. Outside the checkpoint span the
    nearest checkpoint is held rather than extrapolated.

    Dense input (``config.dense_threshold`` or more checkpoints) is passed
    through untouched. A single checkpoint yields a flat series.

    Args:
        checkpoints: Checkpoints in any order.
        config: Domain, clamp and perturbation constants.

    Returns:
        Tuple of samples ordered by position.

    Raises:
        ValueError: If ``checkpoints`` is empty.
    """
    return _synthesize_cached(tuple(checkpoints), config)


def clear_cache() -> None:
    """Forget memoised synthesis results."""
    _synthesize_cached.cache_clear()


# ---------------------------------------------------------------------------
# Grouping and highlight rules
# ---------------------------------------------------------------------------

def group_eras(samples: Iterable[Sample]) -> tuple[EraGroup, ...]:
    """Partition the dense series into contiguous runs of the same era label."""
    groups: list[EraGroup] = []
    current: str | None = None
    start = 0
    idx = -1
    for idx, sample in enumerate(samples):
        if current is None:
            current = sample.era_label
            start = idx
        elif sample.era_label != current:
            groups.append(EraGroup(current, start, idx - 1))
            current = sample.era_label
            start = idx
    if current is not None:
        groups.append(EraGroup(current, start, idx))
    return tuple(groups)


def peak_position(samples: Iterable[Sample]) -> int | None:
    """Position of the first maximum value."""
    best: Sample | None = None
    for sample in samples:
        if best is None or sample.value > best.value:
            best = sample
    return best.position if best is not None else None


def trough_position(samples: Iterable[Sample]) -> int | None:
    """Position of the first minimum value."""
    best: Sample | None = None
    for sample in samples:
        if best is None or sample.value < best.value:
            best = sample
    return best.position if best is not None else None
