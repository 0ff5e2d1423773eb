import io
import json
from dataclasses import asdict
from html import escape
from typing import Callable

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd
from matplotlib.patches import PathPatch
from matplotlib.path import Path

from chart_geometry import PathGeometry
from curve_synth import EraGroup, Sample
from life_curve import ChartModel, year_for_position

# Source values are expressed in units of 10,000.
UNIT = 10_000
OVERFLOW_VALUE = 10_000

AxisLabel = Callable[[float, bool, bool], str]


def to_dataframe(samples: tuple[Sample, ...], birth_year: int | None = None) -> pd.DataFrame:
    """Convert the dense series to a DataFrame, one row per sample."""
    df = pd.DataFrame([asdict(s) for s in samples])
    if df.empty:
        return df
    if birth_year is not None:
        df.insert(1, "year", [year_for_position(p, birth_year) for p in df["position"]])
    return df


def _eras_to_dataframe(samples: tuple[Sample, ...], eras: tuple[EraGroup, ...]) -> pd.DataFrame:
    rows = []
    for era in eras:
        rows.append({
            "era_label": era.era_label,
            "start_position": samples[era.start_index].position,
            "end_position": samples[era.end_index].position,
            "start_index": era.start_index,
            "end_index": era.end_index,
        })
    return pd.DataFrame(rows)


def to_csv(model: ChartModel, birth_year: int | None = None) -> str:
    """Return the dense series as CSV text."""
    return to_dataframe(model.samples, birth_year).to_csv(index=False)


def to_json(model: ChartModel) -> str:
    """Return samples, eras and highlights as pretty-printed JSON."""
    data = {
        "samples": [asdict(s) for s in model.samples],
        "eras": [asdict(e) for e in model.eras],
        "peak": asdict(model.peak) if model.peak else None,
        "trough": asdict(model.trough) if model.trough else None,
        "is_overflowing": model.scale.is_overflowing,
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def to_excel(model: ChartModel, birth_year: int | None = None) -> bytes:
    """Return an Excel workbook with a series sheet and an eras sheet."""
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        to_dataframe(model.samples, birth_year).to_excel(writer, sheet_name="series", index=False)
        _eras_to_dataframe(model.samples, model.eras).to_excel(
            writer, sheet_name="eras", index=False,
        )
    return buf.getvalue()


def format_axis_value(value: float, is_top_tick: bool = False, overflowing: bool = False) -> str:
    """Short axis label for a value expressed in units of 10,000."""
    if is_top_tick and overflowing and value >= OVERFLOW_VALUE:
        return "100M+"
    amount = value * UNIT
    if amount >= 1_000_000:
        return f"{amount / 1_000_000:.0f}M"
    return f"{amount / 1_000:.0f}K"


def format_magnitude(value: float) -> str:
    """Tooltip/callout phrasing for a value expressed in units of 10,000."""
    if value >= OVERFLOW_VALUE:
        return "Beyond 100M"
    if value >= 5000:
        return f"{value * UNIT / 1_000_000:.0f}M"
    return f"{round(value * UNIT):,}"


def _num(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".")


def plain_axis_value(value: float, is_top_tick: bool = False, overflowing: bool = False) -> str:
    """Raw tick number, with a trailing "+" on an overflowing top tick."""
    return _num(value) + ("+" if is_top_tick and overflowing else "")


def _tick_labels(model: ChartModel, axis_label: AxisLabel) -> list[str]:
    ticks = model.scale.value_ticks
    last = len(ticks) - 1
    return [
        axis_label(tick.value, i == last, model.scale.is_overflowing)
        for i, tick in enumerate(ticks)
    ]


def _bezier_paths(geometry: PathGeometry, baseline_y: float) -> tuple[Path, Path] | None:
    """Matplotlib stroke and area paths built from the fitted Bezier segments."""
    if not geometry.segments:
        return None
    start = geometry.points[0]
    verts = [(start.x, start.y)]
    codes = [Path.MOVETO]
    for seg in geometry.segments:
        verts.extend([(seg.control1.x, seg.control1.y),
                      (seg.control2.x, seg.control2.y),
                      (seg.end.x, seg.end.y)])
        codes.extend([Path.CURVE4] * 3)
    end = geometry.segments[-1].end
    area_verts = verts + [(end.x, baseline_y), (start.x, baseline_y), (start.x, start.y)]
    area_codes = codes + [Path.LINETO, Path.LINETO, Path.CLOSEPOLY]
    return Path(verts, codes), Path(area_verts, area_codes)


def to_svg(
    model: ChartModel,
    stroke: str = "#6366F1",
    fill: str = "#818CF8",
    axis_label: AxisLabel = plain_axis_value,
) -> str:
    """Render the chart model as a standalone SVG document.

    ``axis_label`` formats value ticks; pass ``format_axis_value`` for
    wealth curves so an overflowing top tick reads "100M+".
    """
    vp = model.scale.viewport
    right = vp.width - vp.right
    parts = [
        f'<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 {_num(vp.width)} {_num(vp.height)}">',
    ]
    for tick, label in zip(model.scale.value_ticks, _tick_labels(model, axis_label)):
        parts.append(
            f'<line x1="{_num(vp.left)}" y1="{_num(tick.y)}" x2="{_num(right)}" '
            f'y2="{_num(tick.y)}" stroke="#F3F4F6"/>'
        )
        parts.append(
            f'<text x="{_num(vp.left - 8)}" y="{_num(tick.y)}" text-anchor="end">'
            f'{escape(label)}</text>'
        )
    for tick in model.scale.position_ticks:
        parts.append(
            f'<text x="{_num(tick.x)}" y="{_num(vp.baseline_y + 20)}" '
            f'text-anchor="middle">{tick.position}</text>'
        )
    for idx, era in enumerate(model.eras):
        start_x = model.scale.position_to_x(model.samples[era.start_index].position)
        end_x = model.scale.position_to_x(model.samples[era.end_index].position)
        if idx > 0:
            parts.append(
                f'<line x1="{_num(start_x)}" y1="{_num(vp.top - 15)}" x2="{_num(start_x)}" '
                f'y2="{_num(vp.baseline_y)}" stroke="#E5E7EB" stroke-dasharray="3,3"/>'
            )
        parts.append(
            f'<text x="{_num((start_x + end_x) / 2)}" y="{_num(vp.top - 28)}" '
            f'text-anchor="middle" fill="#DC2626">{escape(era.era_label)}</text>'
        )
    if model.geometry.area_path:
        parts.append(f'<path d="{model.geometry.area_path}" fill="{fill}" fill-opacity="0.2"/>')
        parts.append(
            f'<path d="{model.geometry.stroke_path}" fill="none" stroke="{stroke}" '
            f'stroke-width="2.5"/>'
        )
    for sample, point in zip(model.samples, model.geometry.points):
        if sample.is_authoritative:
            parts.append(
                f'<circle cx="{_num(point.x)}" cy="{_num(point.y)}" r="3" fill="{stroke}"/>'
            )
    if model.peak is not None:
        pt = model.peak.screen_point
        parts.append(f'<circle cx="{_num(pt.x)}" cy="{_num(pt.y)}" r="5" fill="#F59E0B"/>')
    parts.append("</svg>")
    return "\n".join(parts)


def to_png(model: ChartModel, dpi: int = 100, axis_label: AxisLabel = plain_axis_value) -> bytes:
    """Render the chart at its intrinsic viewport size.

    One image pixel equals one viewport unit, so pointer coordinates on the
    image can go straight through ``model.probe``. The curve is drawn from
    the same Bezier segments as the SVG path.
    """
    vp = model.scale.viewport
    fig = plt.figure(figsize=(vp.width / dpi, vp.height / dpi), dpi=dpi)
    ax = fig.add_axes([0, 0, 1, 1])
    ax.set_xlim(0, vp.width)
    ax.set_ylim(vp.height, 0)
    ax.axis("off")

    for tick, label in zip(model.scale.value_ticks, _tick_labels(model, axis_label)):
        ax.plot([vp.left, vp.width - vp.right], [tick.y, tick.y],
                color="#F3F4F6", linewidth=1, zorder=0)
        ax.text(vp.left - 8, tick.y, label, ha="right", va="center",
                fontsize=8, color="#9CA3AF")
    for tick in model.scale.position_ticks:
        ax.text(tick.x, vp.baseline_y + 20, str(tick.position), ha="center",
                fontsize=8, color="#9CA3AF")
    for idx, era in enumerate(model.eras):
        start_x = model.scale.position_to_x(model.samples[era.start_index].position)
        end_x = model.scale.position_to_x(model.samples[era.end_index].position)
        if idx > 0:
            ax.plot([start_x, start_x], [vp.top - 15, vp.baseline_y],
                    color="#E5E7EB", linestyle="--", linewidth=1, zorder=0)
        ax.text((start_x + end_x) / 2, vp.top - 28, era.era_label, ha="center",
                fontsize=8, color="#DC2626")

    for bar in model.bars:
        ax.add_patch(plt.Rectangle(
            (bar.x, bar.top), bar.width, bar.height,
            color="#22C55E" if bar.rising else "#EF4444", alpha=0.6, zorder=1,
        ))

    points = model.geometry.points
    paths = _bezier_paths(model.geometry, vp.baseline_y)
    if paths is not None:
        stroke_path, area_path = paths
        ax.add_patch(PathPatch(area_path, facecolor="#818CF8", edgecolor="none",
                               alpha=0.2, zorder=1))
        ax.add_patch(PathPatch(stroke_path, facecolor="none", edgecolor="#6366F1",
                               linewidth=2.5, zorder=2))
    key = [p for s, p in zip(model.samples, points) if s.is_authoritative]
    if key:
        ax.scatter([p.x for p in key], [p.y for p in key], color="#6366F1", s=12, zorder=3)
    if model.current is not None:
        pt = model.current.screen_point
        ax.plot([pt.x, pt.x], [vp.top, vp.baseline_y], color="#F59E0B",
                linestyle="--", linewidth=2, zorder=2)
        ax.scatter([pt.x], [pt.y], color="#F59E0B", s=30, zorder=4)

    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=dpi)
    plt.close(fig)
    buf.seek(0)
    return buf.getvalue()
