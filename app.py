import io
import json
import logging
import os
from datetime import datetime
from pathlib import Path

import streamlit as st
from PIL import Image
from streamlit_image_coordinates import streamlit_image_coordinates

from chart_geometry import ScaleConfig
from curve_synth import SynthesisConfig, checkpoints_from_records
from export import (
    format_axis_value, format_magnitude, plain_axis_value, to_csv, to_dataframe,
    to_excel, to_json, to_png, to_svg,
)
from life_curve import build_chart, year_for_position

logging.basicConfig(level=logging.INFO)

PREVIEW_DIR = Path(os.environ.get("LIFE_CURVE_PREVIEW_DIR", Path(__file__).parent / "previews"))

SAMPLE_CHECKPOINTS = [
    {"age": 1, "score": 55, "daYun": "甲子", "ganZhi": "甲子", "reason": "Steady childhood"},
    {"age": 20, "score": 60, "daYun": "乙丑", "ganZhi": "庚辰", "reason": "Studies pay off"},
    {"age": 40, "score": 75, "daYun": "丙寅", "ganZhi": "庚子", "reason": "Career peak approaching"},
    {"age": 60, "score": 80, "daYun": "丁卯", "ganZhi": "庚申", "reason": "Harvest of long effort"},
    {"age": 80, "score": 60, "daYun": "戊辰", "ganZhi": "庚辰", "reason": "Quiet later years"},
]

CURVE_MODES = ["Life score (0-100)", "Wealth (units of 10k)"]

# Wealth curves run from 18 to 80, are unclamped and carry no cosmetic wobble.
WEALTH_SYNTHESIS = SynthesisConfig(
    min_position=18, max_position=80, clamp_min=0, clamp_max=float("inf"),
    wave_amplitude=0.0, micro_amplitude=0.0,
)
WEALTH_SCALE = ScaleConfig(position_ticks=(18, 30, 40, 50, 60, 70, 80))

st.set_page_config(page_title="Life Curve", layout="wide")

st.title("Life Curve")
st.markdown("Paste checkpoints from the fortune model and inspect the synthesized curve.")

# Sidebar
curve_mode = st.sidebar.radio("Curve mode", CURVE_MODES)
birth_year = st.sidebar.number_input("Birth year", value=1990, step=1)
current_age = st.sidebar.number_input("Current age (0 = off)", value=0, min_value=0, step=1)

raw = st.text_area(
    "Checkpoints (JSON list)",
    value=json.dumps(SAMPLE_CHECKPOINTS, ensure_ascii=False, indent=2),
    height=220,
)


def _save_preview(png_bytes: bytes) -> None:
    """Save the preview PNG with a timestamped filename."""
    PREVIEW_DIR.mkdir(parents=True, exist_ok=True)
    filename = st.session_state.get("preview_filename")
    if filename is None:
        filename = f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_curve.png"
        st.session_state["preview_filename"] = filename
    (PREVIEW_DIR / filename).write_bytes(png_bytes)


try:
    checkpoints = checkpoints_from_records(json.loads(raw))
    if curve_mode == CURVE_MODES[0]:
        model = build_chart(checkpoints, current_position=int(current_age) or None)
    else:
        model = build_chart(
            checkpoints, domain_max=None, current_position=int(current_age) or None,
            synthesis=WEALTH_SYNTHESIS, scale_config=WEALTH_SCALE,
        )
except (ValueError, TypeError) as e:
    st.error(f"Could not build chart: {e}")
    model = None

if model is not None:
    axis_label = plain_axis_value if curve_mode == CURVE_MODES[0] else format_axis_value
    png = to_png(model, axis_label=axis_label)
    pil_img = Image.open(io.BytesIO(png))
    intrinsic_w, _ = pil_img.size
    display_w = min(intrinsic_w, 1000)

    coords = streamlit_image_coordinates(pil_img, width=display_w, key="curve_image")

    # Only act on new clicks, not replayed values.
    if coords is not None:
        click_key = (coords["x"], coords["y"])
        if click_key != st.session_state.get("_last_click"):
            st.session_state["_last_click"] = click_key
            rendered_w = coords.get("width") or display_w
            st.session_state["hovered_index"] = model.probe(coords["x"], rendered_w)

    hovered = st.session_state.get("hovered_index")
    if hovered is not None and hovered < len(model.samples):
        sample = model.samples[hovered]
        year = year_for_position(sample.position, int(birth_year))
        value = format_magnitude(sample.value) if curve_mode != CURVE_MODES[0] else sample.value
        st.info(
            f"**{year}** {sample.short_label} (age {sample.position}) · "
            f"{sample.era_label}: {value}"
            + (" · key year" if sample.is_authoritative else "")
            + f"\n\n{sample.narrative}"
        )
    else:
        st.caption("Click the chart to inspect a year.")

    col_meta, col_eras = st.columns(2)
    with col_meta:
        if model.peak is not None:
            st.markdown(f"**Peak:** age {model.peak.position} ({model.peak.value})")
        if model.trough is not None:
            st.markdown(f"**Trough:** age {model.trough.position} ({model.trough.value})")
        if model.scale.is_overflowing:
            st.warning("Values above the display ceiling are compressed at the top of the axis.")
    with col_eras:
        st.markdown("**Eras:** " + ", ".join(e.era_label for e in model.eras))

    st.subheader("Dense Series")
    st.dataframe(to_dataframe(model.samples, int(birth_year)), use_container_width=True)

    st.subheader("Export")
    col_csv, col_json, col_excel, col_svg, col_png = st.columns(5)
    with col_csv:
        st.download_button("CSV", data=to_csv(model, int(birth_year)),
                           file_name="life_curve.csv", mime="text/csv")
    with col_json:
        st.download_button("JSON", data=to_json(model),
                           file_name="life_curve.json", mime="application/json")
    with col_excel:
        st.download_button(
            "Excel",
            data=to_excel(model, int(birth_year)),
            file_name="life_curve.xlsx",
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )
    with col_svg:
        st.download_button("SVG", data=to_svg(model, axis_label=axis_label),
                           file_name="life_curve.svg", mime="image/svg+xml")
    with col_png:
        if st.button("Save PNG preview"):
            _save_preview(png)
            st.success(f"Saved to {PREVIEW_DIR}")
