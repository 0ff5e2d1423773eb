"""
Dense series synthesis tests.

Structural invariants (coverage, authority, clamp range, era partition,
determinism) are asserted exactly; the cosmetic perturbation terms only
within tolerance bands.
"""

import json
import logging
import math

import numpy as np
import pytest

from curve_synth import (
    DEFAULT_CONFIG, Checkpoint, EraGroup, Sample, SynthesisConfig,
    catmull_rom, checkpoints_from_records, group_eras, is_dense,
    micro_fluctuation, normalize_checkpoints, peak_position, regime_wave,
    samples_from_dense, synthesize_series, trend_reinforcement, trough_position,
)
from life_curve import clear_caches


def _sample(position, value, era="E"):
    return Sample(position, value, era, str(position), "", False)


class TestNormalizer:

    def test_sorts_by_position(self):
        cps = [Checkpoint(40, 75), Checkpoint(1, 55), Checkpoint(20, 60)]
        assert [cp.position for cp in normalize_checkpoints(cps)] == [1, 20, 40]

    def test_duplicate_keeps_first_in_input_order(self, caplog):
        cps = [Checkpoint(10, 50, "A"), Checkpoint(5, 40), Checkpoint(10, 70, "B")]
        with caplog.at_level(logging.WARNING):
            normalized = normalize_checkpoints(cps)
        assert [cp.position for cp in normalized] == [5, 10]
        assert normalized[1].value == 50
        assert normalized[1].era_label == "A"
        assert "Duplicate checkpoint" in caplog.text

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            normalize_checkpoints([])

    def test_dense_detection(self):
        assert is_dense(tuple(Checkpoint(i, 50) for i in range(1, 51)))
        assert not is_dense(tuple(Checkpoint(i, 50) for i in range(1, 50)))

    def test_dense_passthrough_marks_authoritative(self):
        cps = tuple(Checkpoint(i, 50.5, "E", f"y{i}", "r") for i in range(1, 4))
        samples = samples_from_dense(cps)
        assert all(s.is_authoritative for s in samples)
        assert [s.value for s in samples] == [50.5, 50.5, 50.5]


class TestRecords:

    def test_original_wire_keys(self):
        cps = checkpoints_from_records([
            {"age": 10, "score": 65, "daYun": "乙丑", "ganZhi": "乙丑", "reason": "学业运势上升"},
        ])
        assert cps == [Checkpoint(10, 65, "乙丑", "乙丑", "学业运势上升")]

    def test_canonical_keys(self):
        cps = checkpoints_from_records([{"position": 3, "value": 44.5, "era_label": "X"}])
        assert cps[0].position == 3
        assert cps[0].value == 44.5
        assert cps[0].narrative == ""

    @pytest.mark.parametrize("record", [
        {"age": 10},
        {"score": 50},
        {"age": 10, "score": "abc"},
        {"age": 10, "score": float("nan")},
        {"age": float("inf"), "score": 50},
        {"age": float("nan"), "score": 50},
        {"age": 10, "score": 10 ** 400},
        {"age": 10 ** 400, "score": 50},
        {"age": 10.9, "score": 50},
    ])
    def test_malformed_records_raise(self, record):
        with pytest.raises(ValueError):
            checkpoints_from_records([record])

    def test_json_infinity_position_is_a_value_error(self):
        with pytest.raises(ValueError):
            checkpoints_from_records(json.loads('[{"age": Infinity, "score": 50}]'))

    def test_whole_float_position_is_accepted(self):
        assert checkpoints_from_records([{"age": 10.0, "score": 50}])[0].position == 10


class TestPerturbationTerms:

    def test_catmull_rom_hits_segment_ends(self):
        assert catmull_rom(10, 20, 40, 35, 0.0) == 20
        assert catmull_rom(10, 20, 40, 35, 1.0) == pytest.approx(40)

    def test_catmull_rom_is_linear_on_collinear_points(self):
        assert catmull_rom(0, 1, 2, 3, 0.5) == pytest.approx(1.5)

    def test_regime_wave_bounded_and_periodic(self):
        positions = np.arange(1, 91)
        wave = regime_wave(positions)
        assert np.all(np.abs(wave) <= DEFAULT_CONFIG.wave_amplitude + 1e-9)
        assert np.allclose(wave[positions % 10 == 0], 0.0)
        assert np.allclose(regime_wave(positions + 10), wave)

    def test_trend_strength_depends_on_jump_size(self):
        strong = trend_reinforcement(np.array([40.0]), np.array([60.0]), np.array([0.5]))
        weak = trend_reinforcement(np.array([40.0]), np.array([50.0]), np.array([0.5]))
        scale = DEFAULT_CONFIG.trend_scale
        assert strong[0] == pytest.approx(20 * 0.5 * 1.0 * scale)
        assert weak[0] == pytest.approx(10 * 0.5 * 0.7 * scale)

    def test_trend_scale_damps_the_bias(self):
        undamped = SynthesisConfig(trend_scale=1.0)
        term = trend_reinforcement(np.array([40.0]), np.array([60.0]), np.array([1.0]), undamped)
        assert term[0] == pytest.approx(20.0)
        assert trend_reinforcement(
            np.array([40.0]), np.array([60.0]), np.array([1.0]),
        )[0] == pytest.approx(20.0 * DEFAULT_CONFIG.trend_scale)

    def test_trend_follows_direction_of_travel(self):
        down = trend_reinforcement(np.array([80.0]), np.array([50.0]), np.array([0.5]))
        assert down[0] < 0

    def test_micro_fluctuation_only_at_fixed_offsets(self):
        positions = np.arange(1, 91)
        micro = micro_fluctuation(positions)
        inactive = ~np.isin(positions % 10, DEFAULT_CONFIG.micro_offsets)
        assert np.all(micro[inactive] == 0.0)
        assert np.all(np.abs(micro) <= DEFAULT_CONFIG.micro_amplitude + 1e-9)
        assert np.any(micro != 0.0)


class TestSynthesizeSeries:

    def test_scenario_a_authority_and_range(self, scenario_checkpoints):
        samples = synthesize_series(scenario_checkpoints)
        by_pos = {s.position: s for s in samples}
        for cp in scenario_checkpoints:
            assert by_pos[cp.position].value == cp.value
            assert by_pos[cp.position].is_authoritative
        for s in samples:
            if not s.is_authoritative:
                assert 30 <= s.value <= 95
        assert not by_pos[90].is_authoritative
        assert 30 <= by_pos[90].value <= 95

    def test_coverage_is_contiguous(self, scenario_checkpoints):
        samples = synthesize_series(scenario_checkpoints)
        assert len(samples) == 90
        assert [s.position for s in samples] == list(range(1, 91))

    def test_determinism(self, scenario_factory):
        first = synthesize_series(scenario_factory())
        clear_caches()
        second = synthesize_series(scenario_factory())
        assert first == second

    def test_input_order_does_not_matter(self, scenario_checkpoints):
        assert (synthesize_series(scenario_checkpoints)
                == synthesize_series(list(reversed(scenario_checkpoints))))

    def test_flat_segment_stays_near_value_but_is_not_flat(self):
        samples = synthesize_series([Checkpoint(1, 60), Checkpoint(90, 60)])
        inner = [s.value for s in samples if not s.is_authoritative]
        assert all(abs(v - 60) <= 3 for v in inner)
        assert len(set(inner)) > 1

    def test_values_are_rounded_integers(self, scenario_checkpoints):
        for s in synthesize_series(scenario_checkpoints):
            if not s.is_authoritative:
                assert float(s.value).is_integer()

    def test_extreme_checkpoints_clamp_neighbours(self):
        samples = synthesize_series([
            Checkpoint(1, 10), Checkpoint(50, 150), Checkpoint(90, 60),
        ])
        by_pos = {s.position: s for s in samples}
        assert by_pos[1].value == 10
        assert by_pos[50].value == 150
        assert all(30 <= s.value <= 95 for s in samples if not s.is_authoritative)

    def test_labels_follow_enclosing_checkpoint(self, scenario_checkpoints):
        by_pos = {s.position: s for s in synthesize_series(scenario_checkpoints)}
        assert by_pos[30].era_label == "E2"
        assert by_pos[30].short_label == "30"
        assert "E2" in by_pos[30].narrative
        # Past the midpoint the next checkpoint's narrative dominates.
        assert "Career peak" in by_pos[35].narrative
        assert "Studies beg" in by_pos[25].narrative

    def test_positions_before_first_checkpoint_hold_its_value(self):
        samples = synthesize_series([Checkpoint(20, 70), Checkpoint(40, 70)])
        for s in samples[:19]:
            assert abs(s.value - 70) <= 3
            assert not s.is_authoritative

    def test_single_checkpoint_degrades_to_flat(self, caplog):
        with caplog.at_level(logging.WARNING):
            samples = synthesize_series([Checkpoint(40, 70, "E1", "x", "only")])
        assert len(samples) == 90
        assert {s.value for s in samples} == {70}
        assert [s.position for s in samples if s.is_authoritative] == [40]
        assert "flat series" in caplog.text

    def test_single_out_of_range_checkpoint_is_clamped_elsewhere(self):
        samples = synthesize_series([Checkpoint(10, 120)])
        assert samples[9].value == 120
        assert {s.value for s in samples if not s.is_authoritative} == {95}

    def test_dense_input_skips_synthesis(self):
        cps = [Checkpoint(i + 1, 50 + math.sin(i / 10) * 20, f"大运{i // 10 + 1}")
               for i in range(80)]
        samples = synthesize_series(cps)
        assert len(samples) == 80
        assert all(s.is_authoritative for s in samples)
        assert samples[5].value == cps[5].value

    def test_custom_domain(self):
        config = SynthesisConfig(min_position=18, max_position=80)
        samples = synthesize_series([Checkpoint(18, 50), Checkpoint(80, 70)], config)
        assert samples[0].position == 18
        assert samples[-1].position == 80
        assert len(samples) == 63

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            synthesize_series([])


class TestGroupEras:

    def test_simple_runs(self):
        samples = [_sample(i, 50, era) for i, era in enumerate("AABBBA", start=1)]
        assert group_eras(samples) == (
            EraGroup("A", 0, 1), EraGroup("B", 2, 4), EraGroup("A", 5, 5),
        )

    def test_empty(self):
        assert group_eras([]) == ()

    def test_partition_of_synthesized_series(self, scenario_checkpoints):
        samples = synthesize_series(scenario_checkpoints)
        groups = group_eras(samples)
        assert groups[0].start_index == 0
        assert groups[-1].end_index == len(samples) - 1
        for prev, nxt in zip(groups, groups[1:]):
            assert nxt.start_index == prev.end_index + 1
            assert nxt.era_label != prev.era_label
        covered = [i for g in groups for i in range(g.start_index, g.end_index + 1)]
        assert covered == list(range(len(samples)))
        assert [g.era_label for g in groups] == ["E1", "E2", "E3", "E4", "E5"]


class TestHighlightRules:

    def test_first_maximum_and_minimum(self):
        samples = [_sample(1, 50), _sample(2, 80), _sample(3, 80), _sample(4, 40), _sample(5, 40)]
        assert peak_position(samples) == 2
        assert trough_position(samples) == 4

    def test_empty(self):
        assert peak_position([]) is None
        assert trough_position([]) is None
