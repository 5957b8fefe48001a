#!/usr/bin/env python3
"""
test_mount.py - Unit tests for the mount tracking model

Covers:
- Backlash absorption and excess on direction reversal
- Polar alignment drift and field rotation
- Pulse guiding thresholds and pier-side handling
- Slew state machine, tracking drift and binding events

Run with:
    PYTHONPATH=.:src python -m pytest validation/tests/test_mount.py -v
"""

import numpy as np
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from synthsky.config import MountConfig
from synthsky.environment.mount import (
    SIDEREAL_RATE,
    AxisBacklash,
    MountModel,
    PierSide,
    SlewState,
    TrackingMode,
    periodic_error,
    pier_side_for_hour_angle,
    polar_alignment_rates,
    ra_difference,
)
from synthsky.errors import ConfigurationError


def quiet_mount(**overrides):
    """Mount with every stochastic error source switched off."""
    settings = dict(ra=100.0, dec=20.0, tracking_noise=False, ra_backlash=0.0, dec_backlash=0.0)
    settings.update(overrides)
    return MountModel(MountConfig(**settings))


class FixedRng:
    """Generator stand-in returning fixed draws."""

    def __init__(self, value=0.0):
        self.value = value

    def random(self):
        return self.value

    def uniform(self, low, high):
        return low

    def normal(self, *args):
        return 0.0


class TestBacklash:
    """Test gear play on one axis."""

    def test_first_movement_passes(self):
        axis = AxisBacklash(10.0, 0.0)
        assert axis.apply(1, 5.0) == 5.0
        assert axis.last_direction == 1

    def test_same_direction_passes(self):
        axis = AxisBacklash(10.0, 0.0, last_direction=1)
        assert axis.apply(1, 3.0) == 3.0

    def test_reversal_below_backlash_is_absorbed(self):
        """Movement smaller than the play after a reversal produces no motion."""
        axis = AxisBacklash(10.0, 0.0, last_direction=1)
        assert axis.apply(-1, -4.0) == 0.0
        assert axis.remaining == pytest.approx(6.0)

    def test_reversal_above_backlash_moves_by_excess(self):
        """Movement larger than the play moves by the excess only."""
        axis = AxisBacklash(10.0, 0.0, last_direction=1)
        assert axis.apply(-1, -15.0) == pytest.approx(-5.0)
        assert axis.remaining == 0.0

    def test_compensation(self):
        axis = AxisBacklash(8.0, 80.0, last_direction=-1)
        assert axis.effective_amount == pytest.approx(1.6)
        assert axis.apply(1, 2.0) == pytest.approx(0.4)

    def test_reset(self):
        axis = AxisBacklash(10.0, 0.0, last_direction=1, remaining=3.0)
        axis.reset()
        assert axis.last_direction == 0
        assert axis.apply(-1, -2.0) == -2.0


class TestPolarAlignment:
    """Test polar misalignment effects."""

    @pytest.mark.parametrize("dec", [-89.9, -45.0, 0.0, 30.0, 89.99])
    @pytest.mark.parametrize("hour_angle", [-170.0, -90.0, 0.0, 45.0, 179.0])
    def test_zero_error_gives_zero_rates(self, dec, hour_angle):
        assert polar_alignment_rates(0.0, dec, hour_angle, 40.0) == (0.0, 0.0)

    def test_positive_azimuth_error_drifts_north_at_ha_90(self):
        drift, _ = polar_alignment_rates(0.5, 0.0, 90.0, 40.0)
        assert drift > 0

    def test_drift_scales_with_error(self):
        small, _ = polar_alignment_rates(0.1, 10.0, 30.0, 40.0)
        large, _ = polar_alignment_rates(0.2, 10.0, 30.0, 40.0)
        assert large == pytest.approx(2.0 * small)

    def test_aligned_mount_has_no_dec_drift_or_rotation(self):
        """Tracking with zero polar error leaves dec and rotation untouched."""
        mount = quiet_mount(polar_alignment_error=0.0)
        for _ in range(50):
            mount.advance(7.3, np.random.default_rng(0))
        assert mount.dec == 20.0
        assert mount.field_rotation == 0.0

    def test_misaligned_mount_rotates_field(self):
        mount = quiet_mount(polar_alignment_error=1.0)
        for _ in range(10):
            mount.advance(60.0, np.random.default_rng(0))
        assert mount.field_rotation != 0.0
        assert mount.dec != 20.0


class TestGuiding:
    """Test pulse guides, cable snags and meridian flips."""

    def test_tiny_pulse_ignored(self):
        mount = quiet_mount()
        assert mount.pulse_guide(1.0, 1.0, 1.0) == (0.0, 0.0)
        assert mount.ra == 100.0 and mount.dec == 20.0

    def test_pulse_moves_mount(self):
        mount = quiet_mount()
        ra_move, dec_move = mount.pulse_guide(7.5, -7.5, 1000.0)
        assert ra_move == pytest.approx(7.5 / 3600.0)
        assert dec_move == pytest.approx(-7.5 / 3600.0)
        assert mount.dec == pytest.approx(20.0 - 7.5 / 3600.0)

    def test_east_pier_reverses_dec(self):
        mount = quiet_mount()
        mount.meridian_flip()
        assert mount.pier_side is PierSide.EAST
        _, dec_move = mount.pulse_guide(0.0, 10.0, 1000.0)
        assert dec_move == pytest.approx(-10.0 / 3600.0)

    def test_pulse_backlash_on_reversal(self):
        mount = quiet_mount(dec_backlash=8.0, dec_backlash_compensation=0.0)
        mount.pulse_guide(0.0, 5.0, 1000.0)
        _, dec_move = mount.pulse_guide(0.0, -5.0, 1000.0)
        assert dec_move == 0.0
        _, dec_move = mount.pulse_guide(0.0, 12.0, 1000.0)
        assert dec_move == pytest.approx(4.0 / 3600.0)

    def test_meridian_flip_clears_backlash(self):
        mount = quiet_mount(ra_backlash=10.0, ra_backlash_compensation=0.0)
        mount.pulse_guide(5.0, 0.0, 1000.0)
        mount.meridian_flip()
        assert mount.ra_backlash.last_direction == 0
        assert mount.has_flipped

    def test_snapshot_reports_backlash(self):
        mount = quiet_mount(dec_backlash=8.0, dec_backlash_compensation=0.0)
        mount.pulse_guide(0.0, 5.0, 1000.0)
        mount.pulse_guide(0.0, -5.0, 1000.0)
        state = mount.snapshot()
        assert state.dec_backlash_direction == -1
        assert state.dec_backlash_remaining == pytest.approx(3.0)
        assert state.ra_backlash_direction == 0
        assert state.ra_backlash_remaining == 0.0

    def test_negative_duration(self):
        with pytest.raises(ConfigurationError):
            quiet_mount().pulse_guide(1.0, 1.0, -5.0)

    def test_cable_snag(self):
        mount = quiet_mount()
        mount.cable_snag(0.01, -0.02)
        assert mount.ra == pytest.approx(100.01)
        assert mount.dec == pytest.approx(19.98)

    def test_pier_side_for_hour_angle(self):
        assert pier_side_for_hour_angle(30.0) is PierSide.WEST
        assert pier_side_for_hour_angle(-30.0) is PierSide.EAST

    def test_meridian_flip_needed_after_crossing(self):
        mount = quiet_mount()
        assert mount.pier_side is PierSide.WEST
        assert not mount.meridian_flip_needed()


class TestSlewAndTracking:
    """Test slewing and tracking drift."""

    def test_slew_state_machine(self):
        mount = quiet_mount(ra=0.0, dec=0.0, slew_rate=1.0)
        mount.slew_to(10.0, 20.0)
        assert mount.slew_state is SlewState.SLEWING
        state = mount.advance(10.0, np.random.default_rng(0))
        assert state.is_slewing
        assert state.slew_progress == pytest.approx(0.5)
        assert mount.dec == pytest.approx(10.0)
        state = mount.advance(10.0, np.random.default_rng(0))
        assert not state.is_slewing
        assert (mount.ra, mount.dec) == (10.0, 20.0)

    def test_slew_across_ra_zero_takes_short_way(self):
        mount = quiet_mount(ra=359.0, dec=0.0, slew_rate=1.0)
        mount.slew_to(1.0, 0.0)
        mount.advance(1.0, np.random.default_rng(0))
        assert mount.ra == pytest.approx(0.0, abs=1e-9) or mount.ra == pytest.approx(360.0)

    def test_invalid_slew_target(self):
        with pytest.raises(ConfigurationError):
            quiet_mount().slew_to(10.0, 91.0)

    def test_sidereal_tracking_holds_position(self):
        mount = quiet_mount()
        mount.advance(600.0, np.random.default_rng(0))
        assert mount.ra == pytest.approx(100.0)

    def test_tracking_off_follows_sky(self):
        """With tracking off the pointing RA advances at the sidereal rate."""
        mount = quiet_mount()
        mount.set_tracking_mode(TrackingMode.OFF)
        mount.advance(100.0, np.random.default_rng(0))
        assert mount.ra == pytest.approx(100.0 + SIDEREAL_RATE * 100.0)

    def test_set_tracking_rate_maps_modes(self):
        mount = quiet_mount()
        mount.set_tracking_rate(0.0)
        assert mount.tracking_mode is TrackingMode.OFF
        mount.set_tracking_rate(SIDEREAL_RATE)
        assert mount.tracking_mode is TrackingMode.SIDEREAL
        mount.set_tracking_rate(0.004)
        assert mount.tracking_mode is TrackingMode.CUSTOM
        assert mount.tracking_rate == 0.004

    def test_negative_time_step(self):
        with pytest.raises(ValueError):
            quiet_mount().advance(-1.0, np.random.default_rng(0))

    def test_hour_angle_grows_with_time(self):
        mount = quiet_mount()
        assert mount.hour_angle() == pytest.approx(0.0)
        mount.advance(3600.0, np.random.default_rng(0))
        assert mount.hour_angle() == pytest.approx(SIDEREAL_RATE * 3600.0)


class TestPeriodicErrorAndBinding:
    """Test periodic error and binding events."""

    def test_periodic_error_repeats(self):
        for t in (0.0, 17.0, 123.4):
            assert periodic_error(8.0, 480.0, t) == pytest.approx(periodic_error(8.0, 480.0, t + 480.0))

    def test_periodic_error_bounded(self):
        values = [periodic_error(8.0, 480.0, t) for t in np.linspace(0.0, 480.0, 500)]
        assert max(abs(v) for v in values) <= 8.0 * 1.5

    def test_unset_period_is_zero(self):
        assert periodic_error(8.0, 0.0, 12.0) == 0.0

    def test_periodic_error_only_while_tracking(self):
        mount = quiet_mount(periodic_error_amplitude=8.0, periodic_error_period=480.0)
        mount.advance(30.0, np.random.default_rng(0))
        assert mount.current_periodic_error() != 0.0
        mount.set_tracking_mode(TrackingMode.OFF)
        assert mount.current_periodic_error() == 0.0

    def test_binding_jump(self):
        mount = quiet_mount(binding_magnitude=1.5, mean_binding_interval=10.0)
        mount.elapsed = 1000.0
        ra_jump, dec_jump = mount.check_binding(FixedRng(0.0))
        assert ra_jump == pytest.approx(1.5)
        assert dec_jump == pytest.approx(0.0)
        assert mount.ra == pytest.approx(100.0 + 1.5 / 3600.0)
        assert mount.last_binding_time == 1000.0
        assert mount.snapshot().last_binding_time == 1000.0

    def test_no_binding_when_draw_high(self):
        mount = quiet_mount()
        mount.elapsed = 1000.0
        assert mount.check_binding(FixedRng(0.99)) == (0.0, 0.0)

    def test_ra_difference(self):
        assert ra_difference(1.0, 359.0) == pytest.approx(2.0)
        assert ra_difference(359.0, 1.0) == pytest.approx(-2.0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
