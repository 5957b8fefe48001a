#!/usr/bin/env python3
"""
test_sensor_physics.py - Unit tests for the detector model

Covers:
- Quantum efficiency curves
- Temperature dependence of dark current
- Poisson/Gaussian count sampling
- Full well, read noise, fixed pattern and ADC quantization

Run with:
    PYTHONPATH=.:src python -m pytest validation/tests/test_sensor_physics.py -v
"""

import numpy as np
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from synthsky.config import CameraConfig
from synthsky.core.sensor_physics import (
    SensorModel,
    SensorType,
    dark_current_rate,
    quantum_efficiency,
    sample_counts,
)
from synthsky.errors import ConfigurationError
from validation.metrics import background_statistics


def clean_sensor(**overrides):
    """Small sensor with no noise sources unless overridden."""
    settings = dict(width=40, height=30, pixel_size=4.0, read_noise=0.0, base_dark_current=0.0)
    settings.update(overrides)
    return SensorModel(**settings)


class TestQuantumEfficiency:
    """Test spectral response."""

    @pytest.mark.parametrize("sensor_type,peak,qe", [
        (SensorType.CCD, 650.0, 0.85),
        (SensorType.CMOS, 550.0, 0.75),
        (SensorType.BSI_CMOS, 550.0, 0.95),
    ])
    def test_peak(self, sensor_type, peak, qe):
        assert quantum_efficiency(peak, sensor_type) == pytest.approx(qe)
        assert quantum_efficiency(peak + 100.0, sensor_type) < qe

    def test_vectorized(self):
        qe = quantum_efficiency(np.array([450.0, 550.0, 650.0]), SensorType.BSI_CMOS)
        assert qe.shape == (3,)
        assert qe[1] == pytest.approx(0.95)


class TestDarkCurrent:
    """Test temperature dependence of dark current."""

    def test_six_degrees_doubles_dark_electrons(self):
        """A 6 degree rise doubles the expected dark electrons for a fixed exposure."""
        cold = clean_sensor(base_dark_current=0.1, temperature=-10.0, dark_current_coefficient=6.0)
        warm = clean_sensor(base_dark_current=0.1, temperature=-4.0, dark_current_coefficient=6.0)
        assert warm.expected_dark_electrons(30.0) == pytest.approx(2.0 * cold.expected_dark_electrons(30.0),
                                                                   rel=1e-12)

    def test_reference_temperature(self):
        assert dark_current_rate(0.1, 0.0) == pytest.approx(0.1)
        assert dark_current_rate(0.1, 6.5) == pytest.approx(0.2)
        assert dark_current_rate(0.1, -13.0) == pytest.approx(0.025)

    def test_dark_frame_level(self):
        """Test mean dark signal in a long exposure."""
        sensor = clean_sensor(width=200, height=200, base_dark_current=1.0, temperature=0.0, gain=1.0)
        adu = sensor.process(np.zeros((200, 200)), 100.0, np.random.default_rng(0))
        stats = background_statistics(adu)
        assert abs(stats["mean"] - (sensor.bias_level + 100.0)) < 0.5
        assert abs(stats["std"] - 10.0) < 0.5


class TestSampling:
    """Test count sampling."""

    def test_zero_expectation(self):
        counts = sample_counts(np.zeros((5, 5)), np.random.default_rng(0))
        assert np.all(counts == 0)

    def test_negative_expectation_clipped(self):
        counts = sample_counts(np.full(10, -5.0), np.random.default_rng(0))
        assert np.all(counts == 0)

    @pytest.mark.parametrize("mean", [4.0, 500.0])
    def test_mean_and_variance(self, mean):
        counts = sample_counts(np.full(20000, mean), np.random.default_rng(1))
        assert abs(counts.mean() - mean) < 0.05 * mean
        assert abs(counts.var() - mean) < 0.1 * mean


class TestReadout:
    """Test the full readout chain."""

    def test_noiseless_dark_frame_is_bias(self):
        sensor = clean_sensor()
        adu = sensor.process(np.zeros((30, 40)), 1.0, np.random.default_rng(0))
        assert adu.dtype == np.uint16
        assert np.all(adu == sensor.bias_level)

    def test_full_well_saturation(self):
        sensor = clean_sensor(gain=2.0, full_well=50000)
        adu = sensor.process(np.full((30, 40), 1e6), 1.0, np.random.default_rng(0), wavelength_nm=None)
        assert np.all(adu == sensor.bias_level + 25000)

    def test_adc_clipping(self):
        sensor = clean_sensor(bit_depth=12)
        assert sensor.max_adu == 4095
        adu = sensor.apply_adc(np.array([[-1e6, 1e9]]))
        assert adu[0, 0] == 0
        assert adu[0, 1] == 4095

    def test_wide_adc_dtype(self):
        sensor = clean_sensor(bit_depth=20)
        assert sensor.apply_adc(np.zeros((2, 2))).dtype == np.uint32

    def test_read_noise_level(self):
        sensor = clean_sensor(width=200, height=200, read_noise=5.0, gain=1.0)
        adu = sensor.process(np.zeros((200, 200)), 1.0, np.random.default_rng(2))
        assert abs(background_statistics(adu)["std"] - 5.0) < 0.2

    def test_quantum_efficiency_applied(self):
        sensor = clean_sensor(sensor_type=SensorType.BSI_CMOS)
        electrons = sensor.apply_quantum_efficiency(np.full((2, 2), 1000.0), 550.0)
        assert np.allclose(electrons, 950.0)

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            clean_sensor().process(np.zeros((40, 30)), 1.0, np.random.default_rng(0))

    def test_fixed_pattern_applied(self):
        sensor = clean_sensor(column_offsets=np.full(40, 4.0), gain=1.0)
        adu = sensor.process(np.zeros((30, 40)), 1.0, np.random.default_rng(0))
        assert np.all(adu == sensor.bias_level + 4)


class TestSensorCreation:
    """Test construction from camera configuration."""

    def test_create_from_camera(self):
        camera = CameraConfig(width=200, height=100, sensor_type="CCD", temperature=-20.0)
        sensor = SensorModel.create(camera, np.random.default_rng(0))
        assert sensor.sensor_type is SensorType.CCD
        assert sensor.hot_pixel_map.shape == (100, 200)
        assert 1 <= np.count_nonzero(sensor.hot_pixel_map > 1.0) <= 2
        assert sensor.hot_pixel_map.max() <= 10.0
        assert sensor.column_offsets.shape == (200,)
        assert sensor.row_offsets.shape == (100,)

    def test_create_without_fixed_pattern(self):
        sensor = SensorModel.create(CameraConfig(width=50, height=50), np.random.default_rng(0),
                                    fixed_pattern=False)
        assert np.all(sensor.hot_pixel_map == 1.0)
        assert not sensor.column_offsets.any()

    def test_hot_pixels_raise_dark_signal(self):
        hot = np.ones((30, 40))
        hot[10, 10] = 10.0
        sensor = clean_sensor(base_dark_current=50.0, temperature=0.0, hot_pixel_map=hot, gain=1.0)
        adu = sensor.process(np.zeros((30, 40)), 10.0, np.random.default_rng(0))
        assert adu[10, 10] > np.median(adu) * 1.1

    def test_invalid_sensor(self):
        with pytest.raises(ConfigurationError):
            clean_sensor(gain=0.0)
        with pytest.raises(ConfigurationError):
            clean_sensor(width=0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
