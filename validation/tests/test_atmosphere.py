#!/usr/bin/env python3
"""
test_atmosphere.py - Unit tests for the atmospheric model

Run with:
    PYTHONPATH=.:src python -m pytest validation/tests/test_atmosphere.py -v
"""

from dataclasses import replace

import numpy as np
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from synthsky.config import AtmosphereConfig
from synthsky.environment.atmosphere import (
    MAX_SEEING,
    MIN_SEEING,
    AtmosphereModel,
    evolve_clouds,
    evolve_seeing,
    generate_layers,
    layer_jitter,
    total_jitter,
    transparency_from_clouds,
)
from synthsky.errors import ConfigurationError


class TestLayers:
    """Test turbulent layer generation and jitter."""

    def test_contributions_sum_to_one(self):
        layers = generate_layers(1.5, np.random.default_rng(0))
        assert [layer.name for layer in layers] == ["ground", "mid", "jet"]
        assert sum(layer.contribution for layer in layers) == pytest.approx(1.0)

    def test_layer_heights_ordered(self):
        ground, mid, jet = generate_layers(2.0, np.random.default_rng(4))
        assert ground.height_km <= mid.height_km <= jet.height_km

    def test_jitter_is_deterministic_in_time(self):
        """Test jitter depends only on time for fixed layers."""
        layers = generate_layers(2.0, np.random.default_rng(1))
        assert total_jitter(layers, 2.0, 3.7) == total_jitter(layers, 2.0, 3.7)
        assert total_jitter(layers, 2.0, 0.0) == (0.0, 0.0)

    def test_jitter_bounded_by_seeing(self):
        """Distortion scales top out at 1.5, so |jitter| <= 1.5 * seeing."""
        layers = generate_layers(2.0, np.random.default_rng(2))
        for t in np.linspace(0.0, 60.0, 200):
            jx, jy = total_jitter(layers, 2.0, t)
            assert abs(jx) <= 3.0 + 1e-12 and abs(jy) <= 3.0 + 1e-12

    def test_distortion_scale_drawn_per_layer(self):
        layers = generate_layers(2.0, np.random.default_rng(5))
        for layer in layers:
            assert 0.5 <= layer.distortion_scale <= 1.5

    def test_jitter_scales_with_distortion(self):
        """Doubling a layer's distortion scale doubles its image motion."""
        layer = generate_layers(1.0, np.random.default_rng(6))[1]
        stronger = replace(layer, distortion_scale=2.0 * layer.distortion_scale)
        dx1, dy1 = layer_jitter(layer, 1.5, 7.3)
        dx2, dy2 = layer_jitter(stronger, 1.5, 7.3)
        assert dx1 != 0.0 or dy1 != 0.0
        assert dx2 == pytest.approx(2.0 * dx1)
        assert dy2 == pytest.approx(2.0 * dy1)

    def test_rejects_non_positive_seeing(self):
        with pytest.raises(ConfigurationError):
            generate_layers(0.0, np.random.default_rng(0))

    def test_jitter_scales_with_seeing(self):
        layers = generate_layers(1.0, np.random.default_rng(3))
        jx1, jy1 = total_jitter(layers, 1.0, 5.0)
        jx2, jy2 = total_jitter(layers, 2.0, 5.0)
        assert jx2 == pytest.approx(2.0 * jx1)
        assert jy2 == pytest.approx(2.0 * jy1)


class TestEvolution:
    """Test seeing and cloud drift."""

    def test_seeing_clamped(self):
        rng = np.random.default_rng(0)
        for t in np.linspace(0.0, 5000.0, 100):
            assert MIN_SEEING <= evolve_seeing(0.1, t, 1.0, rng) <= MAX_SEEING
            assert MIN_SEEING <= evolve_seeing(20.0, t, 1.0, rng) <= MAX_SEEING

    def test_clouds_clamped(self):
        rng = np.random.default_rng(1)
        coverage = 0.0
        for t in np.linspace(0.0, 1000.0, 200):
            coverage = evolve_clouds(coverage, t, 5.0, rng)
            assert 0.0 <= coverage <= 1.0

    def test_transparency_from_clouds(self):
        assert transparency_from_clouds(0.0) == 1.0
        assert transparency_from_clouds(1.0) == pytest.approx(0.2)


class TestAtmosphereModel:
    """Test the stateful model."""

    def test_static_when_not_evolving(self):
        model = AtmosphereModel(AtmosphereConfig(seeing=2.0, evolve=False), np.random.default_rng(0))
        state = model.evolve(10.0)
        assert state.seeing == 2.0
        assert model.elapsed == 10.0

    def test_evolving_seeing_stays_near_base(self):
        model = AtmosphereModel(AtmosphereConfig(seeing=2.0), np.random.default_rng(0))
        for _ in range(100):
            state = model.evolve(0.1)
        assert 1.0 < state.seeing < 3.0

    def test_negative_step(self):
        model = AtmosphereModel(AtmosphereConfig(), np.random.default_rng(0))
        with pytest.raises(ValueError):
            model.evolve(-0.1)

    def test_set_cloud_coverage_updates_transparency(self):
        model = AtmosphereModel(AtmosphereConfig(), np.random.default_rng(0))
        model.set_cloud_coverage(0.5)
        assert model.state.cloud_coverage == 0.5
        assert model.state.transparency == pytest.approx(0.6)

    def test_set_seeing_regenerates_layers(self):
        model = AtmosphereModel(AtmosphereConfig(seeing=1.0), np.random.default_rng(0))
        old_layers = model.layers
        model.set_seeing(3.0)
        assert model.base_seeing == 3.0
        assert model.state.seeing == 3.0
        assert model.layers is not old_layers

    def test_invalid_values(self):
        model = AtmosphereModel(AtmosphereConfig(), np.random.default_rng(0))
        with pytest.raises(ConfigurationError):
            model.set_seeing(0.0)
        with pytest.raises(ConfigurationError):
            model.set_cloud_coverage(1.5)
        with pytest.raises(ConfigurationError):
            model.set_transparency(-0.1)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
