#!/usr/bin/env python3
"""
test_config.py - Unit tests for configuration loading and validation

Run with:
    PYTHONPATH=.:src python -m pytest validation/tests/test_config.py -v
"""

import logging

import pytest
import yaml

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from synthsky.config import (
    AtmosphereConfig,
    CameraConfig,
    MountConfig,
    SimulationConfig,
    config_from_dict,
    load_config,
)
from synthsky.errors import ConfigurationError

DEFAULT_CONFIG = Path(__file__).parent.parent.parent / "config" / "default_config.yaml"


class TestDefaults:
    """Test built-in defaults."""

    def test_camera_defaults(self):
        camera = CameraConfig()
        assert (camera.width, camera.height) == (800, 600)
        assert camera.sensor_width_mm == pytest.approx(4.16)
        assert camera.subframe_duration == 0.1

    def test_simulation_defaults(self):
        config = SimulationConfig()
        assert config.seed is None
        assert config.mount.tracking_mode == "sidereal"
        assert config.to_dict()["camera"]["bit_depth"] == 16


class TestValidation:
    """Test non-physical values are rejected."""

    @pytest.mark.parametrize("kwargs", [
        {"width": 0},
        {"pixel_size": -1.0},
        {"exposure_time": -2.0},
        {"gain": 0.0},
        {"binning": 0},
        {"sensor_type": "film"},
        {"dark_current_coefficient": 0.0},
        {"subframe_duration": 0.0},
    ])
    def test_camera(self, kwargs):
        with pytest.raises(ConfigurationError):
            CameraConfig(**kwargs)

    @pytest.mark.parametrize("kwargs", [
        {"dec": 91.0},
        {"tracking_mode": "galactic"},
        {"focal_length": 0.0},
        {"ra_backlash_compensation": 120.0},
        {"polar_alignment_error": -0.1},
        {"mean_binding_interval": 0.0},
    ])
    def test_mount(self, kwargs):
        with pytest.raises(ConfigurationError):
            MountConfig(**kwargs)

    def test_atmosphere(self):
        with pytest.raises(ConfigurationError):
            AtmosphereConfig(seeing=0.0)
        with pytest.raises(ConfigurationError):
            AtmosphereConfig(cloud_coverage=1.2)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            SimulationConfig(parallel_workers=0)


class TestLoading:
    """Test YAML loading."""

    def test_missing_file_uses_defaults(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            config = load_config(tmp_path / "absent.yaml")
        assert config == SimulationConfig()
        assert "Config file not found" in caplog.text

    def test_none_path(self):
        assert load_config() == SimulationConfig()

    def test_overlay_and_unknown_keys(self, tmp_path, caplog):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "camera": {"width": 320, "colour": "red"},
            "mount": {"dec": 45.0},
            "simulation": {"seed": 3, "parallel_workers": 2},
        }))
        with caplog.at_level(logging.WARNING):
            config = load_config(path)
        assert config.camera.width == 320
        assert config.camera.height == 600
        assert config.mount.dec == 45.0
        assert config.seed == 3
        assert config.parallel_workers == 2
        assert "colour" in caplog.text

    def test_invalid_value_in_file(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("atmosphere:\n  seeing: -1\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == SimulationConfig()

    def test_shipped_default_config(self):
        config = load_config(DEFAULT_CONFIG)
        assert config.seed == 42
        assert config.mount.ra == pytest.approx(83.82)
        assert config.mount.periodic_error_period == 480.0
        assert config.camera.sensor_type == "BSI-CMOS"

    def test_from_dict(self):
        config = config_from_dict({"atmosphere": {"cloud_coverage": 0.25}})
        assert config.atmosphere.cloud_coverage == 0.25


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
