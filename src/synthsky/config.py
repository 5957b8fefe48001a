"""
synthsky/config.py - Simulation configuration

Plain dataclass configuration for the camera, mount, atmosphere and engine,
validated at construction so non-physical values never reach the pipeline.
A YAML loader overlays file values on the defaults; a missing file is not an
error.

Usage:
    from synthsky.config import load_config

    config = load_config("config/default_config.yaml")
    config.camera.exposure_time = 5.0
"""

import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

SENSOR_TYPES = ("CCD", "CMOS", "BSI-CMOS")
TRACKING_MODES = ("off", "sidereal", "lunar", "solar", "custom")


@dataclass
class CameraConfig:
    """Sensor geometry, readout characteristics and exposure settings."""
    width: int = 800                      # pixels
    height: int = 600                     # pixels
    pixel_size: float = 5.2               # um
    exposure_time: float = 1.0            # s
    binning: int = 1
    read_noise: float = 5.0               # e- RMS
    dark_current: float = 0.1             # e-/px/s at reference temperature
    dark_current_ref_temp: float = 0.0    # °C
    dark_current_coefficient: float = 6.5 # °C per doubling
    gain: float = 0.5                     # e-/ADU
    bit_depth: int = 16
    full_well: int = 50000                # e-
    bias_level: int = 1000                # ADU
    temperature: float = -15.0            # °C
    sensor_type: str = "BSI-CMOS"
    subframe_duration: float = 0.1        # s

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ConfigurationError(f"Sensor dimensions must be positive, got {self.width}x{self.height}")
        if self.pixel_size <= 0:
            raise ConfigurationError(f"pixel_size must be positive, got {self.pixel_size}")
        if self.exposure_time <= 0:
            raise ConfigurationError(f"exposure_time must be positive, got {self.exposure_time}")
        if self.binning < 1:
            raise ConfigurationError(f"binning must be >= 1, got {self.binning}")
        if self.read_noise < 0 or self.dark_current < 0:
            raise ConfigurationError("read_noise and dark_current must be non-negative")
        if self.dark_current_coefficient <= 0:
            raise ConfigurationError(
                f"dark_current_coefficient must be positive, got {self.dark_current_coefficient}"
            )
        if self.gain <= 0:
            raise ConfigurationError(f"gain must be positive, got {self.gain}")
        if not 1 <= self.bit_depth <= 32:
            raise ConfigurationError(f"bit_depth must be in [1, 32], got {self.bit_depth}")
        if self.full_well <= 0:
            raise ConfigurationError(f"full_well must be positive, got {self.full_well}")
        if self.sensor_type not in SENSOR_TYPES:
            raise ConfigurationError(f"sensor_type must be one of {SENSOR_TYPES}, got {self.sensor_type!r}")
        if self.subframe_duration <= 0:
            raise ConfigurationError(f"subframe_duration must be positive, got {self.subframe_duration}")

    @property
    def sensor_width_mm(self) -> float:
        return self.width * self.pixel_size / 1000.0

    @property
    def sensor_height_mm(self) -> float:
        return self.height * self.pixel_size / 1000.0


@dataclass
class MountConfig:
    """Initial pointing, tracking and mechanical error parameters."""
    ra: float = 0.0                         # deg
    dec: float = 0.0                        # deg
    tracking_mode: str = "sidereal"
    custom_rate: float = 0.0                # deg/s, used when tracking_mode == "custom"
    slew_rate: float = 1.0                  # deg/s
    focal_length: float = 400.0             # mm
    periodic_error_amplitude: float = 0.0   # arcsec
    periodic_error_period: float = 0.0      # s
    polar_alignment_error: float = 0.0      # deg
    site_latitude: float = 40.0             # deg
    ra_backlash: float = 5.0                # arcsec
    ra_backlash_compensation: float = 50.0  # %
    dec_backlash: float = 8.0               # arcsec
    dec_backlash_compensation: float = 80.0 # %
    mean_binding_interval: float = 300.0    # s
    binding_magnitude: float = 1.5          # arcsec
    tracking_noise: bool = True

    def __post_init__(self):
        if not -90.0 <= self.dec <= 90.0:
            raise ConfigurationError(f"dec must be within [-90, 90], got {self.dec}")
        if self.tracking_mode not in TRACKING_MODES:
            raise ConfigurationError(f"tracking_mode must be one of {TRACKING_MODES}, got {self.tracking_mode!r}")
        if self.slew_rate < 0:
            raise ConfigurationError(f"slew_rate must be non-negative, got {self.slew_rate}")
        if self.focal_length <= 0:
            raise ConfigurationError(f"focal_length must be positive, got {self.focal_length}")
        if self.periodic_error_amplitude < 0 or self.periodic_error_period < 0:
            raise ConfigurationError("periodic error amplitude and period must be non-negative")
        if self.polar_alignment_error < 0:
            raise ConfigurationError(f"polar_alignment_error must be non-negative, got {self.polar_alignment_error}")
        for name in ("ra_backlash_compensation", "dec_backlash_compensation"):
            value = getattr(self, name)
            if not 0.0 <= value <= 100.0:
                raise ConfigurationError(f"{name} must be a percentage in [0, 100], got {value}")
        if self.ra_backlash < 0 or self.dec_backlash < 0:
            raise ConfigurationError("backlash amounts must be non-negative")
        if self.mean_binding_interval <= 0:
            raise ConfigurationError(f"mean_binding_interval must be positive, got {self.mean_binding_interval}")


@dataclass
class AtmosphereConfig:
    """Initial atmospheric conditions."""
    seeing: float = 1.5          # arcsec FWHM
    cloud_coverage: float = 0.0  # fraction
    transparency: float = 1.0    # fraction
    evolve: bool = True

    def __post_init__(self):
        if self.seeing <= 0:
            raise ConfigurationError(f"seeing must be positive, got {self.seeing}")
        if not 0.0 <= self.cloud_coverage <= 1.0:
            raise ConfigurationError(f"cloud_coverage must be in [0, 1], got {self.cloud_coverage}")
        if not 0.0 <= self.transparency <= 1.0:
            raise ConfigurationError(f"transparency must be in [0, 1], got {self.transparency}")


@dataclass
class SimulationConfig:
    """Top-level engine configuration."""
    camera: CameraConfig = field(default_factory=CameraConfig)
    mount: MountConfig = field(default_factory=MountConfig)
    atmosphere: AtmosphereConfig = field(default_factory=AtmosphereConfig)
    seed: Optional[int] = None
    limiting_magnitude: float = 12.0
    catalog_margin: float = 1.5        # catalog radius as a multiple of the FOV
    rotator_angle: float = 0.0         # deg
    parallel_workers: int = 1

    def __post_init__(self):
        if self.catalog_margin <= 0:
            raise ConfigurationError(f"catalog_margin must be positive, got {self.catalog_margin}")
        if self.parallel_workers < 1:
            raise ConfigurationError(f"parallel_workers must be >= 1, got {self.parallel_workers}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_SECTIONS = {
    "camera": CameraConfig,
    "mount": MountConfig,
    "atmosphere": AtmosphereConfig,
}


def _build_section(cls, values: Optional[Dict[str, Any]], section: str):
    """Build one dataclass section, ignoring unknown keys with a warning."""
    values = values or {}
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        logger.warning(f"Ignoring unknown keys in '{section}' section: {unknown}")
    return cls(**{k: v for k, v in values.items() if k in known})


def config_from_dict(data: Optional[Dict[str, Any]]) -> SimulationConfig:
    """
    Create a SimulationConfig from a nested dictionary.

    Args:
        data: Mapping with optional 'camera', 'mount', 'atmosphere' and
            'simulation' sections

    Returns:
        SimulationConfig with file values overlaid on defaults
    """
    data = data or {}
    sections = {name: _build_section(cls, data.get(name), name) for name, cls in _SECTIONS.items()}
    top = data.get("simulation") or {}
    top_known = {f.name for f in fields(SimulationConfig)} - set(_SECTIONS)
    unknown = sorted(set(top) - top_known)
    if unknown:
        logger.warning(f"Ignoring unknown keys in 'simulation' section: {unknown}")
    return SimulationConfig(**sections, **{k: v for k, v in top.items() if k in top_known})


def load_config(config_path: Optional[Union[str, Path]] = None) -> SimulationConfig:
    """Load simulation configuration from YAML, falling back to defaults."""
    if config_path is None:
        return SimulationConfig()

    config_path = Path(config_path)
    if not config_path.exists():
        logger.warning(f"Config file not found: {config_path}, using defaults")
        return SimulationConfig()

    with open(config_path, "r") as f:
        data = yaml.safe_load(f)
    logger.info(f"Loaded configuration from {config_path}")
    return config_from_dict(data)
