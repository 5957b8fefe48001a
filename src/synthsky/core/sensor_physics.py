"""
core/sensor_physics.py - Detector noise and readout model

Converts an accumulated photon image into ADU:

    photons --QE--> electrons --shot--> + dark current (hot pixels)
            --full well--> + read noise + column/row pattern --ADC--> ADU

Dark current and read noise are applied once per exposure to the combined
buffer. All randomness flows through an explicit numpy Generator.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

import numpy as np

from ..config import CameraConfig
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

POISSON_THRESHOLD = 30.0   # e-, Poisson below, Gaussian approximation above
HOT_PIXEL_DENSITY = 1e-4   # fraction of pixels
HOT_PIXEL_MAX_MULTIPLIER = 10.0
COLUMN_OFFSET_SIGMA = 0.5  # e-
ROW_OFFSET_SIGMA = 0.3     # e-


class SensorType(Enum):
    CCD = "CCD"
    CMOS = "CMOS"
    BSI_CMOS = "BSI-CMOS"


# peak wavelength (nm), peak QE, curve width (nm)
QE_CURVES: Dict[SensorType, Tuple[float, float, float]] = {
    SensorType.CCD: (650.0, 0.85, 150.0),
    SensorType.CMOS: (550.0, 0.75, 180.0),
    SensorType.BSI_CMOS: (550.0, 0.95, 200.0),
}


def quantum_efficiency(wavelength_nm, sensor_type: SensorType):
    """Gaussian QE curve: peak * exp(-((lambda - peak_lambda) / width)^2)."""
    peak_wavelength, peak_qe, width = QE_CURVES[sensor_type]
    qe = peak_qe * np.exp(-((np.asarray(wavelength_nm, dtype=float) - peak_wavelength) / width) ** 2)
    return float(qe) if np.ndim(qe) == 0 else qe


def dark_current_rate(base_rate: float, temperature: float,
                      ref_temp: float = 0.0, doubling_temp: float = 6.5) -> float:
    """Dark current in e-/px/s, doubling every ``doubling_temp`` °C above ``ref_temp``."""
    return base_rate * 2.0 ** ((temperature - ref_temp) / doubling_temp)


def sample_counts(expected: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """
    Poisson-distributed counts for an array of expected values.

    Exact Poisson below 30 counts; above that the Gaussian approximation
    N(mean, sqrt(mean)), floored at zero.
    """
    expected = np.clip(np.asarray(expected, dtype=float), 0.0, None)
    result = np.empty_like(expected)
    low = expected < POISSON_THRESHOLD
    result[low] = rng.poisson(expected[low])
    high = ~low
    if np.any(high):
        mean = expected[high]
        result[high] = np.maximum(rng.normal(mean, np.sqrt(mean)), 0.0)
    return result


@dataclass
class SensorModel:
    """Physical sensor with fixed-pattern characteristics drawn at creation."""
    width: int
    height: int
    pixel_size: float                      # um
    sensor_type: SensorType = SensorType.BSI_CMOS
    read_noise: float = 5.0                # e- RMS
    base_dark_current: float = 0.1         # e-/px/s at dark_current_ref_temp
    dark_current_ref_temp: float = 0.0     # °C
    dark_current_coefficient: float = 6.5  # °C per doubling
    gain: float = 0.5                      # e-/ADU
    bit_depth: int = 16
    full_well: int = 50000                 # e-
    bias_level: int = 1000                 # ADU
    temperature: float = -15.0             # °C
    hot_pixel_map: np.ndarray = field(default=None, repr=False)
    column_offsets: np.ndarray = field(default=None, repr=False)
    row_offsets: np.ndarray = field(default=None, repr=False)

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ConfigurationError(f"Sensor dimensions must be positive, got {self.width}x{self.height}")
        if self.gain <= 0:
            raise ConfigurationError(f"gain must be positive, got {self.gain}")
        if self.read_noise < 0:
            raise ConfigurationError(f"read_noise must be non-negative, got {self.read_noise}")
        if self.hot_pixel_map is None:
            self.hot_pixel_map = np.ones((self.height, self.width))
        if self.column_offsets is None:
            self.column_offsets = np.zeros(self.width)
        if self.row_offsets is None:
            self.row_offsets = np.zeros(self.height)

    @classmethod
    def create(cls, camera: CameraConfig, rng: np.random.Generator,
               fixed_pattern: bool = True) -> "SensorModel":
        """
        Build a sensor from camera configuration, drawing hot pixels and
        column/row offsets from ``rng``.
        """
        width, height = camera.width, camera.height
        hot_pixel_map = np.ones((height, width))
        column_offsets = np.zeros(width)
        row_offsets = np.zeros(height)

        if fixed_pattern:
            n_hot = int(width * height * HOT_PIXEL_DENSITY)
            if n_hot > 0:
                xs = rng.integers(0, width, n_hot)
                ys = rng.integers(0, height, n_hot)
                hot_pixel_map[ys, xs] = 1.0 + rng.random(n_hot) * (HOT_PIXEL_MAX_MULTIPLIER - 1.0)
            column_offsets = rng.normal(0.0, COLUMN_OFFSET_SIGMA, width)
            row_offsets = rng.normal(0.0, ROW_OFFSET_SIGMA, height)
            logger.debug(f"Sensor created with {n_hot} hot pixels")

        return cls(
            width=width,
            height=height,
            pixel_size=camera.pixel_size,
            sensor_type=SensorType(camera.sensor_type),
            read_noise=camera.read_noise,
            base_dark_current=camera.dark_current,
            dark_current_ref_temp=camera.dark_current_ref_temp,
            dark_current_coefficient=camera.dark_current_coefficient,
            gain=camera.gain,
            bit_depth=camera.bit_depth,
            full_well=camera.full_well,
            bias_level=camera.bias_level,
            temperature=camera.temperature,
            hot_pixel_map=hot_pixel_map,
            column_offsets=column_offsets,
            row_offsets=row_offsets,
        )

    @property
    def max_adu(self) -> int:
        return (1 << self.bit_depth) - 1

    def dark_current(self) -> float:
        """Dark current at the operating temperature, e-/px/s."""
        return dark_current_rate(self.base_dark_current, self.temperature,
                                 self.dark_current_ref_temp, self.dark_current_coefficient)

    def expected_dark_electrons(self, exposure_time: float) -> float:
        return self.dark_current() * exposure_time

    def apply_quantum_efficiency(self, photons: np.ndarray, wavelength_nm: float = 550.0) -> np.ndarray:
        """Expected electrons from incident photons."""
        return photons * quantum_efficiency(wavelength_nm, self.sensor_type)

    def apply_shot_noise(self, electrons: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        return sample_counts(electrons, rng)

    def apply_dark_current(self, electrons: np.ndarray, exposure_time: float,
                           rng: np.random.Generator) -> np.ndarray:
        dark = self.expected_dark_electrons(exposure_time) * self.hot_pixel_map
        return electrons + sample_counts(dark, rng)

    def apply_full_well(self, electrons: np.ndarray) -> np.ndarray:
        return np.minimum(electrons, self.full_well)

    def apply_read_noise(self, electrons: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        noise = rng.normal(0.0, self.read_noise, electrons.shape) if self.read_noise > 0 else 0.0
        pattern = self.column_offsets[np.newaxis, :] + self.row_offsets[:, np.newaxis]
        return electrons + noise + pattern

    def apply_adc(self, electrons: np.ndarray) -> np.ndarray:
        """ADU = clip(bias + round(e/gain), 0, 2^bits - 1)."""
        adu = self.bias_level + np.round(electrons / self.gain)
        adu = np.clip(adu, 0, self.max_adu)
        dtype = np.uint16 if self.bit_depth <= 16 else np.uint32
        return adu.astype(dtype)

    def process(self, photons: np.ndarray, exposure_time: float, rng: np.random.Generator,
                wavelength_nm: Optional[float] = 550.0) -> np.ndarray:
        """
        Full readout of an exposure-total photon image.

        Args:
            photons: (height, width) photon image combined over all subframes
            exposure_time: Total exposure in seconds
            rng: Random generator
            wavelength_nm: Effective wavelength for QE, or None when the
                input already holds expected photo-electrons (QE folded in
                per star upstream)

        Returns:
            (height, width) integer ADU image
        """
        if photons.shape != (self.height, self.width):
            raise ValueError(
                f"Photon image shape {photons.shape} does not match sensor {(self.height, self.width)}"
            )
        if wavelength_nm is None:
            electrons = np.asarray(photons, dtype=float)
        else:
            electrons = self.apply_quantum_efficiency(photons, wavelength_nm)
        electrons = self.apply_shot_noise(electrons, rng)
        electrons = self.apply_dark_current(electrons, exposure_time, rng)
        electrons = self.apply_full_well(electrons)
        electrons = self.apply_read_noise(electrons, rng)
        return self.apply_adc(electrons)
