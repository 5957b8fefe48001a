"""
core/optics.py - Telescope optical parameters

Derives a plausible optical train from the mount focal length (f/7 with a
33% central obstruction, as for a typical SCT) and provides the plate scale
and field-of-view relations used by projection and PSF synthesis.
"""

import math
from dataclasses import dataclass
from enum import Enum

from ..errors import ConfigurationError

ARCSEC_PER_RADIAN = 206264.8062471  # arcseconds per radian

DEFAULT_F_RATIO = 7.0
DEFAULT_OBSTRUCTION_FRACTION = 0.33
DEFAULT_TRANSMISSION = 0.85   # mirrors and corrector
DEFAULT_STREHL = 0.85


class TelescopeType(Enum):
    REFLECTOR = "Reflector"
    SCT = "SCT"
    REFRACTOR = "Refractor"
    RCT = "RCT"
    MAKSUTOV = "Maksutov"


@dataclass(frozen=True)
class OpticalParameters:
    """Optical train of the virtual telescope. Lengths in mm."""
    aperture: float
    central_obstruction: float
    focal_length: float
    transmission: float = DEFAULT_TRANSMISSION
    optical_quality: float = DEFAULT_STREHL
    telescope_type: TelescopeType = TelescopeType.SCT

    def __post_init__(self):
        if self.aperture <= 0:
            raise ConfigurationError(f"aperture must be positive, got {self.aperture}")
        if self.focal_length <= 0:
            raise ConfigurationError(f"focal_length must be positive, got {self.focal_length}")
        if not 0.0 <= self.central_obstruction < self.aperture:
            raise ConfigurationError(
                f"central_obstruction must be in [0, aperture), got {self.central_obstruction}"
            )
        if not 0.0 <= self.transmission <= 1.0:
            raise ConfigurationError(f"transmission must be in [0, 1], got {self.transmission}")
        if not 0.0 <= self.optical_quality <= 1.0:
            raise ConfigurationError(f"optical_quality must be in [0, 1], got {self.optical_quality}")

    @classmethod
    def from_focal_length(cls, focal_length: float,
                          f_ratio: float = DEFAULT_F_RATIO) -> "OpticalParameters":
        """Assume an f/7 SCT for the given focal length."""
        if focal_length <= 0:
            raise ConfigurationError(f"focal_length must be positive, got {focal_length}")
        aperture = focal_length / f_ratio
        return cls(
            aperture=aperture,
            central_obstruction=aperture * DEFAULT_OBSTRUCTION_FRACTION,
            focal_length=focal_length,
        )

    @property
    def f_ratio(self) -> float:
        return self.focal_length / self.aperture

    @property
    def obstruction_ratio(self) -> float:
        return self.central_obstruction / self.aperture

    @property
    def collecting_area_m2(self) -> float:
        """Unobstructed collecting area in m^2."""
        r_outer = self.aperture / 2.0
        r_inner = self.central_obstruction / 2.0
        return math.pi * (r_outer ** 2 - r_inner ** 2) / 1e6


def plate_scale(pixel_size_um: float, focal_length_mm: float) -> float:
    """Plate scale in arcsec/pixel: 206.265 * pixel[um] / focal[mm]."""
    if focal_length_mm <= 0:
        raise ConfigurationError(f"focal_length must be positive, got {focal_length_mm}")
    return 206.265 * pixel_size_um / focal_length_mm


def field_of_view(sensor_size_mm: float, focal_length_mm: float) -> float:
    """Angular extent in degrees of a sensor dimension at the given focal length."""
    if focal_length_mm <= 0:
        raise ConfigurationError(f"focal_length must be positive, got {focal_length_mm}")
    return math.degrees(2.0 * math.atan(sensor_size_mm / (2.0 * focal_length_mm)))


def diffraction_limit_arcsec(aperture_mm: float, wavelength_nm: float) -> float:
    """Rayleigh criterion 1.22 lambda/D in arcseconds."""
    return 1.22 * wavelength_nm * 1e-9 / (aperture_mm * 1e-3) * ARCSEC_PER_RADIAN
