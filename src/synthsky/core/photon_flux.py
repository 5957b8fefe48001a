"""
core/photon_flux.py - Star magnitude to detected photon count

photons = zero_point(lambda) * 10^(-0.4 m) * area * transmission * t

The zero point is a simple broadband value with a coarse blue/red
correction; the wavelength comes from the B-V color index.
"""

import numpy as np

from .optics import OpticalParameters

ZERO_POINT_FLUX = 1.0e10  # photons/s/m^2 for a magnitude 0 star
BLUE_EDGE_NM = 500.0
RED_EDGE_NM = 600.0
BLUE_FACTOR = 0.8
RED_FACTOR = 1.2

MIN_WAVELENGTH_NM = 400.0
MAX_WAVELENGTH_NM = 700.0


def wavelength_from_color(color_index):
    """Effective wavelength in nm: 450 nm at B-V=-0.3, 100 nm per magnitude of color."""
    wavelength = 450.0 + (np.asarray(color_index, dtype=float) + 0.3) * 100.0
    wavelength = np.clip(wavelength, MIN_WAVELENGTH_NM, MAX_WAVELENGTH_NM)
    return float(wavelength) if wavelength.ndim == 0 else wavelength


def zero_point_flux(wavelength_nm):
    """Zero-magnitude photon flux (photons/s/m^2) at the given wavelength."""
    wavelength_nm = np.asarray(wavelength_nm, dtype=float)
    factor = np.where(wavelength_nm < BLUE_EDGE_NM, BLUE_FACTOR,
                      np.where(wavelength_nm > RED_EDGE_NM, RED_FACTOR, 1.0))
    flux = ZERO_POINT_FLUX * factor
    return float(flux) if flux.ndim == 0 else flux


def aperture_area(aperture_mm: float, obstruction_mm: float = 0.0) -> float:
    """Annular collecting area in m^2."""
    r_outer = aperture_mm / 2.0
    r_inner = obstruction_mm / 2.0
    return np.pi * (r_outer ** 2 - r_inner ** 2) / 1e6


def photon_count(magnitude, color_index, optics: OpticalParameters, exposure_time: float):
    """
    Expected (noise-free) photons collected from a star.

    Args:
        magnitude: Apparent magnitude (scalar or array)
        color_index: B-V color index (scalar or array)
        optics: Telescope optical parameters
        exposure_time: Integration time in seconds

    Returns:
        Photon count, same shape as ``magnitude``
    """
    if exposure_time < 0:
        raise ValueError(f"exposure_time must be non-negative, got {exposure_time}")
    wavelength = wavelength_from_color(color_index)
    flux = zero_point_flux(wavelength) * 10.0 ** (-0.4 * np.asarray(magnitude, dtype=float))  # photons/s/m^2
    area = aperture_area(optics.aperture, optics.central_obstruction)  # m^2
    photons = flux * area * optics.transmission * exposure_time
    return float(photons) if np.ndim(photons) == 0 else photons


def star_photons(star, optics: OpticalParameters, exposure_time: float) -> float:
    """Photon count for a single catalog Star."""
    return photon_count(star.magnitude, star.color_index, optics, exposure_time)
