"""
core/psf.py - Point spread function synthesis

Builds the per-star PSF as the convolution of an Airy diffraction pattern
(optionally centrally obstructed) with a Gaussian long-exposure seeing disk.
Every kernel produced here is normalized to unit sum; downstream photon
accumulation relies on that to conserve total light.

Grid convention: kernels are square with an odd side length and the peak on
the middle pixel, index (size // 2, size // 2).
"""

import logging
import math
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np
from scipy import signal

from .bessel import airy_intensity
from .optics import OpticalParameters

logger = logging.getLogger(__name__)

FWHM_TO_SIGMA = 2.35482  # FWHM = 2 sqrt(2 ln 2) sigma
KERNEL_FWHM_MULTIPLE = 5.0
MIN_KERNEL_SIZE = 3
MAX_KERNEL_SIZE = 255


@dataclass
class PSF:
    """Normalized square kernel with the wavelength and seeing it was built for."""
    kernel: np.ndarray
    wavelength: float = 550.0  # nm
    seeing: float = 0.0        # arcsec

    @property
    def size(self) -> int:
        return self.kernel.shape[0]

    @property
    def center(self) -> int:
        return self.kernel.shape[0] // 2

    def total(self) -> float:
        return float(self.kernel.sum())


def normalize(kernel: np.ndarray) -> np.ndarray:
    """
    Scale a kernel to unit sum.

    A kernel with no energy (all zeros, e.g. from underflow) becomes a
    centered delta so callers always receive a valid PSF.
    """
    kernel = np.asarray(kernel, dtype=float)
    total = kernel.sum()
    if total <= 0 or not np.isfinite(total):
        logger.debug("PSF kernel has no energy, substituting a delta function")
        delta = np.zeros_like(kernel)
        delta[kernel.shape[0] // 2, kernel.shape[1] // 2] = 1.0
        return delta
    return kernel / total


def kernel_size_for(seeing_fwhm: float, plate_scale: float) -> int:
    """Odd kernel side covering ~5x the seeing FWHM in pixels."""
    fwhm_pixels = seeing_fwhm / plate_scale
    size = int(math.ceil(fwhm_pixels * KERNEL_FWHM_MULTIPLE))
    size = min(max(size, MIN_KERNEL_SIZE), MAX_KERNEL_SIZE)
    if size % 2 == 0:
        size += 1
    return size


def _radius_grid(size: int) -> np.ndarray:
    center = size // 2
    y, x = np.mgrid[0:size, 0:size]
    return np.hypot(x - center, y - center)


def diffraction_psf(optics: OpticalParameters, wavelength_nm: float,
                    pixel_size_um: float, size: int) -> np.ndarray:
    """
    Sample the Airy pattern of the given optics on a size x size pixel grid.

    Args:
        optics: Aperture, obstruction and focal ratio
        wavelength_nm: Wavelength in nm
        pixel_size_um: Detector pixel pitch in um
        size: Kernel side in pixels (odd)

    Returns:
        Normalized kernel
    """
    if size < 1:
        raise ValueError(f"Kernel size must be positive, got {size}")
    wavelength_m = wavelength_nm * 1e-9
    pixel_m = pixel_size_um * 1e-6
    # v = pi * D * theta / lambda, theta = r * pixel / f
    v = np.pi * _radius_grid(size) * pixel_m / (wavelength_m * optics.f_ratio)
    kernel = airy_intensity(v, optics.obstruction_ratio)
    return normalize(kernel)


def atmospheric_psf(seeing_fwhm: float, plate_scale: float, size: int) -> np.ndarray:
    """Gaussian seeing disk with sigma = FWHM_px / 2.35482, normalized."""
    if size < 1:
        raise ValueError(f"Kernel size must be positive, got {size}")
    sigma = (seeing_fwhm / plate_scale) / FWHM_TO_SIGMA
    r = _radius_grid(size)
    if sigma <= 0:
        return normalize((r == 0).astype(float))
    kernel = np.exp(-r * r / (2.0 * sigma * sigma))
    return normalize(kernel)


def trim_centered(kernel: np.ndarray, size: int) -> np.ndarray:
    """Cut the central size x size window out of a larger square kernel."""
    start = (kernel.shape[0] - size) // 2
    return kernel[start:start + size, start:start + size]


def convolve_psfs(optical: np.ndarray, atmospheric: np.ndarray) -> np.ndarray:
    """Full convolution trimmed back to the larger input size and renormalized."""
    full = signal.fftconvolve(optical, atmospheric, mode="full")
    # FFT round-off can leave tiny negative values in the wings
    full = np.clip(full, 0.0, None)
    trim_size = max(optical.shape[0], atmospheric.shape[0])
    return normalize(trim_centered(full, trim_size))


def combined_psf(optics: OpticalParameters, seeing_fwhm: float, plate_scale: float,
                 wavelength_nm: float, pixel_size_um: float,
                 size: Optional[int] = None) -> PSF:
    """Diffraction pattern convolved with the seeing disk."""
    if size is None:
        size = kernel_size_for(seeing_fwhm, plate_scale)
    optical = diffraction_psf(optics, wavelength_nm, pixel_size_um, size)
    seeing = atmospheric_psf(seeing_fwhm, plate_scale, size)
    return PSF(kernel=convolve_psfs(optical, seeing), wavelength=wavelength_nm, seeing=seeing_fwhm)


class PSFCache:
    """
    Thread-safe memo of combined PSFs.

    Keys round seeing to 0.01 arcsec and wavelength to 5 nm; within a
    subframe many stars share a kernel.
    """

    def __init__(self, optics: OpticalParameters, plate_scale: float, pixel_size_um: float,
                 max_entries: int = 512):
        self.optics = optics
        self.plate_scale = plate_scale
        self.pixel_size_um = pixel_size_um
        self.max_entries = max_entries
        self._cache: Dict[Tuple[float, float], PSF] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, seeing_fwhm: float, wavelength_nm: float) -> PSF:
        key = (round(seeing_fwhm, 2), round(wavelength_nm / 5.0) * 5.0)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self.hits += 1
                return cached
        psf = combined_psf(self.optics, key[0], self.plate_scale, key[1], self.pixel_size_um)
        with self._lock:
            self.misses += 1
            if len(self._cache) >= self.max_entries:
                self._cache.clear()
            self._cache[key] = psf
        return psf
