#!/usr/bin/env python3
"""
test_bessel_psf.py - Unit tests for the Airy function and PSF synthesis

Covers:
- Bessel J1 wrappers and Airy intensity limits
- Diffraction, seeing and combined kernels (energy conservation)
- Kernel sizing and the PSF cache

Run with:
    PYTHONPATH=.:src python -m pytest validation/tests/test_bessel_psf.py -v
"""

import numpy as np
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from synthsky.core.bessel import airy_first_zero, airy_intensity, j1, j1_zeros
from synthsky.core.optics import OpticalParameters, plate_scale
from synthsky.core.psf import (
    PSFCache,
    atmospheric_psf,
    combined_psf,
    convolve_psfs,
    diffraction_psf,
    kernel_size_for,
    normalize,
)
from validation.metrics import moment_centroid, psf_fwhm


class TestAiryFunction:
    """Test Bessel and Airy helpers."""

    def test_origin_limit(self):
        """Test I(0) is exactly 1 with and without obstruction."""
        assert airy_intensity(0.0) == 1.0
        assert airy_intensity(0.0, obstruction=0.33) == 1.0
        assert airy_intensity(1e-12) == 1.0

    def test_no_nan_on_grid_with_origin(self):
        """Test an array containing r=0 evaluates cleanly."""
        values = airy_intensity(np.linspace(0.0, 10.0, 101), obstruction=0.4)
        assert np.all(np.isfinite(values))
        assert values[0] == 1.0

    def test_first_dark_ring(self):
        """Test intensity vanishes at the first zero of J1."""
        v0 = airy_first_zero()
        assert abs(v0 - 3.8317) < 1e-3
        assert airy_intensity(v0) < 1e-12

    def test_small_argument_limit(self):
        """Test near-origin values approach 1 continuously."""
        assert abs(airy_intensity(1e-4) - 1.0) < 1e-8

    def test_obstruction_shifts_energy_outward(self):
        """Test an obstructed aperture has a narrower core."""
        v = 2.0
        assert airy_intensity(v, obstruction=0.5) < airy_intensity(v)

    def test_obstruction_range(self):
        """Test invalid obstruction ratios are rejected."""
        with pytest.raises(ValueError):
            airy_intensity(1.0, obstruction=1.0)
        with pytest.raises(ValueError):
            airy_intensity(1.0, obstruction=-0.1)

    def test_j1_wrappers(self):
        """Test J1 zeros are roots."""
        zeros = j1_zeros(3)
        assert len(zeros) == 3
        assert np.all(np.abs(j1(zeros)) < 1e-10)


class TestKernels:
    """Test PSF kernel construction."""

    @pytest.mark.parametrize("aperture", [50.0, 100.0, 280.0])
    @pytest.mark.parametrize("obstruction_ratio", [0.0, 0.25, 0.5])
    @pytest.mark.parametrize("wavelength", [400.0, 550.0, 700.0])
    def test_combined_energy_conservation(self, aperture, obstruction_ratio, wavelength):
        """Test every combined PSF sums to 1 within 1e-6."""
        optics = OpticalParameters(aperture=aperture,
                                   central_obstruction=aperture * obstruction_ratio,
                                   focal_length=aperture * 7.0)
        scale = plate_scale(3.76, optics.focal_length)
        psf = combined_psf(optics, 2.0, scale, wavelength, 3.76)
        assert abs(psf.total() - 1.0) < 1e-6, f"PSF sum {psf.total():.9f}"
        assert np.all(psf.kernel >= 0)

    def test_kernel_is_centered(self):
        """Test the peak sits on the middle pixel."""
        optics = OpticalParameters.from_focal_length(1400.0)
        kernel = diffraction_psf(optics, 550.0, 2.0, 31)
        peak = np.unravel_index(np.argmax(kernel), kernel.shape)
        assert peak == (15, 15)
        x, y, _ = moment_centroid(kernel)
        assert abs(x - 15.0) < 1e-9 and abs(y - 15.0) < 1e-9

    def test_seeing_broadens_psf(self):
        """Test the combined PSF is wider than either component."""
        optics = OpticalParameters.from_focal_length(2000.0)
        scale = plate_scale(3.0, 2000.0)
        size = 41
        optical = diffraction_psf(optics, 550.0, 3.0, size)
        seeing = atmospheric_psf(2.0, scale, size)
        combined = convolve_psfs(optical, seeing)
        assert psf_fwhm(combined) > psf_fwhm(seeing)
        assert psf_fwhm(combined) > psf_fwhm(optical)

    def test_seeing_fwhm_matches_gaussian(self):
        """Test the seeing disk has the requested FWHM in pixels."""
        kernel = atmospheric_psf(3.0, 0.5, 61)
        assert abs(psf_fwhm(kernel) - 6.0) < 0.05

    def test_normalize_empty_kernel(self):
        """Test a kernel with no energy becomes a centered delta."""
        delta = normalize(np.zeros((5, 5)))
        assert delta.sum() == 1.0
        assert delta[2, 2] == 1.0

    def test_kernel_size(self):
        """Test kernel sizes are odd and clamped."""
        assert kernel_size_for(0.01, 1.0) == 3
        assert kernel_size_for(1000.0, 0.1) == 255
        size = kernel_size_for(2.0, 0.37)
        assert size % 2 == 1
        assert size >= 5 * 2.0 / 0.37

    def test_invalid_size(self):
        """Test non-positive kernel sizes are rejected."""
        optics = OpticalParameters.from_focal_length(400.0)
        with pytest.raises(ValueError):
            diffraction_psf(optics, 550.0, 5.0, 0)


class TestPSFCache:
    """Test PSF memoization."""

    def test_hits_and_rounding(self):
        """Test nearby seeing and wavelength share a cache entry."""
        optics = OpticalParameters.from_focal_length(800.0)
        cache = PSFCache(optics, plate_scale(4.0, 800.0), 4.0)
        first = cache.get(1.501, 551.0)
        second = cache.get(1.499, 549.0)
        assert first is second
        assert cache.misses == 1
        assert cache.hits == 1

    def test_distinct_keys(self):
        """Test different conditions produce different kernels."""
        optics = OpticalParameters.from_focal_length(800.0)
        cache = PSFCache(optics, plate_scale(4.0, 800.0), 4.0)
        assert cache.get(1.0, 550.0) is not cache.get(3.0, 550.0)
        assert cache.misses == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
