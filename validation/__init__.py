"""
Validation tools for the synthsky sensor simulator

Modules:
    metrics: PSF, centroid, photometric and noise measurements used to check
        synthetic images against their physical expectations
"""

__version__ = "1.0.0"

from .metrics import *

__all__ = [
    'kernel_energy',
    'second_moment_sigma',
    'psf_fwhm',
    'moment_centroid',
    'centroid_residual_rms',
    'flux_ratio_magnitudes',
    'total_light_ratio',
    'background_statistics',
    'aperture_snr',
]
