"""
imaging/subframe.py - Rendering of a single exposure time-slice

A Subframe carries read-only snapshots of the mount and atmosphere at its
timestamp. Rendering projects the visible stars, converts their flux for
the subframe duration into expected photo-electrons (QE per star colour),
deposits each star's PSF into a pooled buffer and applies the cloud mask.
Rendering draws no random numbers, so subframes can be rendered in any
order or in parallel.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from ..config import CameraConfig
from ..core.optics import OpticalParameters, plate_scale
from ..core.photon_flux import photon_count, wavelength_from_color
from ..core.psf import PSFCache
from ..core.sensor_physics import SensorType, quantum_efficiency
from ..environment.atmosphere import AtmosphericState
from ..environment.mount import MountState
from ..sky.catalog import StarCatalog
from ..sky.projection import Pointing, visible_stars
from .accumulation import accumulate_photons, apply_cloud_mask
from .buffer_pool import BufferPoolManager

logger = logging.getLogger(__name__)


@dataclass
class Subframe:
    time_index: int
    duration: float              # s
    timestamp: float             # s from exposure start
    mount: MountState
    atmosphere: AtmosphericState
    jitter: Tuple[float, float]  # arcsec
    buffer: Optional[np.ndarray] = None


class SubframeRenderer:
    """Turns a Subframe into an electron buffer."""

    def __init__(self, camera: CameraConfig, optics: OpticalParameters, catalog: StarCatalog,
                 sensor_type: SensorType, pools: BufferPoolManager,
                 psf_cache: Optional[PSFCache] = None, subpixel: bool = True):
        self.camera = camera
        self.optics = optics
        self.catalog = catalog
        self.sensor_type = sensor_type
        self.pools = pools
        self.plate_scale = plate_scale(camera.pixel_size, optics.focal_length)
        self.psf_cache = psf_cache or PSFCache(optics, self.plate_scale, camera.pixel_size)
        self.subpixel = subpixel

    def render(self, subframe: Subframe, rotator_angle: float = 0.0,
               exposure_time: Optional[float] = None) -> np.ndarray:
        """
        Render a subframe into a buffer borrowed from the pool.

        The returned buffer belongs to the pool; hand it back with
        ``pools.release`` once it has been combined.

        Args:
            subframe: Subframe to render
            rotator_angle: Camera rotator position in degrees
            exposure_time: Total exposure, sets the limiting magnitude

        Returns:
            (height, width) expected photo-electrons for this subframe
        """
        mount = subframe.mount
        pointing = Pointing(mount.ra, mount.dec, mount.focal_length,
                            rotator_angle + mount.field_rotation)
        stars = visible_stars(self.catalog, pointing, self.camera,
                              exposure_time if exposure_time is not None else self.camera.exposure_time)

        buffer = self.pools.acquire(self.camera.width, self.camera.height)
        try:
            self._deposit(buffer, stars, subframe)
        except Exception:
            self.pools.release(buffer)
            raise
        logger.debug(f"Subframe {subframe.time_index} t={subframe.timestamp:.2f}s: "
                     f"{len(stars)} stars, jitter=({subframe.jitter[0]:.2f}, {subframe.jitter[1]:.2f})\"")
        return buffer

    def _deposit(self, buffer: np.ndarray, stars, subframe: Subframe):
        if len(stars):
            jx = subframe.jitter[0] / self.plate_scale
            jy = subframe.jitter[1] / self.plate_scale
            photons = photon_count(stars.magnitude, stars.color_index, self.optics, subframe.duration)
            wavelengths = wavelength_from_color(stars.color_index)
            electrons = (np.atleast_1d(photons) * np.atleast_1d(quantum_efficiency(wavelengths, self.sensor_type))
                         * subframe.atmosphere.transparency)
            wavelengths = np.atleast_1d(wavelengths)
            for i in range(len(stars)):
                psf = self.psf_cache.get(subframe.atmosphere.seeing, wavelengths[i])
                accumulate_photons(buffer, stars.x[i] + jx, stars.y[i] + jy,
                                   electrons[i], psf.kernel, subpixel=self.subpixel)
        apply_cloud_mask(buffer, subframe.atmosphere.cloud_coverage, subframe.timestamp)
