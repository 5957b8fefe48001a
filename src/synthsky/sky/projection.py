"""
sky/projection.py - Celestial to sensor pixel mapping

Sign convention (north up, RA increasing toward +x in pixel space):

    dx = +dRA * cos(dec_mount) * 3600 / plate_scale
    dy = -dDec * 3600 / plate_scale

The offset is then rotated about the sensor centre by the rotator angle,
counter-clockwise in pixel coordinates:

    x' = dx cos(a) - dy sin(a)
    y' = dx sin(a) + dy cos(a)

so a 90 degree rotation carries a +x offset onto +y.
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

import numpy as np

from ..config import CameraConfig
from ..core.optics import field_of_view, plate_scale
from .catalog import MIN_COS_DEC, Star, StarCatalog, wrap_ra_delta

logger = logging.getLogger(__name__)

VISIBLE_MARGIN_PX = 20.0
BASE_LIMITING_MAGNITUDE = 10.0
EXPOSURE_DEPTH_SLOPE = 20.5   # magnitudes per decade of exposure time
MIN_DEPTH_EXPOSURE = 0.1      # s


@dataclass(frozen=True)
class Pointing:
    """Where the optical axis points and how the camera is rotated."""
    ra: float
    dec: float
    focal_length: float
    rotator_angle: float = 0.0


@dataclass
class VisibleStars:
    """Projected stars that can deposit light on the sensor."""
    stars: List[Star]
    x: np.ndarray
    y: np.ndarray
    magnitude: np.ndarray
    color_index: np.ndarray

    def __len__(self) -> int:
        return len(self.stars)

    def __iter__(self) -> Iterator[Star]:
        return iter(self.stars)


def project_coordinates(ra, dec, pointing: Pointing, camera: CameraConfig):
    """
    Vectorized projection of RA/Dec (degrees) to pixel (x, y).

    Returns:
        Tuple of arrays (x, y), sensor centre at (width/2, height/2)
    """
    scale = plate_scale(camera.pixel_size, pointing.focal_length)  # arcsec/px
    cos_dec = max(math.cos(math.radians(pointing.dec)), MIN_COS_DEC)

    delta_ra = wrap_ra_delta(np.asarray(ra, dtype=float) - pointing.ra) * cos_dec
    delta_dec = np.asarray(dec, dtype=float) - pointing.dec
    dx = delta_ra * 3600.0 / scale
    dy = -delta_dec * 3600.0 / scale

    angle = math.radians(pointing.rotator_angle)
    cos_a, sin_a = math.cos(angle), math.sin(angle)
    rx = dx * cos_a - dy * sin_a
    ry = dx * sin_a + dy * cos_a

    return camera.width / 2.0 + rx, camera.height / 2.0 + ry


def project_star(star: Star, pointing: Pointing, camera: CameraConfig) -> Tuple[float, float]:
    """Pixel position of a single star."""
    x, y = project_coordinates(star.ra, star.dec, pointing, camera)
    return float(x), float(y)


def effective_limiting_magnitude(exposure_time: float,
                                 base: float = BASE_LIMITING_MAGNITUDE) -> float:
    """Faintest magnitude rendered for an exposure: base + 20.5 log10(t)."""
    return base + EXPOSURE_DEPTH_SLOPE * math.log10(max(exposure_time, MIN_DEPTH_EXPOSURE))


def camera_field_of_view(camera: CameraConfig, focal_length: float) -> Tuple[float, float]:
    """(width, height) field of view in degrees."""
    return (field_of_view(camera.sensor_width_mm, focal_length),
            field_of_view(camera.sensor_height_mm, focal_length))


def visible_stars(catalog: StarCatalog, pointing: Pointing, camera: CameraConfig,
                  exposure_time: Optional[float] = None,
                  margin: float = VISIBLE_MARGIN_PX) -> VisibleStars:
    """
    Stars that land on the sensor (plus a margin for partially overlapping
    PSFs) and are bright enough for the exposure time.
    """
    if exposure_time is None:
        exposure_time = camera.exposure_time
    arrays = catalog.as_arrays()
    if arrays["id"].size == 0:
        empty = np.empty(0)
        return VisibleStars([], empty, empty, empty, empty)

    x, y = project_coordinates(arrays["ra"], arrays["dec"], pointing, camera)
    limit = effective_limiting_magnitude(exposure_time)
    mask = (
        (x >= -margin) & (x < camera.width + margin)
        & (y >= -margin) & (y < camera.height + margin)
        & (arrays["magnitude"] <= limit)
    )
    ids = arrays["id"][mask]
    stars = [catalog.stars[int(i)] for i in ids]
    logger.debug(f"{len(stars)} of {arrays['id'].size} catalog stars visible (limit mag {limit:.1f})")
    return VisibleStars(stars, x[mask], y[mask], arrays["magnitude"][mask], arrays["color_index"][mask])
