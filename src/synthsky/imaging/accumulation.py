"""
imaging/accumulation.py - Photon deposition and buffer post-processing

Arrays are (height, width), indexed [y, x]. Pixel centres sit on integer
coordinates.
"""

import logging
from typing import Iterable, Optional, Tuple

import numpy as np
from scipy.ndimage import shift
from skimage.measure import block_reduce

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

RENORMALIZATION_TOLERANCE = 1e-6
CLOUD_DRIFT_X = 0.05    # normalized image widths per second
CLOUD_DRIFT_Y = 0.035
CLOUD_SPATIAL_FREQUENCY = 6.28 * 0.1

TRAIL_MIN_BRIGHTNESS = 100.0   # photons/px at the trail centre
TRAIL_BRIGHTNESS_RATE = 1000.0 # photons/px per second of exposure
TRAIL_MIN_WIDTH = 2.5          # px (Gaussian sigma)


def subpixel_kernel(kernel: np.ndarray, dx: float, dy: float) -> np.ndarray:
    """Shift a kernel by a fractional pixel offset with bilinear interpolation."""
    if abs(dx) < 1e-3 and abs(dy) < 1e-3:
        return kernel
    shifted = shift(kernel, (dy, dx), order=1, mode="constant", cval=0.0)
    shifted = np.clip(shifted, 0.0, None)
    total = shifted.sum()
    return shifted / total if total > 0 else kernel


def accumulate_photons(buffer: np.ndarray, center_x: float, center_y: float,
                       photons: float, kernel: np.ndarray, subpixel: bool = False) -> float:
    """
    Deposit ``photons * kernel`` centred on (center_x, center_y).

    Only the part of the kernel that overlaps the buffer is written. When the
    kernel hangs off the edge the overlapping weights are rescaled to unit
    sum, so the full photon count lands on the visible pixels.

    Args:
        buffer: (height, width) accumulation buffer, modified in place
        center_x, center_y: Star position in pixels
        photons: Photon count to deposit
        kernel: Normalized odd-sized PSF kernel
        subpixel: Shift the kernel by the fractional part of the position

    Returns:
        Photons actually added to the buffer
    """
    if photons <= 0:
        return 0.0
    buf_height, buf_width = buffer.shape
    size = kernel.shape[0]
    half = size // 2

    cx = int(round(center_x))
    cy = int(round(center_y))
    if subpixel:
        kernel = subpixel_kernel(kernel, center_x - cx, center_y - cy)

    # Overlap between kernel footprint and buffer
    x0, y0 = cx - half, cy - half
    bx0, by0 = max(0, x0), max(0, y0)
    bx1, by1 = min(buf_width, x0 + size), min(buf_height, y0 + size)
    if bx0 >= bx1 or by0 >= by1:
        return 0.0

    window = kernel[by0 - y0:by1 - y0, bx0 - x0:bx1 - x0]
    weight = window.sum()
    if weight <= 0:
        return 0.0
    scale = photons
    if abs(weight - 1.0) > RENORMALIZATION_TOLERANCE:
        scale = photons / weight

    buffer[by0:by1, bx0:bx1] += window * scale
    return float(weight * scale)


def cloud_pattern(width: int, height: int, t: float) -> np.ndarray:
    """Smooth, drifting synthetic cloud opacity pattern in [0, 1]."""
    y, x = np.mgrid[0:height, 0:width]
    tx = x / width + CLOUD_DRIFT_X * t
    ty = y / height + CLOUD_DRIFT_Y * t
    f = CLOUD_SPATIAL_FREQUENCY
    return 0.5 + 0.5 * np.sin(tx * f) * np.cos(ty * f) * np.sin((tx + ty) * f / 2.0)


def apply_cloud_mask(buffer: np.ndarray, coverage: float, t: float) -> np.ndarray:
    """Attenuate each pixel by (1 - coverage * pattern(x, y, t)) in place."""
    if coverage <= 0:
        return buffer
    height, width = buffer.shape
    buffer *= 1.0 - coverage * cloud_pattern(width, height, t)
    return buffer


def combine_buffers(buffers: Iterable[np.ndarray], out: Optional[np.ndarray] = None) -> np.ndarray:
    """Elementwise sum of subframe buffers."""
    total = out
    for buffer in buffers:
        if total is None:
            total = np.array(buffer, dtype=float, copy=True)
        else:
            if buffer.shape != total.shape:
                raise ValueError(f"Cannot combine buffers of shape {buffer.shape} and {total.shape}")
            total += buffer
    if total is None:
        raise ValueError("No buffers to combine")
    return total


def to_row_major(image: np.ndarray) -> np.ndarray:
    """Flat row-major (C order) pixel array."""
    return np.ascontiguousarray(image).ravel(order="C")


def bin_image(image: np.ndarray, factor: int) -> np.ndarray:
    """
    Mean over factor x factor blocks. Rows and columns that do not fill a
    whole block are dropped.
    """
    if factor < 1 or int(factor) != factor:
        raise ConfigurationError(f"Binning factor must be a positive integer, got {factor}")
    if factor == 1:
        return image
    height, width = image.shape
    if height < factor or width < factor:
        raise ConfigurationError(f"Binning factor {factor} exceeds image size {width}x{height}")
    trimmed = image[:height - height % factor, :width - width % factor]
    return block_reduce(trimmed.astype(float), block_size=(factor, factor), func=np.mean)


def random_trail_endpoints(width: int, height: int,
                           rng: np.random.Generator) -> Tuple[float, float, float, float]:
    """Entry and exit points on opposite edges of the frame."""
    side = rng.integers(4)  # 0=top, 1=right, 2=bottom, 3=left
    if side == 0:
        return rng.integers(width), 0, rng.integers(width), height - 1
    if side == 1:
        return width - 1, rng.integers(height), 0, rng.integers(height)
    if side == 2:
        return rng.integers(width), height - 1, rng.integers(width), 0
    return 0, rng.integers(height), width - 1, rng.integers(height)


def add_satellite_trail(buffer: np.ndarray, exposure_time: float, rng: np.random.Generator,
                        endpoints: Optional[Tuple[float, float, float, float]] = None) -> Tuple[float, float, float, float]:
    """
    Add a straight satellite streak with a Gaussian cross-section.

    Returns:
        The (x0, y0, x1, y1) endpoints used
    """
    height, width = buffer.shape
    if endpoints is None:
        endpoints = random_trail_endpoints(width, height, rng)
    x0, y0, x1, y1 = (float(v) for v in endpoints)
    brightness = max(TRAIL_MIN_BRIGHTNESS, TRAIL_BRIGHTNESS_RATE * exposure_time)
    sigma = max(TRAIL_MIN_WIDTH, 1.0 + rng.random() * 2.0)

    y, x = np.mgrid[0:height, 0:width]
    dx, dy = x1 - x0, y1 - y0
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        dist_sq = (x - x0) ** 2 + (y - y0) ** 2
    else:
        # Distance to the segment, projection clamped to its ends
        t = np.clip(((x - x0) * dx + (y - y0) * dy) / length_sq, 0.0, 1.0)
        dist_sq = (x - (x0 + t * dx)) ** 2 + (y - (y0 + t * dy)) ** 2

    buffer += brightness * np.exp(-dist_sq / (2.0 * sigma * sigma))
    logger.info(f"Satellite trail from ({x0:.0f}, {y0:.0f}) to ({x1:.0f}, {y1:.0f}), "
                f"width {sigma:.1f}px, peak {brightness:.0f} photons")
    return x0, y0, x1, y1
