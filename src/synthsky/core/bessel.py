"""
core/bessel.py - Bessel J1 and the Airy intensity pattern

Thin wrappers around scipy.special that add the limiting values the PSF
code relies on, so evaluating the pattern on a grid that contains r=0 never
produces NaNs.
"""

import numpy as np
from scipy import special

# Below this |v| the Airy intensity is taken at its limit of 1.0
AIRY_ORIGIN_EPS = 1e-10


def j1(x):
    """Bessel function of the first kind, order 1 (scalar or array)."""
    return special.j1(x)


def j1_zeros(count: int = 3) -> np.ndarray:
    """First ``count`` positive zeros of J1 (3.8317, 7.0156, 10.1735, ...)."""
    return special.jn_zeros(1, count)


def airy_first_zero() -> float:
    """v at the first dark ring of an unobstructed Airy pattern."""
    return float(j1_zeros(1)[0])


def airy_intensity(v, obstruction: float = 0.0):
    """
    Normalized Airy intensity I(v), with I(0) = 1.

    Args:
        v: Dimensionless radius pi*D*theta/lambda (scalar or array)
        obstruction: Central obstruction ratio epsilon in [0, 1)

    Returns:
        Intensity with the same shape as ``v``

    The obstructed aperture uses
        I(v) = [J1(v)/v - eps^2 J1(eps v)/(eps v)]^2 * 4 / (1 - eps^2)^2
    which reduces to [2 J1(v)/v]^2 when eps = 0.
    """
    if not 0.0 <= obstruction < 1.0:
        raise ValueError(f"obstruction ratio must be in [0, 1), got {obstruction}")

    v = np.abs(np.asarray(v, dtype=float))
    at_origin = v < AIRY_ORIGIN_EPS
    safe_v = np.where(at_origin, 1.0, v)

    if obstruction > 0.0:
        eps = obstruction
        amplitude = special.j1(safe_v) / safe_v - eps * eps * special.j1(eps * safe_v) / (eps * safe_v)
        intensity = amplitude * amplitude * 4.0 / (1.0 - eps * eps) ** 2
    else:
        amplitude = 2.0 * special.j1(safe_v) / safe_v
        intensity = amplitude * amplitude

    intensity = np.where(at_origin, 1.0, intensity)
    if intensity.ndim == 0:
        return float(intensity)
    return intensity
