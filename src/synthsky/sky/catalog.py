"""
sky/catalog.py - Persistent, lazily expanding synthetic star catalog

Stars are generated on demand for the sky regions the telescope visits.
The catalog only ever grows: expanding into a region that is already
covered is a no-op, so revisiting an area always shows the same stars.

Star counts follow a crude galactic model: density falls off as
exp(-|b|/30 deg) with galactic latitude b and grows by 10^0.4 per
magnitude of limiting depth.
"""

import itertools
import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd
from astropy import units as u
from astropy.coordinates import SkyCoord

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

MIN_MAGNITUDE = 1.0
MAGNITUDE_EXPONENT = 0.6      # log10(4): ~4x more stars per magnitude
MIN_COLOR_INDEX = -0.3
MAX_COLOR_INDEX = 2.0
COLOR_JITTER_SIGMA = 0.15
DUPLICATE_TOLERANCE = 0.01    # degrees
GALACTIC_SCALE_HEIGHT = 30.0  # degrees
BASE_DENSITY = 1.0            # stars per deg^2 at b=0 and limiting magnitude 6
MIN_COS_DEC = 1e-6


@dataclass(frozen=True)
class Star:
    """A catalog star. Coordinates in degrees, color as B-V."""
    id: int
    ra: float
    dec: float
    magnitude: float
    color_index: float


@dataclass(frozen=True)
class SkyRegion:
    """Circular patch of sky, all values in degrees."""
    center_ra: float
    center_dec: float
    radius: float

    def __post_init__(self):
        if not -90.0 <= self.center_dec <= 90.0:
            raise ConfigurationError(f"Region declination must be within [-90, 90], got {self.center_dec}")
        if not self.radius > 0 or not math.isfinite(self.radius):
            raise ConfigurationError(f"Region radius must be positive, got {self.radius}")

    def contains(self, other: "SkyRegion") -> bool:
        """True when ``other`` lies entirely inside this region."""
        cos_dec = max(math.cos(math.radians(other.center_dec)), MIN_COS_DEC)
        delta_ra = wrap_ra_delta(self.center_ra - other.center_ra) * cos_dec
        delta_dec = self.center_dec - other.center_dec
        center_distance = math.hypot(delta_ra, delta_dec)
        return center_distance + other.radius <= self.radius


def wrap_ra_delta(delta):
    """Wrap an RA difference into [-180, 180) degrees."""
    wrapped = (np.asarray(delta, dtype=float) + 180.0) % 360.0 - 180.0
    return float(wrapped) if wrapped.ndim == 0 else wrapped


def galactic_latitude(ra: float, dec: float) -> float:
    """Galactic latitude b in degrees of an ICRS position."""
    coord = SkyCoord(ra=ra * u.deg, dec=dec * u.deg, frame="icrs")
    return float(coord.galactic.b.deg)


def expected_star_count(region: SkyRegion, limiting_magnitude: float) -> int:
    """Number of stars to generate for a region."""
    density = math.exp(-abs(galactic_latitude(region.center_ra, region.center_dec)) / GALACTIC_SCALE_HEIGHT)
    return int(BASE_DENSITY * density * region.radius ** 2 * 10.0 ** (0.4 * (limiting_magnitude - 6.0)))


def draw_magnitudes(n: int, limiting_magnitude: float, rng: np.random.Generator) -> np.ndarray:
    """mag = min + range * u^(1/0.6)."""
    magnitude_range = limiting_magnitude - MIN_MAGNITUDE
    return MIN_MAGNITUDE + magnitude_range * rng.random(n) ** (1.0 / MAGNITUDE_EXPONENT)


def draw_color_indices(magnitudes: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Brighter stars bluer, plus Gaussian scatter, clamped to [-0.3, 2.0]."""
    base = MIN_COLOR_INDEX + (magnitudes / 6.0) * 2.3
    jitter = rng.normal(0.0, COLOR_JITTER_SIGMA, magnitudes.shape)
    return np.clip(base + jitter, MIN_COLOR_INDEX, MAX_COLOR_INDEX)


class StarCatalog:
    """
    Monotonically growing set of stars keyed by id.

    Attributes:
        stars: id -> Star
        reference_pointing: (ra, dec) of the most recent expansion centre
        reference_rotation: rotator angle recorded with the pointing
        regions: every region that has been expanded into
    """

    def __init__(self):
        self.stars: Dict[int, Star] = {}
        self.reference_pointing: Tuple[float, float] = (0.0, 0.0)
        self.reference_rotation: float = 0.0
        self.regions: List[SkyRegion] = []
        self._ids = itertools.count(1)
        self._arrays: Optional[Dict[str, np.ndarray]] = None

    def __len__(self) -> int:
        return len(self.stars)

    def __iter__(self) -> Iterator[Star]:
        return iter(self.stars.values())

    def __contains__(self, star_id: int) -> bool:
        return star_id in self.stars

    def covered_region(self) -> Optional[SkyRegion]:
        """
        Bounding circle of the current stars: centre of the RA/Dec bounding
        box, radius half its diagonal. RA is measured relative to the
        reference pointing so fields straddling RA=0 stay compact. None for
        an empty catalog.
        """
        if not self.stars:
            return None
        arrays = self.as_arrays()
        ref_ra = self.reference_pointing[0]
        ra = ref_ra + wrap_ra_delta(arrays["ra"] - ref_ra)
        dec = arrays["dec"]
        min_ra, max_ra = float(ra.min()), float(ra.max())
        min_dec, max_dec = float(dec.min()), float(dec.max())
        radius = math.hypot(max_ra - min_ra, max_dec - min_dec) / 2.0
        if radius <= 0:
            return None
        return SkyRegion(((min_ra + max_ra) / 2.0) % 360.0, (min_dec + max_dec) / 2.0, radius)

    def is_covered(self, region: SkyRegion) -> bool:
        """
        True when ``region`` lies inside a previously expanded region or
        inside the bounding circle of the current stars.
        """
        if any(r.contains(region) for r in self.regions):
            return True
        bounds = self.covered_region()
        return bounds is not None and bounds.contains(region)

    def _exists_near(self, ra: float, dec: float, tolerance: float = DUPLICATE_TOLERANCE) -> bool:
        if not self.stars:
            return False
        arrays = self.as_arrays()
        cos_dec = max(math.cos(math.radians(dec)), MIN_COS_DEC)
        delta_ra = np.abs(wrap_ra_delta(arrays["ra"] - ra)) * cos_dec
        delta_dec = np.abs(arrays["dec"] - dec)
        return bool(np.any(np.hypot(delta_ra, delta_dec) < tolerance))

    def generate(self, region: SkyRegion, limiting_magnitude: float,
                 rng: np.random.Generator) -> List[Star]:
        """Draw new stars for a region without merging them."""
        n = expected_star_count(region, limiting_magnitude)
        cos_dec = max(math.cos(math.radians(region.center_dec)), MIN_COS_DEC)

        # Area-uniform positions inside the circle
        r = region.radius * np.sqrt(rng.random(n))
        theta = rng.random(n) * 2.0 * np.pi
        ra = (region.center_ra + r * np.cos(theta) / cos_dec) % 360.0
        dec = np.clip(region.center_dec + r * np.sin(theta), -90.0, 90.0)

        magnitudes = draw_magnitudes(n, limiting_magnitude, rng)
        colors = draw_color_indices(magnitudes, rng)
        return [
            Star(next(self._ids), float(ra[i]), float(dec[i]), float(magnitudes[i]), float(colors[i]))
            for i in range(n)
        ]

    def expand(self, region: SkyRegion, limiting_magnitude: float,
               rng: np.random.Generator) -> int:
        """
        Grow the catalog to cover ``region``.

        Args:
            region: Sky region the telescope is about to observe
            limiting_magnitude: Faintest magnitude to generate
            rng: Random generator

        Returns:
            Number of stars added (0 when the region was already covered)
        """
        if limiting_magnitude <= MIN_MAGNITUDE:
            raise ConfigurationError(
                f"limiting_magnitude must exceed {MIN_MAGNITUDE}, got {limiting_magnitude}"
            )
        if self.is_covered(region):
            logger.debug(f"Region ({region.center_ra:.3f}, {region.center_dec:.3f}) r={region.radius:.3f} already covered")
            return 0

        # Duplicates are checked against the stars present before this expansion
        self.as_arrays()
        added = 0
        for star in self.generate(region, limiting_magnitude, rng):
            if self._exists_near(star.ra, star.dec):
                continue
            self.stars[star.id] = star
            added += 1
        self._arrays = None

        self.regions.append(region)
        self.reference_pointing = (region.center_ra, region.center_dec)
        logger.info(f"Catalog expanded by {added} stars around RA={region.center_ra:.3f} "
                    f"Dec={region.center_dec:.3f} (total {len(self.stars)})")
        return added

    def add_stars(self, stars: List[Star]) -> int:
        """Merge known stars (e.g. from a real catalog) keyed by their ids."""
        added = 0
        for star in stars:
            if star.id in self.stars:
                continue
            self.stars[star.id] = star
            added += 1
        if added:
            self._arrays = None
            highest = max(self.stars)
            self._ids = itertools.count(highest + 1)
        return added

    def as_arrays(self) -> Dict[str, np.ndarray]:
        """Column arrays (id, ra, dec, magnitude, color_index) for vectorized work."""
        if self._arrays is None:
            stars = list(self.stars.values())
            self._arrays = {
                "id": np.array([s.id for s in stars], dtype=np.int64),
                "ra": np.array([s.ra for s in stars], dtype=float),
                "dec": np.array([s.dec for s in stars], dtype=float),
                "magnitude": np.array([s.magnitude for s in stars], dtype=float),
                "color_index": np.array([s.color_index for s in stars], dtype=float),
            }
        return self._arrays

    def to_frame(self) -> pd.DataFrame:
        """Catalog as a DataFrame with the usual catalog column names."""
        arrays = self.as_arrays()
        return pd.DataFrame({
            "Star ID": arrays["id"],
            "RA": arrays["ra"],
            "DE": arrays["dec"],
            "Magnitude": arrays["magnitude"],
            "B-V": arrays["color_index"],
        })
