"""
environment/atmosphere.py - Atmospheric seeing, clouds and image jitter

Three turbulent layers (ground, mid-altitude, jet stream) split the seeing
contribution 30/40/30. Each layer moves the image with a smooth multi-frequency
signal whose correlation time is the layer's time scale, giving a
temporally correlated jitter rather than white noise.

Seeing drifts on seconds/minutes/tens-of-minutes periods plus a small random
walk; cloud coverage follows a slow directional trend.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import List, Tuple

import numpy as np

from ..config import AtmosphereConfig
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

MIN_SEEING = 0.5   # arcsec
MAX_SEEING = 5.0   # arcsec
CLOUD_TRANSMISSION_LOSS = 0.8

# name, contribution, height range (km), speed range (arcsec/s), time scale range (s)
LAYER_PROFILES = (
    ("ground", 0.3, (0.0, 1.0), (0.1, 0.4), (1.0, 5.0)),
    ("mid", 0.4, (5.0, 10.0), (0.2, 1.0), (3.0, 10.0)),
    ("jet", 0.3, (10.0, 15.0), (0.5, 2.0), (5.0, 15.0)),
)


@dataclass(frozen=True)
class AtmosphericState:
    seeing: float          # arcsec FWHM
    cloud_coverage: float  # 0..1
    transparency: float    # 0..1


@dataclass(frozen=True)
class AtmosphericLayer:
    name: str
    height_km: float
    direction_deg: float
    speed: float             # arcsec/s
    distortion_scale: float  # amplitude multiplier, 0.5..1.5
    contribution: float      # fraction of total seeing
    time_scale: float        # s


def generate_layers(seeing: float, rng: np.random.Generator) -> List[AtmosphericLayer]:
    """Ground, mid and jet-stream layers with random geometry; contributions sum to 1."""
    if seeing <= 0:
        raise ConfigurationError(f"seeing must be positive, got {seeing}")
    layers = []
    for name, contribution, heights, speeds, time_scales in LAYER_PROFILES:
        layers.append(AtmosphericLayer(
            name=name,
            height_km=rng.uniform(*heights),
            direction_deg=rng.uniform(0.0, 360.0),
            speed=rng.uniform(*speeds),
            distortion_scale=rng.uniform(0.5, 1.5),
            contribution=contribution,
            time_scale=rng.uniform(*time_scales),
        ))
    return layers


def layer_jitter(layer: AtmosphericLayer, seeing: float, t: float) -> Tuple[float, float]:
    """(x, y) image motion in arcsec caused by one layer at time t."""
    distance = layer.speed * t
    T = layer.time_scale
    x_noise = math.sin(t / T) * math.cos(t / (T * 0.73 + 0.27)) * math.sin(distance / 10.0)
    y_noise = math.cos(t / T) * math.sin(t / (T * 0.83 + 0.17)) * math.cos(distance / 10.0)
    magnitude = seeing * layer.contribution * layer.distortion_scale
    return magnitude * x_noise, magnitude * y_noise


def total_jitter(layers: List[AtmosphericLayer], seeing: float, t: float) -> Tuple[float, float]:
    """Sum of all layer jitters in arcsec."""
    jx = jy = 0.0
    for layer in layers:
        dx, dy = layer_jitter(layer, seeing, t)
        jx += dx
        jy += dy
    return jx, jy


def evolve_seeing(base_seeing: float, t: float, dt: float, rng: np.random.Generator) -> float:
    """Seeing at elapsed time t around a base value, clamped to [0.5, 5.0] arcsec."""
    trend = (math.sin(t * 0.5) * 0.05      # ~12 s
             + math.sin(t * 0.05) * 0.1    # ~2 min
             + math.sin(t * 0.005) * 0.15) # ~20 min
    random_walk = rng.normal(0.0, 0.02) * math.sqrt(max(dt, 0.0))
    return min(max(base_seeing * (1.0 + trend + random_walk), MIN_SEEING), MAX_SEEING)


def evolve_clouds(coverage: float, t: float, dt: float, rng: np.random.Generator) -> float:
    """Slow directional drift plus a small random walk, clamped to [0, 1]."""
    trend = math.sin(t * 0.01 + 1.234) * 0.2
    random_walk = rng.normal(0.0, 0.02) * math.sqrt(max(dt, 0.0))
    return min(max(coverage + trend * dt / 100.0 + random_walk, 0.0), 1.0)


def transparency_from_clouds(coverage: float) -> float:
    return min(max(1.0 - CLOUD_TRANSMISSION_LOSS * coverage, 0.0), 1.0)


class AtmosphereModel:
    """
    Owns the evolving atmospheric state.

    ``base_seeing`` is the commanded seeing; ``state.seeing`` wanders around
    it. Only the simulation consumer thread mutates a model; subframes work
    from ``snapshot()`` copies.
    """

    def __init__(self, config: AtmosphereConfig, rng: np.random.Generator):
        self.rng = rng
        self.base_seeing = config.seeing
        self.evolving = config.evolve
        self.state = AtmosphericState(config.seeing, config.cloud_coverage, config.transparency)
        self.layers = generate_layers(config.seeing, rng)
        self.elapsed = 0.0

    def snapshot(self) -> AtmosphericState:
        return self.state

    def jitter_at(self, t: float) -> Tuple[float, float]:
        return total_jitter(self.layers, self.state.seeing, t)

    def evolve(self, dt: float) -> AtmosphericState:
        """Advance by dt seconds and return the new state."""
        if dt < 0:
            raise ValueError(f"Time step must be non-negative, got {dt}")
        self.elapsed += dt
        if self.evolving and dt > 0:
            seeing = evolve_seeing(self.base_seeing, self.elapsed, dt, self.rng)
            clouds = evolve_clouds(self.state.cloud_coverage, self.elapsed, dt, self.rng)
            self.state = AtmosphericState(seeing, clouds, transparency_from_clouds(clouds))
        return self.state

    def set_seeing(self, seeing: float):
        if seeing <= 0:
            raise ConfigurationError(f"seeing must be positive, got {seeing}")
        self.base_seeing = seeing
        self.state = replace(self.state, seeing=seeing)
        self.layers = generate_layers(seeing, self.rng)
        logger.info(f"Seeing set to {seeing:.2f} arcsec")

    def set_cloud_coverage(self, coverage: float):
        if not 0.0 <= coverage <= 1.0:
            raise ConfigurationError(f"cloud_coverage must be in [0, 1], got {coverage}")
        self.state = replace(self.state, cloud_coverage=coverage,
                             transparency=transparency_from_clouds(coverage))
        logger.info(f"Cloud coverage set to {coverage:.2f}")

    def set_transparency(self, transparency: float):
        if not 0.0 <= transparency <= 1.0:
            raise ConfigurationError(f"transparency must be in [0, 1], got {transparency}")
        self.state = replace(self.state, transparency=transparency)
