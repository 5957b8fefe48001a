"""
synthsky - Physics-based synthetic astronomical sensor engine

Produces realistic sensor images for a virtual telescope, mount and camera:
stars from a lazily growing catalog, spread by diffraction and seeing,
displaced by tracking error and atmospheric jitter, accumulated over short
subframes and read out through a noisy sensor model.

Usage:
    from synthsky import SimulationEngine, SimulationConfig
    from synthsky.engine.commands import StartExposure, AdvanceTime

    engine = SimulationEngine(SimulationConfig(seed=1))
    engine.process(StartExposure(duration=2.0))
    engine.process(AdvanceTime(seconds=2.0))
"""

from .config import (
    AtmosphereConfig,
    CameraConfig,
    MountConfig,
    SimulationConfig,
    load_config,
)
from .engine.simulation import SimulationEngine
from .errors import ConfigurationError, ExposureCancelled, SimulationError

__version__ = "0.1.0"

__all__ = [
    "AtmosphereConfig",
    "CameraConfig",
    "MountConfig",
    "SimulationConfig",
    "load_config",
    "SimulationEngine",
    "ConfigurationError",
    "ExposureCancelled",
    "SimulationError",
]
