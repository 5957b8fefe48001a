"""
synthsky/errors.py - Exception types raised at the simulation boundary

Only configuration violations and engine misuse surface as exceptions.
Numerical special cases (r=0 in the Airy function, declinations at the
poles, zero wind speed) are handled where they occur with limiting values.
"""


class ConfigurationError(ValueError):
    """Non-physical configuration value rejected before entering the pipeline."""


class ExposureCancelled(RuntimeError):
    """An exposure was aborted between subframes; partial data was discarded."""


class SimulationError(RuntimeError):
    """Engine-level misuse such as overlapping exposures or unknown commands."""
