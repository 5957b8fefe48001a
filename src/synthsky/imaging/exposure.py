"""
imaging/exposure.py - Exposure orchestration

An exposure is split into fixed-length subframes (0.1 s by default). The
orchestrator works in two phases:

1. capture: step the mount and atmosphere models to each subframe's
   timestamp and snapshot them (sequential, owns the model RNG).
2. render: render every subframe into a pooled buffer and add it to a
   single accumulator (optionally across a thread pool), then run the
   combined image once through the sensor model and bin it.

Cancellation is checked between subframes; a cancelled exposure raises
ExposureCancelled and its partial sum is discarded.
"""

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from tqdm import tqdm

from ..config import CameraConfig
from ..core.optics import OpticalParameters
from ..core.sensor_physics import SensorModel, quantum_efficiency
from ..environment.atmosphere import AtmosphereModel
from ..environment.mount import MountModel
from ..errors import ConfigurationError, ExposureCancelled
from ..sky.catalog import StarCatalog
from .accumulation import add_satellite_trail, bin_image, combine_buffers, to_row_major
from .buffer_pool import BufferPoolManager
from .subframe import Subframe, SubframeRenderer

logger = logging.getLogger(__name__)

DEFAULT_SUBFRAME_DURATION = 0.1  # s
TRAIL_WAVELENGTH = 550.0         # nm


@dataclass
class ExposureResult:
    """Final image of an exposure."""
    image: np.ndarray            # (height, width) ADU after binning
    width: int
    height: int
    bit_depth: int
    exposure_time: float
    binning: int
    subframe_count: int
    signal: np.ndarray = field(repr=False, default=None)  # noise-free electrons before readout
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def pixels(self) -> np.ndarray:
        """Row-major flat pixel array."""
        return to_row_major(self.image)


def plan_subframes(exposure_time: float,
                   subframe_duration: float = DEFAULT_SUBFRAME_DURATION) -> List[Tuple[int, float, float]]:
    """
    Split an exposure into (index, timestamp, duration) slices.

    The last slice is shortened when the exposure is not a whole multiple
    of the subframe duration.
    """
    if exposure_time <= 0:
        raise ConfigurationError(f"Exposure time must be positive, got {exposure_time}")
    if subframe_duration <= 0:
        raise ConfigurationError(f"Subframe duration must be positive, got {subframe_duration}")
    count = max(1, math.ceil(exposure_time / subframe_duration - 1e-9))
    plan = []
    for i in range(count):
        timestamp = i * subframe_duration
        duration = min(subframe_duration, exposure_time - timestamp)
        plan.append((i, round(timestamp, 12), round(duration, 12)))
    return plan


class ExposureOrchestrator:
    """Drives capture and rendering of one exposure at a time."""

    def __init__(self, camera: CameraConfig, optics: OpticalParameters, catalog: StarCatalog,
                 sensor: SensorModel, pools: Optional[BufferPoolManager] = None,
                 workers: int = 1, subpixel: bool = True):
        if workers < 1:
            raise ConfigurationError(f"workers must be >= 1, got {workers}")
        self.camera = camera
        self.optics = optics
        self.catalog = catalog
        self.sensor = sensor
        self.pools = pools or BufferPoolManager()
        self.workers = workers
        self.renderer = SubframeRenderer(camera, optics, catalog, sensor.sensor_type,
                                         self.pools, subpixel=subpixel)

    def capture(self, exposure_time: float, mount: MountModel, atmosphere: AtmosphereModel,
                rng: np.random.Generator, cancel: Optional[threading.Event] = None,
                subframe_duration: Optional[float] = None) -> List[Subframe]:
        """
        Evolve the models through the exposure, snapshotting each subframe.

        The models end the call at the end of the exposure.
        """
        subframe_duration = subframe_duration or self.camera.subframe_duration
        subframes = []
        previous = 0.0
        for index, timestamp, duration in plan_subframes(exposure_time, subframe_duration):
            if cancel is not None and cancel.is_set():
                raise ExposureCancelled(f"Exposure cancelled before subframe {index}")
            dt = timestamp - previous
            previous = timestamp
            mount_state = mount.advance(dt, rng)
            atmosphere_state = atmosphere.evolve(dt)
            jitter = atmosphere.jitter_at(atmosphere.elapsed)
            subframes.append(Subframe(index, duration, timestamp, mount_state, atmosphere_state, jitter))

        remainder = exposure_time - previous
        mount.advance(remainder, rng)
        atmosphere.evolve(remainder)
        return subframes

    def _render_one(self, subframe: Subframe, rotator_angle: float, exposure_time: float,
                    cancel: Optional[threading.Event]) -> np.ndarray:
        if cancel is not None and cancel.is_set():
            raise ExposureCancelled(f"Exposure cancelled before subframe {subframe.time_index}")
        return self.renderer.render(subframe, rotator_angle, exposure_time)

    def render(self, subframes: List[Subframe], exposure_time: float, rng: np.random.Generator,
               rotator_angle: float = 0.0, cancel: Optional[threading.Event] = None,
               binning: int = 1, satellite_trail: bool = False) -> ExposureResult:
        """
        Render, combine and read out captured subframes.

        Args:
            subframes: Output of ``capture``
            exposure_time: Total exposure in seconds
            rng: Generator for the sensor noise and satellite trail
            rotator_angle: Rotator position in degrees
            cancel: Event checked between subframes
            binning: Output binning factor
            satellite_trail: Add a satellite streak to the exposure

        Returns:
            ExposureResult with the binned ADU image
        """
        if not subframes:
            raise ConfigurationError("Exposure has no subframes")
        total = np.zeros((self.camera.height, self.camera.width))

        progress = tqdm(total=len(subframes), desc="Subframes", unit="sf",
                        disable=not logger.isEnabledFor(logging.DEBUG))
        try:
            if self.workers == 1:
                for subframe in subframes:
                    buffer = self._render_one(subframe, rotator_angle, exposure_time, cancel)
                    combine_buffers([buffer], out=total)
                    self.pools.release(buffer)
                    progress.update(1)
            else:
                chunk = self.workers * 2
                with ThreadPoolExecutor(max_workers=self.workers) as executor:
                    for start in range(0, len(subframes), chunk):
                        batch = subframes[start:start + chunk]
                        futures = [executor.submit(self._render_one, sf, rotator_angle, exposure_time, cancel)
                                   for sf in batch]
                        # Reduce in index order; every future is drained so pooled buffers return
                        error = None
                        for future in futures:
                            try:
                                buffer = future.result()
                            except Exception as exc:
                                error = error or exc
                                continue
                            if error is None:
                                combine_buffers([buffer], out=total)
                            self.pools.release(buffer)
                            progress.update(1)
                        if error is not None:
                            raise error
        except ExposureCancelled:
            logger.info("Exposure cancelled, discarding partial accumulation")
            raise
        finally:
            progress.close()

        trail = None
        if satellite_trail:
            trail_buffer = np.zeros_like(total)
            trail = add_satellite_trail(trail_buffer, exposure_time, rng)
            total += trail_buffer * quantum_efficiency(TRAIL_WAVELENGTH, self.sensor.sensor_type)

        adu = self.sensor.process(total, exposure_time, rng, wavelength_nm=None)
        image = bin_image(adu, binning)
        if binning > 1:
            image = np.round(image).astype(adu.dtype)

        last = subframes[-1].mount
        logger.info(f"Exposure complete: {exposure_time:.2f}s in {len(subframes)} subframes, "
                    f"{total.sum():.0f} e- collected")
        return ExposureResult(
            image=image,
            width=image.shape[1],
            height=image.shape[0],
            bit_depth=self.sensor.bit_depth,
            exposure_time=exposure_time,
            binning=binning,
            subframe_count=len(subframes),
            signal=total,
            metadata={
                "ra": last.ra,
                "dec": last.dec,
                "rotator_angle": rotator_angle,
                "seeing": subframes[-1].atmosphere.seeing,
                "gain": self.sensor.gain,
                "temperature": self.sensor.temperature,
                "satellite_trail": trail,
            },
        )

    def run(self, exposure_time: float, mount: MountModel, atmosphere: AtmosphereModel,
            rng: np.random.Generator, rotator_angle: float = 0.0,
            cancel: Optional[threading.Event] = None, binning: int = 1,
            satellite_trail: bool = False) -> ExposureResult:
        """Capture and render an exposure in one call."""
        logger.info(f"Starting {exposure_time:.2f}s exposure")
        subframes = self.capture(exposure_time, mount, atmosphere, rng, cancel)
        return self.render(subframes, exposure_time, rng, rotator_angle, cancel, binning, satellite_trail)
