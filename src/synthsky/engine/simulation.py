"""
engine/simulation.py - Single-consumer simulation engine

All simulation state (mount, atmosphere, catalog, camera, rotator and the
exposure in progress) is owned by one consumer. Commands arrive on a
queue.Queue and are applied strictly one at a time, either by the
background consumer thread (start/stop) or synchronously via ``process``
and ``run_pending``. Listeners subscribed to an EventType are called from
the consumer after each state change.

Time is virtual: AdvanceTime steps the models in subframe-sized ticks.
While an exposure is open, the mount and atmosphere are snapshotted at each
subframe boundary; once the exposure duration has elapsed the subframes are
rendered and an image-generated event is emitted.
"""

import logging
import queue
import threading
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from ..config import CameraConfig, SimulationConfig
from ..core.optics import OpticalParameters
from ..core.sensor_physics import SensorModel
from ..environment.atmosphere import AtmosphereModel
from ..environment.mount import MountModel
from ..errors import ConfigurationError, ExposureCancelled, SimulationError
from ..imaging.buffer_pool import BufferPoolManager
from ..imaging.exposure import ExposureOrchestrator, ExposureResult, plan_subframes
from ..imaging.subframe import Subframe
from ..sky.catalog import SkyRegion, StarCatalog
from ..sky.projection import camera_field_of_view
from .commands import (
    AdvanceTime,
    Command,
    EventType,
    GenerateSatelliteTrail,
    MeridianFlip,
    PulseGuide,
    SetCloudCoverage,
    SetPeriodicError,
    SetPolarAlignmentError,
    SetRotatorPosition,
    SetSeeingCondition,
    SetTrackingMode,
    SetTrackingRate,
    SetTransparency,
    SimulateCableSnag,
    SlewTo,
    StartExposure,
    StopExposure,
    UpdateAtmosphere,
    UpdateCamera,
    UpdateMount,
)

logger = logging.getLogger(__name__)

TIME_EPSILON = 1e-9
_STOP = object()


@dataclass
class ExposureInProgress:
    duration: float
    binning: int
    satellite_trail: bool
    rotator_angle: float
    plan: List[tuple]
    elapsed: float = 0.0
    next_index: int = 0
    subframes: List[Subframe] = field(default_factory=list)


@dataclass(frozen=True)
class CameraStatus:
    config: CameraConfig
    is_exposing: bool
    exposure_elapsed: float = 0.0
    exposure_duration: float = 0.0


@dataclass(frozen=True)
class CatalogStatus:
    star_count: int
    added: int
    center_ra: float
    center_dec: float
    radius: float


class SimulationEngine:
    """
    Owner of the simulated observatory.

    Usage:
        engine = SimulationEngine(SimulationConfig(seed=7))
        engine.subscribe(EventType.IMAGE_GENERATED, lambda result: ...)
        engine.process(StartExposure(duration=1.0))
        engine.process(AdvanceTime(seconds=1.0))
    """

    def __init__(self, config: Optional[SimulationConfig] = None):
        self.config = config or SimulationConfig()
        seeds = np.random.SeedSequence(self.config.seed)
        catalog_seed, mount_seed, atmosphere_seed, sensor_seed, exposure_seed = seeds.spawn(5)
        self.catalog_rng = np.random.default_rng(catalog_seed)
        self.mount_rng = np.random.default_rng(mount_seed)
        self._sensor_rng = np.random.default_rng(sensor_seed)
        self._exposure_seeds = exposure_seed

        self.camera = replace(self.config.camera)
        self.mount = MountModel(self.config.mount)
        self.atmosphere = AtmosphereModel(self.config.atmosphere, np.random.default_rng(atmosphere_seed))
        self.catalog = StarCatalog()
        self.rotator_angle = self.config.rotator_angle % 360.0
        self.virtual_time = 0.0
        self.pools = BufferPoolManager()
        self.exposure: Optional[ExposureInProgress] = None
        self.last_image: Optional[ExposureResult] = None
        self.pending_satellite_trail = False

        self._listeners: Dict[EventType, List[Callable[[Any], None]]] = defaultdict(list)
        self._queue: "queue.Queue" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._cancel = threading.Event()

        self._build_optics()
        self.expand_catalog(self.mount.ra, self.mount.dec)
        logger.info(f"SimulationEngine initialized at RA={self.mount.ra:.3f} Dec={self.mount.dec:.3f}, "
                    f"{len(self.catalog)} stars")

    # --- events -------------------------------------------------------------

    def subscribe(self, event: EventType, callback: Callable[[Any], None]):
        self._listeners[event].append(callback)

    def unsubscribe(self, event: EventType, callback: Callable[[Any], None]):
        if callback in self._listeners[event]:
            self._listeners[event].remove(callback)

    def _emit(self, event: EventType, payload: Any):
        for callback in list(self._listeners[event]):
            callback(payload)

    # --- queue consumer -----------------------------------------------------

    def post(self, command: Command):
        """Queue a command for the consumer."""
        self._queue.put(command)

    def run_pending(self) -> int:
        """Synchronously apply every queued command; returns how many ran."""
        count = 0
        while True:
            try:
                command = self._queue.get_nowait()
            except queue.Empty:
                return count
            try:
                if command is not _STOP:
                    self.process(command)
                    count += 1
            finally:
                self._queue.task_done()

    def start(self):
        """Start the background consumer thread."""
        if self._thread is not None and self._thread.is_alive():
            raise SimulationError("Engine consumer is already running")
        self._discard_stale_sentinels()
        self._thread = threading.Thread(target=self._consume, name="synthsky-engine", daemon=True)
        self._thread.start()
        logger.info("Engine consumer started")

    def stop(self, timeout: Optional[float] = 5.0):
        if self._thread is None:
            return
        self._cancel.set()
        self._queue.put(_STOP)
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Engine consumer did not stop within the timeout")
            return
        self._thread = None
        logger.info("Engine consumer stopped")

    def _discard_stale_sentinels(self):
        """Drop stop sentinels left behind by a stop that timed out."""
        pending = []
        while True:
            try:
                command = self._queue.get_nowait()
            except queue.Empty:
                break
            self._queue.task_done()
            if command is not _STOP:
                pending.append(command)
        for command in pending:
            self._queue.put(command)

    def wait_idle(self):
        """Block until every posted command has been applied."""
        self._queue.join()

    def _consume(self):
        """Apply queued commands until the stop sentinel is read."""
        while True:
            command = self._queue.get()
            try:
                if command is _STOP:
                    break
                self.process(command)
            except (ConfigurationError, SimulationError) as e:
                logger.error(f"Command {type(command).__name__} rejected: {e}")
            except ExposureCancelled as e:
                logger.info(str(e))
            finally:
                self._queue.task_done()

    def cancel_exposure(self):
        """Thread-safe request to abort the exposure being rendered."""
        self._cancel.set()

    # --- helpers ------------------------------------------------------------

    def _build_optics(self):
        self.optics = OpticalParameters.from_focal_length(self.mount.focal_length)
        self.sensor = SensorModel.create(self.camera, self._sensor_rng)
        self.orchestrator = ExposureOrchestrator(
            self.camera, self.optics, self.catalog, self.sensor,
            pools=self.pools, workers=self.config.parallel_workers,
        )

    def expand_catalog(self, ra: float, dec: float) -> int:
        """Make sure the catalog covers the field around (ra, dec)."""
        fov_w, fov_h = camera_field_of_view(self.camera, self.mount.focal_length)
        region = SkyRegion(ra % 360.0, dec, max(fov_w, fov_h) * self.config.catalog_margin)
        added = self.catalog.expand(region, self.config.limiting_magnitude, self.catalog_rng)
        if added:
            self.catalog.reference_rotation = self.rotator_angle
            self._emit(EventType.STAR_CATALOG_CHANGED,
                       CatalogStatus(len(self.catalog), added, region.center_ra, region.center_dec, region.radius))
        return added

    def camera_status(self) -> CameraStatus:
        if self.exposure is None:
            return CameraStatus(self.camera, False)
        return CameraStatus(self.camera, True, self.exposure.elapsed, self.exposure.duration)

    def _emit_mount(self):
        self._emit(EventType.MOUNT_STATE_CHANGED, self.mount.snapshot())

    def _emit_atmosphere(self):
        self._emit(EventType.ATMOSPHERE_STATE_CHANGED, self.atmosphere.snapshot())

    # --- command dispatch ---------------------------------------------------

    def process(self, command: Command):
        """Apply one command to the simulation state."""
        match command:
            case SlewTo(ra=ra, dec=dec):
                self.mount.slew_to(ra, dec)
                self.expand_catalog(ra, dec)
                self._emit_mount()
            case PulseGuide(ra_rate=ra_rate, dec_rate=dec_rate, duration_ms=duration_ms):
                self.mount.pulse_guide(ra_rate, dec_rate, duration_ms)
                self._emit_mount()
            case SetTrackingRate(rate=rate):
                self.mount.set_tracking_rate(rate)
                self._emit_mount()
            case SetTrackingMode(mode=mode, custom_rate=custom_rate):
                self.mount.set_tracking_mode(mode, custom_rate)
                self._emit_mount()
            case SetPolarAlignmentError(degrees=degrees):
                self.mount.set_polar_alignment_error(degrees)
                self._emit_mount()
            case SetPeriodicError(amplitude=amplitude, period=period):
                self.mount.set_periodic_error(amplitude, period)
                self._emit_mount()
            case SimulateCableSnag(ra_amount=ra_amount, dec_amount=dec_amount):
                self.mount.cable_snag(ra_amount, dec_amount)
                self._emit_mount()
            case MeridianFlip():
                self.mount.meridian_flip()
                self._emit_mount()
            case UpdateMount(config=config):
                self._require_idle_camera("update the mount")
                self.mount = MountModel(config)
                self._build_optics()
                self.expand_catalog(self.mount.ra, self.mount.dec)
                self._emit_mount()
            case UpdateCamera(config=config):
                self._require_idle_camera("reconfigure the camera")
                self.camera = config
                self._build_optics()
                self.expand_catalog(self.mount.ra, self.mount.dec)
                self._emit(EventType.CAMERA_STATE_CHANGED, self.camera_status())
            case StartExposure(duration=duration, binning=binning, satellite_trail=trail):
                self.start_exposure(duration, binning, trail)
            case StopExposure():
                self.stop_exposure()
            case GenerateSatelliteTrail():
                self.pending_satellite_trail = True
            case SetRotatorPosition(angle=angle):
                self.rotator_angle = angle % 360.0
                logger.info(f"Rotator moved to {self.rotator_angle:.2f} deg")
                self._emit(EventType.ROTATOR_STATE_CHANGED, self.rotator_angle)
            case SetSeeingCondition(seeing=seeing):
                self.atmosphere.set_seeing(seeing)
                self._emit_atmosphere()
            case SetCloudCoverage(coverage=coverage):
                self.atmosphere.set_cloud_coverage(coverage)
                self._emit_atmosphere()
            case SetTransparency(transparency=transparency):
                self.atmosphere.set_transparency(transparency)
                self._emit_atmosphere()
            case UpdateAtmosphere(config=config):
                self.atmosphere = AtmosphereModel(config, self.atmosphere.rng)
                self._emit_atmosphere()
            case AdvanceTime(seconds=seconds):
                self.advance_time(seconds)
            case _:
                raise SimulationError(f"Unknown command: {command!r}")

    def _require_idle_camera(self, action: str):
        if self.exposure is not None:
            raise SimulationError(f"Cannot {action} while an exposure is in progress")

    # --- exposure lifecycle -------------------------------------------------

    def start_exposure(self, duration: float, binning: Optional[int] = None,
                       satellite_trail: bool = False):
        if duration <= 0:
            raise ConfigurationError(f"Exposure duration must be positive, got {duration}")
        self._require_idle_camera("start an exposure")
        binning = self.camera.binning if binning is None else binning
        if binning < 1:
            raise ConfigurationError(f"binning must be >= 1, got {binning}")
        self._cancel.clear()
        self.exposure = ExposureInProgress(
            duration=duration,
            binning=binning,
            satellite_trail=satellite_trail,
            rotator_angle=self.rotator_angle,
            plan=plan_subframes(duration, self.camera.subframe_duration),
        )
        logger.info(f"Exposure of {duration:.2f}s started ({len(self.exposure.plan)} subframes)")
        self._emit(EventType.CAMERA_STATE_CHANGED, self.camera_status())

    def stop_exposure(self):
        if self.exposure is None:
            return
        logger.info(f"Exposure stopped after {self.exposure.elapsed:.2f}s, discarding "
                    f"{len(self.exposure.subframes)} subframes")
        self.exposure = None
        self._emit(EventType.CAMERA_STATE_CHANGED, self.camera_status())

    def _snapshot_subframe(self):
        exposure = self.exposure
        index, timestamp, duration = exposure.plan[exposure.next_index]
        exposure.subframes.append(Subframe(
            time_index=index,
            duration=duration,
            timestamp=timestamp,
            mount=self.mount.snapshot(),
            atmosphere=self.atmosphere.snapshot(),
            jitter=self.atmosphere.jitter_at(self.atmosphere.elapsed),
        ))
        exposure.next_index += 1

    def _complete_exposure(self):
        exposure = self.exposure
        self.exposure = None
        trail = exposure.satellite_trail or self.pending_satellite_trail
        self.pending_satellite_trail = False
        rng = np.random.default_rng(self._exposure_seeds.spawn(1)[0])
        try:
            result = self.orchestrator.render(
                exposure.subframes, exposure.duration, rng,
                rotator_angle=exposure.rotator_angle, cancel=self._cancel,
                binning=exposure.binning, satellite_trail=trail,
            )
        finally:
            self._emit(EventType.CAMERA_STATE_CHANGED, self.camera_status())
        self.last_image = result
        self._emit(EventType.IMAGE_GENERATED, result)

    def advance_time(self, seconds: float):
        """Step the simulation forward by ``seconds`` of virtual time."""
        if seconds < 0:
            raise ConfigurationError(f"Cannot advance time by a negative amount ({seconds})")
        tick = self.camera.subframe_duration
        remaining = seconds
        while remaining > TIME_EPSILON:
            exposure = self.exposure
            if exposure is not None:
                if (exposure.next_index < len(exposure.plan)
                        and exposure.elapsed >= exposure.plan[exposure.next_index][1] - TIME_EPSILON):
                    self._snapshot_subframe()
                if exposure.next_index < len(exposure.plan):
                    boundary = exposure.plan[exposure.next_index][1]
                else:
                    boundary = exposure.duration
                dt = min(remaining, max(boundary - exposure.elapsed, 0.0))
            else:
                dt = min(remaining, tick)

            self.mount.advance(dt, self.mount_rng)
            self.atmosphere.evolve(dt)
            self.virtual_time += dt
            remaining -= dt

            if exposure is not None:
                exposure.elapsed += dt
                if exposure.elapsed >= exposure.duration - TIME_EPSILON:
                    self._complete_exposure()

        self._emit_mount()
        self._emit_atmosphere()
