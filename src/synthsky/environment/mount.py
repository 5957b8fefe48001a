"""
environment/mount.py - Equatorial mount tracking model

State machine:  IDLE --slew_to--> SLEWING --progress >= 1--> IDLE

While idle, each tick layers the tracking error sources onto the pointing:

- tracking rate mismatch against sidereal (RA drift)
- periodic worm error, fundamental plus 2nd..4th harmonics (RA, oscillatory)
- polar misalignment: declination drift and field rotation
- random tracking noise (random walk)
- mechanical binding jumps at random intervals

Guide pulses pass through per-axis backlash and have their Dec sense
reversed on the East pier side. A meridian flip swaps the pier side and
clears the backlash history.

Units: positions in degrees, error amplitudes in arcseconds, times in
seconds.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from ..config import MountConfig
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

SIDEREAL_DAY = 86164.09                  # s
SIDEREAL_RATE = 360.0 / SIDEREAL_DAY     # deg/s
LUNAR_FACTOR = 0.966
SOLAR_FACTOR = 0.9863

HARMONIC_AMPLITUDES = (0.3, 0.15, 0.05)  # relative to the fundamental, orders 2..4
HARMONIC_PHASES = (math.pi / 4.0, math.pi / 3.0, math.pi / 2.0)
POLAR_SPLIT = 0.707                      # error shared between azimuth and altitude

MIN_GUIDE_MOVEMENT = 1e-6                # deg
MIN_SLEW_DURATION = 0.1                  # s
STALLED_SLEW_DURATION = 100.0            # s, used when the slew rate is zero
BINDING_PROBABILITY_SCALE = 0.1
RA_TRACKING_NOISE = 0.2                  # arcsec / sqrt(s)
DEC_TRACKING_NOISE = 0.1                 # arcsec / sqrt(s)
MIN_COS_DEC = 1e-6


class TrackingMode(Enum):
    OFF = "off"
    SIDEREAL = "sidereal"
    LUNAR = "lunar"
    SOLAR = "solar"
    CUSTOM = "custom"


class PierSide(Enum):
    EAST = "East"
    WEST = "West"


class SlewState(Enum):
    IDLE = "Idle"
    SLEWING = "Slewing"


@dataclass
class AxisBacklash:
    """Mechanical play on one axis. Amounts in arcsec."""
    amount: float
    compensation_pct: float
    last_direction: int = 0
    remaining: float = 0.0

    @property
    def effective_amount(self) -> float:
        """Backlash left after the mount's compensation."""
        return self.amount * (1.0 - self.compensation_pct / 100.0)

    def apply(self, direction: int, movement: float) -> float:
        """
        Pass a commanded movement through the gear play.

        Args:
            direction: Sign of the movement (-1, 0, +1)
            movement: Commanded movement in arcsec

        Returns:
            Net movement in arcsec. On a reversal the first
            ``effective_amount`` of motion is absorbed.
        """
        if direction == self.last_direction or direction == 0 or self.last_direction == 0:
            if direction != 0:
                self.last_direction = direction
            return movement

        backlash = self.effective_amount
        magnitude = abs(movement)
        self.last_direction = direction
        if magnitude <= backlash:
            self.remaining = backlash - magnitude
            return 0.0
        self.remaining = 0.0
        return math.copysign(magnitude - backlash, movement)

    def reset(self):
        self.last_direction = 0
        self.remaining = 0.0


@dataclass
class SlewProgress:
    start_ra: float
    start_dec: float
    target_ra: float
    target_dec: float
    progress: float = 0.0


@dataclass(frozen=True)
class MountState:
    """Immutable view of the mount handed to subframes and event listeners."""
    ra: float
    dec: float
    tracking_rate: float
    slew_rate: float
    focal_length: float
    tracking_mode: TrackingMode = TrackingMode.SIDEREAL
    slew_state: SlewState = SlewState.IDLE
    slew_target: Optional[Tuple[float, float]] = None
    slew_progress: float = 0.0
    pier_side: PierSide = PierSide.WEST
    periodic_error_amplitude: float = 0.0
    periodic_error_period: float = 0.0
    polar_alignment_error: float = 0.0
    field_rotation: float = 0.0
    ra_backlash_direction: int = 0     # last guide direction, -1/0/+1
    ra_backlash_remaining: float = 0.0  # arcsec of play not yet taken up
    dec_backlash_direction: int = 0
    dec_backlash_remaining: float = 0.0
    last_binding_time: float = 0.0
    elapsed: float = 0.0

    @property
    def is_slewing(self) -> bool:
        return self.slew_state is SlewState.SLEWING


def wrap_ra(ra: float) -> float:
    return ra % 360.0


def ra_difference(target: float, current: float) -> float:
    """Signed shortest RA difference target - current, in degrees."""
    return (target - current + 180.0) % 360.0 - 180.0


def periodic_error(amplitude: float, period: float, t: float) -> float:
    """Worm periodic error in arcsec at time t (zero when the period is unset)."""
    if period <= 0 or amplitude == 0:
        return 0.0
    phase = 2.0 * math.pi * t / period
    error = amplitude * math.sin(phase)
    for order, (relative, offset) in enumerate(zip(HARMONIC_AMPLITUDES, HARMONIC_PHASES), start=2):
        error += amplitude * relative * math.sin(order * phase + offset)
    return error


def polar_alignment_rates(polar_error_deg: float, dec_deg: float, hour_angle_deg: float,
                          latitude_deg: float) -> Tuple[float, float]:
    """
    Declination drift (arcsec/s) and field rotation (deg/s) from a polar
    misalignment split equally between azimuth and altitude.

    Positive azimuth error gives positive Dec drift at hour angle +90 deg.
    A zero error yields exactly zero for both rates.
    """
    if polar_error_deg == 0:
        return 0.0, 0.0
    az_error = math.radians(polar_error_deg * POLAR_SPLIT)
    alt_error = math.radians(polar_error_deg * POLAR_SPLIT)
    ha = math.radians(hour_angle_deg)
    dec = math.radians(dec_deg)
    lat = math.radians(latitude_deg)
    cos_dec = math.copysign(max(abs(math.cos(dec)), MIN_COS_DEC), math.cos(dec))

    # 15 arcsec/s of sky motion per radian of misalignment
    drift = 15.0 * (az_error * math.sin(ha) + alt_error * math.cos(ha) * math.sin(dec))
    rotation = 15.0 * (az_error * math.cos(lat) * math.cos(ha) / cos_dec - alt_error * math.sin(ha))
    return drift, rotation / 3600.0


def pier_side_for_hour_angle(hour_angle_deg: float) -> PierSide:
    """West while the hour angle is in [0, 12) h, East otherwise."""
    hours = (hour_angle_deg / 15.0) % 24.0
    return PierSide.WEST if hours < 12.0 else PierSide.EAST


class MountModel:
    """
    Mutable mount owned by the simulation consumer.

    The local sidereal time starts equal to the initial RA, so the first
    target sits on the meridian and the West pier side is the starting
    side.
    """

    def __init__(self, config: MountConfig):
        self.ra = wrap_ra(config.ra)
        self.dec = config.dec
        self.slew_rate = config.slew_rate
        self.focal_length = config.focal_length
        self.tracking_mode = TrackingMode(config.tracking_mode)
        self.custom_rate = config.custom_rate
        self.periodic_error_amplitude = config.periodic_error_amplitude
        self.periodic_error_period = config.periodic_error_period
        self.polar_alignment_error = config.polar_alignment_error
        self.site_latitude = config.site_latitude
        self.mean_binding_interval = config.mean_binding_interval
        self.binding_magnitude = config.binding_magnitude
        self.tracking_noise = config.tracking_noise

        self.ra_backlash = AxisBacklash(config.ra_backlash, config.ra_backlash_compensation)
        self.dec_backlash = AxisBacklash(config.dec_backlash, config.dec_backlash_compensation)
        self.pier_side = PierSide.WEST
        self.has_flipped = False
        self.slew: Optional[SlewProgress] = None

        self.elapsed = 0.0
        self.tracking_time = 0.0
        self.last_binding_time = 0.0
        self.field_rotation = 0.0     # deg
        self.lst_start = self.ra      # deg

    # --- derived quantities -------------------------------------------------

    @property
    def tracking_rate(self) -> float:
        """Commanded RA tracking rate in deg/s."""
        rates = {
            TrackingMode.OFF: 0.0,
            TrackingMode.SIDEREAL: SIDEREAL_RATE,
            TrackingMode.LUNAR: SIDEREAL_RATE * LUNAR_FACTOR,
            TrackingMode.SOLAR: SIDEREAL_RATE * SOLAR_FACTOR,
            TrackingMode.CUSTOM: self.custom_rate,
        }
        return rates[self.tracking_mode]

    @property
    def is_tracking(self) -> bool:
        return self.tracking_mode is not TrackingMode.OFF

    @property
    def slew_state(self) -> SlewState:
        return SlewState.IDLE if self.slew is None else SlewState.SLEWING

    def local_sidereal_time(self) -> float:
        return wrap_ra(self.lst_start + SIDEREAL_RATE * self.elapsed)

    def hour_angle(self) -> float:
        """Hour angle of the pointing in degrees, (-180, 180]."""
        return -ra_difference(self.ra, self.local_sidereal_time())

    def current_periodic_error(self) -> float:
        """RA periodic error in arcsec; zero unless tracking."""
        if not self.is_tracking:
            return 0.0
        return periodic_error(self.periodic_error_amplitude, self.periodic_error_period, self.tracking_time)

    def pointing(self) -> Tuple[float, float]:
        """Effective (ra, dec) including the oscillating periodic error."""
        ra = self.ra + self.current_periodic_error() / 3600.0
        return wrap_ra(ra), self.dec

    def snapshot(self) -> MountState:
        ra, dec = self.pointing()
        return MountState(
            ra=ra,
            dec=dec,
            tracking_rate=self.tracking_rate,
            slew_rate=self.slew_rate,
            focal_length=self.focal_length,
            tracking_mode=self.tracking_mode,
            slew_state=self.slew_state,
            slew_target=None if self.slew is None else (self.slew.target_ra, self.slew.target_dec),
            slew_progress=0.0 if self.slew is None else self.slew.progress,
            pier_side=self.pier_side,
            periodic_error_amplitude=self.periodic_error_amplitude,
            periodic_error_period=self.periodic_error_period,
            polar_alignment_error=self.polar_alignment_error,
            field_rotation=self.field_rotation,
            ra_backlash_direction=self.ra_backlash.last_direction,
            ra_backlash_remaining=self.ra_backlash.remaining,
            dec_backlash_direction=self.dec_backlash.last_direction,
            dec_backlash_remaining=self.dec_backlash.remaining,
            last_binding_time=self.last_binding_time,
            elapsed=self.elapsed,
        )

    # --- commands -----------------------------------------------------------

    def slew_to(self, ra: float, dec: float):
        if not -90.0 <= dec <= 90.0:
            raise ConfigurationError(f"Slew target declination must be within [-90, 90], got {dec}")
        self.slew = SlewProgress(self.ra, self.dec, wrap_ra(ra), dec)
        logger.info(f"Slewing to RA={ra:.4f} Dec={dec:.4f}")

    def set_tracking_mode(self, mode: TrackingMode, custom_rate: Optional[float] = None):
        self.tracking_mode = mode
        if custom_rate is not None:
            self.custom_rate = custom_rate
        logger.info(f"Tracking mode set to {mode.value} ({self.tracking_rate:.6e} deg/s)")

    def set_tracking_rate(self, rate: float):
        """Set an explicit RA rate in deg/s, mapping known rates onto their modes."""
        if rate == 0:
            self.set_tracking_mode(TrackingMode.OFF)
        elif math.isclose(rate, SIDEREAL_RATE, rel_tol=1e-9):
            self.set_tracking_mode(TrackingMode.SIDEREAL)
        else:
            self.set_tracking_mode(TrackingMode.CUSTOM, rate)

    def set_periodic_error(self, amplitude: float, period: float):
        if amplitude < 0 or period < 0:
            raise ConfigurationError("Periodic error amplitude and period must be non-negative")
        self.periodic_error_amplitude = amplitude
        self.periodic_error_period = period

    def set_polar_alignment_error(self, error_deg: float):
        if error_deg < 0:
            raise ConfigurationError(f"Polar alignment error must be non-negative, got {error_deg}")
        self.polar_alignment_error = error_deg

    def pulse_guide(self, ra_rate: float, dec_rate: float, duration_ms: float) -> Tuple[float, float]:
        """
        Apply a guide pulse.

        Args:
            ra_rate: RA guide rate in arcsec/s
            dec_rate: Dec guide rate in arcsec/s
            duration_ms: Pulse length in milliseconds

        Returns:
            (ra, dec) movement actually applied, in degrees
        """
        if duration_ms < 0:
            raise ConfigurationError(f"Pulse duration must be non-negative, got {duration_ms}")
        duration = duration_ms / 1000.0
        raw_ra = ra_rate * duration * self.slew_rate / 3600.0
        raw_dec = dec_rate * duration * self.slew_rate / 3600.0
        if abs(raw_ra) < MIN_GUIDE_MOVEMENT:
            raw_ra = 0.0
        if abs(raw_dec) < MIN_GUIDE_MOVEMENT:
            raw_dec = 0.0
        if raw_ra == 0.0 and raw_dec == 0.0:
            return 0.0, 0.0

        ra_move = self.ra_backlash.apply(int(np.sign(raw_ra)), raw_ra * 3600.0) / 3600.0
        dec_move = self.dec_backlash.apply(int(np.sign(raw_dec)), raw_dec * 3600.0) / 3600.0
        if self.pier_side is PierSide.EAST:
            dec_move = -dec_move

        self.ra = wrap_ra(self.ra + ra_move)
        self.dec = min(max(self.dec + dec_move, -90.0), 90.0)
        logger.debug(f"Pulse guide applied RA {ra_move * 3600:.3f}\" Dec {dec_move * 3600:.3f}\"")
        return ra_move, dec_move

    def cable_snag(self, ra_amount: float, dec_amount: float):
        """Sudden displacement in degrees on each axis."""
        self.ra = wrap_ra(self.ra + ra_amount)
        self.dec = min(max(self.dec + dec_amount, -90.0), 90.0)
        logger.warning(f"Cable snag moved mount by RA {ra_amount:.5f} Dec {dec_amount:.5f} deg")

    def meridian_flip(self):
        self.pier_side = PierSide.EAST if self.pier_side is PierSide.WEST else PierSide.WEST
        self.ra_backlash.reset()
        self.dec_backlash.reset()
        self.has_flipped = True
        logger.info(f"Meridian flip, now on {self.pier_side.value} pier side")

    def meridian_flip_needed(self) -> bool:
        return pier_side_for_hour_angle(self.hour_angle()) is not self.pier_side

    # --- time evolution -----------------------------------------------------

    def update_slew(self, elapsed: float):
        if self.slew is None:
            return
        slew = self.slew
        distance = max(abs(ra_difference(slew.target_ra, slew.start_ra)),
                       abs(slew.target_dec - slew.start_dec))
        duration = distance / self.slew_rate if self.slew_rate > 0 else STALLED_SLEW_DURATION
        duration = max(duration, MIN_SLEW_DURATION)
        slew.progress += elapsed / duration

        if slew.progress >= 1.0:
            self.ra, self.dec = slew.target_ra, slew.target_dec
            self.slew = None
            logger.info(f"Slew complete at RA={self.ra:.4f} Dec={self.dec:.4f}")
        else:
            self.ra = wrap_ra(slew.start_ra + ra_difference(slew.target_ra, slew.start_ra) * slew.progress)
            self.dec = slew.start_dec + (slew.target_dec - slew.start_dec) * slew.progress

    def update_tracking(self, elapsed: float):
        """RA drift when the tracking rate falls short of sidereal; untracked pointing follows the LST."""
        drift = (SIDEREAL_RATE - self.tracking_rate) * elapsed
        self.ra = wrap_ra(self.ra + drift)
        if self.is_tracking:
            self.tracking_time += elapsed

    def apply_polar_alignment(self, elapsed: float):
        drift, rotation = polar_alignment_rates(
            self.polar_alignment_error, self.dec, self.hour_angle(), self.site_latitude
        )
        self.dec = min(max(self.dec + drift * elapsed / 3600.0, -90.0), 90.0)
        self.field_rotation += rotation * elapsed

    def random_tracking_error(self, elapsed: float, rng: np.random.Generator) -> Tuple[float, float]:
        """Random-walk tracking noise in arcsec, applied to the pointing."""
        ra_error = RA_TRACKING_NOISE * math.sqrt(elapsed) * rng.normal()
        dec_error = DEC_TRACKING_NOISE * math.sqrt(elapsed) * rng.normal()
        self.ra = wrap_ra(self.ra + ra_error / 3600.0)
        self.dec = min(max(self.dec + dec_error / 3600.0, -90.0), 90.0)
        return ra_error, dec_error

    def check_binding(self, rng: np.random.Generator) -> Tuple[float, float]:
        """
        Possibly trigger a binding jump.

        Returns:
            (ra, dec) jump in arcsec, (0, 0) when nothing happened
        """
        since = self.elapsed - self.last_binding_time
        probability = (1.0 - math.exp(-since / self.mean_binding_interval)) * BINDING_PROBABILITY_SCALE
        if rng.random() >= probability:
            return 0.0, 0.0
        angle = rng.uniform(0.0, 2.0 * math.pi)
        ra_jump = self.binding_magnitude * math.cos(angle)
        dec_jump = self.binding_magnitude * math.sin(angle)
        self.ra = wrap_ra(self.ra + ra_jump / 3600.0)
        self.dec = min(max(self.dec + dec_jump / 3600.0, -90.0), 90.0)
        self.last_binding_time = self.elapsed
        logger.warning(f"Mount binding at t={self.elapsed:.1f}s: jump RA {ra_jump:.2f}\" Dec {dec_jump:.2f}\"")
        return ra_jump, dec_jump

    def advance(self, elapsed: float, rng: np.random.Generator) -> MountState:
        """One tick of mount evolution; returns the resulting snapshot."""
        if elapsed < 0:
            raise ValueError(f"Time step must be non-negative, got {elapsed}")
        self.elapsed += elapsed
        if self.slew is not None:
            self.update_slew(elapsed)
            return self.snapshot()

        self.update_tracking(elapsed)
        if self.is_tracking:
            self.apply_polar_alignment(elapsed)
            if self.tracking_noise and elapsed > 0:
                self.random_tracking_error(elapsed, rng)
                self.check_binding(rng)
        return self.snapshot()
