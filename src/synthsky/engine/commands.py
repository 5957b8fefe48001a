"""
engine/commands.py - Engine command and event vocabulary

Commands are small frozen dataclasses forming a tagged union; the engine
dispatches on them with structural pattern matching.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from ..config import AtmosphereConfig, CameraConfig, MountConfig
from ..environment.mount import TrackingMode


class EventType(Enum):
    MOUNT_STATE_CHANGED = "mount-state-changed"
    CAMERA_STATE_CHANGED = "camera-state-changed"
    ROTATOR_STATE_CHANGED = "rotator-state-changed"
    ATMOSPHERE_STATE_CHANGED = "atmosphere-state-changed"
    IMAGE_GENERATED = "image-generated"
    STAR_CATALOG_CHANGED = "star-catalog-changed"


# Mount

@dataclass(frozen=True)
class SlewTo:
    ra: float   # deg
    dec: float  # deg


@dataclass(frozen=True)
class PulseGuide:
    ra_rate: float      # arcsec/s
    dec_rate: float     # arcsec/s
    duration_ms: float


@dataclass(frozen=True)
class SetTrackingRate:
    rate: float  # deg/s


@dataclass(frozen=True)
class SetTrackingMode:
    mode: TrackingMode
    custom_rate: Optional[float] = None


@dataclass(frozen=True)
class SetPolarAlignmentError:
    degrees: float


@dataclass(frozen=True)
class SetPeriodicError:
    amplitude: float  # arcsec
    period: float     # s


@dataclass(frozen=True)
class SimulateCableSnag:
    ra_amount: float   # deg
    dec_amount: float  # deg


@dataclass(frozen=True)
class MeridianFlip:
    pass


@dataclass(frozen=True)
class UpdateMount:
    config: MountConfig


# Camera and rotator

@dataclass(frozen=True)
class UpdateCamera:
    config: CameraConfig


@dataclass(frozen=True)
class StartExposure:
    duration: float                  # s
    binning: Optional[int] = None    # defaults to the camera binning
    satellite_trail: bool = False


@dataclass(frozen=True)
class StopExposure:
    pass


@dataclass(frozen=True)
class GenerateSatelliteTrail:
    pass


@dataclass(frozen=True)
class SetRotatorPosition:
    angle: float  # deg


# Atmosphere

@dataclass(frozen=True)
class SetSeeingCondition:
    seeing: float  # arcsec FWHM


@dataclass(frozen=True)
class SetCloudCoverage:
    coverage: float


@dataclass(frozen=True)
class SetTransparency:
    transparency: float


@dataclass(frozen=True)
class UpdateAtmosphere:
    config: AtmosphereConfig


# Time

@dataclass(frozen=True)
class AdvanceTime:
    seconds: float


Command = Union[
    SlewTo, PulseGuide, SetTrackingRate, SetTrackingMode, SetPolarAlignmentError,
    SetPeriodicError, SimulateCableSnag, MeridianFlip, UpdateMount,
    UpdateCamera, StartExposure, StopExposure, GenerateSatelliteTrail, SetRotatorPosition,
    SetSeeingCondition, SetCloudCoverage, SetTransparency, UpdateAtmosphere,
    AdvanceTime,
]
