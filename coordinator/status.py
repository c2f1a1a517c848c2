# Status Aggregator
# File: coordinator/status.py

"""
User-facing derived fields computed from the latest telemetry frame and
the session state. Nothing here is cached; the session calls these on
every read.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional

from coordinator.models import CommandKind, SessionState, TelemetryFrame

LOW_BATTERY_PCT = 20.0


class GpsQuality(str, Enum):
    NONE = "none"
    POOR = "poor"
    FAIR = "fair"
    GOOD = "good"
    EXCELLENT = "excellent"


GPS_FIX_LABELS = {
    0: "No GPS",
    1: "No Fix",
    2: "2D Fix",
    3: "3D Fix",
    4: "DGPS",
    5: "RTK Float",
    6: "RTK Fixed",
}


def gps_quality(fix_type: int, satellite_count: int) -> GpsQuality:
    if fix_type < 2:
        return GpsQuality.NONE
    if fix_type == 2:
        return GpsQuality.POOR
    if fix_type == 3:
        return GpsQuality.FAIR if satellite_count < 8 else GpsQuality.GOOD
    return GpsQuality.EXCELLENT


def gps_fix_label(fix_type: int) -> str:
    return GPS_FIX_LABELS.get(fix_type, "Unknown")


def battery_percentage(frame: Optional[TelemetryFrame]) -> float:
    if frame is None:
        return 0.0
    return frame.battery.remaining_pct


def frame_gps_quality(frame: Optional[TelemetryFrame]) -> GpsQuality:
    if frame is None:
        return GpsQuality.NONE
    return gps_quality(frame.gps.fix_type, frame.gps.satellites)

# ============================================================================
# READINESS
# ============================================================================

def can_arm(state: SessionState) -> bool:
    return state.connected and not state.armed and not state.is_busy(CommandKind.ARM)


def can_takeoff(state: SessionState) -> bool:
    return state.connected and state.armed and not state.is_busy(CommandKind.TAKEOFF)


def can_upload_mission(state: SessionState) -> bool:
    return state.connected and not state.is_busy(CommandKind.UPLOAD_MISSION)


def can_start_mission(state: SessionState) -> bool:
    return (
        state.connected
        and state.mission_uploaded
        and not state.mission_running
        and not state.is_busy(CommandKind.START_MISSION)
    )


def is_ready(state: SessionState, frame: Optional[TelemetryFrame]) -> bool:
    return state.connected and frame is not None


@dataclass(frozen=True)
class DerivedStatus:
    is_ready: bool
    can_arm: bool
    can_takeoff: bool
    can_upload_mission: bool
    can_start_mission: bool
    battery_percentage: float
    low_battery: bool
    gps_quality: GpsQuality
    gps_fix_label: str

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['gps_quality'] = self.gps_quality.value
        return data


def derive_status(state: SessionState, frame: Optional[TelemetryFrame]) -> DerivedStatus:
    """Recompute every derived field from the current state and latest frame"""
    battery = battery_percentage(frame)
    return DerivedStatus(
        is_ready=is_ready(state, frame),
        can_arm=can_arm(state),
        can_takeoff=can_takeoff(state),
        can_upload_mission=can_upload_mission(state),
        can_start_mission=can_start_mission(state),
        battery_percentage=battery,
        low_battery=frame is not None and battery < LOW_BATTERY_PCT,
        gps_quality=frame_gps_quality(frame),
        gps_fix_label=gps_fix_label(frame.gps.fix_type) if frame else gps_fix_label(0),
    )
