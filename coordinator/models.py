# Coordinator Data Models
# File: coordinator/models.py

"""
Core data models shared by the telemetry channel, the command session
and the status aggregator.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

from coordinator.errors import ErrorKind

# ============================================================================
# MISSION GEOMETRY
# ============================================================================

@dataclass(frozen=True)
class Waypoint:
    lat: float
    lon: float
    altitude: float = 0.0
    label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'lat': self.lat,
            'lon': self.lon,
            'alt': self.altitude,
            'label': self.label,
        }


@dataclass(frozen=True)
class Position:
    lat: float
    lon: float
    altitude: float = 0.0

# ============================================================================
# TELEMETRY
# ============================================================================

@dataclass(frozen=True)
class Velocity:
    vx: float = 0.0
    vy: float = 0.0
    vz: float = 0.0


@dataclass(frozen=True)
class Attitude:
    roll: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0


@dataclass(frozen=True)
class Battery:
    voltage: float = 0.0
    current: float = 0.0
    remaining_pct: float = 0.0


@dataclass(frozen=True)
class GpsInfo:
    satellites: int = 0
    fix_type: int = 0


@dataclass(frozen=True)
class TelemetryFrame:
    """One normalized telemetry snapshot (timestamp in milliseconds)"""
    timestamp: float
    position: Optional[Position] = None
    velocity: Velocity = field(default_factory=Velocity)
    attitude: Attitude = field(default_factory=Attitude)
    battery: Battery = field(default_factory=Battery)
    gps: GpsInfo = field(default_factory=GpsInfo)
    armed: Optional[bool] = None
    flight_mode: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FlightPathPoint:
    position: Position
    timestamp: float


@dataclass(frozen=True)
class VehicleStatusUpdate:
    """Partial vehicle status carried by a status_update message"""
    armed: Optional[bool] = None
    flying: Optional[bool] = None
    flight_mode: Optional[str] = None
    mission_active: Optional[bool] = None
    mission_current: Optional[int] = None
    mission_count: Optional[int] = None
    battery_level: Optional[float] = None

# ============================================================================
# SESSION STATE
# ============================================================================

class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class MissionPhase(str, Enum):
    NONE = "none"
    UPLOADED = "uploaded"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"


class CommandKind(str, Enum):
    CONNECT = "connect"
    ARM = "arm"
    DISARM = "disarm"
    TAKEOFF = "takeoff"
    LAND = "land"
    UPLOAD_MISSION = "upload_mission"
    START_MISSION = "start_mission"
    PAUSE_MISSION = "pause_mission"
    RESUME_MISSION = "resume_mission"
    STOP_MISSION = "stop_mission"
    RETURN_TO_LAUNCH = "return_to_launch"


@dataclass(frozen=True)
class SessionState:
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    armed: bool = False
    mission_phase: MissionPhase = MissionPhase.NONE
    in_flight: FrozenSet[CommandKind] = frozenset()
    last_error: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    mode: str = "UNKNOWN"
    flying: bool = False
    telemetry_connected: bool = False
    mission_id: Optional[str] = None
    mission_waypoints: Tuple[Waypoint, ...] = ()
    mission_current: int = 0
    mission_count: int = 0

    @property
    def connected(self) -> bool:
        return self.connection_state == ConnectionState.CONNECTED

    @property
    def mission_uploaded(self) -> bool:
        return self.mission_phase != MissionPhase.NONE

    @property
    def mission_running(self) -> bool:
        return self.mission_phase in (MissionPhase.RUNNING, MissionPhase.PAUSED)

    @property
    def mission_paused(self) -> bool:
        return self.mission_phase == MissionPhase.PAUSED

    def is_busy(self, kind: CommandKind) -> bool:
        return kind in self.in_flight

    def to_dict(self) -> Dict[str, Any]:
        return {
            'connection_state': self.connection_state.value,
            'connected': self.connected,
            'armed': self.armed,
            'mode': self.mode,
            'flying': self.flying,
            'telemetry_connected': self.telemetry_connected,
            'mission_id': self.mission_id,
            'mission_phase': self.mission_phase.value,
            'mission_uploaded': self.mission_uploaded,
            'mission_running': self.mission_running,
            'mission_current': self.mission_current,
            'mission_count': self.mission_count,
            'in_flight': sorted(kind.value for kind in self.in_flight),
            'last_error': self.last_error.value if self.last_error else None,
            'error_message': self.error_message,
        }


@dataclass(frozen=True)
class CommandResponse:
    success: bool
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
