# Command Session
# File: coordinator/session.py

"""
Precondition-gated command coordinator for one vehicle link.

All session state lives in an immutable SessionState. It changes only
through transition(state, event), applied by CommandSession._apply, which
never awaits. Telemetry handlers and command coroutines share one event
loop, so a command's state change can never interleave with a telemetry
update.

Usage:
    session = CommandSession(HttpCommandTransport(), config=CoordinatorConfig())
    await session.connect()
    await session.arm()
    await session.upload_mission("M-001", waypoints)
    await session.start_mission()
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple, Union

from coordinator.config import CoordinatorConfig
from coordinator.errors import (
    AlreadyArmed,
    CommandInFlight,
    CoordinatorError,
    ErrorKind,
    InvalidMission,
    MissionAlreadyRunning,
    MissionNotPaused,
    MissionNotRunning,
    MissionNotUploaded,
    NotArmed,
    NotConnected,
    PreconditionError,
)
from coordinator.geometry import corridor_for_flight_path, corridor_for_waypoints
from coordinator.models import (
    CommandKind,
    CommandResponse,
    ConnectionState,
    MissionPhase,
    SessionState,
    TelemetryFrame,
    VehicleStatusUpdate,
    Waypoint,
)
from coordinator import status
from coordinator.telemetry import TelemetryChannel
from coordinator.transport import CommandTransport

logger = logging.getLogger(__name__)

# ============================================================================
# EVENTS
# ============================================================================

@dataclass(frozen=True)
class CommandStarted:
    kind: CommandKind


@dataclass(frozen=True)
class CommandSucceeded:
    kind: CommandKind
    mission_id: Optional[str] = None
    waypoints: Tuple[Waypoint, ...] = ()


@dataclass(frozen=True)
class CommandFailed:
    kind: CommandKind
    error: ErrorKind
    message: str


@dataclass(frozen=True)
class CommandRejected:
    kind: CommandKind
    error: ErrorKind
    message: str


@dataclass(frozen=True)
class TelemetryReceived:
    frame: TelemetryFrame


@dataclass(frozen=True)
class StatusReceived:
    update: VehicleStatusUpdate


@dataclass(frozen=True)
class TelemetryLinkChanged:
    connected: bool


@dataclass(frozen=True)
class LinkFailed:
    error: ErrorKind
    message: str


@dataclass(frozen=True)
class LinkClosed:
    """Explicit disconnect: back to a clean disconnected session"""


@dataclass(frozen=True)
class ErrorCleared:
    pass


SessionEvent = Union[
    CommandStarted, CommandSucceeded, CommandFailed, CommandRejected,
    TelemetryReceived, StatusReceived, TelemetryLinkChanged, LinkFailed,
    LinkClosed, ErrorCleared,
]

# ============================================================================
# STATE TRANSITIONS
# ============================================================================

def _clear_mission(state: SessionState) -> SessionState:
    """Mission stops running; the uploaded mission stays available"""
    if state.mission_running:
        return replace(state, mission_phase=MissionPhase.STOPPED)
    return state


def _command_succeeded(state: SessionState, event: CommandSucceeded) -> SessionState:
    kind = event.kind
    state = replace(state, in_flight=state.in_flight - {kind})

    if kind == CommandKind.CONNECT:
        return replace(state, connection_state=ConnectionState.CONNECTED)
    if kind == CommandKind.ARM:
        return replace(state, armed=state.connected)
    if kind == CommandKind.DISARM:
        return replace(state, armed=False)
    if kind == CommandKind.UPLOAD_MISSION:
        return replace(
            state,
            mission_phase=MissionPhase.UPLOADED,
            mission_id=event.mission_id,
            mission_waypoints=event.waypoints,
            mission_current=0,
            mission_count=len(event.waypoints),
        )
    if kind == CommandKind.START_MISSION:
        return replace(state, mission_phase=MissionPhase.RUNNING, mission_current=0)
    if kind == CommandKind.PAUSE_MISSION:
        return replace(state, mission_phase=MissionPhase.PAUSED)
    if kind == CommandKind.RESUME_MISSION:
        return replace(state, mission_phase=MissionPhase.RUNNING)
    if kind in (CommandKind.STOP_MISSION, CommandKind.RETURN_TO_LAUNCH, CommandKind.LAND):
        return _clear_mission(state)
    return state


def _fold_armed(state: SessionState, armed: Optional[bool]) -> SessionState:
    # Telemetry may report a disarm; arming only comes from an acknowledgement
    if armed is False and state.armed and not state.is_busy(CommandKind.ARM):
        return replace(state, armed=False)
    return state


def _fold_status(state: SessionState, update: VehicleStatusUpdate) -> SessionState:
    state = _fold_armed(state, update.armed)
    changes = {}
    if update.flying is not None:
        changes['flying'] = update.flying
    if update.flight_mode:
        changes['mode'] = update.flight_mode
    if update.mission_current is not None:
        changes['mission_current'] = update.mission_current
    if update.mission_count is not None:
        changes['mission_count'] = update.mission_count
    state = replace(state, **changes)

    finished = (
        update.mission_active is False
        and state.mission_phase == MissionPhase.RUNNING
        and state.mission_count > 0
        and state.mission_current >= state.mission_count - 1
    )
    if finished:
        state = replace(state, mission_phase=MissionPhase.COMPLETED)
    return state


def transition(state: SessionState, event: SessionEvent) -> SessionState:
    """Pure state-transition function for the command session"""
    if isinstance(event, CommandStarted):
        state = replace(state, in_flight=state.in_flight | {event.kind},
                        last_error=None, error_message=None)
        if event.kind == CommandKind.CONNECT:
            state = replace(state, connection_state=ConnectionState.CONNECTING)
        return state

    if isinstance(event, CommandSucceeded):
        return _command_succeeded(state, event)

    if isinstance(event, CommandFailed):
        state = replace(state, in_flight=state.in_flight - {event.kind},
                        last_error=event.error, error_message=event.message)
        if event.kind == CommandKind.CONNECT:
            state = replace(state, connection_state=ConnectionState.DISCONNECTED)
        return state

    if isinstance(event, (CommandRejected, LinkFailed)):
        return replace(state, last_error=event.error, error_message=event.message)

    if isinstance(event, TelemetryReceived):
        frame = event.frame
        state = _fold_armed(state, frame.armed)
        if frame.flight_mode:
            state = replace(state, mode=frame.flight_mode)
        return state

    if isinstance(event, StatusReceived):
        return _fold_status(state, event.update)

    if isinstance(event, TelemetryLinkChanged):
        return replace(state, telemetry_connected=event.connected)

    if isinstance(event, LinkClosed):
        return SessionState(last_error=state.last_error, error_message=state.error_message)

    if isinstance(event, ErrorCleared):
        return replace(state, last_error=None, error_message=None)

    raise TypeError(f"Unknown session event: {event!r}")

# ============================================================================
# PRECONDITIONS
# ============================================================================

ARMING_GROUP = frozenset({CommandKind.ARM, CommandKind.DISARM, CommandKind.TAKEOFF})
FLIGHT_GROUP = frozenset({CommandKind.TAKEOFF, CommandKind.LAND, CommandKind.RETURN_TO_LAUNCH})
MISSION_GROUP = frozenset({
    CommandKind.UPLOAD_MISSION, CommandKind.START_MISSION, CommandKind.PAUSE_MISSION,
    CommandKind.RESUME_MISSION, CommandKind.STOP_MISSION, CommandKind.RETURN_TO_LAUNCH,
    CommandKind.LAND,
})


def conflicting_kinds(kind: CommandKind) -> FrozenSet[CommandKind]:
    """Command kinds that may not be in flight while `kind` is issued"""
    conflicts = {kind}
    for group in (ARMING_GROUP, FLIGHT_GROUP, MISSION_GROUP):
        if kind in group:
            conflicts |= group
    return frozenset(conflicts)


def _require_connected(state: SessionState):
    if not state.connected:
        raise NotConnected()


def _require_disconnected(state: SessionState):
    if state.connection_state != ConnectionState.DISCONNECTED:
        raise CommandInFlight("Connection already in progress")


def _require_unarmed(state: SessionState):
    _require_connected(state)
    if state.armed:
        raise AlreadyArmed()


def _require_armed(state: SessionState):
    _require_connected(state)
    if not state.armed:
        raise NotArmed()


def _require_startable(state: SessionState):
    if not state.mission_uploaded:
        raise MissionNotUploaded()
    _require_connected(state)
    if state.mission_running:
        raise MissionAlreadyRunning()


def _require_running(state: SessionState):
    _require_connected(state)
    if state.mission_phase != MissionPhase.RUNNING:
        raise MissionNotRunning()


def _require_paused(state: SessionState):
    _require_connected(state)
    if not state.mission_paused:
        raise MissionNotPaused()

# ============================================================================
# COMMAND SESSION
# ============================================================================

class CommandSession:
    """Coordinates commands and telemetry for exactly one vehicle link"""

    def __init__(self, transport: CommandTransport, channel: TelemetryChannel = None,
                 config: CoordinatorConfig = None):
        self.config = config or CoordinatorConfig()
        self.transport = transport
        self.channel = channel or TelemetryChannel(self.config.channel)
        self._state = SessionState()
        self._epoch = 0
        self._listeners: List[Callable[[SessionState], None]] = []

        self.channel.on_frame(self._on_frame)
        self.channel.on_status(self._on_status)
        self.channel.on_connection_change(self._on_link_change)
        self.channel.on_error(self._on_link_error)

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def telemetry(self) -> Optional[TelemetryFrame]:
        return self.channel.latest_frame

    @property
    def can_arm(self) -> bool:
        return status.can_arm(self._state)

    @property
    def can_takeoff(self) -> bool:
        return status.can_takeoff(self._state)

    @property
    def can_upload_mission(self) -> bool:
        return status.can_upload_mission(self._state)

    @property
    def can_start_mission(self) -> bool:
        return status.can_start_mission(self._state)

    @property
    def is_ready(self) -> bool:
        return status.is_ready(self._state, self.telemetry)

    @property
    def battery_percentage(self) -> float:
        return status.battery_percentage(self.telemetry)

    @property
    def gps_quality(self) -> status.GpsQuality:
        return status.frame_gps_quality(self.telemetry)

    def derived_status(self) -> status.DerivedStatus:
        return status.derive_status(self._state, self.telemetry)

    def on_state_change(self, handler: Callable[[SessionState], None]):
        self._listeners.append(handler)

    def _apply(self, event: SessionEvent) -> SessionState:
        previous = self._state
        self._state = transition(previous, event)
        if self._state != previous:
            for handler in self._listeners:
                try:
                    handler(self._state)
                except Exception as e:
                    logger.error(f"State listener error: {e}")
        return self._state

    # ------------------------------------------------------------------
    # Telemetry folding
    # ------------------------------------------------------------------

    def _on_frame(self, frame: TelemetryFrame):
        self._apply(TelemetryReceived(frame))

    def _on_status(self, update: VehicleStatusUpdate):
        self._apply(StatusReceived(update))

    def _on_link_change(self, connected: bool):
        self._apply(TelemetryLinkChanged(connected))

    def _on_link_error(self, error: CoordinatorError):
        self._apply(LinkFailed(error.kind, error.message))

    def start_telemetry_stream(self):
        self.channel.connect(self.config.telemetry_url)

    def stop_telemetry_stream(self):
        self.channel.disconnect()

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------

    async def _execute(self, kind: CommandKind,
                       precondition: Callable[[SessionState], None],
                       request: Callable[[], Awaitable[CommandResponse]],
                       failure_message: str,
                       **success_fields) -> bool:
        try:
            busy = self._state.in_flight & conflicting_kinds(kind)
            if busy:
                names = ", ".join(sorted(k.value for k in busy))
                raise CommandInFlight(f"Command already in progress: {names}")
            precondition(self._state)
        except PreconditionError as e:
            logger.warning(f"{kind.value} rejected: {e.message}")
            self._apply(CommandRejected(kind, e.kind, e.message))
            return False

        epoch = self._epoch
        self._apply(CommandStarted(kind))
        logger.info(f"Sending {kind.value}...")

        try:
            response = await request()
        except asyncio.CancelledError:
            if epoch == self._epoch:
                self._apply(CommandFailed(kind, ErrorKind.TRANSPORT_FAILURE, f"{kind.value} cancelled"))
            raise
        except Exception as e:
            logger.error(f"{kind.value} transport error: {e}")
            response = CommandResponse(success=False, message=str(e) or failure_message)

        if epoch != self._epoch:
            logger.info(f"Discarding {kind.value} acknowledgement from a closed link")
            return False

        if response.success:
            self._apply(CommandSucceeded(kind, **success_fields))
            logger.info(f"✓ {kind.value} accepted")
            return True

        message = response.message or failure_message
        logger.error(f"{kind.value} failed: {message}")
        self._apply(CommandFailed(kind, ErrorKind.TRANSPORT_FAILURE, message))
        return False

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self, endpoint: str = None) -> bool:
        """Connect the command link, then auto-start the telemetry stream"""
        if self._state.connected:
            logger.info("Drone already connected")
            # Restarts a stream that gave up reconnecting; no-op while it is open
            self.start_telemetry_stream()
            return True

        endpoint = endpoint or self.config.connection_string
        connected = await self._execute(
            CommandKind.CONNECT,
            _require_disconnected,
            lambda: self.transport.connect(endpoint),
            "Failed to connect to drone",
        )
        if connected:
            self.start_telemetry_stream()
        return connected

    async def disconnect(self):
        """Close both links; supersedes any connect or command still awaiting its ack"""
        self._epoch += 1
        self.stop_telemetry_stream()
        self._apply(LinkClosed())
        logger.info("Drone disconnected")
        await self.transport.close()

    def clear_error(self):
        self._apply(ErrorCleared())

    def reset(self):
        """Drop every link and return to a fresh session"""
        self._epoch += 1
        self.stop_telemetry_stream()
        self._apply(LinkClosed())
        self._apply(ErrorCleared())

    # ------------------------------------------------------------------
    # Vehicle commands
    # ------------------------------------------------------------------

    async def arm(self) -> bool:
        return await self._execute(
            CommandKind.ARM, _require_unarmed, self.transport.arm, "Failed to arm drone"
        )

    async def disarm(self) -> bool:
        return await self._execute(
            CommandKind.DISARM, _require_armed, self.transport.disarm, "Failed to disarm drone"
        )

    async def takeoff(self, altitude: float = 10.0) -> bool:
        return await self._execute(
            CommandKind.TAKEOFF,
            _require_armed,
            lambda: self.transport.takeoff(altitude),
            "Failed to takeoff",
        )

    async def land(self) -> bool:
        return await self._execute(
            CommandKind.LAND, _require_connected, self.transport.land, "Failed to land"
        )

    async def return_to_launch(self) -> bool:
        return await self._execute(
            CommandKind.RETURN_TO_LAUNCH,
            _require_connected,
            self.transport.return_to_launch,
            "Failed to return to launch",
        )

    # ------------------------------------------------------------------
    # Mission commands
    # ------------------------------------------------------------------

    async def upload_mission(self, mission_id: str, waypoints: Sequence[Waypoint]) -> bool:
        mission = tuple(waypoints)

        def precondition(state: SessionState):
            _require_connected(state)
            if not mission:
                raise InvalidMission()

        uploaded = await self._execute(
            CommandKind.UPLOAD_MISSION,
            precondition,
            lambda: self.transport.upload_mission(mission_id, mission),
            "Failed to upload mission",
            mission_id=mission_id,
            waypoints=mission,
        )
        if uploaded:
            await self.channel.subscribe(mission_id)
        return uploaded

    async def start_mission(self) -> bool:
        return await self._execute(
            CommandKind.START_MISSION, _require_startable,
            self.transport.start_mission, "Failed to start mission",
        )

    async def pause_mission(self) -> bool:
        return await self._execute(
            CommandKind.PAUSE_MISSION, _require_running,
            self.transport.pause_mission, "Failed to pause mission",
        )

    async def resume_mission(self) -> bool:
        return await self._execute(
            CommandKind.RESUME_MISSION, _require_paused,
            self.transport.resume_mission, "Failed to resume mission",
        )

    async def stop_mission(self) -> bool:
        return await self._execute(
            CommandKind.STOP_MISSION, _require_connected,
            self.transport.stop_mission, "Failed to stop mission",
        )

    # ------------------------------------------------------------------
    # Corridors
    # ------------------------------------------------------------------

    def mission_corridor(self, half_width_m: float = None) -> List[Tuple[float, float]]:
        half_width = self.config.corridor_half_width_m if half_width_m is None else half_width_m
        return corridor_for_waypoints(self._state.mission_waypoints, half_width)

    def flight_path_corridor(self, half_width_m: float = None) -> List[Tuple[float, float]]:
        half_width = self.config.corridor_half_width_m if half_width_m is None else half_width_m
        return corridor_for_flight_path(self.channel.flight_path, half_width)

    def snapshot(self) -> Dict:
        """State, derived status and latest telemetry for the dashboard"""
        frame = self.telemetry
        return {
            'state': self._state.to_dict(),
            'status': self.derived_status().to_dict(),
            'telemetry': frame.to_dict() if frame else None,
            'update_frequency': self.channel.frequency,
            'last_update': self.channel.last_update,
        }
