"""
gazebo_integration.py

MAVLink command transport for PX4/ArduPilot SITL in Gazebo (or a real
autopilot) using PyMAVLink.

pymavlink is blocking, so every command runs in a worker thread and one
lock keeps a single request/acknowledgement exchange on the link at a time.

Usage:
    from simulation.gazebo_integration import MavlinkCommandTransport, SimulatorConfig

    transport = MavlinkCommandTransport(SimulatorConfig())
    session = CommandSession(transport)
    await session.connect("udp:127.0.0.1:14540")
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from pymavlink import mavutil

from coordinator.models import CommandResponse, Waypoint
from coordinator.transport import CommandTransport


class SimulatorType(Enum):
    """Supported autopilot stacks"""
    PX4_GAZEBO = "px4_gazebo"
    ARDUPILOT_GAZEBO = "ardupilot_gazebo"


# Flight mode used for each mission action, per autopilot stack
MISSION_MODES = {
    SimulatorType.PX4_GAZEBO: {'mission': 'MISSION', 'hold': 'LOITER', 'rtl': 'RTL', 'land': 'LAND'},
    SimulatorType.ARDUPILOT_GAZEBO: {'mission': 'AUTO', 'hold': 'LOITER', 'rtl': 'RTL', 'land': 'LAND'},
}


@dataclass
class SimulatorConfig:
    """Configuration for the MAVLink link"""
    simulator_type: SimulatorType = SimulatorType.PX4_GAZEBO
    timeout_seconds: int = 60
    ack_timeout: float = 5.0
    source_system: int = 255  # GCS system ID
    source_component: int = 0  # GCS component ID
    heartbeat_interval: float = 1.0


class MavlinkCommandTransport(CommandTransport):
    """Command transport speaking MAVLink directly to the autopilot"""

    def __init__(self, config: SimulatorConfig = None):
        self.config = config or SimulatorConfig()
        self.mav_connection = None
        self.logger = logging.getLogger(__name__)
        self.target_system = 1
        self.target_component = 1
        self._is_connected = False
        self._lock = threading.Lock()
        self._heartbeat_stop = threading.Event()
        self._position = None

    @property
    def modes(self):
        return MISSION_MODES[self.config.simulator_type]

    async def _run(self, operation, *args) -> CommandResponse:
        def locked():
            with self._lock:
                return operation(*args)
        return await asyncio.to_thread(locked)

    def _require_link(self) -> Optional[CommandResponse]:
        if not self._is_connected:
            return CommandResponse(success=False, message="Not connected to vehicle")
        return None

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self, endpoint: str) -> CommandResponse:
        return await self._run(self._connect, endpoint)

    def _connect(self, endpoint: str) -> CommandResponse:
        try:
            self.logger.info(f"Connecting to vehicle at {endpoint}")
            self.mav_connection = mavutil.mavlink_connection(
                endpoint,
                source_system=self.config.source_system,
                source_component=self.config.source_component
            )

            self.logger.info("Waiting for heartbeat...")
            heartbeat = self.mav_connection.wait_heartbeat(timeout=self.config.timeout_seconds)
            if not heartbeat:
                self.logger.error("No heartbeat received")
                return CommandResponse(success=False, message="No heartbeat received")

            self.target_system = self.mav_connection.target_system
            self.target_component = self.mav_connection.target_component
            self._is_connected = True
            self.logger.info(f"✓ Heartbeat received from system {self.target_system}")

            # GCS heartbeats keep the autopilot's pre-arm link check satisfied
            self._start_gcs_heartbeat()
            return CommandResponse(success=True, message="Connected",
                                   data={'target_system': self.target_system})

        except Exception as e:
            self.logger.error(f"Failed to connect: {e}")
            self._is_connected = False
            return CommandResponse(success=False, message=str(e))

    def _start_gcs_heartbeat(self):
        # Each link gets its own stop event; closing one never revives another
        self._heartbeat_stop.set()
        stop = threading.Event()
        self._heartbeat_stop = stop
        connection = self.mav_connection

        def send_heartbeat():
            while not stop.is_set():
                try:
                    connection.mav.heartbeat_send(
                        mavutil.mavlink.MAV_TYPE_GCS,
                        mavutil.mavlink.MAV_AUTOPILOT_INVALID,
                        0, 0, 0
                    )
                except Exception as e:
                    self.logger.debug(f"Heartbeat send error: {e}")
                stop.wait(self.config.heartbeat_interval)

        threading.Thread(target=send_heartbeat, daemon=True).start()

    async def close(self):
        self._heartbeat_stop.set()
        await self._run(self._close)

    def _close(self):
        if self.mav_connection:
            self.mav_connection.close()
            self.mav_connection = None
        self._is_connected = False
        self.logger.info("Disconnected from vehicle")

    # ------------------------------------------------------------------
    # Low-level helpers
    # ------------------------------------------------------------------

    def _command_long(self, command: int, *params: float) -> CommandResponse:
        padded = list(params) + [0.0] * (7 - len(params))
        self.mav_connection.mav.command_long_send(
            self.target_system,
            self.target_component,
            command,
            0,  # confirmation
            *padded
        )

        ack = self.mav_connection.recv_match(
            type='COMMAND_ACK',
            blocking=True,
            timeout=self.config.ack_timeout
        )
        if not ack:
            return CommandResponse(success=False, message="No response from autopilot")
        if ack.result == mavutil.mavlink.MAV_RESULT_ACCEPTED:
            return CommandResponse(success=True)
        if ack.result == mavutil.mavlink.MAV_RESULT_DENIED:
            return CommandResponse(success=False, message="Command denied by autopilot")
        if ack.result == mavutil.mavlink.MAV_RESULT_TEMPORARILY_REJECTED:
            return CommandResponse(success=False, message="Command temporarily rejected")
        return CommandResponse(success=False, message=f"Command failed with result code: {ack.result}")

    def _set_mode(self, mode: str) -> CommandResponse:
        """Set flight mode with MAV_CMD_DO_SET_MODE"""
        available_modes = self.mav_connection.mode_mapping() or {}
        mode_data = None
        for name, value in available_modes.items():
            if name.upper() == mode.upper():
                mode_data = value
                break

        if mode_data is None:
            self.logger.error(f"Mode '{mode}' not found")
            return CommandResponse(success=False, message=f"Mode '{mode}' not available")

        # PX4 reports (mav_mode, main_mode, sub_mode); ArduPilot a single mode number
        if isinstance(mode_data, tuple):
            _, main_mode, sub_mode = mode_data
        else:
            main_mode, sub_mode = mode_data, 0

        self.logger.info(f"Setting mode to {mode}...")
        response = self._command_long(
            mavutil.mavlink.MAV_CMD_DO_SET_MODE,
            1.0,  # MAV_MODE_FLAG_CUSTOM_MODE_ENABLED
            float(main_mode),
            float(sub_mode),
        )
        if response.success:
            self.logger.info(f"✓ Mode changed to {mode}")
        return response

    def _guarded(self, operation, *args) -> CommandResponse:
        failure = self._require_link()
        if failure:
            return failure
        try:
            return operation(*args)
        except Exception as e:
            self.logger.error(f"MAVLink command failed: {e}")
            return CommandResponse(success=False, message=str(e))

    # ------------------------------------------------------------------
    # Vehicle commands
    # ------------------------------------------------------------------

    async def arm(self) -> CommandResponse:
        return await self._run(self._guarded, self._arm, 1.0)

    async def disarm(self) -> CommandResponse:
        return await self._run(self._guarded, self._arm, 0.0)

    def _arm(self, value: float) -> CommandResponse:
        self.logger.info("Arming drone..." if value else "Disarming drone...")
        return self._command_long(mavutil.mavlink.MAV_CMD_COMPONENT_ARM_DISARM, value)

    async def takeoff(self, altitude: float) -> CommandResponse:
        return await self._run(self._guarded, self._takeoff, altitude)

    def _takeoff(self, altitude: float) -> CommandResponse:
        self.logger.info(f"Taking off to {altitude}m...")
        position = self.mav_connection.recv_match(
            type='GLOBAL_POSITION_INT',
            blocking=True,
            timeout=self.config.ack_timeout
        )
        if position:
            self._position = position
        if not self._position:
            return CommandResponse(success=False, message="No position data")

        return self._command_long(
            mavutil.mavlink.MAV_CMD_NAV_TAKEOFF,
            0, 0, 0, 0,
            self._position.lat / 1e7,
            self._position.lon / 1e7,
            altitude,
        )

    async def land(self) -> CommandResponse:
        return await self._run(self._guarded, self._set_mode, self.modes['land'])

    async def return_to_launch(self) -> CommandResponse:
        return await self._run(self._guarded, self._set_mode, self.modes['rtl'])

    # ------------------------------------------------------------------
    # Mission commands
    # ------------------------------------------------------------------

    async def upload_mission(self, mission_id: str, waypoints: Sequence[Waypoint]) -> CommandResponse:
        return await self._run(self._guarded, self._upload_mission, mission_id, list(waypoints))

    def _upload_mission(self, mission_id: str, waypoints) -> CommandResponse:
        count = len(waypoints)
        self.logger.info(f"Uploading mission {mission_id} with {count} waypoints...")

        self.mav_connection.mav.mission_count_send(
            self.target_system,
            self.target_component,
            count,
            mavutil.mavlink.MAV_MISSION_TYPE_MISSION
        )

        for i, wp in enumerate(waypoints):
            request = self.mav_connection.recv_match(
                type=['MISSION_REQUEST', 'MISSION_REQUEST_INT'],
                blocking=True,
                timeout=self.config.ack_timeout
            )
            if not request:
                return CommandResponse(success=False, message=f"Timeout waiting for mission request {i}")
            if request.seq != i:
                return CommandResponse(success=False, message=f"Expected request for item {i}, got {request.seq}")

            self.mav_connection.mav.mission_item_int_send(
                self.target_system,
                self.target_component,
                i,
                mavutil.mavlink.MAV_FRAME_GLOBAL_RELATIVE_ALT_INT,
                mavutil.mavlink.MAV_CMD_NAV_WAYPOINT,
                1 if i == 0 else 0,  # current
                1,  # autocontinue
                0, 0, 0, 0,
                int(wp.lat * 1e7),
                int(wp.lon * 1e7),
                wp.altitude,
                mavutil.mavlink.MAV_MISSION_TYPE_MISSION
            )
            self.logger.debug(f"Sent waypoint {i + 1}/{count}")

        ack = self.mav_connection.recv_match(
            type='MISSION_ACK',
            blocking=True,
            timeout=self.config.ack_timeout
        )
        if ack and ack.type == mavutil.mavlink.MAV_MISSION_ACCEPTED:
            self.logger.info("✓ Mission upload successful")
            return CommandResponse(success=True, data={'waypoint_count': count})

        reason = ack.type if ack else 'timeout'
        return CommandResponse(success=False, message=f"Mission upload failed: {reason}")

    async def start_mission(self) -> CommandResponse:
        return await self._run(self._guarded, self._start_mission)

    def _start_mission(self) -> CommandResponse:
        self.mav_connection.mav.mission_set_current_send(
            self.target_system,
            self.target_component,
            0
        )
        time.sleep(0.5)
        return self._set_mode(self.modes['mission'])

    async def pause_mission(self) -> CommandResponse:
        return await self._run(self._guarded, self._set_mode, self.modes['hold'])

    async def resume_mission(self) -> CommandResponse:
        return await self._run(self._guarded, self._set_mode, self.modes['mission'])

    async def stop_mission(self) -> CommandResponse:
        return await self._run(self._guarded, self._set_mode, self.modes['hold'])
