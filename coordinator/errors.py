# Coordinator Error Taxonomy
# File: coordinator/errors.py

"""
Errors raised inside the command session and telemetry channel.

Precondition failures are raised locally and never reach a transport.
The session converts every CoordinatorError into a recorded ErrorKind
plus a short message for the dashboard.
"""

from enum import Enum


class ErrorKind(str, Enum):
    NOT_CONNECTED = "not_connected"
    ALREADY_ARMED = "already_armed"
    NOT_ARMED = "not_armed"
    MISSION_NOT_UPLOADED = "mission_not_uploaded"
    MISSION_NOT_RUNNING = "mission_not_running"
    MISSION_NOT_PAUSED = "mission_not_paused"
    MISSION_ALREADY_RUNNING = "mission_already_running"
    INVALID_MISSION = "invalid_mission"
    COMMAND_IN_FLIGHT = "command_in_flight"
    TRANSPORT_FAILURE = "transport_failure"
    CONNECTION_EXHAUSTED = "connection_exhausted"


class CoordinatorError(Exception):
    """Base class for all coordinator failures"""

    kind: ErrorKind = ErrorKind.TRANSPORT_FAILURE
    default_message = "Command failed"

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class PreconditionError(CoordinatorError):
    """A command was rejected locally before reaching the transport"""


class NotConnected(PreconditionError):
    kind = ErrorKind.NOT_CONNECTED
    default_message = "Drone not connected"


class AlreadyArmed(PreconditionError):
    kind = ErrorKind.ALREADY_ARMED
    default_message = "Drone is already armed"


class NotArmed(PreconditionError):
    kind = ErrorKind.NOT_ARMED
    default_message = "Drone must be connected and armed"


class MissionNotUploaded(PreconditionError):
    kind = ErrorKind.MISSION_NOT_UPLOADED
    default_message = "Mission not uploaded"


class MissionNotRunning(PreconditionError):
    kind = ErrorKind.MISSION_NOT_RUNNING
    default_message = "No mission running"


class MissionNotPaused(PreconditionError):
    kind = ErrorKind.MISSION_NOT_PAUSED
    default_message = "Mission is not paused"


class MissionAlreadyRunning(PreconditionError):
    kind = ErrorKind.MISSION_ALREADY_RUNNING
    default_message = "Mission is already running"


class InvalidMission(PreconditionError):
    kind = ErrorKind.INVALID_MISSION
    default_message = "Mission has no waypoints"


class CommandInFlight(PreconditionError):
    kind = ErrorKind.COMMAND_IN_FLIGHT
    default_message = "Command already in progress"


class TransportFailure(CoordinatorError):
    kind = ErrorKind.TRANSPORT_FAILURE
    default_message = "Vehicle did not accept the command"


class ConnectionExhausted(CoordinatorError):
    kind = ErrorKind.CONNECTION_EXHAUSTED
    default_message = "Max reconnection attempts reached"
