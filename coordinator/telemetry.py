# Telemetry Channel
# File: coordinator/telemetry.py

"""
Reconnecting websocket telemetry channel.

Owns exactly one streaming connection to a vehicle or simulator feed,
normalizes the heterogeneous frame spellings into TelemetryFrame once at
the boundary, keeps the update-frequency estimate and the trailing
flight-path buffer.

Usage:
    channel = TelemetryChannel()
    channel.on_frame(lambda frame: print(frame.position))
    channel.connect("ws://localhost:8000/ws/telemetry")
    ...
    channel.disconnect()
"""

import asyncio
import json
import logging
import math
import time
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from coordinator.config import ChannelConfig
from coordinator.errors import ConnectionExhausted, CoordinatorError, TransportFailure
from coordinator.models import (
    Attitude,
    Battery,
    FlightPathPoint,
    GpsInfo,
    Position,
    TelemetryFrame,
    Velocity,
    VehicleStatusUpdate,
)

logger = logging.getLogger(__name__)

FrameHandler = Callable[[TelemetryFrame], None]
ConnectionHandler = Callable[[bool], None]
StatusHandler = Callable[[VehicleStatusUpdate], None]
ErrorHandler = Callable[[CoordinatorError], None]
Connector = Callable[[str], Awaitable[Any]]

TELEMETRY_MESSAGE_TYPES = ('telemetry_update', 'telemetry')

# ============================================================================
# FRAME NORMALIZATION
# ============================================================================

LAT_KEYS = ('lat', 'latitude')
LON_KEYS = ('lon', 'lng', 'longitude')
ALT_KEYS = ('alt', 'altitude', 'relative_alt')


def _coerce_number(value: Any) -> Optional[float]:
    """Return value as a finite float, or None when it is not a valid number"""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _number(source: Optional[Mapping], keys: Tuple[str, ...], default: float = 0.0) -> float:
    """First valid number among synonymous keys; the primary key wins when valid"""
    if not isinstance(source, Mapping):
        return default
    for key in keys:
        if key in source:
            number = _coerce_number(source[key])
            if number is not None:
                return number
    return default


def _integer(source: Optional[Mapping], keys: Tuple[str, ...]) -> int:
    return int(_number(source, keys))


def _has_any(source: Mapping, keys: Tuple[str, ...]) -> bool:
    return any(key in source for key in keys)


def _position_source(data: Mapping) -> Optional[Mapping]:
    for key in ('position', 'current_position'):
        candidate = data.get(key)
        if isinstance(candidate, Mapping) and _has_any(candidate, LAT_KEYS) and _has_any(candidate, LON_KEYS):
            return candidate
    if _has_any(data, LAT_KEYS) and _has_any(data, LON_KEYS):
        return data
    return None


def has_position(data: Mapping) -> bool:
    return _position_source(data) is not None


def normalize_position(data: Mapping) -> Optional[Position]:
    source = _position_source(data)
    if source is None:
        return None
    return Position(
        lat=_number(source, LAT_KEYS),
        lon=_number(source, LON_KEYS),
        altitude=_number(source, ALT_KEYS),
    )


def _optional_text(data: Mapping, keys: Tuple[str, ...]) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _optional_bool(data: Mapping, key: str) -> Optional[bool]:
    value = data.get(key)
    return value if isinstance(value, bool) else None


def frame_timestamp(data: Mapping) -> Optional[float]:
    """Payload timestamp in milliseconds (number or ISO-8601 text), or None"""
    value = data.get('timestamp')
    number = _coerce_number(value)
    if number is not None:
        return number
    if isinstance(value, str) and value:
        try:
            stamp = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        return stamp.timestamp() * 1000
    return None


def normalize_frame(data: Mapping, received_at: float) -> TelemetryFrame:
    """
    Produce the canonical frame shape from any supported spelling.

    Invalid or missing numeric fields default to 0 rather than failing
    the frame, so a malformed message never stalls the stream.

    Args:
        data: Decoded telemetry payload
        received_at: Local receive time in milliseconds, used when the
            payload carries no usable timestamp
    """
    velocity = data.get('velocity')
    attitude = data.get('attitude')
    battery = data.get('battery')
    gps = data.get('gps')
    timestamp = frame_timestamp(data)

    if not isinstance(battery, Mapping):
        battery = {}
    if not isinstance(gps, Mapping):
        gps = {}

    return TelemetryFrame(
        timestamp=timestamp if timestamp is not None else received_at,
        position=normalize_position(data),
        velocity=Velocity(
            vx=_number(velocity, ('vx', 'north')),
            vy=_number(velocity, ('vy', 'east')),
            vz=_number(velocity, ('vz', 'down')),
        ),
        attitude=Attitude(
            roll=_number(attitude, ('roll',)),
            pitch=_number(attitude, ('pitch',)),
            yaw=_number(attitude, ('yaw',)),
        ),
        battery=Battery(
            voltage=_number(battery, ('voltage',), default=_number(data, ('battery_voltage',))),
            current=_number(battery, ('current',), default=_number(data, ('battery_current',))),
            remaining_pct=_number(
                battery,
                ('remaining_pct', 'remaining', 'battery_remaining'),
                default=_number(data, ('battery_remaining', 'battery_level')),
            ),
        ),
        gps=GpsInfo(
            satellites=int(_number(
                gps,
                ('satellites', 'num_satellites', 'satellites_visible'),
                default=_number(data, ('satellites_visible',)),
            )),
            fix_type=int(_number(gps, ('fix_type', 'gps_fix'), default=_number(data, ('gps_fix',)))),
        ),
        armed=_optional_bool(data, 'armed'),
        flight_mode=_optional_text(data, ('flight_mode', 'mode')),
    )


STATUS_KEYS = (
    'armed', 'flying', 'flight_mode', 'mode', 'mission_active',
    'mission_current', 'current_waypoint', 'mission_count', 'total_waypoints',
    'battery_level',
)


def normalize_status(data: Mapping) -> Optional[VehicleStatusUpdate]:
    """Partial status from a status_update payload, None when nothing is recognized"""
    if not _has_any(data, STATUS_KEYS):
        return None

    def optional_int(keys):
        return _integer(data, keys) if _has_any(data, keys) else None

    return VehicleStatusUpdate(
        armed=_optional_bool(data, 'armed'),
        flying=_optional_bool(data, 'flying'),
        flight_mode=_optional_text(data, ('flight_mode', 'mode')),
        mission_active=_optional_bool(data, 'mission_active'),
        mission_current=optional_int(('mission_current', 'current_waypoint')),
        mission_count=optional_int(('mission_count', 'total_waypoints')),
        battery_level=_number(data, ('battery_level',)) if 'battery_level' in data else None,
    )


def backoff_delay_ms(attempt: int, base_ms: int = 1000, max_ms: int = 10000) -> int:
    """Reconnect delay for a zero-based attempt number"""
    return min(base_ms * (2 ** attempt), max_ms)

# ============================================================================
# CHANNEL
# ============================================================================

async def _websocket_connector(endpoint: str):
    return await websockets.connect(endpoint)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class TelemetryChannel:
    """One reconnecting telemetry stream with frequency and path tracking"""

    def __init__(self, config: ChannelConfig = None,
                 connector: Connector = None,
                 clock: Callable[[], float] = None,
                 sleep: Callable[[float], Awaitable[None]] = None):
        """
        Args:
            config: Channel timing and buffer settings
            connector: Coroutine opening a connection for an endpoint
                (defaults to websockets.connect)
            clock: Millisecond clock for frequency measurement
            sleep: Coroutine used to wait out reconnect delays
        """
        self.config = config or ChannelConfig()
        self._connector = connector or _websocket_connector
        self._clock = clock or _monotonic_ms
        self._sleep = sleep or asyncio.sleep

        self._endpoint: Optional[str] = None
        self._connection = None
        self._task: Optional[asyncio.Task] = None
        self._generation = 0
        self._attempt = 0
        self._connected = False
        self._retry_pending = False
        self._exhausted = False
        self._mission_id: Optional[str] = None

        self._frame_handlers: List[FrameHandler] = []
        self._connection_handlers: List[ConnectionHandler] = []
        self._status_handlers: List[StatusHandler] = []
        self._error_handlers: List[ErrorHandler] = []

        self._path: deque = deque(maxlen=self.config.path_capacity)
        self._latest_frame: Optional[TelemetryFrame] = None
        self._latest_position: Optional[Position] = None
        self._last_accepted_ts: Optional[float] = None

        self._update_count = 0
        self._window_start: Optional[float] = None
        self.frequency = 0
        self.last_update = 0.0

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def on_frame(self, handler: FrameHandler):
        self._frame_handlers.append(handler)

    def on_connection_change(self, handler: ConnectionHandler):
        self._connection_handlers.append(handler)

    def on_status(self, handler: StatusHandler):
        self._status_handlers.append(handler)

    def on_error(self, handler: ErrorHandler):
        self._error_handlers.append(handler)

    def _notify(self, handlers: List[Callable], payload: Any):
        for handler in handlers:
            try:
                handler(payload)
            except Exception as e:
                logger.error(f"Telemetry observer error: {e}")

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    @property
    def endpoint(self) -> Optional[str]:
        return self._endpoint

    @property
    def flight_path(self) -> Tuple[FlightPathPoint, ...]:
        return tuple(self._path)

    @property
    def latest_frame(self) -> Optional[TelemetryFrame]:
        return self._latest_frame

    @property
    def latest_position(self) -> Optional[Position]:
        return self._latest_position

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self, endpoint: str):
        """
        Open the stream. A no-op while a connection is open or opening;
        a pending reconnect timer is replaced by an immediate attempt.
        Must be called from a running event loop.
        """
        if self._task is not None and not self._task.done():
            if not self._retry_pending and endpoint == self._endpoint:
                logger.debug("Telemetry channel already connected")
                return
            self._cancel_task()

        self._endpoint = endpoint
        self._attempt = 0
        self._exhausted = False
        self._generation += 1
        logger.info(f"Connecting telemetry channel: {endpoint}")
        self._task = asyncio.ensure_future(self._run(endpoint, self._generation))

    def disconnect(self):
        """Cancel any pending reconnect and close the stream"""
        if self._task is not None or self._connected:
            logger.info("Disconnecting telemetry channel")
        self._generation += 1
        self._cancel_task()
        self._attempt = 0
        self._retry_pending = False
        self._set_connected(False)

    def _cancel_task(self):
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def wait_closed(self):
        """Wait until the background connection task has finished"""
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def _set_connected(self, connected: bool):
        if connected == self._connected:
            return
        self._connected = connected
        self._notify(self._connection_handlers, connected)

    async def _run(self, endpoint: str, generation: int):
        max_attempts = self.config.max_reconnect_attempts

        while generation == self._generation:
            try:
                connection = await self._connector(endpoint)
            except (OSError, InvalidHandshake, InvalidURI, asyncio.TimeoutError) as e:
                logger.warning(f"Telemetry connection failed: {e}")
            else:
                await self._serve(connection, generation)

            if generation != self._generation:
                return

            if self._attempt >= max_attempts:
                self._exhausted = True
                logger.error(f"Max reconnection attempts reached ({max_attempts})")
                self._notify(self._error_handlers, ConnectionExhausted())
                return

            delay = backoff_delay_ms(
                self._attempt, self.config.reconnect_base_ms, self.config.reconnect_max_ms
            )
            self._attempt += 1
            logger.warning(f"Reconnecting in {delay}ms (attempt {self._attempt}/{max_attempts})")

            self._retry_pending = True
            try:
                await self._sleep(delay / 1000.0)
            finally:
                if generation == self._generation:
                    self._retry_pending = False

    async def _serve(self, connection, generation: int):
        if generation != self._generation:
            await connection.close()
            return

        self._connection = connection
        self._attempt = 0
        self._last_accepted_ts = None
        logger.info("✓ Telemetry channel connected")
        self._set_connected(True)

        heartbeat = asyncio.ensure_future(self._heartbeat(connection))
        try:
            if self._mission_id:
                await self._send_subscribe(connection, self._mission_id)
            async for message in connection:
                if generation != self._generation:
                    break
                self.handle_message(message)
        except (ConnectionClosed, OSError) as e:
            logger.warning(f"Telemetry channel closed: {e}")
        finally:
            heartbeat.cancel()
            if self._connection is connection:
                self._connection = None
            if generation == self._generation:
                self._set_connected(False)
            await connection.close()

    async def _heartbeat(self, connection):
        while True:
            await asyncio.sleep(self.config.heartbeat_interval_s)
            try:
                await connection.send(json.dumps({'action': 'ping'}))
            except (ConnectionClosed, OSError) as e:
                logger.debug(f"Heartbeat send error: {e}")
                return

    # ------------------------------------------------------------------
    # Mission subscription
    # ------------------------------------------------------------------

    async def subscribe(self, mission_id: Optional[str]):
        """Subscribe the stream to a mission; re-sent on every reconnection"""
        if mission_id == self._mission_id:
            return
        self._mission_id = mission_id
        if mission_id and self._connection is not None:
            await self._send_subscribe(self._connection, mission_id)

    async def _send_subscribe(self, connection, mission_id: str):
        try:
            await connection.send(json.dumps({'action': 'subscribe', 'mission_id': mission_id}))
            logger.info(f"Subscribed to mission: {mission_id}")
        except (ConnectionClosed, OSError) as e:
            logger.warning(f"Subscribe failed: {e}")

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    def handle_message(self, message: Any):
        """Dispatch one raw inbound message (JSON text or decoded mapping)"""
        if isinstance(message, (str, bytes)):
            try:
                message = json.loads(message)
            except ValueError as e:
                logger.error(f"Error parsing message: {e}")
                return
        if not isinstance(message, Mapping):
            logger.debug(f"Ignoring non-object message: {message!r}")
            return

        message_type = message.get('type')
        payload = message.get('data')
        if not isinstance(payload, Mapping):
            payload = message

        if message_type in TELEMETRY_MESSAGE_TYPES:
            self._accept_telemetry(payload)
        elif message_type == 'status_update':
            status = normalize_status(payload)
            if status is not None:
                self._notify(self._status_handlers, status)
        elif message_type == 'error':
            text = str(message.get('message') or payload.get('message') or 'Telemetry error')
            logger.error(f"Telemetry feed error: {text}")
            self._notify(self._error_handlers, TransportFailure(text))
        elif message_type == 'pong':
            pass
        elif has_position(message):
            self._accept_telemetry(message)
        else:
            logger.debug(f"Ignoring message type: {message_type}")

    def _accept_telemetry(self, data: Mapping):
        now = self._clock()
        self._update_frequency(now)
        self.last_update = now

        frame = normalize_frame(data, received_at=now)
        if frame_timestamp(data) is not None:
            if self._last_accepted_ts is not None and frame.timestamp <= self._last_accepted_ts:
                logger.debug(f"Discarding stale frame at {frame.timestamp}")
                return
            self._last_accepted_ts = frame.timestamp
        elif self._last_accepted_ts is not None:
            # Unstamped frames sort with the feed's own clock, not the local one
            frame = replace(frame, timestamp=self._last_accepted_ts)

        self._latest_frame = frame
        if frame.position is not None:
            self._latest_position = frame.position
            if self._path and frame.timestamp < self._path[-1].timestamp:
                logger.info("Telemetry clock went backwards, starting a new flight path")
                self._path.clear()
            self._path.append(FlightPathPoint(position=frame.position, timestamp=frame.timestamp))

        self._notify(self._frame_handlers, frame)

        status = normalize_status(data)
        if status is not None:
            self._notify(self._status_handlers, status)

    def _update_frequency(self, now: float):
        if self._window_start is None:
            self._window_start = now
        self._update_count += 1

        window = now - self._window_start
        if window >= self.config.frequency_window_ms:
            self.frequency = round(self._update_count * 1000 / window)
            self._update_count = 0
            self._window_start = now

    def clear_path(self):
        self._path.clear()
