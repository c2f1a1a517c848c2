"""
In-memory stand-ins for the vehicle links used across the test suite.
"""

import asyncio
import json
from typing import Dict, List

from coordinator.config import ChannelConfig, CoordinatorConfig
from coordinator.models import CommandResponse, Waypoint
from coordinator.session import CommandSession
from coordinator.telemetry import TelemetryChannel
from coordinator.transport import CommandTransport


MISSION = [
    Waypoint(47.397742, 8.545594, 50.0, "WP1"),
    Waypoint(47.398042, 8.545794, 50.0, "WP2"),
    Waypoint(47.398342, 8.545994, 50.0, "WP3"),
]


class FakeTransport(CommandTransport):
    """Records every call; responses default to success and can be held open"""

    def __init__(self):
        self.calls: List[tuple] = []
        self.responses: Dict[str, CommandResponse] = {}
        self.errors: Dict[str, Exception] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.closed = False

    def hold(self, name: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[name] = gate
        return gate

    def fail(self, name: str, message: str = "Command denied by autopilot"):
        self.responses[name] = CommandResponse(success=False, message=message)

    def called(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    async def _handle(self, name: str, *args) -> CommandResponse:
        self.calls.append((name,) + args)
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        if name in self.errors:
            raise self.errors[name]
        return self.responses.get(name, CommandResponse(success=True))

    async def connect(self, endpoint):
        return await self._handle('connect', endpoint)

    async def arm(self):
        return await self._handle('arm')

    async def disarm(self):
        return await self._handle('disarm')

    async def takeoff(self, altitude):
        return await self._handle('takeoff', altitude)

    async def land(self):
        return await self._handle('land')

    async def upload_mission(self, mission_id, waypoints):
        return await self._handle('upload_mission', mission_id, tuple(waypoints))

    async def start_mission(self):
        return await self._handle('start_mission')

    async def pause_mission(self):
        return await self._handle('pause_mission')

    async def resume_mission(self):
        return await self._handle('resume_mission')

    async def stop_mission(self):
        return await self._handle('stop_mission')

    async def return_to_launch(self):
        return await self._handle('return_to_launch')

    async def close(self):
        self.closed = True


class FakeConnection:
    """Websocket double: feed() queues inbound messages, drop() ends the stream"""

    def __init__(self):
        self.sent: List[dict] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    def feed(self, message):
        self._inbox.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self):
        self._inbox.put_nowait(None)

    async def send(self, text: str):
        self.sent.append(json.loads(text))

    async def close(self):
        self.closed = True
        self._inbox.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """
    Plays back connection outcomes in order: a FakeConnection, an exception
    to raise, or a coroutine function to await. Once the list is used up it
    opens fresh connections (fallback=True) or refuses every attempt.
    """

    def __init__(self, outcomes=None, fallback: bool = False):
        self.outcomes = list(outcomes or [])
        self.fallback = fallback
        self.endpoints: List[str] = []
        self.connections: List[FakeConnection] = []

    async def __call__(self, endpoint: str):
        self.endpoints.append(endpoint)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
        elif self.fallback:
            outcome = FakeConnection()
        else:
            outcome = OSError("Connection refused")

        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            outcome = await outcome()
        self.connections.append(outcome)
        return outcome


class RecordingSleep:
    """Reconnect sleep that returns immediately and remembers each delay"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float):
        self.delays.append(seconds)
        await asyncio.sleep(0)


class ManualClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


async def wait_until(predicate, steps: int = 500):
    """Yield to the event loop until predicate() holds"""
    for _ in range(steps):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


def make_channel(connector=None, config: ChannelConfig = None, clock=None) -> TelemetryChannel:
    return TelemetryChannel(
        config or ChannelConfig(),
        connector=connector or FakeConnector(fallback=True),
        clock=clock or ManualClock(),
        sleep=RecordingSleep(),
    )


def make_session(transport: FakeTransport = None, connector: FakeConnector = None,
                 config: CoordinatorConfig = None) -> CommandSession:
    config = config or CoordinatorConfig()
    channel = make_channel(connector, config.channel)
    return CommandSession(transport or FakeTransport(), channel=channel, config=config)
