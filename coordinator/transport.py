# Command Transports
# File: coordinator/transport.py

"""
Request/response command transports used by the command session.

Every operation returns a CommandResponse; a response without success
is a recoverable command failure, never a fatal one. Transports log the
underlying cause and report failure instead of raising.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import requests

from coordinator.models import CommandResponse, Waypoint

logger = logging.getLogger(__name__)

HEADERS = {"Content-Type": "application/json"}


class CommandTransport(ABC):
    """Contract between the command session and a vehicle link"""

    @abstractmethod
    async def connect(self, endpoint: str) -> CommandResponse: ...

    @abstractmethod
    async def arm(self) -> CommandResponse: ...

    @abstractmethod
    async def disarm(self) -> CommandResponse: ...

    @abstractmethod
    async def takeoff(self, altitude: float) -> CommandResponse: ...

    @abstractmethod
    async def land(self) -> CommandResponse: ...

    @abstractmethod
    async def upload_mission(self, mission_id: str,
                             waypoints: Sequence[Waypoint]) -> CommandResponse: ...

    @abstractmethod
    async def start_mission(self) -> CommandResponse: ...

    @abstractmethod
    async def pause_mission(self) -> CommandResponse: ...

    @abstractmethod
    async def resume_mission(self) -> CommandResponse: ...

    @abstractmethod
    async def stop_mission(self) -> CommandResponse: ...

    @abstractmethod
    async def return_to_launch(self) -> CommandResponse: ...

    async def close(self):
        """Release the link; the default transport holds nothing"""


def format_waypoints(waypoints: Sequence[Waypoint]) -> List[Dict[str, Any]]:
    """Waypoints in the wire shape expected by the mission endpoints"""
    return [
        {
            "sequence": index,
            "lat": wp.lat,
            "lon": wp.lon,
            "alt": wp.altitude,
            "label": wp.label,
        }
        for index, wp in enumerate(waypoints)
    ]


class HttpCommandTransport(CommandTransport):
    """
    Command transport over the ground-controller REST API.

    requests is blocking, so each call runs in a worker thread.
    """

    def __init__(self, base_url: str = "http://localhost:8000", timeout: float = 10.0,
                 session: requests.Session = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()
        self.connection_string: Optional[str] = None
        self.mission_id: Optional[str] = None

    def _post(self, path: str, payload: Dict[str, Any] = None) -> CommandResponse:
        url = f"{self.base_url}{path}"
        try:
            response = self.http.post(url, headers=HEADERS, json=payload or {}, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Request to {path} failed: {e}")
            return CommandResponse(success=False, message=str(e))

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        message = body.get("message") or body.get("detail") or ""
        if response.status_code != 200:
            logger.error(f"{path} returned HTTP {response.status_code}: {message}")
            return CommandResponse(success=False, message=str(message or response.reason))

        data = body.get("data")
        return CommandResponse(
            success=bool(body.get("success")),
            message=str(message),
            data=data if isinstance(data, dict) else {},
        )

    async def _call(self, path: str, payload: Dict[str, Any] = None) -> CommandResponse:
        return await asyncio.to_thread(self._post, path, payload)

    async def connect(self, endpoint: str) -> CommandResponse:
        self.connection_string = endpoint
        return await self._call("/api/v1/vehicle/connect", {"connection_string": endpoint})

    async def arm(self) -> CommandResponse:
        return await self._call("/api/v1/vehicle/arm", {"mission_id": self.mission_id, "force_arm": False})

    async def disarm(self) -> CommandResponse:
        return await self._call("/api/v1/vehicle/disarm", {"mission_id": self.mission_id})

    async def takeoff(self, altitude: float) -> CommandResponse:
        return await self._call("/api/v1/vehicle/takeoff", {"mission_id": self.mission_id, "altitude": altitude})

    async def land(self) -> CommandResponse:
        return await self._call("/api/v1/vehicle/land", {"mission_id": self.mission_id})

    async def return_to_launch(self) -> CommandResponse:
        return await self._call("/api/v1/vehicle/rtl", {"mission_id": self.mission_id})

    async def upload_mission(self, mission_id: str, waypoints: Sequence[Waypoint]) -> CommandResponse:
        response = await self._call(
            f"/api/v1/missions/upload-to-px4/{mission_id}",
            {
                "mission_id": mission_id,
                "waypoints": format_waypoints(waypoints),
                "connection_string": self.connection_string,
            },
        )
        if response.success:
            self.mission_id = mission_id
        return response

    async def _mission_call(self, action: str, payload: Dict[str, Any] = None) -> CommandResponse:
        if self.mission_id is None:
            return CommandResponse(success=False, message="Mission not uploaded")
        return await self._call(f"/api/v1/missions/{self.mission_id}/{action}", payload)

    async def start_mission(self) -> CommandResponse:
        return await self._mission_call("start", {"force_start": False})

    async def pause_mission(self) -> CommandResponse:
        return await self._mission_call("pause")

    async def resume_mission(self) -> CommandResponse:
        return await self._mission_call("resume")

    async def stop_mission(self) -> CommandResponse:
        if self.mission_id is None:
            return CommandResponse(success=True, message="No mission active")
        return await self._mission_call("stop")

    async def close(self):
        self.http.close()


def build_transport(config) -> CommandTransport:
    """Command transport selected by config.transport (http | mavlink)"""
    if config.transport == "mavlink":
        # Import here so the HTTP deployment does not need pymavlink loaded
        from simulation.gazebo_integration import MavlinkCommandTransport
        return MavlinkCommandTransport()
    if config.transport != "http":
        raise ValueError(f"Unknown transport: {config.transport}")
    return HttpCommandTransport(config.api_base_url, timeout=config.request_timeout)
