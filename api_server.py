# FastAPI Web Server for Drone Command & Telemetry
# File: api_server.py

"""
REST and websocket facade over one CommandSession. The dashboard reads
vehicle state only through these endpoints.

Run with: uvicorn api_server:app --reload --port 8001
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from coordinator.config import CoordinatorConfig
from coordinator.geometry import corridor_for_waypoints, path_length_m
from coordinator.models import Waypoint
from coordinator.session import CommandSession
from coordinator.transport import build_transport

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Drone Command & Telemetry API",
    description="Precondition-gated vehicle commands and live telemetry",
    version="1.0.0"
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global session (created on startup unless already installed)
session: Optional[CommandSession] = None


# WebSocket connection manager
class ConnectionManager:
    def __init__(self):
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, message: dict):
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.debug(f"Dropping status client: {e}")
                self.disconnect(connection)

manager = ConnectionManager()

# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class WaypointModel(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    alt: float = 0.0
    label: Optional[str] = None

    def to_waypoint(self) -> Waypoint:
        return Waypoint(lat=self.lat, lon=self.lon, altitude=self.alt, label=self.label)

class ConnectRequest(BaseModel):
    connection_string: Optional[str] = None

class TakeoffRequest(BaseModel):
    altitude: float = Field(default=10.0, gt=0)

class MissionUploadRequest(BaseModel):
    mission_id: str
    waypoints: List[WaypointModel]

class CorridorRequest(BaseModel):
    waypoints: List[WaypointModel]
    half_width_m: float = Field(default=50.0, gt=0)

# ============================================================================
# SESSION WIRING
# ============================================================================

def build_session(config: CoordinatorConfig = None) -> CommandSession:
    config = config or CoordinatorConfig.from_env()
    return CommandSession(build_transport(config), config=config)


def get_session() -> CommandSession:
    if session is None:
        raise HTTPException(status_code=503, detail="Session not initialized")
    return session


def _command_result(ok: bool, message: str, **data):
    """Successful command body, or HTTP 409 carrying the recorded error"""
    current = get_session()
    if not ok:
        detail = current.state.error_message or "Command failed"
        raise HTTPException(status_code=409, detail=detail)
    return {
        "success": True,
        "message": message,
        "data": data,
        "state": current.state.to_dict(),
    }


def _broadcast_state(state):
    """Push every session state change to the status websocket clients"""
    if manager.active_connections:
        asyncio.ensure_future(manager.broadcast({
            "type": "state_change",
            "timestamp": datetime.now().isoformat(),
            "state": state.to_dict()
        }))

# ============================================================================
# LIFECYCLE EVENTS
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Create the session from the environment on startup"""
    global session
    if session is None:
        session = build_session()
    session.on_state_change(_broadcast_state)
    logger.info("✅ Drone API Server Started")

@app.on_event("shutdown")
async def shutdown_event():
    """Close the vehicle links"""
    if session is not None:
        await session.disconnect()
    logger.info("🛑 Drone API Server Stopped")

# ============================================================================
# VEHICLE ENDPOINTS
# ============================================================================

@app.get("/api/v1/vehicle/status")
async def get_vehicle_status():
    """Session state, derived status and latest telemetry"""
    return get_session().snapshot()

@app.post("/api/v1/vehicle/connect")
async def connect_vehicle(request: ConnectRequest = None):
    """Connect the command link and start the telemetry stream"""
    connection_string = request.connection_string if request else None
    ok = await get_session().connect(connection_string)
    return _command_result(ok, "Connected to vehicle")

@app.post("/api/v1/vehicle/disconnect")
async def disconnect_vehicle():
    await get_session().disconnect()
    return _command_result(True, "Disconnected from vehicle")

@app.post("/api/v1/vehicle/arm")
async def arm_vehicle():
    ok = await get_session().arm()
    return _command_result(ok, "Vehicle armed")

@app.post("/api/v1/vehicle/disarm")
async def disarm_vehicle():
    ok = await get_session().disarm()
    return _command_result(ok, "Vehicle disarmed")

@app.post("/api/v1/vehicle/takeoff")
async def takeoff_vehicle(request: TakeoffRequest = None):
    altitude = request.altitude if request else 10.0
    ok = await get_session().takeoff(altitude)
    return _command_result(ok, f"Taking off to {altitude}m", altitude=altitude)

@app.post("/api/v1/vehicle/land")
async def land_vehicle():
    ok = await get_session().land()
    return _command_result(ok, "Landing")

@app.post("/api/v1/vehicle/rtl")
async def return_to_launch():
    ok = await get_session().return_to_launch()
    return _command_result(ok, "Returning to launch")

# ============================================================================
# MISSION ENDPOINTS
# ============================================================================

@app.post("/api/v1/missions/upload")
async def upload_mission(request: MissionUploadRequest):
    """Upload a waypoint mission to the vehicle"""
    waypoints = [wp.to_waypoint() for wp in request.waypoints]
    ok = await get_session().upload_mission(request.mission_id, waypoints)
    return _command_result(
        ok,
        f"Mission {request.mission_id} uploaded",
        mission_id=request.mission_id,
        waypoint_count=len(waypoints),
        distance_m=round(path_length_m(waypoints), 1),
    )

@app.post("/api/v1/missions/start")
async def start_mission():
    ok = await get_session().start_mission()
    return _command_result(ok, "Mission started")

@app.post("/api/v1/missions/pause")
async def pause_mission():
    ok = await get_session().pause_mission()
    return _command_result(ok, "Mission paused")

@app.post("/api/v1/missions/resume")
async def resume_mission():
    ok = await get_session().resume_mission()
    return _command_result(ok, "Mission resumed")

@app.post("/api/v1/missions/stop")
async def stop_mission():
    ok = await get_session().stop_mission()
    return _command_result(ok, "Mission stopped")

# ============================================================================
# TELEMETRY & CORRIDOR ENDPOINTS
# ============================================================================

@app.get("/api/v1/telemetry/path")
async def get_flight_path(limit: int = 500):
    """Most recent flight path points, oldest first"""
    points = get_session().channel.flight_path[-limit:] if limit > 0 else ()
    return {
        "count": len(points),
        "points": [
            {
                "lat": p.position.lat,
                "lon": p.position.lon,
                "alt": p.position.altitude,
                "timestamp": p.timestamp
            }
            for p in points
        ]
    }

@app.get("/api/v1/telemetry/corridor")
async def get_corridor(source: str = "mission", half_width_m: Optional[float] = None):
    """Corridor around the uploaded mission or the live flight path"""
    current = get_session()
    if half_width_m is not None and half_width_m <= 0:
        raise HTTPException(status_code=422, detail="half_width_m must be positive")
    if source == "mission":
        polygon = current.mission_corridor(half_width_m)
    elif source == "flight_path":
        polygon = current.flight_path_corridor(half_width_m)
    else:
        raise HTTPException(status_code=400, detail=f"Unknown corridor source: {source}")
    return {
        "source": source,
        "vertex_count": len(polygon),
        "polygon": [[lat, lon] for lat, lon in polygon]
    }

@app.post("/api/v1/corridor")
async def build_corridor_polygon(request: CorridorRequest):
    """Corridor for an arbitrary waypoint path"""
    waypoints = [wp.to_waypoint() for wp in request.waypoints]
    polygon = corridor_for_waypoints(waypoints, request.half_width_m)
    return {
        "vertex_count": len(polygon),
        "polygon": [[lat, lon] for lat, lon in polygon],
        "distance_m": round(path_length_m(waypoints), 1)
    }

# ============================================================================
# WEBSOCKET ENDPOINTS
# ============================================================================

@app.websocket("/ws/status")
async def status_websocket(websocket: WebSocket):
    """Push the session snapshot every second"""
    await manager.connect(websocket)

    try:
        while True:
            update = {
                "type": "status_update",
                "timestamp": datetime.now().isoformat(),
                **get_session().snapshot()
            }
            await websocket.send_json(update)
            await asyncio.sleep(1)

    except WebSocketDisconnect:
        logger.debug("Status client disconnected")
    finally:
        manager.disconnect(websocket)

# ============================================================================
# HEALTH CHECK
# ============================================================================

@app.get("/")
async def root():
    """API root endpoint"""
    return {
        "name": "Drone Command & Telemetry API",
        "version": "1.0.0",
        "status": "operational",
        "docs": "/docs",
        "redoc": "/redoc"
    }

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    state = session.state if session else None
    return {
        "status": "healthy",
        "connected": state.connected if state else False,
        "telemetry_connected": state.telemetry_connected if state else False,
        "timestamp": datetime.now().isoformat()
    }

if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    uvicorn.run(app, host="0.0.0.0", port=8001)
