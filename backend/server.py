import asyncio
import logging
import os
import sys
import time

# Add current directory to path so we can import backend modules
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from typing import Any, Dict, Optional
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, confloat

from errors import ActionResult, ErrorKind
from simulation import Simulation
from snapshot_store import SnapshotStore

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

STATUS_BY_ERROR = {
    ErrorKind.INSUFFICIENT_FUNDS: 409,
    ErrorKind.NOT_ELIGIBLE: 409,
    ErrorKind.CORRUPT_DATA: 422,
}


class TickRequest(BaseModel):
    now: Optional[float] = None


class LoadRequest(BaseModel):
    snapshot: Optional[Dict[str, Any]] = None


class LoopSettings(BaseModel):
    interval: confloat(gt=0, le=10) = 0.1


class SimulationManager:
    def __init__(self):
        self.simulation: Optional[Simulation] = None
        self.is_running = False
        self.tick = 0
        self.active_websocket = None
        self.interval = 0.1

    def initialize(self, seed: Optional[int] = None, db_path: Optional[str] = None):
        db_path = db_path or os.environ.get("COLLAPSE_SIM_DB", "collapse_sim.db")
        logger.info(f"Initializing simulation (seed={seed}, store={db_path})")
        self.simulation = Simulation(seed=seed, store=SnapshotStore(db_path), now=time.time())
        self.tick = 0
        result = self.simulation.load_saved()
        if not result.ok:
            logger.warning(f"Saved snapshot could not be restored: {result.detail}")

    def require(self) -> Simulation:
        if self.simulation is None:
            self.initialize()
        return self.simulation

    def state_message(self, new_event=None) -> Dict[str, Any]:
        sim = self.require()
        active = sim.active_event()
        return {
            "type": "STATE",
            "tick": self.tick,
            "state": sim.snapshot(),
            "metrics": sim.get_metrics(),
            "activeEvent": active.to_dict(sim.state) if active else None,
            "newEvent": new_event.event_id if new_event else None,
        }

    async def run_loop(self):
        sim = self.require()
        logger.info("Starting simulation loop")
        try:
            while self.is_running and self.active_websocket:
                start_time = asyncio.get_event_loop().time()

                now = time.time()
                sim.advance_tick(now)
                new_event = sim.check_for_event(now)
                self.tick += 1

                await self.active_websocket.send_json(self.state_message(new_event))

                # Throttle
                elapsed = asyncio.get_event_loop().time() - start_time
                await asyncio.sleep(max(0.01, self.interval - elapsed))

        except Exception as e:
            logger.error(f"Simulation loop error: {e}")
            self.is_running = False
            if self.active_websocket:
                await self.active_websocket.send_json({"error": str(e)})


manager = SimulationManager()


def _respond(result: ActionResult) -> Dict[str, Any]:
    if not result.ok:
        status = STATUS_BY_ERROR.get(result.error, 400)
        raise HTTPException(status_code=status, detail={"error": result.error.value, "detail": result.detail})
    return {"ok": True, "detail": result.detail, "state": manager.require().snapshot()}


@app.post("/tick")
def tick(request: TickRequest):
    sim = manager.require()
    produced = sim.advance_tick(request.now if request.now is not None else time.time())
    manager.tick += 1
    return {"produced": produced, "state": sim.snapshot()}


@app.post("/ship")
def ship():
    sim = manager.require()
    shipped = sim.ship_package()
    return {"shipped": shipped, "state": sim.snapshot()}


@app.post("/events/check")
def check_event(request: TickRequest):
    sim = manager.require()
    event = sim.check_for_event(request.now if request.now is not None else time.time())
    return {"event": event.to_dict(sim.state) if event else None}


@app.get("/events/active")
def active_event():
    sim = manager.require()
    event = sim.active_event()
    return {"event": event.to_dict(sim.state) if event else None}


@app.post("/events/choices/{choice_id}")
def resolve_choice(choice_id: str):
    return _respond(manager.require().resolve_event_choice(choice_id, time.time()))


@app.get("/upgrades")
def list_upgrades():
    return {"upgrades": manager.require().upgrade_catalog()}


@app.post("/upgrades/{upgrade_id}/purchase")
def purchase_upgrade(upgrade_id: str):
    return _respond(manager.require().purchase_upgrade(upgrade_id, time.time()))


@app.get("/state")
def get_state():
    sim = manager.require()
    return {"state": sim.snapshot(), "metrics": sim.get_metrics()}


@app.get("/telemetry")
def get_telemetry():
    return manager.require().telemetry_report().to_dict()


@app.post("/reset")
def reset():
    sim = manager.require()
    sim.reset_simulation(time.time())
    manager.tick = 0
    return {"state": sim.snapshot()}


@app.post("/save")
def save():
    return _respond(manager.require().save(time.time()))


@app.post("/load")
def load(request: LoadRequest):
    sim = manager.require()
    if request.snapshot is None:
        return _respond(sim.load_saved())
    return _respond(sim.load(request.snapshot))


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    manager.active_websocket = websocket
    logger.info("WebSocket connected")

    try:
        while True:
            data = await websocket.receive_json()
            command = data.get("command")
            sim = manager.require()

            if command == "START":
                manager.interval = LoopSettings(**data.get("config", {})).interval
                if not manager.is_running:
                    manager.is_running = True
                    asyncio.create_task(manager.run_loop())
            elif command == "STOP":
                manager.is_running = False
            elif command == "RESET":
                manager.is_running = False
                sim.reset_simulation(time.time())
                manager.tick = 0
                await websocket.send_json({"type": "RESET", "tick": 0})
            elif command == "SHIP":
                sim.ship_package()
                await websocket.send_json(manager.state_message())
            elif command in ("PURCHASE", "CHOOSE"):
                if command == "PURCHASE":
                    result = sim.purchase_upgrade(data.get("upgrade_id", ""), time.time())
                else:
                    result = sim.resolve_event_choice(data.get("choice_id", ""), time.time())
                await websocket.send_json({
                    "type": "RESULT",
                    "ok": result.ok,
                    "error": result.error.value if result.error else None,
                    "detail": result.detail,
                })
            elif command == "SAVE":
                result = sim.save(time.time())
                await websocket.send_json({"type": "SAVED", "ok": result.ok})

    except WebSocketDisconnect:
        manager.is_running = False
        manager.active_websocket = None
        logger.info("Client disconnected")
