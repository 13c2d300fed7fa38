"""
REST API server for the hybrid decision engine.

Lets a game client that is not written in Python ask for decisions and
feed back outcomes over HTTP.

Run with:
    python -m hybrid_brain.api --config brain.yaml

Endpoints are plain `def` handlers: the engine is thread-safe and its
calls block (a remote strategist round-trip can take seconds), so they
run in FastAPI's worker threadpool rather than on the event loop.
"""
from __future__ import annotations

import argparse
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from . import __version__
from .config import BrainConfig, load_config
from .core import HybridBrain
from .learning.combat import COMBAT_OUTCOMES
from .logging_config import configure_logging
from .strategist import build_strategist
from .types import DecisionType, Position

logger = logging.getLogger(__name__)


# ============================================================================
# Pydantic Models for API
# ============================================================================

class PositionModel(BaseModel):
    x: float = 0.0
    y: float = 64.0
    z: float = 0.0


class DecideRequest(BaseModel):
    """Request body for the decide endpoint."""
    type: DecisionType = Field(DecisionType.TACTICAL, description="reactive, tactical or strategic")
    complexity: float = Field(0.0, ge=0.0, le=1.0)
    urgency: float = Field(0.0, ge=0.0, le=1.0)
    snapshot: Dict[str, Any] = Field(default_factory=dict, description="Game snapshot fields")


class DecideResponse(BaseModel):
    action: str
    priority: str
    reasoning: str
    confidence: float
    source: str
    timestamp: float
    insights: Dict[str, str] = {}


class OutcomeRequest(BaseModel):
    """Outcome of a previously returned action."""
    action: str
    success: bool
    reward: float = 0.0
    duration: float = Field(0.0, ge=0.0)


class ResourceEvent(BaseModel):
    resource_type: str
    quantity: float = Field(..., ge=0.0)
    position: Optional[PositionModel] = None


class DangerEvent(BaseModel):
    position: PositionModel
    danger_type: str
    severity: float = Field(1.0, ge=0.0, le=1.0)


class CombatEvent(BaseModel):
    actor_type: str
    strategy: str
    outcome: str = Field(..., description="win, death or flee")
    health_lost: float = 0.0
    damage_dealt: float = 0.0
    duration: float = 0.0
    position: Optional[PositionModel] = None
    behavior: Optional[Dict[str, float]] = None


class PathEvent(BaseModel):
    start: PositionModel
    end: PositionModel
    duration_ms: float = Field(..., ge=0.0)
    distance: float = Field(..., ge=0.0)
    success: bool
    obstacles: int = Field(0, ge=0)


class Objective(BaseModel):
    name: str
    priority: str = "medium"
    resources: List[str] = []


class PlanRequest(BaseModel):
    objectives: List[Objective]


class EventAck(BaseModel):
    """Whether the event was queued (False: dropped under backpressure)."""
    accepted: bool


# ============================================================================
# API Server
# ============================================================================

def parse_position(raw: str) -> Position:
    """'x,y,z' query value to a Position."""
    parts = raw.split(",")
    if len(parts) != 3:
        raise ValueError(f"expected x,y,z, got {raw!r}")
    return Position.from_any([float(p) for p in parts])


class BrainAPIServer:
    """
    FastAPI-based REST server around one HybridBrain.

    Provides endpoints for:
    - Decisions and strategic plans
    - Outcome, resource, danger, combat and path reports
    - Forecasts, combat strategy and route queries
    - Metrics, performance report and health
    """

    def __init__(self, brain: HybridBrain, manage_lifecycle: bool = True):
        """
        Initialize the API server.

        Args:
            brain: Engine to serve
            manage_lifecycle: Start the engine on app startup and stop
                (persisting state) on shutdown
        """
        self.brain = brain
        self.manage_lifecycle = manage_lifecycle

        self.app = FastAPI(
            title="Hybrid Brain API",
            description="Decision routing between a local brain and a remote strategist",
            version=__version__,
            lifespan=self._lifespan,
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._register_routes()

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        if self.manage_lifecycle:
            self.brain.start()
        try:
            yield
        finally:
            if self.manage_lifecycle:
                self.brain.stop()

    def _register_routes(self):
        """Register all API routes."""
        brain = self.brain

        @self.app.get("/")
        def root():
            return {
                "status": "ok",
                "engine": "Hybrid Brain",
                "version": __version__,
                "strategist": brain.router.strategist.name,
                "ml_enabled": brain.config.ml_enabled,
            }

        @self.app.post("/decide", response_model=DecideResponse)
        def decide(request: DecideRequest):
            """Choose the next action. Never fails on remote or model errors."""
            result = brain.decide(request.model_dump())
            return DecideResponse(**result.to_dict())

        @self.app.post("/plan")
        def plan(request: PlanRequest):
            objectives = [o.model_dump() for o in request.objectives]
            return {"steps": brain.strategic_plan(objectives)}

        @self.app.post("/outcome", response_model=EventAck)
        def outcome(request: OutcomeRequest):
            accepted = brain.report_outcome(
                request.action, request.success, request.reward, request.duration
            )
            return EventAck(accepted=accepted)

        @self.app.post("/events/resource", response_model=EventAck)
        def resource_event(event: ResourceEvent):
            position = event.position.model_dump() if event.position else None
            return EventAck(accepted=brain.report_resource(event.resource_type, event.quantity, position))

        @self.app.post("/events/danger", response_model=EventAck)
        def danger_event(event: DangerEvent):
            brain.report_danger(event.position.model_dump(), event.danger_type, event.severity)
            return EventAck(accepted=True)

        @self.app.post("/events/combat", response_model=EventAck)
        def combat_event(event: CombatEvent):
            if event.outcome not in COMBAT_OUTCOMES:
                raise HTTPException(
                    status_code=422,
                    detail=f"outcome must be one of {sorted(COMBAT_OUTCOMES)}",
                )
            details = event.model_dump(exclude={"actor_type", "strategy", "outcome"})
            accepted = brain.report_combat(event.actor_type, event.strategy, event.outcome, **details)
            return EventAck(accepted=accepted)

        @self.app.post("/events/path", response_model=EventAck)
        def path_event(event: PathEvent):
            accepted = brain.report_path(
                event.start.model_dump(),
                event.end.model_dump(),
                event.duration_ms,
                event.distance,
                event.success,
                event.obstacles,
            )
            return EventAck(accepted=accepted)

        @self.app.get("/forecast/{resource_type}")
        def forecast(resource_type: str, minutes_ahead: float = Query(30.0, gt=0.0)):
            return brain.forecast(resource_type, minutes_ahead)

        @self.app.get("/strategy/{actor_type}")
        def strategy(actor_type: str):
            return brain.best_strategy(actor_type)

        @self.app.get("/route")
        def route(
            start: str = Query(..., description="x,y,z"),
            end: str = Query(..., description="x,y,z"),
        ):
            try:
                start_pos, end_pos = parse_position(start), parse_position(end)
            except ValueError as e:
                raise HTTPException(status_code=422, detail=str(e))
            return brain.optimal_route(start_pos, end_pos)

        @self.app.post("/train")
        def train():
            report = brain.train_now()
            return {"trained": report is not None, "report": report.to_dict() if report else None}

        @self.app.get("/metrics")
        def metrics():
            return brain.metrics()

        @self.app.get("/report")
        def report():
            return {"report": brain.performance_report()}

        @self.app.get("/health")
        def health():
            return brain.health().to_dict()


def create_app(
    config: Optional[BrainConfig] = None,
    model_path: Optional[str] = None,
    brain: Optional[HybridBrain] = None,
    manage_lifecycle: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if brain is None:
        brain = HybridBrain(config, strategist=build_strategist(model_path))
    server = BrainAPIServer(brain, manage_lifecycle=manage_lifecycle)
    return server.app


def main():
    """Run the API server from command line."""
    parser = argparse.ArgumentParser(description="Hybrid Brain API Server")
    parser.add_argument("--config", help="JSON or YAML config file")
    parser.add_argument("--model", help="Path to GGUF model for the remote strategist (optional)")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    args = parser.parse_args()

    config = load_config(args.config)
    configure_logging(config.log_level, config.log_dir)

    app = create_app(config=config, model_path=args.model)

    logger.info(f"Hybrid Brain API starting on http://{args.host}:{args.port}")
    if not args.model:
        logger.info("No strategist model given, running brain-only")

    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
