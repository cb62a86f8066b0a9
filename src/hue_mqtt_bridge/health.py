from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from hue_mqtt_bridge.bridge import HueMqttBridge


class HealthResponse(BaseModel):
    ok: bool = Field(..., description="Process is alive.")


class ReadinessResponse(BaseModel):
    ready: bool = Field(..., description="True when the bus is connected and a resource graph is loaded.")
    reason: str | None = Field(
        default=None,
        description="When not ready, a short machine-readable reason (e.g. bus_disconnected).",
    )


class StateResponse(BaseModel):
    counters: dict[str, int]
    graph: dict[str, Any] | None = None


def create_app(bridge: HueMqttBridge) -> FastAPI:
    app = FastAPI(
        title="Hue MQTT Bridge",
        version="0.1.0",
        description="Liveness, readiness and last known resource graph of the Hue MQTT bridge.",
    )
    app.state.bridge = bridge

    @app.get("/healthz", response_model=HealthResponse, tags=["meta"])
    async def healthz() -> HealthResponse:
        return HealthResponse(ok=True)

    @app.get("/readyz", response_model=ReadinessResponse, tags=["meta"])
    async def readyz():
        if not bridge.ctx.bus.connected:
            return JSONResponse({"ready": False, "reason": "bus_disconnected"}, status_code=503)
        if bridge.ctx.graph.current() is None:
            return JSONResponse({"ready": False, "reason": "no_graph"}, status_code=503)
        return ReadinessResponse(ready=True)

    @app.get("/state", response_model=StateResponse, tags=["meta"])
    async def state() -> StateResponse:
        graph = bridge.ctx.graph.current()
        return StateResponse(
            counters=asdict(bridge.counters),
            graph=graph.snapshot() if graph is not None else None,
        )

    return app
