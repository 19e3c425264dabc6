"""HTTP front end for a local crew session.

Plans are played back on a virtual scheduler, so each request returns the
finished result instead of streaming steps.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from crewsim.clock import ManualClock, VirtualScheduler
from crewsim.errors import UnknownAgentError
from crewsim.policies import get_policy, log_level_from_environment
from crewsim.roster import DEFAULT_CREW, build_agents
from crewsim.schemas import (
    AgentContextResponse,
    ErrorResponse,
    HealthResponse,
    PolicyId,
    SendMessageRequest,
    SendMessageResponse,
)
from crewsim.session import CrewSession
from crewsim.store import SQLiteMemoryStore

logger = logging.getLogger(__name__)

# Configure logging
logging.basicConfig(
    level=log_level_from_environment(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = FastAPI(
    title="crewsim Broker",
    description="Local HTTP front end for a simulated agent crew",
    version="0.1.0",
)

# Global session instance
_session: CrewSession | None = None


def get_session() -> CrewSession:
    """Get or create the global crew session (startup crew, persisted memory)."""
    global _session
    if _session is None:
        policy = get_policy(PolicyId.DEFAULT)
        _session = CrewSession(
            build_agents(DEFAULT_CREW),
            name="Broker Crew",
            policy=policy,
            scheduler=VirtualScheduler(ManualClock(time.time())),
            store=SQLiteMemoryStore.for_policy(policy),
        )
    return _session


def set_session(session: CrewSession | None) -> None:
    """Replace the global session; None rebuilds the default on next use."""
    global _session
    _session = session


# --- HTTP Endpoints ---


@app.post("/messages", response_model=SendMessageResponse)
async def send_message(request: SendMessageRequest) -> SendMessageResponse:
    """Route a user message and play its plan to completion."""
    session = get_session()
    logger.info(f"Received message ({len(request.content)} chars)")

    playback = session.send_message(request.content)
    if playback is None:
        raise HTTPException(status_code=409, detail="A message is already being processed")

    scheduler = session.scheduler
    if isinstance(scheduler, VirtualScheduler):
        scheduler.run_all()
    await session.engine.drain()

    return SendMessageResponse(
        decision=playback.decision,
        plan=playback.plan,
        result=playback.result,
    )


@app.get("/agents")
async def list_agents() -> list[dict[str, Any]]:
    """Live state of every agent."""
    return jsonable_encoder([asdict(state) for state in get_session().agent_states()])


@app.get("/agents/{agent_id}/context", response_model=AgentContextResponse)
async def agent_context(agent_id: str) -> AgentContextResponse:
    """Memory-derived prompt context for one agent."""
    engine = get_session().engine
    engine.require_agent(agent_id)
    return AgentContextResponse(agent_id=agent_id, context=engine.agent_context(agent_id))


@app.get("/stats")
async def stats() -> dict[str, Any]:
    return jsonable_encoder(get_session().engine.stats())


@app.get("/events")
async def events(count: int = 50, namespace: str | None = None) -> list[dict[str, Any]]:
    """Most recent events, optionally limited to one namespace."""
    bus = get_session().engine.events
    logged = bus.by_namespace(namespace, count) if namespace else bus.recent(count)
    return [
        {"event": e.event, "payload": jsonable_encoder(e.payload), "timestamp": e.timestamp}
        for e in logged
    ]


@app.get("/errors")
async def errors(count: int = 20) -> list[dict[str, Any]]:
    return jsonable_encoder(get_session().engine.errors.recent(count))


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Crew quality and load indicators."""
    session = get_session()
    return HealthResponse(
        status=session.engine.crew.status.value,
        **asdict(session.health()),
    )


@app.post("/pause")
async def pause() -> dict[str, str]:
    engine = get_session().engine
    engine.pause()
    return {"status": engine.crew.status.value}


@app.post("/resume")
async def resume() -> dict[str, str]:
    engine = get_session().engine
    engine.resume()
    return {"status": engine.crew.status.value}


@app.exception_handler(UnknownAgentError)
async def unknown_agent_handler(request, exc: UnknownAgentError) -> JSONResponse:
    """Map unknown agent ids to 404."""
    return JSONResponse(
        status_code=404,
        content=ErrorResponse(detail=str(exc), error_code="UNKNOWN_AGENT").model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            detail=str(exc),
            error_code="INTERNAL_ERROR",
        ).model_dump(),
    )
