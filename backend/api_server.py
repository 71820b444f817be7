#!/usr/bin/env python3
"""
FastAPI server exposing agent control and trading history.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

app = FastAPI(title="Vibe Trader API")

logger = logging.getLogger(__name__)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions and return 500 with error details"""
    logger.error(f"Unhandled exception in {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "status": "error",
            "detail": str(exc),
            "path": str(request.url.path)
        }
    )

# Enable CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:3001"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Registered by main.py before the server thread starts
loop_controller_instance: Optional[Any] = None

CONTROL_ACTIONS = ("pause", "resume", "stop")


class ControlRequest(BaseModel):
    action: str


def _controller():
    if loop_controller_instance is None:
        raise HTTPException(status_code=503, detail="Agent not initialized")
    return loop_controller_instance


def _apply(action: str) -> dict:
    controller = _controller()
    if action == "pause":
        changed = controller.pause("paused via API")
    elif action == "resume":
        changed = controller.resume()
    elif action == "stop":
        controller.stop()
        changed = True
    else:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid action '{action}'. Use one of: {', '.join(CONTROL_ACTIONS)}",
        )
    logger.info(f"Control action '{action}' via API (changed={changed})")
    return {"status": "success", "action": action, "changed": changed, "agent": controller.status()}


@app.get("/")
async def root():
    return {"message": "Vibe Trader API", "status": "running"}


@app.get("/api/health")
def health():
    """Liveness plus agent heartbeat"""
    controller = _controller()
    status = controller.status()
    return {
        "status": "ok",
        "agent": status["status"],
        "lastHeartbeat": status["lastHeartbeat"],
    }


@app.get("/api/agent/status")
def get_agent_status():
    """Get agent status"""
    return _controller().status()


@app.post("/api/agent/pause")
def pause_agent():
    """Pause the trading agent"""
    return _apply("pause")


@app.post("/api/agent/resume")
def resume_agent():
    """Resume the trading agent"""
    return _apply("resume")


@app.post("/api/agent/stop")
def stop_agent():
    """Stop the trading agent; the process exits once the loop ends"""
    return _apply("stop")


@app.post("/api/agent/control")
def control_agent(request: ControlRequest):
    return _apply(request.action.lower())


@app.get("/api/decisions")
def get_decisions(symbol: Optional[str] = None, limit: int = Query(default=50, ge=1, le=500)):
    """Most recent decisions, newest first"""
    return _controller().store.find_decisions(symbol=symbol, limit=limit)


@app.get("/api/trades")
def get_trades(limit: int = Query(default=50, ge=1, le=500)):
    """Most recent trades, newest first"""
    return _controller().store.find_trades()[:limit]


@app.get("/api/alerts")
def get_alerts(alert_type: Optional[str] = Query(default=None, alias="type"),
                     limit: int = Query(default=50, ge=1, le=500)):
    """Most recent alerts, newest first"""
    return _controller().store.find_alerts(alert_type=alert_type)[:limit]
