"""FastAPI server running over Unix Domain Socket."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse, Response

from intercept_agent import __version__
from intercept_agent.daemon.core import DaemonCore
from intercept_agent.daemon.models import ActivateRequest, DeactivateRequest
from intercept_agent.errors import AgentError

logger = structlog.get_logger()

ResponsePayload = dict[str, Any]
EndpointResponse = Response | ResponsePayload


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage daemon lifecycle."""
    logger.info("daemon_starting")
    app.state.core = DaemonCore()
    await app.state.core.start()
    yield
    logger.info("daemon_stopping")
    await app.state.core.stop()


app = FastAPI(
    title="Intercept Agent Daemon",
    version=__version__,
    lifespan=lifespan,
)


def _error_response(error: AgentError, status_code: int = 400) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "error": error.to_dict()},
    )


def _lookup_status(error: AgentError) -> int:
    return 404 if error.code == "ERR_INTERCEPTOR_NOT_FOUND" else 400


@app.get("/health")
async def health() -> dict[str, Any]:
    """Health check endpoint."""
    core: DaemonCore = app.state.core
    return {
        "status": "ok",
        "running": core.is_running,
        "interceptors": sorted(core.interceptors),
    }


@app.get("/interceptors")
async def list_interceptors(proxy_port: int | None = None) -> dict[str, Any]:
    """Describe every interceptor, including activation state for ``proxy_port``."""
    core: DaemonCore = app.state.core
    described = [
        await core.describe(interceptor, proxy_port) for interceptor in core.interceptors.values()
    ]
    return {"interceptors": described}


@app.post("/interceptors/deactivate-all", response_model=None)
async def deactivate_all() -> EndpointResponse:
    """Deactivate every interceptor for every proxy port."""
    core: DaemonCore = app.state.core
    await core.deactivate_all()
    return {"status": "done"}


@app.post("/interceptors/{interceptor_id}/activate", response_model=None)
async def activate(interceptor_id: str, req: ActivateRequest) -> EndpointResponse:
    """Activate an interceptor for a proxy port."""
    core: DaemonCore = app.state.core
    try:
        interceptor = core.get_interceptor(interceptor_id)
        result = await interceptor.activate(req.proxy_port, req.options)
    except AgentError as exc:
        logger.warning(
            "interceptor_activate_failed",
            interceptor=interceptor_id,
            proxy_port=req.proxy_port,
            code=exc.code,
        )
        return _error_response(exc, status_code=_lookup_status(exc))
    except Exception as exc:
        logger.exception(
            "interceptor_activate_failed", interceptor=interceptor_id, proxy_port=req.proxy_port
        )
        return _error_response(
            AgentError(
                code="ERR_ACTIVATION_FAILED",
                message=str(exc) or type(exc).__name__,
                context={"interceptor": interceptor_id, "proxy_port": req.proxy_port},
                remediation="Check the daemon log for details and try again",
            ),
            status_code=500,
        )
    return {
        "status": "done",
        "interceptor": interceptor_id,
        "proxy_port": req.proxy_port,
        "result": result,
    }


@app.post("/interceptors/{interceptor_id}/deactivate", response_model=None)
async def deactivate(interceptor_id: str, req: DeactivateRequest) -> EndpointResponse:
    """Deactivate an interceptor for a proxy port."""
    core: DaemonCore = app.state.core
    try:
        interceptor = core.get_interceptor(interceptor_id)
    except AgentError as exc:
        return _error_response(exc, status_code=_lookup_status(exc))
    await interceptor.deactivate(req.proxy_port)
    return {"status": "done", "interceptor": interceptor_id, "proxy_port": req.proxy_port}
