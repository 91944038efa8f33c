"""
Deployment gateway HTTP API.

Each request runs one straight pipeline:
  authenticate (identity provider) -> authorize app -> [authorize image] -> act -> respond
and any stage's failure short-circuits the rest. Route handlers are sync on purpose:
FastAPI runs them in its threadpool, so the blocking outbound calls only hold the
current request.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse

from deploygate.auth.userinfo import resolve_capabilities
from deploygate.authz.policy import authorize, authorize_app, authorize_image
from deploygate.errors import GatewayError
from deploygate.providers.k8s_provider import get_k8s_provider

logger = logging.getLogger(__name__)

_UVICORN_LOG_LEVELS = ("critical", "error", "warning", "info", "debug", "trace")


@dataclass(frozen=True)
class DeployRequest:
    app_name: str
    # None when the `image` query parameter is absent; rejected as malformed after auth.
    image_reference: Optional[str]
    container_name: Optional[str] = None

    @property
    def container(self) -> str:
        return self.container_name or self.app_name


def query_deployment(app_name: str, authorization: Optional[str]) -> Dict[str, Any]:
    caps = resolve_capabilities(authorization)
    authorize(caps, app_name)
    return get_k8s_provider().get_deployment(app_name)


def deploy_image(req: DeployRequest, authorization: Optional[str]) -> Dict[str, Any]:
    caps = resolve_capabilities(authorization)
    authorize_app(caps, req.app_name)
    authorize_image(caps, req.image_reference)
    return get_k8s_provider().patch_deployment_image(req.app_name, req.image_reference, req.container)


app = FastAPI(title="deploygate")


@app.exception_handler(GatewayError)
async def _gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    # No WWW-Authenticate on 401: the gateway does not negotiate auth schemes.
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests."""
    start_time = time.time()
    try:
        response = await call_next(request)
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
    process_time = time.time() - start_time
    logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
    return response


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@app.get("/deployments/{name}")
def get_deployment(
    name: str,
    authorization: Optional[str] = Header(None),
) -> Dict[str, Any]:
    """Return the current Deployment, if the caller's capabilities include the app."""
    return query_deployment(name, authorization)


@app.patch("/deployments/{name}")
def patch_deployment(
    name: str,
    image: Optional[str] = Query(None, description="repository:tag to deploy"),
    container: Optional[str] = Query(None, description="container name (defaults to the deployment name)"),
    authorization: Optional[str] = Header(None),
) -> Dict[str, Any]:
    """Set the image of one container, if both app and image repository are allowed."""
    req = DeployRequest(app_name=name, image_reference=image, container_name=container)
    return deploy_image(req, authorization)


def log_level_name() -> str:
    """LOG_LEVEL as a uvicorn level name; unknown values fall back to "info"."""
    name = (os.getenv("LOG_LEVEL") or "").strip().lower()
    return name if name in _UVICORN_LOG_LEVELS else "info"


def run(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Serve the gateway; LOG_LEVEL applies to both the deploygate and uvicorn loggers."""
    import uvicorn

    level_name = log_level_name()
    # "trace" only exists in uvicorn.
    level = logging.DEBUG if level_name == "trace" else logging.getLevelName(level_name.upper())
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    logging.getLogger("deploygate").setLevel(level)

    logger.info("deploygate listening on %s:%d (log_level=%s)", host, port, level_name)
    uvicorn.run(app, host=host, port=port, log_level=level_name)
