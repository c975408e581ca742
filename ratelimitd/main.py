from __future__ import annotations

import logging
from typing import Any, Dict

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import CFG
from .linkwatch import LinkWatcher
from .logging_setup import configure_runtime_logging
from .models import ClientDelete, ClientSet, DefaultsSet, DeviceDelete, Status
from .service import RateLimitService
from .storage import load_profiles
from .tc_cmd import RuleExecutor

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    Status.OK: 200,
    Status.INVALID_ARGUMENT: 400,
    Status.NOT_FOUND: 404,
    Status.UNKNOWN_ERROR: 500,
}

SERVICE = RateLimitService(RuleExecutor())
WATCHER = LinkWatcher(SERVICE.device_names, SERVICE.reload, CFG.link_poll_interval)

app = FastAPI(title="ratelimitd", version="1")


def get_service() -> RateLimitService:
    return SERVICE


def _reply(status: Status, **extra: Any) -> JSONResponse:
    body: Dict[str, Any] = {"ok": status == Status.OK, "status": int(status)}
    if status != Status.OK:
        body["error"] = status.name.lower()
    body.update(extra)
    return JSONResponse(status_code=_HTTP_CODES[status], content=body)


@app.exception_handler(RequestValidationError)
async def _on_validation_error(_req: Request, exc: RequestValidationError) -> JSONResponse:
    msgs = [str(e.get("msg") or "") for e in exc.errors()]
    return _reply(Status.INVALID_ARGUMENT, detail="; ".join(m for m in msgs if m))


@app.on_event("startup")
def _on_startup() -> None:
    configure_runtime_logging()
    SERVICE.defaults.update(load_profiles(CFG.defaults_file))
    WATCHER.start()


@app.on_event("shutdown")
def _on_shutdown() -> None:
    WATCHER.stop()
    SERVICE.shutdown()


@app.post("/api/v1/defaults")
def api_defaults_set(payload: DefaultsSet, svc: RateLimitService = Depends(get_service)) -> JSONResponse:
    return _reply(svc.defaults_set(payload.name, payload.rate, payload.rate_egress, payload.rate_ingress))


@app.post("/api/v1/client")
def api_client_set(payload: ClientSet, svc: RateLimitService = Depends(get_service)) -> JSONResponse:
    st = svc.client_set(
        payload.device,
        payload.address,
        rate=payload.rate,
        rate_egress=payload.rate_egress,
        rate_ingress=payload.rate_ingress,
        defaults=payload.defaults,
    )
    return _reply(st)


@app.post("/api/v1/client/delete")
def api_client_delete(payload: ClientDelete, svc: RateLimitService = Depends(get_service)) -> JSONResponse:
    return _reply(svc.client_delete(payload.address, payload.device))


@app.post("/api/v1/device/delete")
def api_device_delete(payload: DeviceDelete, svc: RateLimitService = Depends(get_service)) -> JSONResponse:
    return _reply(svc.device_delete(payload.device))


@app.post("/api/v1/reload")
def api_reload(svc: RateLimitService = Depends(get_service)) -> JSONResponse:
    st, summary = svc.reload()
    return _reply(st, summary=summary)


@app.get("/api/v1/status")
def api_status(svc: RateLimitService = Depends(get_service)) -> JSONResponse:
    return _reply(Status.OK, **svc.status())


def run() -> None:
    configure_runtime_logging()
    uvicorn.run(app, host=CFG.host, port=CFG.port, log_config=None)
