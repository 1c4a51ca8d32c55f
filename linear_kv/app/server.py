from __future__ import annotations

import logging
import time
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from .checker import check_history
from .config import Settings
from .errors import InvalidArgument, LinearKVError, MalformedInput, MethodNotSupported
from .store import KeyValueStore
from .timeline import render_timeline

logger = logging.getLogger(__name__)

UNSUPPORTED_METHODS = ("DELETE", "PATCH", "OPTIONS", "HEAD", "TRACE")


class WriteRequest(BaseModel):
    requestId: str = ""
    key: str = ""
    value: str = ""


def get_store(request: Request) -> KeyValueStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def _parse_write(request: Request) -> WriteRequest:
    body = await request.body()
    try:
        return WriteRequest.model_validate_json(body)
    except ValidationError as exc:
        raise MalformedInput(f"invalid JSON: {exc.error_count()} error(s)") from exc


async def _handle_error(request: Request, exc: LinearKVError) -> JSONResponse:
    logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


def create_app(settings: Optional[Settings] = None, store: Optional[KeyValueStore] = None) -> FastAPI:
    settings = settings or Settings()
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(title="Linearizable KV Store")
    app.state.settings = settings
    app.state.store = store if store is not None else KeyValueStore()
    app.add_exception_handler(LinearKVError, _handle_error)

    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("linear-kv listening on %s:%s", settings.host, settings.port)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        client = request.client.host if request.client else "-"
        logger.info(
            "%s %s %s %s %.2fms",
            client,
            request.method,
            request.url,
            response.status_code,
            (time.perf_counter() - start) * 1000,
        )
        return response

    @app.get("/health")
    async def health(store: KeyValueStore = Depends(get_store)) -> dict:
        return {"status": "ok", "totalOps": len(store.log)}

    @app.api_route("/kv", methods=["PUT", "POST"])
    async def write_key(request: Request, store: KeyValueStore = Depends(get_store)) -> dict:
        payload = await _parse_write(request)
        outcome = await store.put(payload.requestId, payload.key, payload.value)
        return {"result": outcome.value}

    @app.get("/kv")
    async def read_key(
        key: str = "",
        x_request_id: Optional[str] = Header(default=None),
        store: KeyValueStore = Depends(get_store),
    ) -> dict:
        if not key:
            raise InvalidArgument("key required")
        result = await store.get(key, x_request_id or "")
        body = {"key": result.key, "found": result.found, "result": result.outcome.value}
        if result.found:
            body["value"] = result.value
        return body

    @app.api_route("/kv", methods=list(UNSUPPORTED_METHODS))
    async def unsupported(request: Request) -> None:
        raise MethodNotSupported(f"method {request.method} not allowed")

    @app.get("/history")
    async def history(store: KeyValueStore = Depends(get_store)) -> List[dict]:
        return [record.as_json() for record in store.log.snapshot()]

    @app.get("/timeline", response_class=PlainTextResponse)
    async def timeline(
        store: KeyValueStore = Depends(get_store),
        settings: Settings = Depends(get_settings),
    ) -> PlainTextResponse:
        lines = render_timeline(
            store.log.snapshot(),
            width=settings.timeline_width,
            value_width=settings.timeline_value_width,
        )
        return PlainTextResponse("\n".join(lines) + "\n")

    @app.get("/check")
    async def check(store: KeyValueStore = Depends(get_store)) -> dict:
        result = await run_in_threadpool(check_history, store.log.snapshot())
        return result.as_json()

    return app
