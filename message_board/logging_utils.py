import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request, Response

from .config import settings
from .metrics import inc_http_request, observe_latency_ms


logger = logging.getLogger("message_board")
logger.setLevel(settings.LOG_LEVEL)
handler = logging.StreamHandler()
handler.setLevel(settings.LOG_LEVEL)
logger.addHandler(handler)


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_json(level: int, **fields) -> None:
    fields.setdefault("ts", iso_now())
    fields.setdefault("level", logging.getLevelName(level).lower())
    logger.log(level, json.dumps(fields, default=str))


def _route_path(request: Request) -> str:
    # label metrics by route template so /messages/{message_id} stays one series
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


async def logging_middleware(request: Request, call_next: Callable) -> Response:
    request_id = str(uuid.uuid4())
    start = time.perf_counter()

    # store request_id in state so handlers can use it if needed
    request.state.request_id = request_id
    request.state.log_extra = {}

    response: Response
    try:
        response = await call_next(request)
    except Exception:
        latency_ms = (time.perf_counter() - start) * 1000.0
        inc_http_request(_route_path(request), 500)
        observe_latency_ms(latency_ms)
        log_json(
            logging.ERROR,
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status=500,
            latency_ms=round(latency_ms, 2),
        )
        raise

    latency_ms = (time.perf_counter() - start) * 1000.0
    status_code = response.status_code

    # metrics
    inc_http_request(_route_path(request), status_code)
    observe_latency_ms(latency_ms)

    log = {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "status": status_code,
        "latency_ms": round(latency_ms, 2),
    }

    # add extra fields from handlers (e.g. message id, result)
    if isinstance(getattr(request.state, "log_extra", None), dict):
        log.update(request.state.log_extra)

    log_json(logging.INFO, **log)
    return response
