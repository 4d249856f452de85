import json
import logging
from datetime import datetime

from fastapi import (
    FastAPI,
    Depends,
    HTTPException,
    Request,
    status,
)
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, StrictStr
from pydantic import ValidationError as PayloadError

from .config import settings
from .storage import MessageStore, StorageError
from .validation import ValidationError, validate
from .logging_utils import logging_middleware, log_json
from .metrics import inc_message_operation, render_metrics


app = FastAPI(title="Message Board")

# Attach logging middleware
app.middleware("http")(logging_middleware)

NOT_FOUND_BODY = {"error": "Message not found"}

# assigned by the store, never accepted from a client
SERVER_FIELDS = ("id", "created_at")


# ---------- Pydantic Models ----------


class MessageIn(BaseModel):
    text: StrictStr


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    text: str
    created_at: datetime


class MessageCreated(BaseModel):
    id: int
    text: str
    success: bool = True


# ---------- Request shape errors ----------


class BadRequestBody(Exception):
    message = "Bad request body"
    result = "bad_request"


class MissingField(BadRequestBody):
    message = "Text is required"
    result = "missing_field"


class ReadOnlyField(BadRequestBody):
    result = "read_only_field"

    def __init__(self, field: str) -> None:
        super().__init__(field)
        self.message = f"Field '{field}' is assigned by the server"


class UnencodableText(BadRequestBody):
    # lone surrogates survive json.loads but cannot be stored
    message = "Text must be valid UTF-8"
    result = "invalid_text"


def parse_text(raw_body: bytes) -> str:
    """Pull the raw `text` string out of a JSON request body."""
    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise MissingField()
    if not isinstance(payload, dict):
        raise MissingField()
    for field in SERVER_FIELDS:
        if field in payload:
            raise ReadOnlyField(field)
    try:
        text = MessageIn.model_validate(payload).text
    except PayloadError:
        raise MissingField()
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        raise UnencodableText()
    return text


def _error(request: Request, status_code: int, body: dict, op: str, result: str) -> JSONResponse:
    inc_message_operation(op, result)
    request.state.log_extra.update({"result": result})
    return JSONResponse(status_code=status_code, content=body)


# ---------- Startup / Shutdown ----------


@app.on_event("startup")
def on_startup() -> None:
    # creates the schema on first open
    app.state.store = MessageStore(settings.DATABASE_URL).open()


@app.on_event("shutdown")
def on_shutdown() -> None:
    store = getattr(app.state, "store", None)
    if store is not None:
        store.close()


def get_store(request: Request) -> MessageStore:
    return request.app.state.store


# ---------- Exception handlers ----------


@app.exception_handler(StorageError)
async def storage_exception_handler(request: Request, exc: StorageError):
    log_json(
        logging.ERROR,
        request_id=getattr(request.state, "request_id", None),
        method=request.method,
        path=request.url.path,
        error=str(exc),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Storage failure"},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    if isinstance(getattr(request.state, "log_extra", None), dict):
        request.state.log_extra.update({"result": "request_validation_error"})
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_encoder(exc.errors())},
    )


# ---------- Endpoints ----------


@app.get("/health/live")
def health_live():
    # always 200 once running
    return {"status": "ok"}


@app.get("/health/ready")
def health_ready(store: MessageStore = Depends(get_store)):
    try:
        store.ping()
    except StorageError as e:
        raise HTTPException(status_code=503, detail=f"DB error: {e}")
    return {"status": "ok"}


@app.get("/messages", response_model=list[MessageOut])
def list_messages(store: MessageStore = Depends(get_store)):
    return store.get_all()


@app.post("/messages", response_model=MessageCreated)
async def create_message(request: Request, store: MessageStore = Depends(get_store)):
    raw_body = await request.body()
    try:
        text = validate(parse_text(raw_body))
    except BadRequestBody as e:
        return _error(request, 400, {"error": e.message}, "create", e.result)
    except ValidationError as e:
        return _error(
            request, 400, {"error": e.message, "kind": e.kind}, "create", "validation_error"
        )

    try:
        message_id = await run_in_threadpool(store.create, text)
    except StorageError:
        inc_message_operation("create", "storage_error")
        raise

    inc_message_operation("create", "ok")
    request.state.log_extra.update({"message_id": message_id, "result": "created"})
    return MessageCreated(id=message_id, text=text)


@app.get("/messages/{message_id}", response_model=MessageOut)
def get_message(message_id: int, store: MessageStore = Depends(get_store)):
    message = store.get_by_id(message_id)
    if message is None:
        return JSONResponse(status_code=404, content=NOT_FOUND_BODY)
    return message


@app.put("/messages/{message_id}", response_model=MessageOut)
async def update_message(
    message_id: int,
    request: Request,
    store: MessageStore = Depends(get_store),
):
    raw_body = await request.body()
    try:
        text = validate(parse_text(raw_body))
    except BadRequestBody as e:
        return _error(request, 400, {"error": e.message}, "update", e.result)
    except ValidationError as e:
        return _error(
            request, 400, {"error": e.message, "kind": e.kind}, "update", "validation_error"
        )

    try:
        updated = await run_in_threadpool(store.update, message_id, text)
        message = await run_in_threadpool(store.get_by_id, message_id) if updated else None
    except StorageError:
        inc_message_operation("update", "storage_error")
        raise

    request.state.log_extra.update({"message_id": message_id})
    if message is None:
        # either no row matched or it was deleted right after the update
        return _error(request, 404, NOT_FOUND_BODY, "update", "not_found")

    inc_message_operation("update", "ok")
    request.state.log_extra.update({"result": "updated"})
    return message


@app.delete("/messages/{message_id}")
def delete_message(
    message_id: int,
    request: Request,
    store: MessageStore = Depends(get_store),
):
    try:
        deleted = store.delete(message_id)
    except StorageError:
        inc_message_operation("delete", "storage_error")
        raise

    request.state.log_extra.update({"message_id": message_id})
    if not deleted:
        return _error(request, 404, NOT_FOUND_BODY, "delete", "not_found")

    inc_message_operation("delete", "ok")
    request.state.log_extra.update({"result": "deleted"})
    return {"success": True}


@app.get("/metrics")
def metrics():
    text = render_metrics()
    return PlainTextResponse(content=text, media_type="text/plain")
