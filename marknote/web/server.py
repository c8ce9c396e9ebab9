"""FastAPI application exposing the MarkNote HTTP API."""

from __future__ import annotations

import contextlib
import contextvars
import logging
import os
import uuid
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import AppConfig
from ..errors import BadRequestError, MarkNoteError, UnauthorizedError
from ..services.events import APP_EVENT, emit_event
from ..services.images import resolve_child
from ..services.multipart import UploadedFile, boundary_from_content_type, decode_single_file
from ..services.notes import DEFAULT_PAGE_SIZE, NoteRecord, note_filename
from ..services.workspace import NoteWorkspace

_DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
try:
    _MAX_UPLOAD_BYTES = int(
        (os.environ.get("MARKNOTE_MAX_UPLOAD_BYTES") or "").strip() or _DEFAULT_MAX_UPLOAD_BYTES
    )
except ValueError:
    _MAX_UPLOAD_BYTES = _DEFAULT_MAX_UPLOAD_BYTES


def get_max_upload_bytes() -> int:
    """Return the configured maximum upload size in bytes."""

    return int(_MAX_UPLOAD_BYTES)


_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "marknote_request_id",
    default=None,
)
_ACTOR_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "marknote_actor",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


def _format_actor_label(role: str, detail: Optional[str] = None) -> str:
    base = role.strip() if role else "actor"
    if detail is None:
        return base
    suffix = str(detail).strip()
    return f"{base}:{suffix}" if suffix else base


def _collect_correlation_context() -> Dict[str, str]:
    context: Dict[str, str] = {}
    request_id = _REQUEST_ID_VAR.get()
    if request_id:
        context["request_id"] = str(request_id)
    actor = _ACTOR_VAR.get()
    if actor:
        context["actor"] = str(actor)
    return context


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope_state = scope.get("state")
        if scope_state is None:
            scope_state = {}
            scope["state"] = scope_state
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        method = scope.get("method")
        actor_hint = _format_actor_label("request", method.upper() if isinstance(method, str) else None)
        request_token = _REQUEST_ID_VAR.set(request_id)
        actor_token = _ACTOR_VAR.set(actor_hint)

        try:
            await self.app(scope, receive, send)
        finally:
            _ACTOR_VAR.reset(actor_token)
            _REQUEST_ID_VAR.reset(request_token)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects correlation context into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra)
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        correlation = _collect_correlation_context()
        for key, value in correlation.items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})
EVENT_LOGGER = ContextualLoggerAdapter(logging.getLogger("marknote.events"), {})


def _emit_event(
    event_type: str,
    message: str,
    *,
    context: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
) -> None:
    emit_event(
        event_type,
        message,
        context=context,
        correlation=_collect_correlation_context(),
        duration_ms=duration_ms,
        level=level,
        logger=EVENT_LOGGER,
    )


def _log_event(message: str, **context: Any) -> None:
    _emit_event(APP_EVENT, message, context=context)


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LoginPayload(_Payload):
    username: Optional[str] = None
    password: Optional[str] = None
    captcha_id: Optional[str] = Field(default=None, alias="captchaId")
    captcha_code: Optional[str] = Field(default=None, alias="captchaCode")


class SavePayload(_Payload):
    path: Optional[str] = None
    content: Optional[str] = None


class DeletePayload(_Payload):
    path: Optional[str] = None


class CreatePayload(_Payload):
    title: Optional[str] = None


class RenamePayload(_Payload):
    path: Optional[str] = None
    new_title: Optional[str] = Field(default=None, alias="newTitle")


class SharePayload(_Payload):
    path: Optional[str] = None
    expire_days: Optional[float] = Field(default=None, alias="expireDays")


def _serialize_note(record: NoteRecord) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "filename": record.filename,
        "title": record.title,
        "path": record.path,
        "size": record.size,
        "lastModified": record.last_modified,
    }
    if record.id is not None:
        payload["id"] = record.id
    return payload


def _require(*values: Optional[str]) -> None:
    if any(not value for value in values):
        raise BadRequestError()


def _upload_too_large() -> HTTPException:
    return HTTPException(status_code=413, detail="Upload exceeds the size limit")


async def _read_limited_body(request: Request) -> bytes:
    """Return the request body, rejecting it once it exceeds the upload limit."""

    limit = get_max_upload_bytes()
    declared = request.headers.get("content-length")
    if limit > 0 and declared and declared.isdigit() and int(declared) > limit:
        raise _upload_too_large()

    chunks = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if limit > 0 and received > limit:
            raise _upload_too_large()
        chunks.append(chunk)
    return b"".join(chunks)


async def _decode_upload(request: Request) -> UploadedFile:
    body = await _read_limited_body(request)
    boundary = boundary_from_content_type(request.headers.get("content-type"))
    return decode_single_file(body, boundary)


def _normalize_root_path(value: Optional[str]) -> str:
    if value is None:
        return ""
    normalized = value.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


def create_app(
    workspace: NoteWorkspace,
    *,
    config: AppConfig | None = None,
    root_path: str | None = None,
) -> FastAPI:
    """Return a FastAPI application serving *workspace*."""

    config = config or workspace.config

    @contextlib.asynccontextmanager
    async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
        _log_event("MarkNote API starting", notes_root=config.notes_root)
        try:
            yield
        finally:
            workspace.close()
            _log_event("MarkNote API stopped")

    app = FastAPI(
        title="MarkNote",
        description="Personal Markdown notes with share links",
        root_path=_normalize_root_path(root_path),
        lifespan=_lifespan,
    )
    app.state.server = None
    app.state.workspace = workspace

    workspace.notes.configure_event_emitter(_emit_event)

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Captcha-Id"],
    )

    @app.exception_handler(MarkNoteError)
    async def _handle_marknote_error(_request: Request, error: MarkNoteError) -> JSONResponse:
        if error.status_code >= 500:
            LOGGER.error("Request failed: %s", error.message)
        return JSONResponse({"error": error.message}, status_code=error.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def _handle_http_error(_request: Request, error: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            {"error": error.detail},
            status_code=error.status_code,
            headers=getattr(error, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _handle_validation_error(
        _request: Request, error: RequestValidationError
    ) -> JSONResponse:
        LOGGER.debug("Rejected request parameters: %s", error.errors())
        return JSONResponse({"error": BadRequestError.default_message}, status_code=400)

    @app.exception_handler(Exception)
    async def _handle_unexpected_error(_request: Request, error: Exception) -> JSONResponse:
        LOGGER.exception("Unhandled error while serving request")
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    @app.get("/api/captcha")
    async def issue_captcha() -> Response:
        issued = workspace.captcha.issue()
        _log_event("Issued captcha", pending=len(workspace.captcha))
        return Response(
            content=issued.image,
            media_type=issued.content_type,
            headers={"X-Captcha-Id": issued.challenge_id, "Cache-Control": "no-store"},
        )

    @app.post("/api/login")
    async def login(request: Request) -> JSONResponse:
        def _reject(message: str, status_code: int) -> JSONResponse:
            _log_event("Login rejected", reason=message)
            return JSONResponse({"success": False, "message": message}, status_code=status_code)

        try:
            payload = LoginPayload.model_validate_json(await request.body() or b"{}")
        except ValidationError:
            return _reject(BadRequestError.default_message, 400)

        try:
            if not (payload.username and payload.password and payload.captcha_id and payload.captcha_code):
                raise BadRequestError()
            if not workspace.captcha.verify(payload.captcha_id, payload.captcha_code):
                raise BadRequestError("Incorrect captcha")
            if not workspace.credentials.verify(payload.username, payload.password):
                raise UnauthorizedError()
        except MarkNoteError as error:
            if error.status_code >= 500:
                LOGGER.error("Login configuration problem: %s", error.message)
            return _reject(error.message, error.status_code)

        _log_event("Login succeeded")
        return JSONResponse({"success": True, "message": "Login successful"})

    @app.get("/api/files")
    async def list_files(
        page: int = Query(1, ge=1),
        page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, alias="pageSize"),
    ) -> Dict[str, Any]:
        result = workspace.notes.list(page=page, page_size=page_size)
        _log_event("Listed notes", page=page, page_size=page_size, total=result.total)
        return {
            "data": [_serialize_note(record) for record in result.items],
            "total": result.total,
            "page": result.page,
            "pageSize": result.page_size,
            "hasMore": result.has_more,
        }

    @app.get("/api/file/{filename}")
    async def get_file_json(filename: str) -> Dict[str, Any]:
        return {"content": workspace.notes.read(filename)}

    @app.get("/file/{filename}")
    async def get_file_raw(filename: str) -> PlainTextResponse:
        return PlainTextResponse(workspace.notes.read(filename))

    @app.get("/log/{filename}")
    async def get_log_file(filename: str) -> PlainTextResponse:
        try:
            target = resolve_child(config.log_root, filename)
        except ValueError as error:
            raise HTTPException(status_code=404, detail="File not found") from error
        credentials_file = config.credentials_file
        if not target.is_file() or (credentials_file.is_file() and target.samefile(credentials_file)):
            raise HTTPException(status_code=404, detail="File not found")
        return PlainTextResponse(target.read_text(encoding="utf-8"))

    @app.get("/image/{filename}")
    async def get_image(filename: str) -> Response:
        data, content_type = workspace.images.read(filename)
        return Response(content=data, media_type=content_type)

    @app.post("/api/save")
    async def save_note(payload: SavePayload) -> Dict[str, Any]:
        if not payload.path or payload.content is None:
            raise BadRequestError()
        workspace.notes.save(payload.path, payload.content)
        return {"success": True}

    @app.post("/api/delete")
    async def delete_note(payload: DeletePayload) -> Dict[str, Any]:
        _require(payload.path)
        removed = workspace.notes.delete(payload.path)
        _log_event("Deleted note", path=payload.path, images_removed=len(removed))
        return {"success": True}

    @app.post("/api/create")
    async def create_note(payload: CreatePayload) -> Dict[str, Any]:
        _require(payload.title)
        record = workspace.notes.create(payload.title)
        _log_event("Created note", filename=record.filename)
        return {"success": True, "note": _serialize_note(record)}

    @app.post("/api/rename")
    async def rename_note(payload: RenamePayload) -> Dict[str, Any]:
        _require(payload.path, payload.new_title)
        record = workspace.notes.rename(payload.path, payload.new_title)
        _log_event("Renamed note", path=payload.path, filename=record.filename)
        return {"success": True, "note": _serialize_note(record)}

    @app.post("/api/upload")
    async def upload_note(request: Request) -> Dict[str, Any]:
        uploaded = await _decode_upload(request)
        try:
            content = uploaded.text()
        except UnicodeDecodeError as error:
            raise BadRequestError("Invalid file") from error
        record = workspace.notes.create_from_upload(uploaded.filename, content)
        _log_event("Uploaded note", filename=record.filename, size=record.size)
        return {"success": True, "note": _serialize_note(record)}

    @app.post("/api/upload-image")
    async def upload_image(file: UploadFile = File(...)) -> Dict[str, Any]:
        limit = get_max_upload_bytes()
        data = await file.read(limit + 1) if limit > 0 else await file.read()
        if limit > 0 and len(data) > limit:
            raise _upload_too_large()
        original_name = Path(file.filename or "").name
        if not original_name or not data:
            raise BadRequestError("Invalid file")
        filename = workspace.images.save(original_name, data)
        _log_event("Uploaded image", filename=filename, size=len(data))
        return {"success": True, "imageUrl": f"/image/{filename}"}

    @app.post("/api/share")
    async def create_share(payload: SharePayload, request: Request) -> Dict[str, Any]:
        _require(payload.path)
        host = request.headers.get("host") or request.url.netloc
        link = workspace.shares.create(
            note_filename(payload.path),
            payload.expire_days,
            host=host,
        )
        _log_event("Created share link", share_id=link.share_id, filename=link.record.filename)
        return {"success": True, "shareId": link.share_id, "shareUrl": link.share_url}

    @app.get("/api/share/{share_id}")
    async def resolve_share(share_id: str) -> Dict[str, Any]:
        shared = workspace.shares.resolve(share_id)
        return {"content": shared.content, "filename": shared.filename}

    frontend_root = config.frontend_root
    app.mount(
        "/assets",
        StaticFiles(directory=frontend_root / "assets", check_dir=False),
        name="assets",
    )

    def _frontend_index() -> Path:
        index_file = frontend_root / "index.html"
        if not index_file.is_file():
            raise HTTPException(status_code=404, detail="Not Found")
        return index_file

    @app.get("/{requested_path:path}")
    async def spa_fallback(requested_path: str) -> FileResponse:
        """Serve built front-end files, falling back to ``index.html`` for client routes."""

        normalized = requested_path.strip("/")
        if normalized == "api" or normalized.startswith("api/"):
            raise HTTPException(status_code=404, detail="Not Found")
        if normalized and "/" not in normalized:
            try:
                candidate = resolve_child(frontend_root, normalized)
            except ValueError:
                candidate = None
            if candidate is not None and candidate.is_file():
                return FileResponse(candidate)
        return FileResponse(_frontend_index())

    return app


__all__ = ["create_app", "get_max_upload_bytes"]
