from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from chorus.bootstrap import build_app, new_orchestrator, shutdown
from chorus.core.errors import ChorusError, InvalidInput, PersistenceError, SessionNotFound
from chorus.core.models import DocumentFile, GenerationState, Message, ModelInfo
from chorus.core.orchestrator import ChatOrchestrator
from chorus.logging_config import configure_logging


class ChatCreateRequest(BaseModel):
    session_id: Optional[str] = None
    provider: Optional[str] = None


class MessageRequest(BaseModel):
    message: str
    web_search: Optional[bool] = None


class SelectionRequest(BaseModel):
    provider: Optional[str] = None
    model: Optional[str] = None


class SessionPatch(BaseModel):
    title: Optional[str] = None
    pinned: Optional[bool] = None


def _model_json(m: ModelInfo) -> Dict[str, Any]:
    return {"id": m.id, "name": m.display_name, "description": m.description, "context_length": m.context_length}


def _message_json(m: Message) -> Dict[str, Any]:
    return {
        "id": m.id,
        "role": m.role,
        "content": m.content,
        "created_at": m.created_at.isoformat(),
        "persisted": m.persisted,
    }


def _chat_json(key: str, orch: ChatOrchestrator) -> Dict[str, Any]:
    return {
        "key": key,
        "session_id": orch.session_id,
        "title": orch.title,
        "provider": orch.selection.provider_id,
        "model": orch.selection.model_id,
        "state": orch.state.value,
        "web_search": orch.web_search,
        "messages": [_message_json(m) for m in orch.transcript],
    }


def create_app(config_path: Path, *, ctx: Optional[Dict[str, Any]] = None) -> FastAPI:
    """
    HTTP surface over the chat core. Each open conversation is an in-memory
    ChatOrchestrator addressed by an opaque key; saved sessions are managed
    through the repository directly.
    """
    ctx = ctx or build_app(Path(config_path))

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await shutdown(ctx)

    app = FastAPI(lifespan=lifespan)
    app.state.ctx = ctx
    app.state.chats: Dict[str, ChatOrchestrator] = {}
    registry = ctx["registry"]
    repository = ctx["repository"]
    user_id = (ctx["cfg"].get("runtime") or {}).get("user_id")

    @app.exception_handler(ChorusError)
    async def chorus_error(_request: Request, exc: ChorusError):
        if isinstance(exc, InvalidInput):
            status = 400
        elif isinstance(exc, SessionNotFound):
            status = 404
        elif isinstance(exc, PersistenceError):
            status = 500
        else:
            status = 502
        return JSONResponse({"detail": str(exc)}, status_code=status)

    def _chat(key: str) -> ChatOrchestrator:
        orch = app.state.chats.get(key)
        if orch is None:
            raise HTTPException(status_code=404, detail="Unknown chat")
        return orch

    # ----- providers -----

    @app.get("/api/providers")
    def api_providers():
        return [
            {
                "id": p.id,
                "name": p.display_name,
                "default_model": registry.resolve_default_model(p.id),
                "models": [_model_json(m) for m in p.models],
            }
            for p in registry.providers()
        ]

    @app.get("/api/providers/{provider_id}/models")
    async def api_models(provider_id: str):
        registry.info(provider_id)
        return [_model_json(m) for m in await registry.fetch_models(provider_id)]

    # ----- chats -----

    @app.post("/api/chats")
    async def api_chat_create(req: ChatCreateRequest):
        orch = new_orchestrator(ctx, session_id=req.session_id, provider_id=req.provider)
        if req.session_id:
            await orch.load()
        key = str(uuid.uuid4())
        app.state.chats[key] = orch
        return _chat_json(key, orch)

    @app.get("/api/chats/{key}")
    def api_chat_get(key: str):
        return _chat_json(key, _chat(key))

    @app.delete("/api/chats/{key}")
    def api_chat_close(key: str):
        orch = _chat(key)
        orch.stop_generation()
        del app.state.chats[key]
        return {"ok": True}

    @app.post("/api/chats/{key}/messages")
    async def api_send(key: str, req: MessageRequest):
        orch = _chat(key)
        if not req.message.strip():
            raise HTTPException(status_code=400, detail="Please enter a message")
        if orch.state in (GenerationState.SUBMITTED, GenerationState.STREAMING):
            raise HTTPException(status_code=409, detail="A response is still being generated")

        queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        target: Dict[str, Any] = {"id": None, "sent": 0}

        def on_update(msg: Message) -> None:
            if msg.role != "assistant" or msg.local_only:
                return
            if target["id"] is None:
                target["id"] = msg.id
            if msg.id == target["id"] and len(msg.content) > target["sent"]:
                queue.put_nowait(msg.content[target["sent"]:])
                target["sent"] = len(msg.content)

        orch.add_listener(on_update)
        task = asyncio.create_task(orch.send_user_message(req.message, use_web_search=req.web_search))
        task.add_done_callback(lambda _t: queue.put_nowait(None))

        async def body():
            try:
                while True:
                    delta = await queue.get()
                    if delta is None:
                        break
                    yield delta
                await task
            finally:
                orch.remove_listener(on_update)
                if not task.done():
                    # client went away mid-stream
                    orch.stop_generation()

        return StreamingResponse(body(), media_type="text/plain; charset=utf-8")

    @app.post("/api/chats/{key}/stop")
    def api_stop(key: str):
        orch = _chat(key)
        orch.stop_generation()
        return {"state": orch.state.value}

    @app.put("/api/chats/{key}/selection")
    async def api_selection(key: str, req: SelectionRequest):
        orch = _chat(key)
        if req.provider:
            orch.select_provider(req.provider)
        if req.model:
            orch.select_model(req.model)
        return {"provider": orch.selection.provider_id, "model": orch.selection.model_id}

    @app.post("/api/chats/{key}/models/refresh")
    async def api_refresh(key: str):
        orch = _chat(key)
        models = await orch.refresh_models()
        return {"model": orch.selection.model_id, "models": [_model_json(m) for m in models]}

    @app.put("/api/chats/{key}/web-search")
    def api_web_search(key: str, enabled: bool):
        orch = _chat(key)
        orch.set_web_search(enabled)
        return {"web_search": orch.web_search}

    @app.post("/api/chats/{key}/documents")
    async def api_document(key: str, file: UploadFile = File(...), hint: Optional[str] = Form(None)):
        orch = _chat(key)
        data = await file.read()
        doc = DocumentFile(
            name=file.filename or "upload",
            content_type=file.content_type or "application/octet-stream",
            data=data,
        )
        result = await orch.process_document(doc, hint)
        if result is None:
            detail = orch.notifications[-1].message if orch.notifications else "Failed to process document"
            raise HTTPException(status_code=422, detail=detail)
        return {"metadata": result.metadata, "text": result.text}

    @app.delete("/api/chats/{key}/analysis")
    def api_clear_analysis(key: str):
        _chat(key).clear_analysis()
        return {"ok": True}

    @app.post("/api/chats/{key}/reset")
    def api_reset(key: str):
        orch = _chat(key)
        orch.reset()
        return _chat_json(key, orch)

    # ----- saved sessions -----

    @app.get("/api/sessions")
    async def api_sessions():
        sessions = await repository.list_sessions(user_id)
        return [
            {
                "id": s.id,
                "title": s.title,
                "pinned": s.pinned,
                "created_at": s.created_at.isoformat(),
                "updated_at": s.updated_at.isoformat(),
            }
            for s in sessions
        ]

    @app.get("/api/sessions/{session_id}/messages")
    async def api_session_messages(session_id: str) -> List[Dict[str, Any]]:
        return [_message_json(m) for m in await repository.list_messages(session_id)]

    @app.patch("/api/sessions/{session_id}")
    async def api_session_patch(session_id: str, req: SessionPatch):
        if req.title is not None:
            if not req.title.strip():
                raise HTTPException(status_code=400, detail="Title cannot be empty")
            await repository.update_session_title(session_id, req.title.strip())
        if req.pinned is not None:
            await repository.update_session_pinned(session_id, req.pinned)
        s = await repository.get_session(session_id)
        return {"id": s.id, "title": s.title, "pinned": s.pinned}

    @app.delete("/api/sessions/{session_id}")
    async def api_session_delete(session_id: str):
        await repository.delete_session(session_id)
        return {"ok": True}

    return app


def run(
    *,
    config: Path,
    host: str = "127.0.0.1",
    port: int = 8000,
) -> None:
    import uvicorn

    app = create_app(config)
    log_cfg = app.state.ctx["cfg"].get("logging") or {}
    configure_logging(log_cfg.get("level"), log_cfg.get("file"))
    uvicorn.run(app, host=host, port=port)
