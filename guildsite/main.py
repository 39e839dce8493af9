from __future__ import annotations

import asyncio
import json
import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Dict, List, Optional

import httpx
from fastapi import FastAPI, File, Form, HTTPException, Query, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from guildsite.config import API_PREFIX, MEDIA_URL_PREFIX, Settings, load_settings
from guildsite.errors import StorageError, UploadRejectedError
from guildsite.models.schemas import MetaItemIn
from guildsite.services.chat import ChatBroadcaster, ChatConnection, handle_send
from guildsite.services.chat_store import ChatStore
from guildsite.services.meta import CATEGORIES, MetaStore
from guildsite.services.reports import ReportStore
from guildsite.services.security import SecurityMonitor
from guildsite.services.server_status import ServerStatusClient
from guildsite.services.uploads import MediaUploadStore
from guildsite.utils.helpers import Clock, client_source, ensure_dir
from guildsite.utils.logger import get_logger

log = get_logger("main")


def create_app(
    settings: Optional[Settings] = None,
    clock: Optional[Clock] = None,
    webhook_transport: Optional[httpx.AsyncBaseTransport] = None,
    status_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or load_settings()

    for d in (settings.data_dir, settings.reports_dir, settings.uploads_dir):
        ensure_dir(d)

    # ──────────────────────────────────────────────────────────────────────────
    # Services
    # ──────────────────────────────────────────────────────────────────────────

    monitor = SecurityMonitor.from_settings(settings, clock=clock, transport=webhook_transport)
    chat_store = ChatStore(settings.chat_file, limit=settings.chat_limit)
    chat = ChatBroadcaster(
        chat_store,
        clock=clock,
        throttle_ms=settings.chat_throttle_ms,
        text_max=settings.chat_text_max,
        author_max=settings.chat_author_max,
        url_max=settings.chat_url_max,
        anonymous=settings.chat_anonymous,
    )
    reports = ReportStore(settings.reports_dir)
    meta = MetaStore(settings.data_dir)
    uploads = MediaUploadStore(
        settings.uploads_dir,
        max_bytes=settings.upload_max_bytes,
        allowed_mimes=settings.allowed_mimes,
    )
    status_client = ServerStatusClient(
        settings.status_api_base,
        timeout_s=settings.status_timeout_s,
        transport=status_transport,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        pruner = asyncio.create_task(monitor.run_pruner())
        log.info(
            "Backend ready (data=%s, reports=%s, backup webhook %s)",
            os.path.abspath(settings.data_dir),
            os.path.abspath(settings.reports_dir),
            "configured" if monitor.trigger.configured else "not configured",
        )
        try:
            yield
        finally:
            pruner.cancel()
            try:
                await pruner
            except asyncio.CancelledError:
                pass

    app = FastAPI(title="Guildsite community backend", lifespan=lifespan)
    app.state.settings = settings
    app.state.monitor = monitor
    app.state.chat = chat

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ──────────────────────────────────────────────────────────────────────────
    # Request metrics
    # ──────────────────────────────────────────────────────────────────────────

    @app.middleware("http")
    async def record_traffic(request: Request, call_next):
        peer = request.client.host if request.client else None
        monitor.record_request(client_source(request.headers, peer))
        try:
            response = await call_next(request)
        except Exception:
            monitor.record_response(500)
            raise
        monitor.record_response(response.status_code)
        return response

    # ──────────────────────────────────────────────────────────────────────────
    # Static files
    # ──────────────────────────────────────────────────────────────────────────

    app.mount("/reports", StaticFiles(directory=settings.reports_dir), name="reports")
    app.mount(MEDIA_URL_PREFIX.rstrip("/"), StaticFiles(directory=settings.uploads_dir), name="chat-uploads")

    # ──────────────────────────────────────────────────────────────────────────
    # Health
    # ──────────────────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/health")
    async def health() -> Dict[str, Any]:
        snap = monitor.snapshot()
        history = await asyncio.to_thread(chat_store.load)
        return {
            "status": "ok",
            "data_dir": os.path.abspath(settings.data_dir),
            "reports_dir": os.path.abspath(settings.reports_dir),
            "uploads_dir": os.path.abspath(settings.uploads_dir),
            "chat_messages": len(history),
            "chat_viewers": chat.connection_count,
            "security_level": snap.status_level.value,
            "backup": monitor.trigger.state().value,
        }

    # ──────────────────────────────────────────────────────────────────────────
    # Reports
    # ──────────────────────────────────────────────────────────────────────────

    @app.post("/report")
    async def submit_report(
        reporter: Optional[str] = Form(None),
        reported: Optional[str] = Form(None),
        reason: Optional[str] = Form(None),
        evidence: Optional[UploadFile] = File(None),
    ) -> Dict[str, Any]:
        evidence_name = None
        evidence_data = None
        if evidence is not None and evidence.filename:
            evidence_name = evidence.filename
            evidence_data = await evidence.read()

        try:
            report = reports.save(reporter, reported, reason, evidence_name, evidence_data)
        except OSError as e:
            log.error("Failed to save report: %s", e)
            return JSONResponse(
                status_code=500,
                content={"success": False, "message": "Could not save the report."},
            )

        return {"success": True, "message": "Report submitted.", "reportId": report.id}

    @app.get(f"{API_PREFIX}/reports")
    def list_reports() -> List[Dict[str, Any]]:
        return [r.to_dict() for r in reports.list()]

    # ──────────────────────────────────────────────────────────────────────────
    # Meta content (updates / events / items)
    # ──────────────────────────────────────────────────────────────────────────

    def _register_meta(category: str) -> None:
        @app.get(f"{API_PREFIX}/{category}", name=f"list_{category}")
        def list_entries() -> List[Dict[str, Any]]:
            return meta.list(category)

        @app.post(f"{API_PREFIX}/{category}", name=f"add_{category}")
        def add_entry(body: MetaItemIn) -> Dict[str, Any]:
            try:
                item = meta.add(category, body.title, body.description)
            except StorageError as e:
                log.error("Failed to add %s entry: %s", category, e)
                return JSONResponse(status_code=500, content={"error": f"Could not save {category} entry"})
            return asdict(item)

    for category in CATEGORIES:
        _register_meta(category)

    # ──────────────────────────────────────────────────────────────────────────
    # Chat uploads
    # ──────────────────────────────────────────────────────────────────────────

    @app.post(f"{API_PREFIX}/chat/upload")
    async def upload_chat_media(file: Optional[UploadFile] = File(None)) -> Dict[str, Any]:
        if file is None:
            raise HTTPException(status_code=400, detail="No file")

        try:
            uploads.check_type((file.content_type or "").lower())
            data = await file.read(uploads.max_bytes + 1)
            result = uploads.save(file.filename or "file", file.content_type or "", data)
        except UploadRejectedError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))

        return {"url": result.url, "type": result.type}

    # ──────────────────────────────────────────────────────────────────────────
    # Game server status proxy
    # ──────────────────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/status")
    async def server_status(
        host: Optional[str] = Query(None),
        port: Optional[str] = Query(None),
    ) -> Dict[str, Any]:
        try:
            return await status_client.lookup(
                host or settings.status_default_host,
                port or settings.status_default_port,
            )
        except (httpx.HTTPError, ValueError) as e:
            log.warning("Status lookup failed: %r", e)
            return JSONResponse(status_code=500, content={"online": False, "error": "Could not fetch status"})

    # ──────────────────────────────────────────────────────────────────────────
    # Security
    # ──────────────────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/security/status")
    async def security_status() -> Dict[str, Any]:
        return (await monitor.status()).to_dict()

    @app.post(f"{API_PREFIX}/security/trigger-backup")
    async def trigger_backup() -> Dict[str, Any]:
        return await monitor.trigger_manual()

    @app.post(f"{API_PREFIX}/security/reset-disaster-mode")
    async def reset_disaster_mode() -> Dict[str, Any]:
        return monitor.reset_disaster_mode().to_dict()

    # ──────────────────────────────────────────────────────────────────────────
    # Chat socket
    # ──────────────────────────────────────────────────────────────────────────

    @app.websocket("/ws/chat")
    async def chat_socket(websocket: WebSocket) -> None:
        await websocket.accept()

        async def emit(event: str, data: Any) -> None:
            await websocket.send_json({"event": event, "data": data})

        peer = websocket.client.host if websocket.client else None
        conn = ChatConnection(emit, peer=client_source(websocket.headers, peer))
        try:
            await chat.connect(conn)
            while True:
                text = await websocket.receive_text()
                try:
                    frame = json.loads(text)
                except ValueError:
                    frame = None

                if not isinstance(frame, dict):
                    await websocket.send_json({"event": "error", "data": {"error": "Malformed frame"}})
                    continue

                if frame.get("event") != "send":
                    reply = {"ok": False, "error": "Unknown event"}
                else:
                    reply = await handle_send(chat, conn, frame.get("data"))

                if "ack" in frame:
                    await websocket.send_json({"event": "ack", "ack": frame["ack"], "data": reply})
        except WebSocketDisconnect:
            pass
        finally:
            chat.disconnect(conn)

    return app


# ──────────────────────────────────────────────────────────────────────────────
# App
# ──────────────────────────────────────────────────────────────────────────────

app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run(
        "guildsite.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
    )


if __name__ == "__main__":
    run()
