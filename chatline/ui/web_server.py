"""HTTP server: FastAPI chat endpoints with event-stream replies.

The server owns the process lifecycle: the session reaper is started and
stopped by the app's lifespan. Core errors map onto HTTP status codes.
"""

from __future__ import annotations

import json
import time
from contextlib import aclosing, asynccontextmanager
from typing import Any, AsyncIterator

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from chatline.config import ChatlineConfig
from chatline.core.engine import ChatEngine, ReplyStream
from chatline.core.errors import NotFoundError, ProviderError, ValidationError
from chatline.core.session.reaper import SessionReaper

logger = structlog.get_logger()

PROVIDER_ERROR_DETAIL = "Failed to generate response"


class ChatRequest(BaseModel):
    # Untyped: the core validator reports non-string input as "empty"
    message: Any = None
    conversation_id: str | None = Field(default=None, alias="conversationId")
    stream: bool = False

    model_config = {"populate_by_name": True}


def _make_event(data: dict[str, Any]) -> str:
    """Frame one event-stream message."""
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


async def _event_stream(reply: ReplyStream) -> AsyncIterator[str]:
    """Relay reply fragments as event-stream frames."""
    base = {"message_id": reply.message_id, "conversation_id": reply.conversation_id}
    try:
        async with aclosing(reply.__aiter__()) as fragments:
            async for chunk in fragments:
                yield _make_event({**base, "chunk": chunk, "done": False})
    except ProviderError as e:
        logger.warning("stream_failed", conversation_id=reply.conversation_id, error=str(e))
        yield _make_event({**base, "error": PROVIDER_ERROR_DETAIL, "retryable": e.retryable})
        return

    yield _make_event({**base, "chunk": "", "done": True, "full_message": reply.content})


class WebServer:
    """FastAPI-based chat server."""

    def __init__(
        self,
        engine: ChatEngine,
        config: ChatlineConfig,
        reaper: SessionReaper | None = None,
    ) -> None:
        self.engine = engine
        self.config = config
        self.reaper = reaper
        self.started_at = time.monotonic()
        self.app = self._create_app()

    def _create_app(self) -> FastAPI:
        @asynccontextmanager
        async def lifespan(_: FastAPI):
            if self.reaper:
                await self.reaper.start()
            try:
                yield
            finally:
                if self.reaper:
                    await self.reaper.stop()

        app = FastAPI(title="Chatline", docs_url=None, redoc_url=None, lifespan=lifespan)

        app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.web_ui.allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        )

        @app.exception_handler(ValidationError)
        async def on_validation_error(_: Request, exc: ValidationError):
            return JSONResponse(
                status_code=400,
                content={"error": exc.detail, "reason": exc.reason},
            )

        @app.exception_handler(NotFoundError)
        async def on_not_found(_: Request, exc: NotFoundError):
            return JSONResponse(status_code=404, content={"error": "Conversation not found"})

        @app.exception_handler(ProviderError)
        async def on_provider_error(_: Request, exc: ProviderError):
            logger.warning("provider_error", error=str(exc))
            return JSONResponse(
                status_code=502,
                content={"error": PROVIDER_ERROR_DETAIL, "retryable": exc.retryable},
            )

        @app.get("/health")
        async def health():
            return {"status": "OK", "timestamp": time.time()}

        @app.get("/api/status")
        async def get_status():
            return {
                "active_sessions": len(self.engine.store),
                "default_model": self.config.models.default,
                "uptime_seconds": int(time.monotonic() - self.started_at),
                "reaper_running": bool(self.reaper and self.reaper.running),
            }

        @app.post("/api/chat")
        async def chat(payload: ChatRequest):
            if payload.stream:
                reply = await self.engine.stream_message(payload.message, payload.conversation_id)
                return StreamingResponse(
                    _event_stream(reply),
                    media_type="text/event-stream",
                    headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
                )

            result = await self.engine.process_message(payload.message, payload.conversation_id)
            return {
                "message": result.turn.content,
                "conversation_id": result.conversation_id,
                "message_id": result.turn.id,
                "timestamp": result.turn.created_at.isoformat(),
            }

        @app.get("/api/chat/conversation/{conversation_id}")
        async def get_conversation(conversation_id: str):
            session = await self.engine.get_conversation(conversation_id)
            messages = [t.to_dict() for t in session.visible_turns()]
            return {
                "conversation_id": conversation_id,
                "messages": messages,
                "last_activity": session.last_activity.isoformat(),
                "message_count": len(messages),
            }

        @app.delete("/api/chat/conversation/{conversation_id}")
        async def delete_conversation(conversation_id: str):
            if not await self.engine.clear_conversation(conversation_id):
                raise NotFoundError(conversation_id)
            return {"message": "Conversation cleared successfully"}

        return app

    async def run(self) -> None:
        """Start the uvicorn server."""
        config = uvicorn.Config(
            self.app,
            host=self.config.web_ui.host,
            port=self.config.web_ui.port,
            log_level="warning",
        )
        server = uvicorn.Server(config)
        await server.serve()
