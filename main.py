"""Alpha Sentry — web chat API.

Streams one agent run per request to the browser as server-sent events.

Flow for POST /api/chat:
    → validate the request (last message must come from the user)
    → resolve the session id (client-supplied or a new UUID)
    → emit the session frame so the client can continue the conversation
    → start the agent on thread "web-<session>" / resource "user-<session>"
    → forward bridge events as SSE frames, the final answer as a 0:"…" frame
    → on failure, emit a single error frame and close the stream

Every visible tool call is appended to the audit log on the way through.

Run locally:
    uv run uvicorn main:app --reload
"""

import logging
import logging.handlers
import pathlib
import uuid
from typing import Literal

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

load_dotenv()

from core.audit import JsonlAuditSink, read_entries
from core.backends import build_backend
from core.bridge import bridge_events
from core.config import Settings
from core.sse import error_frame, event_frame, session_frame

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_FILE = pathlib.Path(__file__).parent / "alpha_sentry.log"
LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_file_handler = logging.handlers.RotatingFileHandler(
    LOG_FILE, maxBytes=1_000_000, backupCount=3, encoding="utf-8",
)
_file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))

_root_logger = logging.getLogger()
_root_logger.setLevel(logging.INFO)
_root_logger.addHandler(_file_handler)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Runtime setup
# ---------------------------------------------------------------------------

settings = Settings.from_env()
backend = build_backend(settings)
audit_sink = JsonlAuditSink.from_settings(settings)

# ---------------------------------------------------------------------------
# App + CORS
# ---------------------------------------------------------------------------

app = FastAPI(title="Alpha Sentry")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.allowed_origins),
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class ChatRequest(BaseModel):
    """Body of POST /api/chat.

    The browser sends the whole visible transcript; only the last message is
    run; earlier turns live in the backend's thread memory, keyed by
    session_id.
    """

    messages: list[ChatMessage] = Field(default_factory=list)
    session_id: str | None = Field(default=None, alias="sessionId")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/api/chat")
async def chat(body: ChatRequest):
    """Run the last user message through the agent and stream its events."""
    last = body.messages[-1] if body.messages else None
    if last is None or last.role != "user":
        raise HTTPException(status_code=400, detail="No user message found")

    session_id = body.session_id or str(uuid.uuid4())
    query = last.content

    async def stream():
        yield session_frame(session_id)
        try:
            agent_stream = await backend.stream(
                query,
                thread=f"web-{session_id}",
                resource=f"user-{session_id}",
                max_steps=settings.web_max_steps,
            )
            async for event in bridge_events(
                agent_stream,
                audit=audit_sink,
                internal_tools=settings.internal_tools,
            ):
                frame = event_frame(event)
                if frame is not None:
                    yield frame
        except Exception as exc:
            logger.error("Agent run failed for session %s: %s", session_id, exc)
            yield error_frame(str(exc) or "An error occurred")

    logger.info("Accepted chat request for session %s.", session_id)
    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@app.get("/api/audit")
def recent_audit(limit: int = Query(default=50, ge=1, le=1000)):
    """Return the most recent audit entries, oldest first."""
    return [e.model_dump(by_alias=True) for e in read_entries(audit_sink.path, limit=limit)]
