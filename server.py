import logging
import queue
import threading
from typing import Any, Dict, List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from codestream.config import load_settings
from codestream.events import ProgressEvent, ProgressReporter
from codestream.generation_session import GenerationSession, SessionRequest
from codestream.history_cache import HistoryCache
from codestream.utils import Utils

logger = logging.getLogger("codestream")

SETTINGS = load_settings()
HISTORY = HistoryCache(
    ttl_seconds=SETTINGS.history_ttl_seconds,
    max_tokens=SETTINGS.history_max_tokens,
    max_edits=SETTINGS.history_max_edits,
)

app = FastAPI()

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for dev
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_END_OF_STREAM = object()


class GenerationContext(BaseModel):
    currentFiles: Optional[Dict[str, Any]] = None
    targetFiles: Optional[List[str]] = None
    conversationId: Optional[str] = None


class GenerateRequest(BaseModel):
    prompt: Optional[str] = None
    model: Optional[str] = None
    isEdit: bool = False
    context: Optional[GenerationContext] = None


class LlmFactory(Utils):
    def __init__(self, settings=SETTINGS):
        self.settings = settings

    def generation_llm(self, model_name: str | None):
        return self._build_chat_llm_for_model(model_name, self.settings.max_tokens)

    def repair_llm(self, model_name: str | None):
        return self._build_chat_llm_for_model(model_name, self.settings.truncation_recovery_max_tokens)


LLM_FACTORY = LlmFactory()


def _session_request(body: GenerateRequest) -> SessionRequest:
    context = body.context or GenerationContext()
    current_files = {
        path: content
        for path, content in (context.currentFiles or {}).items()
        if isinstance(content, str)
    }
    return SessionRequest(
        prompt=body.prompt or "",
        is_edit=body.isEdit,
        target_files=context.targetFiles,
        current_files=current_files or None,
        model=body.model or SETTINGS.default_model,
        conversation_id=context.conversationId or "default",
    )


def _run_session(session: GenerationSession, events: "queue.Queue", model_name: str | None) -> None:
    try:
        llm = LLM_FACTORY.generation_llm(model_name)
        session.repairer.llm = LLM_FACTORY.repair_llm(model_name)
        session.generate(llm)
    except Exception as e:
        logger.exception(f"Stream processing error: {e}")
        session.reporter.error(str(e))
    finally:
        events.put(_END_OF_STREAM)


@app.post("/api/generate-ai-code-stream")
def generate_ai_code_stream(body: GenerateRequest):
    if not (body.prompt or "").strip():
        return JSONResponse(status_code=400, content={"success": False, "error": "Prompt is required"})

    request = _session_request(body)
    removed = HISTORY.sweep_expired()
    if removed:
        logger.debug(f"Swept {removed} expired conversation histories")
    logger.info(
        f"[generate-ai-code-stream] prompt={request.prompt!r} isEdit={request.is_edit} "
        f"currentFiles={len(request.current_files or {})} model={request.model}"
    )

    # unbounded: a slow client never blocks the session thread
    events: "queue.Queue" = queue.Queue()
    session = GenerationSession(
        request,
        ProgressReporter(events.put_nowait),
        settings=SETTINGS,
        history=HISTORY,
    )
    worker = threading.Thread(
        target=_run_session,
        args=(session, events, request.model),
        name=f"codestream-session-{request.conversation_id}",
        daemon=True,
    )
    worker.start()

    def event_stream():
        try:
            while True:
                item = events.get()
                if item is _END_OF_STREAM:
                    break
                if isinstance(item, ProgressEvent):
                    yield item.to_sse()
        finally:
            # client gone or stream finished; either way the session must stop consuming
            session.cancel()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
