"""
Jerry Voice Agent - Main Server

HTTP surface for the recruitment dashboard plus the WebSocket the browser uses
to lend its speech recognition and synthesis to the server.
"""

import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

from jerry_voice.actions import ActionRegistry
from jerry_voice.core.config import Config, config
from jerry_voice.db.call_log_store import CallLogStore
from jerry_voice.db.failed_saves import FailedSaveQueue
from jerry_voice.directory import ContactDirectory
from jerry_voice.models import CallType, ContactType
from jerry_voice.services.action_classifier import FunctionCallActionClassifier, KeywordActionClassifier
from jerry_voice.services.call_session import CallSessionManager, SessionNotFoundError
from jerry_voice.services.gemini_client import GeminiClient
from jerry_voice.services.response_generator import ResponseGenerator
from jerry_voice.speech import AlreadyActiveError, UnsupportedError, WebSocketSpeechGateway


def configure_logging(cfg: Config = config):
    """Clean format for structured call logs"""
    logger.remove()
    logger.add(
        sys.stdout,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <5}</level> | <level>{message}</level>",
        level="DEBUG" if cfg.debug else "INFO"
    )
    logger.add(
        Path(cfg.log_dir) / "jerry_voice.log",
        rotation="10 MB",
        retention="7 days",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <5} | {message}",
        level=cfg.log_level
    )


def build_manager(cfg: Config = config) -> CallSessionManager:
    """Wire the production services together"""
    actions = ActionRegistry()
    classifier = KeywordActionClassifier()
    if cfg.gemini_function_calling:
        classifier = FunctionCallActionClassifier(actions.get_definitions(), fallback=classifier)

    return CallSessionManager(
        speech=WebSocketSpeechGateway(lang=cfg.speech_lang),
        responder=ResponseGenerator(GeminiClient(cfg), classifier=classifier, cfg=cfg),
        store=CallLogStore(cfg.database_url),
        backup=FailedSaveQueue(cfg.failed_saves_dir),
        directory=ContactDirectory.from_file(cfg.contacts_file),
        actions=actions,
        cfg=cfg,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    # Startup
    if getattr(app.state, "manager", None) is None:
        configure_logging()
        app.state.manager = build_manager()

    logger.info("=" * 60)
    logger.info(f"{config.agent_name} Voice Agent - {config.company_name}")
    logger.info("=" * 60)

    errors = config.validate_config()
    if errors:
        for error in errors:
            logger.warning(f"Config warning: {error}")

    manager: CallSessionManager = app.state.manager
    logger.info(f"Server starting on http://{config.host}:{config.port}")
    logger.info(f"Gemini model: {config.gemini_model} (function calling: {config.gemini_function_calling})")
    pending = len(manager.backup)
    if pending:
        logger.warning(f"{pending} call log(s) waiting in the failed-save queue")

    yield

    # Shutdown
    logger.info("Server shutting down...")
    await manager.shutdown()
    await manager.responder.client.aclose()
    manager.store.close()


router = APIRouter()


def get_manager(request: Request) -> CallSessionManager:
    return request.app.state.manager


# Request models
class StartCallRequest(BaseModel):
    contactType: ContactType
    callType: CallType
    contactId: Optional[str] = None
    contactName: Optional[str] = None
    jobId: Optional[str] = None


class UtteranceRequest(BaseModel):
    text: str


def _session_payload(manager: CallSessionManager, session) -> dict:
    payload = session.to_dict()
    payload["interim_text"] = manager.interim_text(session.id)
    payload["listening"] = manager.is_listening(session.id)
    payload["last_error"] = manager.last_error(session.id)
    return payload


# ============================================================================
# Health
# ============================================================================

@router.get("/health")
async def health(request: Request):
    """Service status with live call and pending backup counts"""
    manager = get_manager(request)
    return {
        "status": "ok",
        "active_calls": len(manager.active_sessions()),
        "pending_failed_saves": len(manager.backup),
        "speech_client_connected": getattr(manager.speech, "connected", False),
    }


# ============================================================================
# Calls
# ============================================================================

@router.post("/calls")
async def start_call(body: StartCallRequest, request: Request):
    """Start a call and speak its opening line"""
    manager = get_manager(request)
    session = await manager.initiate_call(
        body.contactType, body.callType,
        contact_id=body.contactId, contact_name=body.contactName, job_id=body.jobId,
    )
    return JSONResponse(status_code=201, content=_session_payload(manager, session))


@router.get("/calls")
async def list_calls(request: Request):
    """List live calls"""
    manager = get_manager(request)
    return {"calls": [_session_payload(manager, s) for s in manager.active_sessions()]}


@router.get("/calls/{session_id}")
async def get_call(session_id: str, request: Request):
    manager = get_manager(request)
    session = manager.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Call {session_id} not found")
    return _session_payload(manager, session)


@router.post("/calls/{session_id}/listen")
async def listen(session_id: str, request: Request):
    """Open the recognition stream for a call"""
    manager = get_manager(request)
    try:
        started = await manager.start_voice_interaction(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Call {session_id} not found")
    except AlreadyActiveError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except UnsupportedError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"listening": manager.is_listening(session_id), "started": started}


@router.post("/calls/{session_id}/utterances")
async def post_utterance(session_id: str, body: UtteranceRequest, request: Request):
    """Typed utterance, handled exactly like a final recognition result"""
    manager = get_manager(request)
    if manager.get_session(session_id) is None:
        raise HTTPException(status_code=404, detail=f"Call {session_id} not found")

    reply = await manager.process_utterance(session_id, body.text)
    if reply is None:
        return {"accepted": False, "reply": None}
    return {
        "accepted": True,
        "reply": {
            "text": reply.text,
            "confidence": reply.confidence,
            "source": reply.source,
            "action": reply.action.to_dict() if reply.action else None,
        },
    }


@router.post("/calls/{session_id}/end")
async def end_call(session_id: str, request: Request):
    """End a call; unknown or already-ended calls are a no-op"""
    manager = get_manager(request)
    session = await manager.end_call(session_id)
    if session is None:
        return {"ended": False}
    return {"ended": True, "call": session.to_dict()}


# ============================================================================
# Call logs
# ============================================================================

@router.get("/call-logs")
async def call_logs(request: Request, limit: int = Query(50, ge=1, le=500)):
    """Persisted call logs, newest first"""
    manager = get_manager(request)
    return {"call_logs": await manager.list_call_logs(limit)}


@router.post("/call-logs/retry")
async def retry_call_logs(request: Request):
    """Replay call logs that previously failed to save"""
    manager = get_manager(request)
    written, remaining = await manager.retry_failed_saves()
    return {"written": written, "remaining": remaining}


# ============================================================================
# Browser speech bridge
# ============================================================================

@router.websocket("/speech")
async def speech_socket(websocket: WebSocket):
    """Attach the browser's Web Speech APIs to the speech gateway"""
    manager: CallSessionManager = websocket.app.state.manager
    await manager.speech.serve(websocket)


def create_app(manager: Optional[CallSessionManager] = None) -> FastAPI:
    """Build the app; a pre-built manager skips production wiring"""
    application = FastAPI(
        title="Jerry Voice Agent",
        description="AI voice calling agent for campus recruitment",
        version="1.0.0",
        lifespan=lifespan
    )
    application.state.manager = manager

    # CORS - the dashboard is served from another origin
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.include_router(router)
    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "jerry_voice.app:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info"
    )
