from __future__ import annotations

import json
from functools import lru_cache

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from focustutor.database import init_db
from focustutor.logging_config import configure_logging
from focustutor.moderation import get_decision_gate
from focustutor.schemas import (
    ChatMessage,
    ChatSession,
    ChatTurnResponse,
    CreateSessionRequest,
    RelevanceVerdict,
    SubjectConfig,
    SubjectsListResponse,
    SwitchTopicRequest,
    UserMessageRequest,
)
from focustutor.service import ChatService
from focustutor.session_store import SessionNotFoundError, build_session_store
from focustutor.settings import settings
from focustutor.subjects import get_default_subjects

app = FastAPI(
    title="focustutor API",
    version="0.1.0",
    description="Tutoring chat backend with topic-relevance moderation in front of the model.",
)


@app.on_event("startup")
def on_startup():
    configure_logging(settings.log_level)
    init_db()


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache
def get_chat_service() -> ChatService:
    return ChatService(
        store=build_session_store(),
        gate=get_decision_gate(),
        history_size=settings.recent_history_size,
    )


@app.exception_handler(SessionNotFoundError)
async def session_not_found(request: Request, exc: SessionNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.get("/health")
def health() -> dict:
    return {"ok": True, "env": settings.env}


@app.get("/api/subjects", response_model=SubjectsListResponse)
def list_subjects() -> SubjectsListResponse:
    return SubjectsListResponse(
        subjects=[
            SubjectConfig(id=s["id"], name=s["name"], description=s["description"])
            for s in get_default_subjects().values()
        ]
    )


@app.get("/api/debug/settings")
def debug_settings() -> dict:
    return {
        "openai_base_url": settings.openai_base_url,
        "openai_model": settings.openai_model,
        "openai_api_key_set": bool(settings.openai_api_key),
        "discovery_window": settings.discovery_window,
        "relevance_threshold": settings.relevance_threshold,
        "follow_up_threshold": settings.follow_up_threshold,
    }


@app.post("/api/sessions", response_model=ChatSession, status_code=status.HTTP_201_CREATED)
def create_session(req: CreateSessionRequest, service: ChatService = Depends(get_chat_service)) -> ChatSession:
    return service.create_session(subject=req.subject, topic=req.topic, concepts=req.concepts)


@app.get("/api/sessions/{session_id}", response_model=ChatSession)
def get_session(session_id: str, service: ChatService = Depends(get_chat_service)) -> ChatSession:
    return service.get_session(session_id)


@app.delete("/api/sessions/{session_id}")
async def delete_session(session_id: str, service: ChatService = Depends(get_chat_service)) -> dict:
    await service.delete_session(session_id)
    return {"ok": True, "message": "Session deleted"}


@app.post("/api/sessions/{session_id}/reset", response_model=ChatSession)
async def reset_session(session_id: str, service: ChatService = Depends(get_chat_service)) -> ChatSession:
    return await service.reset_session(session_id)


@app.post("/api/sessions/{session_id}/topic", response_model=ChatSession)
async def switch_topic(
    session_id: str,
    req: SwitchTopicRequest,
    service: ChatService = Depends(get_chat_service),
) -> ChatSession:
    return await service.switch_topic(session_id, req.topic, subject=req.subject, concepts=req.concepts)


@app.post("/api/sessions/{session_id}/evaluate", response_model=RelevanceVerdict)
def evaluate_message(
    session_id: str,
    req: UserMessageRequest,
    service: ChatService = Depends(get_chat_service),
) -> RelevanceVerdict:
    """Dry run of the moderation gate; the session is not advanced."""
    return service.preview(session_id, req.content)


@app.post("/api/sessions/{session_id}/messages", response_model=ChatTurnResponse)
async def send_message(
    session_id: str,
    req: UserMessageRequest,
    service: ChatService = Depends(get_chat_service),
) -> ChatTurnResponse:
    try:
        turn = await service.chat(
            session_id,
            req.content,
            max_tokens=req.max_tokens or 512,
            temperature=req.temperature or 0.4,
        )
    except httpx.HTTPError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Model request failed: {e}")
    return ChatTurnResponse(
        assistant=ChatMessage(role="assistant", content=turn.reply),
        model=turn.model,
        stub=turn.stub,
        verdict=turn.verdict,
        session=turn.session,
    )


@app.post("/api/sessions/{session_id}/messages/stream")
async def send_message_stream(
    session_id: str,
    req: UserMessageRequest,
    service: ChatService = Depends(get_chat_service),
):
    """Stream the reply as Server-Sent Events. Each event has { content: string }; the first carries the verdict."""
    verdict, chunks = await service.chat_stream(
        session_id,
        req.content,
        max_tokens=req.max_tokens or 512,
        temperature=req.temperature or 0.4,
    )

    async def _events():
        yield f"data: {json.dumps({'verdict': verdict.model_dump(mode='json')})}\n\n"
        async for chunk in chunks:
            yield f"data: {json.dumps({'content': chunk})}\n\n"

    return StreamingResponse(
        _events(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
