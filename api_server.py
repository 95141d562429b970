"""
FastAPI Backend Server

Application endpoints the interpreter session relies on:
- POST /api/session: mint a short-lived realtime credential
- POST /api/conversation: save a finished conversation
- GET  /api/conversation: latest, by id, or all saved conversations
- POST /api/webhook: forward a clinical action to the configured webhook
- GET  /api/health
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import requests
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from medinterp.config import settings
from medinterp.db import ConversationRepository
from medinterp.logger import get_logger
from medinterp.messages import INTERPRETER_INSTRUCTIONS
from medinterp.services.webhook import WebhookClient, WebhookError

logger = get_logger(__name__)


# Pydantic models for API
class ConversationRequest(BaseModel):
    conversation: List[Dict[str, Any]] = Field(default_factory=list)
    summary: Optional[str] = ""
    actions: List[Dict[str, Any]] = Field(default_factory=list)


class SaveResponse(BaseModel):
    success: bool
    id: str


class WebhookRequest(BaseModel):
    scheduleFollowupAppointment: Optional[Dict[str, Any]] = None
    sendLabOrder: Optional[Dict[str, Any]] = None
    generateConversationSummary: Optional[Dict[str, Any]] = None


# Global repository instance
repository: Optional[ConversationRepository] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize and cleanup resources."""
    global repository

    repository = ConversationRepository()
    await asyncio.to_thread(repository.ensure_schema)
    logger.info("Conversation repository ready")

    yield

    repository = None


# Create FastAPI app
app = FastAPI(
    title="Medical Interpreter API",
    description="Credential minting and conversation storage for interpreter sessions",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_repository() -> ConversationRepository:
    """Get the repository instance."""
    if repository is None:
        raise HTTPException(status_code=503, detail="Repository not ready")
    return repository


def mint_session_token() -> Dict[str, Any]:
    """
    Ask the realtime sessions endpoint for an ephemeral client secret.

    Raises:
        RuntimeError: If the API key is missing or the response is unusable
        requests.RequestException: On network failure
    """
    config = settings.realtime
    if not config.is_configured:
        raise RuntimeError("OPENAI_API_KEY is not set")

    response = requests.post(
        config.sessions_url,
        headers={
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        },
        json={
            "model": config.model,
            "voice": config.voice,
            "modalities": ["audio", "text"],
            "instructions": INTERPRETER_INSTRUCTIONS,
            "tool_choice": "auto",
        },
        timeout=config.http_timeout_s,
    )
    if response.status_code >= 400:
        logger.error(f"Realtime API error: Status {response.status_code} {response.text[:200]}")
        raise RuntimeError(f"Realtime API error: {response.status_code}")

    data = response.json()
    secret = data.get("client_secret") if isinstance(data, dict) else None
    if not isinstance(secret, dict) or not secret.get("value"):
        raise RuntimeError("Invalid response from realtime API: missing client_secret")
    return data


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.post("/api/session")
async def create_session():
    """Mint an ephemeral realtime credential."""
    try:
        data = await asyncio.to_thread(mint_session_token)
        logger.info("Successfully obtained session token")
        return data
    except (RuntimeError, requests.RequestException) as e:
        logger.error(f"Session token error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/conversation", response_model=SaveResponse)
async def save_conversation(request: ConversationRequest):
    """Save a finished conversation."""
    repo = get_repository()
    try:
        conversation_id = await asyncio.to_thread(
            repo.insert,
            request.conversation,
            request.summary or "",
            request.actions,
        )
    except SQLAlchemyError as e:
        logger.error(f"Error saving conversation: {e}")
        raise HTTPException(status_code=500, detail="Failed to save conversation data")
    return SaveResponse(success=True, id=conversation_id)


@app.get("/api/conversation")
async def get_conversation(latest: bool = False, id: Optional[str] = None):
    """Latest conversation, a conversation by id, or all of them."""
    repo = get_repository()
    try:
        if latest:
            record = await asyncio.to_thread(repo.latest)
            if record is not None:
                return record
        if id:
            record = await asyncio.to_thread(repo.get, id)
            if record is None:
                raise HTTPException(status_code=404, detail="Conversation not found")
            return record
        return await asyncio.to_thread(repo.all)
    except SQLAlchemyError as e:
        logger.error(f"Error retrieving conversations: {e}")
        raise HTTPException(status_code=500, detail="Failed to retrieve conversation data")


@app.post("/api/webhook")
async def forward_action(request: WebhookRequest):
    """Forward a clinical action to the configured webhook."""
    payload = request.model_dump(exclude_none=True)
    if payload:
        action_type, action_data = next(iter(payload.items()))
    else:
        action_type, action_data = "unknown", {}

    try:
        await WebhookClient().send(action_type, action_data)
    except WebhookError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return {
        "success": True,
        "actionType": action_type,
        "message": f"Action {action_type} processed successfully",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api_server:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.is_development,
    )
