"""
Chat API Routes.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException
from pydantic import BaseModel, Field

from llm.dispatcher import TurnRequest, TurnResponse

from ..middleware.metrics import record_apology, record_handoff, record_intent, record_lead_score
from ..services import get_services

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Request / Response Models ─────────────────────────────────────

class ChatRequest(BaseModel):
    agent_id: str = Field(..., min_length=1, max_length=64)
    # Bounds follow the conversations table columns
    conversation_id: Optional[str] = Field(default=None, min_length=1, max_length=36)
    message: str = Field(..., min_length=1, max_length=2000)
    source: str = Field(default="web", min_length=1, max_length=20)
    organization_id: Optional[str] = Field(default=None, max_length=64)
    user_id: Optional[str] = Field(default=None, max_length=64)


class ChatResponse(BaseModel):
    reply: Optional[str] = None
    conversation_id: str
    mode: str
    intent: Optional[str] = None
    lead_score: Optional[int] = None
    lead_tier: Optional[str] = None
    next_expected_slot: Optional[str] = None


class QualificationResponse(BaseModel):
    conversation_id: str
    budget_discussed: bool
    authority_discussed: bool
    need_discussed: bool
    timeline_discussed: bool
    budget: Optional[int] = None
    authority: Optional[str] = None
    need: Optional[str] = None
    timeline: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    unanswerable: List[str] = []
    next_expected_slot: Optional[str] = None
    version: int = 0
    lead: Optional[Dict[str, Any]] = None


# ── Endpoints ─────────────────────────────────────────────────────

@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, background_tasks: BackgroundTasks):
    """
    Process one customer message.

    1. Load conversation  2. Mode gate  3. Classify intent
    4. Qualify / answer  5. Generate reply  6. Persist and return
    """
    services = get_services()
    if not services.is_ready:
        raise HTTPException(status_code=503, detail="Chat service unavailable")

    result = await services.dispatcher.handle_turn(TurnRequest(
        agent_id=request.agent_id,
        message=request.message,
        conversation_id=request.conversation_id,
        organization_id=request.organization_id,
        user_id=request.user_id,
        source=request.source,
    ))

    background_tasks.add_task(_record_turn_metrics, result)

    return ChatResponse(**result.to_dict())


@router.get("/chat/{conversation_id}/qualification", response_model=QualificationResponse)
async def get_qualification(conversation_id: str):
    """Persisted qualification memory (and lead, if any) for a conversation."""
    store = get_services().conversation_store
    if store is None or await store.get_state(conversation_id) is None:
        raise HTTPException(status_code=404, detail="Conversation not found")

    memory = await store.get_memory(conversation_id)
    if memory is None:
        raise HTTPException(status_code=404, detail="Qualification not started")

    lead = await store.get_lead(conversation_id)
    return QualificationResponse(
        conversation_id=conversation_id,
        lead=lead.to_dict() if lead else None,
        **memory.to_dict(),
    )


# ── Helpers ───────────────────────────────────────────────────────

def _record_turn_metrics(result: TurnResponse):
    """Background task: business metrics for one turn."""
    if result.intent is not None:
        record_intent(result.intent.value, result.intent_source or "model")
    if result.lead_score is not None and result.lead_tier:
        record_lead_score(result.lead_score, result.lead_tier)
    if result.degraded:
        record_apology()
    if result.mode.value == "handoff_requested" and result.reply is not None:
        record_handoff()
    logger.debug(
        f"Chat turn: conversation={result.conversation_id}, "
        f"intent={result.intent.value if result.intent else None}, score={result.lead_score}"
    )
