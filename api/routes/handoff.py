"""
Conversation mode API routes (human takeover and handoff).
"""

import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from llm.conversation_store import ConversationMode

from ..services import get_services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/conversations", tags=["Conversations"])


class ModeUpdateRequest(BaseModel):
    mode: ConversationMode


@router.put("/{conversation_id}/mode")
async def set_mode(conversation_id: str, request: ModeUpdateRequest):
    """Switch who answers: ai, human or handoff_requested."""
    store = get_services().conversation_store
    if store is None:
        raise HTTPException(status_code=503, detail="Conversation store unavailable")

    state = await store.set_mode(conversation_id, request.mode)
    if not state:
        raise HTTPException(status_code=404, detail="Conversation not found")
    logger.info(f"Conversation {conversation_id} mode set to {request.mode.value}")
    return state.to_dict()


@router.post("/{conversation_id}/archive")
async def archive_conversation(conversation_id: str):
    """Archive a conversation. Conversations are never deleted."""
    store = get_services().conversation_store
    if store is None or not await store.archive(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"status": "archived", "conversation_id": conversation_id}
