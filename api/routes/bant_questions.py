"""
Per-agent custom qualification question routes.
"""

import logging

from fastapi import APIRouter, HTTPException

from lead_scoring.bant_questions import BantQuestionSet, InvalidBantQuestions
from llm.prompt_templates import PromptTemplates

from ..services import get_services

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Questions"])


def _question_store():
    store = get_services().bant_question_store
    if store is None:
        raise HTTPException(status_code=503, detail="Question store unavailable")
    return store


@router.get("/bant-questions/defaults")
async def get_default_questions():
    """Stock questions asked when an agent has none of their own."""
    return {"questions": PromptTemplates.default_questions()}


@router.get("/agents/{agent_id}/bant-questions")
async def get_bant_questions(agent_id: str):
    questions = await _question_store().get(agent_id)
    if questions is None:
        return {"agent_id": agent_id, "is_default": True, "questions": PromptTemplates.default_questions()}
    return {"agent_id": agent_id, "is_default": False, **questions.model_dump()}


@router.put("/agents/{agent_id}/bant-questions")
async def put_bant_questions(agent_id: str, questions: BantQuestionSet):
    """Replace the agent's whole question set."""
    try:
        saved = await _question_store().save(agent_id, questions)
    except InvalidBantQuestions as e:
        logger.warning(f"Rejected custom questions for agent {agent_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    return {"agent_id": agent_id, "is_default": False, **saved.model_dump()}


@router.delete("/agents/{agent_id}/bant-questions")
async def delete_bant_questions(agent_id: str):
    """Drop the agent's questions; the flow goes back to the stock wording."""
    if not await _question_store().delete(agent_id):
        raise HTTPException(status_code=404, detail="No custom questions for this agent")
    return {"status": "deleted", "agent_id": agent_id}
