"""
Per-agent scoring config API routes.
"""

import logging

from fastapi import APIRouter, HTTPException

from lead_scoring.scoring_config import InvalidScoringConfig, ScoringConfig

from ..services import get_services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/agents", tags=["Scoring"])


def _config_store():
    store = get_services().scoring_config_store
    if store is None:
        raise HTTPException(status_code=503, detail="Scoring config store unavailable")
    return store


@router.get("/{agent_id}/scoring-config")
async def get_scoring_config(agent_id: str):
    """The agent's rubric, or the default rubric when none is set."""
    config = await _config_store().get(agent_id)
    if config is None:
        default = get_services().lead_scorer.default_config
        return {"agent_id": agent_id, "is_default": True, **default.model_dump()}
    return {"agent_id": agent_id, "is_default": False, **config.model_dump()}


@router.put("/{agent_id}/scoring-config")
async def put_scoring_config(agent_id: str, config: ScoringConfig):
    """Create or replace the agent's rubric. Invariant violations are rejected, never clamped."""
    try:
        saved = await _config_store().save(agent_id, config)
    except InvalidScoringConfig as e:
        logger.warning(f"Rejected scoring config for agent {agent_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    return {"agent_id": agent_id, "is_default": False, **saved.model_dump()}


@router.delete("/{agent_id}/scoring-config")
async def delete_scoring_config(agent_id: str):
    """Drop the agent's rubric; scoring falls back to the default."""
    if not await _config_store().delete(agent_id):
        raise HTTPException(status_code=404, detail="No scoring config for this agent")
    return {"status": "deleted", "agent_id": agent_id}
