"""
Orchestration endpoints.

POST /orchestrator/compare
POST /orchestrator/smart-analysis
POST /orchestrator/episodes
GET /orchestrator/performance
GET /orchestrator/reflexive
GET /orchestrator/context
GET /orchestrator/episodes/{episode_id}/similar

Thin adapter over AIOrchestrator; orchestration errors are turned into
HTTP responses by the exception handlers in main.py.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from procheff.core.logging import get_logger
from procheff.services.orchestrator import AIOrchestrator
from procheff.services.orchestrator.schema import (
    Episode,
    PerformanceReport,
    ReflexiveAssessment,
    SelectionResult,
    TaskRequest,
)

logger = get_logger(__name__)

router = APIRouter()

SMART_ANALYSIS_TASK = "recipe-analysis"


def get_orchestrator(request: Request) -> AIOrchestrator:
    """Orchestrator built by the application lifespan."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator not initialized")
    return orchestrator


class SmartAnalysisRequest(BaseModel):
    """Recipe payload analysed by every recipe-analysis capable provider."""

    recipe: Dict[str, Any] = Field(..., description="Recipe to analyse (name, ingredients, portions, ...)")
    tags: List[str] = Field(default_factory=list)
    priority: str = Field("medium", pattern="^(low|medium|high)$")


class ReflexiveResponse(BaseModel):
    assessment: ReflexiveAssessment
    recent_episodes: List[Episode]


class EpisodeListResponse(BaseModel):
    query: Optional[str] = None
    total: int
    episodes: List[Episode]


@router.post("/compare", response_model=SelectionResult)
async def compare(
    task_request: TaskRequest,
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
):
    """Run one task against every eligible provider and return the selection."""
    return await orchestrator.run_parallel_comparison(task_request)


@router.post("/smart-analysis", response_model=SelectionResult)
async def smart_analysis(
    body: SmartAnalysisRequest,
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
):
    """Recipe analysis across every provider declaring the recipe-analysis capability."""
    task_request = TaskRequest(
        task=SMART_ANALYSIS_TASK,
        context=body.recipe,
        priority=body.priority,
        required_capabilities=(SMART_ANALYSIS_TASK,),
        tags=tuple(body.tags),
    )
    return await orchestrator.run_parallel_comparison(task_request)


@router.post("/episodes", response_model=Episode, status_code=201)
def add_episode(
    episode: Episode,
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
):
    """Record an episode produced outside the orchestrator."""
    return orchestrator.add_episode(episode)


@router.get("/performance", response_model=PerformanceReport)
def performance(orchestrator: AIOrchestrator = Depends(get_orchestrator)):
    return orchestrator.performance_report()


@router.get("/reflexive", response_model=ReflexiveResponse)
def reflexive(
    limit: int = Query(10, ge=1, le=100, description="Recent episodes to include"),
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
):
    """Reflexive self-assessment plus the most recent episodes."""
    return ReflexiveResponse(
        assessment=orchestrator.reflexive_analysis(),
        recent_episodes=orchestrator.recent_assessments(limit),
    )


@router.get("/context", response_model=EpisodeListResponse)
def context(
    q: str = Query("", description="Free-text relevance query"),
    limit: int = Query(10, ge=1, le=100),
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
):
    """Episodes relevant to `q` (most recent ones when `q` is empty)."""
    episodes = orchestrator.retrieve(q, limit)
    return EpisodeListResponse(query=q, total=len(episodes), episodes=episodes)


@router.get("/episodes/{episode_id}/similar", response_model=EpisodeListResponse)
def similar_episodes(
    episode_id: str,
    limit: int = Query(5, ge=1, le=50),
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
):
    episodes = orchestrator.find_similar(episode_id, limit)
    return EpisodeListResponse(total=len(episodes), episodes=episodes)
