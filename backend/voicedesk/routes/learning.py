"""
Learning routes for the app's learning screen.

Study sessions themselves are opened and closed by the voice agent through
learning_actions; the screen browses and edits topics here.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from voicedesk.dependencies import get_learning_service
from voicedesk.models.learning import CreateTopicRequest, UpdateTopicRequest
from voicedesk.services.learning_service import LearningService

router = APIRouter()


@router.get("/topics")
async def list_topics(
    status: Optional[str] = None,
    category: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    service: LearningService = Depends(get_learning_service),
):
    listed = await service.list_topics({"status": status, "category": category, "limit": limit, "offset": offset})
    return {"success": True, **listed}


@router.post("/topics")
async def create_topic(body: CreateTopicRequest, service: LearningService = Depends(get_learning_service)):
    created = await service.create_topic(body.model_dump(exclude_none=True))
    return {"success": True, **created}


@router.get("/topics/{topic_id}")
async def get_topic(topic_id: str, service: LearningService = Depends(get_learning_service)):
    """Topic with its study sessions, newest first."""
    found = await service.get_topic({"topic_id": topic_id})
    sessions = await service.list_sessions(topic_id)
    return {
        "success": True,
        "topic": found["topic"],
        "sessions": [s.model_dump(mode="json") for s in sessions],
    }


@router.patch("/topics/{topic_id}")
async def update_topic(
    topic_id: str,
    body: UpdateTopicRequest,
    service: LearningService = Depends(get_learning_service),
):
    topic = await service.update_topic(topic_id, body.model_dump(exclude_unset=True))
    return {"success": True, "topic": topic.model_dump(mode="json")}


@router.delete("/topics/{topic_id}")
async def delete_topic(topic_id: str, service: LearningService = Depends(get_learning_service)):
    return {"success": True, **await service.delete_topic({"topic_id": topic_id})}


@router.get("/topics/{topic_id}/sessions")
async def list_topic_sessions(
    topic_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    service: LearningService = Depends(get_learning_service),
):
    sessions = await service.list_sessions(topic_id, limit=limit, offset=offset)
    return {"success": True, "sessions": [s.model_dump(mode="json") for s in sessions]}


@router.get("/stats")
async def learning_stats(service: LearningService = Depends(get_learning_service)):
    return {"success": True, "stats": await service.stats({})}
