"""
Todo routes for the app's todo screen.

Creating, listing and completing todos goes through
POST /api/tools/todo_actions like the voice agent does; these routes cover
what only the screen needs: stats and category management.
"""
from fastapi import APIRouter, Depends

from voicedesk.dependencies import get_todo_service
from voicedesk.models.todo import CategoryRequest, UpdateCategoryRequest
from voicedesk.services.todo_service import TodoService

router = APIRouter()


@router.get("/stats")
async def todo_stats(service: TodoService = Depends(get_todo_service)):
    return {"success": True, "stats": await service.stats({})}


@router.get("/categories")
async def list_categories(service: TodoService = Depends(get_todo_service)):
    """Built-in categories (is_default=true) followed by the caller's own."""
    return {"success": True, "categories": await service.list_categories()}


@router.post("/categories")
async def create_category(body: CategoryRequest, service: TodoService = Depends(get_todo_service)):
    category = await service.create_category(body.name, color=body.color, icon=body.icon)
    return {"success": True, "category": category}


@router.put("/categories/{category_id}")
async def update_category(
    category_id: str,
    body: UpdateCategoryRequest,
    service: TodoService = Depends(get_todo_service),
):
    category = await service.update_category(category_id, body.model_dump(exclude_unset=True))
    return {"success": True, "category": category}


@router.delete("/categories/{category_id}")
async def delete_category(category_id: str, service: TodoService = Depends(get_todo_service)):
    """Todos in the deleted category move to the default one."""
    return {"success": True, **await service.delete_category(category_id)}
