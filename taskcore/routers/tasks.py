from typing import Any

from fastapi import APIRouter, Body, Depends, Header, Query, Request, status

from taskcore.models import TaskFilter, TaskRecord
from taskcore.services.task_service import TaskService

router = APIRouter(prefix="/tasks", tags=["tasks"])


def get_task_service(request: Request) -> TaskService:
    return request.app.state.task_service


@router.post("/", response_model=TaskRecord, status_code=status.HTTP_201_CREATED)
async def create_task(
    payload: Any = Body(...),
    principal: str | None = Header(default=None, alias="X-Principal"),
    service: TaskService = Depends(get_task_service),
):
    """Create a new task"""
    return await service.create(payload, principal=principal)


@router.get("/", response_model=list[TaskRecord])
async def list_tasks(
    skip: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1, le=1000),
    completed: bool | None = None,
    principal: str | None = Header(default=None, alias="X-Principal"),
    service: TaskService = Depends(get_task_service),
):
    query = TaskFilter(completed=completed, skip=skip, limit=limit)
    return await service.list(query, principal=principal)


@router.get("/{task_id}", response_model=TaskRecord)
async def get_task(task_id: int, service: TaskService = Depends(get_task_service)):
    """Get a specific task by ID"""
    return await service.get(task_id)


@router.put("/{task_id}", response_model=TaskRecord)
async def replace_task(
    task_id: int,
    payload: Any = Body(...),
    service: TaskService = Depends(get_task_service),
):
    return await service.update(task_id, payload)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: int, service: TaskService = Depends(get_task_service)):
    """Delete a task"""
    await service.delete(task_id)


@router.post("/{task_id}/complete", response_model=TaskRecord)
async def mark_task_complete(
    task_id: int, service: TaskService = Depends(get_task_service)
):
    """Mark a task as completed"""
    return await service.complete(task_id)
