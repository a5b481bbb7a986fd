"""
Request lifecycle API.

- POST /requests: accept and enqueue a request
- GET /requests/{id}: status, pending question, recent audit records
- POST /requests/{id}/answer: answer a pending question
- DELETE /requests/{id}: cancel a request that is still queued
"""

import logging
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from notehub.adapters.base import UserContext
from notehub.constants import RequestStatus, TaskKind
from notehub.db import get_db
from notehub.services.agent_runner.models import AgentJob
from notehub.services.ask_user import QuestionMirror, get_question_mirror, submit_answer
from notehub.services.request_queue import QueueFullError, RequestQueue, get_request_queue
from notehub.services.request_store import (
    RequestNotFoundError,
    create_request,
    get_request,
    list_logs,
    mark_cancelled,
    mark_finished,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/requests", tags=["requests"])

DbDep = Annotated[AsyncSession, Depends(get_db)]
QueueDep = Annotated[RequestQueue, Depends(get_request_queue)]
MirrorDep = Annotated[QuestionMirror, Depends(get_question_mirror)]


# Request/Response schemas
class UserBody(BaseModel):
    """Identity of the user the request acts for."""

    login_id: str = Field(..., min_length=1)
    username: str = ""
    dept_name: str = ""


class CreateRequestBody(BaseModel):
    """Request to run the agent on a note space."""

    space_id: str = Field(..., min_length=1)
    type: TaskKind
    input: str = Field(..., min_length=1, description="User input or search query")
    user: UserBody
    personal_space: bool = Field(default=False, description="Enables todo extraction")


class CreateRequestResponse(BaseModel):
    request_id: str
    status: RequestStatus
    position: int


class AuditRecord(BaseModel):
    iteration: int
    tool: str
    params: str | None
    result: str | None
    success: bool
    duration_ms: int | None
    created_at: datetime | None


class RequestStatusResponse(BaseModel):
    """Polling view of a request."""

    request_id: str
    space_id: str
    type: TaskKind
    status: RequestStatus
    iterations: int
    tokens_used: int
    result: dict[str, Any] | None = None
    error: str | None = None
    pending_question: dict[str, Any] | None = None
    logs: list[AuditRecord] = Field(default_factory=list)
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class AnswerBody(BaseModel):
    answer: str


class AnswerResponse(BaseModel):
    request_id: str
    accepted: bool


class CancelResponse(BaseModel):
    request_id: str
    status: RequestStatus


async def _load_request(db: AsyncSession, request_id: str) -> Any:
    try:
        return await get_request(db, request_id)
    except RequestNotFoundError as e:
        raise HTTPException(status_code=404, detail="Request not found") from e


@router.post("", response_model=CreateRequestResponse, status_code=202)
async def create(body: CreateRequestBody, db: DbDep, queue: QueueDep) -> CreateRequestResponse:
    request = await create_request(
        db,
        space_id=body.space_id,
        user_id=body.user.login_id,
        kind=body.type,
        input_text=body.input,
    )
    await db.commit()

    job = AgentJob(
        request_id=request.id,
        space_id=body.space_id,
        kind=body.type,
        input_text=body.input,
        user=UserContext(
            login_id=body.user.login_id,
            username=body.user.username,
            dept_name=body.user.dept_name,
        ),
        personal_space=body.personal_space,
    )
    try:
        position = queue.submit(job)
    except QueueFullError as e:
        await mark_finished(db, request.id, RequestStatus.FAILED, error="Request queue is full")
        await db.commit()
        raise HTTPException(
            status_code=503,
            detail="Too many requests in progress, try again later",
            headers={"Retry-After": str(int(e.retry_after))},
        ) from e

    return CreateRequestResponse(
        request_id=request.id, status=RequestStatus.PENDING, position=position
    )


@router.get("/{request_id}", response_model=RequestStatusResponse)
async def get_status(
    request_id: str, response: Response, db: DbDep, mirror: MirrorDep
) -> RequestStatusResponse:
    request = await _load_request(db, request_id)
    response.headers["Cache-Control"] = "no-store"

    pending_question = None
    if request.status == RequestStatus.PROCESSING.value:
        pending_question = await mirror.load(request_id)

    logs = await list_logs(db, request_id, limit=20)
    return RequestStatusResponse(
        request_id=request.id,
        space_id=request.space_id,
        type=TaskKind(request.type),
        status=RequestStatus(request.status),
        iterations=request.iterations or 0,
        tokens_used=request.tokens_used or 0,
        result=request.result,
        error=request.error,
        pending_question=pending_question,
        logs=[
            AuditRecord(
                iteration=log.iteration,
                tool=log.tool,
                params=log.params,
                result=log.result,
                success=log.success,
                duration_ms=log.duration_ms,
                created_at=log.created_at,
            )
            for log in logs
        ],
        created_at=request.created_at,
        started_at=request.started_at,
        completed_at=request.completed_at,
    )


@router.post("/{request_id}/answer", response_model=AnswerResponse)
async def answer(request_id: str, body: AnswerBody) -> AnswerResponse:
    """Deliver the user's answer to the question the agent is waiting on."""
    text = body.answer.strip()
    if not text:
        raise HTTPException(status_code=400, detail="Answer must not be empty")

    if not submit_answer(request_id, text):
        raise HTTPException(
            status_code=409,
            detail="No question is pending for this request (already answered or timed out)",
        )
    return AnswerResponse(request_id=request_id, accepted=True)


@router.delete("/{request_id}", response_model=CancelResponse)
async def cancel(request_id: str, db: DbDep, queue: QueueDep) -> CancelResponse:
    """Cancel a request that is still waiting for a worker."""
    request = await _load_request(db, request_id)
    if request.status != RequestStatus.PENDING.value or not queue.cancel(request_id):
        raise HTTPException(
            status_code=409, detail=f"Request cannot be cancelled in status {request.status}"
        )

    await mark_cancelled(db, request_id, "Cancelled by user")
    await db.commit()
    return CancelResponse(request_id=request_id, status=RequestStatus.CANCELLED)
