"""Grounded question answering over the user's events"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db, User
from app.api.deps import get_current_user
from app.schemas import AskRequest, AnswerResponse, EventResponse
from app.services.answer_service import AnswerError, get_answer_service

router = APIRouter(prefix="/ask", tags=["Answers"])


@router.post("", response_model=AnswerResponse)
async def ask(
    body: AskRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await get_answer_service(db).answer(body.question, current_user.id)
    except AnswerError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Could not generate an answer: {e}",
        )
    return AnswerResponse(
        answer=result.answer,
        confidence=result.confidence,
        events=[EventResponse.model_validate(r.event) for r in result.events],
        event_ids=result.event_ids,
        memory_ids=result.memory_ids,
        search_time_ms=result.search_time_ms,
        answer_time_ms=result.answer_time_ms,
    )
