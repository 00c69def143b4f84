"""Read-only view of call sessions."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.ari_routes import router as ari_router
from api.dependencies import get_session_store
from api.pipeline_routes import router as pipeline_router
from api.schemas import (
    ActiveCallsResponse,
    CallDetailResponse,
    CallHistoryResponse,
    CallSessionResponse,
)
from calls.store import SessionStore

router = APIRouter()


@router.get("/calls", response_model=ActiveCallsResponse)
async def list_active_calls(
    store: SessionStore = Depends(get_session_store),
) -> ActiveCallsResponse:
    sessions = [CallSessionResponse.model_validate(s) for s in store.list_active()]
    return ActiveCallsResponse(active_calls=sessions, count=len(sessions))


@router.get("/calls/history", response_model=CallHistoryResponse)
async def list_call_history(
    store: SessionStore = Depends(get_session_store),
) -> CallHistoryResponse:
    sessions = [CallSessionResponse.model_validate(s) for s in store.list_history()]
    return CallHistoryResponse(call_history=sessions, count=len(sessions))


@router.get("/calls/{call_id}", response_model=CallDetailResponse)
async def get_call(
    call_id: str,
    store: SessionStore = Depends(get_session_store),
) -> CallDetailResponse:
    session = store.get(call_id)
    if session is None:
        return CallDetailResponse(error="Call not found")
    return CallDetailResponse(call=CallSessionResponse.model_validate(session))


router.include_router(ari_router)
router.include_router(pipeline_router)
