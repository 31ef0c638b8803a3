"""Pairing endpoints.

``GET /pair?number=...`` starts a pairing attempt and answers with either a
pairing code or, for an already registered session, an acknowledgement that
credentials will follow on the messaging side-channel.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from pairbridge.adapters.shared import PairingService
from pairbridge.api.dependencies import get_pairing_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pair", tags=["pair"])


class SessionInfo(BaseModel):
    """A live pairing attempt."""

    identity: str
    state: str
    created_at: str
    age_seconds: float
    reconnect_attempts: int


class SessionListResponse(BaseModel):
    sessions: list[SessionInfo]
    total_count: int


@router.get("")
async def request_pairing(
    number: str | None = Query(None, description="Phone number to pair."),
    service: PairingService = Depends(get_pairing_service),
) -> JSONResponse:
    result = await service.initiate_pairing(number)
    status_code = 200 if result.status == "pairing" else 202
    return JSONResponse(status_code=status_code, content=result.to_dict())


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    service: PairingService = Depends(get_pairing_service),
) -> SessionListResponse:
    sessions = [SessionInfo(**attempt.to_dict()) for attempt in service.active_sessions()]
    return SessionListResponse(sessions=sessions, total_count=len(sessions))
