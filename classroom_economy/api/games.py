"""
Skill game endpoints: start, play and settle sessions
"""

from dataclasses import asdict
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from .dependencies import EconomySystem, Principal, get_economy_system, get_principal, require_student
from .errors import http_error
from .schemas import GuessRequest, SettleRequest, StartSessionRequest
from ..errors import AlreadySettledError, DailyLimitExceededError, EconomyError


router = APIRouter()


@router.get("/sessions/{session_id}")
def get_session(
    session_id: str,
    principal: Principal = Depends(get_principal),
    system: EconomySystem = Depends(get_economy_system)
):
    session = system.reward_engine.get_session(session_id)
    if not session or (not principal.is_teacher and session.user_id != principal.user_id):
        raise HTTPException(status_code=404, detail="Game session not found")
    return session.public_view()


@router.post("/sessions/{session_id}/guess")
def submit_guess(
    session_id: str,
    request: GuessRequest,
    principal: Principal = Depends(require_student),
    system: EconomySystem = Depends(get_economy_system)
):
    try:
        return system.reward_engine.submit_guess(session_id, request.guess, user_id=principal.user_id)
    except EconomyError as e:
        raise http_error(e)


@router.post("/sessions/{session_id}/settle")
def settle_session(
    session_id: str,
    request: SettleRequest,
    principal: Principal = Depends(require_student),
    system: EconomySystem = Depends(get_economy_system)
):
    """
    Settle a session from raw inputs. A repeated call answers 409 with the
    original settlement in ``result``.
    """
    raw_inputs = {k: v for k, v in request.model_dump().items() if v is not None}
    try:
        result = system.reward_engine.settle_session(session_id, raw_inputs, user_id=principal.user_id)
        return result.to_dict()
    except AlreadySettledError as e:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={
                "detail": str(e),
                "result": e.result.to_dict() if e.result else None
            }
        )
    except EconomyError as e:
        raise http_error(e)


@router.get("/{game_type}/status")
def get_status(
    game_type: str,
    principal: Principal = Depends(get_principal),
    system: EconomySystem = Depends(get_economy_system)
):
    try:
        return system.reward_engine.get_status(principal.user_id, game_type)
    except EconomyError as e:
        raise http_error(e)


@router.post("/{game_type}/sessions")
def start_session(
    game_type: str,
    request: StartSessionRequest,
    principal: Principal = Depends(require_student),
    system: EconomySystem = Depends(get_economy_system)
):
    """Start a session; an exhausted daily quota answers ``started: false``"""
    try:
        start = system.reward_engine.start_session(principal.user_id, game_type, request.difficulty)
        return asdict(start)
    except DailyLimitExceededError as e:
        return {"started": False, "remaining_plays": e.remaining, "message": str(e)}
    except EconomyError as e:
        raise http_error(e)
