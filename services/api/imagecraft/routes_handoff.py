# services/api/imagecraft/routes_handoff.py

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from redis import Redis

from .auth import sign_in_redirect
from .config import settings
from .deps import new_session_id, session_id_from_request
from .schemas import HandoffResponse, SignInUrlResponse
from .security import enforce_rate_limit, redis_client
from .work_preservation import HandoffStore, ProcessingState, handoff_store_for

router = APIRouter(prefix="/v1", tags=["handoff"], dependencies=[Depends(enforce_rate_limit)])

def get_handoff_redis() -> Optional[Redis]:
    return redis_client()

def _store(session_id: str, redis: Optional[Redis]) -> HandoffStore:
    return handoff_store_for(session_id, redis, expiry_ms=int(settings.HANDOFF_TTL_MIN) * 60 * 1000)

def _set_session_cookie(response: Response, session_id: str) -> None:
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        session_id,
        max_age=int(settings.HANDOFF_TTL_MIN) * 60,
        httponly=True,
        samesite="lax",
    )

@router.post("/handoff")
def save_handoff(
    state: ProcessingState,
    request: Request,
    response: Response,
    redis: Optional[Redis] = Depends(get_handoff_redis),
):
    """
    Called right before the sign-in redirect. Overwrites any earlier
    unconsumed state for this browser session.
    """
    sid = session_id_from_request(request)
    if not sid:
        sid = new_session_id()
    _set_session_cookie(response, sid)

    _store(sid, redis).save(state)
    return {"ok": True, "sessionId": sid}

@router.get("/handoff", response_model=HandoffResponse)
def peek_handoff(request: Request, redis: Optional[Redis] = Depends(get_handoff_redis)):
    sid = session_id_from_request(request)
    if not sid:
        return HandoffResponse(exists=False)
    state = _store(sid, redis).load()
    return HandoffResponse(exists=state is not None, state=state)

@router.post("/handoff/restore", response_model=HandoffResponse)
def restore_handoff(request: Request, redis: Optional[Redis] = Depends(get_handoff_redis)):
    """Read-once: after this returns the state, the slot is empty."""
    sid = session_id_from_request(request)
    if not sid:
        return HandoffResponse(exists=False)
    state = _store(sid, redis).consume()
    return HandoffResponse(exists=state is not None, state=state)

@router.delete("/handoff")
def clear_handoff(request: Request, redis: Optional[Redis] = Depends(get_handoff_redis)):
    sid = session_id_from_request(request)
    if sid:
        _store(sid, redis).clear()
    return {"ok": True}

@router.get("/auth/sign-in-url", response_model=SignInUrlResponse)
def sign_in_url(return_to: str = "/"):
    return SignInUrlResponse(sign_in_url=sign_in_redirect(return_to))
