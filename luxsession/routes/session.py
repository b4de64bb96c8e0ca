# Session routes: starting QR and pair-code logins, polling
# their result and looking up filed credential bundles.

import asyncio
import logging
import re

from fastapi import APIRouter, Request
from pydantic import BaseModel

from luxsession.core.errors import (
    InternalError,
    InvalidInput,
    NotFound,
    PairCodeFailed,
    ServiceError,
    SessionTimeout,
    UpstreamClosed,
)
from luxsession.services.qr_service import QRService
from luxsession.services.sessions import FailureReason, Session, SessionMode, SessionState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/session", tags=["session"])

PHONE_PATTERN = re.compile(r"[0-9]{8,15}")


class QrStartResp(BaseModel):
    sessionId: str
    qr: str | None
    status: str


class PairStartResp(BaseModel):
    sessionId: str
    phone: str
    code: str | None
    status: str


class ResultResp(BaseModel):
    sessionId: str
    ready: bool
    status: str | None = None
    session: str | None = None
    code: str | None = None
    error: str | None = None


class StatusResp(BaseModel):
    sessionId: str
    mode: str
    status: str
    ready: bool
    qr: str | None = None
    pairCode: str | None = None
    error: str | None = None
    statusCode: int | None = None


class CredsResp(BaseModel):
    code: str
    creds: dict


async def _run_login(request: Request, mode: SessionMode, phone: str | None = None) -> Session:
    """Registers a session, starts its connection and waits for the first outcome."""
    state = request.app.state
    session = state.registry.create(mode, phone=phone)
    try:
        outcome = await state.orchestrator.start(session)
        # a client hanging up must not cancel the shared outcome
        return await asyncio.shield(outcome)
    except ServiceError:
        raise
    except Exception as e:
        logger.exception(f"Login start failed: session_id={session.session_id}")
        raise InternalError(str(e) or type(e).__name__)


def _raise_for_failure(session: Session, timeout_error: str) -> None:
    if session.state == SessionState.TIMED_OUT:
        raise SessionTimeout(error=timeout_error)
    if session.state != SessionState.CLOSED_ERROR:
        return
    if session.failure == FailureReason.PAIR_CODE:
        raise PairCodeFailed(session.error or "")
    raise UpstreamClosed(session.error or "", session.status_code)


@router.get("/qr", response_model=QrStartResp)
async def start_qr(request: Request):
    # Desktop-style login: answer with the first QR the link client emits
    request.app.state.limiter.check(request)
    session = await _run_login(request, SessionMode.QR)
    _raise_for_failure(session, timeout_error="QR timeout")

    if session.state == SessionState.READY:
        return QrStartResp(sessionId=session.session_id, qr=None, status="ready")

    return QrStartResp(
        sessionId=session.session_id,
        qr=QRService.to_data_url(session.qr),
        status="scan_pending",
    )


@router.get("/pair", response_model=PairStartResp)
async def start_pair(request: Request, phone: str = ""):
    # Mobile-style login: answer with the pairing code to type on the phone
    if not PHONE_PATTERN.fullmatch(phone):
        raise InvalidInput(
            "phone must be digits only, E.164 without + (ex: 918888888888)",
            error="invalid_phone",
        )

    request.app.state.limiter.check(request)
    session = await _run_login(request, SessionMode.PAIR, phone=phone)
    _raise_for_failure(session, timeout_error="pair_timeout")

    status = "ready" if session.state == SessionState.READY else "pair_code_generated"
    return PairStartResp(
        sessionId=session.session_id,
        phone=phone,
        code=session.pair_code,
        status=status,
    )


@router.get("/result/{session_id}", response_model=ResultResp)
async def result(session_id: str, request: Request):
    # Safe to poll repeatedly; unknown ids are simply not ready
    session = request.app.state.registry.get(session_id)
    if session is None:
        return ResultResp(sessionId=session_id, ready=False)

    return ResultResp(
        sessionId=session_id,
        ready=session.ready,
        status=session.state.value,
        session=session.token,
        code=session.short_code,
        error=session.error,
    )


@router.get("/status/{session_id}", response_model=StatusResp)
async def session_status(session_id: str, request: Request):
    session = request.app.state.registry.get(session_id)
    if session is None:
        raise NotFound("Unknown session id")

    qr = None
    if session.state == SessionState.QR_ISSUED:
        qr = QRService.to_data_url(session.qr)

    return StatusResp(
        sessionId=session_id,
        mode=session.mode.value,
        status=session.state.value,
        ready=session.ready,
        qr=qr,
        pairCode=session.pair_code,
        error=session.error,
        statusCode=session.status_code,
    )


@router.get("/creds/{code}", response_model=CredsResp)
async def creds(code: str, request: Request):
    bundle = request.app.state.code_store.load(code)
    return CredsResp(code=code, creds=bundle)
