# In-memory login session tracking (creation, lookup and
# state transitions of each linking attempt).
#
# Sessions are kept for the lifetime of the process; nothing evicts them.


import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class SessionMode(str, Enum):
    QR = "qr"
    PAIR = "pair"


class SessionState(str, Enum):
    CONNECTING = "connecting"
    QR_ISSUED = "qr_issued"
    PAIR_CODE_ISSUED = "pair_code_issued"
    READY = "ready"
    CLOSED_ERROR = "closed_error"
    TIMED_OUT = "timed_out"


class FailureReason(str, Enum):
    CONNECTION = "connection"
    PAIR_CODE = "pair_code"


TERMINAL_STATES = frozenset(
    {SessionState.READY, SessionState.CLOSED_ERROR, SessionState.TIMED_OUT}
)

_ALLOWED = {
    SessionState.CONNECTING: {SessionState.QR_ISSUED, SessionState.PAIR_CODE_ISSUED} | TERMINAL_STATES,
    # a rotated QR re-enters qr_issued
    SessionState.QR_ISSUED: {SessionState.QR_ISSUED} | TERMINAL_STATES,
    SessionState.PAIR_CODE_ISSUED: set(TERMINAL_STATES),
}


class InvalidTransition(Exception):
    pass


@dataclass
class Session:
    session_id: str
    mode: SessionMode
    phone: str | None = None
    state: SessionState = SessionState.CONNECTING
    qr: str | None = None
    pair_code: str | None = None
    token: str | None = None
    short_code: str | None = None
    error: str | None = None
    status_code: int | None = None
    failure: FailureReason | None = None
    created_at: float = field(default_factory=time.time)
    history: list = field(default_factory=lambda: [SessionState.CONNECTING])

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def ready(self) -> bool:
        return self.state == SessionState.READY

    def move_to(self, state: SessionState) -> None:
        if state not in _ALLOWED.get(self.state, ()):
            raise InvalidTransition(f"{self.session_id}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def issue_qr(self, qr: str) -> None:
        self.move_to(SessionState.QR_ISSUED)
        self.qr = qr

    def issue_pair_code(self, code: str) -> None:
        if self.pair_code is not None:
            raise InvalidTransition(f"{self.session_id}: pair code already issued")
        self.move_to(SessionState.PAIR_CODE_ISSUED)
        self.pair_code = code

    def succeed(self, token: str, short_code: str | None = None) -> None:
        self.move_to(SessionState.READY)
        self.token = token
        self.short_code = short_code

    def fail(
        self,
        error: str,
        status_code: int | None = None,
        reason: FailureReason = FailureReason.CONNECTION,
    ) -> None:
        self.move_to(SessionState.CLOSED_ERROR)
        self.error = error
        self.status_code = status_code
        self.failure = reason

    def expire(self, error: str) -> None:
        self.move_to(SessionState.TIMED_OUT)
        self.error = error


class SessionRegistry:
    ID_LENGTH = 10
    ALPHABET = string.ascii_letters + string.digits

    def __init__(self):
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def _new_id(self, mode: SessionMode) -> str:
        prefix = "S-" if mode == SessionMode.QR else "P-"
        while True:
            candidate = prefix + "".join(
                secrets.choice(self.ALPHABET) for _ in range(self.ID_LENGTH)
            )
            if candidate not in self._sessions:
                return candidate

    def create(self, mode: SessionMode, phone: str | None = None) -> Session:
        if mode == SessionMode.PAIR and not phone:
            raise ValueError("Pair-code sessions need a phone number")

        session = Session(session_id=self._new_id(mode), mode=mode, phone=phone)
        self._sessions[session.session_id] = session
        logger.info(f"Session created: session_id={session.session_id}, mode={mode.value}")
        return session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def update(self, session_id: str, mutator: Callable[[Session], None]) -> bool:
        """
        Applies ``mutator`` to a live session. Terminal sessions are left untouched.
        Returns whether the mutator ran.
        """
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning(f"Update ignored: session_id={session_id} not found")
            return False

        if session.terminal:
            logger.info(
                f"Update ignored: session_id={session_id} already {session.state.value}"
            )
            return False

        mutator(session)
        return True
