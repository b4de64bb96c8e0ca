import asyncio
import logging
import os
import re
from dataclasses import dataclass, field
from functools import partial

from luxsession.services.credentials import (
    CodeStore,
    CredentialStore,
    MultiFileAuthState,
    NotYetAvailable,
)
from luxsession.services.link_client import (
    DESKTOP_IDENTITY,
    MOBILE_IDENTITY,
    ClientFactory,
    ClientOptions,
    Connection,
    ConnectionUpdate,
    DisconnectReason,
    LinkClient,
)
from luxsession.services.sessions import (
    FailureReason,
    Session,
    SessionMode,
    SessionRegistry,
)

"""LoginOrchestrator: drives one link-client connection per login attempt"""


logger = logging.getLogger(__name__)

LOGGED_OUT_MESSAGE = "Logged out / device removed by WhatsApp"
TIMEOUT_MESSAGE = "Timed out waiting for scan/login"
SHUTDOWN_MESSAGE = "Server shutting down"


class _Link:
    def __init__(self, client: LinkClient):
        self.client = client
        self.closed = False


@dataclass
class _Attempt:
    session_id: str
    directory: str
    auth: MultiFileAuthState
    outcome: asyncio.Future
    link: _Link | None = None
    timer: asyncio.TimerHandle | None = None
    pair_requested: bool = False
    tasks: set = field(default_factory=set)


class LoginOrchestrator:
    def __init__(
        self,
        registry: SessionRegistry,
        client_factory: ClientFactory,
        credential_store: CredentialStore,
        code_store: CodeStore,
        sessions_dir: str,
        timeout: float = 60,
        pair_code_separator: str = "-",
    ):
        self.registry = registry
        self.client_factory = client_factory
        self.credential_store = credential_store
        self.code_store = code_store
        self.sessions_dir = sessions_dir
        self.timeout = timeout
        self.pair_code_separator = pair_code_separator
        self._attempts: dict[str, _Attempt] = {}

    def format_pair_code(self, raw: str) -> str:
        compact = re.sub(r"[^0-9A-Za-z]", "", raw)
        groups = [compact[i:i + 4] for i in range(0, len(compact), 4)]
        return self.pair_code_separator.join(groups) or raw

    async def start(self, session: Session) -> asyncio.Future:
        """
        Opens the first connection for ``session`` and arms its timer.
        Returns a future that resolves with the session the first time it
        leaves ``connecting`` (artifact issued, ready, failed or timed out).
        """
        loop = asyncio.get_running_loop()
        directory = os.path.join(self.sessions_dir, session.session_id)
        attempt = _Attempt(
            session_id=session.session_id,
            directory=directory,
            auth=MultiFileAuthState(directory),
            outcome=loop.create_future(),
        )
        self._attempts[session.session_id] = attempt
        attempt.timer = loop.call_later(self.timeout, self._on_timer, attempt)

        try:
            await self._connect(attempt, session)
        except Exception as e:
            logger.error(f"Connect failed: session_id={session.session_id}, error={e!r}")
            await self._finish(attempt, lambda s: s.fail(_describe(e)))

        return attempt.outcome

    async def shutdown(self) -> None:
        for attempt in list(self._attempts.values()):
            await self._finish(attempt, lambda s: s.fail(SHUTDOWN_MESSAGE))
        self._attempts.clear()

    async def _connect(self, attempt: _Attempt, session: Session) -> None:
        if session.mode == SessionMode.PAIR:
            options = ClientOptions(session.session_id, attempt.auth, MOBILE_IDENTITY, mobile=True)
        else:
            options = ClientOptions(session.session_id, attempt.auth, DESKTOP_IDENTITY, mobile=False)

        client = await self.client_factory(options)
        link = _Link(client)

        # the session may have ended while the factory was connecting
        if session.terminal:
            await self._close_link(attempt.session_id, link)
            return

        attempt.link = link
        client.on_creds_update(partial(self._on_creds_update, attempt, link))
        client.on_connection_update(partial(self._on_connection_update, attempt, link))
        logger.info(
            f"Connection opened: session_id={session.session_id}, "
            f"identity={options.identity.as_tuple()}, mobile={options.mobile}"
        )

    def _is_current(self, attempt: _Attempt, link: _Link) -> bool:
        return (
            self._attempts.get(attempt.session_id) is attempt
            and attempt.link is link
            and not link.closed
        )

    async def _on_creds_update(self, attempt: _Attempt, link: _Link, update: dict) -> None:
        if not self._is_current(attempt, link):
            return
        # Only persists; the open event decides readiness
        attempt.auth.merge_creds(update)
        attempt.auth.save_creds()
        logger.info(f"Creds saved: session_id={attempt.session_id}")

    async def _on_connection_update(
        self, attempt: _Attempt, link: _Link, update: ConnectionUpdate
    ) -> None:
        if not self._is_current(attempt, link):
            return

        session = self.registry.get(attempt.session_id)
        if session is None or session.terminal:
            return

        try:
            if update.qr and session.mode == SessionMode.QR:
                self._on_qr(attempt, update.qr)

            if self._awaiting_pair_code(session) and update.connection in (
                Connection.CONNECTING,
                Connection.OPEN,
            ):
                # one request per attempt; later events wait for it
                if not attempt.pair_requested:
                    await self._request_pair_code(attempt, link, session)
            elif update.connection == Connection.OPEN:
                await self._on_open(attempt)
            elif update.connection == Connection.CLOSE:
                await self._on_close(attempt, link, session, update.status_code)
        except Exception as e:
            logger.exception(f"Connection update failed: session_id={attempt.session_id}")
            await self._finish(attempt, lambda s: s.fail(_describe(e)))

    def _on_qr(self, attempt: _Attempt, qr: str) -> None:
        if self.registry.update(attempt.session_id, lambda s: s.issue_qr(qr)):
            logger.info(f"QR issued: session_id={attempt.session_id}")
            self._resolve(attempt)

    @staticmethod
    def _awaiting_pair_code(session: Session) -> bool:
        return session.mode == SessionMode.PAIR and session.pair_code is None

    async def _on_open(self, attempt: _Attempt) -> None:
        try:
            bundle = self.credential_store.read_bundle(attempt.directory)
        except NotYetAvailable as e:
            logger.warning(f"Open without creds: session_id={attempt.session_id}")
            await self._finish(attempt, lambda s: s.fail(str(e)))
            return

        token = self.credential_store.encode(bundle)
        short_code = self.code_store.issue(bundle)
        if await self._finish(attempt, lambda s: s.succeed(token, short_code)):
            logger.info(f"Session ready: session_id={attempt.session_id}, code={short_code}")

    async def _request_pair_code(self, attempt: _Attempt, link: _Link, session: Session) -> None:
        attempt.pair_requested = True
        try:
            raw = await link.client.request_pairing_code(session.phone)
        except Exception as e:
            logger.error(f"Pair code request failed: session_id={attempt.session_id}, error={e!r}")
            await self._finish(
                attempt, lambda s: s.fail(_describe(e), reason=FailureReason.PAIR_CODE)
            )
            return

        code = self.format_pair_code(str(raw))
        if self.registry.update(attempt.session_id, lambda s: s.issue_pair_code(code)):
            logger.info(f"Pair code issued: session_id={attempt.session_id}, phone={session.phone}")
            self._resolve(attempt)

    async def _on_close(
        self, attempt: _Attempt, link: _Link, session: Session, status_code: int | None
    ) -> None:
        logger.warning(f"Connection closed: session_id={attempt.session_id}, status_code={status_code}")
        await self._close_link(attempt.session_id, link)

        if status_code == DisconnectReason.RESTART_REQUIRED:
            logger.warning(f"Restart required, reconnecting: session_id={attempt.session_id}")
            try:
                await self._connect(attempt, session)
            except Exception as e:
                logger.error(f"Reconnect failed: session_id={attempt.session_id}, error={e!r}")
                await self._finish(attempt, lambda s: s.fail(_describe(e), status_code))
            return

        if status_code == DisconnectReason.LOGGED_OUT:
            message = LOGGED_OUT_MESSAGE
        elif status_code is None:
            message = "Connection closed (unknown reason)"
        else:
            message = f"Connection closed with code {status_code}"
        await self._finish(attempt, lambda s: s.fail(message, status_code))

    def _on_timer(self, attempt: _Attempt) -> None:
        attempt.timer = None
        task = asyncio.get_running_loop().create_task(self._expire(attempt))
        attempt.tasks.add(task)
        task.add_done_callback(attempt.tasks.discard)

    async def _expire(self, attempt: _Attempt) -> None:
        if await self._finish(attempt, lambda s: s.expire(TIMEOUT_MESSAGE)):
            logger.warning(f"Session timed out: session_id={attempt.session_id}")

    def _resolve(self, attempt: _Attempt) -> None:
        if not attempt.outcome.done():
            attempt.outcome.set_result(self.registry.get(attempt.session_id))

    async def _finish(self, attempt: _Attempt, mutator) -> bool:
        """Moves the session to a terminal state and releases its timer and connection."""
        applied = self.registry.update(attempt.session_id, mutator)
        if not applied:
            return False

        self._resolve(attempt)
        if attempt.timer is not None:
            attempt.timer.cancel()
            attempt.timer = None
        if attempt.link is not None:
            await self._close_link(attempt.session_id, attempt.link)
        self._attempts.pop(attempt.session_id, None)
        return True

    async def _close_link(self, session_id: str, link: _Link) -> None:
        if link.closed:
            return
        link.closed = True
        try:
            await link.client.close()
        except Exception as e:
            logger.warning(f"Ignoring close failure: session_id={session_id}, error={e!r}")


def _describe(error: Exception) -> str:
    return str(error) or type(error).__name__
