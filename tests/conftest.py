import asyncio
from functools import partial

import pytest
from fastapi.testclient import TestClient

from luxsession.core.config import Settings
from luxsession.main import create_app
from luxsession.services.link_client import ClientOptions, Connection, ConnectionUpdate


class FakeLinkClient:
    """Stands in for the protocol library: tests push updates through ``emit``."""

    def __init__(self, options: ClientOptions):
        self.options = options
        self.connection_handlers = []
        self.creds_handlers = []
        self.pair_requests = []
        self.pairing_code = "12345678"
        self.pairing_error = None
        self.close_error = None
        self.close_calls = 0

    def on_connection_update(self, handler):
        self.connection_handlers.append(handler)

    def on_creds_update(self, handler):
        self.creds_handlers.append(handler)

    async def request_pairing_code(self, phone: str) -> str:
        self.pair_requests.append(phone)
        if self.pairing_error is not None:
            raise self.pairing_error
        return self.pairing_code

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error

    async def emit(self, connection=None, qr=None, status_code=None):
        update = ConnectionUpdate(
            connection=Connection(connection) if connection else None,
            qr=qr,
            status_code=status_code,
        )
        for handler in list(self.connection_handlers):
            await handler(update)

    async def emit_creds(self, creds: dict, keys: dict | None = None):
        if keys:
            self.options.auth.write_keys(keys)
        for handler in list(self.creds_handlers):
            await handler(creds)


class FakeFactory:
    """
    Builds FakeLinkClients. Each entry of ``scripts`` is played against the
    next client created, one step per loop iteration.
    """

    def __init__(self):
        self.clients = []
        self.scripts = []
        self.error = None
        self.pairing_error = None
        self._tasks = set()

    @property
    def latest(self) -> FakeLinkClient:
        return self.clients[-1]

    async def __call__(self, options: ClientOptions) -> FakeLinkClient:
        if self.error is not None:
            raise self.error
        client = FakeLinkClient(options)
        client.pairing_error = self.pairing_error
        self.clients.append(client)
        if self.scripts:
            task = asyncio.get_running_loop().create_task(self._play(client, self.scripts.pop(0)))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return client

    @staticmethod
    async def _play(client: FakeLinkClient, steps):
        for step in steps:
            await asyncio.sleep(0)
            step = dict(step)
            if "creds" in step:
                await client.emit_creds(step["creds"], step.get("keys"))
            else:
                await client.emit(**step)


CREDS = {"me": {"id": "918888888888:1@s.whatsapp.net"}, "registered": True}


@pytest.fixture
def factory():
    return FakeFactory()


@pytest.fixture
def test_settings(tmp_path):
    config = Settings()
    config.SESSIONS_DIR = str(tmp_path / "sessions")
    config.CODES_DIR = str(tmp_path / "codes")
    config.SESSION_TIMEOUT_SECONDS = 2
    config.RATE_LIMIT_ENABLED = False
    config.LINK_CLIENT_FACTORY = ""
    return config


@pytest.fixture
def client(test_settings, factory):
    app = create_app(test_settings, client_factory=factory)
    with TestClient(app) as test_client:
        yield test_client


def push(test_client: TestClient, fake: FakeLinkClient, **update):
    """Emits a connection update on the app's event loop from the test thread."""
    test_client.portal.call(partial(fake.emit, **update))


def push_creds(test_client: TestClient, fake: FakeLinkClient, creds: dict, keys: dict | None = None):
    test_client.portal.call(partial(fake.emit_creds, creds, keys))


async def fake_client_factory(options: ClientOptions) -> FakeLinkClient:
    return FakeLinkClient(options)
