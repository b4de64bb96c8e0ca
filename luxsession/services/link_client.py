"""Seam between the orchestrator and the messaging-protocol client library.

The library itself is an external collaborator. Anything that satisfies
``LinkClient`` and can be built by a ``ClientFactory`` can drive a login.
"""

import importlib
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Awaitable, Callable, Protocol

from luxsession.services.credentials import MultiFileAuthState


class Connection(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


class DisconnectReason(IntEnum):
    LOGGED_OUT = 401
    FORBIDDEN = 403
    CONNECTION_LOST = 408
    MULTIDEVICE_MISMATCH = 411
    CONNECTION_CLOSED = 428
    CONNECTION_REPLACED = 440
    BAD_SESSION = 500
    UNAVAILABLE_SERVICE = 503
    RESTART_REQUIRED = 515


@dataclass
class ConnectionUpdate:
    connection: Connection | None = None
    qr: str | None = None
    # reason code reported alongside a close
    status_code: int | None = None


@dataclass(frozen=True)
class ClientIdentity:
    platform: str
    browser: str
    version: str = "120.0.0"

    def as_tuple(self) -> tuple:
        return (self.platform, self.browser, self.version)


# QR linking is offered to desktop "linked devices"; phone-number pairing
# is only negotiated for mobile clients.
DESKTOP_IDENTITY = ClientIdentity("Mac OS", "Chrome")
MOBILE_IDENTITY = ClientIdentity("Android", "Chrome")


@dataclass
class ClientOptions:
    session_id: str
    auth: MultiFileAuthState
    identity: ClientIdentity
    mobile: bool = False


ConnectionHandler = Callable[[ConnectionUpdate], Awaitable[None]]
CredsHandler = Callable[[dict], Awaitable[None]]


class LinkClient(Protocol):
    def on_connection_update(self, handler: ConnectionHandler) -> None: ...

    def on_creds_update(self, handler: CredsHandler) -> None: ...

    async def request_pairing_code(self, phone: str) -> str: ...

    async def close(self) -> None: ...


ClientFactory = Callable[[ClientOptions], Awaitable[LinkClient]]


def load_client_factory(path: str) -> ClientFactory:
    """Resolve a ``"package.module:callable"`` string into a client factory."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"LINK_CLIENT_FACTORY must look like 'module:callable', got {path!r}")

    module = importlib.import_module(module_name)
    factory: Any = getattr(module, attr)
    if not callable(factory):
        raise TypeError(f"{path} is not callable")
    return factory
